import pandas as pd
import pytest

from conftest import tss_frame
from tsr_explorer import SlotError, annotate_features, dominant_tss, select_dominant, tsr_explorer


@pytest.fixture
def annotated(two_sample_experiment, gene_model):
    return annotate_features(two_sample_experiment, gene_model)


def test_ties_all_keeps_every_tied_position(annotated):
    dom = dominant_tss(annotated, "gene", ties="all")["S1"]
    gene_a = dom[dom["feature_id"] == "geneA"]
    assert gene_a["start"].tolist() == [1000, 1050]
    assert gene_a["n_tied"].tolist() == [2, 2]
    gene_b = dom[dom["feature_id"] == "geneB"].iloc[0]
    assert (gene_b["start"], gene_b["score"], gene_b["n_tied"]) == (6050, 7, 1)
    assert annotated.dominant["gene"]["S1"] is dom


def test_ties_first_and_drop(annotated):
    first = dominant_tss(annotated, "gene", ties="first")["S1"].set_index("feature_id")
    assert first.loc["geneA", "start"] == 1000
    dropped = dominant_tss(annotated, "gene", ties="drop")["S1"]
    assert dropped["feature_id"].tolist() == ["geneB"]
    with pytest.raises(ValueError):
        dominant_tss(annotated, "gene", ties="random")


def test_promoter_window_and_threshold(annotated):
    # S2 geneA: only 1000 is inside [-1000, 100]; 1300 is intronic
    dom = dominant_tss(annotated, "gene", upstream=1000, downstream=100)["S2"].set_index("feature_id")
    assert dom.loc["geneA", "start"] == 1000
    # S2 geneB: 5999 (12) beats 5500 (4, outside the window anyway)
    assert dom.loc["geneB", "start"] == 5999
    high = dominant_tss(annotated, "gene", threshold=6)["S1"]
    assert high["feature_id"].tolist() == ["geneB"]


def test_transcript_level_requires_transcript_annotation(annotated, gene_model):
    with pytest.raises(SlotError):
        dominant_tss(annotated, "transcript")
    annotate_features(annotated, gene_model, feature_type="transcript")
    dom = dominant_tss(annotated, "transcript", ties="first")["S1"]
    assert set(dom["feature_id"]) == {"txA", "txB"}


def test_dominant_tss_per_tsr():
    tss = tss_frame([(1000, "+", 5), (1050, "+", 9), (1060, "-", 20)])
    tsr = pd.DataFrame({"chrom": ["chr1"], "start": [990], "end": [1100], "strand": ["+"], "score": [14]})
    exp = tsr_explorer(tss={"S1": tss}, tsr={"S1": tsr})
    dom = dominant_tss(exp, "tsr")["S1"]
    assert dom[["tsr_id", "start", "score"]].values.tolist() == [["chr1_990_1100_+", 1050, 9.0]]


def test_select_dominant_first_on_minus_strand():
    df = pd.DataFrame(
        {
            "gene": ["g"] * 3,
            "chrom": "chr1",
            "start": [10, 20, 30],
            "end": [11, 21, 31],
            "strand": "-",
            "score": [5, 5, 1],
        }
    )
    assert select_dominant(df, "gene", ties="first")["start"].tolist() == [20]
    assert select_dominant(df.iloc[:0], "gene").empty
