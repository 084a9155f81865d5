import numpy as np
import pytest

from conftest import tss_frame
from tsr_explorer import (
    ANNOTATION_CATEGORIES,
    annotate_features,
    annotate_positions,
    build_gene_model,
    genomic_distribution,
    read_gtf,
)


def test_gene_model_tables(gene_model):
    genes = gene_model.features("gene").set_index("feature_id")
    assert genes.loc["geneA", "tss"] == 1000
    assert genes.loc["geneB", "tss"] == 5999
    assert genes.loc["geneB", "gene_name"] == "GB"
    assert len(gene_model.exons) == 3


def test_gene_model_from_exons_only(gtf_path):
    gtf = read_gtf(gtf_path)
    model = build_gene_model(gtf[gtf["feature"] == "exon"])
    genes = model.genes.set_index("gene_id")
    assert genes.loc["geneA", ["start", "end"]].tolist() == [1000, 2000]
    assert genes.loc["geneA", "gene_name"] == "GA"


def test_annotate_positions_categories_and_distances(gene_model):
    df = tss_frame(
        [
            (1000, "+", 1),
            (1300, "+", 1),
            (1600, "+", 1),
            (2500, "+", 1),
            (5999, "-", 1),
            (6500, "-", 1),
            (1100, "-", 1),
        ]
    )
    out = annotate_positions(df, gene_model, upstream=1000, downstream=100)
    assert out["annotation"].tolist() == [
        "Promoter",
        "Intron",
        "Exon",
        "Downstream",
        "Promoter",
        "Promoter",
        "Distal Intergenic",
    ]
    assert out["distance_to_tss"].tolist() == [0, 300, 600, 1500, 0, -501, 4899]
    assert out["feature_id"].tolist() == ["geneA"] * 4 + ["geneB"] * 3
    assert out.loc[0, "gene_name"] == "GA"


def test_annotate_positions_without_features_on_chrom(gene_model):
    out = annotate_positions(tss_frame([(10, "+", 1)], chrom="chr2"), gene_model)
    assert out.loc[0, "annotation"] == "Distal Intergenic"
    assert np.isnan(out.loc[0, "distance_to_tss"])
    assert out["feature_id"].isna().all()


def test_promoter_window_is_configurable(gene_model):
    df = tss_frame([(1300, "+", 1)])
    assert annotate_positions(df, gene_model, downstream=300).loc[0, "annotation"] == "Promoter"
    with pytest.raises(ValueError):
        annotate_positions(df, gene_model, upstream=-1)


def test_transcript_level_adds_transcript_id(gene_model):
    out = annotate_positions(tss_frame([(1000, "+", 1)]), gene_model, feature_type="transcript")
    assert out.loc[0, "transcript_id"] == "txA"
    assert out.loc[0, "gene_id"] == "geneA"
    with pytest.raises(ValueError):
        annotate_positions(tss_frame([(1000, "+", 1)]), gene_model, feature_type="exon")


def test_annotate_features_and_distribution(two_sample_experiment, gtf_path):
    exp = annotate_features(two_sample_experiment, gtf_path, data_type="tss")
    raw = exp.get_annotated("tss", "raw")
    cpm = exp.get_annotated("tss", "cpm")
    assert set(raw) == set(cpm) == {"S1", "S2"}
    assert "position" in raw["S1"].columns
    assert cpm["S1"]["score"].sum() == pytest.approx(1e6)

    dist = genomic_distribution(exp, "tss")
    assert list(dist["annotation"].cat.categories) == ANNOTATION_CATEGORIES
    sums = dist.groupby("sample")["fraction"].sum()
    np.testing.assert_allclose(sums.to_numpy(), 1.0)
    s2 = dist[dist["sample"] == "S2"].set_index("annotation")["count"]
    # S2: 1000+ promoter, 1300+ intron, 5500- exon, 5999- promoter
    assert s2["Promoter"] == 2 and s2["Intron"] == 1 and s2["Exon"] == 1
