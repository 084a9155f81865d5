import pytest

from tsr_explorer import (
    annotate_features,
    count_features,
    detect_features,
    feature_windows,
    tsr_explorer,
)


@pytest.mark.parametrize(
    "exclude, truncate, expected",
    [
        (False, False, {"geneA": 31, "geneB": 96}),
        (True, False, {"geneA": 24, "geneB": 64}),
        (False, True, {"geneA": 15, "geneB": 96}),
        (True, True, {"geneA": 8, "geneB": 64}),
    ],
)
def test_count_features_window_rules(counting_tss, gene_model, exclude, truncate, expected):
    exp = tsr_explorer(tss={"S1": counting_tss})
    count_features(exp, gene_model, exclude_promoter_proximal=exclude, truncate_last_exon=truncate)
    m = exp.get_matrix("features")
    assert m["S1"].to_dict() == expected


def test_feature_windows_coordinates(gene_model):
    w = feature_windows(gene_model, exclude_promoter_proximal=True, truncate_last_exon=True)
    w = w.set_index("feature_id")
    assert w.loc["geneA", ["start", "end"]].tolist() == [1101, 1500]
    assert w.loc["geneB", ["start", "end"]].tolist() == [5000, 5899]


def test_feature_counts_tables(counting_tss, gene_model):
    exp = tsr_explorer(tss={"S1": counting_tss, "S2": counting_tss.iloc[:2]})
    count_features(exp, gene_model)
    assert exp.samples("features") == ["S1", "S2"]
    assert exp.get_matrix("features").loc["geneB", "S2"] == 0
    cpm = exp.get_tables("features", "cpm")["S1"]
    assert list(cpm.columns) == ["feature_id", "score"]
    assert cpm["score"].sum() == pytest.approx(1e6)


def test_detect_features(two_sample_experiment, gene_model):
    annotate_features(two_sample_experiment, gene_model)
    det = detect_features(two_sample_experiment, threshold=1)
    assert det.loc["S2"].to_dict() == {
        "with_promoter": 2,
        "without_promoter": 0,
        "total": 2,
        "fraction_with_promoter": 1.0,
    }
    det_hi = detect_features(two_sample_experiment, threshold=5)
    # S2 above 5: 1000+ (10), 5999- (12)
    assert det_hi.loc["S2", "total"] == 2
    # S1 above 5: 1000+ (5), 1050+ (5), 6050- (7)
    assert det_hi.loc["S1", "with_promoter"] == 2
