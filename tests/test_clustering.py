import numpy as np
import pytest

from conftest import tss_frame
from tsr_explorer import cluster_tss, shape_index, tss_to_tsr, tsr_explorer


def test_shape_index_peaked_vs_broad():
    assert shape_index(np.array([10.0])) == 2.0
    assert shape_index(np.array([1.0, 1.0])) == pytest.approx(1.0)
    assert shape_index(np.array([1.0, 1.0, 1.0, 1.0])) == pytest.approx(0.0)
    assert np.isnan(shape_index(np.array([0.0])))


def test_cluster_tss_groups_nearby_positions_per_strand():
    tss = tss_frame([(100, "+", 5), (110, "+", 3), (200, "+", 1), (105, "-", 4)])
    tsrs = cluster_tss(tss, max_distance=25, threshold=1)
    plus = tsrs[tsrs["strand"] == "+"].reset_index(drop=True)
    assert plus[["start", "end", "n_tss"]].values.tolist() == [[100, 111, 2], [200, 201, 1]]
    first = plus.iloc[0]
    assert first["score"] == 8
    assert first["width"] == 11
    assert first["dominant_start"] == 100
    expected = 2 + (5 / 8) * np.log2(5 / 8) + (3 / 8) * np.log2(3 / 8)
    assert first["shape_index"] == pytest.approx(expected)
    assert (tsrs["strand"] == "-").sum() == 1


def test_cluster_tss_threshold_and_min_tss():
    tss = tss_frame([(100, "+", 5), (110, "+", 3), (200, "+", 1)])
    assert len(cluster_tss(tss, threshold=2)) == 1
    assert len(cluster_tss(tss, min_tss=2)) == 1
    assert cluster_tss(tss, threshold=100).empty


def test_dominant_position_is_five_prime_on_minus_strand():
    tss = tss_frame([(100, "-", 4), (110, "-", 4)])
    tsr = cluster_tss(tss).iloc[0]
    assert tsr["dominant_start"] == 110


def test_tss_to_tsr_fills_experiment():
    exp = tsr_explorer(tss={"S1": tss_frame([(100, "+", 5), (110, "+", 3)])})
    tss_to_tsr(exp)
    assert exp.samples("tsr") == ["S1"]
    assert len(exp.tsr["S1"]) == 1


def test_empty_tsr_tables_keep_interval_dtypes():
    tss = tss_frame([(100, "+", 5), (110, "+", 3)])
    for empty in (cluster_tss(tss, threshold=100), cluster_tss(tss, min_tss=5)):
        assert empty.empty
        assert list(empty.columns) == [
            "chrom", "start", "end", "strand", "score", "n_tss", "width", "dominant_start", "shape_index",
        ]
        assert empty["start"].dtype == np.int64
        assert empty["end"].dtype == np.int64
        assert empty["score"].dtype == np.float64
