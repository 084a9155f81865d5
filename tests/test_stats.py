import numpy as np

from tsr_explorer import bh_fdr


def test_bh_fdr_matches_hand_computed_values():
    q = bh_fdr(np.array([0.001, 0.01, 0.05, 0.1]))
    np.testing.assert_allclose(q, [0.004, 0.02, 0.2 / 3, 0.1])


def test_bh_fdr_keeps_nan_out_of_the_test_count():
    q = bh_fdr(np.array([0.01, np.nan, 0.02]))
    assert np.isnan(q[1])
    np.testing.assert_allclose(q[[0, 2]], [0.02, 0.02])


def test_bh_fdr_is_monotone_and_bounded():
    p = np.random.default_rng(1).uniform(size=500)
    q = bh_fdr(p)
    order = np.argsort(p)
    assert np.all(np.diff(q[order]) >= -1e-12)
    assert np.all((q >= p) & (q <= 1))
