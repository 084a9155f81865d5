"""
Statistical utilities for multiple testing.

Functions
---------
bh_fdr
    Benjamini-Hochberg FDR adjustment.
"""
from __future__ import annotations

import numpy as np


def bh_fdr(pvals: np.ndarray) -> np.ndarray:
    """Benjamini-Hochberg FDR adjustment.

    Adjusts p-values to control the false discovery rate using the
    Benjamini-Hochberg procedure.

    Parameters
    ----------
    pvals : array-like
        Raw p-values.

    Returns
    -------
    qvals : np.ndarray
        BH-adjusted q-values, same shape as pvals. NaN p-values stay NaN and
        do not count toward the number of tests.

    Notes
    -----
    The procedure ranks p-values and computes q_i = p_i * n / rank_i,
    then enforces monotonicity (q_i >= q_{i-1} for sorted p-values).

    Examples
    --------
    >>> pvals = np.array([0.001, 0.01, 0.05, 0.1])
    >>> qvals = bh_fdr(pvals)
    >>> qvals
    array([0.004     , 0.02      , 0.06666667, 0.1       ])
    """
    pvals = np.asarray(pvals, dtype=float)
    out = np.full_like(pvals, np.nan, dtype=float)

    ok = np.isfinite(pvals)
    if ok.sum() == 0:
        return out

    p = pvals[ok]
    order = np.argsort(p)
    ranks = np.arange(1, p.size + 1)

    q = p[order] * p.size / ranks
    # enforce monotonicity
    q = np.minimum.accumulate(q[::-1])[::-1]
    q = np.clip(q, 0.0, 1.0)

    out_idx = np.where(ok)[0][order]
    out[out_idx] = q
    return out
