"""
Count diagnostics.

This module provides functions for summarizing the libraries of a count
matrix before modelling.

Functions
---------
library_summary
    Per-sample library size, detected positions and dispersion index.
zero_fraction
    Compute the fraction of zero counts per sample.
"""
from __future__ import annotations

import numpy as np
import pandas as pd


def library_summary(counts_wide: pd.DataFrame) -> pd.DataFrame:
    """Summarize each sample of a position-by-sample count matrix.

    Parameters
    ----------
    counts_wide : pd.DataFrame
        Count matrix with positions as rows and samples as columns.

    Returns
    -------
    pd.DataFrame
        One row per sample with columns:
        - lib_size: total counts
        - n_detected: positions with a non-zero count
        - zero_fraction: fraction of positions with zero counts
        - var_over_mean: variance-to-mean ratio across positions

    Examples
    --------
    >>> counts = pd.DataFrame({"S1": [10, 20, 0], "S2": [5, 15, 25]})
    >>> library_summary(counts)["n_detected"].tolist()
    [2, 3]
    """
    means = counts_wide.mean(axis=0)
    vars_ = counts_wide.var(axis=0, ddof=1)
    out = pd.DataFrame(
        {
            "lib_size": counts_wide.sum(axis=0),
            "n_detected": (counts_wide > 0).sum(axis=0),
            "zero_fraction": zero_fraction(counts_wide),
            "var_over_mean": vars_ / means.replace(0, np.nan),
        }
    )
    out.index.name = "sample"
    return out


def zero_fraction(counts_wide: pd.DataFrame) -> pd.Series:
    """Compute the fraction of zero counts per sample.

    Parameters
    ----------
    counts_wide : pd.DataFrame
        Count matrix with positions as rows and samples as columns.

    Returns
    -------
    pd.Series
        Fraction of zeros for each sample (values between 0 and 1).

    Examples
    --------
    >>> counts = pd.DataFrame({"S1": [0, 10, 0, 5], "S2": [1, 0, 3, 0]})
    >>> zero_fraction(counts)
    S1    0.5
    S2    0.5
    dtype: float64
    """
    return (counts_wide == 0).mean(axis=0)
