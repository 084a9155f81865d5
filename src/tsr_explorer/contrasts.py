from __future__ import annotations

from typing import Sequence, Union

import edgepython as ep
import numpy as np
import pandas as pd

from .model import DEFit


def make_contrast(fit: DEFit, compare_groups: Sequence[Union[str, int]]) -> np.ndarray:
    """
    Build the contrast vector (second group - first group).

    Groups are level names or 1-based level indices.
    """
    if len(compare_groups) != 2:
        raise ValueError("compare_groups needs exactly two groups.")

    idx = []
    for g in compare_groups:
        if isinstance(g, (int, np.integer)) and not isinstance(g, bool):
            if not 1 <= g <= len(fit.levels):
                raise KeyError(f"Group index {g} out of range 1..{len(fit.levels)}")
            idx.append(int(g) - 1)
        elif str(g) in fit.levels:
            idx.append(fit.levels.index(str(g)))
        else:
            raise KeyError(f"Missing group: {g!r}. Levels are {fit.levels}")
    if idx[0] == idx[1]:
        raise ValueError("compare_groups must name two different groups.")

    contrast = np.zeros(len(fit.levels))
    contrast[idx[0]] = -1.0
    contrast[idx[1]] = 1.0
    return contrast


def ql_f_test(fit: DEFit, contrast: np.ndarray) -> pd.DataFrame:
    """
    Quasi-likelihood F-test of a contrast with :func:`edgepython.glm_ql_ftest`.

    Returns a table indexed like the fitted counts with logFC, logCPM, F and
    PValue columns.
    """
    contrast = np.asarray(contrast, dtype=float)
    if contrast.shape != (fit.design.shape[1],):
        raise ValueError(
            f"Contrast has {contrast.size} entries for {fit.design.shape[1]} coefficients."
        )
    if not np.any(contrast):
        raise ValueError("Contrast is all zeros.")

    res = ep.glm_ql_ftest(fit.glm, contrast=contrast)
    table = pd.DataFrame(res["table"]).reset_index(drop=True)
    table.index = fit.counts.index
    return table[["logFC", "logCPM", "F", "PValue"]]
