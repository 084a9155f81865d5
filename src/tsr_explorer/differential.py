"""
Differential TSS/TSR/feature results tables.

Functions
---------
differential_expression
    QL F-test of two groups with FDR correction.
annotate_differential_tsrs
    Attach the nearest gene or transcript to differential positions.
classify_changes
    Label rows as Increased, Decreased or Unchanged.
export_for_enrichment
    Significant genes in the shape expected by term-enrichment tools.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .annotate import GeneModel, annotate_positions
from .contrasts import make_contrast, ql_f_test
from .model import DEFit
from .preprocess import split_position_id
from .stats import bh_fdr

logger = logging.getLogger(__name__)

CHANGE_LABELS = ("Decreased", "Unchanged", "Increased")


def differential_expression(
    fit: DEFit,
    data_type: str | None = None,
    compare_groups: Sequence[Union[str, int]] = (1, 2),
) -> pd.DataFrame:
    """Test the second of ``compare_groups`` against the first.

    Parameters
    ----------
    fit : DEFit
        Model from :func:`~tsr_explorer.model.fit_de_model`.
    data_type : {"tss", "tsr", "features"} or None
        Shapes the identifier columns. Positions ("tss"/"tsr") are split
        into chrom, start, end and strand; features get a ``gene_id``
        column. Defaults to the data type of the fit.
    compare_groups : pair of str or int, default (1, 2)
        Group names or 1-based level indices; log2FC is second minus first.

    Returns
    -------
    pd.DataFrame
        logCPM, F, PValue, log2FC and FDR per tested row, in fit order.
    """
    data_type = data_type or fit.data_type
    contrast = make_contrast(fit, compare_groups)
    table = ql_f_test(fit, contrast)
    table["FDR"] = bh_fdr(table["PValue"].to_numpy())
    table = table.rename(columns={"logFC": "log2FC"})
    table = table[["log2FC", "logCPM", "F", "PValue", "FDR"]]

    if data_type in ("tss", "tsr"):
        coords = split_position_id(table.index)
        coords.index = table.index
        table = pd.concat([coords, table], axis=1).reset_index(drop=True)
    elif data_type == "features":
        table = table.rename_axis("gene_id").reset_index()
    else:
        raise ValueError(f"Unknown data_type='{data_type}'.")

    n_sig = int((table["FDR"] <= 0.05).sum())
    levels = [fit.levels[int(np.flatnonzero(contrast == s)[0])] for s in (-1.0, 1.0)]
    logger.info(f"{levels[1]} vs {levels[0]}: {n_sig}/{len(table)} {data_type} rows with FDR <= 0.05")
    return table


def annotate_differential_tsrs(
    table: pd.DataFrame,
    annotation: Union[str, Path, pd.DataFrame, GeneModel],
    feature_type: str = "gene",
    upstream: int = 1000,
    downstream: int = 100,
) -> pd.DataFrame:
    """Annotate differential positions relative to the nearest feature TSS.

    See :func:`~tsr_explorer.annotate.annotate_positions` for the columns
    added.
    """
    if not {"chrom", "start", "end", "strand"}.issubset(table.columns):
        raise ValueError("Differential table needs chrom, start, end and strand columns.")
    return annotate_positions(
        table,
        annotation,
        feature_type=feature_type,
        upstream=upstream,
        downstream=downstream,
    )


def _change_masks(
    table: pd.DataFrame, log2fc_cutoff: float, fdr_cutoff: float
) -> Tuple[np.ndarray, np.ndarray]:
    lfc = table["log2FC"].to_numpy(dtype=float)
    sig = table["FDR"].to_numpy(dtype=float) <= fdr_cutoff
    return (lfc >= log2fc_cutoff) & sig, (lfc <= -log2fc_cutoff) & sig


def classify_changes(
    table: pd.DataFrame,
    log2fc_cutoff: float = 1.0,
    fdr_cutoff: float = 0.05,
    labels: Sequence[str] = CHANGE_LABELS,
) -> pd.Series:
    """Label every row by the direction of a significant change.

    Parameters
    ----------
    table : pd.DataFrame
        Results with log2FC and FDR columns.
    log2fc_cutoff : float, default 1.0
        Minimum absolute log2 fold change.
    fdr_cutoff : float, default 0.05
        Maximum FDR.
    labels : sequence of str
        Labels for (decreased, unchanged, increased).

    Returns
    -------
    pd.Series
        Ordered categorical named ``change``.

    Examples
    --------
    >>> t = pd.DataFrame({"log2FC": [2.0, -3.0, 0.5], "FDR": [0.01, 0.01, 0.01]})
    >>> classify_changes(t).tolist()
    ['Increased', 'Decreased', 'Unchanged']
    """
    if len(labels) != 3:
        raise ValueError("labels needs (decreased, unchanged, increased).")
    up, down = _change_masks(table, log2fc_cutoff, fdr_cutoff)
    values = np.select([up, down], [labels[2], labels[0]], default=labels[1])
    return pd.Series(
        pd.Categorical(values, categories=list(labels), ordered=True),
        index=table.index,
        name="change",
    )


def export_for_enrichment(
    annotated: pd.DataFrame,
    log2fc_cutoff: float = 1.0,
    fdr_cutoff: float = 0.05,
) -> pd.DataFrame:
    """Significant genes with their direction of change.

    Returns
    -------
    pd.DataFrame
        gene_id, log2FC, FDR and change ("increase" or "decrease");
        unchanged rows are dropped.
    """
    missing = [c for c in ("gene_id", "log2FC", "FDR") if c not in annotated.columns]
    if missing:
        raise KeyError(f"Missing columns: {missing}")
    out = annotated[["gene_id", "log2FC", "FDR"]].copy()
    up, down = _change_masks(out, log2fc_cutoff, fdr_cutoff)
    out["change"] = np.select([up, down], ["increase", "decrease"], default="unchanged")
    return out[out["change"] != "unchanged"].reset_index(drop=True)
