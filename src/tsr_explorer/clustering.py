"""
Clustering of TSSs into transcription start regions (TSRs).
"""
from __future__ import annotations

import logging

import bioframe as bf
import numpy as np
import pandas as pd

from .experiment import TSRExperiment

logger = logging.getLogger(__name__)

TSR_COLUMNS = {
    "chrom": str,
    "start": np.int64,
    "end": np.int64,
    "strand": str,
    "score": float,
    "n_tss": np.int64,
    "width": np.int64,
    "dominant_start": np.int64,
    "shape_index": float,
}


def _empty_tsr_frame() -> pd.DataFrame:
    return pd.DataFrame({col: pd.Series(dtype=dtype) for col, dtype in TSR_COLUMNS.items()})


def shape_index(scores: np.ndarray) -> float:
    """Promoter shape index, ``2 + sum(p * log2(p))``.

    A single-position TSR scores 2; broader, flatter TSRs score lower.

    Examples
    --------
    >>> shape_index(np.array([10.0]))
    2.0
    >>> shape_index(np.array([1.0, 1.0]))
    1.0
    """
    scores = np.asarray(scores, dtype=float)
    total = scores.sum()
    if total <= 0:
        return np.nan
    p = scores[scores > 0] / total
    return float(2.0 + np.sum(p * np.log2(p)))


def cluster_tss(
    tss: pd.DataFrame,
    max_distance: int = 25,
    threshold: float = 1.0,
    min_tss: int = 1,
) -> pd.DataFrame:
    """Cluster the TSSs of one sample into TSRs.

    TSSs with a score below ``threshold`` are dropped, the rest are grouped
    per strand when the gap between neighbouring TSSs is at most
    ``max_distance`` bases.

    Returns
    -------
    pd.DataFrame
        chrom, start, end, strand, score (summed), n_tss, width,
        dominant_start (5'-most position of the highest score) and
        shape_index.
    """
    kept = tss[tss["score"] >= threshold]
    if kept.empty:
        return _empty_tsr_frame()

    clustered = bf.cluster(
        kept[["chrom", "start", "end", "strand", "score"]],
        min_dist=max_distance,
        on=["strand"],
    )

    rows = []
    for _, grp in clustered.groupby("cluster", sort=False):
        if len(grp) < min_tss:
            continue
        strand = grp["strand"].iloc[0]
        scores = grp["score"].to_numpy(dtype=float)
        top = grp[scores == scores.max()]
        dominant = top["start"].min() if strand == "+" else top["start"].max()
        start = int(grp["start"].min())
        end = int(grp["end"].max())
        rows.append(
            {
                "chrom": grp["chrom"].iloc[0],
                "start": start,
                "end": end,
                "strand": strand,
                "score": float(scores.sum()),
                "n_tss": int(len(grp)),
                "width": end - start,
                "dominant_start": int(dominant),
                "shape_index": shape_index(scores),
            }
        )

    if not rows:
        return _empty_tsr_frame()
    out = pd.DataFrame(rows, columns=list(TSR_COLUMNS))
    return bf.sort_bedframe(out).reset_index(drop=True)


def tss_to_tsr(
    experiment: TSRExperiment,
    max_distance: int = 25,
    threshold: float = 1.0,
    min_tss: int = 1,
) -> TSRExperiment:
    """Cluster every sample's TSSs into TSRs and store them in ``experiment.tsr``.

    See :func:`cluster_tss` for the clustering rules.
    """
    for sample, tss in experiment.source_tables("tss").items():
        experiment.tsr[sample] = cluster_tss(tss, max_distance, threshold, min_tss)
        logger.info(f"{sample}: {len(experiment.tsr[sample])} TSRs from {len(tss)} TSSs")
    return experiment
