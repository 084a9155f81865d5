"""
Count matrices and library normalization.

This module fills the count slots of a :class:`TSRExperiment`: per-sample
raw and CPM tables, position-by-sample count matrices (with consensus
regions for TSRs), expression filtering and TMM normalization factors.

Functions
---------
count_normalization
    Store per-sample raw and CPM tables.
count_matrix
    Build the position-by-sample raw count matrix.
filter_by_expr
    Keep positions with enough counts in enough samples.
calc_norm_factors
    TMM normalization factors.
tmm_normalize
    Filter positions and store TMM-normalized CPM values.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import bioframe as bf
import edgepython as ep
import numpy as np
import pandas as pd

from .experiment import CountSet, TSRExperiment, check_data_type

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilterSpec:
    min_count: float = 10.0
    min_total_count: float = 15.0
    large_n: int = 10
    min_prop: float = 0.7


@dataclass(frozen=True)
class TMMSpec:
    logratio_trim: float = 0.3
    sum_trim: float = 0.05
    do_weighting: bool = True
    a_cutoff: float = -1e10


def make_position_id(df: pd.DataFrame) -> pd.Series:
    """Build ``chrom_start_end_strand`` identifiers for an interval table.

    Examples
    --------
    >>> df = pd.DataFrame({"chrom": ["chr1"], "start": [10], "end": [11], "strand": ["-"]})
    >>> make_position_id(df).tolist()
    ['chr1_10_11_-']
    """
    return (
        df["chrom"].astype(str)
        + "_"
        + df["start"].astype(np.int64).astype(str)
        + "_"
        + df["end"].astype(np.int64).astype(str)
        + "_"
        + df["strand"].astype(str)
    )


def split_position_id(ids: Sequence[str]) -> pd.DataFrame:
    """Split position identifiers back into chrom, start, end and strand.

    Splitting happens from the right, so chromosome names containing
    underscores (``chrUn_KI270302v1``) are kept whole.
    """
    ids = pd.Series(list(ids), dtype=str)
    parts = ids.str.rsplit("_", n=3, expand=True)
    if parts.shape[1] != 4 or parts.isna().any().any():
        raise ValueError("Position ids must look like 'chrom_start_end_strand'.")
    out = pd.DataFrame(
        {
            "chrom": parts[0],
            "start": parts[1].astype(np.int64),
            "end": parts[2].astype(np.int64),
            "strand": parts[3],
        }
    )
    return out


def cpm(counts: pd.DataFrame, lib_size: Optional[pd.Series] = None) -> pd.DataFrame:
    """Counts per million for a position-by-sample matrix."""
    if lib_size is None:
        lib_size = counts.sum(axis=0)
    return counts.div(lib_size.replace(0, np.nan), axis=1).fillna(0.0) * 1e6


def count_normalization(experiment: TSRExperiment, data_type: str = "tss") -> TSRExperiment:
    """Store raw and CPM per-sample tables for TSSs or TSRs.

    Each table gets a ``position`` identifier; CPM tables carry
    ``score / sum(score) * 1e6`` in the ``score`` column.
    """
    data_type = check_data_type(data_type, ("tss", "tsr"))
    tables = experiment.source_tables(data_type)

    count_set = experiment.counts.setdefault(data_type, CountSet())
    for sample, df in tables.items():
        raw = df.copy()
        raw["position"] = make_position_id(raw).values
        total = raw["score"].sum()
        cpm_df = raw.copy()
        cpm_df["score"] = raw["score"] / total * 1e6 if total > 0 else 0.0
        count_set.raw[sample] = raw
        count_set.cpm[sample] = cpm_df

    logger.info(f"Normalized {len(tables)} {data_type.upper()} samples to CPM")
    return experiment


def count_matrix(experiment: TSRExperiment, data_type: str = "tss") -> TSRExperiment:
    """Build the position-by-sample raw count matrix.

    For TSSs the samples are outer-joined on position; absent positions
    count 0. For TSRs, overlapping TSRs of all samples are merged per strand
    into consensus regions and each sample's TSR scores are summed inside
    every consensus region.
    """
    data_type = check_data_type(data_type, ("tss", "tsr"))
    tables = experiment.source_tables(data_type)

    if data_type == "tss":
        columns = {}
        for sample, df in tables.items():
            columns[sample] = df.groupby(make_position_id(df).values)["score"].sum()
        matrix = pd.DataFrame(columns).fillna(0.0)
    else:
        matrix = _consensus_tsr_matrix(tables)

    matrix.index.name = "position"
    matrix = matrix[list(tables)]
    experiment.counts.setdefault(data_type, CountSet()).raw_matrix = matrix
    logger.info(f"Built {data_type.upper()} count matrix with {matrix.shape[0]} positions")
    return experiment


def _consensus_tsr_matrix(tables: dict) -> pd.DataFrame:
    nonempty = {sample: df for sample, df in tables.items() if len(df)}
    if not nonempty:
        return pd.DataFrame(columns=list(tables), dtype=float)

    all_tsrs = pd.concat(
        [df[["chrom", "start", "end", "strand"]] for df in nonempty.values()], ignore_index=True
    )
    all_tsrs = all_tsrs.astype({"chrom": str, "start": np.int64, "end": np.int64, "strand": str})
    consensus = bf.merge(all_tsrs, min_dist=0, on=["strand"])
    consensus = bf.sort_bedframe(consensus[["chrom", "start", "end", "strand"]]).reset_index(drop=True)
    consensus["tsr_id"] = make_position_id(consensus).values

    # samples without TSRs count 0 everywhere
    matrix = pd.DataFrame(0.0, index=pd.Index(consensus["tsr_id"]), columns=list(tables))
    for sample, df in nonempty.items():
        ov = bf.overlap(
            consensus,
            df[["chrom", "start", "end", "strand", "score"]],
            how="inner",
            on=["strand"],
            suffixes=("", "_tsr"),
        )
        scores = ov.groupby("tsr_id")["score_tsr"].sum().astype(float)
        matrix[sample] = scores.reindex(matrix.index, fill_value=0.0)
    return matrix


def filter_by_expr(
    counts: pd.DataFrame,
    groups: Optional[Sequence[str]] = None,
    spec: FilterSpec = FilterSpec(),
    lib_size: Optional[pd.Series] = None,
) -> pd.Series:
    """Decide which positions carry enough counts for testing.

    Wraps :func:`edgepython.filter_by_expr`. A position is kept when its
    CPM reaches ``min_count / median(lib) * 1e6`` in at least ``n`` samples
    and its total count is at least ``min_total_count``. ``n`` is the
    smallest group size (all samples when no groups are given); above
    ``large_n`` it grows only by ``min_prop`` of the extra samples.

    Parameters
    ----------
    counts : pd.DataFrame
        Position-by-sample raw counts.
    groups : sequence of str or None
        Group label of each sample (column order).
    spec : FilterSpec
        Thresholds.
    lib_size : pd.Series or None
        Library sizes; column sums by default.

    Returns
    -------
    pd.Series
        Boolean mask indexed like ``counts``.

    Examples
    --------
    >>> counts = pd.DataFrame({"A": [100, 0], "B": [120, 1]}, index=["hi", "lo"])
    >>> filter_by_expr(counts).tolist()
    [True, False]
    """
    if lib_size is None:
        lib_size = counts.sum(axis=0)
    if float(np.median(lib_size)) <= 0:
        raise ValueError("filter_by_expr received libraries with no counts.")
    if groups is not None and len(groups) != counts.shape[1]:
        raise ValueError(f"Got {len(groups)} groups for {counts.shape[1]} samples.")

    keep = ep.filter_by_expr(
        counts.to_numpy(dtype=float),
        group=None if groups is None else np.asarray([str(g) for g in groups]),
        lib_size=np.asarray(lib_size, dtype=float),
        min_count=spec.min_count,
        min_total_count=spec.min_total_count,
        large_n=spec.large_n,
        min_prop=spec.min_prop,
    )
    return pd.Series(np.asarray(keep, dtype=bool), index=counts.index, name="keep")


def calc_norm_factors(counts: pd.DataFrame, spec: TMMSpec = TMMSpec()) -> pd.Series:
    """TMM normalization factors.

    Wraps :func:`edgepython.calc_norm_factors` with ``method="TMM"``. The
    reference library is the sample whose upper quartile is closest to the
    mean upper quartile; factors are rescaled to a geometric mean of 1.
    Samples without any counts get a factor of 1 and are left out of the
    reference choice.

    Parameters
    ----------
    counts : pd.DataFrame
        Position-by-sample raw counts.
    spec : TMMSpec
        Trimming and weighting settings.

    Returns
    -------
    pd.Series
        Normalization factor per sample.
    """
    if counts.shape[1] == 0:
        raise ValueError("calc_norm_factors received no samples.")
    factors = pd.Series(1.0, index=counts.columns, name="norm_factors")

    lib = counts.sum(axis=0)
    nonempty = lib > 0
    if nonempty.sum() < 2:
        return factors
    if not nonempty.all():
        logger.warning(f"No counts in samples {list(lib.index[~nonempty])}; their TMM factor is 1")

    factors[nonempty] = ep.calc_norm_factors(
        counts.loc[:, nonempty].to_numpy(dtype=float),
        method="TMM",
        logratio_trim=spec.logratio_trim,
        sum_trim=spec.sum_trim,
        do_weighting=spec.do_weighting,
        a_cutoff=spec.a_cutoff,
    )
    return factors


def tmm_normalize(
    experiment: TSRExperiment,
    data_type: str = "tss",
    threshold: float = 1.0,
    n_samples: int = 1,
    spec: TMMSpec = TMMSpec(),
) -> TSRExperiment:
    """TMM-normalize the raw count matrix of a data type.

    Positions need a count of at least ``threshold`` in at least
    ``n_samples`` samples. The normalized matrix holds CPM values computed
    with effective library sizes (library size times TMM factor).
    """
    data_type = check_data_type(data_type)
    raw = experiment.get_matrix(data_type, "raw")
    if n_samples > raw.shape[1]:
        raise ValueError(f"n_samples={n_samples} exceeds the {raw.shape[1]} samples available.")

    keep = (raw >= threshold).sum(axis=1) >= n_samples
    filtered = raw.loc[keep]
    factors = calc_norm_factors(filtered, spec)
    eff_lib = filtered.sum(axis=0) * factors

    count_set = experiment.get_counts(data_type)
    count_set.norm_factors = factors
    count_set.tmm_matrix = cpm(filtered, eff_lib)
    logger.info(
        f"TMM-normalized {int(keep.sum())}/{len(keep)} {data_type} positions; "
        f"factors: {factors.round(3).to_dict()}"
    )
    return experiment
