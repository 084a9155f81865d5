"""
Feature-level counting of TSS signal.

Functions
---------
feature_windows
    Strand-aware counting windows for every feature.
count_features
    Sum TSS scores inside feature windows for every sample.
detect_features
    Number of features with TSS signal per sample.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

import bioframe as bf
import numpy as np
import pandas as pd

from .annotate import GeneModel, load_gene_model
from .experiment import CountSet, TSRExperiment
from .preprocess import cpm

logger = logging.getLogger(__name__)

GENIC_CATEGORIES = ("Promoter", "Exon", "Intron")


def feature_windows(
    model: GeneModel,
    feature_type: str = "gene",
    upstream: int = 1000,
    downstream: int = 100,
    exclude_promoter_proximal: bool = False,
    truncate_last_exon: bool = False,
) -> pd.DataFrame:
    """Counting windows for the features of a gene model.

    The window runs from ``upstream`` bases 5' of the feature TSS to the
    feature 3' end. With ``exclude_promoter_proximal`` it starts
    ``downstream + 1`` bases 3' of the TSS instead, leaving the promoter
    window ``[-upstream, +downstream]`` out. With ``truncate_last_exon`` it
    stops at the 5' boundary of the feature's last exon; features whose
    last exon contains the TSS are not truncated.

    Parameters
    ----------
    model : GeneModel
        Gene annotation.
    feature_type : {"gene", "transcript"}, default "gene"
        Feature level.
    upstream, downstream : int
        Promoter window around the TSS.
    exclude_promoter_proximal : bool, default False
        Drop the promoter-proximal part of the window.
    truncate_last_exon : bool, default False
        End the window at the start of the last exon.

    Returns
    -------
    pd.DataFrame
        chrom, start, end, strand, feature_id, gene_id, gene_name. Windows
        emptied by the rules have ``end == start``.
    """
    features = model.features(feature_type)
    plus = (features["strand"] == "+").to_numpy()
    tss = features["tss"].to_numpy(dtype=np.int64)

    if exclude_promoter_proximal:
        five_plus = tss + downstream + 1
        five_minus = tss - downstream
    else:
        five_plus = tss - upstream
        five_minus = tss + upstream + 1

    three_plus = features["end"].to_numpy(dtype=np.int64).copy()
    three_minus = features["start"].to_numpy(dtype=np.int64).copy()

    if truncate_last_exon:
        last = _last_exon_boundaries(model, feature_type, features)
        boundary = features["feature_id"].map(last).to_numpy(dtype=float)
        ok = ~np.isnan(boundary)
        cut_plus = ok & plus & (boundary > tss)
        cut_minus = ok & ~plus & (boundary < tss)
        three_plus[cut_plus] = boundary[cut_plus].astype(np.int64)
        three_minus[cut_minus] = boundary[cut_minus].astype(np.int64) + 1

    start = np.where(plus, five_plus, three_minus)
    end = np.where(plus, three_plus, five_minus)
    start = np.clip(start, 0, None)
    end = np.maximum(end, start)

    windows = features[["chrom", "strand", "feature_id", "gene_id", "gene_name"]].copy()
    windows.insert(1, "start", start.astype(np.int64))
    windows.insert(2, "end", end.astype(np.int64))
    return windows[["chrom", "start", "end", "strand", "feature_id", "gene_id", "gene_name"]]


def _last_exon_boundaries(model: GeneModel, feature_type: str, features: pd.DataFrame) -> pd.Series:
    # 5' boundary (first base, strand-aware) of the most 3' exon per feature
    exons = model.feature_exons(feature_type)
    strand = features.set_index("feature_id")["strand"]
    exons = exons[exons["feature_id"].isin(strand.index)]
    plus_ex = exons[exons["strand"] == "+"]
    minus_ex = exons[exons["strand"] == "-"]
    last_plus = plus_ex.sort_values("end").groupby("feature_id")["start"].last()
    last_minus = minus_ex.sort_values("start").groupby("feature_id")["end"].first() - 1
    last = pd.concat([last_plus, last_minus])
    return last[~last.index.duplicated()]


def count_features(
    experiment: TSRExperiment,
    annotation: Union[str, Path, pd.DataFrame, GeneModel],
    feature_type: str = "gene",
    upstream: int = 1000,
    downstream: int = 100,
    exclude_promoter_proximal: bool = False,
    truncate_last_exon: bool = False,
) -> TSRExperiment:
    """Count TSS signal per feature for every sample.

    TSS scores falling inside a feature's window (see :func:`feature_windows`)
    on the same strand are summed. A TSS inside several overlapping windows
    counts toward each of them. Every feature gets a row, with 0 for empty
    windows.

    Results are stored in ``experiment.counts["features"]``: the raw matrix
    (features x samples) and per-sample raw and CPM tables.

    Examples
    --------
    >>> count_features(exp, "genes.gtf", exclude_promoter_proximal=True,
    ...                truncate_last_exon=True)
    >>> exp.get_matrix("features").head()
    """
    model = load_gene_model(annotation)
    windows = feature_windows(
        model,
        feature_type,
        upstream=upstream,
        downstream=downstream,
        exclude_promoter_proximal=exclude_promoter_proximal,
        truncate_last_exon=truncate_last_exon,
    )
    nonempty = windows[windows["end"] > windows["start"]]
    feature_ids = pd.Index(windows["feature_id"].unique(), name="feature_id")

    matrix = pd.DataFrame(index=feature_ids)
    for sample, tss in experiment.source_tables("tss").items():
        if nonempty.empty or tss.empty:
            matrix[sample] = 0.0
            continue
        ov = bf.overlap(
            nonempty[["chrom", "start", "end", "strand", "feature_id"]],
            tss[["chrom", "start", "end", "strand", "score"]],
            how="inner",
            on=["strand"],
            suffixes=("", "_tss"),
        )
        matrix[sample] = ov.groupby("feature_id")["score_tss"].sum().astype(float)
    matrix = matrix.fillna(0.0)

    cpm_matrix = cpm(matrix)
    count_set = CountSet(raw_matrix=matrix)
    for sample in matrix.columns:
        count_set.raw[sample] = matrix[sample].rename("score").reset_index()
        count_set.cpm[sample] = cpm_matrix[sample].rename("score").reset_index()
    experiment.counts["features"] = count_set

    logger.info(
        f"Counted {matrix.shape[0]} {feature_type} features in {matrix.shape[1]} samples "
        f"(exclude_promoter_proximal={exclude_promoter_proximal}, "
        f"truncate_last_exon={truncate_last_exon})"
    )
    return experiment


def detect_features(
    experiment: TSRExperiment,
    data_type: str = "tss",
    threshold: float = 1.0,
) -> pd.DataFrame:
    """Number of features with TSS (or TSR) signal in each sample.

    Positions with a score of at least ``threshold`` annotated as Promoter,
    Exon or Intron mark their nearest feature as detected. A feature is
    promoter-proximal when at least one of its positions is in the promoter
    window.

    Returns
    -------
    pd.DataFrame
        Indexed by sample with columns with_promoter, without_promoter,
        total and fraction_with_promoter.
    """
    rows = {}
    for sample, df in experiment.get_annotated(data_type, "raw").items():
        hits = df[(df["score"] >= threshold) & df["annotation"].isin(GENIC_CATEGORIES)]
        hits = hits.dropna(subset=["feature_id"])
        promoter = hits.groupby("feature_id")["annotation"].apply(lambda a: (a == "Promoter").any())
        n_with = int(promoter.sum())
        n_total = int(promoter.size)
        rows[sample] = {
            "with_promoter": n_with,
            "without_promoter": n_total - n_with,
            "total": n_total,
            "fraction_with_promoter": n_with / n_total if n_total else np.nan,
        }
    out = pd.DataFrame.from_dict(rows, orient="index")
    out.index.name = "sample"
    return out
