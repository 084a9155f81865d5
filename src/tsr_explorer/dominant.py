"""
Dominant TSS selection.

The dominant TSS of a gene, transcript or TSR is its highest-scoring TSS.
For genes and transcripts only TSSs inside the promoter window of the
annotated feature are considered; for TSRs every TSS of the same sample
overlapping the TSR.
"""
from __future__ import annotations

import logging
from typing import Dict, Optional

import bioframe as bf
import numpy as np
import pandas as pd

from .experiment import SlotError, TSRExperiment
from .preprocess import make_position_id

logger = logging.getLogger(__name__)

TIE_MODES = ("all", "first", "drop")


def select_dominant(df: pd.DataFrame, key: str, ties: str = "all") -> pd.DataFrame:
    """Pick the highest-scoring row of every ``key`` group.

    Parameters
    ----------
    df : pd.DataFrame
        Positions with chrom, start, end, strand, score and ``key`` columns.
    key : str
        Grouping column.
    ties : {"all", "first", "drop"}, default "all"
        Handling of groups whose max score is shared: keep every tied
        position, keep the most 5' one, or discard the group.

    Returns
    -------
    pd.DataFrame
        Selected rows plus ``n_tied``, the number of positions sharing the
        max score in the group.

    Examples
    --------
    >>> df = pd.DataFrame({"gene": ["g", "g", "g"], "chrom": "chr1",
    ...                    "start": [10, 20, 30], "end": [11, 21, 31],
    ...                    "strand": "-", "score": [5, 5, 1]})
    >>> select_dominant(df, "gene", ties="first")["start"].tolist()
    [20]
    """
    if ties not in TIE_MODES:
        raise ValueError(f"Unknown ties='{ties}'. Use one of {list(TIE_MODES)}.")
    if df.empty:
        return df.assign(n_tied=pd.Series(dtype=np.int64))

    group_max = df.groupby(key)["score"].transform("max")
    top = df[df["score"] == group_max].copy()
    top["n_tied"] = top.groupby(key)["score"].transform("size").astype(np.int64)

    if ties == "first":
        top["_five_prime"] = np.where(top["strand"] == "+", top["start"], -top["start"])
        top = top.sort_values([key, "_five_prime"]).drop_duplicates(key).drop(columns="_five_prime")
    elif ties == "drop":
        top = top[top["n_tied"] == 1]

    return top.sort_values([key, "start"]).reset_index(drop=True)


def dominant_tss(
    experiment: TSRExperiment,
    feature_type: str = "gene",
    threshold: Optional[float] = None,
    upstream: int = 1000,
    downstream: int = 100,
    ties: str = "all",
) -> Dict[str, pd.DataFrame]:
    """Dominant TSS of every gene, transcript or TSR, per sample.

    Parameters
    ----------
    experiment : TSRExperiment
        For "gene"/"transcript" the TSSs must have been annotated at that
        level (:func:`~tsr_explorer.annotate.annotate_features`); for "tsr"
        the experiment needs TSS and TSR tables for the same samples.
    feature_type : {"gene", "transcript", "tsr"}, default "gene"
        What to select a dominant TSS for.
    threshold : float or None
        Minimum TSS score considered.
    upstream, downstream : int
        Promoter window around the feature TSS (gene/transcript only).
    ties : {"all", "first", "drop"}, default "all"
        See :func:`select_dominant`.

    Returns
    -------
    dict of str to pd.DataFrame
        Dominant TSSs per sample, also stored in
        ``experiment.dominant[feature_type]``.
    """
    if feature_type in ("gene", "transcript"):
        result = _dominant_in_features(experiment, feature_type, threshold, upstream, downstream, ties)
    elif feature_type == "tsr":
        result = _dominant_in_tsrs(experiment, threshold, ties)
    else:
        raise ValueError(f"Unknown feature_type='{feature_type}'. Use 'gene', 'transcript' or 'tsr'.")

    experiment.dominant[feature_type] = result
    logger.info(
        f"Dominant TSS per {feature_type}: "
        + ", ".join(f"{s}={len(df)}" for s, df in result.items())
    )
    return result


def _dominant_in_features(experiment, feature_type, threshold, upstream, downstream, ties):
    result = {}
    for sample, df in experiment.get_annotated("tss", "raw").items():
        if feature_type == "transcript" and "transcript_id" not in df.columns:
            raise SlotError(
                "TSSs were annotated at gene level; "
                "re-run annotate_features with feature_type='transcript'."
            )
        dist = df["distance_to_tss"].to_numpy(dtype=float)
        keep = df["feature_id"].notna().to_numpy() & (dist >= -upstream) & (dist <= downstream)
        sub = df[keep]
        if threshold is not None:
            sub = sub[sub["score"] >= threshold]
        result[sample] = select_dominant(sub, "feature_id", ties)
    return result


def _dominant_in_tsrs(experiment, threshold, ties):
    tss_tables = experiment.source_tables("tss")
    tsr_tables = experiment.source_tables("tsr")
    missing = sorted(set(tsr_tables) - set(tss_tables))
    if missing:
        raise SlotError(f"No TSS table for TSR samples {missing}.")

    result = {}
    for sample, tsrs in tsr_tables.items():
        tss = tss_tables[sample]
        if threshold is not None:
            tss = tss[tss["score"] >= threshold]
        regions = tsrs[["chrom", "start", "end", "strand"]].copy()
        regions["tsr_id"] = make_position_id(regions).values
        if regions.empty or tss.empty:
            empty = pd.DataFrame(columns=["tsr_id", "chrom", "start", "end", "strand", "score"])
            result[sample] = select_dominant(empty, "tsr_id", ties)
            continue
        ov = bf.overlap(
            tss[["chrom", "start", "end", "strand", "score"]],
            regions[["chrom", "start", "end", "strand", "tsr_id"]],
            how="inner",
            on=["strand"],
            suffixes=("", "_tsr"),
        )
        ov = ov.rename(columns={"tsr_id_tsr": "tsr_id"})
        ov = ov[["tsr_id", "chrom", "start", "end", "strand", "score"]]
        result[sample] = select_dominant(ov, "tsr_id", ties)
    return result
