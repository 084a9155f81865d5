"""
Annotation of TSSs and TSRs against gene and transcript models.

Positions are assigned to the nearest same-strand feature TSS and placed in
a genomic category: Promoter (within the window around the feature TSS),
Exon, Intron, Downstream (close to a feature 3' end) or Distal Intergenic.

Functions
---------
build_gene_model
    Build gene, transcript and exon tables from a parsed GTF.
load_gene_model
    Accept a path, parsed GTF or GeneModel and return a GeneModel.
annotate_positions
    Annotate an interval table.
annotate_features
    Annotate the raw and CPM tables stored in an experiment.
genomic_distribution
    Per-sample counts of positions in each genomic category.

Classes
-------
GeneModel
    Gene, transcript and exon tables of an annotation.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import bioframe as bf
import numpy as np
import pandas as pd

from .experiment import TSRExperiment, check_data_type
from .io import read_gtf

logger = logging.getLogger(__name__)

FEATURE_TYPES = ("gene", "transcript")
ANNOTATION_CATEGORIES = ["Promoter", "Exon", "Intron", "Downstream", "Distal Intergenic"]


@dataclass
class GeneModel:
    """Gene, transcript and exon tables (0-based half-open)."""

    #: chrom, start, end, strand, gene_id, gene_name
    genes: pd.DataFrame
    #: chrom, start, end, strand, transcript_id, gene_id, gene_name
    transcripts: pd.DataFrame
    #: chrom, start, end, strand, transcript_id, gene_id
    exons: pd.DataFrame

    def features(self, feature_type: str = "gene") -> pd.DataFrame:
        """Feature table with ``feature_id`` and 1-bp ``tss`` columns."""
        feature_type = _check_feature_type(feature_type)
        if feature_type == "gene":
            df = self.genes.copy()
            df["feature_id"] = df["gene_id"]
        else:
            df = self.transcripts.copy()
            df["feature_id"] = df["transcript_id"]
        df["tss"] = np.where(df["strand"] == "+", df["start"], df["end"] - 1).astype(np.int64)
        return df.drop_duplicates("feature_id").reset_index(drop=True)

    def feature_exons(self, feature_type: str = "gene") -> pd.DataFrame:
        """Exons keyed by ``feature_id`` of the requested level."""
        feature_type = _check_feature_type(feature_type)
        key = "gene_id" if feature_type == "gene" else "transcript_id"
        exons = self.exons.copy()
        exons["feature_id"] = exons[key]
        return exons.dropna(subset=["feature_id"]).reset_index(drop=True)


def _check_feature_type(feature_type: str) -> str:
    if feature_type not in FEATURE_TYPES:
        raise ValueError(f"Unknown feature_type='{feature_type}'. Use 'gene' or 'transcript'.")
    return feature_type


def build_gene_model(gtf: pd.DataFrame) -> GeneModel:
    """Build a :class:`GeneModel` from a table returned by :func:`~tsr_explorer.io.read_gtf`.

    Transcripts are derived from exon spans when the annotation has no
    transcript records, and genes from transcript spans when it has no gene
    records. Missing gene names fall back to gene ids.
    """
    base_cols = ["chrom", "start", "end", "strand"]

    exons = gtf.loc[gtf["feature"] == "exon", base_cols + ["transcript_id", "gene_id"]].copy()
    if exons.empty:
        raise ValueError("Annotation has no exon records.")

    transcripts = gtf.loc[
        gtf["feature"] == "transcript", base_cols + ["transcript_id", "gene_id", "gene_name"]
    ].copy()
    if transcripts.empty:
        names = gtf.loc[gtf["feature"] == "exon"].groupby("transcript_id")["gene_name"].first()
        transcripts = _span(exons, "transcript_id", extra=["gene_id"])
        transcripts["gene_name"] = transcripts["transcript_id"].map(names)

    genes = gtf.loc[gtf["feature"] == "gene", base_cols + ["gene_id", "gene_name"]].copy()
    if genes.empty:
        genes = _span(transcripts, "gene_id", extra=["gene_name"])

    genes["gene_name"] = genes["gene_name"].fillna(genes["gene_id"])
    gene_names = genes.set_index("gene_id")["gene_name"]
    transcripts["gene_name"] = transcripts["gene_name"].fillna(transcripts["gene_id"].map(gene_names))

    model = GeneModel(
        genes=bf.sort_bedframe(genes.dropna(subset=["gene_id"])).reset_index(drop=True),
        transcripts=bf.sort_bedframe(transcripts.dropna(subset=["transcript_id"])).reset_index(drop=True),
        exons=bf.sort_bedframe(exons).reset_index(drop=True),
    )
    logger.info(
        f"Gene model: {len(model.genes)} genes, {len(model.transcripts)} transcripts, "
        f"{len(model.exons)} exons"
    )
    return model


def _span(df: pd.DataFrame, key: str, extra: list[str]) -> pd.DataFrame:
    agg = {"chrom": "first", "start": "min", "end": "max", "strand": "first"}
    agg.update({c: "first" for c in extra})
    return df.dropna(subset=[key]).groupby(key, as_index=False).agg(agg)


def load_gene_model(annotation: Union[str, Path, pd.DataFrame, GeneModel]) -> GeneModel:
    if isinstance(annotation, GeneModel):
        return annotation
    if isinstance(annotation, pd.DataFrame):
        return build_gene_model(annotation)
    return build_gene_model(read_gtf(annotation))


def annotate_positions(
    df: pd.DataFrame,
    annotation: Union[str, Path, pd.DataFrame, GeneModel],
    feature_type: str = "gene",
    upstream: int = 1000,
    downstream: int = 100,
    downstream_window: int = 3000,
) -> pd.DataFrame:
    """Annotate intervals relative to the nearest same-strand feature TSS.

    Parameters
    ----------
    df : pd.DataFrame
        Interval table with chrom, start, end and strand columns.
    annotation : path, parsed GTF or GeneModel
        Gene annotation.
    feature_type : {"gene", "transcript"}, default "gene"
        Annotate against genes or transcripts.
    upstream : int, default 1000
        Bases upstream of a feature TSS counted as promoter.
    downstream : int, default 100
        Bases downstream of a feature TSS counted as promoter.
    downstream_window : int, default 3000
        Bases past a feature 3' end labelled Downstream.

    Returns
    -------
    pd.DataFrame
        Input columns plus:
        - annotation: genomic category
        - feature_id, gene_id, gene_name (and transcript_id for transcripts)
        - feature_start, feature_end, feature_tss: nearest feature coordinates
        - distance_to_tss: signed distance to the feature TSS, negative
          upstream, 0 when the interval covers the TSS

    Notes
    -----
    Positions without a same-strand feature on their chromosome are
    labelled Distal Intergenic with missing feature columns.

    Examples
    --------
    >>> ann = annotate_positions(tss_df, "genes.gtf", upstream=1000, downstream=100)
    >>> ann["annotation"].value_counts()
    """
    feature_type = _check_feature_type(feature_type)
    if upstream < 0 or downstream < 0:
        raise ValueError("upstream and downstream must be non-negative.")
    model = load_gene_model(annotation)
    features = model.features(feature_type)

    pos = df.copy().reset_index(drop=True)
    pos["_row"] = np.arange(len(pos))
    intervals = pos[["chrom", "start", "end", "strand", "_row"]]

    nearest = _nearest_feature_tss(intervals, features)
    info_cols = ["feature_id", "gene_id", "gene_name", "start", "end", "tss"]
    if feature_type == "transcript":
        info_cols.insert(1, "transcript_id")
    info = features[info_cols].rename(
        columns={"start": "feature_start", "end": "feature_end", "tss": "feature_tss"}
    )
    for col in [c for c in info.columns if c in pos.columns]:
        pos = pos.drop(columns=col)
    out = pos.merge(nearest, on="_row", how="left").merge(info, on="feature_id", how="left")
    out = out.sort_values("_row").reset_index(drop=True)

    tss = out["feature_tss"].to_numpy(dtype=float)
    lo = out["start"].to_numpy(dtype=float)
    hi = out["end"].to_numpy(dtype=float) - 1
    d_plus = np.where(hi < tss, hi - tss, np.where(lo > tss, lo - tss, 0.0))
    dist = np.where(out["strand"].to_numpy() == "+", d_plus, -d_plus)
    dist[np.isnan(tss)] = np.nan
    out["distance_to_tss"] = dist

    in_promoter = (dist >= -upstream) & (dist <= downstream)
    in_exon = _overlaps(intervals, model.exons)
    in_body = _overlaps(intervals, model.transcripts)
    in_downstream = _overlaps(intervals, _downstream_windows(model.transcripts, downstream_window))

    out["annotation"] = np.select(
        [in_promoter, in_exon, in_body, in_downstream],
        ANNOTATION_CATEGORIES[:4],
        default="Distal Intergenic",
    )
    return out.drop(columns=["_row"])


def _nearest_feature_tss(intervals: pd.DataFrame, features: pd.DataFrame) -> pd.DataFrame:
    points = features[["chrom", "tss", "strand", "feature_id"]].copy()
    points["start"] = points["tss"]
    points["end"] = points["tss"] + 1

    parts = []
    for strand in ("+", "-"):
        p = intervals.loc[intervals["strand"] == strand, ["chrom", "start", "end", "_row"]]
        t = points.loc[points["strand"] == strand, ["chrom", "start", "end", "feature_id"]]
        if p.empty or t.empty:
            continue
        closest = bf.closest(p, t, suffixes=("", "_feat"))
        parts.append(closest[["_row", "feature_id_feat"]])

    if not parts:
        return pd.DataFrame({"_row": pd.Series(dtype=np.int64), "feature_id": pd.Series(dtype=object)})
    nearest = pd.concat(parts, ignore_index=True).dropna(subset=["feature_id_feat"])
    nearest = nearest.drop_duplicates("_row").rename(columns={"feature_id_feat": "feature_id"})
    nearest["_row"] = nearest["_row"].astype(np.int64)
    return nearest


def _overlaps(intervals: pd.DataFrame, regions: pd.DataFrame) -> np.ndarray:
    if intervals.empty or regions.empty:
        return np.zeros(len(intervals), dtype=bool)
    ov = bf.overlap(
        intervals,
        regions[["chrom", "start", "end", "strand"]],
        how="inner",
        on=["strand"],
        suffixes=("", "_reg"),
    )
    return intervals["_row"].isin(ov["_row"]).to_numpy()


def _downstream_windows(features: pd.DataFrame, width: int) -> pd.DataFrame:
    plus = features["strand"] == "+"
    windows = features[["chrom", "start", "end", "strand"]].copy()
    windows["start"] = np.where(plus, features["end"], features["start"] - width)
    windows["end"] = np.where(plus, features["end"] + width, features["start"])
    windows["start"] = windows["start"].clip(lower=0)
    return windows[windows["end"] > windows["start"]]


def annotate_features(
    experiment: TSRExperiment,
    annotation: Union[str, Path, pd.DataFrame, GeneModel],
    data_type: str = "tss",
    feature_type: str = "gene",
    upstream: int = 1000,
    downstream: int = 100,
) -> TSRExperiment:
    """Annotate the raw and CPM tables of TSSs or TSRs.

    Results are stored in ``experiment.annotated[data_type]["raw"|"cpm"]``.
    CPM tables are created first when count normalization has not run yet.
    """
    from .preprocess import count_normalization

    data_type = check_data_type(data_type, ("tss", "tsr"))
    model = load_gene_model(annotation)

    if data_type not in experiment.counts or not experiment.counts[data_type].raw:
        count_normalization(experiment, data_type)

    for kind in ("raw", "cpm"):
        tables = experiment.get_tables(data_type, kind)
        annotated = {
            sample: annotate_positions(df, model, feature_type, upstream, downstream)
            for sample, df in tables.items()
        }
        experiment.set_annotated(data_type, kind, annotated)

    logger.info(f"Annotated {data_type.upper()}s of {len(tables)} samples at {feature_type} level")
    return experiment


def genomic_distribution(
    experiment: TSRExperiment,
    data_type: str = "tss",
    threshold: Optional[float] = None,
) -> pd.DataFrame:
    """Count annotated positions per genomic category and sample.

    Returns
    -------
    pd.DataFrame
        Long table with columns sample, annotation, count, fraction. The
        annotation column is an ordered categorical.
    """
    rows = []
    for sample, df in experiment.get_annotated(data_type, "raw").items():
        if threshold is not None:
            df = df[df["score"] >= threshold]
        counts = df["annotation"].value_counts().reindex(ANNOTATION_CATEGORIES, fill_value=0)
        total = counts.sum()
        for category, n in counts.items():
            rows.append(
                {
                    "sample": sample,
                    "annotation": category,
                    "count": int(n),
                    "fraction": n / total if total > 0 else np.nan,
                }
            )
    out = pd.DataFrame(rows)
    out["annotation"] = pd.Categorical(out["annotation"], categories=ANNOTATION_CATEGORIES, ordered=True)
    return out
