from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import bioframe as bf
import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

INTERVAL_COLS = ["chrom", "start", "end", "strand"]
GTF_COLS = ["chrom", "source", "feature", "start", "end", "score", "strand", "frame", "attributes"]
CTSS_COLS = ["chrom", "pos", "strand", "score"]
GTF_ATTRIBUTES = ("gene_id", "gene_name", "transcript_id")


def as_interval_frame(df: pd.DataFrame, default_score: float = 1.0) -> pd.DataFrame:
    """
    Coerce a table to the canonical 0-based half-open interval layout.

    Required columns: chrom, start, end, strand. A missing ``score`` column
    is filled with ``default_score``. Extra columns are kept.
    """
    df = _norm_cols(df)
    missing = [c for c in INTERVAL_COLS if c not in df.columns]
    if missing:
        raise ValueError(f"Interval table missing required columns: {missing}")

    df["chrom"] = df["chrom"].astype(str)
    df["start"] = pd.to_numeric(df["start"], errors="raise").astype(np.int64)
    df["end"] = pd.to_numeric(df["end"], errors="raise").astype(np.int64)
    df["strand"] = df["strand"].astype(str)

    bad_strand = sorted(set(df["strand"]) - {"+", "-"})
    if bad_strand:
        raise ValueError(f"Strand must be '+' or '-', found {bad_strand}.")
    if (df["end"] <= df["start"]).any():
        raise ValueError("Interval table has rows with end <= start.")

    if "score" not in df.columns:
        df["score"] = default_score
    df["score"] = pd.to_numeric(df["score"], errors="raise").astype(float)

    return bf.sort_bedframe(df).reset_index(drop=True)


def read_tss_table(path: str | Path, fmt: Optional[str] = None) -> pd.DataFrame:
    """
    Reads a TSS file.

    Supported formats:
      bed  - chrom, start, end, name, score, strand (0-based)
      ctss - chrom, pos, strand, score (1-based single base)
    The format is taken from the suffix (.ctss / .ctss.txt) unless ``fmt`` is given.
    """
    path = Path(path)
    if fmt is None:
        fmt = "ctss" if ".ctss" in path.name.lower() else "bed"

    if fmt == "ctss":
        df = bf.read_table(path, names=CTSS_COLS, sep="\t", comment="#")
        df["start"] = df["pos"].astype(np.int64) - 1
        df["end"] = df["start"] + 1
        df = df.drop(columns=["pos"])
    elif fmt == "bed":
        df = bf.read_table(path, schema="bed6")
    else:
        raise ValueError(f"Unknown TSS format '{fmt}'. Use 'bed' or 'ctss'.")

    df = as_interval_frame(df[["chrom", "start", "end", "strand", "score"]])
    logger.info(f"Read {len(df)} TSSs from {path}")
    return df


def read_tsr_table(path: str | Path) -> pd.DataFrame:
    """
    Reads a BED6 TSR file (chrom, start, end, name, score, strand).
    """
    path = Path(path)
    df = bf.read_table(path, schema="bed6")
    df = as_interval_frame(df[["chrom", "start", "end", "strand", "score"]])
    logger.info(f"Read {len(df)} TSRs from {path}")
    return df


def read_sample_sheet(
    path: str | Path,
    sample_col: str = "sample_name",
    file_col: str = "file_1",
) -> pd.DataFrame:
    """
    Reads a sample sheet (.csv, .tsv/.txt or .xlsx).

    Expected columns:
      sample_name, file_1
    Optional columns:
      condition, data_type ("tss" or "tsr")
    Relative file paths are resolved against the sheet's directory.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix in {".xlsx", ".xls"}:
        sheet = pd.read_excel(path)
    elif suffix == ".csv":
        sheet = pd.read_csv(path)
    else:
        sheet = pd.read_csv(path, sep="\t")
    sheet = _norm_cols(sheet)

    missing = [c for c in (sample_col, file_col) if c not in sheet.columns]
    if missing:
        raise ValueError(f"{path} missing required columns: {missing}")

    sheet[sample_col] = sheet[sample_col].astype(str)
    if sheet[sample_col].duplicated().any():
        dups = sheet.loc[sheet[sample_col].duplicated(), sample_col].tolist()
        raise ValueError(f"{path} has duplicated sample names: {dups}")

    sheet[file_col] = [
        str(f if Path(f).is_absolute() else path.parent / f) for f in sheet[file_col].astype(str)
    ]
    sheet = sheet.set_index(sample_col)
    sheet.index.name = "sample_name"
    if file_col != "file_1":
        sheet = sheet.rename(columns={file_col: "file_1"})
    return sheet


def read_gtf(path: str | Path) -> pd.DataFrame:
    """
    Reads a GTF/GFF3 file into a 0-based interval table.

    The attribute column is parsed into gene_id, gene_name and
    transcript_id columns (GTF ``key "value";`` and GFF3 ``key=value;``
    styles are both accepted; GFF3 ``ID``/``Parent`` fill in missing ids).
    """
    path = Path(path)
    df = bf.read_table(path, names=GTF_COLS, sep="\t", comment="#")
    df["start"] = df["start"].astype(np.int64) - 1
    df["end"] = df["end"].astype(np.int64)

    attrs = df["attributes"].fillna("").astype(str)
    for key in GTF_ATTRIBUTES:
        df[key] = _extract_attribute(attrs, key)

    # GFF3 fallback: genes carry ID, transcripts ID + Parent, exons Parent
    if df["gene_id"].isna().all():
        ids = _extract_attribute(attrs, "ID")
        parents = _extract_attribute(attrs, "Parent")
        is_gene = df["feature"] == "gene"
        is_tx = df["feature"].isin(["transcript", "mRNA"])
        df.loc[is_gene, "gene_id"] = ids[is_gene]
        df.loc[is_tx, "transcript_id"] = ids[is_tx]
        df.loc[is_tx, "gene_id"] = parents[is_tx]
        tx2gene = df.loc[is_tx].set_index("transcript_id")["gene_id"].to_dict()
        is_exon = df["feature"] == "exon"
        df.loc[is_exon, "transcript_id"] = parents[is_exon]
        df.loc[is_exon, "gene_id"] = parents[is_exon].map(tx2gene)

    df["feature"] = df["feature"].replace({"mRNA": "transcript"})
    df = df.drop(columns=["attributes"])
    logger.info(f"Read {len(df)} annotation records from {path}")
    return df


def read_annotation(path: str | Path):
    """
    Reads a GTF/GFF3 file and builds a :class:`~tsr_explorer.annotate.GeneModel`.
    """
    from .annotate import build_gene_model

    return build_gene_model(read_gtf(path))


def write_table(df: pd.DataFrame, path: str | Path, index: bool = False) -> Path:
    """
    Writes a table as .csv or tab-separated (any other suffix).
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    sep = "," if path.suffix.lower() == ".csv" else "\t"
    df.to_csv(path, sep=sep, index=index)
    return path


def _extract_attribute(attrs: pd.Series, key: str) -> pd.Series:
    # key "value";  or  key=value;
    pattern = rf'(?:^|;)\s*{key}(?:\s+"([^"]*)"|=([^;]*))'
    found = attrs.str.extract(pattern)
    return found[0].fillna(found[1])


def _norm_col(c: object) -> str:
    # strip whitespace; preserve internal chars
    return str(c).strip()


def _norm_cols(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = [_norm_col(c) for c in df.columns]
    return df
