"""
Container for TSS/TSR data and everything derived from it.

A :class:`TSRExperiment` holds the per-sample TSS and TSR tables and the
slots filled by the analysis steps: count sets (raw/CPM tables, count
matrices, TMM factors), annotated tables and dominant TSS calls.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from os import PathLike
from typing import Dict, List, Optional, Union

import pandas as pd

logger = logging.getLogger(__name__)

DATA_TYPES = ("tss", "tsr", "features")
COUNT_KINDS = ("raw", "cpm")


class SlotError(KeyError):
    """Raised when a slot is read before the step that fills it has run."""
    pass


def check_data_type(data_type: str, allowed: tuple[str, ...] = DATA_TYPES) -> str:
    data_type = str(data_type).lower()
    if data_type not in allowed:
        raise ValueError(f"Unknown data_type='{data_type}'. Use one of {list(allowed)}.")
    return data_type


@dataclass
class CountSet:
    """Counts of one data type."""

    #: Per-sample tables with raw scores.
    raw: Dict[str, pd.DataFrame] = field(default_factory=dict)
    #: Per-sample tables with counts-per-million scores.
    cpm: Dict[str, pd.DataFrame] = field(default_factory=dict)
    #: Position-by-sample raw count matrix.
    raw_matrix: Optional[pd.DataFrame] = None
    #: Position-by-sample TMM-normalized CPM matrix.
    tmm_matrix: Optional[pd.DataFrame] = None
    #: TMM normalization factors per sample.
    norm_factors: Optional[pd.Series] = None


@dataclass
class TSRExperiment:
    """TSS and TSR data for a set of samples.

    Attributes
    ----------
    tss : dict of str to pd.DataFrame
        Per-sample TSS tables (chrom, start, end, strand, score).
    tsr : dict of str to pd.DataFrame
        Per-sample TSR tables (chrom, start, end, strand, score, ...).
    sample_sheet : pd.DataFrame or None
        Sample annotations indexed by sample name.
    counts : dict of str to CountSet
        Count sets keyed by data type ("tss", "tsr", "features").
    annotated : dict
        ``annotated[data_type][kind][sample]`` annotated tables.
    dominant : dict
        ``dominant[feature_type][sample]`` dominant TSS tables.
    """

    tss: Dict[str, pd.DataFrame] = field(default_factory=dict)
    tsr: Dict[str, pd.DataFrame] = field(default_factory=dict)
    sample_sheet: Optional[pd.DataFrame] = None
    counts: Dict[str, CountSet] = field(default_factory=dict)
    annotated: Dict[str, Dict[str, Dict[str, pd.DataFrame]]] = field(default_factory=dict)
    dominant: Dict[str, Dict[str, pd.DataFrame]] = field(default_factory=dict)

    @classmethod
    def from_sample_sheet(cls, sample_sheet: Union[PathLike, str, pd.DataFrame]) -> "TSRExperiment":
        """Build an experiment by reading every file listed in a sample sheet.

        The sheet needs ``sample_name`` and ``file_1`` columns; an optional
        ``data_type`` column ("tss" or "tsr", default "tss") selects the
        reader for each row.
        """
        from .io import read_sample_sheet, read_tsr_table, read_tss_table

        if isinstance(sample_sheet, pd.DataFrame):
            sheet = sample_sheet.copy()
        else:
            sheet = read_sample_sheet(sample_sheet)

        exp = cls(sample_sheet=sheet)
        for sample, row in sheet.iterrows():
            data_type = row.get("data_type", "tss")
            data_type = "tss" if pd.isna(data_type) else str(data_type).lower()
            if data_type == "tsr":
                exp.tsr[sample] = read_tsr_table(row["file_1"])
            else:
                exp.tss[sample] = read_tss_table(row["file_1"])
        logger.info(f"Loaded {len(exp.tss)} TSS and {len(exp.tsr)} TSR samples")
        return exp

    def samples(self, data_type: str = "tss") -> List[str]:
        data_type = check_data_type(data_type)
        if data_type == "tss":
            return list(self.tss)
        if data_type == "tsr":
            return list(self.tsr)
        return list(self.get_matrix("features").columns)

    def source_tables(self, data_type: str) -> Dict[str, pd.DataFrame]:
        data_type = check_data_type(data_type, ("tss", "tsr"))
        tables = self.tss if data_type == "tss" else self.tsr
        if not tables:
            raise SlotError(f"No {data_type.upper()} data loaded in experiment.")
        return tables

    def get_counts(self, data_type: str) -> CountSet:
        data_type = check_data_type(data_type)
        if data_type not in self.counts:
            raise SlotError(
                f"No counts for '{data_type}'. Run count_normalization/count_matrix "
                "(or count_features for features) first."
            )
        return self.counts[data_type]

    def get_tables(self, data_type: str, kind: str = "raw") -> Dict[str, pd.DataFrame]:
        kind = check_data_type(kind, COUNT_KINDS)
        tables = getattr(self.get_counts(data_type), kind)
        if not tables:
            raise SlotError(f"No {kind} tables for '{data_type}'. Run count_normalization first.")
        return tables

    def get_matrix(self, data_type: str, kind: str = "raw") -> pd.DataFrame:
        counts = self.get_counts(data_type)
        if kind == "raw":
            matrix = counts.raw_matrix
            step = "count_matrix"
        elif kind == "tmm":
            matrix = counts.tmm_matrix
            step = "tmm_normalize"
        else:
            raise ValueError(f"Unknown kind='{kind}'. Use 'raw' or 'tmm'.")
        if matrix is None:
            raise SlotError(f"No {kind} matrix for '{data_type}'. Run {step} first.")
        return matrix

    def get_annotated(self, data_type: str, kind: str = "raw") -> Dict[str, pd.DataFrame]:
        data_type = check_data_type(data_type)
        try:
            return self.annotated[data_type][kind]
        except KeyError:
            raise SlotError(
                f"No annotated {kind} tables for '{data_type}'. Run annotate_features first."
            ) from None

    def set_annotated(self, data_type: str, kind: str, tables: Dict[str, pd.DataFrame]) -> None:
        self.annotated.setdefault(check_data_type(data_type), {})[kind] = tables


def tsr_explorer(
    tss: Optional[Dict[str, pd.DataFrame]] = None,
    tsr: Optional[Dict[str, pd.DataFrame]] = None,
    sample_sheet: Optional[pd.DataFrame] = None,
) -> TSRExperiment:
    """Create a :class:`TSRExperiment` from in-memory tables.

    Tables are copied and coerced to the canonical interval layout.

    Examples
    --------
    >>> tss = pd.DataFrame({"chrom": ["chr1"], "start": [99], "end": [100],
    ...                     "strand": ["+"], "score": [5]})
    >>> exp = tsr_explorer(tss={"S1": tss})
    >>> exp.samples("tss")
    ['S1']
    """
    from .io import as_interval_frame

    exp = TSRExperiment(sample_sheet=sample_sheet)
    for name, df in (tss or {}).items():
        exp.tss[str(name)] = as_interval_frame(df)
    for name, df in (tsr or {}).items():
        exp.tsr[str(name)] = as_interval_frame(df)
    return exp
