"""
Genomic sequence around TSSs.
"""
from __future__ import annotations

import logging
from itertools import product
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

import numpy as np
import pandas as pd
from Bio import SeqIO
from Bio.Seq import Seq

from .experiment import TSRExperiment

logger = logging.getLogger(__name__)

DINUCLEOTIDES = ["".join(p) for p in product("ACGT", repeat=2)]


def load_genome(fasta: Union[str, Path]):
    """Index a FASTA genome without loading it into memory.

    Returns a read-only mapping of record id to ``SeqRecord``.
    """
    fasta = Path(fasta)
    if not fasta.exists():
        raise FileNotFoundError(fasta)
    genome = SeqIO.index(str(fasta), "fasta")
    logger.info(f"Indexed {len(genome)} sequences from {fasta}")
    return genome


def _chrom_seq(genome: Mapping, chrom: str) -> Optional[Seq]:
    if chrom not in genome:
        return None
    record = genome[chrom]
    seq = getattr(record, "seq", record)
    return seq if isinstance(seq, Seq) else Seq(str(seq))


def tss_sequences(
    experiment: TSRExperiment,
    genome: Mapping,
    distance: int = 10,
    threshold: Optional[float] = None,
) -> Dict[str, pd.DataFrame]:
    """Sequence of ``2 * distance + 1`` bases centred on every TSS.

    Minus-strand sequences are reverse-complemented so every sequence reads
    5' to 3' with the TSS at index ``distance``. TSSs whose window runs off
    the chromosome, or whose chromosome is not in the genome, are skipped.

    Parameters
    ----------
    experiment : TSRExperiment
        Experiment with TSS tables.
    genome : mapping
        Chromosome name to ``SeqRecord``, ``Seq`` or str, e.g. from
        :func:`load_genome`.
    distance : int, default 10
        Bases on each side of the TSS.
    threshold : float or None
        Minimum TSS score.

    Returns
    -------
    dict of str to pd.DataFrame
        Per sample: chrom, start, end, strand, score and sequence.
    """
    if distance < 1:
        raise ValueError("distance must be at least 1.")

    result = {}
    for sample, tss in experiment.source_tables("tss").items():
        if threshold is not None:
            tss = tss[tss["score"] >= threshold]
        seqs = []
        keep = []
        for chrom, grp in tss.groupby("chrom", sort=False):
            chrom_seq = _chrom_seq(genome, chrom)
            if chrom_seq is None:
                continue
            n = len(chrom_seq)
            for idx, start, strand in zip(grp.index, grp["start"], grp["strand"]):
                lo = int(start) - distance
                hi = int(start) + distance + 1
                if lo < 0 or hi > n:
                    continue
                s = chrom_seq[lo:hi]
                if strand == "-":
                    s = s.reverse_complement()
                seqs.append(str(s).upper())
                keep.append(idx)

        out = tss.loc[keep, ["chrom", "start", "end", "strand", "score"]].copy()
        out["sequence"] = seqs
        result[sample] = out.reset_index(drop=True)
        skipped = len(tss) - len(out)
        if skipped:
            logger.info(f"{sample}: skipped {skipped} TSSs without a full sequence window")
    return result


def dinucleotide_frequencies(sequences: Dict[str, pd.DataFrame]) -> pd.DataFrame:
    """Frequency of the -1/+1 dinucleotide at TSSs, per sample.

    The dinucleotide is the base before the TSS followed by the TSS base.
    Dinucleotides containing N are ignored.

    Returns
    -------
    pd.DataFrame
        Long table with sample, dinucleotide, count and frequency; all 16
        dinucleotides are listed for every sample.
    """
    rows = []
    for sample, df in sequences.items():
        seq = df["sequence"]
        if seq.empty:
            counts = pd.Series(0, index=DINUCLEOTIDES)
        else:
            center = seq.str.len().iloc[0] // 2
            dinuc = seq.str.slice(center - 1, center + 1)
            counts = dinuc[dinuc.isin(DINUCLEOTIDES)].value_counts().reindex(DINUCLEOTIDES, fill_value=0)
        total = counts.sum()
        for d, n in counts.items():
            rows.append(
                {
                    "sample": sample,
                    "dinucleotide": d,
                    "count": int(n),
                    "frequency": n / total if total > 0 else np.nan,
                }
            )
    return pd.DataFrame(rows, columns=["sample", "dinucleotide", "count", "frequency"])
