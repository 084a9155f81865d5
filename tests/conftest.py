import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from tsr_explorer import read_annotation, tsr_explorer

# geneA: + strand, 1-based 1001-2000, exons 1001-1200 and 1501-2000
# geneB: - strand, 1-based 5001-6000, single exon
GTF_LINES = [
    ("chr1", "gene", 1001, 2000, "+", 'gene_id "geneA"; gene_name "GA";'),
    ("chr1", "transcript", 1001, 2000, "+", 'gene_id "geneA"; transcript_id "txA"; gene_name "GA";'),
    ("chr1", "exon", 1001, 1200, "+", 'gene_id "geneA"; transcript_id "txA"; gene_name "GA";'),
    ("chr1", "exon", 1501, 2000, "+", 'gene_id "geneA"; transcript_id "txA"; gene_name "GA";'),
    ("chr1", "gene", 5001, 6000, "-", 'gene_id "geneB"; gene_name "GB";'),
    ("chr1", "transcript", 5001, 6000, "-", 'gene_id "geneB"; transcript_id "txB"; gene_name "GB";'),
    ("chr1", "exon", 5001, 6000, "-", 'gene_id "geneB"; transcript_id "txB"; gene_name "GB";'),
]


def tss_frame(rows, chrom="chr1"):
    """(start, strand, score) tuples -> single-base TSS table."""
    df = pd.DataFrame(rows, columns=["start", "strand", "score"])
    df.insert(0, "chrom", chrom)
    df.insert(2, "end", df["start"] + 1)
    return df[["chrom", "start", "end", "strand", "score"]]


@pytest.fixture
def gtf_path(tmp_path):
    path = tmp_path / "genes.gtf"
    lines = ["#test annotation"]
    for chrom, feature, start, end, strand, attrs in GTF_LINES:
        lines.append("\t".join([chrom, "test", feature, str(start), str(end), ".", strand, ".", attrs]))
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def gene_model(gtf_path):
    return read_annotation(gtf_path)


@pytest.fixture
def counting_tss():
    return tss_frame(
        [
            (500, "+", 1),
            (1000, "+", 2),
            (1050, "+", 4),
            (1300, "+", 8),
            (1600, "+", 16),
            (5999, "-", 32),
            (5500, "-", 64),
        ]
    )


@pytest.fixture
def two_sample_experiment():
    s1 = tss_frame([(900, "+", 2), (1000, "+", 5), (1050, "+", 5), (5999, "-", 3), (6050, "-", 7)])
    s2 = tss_frame([(1000, "+", 10), (1300, "+", 1), (5500, "-", 4), (5999, "-", 12)])
    sheet = pd.DataFrame({"condition": ["ctrl", "ko"]}, index=pd.Index(["S1", "S2"], name="sample_name"))
    return tsr_explorer(tss={"S1": s1, "S2": s2}, sample_sheet=sheet)


def simulate_counts(n_features=200, n_up=20, fold=4.0, alpha=0.05, seed=0):
    """NB counts for 3 vs 3 samples; the first ``n_up`` features go up ``fold`` x in group b."""
    rng = np.random.default_rng(seed)
    base = rng.uniform(100, 1000, size=n_features)
    size_factors = np.array([1.0, 1.2, 0.8, 1.0, 1.1, 0.9])
    groups = ["a", "a", "a", "b", "b", "b"]
    mu = np.outer(base, size_factors)
    mu[:n_up, 3:] *= fold
    n = 1.0 / alpha
    counts = rng.negative_binomial(n, n / (n + mu))
    samples = [f"{g}{i % 3 + 1}" for i, g in enumerate(groups)]
    index = pd.Index([f"chr1_{i * 100}_{i * 100 + 50}_+" for i in range(n_features)], name="position")
    return pd.DataFrame(counts.astype(float), index=index, columns=samples), groups


@pytest.fixture(scope="session")
def de_counts():
    return simulate_counts()
