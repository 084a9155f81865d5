"""
tsr-explorer: Analysis toolkit for transcription start sites and regions.

This package loads TSS/TSR signal from TSS-mapping experiments into a count
container, normalizes it, annotates positions against gene models, calls
dominant TSSs and TSRs, and tests for differential TSS usage with negative
binomial quasi-likelihood GLMs.

Modules
-------
io
    Loading of TSS/TSR tables, sample sheets and GTF/GFF annotations.
experiment
    The TSRExperiment count container.
preprocess
    Count matrices, CPM/TMM normalization and expression filtering.
annotate
    Annotation of positions relative to genes or transcripts.
counting
    Feature-level counting with promoter and last-exon window rules.
clustering
    Clustering of TSSs into TSRs.
dominant
    Dominant TSS selection per gene, transcript or TSR.
model
    Negative binomial quasi-likelihood GLMs (edgepython).
contrasts
    Contrast construction and QL F-tests.
differential
    Differential results tables and enrichment export.
stats
    FDR correction.
diagnostics
    Library summaries.
sequences
    Genomic sequences around TSSs.
plots
    Visualization functions.

Example
-------
>>> import tsr_explorer as te
>>> exp = te.TSRExperiment.from_sample_sheet("data/samples.tsv")
>>> te.count_matrix(exp, "tsr")
>>> te.tmm_normalize(exp, "tsr")
>>> fit = te.fit_de_model(exp, "tsr", groups=["ctrl", "ctrl", "ko", "ko"])
>>> res = te.differential_expression(fit, "tsr", compare_groups=["ctrl", "ko"])
"""

__version__ = "0.1.0"

# annotate
from .annotate import (
    ANNOTATION_CATEGORIES,
    GeneModel,
    annotate_features,
    annotate_positions,
    build_gene_model,
    genomic_distribution,
    load_gene_model,
)

# clustering
from .clustering import (
    cluster_tss,
    shape_index,
    tss_to_tsr,
)

# contrasts
from .contrasts import (
    make_contrast,
    ql_f_test,
)

# counting
from .counting import (
    count_features,
    detect_features,
    feature_windows,
)

# diagnostics
from .diagnostics import (
    library_summary,
    zero_fraction,
)

# differential
from .differential import (
    annotate_differential_tsrs,
    classify_changes,
    differential_expression,
    export_for_enrichment,
)

# dominant
from .dominant import (
    dominant_tss,
    select_dominant,
)

# experiment
from .experiment import (
    CountSet,
    SlotError,
    TSRExperiment,
    tsr_explorer,
)

# io
from .io import (
    as_interval_frame,
    read_annotation,
    read_gtf,
    read_sample_sheet,
    read_tsr_table,
    read_tss_table,
    write_table,
)

# model
from .model import (
    DEFit,
    build_design,
    fit_de_model,
)

# plots
from .plots import (
    plot_average,
    plot_correlation,
    plot_detected_features,
    plot_dinucleotide_frequencies,
    plot_genomic_distribution,
    plot_sequence_logo,
    plot_tss_heatmap,
    tss_heatmap_matrix,
    volcano_plot,
)

# preprocess
from .preprocess import (
    FilterSpec,
    TMMSpec,
    calc_norm_factors,
    count_matrix,
    count_normalization,
    cpm,
    filter_by_expr,
    make_position_id,
    split_position_id,
    tmm_normalize,
)

# sequences
from .sequences import (
    dinucleotide_frequencies,
    load_genome,
    tss_sequences,
)

# stats
from .stats import bh_fdr

__all__ = [
    # annotate
    "ANNOTATION_CATEGORIES",
    "GeneModel",
    "annotate_features",
    "annotate_positions",
    "build_gene_model",
    "genomic_distribution",
    "load_gene_model",
    # clustering
    "cluster_tss",
    "shape_index",
    "tss_to_tsr",
    # contrasts
    "make_contrast",
    "ql_f_test",
    # counting
    "count_features",
    "detect_features",
    "feature_windows",
    # diagnostics
    "library_summary",
    "zero_fraction",
    # differential
    "annotate_differential_tsrs",
    "classify_changes",
    "differential_expression",
    "export_for_enrichment",
    # dominant
    "dominant_tss",
    "select_dominant",
    # experiment
    "CountSet",
    "SlotError",
    "TSRExperiment",
    "tsr_explorer",
    # io
    "as_interval_frame",
    "read_annotation",
    "read_gtf",
    "read_sample_sheet",
    "read_tsr_table",
    "read_tss_table",
    "write_table",
    # model
    "DEFit",
    "build_design",
    "fit_de_model",
    # plots
    "plot_average",
    "plot_correlation",
    "plot_detected_features",
    "plot_dinucleotide_frequencies",
    "plot_genomic_distribution",
    "plot_sequence_logo",
    "plot_tss_heatmap",
    "tss_heatmap_matrix",
    "volcano_plot",
    # preprocess
    "FilterSpec",
    "TMMSpec",
    "calc_norm_factors",
    "count_matrix",
    "count_normalization",
    "cpm",
    "filter_by_expr",
    "make_position_id",
    "split_position_id",
    "tmm_normalize",
    # sequences
    "dinucleotide_frequencies",
    "load_genome",
    "tss_sequences",
    # stats
    "bh_fdr",
]
