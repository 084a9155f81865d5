"""
Visualization of TSS/TSR data and differential results.

All functions return the matplotlib figure and axes (plus the plotted data
where it is computed here) and save the figure when ``outpath`` is given.

Functions
---------
volcano_plot
    log2 fold change vs significance of differential results.
plot_correlation
    Sample correlation heatmap of normalized counts.
tss_heatmap_matrix, plot_tss_heatmap
    TSS signal around annotated feature TSSs, one row per feature.
plot_sequence_logo
    Information-content logo of sequences around TSSs.
plot_dinucleotide_frequencies
    -1/+1 dinucleotide frequencies per sample.
plot_genomic_distribution
    Share of positions in each genomic category.
plot_average
    Average TSS density around annotated feature TSSs.
plot_detected_features
    Features detected with and without promoter-proximal signal.
"""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional, Sequence, Union

import logomaker
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from .differential import CHANGE_LABELS, classify_changes
from .experiment import TSRExperiment


def _save(fig, outpath: Optional[str | Path], dpi: int) -> None:
    if outpath is not None:
        outpath = Path(outpath)
        outpath.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(outpath, dpi=dpi, bbox_inches="tight")


def volcano_plot(
    df: pd.DataFrame,
    *,
    log2fc_cutoff: float = 1.0,
    fdr_cutoff: float = 0.05,
    title: Optional[str] = None,
    point_size: float = 8,
    outpath: Optional[str | Path] = None,
    dpi: int = 200,
):
    """Create a volcano plot of log2 fold change vs -log10 FDR.

    Points are coloured (viridis) as Decreased, Unchanged or Increased using
    the cutoffs, which are also drawn as dashed lines.

    Parameters
    ----------
    df : pd.DataFrame
        Results from :func:`~tsr_explorer.differential.differential_expression`.
    log2fc_cutoff : float, default 1.0
        Fold change cutoff; vertical lines at +/- the cutoff.
    fdr_cutoff : float, default 0.05
        FDR cutoff; horizontal line at -log10 of the cutoff.
    title : str or None
        Plot title.
    point_size : float, default 8
        Marker size.
    outpath : str, Path, or None
        If provided, save the figure to this path.
    dpi : int, default 200
        Resolution for saved figure.

    Returns
    -------
    fig : matplotlib.figure.Figure
    ax : matplotlib.axes.Axes

    Raises
    ------
    ValueError
        If the input DataFrame is empty.

    Examples
    --------
    >>> res = differential_expression(fit, "tsr", compare_groups=["ctrl", "ko"])
    >>> fig, ax = volcano_plot(res, log2fc_cutoff=1, fdr_cutoff=0.05,
    ...                        outpath="volcano.png")
    """
    if df.empty:
        raise ValueError("volcano_plot received an empty DataFrame.")

    change = classify_changes(df, log2fc_cutoff, fdr_cutoff)
    x = df["log2FC"].to_numpy(dtype=float)
    y = -np.log10(np.clip(df["FDR"].to_numpy(dtype=float), 1e-300, None))
    palette = dict(zip(CHANGE_LABELS, plt.get_cmap("viridis")(np.linspace(0, 0.9, len(CHANGE_LABELS)))))

    fig, ax = plt.subplots()
    for label in CHANGE_LABELS:
        sel = (change == label).to_numpy()
        ax.scatter(
            x[sel], y[sel], color=palette[label], s=point_size, alpha=0.8,
            label=f"{label} ({int(sel.sum())})",
        )

    ax.axhline(-np.log10(fdr_cutoff), color="gray", linestyle="--", linewidth=0.8)
    ax.axvline(+log2fc_cutoff, color="gray", linestyle="--", linewidth=0.8)
    ax.axvline(-log2fc_cutoff, color="gray", linestyle="--", linewidth=0.8)

    ax.set_xlabel(r"$\log_2$ fold change")
    ax.set_ylabel(r"$-\log_{10}$ FDR")
    ax.legend(title="Change", fontsize=8, frameon=False)
    if title:
        ax.set_title(title)

    ax.margins(0.05)
    fig.tight_layout()
    _save(fig, outpath, dpi)
    return fig, ax


def plot_correlation(
    experiment: TSRExperiment,
    data_type: str = "tss",
    kind: str = "tmm",
    method: str = "pearson",
    samples: Optional[Sequence[str]] = None,
    cmap: str = "viridis",
    annot: bool = True,
    title: Optional[str] = None,
    outpath: Optional[str | Path] = None,
    dpi: int = 200,
):
    """Sample correlation heatmap of log2 normalized counts.

    Parameters
    ----------
    experiment : TSRExperiment
        Experiment with a count matrix for ``data_type``.
    data_type : {"tss", "tsr", "features"}, default "tss"
        Count matrix to correlate.
    kind : {"tmm", "raw"}, default "tmm"
        TMM-normalized CPMs or raw counts.
    method : {"pearson", "spearman"}, default "pearson"
        Correlation method.
    samples : sequence of str or None
        Samples (and their order) to show.

    Returns
    -------
    fig, ax, corr
        Figure, axes and the correlation matrix.
    """
    matrix = experiment.get_matrix(data_type, kind)
    if samples is not None:
        matrix = matrix[list(samples)]
    if matrix.shape[1] < 2 or matrix.empty:
        raise ValueError("plot_correlation needs at least two samples with counts.")

    corr = np.log2(matrix + 1).corr(method=method)

    n = corr.shape[0]
    fig, ax = plt.subplots(figsize=(max(4, n * 0.7 + 2), max(3.5, n * 0.7 + 1)))
    sns.heatmap(
        corr,
        ax=ax,
        cmap=cmap,
        vmin=min(0.0, float(corr.values.min())),
        vmax=1.0,
        annot=annot,
        fmt=".2f",
        square=True,
        cbar_kws={"label": f"{method.capitalize()} r"},
    )
    ax.set_xlabel("")
    ax.set_ylabel("")
    if title:
        ax.set_title(title)
    fig.tight_layout()
    _save(fig, outpath, dpi)
    return fig, ax, corr


def tss_heatmap_matrix(
    experiment: TSRExperiment,
    sample: str,
    upstream: int = 1000,
    downstream: int = 1000,
    threshold: Optional[float] = None,
    kind: str = "raw",
) -> pd.DataFrame:
    """Signal matrix of one sample around annotated feature TSSs.

    Rows are features ordered by total signal (highest first); columns are
    positions from ``-upstream`` to ``+downstream`` relative to the feature
    TSS.
    """
    tables = experiment.get_annotated("tss", kind)
    if sample not in tables:
        raise KeyError(f"No annotated TSSs for sample {sample!r}")
    df = tables[sample].dropna(subset=["feature_id"])
    if threshold is not None:
        df = df[df["score"] >= threshold]
    dist = df["distance_to_tss"]
    df = df[(dist >= -upstream) & (dist <= downstream)]

    positions = np.arange(-upstream, downstream + 1)
    matrix = df.pivot_table(
        index="feature_id",
        columns="distance_to_tss",
        values="score",
        aggfunc="sum",
        fill_value=0.0,
    )
    matrix.columns = matrix.columns.astype(int)
    matrix = matrix.reindex(columns=positions, fill_value=0.0)
    order = matrix.sum(axis=1).sort_values(ascending=False).index
    return matrix.loc[order]


def plot_tss_heatmap(
    matrix: pd.DataFrame,
    *,
    bin_size: int = 10,
    log_transform: bool = True,
    cmap: str = "viridis",
    title: Optional[str] = None,
    outpath: Optional[str | Path] = None,
    dpi: int = 200,
):
    """Heatmap of a :func:`tss_heatmap_matrix`, binned along positions."""
    if matrix.empty:
        raise ValueError("plot_tss_heatmap received an empty matrix.")

    bins = (matrix.columns.to_numpy() - matrix.columns.min()) // bin_size
    binned = matrix.T.groupby(bins).sum().T
    values = np.log2(binned.to_numpy(dtype=float) + 1) if log_transform else binned.to_numpy(dtype=float)

    fig, ax = plt.subplots(figsize=(6, max(3, min(12, matrix.shape[0] * 0.02 + 2))))
    im = ax.imshow(values, aspect="auto", cmap=cmap, interpolation="nearest")

    lo, hi = int(matrix.columns.min()), int(matrix.columns.max())
    ticks = np.linspace(0, values.shape[1] - 1, 5)
    ax.set_xticks(ticks)
    ax.set_xticklabels([f"{int(round(t))}" for t in np.linspace(lo, hi, 5)])
    ax.set_yticks([])
    ax.set_xlabel("Position relative to TSS")
    ax.set_ylabel(f"Features (n={matrix.shape[0]})")
    if title:
        ax.set_title(title)

    cbar = fig.colorbar(im, ax=ax, shrink=0.8)
    cbar.set_label(r"$\log_2$(score + 1)" if log_transform else "score")
    fig.tight_layout()
    _save(fig, outpath, dpi)
    return fig, ax


def plot_sequence_logo(
    sequences: Union[Dict[str, pd.DataFrame], Sequence[str]],
    *,
    color_scheme: str = "classic",
    outpath: Optional[str | Path] = None,
    dpi: int = 200,
):
    """Information-content sequence logo around TSSs.

    ``sequences`` is either a list of equal-length sequences or the
    per-sample output of :func:`~tsr_explorer.sequences.tss_sequences`, in
    which case one logo per sample is drawn. Positions are labelled
    relative to the TSS (the central base).

    Returns
    -------
    fig : matplotlib.figure.Figure
    axes : list of matplotlib.axes.Axes
    """
    if isinstance(sequences, dict):
        panels = {s: df["sequence"].tolist() for s, df in sequences.items()}
    else:
        panels = {"": list(sequences)}
    if not panels or any(len(seqs) == 0 for seqs in panels.values()):
        raise ValueError("plot_sequence_logo received no sequences.")

    fig, axes = plt.subplots(len(panels), 1, figsize=(8, 2.2 * len(panels)), squeeze=False)
    axes = list(axes.ravel())
    for ax, (name, seqs) in zip(axes, panels.items()):
        info = logomaker.alignment_to_matrix(seqs, to_type="information", characters_to_ignore="N")
        center = len(seqs[0]) // 2
        info.index = info.index - center
        logomaker.Logo(info, ax=ax, color_scheme=color_scheme)
        ax.set_ylabel("bits")
        ax.set_ylim(0, 2)
        if name:
            ax.set_title(name, fontsize=9)
    axes[-1].set_xlabel("Position relative to TSS")
    fig.tight_layout()
    _save(fig, outpath, dpi)
    return fig, axes


def plot_dinucleotide_frequencies(
    freqs: pd.DataFrame,
    *,
    title: Optional[str] = None,
    outpath: Optional[str | Path] = None,
    dpi: int = 200,
):
    """Bar plot of -1/+1 dinucleotide frequencies, one bar group per dinucleotide."""
    if freqs.empty:
        raise ValueError("plot_dinucleotide_frequencies received an empty DataFrame.")

    order = (
        freqs.groupby("dinucleotide")["frequency"].mean().sort_values(ascending=False).index.tolist()
    )
    fig, ax = plt.subplots(figsize=(8, 4))
    sns.barplot(
        data=freqs, x="dinucleotide", y="frequency", hue="sample", order=order, ax=ax, palette="viridis"
    )
    ax.set_xlabel("-1/+1 dinucleotide")
    ax.set_ylabel("Frequency")
    if title:
        ax.set_title(title)
    fig.tight_layout()
    _save(fig, outpath, dpi)
    return fig, ax


def plot_genomic_distribution(
    distribution: pd.DataFrame,
    *,
    title: Optional[str] = None,
    outpath: Optional[str | Path] = None,
    dpi: int = 200,
):
    """Stacked horizontal bars of genomic category fractions per sample.

    ``distribution`` comes from :func:`~tsr_explorer.annotate.genomic_distribution`.
    """
    if distribution.empty:
        raise ValueError("plot_genomic_distribution received an empty DataFrame.")

    wide = distribution.pivot_table(
        index="sample", columns="annotation", values="fraction", aggfunc="sum", observed=False
    ).fillna(0.0)
    colors = plt.get_cmap("viridis")(np.linspace(0, 1, wide.shape[1]))

    fig, ax = plt.subplots(figsize=(7, max(2.5, 0.5 * wide.shape[0] + 1.5)))
    left = np.zeros(wide.shape[0])
    for color, category in zip(colors, wide.columns):
        ax.barh(wide.index.astype(str), wide[category], left=left, color=color, label=str(category))
        left += wide[category].to_numpy()
    ax.set_xlim(0, 1)
    ax.set_xlabel("Fraction")
    ax.legend(title="Annotation", bbox_to_anchor=(1.02, 1), loc="upper left", frameon=False, fontsize=8)
    if title:
        ax.set_title(title)
    fig.tight_layout()
    _save(fig, outpath, dpi)
    return fig, ax


def plot_average(
    experiment: TSRExperiment,
    *,
    upstream: int = 1000,
    downstream: int = 1000,
    threshold: Optional[float] = None,
    bin_size: int = 10,
    weighted: bool = False,
    title: Optional[str] = None,
    outpath: Optional[str | Path] = None,
    dpi: int = 200,
):
    """Average TSS density around annotated feature TSSs, one line per sample.

    Parameters
    ----------
    experiment : TSRExperiment
        Experiment with annotated TSSs.
    upstream, downstream : int, default 1000
        Window around the feature TSS.
    threshold : float or None
        Minimum TSS score.
    bin_size : int, default 10
        Histogram bin width in bases.
    weighted : bool, default False
        Weight positions by score instead of counting them once.

    Returns
    -------
    fig, ax, data
        ``data`` is a long table of sample, distance (bin centre) and density.
    """
    rows = []
    edges = np.arange(-upstream, downstream + bin_size + 1, bin_size)
    centres = (edges[:-1] + edges[1:]) / 2
    for sample, df in experiment.get_annotated("tss", "raw").items():
        if threshold is not None:
            df = df[df["score"] >= threshold]
        dist = df["distance_to_tss"]
        df = df[(dist >= -upstream) & (dist <= downstream)]
        if df.empty:
            continue
        weights = df["score"].to_numpy(dtype=float) if weighted else None
        density, _ = np.histogram(df["distance_to_tss"], bins=edges, weights=weights, density=True)
        rows.append(pd.DataFrame({"sample": sample, "distance": centres, "density": density}))
    if not rows:
        raise ValueError("plot_average found no TSSs in the window.")
    data = pd.concat(rows, ignore_index=True)

    fig, ax = plt.subplots(figsize=(7, 4))
    sns.lineplot(data=data, x="distance", y="density", hue="sample", ax=ax, palette="viridis")
    ax.axvline(0, color="gray", linestyle="--", linewidth=0.8)
    ax.set_xlabel("Position relative to annotated TSS")
    ax.set_ylabel("Density")
    if title:
        ax.set_title(title)
    fig.tight_layout()
    _save(fig, outpath, dpi)
    return fig, ax, data


def plot_detected_features(
    detected: pd.DataFrame,
    *,
    title: Optional[str] = None,
    outpath: Optional[str | Path] = None,
    dpi: int = 200,
):
    """Stacked bars of detected features with and without promoter-proximal signal.

    ``detected`` comes from :func:`~tsr_explorer.counting.detect_features`.
    """
    if detected.empty:
        raise ValueError("plot_detected_features received an empty DataFrame.")

    samples = detected.index.astype(str)
    with_p = detected["with_promoter"].to_numpy()
    without_p = detected["without_promoter"].to_numpy()
    c_with, c_without = plt.get_cmap("viridis")([0.2, 0.8])

    fig, ax = plt.subplots(figsize=(max(4, 0.8 * len(samples) + 2), 4))
    ax.bar(samples, with_p, color=c_with, label="With promoter")
    ax.bar(samples, without_p, bottom=with_p, color=c_without, label="Without promoter")
    ax.set_ylabel("Detected features")
    ax.legend(frameon=False, fontsize=8)
    plt.setp(ax.get_xticklabels(), rotation=45, ha="right")
    if title:
        ax.set_title(title)
    fig.tight_layout()
    _save(fig, outpath, dpi)
    return fig, ax
