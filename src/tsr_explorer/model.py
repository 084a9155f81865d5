"""
Negative binomial GLMs with quasi-likelihood dispersion.

This module fits the differential expression model with edgepython, the
Python port of edgeR: positions (or features) are filtered with
``filter_by_expr``, TMM-normalized, given common, trended and tagwise NB
dispersions (``estimate_disp``) and fitted as quasi-likelihood GLMs
(``glm_ql_fit``) on a group-means design.

Functions
---------
build_design
    Group-means design matrix ``~ 0 + group``.
fit_de_model
    Filter, normalize and fit the model for a set of samples.

Classes
-------
DEFit
    Container for fitted model results.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import edgepython as ep
import numpy as np
import pandas as pd
import patsy

from .experiment import TSRExperiment, check_data_type
from .preprocess import FilterSpec, TMMSpec, calc_norm_factors, filter_by_expr

logger = logging.getLogger(__name__)


@dataclass
class DEFit:
    """Container for a fitted differential expression model."""

    #: Data type the model was fitted on ("tss", "tsr" or "features").
    data_type: str
    #: Filtered raw counts, features x samples.
    counts: pd.DataFrame
    #: Design matrix, samples x group levels.
    design: pd.DataFrame
    #: Group label of every sample.
    groups: list[str]
    #: Sorted group levels (design column order).
    levels: list[str]
    #: Library sizes recomputed after filtering.
    lib_size: pd.Series
    #: TMM normalization factors.
    norm_factors: pd.Series
    #: Common NB dispersion.
    common_dispersion: float
    #: Abundance-trended NB dispersion per feature.
    trended_dispersion: pd.Series
    #: Residual degrees of freedom.
    df_residual: int
    #: Fitted QL GLM as returned by :func:`edgepython.glm_ql_fit`.
    glm: dict

    @property
    def coefficients(self) -> pd.DataFrame:
        """Fitted coefficients (natural log scale), features x levels."""
        return pd.DataFrame(self.glm["coefficients"], index=self.counts.index, columns=self.levels)

    @property
    def s2_post(self) -> pd.Series:
        """Posterior (squeezed) QL dispersions."""
        return self._per_feature("s2.post", "s2_post")

    @property
    def s2_prior(self) -> pd.Series:
        """Abundance-trended prior QL dispersions."""
        return self._per_feature("s2.prior", "s2_prior")

    @property
    def df_prior(self) -> pd.Series:
        """Prior degrees of freedom (``inf`` when no spread remains)."""
        return self._per_feature("df.prior", "df_prior")

    @property
    def ave_log_cpm(self) -> pd.Series:
        """Average log2 CPM per feature."""
        return self._per_feature("AveLogCPM", "logCPM")

    def _per_feature(self, key: str, name: str) -> pd.Series:
        values = np.broadcast_to(np.asarray(self.glm[key], dtype=float), (len(self.counts),))
        return pd.Series(values, index=self.counts.index, name=name)


def build_design(groups: Sequence[str]) -> Tuple[pd.DataFrame, list[str]]:
    """Build the group-means design matrix.

    Parameters
    ----------
    groups : sequence of str
        Group label of every sample.

    Returns
    -------
    design : pd.DataFrame
        One indicator column per group level (no intercept).
    levels : list of str
        Sorted group levels.

    Examples
    --------
    >>> design, levels = build_design(["wt", "mut", "wt"])
    >>> levels
    ['mut', 'wt']
    >>> design.to_numpy().tolist()
    [[0.0, 1.0], [1.0, 0.0], [0.0, 1.0]]
    """
    groups = [str(g) for g in groups]
    levels = sorted(set(groups))
    design = patsy.dmatrix(
        "0 + C(group, levels=levels)",
        data=pd.DataFrame({"group": groups}),
        return_type="dataframe",
    )
    design.columns = levels
    return design, levels


def fit_de_model(
    experiment: TSRExperiment,
    data_type: str = "tsr",
    samples: Optional[Sequence[str]] = None,
    groups: Optional[Sequence[str]] = None,
    filter_spec: FilterSpec = FilterSpec(),
    tmm_spec: TMMSpec = TMMSpec(),
    robust: bool = False,
) -> DEFit:
    """Fit the differential expression model for a set of samples.

    Steps:

    1. Select ``samples`` from the raw count matrix of ``data_type``.
    2. Keep features passing :func:`~tsr_explorer.preprocess.filter_by_expr`
       and recompute library sizes from what is kept.
    3. TMM normalization factors.
    4. Common, trended and tagwise NB dispersions on the group-means design
       (:func:`edgepython.estimate_disp`).
    5. Quasi-likelihood GLM fits with empirical Bayes moderation of the QL
       dispersions toward an abundance trend (:func:`edgepython.glm_ql_fit`).

    Parameters
    ----------
    experiment : TSRExperiment
        Experiment with a raw count matrix for ``data_type``.
    data_type : {"tss", "tsr", "features"}, default "tsr"
        Which count matrix to model.
    samples : sequence of str or None
        Samples to include; all matrix columns by default.
    groups : sequence of str or None
        Group of each sample. Defaults to the ``condition`` column of the
        sample sheet.
    filter_spec : FilterSpec
        Expression filter thresholds.
    tmm_spec : TMMSpec
        TMM settings.
    robust : bool, default False
        Robust empirical Bayes for dispersions and QL moderation.

    Returns
    -------
    DEFit
        Fitted model.

    Examples
    --------
    >>> fit = fit_de_model(exp, "tsr", samples=["a1", "a2", "b1", "b2"],
    ...                    groups=["a", "a", "b", "b"])
    >>> print(f"Common dispersion: {fit.common_dispersion:.3f}")
    Common dispersion: 0.052
    """
    data_type = check_data_type(data_type)
    raw = experiment.get_matrix(data_type, "raw")

    samples = list(raw.columns) if samples is None else list(samples)
    missing = [s for s in samples if s not in raw.columns]
    if missing:
        raise KeyError(f"Samples not in the {data_type} count matrix: {missing}")

    if groups is None:
        sheet = experiment.sample_sheet
        if sheet is None or "condition" not in sheet.columns:
            raise ValueError("No groups given and the sample sheet has no 'condition' column.")
        groups = sheet.loc[samples, "condition"].astype(str).tolist()
    groups = [str(g) for g in groups]
    if len(groups) != len(samples):
        raise ValueError(f"Got {len(groups)} groups for {len(samples)} samples.")

    design, levels = build_design(groups)
    design.index = pd.Index(samples, name="sample")
    if len(levels) < 2:
        raise ValueError("At least two groups are needed for differential expression.")
    df_residual = len(samples) - design.shape[1]
    if df_residual < 1:
        raise ValueError(
            f"{len(samples)} samples leave no residual degrees of freedom for {len(levels)} groups."
        )

    counts = raw[samples]
    keep = filter_by_expr(counts, groups, filter_spec)
    counts = counts.loc[keep]
    if counts.empty:
        raise ValueError("No features passed the expression filter.")
    logger.info(f"{int(keep.sum())}/{len(keep)} {data_type} features passed the expression filter")

    lib_size = counts.sum(axis=0)
    if (lib_size <= 0).any():
        raise ValueError(f"No counts left in samples {list(lib_size.index[lib_size <= 0])} after filtering.")
    norm_factors = calc_norm_factors(counts, tmm_spec)

    X = design.to_numpy(dtype=float)
    dge = ep.make_dgelist(
        counts.to_numpy(dtype=float),
        lib_size=lib_size.to_numpy(dtype=float),
        norm_factors=norm_factors.to_numpy(dtype=float),
        group=groups,
    )
    dge = ep.estimate_disp(dge, design=X, robust=robust)
    glm = ep.glm_ql_fit(dge, design=X, robust=robust)

    fit = DEFit(
        data_type=data_type,
        counts=counts,
        design=design,
        groups=groups,
        levels=levels,
        lib_size=lib_size,
        norm_factors=norm_factors,
        common_dispersion=float(dge["common.dispersion"]),
        trended_dispersion=pd.Series(
            np.asarray(dge["trended.dispersion"], dtype=float), index=counts.index, name="trended_dispersion"
        ),
        df_residual=df_residual,
        glm=glm,
    )
    logger.info(
        f"Fitted {len(counts)} QL GLMs: common dispersion={fit.common_dispersion:.4g}, "
        f"median df_prior={float(np.median(fit.df_prior)):.3g}"
    )
    return fit
