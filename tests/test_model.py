import edgepython as ep
import numpy as np
import pandas as pd
import pytest

from tsr_explorer import (
    CountSet,
    DEFit,
    build_design,
    fit_de_model,
    make_contrast,
    ql_f_test,
    tsr_explorer,
)


def experiment_from_matrix(matrix, data_type="tsr"):
    exp = tsr_explorer()
    exp.counts[data_type] = CountSet(raw_matrix=matrix)
    return exp


@pytest.fixture(scope="module")
def fit(de_counts):
    counts, groups = de_counts
    return fit_de_model(experiment_from_matrix(counts), "tsr", groups=groups)


def test_build_design_group_means():
    design, levels = build_design(["wt", "mut", "wt"])
    assert levels == ["mut", "wt"]
    assert list(design.columns) == ["mut", "wt"]
    assert design.to_numpy().tolist() == [[0.0, 1.0], [1.0, 0.0], [0.0, 1.0]]


def test_fit_recovers_dispersion_and_shapes(fit, de_counts):
    counts, _ = de_counts
    assert isinstance(fit, DEFit)
    assert fit.levels == ["a", "b"]
    assert fit.df_residual == 4
    assert 0.01 < fit.common_dispersion < 0.15
    assert fit.coefficients.shape == (len(fit.counts), 2)
    assert fit.trended_dispersion.index.equals(fit.counts.index)
    assert set(fit.counts.index) <= set(counts.index)
    np.testing.assert_allclose(np.exp(np.mean(np.log(fit.norm_factors))), 1.0)
    assert np.all(fit.s2_post > 0)
    assert len(fit.df_prior) == len(fit.counts)


def test_ql_f_test_finds_true_changes(fit):
    table = ql_f_test(fit, make_contrast(fit, ["a", "b"]))
    assert list(table.columns) == ["logFC", "logCPM", "F", "PValue"]
    assert table.index.equals(fit.counts.index)
    up = table.iloc[:20]
    null = table.iloc[20:]
    assert up["logFC"].between(0.9, 3.1).all()
    assert (up["PValue"] < 0.01).sum() >= 17
    assert (null["PValue"] < 0.01).mean() < 0.05
    assert table["PValue"].between(0, 1).all()


def test_ql_f_test_matches_edgepython_pipeline(fit, de_counts):
    counts, groups = de_counts
    design, _ = build_design(groups)
    X = design.to_numpy()
    y = counts.to_numpy()
    keep = ep.filter_by_expr(y, group=np.asarray(groups))
    y = y[keep]
    dge = ep.make_dgelist(y, group=groups)
    dge = ep.calc_norm_factors(dge)
    dge = ep.estimate_disp(dge, design=X)
    expected = ep.glm_ql_ftest(ep.glm_ql_fit(dge, design=X), contrast=np.array([-1.0, 1.0]))["table"]

    table = ql_f_test(fit, make_contrast(fit, ["a", "b"]))
    assert len(table) == int(keep.sum())
    np.testing.assert_allclose(table["logFC"], expected["logFC"], rtol=1e-6)
    np.testing.assert_allclose(table["PValue"], expected["PValue"], rtol=1e-6)


def test_swapping_groups_flips_fold_change(fit):
    ab = ql_f_test(fit, make_contrast(fit, ["a", "b"]))
    ba = ql_f_test(fit, make_contrast(fit, [2, 1]))
    np.testing.assert_allclose(ab["logFC"], -ba["logFC"])
    np.testing.assert_allclose(ab["PValue"], ba["PValue"], rtol=1e-3)


def test_make_contrast_validation(fit):
    assert make_contrast(fit, [1, 2]).tolist() == [-1.0, 1.0]
    with pytest.raises(KeyError):
        make_contrast(fit, ["a", "c"])
    with pytest.raises(KeyError):
        make_contrast(fit, [1, 3])
    with pytest.raises(ValueError):
        make_contrast(fit, ["a"])
    with pytest.raises(ValueError):
        ql_f_test(fit, np.zeros(2))
    with pytest.raises(ValueError):
        ql_f_test(fit, np.array([-1.0, 0.0, 1.0]))


def test_fit_needs_residual_degrees_of_freedom(de_counts):
    counts, _ = de_counts
    exp = experiment_from_matrix(counts.iloc[:, [0, 3]])
    with pytest.raises(ValueError, match="residual"):
        fit_de_model(exp, "tsr", groups=["a", "b"])
    with pytest.raises(ValueError, match="groups"):
        fit_de_model(exp, "tsr", groups=["a", "b", "c"])


def test_groups_default_to_sample_sheet_condition(de_counts):
    counts, groups = de_counts
    small = counts.iloc[:60]
    exp = experiment_from_matrix(small)
    exp.sample_sheet = pd.DataFrame({"condition": groups}, index=small.columns)
    fit = fit_de_model(exp, "tsr")
    assert fit.groups == groups
    with pytest.raises(KeyError):
        fit_de_model(exp, "tsr", samples=["nope"], groups=["a"])
