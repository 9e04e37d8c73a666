import dataclasses
import logging

import numpy as np
import pytest
from scipy import sparse

from susiefm import (FitConfig, FitStatus, SuSiE, SuSiE_SS, calc_z, fit_from_bhat, fit_from_data, fit_from_z,
                     fit_many, fit_suff_stat, univariate_regression)


def _summaries(X: np.ndarray, y: np.ndarray) -> dict:
    out = univariate_regression(X, y)
    return dict(bhat=out["betahat"], shat=out["sebetahat"], R=np.corrcoef(X, rowvar=False), n=X.shape[0])


def test_three_effect_scenario_recovers_causal_variables() -> None:
    rng = np.random.default_rng(1)
    n, p = 600, 1000
    causal = [403, 653, 773]
    X = rng.standard_normal((n, p))
    b = np.zeros(p)
    b[causal] = 1.0
    y = X @ b + rng.standard_normal(n)

    res = fit_from_data(X, y, L=5)

    assert res.converged
    assert len(res.credible_sets) == 3
    members = set().union(*(cs.variables for cs in res.credible_sets))
    assert set(causal) <= members
    assert np.all(res.pip[causal] > 0.5)
    for cs in res.credible_sets:
        assert cs.coverage >= 0.95
        assert cs.purity >= 0.5
    np.testing.assert_allclose(res.coef()[causal], 1.0, atol=0.2)
    assert res.sigma2 == pytest.approx(1.0, abs=0.25)


def test_individual_and_bhat_with_var_y_agree(sim_data: dict) -> None:
    X, y = sim_data["X"], sim_data["y"]
    data_fit = fit_from_data(X, y, L=3)
    ss_fit = fit_from_bhat(**_summaries(X, y), var_y=np.var(y, ddof=1), L=3)

    assert ss_fit.coef_scale == "original"
    np.testing.assert_allclose(ss_fit.pip, data_fit.pip, atol=1e-5)
    np.testing.assert_allclose(ss_fit.coef(), data_fit.coef(), rtol=1e-4, atol=1e-6)
    assert ss_fit.sigma2 == pytest.approx(data_fit.sigma2, rel=1e-5)
    assert ss_fit.credible_set_variables() == data_fit.credible_set_variables()


def test_bhat_without_var_y_matches_standardized_response(sim_data: dict) -> None:
    X, y = sim_data["X"], sim_data["y"]
    y_std = (y - y.mean()) / np.std(y, ddof=1)
    data_fit = fit_from_data(X, y_std, L=3)
    ss_fit = fit_from_bhat(**_summaries(X, y), L=3)

    assert ss_fit.coef_scale == "standardized"
    np.testing.assert_allclose(ss_fit.alpha, data_fit.alpha, atol=1e-5)
    np.testing.assert_allclose(ss_fit.pip, data_fit.pip, atol=1e-5)
    # coefficients per standard deviation of X
    np.testing.assert_allclose(ss_fit.coef(), data_fit.coef() * data_fit.X_column_scale_factors, rtol=1e-4,
                               atol=1e-6)


def test_z_with_n_matches_bhat_with_unit_standard_errors(sim_data: dict) -> None:
    X, y = sim_data["X"], sim_data["y"]
    n = X.shape[0]
    z = calc_z(X, y)
    R = np.corrcoef(X, rowvar=False)
    a = fit_from_z(z, R, n=n, L=3)
    b = fit_from_bhat(z, np.ones_like(z), R, n, L=3)
    np.testing.assert_allclose(a.pip, b.pip)
    np.testing.assert_allclose(a.coef(), b.coef())


def test_z_without_n_finds_signals(sim_data: dict) -> None:
    X, y = sim_data["X"], sim_data["y"]
    z = calc_z(X, y)
    res = fit_from_z(z, np.corrcoef(X, rowvar=False), L=3)
    assert res.sigma2 == 1.0
    assert res.coef_scale == "standardized"
    assert np.all(res.pip[[2, 11]] > 0.9)


def test_suff_stat_fit_matches_individual(sim_data: dict) -> None:
    X, y = sim_data["X"], sim_data["y"]
    Xc = X - X.mean(axis=0)
    yc = y - y.mean()
    ss_fit = fit_suff_stat(Xc.T @ Xc, Xc.T @ yc, float(yc @ yc), X.shape[0], L=3)
    data_fit = fit_from_data(X, y, L=3)
    np.testing.assert_allclose(ss_fit.pip, data_fit.pip, atol=1e-5)
    np.testing.assert_allclose(ss_fit.coef(), data_fit.coef(), rtol=1e-4, atol=1e-6)


def test_sparse_and_dense_inputs_agree() -> None:
    rng = np.random.default_rng(11)
    n, p = 300, 60
    X = (rng.random((n, p)) < 0.2) * rng.integers(1, 3, size=(n, p)).astype(float)
    b = np.zeros(p)
    b[[4, 40]] = 1.5
    y = X @ b + rng.standard_normal(n)

    dense = fit_from_data(X, y, L=4)
    sp = fit_from_data(sparse.csr_matrix(X), y, L=4)

    np.testing.assert_allclose(sp.pip, dense.pip, atol=1e-6)
    np.testing.assert_allclose(sp.coef(), dense.coef(), rtol=1e-5, atol=1e-8)
    assert sp.intercept == pytest.approx(dense.intercept)
    np.testing.assert_allclose(sp.fitted, dense.fitted, atol=1e-6)


def test_zero_variance_column_is_handled(sim_data: dict) -> None:
    X = sim_data["X"].copy()
    X[:, 7] = 4.0
    res = fit_from_data(X, sim_data["y"], L=3)
    assert "zero_variance_columns" in res.diagnostics
    assert res.coef()[7] == 0.0
    assert res.X_column_scale_factors[7] == 0.0


def test_fitted_values_and_intercept(sim_data: dict) -> None:
    X, y = sim_data["X"], sim_data["y"]
    model = SuSiE(L=3).fit(X, y)
    np.testing.assert_allclose(model.predict(X), model.fitted, atol=1e-8)
    np.testing.assert_allclose(model.fitted, model.intercept + X @ model.coef(), atol=1e-8)
    assert model.converged
    assert model.niter == model.result.n_iter


def test_estimator_wrappers_expose_results(sim_data: dict) -> None:
    X, y = sim_data["X"], sim_data["y"]
    n = X.shape[0]
    z = calc_z(X, y)
    R = np.corrcoef(X, rowvar=False)

    est = SuSiE_SS(L=3).fit(z=z, R=R, N=n)
    np.testing.assert_allclose(est.pip, fit_from_z(z, R, n=n, L=3).pip)
    assert len(est.sets) == len(est.result.credible_sets)

    Xc = X - X.mean(axis=0)
    yc = y - y.mean()
    suff = SuSiE_SS(L=3).fit(XtX=Xc.T @ Xc, Xty=Xc.T @ yc, yty=float(yc @ yc), N=n, sufficient=True)
    np.testing.assert_allclose(suff.coef(), fit_from_data(X, y, L=3).coef(), rtol=1e-4, atol=1e-6)

    with pytest.raises(ValueError):
        SuSiE_SS(L=3).fit(z=z)
    with pytest.raises(ValueError):
        SuSiE_SS(L=3).fit(XtX=Xc.T @ Xc, sufficient=True)


def test_fit_many_matches_individual_fits(sim_data: dict) -> None:
    X = sim_data["X"]
    rng = np.random.default_rng(5)
    Y = np.column_stack([sim_data["y"], X[:, 0] * 2 + rng.standard_normal(X.shape[0])])
    results = fit_many(X, Y, n_jobs=2, backend="threading", L=3)
    assert len(results) == 2
    for k, res in enumerate(results):
        np.testing.assert_allclose(res.pip, fit_from_data(X, Y[:, k], L=3).pip)
    assert results[1].pip[0] > 0.9


def test_result_is_immutable(sim_data: dict) -> None:
    res = fit_from_data(sim_data["X"], sim_data["y"], L=3)
    with pytest.raises(ValueError):
        res.pip[0] = 0.5
    with pytest.raises(dataclasses.FrozenInstanceError):
        res.sigma2 = 2.0
    assert len(res.effects()) == 3
    assert res.posterior_sd().shape == res.pip.shape
    assert str(res).startswith("FitResult(")


def test_config_object_and_options(sim_data: dict) -> None:
    X, y = sim_data["X"], sim_data["y"]
    config = FitConfig(L=3, coverage=0.9)
    res = fit_from_data(X, y, config=config)
    assert res.config is config
    res2 = fit_from_data(X, y, config=config, min_purity=0.8)
    assert res2.config.coverage == 0.9
    assert res2.config.min_purity == 0.8
    assert all(cs.purity >= 0.8 for cs in res2.credible_sets)


def test_verbose_logs_progress_at_info(sim_data: dict, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="susiefm")
    fit_from_data(sim_data["X"], sim_data["y"], L=2, verbose=True)
    assert any("ELBO=" in rec.getMessage() for rec in caplog.records)


@pytest.mark.parametrize(
    "kwargs, exc",
    [
        (dict(L=0), ValueError),
        (dict(scaled_prior_variance=1.5), ValueError),
        (dict(scaled_prior_variance=-0.1), ValueError),
        (dict(coverage=1.5), ValueError),
        (dict(estimate_prior_method="newton"), ValueError),
        (dict(prior_weights=np.zeros(20)), ValueError),
        (dict(not_an_option=1), TypeError),
    ],
)
def test_invalid_options_raise(sim_data: dict, kwargs: dict, exc: type) -> None:
    with pytest.raises(exc):
        fit_from_data(sim_data["X"], sim_data["y"], **kwargs)


def test_invalid_data_raise(sim_data: dict) -> None:
    X, y = sim_data["X"], sim_data["y"]
    with pytest.raises(ValueError):
        fit_from_data(X, y[:-1])
    with pytest.raises(ValueError):
        fit_from_data(X, y, prior_weights=np.ones(5))
    summaries = _summaries(X, y)
    summaries["R"] = summaries["R"][:5, :5]
    with pytest.raises(ValueError):
        fit_from_bhat(**summaries)
    with pytest.raises(ValueError):
        fit_from_z(np.ones(3), np.eye(3), n=1)


def test_max_iter_reported(sim_data: dict) -> None:
    res = fit_from_data(sim_data["X"], sim_data["y"], L=3, max_iter=1)
    assert res.status is FitStatus.MAX_ITERATIONS_REACHED
    assert not res.converged


def test_ss_estimator_prior_variance_default_depends_on_mode(sim_data: dict) -> None:
    X, y = sim_data["X"], sim_data["y"]
    z = calc_z(X, y)
    R = np.corrcoef(X, rowvar=False)
    assert SuSiE_SS(L=3).fit(z=z, R=R).result.config.scaled_prior_variance == 50.0
    assert SuSiE_SS(L=3).fit(z=z, R=R, N=X.shape[0]).result.config.scaled_prior_variance == 0.2
    explicit = SuSiE_SS(L=3, scaled_prior_variance=0.2).fit(z=z, R=R)
    assert explicit.result.config.scaled_prior_variance == 0.2


def test_z_with_n_honours_standardize(sim_data: dict) -> None:
    X, y = sim_data["X"], sim_data["y"]
    n = X.shape[0]
    z = calc_z(X, y)
    R = np.corrcoef(X, rowvar=False)
    raw = fit_from_z(z, R, n=n, L=3, standardize=False)
    assert raw.config.standardize is False
    np.testing.assert_allclose(raw.pip, fit_from_z(z, R, n=n, L=3).pip, atol=1e-8)


def test_result_and_config_modules_are_documented() -> None:
    from susiefm import config, results
    assert config.__doc__ and "FitConfig" in config.__doc__
    assert results.__doc__ and "FitResult" in results.__doc__
