import numpy as np
import pytest
from scipy import sparse, stats

from susiefm.univariate import calc_z, univariate_regression


def test_matches_simple_linear_regression(sim_data: dict) -> None:
    X, y = sim_data["X"], sim_data["y"]
    out = univariate_regression(X, y)
    for j in (0, 2, 11):
        fit = stats.linregress(X[:, j], y)
        assert out["betahat"][j] == pytest.approx(fit.slope)
        assert out["sebetahat"][j] == pytest.approx(fit.stderr)


def test_scaled_effects_are_per_standard_deviation(sim_data: dict) -> None:
    X, y = sim_data["X"], sim_data["y"]
    raw = univariate_regression(X, y)
    scaled = univariate_regression(X, y, scale=True)
    sd = X.std(axis=0, ddof=1)
    np.testing.assert_allclose(scaled["betahat"], raw["betahat"] * sd)
    np.testing.assert_allclose(scaled["betahat"] / scaled["sebetahat"], raw["betahat"] / raw["sebetahat"])


def test_sparse_input_and_constant_column() -> None:
    rng = np.random.default_rng(2)
    X = (rng.random((80, 6)) < 0.3).astype(float)
    X[:, 3] = 0.0
    y = X[:, 0] + rng.standard_normal(80)
    dense = univariate_regression(X, y)
    sp = univariate_regression(sparse.csc_matrix(X), y)
    np.testing.assert_allclose(sp["betahat"], dense["betahat"])
    assert dense["betahat"][3] == 0.0
    assert np.isinf(dense["sebetahat"][3])
    assert calc_z(X, y)[3] == 0.0


def test_missing_response_rows_are_dropped(sim_data: dict) -> None:
    X, y = sim_data["X"], sim_data["y"].copy()
    y[:5] = np.nan
    out = univariate_regression(X, y)
    ref = univariate_regression(X[5:], y[5:])
    np.testing.assert_allclose(out["betahat"], ref["betahat"])


def test_covariates_are_regressed_out_of_response(sim_data: dict) -> None:
    X, y = sim_data["X"], sim_data["y"]
    Z = X[:, [2]]
    out = univariate_regression(X, y, Z=Z, return_residuals=True)
    assert abs(out["residuals"] @ (Z[:, 0] - Z[:, 0].mean())) < 1e-8
    assert abs(out["betahat"][2]) < 1e-8


def test_calc_z_columns(sim_data: dict) -> None:
    X, y = sim_data["X"], sim_data["y"]
    Z = calc_z(X, np.column_stack([y, -y]))
    assert Z.shape == (X.shape[1], 2)
    np.testing.assert_allclose(Z[:, 0], -Z[:, 1])
