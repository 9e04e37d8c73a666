"""
SuSiE fit on individual-level data.

The design matrix may be a dense ndarray or any scipy.sparse matrix. X is never
centred or scaled in memory: column means and scales enter through the scaled matrix
products, and the IBSS engine only sees X'X through a matrix-free operator.
"""
from __future__ import annotations
import logging
import numpy as np
from typing import Optional, Sequence, Union

from .config import FitConfig
from .ibss import fit_sufficient_statistics
from .results import CredibleSet, FitResult
from .scaled_matrix import MatrixLike
from .sufficient_stats import from_individual
from .univariate import calc_z

logger = logging.getLogger(__name__)


def _check_prior_scale(config: FitConfig) -> None:
    if config.standardize and np.any(np.asarray(config.scaled_prior_variance, float) > 1):
        raise ValueError("Scaled prior variance should be <= 1 when standardize is True")


def fit_from_data(X: MatrixLike, y: np.ndarray, L: int = 10, scaled_prior_variance: Union[float, Sequence[float]] = 0.2,
                  estimate_prior_variance: bool = True, estimate_residual_variance: bool = True,
                  standardize: bool = True, tol: float = 1e-3, max_iter: int = 100,
                  compute_univariate_zscore: bool = False, config: Optional[FitConfig] = None,
                  **options) -> FitResult:
    """Fit SuSiE to individual-level data (X, y).

    Parameters
    ----------
    X : ndarray or scipy.sparse matrix (n, p)
    y : ndarray (n,)
    L : int
        Maximum number of nonzero effects.
    scaled_prior_variance : float or sequence of length L
        Prior effect variance as a fraction of var(y).
    estimate_prior_variance, estimate_residual_variance : bool
    standardize : bool
        Scale the columns of X to unit variance.
    tol, max_iter :
        ELBO convergence tolerance and iteration cap.
    compute_univariate_zscore : bool
        Also report marginal z-scores in ``FitResult.z``.
    config : FitConfig, optional
        Complete configuration. When given, the named arguments above are ignored
        and only ``**options`` are applied on top of it.
    **options :
        Any other ``FitConfig`` field (coverage, min_purity, intercept, ...).

    Returns
    -------
    FitResult with coefficients on the original scale of X and y.
    """
    explicit = dict(L=L, scaled_prior_variance=scaled_prior_variance,
                    estimate_prior_variance=estimate_prior_variance,
                    estimate_residual_variance=estimate_residual_variance, standardize=standardize, tol=tol,
                    max_iter=max_iter)
    cfg = FitConfig.from_options(config, **explicit, **options) if config is None \
        else FitConfig.from_options(config, **options)
    _check_prior_scale(cfg)
    stats = from_individual(X, y, intercept=cfg.intercept, standardize=cfg.standardize)
    logger.debug("Fitting SuSiE on individual-level data: n=%d, p=%d, L=%d, sparse=%s",
                 stats.n, stats.p, cfg.L, stats.view.is_sparse)
    z = calc_z(X, y, center=cfg.intercept, scale=cfg.standardize) if compute_univariate_zscore else None
    return fit_sufficient_statistics(stats, cfg, z=z)


class SuSiE:
    """Estimator wrapper around :func:`fit_from_data`.

    After ``fit`` the posterior is available as attributes (alpha, mu, mu2, V,
    sigma2, pip, sets, elbo, niter, converged, intercept, fitted) and the full
    snapshot as ``result``.
    """

    def __init__(self, L: int = 10):
        self.L = int(L)
        self.result: Optional[FitResult] = None
        self.alpha: Optional[np.ndarray] = None
        self.mu: Optional[np.ndarray] = None
        self.mu2: Optional[np.ndarray] = None
        self.lbf: Optional[np.ndarray] = None
        self.lbf_variable: Optional[np.ndarray] = None
        self.intercept: float = 0.0
        self.sigma2: float = np.nan
        self.V: Optional[np.ndarray] = None
        self.elbo: Optional[np.ndarray] = None
        self.fitted: Optional[np.ndarray] = None
        self.sets: Optional[Sequence[CredibleSet]] = None
        self.pip: Optional[np.ndarray] = None
        self.z: Optional[np.ndarray] = None
        self.niter: int = 0
        self.converged: bool = False
        self.X_column_scale_factors: Optional[np.ndarray] = None

    def fit(self, X: MatrixLike, y: np.ndarray, scaled_prior_variance: Union[float, np.ndarray] = 0.2,
            residual_variance: Optional[float] = None, prior_weights: Optional[np.ndarray] = None,
            standardize: bool = True, intercept: bool = True, estimate_residual_variance: bool = True,
            estimate_prior_variance: bool = True, estimate_prior_method: str = "optim",
            check_null_threshold: float = 0.0, prior_tol: float = 1e-9,
            residual_variance_upperbound: float = np.inf, coverage: float = 0.95, min_purity: float = 0.5,
            compute_univariate_zscore: bool = False, max_iter: int = 100, tol: float = 1e-3, verbose: bool = False,
            residual_variance_lowerbound: Optional[float] = None, n_purity: int = 100) -> "SuSiE":
        """Iterative Bayesian Stepwise Selection (IBSS) loop for SuSiE.

        Performs coordinate ascent over L single-effect components updating variational
        parameters and (optionally) residual/prior variances. Populates credible sets and PIPs.
        """
        res = fit_from_data(X, y, L=self.L, scaled_prior_variance=scaled_prior_variance,
                            estimate_prior_variance=estimate_prior_variance,
                            estimate_residual_variance=estimate_residual_variance, standardize=standardize,
                            tol=tol, max_iter=max_iter, compute_univariate_zscore=compute_univariate_zscore,
                            residual_variance=residual_variance, prior_weights=prior_weights, intercept=intercept,
                            estimate_prior_method=estimate_prior_method, check_null_threshold=check_null_threshold,
                            prior_tol=prior_tol, residual_variance_upperbound=residual_variance_upperbound,
                            residual_variance_lowerbound=residual_variance_lowerbound, coverage=coverage,
                            min_purity=min_purity, n_purity=n_purity, verbose=verbose)
        self._set_result(res)
        return self

    def _set_result(self, res: FitResult) -> None:
        self.result = res
        self.alpha = res.alpha; self.mu = res.mu; self.mu2 = res.mu2
        self.lbf = res.lbf; self.lbf_variable = res.lbf_variable
        self.intercept = float(res.intercept) if res.intercept is not None else 0.0
        self.sigma2 = float(res.sigma2); self.V = res.V; self.elbo = res.elbo; self.fitted = res.fitted
        self.sets = res.credible_sets; self.pip = res.pip; self.z = res.z
        self.niter = res.n_iter; self.converged = res.converged
        self.X_column_scale_factors = res.X_column_scale_factors

    def coef(self) -> np.ndarray:
        if self.result is None:
            raise ValueError("SuSiE model is not fitted yet.")
        return self.result.coef()

    def predict(self, X: MatrixLike) -> np.ndarray:
        """Posterior mean prediction intercept + X @ coef for new data."""
        return self.intercept + np.asarray(X @ self.coef()).ravel()
