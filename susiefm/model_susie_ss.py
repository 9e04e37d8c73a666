"""
SuSiE fit from summary statistics.

Accepted inputs are marginal effects with standard errors (bhat, shat) plus an LD /
correlation matrix R and the sample size n, z-scores with R (n optional), or raw
sufficient statistics (XtX, Xty, yty, n). All are mapped to sufficient statistics
and fitted by the same IBSS engine as individual-level data.
"""
from __future__ import annotations
import logging
import numpy as np
from typing import Optional, Sequence, Union

from .config import FitConfig
from .ibss import fit_sufficient_statistics
from .model_susie import _check_prior_scale
from .results import CredibleSet, FitResult
from .sufficient_stats import from_bhat, from_suff_stat, from_z

logger = logging.getLogger(__name__)


def _config(config: Optional[FitConfig], explicit: dict, options: dict) -> FitConfig:
    if config is None:
        return FitConfig.from_options(None, **explicit, **options)
    return FitConfig.from_options(config, **options)


def fit_from_bhat(bhat: np.ndarray, shat: np.ndarray, R: np.ndarray, n: int, var_y: Optional[float] = None,
                  L: int = 10, scaled_prior_variance: Union[float, Sequence[float]] = 0.2,
                  estimate_prior_variance: bool = True, standardize: bool = True, tol: float = 1e-3,
                  max_iter: int = 100, r_tol: float = 1e-8, regularize_R: float = 0.0, check_R: bool = True,
                  config: Optional[FitConfig] = None, **options) -> FitResult:
    """Fit SuSiE to marginal effect estimates and their standard errors.

    With ``var_y`` (the sample variance of y) the fit reproduces the individual-level
    fit of the same data and ``coef()`` is on the original scale. Without it the
    coefficients are on the standardized-X, y scale.

    Parameters
    ----------
    bhat, shat : ndarray (p,)
        Marginal effect estimates and standard errors from simple regressions with
        an intercept. A scalar shat is broadcast.
    R : ndarray (p, p)
        Correlation (LD) matrix among the variables.
    n : int
        Sample size.
    var_y : float, optional
    r_tol : float
        Tolerance used when validating R.
    regularize_R : float
        Shrink R towards the identity by this fraction before fitting.
    check_R : bool
        Check the eigenvalues of R and record indefinite or near-singular R in the
        result diagnostics.
    **options :
        Any other ``FitConfig`` field.
    """
    explicit = dict(L=L, scaled_prior_variance=scaled_prior_variance, estimate_prior_variance=estimate_prior_variance,
                    standardize=standardize, tol=tol, max_iter=max_iter)
    cfg = _config(config, explicit, options)
    _check_prior_scale(cfg)
    stats = from_bhat(bhat, shat, R, n, var_y=var_y, standardize=cfg.standardize, r_tol=r_tol,
                      regularize_R=regularize_R, check_R=check_R)
    logger.debug("Fitting SuSiE on summary statistics: n=%d, p=%d, L=%d, scale=%s", stats.n, stats.p, cfg.L,
                 stats.scale)
    return fit_sufficient_statistics(stats, cfg)


def fit_from_z(z: np.ndarray, R: np.ndarray, n: Optional[int] = None, L: int = 10, tol: float = 1e-3,
               max_iter: int = 100, scaled_prior_variance: Optional[Union[float, Sequence[float]]] = None,
               r_tol: float = 1e-8, regularize_R: float = 0.0, check_R: bool = True,
               config: Optional[FitConfig] = None, **options) -> FitResult:
    """Fit SuSiE to z-scores and a correlation matrix.

    With n this is the same fit as ``fit_from_bhat(z, 1, R, n)``. Without n the
    z-scores are fitted directly with the residual variance fixed at 1 and a prior
    variance of 50 (in z units) that is re-estimated per effect, which absorbs the
    unknown sample size. Coefficients are always on the standardized scale.
    """
    n_free = n is None
    if scaled_prior_variance is None:
        scaled_prior_variance = 50.0 if n_free else 0.2
    explicit = dict(L=L, scaled_prior_variance=scaled_prior_variance, tol=tol, max_iter=max_iter)
    if n_free:
        explicit["standardize"] = False
    cfg = _config(config, explicit, options)
    if n_free:
        cfg = cfg.replace(standardize=False)
        logger.warning("Sample size n was not provided; results assume n is large and effects are small.")
    else:
        _check_prior_scale(cfg)
    stats = from_z(z, R, n=n, standardize=cfg.standardize, r_tol=r_tol, regularize_R=regularize_R, check_R=check_R)
    return fit_sufficient_statistics(stats, cfg)


def fit_suff_stat(XtX: np.ndarray, Xty: np.ndarray, yty: float, n: int, L: int = 10,
                  scaled_prior_variance: Union[float, Sequence[float]] = 0.2, standardize: bool = True,
                  tol: float = 1e-3, max_iter: int = 100, config: Optional[FitConfig] = None,
                  **options) -> FitResult:
    """Fit SuSiE to X'X, X'y and y'y of column-centred X and centred y."""
    explicit = dict(L=L, scaled_prior_variance=scaled_prior_variance, standardize=standardize, tol=tol,
                    max_iter=max_iter)
    cfg = _config(config, explicit, options)
    _check_prior_scale(cfg)
    stats = from_suff_stat(XtX, Xty, yty, n, standardize=cfg.standardize)
    return fit_sufficient_statistics(stats, cfg)


class SuSiE_SS:
    """
    SuSiE-SS: IBSS using sufficient statistics (XtX, Xty, yty, N) or summary data.

    Naming aligned with :class:`susiefm.model_susie.SuSiE`: after ``fit`` the
    attributes alpha, mu, mu2, sigma2, V, pip, sets, elbo, niter and converged hold
    the posterior, and ``result`` the full :class:`FitResult`.

    The fit method supports:
      - sufficient=True: direct sufficient statistics input (XtX, Xty, yty, N).
      - sufficient=False: summary statistics, either (bhat, shat, R, N[, var_y]) or
        (z, R[, N]).
    """
    def __init__(self,
                 L: int = 10,
                 scaled_prior_variance: Optional[float] = None,
                 estimate_prior_variance: bool = True,
                 estimate_prior_method: str = "optim",
                 check_null_threshold: float = 0.0,
                 estimate_residual_variance: bool = True,
                 tol: float = 1e-3,
                 max_iter: int = 100,
                 verbose: bool = False):
        self.L = int(L)
        self.scaled_prior_variance = None if scaled_prior_variance is None else float(scaled_prior_variance)
        self.estimate_prior_variance = bool(estimate_prior_variance)
        self.estimate_prior_method = str(estimate_prior_method)
        self.check_null_threshold = float(check_null_threshold)
        self.estimate_residual_variance = bool(estimate_residual_variance)
        self.tol = float(tol)
        self.max_iter = int(max_iter)
        self.verbose = bool(verbose)
        self.result: Optional[FitResult] = None
        self.alpha: Optional[np.ndarray] = None
        self.mu: Optional[np.ndarray] = None
        self.mu2: Optional[np.ndarray] = None
        self.sigma2: Optional[float] = None
        self.V: Optional[np.ndarray] = None
        self.pip: Optional[np.ndarray] = None
        self.sets: Optional[Sequence[CredibleSet]] = None
        self.elbo: Optional[np.ndarray] = None
        self.niter: int = 0
        self.converged: bool = False

    def _base_config(self, n_free: bool = False, **extra) -> FitConfig:
        spv = self.scaled_prior_variance
        if spv is None:
            # n-free z-scores: the prior variance is in z units
            spv = 50.0 if n_free else 0.2
        return FitConfig(L=self.L, scaled_prior_variance=spv,
                         estimate_prior_variance=self.estimate_prior_variance,
                         estimate_prior_method=self.estimate_prior_method,
                         check_null_threshold=self.check_null_threshold,
                         estimate_residual_variance=self.estimate_residual_variance, tol=self.tol,
                         max_iter=self.max_iter, verbose=self.verbose, **extra)

    def fit(self,
            z: Optional[np.ndarray] = None,
            R: Optional[np.ndarray] = None,
            N: Optional[int] = None,
            XtX: Optional[np.ndarray] = None,
            Xty: Optional[np.ndarray] = None,
            yty: Optional[float] = None,
            sufficient: bool = False,
            bhat: Optional[np.ndarray] = None,
            shat: Optional[np.ndarray] = None,
            var_y: Optional[float] = None,
            sigma2: Optional[float] = None,
            standardize: bool = True,
            coverage: float = 0.95,
            min_purity: float = 0.5,
            n_purity: int = 100) -> "SuSiE_SS":
        """Fit SuSiE-SS using sufficient stats or summary data.

        A given sigma2 fixes the residual variance for the whole fit. Returns self.
        """
        extra = dict(coverage=coverage, min_purity=min_purity, n_purity=n_purity, standardize=standardize)
        if sigma2 is not None:
            extra.update(residual_variance=float(sigma2), estimate_residual_variance=False)
        if sufficient:
            if XtX is None or Xty is None or yty is None or N is None:
                raise ValueError("sufficient=True requires XtX, Xty, yty, N.")
            cfg = self._base_config(**extra)
            res = fit_suff_stat(XtX, Xty, yty, N, config=cfg)
        elif bhat is not None:
            if shat is None or R is None or N is None:
                raise ValueError("bhat requires shat, R and N.")
            cfg = self._base_config(**extra)
            res = fit_from_bhat(bhat, shat, R, N, var_y=var_y, config=cfg)
        else:
            if z is None or R is None:
                raise ValueError("sufficient=False requires z and R (or bhat, shat, R and N).")
            if N is None:
                extra["standardize"] = False
            cfg = self._base_config(n_free=N is None, **extra)
            res = fit_from_z(z, R, n=N, config=cfg)
        self._set_result(res)
        return self

    def _set_result(self, res: FitResult) -> None:
        self.result = res
        self.alpha = res.alpha
        self.mu = res.mu
        self.mu2 = res.mu2
        self.sigma2 = float(res.sigma2)
        self.V = res.V
        self.pip = res.pip
        self.sets = res.credible_sets
        self.elbo = res.elbo
        self.niter = res.n_iter
        self.converged = res.converged

    def coef(self) -> np.ndarray:
        if self.result is None:
            raise ValueError("SuSiE_SS model is not fitted yet.")
        return self.result.coef()
