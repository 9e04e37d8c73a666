"""
Iterative Bayesian Stepwise Selection (IBSS) on sufficient statistics.

The engine holds L single-effect components and sweeps over them in order
(Gauss-Seidel): each component is refit by a single effect regression against the
residual left by all other components, computed by exact subtraction of cached
X'X products. After each sweep the evidence lower bound (ELBO) is recorded and the
residual variance is re-estimated.

A fit runs as a small state machine::

    INITIALIZED -> ITERATING -> {CONVERGED, MAX_ITERATIONS_REACHED, DIVERGED}

``ibss_iteration`` is the pure per-sweep transition; ``IBSSSession`` owns the fit
state (residual variance, ELBO history) and drives the transitions.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np

from .config import FitConfig
from .results import FitResult
from .single_effect import SER_posterior_e_loglik, single_effect_regression
from .sufficient_stats import SufficientStatistics
from .summary import get_credible_sets, get_pip

logger = logging.getLogger(__name__)


class FitStatus(str, Enum):
    INITIALIZED = "initialized"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    DIVERGED = "diverged"

    @property
    def terminal(self) -> bool:
        return self in (FitStatus.CONVERGED, FitStatus.MAX_ITERATIONS_REACHED, FitStatus.DIVERGED)


@dataclass(eq=False)
class IBSSState:
    """Variational state of the L single effects plus the shared fit quantities.

    Row l of alpha, mu, mu2, lbf_variable and XtXb belongs to effect l; ``XtXb[l]``
    caches ``XtX @ (alpha[l] * mu[l])``. ``sigma2`` and ``elbo`` are written once
    per sweep.
    """
    alpha: np.ndarray
    mu: np.ndarray
    mu2: np.ndarray
    V: np.ndarray
    KL: np.ndarray
    lbf: np.ndarray
    lbf_variable: np.ndarray
    XtXb: np.ndarray
    sigma2: float
    elbo: List[float] = field(default_factory=list)
    diagnostics: List[str] = field(default_factory=list)

    @property
    def L(self) -> int:
        return int(self.alpha.shape[0])

    @property
    def b(self) -> np.ndarray:
        """Posterior mean of the combined effect vector."""
        return np.sum(self.alpha * self.mu, axis=0)

    def copy(self) -> "IBSSState":
        return IBSSState(alpha=self.alpha.copy(), mu=self.mu.copy(), mu2=self.mu2.copy(), V=self.V.copy(),
                         KL=self.KL.copy(), lbf=self.lbf.copy(), lbf_variable=self.lbf_variable.copy(),
                         XtXb=self.XtXb.copy(), sigma2=float(self.sigma2), elbo=list(self.elbo),
                         diagnostics=list(self.diagnostics))


def prior_weights_for(stats: SufficientStatistics, config: FitConfig) -> Optional[np.ndarray]:
    if config.prior_weights is None:
        return None
    pw = np.asarray(config.prior_weights, float)
    if pw.shape[0] != stats.p:
        raise ValueError("Prior weights must have length p")
    return pw / np.sum(pw)


def init_state(stats: SufficientStatistics, config: FitConfig) -> IBSSState:
    """Flat starting point: alpha = 1/p, zero effects, V = scaled_prior_variance * var(y)."""
    p = stats.p
    L = min(int(config.L), p)
    spv = np.asarray(config.scaled_prior_variance, float)
    V = np.full(L, float(spv)) if spv.ndim == 0 else spv[:L].copy()
    V = V * stats.var_y
    if stats.fix_residual_variance:
        sigma2 = 1.0
    elif config.residual_variance is not None:
        sigma2 = float(config.residual_variance)
    else:
        sigma2 = float(stats.var_y)
    if not (np.isfinite(sigma2) and sigma2 > 0):
        raise ValueError("Residual variance sigma2 must be positive")
    return IBSSState(alpha=np.full((L, p), 1.0 / p), mu=np.zeros((L, p)), mu2=np.zeros((L, p)), V=V,
                     KL=np.full(L, np.nan), lbf=np.full(L, np.nan), lbf_variable=np.full((L, p), np.nan),
                     XtXb=np.zeros((L, p)), sigma2=sigma2, diagnostics=list(stats.diagnostics))


# ELBO utilities

def get_ER2(stats: SufficientStatistics, s: IBSSState) -> float:
    """Expected residual sum of squares E||y - Xb||^2 under the variational posterior."""
    B = s.alpha * s.mu
    b = np.sum(B, axis=0)
    XtXr = np.sum(s.XtXb, axis=0)
    postb2 = np.sum(s.alpha * s.mu2, axis=0)
    return float(stats.yty - 2.0 * (b @ stats.Xty) + b @ XtXr - np.sum(B * s.XtXb) + stats.d @ postb2)


def Eloglik(stats: SufficientStatistics, s: IBSSState) -> float:
    n = stats.n
    return float(-(n / 2) * np.log(2 * np.pi * s.sigma2) - (1.0 / (2 * s.sigma2)) * get_ER2(stats, s))


def get_objective(stats: SufficientStatistics, s: IBSSState) -> float:
    return float(Eloglik(stats, s) - np.sum(s.KL))


def estimate_residual_variance_fn(stats: SufficientStatistics, s: IBSSState) -> float:
    return float(get_ER2(stats, s) / stats.n)


# Transitions

def ibss_iteration(stats: SufficientStatistics, state: IBSSState, config: FitConfig) -> IBSSState:
    """One Gauss-Seidel sweep over all effects followed by the ELBO.

    Returns a new state; ``state`` is left untouched.
    """
    s = state.copy()
    pw = prior_weights_for(stats, config)
    XtXr = np.sum(s.XtXb, axis=0)
    for l in range(s.L):
        XtR = stats.Xty - (XtXr - s.XtXb[l])
        res = single_effect_regression(XtR, stats.d, s.V[l], residual_variance=s.sigma2, prior_weights=pw,
                                       optimize_V=config.optimize_V, check_null_threshold=config.check_null_threshold)
        if res["degenerate"] and "degenerate_single_effect" not in s.diagnostics:
            logger.warning("Single effect %d has no finite Bayes factor; using a flat posterior.", l)
            s.diagnostics.append("degenerate_single_effect")
        s.alpha[l, :] = res["alpha"]
        s.mu[l, :] = res["mu"]
        s.mu2[l, :] = res["mu2"]
        s.V[l] = res["V"]
        s.lbf[l] = res["lbf_model"]
        s.lbf_variable[l, :] = res["lbf"]
        Eb = res["alpha"] * res["mu"]
        Eb2 = res["alpha"] * res["mu2"]
        s.KL[l] = -res["lbf_model"] + SER_posterior_e_loglik(stats.d, XtR, s.sigma2, Eb, Eb2)
        XtXb_l = stats.XtX_dot(Eb) if np.any(Eb) else np.zeros_like(Eb)
        XtXr += XtXb_l - s.XtXb[l]
        s.XtXb[l, :] = XtXb_l
    s.elbo.append(get_objective(stats, s))
    return s


def update_residual_variance(stats: SufficientStatistics, state: IBSSState, config: FitConfig) -> IBSSState:
    """Closed-form residual variance update ER2 / n, clipped to the configured bounds."""
    s = state.copy()
    lower = config.residual_variance_lowerbound
    if lower is None:
        lower = stats.var_y / 1e4
    sig2 = max(lower, estimate_residual_variance_fn(stats, s), 1e-16)
    s.sigma2 = float(min(sig2, config.residual_variance_upperbound))
    return s


class IBSSSession:
    """A single IBSS fit: owns the state and walks the convergence state machine."""

    def __init__(self, stats: SufficientStatistics, config: FitConfig, state: Optional[IBSSState] = None):
        self.stats = stats
        self.config = config
        self.state = init_state(stats, config) if state is None else state
        self.status = FitStatus.INITIALIZED
        self.n_iter = 0
        self.update_sigma2 = bool(config.estimate_residual_variance) and not stats.fix_residual_variance
        self.log_level = logging.INFO if config.verbose else logging.DEBUG

    @property
    def converged(self) -> bool:
        return self.status is FitStatus.CONVERGED

    def step(self) -> FitStatus:
        """Run one outer iteration and return the resulting status."""
        if self.status.terminal:
            return self.status
        self.status = FitStatus.ITERATING
        self.state = ibss_iteration(self.stats, self.state, self.config)
        self.n_iter += 1
        elbo = self.state.elbo
        cur = elbo[-1]
        prev = elbo[-2] if len(elbo) > 1 else -np.inf
        logger.log(self.log_level, "iter=%03d sigma2=%.6g ELBO=%.6f", self.n_iter, self.state.sigma2, cur)
        if not np.isfinite(cur):
            logger.warning("ELBO is not finite at iteration %d; stopping.", self.n_iter)
            self.state.diagnostics.append("non_finite_elbo")
            self.status = FitStatus.DIVERGED
        elif np.isfinite(prev) and cur < prev - self.config.monotonicity_tol * max(1.0, abs(prev)):
            logger.warning("ELBO decreased from %.6f to %.6f at iteration %d.", prev, cur, self.n_iter)
            self.state.diagnostics.append("elbo_decreased")
            self.status = FitStatus.DIVERGED
        elif cur - prev < self.config.tol:
            self.status = FitStatus.CONVERGED
        else:
            if self.update_sigma2:
                self.state = update_residual_variance(self.stats, self.state, self.config)
            if self.n_iter >= self.config.max_iter:
                logger.warning("IBSS did not converge in %d iterations.", self.config.max_iter)
                self.status = FitStatus.MAX_ITERATIONS_REACHED
        return self.status

    def run(self) -> IBSSState:
        while not self.status.terminal:
            self.step()
        return self.state


def fit_sufficient_statistics(stats: SufficientStatistics, config: FitConfig, z: Optional[np.ndarray] = None,
                              state: Optional[IBSSState] = None) -> FitResult:
    """Run IBSS to a terminal state and summarize the posterior.

    A given state is continued from (warm start) instead of the flat initial one.
    """
    session = IBSSSession(stats, config, state)
    s = session.run()
    sets = get_credible_sets(s.alpha, stats.correlation, V=s.V, coverage=config.coverage,
                             min_purity=config.min_purity, prior_tol=config.prior_tol, n_purity=config.n_purity)
    pip = get_pip(s.alpha, V=s.V, prior_tol=config.prior_tol)
    intercept = fitted = None
    if stats.view is not None:
        b = s.b
        fitted = stats.view.matvec(b)
        if stats.y_mean is not None:
            coef = b * stats.coef_scale_factors()
            intercept = float(stats.y_mean - np.sum(stats.cm * coef))
            fitted = fitted + stats.y_mean
        else:
            intercept = 0.0
    logger.log(session.log_level, "IBSS finished: status=%s, iterations=%d, credible sets=%d",
               session.status.value, session.n_iter, len(sets))
    return FitResult(alpha=s.alpha, mu=s.mu, mu2=s.mu2, V=s.V, sigma2=float(s.sigma2), lbf=s.lbf,
                     lbf_variable=s.lbf_variable, KL=s.KL, elbo=np.asarray(s.elbo, float), pip=pip,
                     credible_sets=tuple(sets), status=session.status, n_iter=session.n_iter,
                     diagnostics=tuple(dict.fromkeys(s.diagnostics)), coef_scale=stats.scale,
                     X_column_scale_factors=stats.csd.copy(), intercept=intercept, fitted=fitted, z=z,
                     config=config)
