"""
Single Effect Regression (SER) on sufficient statistics.

Given the residual cross-product X'r left after removing every other effect, the SER
computes a Bayes factor for each candidate variable, the posterior inclusion
probabilities over the p variables and the posterior moments of the effect size
conditional on each variable being the causal one. The prior variance of the effect
may be re-estimated by maximizing the SER marginal likelihood.
"""
from __future__ import annotations
import numpy as np
from scipy.optimize import minimize_scalar, root_scalar
from typing import Any, Dict, Optional

PRIOR_METHODS = ("optim", "uniroot", "EM", "simple", "none")


def _logsumexp_full(lpo: np.ndarray) -> float:
    """Stable log(sum(exp(lpo))) for a 1D array."""
    m = np.max(lpo)
    if not np.isfinite(m):
        return float(m)
    return float(m + np.log(np.sum(np.exp(lpo - m))))


def log_prior_weights(prior_weights: Optional[np.ndarray], p: int) -> np.ndarray:
    """Log of normalized prior weights (uniform when None). Zero weights map to -inf."""
    if prior_weights is None:
        return np.full(p, -np.log(p))
    prior = np.maximum(np.asarray(prior_weights, float), 0.0)
    sw = prior.sum()
    if sw <= 0:
        return np.full(p, -np.log(p))
    with np.errstate(divide="ignore"):
        return np.log(prior / sw)


def compute_lbf(V: float, betahat: np.ndarray, shat2: np.ndarray) -> np.ndarray:
    """Per-variable log Bayes factor of N(0, V) against the point null.

    Variables with a non-finite or non-positive shat2 carry no information and get
    a log Bayes factor of 0.
    """
    lbf = np.zeros(betahat.shape[0])
    mask = np.isfinite(shat2) & (shat2 > 0)
    if V <= 0 or not np.any(mask):
        return lbf
    s2 = shat2[mask]
    denom = V + s2
    lbf[mask] = 0.5 * np.log(s2 / denom) + 0.5 * (betahat[mask]**2) * V / (s2 * denom)
    return lbf


def _loglik_core(V: float, betahat: np.ndarray, shat2: np.ndarray, logpi: np.ndarray) -> float:
    """SER log marginal likelihood relative to the null, as a function of V."""
    return _logsumexp_full(logpi + compute_lbf(V, betahat, shat2))


def neg_loglik_logscale(lV: float, betahat: np.ndarray, shat2: np.ndarray, logpi: np.ndarray) -> float:
    """Negative log-likelihood with V parameterized on the log scale (lV=log V)."""
    return float(-_loglik_core(np.exp(lV), betahat, shat2, logpi))


def loglik_grad(V: float, betahat: np.ndarray, shat2: np.ndarray, logpi: np.ndarray) -> float:
    """Gradient of the log-likelihood with respect to V (not log V)."""
    mask = np.isfinite(shat2) & (shat2 > 0)
    if not np.any(mask):
        return 0.0
    lpo = logpi + compute_lbf(V, betahat, shat2)
    m = np.max(lpo)
    w = np.exp(lpo - m)
    alpha = w / np.sum(w)
    denom = V + shat2[mask]
    T2 = (betahat[mask]**2) / shat2[mask]
    grad_vec = 0.5 * (1.0 / denom) * ((shat2[mask] / denom) * T2 - 1.0)
    grad_vec[np.isnan(grad_vec)] = 0.0
    return float(np.sum(alpha[mask] * grad_vec))


def negloglik_grad_logscale(lV: float, betahat: np.ndarray, shat2: np.ndarray, logpi: np.ndarray) -> float:
    """Negative gradient of log-likelihood with respect to log V (chain rule)."""
    V = np.exp(lV)
    return float(-V * loglik_grad(V, betahat, shat2, logpi))


def est_V_uniroot(betahat: np.ndarray, shat2: np.ndarray, logpi: np.ndarray, V_init: float = 1.0) -> float:
    """Estimate V by bracketing and Brent root-finding on the gradient in log V."""
    def g(lV):
        return negloglik_grad_logscale(lV, betahat, shat2, logpi)
    for a, b in [(-10.0, 10.0), (-20.0, 20.0), (-30.0, 30.0)]:
        fa, fb = g(a), g(b)
        if np.isfinite(fa) and np.isfinite(fb) and (fa * fb <= 0):
            sol = root_scalar(g, bracket=(a, b), method="brentq", xtol=1e-8, rtol=1e-8, maxiter=200)
            if sol.converged:
                return float(np.exp(sol.root))
    return float(V_init)


def optimize_prior_variance(optimize_V: str, betahat: np.ndarray, shat2: np.ndarray, logpi: np.ndarray,
                            alpha: Optional[np.ndarray] = None, post_mean2: Optional[np.ndarray] = None,
                            V_init: Optional[float] = None, check_null_threshold: float = 0.0) -> float:
    """Update the prior variance V via one of 'optim', 'uniroot', 'EM', 'simple' or 'none'.

    'optim' never returns a V with a lower marginal likelihood than V_init. All
    methods finish with the null check: V is set to 0 when the null model is at
    least as likely, up to check_null_threshold on the log scale.
    """
    V = float(V_init) if V_init is not None else 0.0
    if optimize_V == "optim":
        def f(lV):
            return neg_loglik_logscale(lV, betahat, shat2, logpi)
        res = minimize_scalar(f, bounds=(-30.0, 15.0), method="bounded", options={"xatol": 1e-8, "maxiter": 500})
        lV_new = float(res.x)
        if not np.isfinite(lV_new):
            lV_new = np.log(V) if V > 0 else -30.0
        if V > 0 and np.isfinite(V) and f(lV_new) > f(np.log(V)):
            lV_new = np.log(V)
        V = float(np.exp(lV_new))
    elif optimize_V == "uniroot":
        V = est_V_uniroot(betahat, shat2, logpi, V_init=V if V > 0 else 1.0)
    elif optimize_V == "EM":
        if alpha is None or post_mean2 is None:
            raise ValueError("EM requires alpha and post_mean2")
        V = float(np.sum(alpha * post_mean2))
    elif optimize_V not in ("simple", "none"):
        raise ValueError(f"Invalid option for optimize_V method: {optimize_V!r}")
    if optimize_V != "none":
        if _loglik_core(0.0, betahat, shat2, logpi) + check_null_threshold >= _loglik_core(V, betahat, shat2, logpi):
            V = 0.0
    return V


def SER_posterior_e_loglik(d: np.ndarray, XtR: np.ndarray, s2: float, Eb: np.ndarray, Eb2: np.ndarray) -> float:
    """Expected log-likelihood of one effect, minus its value under b = 0."""
    return float(-0.5 / s2 * (-2.0 * np.sum(Eb * XtR) + np.sum(d * Eb2)))


def single_effect_regression(XtR: np.ndarray, d: np.ndarray, V: float, residual_variance: float = 1.0,
                             prior_weights: Optional[np.ndarray] = None, optimize_V: str = "none",
                             check_null_threshold: float = 0.0) -> Dict[str, Any]:
    """Fit one single-effect regression from the residual cross-product XtR.

    Parameters
    ----------
    XtR : ndarray (p,)
        X'r for the residual r after removing the other effects.
    d : ndarray (p,)
        Diagonal of X'X.
    V : float
        Prior variance of the effect.
    residual_variance : float
    prior_weights : ndarray (p,), optional
        Prior inclusion weights; uniform when omitted.
    optimize_V : str
        Prior variance estimation method (see ``optimize_prior_variance``).

    Returns
    -------
    dict with alpha, mu, mu2, lbf, lbf_model, V and degenerate.
    """
    XtR = np.asarray(XtR, float)
    d = np.asarray(d, float)
    p = XtR.shape[0]
    s2 = float(residual_variance)
    if not (np.isfinite(s2) and s2 > 0):
        raise ValueError("residual_variance must be positive and finite.")
    good = np.isfinite(d) & (d > 0)
    betahat = np.zeros(p)
    shat2 = np.full(p, np.inf)
    betahat[good] = XtR[good] / d[good]
    shat2[good] = s2 / d[good]
    logpi = log_prior_weights(prior_weights, p)
    if optimize_V not in ("EM", "none"):
        V = optimize_prior_variance(optimize_V, betahat, shat2, logpi, V_init=V,
                                    check_null_threshold=check_null_threshold)

    def posterior(V: float) -> Optional[Dict[str, Any]]:
        lbf = compute_lbf(V, betahat, shat2)
        lpo = logpi + lbf
        lpo[np.isnan(lpo)] = -np.inf
        m = np.max(lpo)
        if not np.isfinite(m):
            return None
        w = np.exp(lpo - m)
        sw = np.sum(w)
        post_var = np.zeros(p)
        post_mean = np.zeros(p)
        if V > 0:
            post_var[good] = V * s2 / (s2 + V * d[good])
            post_mean[good] = post_var[good] * XtR[good] / s2
        return dict(alpha=w / sw, mu=post_mean, mu2=post_var + post_mean**2, lbf=lbf,
                    lbf_model=float(m + np.log(sw)), V=float(V), degenerate=False)

    res = posterior(float(V))
    if res is None:
        # nothing to normalize: a flat, null effect
        return dict(alpha=np.full(p, 1.0 / p), mu=np.zeros(p), mu2=np.zeros(p), lbf=np.zeros(p),
                    lbf_model=0.0, V=0.0, degenerate=True)
    if optimize_V == "EM":
        # M-step from the current posterior, then the posterior under the new V so
        # that lbf_model and the moments describe the V that is kept
        V_new = optimize_prior_variance("EM", betahat, shat2, logpi, alpha=res["alpha"], post_mean2=res["mu2"],
                                        V_init=V, check_null_threshold=check_null_threshold)
        if V_new != res["V"]:
            res = posterior(V_new) or res
    return res
