"""
Marginal (one variable at a time) regressions.

These produce the bhat / shat / z summaries that the summary-statistics fits take as
input. Every per-variable model includes an intercept, and all p regressions are
computed at once through the scaled matrix products, so sparse X stays sparse.
"""
from __future__ import annotations
import numpy as np
from typing import Any, Dict, Optional

from .scaled_matrix import MatrixLike, ScaledMatrixView, as_design_matrix, compute_colstats


def univariate_regression(X: MatrixLike, y: np.ndarray, Z: Optional[np.ndarray] = None, center: bool = True,
                          scale: bool = False, return_residuals: bool = False) -> Dict[str, Any]:
    """Simple linear regression of y on each column of X.

    Parameters
    ----------
    X : ndarray or sparse matrix (n, p)
    y : ndarray (n,)
        Missing values (NaN) drop the corresponding rows.
    Z : ndarray (n, k), optional
        Covariates regressed out of y before the marginal regressions.
    center : bool
        Centre the covariates Z. The marginal models always include an intercept.
    scale : bool
        Report effects per standard deviation of each column of X.

    Returns
    -------
    dict with betahat and sebetahat (and residuals when requested with Z).
    """
    X = as_design_matrix(X)
    y = np.asarray(y, float).ravel().copy()
    mask = ~np.isnan(y)
    if not np.all(mask):
        keep = np.where(mask)[0]
        X = X[keep, :]
        y = y[keep]
        if Z is not None:
            Z = np.asarray(Z, float)[keep]
    n = y.shape[0]
    if n < 3:
        raise ValueError("At least three observations are required for marginal regressions.")
    y = y - y.mean()
    if Z is not None:
        Z = np.asarray(Z, float).reshape(n, -1)
        if center:
            Z = Z - Z.mean(axis=0)
        q, _ = np.linalg.qr(Z, mode='reduced')
        y = y - q @ (q.T @ y)
    colstats = compute_colstats(X, center=True, scale=scale)
    view = ScaledMatrixView(X, colstats["cm"], colstats["csd"])
    xty = view.rmatvec(y)
    xtx = colstats["d"]
    p = xtx.shape[0]
    betahat = np.zeros(p)
    sebetahat = np.full(p, np.inf)
    good = xtx > 0
    betahat[good] = xty[good] / xtx[good]
    rss = np.maximum(float(y @ y) - betahat[good]**2 * xtx[good], 0.0)
    sebetahat[good] = np.sqrt(rss / max(n - 2, 1) / xtx[good])
    out = dict(betahat=betahat, sebetahat=sebetahat)
    if return_residuals and Z is not None:
        out["residuals"] = y
    return out


def calc_z(X: MatrixLike, Y: np.ndarray, center: bool = False, scale: bool = False) -> np.ndarray:
    """Marginal z-scores betahat / sebetahat for one response or each column of Y."""
    def univariate_z(X_, Y_, center_, scale_):
        out = univariate_regression(X_, Y_, center=center_, scale=scale_)
        with np.errstate(divide="ignore", invalid="ignore"):
            z = out["betahat"] / out["sebetahat"]
        return np.nan_to_num(z, nan=0.0)
    Y = np.asarray(Y, float)
    if Y.ndim == 1:
        return univariate_z(X, Y, center, scale)
    return np.column_stack([univariate_z(X, Y[:, i], center, scale) for i in range(Y.shape[1])])
