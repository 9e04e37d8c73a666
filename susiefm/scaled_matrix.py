"""
Matrix-free scaled products for dense and sparse design matrices.

The SuSiE model works on a column-centred and column-scaled copy of X. Forming that
copy destroys sparsity, so this module exposes the scaled matrix as a
``scipy.sparse.linalg.LinearOperator`` whose products are computed from the raw
matrix plus the per-column mean and scale vectors. It also hosts the column
statistic and correlation helpers shared by the rest of the package.
"""
from __future__ import annotations
import numpy as np
from scipy import sparse
from scipy.sparse.linalg import LinearOperator
from typing import Dict, Union

MatrixLike = Union[np.ndarray, sparse.spmatrix]


def _safe_inverse(scale: np.ndarray) -> np.ndarray:
    """1/scale with zero for non-positive (zero-variance) entries."""
    scale = np.asarray(scale, float)
    inv = np.zeros_like(scale)
    ok = np.isfinite(scale) & (scale > 0)
    inv[ok] = 1.0 / scale[ok]
    return inv


def as_design_matrix(X: MatrixLike) -> MatrixLike:
    """Return X as float64 CSC (sparse input) or a float64 ndarray (dense input)."""
    if sparse.issparse(X):
        return sparse.csc_matrix(X, dtype=np.float64)
    return np.asarray(X, dtype=np.float64)


class ScaledMatrixView(LinearOperator):
    """Linear operator for ``(X - 1 center') diag(1/scale)`` without forming it.

    Parameters
    ----------
    X : ndarray or scipy.sparse matrix (n, p)
        Raw, unscaled design matrix. Sparse input is only touched through its own
        products, so its nonzero pattern is never densified.
    center : ndarray (p,)
        Column means to subtract (zeros for no centring).
    scale : ndarray (p,)
        Column scale factors. A zero entry marks a zero-variance column whose
        contribution to every product is zero.
    """

    def __init__(self, X: MatrixLike, center: np.ndarray, scale: np.ndarray):
        X = as_design_matrix(X)
        n, p = X.shape
        center = np.asarray(center, float).ravel()
        scale = np.asarray(scale, float).ravel()
        if center.shape != (p,) or scale.shape != (p,):
            raise ValueError(f"center and scale must have length {p}.")
        self.X = X
        self.center = center
        self.scale = scale
        self.inv_scale = _safe_inverse(scale)
        self.is_sparse = sparse.issparse(X)
        super().__init__(dtype=np.float64, shape=(n, p))

    def _matvec(self, b):
        bs = np.ravel(b) * self.inv_scale
        return np.asarray(self.X @ bs).ravel() - float(self.center @ bs)

    def _rmatvec(self, y):
        y = np.ravel(y)
        Xty = np.asarray(self.X.T @ y).ravel()
        return Xty * self.inv_scale - (self.center * self.inv_scale) * float(np.sum(y))

    def _matmat(self, B):
        Bs = np.asarray(B) * self.inv_scale[:, None]
        out = np.asarray(self.X @ Bs)
        return out - (self.center @ Bs)[None, :]

    def _rmatmat(self, Y):
        Y = np.asarray(Y)
        XtY = np.asarray(self.X.T @ Y)
        return XtY * self.inv_scale[:, None] - np.outer(self.center * self.inv_scale, np.sum(Y, axis=0))

    def columns(self, pos) -> np.ndarray:
        """Dense copy of the raw (unscaled) columns listed in pos."""
        sub = self.X[:, list(pos)]
        if sparse.issparse(sub):
            sub = sub.toarray()
        return np.asarray(sub, float)

    def toarray(self) -> np.ndarray:
        """Materialize the scaled matrix. Only meant for small problems and checks."""
        dense = self.X.toarray() if self.is_sparse else np.array(self.X, float)
        return (dense - self.center[None, :]) * self.inv_scale[None, :]


def _col_moments(X: MatrixLike):
    n = X.shape[0]
    if sparse.issparse(X):
        col_mean = np.asarray(X.mean(axis=0)).ravel()
        col_mean_sq = np.asarray(X.multiply(X).mean(axis=0)).ravel()
    else:
        col_mean = np.mean(X, axis=0)
        col_mean_sq = np.mean(X**2, axis=0)
    return n, col_mean, col_mean_sq


def compute_colSds(X: MatrixLike) -> np.ndarray:
    """Column standard deviations (unbiased, ddof=1) with rounding safeguard."""
    n, col_mean, col_mean_sq = _col_moments(as_design_matrix(X))
    var = (col_mean_sq - col_mean**2) * (n / max(n - 1, 1))
    # rounding noise on constant columns
    var[var <= 1e-12 * np.maximum(col_mean_sq, np.finfo(float).tiny)] = 0.0
    return np.sqrt(var)


def compute_colstats(X: MatrixLike, center: bool = True, scale: bool = True) -> Dict[str, np.ndarray]:
    """Return column statistics: means (cm), scales (csd), squared norms of scaled columns (d).

    csd is 0 for a column that has no variance left to scale (constant column
    under centring, or any constant column under scaling); such a column
    contributes nothing to the scaled products and gets d = 0.
    """
    X = as_design_matrix(X)
    n, col_mean, col_mean_sq = _col_moments(X)
    p = X.shape[1]
    sds = compute_colSds(X)
    zero = sds == 0
    cm = col_mean if center else np.zeros(p, float)
    if scale:
        csd = sds.copy()
    else:
        csd = np.ones(p, float)
        if center:
            csd[zero] = 0.0
    inv = _safe_inverse(csd)
    d_raw = (n - 1) * sds**2 if center else n * col_mean_sq
    d = d_raw * inv**2
    return dict(cm=cm, csd=csd, d=d)


def scaled_view(X: MatrixLike, center: bool = True, scale: bool = True) -> ScaledMatrixView:
    """Build a ScaledMatrixView from X using its own column statistics."""
    stats = compute_colstats(X, center=center, scale=scale)
    return ScaledMatrixView(X, stats["cm"], stats["csd"])


def muffled_corr(X: np.ndarray) -> np.ndarray:
    """Safe correlation matrix: zero-variance columns get 0 correlations (diagonal=1)."""
    X = np.asarray(X, float)
    n = X.shape[0]
    Xc = X - X.mean(axis=0, keepdims=True)
    sd = Xc.std(axis=0, ddof=1)
    zero = sd < 1e-15
    sd_safe = sd.copy()
    sd_safe[zero] = 1.0
    Xn = Xc / sd_safe
    R = (Xn.T @ Xn) / max(n - 1, 1)
    R[zero, :] = 0
    R[:, zero] = 0
    np.fill_diagonal(R, 1.0)
    return R


def cov2cor(V: np.ndarray) -> np.ndarray:
    """Convert a cross-product or covariance matrix to a correlation matrix."""
    V = np.asarray(V, float)
    inv = _safe_inverse(np.sqrt(np.maximum(np.diag(V), 0.0)))
    R = V * inv[:, None] * inv[None, :]
    np.fill_diagonal(R, 1.0)
    return R

