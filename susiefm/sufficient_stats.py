"""
Sufficient statistics shared by every input mode.

Individual-level data, (bhat, shat, R, n, var_y) summaries, (z, R, n) summaries and
raw (XtX, Xty, yty, n) are all reduced to the same quantities before fitting:
an XtX-equivalent operator, an Xty-equivalent vector, a yty-equivalent scalar and a
sample size. The IBSS engine only ever sees a ``SufficientStatistics`` object.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

import numpy as np
from scipy import sparse
from scipy.sparse.linalg import LinearOperator

from .scaled_matrix import (MatrixLike, ScaledMatrixView, _safe_inverse, as_design_matrix, compute_colstats,
                            cov2cor, muffled_corr)

logger = logging.getLogger(__name__)

ORIGINAL_SCALE = "original"
STANDARDIZED_SCALE = "standardized"


@dataclass(frozen=True, eq=False)
class SufficientStatistics:
    """Normalized inputs of a SuSiE fit.

    Attributes
    ----------
    XtX : ndarray (p, p) or LinearOperator
        X'X-equivalent. For individual-level data this is the matrix-free
        product ``view.T @ view`` and is never materialized.
    Xty : ndarray (p,)
    yty : float
    n : int
        Sample size (2 in the n-free z-score mode).
    d : ndarray (p,)
        Diagonal of XtX.
    cm, csd : ndarray (p,)
        Column means and scales used to map coefficients back; csd = 0 marks a
        zero-variance column.
    var_y : float
        Response variance used to seed the prior and residual variances.
    scale : str
        ``"original"`` when coefficients are reported on the data scale,
        ``"standardized"`` when they are on the standardized-X, y scale.
    """
    XtX: Union[np.ndarray, LinearOperator]
    Xty: np.ndarray
    yty: float
    n: int
    d: np.ndarray
    cm: np.ndarray
    csd: np.ndarray
    var_y: float
    scale: str = ORIGINAL_SCALE
    y_mean: Optional[float] = None
    R: Optional[np.ndarray] = None
    view: Optional[ScaledMatrixView] = None
    fix_residual_variance: bool = False
    diagnostics: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def p(self) -> int:
        return int(self.Xty.shape[0])

    @property
    def matrix_free(self) -> bool:
        return isinstance(self.XtX, LinearOperator)

    def XtX_dot(self, b: np.ndarray) -> np.ndarray:
        """XtX @ b for either representation."""
        return np.asarray(self.XtX @ b, float).ravel()

    def coef_scale_factors(self) -> np.ndarray:
        """Multipliers mapping the fitted effects onto the reported coefficient scale."""
        return _safe_inverse(self.csd)

    def correlation(self, pos) -> Optional[np.ndarray]:
        """Correlation matrix among the variables in pos (None if unavailable)."""
        pos = list(pos)
        if self.R is not None:
            return np.asarray(self.R)[np.ix_(pos, pos)]
        if self.view is not None:
            return muffled_corr(self.view.columns(pos))
        return None


# Validation helpers

def _as_vector(x, name: str) -> np.ndarray:
    x = np.asarray(x, dtype=np.float64)
    if x.ndim == 0:
        x = x.reshape(1)
    if x.ndim != 1:
        x = x.ravel()
    if x.size == 0:
        raise ValueError(f"{name} must not be empty.")
    return x


def _check_n(n) -> int:
    if n is None:
        raise ValueError("Sample size n is required.")
    if not np.isfinite(n) or n <= 1 or float(n) != int(n):
        raise ValueError(f"n must be an integer greater than 1, got {n!r}.")
    return int(n)


def check_correlation_matrix(R, p: int, r_tol: float = 1e-8, regularize_R: float = 0.0) -> np.ndarray:
    """Validate R as a p x p correlation matrix and return a clean copy.

    Raises ValueError for a malformed matrix. The only correction applied is the
    optional shrinkage ``(1 - regularize_R) R + regularize_R I`` followed by exact
    symmetrization and a unit diagonal.
    """
    R = np.array(R, dtype=np.float64)
    if R.ndim != 2 or R.shape != (p, p):
        raise ValueError(f"R shape {R.shape} incompatible with {p} variables.")
    if not np.all(np.isfinite(R)):
        raise ValueError("R contains non-finite values (NaN/Inf).")
    if not np.allclose(R, R.T, atol=r_tol, rtol=0):
        raise ValueError("R is not symmetric.")
    if not np.allclose(np.diag(R), 1.0, atol=r_tol, rtol=0):
        raise ValueError("R must have a unit diagonal.")
    if np.any(np.abs(R) > 1.0 + r_tol):
        raise ValueError("R has entries outside [-1, 1].")
    if not 0.0 <= regularize_R <= 1.0:
        raise ValueError("regularize_R must be in [0, 1].")
    if regularize_R > 0:
        R = (1.0 - regularize_R) * R + regularize_R * np.eye(p)
    R = 0.5 * (R + R.T)
    np.clip(R, -1.0, 1.0, out=R)
    np.fill_diagonal(R, 1.0)
    return R


def _R_diagnostics(R: np.ndarray, r_tol: float) -> Tuple[str, ...]:
    eig = np.linalg.eigvalsh(R)
    flags = []
    if eig[0] < -r_tol:
        logger.warning("The correlation matrix has negative eigenvalues (min %.3g).", eig[0])
        flags.append("R_not_positive_semidefinite")
    elif eig[0] < r_tol * max(eig[-1], 1.0):
        flags.append("R_near_singular")
    return tuple(flags)


def _zero_variance_flag(csd: np.ndarray) -> Tuple[str, ...]:
    n_zero = int(np.sum(csd == 0))
    if n_zero:
        logger.warning("%d zero-variance column(s) will not contribute to the fit.", n_zero)
        return ("zero_variance_columns",)
    return ()


# Builders

def from_individual(X: MatrixLike, y: np.ndarray, intercept: bool = True, standardize: bool = True) -> SufficientStatistics:
    """Sufficient statistics for individual-level data, using a matrix-free XtX."""
    X = as_design_matrix(X)
    if X.ndim != 2:
        raise ValueError("X must be a 2-d matrix.")
    data = X.data if sparse.issparse(X) else X
    if not np.all(np.isfinite(data)):
        raise ValueError("X contains non-finite values (NaN/Inf).")
    y = _as_vector(y, "y")
    if not np.all(np.isfinite(y)):
        raise ValueError("y contains non-finite values (NaN/Inf).")
    n, p = X.shape
    if y.shape[0] != n:
        raise ValueError(f"y has length {y.shape[0]} but X has {n} rows.")
    if n < 2:
        raise ValueError("At least two observations are required.")
    mean_y = float(np.mean(y))
    y_cent = y - mean_y if intercept else y.copy()
    colstats = compute_colstats(X, center=intercept, scale=standardize)
    view = ScaledMatrixView(X, colstats["cm"], colstats["csd"])
    Xty = view.rmatvec(y_cent)
    var_y = float(np.var(y_cent, ddof=1))
    return SufficientStatistics(XtX=view.T @ view, Xty=Xty, yty=float(y_cent @ y_cent), n=n, d=colstats["d"],
                                cm=colstats["cm"], csd=colstats["csd"], var_y=var_y, scale=ORIGINAL_SCALE,
                                y_mean=mean_y if intercept else None, view=view,
                                diagnostics=_zero_variance_flag(colstats["csd"]))


def _standardize_ss(XtX: np.ndarray, Xty: np.ndarray, n: int, standardize: bool):
    p = Xty.shape[0]
    if standardize:
        csd = np.sqrt(np.maximum(np.diag(XtX), 0.0) / (n - 1))
    else:
        csd = np.ones(p, float)
        csd[np.diag(XtX) <= 0] = 0.0
    inv = _safe_inverse(csd)
    XtX = XtX * inv[:, None] * inv[None, :]
    XtX = 0.5 * (XtX + XtX.T)
    return XtX, Xty * inv, csd


def _pve_adjustment(z: np.ndarray, n: int) -> np.ndarray:
    """Sample size adjustment (n-1)/(z^2+n-2) that maps z to a PVE-consistent scale."""
    return (n - 1) / (z**2 + n - 2)


def from_bhat(bhat, shat, R, n, var_y: Optional[float] = None, standardize: bool = True,
              r_tol: float = 1e-8, regularize_R: float = 0.0, check_R: bool = True) -> SufficientStatistics:
    """Map (bhat, shat, R, n[, var_y]) to sufficient statistics.

    With var_y the statistics reproduce X'X and X'y of the centred data exactly, so
    coefficients come out on the original scale. Without var_y they correspond to
    standardized X and y.
    """
    bhat = _as_vector(bhat, "bhat")
    shat = _as_vector(shat, "shat")
    p = bhat.shape[0]
    if shat.shape[0] == 1 and p > 1:
        shat = np.repeat(shat, p)
    if shat.shape[0] != p:
        raise ValueError(f"bhat has length {p} but shat has length {shat.shape[0]}.")
    if not np.all(np.isfinite(bhat)):
        raise ValueError("bhat contains non-finite values (NaN/Inf).")
    if np.any(np.isnan(shat)) or np.any(shat <= 0):
        raise ValueError("shat must be positive.")
    n = _check_n(n)
    if var_y is not None and (not np.isfinite(var_y) or var_y <= 0):
        raise ValueError("var_y must be positive.")
    R = check_correlation_matrix(R, p, r_tol=r_tol, regularize_R=regularize_R)
    z = bhat / shat
    adj = _pve_adjustment(z, n)
    z_tilde = np.sqrt(adj) * z
    if var_y is not None:
        XtXdiag = var_y * adj / (shat**2)
        sq = np.sqrt(XtXdiag)
        XtX = R * sq[:, None] * sq[None, :]
        Xty = z_tilde * np.sqrt(adj) * var_y / shat
        scale = ORIGINAL_SCALE
    else:
        XtX = (n - 1) * R
        Xty = np.sqrt(n - 1) * z_tilde
        var_y = 1.0
        scale = STANDARDIZED_SCALE
    XtX, Xty, csd = _standardize_ss(XtX, Xty, n, standardize)
    diagnostics = _zero_variance_flag(csd) + (_R_diagnostics(R, r_tol) if check_R else ())
    return SufficientStatistics(XtX=XtX, Xty=Xty, yty=(n - 1) * float(var_y), n=n, d=np.diag(XtX).copy(),
                                cm=np.zeros(p), csd=csd, var_y=float(var_y), scale=scale, R=R,
                                diagnostics=diagnostics)


def from_z(z, R, n: Optional[int] = None, standardize: bool = True, r_tol: float = 1e-8,
           regularize_R: float = 0.0, check_R: bool = True) -> SufficientStatistics:
    """Map (z, R[, n]) to sufficient statistics.

    With n this is ``from_bhat(z, 1, R, n)``. Without n the z-scores are used
    directly (XtX = R, Xty = z, n = 2, yty = 1) with the residual variance held at
    1; the prior variance then carries the unknown sample size. standardize applies
    only when n is given.
    """
    z = _as_vector(z, "z")
    if n is not None:
        return from_bhat(z, np.ones_like(z), R, n, var_y=None, standardize=standardize, r_tol=r_tol,
                         regularize_R=regularize_R, check_R=check_R)
    if not np.all(np.isfinite(z)):
        raise ValueError("z contains non-finite values (NaN/Inf).")
    p = z.shape[0]
    R = check_correlation_matrix(R, p, r_tol=r_tol, regularize_R=regularize_R)
    logger.info("Sample size not provided; fitting z-scores in the n-free mode.")
    diagnostics = _R_diagnostics(R, r_tol) if check_R else ()
    return SufficientStatistics(XtX=R, Xty=z.copy(), yty=1.0, n=2, d=np.ones(p), cm=np.zeros(p), csd=np.ones(p),
                                var_y=1.0, scale=STANDARDIZED_SCALE, R=R, fix_residual_variance=True,
                                diagnostics=diagnostics)


def from_suff_stat(XtX, Xty, yty: float, n, standardize: bool = True) -> SufficientStatistics:
    """Sufficient statistics supplied directly (X'X, X'y, y'y of centred data)."""
    XtX = np.asarray(XtX, dtype=np.float64)
    Xty = _as_vector(Xty, "Xty")
    p = Xty.shape[0]
    if XtX.shape != (p, p):
        raise ValueError(f"XtX shape {XtX.shape} incompatible with Xty length {p}.")
    if not (np.all(np.isfinite(XtX)) and np.all(np.isfinite(Xty)) and np.isfinite(yty)):
        raise ValueError("Sufficient statistics contain non-finite values (NaN/Inf).")
    if not np.allclose(XtX, XtX.T, atol=1e-8 * max(1.0, float(np.max(np.abs(XtX)))), rtol=0):
        raise ValueError("XtX is not symmetric.")
    if np.any(np.diag(XtX) < 0):
        raise ValueError("XtX has negative diagonal entries.")
    if yty <= 0:
        raise ValueError("yty must be positive.")
    n = _check_n(n)
    R = cov2cor(XtX)
    XtX, Xty, csd = _standardize_ss(XtX, Xty, n, standardize)
    return SufficientStatistics(XtX=XtX, Xty=Xty, yty=float(yty), n=n, d=np.diag(XtX).copy(), cm=np.zeros(p),
                                csd=csd, var_y=float(yty) / (n - 1), scale=ORIGINAL_SCALE, R=R,
                                diagnostics=_zero_variance_flag(csd))
