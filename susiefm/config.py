"""
Fit configuration.

FitConfig collects every option of a SuSiE fit in one frozen, validated object. The
fit functions build it from their keyword arguments, or take a ready one and
derive modified copies with ``replace``.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional, Sequence, Union

import numpy as np

from .single_effect import PRIOR_METHODS


@dataclass(frozen=True, eq=False)
class FitConfig:
    """Options of a SuSiE fit.

    Parameters
    ----------
    L:
        Maximum number of single effects (causal signals) in the model. Reduced to p
        when larger than the number of variables.
    scaled_prior_variance:
        Prior effect variance as a fraction of ``var(y)``; a scalar or one value per
        effect.
    residual_variance:
        Initial residual variance; ``var(y)`` when omitted.
    prior_weights:
        Prior inclusion weights over the p variables (normalized internally).
    estimate_prior_variance, estimate_prior_method:
        Whether and how each effect's prior variance is re-estimated
        (``"optim"``, ``"uniroot"``, ``"EM"`` or ``"simple"``).
    check_null_threshold:
        Log-scale margin by which the null model must lose before a nonzero prior
        variance is kept.
    estimate_residual_variance, residual_variance_lowerbound, residual_variance_upperbound:
        Residual variance update and its bounds. The lower bound defaults to
        ``var(y) / 1e4``.
    standardize, intercept:
        Scale columns of X to unit variance / centre X and y (individual-level data).
    coverage, min_purity, n_purity:
        Credible set target coverage, minimum absolute within-set correlation, and
        the maximum number of members used when computing purity.
    prior_tol:
        Effects with prior variance at or below this value are ignored in PIPs and
        credible sets.
    tol, max_iter:
        Convergence tolerance on the ELBO increase and the iteration cap.
    monotonicity_tol:
        Relative ELBO decrease tolerated before the fit is reported as diverged.
    verbose:
        Log per-iteration progress at INFO instead of DEBUG.

    Notes
    -----
    ``FitConfig`` is immutable; use :meth:`replace` to derive a modified copy.
    """
    L: int = 10
    scaled_prior_variance: Union[float, Sequence[float]] = 0.2
    residual_variance: Optional[float] = None
    prior_weights: Optional[Sequence[float]] = None
    estimate_prior_variance: bool = True
    estimate_prior_method: str = "optim"
    check_null_threshold: float = 0.0
    estimate_residual_variance: bool = True
    residual_variance_lowerbound: Optional[float] = None
    residual_variance_upperbound: float = np.inf
    standardize: bool = True
    intercept: bool = True
    coverage: float = 0.95
    min_purity: float = 0.5
    n_purity: int = 100
    prior_tol: float = 1e-9
    tol: float = 1e-3
    max_iter: int = 100
    monotonicity_tol: float = 1e-6
    verbose: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.L, bool) or int(self.L) != self.L or self.L < 1:
            raise ValueError("L must be a positive integer")
        spv = np.asarray(self.scaled_prior_variance, float)
        if spv.ndim > 1 or spv.size == 0 or not np.all(np.isfinite(spv)) or np.any(spv <= 0):
            raise ValueError("Scaled prior variance should be positive")
        if spv.ndim == 1 and spv.size != self.L:
            raise ValueError("scaled_prior_variance must be a scalar or have length L")
        if self.residual_variance is not None and not (np.isfinite(self.residual_variance)
                                                       and self.residual_variance > 0):
            raise ValueError("Residual variance must be positive")
        if self.prior_weights is not None:
            pw = np.asarray(self.prior_weights, float)
            if pw.ndim != 1 or np.any(pw < 0) or not np.all(np.isfinite(pw)):
                raise ValueError("Prior weights must be a non-negative vector")
            if np.all(pw == 0):
                raise ValueError("Prior weight must be > 0 for at least one variable.")
        if self.estimate_prior_method not in PRIOR_METHODS or self.estimate_prior_method == "none":
            raise ValueError(f"Invalid estimate_prior_method {self.estimate_prior_method!r}")
        if self.residual_variance_lowerbound is not None and self.residual_variance_lowerbound < 0:
            raise ValueError("residual_variance_lowerbound must be non-negative")
        if not self.residual_variance_upperbound > 0:
            raise ValueError("residual_variance_upperbound must be positive")
        if not 0 < self.coverage <= 1:
            raise ValueError("coverage must be in (0, 1]")
        if not 0 <= self.min_purity <= 1:
            raise ValueError("min_purity must be in [0, 1]")
        if self.n_purity < 2:
            raise ValueError("n_purity must be >= 2")
        if self.prior_tol < 0:
            raise ValueError("prior_tol must be non-negative")
        if not self.tol > 0:
            raise ValueError("tol must be positive")
        if isinstance(self.max_iter, bool) or int(self.max_iter) != self.max_iter or self.max_iter < 1:
            raise ValueError("max_iter must be a positive integer")
        if self.monotonicity_tol < 0:
            raise ValueError("monotonicity_tol must be non-negative")

    @property
    def optimize_V(self) -> str:
        """SER prior variance method, ``"none"`` when estimation is disabled."""
        return self.estimate_prior_method if self.estimate_prior_variance else "none"

    def replace(self, **changes: Any) -> "FitConfig":
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_options(cls, config: Optional["FitConfig"] = None, **options: Any) -> "FitConfig":
        """Build a config from keyword options, optionally on top of an existing one."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise TypeError(f"Unknown fit option(s): {', '.join(unknown)}")
        given: Dict[str, Any] = {k: v for k, v in options.items() if v is not None}
        if config is None:
            return cls(**given)
        if not given:
            return config
        return dataclasses.replace(config, **given)

