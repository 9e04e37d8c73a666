"""
Fit results.

Frozen containers returned by every fit: FitResult holds the variational posterior
of the L single effects, the PIPs and credible sets, the ELBO trace and the final
status, with read-only arrays. CredibleSet and SingleEffect describe one set and
one effect.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Tuple, TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from .config import FitConfig
    from .ibss import FitStatus


@dataclass(frozen=True)
class CredibleSet:
    """One credible set.

    Attributes
    ----------
    effect:
        Index of the single effect that produced the set.
    variables:
        Member variable indices, by decreasing posterior inclusion probability.
    probabilities:
        The effect's inclusion probability for each member, aligned with variables.
    coverage:
        Claimed coverage, the sum of ``probabilities``.
    purity:
        Minimum absolute pairwise correlation among the members.
    mean_abs_corr, median_abs_corr:
        Mean and median absolute pairwise correlation.
    """
    effect: int
    variables: Tuple[int, ...]
    probabilities: Tuple[float, ...]
    coverage: float
    purity: float
    mean_abs_corr: float
    median_abs_corr: float

    def __len__(self) -> int:
        return len(self.variables)

    def __contains__(self, j: object) -> bool:
        return j in self.variables


class SingleEffect(NamedTuple):
    alpha: np.ndarray
    mu: np.ndarray
    mu2: np.ndarray
    prior_variance: float


@dataclass(frozen=True, eq=False)
class FitResult:
    """Output of a SuSiE fit.

    Attributes
    ----------
    alpha, mu, mu2:
        ``(L, p)`` posterior inclusion probabilities and first and second posterior
        moments of each single effect, on the fitting (standardized) scale.
    V:
        Prior variance of each effect after estimation.
    sigma2:
        Residual variance.
    pip:
        Posterior inclusion probability of each variable.
    credible_sets:
        Credible sets that passed the purity filter.
    status, n_iter, elbo:
        Final state of the IBSS state machine, number of iterations and ELBO
        history (one value per iteration).
    diagnostics:
        Names of numerical conditions met during the fit, e.g.
        ``"zero_variance_columns"`` or ``"elbo_decreased"``.
    coef_scale:
        ``"original"`` when :meth:`coef` is on the data scale, ``"standardized"``
        when it is on the standardized-X, y scale.
    X_column_scale_factors:
        Column scales used in fitting; 0 marks a zero-variance column.
    intercept, fitted:
        Only for individual-level data.
    """
    alpha: np.ndarray
    mu: np.ndarray
    mu2: np.ndarray
    V: np.ndarray
    sigma2: float
    lbf: np.ndarray
    lbf_variable: np.ndarray
    KL: np.ndarray
    elbo: np.ndarray
    pip: np.ndarray
    credible_sets: Tuple[CredibleSet, ...]
    status: "FitStatus"
    n_iter: int
    diagnostics: Tuple[str, ...]
    coef_scale: str
    X_column_scale_factors: np.ndarray
    intercept: Optional[float] = None
    fitted: Optional[np.ndarray] = None
    z: Optional[np.ndarray] = None
    config: Optional["FitConfig"] = None

    def __post_init__(self) -> None:
        for value in vars(self).values():
            if isinstance(value, np.ndarray):
                value.setflags(write=False)

    @property
    def converged(self) -> bool:
        return self.status.value == "converged"

    @property
    def elbo_decreased(self) -> bool:
        return "elbo_decreased" in self.diagnostics

    @property
    def L(self) -> int:
        return int(self.alpha.shape[0])

    def _inv_scale(self) -> np.ndarray:
        csd = self.X_column_scale_factors
        inv = np.zeros_like(csd)
        inv[csd > 0] = 1.0 / csd[csd > 0]
        return inv

    def coef(self) -> np.ndarray:
        """Posterior mean of the regression coefficients (see ``coef_scale``)."""
        return np.sum(self.alpha * self.mu, axis=0) * self._inv_scale()

    def posterior_sd(self) -> np.ndarray:
        """Posterior standard deviation of the regression coefficients."""
        var = np.sum(self.alpha * self.mu2 - (self.alpha * self.mu)**2, axis=0)
        return np.sqrt(np.maximum(var, 0.0)) * self._inv_scale()

    def effects(self) -> List[SingleEffect]:
        return [SingleEffect(self.alpha[l], self.mu[l], self.mu2[l], float(self.V[l])) for l in range(self.L)]

    def credible_set_variables(self) -> List[List[int]]:
        return [list(cs.variables) for cs in self.credible_sets]

    def __str__(self) -> str:
        return (f"FitResult(status={self.status.value}, iterations={self.n_iter}, "
                f"credible_sets={len(self.credible_sets)})")

    def __repr__(self) -> str:
        return self.__str__()

