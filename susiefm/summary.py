"""
Posterior summaries of a fitted SuSiE model: PIPs and credible sets with purity.
"""
from __future__ import annotations
import numpy as np
from typing import Callable, List, Optional, Tuple

from .results import CredibleSet

CorrelationFn = Callable[[List[int]], Optional[np.ndarray]]


def n_in_CS_x(x: np.ndarray, coverage: float = 0.9) -> int:
    """Minimal number of largest elements of x whose cumulative sum reaches coverage."""
    xs = np.sort(x)[::-1]
    csum = np.cumsum(xs)
    return int(min(np.sum(csum < coverage) + 1, x.size))


def in_CS_x(x: np.ndarray, coverage: float = 0.9) -> np.ndarray:
    """Return 0/1 indicator selecting top entries of x achieving target coverage."""
    n = n_in_CS_x(x, coverage)
    o = np.argsort(-x, kind="stable")
    result = np.zeros_like(x, dtype=int)
    result[o[:n]] = 1
    return result


def in_CS(alpha: np.ndarray, coverage: float = 0.9) -> np.ndarray:
    """Credible set membership for all L effects as an (L, p) indicator matrix."""
    alpha = np.atleast_2d(np.asarray(alpha, float))
    return np.vstack([in_CS_x(alpha[l, :], coverage) for l in range(alpha.shape[0])])


def get_purity(pos: List[int], correlation: CorrelationFn, squared: bool = False, n: int = 100,
               rng: Optional[np.random.Generator] = None) -> Tuple[float, float, float]:
    """Purity metrics (min/mean/median abs correlation) within index set pos (subsampled if large)."""
    pos = list(pos)
    if len(pos) == 1:
        return (1.0, 1.0, 1.0)
    if len(pos) > n:
        if rng is None:
            rng = np.random.default_rng(0)
        pos = sorted(int(i) for i in rng.choice(pos, size=n, replace=False))
    R = correlation(pos)
    if R is None:
        return (np.nan, np.nan, np.nan)
    R = 0.5 * (R + R.T)
    idx = np.triu_indices(len(pos), k=1)
    vals = np.abs(R[idx])
    if squared:
        vals = vals**2
    return (float(np.min(vals)), float(np.mean(vals)), float(np.median(vals)))


def effects_in_use(V: np.ndarray, L: int, prior_tol: float = 1e-9) -> np.ndarray:
    """Indices of effects whose prior variance exceeds prior_tol."""
    if V is None or np.ndim(V) == 0:
        return np.arange(L)
    return np.where(np.asarray(V) > prior_tol)[0]


def get_pip(alpha: np.ndarray, V: Optional[np.ndarray] = None, prior_tol: float = 1e-9) -> np.ndarray:
    """Posterior inclusion probabilities 1 - prod_l (1 - alpha_lj).

    Effects are treated as independent events. Effects with a prior variance at or
    below prior_tol are dropped.
    """
    alpha = np.atleast_2d(np.asarray(alpha, float))
    include_idx = effects_in_use(V, alpha.shape[0], prior_tol)
    if include_idx.size == 0:
        return np.zeros(alpha.shape[1])
    alpha_use = np.nan_to_num(alpha[include_idx, :], nan=0.0, posinf=1.0, neginf=0.0)
    pip = 1.0 - np.prod(1.0 - alpha_use, axis=0)
    return np.clip(pip, 0.0, 1.0)


def get_credible_sets(alpha: np.ndarray, correlation: CorrelationFn, V: Optional[np.ndarray] = None,
                      coverage: float = 0.95, min_purity: float = 0.5, prior_tol: float = 1e-9,
                      dedup: bool = True, squared: bool = False, n_purity: int = 100) -> List[CredibleSet]:
    """Build credible sets from alpha and filter them by purity.

    One candidate set per effect in use: the smallest set of variables whose alpha
    reaches coverage. Identical sets are kept once (first effect wins). Sets whose
    minimum absolute correlation is below min_purity are discarded; the rest are
    ordered by decreasing purity, ties kept in effect order.
    """
    alpha = np.atleast_2d(np.asarray(alpha, float))
    include = effects_in_use(V, alpha.shape[0], prior_tol)
    status = in_CS(alpha, coverage)
    rng = np.random.default_rng(0)
    threshold = (min_purity**2) if squared else min_purity
    seen = set()
    sets: List[CredibleSet] = []
    for l in include:
        members = np.where(status[l, :] != 0)[0]
        if members.size == 0:
            continue
        key = tuple(sorted(members.tolist()))
        if dedup and key in seen:
            continue
        seen.add(key)
        order = members[np.argsort(-alpha[l, members], kind="stable")]
        purity = get_purity(order.tolist(), correlation, squared=squared, n=n_purity, rng=rng)
        if np.isfinite(purity[0]) and purity[0] < threshold:
            continue
        sets.append(CredibleSet(effect=int(l), variables=tuple(int(i) for i in order),
                                probabilities=tuple(float(alpha[l, i]) for i in order),
                                coverage=float(np.sum(alpha[l, order])), purity=purity[0],
                                mean_abs_corr=purity[1], median_abs_corr=purity[2]))
    ordering = np.argsort([-cs.purity if np.isfinite(cs.purity) else 0.0 for cs in sets], kind="stable")
    return [sets[i] for i in ordering]
