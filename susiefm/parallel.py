"""
Independent SuSiE fits of several responses sharing one design matrix.
"""
from __future__ import annotations
import logging
from typing import List, Optional

import numpy as np
from joblib import Parallel, delayed

from .model_susie import fit_from_data
from .results import FitResult
from .scaled_matrix import MatrixLike

logger = logging.getLogger(__name__)


def fit_many(X: MatrixLike, Y: np.ndarray, n_jobs: int = 1, backend: Optional[str] = None,
             **kwargs) -> List[FitResult]:
    """Fit each column of Y against X; returns one FitResult per column, in order.

    Fits share no mutable state. With ``n_jobs == 1`` the columns are fitted
    sequentially; otherwise through ``joblib.Parallel`` with the given backend
    (threads are preferred when none is named). ``kwargs`` go to ``fit_from_data``.
    """
    Y = np.asarray(Y, float)
    if Y.ndim == 1:
        Y = Y[:, None]
    if Y.ndim != 2:
        raise ValueError("Y must be a vector or an (n, k) matrix.")
    k = Y.shape[1]
    logger.debug("Fitting %d responses with n_jobs=%s", k, n_jobs)
    if n_jobs == 1:
        return [fit_from_data(X, Y[:, i], **kwargs) for i in range(k)]
    prefer = None if backend is not None else "threads"
    return list(Parallel(n_jobs=n_jobs, backend=backend, prefer=prefer)(
        delayed(fit_from_data)(X, Y[:, i], **kwargs) for i in range(k)
    ))
