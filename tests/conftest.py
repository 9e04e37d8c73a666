from typing import Callable, Dict, Sequence

import numpy as np
import pytest


def _simulate(n: int = 200, p: int = 20, causal: Sequence[int] = (2, 11), effect: float = 1.0,
              noise: float = 1.0, seed: int = 1) -> Dict[str, np.ndarray]:
    rng = np.random.default_rng(seed)
    X = rng.standard_normal((n, p))
    b = np.zeros(p)
    b[list(causal)] = effect
    y = X @ b + noise * rng.standard_normal(n)
    return dict(X=X, y=y, b=b)


@pytest.fixture
def simulate() -> Callable[..., Dict[str, np.ndarray]]:
    return _simulate


@pytest.fixture
def sim_data() -> Dict[str, np.ndarray]:
    return _simulate()
