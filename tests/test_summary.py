import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from hypothesis.extra import numpy as hnp

from susiefm.summary import get_credible_sets, get_pip, get_purity, in_CS, in_CS_x, n_in_CS_x


def _identity_corr(p: int):
    R = np.eye(p)
    return lambda pos: R[np.ix_(pos, pos)]


def test_n_in_cs_counts_smallest_prefix() -> None:
    x = np.array([0.05, 0.5, 0.15, 0.3])
    assert n_in_CS_x(x, 0.9) == 3
    np.testing.assert_array_equal(in_CS_x(x, 0.9), [0, 1, 1, 1])
    assert n_in_CS_x(x, 0.4) == 1


@settings(max_examples=100, deadline=None)
@given(
    hnp.arrays(dtype=np.float64, shape=st.integers(min_value=1, max_value=30),
               elements=st.floats(min_value=1e-3, max_value=1.0, allow_nan=False, allow_infinity=False)),
    st.floats(min_value=0.5, max_value=0.99),
)
def test_credible_set_coverage_and_minimality(w: np.ndarray, coverage: float) -> None:
    alpha = w / w.sum()
    mask = in_CS_x(alpha, coverage).astype(bool)
    selected = np.sort(alpha[mask])
    assert selected.sum() >= coverage - 1e-12
    # dropping the smallest member loses coverage
    assert selected[1:].sum() < coverage + 1e-12
    # members are the largest entries
    if (~mask).any():
        assert alpha[~mask].max() <= selected.min() + 1e-15


def test_in_cs_stacks_effects() -> None:
    alpha = np.array([[0.96, 0.02, 0.02], [0.5, 0.25, 0.25]])
    np.testing.assert_array_equal(in_CS(alpha, 0.95), [[1, 0, 0], [1, 1, 1]])


@settings(max_examples=50, deadline=None)
@given(hnp.arrays(dtype=np.float64, shape=st.tuples(st.integers(1, 6), st.integers(1, 12)),
                  elements=st.floats(min_value=1e-3, max_value=1.0)))
def test_pip_is_a_probability(w: np.ndarray) -> None:
    alpha = w / w.sum(axis=1, keepdims=True)
    pip = get_pip(alpha)
    assert pip.shape == (alpha.shape[1],)
    assert np.all(pip >= 0.0)
    assert np.all(pip <= 1.0)
    assert np.all(pip >= alpha.max(axis=0) - 1e-12)


def test_pip_ignores_effects_with_null_prior_variance() -> None:
    alpha = np.array([[0.9, 0.1], [0.1, 0.9]])
    np.testing.assert_allclose(get_pip(alpha, V=np.array([1.0, 0.0])), [0.9, 0.1])
    np.testing.assert_allclose(get_pip(alpha, V=np.array([1.0, 1.0])), [0.91, 0.91])
    np.testing.assert_array_equal(get_pip(alpha, V=np.zeros(2)), [0.0, 0.0])


def test_pip_takes_no_effect_subset() -> None:
    alpha = np.array([[0.9, 0.1], [0.1, 0.9]])
    with pytest.raises(TypeError):
        get_pip(alpha, cs_effects=[0])


def test_purity_uses_absolute_correlation() -> None:
    R = np.array([[1.0, -0.8, 0.6], [-0.8, 1.0, 0.7], [0.6, 0.7, 1.0]])
    purity = get_purity([0, 1, 2], lambda pos: R[np.ix_(pos, pos)])
    assert purity[0] == pytest.approx(0.6)
    assert purity[1] == pytest.approx(0.7)
    assert purity[2] == pytest.approx(0.7)
    assert get_purity([2], lambda pos: None) == (1.0, 1.0, 1.0)


def test_purity_subsamples_large_sets() -> None:
    seen = []

    def corr(pos):
        seen.append(list(pos))
        return np.eye(len(pos))

    get_purity(list(range(50)), corr, n=10)
    assert len(seen[0]) == 10


def test_impure_and_duplicate_sets_are_dropped() -> None:
    alpha = np.array([
        [0.01, 0.97, 0.005, 0.005, 0.005, 0.005],
        np.full(6, 1.0 / 6),
        [0.01, 0.97, 0.005, 0.005, 0.005, 0.005],
    ])
    sets = get_credible_sets(alpha, _identity_corr(6), V=np.ones(3))
    assert len(sets) == 1
    cs = sets[0]
    assert cs.effect == 0
    assert cs.variables == (1,)
    assert cs.purity == 1.0
    assert cs.coverage == pytest.approx(0.97)
    assert 1 in cs


def test_sets_ordered_by_purity_and_null_effects_skipped() -> None:
    R = np.eye(6)
    R[0, 1] = R[1, 0] = 0.6
    alpha = np.array([
        [0.5, 0.48, 0.005, 0.005, 0.005, 0.005],
        [0.008, 0.008, 0.008, 0.008, 0.96, 0.008],
        [0.008, 0.008, 0.96, 0.008, 0.008, 0.008],
    ])
    sets = get_credible_sets(alpha, lambda pos: R[np.ix_(pos, pos)], V=np.array([1.0, 1.0, 0.0]))
    assert [cs.effect for cs in sets] == [1, 0]
    assert sets[1].variables == (0, 1)
    assert sets[1].purity == pytest.approx(0.6)

    relaxed = get_credible_sets(alpha, lambda pos: R[np.ix_(pos, pos)], V=np.array([1.0, 1.0, 0.0]),
                                min_purity=0.7)
    assert [cs.effect for cs in relaxed] == [1]
