import numpy as np
import pytest

from sepcov.em import MixtureResult, em_kron_mixture, responsibilities
from sepcov.exceptions import DegenerateComponent, NonPositiveDefinite
from sepcov.metrics import mixture_loglik
from sepcov.sim import random_psd, simulate_mixture, simulate_separable


def make_half_null(n=250, p=10, q=10, seed=0):
    """Exactly half the rows from N(0, I + R⊗C), the rest pure noise."""
    rng = np.random.default_rng(seed)
    R, C = random_psd(p, rng), random_psd(q, rng)
    Y_sig = simulate_separable(n // 2, R, C, seed=seed + 1)
    Y_null = rng.standard_normal((n - n // 2, p * q))
    return np.vstack([Y_sig, Y_null]), R, C


@pytest.mark.parametrize("method", ["approximate", "exact"])
def test_null_weight_recovery(method):
    Y, _, _ = make_half_null()
    result = em_kron_mixture(Y, 10, 10, n_components=2, method=method, max_iter=8)

    assert isinstance(result, MixtureResult)
    assert abs(result.null_weight - 0.5) < 0.1
    assert np.isclose(result.weights.sum(), 1.0)
    assert len(result.loglik_trace) == 9
    assert result.n_iter == 8


def test_exact_trace_is_nondecreasing():
    Y, _, _ = make_half_null(seed=3)
    result = em_kron_mixture(Y, 10, 10, n_components=2, method="exact", max_iter=8)
    tr = result.loglik_trace
    for t in range(1, len(tr)):
        assert tr[t] >= tr[t - 1] - 1e-6 * abs(tr[t - 1])
    assert tr[-1] > tr[0]


def test_approximate_trace_has_bounded_regressions():
    Y, _, _ = make_half_null(seed=5)
    result = em_kron_mixture(Y, 10, 10, n_components=2, method="approximate", max_iter=8)
    tr = result.loglik_trace
    assert tr[-1] > tr[0]
    for t in range(1, len(tr)):
        assert tr[t] >= tr[t - 1] - 0.01 * abs(tr[t - 1])


def test_result_bookkeeping():
    rng = np.random.default_rng(7)
    p, q = 3, 3
    pairs = [(random_psd(p, rng), random_psd(q, rng)) for _ in range(2)]
    Y, _ = simulate_mixture(150, pairs, [0.3, 0.3, 0.4], seed=7)

    result = em_kron_mixture(
        Y, p, q, n_components=3, method="approximate", max_iter=4,
        init="random", random_state=1,
    )
    assert len(result.components) == 2
    assert len(result.R_list) == len(result.C_list) == 2
    assert result.responsibilities.shape == (150, 3)
    assert np.allclose(result.responsibilities.sum(axis=1), 1.0)
    for k, comp in enumerate(result.components):
        assert comp.R.shape == (p, p)
        assert comp.C.shape == (q, q)
        assert np.allclose(comp.responsibilities, result.responsibilities[:, k])
    pairs_hat = list(zip(result.R_list, result.C_list))
    assert np.isclose(result.loglik, mixture_loglik(Y, pairs_hat, result.weights))


def test_responsibilities_rows_sum_to_one():
    rng = np.random.default_rng(8)
    Y = rng.standard_normal((20, 4)) * 3
    result = em_kron_mixture(Y, 2, 2, max_iter=1)
    resp = responsibilities(Y, result.components, result.null_weight)
    assert resp.shape == (20, 2)
    assert np.allclose(resp.sum(axis=1), 1.0)
    assert np.all(resp >= 0)


def test_degenerate_component_is_frozen_and_reported():
    rng = np.random.default_rng(9)
    Y = rng.standard_normal((60, 4))
    result = em_kron_mixture(Y, 2, 2, max_iter=3, degenerate_tol=0.99)
    assert result.degenerate_events == [(1, 0), (2, 0), (3, 0)]
    assert result.components[0].degenerate
    assert np.allclose(result.components[0].R, np.eye(2))
    assert np.allclose(result.components[0].C, np.eye(2))


def test_degenerate_component_reinit():
    rng = np.random.default_rng(10)
    Y = rng.standard_normal((60, 4))
    init = [(2.0 * np.eye(2), 3.0 * np.eye(2))]
    result = em_kron_mixture(
        Y, 2, 2, max_iter=1, init=init, degenerate_tol=0.99, on_degenerate="reinit"
    )
    assert np.allclose(result.components[0].R, np.eye(2))
    assert np.allclose(result.components[0].C, np.eye(2))


def test_degenerate_component_can_raise_with_partial_result():
    rng = np.random.default_rng(11)
    Y = rng.standard_normal((60, 4))
    with pytest.raises(DegenerateComponent) as excinfo:
        em_kron_mixture(Y, 2, 2, max_iter=3, degenerate_tol=0.99, on_degenerate="raise")
    err = excinfo.value
    assert err.iteration == 1
    assert err.component == 0
    assert isinstance(err.partial, MixtureResult)
    assert err.partial.n_iter == 0
    assert len(err.partial.loglik_trace) == 1


def test_indefinite_start_fails_loudly():
    Y = np.ones((5, 4))
    with pytest.raises(NonPositiveDefinite):
        em_kron_mixture(Y, 2, 2, init=[(-3.0 * np.eye(2), np.eye(2))])


def test_tolerance_and_callback_stop():
    Y, _, _ = make_half_null(n=80, p=3, q=3, seed=12)
    result = em_kron_mixture(Y, 3, 3, max_iter=20, tol=1e12)
    assert result.converged and result.n_iter == 1

    result = em_kron_mixture(Y, 3, 3, max_iter=20, callback=lambda it, ll: it == 2)
    assert result.stopped_by_callback and result.n_iter == 2


def test_argument_validation():
    Y = np.zeros((5, 4))
    with pytest.raises(ValueError):
        em_kron_mixture(Y, 2, 2, method="fancy")
    with pytest.raises(ValueError):
        em_kron_mixture(Y, 2, 2, n_components=1)
    with pytest.raises(ValueError):
        em_kron_mixture(Y, 2, 2, on_degenerate="drop")
    with pytest.raises(ValueError):
        em_kron_mixture(Y, 2, 2, init=[(np.eye(2), np.eye(2))] * 2)
