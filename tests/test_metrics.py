import numpy as np
import pytest
from scipy.stats import multivariate_normal

from sepcov.exceptions import InvalidDimension, NonPositiveDefinite
from sepcov.metrics import (
    kron_loglik,
    kron_loglik_per_row,
    kron_negloglik,
    kron_rel_error,
    mixture_loglik,
    null_loglik_per_row,
)
from sepcov.ops import logchol_size, pack_logchol, unpack_logchol
from sepcov.sim import random_psd

RTOL = 5e-8
ATOL = 5e-9


def _central_diff(f, x, h=1e-5):
    g = np.zeros_like(x)
    for i in range(x.size):
        e = np.zeros_like(x)
        e[i] = h
        g[i] = (f(x + e) - f(x - e)) / (2 * h)
    return g


def test_per_row_matches_dense_mvn():
    rng = np.random.default_rng(0)
    p, q, n = 2, 3, 11
    R, C = random_psd(p, rng), random_psd(q, rng)
    Y = rng.standard_normal((n, p * q))
    cov = np.eye(p * q) + np.kron(R, C)

    expected = multivariate_normal(mean=np.zeros(p * q), cov=cov).logpdf(Y)
    assert np.allclose(kron_loglik_per_row(Y, R, C), expected, rtol=RTOL, atol=ATOL)
    assert np.isclose(kron_loglik(Y, R, C), expected.sum(), rtol=RTOL, atol=ATOL)


def test_weighted_loglik_is_dot_with_rows():
    rng = np.random.default_rng(1)
    p, q, n = 3, 2, 9
    R, C = random_psd(p, rng), random_psd(q, rng)
    Y = rng.standard_normal((n, p * q))
    w = rng.random(n)
    assert np.isclose(kron_loglik(Y, R, C, weights=w), w @ kron_loglik_per_row(Y, R, C))


def test_null_loglik_is_standard_normal():
    rng = np.random.default_rng(2)
    Y = rng.standard_normal((7, 5))
    expected = multivariate_normal(mean=np.zeros(5), cov=np.eye(5)).logpdf(Y)
    assert np.allclose(null_loglik_per_row(Y), expected, rtol=RTOL, atol=ATOL)


def test_zero_signal_reduces_to_null():
    rng = np.random.default_rng(3)
    Y = rng.standard_normal((6, 6))
    ll = kron_loglik_per_row(Y, np.zeros((2, 2)), np.eye(3))
    assert np.allclose(ll, null_loglik_per_row(Y))


@pytest.mark.parametrize("weighted", [False, True])
def test_negloglik_value_and_gradient(weighted):
    rng = np.random.default_rng(4)
    p, q, n = 2, 3, 15
    Y = rng.standard_normal((n, p * q)) * 1.5
    w = rng.random(n) if weighted else None
    theta = 0.3 * rng.standard_normal(logchol_size(p) + logchol_size(q))

    val, grad = kron_negloglik(theta, Y, p, q, weights=w)
    R, C = unpack_logchol(theta, p, q)
    assert np.isclose(val, -kron_loglik(Y, R, C, weights=w), rtol=1e-10)

    num = _central_diff(lambda t: kron_negloglik(t, Y, p, q, weights=w)[0], theta)
    assert np.allclose(grad, num, rtol=1e-5, atol=1e-5)


def test_gradient_vanishes_along_scale_direction():
    # (αR, C/α) leaves R⊗C unchanged, so the objective is flat along it
    rng = np.random.default_rng(5)
    p, q = 3, 2
    R, C = random_psd(p, rng), random_psd(q, rng)
    Y = rng.standard_normal((20, p * q))
    theta = pack_logchol(R, C)
    _, grad = kron_negloglik(theta, Y, p, q)

    direction = np.zeros_like(theta)
    m_r, n_r = p * (p - 1) // 2, logchol_size(p)
    m_c = q * (q - 1) // 2
    direction[m_r:n_r] = 1.0
    direction[n_r + m_c:] = -1.0
    # scaling L_R by s multiplies its strict lower part by s as well
    direction[:m_r] = theta[:m_r]
    direction[n_r:n_r + m_c] = -theta[n_r:n_r + m_c]
    assert abs(grad @ direction) < 1e-8 * max(1.0, np.abs(grad).sum())


def test_non_positive_definite_model_raises():
    Y = np.ones((3, 4))
    with pytest.raises(NonPositiveDefinite):
        kron_loglik_per_row(Y, -2.0 * np.eye(2), np.eye(2))
    with pytest.raises(np.linalg.LinAlgError):
        kron_loglik(Y, np.eye(2), np.full((2, 2), np.nan))


def test_width_mismatch_raises():
    with pytest.raises(InvalidDimension):
        kron_loglik_per_row(np.ones((3, 5)), np.eye(2), np.eye(2))


def test_mixture_loglik_limits():
    rng = np.random.default_rng(6)
    p, q = 2, 2
    R, C = random_psd(p, rng), random_psd(q, rng)
    Y = rng.standard_normal((10, p * q))
    assert np.isclose(mixture_loglik(Y, [(R, C)], np.array([1.0, 0.0])), kron_loglik(Y, R, C))
    assert np.isclose(
        mixture_loglik(Y, [(R, C)], np.array([0.0, 1.0])), null_loglik_per_row(Y).sum()
    )
    mixed = mixture_loglik(Y, [(R, C)], np.array([0.3, 0.7]))
    dense = np.sum(
        np.log(0.3 * np.exp(kron_loglik_per_row(Y, R, C)) + 0.7 * np.exp(null_loglik_per_row(Y)))
    )
    assert np.isclose(mixed, dense)


def test_mixture_weight_count_checked():
    with pytest.raises(InvalidDimension):
        mixture_loglik(np.ones((2, 4)), [(np.eye(2), np.eye(2))], np.array([1.0]))


def test_rel_error_ignores_factor_scaling():
    rng = np.random.default_rng(7)
    R, C = random_psd(3, rng), random_psd(2, rng)
    assert kron_rel_error(2.0 * R, C / 2.0, R, C) < 1e-12
    assert kron_rel_error(R, 2.0 * C, R, C) == pytest.approx(1.0)
