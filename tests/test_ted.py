import numpy as np
import pytest

from sepcov.sim import random_psd
from sepcov.ted import ted

RTOL = 1e-8
ATOL = 1e-10


def test_idempotent_on_noise_plus_psd():
    rng = np.random.default_rng(0)
    X = random_psd(6, rng, ridge=0.0)
    assert np.allclose(ted(X + np.eye(6)), X, rtol=RTOL, atol=ATOL)


def test_rank_truncation():
    rng = np.random.default_rng(1)
    U, _ = np.linalg.qr(rng.standard_normal((5, 5)))
    X = U[:, :2] @ np.diag([5.0, 3.0]) @ U[:, :2].T
    S = X + np.eye(5)

    assert np.allclose(ted(S, rank=2), X, rtol=RTOL, atol=ATOL)
    assert np.allclose(ted(S), X, rtol=RTOL, atol=ATOL)
    top = 5.0 * np.outer(U[:, 0], U[:, 0])
    assert np.allclose(ted(S, rank=1), top, rtol=RTOL, atol=ATOL)


def test_floor_clamps_small_eigenvalues():
    out = ted(0.5 * np.eye(4), floor=0.1)
    assert np.allclose(out, 0.1 * np.eye(4))
    assert np.allclose(ted(0.5 * np.eye(4)), 0.0)


def test_output_is_psd():
    rng = np.random.default_rng(2)
    E = rng.standard_normal((7, 7))
    out = ted(E + E.T, rank=4)
    assert np.allclose(out, out.T)
    evals = np.linalg.eigvalsh(out)
    assert evals.min() >= -1e-10
    assert np.sum(evals > 1e-10) <= 4


def test_argument_validation():
    with pytest.raises(ValueError):
        ted(np.eye(3), floor=-1.0)
    with pytest.raises(ValueError):
        ted(np.eye(3), rank=0)
    with pytest.raises(ValueError):
        ted(np.eye(3), rank=4)
    with pytest.raises(ValueError):
        ted(np.ones((2, 3)))
