from __future__ import annotations

from collections.abc import Sequence

import numpy as np
from scipy.linalg import cho_factor, cho_solve
from scipy.special import logsumexp

from .exceptions import InvalidDimension, NonPositiveDefinite
from .ops import kron_project_left, kron_project_right, logchol_grad, unpack_logchol_factors

LOG_2PI = float(np.log(2.0 * np.pi))


def model_chol(R: np.ndarray, C: np.ndarray) -> tuple[np.ndarray, bool]:
    """
    Cholesky factor of the model covariance M = I + R ⊗ C, in the
    ``(c, lower)`` form accepted by ``scipy.linalg.cho_solve``.
    """
    Sigma = np.kron(R, C)
    M = np.eye(Sigma.shape[0]) + Sigma
    try:
        return cho_factor(M, lower=True)
    except (np.linalg.LinAlgError, ValueError) as e:
        raise NonPositiveDefinite(
            "I + R⊗C is not positive definite; the Kronecker factors are "
            "numerically degenerate (check for NaN or strongly indefinite R, C)."
        ) from e


def _logdet_from_chol(cho: tuple[np.ndarray, bool]) -> float:
    return 2.0 * float(np.sum(np.log(np.diag(cho[0]))))


def _check_width(Y: np.ndarray, R: np.ndarray, C: np.ndarray) -> None:
    d = R.shape[0] * C.shape[0]
    if Y.ndim != 2 or Y.shape[1] != d:
        raise InvalidDimension(
            f"Y must have {d} = {R.shape[0]}*{C.shape[0]} columns, got shape {Y.shape}"
        )


def kron_loglik_per_row(Y: np.ndarray, R: np.ndarray, C: np.ndarray) -> np.ndarray:
    """
    Log-density of each row of ``Y`` under N(0, I + R ⊗ C).

    Returns
    -------
    (n,) array
        -0.5 * [ d log(2π) + log det(M) + y_i^T M^{-1} y_i ]
    """
    Y = np.atleast_2d(np.asarray(Y, dtype=np.float64))
    _check_width(Y, R, C)
    d = Y.shape[1]
    cho = model_chol(R, C)
    logdet = _logdet_from_chol(cho)
    YMinv = cho_solve(cho, Y.T).T
    quad = np.sum(YMinv * Y, axis=1)
    return -0.5 * (d * LOG_2PI + logdet + quad)


def null_loglik_per_row(Y: np.ndarray) -> np.ndarray:
    """Log-density of each row under pure unit noise N(0, I)."""
    Y = np.atleast_2d(np.asarray(Y, dtype=np.float64))
    d = Y.shape[1]
    return -0.5 * (d * LOG_2PI + np.sum(Y * Y, axis=1))


def kron_loglik(
    Y: np.ndarray, R: np.ndarray, C: np.ndarray, weights: np.ndarray | None = None
) -> float:
    """Total (optionally row-weighted) log-likelihood under N(0, I + R ⊗ C)."""
    ll = kron_loglik_per_row(Y, R, C)
    if weights is None:
        return float(np.sum(ll))
    return float(np.dot(np.asarray(weights, dtype=np.float64), ll))


def weighted_moments(Y: np.ndarray, weights: np.ndarray | None = None) -> tuple[np.ndarray, float]:
    """Return ``(S_w, W)`` with S_w = Σ w_i y_i y_iᵀ and W = Σ w_i."""
    if weights is None:
        return Y.T @ Y, float(Y.shape[0])
    w = np.asarray(weights, dtype=np.float64)
    Yw = Y * np.sqrt(w)[:, None]
    return Yw.T @ Yw, float(np.sum(w))


def negloglik_from_moments(
    theta: np.ndarray, S_w: np.ndarray, W: float, p: int, q: int
) -> tuple[float, np.ndarray]:
    """
    Negative log-likelihood and its gradient in log-Cholesky parameters,
    given sufficient statistics ``S_w`` and ``W`` from :func:`weighted_moments`.

    With M = I + R ⊗ C the objective is
    0.5 * [ W (d log 2π + log det M) + tr(M^{-1} S_w) ] and its matrix gradient
    G = 0.5 * (W M^{-1} - M^{-1} S_w M^{-1}) is projected onto each factor.
    """
    L_R, L_C = unpack_logchol_factors(theta, p, q)
    R = L_R @ L_R.T
    C = L_C @ L_C.T
    d = p * q

    cho = model_chol(R, C)
    logdet = _logdet_from_chol(cho)
    Minv = cho_solve(cho, np.eye(d))
    MinvS = Minv @ S_w
    value = 0.5 * (W * (d * LOG_2PI + logdet) + float(np.trace(MinvS)))

    G = 0.5 * (W * Minv - MinvS @ Minv)
    G = 0.5 * (G + G.T)
    G_R = kron_project_left(G, C, p, q)
    G_C = kron_project_right(G, R, p, q)
    grad = np.concatenate([logchol_grad(L_R, G_R), logchol_grad(L_C, G_C)])
    return float(value), grad


def kron_negloglik(
    theta: np.ndarray,
    Y: np.ndarray,
    p: int,
    q: int,
    weights: np.ndarray | None = None,
) -> tuple[float, np.ndarray]:
    """
    Negative (weighted) log-likelihood of ``Y`` and its gradient with respect
    to the packed log-Cholesky parameters of (R, C).
    """
    Y = np.atleast_2d(np.asarray(Y, dtype=np.float64))
    if Y.shape[1] != p * q:
        raise InvalidDimension(f"Y must have {p * q} columns, got {Y.shape[1]}")
    S_w, W = weighted_moments(Y, weights)
    return negloglik_from_moments(theta, S_w, W, p, q)


def mixture_log_joint(
    Y: np.ndarray,
    factor_pairs: Sequence[tuple[np.ndarray, np.ndarray]],
    weights: np.ndarray,
) -> np.ndarray:
    """
    Matrix of ``log π_k + log f_k(y_i)`` (n × K). The last column is the
    null component N(0, I); ``weights`` has one entry per column.
    """
    weights = np.asarray(weights, dtype=np.float64)
    if weights.shape[0] != len(factor_pairs) + 1:
        raise InvalidDimension(
            f"Expected {len(factor_pairs) + 1} weights (components + null), "
            f"got {weights.shape[0]}"
        )
    cols = [kron_loglik_per_row(Y, R, C) for R, C in factor_pairs]
    cols.append(null_loglik_per_row(Y))
    with np.errstate(divide="ignore"):
        log_w = np.log(weights)
    return np.column_stack(cols) + log_w[None, :]


def mixture_loglik(
    Y: np.ndarray,
    factor_pairs: Sequence[tuple[np.ndarray, np.ndarray]],
    weights: np.ndarray,
) -> float:
    """Incomplete-data log-likelihood Σ_i log Σ_k π_k f_k(y_i)."""
    return float(np.sum(logsumexp(mixture_log_joint(Y, factor_pairs, weights), axis=1)))


def kron_rel_error(
    R: np.ndarray, C: np.ndarray, R_true: np.ndarray, C_true: np.ndarray
) -> float:
    """Relative Frobenius error ||R⊗C - R0⊗C0|| / ||R0⊗C0||."""
    target = np.kron(R_true, C_true)
    return float(np.linalg.norm(np.kron(R, C) - target) / np.linalg.norm(target))


def kron_frobenius_objective(A: np.ndarray, B: np.ndarray, C: np.ndarray) -> float:
    """Frobenius distance ||A - B ⊗ C||_F."""
    return float(np.linalg.norm(A - np.kron(B, C)))
