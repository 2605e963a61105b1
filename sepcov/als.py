import logging

import numpy as np
from scipy.linalg import cho_factor, cho_solve

from ._validation import (
    _validate_convergence_params,
    _validate_dims,
    _validate_observations,
    _validate_square,
)
from .exceptions import SepCovError, SingularMatrix
from .metrics import kron_frobenius_objective, kron_loglik, model_chol
from .ops import kron_project_left, kron_project_right, partial_trace_1, partial_trace_2

logger = logging.getLogger(__name__)


def als_kron(
    A,
    p,
    q,
    B0=None,
    C0=None,
    max_iter: int = 100,
    tol: float = 1e-12,
    *,
    callback=None,
):
    """
    Nearest Kronecker product B ⊗ C to A in Frobenius norm via alternating
    least squares.

    Each half-step is the closed-form minimiser of ||A - B⊗C||_F with the
    other factor fixed:
      - B[i, j] = <A_ij, C> / ||C||_F^2       (A_ij the q×q block (i, j))
      - C[k, l] = <A[k::q, l::q], B> / ||B||_F^2

    Parameters
    ----------
    A : (p·q × p·q) array   target, e.g. a denoised empirical covariance
    p, q : int              factor dimensions
    B0, C0 : array, optional   starting factors (identity by default)
    max_iter : int          max outer iterations
    tol : float             relative objective improvement threshold
    callback : callable, optional
        ``callback(iteration, objective)`` after every iteration; a truthy
        return value stops the loop.

    Returns
    -------
    B, C, info
      info includes:
        - obj_trace            (||A - B⊗C||_F, starting value first)
        - n_iter
        - converged            (tolerance met or exact fit)
        - stopped_on_increase  (objective went up; previous factors kept)
        - stopped_by_callback
    """
    p, q = _validate_dims(p, q)
    _validate_convergence_params(max_iter=max_iter, tol=tol)
    A = _validate_square(A, p * q, name="A")

    B = np.eye(p) if B0 is None else _validate_square(B0, p, name="B0")
    C = np.eye(q) if C0 is None else _validate_square(C0, q, name="C0")
    if not np.any(C):
        raise ValueError("C0 must not be the zero matrix")

    a_norm = float(np.linalg.norm(A))
    obj_prev = kron_frobenius_objective(A, B, C)
    obj_trace = [obj_prev]
    converged = False
    stopped_on_increase = False
    stopped_by_callback = False
    n_iter = 0

    for it in range(max_iter):
        c_norm2 = float(np.sum(C * C))
        if c_norm2 == 0.0:
            # B ⊗ 0 = 0 whatever B is; nothing left to fit
            B = np.zeros((p, p))
            converged = True
            break
        B_new = kron_project_left(A, C, p, q) / c_norm2

        b_norm2 = float(np.sum(B_new * B_new))
        if b_norm2 == 0.0:
            B = B_new
            obj_trace.append(kron_frobenius_objective(A, B, C))
            n_iter = it + 1
            converged = True
            break
        C_new = kron_project_right(A, B_new, p, q) / b_norm2

        obj = kron_frobenius_objective(A, B_new, C_new)
        n_iter = it + 1
        logger.debug("als_kron iter %d: objective %.6g", n_iter, obj)

        if obj > obj_prev:
            # round-off sized increases mean the fit is already stationary
            converged = obj - obj_prev <= 1e-12 * a_norm
            stopped_on_increase = not converged
            if stopped_on_increase:
                logger.info(
                    "als_kron: objective increased at iteration %d (%.6g > %.6g); "
                    "keeping previous factors",
                    n_iter, obj, obj_prev,
                )
            break

        B, C = B_new, C_new
        obj_trace.append(obj)

        if callback is not None and callback(n_iter, obj):
            stopped_by_callback = True
            break

        if obj <= 1e-13 * a_norm:
            converged = True
            break
        rel_impr = (obj_prev - obj) / obj_prev
        obj_prev = obj
        if rel_impr < tol:
            converged = True
            break

    info = {
        "obj_trace": obj_trace,
        "n_iter": n_iter,
        "converged": converged,
        "stopped_on_increase": stopped_on_increase,
        "stopped_by_callback": stopped_by_callback,
    }
    return B, C, info


def _inv_factor(F, name):
    """Inverse of a symmetric positive-definite Kronecker factor."""
    try:
        cho = cho_factor(0.5 * (F + F.T), lower=True)
    except (np.linalg.LinAlgError, ValueError) as e:
        raise SingularMatrix(
            f"{name} is numerically singular and cannot be inverted. "
            f"This usually means the component has lost all its weight."
        ) from e
    return cho_solve(cho, np.eye(F.shape[0]))


def opt_rc_uniform(M_combined, R, C, n, n_iter: int = 5):
    """
    Closed-form alternating M-step for (R, C) given summed posterior second
    moments.

    Per sub-iteration:
      R = tr_2((I_p ⊗ C^{-1}) M) / (n q)
      C = tr_1((R^{-1} ⊗ I_q) M) / (n p)

    Parameters
    ----------
    M_combined : (p·q × p·q) array
        Σ_i E[x_i x_iᵀ | y_i], summed over the n observations.
    R, C : arrays
        Current factors, must be invertible.
    n : float
        Number (or total weight) of observations behind ``M_combined``.
    n_iter : int
        Number of alternating sub-iterations.

    Returns
    -------
    R, C
    """
    R = np.array(R, dtype=np.float64)
    C = np.array(C, dtype=np.float64)
    p, q = R.shape[0], C.shape[0]
    M = _validate_square(M_combined, p * q, name="M_combined")
    if n <= 0:
        raise ValueError(f"n must be positive, got {n}")

    I_p, I_q = np.eye(p), np.eye(q)
    for _ in range(n_iter):
        C_inv = _inv_factor(C, "C")
        R = partial_trace_2(np.kron(I_p, C_inv) @ M, p, q) / (n * q)
        R = 0.5 * (R + R.T)
        R_inv = _inv_factor(R, "R")
        C = partial_trace_1(np.kron(R_inv, I_q) @ M, p, q) / (n * p)
        C = 0.5 * (C + C.T)
    return R, C


def posterior_second_moment(Y, R, C):
    """
    Summed posterior second moments Σ_i E[x_i x_iᵀ | y_i] for y = x + e with
    x ~ N(0, R⊗C) and e ~ N(0, I).

    With Σ = R⊗C and K = (I + Σ)^{-1} Σ the posterior covariance is Kᵀ and the
    posterior mean of x_i is Kᵀ y_i, so the sum is n Kᵀ + Kᵀ (YᵀY) K.
    """
    Y = np.atleast_2d(np.asarray(Y, dtype=np.float64))
    n = Y.shape[0]
    Sigma = np.kron(R, C)
    K = cho_solve(model_chol(R, C), Sigma)
    out = n * K.T + K.T @ (Y.T @ Y) @ K
    return 0.5 * (out + out.T)


def em_kron_uniform(
    Y,
    p,
    q,
    R0=None,
    C0=None,
    max_iter: int = 100,
    n_inner: int = 5,
    tol: float | None = None,
    *,
    callback=None,
):
    """
    EM for the random-effects separable model y = x + e, x ~ N(0, R⊗C),
    e ~ N(0, I).

    The E-step forms the summed posterior second moments; the M-step is
    :func:`opt_rc_uniform` with ``n_inner`` sub-iterations. Every step
    increases the observed-data log-likelihood.

    Returns
    -------
    R, C, info
      info includes:
        - loglik_trace (starting value first)
        - n_iter, converged, stopped_by_callback
    """
    p, q = _validate_dims(p, q)
    _validate_convergence_params(max_iter=max_iter, tol=tol, inner_maxiter=n_inner)
    Y = _validate_observations(Y, p, q)
    n = Y.shape[0]

    R = np.eye(p) if R0 is None else _validate_square(R0, p, name="R0")
    C = np.eye(q) if C0 is None else _validate_square(C0, q, name="C0")

    ll_prev = kron_loglik(Y, R, C)
    loglik_trace = [ll_prev]
    converged = False
    stopped_by_callback = False
    n_iter = 0

    for it in range(max_iter):
        try:
            M_comb = posterior_second_moment(Y, R, C)
            R_new, C_new = opt_rc_uniform(M_comb, R, C, n, n_iter=n_inner)
            ll = kron_loglik(Y, R_new, C_new)
        except SepCovError as e:
            e.iteration = it + 1
            e.partial = (R, C, {"loglik_trace": loglik_trace, "n_iter": n_iter})
            raise

        R, C = R_new, C_new
        n_iter = it + 1
        loglik_trace.append(ll)
        logger.debug("em_kron_uniform iter %d: loglik %.6f", n_iter, ll)

        if callback is not None and callback(n_iter, ll):
            stopped_by_callback = True
            break
        if tol is not None and abs(ll - ll_prev) < tol:
            converged = True
            break
        ll_prev = ll

    info = {
        "loglik_trace": loglik_trace,
        "n_iter": n_iter,
        "converged": converged,
        "stopped_by_callback": stopped_by_callback,
    }
    return R, C, info
