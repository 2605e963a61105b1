from __future__ import annotations

import numpy as np

from .exceptions import InvalidDimension, NonPositiveDefinite


def as_blocks(A: np.ndarray, p: int, q: int) -> np.ndarray:
    """
    View a (p·q × p·q) matrix as a p×p grid of q×q blocks.

    Returns a 4D view ``A4`` with ``A4[i, a, j, b] == A[i*q + a, j*q + b]``, so
    ``A4[i, :, j, :]`` is block (i, j) and ``A4[:, k, :, l]`` is the interleaved
    sub-matrix ``A[k::q, l::q]``.
    """
    A = np.asarray(A)
    if A.shape != (p * q, p * q):
        raise InvalidDimension(
            f"Expected a ({p * q}, {p * q}) matrix for p={p}, q={q}, got {A.shape}"
        )
    return A.reshape(p, q, p, q)


def block(A: np.ndarray, i: int, j: int, q: int) -> np.ndarray:
    """Return the q×q block (i, j) of A."""
    return A[i * q : (i + 1) * q, j * q : (j + 1) * q]


def interleaved_block(A: np.ndarray, k: int, l: int, q: int) -> np.ndarray:
    """Return the p×p matrix of entries (k, l) taken across all q×q blocks."""
    return A[k::q, l::q]


def kron_project_left(A: np.ndarray, C: np.ndarray, p: int, q: int) -> np.ndarray:
    """
    Collapse A onto the left Kronecker factor with C held fixed.

    Entry (i, j) is the Frobenius inner product ``<A_ij, C>`` of block (i, j)
    with C. Divided by ``||C||_F^2`` this is the least-squares B in
    ``min_B ||A - B ⊗ C||_F``.
    """
    return np.einsum("iajb,ab->ij", as_blocks(A, p, q), C)


def kron_project_right(A: np.ndarray, B: np.ndarray, p: int, q: int) -> np.ndarray:
    """
    Collapse A onto the right Kronecker factor with B held fixed.

    Entry (k, l) is ``<A[k::q, l::q], B>``.
    """
    return np.einsum("iajb,ij->ab", as_blocks(A, p, q), B)


def partial_trace_1(M: np.ndarray, p: int, q: int) -> np.ndarray:
    """Trace out the first (p×p) factor: sum of the diagonal blocks, q×q."""
    return np.einsum("iaib->ab", as_blocks(M, p, q))


def partial_trace_2(M: np.ndarray, p: int, q: int) -> np.ndarray:
    """Trace out the second (q×q) factor: per-block traces, p×p."""
    return np.einsum("iaja->ij", as_blocks(M, p, q))


# ---------------------------------------------------------------------------
# Log-Cholesky parameterisation
# ---------------------------------------------------------------------------


def logchol_size(d: int) -> int:
    """Number of free parameters of a d×d log-Cholesky factor."""
    return d * (d + 1) // 2


def logchol_factor(lower: np.ndarray, log_diag: np.ndarray) -> np.ndarray:
    """
    Build the lower-triangular factor L with strict lower part ``lower``
    (row-major order of ``np.tril_indices(d, -1)``) and diagonal
    ``exp(log_diag)``.
    """
    log_diag = np.atleast_1d(np.asarray(log_diag, dtype=np.float64))
    lower = np.atleast_1d(np.asarray(lower, dtype=np.float64))
    d = log_diag.shape[0]
    if lower.shape[0] != d * (d - 1) // 2:
        raise InvalidDimension(
            f"{lower.shape[0]} strictly-lower entries do not match a {d}x{d} "
            f"factor (expected {d * (d - 1) // 2})"
        )
    L = np.zeros((d, d))
    L[np.tril_indices(d, -1)] = lower
    L[np.diag_indices(d)] = np.exp(log_diag)
    return L


def logchol_to_psd(lower: np.ndarray, log_diag: np.ndarray) -> np.ndarray:
    """Decode log-Cholesky parameters to the symmetric PSD matrix L Lᵀ."""
    L = logchol_factor(lower, log_diag)
    return L @ L.T


def psd_to_logchol(M: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """
    Inverse of :func:`logchol_to_psd` for a positive-definite M.

    Returns
    -------
    lower, log_diag : ndarray
        Strictly-lower entries of chol(M) and the log of its diagonal.
    """
    M = np.asarray(M, dtype=np.float64)
    try:
        L = np.linalg.cholesky(0.5 * (M + M.T))
    except np.linalg.LinAlgError as e:
        raise NonPositiveDefinite(
            "Cannot encode a matrix that is not positive definite. "
            "Add a small ridge before encoding it as a log-Cholesky start."
        ) from e
    d = M.shape[0]
    return L[np.tril_indices(d, -1)].copy(), np.log(np.diag(L))


def pack_logchol(R: np.ndarray, C: np.ndarray) -> np.ndarray:
    """Encode a factor pair into one flat vector ``[R block, C block]``."""
    r_low, r_diag = psd_to_logchol(R)
    c_low, c_diag = psd_to_logchol(C)
    return np.concatenate([r_low, r_diag, c_low, c_diag])


def unpack_logchol_factors(
    theta: np.ndarray, p: int, q: int
) -> tuple[np.ndarray, np.ndarray]:
    """Inverse of stack: vector -> (L_R, L_C) lower-triangular factors."""
    theta = np.asarray(theta, dtype=np.float64).ravel()
    n_r, n_c = logchol_size(p), logchol_size(q)
    if theta.shape[0] != n_r + n_c:
        raise InvalidDimension(
            f"Parameter vector has length {theta.shape[0]} but p={p}, q={q} "
            f"need {n_r} + {n_c} = {n_r + n_c}"
        )
    m_r = p * (p - 1) // 2
    m_c = q * (q - 1) // 2
    L_R = logchol_factor(theta[:m_r], theta[m_r:n_r])
    L_C = logchol_factor(theta[n_r : n_r + m_c], theta[n_r + m_c :])
    return L_R, L_C


def unpack_logchol(theta: np.ndarray, p: int, q: int) -> tuple[np.ndarray, np.ndarray]:
    """Decode a flat parameter vector into the PSD pair (R, C)."""
    L_R, L_C = unpack_logchol_factors(theta, p, q)
    return L_R @ L_R.T, L_C @ L_C.T


def logchol_grad(L: np.ndarray, G: np.ndarray) -> np.ndarray:
    """
    Chain a symmetric gradient ``G = dF/dM`` through ``M = L Lᵀ`` to the
    log-Cholesky parameters of L (same layout as :func:`psd_to_logchol`).
    """
    d = L.shape[0]
    dL = 2.0 * (G @ L)
    g_low = dL[np.tril_indices(d, -1)]
    g_diag = np.diag(dL) * np.diag(L)
    return np.concatenate([g_low, g_diag])
