"""Truncated eigenvalue decomposition (TED) baseline for unstructured covariance."""

from __future__ import annotations

import numpy as np


def ted(S: np.ndarray, floor: float = 0.0, rank: int | None = None) -> np.ndarray:
    """
    Unconstrained signal-covariance estimate from a noisy covariance.

    Eigendecomposes ``S``, subtracts the unit noise variance from every
    eigenvalue, clamps values below ``floor`` to ``floor`` and keeps only the
    top ``rank`` eigenvalues (the rest are set to ``floor``).

    Parameters
    ----------
    S : (d × d) array
        Symmetric empirical covariance-like matrix (noise included).
    floor : float
        Lower bound for the shrunk eigenvalues, must be >= 0.
    rank : int, optional
        Number of eigenvalues kept; defaults to d.

    Returns
    -------
    (d × d) array
        PSD reconstruction ``V diag(λ') Vᵀ``.
    """
    S = np.asarray(S, dtype=np.float64)
    if S.ndim != 2 or S.shape[0] != S.shape[1]:
        raise ValueError(f"S must be a square matrix, got shape {S.shape}")
    d = S.shape[0]
    if floor < 0:
        raise ValueError(f"floor must be non-negative, got {floor}")
    if rank is None:
        rank = d
    if not (1 <= rank <= d):
        raise ValueError(f"rank must be between 1 and {d}, got {rank}")

    evals, V = np.linalg.eigh(0.5 * (S + S.T))
    # eigh returns ascending order; flip so index < rank is the top part
    evals, V = evals[::-1], V[:, ::-1]
    shrunk = np.maximum(evals - 1.0, floor)
    shrunk[rank:] = floor

    Vs = V * np.sqrt(shrunk)[None, :]
    return Vs @ Vs.T
