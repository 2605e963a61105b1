"""Input validation and sanitization helpers for sepcov.

This module provides standardized validation functions to ensure consistent
input handling across all estimators and improve error message quality.
"""

from __future__ import annotations

from typing import Any

import numpy as np

from .exceptions import InvalidDimension


def _validate_dims(p: Any, q: Any) -> tuple[int, int]:
    """Validate the row and column dimensions of the matrix variate.

    Parameters
    ----------
    p, q : int-like
        Number of rows and columns of each observed matrix.

    Returns
    -------
    tuple[int, int]
        Validated ``(p, q)``.

    Raises
    ------
    InvalidDimension
        If either dimension is not a positive integer.
    """
    out = []
    for name, val in (("p", p), ("q", q)):
        try:
            val_int = int(val)
        except (TypeError, ValueError) as e:
            raise InvalidDimension(
                f"{name} must be an integer, got {type(val).__name__}"
            ) from e
        if val_int != val or val_int < 1:
            raise InvalidDimension(f"{name} must be a positive integer, got {val}")
        out.append(val_int)
    return out[0], out[1]


def _validate_observations(Y: Any, p: int, q: int, *, name: str = "Y") -> np.ndarray:
    """Validate and convert an observation matrix to an (n × p·q) float array.

    Parameters
    ----------
    Y : array-like
        Observations, one flattened p×q matrix per row. A 1D input is
        treated as a single observation. A 3D input of shape (n, p, q) is
        flattened row-major.
    p, q : int
        Matrix dimensions.
    name : str, optional
        Variable name for error messages.

    Returns
    -------
    np.ndarray
        Validated 2D numpy array.

    Raises
    ------
    ValueError
        If Y is not numeric or empty.
    InvalidDimension
        If the row length does not equal ``p * q``.
    """
    try:
        Y_arr = np.asarray(Y, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{name} cannot be converted to numeric array: {e}") from e

    if Y_arr.ndim == 1:
        Y_arr = Y_arr[None, :]
    elif Y_arr.ndim == 3:
        Y_arr = Y_arr.reshape(Y_arr.shape[0], -1)
    elif Y_arr.ndim != 2:
        raise ValueError(
            f"{name} must be 1D, 2D or 3D, got {Y_arr.ndim}D with shape {Y_arr.shape}."
        )

    if Y_arr.shape[0] == 0:
        raise ValueError(f"{name} must contain at least one observation")
    if Y_arr.shape[1] != p * q:
        raise InvalidDimension(
            f"{name} has {Y_arr.shape[1]} columns but p*q = {p}*{q} = {p * q}. "
            f"Each row must be a row-major flattened {p}x{q} matrix."
        )
    if not np.all(np.isfinite(Y_arr)):
        raise ValueError(f"{name} contains non-finite values")
    return Y_arr


def _validate_square(A: Any, size: int, *, name: str = "A") -> np.ndarray:
    """Validate a square matrix of the given size and return a float copy."""
    try:
        A_arr = np.array(A, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{name} cannot be converted to numeric array: {e}") from e

    if A_arr.ndim == 0 and size == 1:
        A_arr = A_arr.reshape(1, 1)
    if A_arr.shape != (size, size):
        raise InvalidDimension(
            f"{name} must have shape ({size}, {size}), got {A_arr.shape}"
        )
    return A_arr


def _validate_weights(weights: Any, n: int, *, name: str = "weights") -> np.ndarray:
    """Validate per-observation weights (non-negative, length n)."""
    w = np.asarray(weights, dtype=np.float64).ravel()
    if w.shape[0] != n:
        raise InvalidDimension(f"{name} has length {w.shape[0]} but there are {n} rows")
    if np.any(w < 0) or not np.all(np.isfinite(w)):
        raise ValueError(f"{name} must be finite and non-negative")
    return w


def _validate_convergence_params(
    max_iter: Any = None,
    tol: Any = None,
    inner_maxiter: Any = None,
) -> dict[str, int | float]:
    """Validate iteration caps and tolerances.

    Parameters
    ----------
    max_iter : int, optional
        Maximum number of outer iterations.
    tol : float, optional
        Convergence tolerance.
    inner_maxiter : int, optional
        Iteration budget of an inner optimiser.

    Returns
    -------
    dict
        Validated parameters.
    """
    params: dict[str, int | float] = {}

    if max_iter is not None:
        if not isinstance(max_iter, (int, np.integer)) or max_iter < 0:
            raise ValueError(
                f"max_iter must be a non-negative integer, got {max_iter}. "
                f"Try max_iter=100 for typical problems."
            )
        params["max_iter"] = int(max_iter)

    if tol is not None:
        if not isinstance(tol, (int, float)) or tol < 0:
            raise ValueError(
                f"tol must be non-negative, got {tol}. "
                f"Try tol=1e-12 for standard convergence."
            )
        params["tol"] = float(tol)

    if inner_maxiter is not None:
        if not isinstance(inner_maxiter, (int, np.integer)) or inner_maxiter < 1:
            raise ValueError(
                f"inner_maxiter must be a positive integer, got {inner_maxiter}. "
                f"Try inner_maxiter=5 inside an EM loop."
            )
        params["inner_maxiter"] = int(inner_maxiter)

    return params
