"""Maximum-likelihood Kronecker factors via L-BFGS-B over log-Cholesky parameters."""

from __future__ import annotations

import logging
import warnings
from collections.abc import Callable
from typing import Any

import numpy as np
from scipy.optimize import minimize

from ._validation import (
    _validate_convergence_params,
    _validate_dims,
    _validate_observations,
    _validate_weights,
)
from .exceptions import InvalidDimension, OptimizerNonConvergence
from .metrics import negloglik_from_moments, weighted_moments
from .ops import logchol_size, pack_logchol, unpack_logchol

logger = logging.getLogger(__name__)


def _minimize_logchol(
    S_w: np.ndarray,
    W: float,
    p: int,
    q: int,
    theta0: np.ndarray,
    maxiter: int,
    tol: float | None = None,
    callback: Callable[[int, float], Any] | None = None,
) -> tuple[np.ndarray, np.ndarray, dict[str, Any]]:
    last: dict[str, Any] = {}

    def fun(theta):
        val, grad = negloglik_from_moments(theta, S_w, W, p, q)
        last["x"] = theta.copy()
        last["f"] = val
        return val, grad

    nll_trace = [fun(np.asarray(theta0, dtype=np.float64))[0]]
    state = {"it": 0, "stopped": False}

    def _cb(xk):
        if "x" in last and np.array_equal(xk, last["x"]):
            val = last["f"]
        else:
            val = fun(xk)[0]
        state["it"] += 1
        nll_trace.append(float(val))
        logger.debug("L-BFGS-B iter %d: nll %.6f", state["it"], val)
        if callback is not None and callback(state["it"], -float(val)):
            state["stopped"] = True
            raise StopIteration

    res = minimize(
        fun,
        np.asarray(theta0, dtype=np.float64),
        jac=True,
        method="L-BFGS-B",
        tol=tol,
        callback=_cb,
        options={"maxiter": maxiter},
    )

    R, C = unpack_logchol(res.x, p, q)
    info = {
        "nll": float(res.fun),
        "loglik": -float(res.fun),
        "n_iter": int(res.nit),
        "n_fev": int(res.nfev),
        "converged": bool(res.success),
        "message": str(res.message),
        "nll_trace": nll_trace,
        "stopped_by_callback": state["stopped"],
        "theta": res.x,
    }
    return R, C, info


def mle_kron(
    Y: Any,
    p: int,
    q: int,
    theta0: np.ndarray | None = None,
    maxiter: int = 10000,
    tol: float | None = None,
    *,
    callback: Callable[[int, float], Any] | None = None,
) -> tuple[np.ndarray, np.ndarray, dict[str, Any]]:
    """
    Maximum-likelihood (R, C) for rows of ``Y`` under N(0, I + R ⊗ C).

    The negative log-likelihood is minimised with L-BFGS-B over the packed
    log-Cholesky parameters of (R, C), so no positivity constraints are
    needed. Stopping is left to the optimiser; if it reports failure an
    :class:`OptimizerNonConvergence` warning is issued and the last iterate
    is still returned.

    Parameters
    ----------
    Y : (n × p·q) array
        Observations, one row-major flattened p×q matrix per row.
    p, q : int
        Factor dimensions.
    theta0 : array, optional
        Starting parameters; the default all-zero vector decodes to
        R = I_p, C = I_q.
    maxiter : int
        Iteration cap handed to the optimiser.
    tol : float, optional
        Forwarded to ``scipy.optimize.minimize``.
    callback : callable, optional
        ``callback(iteration, loglik)``; a truthy return stops the search.

    Returns
    -------
    R, C, info
      info includes nll, loglik, n_iter, n_fev, converged, message,
      nll_trace (starting value first), stopped_by_callback, theta.
    """
    p, q = _validate_dims(p, q)
    _validate_convergence_params(inner_maxiter=maxiter)
    Y = _validate_observations(Y, p, q)

    n_par = logchol_size(p) + logchol_size(q)
    if theta0 is None:
        theta0 = np.zeros(n_par)
    else:
        theta0 = np.asarray(theta0, dtype=np.float64).ravel()
        if theta0.shape[0] != n_par:
            raise InvalidDimension(
                f"theta0 has length {theta0.shape[0]}, expected {n_par} for p={p}, q={q}"
            )

    S, W = weighted_moments(Y)
    R, C, info = _minimize_logchol(S, W, p, q, theta0, maxiter, tol, callback)

    if not info["converged"] and not info["stopped_by_callback"]:
        warnings.warn(
            f"L-BFGS-B stopped without meeting its tolerance after "
            f"{info['n_iter']} iterations: {info['message']}",
            OptimizerNonConvergence,
            stacklevel=2,
        )
    return R, C, info


def weighted_mle_step(
    Y: np.ndarray,
    weights: np.ndarray,
    R: np.ndarray,
    C: np.ndarray,
    maxiter: int = 5,
) -> tuple[np.ndarray, np.ndarray, dict[str, Any]]:
    """
    A few L-BFGS-B iterations on the row-weighted log-likelihood, warm-started
    at (R, C). Used as the generalised M-step of the mixture EM, so hitting
    ``maxiter`` is expected and not reported.
    """
    p, q = R.shape[0], C.shape[0]
    w = _validate_weights(weights, Y.shape[0])
    S_w, W = weighted_moments(Y, w)
    theta0 = pack_logchol(R, C)
    return _minimize_logchol(S_w, W, p, q, theta0, maxiter)
