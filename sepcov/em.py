"""EM for mixtures of separable Gaussian components plus a pure-noise component.

Component k (k < K-1) models rows as N(0, I + R_k ⊗ C_k); the last component is
the null N(0, I). Two interchangeable M-steps are available:

``"approximate"``
    Responsibility-weighted covariance, TED denoising, then Frobenius ALS.
``"exact"``
    A few warm-started L-BFGS-B iterations on the weighted log-likelihood
    (generalised EM, so the log-likelihood trace never decreases).
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np
from scipy.special import logsumexp

from ._validation import (
    _validate_convergence_params,
    _validate_dims,
    _validate_observations,
    _validate_square,
)
from .als import als_kron
from .exceptions import DegenerateComponent, SepCovError
from .metrics import mixture_log_joint, mixture_loglik
from .mle import weighted_mle_step
from .ted import ted

logger = logging.getLogger(__name__)

METHODS = ("approximate", "exact")
DEGENERATE_POLICIES = ("freeze", "reinit", "raise")


@dataclass
class MixtureComponent:
    """One separable component: its factors, weight and latest responsibilities."""

    R: np.ndarray
    C: np.ndarray
    weight: float
    responsibilities: np.ndarray | None = None
    degenerate: bool = False

    @property
    def covariance(self) -> np.ndarray:
        return np.kron(self.R, self.C)


@dataclass
class MixtureResult:
    components: list[MixtureComponent]
    null_weight: float
    responsibilities: np.ndarray
    loglik_trace: list[float]
    n_iter: int
    converged: bool
    method: str
    degenerate_events: list[tuple[int, int]] = field(default_factory=list)
    stopped_by_callback: bool = False

    @property
    def weights(self) -> np.ndarray:
        """All K weights, null component last."""
        return np.array([c.weight for c in self.components] + [self.null_weight])

    @property
    def R_list(self) -> list[np.ndarray]:
        return [c.R for c in self.components]

    @property
    def C_list(self) -> list[np.ndarray]:
        return [c.C for c in self.components]

    @property
    def loglik(self) -> float:
        return self.loglik_trace[-1]


def _factor_pairs(components: Sequence[MixtureComponent]) -> list[tuple[np.ndarray, np.ndarray]]:
    return [(c.R, c.C) for c in components]


def responsibilities(
    Y: np.ndarray, components: Sequence[MixtureComponent], null_weight: float
) -> np.ndarray:
    """E-step: n × K posterior membership probabilities, null column last."""
    weights = [c.weight for c in components] + [null_weight]
    log_joint = mixture_log_joint(Y, _factor_pairs(components), np.asarray(weights))
    return np.exp(log_joint - logsumexp(log_joint, axis=1, keepdims=True))


def _initial_components(
    n_sep: int, p: int, q: int, init: Any, random_state: Any
) -> list[MixtureComponent]:
    weight = 1.0 / (n_sep + 1)
    if isinstance(init, str):
        if init == "identity":
            return [MixtureComponent(np.eye(p), np.eye(q), weight) for _ in range(n_sep)]
        if init == "random":
            rng = np.random.default_rng(random_state)
            return [
                MixtureComponent(
                    rng.uniform(0.5, 1.5) * np.eye(p),
                    rng.uniform(0.5, 1.5) * np.eye(q),
                    weight,
                )
                for _ in range(n_sep)
            ]
        raise ValueError(f"init must be 'identity', 'random' or a list of (R, C), got {init!r}")

    pairs = list(init)
    if len(pairs) != n_sep:
        raise ValueError(
            f"init provides {len(pairs)} factor pairs but n_components - 1 = {n_sep}"
        )
    return [
        MixtureComponent(
            _validate_square(R, p, name=f"init[{k}].R"),
            _validate_square(C, q, name=f"init[{k}].C"),
            weight,
        )
        for k, (R, C) in enumerate(pairs)
    ]


def _approximate_update(
    Y: np.ndarray,
    w: np.ndarray,
    comp: MixtureComponent,
    p: int,
    q: int,
    ted_floor: float,
    als_max_iter: int,
    als_tol: float,
) -> tuple[np.ndarray, np.ndarray]:
    Yw = Y * np.sqrt(w)[:, None]
    S = (Yw.T @ Yw) / np.sum(w)
    A = ted(S, floor=ted_floor)
    C0 = comp.C if np.any(comp.C) else np.eye(q)
    B, C, _ = als_kron(A, p, q, B0=comp.R, C0=C0, max_iter=als_max_iter, tol=als_tol)
    return B, C


def em_kron_mixture(
    Y: Any,
    p: int,
    q: int,
    n_components: int = 2,
    method: str = "approximate",
    max_iter: int = 20,
    *,
    inner_maxiter: int = 5,
    als_max_iter: int = 100,
    als_tol: float = 1e-12,
    ted_floor: float = 0.0,
    tol: float | None = None,
    init: str | Sequence[tuple[np.ndarray, np.ndarray]] = "identity",
    random_state: Any = None,
    degenerate_tol: float = 1e-8,
    on_degenerate: str = "freeze",
    callback: Callable[[int, float], Any] | None = None,
) -> MixtureResult:
    """
    Fit a mixture of ``n_components - 1`` separable components and one null
    component by EM.

    Parameters
    ----------
    Y : (n × p·q) array
        Observations.
    p, q : int
        Factor dimensions.
    n_components : int
        Total number of components K, null included (K >= 2).
    method : {"approximate", "exact"}
        M-step strategy for the separable components.
    max_iter : int
        Number of E+M cycles. There is no early stopping unless ``tol`` is set
        or the callback asks for it.
    inner_maxiter : int
        L-BFGS-B iteration budget per exact M-step.
    als_max_iter, als_tol : int, float
        ALS settings for the approximate M-step.
    ted_floor : float
        Eigenvalue floor of the TED denoising in the approximate M-step.
    tol : float, optional
        Stop once the absolute log-likelihood change drops below ``tol``.
    init : {"identity", "random"} or list of (R, C)
        Starting factors; weights always start uniform.
    random_state : int or Generator, optional
        Seed for ``init="random"``.
    degenerate_tol : float
        A component whose weight falls below this is degenerate.
    on_degenerate : {"freeze", "reinit", "raise"}
        Keep the previous factors, reset them to identity, or raise
        :class:`DegenerateComponent` with the partial result attached.
    callback : callable, optional
        ``callback(iteration, loglik)``; a truthy return stops the loop.

    Returns
    -------
    MixtureResult
    """
    p, q = _validate_dims(p, q)
    _validate_convergence_params(max_iter=max_iter, tol=tol, inner_maxiter=inner_maxiter)
    Y = _validate_observations(Y, p, q)
    if method not in METHODS:
        raise ValueError(f"method must be one of {METHODS}, got {method!r}")
    if on_degenerate not in DEGENERATE_POLICIES:
        raise ValueError(
            f"on_degenerate must be one of {DEGENERATE_POLICIES}, got {on_degenerate!r}"
        )
    if int(n_components) != n_components or n_components < 2:
        raise ValueError(
            f"n_components must be an integer >= 2 (separable components plus null), "
            f"got {n_components}"
        )
    n_sep = int(n_components) - 1

    components = _initial_components(n_sep, p, q, init, random_state)
    null_weight = 1.0 / n_components
    resp = responsibilities(Y, components, null_weight)
    ll_prev = mixture_loglik(Y, _factor_pairs(components), np.full(n_components, null_weight))
    result = MixtureResult(
        components=components,
        null_weight=null_weight,
        responsibilities=resp,
        loglik_trace=[ll_prev],
        n_iter=0,
        converged=False,
        method=method,
    )

    for it in range(max_iter):
        iteration = it + 1
        k_current = None
        try:
            resp = responsibilities(Y, result.components, result.null_weight)
            weights = resp.mean(axis=0)

            new_components = []
            for k, comp in enumerate(result.components):
                k_current = k
                w = resp[:, k]
                new = dataclasses.replace(comp, weight=float(weights[k]), responsibilities=w)

                if weights[k] < degenerate_tol or not np.sum(w) > 0:
                    result.degenerate_events.append((iteration, k))
                    logger.warning(
                        "em_kron_mixture: component %d degenerate at iteration %d "
                        "(weight %.3g); policy %r", k, iteration, weights[k], on_degenerate,
                    )
                    if on_degenerate == "raise":
                        raise DegenerateComponent(
                            f"Component {k} lost its responsibility weight "
                            f"(weight {weights[k]:.3g}) at iteration {iteration}",
                            iteration=iteration,
                            component=k,
                            partial=result,
                        )
                    if on_degenerate == "reinit":
                        new.R, new.C = np.eye(p), np.eye(q)
                    new.degenerate = True
                    new_components.append(new)
                    continue

                if method == "approximate":
                    new.R, new.C = _approximate_update(
                        Y, w, comp, p, q, ted_floor, als_max_iter, als_tol
                    )
                else:
                    new.R, new.C, _ = weighted_mle_step(
                        Y, w, comp.R, comp.C, maxiter=inner_maxiter
                    )
                new.degenerate = False
                new_components.append(new)

            k_current = None
            null_weight = float(weights[-1])
            ll = mixture_loglik(Y, _factor_pairs(new_components), weights)
            if not np.isfinite(ll):
                raise SepCovError(f"Mixture log-likelihood became {ll} at iteration {iteration}")
        except SepCovError as e:
            if e.iteration is None:
                e.iteration = iteration
            if e.component is None:
                e.component = k_current
            e.partial = result
            logger.error(
                "em_kron_mixture failed at iteration %d (component %s): %s",
                iteration, e.component, e,
            )
            raise

        result.components = new_components
        result.null_weight = null_weight
        result.responsibilities = resp
        result.loglik_trace.append(ll)
        result.n_iter = iteration
        logger.debug("em_kron_mixture iter %d: loglik %.6f", iteration, ll)

        if callback is not None and callback(iteration, ll):
            result.stopped_by_callback = True
            break
        if tol is not None and abs(ll - ll_prev) < tol:
            result.converged = True
            break
        ll_prev = ll

    logger.info(
        "em_kron_mixture (%s): %d iterations, loglik %.6f, null weight %.4f",
        method, result.n_iter, result.loglik, result.null_weight,
    )
    return result
