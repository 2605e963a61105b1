"""Error kinds raised by the separable covariance estimators."""

from __future__ import annotations

from typing import Any

import numpy as np


class SepCovError(Exception):
    """Base class for numerical failures inside an estimator.

    Iterative drivers attach ``iteration`` and ``component`` when they know
    where the failure happened, and ``partial`` holds the last valid estimates
    so callers do not lose progress.
    """

    def __init__(
        self,
        message: str,
        *,
        iteration: int | None = None,
        component: int | None = None,
        partial: Any = None,
    ) -> None:
        super().__init__(message)
        self.iteration = iteration
        self.component = component
        self.partial = partial


class InvalidDimension(SepCovError, ValueError):
    """Parameter vector or matrix shape does not match the declared p, q."""


class NonPositiveDefinite(SepCovError, np.linalg.LinAlgError):
    """Cholesky factorisation of a model covariance failed."""


class SingularMatrix(SepCovError, np.linalg.LinAlgError):
    """A Kronecker factor could not be inverted."""


class DegenerateComponent(SepCovError, RuntimeError):
    """A mixture component's responsibilities have collapsed to zero."""


class OptimizerNonConvergence(UserWarning):
    """The quasi-Newton search stopped before meeting its own tolerance."""
