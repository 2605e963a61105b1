from .als import als_kron, em_kron_uniform, opt_rc_uniform, posterior_second_moment
from .api import SeparableCovariance, SeparableMixture
from .em import MixtureComponent, MixtureResult, em_kron_mixture, responsibilities
from .exceptions import (
    DegenerateComponent,
    InvalidDimension,
    NonPositiveDefinite,
    OptimizerNonConvergence,
    SepCovError,
    SingularMatrix,
)
from .metrics import (
    kron_loglik,
    kron_loglik_per_row,
    kron_negloglik,
    kron_rel_error,
    mixture_loglik,
    null_loglik_per_row,
)
from .mle import mle_kron
from .ops import (
    logchol_to_psd,
    pack_logchol,
    partial_trace_1,
    partial_trace_2,
    psd_to_logchol,
    unpack_logchol,
)
from .sim import random_psd, simulate_mixture, simulate_separable
from .ted import ted

__all__ = [
    "DegenerateComponent",
    "InvalidDimension",
    "MixtureComponent",
    "MixtureResult",
    "NonPositiveDefinite",
    "OptimizerNonConvergence",
    "SepCovError",
    "SeparableCovariance",
    "SeparableMixture",
    "SingularMatrix",
    "als_kron",
    "em_kron_mixture",
    "em_kron_uniform",
    "kron_loglik",
    "kron_loglik_per_row",
    "kron_negloglik",
    "kron_rel_error",
    "logchol_to_psd",
    "mixture_loglik",
    "mle_kron",
    "null_loglik_per_row",
    "opt_rc_uniform",
    "pack_logchol",
    "partial_trace_1",
    "partial_trace_2",
    "posterior_second_moment",
    "psd_to_logchol",
    "random_psd",
    "responsibilities",
    "simulate_mixture",
    "simulate_separable",
    "ted",
    "unpack_logchol",
]
