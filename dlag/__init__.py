"""
:copyright: Copyright 2021 Brooks M. Musangu and Jan Drugowitsch.
:license: Modified BSD, see LICENSE.txt for details.
"""
from .dlag import DLAG
from .dlag_core import dlag_engine
from .dlag_util import cut_trials, simulate_trials
from .evaluation import (denoise, group_r2, pairwise_regress,
                         population_covariance, variance_explained,
                         variance_weighted_r2)
from .exceptions import (ConfigurationError, DegenerateInputWarning,
                         NumericalInstabilityError)
from .inference import infer_latents
from .initialization import initialize
from .kernels import make_k_big, rbf_covariance
from .params import DLAGParams, GroupLayout

__all__ = [
    "DLAG",
    "dlag_engine",
    "DLAGParams",
    "GroupLayout",
    "cut_trials",
    "simulate_trials",
    "infer_latents",
    "initialize",
    "make_k_big",
    "rbf_covariance",
    "pairwise_regress",
    "group_r2",
    "denoise",
    "population_covariance",
    "variance_explained",
    "variance_weighted_r2",
    "ConfigurationError",
    "NumericalInstabilityError",
    "DegenerateInputWarning"
]
