"""
DLAG error and warning types.

:copyright: Copyright 2021 Brooks M. Musangu and Jan Drugowitsch.
:license: Modified BSD, see LICENSE.txt for details.
"""

__all__ = [
    "ConfigurationError",
    "NumericalInstabilityError",
    "DegenerateInputWarning"
]


class ConfigurationError(ValueError):
    """Inconsistent dimensions, invalid kernel parameters or unsupported
    options. Raised before any computation starts."""


class NumericalInstabilityError(ArithmeticError):
    """A covariance matrix lost positive-definiteness, or an optimization
    step produced non-finite values."""


class DegenerateInputWarning(UserWarning):
    """Input data could not be processed as requested and a fallback was
    used instead."""
