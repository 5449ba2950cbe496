"""
Error taxonomy for the estimation engines

Builders raise these; the public facades catch them at the operation
boundary, log the cause and report failure through their return value.
"""

from typing import Optional


class EstimationError(Exception):
    """Base class for all estimation errors"""


class ConfigurationError(EstimationError):
    """Missing or invalid parameter, unknown discriminator, inconsistent options"""

    def __init__(
        self,
        message: str,
        group: Optional[str] = None,
        parameter: Optional[str] = None
    ):
        super().__init__(message)
        self.group = group
        self.parameter = parameter


class ModelError(EstimationError):
    """Invalid or absent rigid-body model"""


class SolveError(EstimationError):
    """QP or MAP solver failure for the current cycle"""


class MeasurementLookupError(EstimationError, LookupError):
    """Unregistered node id or missing named wrench/sensor"""
