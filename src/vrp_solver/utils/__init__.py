"""Utils module for the VRP solver."""

from .config import Config
from .errors import (
    ConfigurationError,
    InvariantViolation,
    OperatorFailure,
    StructuralError,
    ValidationError,
    VRPSolverError,
)
from .solution import Activity, Route, Solution, UnassignedReason
from .analytics import Analytics
