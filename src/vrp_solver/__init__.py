"""
VRP solver: ruin-and-recreate evolutionary search for vehicle routing problems.
"""

from .data import (
    Fleet,
    GreatCircleTransportCost,
    Job,
    MatrixTransportCost,
    Place,
    Problem,
    Registry,
    Shift,
    TimeWindow,
    Vehicle,
    VehicleCosts,
    validate_problem,
)
from .models import ObjectiveEvaluator, SearchEngine, SearchResult, solve
from .utils import (
    Analytics,
    Config,
    ConfigurationError,
    Solution,
    StructuralError,
    UnassignedReason,
    VRPSolverError,
)

__version__ = "0.1.0"
