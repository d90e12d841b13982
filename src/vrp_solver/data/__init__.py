"""Problem description, distance/duration oracles and validation."""

from .problem import (
    Actor,
    Fleet,
    Job,
    Place,
    Problem,
    Shift,
    Task,
    TaskKind,
    TimeWindow,
    Vehicle,
    VehicleCosts,
)
from .transport import GreatCircleTransportCost, MatrixTransportCost, TransportCost
from .validation import collect_errors, validate_problem
from .registry import Registry
