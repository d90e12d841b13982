"""
Error types raised by the VRP solver.
"""


class VRPSolverError(Exception):
    """Base class for all solver errors."""


class ValidationError:
    """
    A single structural problem found while validating a Problem.

    Args:
        code (str): Stable error code, e.g. "E1000"
        cause (str): What is wrong
        action (str): How to fix it
    """

    def __init__(self, code, cause, action):
        self.code = code
        self.cause = cause
        self.action = action

    def __eq__(self, other):
        if not isinstance(other, ValidationError):
            return NotImplemented
        return (self.code, self.cause, self.action) == (other.code, other.cause, other.action)

    def __hash__(self):
        return hash((self.code, self.cause, self.action))

    def __repr__(self):
        return f"ValidationError({self.code!r}, {self.cause!r})"

    def __str__(self):
        return f"{self.code}: {self.cause}, action: {self.action}"


class StructuralError(VRPSolverError):
    """Problem is malformed and cannot be solved. Raised before search starts."""

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__("; ".join(str(e) for e in self.errors))

    @property
    def codes(self):
        return [e.code for e in self.errors]


class ConfigurationError(VRPSolverError):
    """Invalid option value in the solver configuration."""


class InvariantViolation(VRPSolverError):
    """Solution is internally inconsistent (job lost, duplicated, etc.)."""


class OperatorFailure(VRPSolverError):
    """A ruin/recreate attempt could not produce an offspring."""
