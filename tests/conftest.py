import numpy as np
import pytest

from vrp_solver.data.problem import Fleet, Job, Place, Problem, Shift, TimeWindow, Vehicle, VehicleCosts
from vrp_solver.data.registry import Registry
from vrp_solver.data.transport import MatrixTransportCost
from vrp_solver.models.constraints import ConstraintChecker
from vrp_solver.utils.config import Config


def line_matrix(size, spacing=10.0):
    """Locations on a straight line, ``spacing`` apart."""
    coords = np.arange(size) * spacing
    return np.abs(coords[:, None] - coords[None, :])


@pytest.fixture
def transport():
    return MatrixTransportCost.from_durations(line_matrix(10))


@pytest.fixture
def make_vehicle():
    def factory(id="v1", capacity=(10,), start=0, end=0, shift=(0, 1000), skills=(), costs=None, **kwargs):
        return Vehicle(
            id=id,
            profile="car",
            capacity=capacity,
            shifts=(Shift(start, TimeWindow(*shift), end),),
            costs=costs or VehicleCosts(),
            skills=frozenset(skills),
            **kwargs,
        )
    return factory


@pytest.fixture
def make_problem(transport, make_vehicle):
    def factory(jobs, vehicles=None, **kwargs):
        if vehicles is None:
            vehicles = [make_vehicle()]
        return Problem(Fleet(vehicles), jobs, transport, **kwargs)
    return factory


@pytest.fixture
def make_checker():
    def factory(problem, policy="hard", tardiness_penalty=100.0):
        return ConstraintChecker(problem, Registry(problem), policy, tardiness_penalty)
    return factory


@pytest.fixture
def make_config():
    def factory(**sections):
        source = {
            "search": {"population_size": 3, "max_generations": 15, "seed": 7},
            "operators": {},
            "objective": {},
            "constraints": {},
        }
        for section, values in sections.items():
            source[section].update(values)
        return Config(source)
    return factory


@pytest.fixture
def delivery_jobs():
    """Eight deliveries of demand 5 spread along the line."""
    return [Job.delivery(f"job{i}", Place(i, duration=5), 5) for i in range(1, 9)]


@pytest.fixture
def two_vehicle_problem(make_problem, make_vehicle, delivery_jobs):
    vehicles = [
        make_vehicle("v1", capacity=(20,), shift=(0, 10000)),
        make_vehicle("v2", capacity=(20,), shift=(0, 10000)),
    ]
    return make_problem(delivery_jobs, vehicles)
