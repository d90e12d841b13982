"""
Problem entities for the VRP solver.
Describes jobs, vehicles, the fleet and the problem handed to the search.

Everything in this module is immutable once constructed.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Hashable, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimeWindow:
    """Closed time interval [start, end]."""

    start: float
    end: float

    def contains(self, time):
        return self.start <= time <= self.end

    def intersects(self, other):
        return self.start <= other.end and other.start <= self.end

    @property
    def duration(self):
        return self.end - self.start


@dataclass(frozen=True)
class Place:
    """
    One alternative way to serve a task.

    Attributes:
        location: Location key understood by the transport oracle
        duration: Service duration at the location
        times: Allowed time windows; empty means any time
    """

    location: Hashable
    duration: float = 0.0
    times: Tuple[TimeWindow, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "times", tuple(self.times))


class TaskKind(Enum):
    SERVICE = "service"
    PICKUP = "pickup"
    DELIVERY = "delivery"


@dataclass(frozen=True)
class Task:
    """A single visit a job needs: where it can happen and what it loads or unloads."""

    kind: TaskKind
    places: Tuple[Place, ...]
    demand: Tuple[float, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "places", tuple(self.places))
        object.__setattr__(self, "demand", tuple(self.demand))


@dataclass(frozen=True, eq=False)
class Job:
    """
    A unit of work.

    A job has either one task (service, pickup or delivery) or two tasks
    forming a shipment: a pickup followed by a delivery of the same demand,
    both on the same route and in that order.

    Attributes:
        id: Unique job identifier
        tasks: One task, or (pickup, delivery) for a shipment
        skills: Skills the serving vehicle must have
        group: Jobs sharing a group must be served by the same vehicle shift
    """

    id: str
    tasks: Tuple[Task, ...]
    skills: frozenset = field(default_factory=frozenset)
    group: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "tasks", tuple(self.tasks))
        object.__setattr__(self, "skills", frozenset(self.skills))

    @classmethod
    def service(cls, id, places, skills=(), group=None):
        return cls(id, (Task(TaskKind.SERVICE, _places(places)),), frozenset(skills), group)

    @classmethod
    def pickup(cls, id, places, demand, skills=(), group=None):
        return cls(id, (Task(TaskKind.PICKUP, _places(places), _demand(demand)),), frozenset(skills), group)

    @classmethod
    def delivery(cls, id, places, demand, skills=(), group=None):
        return cls(id, (Task(TaskKind.DELIVERY, _places(places), _demand(demand)),), frozenset(skills), group)

    @classmethod
    def shipment(cls, id, pickup_places, delivery_places, demand, skills=(), group=None):
        demand = _demand(demand)
        tasks = (
            Task(TaskKind.PICKUP, _places(pickup_places), demand),
            Task(TaskKind.DELIVERY, _places(delivery_places), demand),
        )
        return cls(id, tasks, frozenset(skills), group)

    @property
    def is_shipment(self):
        return len(self.tasks) == 2

    @property
    def locations(self):
        return [place.location for task in self.tasks for place in task.places]

    def __repr__(self):
        return f"Job(id={self.id!r}, tasks={len(self.tasks)})"


def _places(places):
    if isinstance(places, Place):
        return (places,)
    return tuple(places)


def _demand(demand):
    if isinstance(demand, (int, float)):
        return (float(demand),)
    return tuple(float(d) for d in demand)


@dataclass(frozen=True)
class VehicleCosts:
    """Cost structure of a vehicle."""

    fixed: float = 0.0
    per_distance: float = 1.0
    per_driving_time: float = 0.0
    per_waiting_time: float = 0.0
    per_service_time: float = 0.0


@dataclass(frozen=True)
class Shift:
    """
    One working period of a vehicle.

    Attributes:
        start_location: Where the vehicle starts
        time: Shift time window; departure happens at time.start
        end_location: Where the vehicle must return, None for open routes
    """

    start_location: Hashable
    time: TimeWindow
    end_location: Optional[Hashable] = None


@dataclass(frozen=True, eq=False)
class Vehicle:
    """
    A vehicle of the fleet.

    Attributes:
        id: Unique vehicle identifier
        profile: Routing profile used to query the transport oracle
        capacity: Capacity vector
        shifts: One or more shifts
        costs: Cost structure
        skills: Skills this vehicle offers
        max_duration: Optional route duration limit
        max_distance: Optional route distance limit
    """

    id: str
    profile: str
    capacity: Tuple[float, ...]
    shifts: Tuple[Shift, ...]
    costs: VehicleCosts = field(default_factory=VehicleCosts)
    skills: frozenset = field(default_factory=frozenset)
    max_duration: Optional[float] = None
    max_distance: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, "capacity", _demand(self.capacity))
        object.__setattr__(self, "shifts", tuple(self.shifts))
        object.__setattr__(self, "skills", frozenset(self.skills))

    def __repr__(self):
        return f"Vehicle(id={self.id!r}, profile={self.profile!r})"


@dataclass(frozen=True, eq=False)
class Actor:
    """A vehicle working one of its shifts. Owns at most one route."""

    vehicle: Vehicle
    shift: Shift
    shift_index: int
    index: int

    @property
    def key(self):
        return (self.vehicle.id, self.shift_index)

    @property
    def profile(self):
        return self.vehicle.profile

    def __repr__(self):
        return f"Actor({self.vehicle.id!r}, shift={self.shift_index})"


class Fleet:
    """Set of vehicles, grouped by routing profile."""

    def __init__(self, vehicles):
        self.vehicles = tuple(vehicles)

        self.profiles = {}
        for vehicle in self.vehicles:
            self.profiles.setdefault(vehicle.profile, []).append(vehicle)

        actors = []
        for vehicle in self.vehicles:
            for shift_index, shift in enumerate(vehicle.shifts):
                actors.append(Actor(vehicle, shift, shift_index, len(actors)))
        self.actors = tuple(actors)
        self._actors_by_key = {actor.key: actor for actor in self.actors}

    def actor(self, key):
        return self._actors_by_key[key]

    @property
    def dimensions(self):
        """Number of capacity dimensions, taken from the widest vehicle."""
        return max((len(v.capacity) for v in self.vehicles), default=0)

    def __len__(self):
        return len(self.vehicles)


class Problem:
    """
    A fully resolved routing problem.

    Args:
        fleet (Fleet): Available vehicles
        jobs (list): Jobs to serve
        transport (TransportCost): Distance/duration oracle
        max_route_duration (float, optional): Global route duration limit
    """

    def __init__(self, fleet, jobs, transport, max_route_duration=None):
        self.fleet = fleet
        self.jobs = tuple(jobs)
        self.transport = transport
        self.max_route_duration = max_route_duration

        self._jobs_by_id = {}
        for job in self.jobs:
            self._jobs_by_id.setdefault(job.id, job)

        self._travel_cache = {}

    def job(self, job_id):
        return self._jobs_by_id[job_id]

    @property
    def job_ids(self):
        return [job.id for job in self.jobs]

    def travel(self, profile, from_location, to_location, departure):
        """
        Query the transport oracle.

        Answers of time independent oracles are memoised per problem. The memo
        is the only state written after construction and is safe to share
        between search threads: the oracle is pure, so a race at worst queries
        the same pair twice and stores the same answer, and single dict reads
        and writes are atomic.

        Returns:
            tuple: (distance, duration)
        """
        if from_location == to_location:
            return 0.0, 0.0

        if self.transport.time_dependent:
            return self.transport.cost(profile, from_location, to_location, departure)

        key = (profile, from_location, to_location)
        value = self._travel_cache.get(key)
        if value is None:
            value = self.transport.cost(profile, from_location, to_location, departure)
            self._travel_cache[key] = value
        return value

    def route_duration_limit(self, vehicle):
        limits = [limit for limit in (vehicle.max_duration, self.max_route_duration) if limit is not None]
        return min(limits) if limits else None

    def __repr__(self):
        return f"Problem(jobs={len(self.jobs)}, vehicles={len(self.fleet)})"
