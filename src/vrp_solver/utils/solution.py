"""
Solution class for the VRP solver.
Represents a (possibly partial) solution to the Vehicle Routing Problem.
"""

import logging
from enum import Enum

from .errors import InvariantViolation

logger = logging.getLogger(__name__)


class UnassignedReason(Enum):
    """Why a job ended up unassigned."""

    NO_CAPACITY = "NoCapacity"
    NO_TIME_WINDOW_FIT = "NoTimeWindowFit"
    SKILL_MISMATCH = "SkillMismatch"
    NO_REACHABLE_VEHICLE = "NoReachableVehicle"
    MAX_DURATION_EXCEEDED = "MaxDurationExceeded"
    MAX_DISTANCE_EXCEEDED = "MaxDistanceExceeded"
    GROUP_CONFLICT = "GroupConflict"
    NOT_INSERTED = "NotInserted"


class Activity:
    """
    One visit of a route: a task of a job, served at one of its places.

    Schedule data (arrival, departure, load) is not stored here, it is derived
    by the constraint checker from the route order.
    """

    __slots__ = ("job", "task_index", "place_index")

    def __init__(self, job, task_index=0, place_index=0):
        self.job = job
        self.task_index = task_index
        self.place_index = place_index

    @property
    def task(self):
        return self.job.tasks[self.task_index]

    @property
    def place(self):
        return self.task.places[self.place_index]

    @property
    def location(self):
        return self.place.location

    def __eq__(self, other):
        if not isinstance(other, Activity):
            return NotImplemented
        return (self.job.id, self.task_index, self.place_index) == \
            (other.job.id, other.task_index, other.place_index)

    def __hash__(self):
        return hash((self.job.id, self.task_index, self.place_index))

    def __repr__(self):
        return f"Activity({self.job.id!r}, task={self.task_index}, place={self.place_index})"


class Route:
    """Ordered activities of one actor (a vehicle working one shift)."""

    def __init__(self, actor, activities=None):
        """
        Initialize a route.

        Args:
            actor (Actor): Vehicle shift serving this route
            activities (list, optional): Initial activities
        """
        self.actor = actor
        self.activities = list(activities or [])
        self.version = 0

    @property
    def vehicle(self):
        return self.actor.vehicle

    @property
    def is_empty(self):
        return not self.activities

    def job_ids(self):
        """Job ids in visiting order, each job once."""
        seen = {}
        for activity in self.activities:
            seen.setdefault(activity.job.id, None)
        return list(seen)

    def positions(self, job_id):
        return [i for i, activity in enumerate(self.activities) if activity.job.id == job_id]

    def insert(self, position, activity):
        self.activities.insert(position, activity)
        self.version += 1

    def remove_job(self, job_id):
        """
        Remove all activities of a job.

        Returns:
            int: Index of the first removed activity, or -1 if the job was not on the route
        """
        positions = self.positions(job_id)
        if not positions:
            return -1
        for position in reversed(positions):
            self.activities.pop(position)
        self.version += 1
        return positions[0]

    def copy(self):
        route = Route(self.actor, self.activities)
        route.version = self.version
        return route

    def __len__(self):
        return len(self.activities)

    def __str__(self):
        """Return string representation of the route."""
        stops = ' -> '.join(str(a.job.id) for a in self.activities)
        return f"Route(vehicle={self.vehicle.id}, shift={self.actor.shift_index}, activities={stops})"


class ScheduleCache:
    """
    Derived schedules keyed by route identity (the actor key).

    An entry is only returned while the route version it was computed for
    is still current, so a structural change to a route always invalidates it.
    """

    def __init__(self, entries=None):
        self._entries = dict(entries or {})

    def get(self, route):
        entry = self._entries.get(route.actor.key)
        if entry is not None and entry[0] == route.version:
            return entry[1]
        return None

    def put(self, route, schedule):
        self._entries[route.actor.key] = (route.version, schedule)

    def discard(self, route):
        self._entries.pop(route.actor.key, None)

    def copy(self):
        # Schedules are never mutated after creation, so they can be shared.
        return ScheduleCache(self._entries)

    def __len__(self):
        return len(self._entries)


class Solution:
    """
    Routes per actor plus the jobs that are not served.

    Every job of the problem is either on exactly one route or in
    ``unassigned``. All mutations go through the methods of this class.
    """

    def __init__(self, problem):
        """
        Initialize a solution with every job unassigned.

        Args:
            problem (Problem): Problem this solution belongs to
        """
        self.problem = problem
        self.routes = {}
        self.unassigned = {job.id: UnassignedReason.NOT_INSERTED for job in problem.jobs}
        self.schedules = ScheduleCache()
        self._job_actor = {}
        self._groups = {}

    # ----- Queries -----

    @property
    def non_empty_routes(self):
        """Routes in fleet order, skipping empty ones."""
        return [route for _, route in sorted(self.routes.items(), key=lambda kv: self._actor_index(kv[0]))
                if route.activities]

    def _actor_index(self, key):
        return self.problem.fleet.actor(key).index

    def route(self, actor):
        """Route of an actor, created empty on first access."""
        route = self.routes.get(actor.key)
        if route is None:
            route = Route(actor)
            self.routes[actor.key] = route
        return route

    def route_of(self, job_id):
        key = self._job_actor.get(job_id)
        return self.routes[key] if key is not None else None

    def is_assigned(self, job_id):
        return job_id in self._job_actor

    @property
    def assigned_job_ids(self):
        return list(self._job_actor)

    def group_actor(self, group):
        """Actor key serving a job group, None if the group is not on any route."""
        entry = self._groups.get(group)
        return entry[0] if entry else None

    def is_empty(self):
        return not self._job_actor

    # ----- Mutations -----

    def assign(self, job, actor, positions, place_indices):
        """
        Put a job on an actor's route.

        Args:
            job (Job): Job to insert, must currently be unassigned
            actor (Actor): Serving actor
            positions (list): Insertion index per task, in final route coordinates
            place_indices (list): Chosen place alternative per task
        """
        if job.id not in self.unassigned:
            raise InvariantViolation(f"job {job.id} is already assigned")

        route = self.route(actor)
        for task_index, (position, place_index) in enumerate(zip(positions, place_indices)):
            route.insert(position, Activity(job, task_index, place_index))

        del self.unassigned[job.id]
        self._job_actor[job.id] = actor.key
        if job.group is not None:
            group_actor, count = self._groups.get(job.group, (actor.key, 0))
            if group_actor != actor.key:
                raise InvariantViolation(f"group {job.group} is already served by {group_actor}")
            self._groups[job.group] = (actor.key, count + 1)

    def unassign(self, job_id, reason=UnassignedReason.NOT_INSERTED):
        """
        Take a job off its route and mark it unassigned.

        Returns:
            bool: True if the job was on a route
        """
        key = self._job_actor.pop(job_id, None)
        if key is None:
            self.unassigned[job_id] = reason
            return False

        route = self.routes[key]
        route.remove_job(job_id)
        if route.is_empty:
            del self.routes[key]
            self.schedules.discard(route)
        self.unassigned[job_id] = reason

        group = self.problem.job(job_id).group
        if group is not None:
            group_actor, count = self._groups[group]
            if count <= 1:
                del self._groups[group]
            else:
                self._groups[group] = (group_actor, count - 1)
        return True

    def set_reason(self, job_id, reason):
        if job_id not in self.unassigned:
            raise InvariantViolation(f"job {job_id} is not unassigned")
        self.unassigned[job_id] = reason

    def copy(self):
        """
        Create an independent copy of the solution.

        Routes are cloned, problem data and computed schedules are shared.

        Returns:
            Solution: Copy of the solution
        """
        new_solution = Solution.__new__(Solution)
        new_solution.problem = self.problem
        new_solution.routes = {key: route.copy() for key, route in self.routes.items()}
        new_solution.unassigned = dict(self.unassigned)
        new_solution.schedules = self.schedules.copy()
        new_solution._job_actor = dict(self._job_actor)
        new_solution._groups = dict(self._groups)
        return new_solution

    # ----- Consistency -----

    def check_invariants(self):
        """
        Verify job conservation and bookkeeping consistency.

        Raises:
            InvariantViolation: If any job is lost, duplicated or misfiled
        """
        seen = {}
        for key, route in self.routes.items():
            if route.actor.key != key:
                raise InvariantViolation(f"route of {route.actor} filed under {key}")
            for job_id in route.job_ids():
                if job_id in seen:
                    raise InvariantViolation(f"job {job_id} is on routes {seen[job_id]} and {key}")
                seen[job_id] = key
                job = self.problem.job(job_id)
                task_indices = [a.task_index for a in route.activities if a.job.id == job_id]
                if task_indices != list(range(len(job.tasks))):
                    raise InvariantViolation(f"job {job_id} has tasks {task_indices} on route {key}")

        for job_id in seen:
            if job_id in self.unassigned:
                raise InvariantViolation(f"job {job_id} is both routed and unassigned")

        expected = set(self.problem.job_ids)
        actual = set(seen) | set(self.unassigned)
        if actual != expected:
            missing = sorted(expected - actual)
            extra = sorted(actual - expected)
            raise InvariantViolation(f"job set mismatch, missing={missing}, unknown={extra}")

        if seen != self._job_actor:
            raise InvariantViolation("job to route index is out of sync with routes")

        groups = {}
        for job_id, key in seen.items():
            group = self.problem.job(job_id).group
            if group is None:
                continue
            if groups.setdefault(group, key) != key:
                raise InvariantViolation(f"group {group} is split across actors")

    # ----- Identity -----

    def signature(self):
        """Hashable description of the solution content, independent of construction order."""
        routes = tuple(
            (route.actor.key, tuple((a.job.id, a.task_index, a.place_index) for a in route.activities))
            for route in self.non_empty_routes
        )
        return routes, tuple(sorted(self.unassigned))

    def edges(self):
        """Set of consecutive job pairs, including start and end legs, over all routes."""
        edges = set()
        for route in self.non_empty_routes:
            ids = [a.job.id for a in route.activities]
            for a, b in zip([None] + ids, ids + [None]):
                edges.add((a, b))
        return edges

    def distance_to(self, other):
        """
        Broken pairs distance to another solution.

        Returns:
            float: 0.0 for identical route structure, 1.0 for no shared edges
        """
        mine, theirs = self.edges(), other.edges()
        union = mine | theirs
        if not union:
            return 0.0
        return 1.0 - len(mine & theirs) / len(union)

    def __str__(self):
        """Return string representation of the solution."""
        route_strings = [str(route) for route in self.non_empty_routes]
        unassigned_string = f"Unassigned: {sorted(self.unassigned)}" if self.unassigned else ""
        return f"Solution(routes={len(route_strings)}, {unassigned_string})\n" + "\n".join(route_strings)
