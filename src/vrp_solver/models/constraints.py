"""
Constraint checker for the VRP solver.

Computes route schedules (arrival, departure, waiting, load) and answers
insertion feasibility questions. Insertions are evaluated against the cached
schedule of the route: the prefix before the insertion point is reused and
the suffix is only propagated until departure times stop changing.
"""

import logging
import math
from collections import Counter
from enum import Enum

import numpy as np

from ..data.problem import TaskKind
from ..utils.solution import Activity, UnassignedReason

logger = logging.getLogger(__name__)


class Violation(Enum):
    """Reasons an insertion or a route is infeasible."""

    TIME_WINDOW = "TimeWindowViolation"
    CAPACITY = "CapacityExceeded"
    SKILL = "SkillMismatch"
    MAX_DURATION = "MaxDurationExceeded"
    MAX_DISTANCE = "MaxDistanceExceeded"
    RELATION_ORDER = "RelationOrderViolation"
    GROUP_CONFLICT = "GroupConflict"


VIOLATION_REASONS = {
    Violation.TIME_WINDOW: UnassignedReason.NO_TIME_WINDOW_FIT,
    Violation.CAPACITY: UnassignedReason.NO_CAPACITY,
    Violation.SKILL: UnassignedReason.SKILL_MISMATCH,
    Violation.MAX_DURATION: UnassignedReason.MAX_DURATION_EXCEEDED,
    Violation.MAX_DISTANCE: UnassignedReason.MAX_DISTANCE_EXCEEDED,
    Violation.RELATION_ORDER: UnassignedReason.NOT_INSERTED,
    Violation.GROUP_CONFLICT: UnassignedReason.GROUP_CONFLICT,
}


def route_cost(costs, distance, driving, waiting, service):
    """Cost of a used route under a vehicle cost structure."""
    return (costs.fixed
            + costs.per_distance * distance
            + costs.per_driving_time * driving
            + costs.per_waiting_time * waiting
            + costs.per_service_time * service)


def reason_for(violations):
    """
    Pick the unassigned reason for a job rejected by several routes.

    Args:
        violations (list): Violation per rejecting route

    Returns:
        UnassignedReason: Reason of the most frequent violation
    """
    if not violations:
        return UnassignedReason.NO_REACHABLE_VEHICLE
    order = list(Violation)
    counts = Counter(violations)
    violation = max(counts, key=lambda v: (counts[v], -order.index(v)))
    return VIOLATION_REASONS[violation]


class ScheduledStop:
    """Computed schedule of a single activity."""

    __slots__ = ("activity", "arrival", "service_start", "departure", "waiting", "tardiness", "load")

    def __init__(self, activity, arrival, service_start, departure, waiting, tardiness, load):
        self.activity = activity
        self.arrival = arrival
        self.service_start = service_start
        self.departure = departure
        self.waiting = waiting
        self.tardiness = tardiness
        self.load = load

    def __repr__(self):
        return (f"ScheduledStop({self.activity.job.id!r}, arrival={self.arrival:.2f}, "
                f"departure={self.departure:.2f}, load={self.load.tolist()})")


class RouteSchedule:
    """
    Derived data of one route version. Never mutated after creation.

    Leg ``k`` arrives at activity ``k``; leg ``n`` returns to the shift end
    location (zero for open routes). Prefix arrays have one more entry than
    the array they sum.
    """

    def __init__(self, actor, activities, start_time, arrivals, service_starts, departures,
                 leg_distance, leg_duration, waiting, tardiness, service, end_time, loads, violations):
        self.actor = actor
        self.activities = tuple(activities)
        self.start_time = start_time
        self.arrivals = arrivals
        self.service_starts = service_starts
        self.departures = departures
        self.leg_distance = leg_distance
        self.leg_duration = leg_duration
        self.waiting = waiting
        self.tardiness = tardiness
        self.service = service
        self.end_time = end_time
        self.loads = loads
        self.violations = violations

        self.distance_prefix = np.concatenate(([0.0], np.cumsum(leg_distance)))
        self.driving_prefix = np.concatenate(([0.0], np.cumsum(leg_duration)))
        self.waiting_prefix = np.concatenate(([0.0], np.cumsum(waiting)))
        self.tardiness_prefix = np.concatenate(([0.0], np.cumsum(tardiness)))
        self.service_prefix = np.concatenate(([0.0], np.cumsum(service)))

        self.max_prefix = np.maximum.accumulate(loads, axis=0)
        self.max_suffix = np.maximum.accumulate(loads[::-1], axis=0)[::-1]

    @property
    def size(self):
        return len(self.activities)

    @property
    def distance(self):
        return float(self.distance_prefix[-1])

    @property
    def driving(self):
        return float(self.driving_prefix[-1])

    @property
    def total_waiting(self):
        return float(self.waiting_prefix[-1])

    @property
    def total_tardiness(self):
        return float(self.tardiness_prefix[-1])

    @property
    def total_service(self):
        return float(self.service_prefix[-1])

    @property
    def duration(self):
        return self.end_time - self.start_time if self.activities else 0.0

    @property
    def is_feasible(self):
        return not self.violations

    def cost(self):
        if not self.activities:
            return 0.0
        return route_cost(self.actor.vehicle.costs, self.distance, self.driving,
                          self.total_waiting, self.total_service)

    def departure_before(self, position):
        return self.start_time if position == 0 else self.departures[position - 1]

    def location_before(self, position):
        if position == 0:
            return self.actor.shift.start_location
        return self.activities[position - 1].location

    @property
    def stops(self):
        return [
            ScheduledStop(activity, self.arrivals[k], self.service_starts[k], self.departures[k],
                          self.waiting[k], self.tardiness[k], self.loads[k + 1])
            for k, activity in enumerate(self.activities)
        ]


class InsertionResult:
    """
    Outcome of evaluating one job insertion into one route.

    ``load_delta`` is the demand vector the job adds to the vehicle load and
    ``load_span`` the inclusive range of load profile rows of the resulting route
    that carry it (row 0 is the load at the start, row k+1 the load after
    activity k). Service jobs have no span.
    """

    __slots__ = ("job", "actor", "positions", "place_indices", "cost", "distance_delta",
                 "duration_delta", "tardiness_delta", "load_delta", "load_span", "violation")

    def __init__(self, job, actor, positions=None, place_indices=None, cost=math.inf,
                 distance_delta=0.0, duration_delta=0.0, tardiness_delta=0.0,
                 load_delta=None, load_span=None, violation=None):
        self.job = job
        self.actor = actor
        self.positions = positions
        self.place_indices = place_indices
        self.cost = cost
        self.distance_delta = distance_delta
        self.duration_delta = duration_delta
        self.tardiness_delta = tardiness_delta
        self.load_delta = load_delta
        self.load_span = load_span
        self.violation = violation

    @classmethod
    def failure(cls, job, actor, violation):
        return cls(job, actor, violation=violation)

    @property
    def feasible(self):
        return self.violation is None and self.positions is not None

    def __repr__(self):
        if not self.feasible:
            return f"InsertionResult({self.job.id!r}, {self.actor}, violation={self.violation})"
        return f"InsertionResult({self.job.id!r}, {self.actor}, positions={self.positions}, cost={self.cost:.2f})"


class ConstraintChecker:
    """
    Feasibility and schedule computations.

    Args:
        problem (Problem): Problem being solved
        registry (Registry): Read-only problem indices
        time_window_policy (str): "hard" rejects late arrivals, "soft" records them as tardiness
        tardiness_penalty (float): Cost per time unit of tardiness used when ranking insertions
    """

    def __init__(self, problem, registry, time_window_policy="hard", tardiness_penalty=0.0):
        self.problem = problem
        self.registry = registry
        self.soft_time_windows = time_window_policy == "soft"
        self.tardiness_penalty = tardiness_penalty if self.soft_time_windows else 0.0
        # Filled once here, read-only while workers share the checker.
        self._sorted_times = {
            place: tuple(sorted(place.times, key=lambda tw: (tw.start, tw.end)))
            for job in problem.jobs for task in job.tasks for place in task.places
        }

    @classmethod
    def from_config(cls, problem, registry, config):
        return cls(
            problem,
            registry,
            time_window_policy=config.get('constraints.time_windows', 'hard'),
            tardiness_penalty=config.get('objective.tardiness_penalty', 0.0),
        )

    # ----- Low level helpers -----

    def _times(self, place):
        times = self._sorted_times.get(place)
        if times is None:
            times = tuple(sorted(place.times, key=lambda tw: (tw.start, tw.end)))
        return times

    def _visit(self, place, arrival):
        """
        Serve a place arriving at the given time.

        Returns:
            tuple: (service start, departure, tardiness, on time)
        """
        times = self._times(place)
        if not times:
            return arrival, arrival + place.duration, 0.0, True

        for tw in times:
            if arrival <= tw.end:
                start = max(arrival, tw.start)
                return start, start + place.duration, 0.0, True

        return arrival, arrival + place.duration, arrival - times[-1].end, False

    def _load_change(self, activity):
        demand = self.registry.demands[activity.job.id][activity.task_index]
        kind = activity.task.kind
        if kind is TaskKind.PICKUP:
            return demand
        if kind is TaskKind.DELIVERY:
            return -demand
        return None

    def _start_load(self, activities):
        load = np.zeros(self.registry.dimensions)
        for activity in activities:
            if not activity.job.is_shipment and activity.task.kind is TaskKind.DELIVERY:
                load = load + self.registry.demands[activity.job.id][0]
        return load

    def _loads(self, activities):
        loads = np.zeros((len(activities) + 1, self.registry.dimensions))
        loads[0] = self._start_load(activities)
        for k, activity in enumerate(activities):
            change = self._load_change(activity)
            loads[k + 1] = loads[k] if change is None else loads[k] + change
        return loads

    # ----- Schedules -----

    def build_schedule(self, actor, activities, base=None, start=0):
        """
        Compute the schedule of an activity sequence.

        Args:
            actor (Actor): Serving actor
            activities (list): Activities in visiting order
            base (RouteSchedule, optional): Schedule whose first ``start`` activities
                are identical to ``activities[:start]``; their timing is reused
            start (int): Number of leading activities reused from ``base``

        Returns:
            RouteSchedule: Schedule, with violations recorded rather than raised
        """
        shift = actor.shift
        profile = actor.profile
        n = len(activities)

        if base is None or start <= 0 or start > base.size:
            start = 0
            arrivals, service_starts, departures = [], [], []
            leg_distance, leg_duration, waiting, tardiness, service = [], [], [], [], []
            violations = []
        else:
            arrivals = list(base.arrivals[:start])
            service_starts = list(base.service_starts[:start])
            departures = list(base.departures[:start])
            leg_distance = list(base.leg_distance[:start])
            leg_duration = list(base.leg_duration[:start])
            waiting = list(base.waiting[:start])
            tardiness = list(base.tardiness[:start])
            service = list(base.service[:start])
            violations = [(k, v) for k, v in base.violations if k < start and v is Violation.TIME_WINDOW]

        if n == 0:
            return RouteSchedule(actor, activities, shift.time.start, [], [], [], [0.0], [0.0],
                                 [], [], [], shift.time.start,
                                 np.zeros((1, self.registry.dimensions)), [])

        time = shift.time.start if start == 0 else departures[start - 1]
        location = shift.start_location if start == 0 else activities[start - 1].location

        for k in range(start, n):
            activity = activities[k]
            place = activity.place
            distance, duration = self.problem.travel(profile, location, place.location, time)
            arrival = time + duration
            service_start, departure, late, on_time = self._visit(place, arrival)
            if not on_time or not math.isfinite(arrival):
                violations.append((k, Violation.TIME_WINDOW))

            arrivals.append(arrival)
            service_starts.append(service_start)
            departures.append(departure)
            leg_distance.append(distance)
            leg_duration.append(duration)
            waiting.append(service_start - arrival)
            tardiness.append(late)
            service.append(place.duration)

            time, location = departure, place.location

        if shift.end_location is not None:
            distance, duration = self.problem.travel(profile, location, shift.end_location, time)
            end_time = time + duration
        else:
            distance, duration, end_time = 0.0, 0.0, time
        leg_distance.append(distance)
        leg_duration.append(duration)

        if not end_time <= shift.time.end:
            violations.append((n, Violation.TIME_WINDOW))

        loads = self._loads(activities)
        capacity = self.registry.capacities[actor.key]
        for k in np.nonzero(np.any(loads > capacity + 1e-9, axis=1))[0]:
            violations.append((int(k), Violation.CAPACITY))

        schedule = RouteSchedule(actor, activities, shift.time.start, arrivals, service_starts, departures,
                                 leg_distance, leg_duration, waiting, tardiness, service, end_time,
                                 loads, violations)

        limit = self.problem.route_duration_limit(actor.vehicle)
        if limit is not None and schedule.duration > limit:
            violations.append((n, Violation.MAX_DURATION))
        if actor.vehicle.max_distance is not None and schedule.distance > actor.vehicle.max_distance:
            violations.append((n, Violation.MAX_DISTANCE))

        return schedule

    def schedule(self, solution, route):
        """
        Current schedule of a route, from the solution's cache when still valid.

        Returns:
            RouteSchedule: Schedule of the route's current version
        """
        schedule = solution.schedules.get(route)
        if schedule is None:
            schedule = self.build_schedule(route.actor, route.activities)
            solution.schedules.put(route, schedule)
        return schedule

    def route_violations(self, solution, route):
        """
        Violations of a route under the configured policy.

        Returns:
            list: (activity index, Violation) pairs, empty for a feasible route
        """
        violations = self.schedule(solution, route).violations
        if not self.soft_time_windows:
            return list(violations)
        n = len(route.activities)
        # Only late arrivals are soft; shift end stays a hard limit.
        return [(k, v) for k, v in violations if v is not Violation.TIME_WINDOW or k == n]

    # ----- Insertion -----

    def _static_violation(self, solution, route, job):
        group_actor = solution.group_actor(job.group) if job.group is not None else None
        if group_actor is not None and group_actor != route.actor.key:
            return Violation.GROUP_CONFLICT
        if not job.skills <= route.vehicle.skills:
            return Violation.SKILL
        if not self.registry.is_candidate(job.id, route.actor):
            return self._registry_violation(job)
        return None

    def _registry_violation(self, job):
        reason = self.registry.reasons.get(job.id)
        for violation, mapped in VIOLATION_REASONS.items():
            if mapped is reason:
                return violation
        return Violation.TIME_WINDOW

    def _capacity_ok(self, schedule, job, positions):
        capacity = self.registry.capacities[schedule.actor.key]
        demands = self.registry.demands[job.id]

        if job.is_shipment:
            pickup, delivery = positions
            # Old rows pickup..delivery carry the shipment (old coordinates).
            window = schedule.loads[pickup:delivery + 1]
            return bool(np.all(window.max(axis=0) + demands[0] <= capacity + 1e-9))

        kind = job.tasks[0].kind
        position = positions[0]
        if kind is TaskKind.DELIVERY:
            return bool(np.all(schedule.max_prefix[position] + demands[0] <= capacity + 1e-9))
        if kind is TaskKind.PICKUP:
            return bool(np.all(schedule.max_suffix[position] + demands[0] <= capacity + 1e-9))
        return True

    def _carried_load(self, job, positions, total):
        """Demand a job adds and the load rows carrying it in a route of ``total`` activities."""
        demand = self.registry.demands[job.id][0]
        if job.is_shipment:
            pickup, delivery = positions
            return demand.copy(), (pickup + 1, delivery)

        kind = job.tasks[0].kind
        if kind is TaskKind.DELIVERY:
            return demand.copy(), (0, positions[0])
        if kind is TaskKind.PICKUP:
            return demand.copy(), (positions[0] + 1, total)
        return np.zeros(self.registry.dimensions), None

    def check_insertion(self, solution, route, job, positions, place_indices):
        """
        Evaluate inserting a job at explicit positions without mutating anything.

        Args:
            solution (Solution): Solution owning the route
            route (Route): Target route
            job (Job): Job to insert
            positions (list): Index per task in the resulting route
            place_indices (list): Place alternative per task

        Returns:
            InsertionResult: Deltas on success, violation code otherwise
        """
        actor = route.actor
        violation = self._static_violation(solution, route, job)
        if violation is not None:
            return InsertionResult.failure(job, actor, violation)

        if job.is_shipment and not positions[0] < positions[1]:
            return InsertionResult.failure(job, actor, Violation.RELATION_ORDER)

        schedule = self.schedule(solution, route)
        old_positions = [p - i for i, p in enumerate(positions)]
        if not self._capacity_ok(schedule, job, old_positions):
            return InsertionResult.failure(job, actor, Violation.CAPACITY)

        return self._propagate(schedule, route, job, positions, place_indices)

    def _propagate(self, schedule, route, job, positions, place_indices):
        actor = route.actor
        shift = actor.shift
        profile = actor.profile
        travel = self.problem.travel

        inserted = {position: Activity(job, task_index, place_indices[task_index])
                    for task_index, position in enumerate(positions)}
        old = route.activities
        count = len(inserted)
        total = len(old) + count
        first, last = positions[0], positions[-1]

        time = schedule.departure_before(first)
        location = schedule.location_before(first)

        distance_sum = driving_sum = waiting_sum = tardiness_sum = service_sum = 0.0
        stop_at = None
        old_index = first

        for k in range(first, total):
            activity = inserted.get(k)
            if activity is None:
                activity = old[old_index]
                old_index += 1

            place = activity.place
            distance, duration = travel(profile, location, place.location, time)
            arrival = time + duration
            if not math.isfinite(arrival):
                return InsertionResult.failure(job, actor, Violation.TIME_WINDOW)

            service_start, departure, late, on_time = self._visit(place, arrival)
            if not on_time and not self.soft_time_windows:
                return InsertionResult.failure(job, actor, Violation.TIME_WINDOW)

            distance_sum += distance
            driving_sum += duration
            waiting_sum += service_start - arrival
            tardiness_sum += late
            service_sum += place.duration

            if k > last and departure == schedule.departures[old_index - 1]:
                stop_at = old_index - 1
                break

            time, location = departure, place.location

        if stop_at is None:
            if shift.end_location is not None:
                distance, duration = travel(profile, location, shift.end_location, time)
                end_time = time + duration
            else:
                distance, duration, end_time = 0.0, 0.0, time
            if not end_time <= shift.time.end:
                return InsertionResult.failure(job, actor, Violation.TIME_WINDOW)

            distance_sum += distance
            driving_sum += duration
            legs_end, activities_end = len(schedule.leg_distance), schedule.size
        else:
            end_time = schedule.end_time
            legs_end = activities_end = stop_at + 1

        if schedule.size == 0:
            old_distance = old_driving = old_waiting = old_tardiness = old_service = 0.0
        else:
            old_distance = schedule.distance_prefix[legs_end] - schedule.distance_prefix[first]
            old_driving = schedule.driving_prefix[legs_end] - schedule.driving_prefix[first]
            old_waiting = schedule.waiting_prefix[activities_end] - schedule.waiting_prefix[first]
            old_tardiness = schedule.tardiness_prefix[activities_end] - schedule.tardiness_prefix[first]
            old_service = schedule.service_prefix[activities_end] - schedule.service_prefix[first]

        distance_delta = distance_sum - old_distance
        driving_delta = driving_sum - old_driving
        waiting_delta = waiting_sum - old_waiting
        tardiness_delta = tardiness_sum - old_tardiness
        service_delta = service_sum - old_service

        duration = end_time - schedule.start_time
        limit = self.problem.route_duration_limit(actor.vehicle)
        if limit is not None and duration > limit:
            return InsertionResult.failure(job, actor, Violation.MAX_DURATION)

        max_distance = actor.vehicle.max_distance
        if max_distance is not None and schedule.distance + distance_delta > max_distance:
            return InsertionResult.failure(job, actor, Violation.MAX_DISTANCE)

        costs = actor.vehicle.costs
        cost = (costs.per_distance * distance_delta
                + costs.per_driving_time * driving_delta
                + costs.per_waiting_time * waiting_delta
                + costs.per_service_time * service_delta
                + self.tardiness_penalty * tardiness_delta)
        if schedule.size == 0:
            cost += costs.fixed

        load_delta, load_span = self._carried_load(job, positions, total)
        return InsertionResult(job, actor, list(positions), list(place_indices), float(cost),
                               float(distance_delta), float(duration - schedule.duration),
                               float(tardiness_delta), load_delta, load_span)

    def evaluate_insertion(self, solution, route, job, rng=None, blink_rate=0.0):
        """
        Cheapest feasible insertion of a job into a route.

        Args:
            solution (Solution): Solution owning the route
            route (Route): Target route
            job (Job): Job to insert
            rng (numpy.random.Generator, optional): Source for position skipping
            blink_rate (float): Probability of skipping a candidate position

        Returns:
            InsertionResult: Best feasible result, or the most frequent violation
        """
        actor = route.actor
        violation = self._static_violation(solution, route, job)
        if violation is not None:
            return InsertionResult.failure(job, actor, violation)

        schedule = self.schedule(solution, route)
        size = schedule.size
        best = None
        violations = []

        def blink():
            return rng is not None and blink_rate > 0 and rng.random() < blink_rate

        def consider(result):
            nonlocal best
            if result.feasible:
                if best is None or result.cost < best.cost:
                    best = result
            else:
                violations.append(result.violation)

        if job.is_shipment:
            pickup_places = range(len(job.tasks[0].places))
            delivery_places = range(len(job.tasks[1].places))
            for pickup in range(size + 1):
                if blink():
                    continue
                for delivery in range(pickup + 1, size + 2):
                    if not self._capacity_ok(schedule, job, [pickup, delivery - 1]):
                        violations.append(Violation.CAPACITY)
                        continue
                    for pickup_place in pickup_places:
                        for delivery_place in delivery_places:
                            consider(self._propagate(schedule, route, job, [pickup, delivery],
                                                     [pickup_place, delivery_place]))
        else:
            places = range(len(job.tasks[0].places))
            for position in range(size + 1):
                if blink():
                    continue
                if not self._capacity_ok(schedule, job, [position]):
                    violations.append(Violation.CAPACITY)
                    continue
                for place in places:
                    consider(self._propagate(schedule, route, job, [position], [place]))

        if best is not None:
            return best
        if not violations:
            return InsertionResult.failure(job, actor, Violation.TIME_WINDOW)
        counts = Counter(violations)
        order = list(Violation)
        return InsertionResult.failure(job, actor, max(counts, key=lambda v: (counts[v], -order.index(v))))

    # ----- Mutations -----

    def insert(self, solution, result):
        """
        Apply a feasible insertion and refresh the route schedule from the first changed position.
        """
        route = solution.route(result.actor)
        base = self.schedule(solution, route)
        solution.assign(result.job, result.actor, result.positions, result.place_indices)
        solution.schedules.put(route, self.build_schedule(route.actor, route.activities, base, result.positions[0]))

    def remove(self, solution, job_id, reason=UnassignedReason.NOT_INSERTED):
        """
        Unassign a job and refresh the schedule of the route it left.

        Returns:
            bool: True if the job was on a route
        """
        route = solution.route_of(job_id)
        if route is None:
            solution.unassign(job_id, reason)
            return False

        base = self.schedule(solution, route)
        first = route.positions(job_id)[0]
        solution.unassign(job_id, reason)
        if not route.is_empty:
            solution.schedules.put(route, self.build_schedule(route.actor, route.activities, base, first))
        return True

    def removal_gain(self, solution, job_id):
        """
        Cost saved by taking a job off its route.

        Returns:
            float: Route cost before minus route cost after removal
        """
        route = solution.route_of(job_id)
        if route is None:
            return 0.0

        schedule = self.schedule(solution, route)
        positions = route.positions(job_id)
        remaining = [a for a in route.activities if a.job.id != job_id]
        after = self.build_schedule(route.actor, remaining, schedule, positions[0])
        gain = schedule.cost() - after.cost()
        gain += self.tardiness_penalty * (schedule.total_tardiness - after.total_tardiness)
        return gain
