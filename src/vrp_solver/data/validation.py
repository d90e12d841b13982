"""
Structural validation of problems.

Every check returns a ValidationError or None. ``validate_problem`` runs all
of them and raises a single StructuralError listing every failure.
"""

import logging
from collections import Counter

from .problem import TaskKind
from ..utils.errors import StructuralError, ValidationError

logger = logging.getLogger(__name__)


def _duplicates(values):
    return sorted(str(value) for value, count in Counter(values).items() if count > 1)


def _all_places(job):
    return [place for task in job.tasks for place in task.places]


def _check_duplicate_job_ids(problem):
    ids = _duplicates(job.id for job in problem.jobs)
    if ids:
        return ValidationError(
            "E1000",
            f"duplicated job ids: {', '.join(ids)}",
            "remove jobs with the same ids",
        )


def _check_job_demand(problem):
    dimensions = problem.fleet.dimensions
    ids = []
    for job in problem.jobs:
        for task in job.tasks:
            has_demand = any(value != 0 for value in task.demand)
            if task.kind is TaskKind.SERVICE and has_demand:
                ids.append(job.id)
                break
            if task.kind is not TaskKind.SERVICE and not task.demand:
                ids.append(job.id)
                break
            if task.demand and len(task.demand) != dimensions:
                ids.append(job.id)
                break
            if any(value < 0 for value in task.demand):
                ids.append(job.id)
                break

    if ids:
        return ValidationError(
            "E1001",
            f"invalid job task demand in jobs: {', '.join(ids)}",
            "correct demand based on job task type and fleet capacity dimensions",
        )


def _check_shipment_demand(problem):
    ids = [
        job.id for job in problem.jobs
        if job.is_shipment and job.tasks[0].demand != job.tasks[1].demand
    ]
    if ids:
        return ValidationError(
            "E1002",
            f"invalid pickup and delivery demand in jobs: {', '.join(ids)}",
            "correct demand so that pickup demand equals delivery demand",
        )


def _valid_time_windows(times):
    if any(tw.start > tw.end for tw in times):
        return False
    ordered = sorted(times, key=lambda tw: tw.start)
    return all(not a.intersects(b) for a, b in zip(ordered, ordered[1:]))


def _check_time_windows(problem):
    ids = [
        job.id for job in problem.jobs
        if any(not _valid_time_windows(place.times) for place in _all_places(job))
    ]
    if ids:
        return ValidationError(
            "E1003",
            f"invalid time windows in jobs: {', '.join(ids)}",
            "change job task place time windows so that they don't intersect",
        )


def _check_job_tasks(problem):
    ids = []
    for job in problem.jobs:
        if not job.tasks or len(job.tasks) > 2 or any(not task.places for task in job.tasks):
            ids.append(job.id)
        elif job.is_shipment and (job.tasks[0].kind, job.tasks[1].kind) != (TaskKind.PICKUP, TaskKind.DELIVERY):
            ids.append(job.id)

    if ids:
        return ValidationError(
            "E1004",
            f"jobs without tasks, places or with unsupported task layout: {', '.join(ids)}",
            "give every job one task, or a pickup and a delivery task, each with at least one place",
        )


def _check_job_locations(problem):
    transport = problem.transport
    ids = [
        job.id for job in problem.jobs
        if any(not transport.has_location(place.location) for place in _all_places(job))
    ]
    if ids:
        return ValidationError(
            "E1005",
            f"unknown locations in jobs: {', '.join(ids)}",
            "use locations known to the routing matrix",
        )


def _check_duplicate_vehicle_ids(problem):
    ids = _duplicates(vehicle.id for vehicle in problem.fleet.vehicles)
    if ids:
        return ValidationError(
            "E1100",
            f"duplicated vehicle ids: {', '.join(ids)}",
            "remove vehicles with the same ids",
        )


def _check_vehicle_shifts(problem):
    ids = [vehicle.id for vehicle in problem.fleet.vehicles if not vehicle.shifts]
    if ids:
        return ValidationError(
            "E1101",
            f"vehicles without shifts: {', '.join(ids)}",
            "define at least one shift per vehicle",
        )


def _check_shift_times(problem):
    transport = problem.transport
    ids = []
    for vehicle in problem.fleet.vehicles:
        times = [shift.time for shift in vehicle.shifts]
        locations_known = all(
            transport.has_location(shift.start_location)
            and (shift.end_location is None or transport.has_location(shift.end_location))
            for shift in vehicle.shifts
        )
        if not _valid_time_windows(times) or not locations_known:
            ids.append(vehicle.id)

    if ids:
        return ValidationError(
            "E1102",
            f"invalid shifts in vehicles: {', '.join(ids)}",
            "use ordered, non overlapping shift times with known start and end locations",
        )


def _check_vehicle_profiles(problem):
    known = set(problem.transport.profiles)
    ids = [vehicle.id for vehicle in problem.fleet.vehicles if vehicle.profile not in known]
    if ids:
        return ValidationError(
            "E1103",
            f"vehicles reference unknown profiles: {', '.join(ids)}",
            "use profiles provided by the routing matrix",
        )


def _check_vehicle_capacity(problem):
    dimensions = problem.fleet.dimensions
    ids = [
        vehicle.id for vehicle in problem.fleet.vehicles
        if len(vehicle.capacity) != dimensions or any(value < 0 for value in vehicle.capacity)
    ]
    if ids:
        return ValidationError(
            "E1104",
            f"invalid capacity in vehicles: {', '.join(ids)}",
            "use non negative capacity with the same number of dimensions for every vehicle",
        )


CHECKS = (
    _check_duplicate_job_ids,
    _check_job_demand,
    _check_shipment_demand,
    _check_time_windows,
    _check_job_tasks,
    _check_job_locations,
    _check_duplicate_vehicle_ids,
    _check_vehicle_shifts,
    _check_shift_times,
    _check_vehicle_profiles,
    _check_vehicle_capacity,
)


def collect_errors(problem):
    """
    Run all structural checks.

    Args:
        problem (Problem): Problem to check

    Returns:
        list: ValidationError instances, empty when the problem is valid
    """
    return [error for error in (check(problem) for check in CHECKS) if error is not None]


def validate_problem(problem):
    """
    Validate a problem before search.

    Raises:
        StructuralError: If any structural check fails
    """
    errors = collect_errors(problem)
    if errors:
        for error in errors:
            logger.error(f"Problem validation failed: {error}")
        raise StructuralError(errors)

    logger.debug(f"{problem} passed validation")
