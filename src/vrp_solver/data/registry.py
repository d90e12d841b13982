"""
Read-only indices built once per problem and shared by all solutions.
"""

import logging
import math

import numpy as np

from ..utils.solution import UnassignedReason

logger = logging.getLogger(__name__)

# Order in which per-actor checks run; a job unassignable everywhere reports
# the reason of the actor that got furthest through this list.
_CHECK_ORDER = (
    UnassignedReason.SKILL_MISMATCH,
    UnassignedReason.NO_CAPACITY,
    UnassignedReason.NO_REACHABLE_VEHICLE,
    UnassignedReason.NO_TIME_WINDOW_FIT,
)


class Registry:
    """
    Job to candidate actor lookup, demand/capacity vectors and job proximity.

    Never mutated after construction, so it is safe to share across threads.

    Args:
        problem (Problem): Problem to index
    """

    def __init__(self, problem):
        self.problem = problem
        self.dimensions = problem.fleet.dimensions

        self.capacities = {
            actor.key: self._vector(actor.vehicle.capacity) for actor in problem.fleet.actors
        }
        self.demands = {
            job.id: tuple(self._vector(task.demand) for task in job.tasks) for job in problem.jobs
        }

        self.candidates = {}
        self._candidate_keys = {}
        self.reasons = {}
        for job in problem.jobs:
            actors, reason = self._find_candidates(job)
            self.candidates[job.id] = actors
            self._candidate_keys[job.id] = frozenset(actor.key for actor in actors)
            if not actors:
                self.reasons[job.id] = reason

        self.job_index = {job.id: i for i, job in enumerate(problem.jobs)}
        self.distances = self._job_distances()
        self.neighbours = np.argsort(self.distances, axis=1, kind="stable")

        if self.reasons:
            logger.info(f"{len(self.reasons)} of {len(problem.jobs)} jobs cannot be served by any vehicle")

    def _vector(self, values):
        vector = np.zeros(self.dimensions)
        vector[:len(values)] = values
        return vector

    # ----- Candidates -----

    def _find_candidates(self, job):
        actors = []
        furthest = -1
        for actor in self.problem.fleet.actors:
            failed = self._first_failure(job, actor)
            if failed is None:
                actors.append(actor)
            else:
                furthest = max(furthest, _CHECK_ORDER.index(failed))

        reason = _CHECK_ORDER[furthest] if furthest >= 0 else UnassignedReason.NO_REACHABLE_VEHICLE
        return tuple(actors), reason

    def _first_failure(self, job, actor):
        vehicle = actor.vehicle
        if not job.skills <= vehicle.skills:
            return UnassignedReason.SKILL_MISMATCH

        capacity = self.capacities[actor.key]
        if any(np.any(demand > capacity) for demand in self.demands[job.id]):
            return UnassignedReason.NO_CAPACITY

        if not self._reachable(job, actor):
            return UnassignedReason.NO_REACHABLE_VEHICLE

        if not self._fits_shift(job, actor):
            return UnassignedReason.NO_TIME_WINDOW_FIT

        return None

    def _leg_ok(self, profile, a, b, departure):
        distance, duration = self.problem.travel(profile, a, b, departure)
        return math.isfinite(distance) and math.isfinite(duration)

    def _reachable(self, job, actor):
        shift = actor.shift
        profile = actor.profile
        start_time = shift.time.start

        for task in job.tasks:
            if not any(
                self._leg_ok(profile, shift.start_location, place.location, start_time)
                and (shift.end_location is None
                     or self._leg_ok(profile, place.location, shift.end_location, start_time))
                for place in task.places
            ):
                return False

        if job.is_shipment:
            pickup, delivery = job.tasks
            return any(
                self._leg_ok(profile, p.location, d.location, start_time)
                for p in pickup.places for d in delivery.places
            )
        return True

    def _fits_shift(self, job, actor):
        window = actor.shift.time
        for task in job.tasks:
            fits = any(
                not place.times or any(tw.intersects(window) for tw in place.times)
                for place in task.places
            )
            if not fits:
                return False
        return True

    def is_candidate(self, job_id, actor):
        return actor.key in self._candidate_keys[job_id]

    # ----- Proximity -----

    def _job_distances(self):
        jobs = self.problem.jobs
        size = len(jobs)
        distances = np.zeros((size, size))
        if size == 0 or not self.problem.fleet.vehicles:
            return distances

        profile = self.problem.fleet.vehicles[0].profile
        locations = [job.tasks[0].places[0].location for job in jobs]
        for i, a in enumerate(locations):
            for j, b in enumerate(locations):
                if i != j:
                    distances[i, j] = self.problem.travel(profile, a, b, 0.0)[0]

        finite = distances[np.isfinite(distances)]
        ceiling = (finite.max() if finite.size else 1.0) * 10 + 1
        distances[~np.isfinite(distances)] = ceiling
        # Symmetric relatedness is enough for ruin decisions.
        return (distances + distances.T) / 2

    def job_distance(self, job_a, job_b):
        return self.distances[self.job_index[job_a], self.job_index[job_b]]

    def nearest_jobs(self, job_id):
        """Job ids ordered by proximity to the given job, the job itself excluded."""
        jobs = self.problem.jobs
        row = self.neighbours[self.job_index[job_id]]
        return [jobs[i].id for i in row if jobs[i].id != job_id]
