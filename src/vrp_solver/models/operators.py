"""
Ruin-and-recreate operators for the VRP solver.

Operators are a closed set of tagged variants (RuinMethod, RecreateMethod)
dispatched through RuinRecreate. Their selection probabilities are adapted
from recent performance by AdaptiveOperatorSelector.
"""

import logging
from enum import Enum

import numpy as np
from sklearn.cluster import DBSCAN

from ..utils.errors import OperatorFailure

logger = logging.getLogger(__name__)


class RuinMethod(Enum):
    RANDOM_JOBS = "random_jobs"
    RANDOM_SEGMENT = "random_segment"
    WORST_JOBS = "worst_jobs"
    NEIGHBOURHOOD = "neighbourhood"
    CLUSTER = "cluster"
    ROUTE = "route"


class RecreateMethod(Enum):
    REGRET = "regret"
    CHEAPEST = "cheapest"
    RANDOM = "random"


# Scores credited to the operators that produced an offspring.
SCORE_NEW_BEST = 10
SCORE_BETTER = 5
SCORE_ACCEPTED = 2
SCORE_REJECTED = 0


class AdaptiveOperatorSelector:
    """
    Roulette wheel selection with weights adapted per segment.

    Args:
        operators (list): Operator identities (enum members)
        segment_size (int): Number of recorded uses between weight updates
        weights_decay (float): Share of the old weight kept at each update
        min_weight (float): Lower bound of any weight, keeps every operator selectable
    """

    def __init__(self, operators, segment_size=50, weights_decay=0.8, min_weight=0.05):
        self.operators = list(operators)
        self.segment_size = max(1, segment_size)
        self.weights_decay = weights_decay
        self.min_weight = min_weight

        size = len(self.operators)
        self.weights = np.ones(size)
        self.scores = np.zeros(size)
        self.counts = np.zeros(size)
        self.usage = np.zeros(size, dtype=int)
        self._recorded = 0

    def select(self, rng):
        """
        Select an operator based on weights.

        Args:
            rng (numpy.random.Generator): Random source

        Returns:
            Enum: Selected operator
        """
        probabilities = self.weights / self.weights.sum()
        index = int(rng.choice(len(self.operators), p=probabilities))
        return self.operators[index]

    def record(self, operator, score):
        index = self.operators.index(operator)
        self.scores[index] += score
        self.counts[index] += 1
        self.usage[index] += 1
        self._recorded += 1
        if self._recorded >= self.segment_size:
            self.update()

    def update(self):
        """Blend average segment scores into the weights and start a new segment."""
        used = self.counts > 0
        average = np.zeros_like(self.scores)
        average[used] = self.scores[used] / self.counts[used]

        self.weights[used] = self.weights_decay * self.weights[used] + (1 - self.weights_decay) * average[used]
        self.weights = np.maximum(self.weights, self.min_weight)

        self.scores = np.zeros(len(self.operators))
        self.counts = np.zeros(len(self.operators))
        self._recorded = 0

    def probabilities(self):
        return dict(zip((op.value for op in self.operators), (self.weights / self.weights.sum()).tolist()))


class RuinRecreate:
    """
    Destroys part of a solution and repairs it.

    Args:
        checker (ConstraintChecker): Feasibility oracle
        insertion (InsertionHeuristic): Repair routine
        config (Config): Reads the ``operators`` section
    """

    def __init__(self, checker, insertion, config):
        self.checker = checker
        self.registry = checker.registry
        self.insertion = insertion

        self.min_ruin_ratio = config.get('operators.min_ruin_ratio', 0.1)
        self.max_ruin_ratio = config.get('operators.max_ruin_ratio', 0.3)
        self.max_ruined_jobs = config.get('operators.max_ruined_jobs', 30)
        self.noise_parameter = config.get('operators.noise_parameter', 0.1)
        self.cluster_min_samples = config.get('operators.cluster_min_samples', 2)

        self._ruin = {
            RuinMethod.RANDOM_JOBS: self._random_jobs,
            RuinMethod.RANDOM_SEGMENT: self._random_segment,
            RuinMethod.WORST_JOBS: self._worst_jobs,
            RuinMethod.NEIGHBOURHOOD: self._neighbourhood,
            RuinMethod.CLUSTER: self._cluster,
            RuinMethod.ROUTE: self._route,
        }

    # ----- Public interface -----

    def ruin(self, solution, method, rng):
        """
        Remove jobs from a solution in place.

        Args:
            solution (Solution): Solution exclusively owned by the caller
            method (RuinMethod): Ruin variant
            rng (numpy.random.Generator): Random source

        Returns:
            tuple: (solution, removed job ids)

        Raises:
            OperatorFailure: If there is nothing to remove
        """
        if solution.is_empty():
            raise OperatorFailure(f"{method.value}: solution has no assigned jobs")

        removed = self._ruin[method](solution, rng)
        if not removed:
            raise OperatorFailure(f"{method.value}: no job removed")
        return solution, removed

    def recreate(self, solution, removed, method, rng):
        """
        Reinsert removed jobs, then try the jobs that were unassigned before.

        Jobs that fit nowhere stay unassigned with a reason.

        Returns:
            Solution: The same solution object, repaired
        """
        removed_set = set(removed)
        others = [job.id for job in solution.problem.jobs
                  if job.id in solution.unassigned and job.id not in removed_set
                  and job.id not in self.registry.reasons]
        self.insertion.insert_jobs(solution, list(removed) + others, rng, method=method.value,
                                   noise=self.noise_parameter if method is RecreateMethod.REGRET else 0.0)
        return solution

    def apply(self, parent, ruin_method, recreate_method, rng):
        """
        Produce an offspring from a parent without touching the parent.

        Returns:
            tuple: (offspring solution, number of removed jobs)
        """
        offspring = parent.copy()
        offspring, removed = self.ruin(offspring, ruin_method, rng)
        self.recreate(offspring, removed, recreate_method, rng)
        return offspring, len(removed)

    # ----- Helpers -----

    def ruin_size(self, solution, rng):
        """Number of jobs to remove, drawn from the configured ratio range."""
        assigned = len(solution.assigned_job_ids)
        low = max(1, int(self.min_ruin_ratio * assigned))
        high = max(low, int(self.max_ruin_ratio * assigned))
        size = int(rng.integers(low, high + 1))
        return max(1, min(size, assigned, self.max_ruined_jobs))

    def _remove(self, solution, job_ids):
        removed = []
        for job_id in job_ids:
            if self.checker.remove(solution, job_id):
                removed.append(job_id)
        return removed

    def _assigned(self, solution):
        # Problem order keeps runs reproducible.
        return [job.id for job in solution.problem.jobs if solution.is_assigned(job.id)]

    # ----- Ruin operators -----

    def _random_jobs(self, solution, rng):
        """Remove random jobs."""
        assigned = self._assigned(solution)
        size = self.ruin_size(solution, rng)
        chosen = rng.choice(len(assigned), size=size, replace=False)
        return self._remove(solution, [assigned[int(i)] for i in chosen])

    def _random_segment(self, solution, rng):
        """Remove a contiguous stretch of activities from one random route."""
        routes = solution.non_empty_routes
        route = routes[int(rng.integers(len(routes)))]
        job_ids = [activity.job.id for activity in route.activities]
        size = min(self.ruin_size(solution, rng), len(route.job_ids()))

        start = int(rng.integers(len(job_ids)))
        segment = []
        for job_id in job_ids[start:] + job_ids[:start]:
            if job_id not in segment:
                segment.append(job_id)
            if len(segment) == size:
                break
        return self._remove(solution, segment)

    def _worst_jobs(self, solution, rng):
        """
        Remove jobs with the highest marginal cost.

        Costs are perturbed by multiplicative noise to randomize the selection.
        """
        assigned = self._assigned(solution)
        size = self.ruin_size(solution, rng)
        low, high = 1 - 2 * self.noise_parameter, 1 + 2 * self.noise_parameter

        contributions = []
        for job_id in assigned:
            gain = self.checker.removal_gain(solution, job_id)
            contributions.append((gain * rng.uniform(low, high), job_id))

        contributions.sort(key=lambda item: item[0], reverse=True)
        return self._remove(solution, [job_id for _, job_id in contributions[:size]])

    def _neighbourhood(self, solution, rng):
        """
        Remove jobs related to a random seed job.

        Relatedness combines travel distance and time window proximity, lower is more related.
        """
        assigned = self._assigned(solution)
        size = self.ruin_size(solution, rng)
        seed = assigned[int(rng.integers(len(assigned)))]

        others = [job_id for job_id in assigned if job_id != seed]
        if not others:
            return self._remove(solution, [seed])

        distances = np.array([self.registry.job_distance(seed, job_id) for job_id in others])
        times = np.array([abs(self._time_center(seed) - self._time_center(job_id)) for job_id in others])

        relatedness = (0.7 * distances / max(distances.max(), 1e-9)
                       + 0.3 * times / max(times.max(), 1e-9)
                       + rng.uniform(0, self.noise_parameter, size=len(others)))
        order = np.argsort(relatedness, kind="stable")
        return self._remove(solution, [seed] + [others[int(i)] for i in order[:size - 1]])

    def _time_center(self, job_id):
        job = self.registry.problem.job(job_id)
        times = [tw for task in job.tasks for place in task.places for tw in place.times]
        if not times:
            return 0.0
        return sum((tw.start + tw.end) / 2 for tw in times) / len(times)

    def _cluster(self, solution, rng):
        """
        Remove a spatial cluster of jobs.

        Clusters come from DBSCAN over the precomputed job distance matrix. Falls
        back to random removal when no cluster is found.
        """
        assigned = self._assigned(solution)
        if len(assigned) < 3:
            return self._random_jobs(solution, rng)

        size = self.ruin_size(solution, rng)
        indices = [self.registry.job_index[job_id] for job_id in assigned]
        matrix = self.registry.distances[np.ix_(indices, indices)]

        # Neighbourhood radius: typical distance to the nearest other job.
        nearest = np.sort(matrix, axis=1)[:, 1]
        eps = float(np.median(nearest)) * rng.uniform(1.0, 2.0)
        if eps <= 0:
            eps = 1e-9

        labels = DBSCAN(eps=eps, min_samples=self.cluster_min_samples, metric="precomputed").fit_predict(matrix)
        clusters = sorted(set(int(label) for label in labels if label != -1))
        if not clusters:
            return self._random_jobs(solution, rng)

        target = clusters[int(rng.integers(len(clusters)))]
        members = [i for i, label in enumerate(labels) if label == target]

        anchor = members[int(rng.integers(len(members)))]
        members.sort(key=lambda i: (matrix[anchor, i], i))
        return self._remove(solution, [assigned[i] for i in members[:size]])

    def _route(self, solution, rng):
        """Remove all jobs of a random route."""
        routes = solution.non_empty_routes
        route = routes[int(rng.integers(len(routes)))]
        return self._remove(solution, route.job_ids())
