"""
Insertion heuristics and initial solution construction.
"""

import logging
import math

from .constraints import reason_for
from ..utils.solution import Route, Solution

logger = logging.getLogger(__name__)


class InsertionHeuristic:
    """
    Inserts unassigned jobs into a solution.

    Supported methods:
        - "regret": among the k jobs with the cheapest best insertion, insert the
          one with the largest gap between its best and second best route
        - "cheapest": always insert the globally cheapest job
        - "random": visit jobs in random order, each at its cheapest position
          while randomly skipping candidate positions

    Args:
        checker (ConstraintChecker): Feasibility oracle
        regret_k (int): Number of cheapest jobs the regret rule chooses from
        blink_rate (float): Position skipping probability of the random method
    """

    def __init__(self, checker, regret_k=3, blink_rate=0.01):
        self.checker = checker
        self.registry = checker.registry
        self.regret_k = max(1, regret_k)
        self.blink_rate = blink_rate

    def _route_for(self, solution, actor):
        route = solution.routes.get(actor.key)
        return route if route is not None else Route(actor)

    def _results(self, solution, job, cache, rng=None, blink_rate=0.0):
        """Insertion result per candidate actor, refreshed for routes that changed."""
        entries = cache.setdefault(job.id, {})
        results = []
        for actor in self.registry.candidates[job.id]:
            route = self._route_for(solution, actor)
            entry = entries.get(actor.key)
            if entry is None or entry[0] != route.version:
                entry = (route.version, self.checker.evaluate_insertion(solution, route, job, rng, blink_rate))
                entries[actor.key] = entry
            results.append(entry[1])
        return results

    def _mark_unassigned(self, solution, job_id, results):
        reason = self.registry.reasons.get(job_id)
        if reason is None:
            reason = reason_for([r.violation for r in results if not r.feasible])
        solution.set_reason(job_id, reason)

    def insert_jobs(self, solution, job_ids, rng, method="regret", noise=0.0):
        """
        Insert jobs into a solution.

        Args:
            solution (Solution): Solution to modify, jobs must be unassigned
            job_ids (list): Jobs to insert
            rng (numpy.random.Generator): Random source
            method (str): "regret", "cheapest" or "random"
            noise (float): Relative cost noise applied when ranking jobs

        Returns:
            list: Job ids left unassigned, each with a recorded reason
        """
        problem = solution.problem
        pending = [job_id for job_id in job_ids if job_id in solution.unassigned]

        for job_id in [j for j in pending if j in self.registry.reasons]:
            solution.set_reason(job_id, self.registry.reasons[job_id])
        pending = [j for j in pending if j not in self.registry.reasons]

        if method == "random":
            return self._insert_random(solution, [problem.job(j) for j in pending], rng)
        return self._insert_ranked(solution, [problem.job(j) for j in pending], rng, method, noise)

    def _insert_ranked(self, solution, jobs, rng, method, noise):
        cache = {}
        left = []
        k = self.regret_k if method == "regret" else 1

        while jobs:
            ranked = []
            blocked = []
            for job in jobs:
                results = self._results(solution, job, cache)
                feasible = sorted((r for r in results if r.feasible), key=lambda r: r.cost)
                if not feasible:
                    blocked.append((job, results))
                    continue
                best = feasible[0].cost
                regret = feasible[1].cost - best if len(feasible) > 1 else math.inf
                jitter = 1.0 + noise * (2.0 * rng.random() - 1.0) if noise > 0 else 1.0
                ranked.append((best * jitter, regret, rng.random(), job, feasible[0]))

            # Insertions only add activities, so a blocked job stays blocked.
            for job, results in blocked:
                self._mark_unassigned(solution, job.id, results)
                left.append(job.id)
            if not ranked:
                break
            blocked_ids = {job.id for job, _ in blocked}

            ranked.sort(key=lambda item: (item[0], item[2]))
            if k > 1:
                candidates = ranked[:k]
                chosen = max(candidates, key=lambda item: (item[1], -item[0], item[2]))
            else:
                chosen = ranked[0]

            job, result = chosen[3], chosen[4]
            self.checker.insert(solution, result)
            jobs = [j for j in jobs if j.id != job.id and j.id not in blocked_ids]

            if job.group is not None:
                for other in jobs:
                    if other.group == job.group:
                        cache.pop(other.id, None)

        return left

    def _insert_random(self, solution, jobs, rng):
        order = rng.permutation(len(jobs))
        left = []
        for index in order:
            job = jobs[int(index)]
            results = self._results(solution, job, {}, rng, self.blink_rate)
            feasible = [r for r in results if r.feasible]
            if not feasible and self.blink_rate > 0:
                # Skipped positions must not be the reason a job stays out.
                results = self._results(solution, job, {})
                feasible = [r for r in results if r.feasible]
            if feasible:
                self.checker.insert(solution, min(feasible, key=lambda r: r.cost))
            else:
                self._mark_unassigned(solution, job.id, results)
                left.append(job.id)
        return left


class ConstructionHeuristic:
    """
    Builds initial solutions by regret insertion.

    Args:
        insertion (InsertionHeuristic): Insertion routine to use
    """

    def __init__(self, insertion):
        self.insertion = insertion

    def build(self, problem, rng, noise=0.0, partial=None):
        """
        Construct a solution.

        Args:
            problem (Problem): Problem to solve
            rng (numpy.random.Generator): Random source for tie-breaking
            noise (float): Relative cost noise for diversified construction
            partial (Solution, optional): Starting point, copied and completed

        Returns:
            Solution: Solution with every job either routed or unassigned with a reason
        """
        solution = partial.copy() if partial is not None else Solution(problem)
        pending = [job.id for job in problem.jobs if job.id in solution.unassigned]

        left = self.insertion.insert_jobs(solution, pending, rng, method="regret", noise=noise)

        logger.debug(f"Constructed solution: {len(solution.non_empty_routes)} routes, "
                     f"{len(left)} of {len(pending)} jobs unassigned")
        return solution
