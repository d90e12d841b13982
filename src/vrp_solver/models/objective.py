"""
Objective evaluation for the VRP solver.

A solution is measured on several criteria (all minimised). Solutions are
ordered lexicographically over the configured criteria with a tie-break
criterion, or by a weighted scalar. Pareto mode keeps the lexicographic ranking
and adds dominance for the non-dominated front.
"""

import logging
import math

from ..utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

CRITERIA = ("unassigned", "tardiness", "cost", "routes", "distance", "duration")


def _close(a, b):
    return math.isclose(a, b, rel_tol=1e-9, abs_tol=1e-9)


def _compare_values(left, right):
    for a, b in zip(left, right):
        if _close(a, b):
            continue
        return -1 if a < b else 1
    return 0


class Fitness:
    """
    Criterion vector of one solution.

    Attributes:
        values (tuple): Values of the configured criteria, in priority order
        tie (float): Value of the tie-break criterion
        scalar (float): Weighted sum used in weighted mode
        measures (dict): Every known criterion, by name
    """

    __slots__ = ("values", "tie", "scalar", "measures")

    def __init__(self, values, tie, scalar, measures):
        self.values = tuple(values)
        self.tie = tie
        self.scalar = scalar
        self.measures = measures

    def dominates(self, other):
        """True if no worse on every criterion and strictly better on at least one."""
        strictly_better = False
        for a, b in zip(self.values, other.values):
            if _close(a, b):
                continue
            if a > b:
                return False
            strictly_better = True
        return strictly_better

    def __eq__(self, other):
        if not isinstance(other, Fitness):
            return NotImplemented
        return self.values == other.values and self.tie == other.tie

    def __hash__(self):
        return hash((self.values, self.tie))

    def __repr__(self):
        return f"Fitness({', '.join(f'{v:.2f}' for v in self.values)}; tie={self.tie:.2f})"


class ObjectiveEvaluator:
    """
    Pure evaluation of solutions.

    Args:
        checker (ConstraintChecker): Provides route schedules
        mode (str): "lexicographic", "pareto" or "weighted"
        criteria (list): Criterion names in priority order
        tie_break (str): Criterion used to order otherwise equal solutions
        unassigned_penalty (float): Weight of an unassigned job in weighted mode
        tardiness_penalty (float): Weight of a tardiness unit in weighted mode
    """

    def __init__(self, checker, mode="lexicographic", criteria=("unassigned", "tardiness", "cost"),
                 tie_break="routes", unassigned_penalty=10000.0, tardiness_penalty=100.0):
        unknown = [name for name in list(criteria) + [tie_break] if name not in CRITERIA]
        if unknown:
            raise ConfigurationError(f"unknown objective criteria: {unknown}")

        self.checker = checker
        self.mode = mode
        self.criteria = tuple(criteria)
        self.tie_break = tie_break
        self.unassigned_penalty = unassigned_penalty
        self.tardiness_penalty = tardiness_penalty

    @classmethod
    def from_config(cls, checker, config):
        return cls(
            checker,
            mode=config.get('objective.mode', 'lexicographic'),
            criteria=config.get('objective.criteria', ["unassigned", "tardiness", "cost"]),
            tie_break=config.get('objective.tie_break', 'routes'),
            unassigned_penalty=config.get('objective.unassigned_penalty', 10000.0),
            tardiness_penalty=config.get('objective.tardiness_penalty', 100.0),
        )

    @property
    def multi_objective(self):
        return self.mode == "pareto"

    # ----- Measurement -----

    def measures(self, solution):
        """
        Compute every criterion of a solution.

        Sums use ``math.fsum`` so the result does not depend on route order.

        Returns:
            dict: criterion name -> value
        """
        schedules = [self.checker.schedule(solution, route) for route in solution.non_empty_routes]
        return {
            "unassigned": float(len(solution.unassigned)),
            "tardiness": math.fsum(s.total_tardiness for s in schedules),
            "cost": math.fsum(s.cost() for s in schedules),
            "routes": float(len(schedules)),
            "distance": math.fsum(s.distance for s in schedules),
            "duration": math.fsum(s.duration for s in schedules),
        }

    def evaluate(self, solution):
        """
        Evaluate a solution.

        Args:
            solution (Solution): Solution to evaluate, left untouched

        Returns:
            Fitness: Criterion vector
        """
        measures = self.measures(solution)
        scalar = (measures["cost"]
                  + self.unassigned_penalty * measures["unassigned"]
                  + self.tardiness_penalty * measures["tardiness"])
        values = [measures[name] for name in self.criteria]
        return Fitness(values, measures[self.tie_break], scalar, measures)

    # ----- Ordering -----

    def compare(self, left, right):
        """
        Total order over fitness values.

        Pareto mode ranks with the lexicographic order too, a linear extension of
        dominance: a dominating fitness always compares better.

        Returns:
            int: -1 if left is better, 1 if right is better, 0 if equal
        """
        if self.mode == "weighted":
            if not _close(left.scalar, right.scalar):
                return -1 if left.scalar < right.scalar else 1
            return _compare_values((left.tie,), (right.tie,))

        result = _compare_values(left.values, right.values)
        if result:
            return result
        return _compare_values((left.tie,), (right.tie,))

    def is_better(self, left, right):
        return self.compare(left, right) < 0

    def best_index(self, fitnesses):
        """Index of the best fitness; the first one wins ties."""
        best = 0
        for i in range(1, len(fitnesses)):
            if self.compare(fitnesses[i], fitnesses[best]) < 0:
                best = i
        return best

    def non_dominated_sort(self, fitnesses):
        """
        Pareto rank of each fitness; rank 0 is the non-dominated front.

        Returns:
            list: Rank per input position
        """
        size = len(fitnesses)
        dominated_by = [0] * size
        dominates = [[] for _ in range(size)]
        for i in range(size):
            for j in range(i + 1, size):
                if fitnesses[i].dominates(fitnesses[j]):
                    dominates[i].append(j)
                    dominated_by[j] += 1
                elif fitnesses[j].dominates(fitnesses[i]):
                    dominates[j].append(i)
                    dominated_by[i] += 1

        ranks = [0] * size
        front = [i for i in range(size) if dominated_by[i] == 0]
        rank = 0
        while front:
            next_front = []
            for i in front:
                ranks[i] = rank
                for j in dominates[i]:
                    dominated_by[j] -= 1
                    if dominated_by[j] == 0:
                        next_front.append(j)
            front = next_front
            rank += 1
        return ranks

    def pareto_front(self, solutions, fitnesses=None):
        """
        Non-dominated, structurally distinct solutions, best first.

        Returns:
            list: (solution, fitness) pairs
        """
        if fitnesses is None:
            fitnesses = [self.evaluate(s) for s in solutions]
        ranks = self.non_dominated_sort(fitnesses)

        front, seen = [], set()
        for solution, fitness, rank in zip(solutions, fitnesses, ranks):
            signature = solution.signature()
            if rank == 0 and signature not in seen:
                seen.add(signature)
                front.append((solution, fitness))

        ordered = []
        while front:
            index = self.best_index([f for _, f in front])
            ordered.append(front.pop(index))
        return ordered

    # ----- Reporting -----

    def cost_breakdown(self, solution):
        """
        Cost components of a solution, overall and per route.

        Returns:
            dict: Totals per criterion and cost component plus a ``routes`` list
        """
        routes = []
        for route in solution.non_empty_routes:
            schedule = self.checker.schedule(solution, route)
            costs = route.vehicle.costs
            routes.append({
                "vehicle_id": route.vehicle.id,
                "shift_index": route.actor.shift_index,
                "activities": len(route.activities),
                "fixed": costs.fixed,
                "distance": schedule.distance,
                "distance_cost": costs.per_distance * schedule.distance,
                "driving_time": schedule.driving,
                "driving_cost": costs.per_driving_time * schedule.driving,
                "waiting_time": schedule.total_waiting,
                "waiting_cost": costs.per_waiting_time * schedule.total_waiting,
                "service_time": schedule.total_service,
                "service_cost": costs.per_service_time * schedule.total_service,
                "tardiness": schedule.total_tardiness,
                "duration": schedule.duration,
                "cost": schedule.cost(),
            })

        breakdown = dict(self.measures(solution))
        for component in ("fixed", "distance_cost", "driving_cost", "waiting_cost", "service_cost"):
            breakdown[component] = math.fsum(r[component] for r in routes)
        breakdown["routes_detail"] = routes
        return breakdown
