"""
Population based ruin-and-recreate search for the VRP solver.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from functools import cmp_to_key

import numpy as np
from tqdm import tqdm

from .constraints import ConstraintChecker
from .construction import ConstructionHeuristic, InsertionHeuristic
from .objective import ObjectiveEvaluator
from .operators import (
    SCORE_ACCEPTED,
    SCORE_BETTER,
    SCORE_NEW_BEST,
    SCORE_REJECTED,
    AdaptiveOperatorSelector,
    RecreateMethod,
    RuinMethod,
    RuinRecreate,
)
from ..data.registry import Registry
from ..data.validation import validate_problem
from ..utils.config import Config
from ..utils.errors import ConfigurationError, OperatorFailure

logger = logging.getLogger(__name__)


class TerminationCriteria:
    """
    Stop conditions checked at generation boundaries.

    Args:
        max_generations (int, optional): Generation budget
        max_time (float, optional): Wall clock budget in seconds
        max_stagnation (int, optional): Generations without a new best solution
    """

    def __init__(self, max_generations=None, max_time=None, max_stagnation=None):
        if max_generations is None and max_time is None and max_stagnation is None:
            raise ConfigurationError("at least one termination criterion is required")
        self.max_generations = max_generations
        self.max_time = max_time
        self.max_stagnation = max_stagnation

    @classmethod
    def from_config(cls, config):
        return cls(
            max_generations=config.get('search.max_generations'),
            max_time=config.get('search.max_time'),
            max_stagnation=config.get('search.max_stagnation'),
        )

    def reached(self, generations, elapsed, stagnation):
        """
        Returns:
            str: Name of the first reached criterion, or None to continue
        """
        if self.max_generations is not None and generations >= self.max_generations:
            return "max_generations"
        if self.max_time is not None and elapsed >= self.max_time:
            return "max_time"
        if self.max_stagnation is not None and stagnation >= self.max_stagnation:
            return "max_stagnation"
        return None


class Individual:
    """Population member: a solution and its fitness."""

    __slots__ = ("solution", "fitness")

    def __init__(self, solution, fitness):
        self.solution = solution
        self.fitness = fitness


class SearchStatistics:
    """Aggregate run statistics."""

    def __init__(self):
        self.generations = 0
        self.elapsed = 0.0
        self.termination = None
        self.improvement_curve = []
        self.best_history = []
        self.accepted = 0
        self.rejected = 0
        self.failures = 0
        self.ruin_usage = {}
        self.recreate_usage = {}
        self.ruin_weights = {}
        self.recreate_weights = {}
        self.iter_details = []

    def as_dict(self):
        return {
            "generations": self.generations,
            "elapsed": self.elapsed,
            "termination": self.termination,
            "improvement_curve": list(self.improvement_curve),
            "accepted": self.accepted,
            "rejected": self.rejected,
            "failures": self.failures,
            "ruin_usage": dict(self.ruin_usage),
            "recreate_usage": dict(self.recreate_usage),
            "ruin_weights": dict(self.ruin_weights),
            "recreate_weights": dict(self.recreate_weights),
        }


class SearchResult:
    """
    Outcome of a search run.

    Attributes:
        best (Solution): Best solution found
        fitness (Fitness): Its criterion vector
        front (list): (solution, fitness) pairs of the final Pareto front
        statistics (SearchStatistics): Run statistics
        breakdown (dict): Cost breakdown of the best solution
    """

    def __init__(self, best, fitness, front, statistics, breakdown):
        self.best = best
        self.fitness = fitness
        self.front = front
        self.statistics = statistics
        self.breakdown = breakdown

    def job_status(self):
        """
        Final status of every job of the best solution.

        Returns:
            dict: job id -> status record
        """
        status = {}
        for route in self.best.non_empty_routes:
            for position, activity in enumerate(route.activities):
                record = status.setdefault(activity.job.id, {
                    "status": "assigned",
                    "vehicle_id": route.vehicle.id,
                    "shift_index": route.actor.shift_index,
                    "positions": [],
                })
                record["positions"].append(position)
        for job_id, reason in self.best.unassigned.items():
            status[job_id] = {"status": "unassigned", "reason": reason.value}
        return {job.id: status[job.id] for job in self.best.problem.jobs}


class SearchEngine:
    """
    Ruin-and-recreate evolutionary search with adaptive operator selection.

    Args:
        problem (Problem): Problem to solve
        config (Config, optional): Solver configuration, defaults if omitted
        registry (Registry, optional): Prebuilt registry for the problem

    Raises:
        StructuralError: If the problem is malformed
    """

    def __init__(self, problem, config=None, registry=None):
        validate_problem(problem)

        self.problem = problem
        self.config = config if config is not None else Config()
        self.registry = registry if registry is not None else Registry(problem)

        self.checker = ConstraintChecker.from_config(problem, self.registry, self.config)
        self.evaluator = ObjectiveEvaluator.from_config(self.checker, self.config)
        self.insertion = InsertionHeuristic(
            self.checker,
            regret_k=self.config.get('operators.regret_k', 3),
            blink_rate=self.config.get('operators.blink_rate', 0.01),
        )
        self.constructor = ConstructionHeuristic(self.insertion)
        self.operators = RuinRecreate(self.checker, self.insertion, self.config)

        try:
            ruin = [RuinMethod(name) for name in self.config.get('operators.ruin')]
            recreate = [RecreateMethod(name) for name in self.config.get('operators.recreate')]
        except ValueError as e:
            raise ConfigurationError(f"unknown operator: {e}") from e

        selector_options = dict(
            segment_size=self.config.get('operators.segment_size', 50),
            weights_decay=self.config.get('operators.weights_decay', 0.8),
            min_weight=self.config.get('operators.min_weight', 0.05),
        )
        self.ruin_selector = AdaptiveOperatorSelector(ruin, **selector_options)
        self.recreate_selector = AdaptiveOperatorSelector(recreate, **selector_options)

        self.termination = TerminationCriteria.from_config(self.config)
        self.population_size = self.config.get('search.population_size', 4)
        self.offspring_per_generation = self.config.get('search.offspring_per_generation', 1)
        self.workers = self.config.get('search.workers', 1)
        self.tournament_size = self.config.get('search.tournament_size', 2)
        self.diversity_threshold = self.config.get('search.diversity_threshold', 0.05)
        self.noise_parameter = self.config.get('operators.noise_parameter', 0.1)
        self.show_progress = self.config.get('search.progress', False)

        seed = self.config.get('search.seed')
        self.seed = seed if seed is not None else int(np.random.SeedSequence().entropy % (2 ** 32))

        self._stop = threading.Event()
        self.statistics = SearchStatistics()

    # ----- Control -----

    def stop(self):
        """
        Request termination at the next generation boundary. Safe to call from any thread.

        A request made before ``solve`` starts stops that run before its first generation.
        """
        self._stop.set()

    def _rng(self, *key):
        return np.random.default_rng(np.random.SeedSequence([self.seed, *key]))

    def _map(self, function, items):
        if self.workers > 1 and len(items) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as executor:
                return list(executor.map(function, items))
        return [function(item) for item in items]

    # ----- Population -----

    def _construct(self, index):
        rng = self._rng(0, index)
        noise = 0.0 if index == 0 else self.noise_parameter
        solution = self.constructor.build(self.problem, rng, noise=noise)
        return Individual(solution, self.evaluator.evaluate(solution))

    def initial_population(self):
        """
        Build the initial population.

        Member 0 is the plain regret construction, the others use noisy costs
        for diversity. Partial solutions are kept.

        Returns:
            list: Individuals
        """
        return self._map(self._construct, list(range(self.population_size)))

    def _sorted(self, population):
        key = cmp_to_key(lambda a, b: self.evaluator.compare(a.fitness, b.fitness))
        return sorted(population, key=key)

    def _select_parent(self, population, rng):
        """Tournament selection that penalises members with a near-duplicate in the population."""
        ranked = self._sorted(population)
        rank = {id(member): i for i, member in enumerate(ranked)}
        size = min(self.tournament_size, len(population))
        contenders = [int(i) for i in rng.choice(len(population), size=size, replace=False)]

        def score(index):
            member = population[index]
            penalty = 0.0
            if len(population) > 1:
                nearest = min(member.solution.distance_to(other.solution)
                              for other in population if other is not member)
                if nearest < self.diversity_threshold:
                    penalty = len(population) / 2
            return rank[id(member)] + penalty, index

        return population[min(contenders, key=score)]

    def _accept(self, population, offspring):
        """
        Try to put an offspring into the population.

        The worst member is replaced when the offspring is better than it, or when
        no member dominates the offspring and it adds diversity.

        Returns:
            bool: True if accepted
        """
        signature = offspring.solution.signature()
        if any(member.solution.signature() == signature for member in population):
            return False

        ranked = self._sorted(population)
        worst = ranked[-1]
        if len(population) == 1:
            if self.evaluator.is_better(offspring.fitness, worst.fitness):
                population[0] = offspring
                return True
            return False

        accept = self.evaluator.is_better(offspring.fitness, worst.fitness)
        if not accept and not any(m.fitness.dominates(offspring.fitness) for m in population):
            nearest = min(offspring.solution.distance_to(m.solution) for m in population)
            accept = nearest > self.diversity_threshold

        if accept:
            population[population.index(worst)] = offspring
        return accept

    # ----- Offspring -----

    def _produce(self, task):
        solution, ruin, recreate, rng = task
        try:
            solution, removed = self.operators.ruin(solution, ruin, rng)
            self.operators.recreate(solution, removed, recreate, rng)
        except OperatorFailure as e:
            logger.debug(f"Operator failure: {e}")
            return None, 0
        return Individual(solution, self.evaluator.evaluate(solution)), len(removed)

    # ----- Main loop -----

    def solve(self, initial_solutions=None):
        """
        Run the search.

        Args:
            initial_solutions (list, optional): Solutions to seed the population
                with instead of constructing it

        Returns:
            SearchResult: Best solution(s) and statistics
        """
        start = time.monotonic()
        stats = self.statistics = SearchStatistics()

        if initial_solutions:
            population = [Individual(s, self.evaluator.evaluate(s)) for s in initial_solutions]
        else:
            population = self.initial_population()

        best_index = self.evaluator.best_index([m.fitness for m in population])
        best = population[best_index]
        stats.improvement_curve.append((0, best.fitness.measures["cost"]))
        stats.best_history.append(best.fitness)

        logger.info(f"Starting search: {len(self.problem.jobs)} jobs, population {len(population)}, "
                    f"initial best {best.fitness}")

        coordinator = self._rng(1)
        stagnation = 0
        generation = 0
        progress = tqdm(total=self.termination.max_generations, desc="Search",
                        disable=not self.show_progress, dynamic_ncols=True)

        while True:
            reason = self.termination.reached(generation, time.monotonic() - start, stagnation)
            if reason is None and self._stop.is_set():
                reason = "stopped"
            if reason is not None:
                stats.termination = reason
                break

            generation += 1
            tasks, parents = [], []
            for slot in range(self.offspring_per_generation):
                parent = self._select_parent(population, coordinator)
                ruin = self.ruin_selector.select(coordinator)
                recreate = self.recreate_selector.select(coordinator)
                tasks.append((parent.solution.copy(), ruin, recreate, self._rng(2, generation, slot)))
                parents.append(parent.fitness)

            # Barrier: every offspring of this generation exists before the population changes.
            results = self._map(self._produce, tasks)

            improved = False
            for (_, ruin, recreate, _), parent_fitness, (offspring, removed) in zip(tasks, parents, results):
                if offspring is None:
                    stats.failures += 1
                    self.ruin_selector.record(ruin, SCORE_REJECTED)
                    self.recreate_selector.record(recreate, SCORE_REJECTED)
                    continue

                new_best = self.evaluator.is_better(offspring.fitness, best.fitness)
                accepted = self._accept(population, offspring)

                if new_best:
                    score = SCORE_NEW_BEST
                elif self.evaluator.is_better(offspring.fitness, parent_fitness):
                    score = SCORE_BETTER
                elif accepted:
                    score = SCORE_ACCEPTED
                else:
                    score = SCORE_REJECTED
                self.ruin_selector.record(ruin, score)
                self.recreate_selector.record(recreate, score)

                if accepted:
                    stats.accepted += 1
                else:
                    stats.rejected += 1

                if new_best:
                    best = offspring
                    improved = True
                    logger.info(f"New best solution found at generation {generation}: {best.fitness}")

                stats.iter_details.append({
                    "generation": generation,
                    "ruin_operator": ruin.value,
                    "recreate_operator": recreate.value,
                    "jobs_removed": removed,
                    "jobs_unassigned": len(offspring.solution.unassigned),
                    "cost": offspring.fitness.measures["cost"],
                    "accepted": accepted,
                    "improved": new_best,
                })

            if improved:
                stagnation = 0
                stats.improvement_curve.append((generation, best.fitness.measures["cost"]))
                stats.best_history.append(best.fitness)
            else:
                stagnation += 1

            logger.debug(f"Generation {generation}: best={best.fitness}, stagnation={stagnation}")
            progress.update(1)
            progress.set_postfix({
                'best': f"{best.fitness.measures['cost']:.2f}",
                'unassigned': int(best.fitness.measures['unassigned']),
            }, refresh=False)

        progress.close()
        self._stop.clear()

        stats.generations = generation
        stats.elapsed = time.monotonic() - start
        stats.ruin_usage = dict(zip((op.value for op in self.ruin_selector.operators),
                                    self.ruin_selector.usage.tolist()))
        stats.recreate_usage = dict(zip((op.value for op in self.recreate_selector.operators),
                                        self.recreate_selector.usage.tolist()))
        stats.ruin_weights = self.ruin_selector.probabilities()
        stats.recreate_weights = self.recreate_selector.probabilities()

        if self.evaluator.multi_objective:
            candidates = [m.solution for m in population] + [best.solution]
            fitnesses = [m.fitness for m in population] + [best.fitness]
            front = self.evaluator.pareto_front(candidates, fitnesses)
        else:
            front = [(best.solution, best.fitness)]

        logger.info(f"Search completed after {generation} generations ({stats.termination}) "
                    f"in {stats.elapsed:.2f}s: {best.fitness}, "
                    f"{len(best.solution.unassigned)} of {len(self.problem.jobs)} jobs unassigned")

        return SearchResult(best.solution, best.fitness, front, stats,
                            self.evaluator.cost_breakdown(best.solution))


def solve(problem, config=None):
    """
    Validate a problem and search for a good solution.

    Args:
        problem (Problem): Problem to solve
        config (Config|dict|str, optional): Configuration object, dictionary or JSON path

    Returns:
        SearchResult: Best solution(s) and statistics

    Raises:
        StructuralError: If the problem is malformed
    """
    if not isinstance(config, Config):
        config = Config(config)
    return SearchEngine(problem, config).solve()
