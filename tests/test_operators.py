import numpy as np
import pytest

from vrp_solver.data.problem import Job, Place
from vrp_solver.models.operators import AdaptiveOperatorSelector, RecreateMethod, RuinMethod
from vrp_solver.models.search import SearchEngine
from vrp_solver.utils.errors import OperatorFailure
from vrp_solver.utils.solution import Solution


class TestAdaptiveOperatorSelector:
    def test_weights_follow_segment_scores(self):
        selector = AdaptiveOperatorSelector([RuinMethod.RANDOM_JOBS, RuinMethod.ROUTE],
                                            segment_size=2, weights_decay=0.5, min_weight=0.1)
        selector.record(RuinMethod.RANDOM_JOBS, 10)
        selector.record(RuinMethod.ROUTE, 0)

        assert selector.weights.tolist() == [5.5, 0.5]
        assert selector.usage.tolist() == [1, 1]

    def test_weight_never_drops_below_floor(self):
        selector = AdaptiveOperatorSelector([RuinMethod.RANDOM_JOBS, RuinMethod.ROUTE],
                                            segment_size=1, weights_decay=0.5, min_weight=0.1)
        for _ in range(50):
            selector.record(RuinMethod.ROUTE, 0)

        assert selector.weights[1] == pytest.approx(0.1)
        assert all(p > 0 for p in selector.probabilities().values())

    def test_unused_operators_keep_their_weight(self):
        selector = AdaptiveOperatorSelector([RecreateMethod.REGRET, RecreateMethod.RANDOM], segment_size=1)
        selector.record(RecreateMethod.REGRET, 10)
        assert selector.weights[1] == 1.0

    def test_selection_is_reproducible(self):
        selector = AdaptiveOperatorSelector(list(RuinMethod))
        first = [selector.select(np.random.default_rng(5)) for _ in range(3)]
        second = [selector.select(np.random.default_rng(5)) for _ in range(3)]
        assert first == second
        assert all(op in RuinMethod for op in first)


@pytest.fixture
def engine(make_problem, make_vehicle, make_config):
    jobs = [Job.delivery(f"job{i}", Place(i), 1) for i in range(1, 6)]
    problem = make_problem(jobs, [make_vehicle(capacity=(10,), shift=(0, 10000))])
    return SearchEngine(problem, make_config(operators={"min_ruin_ratio": 0.4, "max_ruin_ratio": 0.4}))


@pytest.fixture
def solution(engine):
    return engine.constructor.build(engine.problem, np.random.default_rng(0))


class TestRuinRecreate:
    def test_ruined_jobs_are_reinserted_or_reported(self, engine, solution):
        rng = np.random.default_rng(11)
        assert len(solution.non_empty_routes[0].job_ids()) == 5

        partial, removed = engine.operators.ruin(solution.copy(), RuinMethod.RANDOM_JOBS, rng)

        assert len(removed) == 2
        assert all(job_id in partial.unassigned for job_id in removed)
        partial.check_invariants()

        repaired = engine.operators.recreate(partial, removed, RecreateMethod.REGRET, rng)

        repaired.check_invariants()
        for job_id in removed:
            assert repaired.is_assigned(job_id) or job_id in repaired.unassigned
        assert repaired.unassigned == {}

    @pytest.mark.parametrize("ruin", list(RuinMethod))
    @pytest.mark.parametrize("recreate", list(RecreateMethod))
    def test_every_operator_pair_preserves_jobs(self, engine, solution, ruin, recreate):
        offspring, removed = engine.operators.apply(solution, ruin, recreate, np.random.default_rng(2))

        assert removed >= 1
        offspring.check_invariants()
        for route in offspring.non_empty_routes:
            assert engine.checker.route_violations(offspring, route) == []

    def test_parent_is_untouched(self, engine, solution):
        signature = solution.signature()
        engine.operators.apply(solution, RuinMethod.ROUTE, RecreateMethod.RANDOM, np.random.default_rng(4))
        assert solution.signature() == signature
        solution.check_invariants()

    def test_ruin_of_empty_solution_fails(self, engine):
        with pytest.raises(OperatorFailure):
            engine.operators.ruin(Solution(engine.problem), RuinMethod.RANDOM_JOBS, np.random.default_rng(0))

    def test_ruin_size_respects_bounds(self, engine, solution):
        rng = np.random.default_rng(0)
        sizes = {engine.operators.ruin_size(solution, rng) for _ in range(20)}
        assert sizes == {2}

    def test_route_ruin_empties_a_route(self, engine, solution):
        partial, removed = engine.operators.ruin(solution.copy(), RuinMethod.ROUTE, np.random.default_rng(0))
        assert sorted(removed) == sorted(solution.non_empty_routes[0].job_ids())
        assert partial.is_empty()

    def test_recreate_retries_previously_unassigned_jobs(self, engine, solution):
        rng = np.random.default_rng(0)
        partial = solution.copy()
        engine.checker.remove(partial, "job1")
        engine.checker.remove(partial, "job2")

        repaired = engine.operators.recreate(partial, ["job2"], RecreateMethod.CHEAPEST, rng)

        assert repaired.unassigned == {}
