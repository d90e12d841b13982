import numpy as np
import pytest

from vrp_solver.data.problem import Job, Place, TimeWindow
from vrp_solver.models.search import SearchEngine, TerminationCriteria, solve
from vrp_solver.utils.errors import ConfigurationError
from vrp_solver.utils.solution import UnassignedReason


def run(problem, config, **kwargs):
    engine = SearchEngine(problem, config)
    return engine, engine.solve(**kwargs)


class TestTermination:
    def test_zero_generations_returns_initial_solution(self, two_vehicle_problem, make_config):
        engine = SearchEngine(two_vehicle_problem, make_config(search={"max_generations": 0}))
        initial = engine.constructor.build(two_vehicle_problem, np.random.default_rng(0))
        signature = initial.signature()

        result = engine.solve(initial_solutions=[initial])

        assert result.best is initial
        assert result.best.signature() == signature
        assert result.statistics.generations == 0
        assert result.statistics.termination == "max_generations"
        assert result.statistics.improvement_curve == [(0, result.fitness.measures["cost"])]

    def test_zero_generations_keeps_constructed_best(self, two_vehicle_problem, make_config):
        engine = SearchEngine(two_vehicle_problem, make_config(search={"max_generations": 0}))
        population = engine.initial_population()
        best = population[engine.evaluator.best_index([m.fitness for m in population])]

        result = engine.solve()

        assert result.best.signature() == best.solution.signature()

    def test_max_time(self, two_vehicle_problem, make_config):
        config = make_config(search={"max_generations": None, "max_time": 0.0})
        _, result = run(two_vehicle_problem, config)
        assert result.statistics.termination == "max_time"
        assert result.statistics.generations == 0

    def test_max_stagnation(self, two_vehicle_problem, make_config):
        config = make_config(search={"max_generations": 1000, "max_stagnation": 3})
        _, result = run(two_vehicle_problem, config)
        assert result.statistics.termination == "max_stagnation"
        assert result.statistics.generations < 1000

    def test_stop_request_is_honoured_at_generation_boundary(self, two_vehicle_problem, make_config, monkeypatch):
        engine = SearchEngine(two_vehicle_problem, make_config(search={"max_generations": 100}))
        produce = engine._produce

        def produce_then_stop(task):
            engine.stop()
            return produce(task)

        monkeypatch.setattr(engine, "_produce", produce_then_stop)
        result = engine.solve()

        assert result.statistics.termination == "stopped"
        assert result.statistics.generations == 1
        result.best.check_invariants()

    def test_stop_before_solve_is_not_lost(self, two_vehicle_problem, make_config):
        engine = SearchEngine(two_vehicle_problem, make_config(search={"max_generations": 5}))
        engine.stop()

        stopped = engine.solve()
        assert stopped.statistics.termination == "stopped"
        assert stopped.statistics.generations == 0

        # The request is consumed by the run it stopped.
        again = engine.solve()
        assert again.statistics.termination == "max_generations"
        assert again.statistics.generations == 5

    def test_at_least_one_criterion(self):
        with pytest.raises(ConfigurationError):
            TerminationCriteria()


class TestSearchProperties:
    def test_job_conservation_and_feasibility(self, two_vehicle_problem, make_config):
        engine, result = run(two_vehicle_problem, make_config())

        result.best.check_invariants()
        assert result.best.unassigned == {}
        for route in result.best.non_empty_routes:
            assert engine.checker.route_violations(result.best, route) == []
            schedule = engine.checker.schedule(result.best, route)
            assert np.all(schedule.loads <= 20)

    def test_best_never_regresses(self, two_vehicle_problem, make_config):
        engine, result = run(two_vehicle_problem, make_config(search={"max_generations": 40}))

        history = result.statistics.best_history
        for previous, current in zip(history, history[1:]):
            assert engine.evaluator.is_better(current, previous)
        assert result.fitness == history[-1]

    def test_best_never_regresses_in_pareto_mode(self, two_vehicle_problem, make_config):
        config = make_config(objective={"mode": "pareto", "criteria": ["unassigned", "tardiness", "cost"]},
                             search={"max_generations": 40})
        engine, result = run(two_vehicle_problem, config)

        history = result.statistics.best_history
        for i, current in enumerate(history):
            assert not any(earlier.dominates(current) for earlier in history[:i])
        for previous, current in zip(history, history[1:]):
            assert engine.evaluator.is_better(current, previous)
        assert not any(f.dominates(result.fitness) for _, f in result.front)

    def test_same_seed_same_run(self, two_vehicle_problem, make_config):
        _, first = run(two_vehicle_problem, make_config())
        _, second = run(two_vehicle_problem, make_config())

        assert first.best.signature() == second.best.signature()
        assert first.statistics.iter_details == second.statistics.iter_details
        assert first.statistics.improvement_curve == second.statistics.improvement_curve

    def test_worker_count_does_not_change_result(self, two_vehicle_problem, make_config):
        _, serial = run(two_vehicle_problem, make_config(search={"offspring_per_generation": 3, "workers": 1}))
        _, parallel = run(two_vehicle_problem, make_config(search={"offspring_per_generation": 3, "workers": 3}))

        assert serial.best.signature() == parallel.best.signature()
        assert serial.statistics.iter_details == parallel.statistics.iter_details

    def test_statistics(self, two_vehicle_problem, make_config):
        _, result = run(two_vehicle_problem, make_config(search={"max_generations": 10}))
        stats = result.statistics

        assert stats.generations == 10
        assert stats.accepted + stats.rejected + stats.failures == 10
        assert sum(stats.ruin_usage.values()) == 10
        assert sum(stats.recreate_usage.values()) == 10
        assert sum(stats.ruin_weights.values()) == pytest.approx(1.0)
        assert stats.elapsed >= 0
        assert stats.as_dict()["generations"] == 10


class TestOutcomes:
    def test_unservable_jobs_are_reported_not_raised(self, make_problem, make_config):
        jobs = [Job.service(f"cold{i}", Place(i), skills=["fridge"]) for i in range(1, 4)]
        engine, result = run(make_problem(jobs), make_config(search={"max_generations": 3}))

        assert result.best.unassigned == {job.id: UnassignedReason.SKILL_MISMATCH for job in jobs}
        assert result.statistics.failures == 3
        assert result.job_status()["cold1"] == {"status": "unassigned", "reason": "SkillMismatch"}

    def test_job_status(self, two_vehicle_problem, make_config):
        _, result = run(two_vehicle_problem, make_config(search={"max_generations": 5}))
        status = result.job_status()

        assert list(status) == two_vehicle_problem.job_ids
        assert all(record["status"] == "assigned" for record in status.values())
        assert {record["vehicle_id"] for record in status.values()} == {"v1", "v2"}

    def test_cost_breakdown(self, two_vehicle_problem, make_config):
        _, result = run(two_vehicle_problem, make_config(search={"max_generations": 5}))
        assert result.breakdown["cost"] == pytest.approx(result.fitness.measures["cost"])
        assert len(result.breakdown["routes_detail"]) == 2

    def test_soft_time_windows(self, make_problem, make_config):
        jobs = [
            Job.service("late", Place(3, times=(TimeWindow(0, 20),))),
            Job.service("easy", Place(1)),
        ]
        _, result = run(make_problem(jobs), make_config(constraints={"time_windows": "soft"},
                                                        search={"max_generations": 5}))
        assert result.best.unassigned == {}
        assert result.fitness.measures["tardiness"] > 0

    def test_pareto_mode_returns_front(self, two_vehicle_problem, make_config):
        config = make_config(objective={"mode": "pareto", "criteria": ["unassigned", "cost", "routes"]},
                             search={"max_generations": 10})
        _, result = run(two_vehicle_problem, config)

        assert result.front
        fitnesses = [f for _, f in result.front]
        for a in fitnesses:
            assert not any(b.dominates(a) for b in fitnesses)
        for solution, _ in result.front:
            solution.check_invariants()

    def test_weighted_mode(self, two_vehicle_problem, make_config):
        config = make_config(objective={"mode": "weighted"}, search={"max_generations": 5})
        _, result = run(two_vehicle_problem, config)
        assert result.front == [(result.best, result.fitness)]
        assert result.fitness.scalar == pytest.approx(result.fitness.measures["cost"])

    def test_solve_accepts_plain_dict(self, two_vehicle_problem):
        result = solve(two_vehicle_problem, {"search": {"max_generations": 3, "population_size": 2}})
        result.best.check_invariants()
        assert result.statistics.generations == 3

    def test_unknown_operator_is_rejected(self, two_vehicle_problem, make_config):
        with pytest.raises(ConfigurationError):
            SearchEngine(two_vehicle_problem, make_config(operators={"ruin": ["explode"]}))
