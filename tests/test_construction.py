import numpy as np
import pytest

from vrp_solver.data.problem import Job, Place, TimeWindow
from vrp_solver.models.construction import ConstructionHeuristic, InsertionHeuristic
from vrp_solver.utils.solution import Solution, UnassignedReason


@pytest.fixture
def build(make_checker):
    def factory(problem, **kwargs):
        checker = make_checker(problem, **kwargs)
        insertion = InsertionHeuristic(checker)
        solution = ConstructionHeuristic(insertion).build(problem, np.random.default_rng(0))
        return solution, checker
    return factory


class TestScenarios:
    def test_two_jobs_share_one_route(self, make_problem, make_vehicle, build):
        # 08:00-18:00 expressed in minutes.
        vehicle = make_vehicle(capacity=(10,), shift=(480, 1080))
        jobs = [Job.delivery("a", Place(1), 4), Job.delivery("b", Place(2), 5)]
        solution, _ = build(make_problem(jobs, [vehicle]))

        assert solution.unassigned == {}
        assert len(solution.non_empty_routes) == 1
        assert set(solution.non_empty_routes[0].job_ids()) == {"a", "b"}
        solution.check_invariants()

    def test_oversized_job_is_unassigned_with_reason(self, make_problem, make_vehicle, build):
        solution, _ = build(make_problem([Job.delivery("big", Place(1), 10)], [make_vehicle(capacity=(5,))]))

        assert solution.unassigned == {"big": UnassignedReason.NO_CAPACITY}
        assert solution.non_empty_routes == []
        solution.check_invariants()


class TestReasons:
    def test_skill_mismatch(self, make_problem, build):
        solution, _ = build(make_problem([Job.service("cold", Place(1), skills=["fridge"])]))
        assert solution.unassigned == {"cold": UnassignedReason.SKILL_MISMATCH}

    def test_time_window_miss(self, make_problem, build):
        solution, _ = build(make_problem([Job.service("late", Place(3, times=(TimeWindow(0, 20),)))]))
        assert solution.unassigned == {"late": UnassignedReason.NO_TIME_WINDOW_FIT}

    def test_soft_time_windows_assign_late_job(self, make_problem, build):
        problem = make_problem([Job.service("late", Place(3, times=(TimeWindow(0, 20),)))])
        solution, checker = build(problem, policy="soft")
        assert solution.unassigned == {}
        assert checker.schedule(solution, solution.route_of("late")).total_tardiness == 10.0

    def test_max_duration(self, make_problem, make_vehicle, build):
        solution, _ = build(make_problem([Job.service("far", Place(5))], [make_vehicle(max_duration=60)]))
        assert solution.unassigned == {"far": UnassignedReason.MAX_DURATION_EXCEEDED}

    def test_capacity_runs_out(self, make_problem, make_vehicle, build):
        jobs = [Job.delivery(f"d{i}", Place(i), 4) for i in range(1, 4)]
        solution, checker = build(make_problem(jobs, [make_vehicle(capacity=(10,))]))

        assert len(solution.unassigned) == 1
        assert list(solution.unassigned.values()) == [UnassignedReason.NO_CAPACITY]
        route = solution.non_empty_routes[0]
        assert checker.route_violations(solution, route) == []


class TestInsertion:
    def test_group_members_share_an_actor(self, make_problem, make_vehicle, build):
        jobs = [
            Job.service("a", Place(1), group="g"),
            Job.service("b", Place(8), group="g"),
            Job.service("c", Place(7)),
        ]
        vehicles = [make_vehicle("near", start=1, end=1), make_vehicle("far", start=8, end=8)]
        solution, _ = build(make_problem(jobs, vehicles))

        assert solution.unassigned == {}
        assert solution.route_of("a").actor is solution.route_of("b").actor
        solution.check_invariants()

    def test_shipment_tasks_in_order(self, make_problem, build):
        jobs = [Job.shipment("s", Place(4), Place(2), 3), Job.delivery("d", Place(3), 2)]
        solution, _ = build(make_problem(jobs))

        route = solution.route_of("s")
        tasks = [a.task_index for a in route.activities if a.job.id == "s"]
        assert tasks == [0, 1]
        solution.check_invariants()

    def test_alternative_place_is_chosen(self, make_problem, build):
        jobs = [Job.service("alt", [Place(9), Place(1)])]
        solution, _ = build(make_problem(jobs))
        assert solution.route_of("alt").activities[0].place_index == 1

    @pytest.mark.parametrize("method", ["regret", "cheapest", "random"])
    def test_methods_insert_every_feasible_job(self, two_vehicle_problem, make_checker, method):
        checker = make_checker(two_vehicle_problem)
        insertion = InsertionHeuristic(checker, blink_rate=0.5)
        solution = Solution(two_vehicle_problem)

        left = insertion.insert_jobs(solution, two_vehicle_problem.job_ids, np.random.default_rng(3), method=method)

        assert left == []
        assert solution.unassigned == {}
        solution.check_invariants()

    def test_partial_solution_is_completed(self, two_vehicle_problem, make_checker):
        checker = make_checker(two_vehicle_problem)
        insertion = InsertionHeuristic(checker)
        partial = Solution(two_vehicle_problem)
        partial.assign(two_vehicle_problem.job("job8"), two_vehicle_problem.fleet.actors[1], [0], [0])

        solution = ConstructionHeuristic(insertion).build(two_vehicle_problem, np.random.default_rng(0), partial=partial)

        assert solution.unassigned == {}
        assert solution.route_of("job8").actor.key == ("v2", 0)
        assert partial.unassigned.keys() == set(two_vehicle_problem.job_ids) - {"job8"}
