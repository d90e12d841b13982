import pytest

from vrp_solver.data.problem import Job, Place
from vrp_solver.utils.errors import InvariantViolation
from vrp_solver.utils.solution import Activity, Route, ScheduleCache, Solution, UnassignedReason


@pytest.fixture
def problem(two_vehicle_problem):
    return two_vehicle_problem


@pytest.fixture
def actors(problem):
    return problem.fleet.actors


class TestRoute:
    def test_insert_and_remove_bump_version(self, problem, actors):
        route = Route(actors[0])
        job = problem.job("job1")

        route.insert(0, Activity(job))
        assert route.version == 1
        assert route.job_ids() == ["job1"]

        assert route.remove_job("job1") == 0
        assert route.version == 2
        assert route.is_empty
        assert route.remove_job("job1") == -1
        assert route.version == 2

    def test_copy_is_independent(self, problem, actors):
        route = Route(actors[0], [Activity(problem.job("job1"))])
        clone = route.copy()
        clone.insert(1, Activity(problem.job("job2")))

        assert len(route) == 1
        assert len(clone) == 2
        assert clone.version == route.version + 1


class TestScheduleCache:
    def test_stale_entries_are_not_returned(self, problem, actors):
        cache = ScheduleCache()
        route = Route(actors[0])
        cache.put(route, "schedule")
        assert cache.get(route) == "schedule"

        route.insert(0, Activity(problem.job("job1")))
        assert cache.get(route) is None


class TestSolution:
    def test_starts_with_every_job_unassigned(self, problem):
        solution = Solution(problem)
        assert set(solution.unassigned) == set(problem.job_ids)
        assert solution.is_empty()
        solution.check_invariants()

    def test_assign_and_unassign(self, problem, actors):
        solution = Solution(problem)
        solution.assign(problem.job("job1"), actors[1], [0], [0])

        assert solution.is_assigned("job1")
        assert "job1" not in solution.unassigned
        assert solution.route_of("job1").actor is actors[1]
        solution.check_invariants()

        assert solution.unassign("job1", UnassignedReason.NO_CAPACITY)
        assert solution.unassigned["job1"] is UnassignedReason.NO_CAPACITY
        assert actors[1].key not in solution.routes
        solution.check_invariants()

    def test_double_assignment_is_rejected(self, problem, actors):
        solution = Solution(problem)
        solution.assign(problem.job("job1"), actors[0], [0], [0])
        with pytest.raises(InvariantViolation):
            solution.assign(problem.job("job1"), actors[1], [0], [0])

    def test_set_reason_requires_unassigned_job(self, problem, actors):
        solution = Solution(problem)
        solution.assign(problem.job("job1"), actors[0], [0], [0])
        with pytest.raises(InvariantViolation):
            solution.set_reason("job1", UnassignedReason.NO_CAPACITY)

    def test_invariants_detect_lost_job(self, problem, actors):
        solution = Solution(problem)
        del solution.unassigned["job1"]
        with pytest.raises(InvariantViolation):
            solution.check_invariants()

    def test_invariants_detect_duplicated_job(self, problem, actors):
        solution = Solution(problem)
        solution.assign(problem.job("job1"), actors[0], [0], [0])
        solution.route(actors[1]).insert(0, Activity(problem.job("job1")))
        with pytest.raises(InvariantViolation):
            solution.check_invariants()

    def test_copy_does_not_alias_routes(self, problem, actors):
        solution = Solution(problem)
        solution.assign(problem.job("job1"), actors[0], [0], [0])
        clone = solution.copy()
        clone.assign(problem.job("job2"), actors[0], [1], [0])

        assert solution.route_of("job1").job_ids() == ["job1"]
        assert clone.route_of("job1").job_ids() == ["job1", "job2"]
        assert "job2" in solution.unassigned
        solution.check_invariants()
        clone.check_invariants()

    def test_group_is_bound_to_one_actor(self, make_problem, make_vehicle):
        jobs = [Job.service("a", Place(1), group="g"), Job.service("b", Place(2), group="g")]
        problem = make_problem(jobs, [make_vehicle("v1"), make_vehicle("v2")])
        actors = problem.fleet.actors
        solution = Solution(problem)

        solution.assign(problem.job("a"), actors[0], [0], [0])
        assert solution.group_actor("g") == actors[0].key
        with pytest.raises(InvariantViolation):
            solution.assign(problem.job("b"), actors[1], [0], [0])

        solution.unassign("a")
        assert solution.group_actor("g") is None


class TestSolutionIdentity:
    def test_signature_ignores_construction_order(self, problem, actors):
        first = Solution(problem)
        first.assign(problem.job("job1"), actors[0], [0], [0])
        first.assign(problem.job("job2"), actors[1], [0], [0])

        second = Solution(problem)
        second.assign(problem.job("job2"), actors[1], [0], [0])
        second.assign(problem.job("job1"), actors[0], [0], [0])

        assert first.signature() == second.signature()
        assert first.distance_to(second) == 0.0

    def test_broken_pairs_distance(self, problem, actors):
        first = Solution(problem)
        first.assign(problem.job("job1"), actors[0], [0], [0])
        first.assign(problem.job("job2"), actors[0], [1], [0])

        second = Solution(problem)
        second.assign(problem.job("job2"), actors[0], [0], [0])
        second.assign(problem.job("job1"), actors[0], [1], [0])

        assert first.edges() == {(None, "job1"), ("job1", "job2"), ("job2", None)}
        assert first.distance_to(second) == 1.0
        assert Solution(problem).distance_to(Solution(problem)) == 0.0
