import random
import unittest

from cpm_scheduler.constraints import ConstraintEnforcer
from cpm_scheduler.engine import backward_pass, forward_pass
from cpm_scheduler.errors import InvariantViolation
from cpm_scheduler.graph import build
from cpm_scheduler.models import Activity, Dependency, DependencyType, ProjectSnapshot
from cpm_scheduler.resolver import resolve
from cpm_scheduler.scheduler import SchedulerConfig, compute


def _schedule(durations, edges, constraints=(), **kwargs):
    snapshot = ProjectSnapshot(
        activities=[Activity(act_id, duration=d) for act_id, d in durations.items()],
        dependencies=[Dependency(*edge) for edge in edges],
        constraints=list(constraints),
        **kwargs,
    )
    result, _ = compute(snapshot)
    return result


class TestPasses(unittest.TestCase):
    def test_simple_fs_chain(self):
        result = _schedule({"A": 3, "B": 2, "C": 1}, [("A", "B"), ("B", "C")])

        self.assertEqual(result.total_duration, 6)
        self.assertEqual((result.activities["A"].early_start, result.activities["A"].early_finish), (0, 3))
        self.assertEqual((result.activities["B"].early_start, result.activities["B"].early_finish), (3, 5))
        self.assertEqual((result.activities["C"].early_start, result.activities["C"].early_finish), (5, 6))
        self.assertEqual(result.critical_path, ("A", "B", "C"))
        self.assertEqual(result.critical_paths, (("A", "B", "C"),))

    def test_three_activities_two_branches(self):
        result = _schedule({1: 2, 2: 3, 3: 4}, [(1, 2, "FS", 0), (1, 3, "FS", 0)])

        self.assertEqual((result.activities[1].early_start, result.activities[1].early_finish), (0, 2))
        self.assertEqual((result.activities[2].early_start, result.activities[2].early_finish), (2, 5))
        self.assertEqual((result.activities[3].early_start, result.activities[3].early_finish), (2, 6))
        self.assertEqual(result.critical_path, (1, 3))
        self.assertEqual(result.activities[2].total_float, 1)
        self.assertEqual(result.activities[2].free_float, 1)
        self.assertEqual(result.total_duration, 6)
        self.assertEqual(result.conflicts, ())

    def test_lead_time_does_not_invert_ordering(self):
        result = _schedule({"A": 1, "B": 1}, [("A", "B", "FS", -2)])
        a, b = result.activities["A"], result.activities["B"]

        self.assertEqual(a.early_finish - 2, -1)
        self.assertEqual(b.early_start, 0)
        self.assertGreaterEqual(b.early_start, a.early_start)
        self.assertEqual(b.total_float, 0)

    def test_lead_time_within_predecessor(self):
        result = _schedule({"A": 5, "B": 2}, [("A", "B", "FS", -2)])
        self.assertEqual(result.activities["B"].early_start, 3)
        self.assertEqual(result.activities["B"].early_finish, 5)

    def test_negative_ss_lag_floors_at_predecessor_start(self):
        result = _schedule({"A": 5, "B": 3}, [("A", "B", "SS", -2)])
        self.assertEqual(result.activities["A"].early_start, 0)
        self.assertEqual(result.activities["B"].early_start, 0)
        self.assertEqual(result.activities["B"].early_finish, 3)

    def test_start_to_start(self):
        result = _schedule({"A": 5, "B": 3}, [("A", "B", "SS", 2)])
        b = result.activities["B"]
        self.assertEqual((b.early_start, b.early_finish), (2, 5))
        self.assertEqual((result.activities["A"].late_start, result.activities["A"].late_finish), (0, 5))
        self.assertEqual(result.critical_path, ("A", "B"))

    def test_finish_to_finish(self):
        result = _schedule({"A": 5, "B": 2}, [("A", "B", "FF", 1)])
        b = result.activities["B"]
        self.assertEqual((b.early_start, b.early_finish), (4, 6))
        self.assertEqual(result.activities["A"].late_finish, 5)
        self.assertEqual(result.total_duration, 6)

    def test_start_to_finish(self):
        result = _schedule({"A": 2, "B": 3}, [("A", "B", "SF", 4)])
        b = result.activities["B"]
        self.assertEqual((b.early_start, b.early_finish), (1, 4))
        self.assertEqual((result.activities["A"].late_start, result.activities["A"].late_finish), (0, 2))

    def test_positive_lag(self):
        result = _schedule({"A": 3, "B": 2}, [("A", "B", DependencyType.FINISH_TO_START, 2)])
        self.assertEqual(result.activities["B"].early_start, 5)
        self.assertEqual(result.activities["A"].free_float, 0)

    def test_milestone(self):
        result = _schedule({"A": 3, "M": 0}, [("A", "M")])
        m = result.activities["M"]
        self.assertEqual(m.early_start, m.early_finish)
        self.assertEqual(m.early_start, 3)
        self.assertTrue(m.is_critical)

    def test_multiple_critical_paths(self):
        result = _schedule(
            {"A": 2, "B": 2, "C": 2, "D": 2, "E": 2},
            [("A", "C"), ("B", "D"), ("C", "E"), ("D", "E")],
        )

        paths = set(result.critical_paths)
        self.assertEqual(len(paths), 2)
        self.assertIn(("A", "C", "E"), paths)
        self.assertIn(("B", "D", "E"), paths)
        self.assertFalse(result.critical_paths_truncated)
        self.assertEqual(result.critical_path, ("A", "B", "C", "D", "E"))

    def test_project_start_offset(self):
        result = _schedule({"A": 2, "B": 3}, [("A", "B")], project_start=10)
        self.assertEqual(result.activities["A"].early_start, 10)
        self.assertEqual(result.project_end, 15)
        self.assertEqual(result.total_duration, 5)

    def test_passes_standalone(self):
        graph = build([Activity("A", duration=2), Activity("B", duration=3)], [Dependency("A", "B")])
        enforcer = ConstraintEnforcer(graph)
        early = forward_pass(graph, 0, enforcer)
        late = backward_pass(graph, early, enforcer=enforcer)
        self.assertEqual(early, {"A": (0, 2), "B": (2, 5)})
        self.assertEqual(late, {"A": (0, 2), "B": (2, 5)})

    def test_calculation_log(self):
        result = _schedule({"A": 3, "B": 2}, [("A", "B")])
        log = "\n".join(result.calculation_log)
        self.assertIn("FORWARD PASS", log)
        self.assertIn("BACKWARD PASS", log)
        self.assertIn("B: TF = 0 -> CRITICAL", log)


class TestLargeNetworks(unittest.TestCase):
    def test_long_chain_single_path(self):
        size = 1500
        durations = {f"T{i}": 1 for i in range(size)}
        edges = [(f"T{i}", f"T{i + 1}") for i in range(size - 1)]
        result = _schedule(durations, edges)

        self.assertEqual(result.total_duration, size)
        self.assertEqual(len(result.critical_paths), 1)
        self.assertEqual(len(result.critical_paths[0]), size)
        self.assertEqual(result.critical_paths[0][-1], f"T{size - 1}")
        self.assertFalse(result.critical_paths_truncated)

    def _ladder(self, layers):
        activities = [Activity(f"L{i}{side}", duration=1) for i in range(layers) for side in "ab"]
        dependencies = [
            Dependency(f"L{i}{pred}", f"L{i + 1}{succ}")
            for i in range(layers - 1)
            for pred in "ab"
            for succ in "ab"
        ]
        return ProjectSnapshot(activities=activities, dependencies=dependencies)

    def test_cross_linked_ladder_is_capped(self):
        result, _ = compute(self._ladder(18), SchedulerConfig(max_critical_paths=50))

        self.assertEqual(len(result.critical_paths), 50)
        self.assertTrue(result.critical_paths_truncated)
        self.assertEqual(result.critical_paths[0], tuple(f"L{i}a" for i in range(18)))
        self.assertEqual(len(set(result.critical_paths)), 50)
        self.assertEqual(len(result.critical_path), 36)
        self.assertIn("Critical path enumeration stopped at 50 chains", result.calculation_log)

    def test_uncapped_enumeration(self):
        result, _ = compute(self._ladder(4), SchedulerConfig(max_critical_paths=None))

        self.assertEqual(len(result.critical_paths), 16)
        self.assertFalse(result.critical_paths_truncated)

    def test_cap_equal_to_path_count_is_not_truncated(self):
        result, _ = compute(self._ladder(3), SchedulerConfig(max_critical_paths=8))

        self.assertEqual(len(result.critical_paths), 8)
        self.assertFalse(result.critical_paths_truncated)


class TestResolverInvariants(unittest.TestCase):
    def setUp(self):
        self.graph = build([Activity("A", duration=2)], [])

    def test_float_mismatch_is_fatal(self):
        with self.assertRaises(InvariantViolation) as ctx:
            resolve(self.graph, {"A": (0, 2)}, {"A": (1, 2)}, 0, 2)
        self.assertEqual(ctx.exception.activity_id, "A")

    def test_negative_float_is_fatal(self):
        with self.assertRaises(InvariantViolation):
            resolve(self.graph, {"A": (0, 2)}, {"A": (-1, 1)}, 0, 2)


class TestScheduleProperties(unittest.TestCase):
    def _random_network(self, rng, size):
        durations = {f"T{i}": rng.randint(0, 6) for i in range(size)}
        edges = []
        for succ in range(1, size):
            for pred in rng.sample(range(succ), k=min(succ, rng.randint(0, 3))):
                edges.append((f"T{pred}", f"T{succ}", rng.choice(["FS", "SS", "FF", "SF"]), rng.randint(-3, 4)))
        return durations, edges

    def test_random_acyclic_networks(self):
        rng = random.Random(20240501)
        for _ in range(40):
            durations, edges = self._random_network(rng, rng.randint(1, 15))
            result = _schedule(durations, edges)

            for sched in result.activities.values():
                self.assertGreaterEqual(sched.total_float, 0)
                self.assertLessEqual(sched.early_start, sched.late_start)
                self.assertLessEqual(sched.early_finish, sched.late_finish)
                self.assertGreaterEqual(sched.early_start, 0)

            self.assertTrue(result.critical_path)
            latest = max(result.activities[a].early_finish for a in result.critical_path)
            self.assertEqual(result.total_duration, latest)

    def test_large_random_network(self):
        rng = random.Random(99)
        durations, edges = self._random_network(rng, 400)
        result = _schedule(durations, edges)

        self.assertEqual(len(result.activities), 400)
        for sched in result.activities.values():
            self.assertEqual(sched.late_start - sched.early_start, sched.late_finish - sched.early_finish)
            self.assertGreaterEqual(sched.total_float, 0)
        for path in result.critical_paths:
            self.assertTrue(all(result.activities[a].is_critical for a in path))

    def test_recompute_is_idempotent(self):
        rng = random.Random(7)
        durations, edges = self._random_network(rng, 12)
        self.assertEqual(_schedule(durations, edges), _schedule(durations, edges))


if __name__ == "__main__":
    unittest.main()
