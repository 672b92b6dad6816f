"""
Tests for fault injection: timing helpers, random partitions, the partition
injector, and the crash/restart orchestrator.

A recording controller stands in for the cluster so the exact sequence of
topology changes can be asserted.
"""

import threading
import time

import numpy as np
import pytest

from kvfault.harness import (
    CancellationToken,
    ClusterController,
    Constant,
    CrashRestartOrchestrator,
    EventLog,
    EventType,
    KVClient,
    MetricsCollector,
    PartitionAssignment,
    PartitionInjector,
    Uniform,
    jitter,
    milliseconds,
    random_partition,
    seconds,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class RecordingController(ClusterController):
    """Cluster controller that only records the calls made to it."""

    def __init__(self, n_servers: int = 5):
        self.n_servers = n_servers
        self.calls: list[tuple] = []
        self.partitions: list[tuple[frozenset, frozenset]] = []
        self._lock = threading.Lock()

    def _record(self, *call) -> None:
        with self._lock:
            self.calls.append(call)

    def all_servers(self) -> frozenset[int]:
        return frozenset(range(self.n_servers))

    def new_client(self, servers) -> KVClient:
        raise NotImplementedError

    def release_client(self, client) -> None:
        self._record("release_client")

    def install_partition(self, group_a, group_b) -> None:
        self._record("install_partition")
        with self._lock:
            self.partitions.append((frozenset(group_a), frozenset(group_b)))

    def reconnect_all(self) -> None:
        self._record("reconnect_all")

    def reconnect_client(self, client, servers) -> None:
        self._record("reconnect_client")

    def shutdown_server(self, index: int) -> None:
        self._record("shutdown_server", index)

    def start_server(self, index: int) -> None:
        self._record("start_server", index)

    def log_size(self) -> int:
        return 0

    def snapshot_size(self) -> int:
        return 0

    def teardown(self) -> None:
        self._record("teardown")


# =============================================================================
# Timing Tests
# =============================================================================


class TestTiming:
    def test_unit_conversions(self):
        assert milliseconds(200) == pytest.approx(0.2)
        assert seconds(1.5) == 1.5

    def test_jitter_bounds(self):
        rng = np.random.default_rng(42)
        dist = jitter(0.2)
        samples = [dist.sample(rng) for _ in range(1000)]

        assert all(0.0 <= s < 0.2 for s in samples)
        assert dist.mean == pytest.approx(0.1)

    def test_zero_jitter_is_constant(self):
        rng = np.random.default_rng(0)
        dist = jitter(0)
        assert isinstance(dist, Constant)
        assert dist.sample(rng) == 0.0

    def test_uniform_rejects_empty_range(self):
        with pytest.raises(ValueError):
            Uniform(1.0, 1.0)


# =============================================================================
# Partition Assignment Tests
# =============================================================================


class TestPartitionAssignment:
    def test_coerces_groups_to_frozensets(self):
        assignment = PartitionAssignment([0, 1], {2, 3, 4})
        assert assignment.group_a == frozenset({0, 1})
        assert assignment.servers == frozenset(range(5))

    def test_overlap_rejected(self):
        with pytest.raises(ValueError, match="overlap"):
            PartitionAssignment([0, 1], [1, 2])

    def test_degenerate_split(self):
        assert PartitionAssignment([0, 1, 2], []).is_degenerate()
        assert not PartitionAssignment([0], [1, 2]).is_degenerate()

    def test_majority_group(self):
        assert PartitionAssignment([0, 1], [2, 3, 4]).majority_group() == frozenset({2, 3, 4})
        assert PartitionAssignment([0, 1], [2, 3]).majority_group() is None


class TestRandomPartition:
    def test_covers_every_server_disjointly(self):
        rng = np.random.default_rng(7)
        servers = frozenset(range(5))

        for _ in range(100):
            assignment = random_partition(servers, rng)
            assert assignment.servers == servers
            assert not assignment.group_a & assignment.group_b

    def test_same_seed_same_schedule(self):
        rng_a = np.random.default_rng(11)
        rng_b = np.random.default_rng(11)

        schedule_a = [random_partition(range(5), rng_a) for _ in range(20)]
        schedule_b = [random_partition(range(5), rng_b) for _ in range(20)]

        assert schedule_a == schedule_b

    def test_sizes_vary(self):
        """Fair coin flips produce both balanced and unbalanced splits."""
        rng = np.random.default_rng(1)
        sizes = {len(random_partition(range(5), rng).group_a) for _ in range(200)}
        assert len(sizes) >= 4


# =============================================================================
# Cancellation Token Tests
# =============================================================================


class TestCancellationToken:
    def test_initially_not_cancelled(self):
        token = CancellationToken()
        assert not token.cancelled
        assert token.wait(0.01) is False

    def test_cancel_wakes_waiter(self):
        token = CancellationToken()
        timer = threading.Timer(0.05, token.cancel)
        timer.start()

        start = time.monotonic()
        assert token.wait(5.0) is True
        assert time.monotonic() - start < 2.0
        assert token.cancelled


# =============================================================================
# Partition Injector Tests
# =============================================================================


class TestPartitionInjector:
    def test_step_installs_and_records(self):
        controller = RecordingController()
        metrics = MetricsCollector()
        events = EventLog()
        injector = PartitionInjector(
            controller,
            np.random.default_rng(5),
            election_timeout=seconds(0.01),
            jitter_dist=Constant(0.0),
            metrics=metrics,
            events=events,
        )

        assignment = injector.step()

        assert controller.partitions == [(assignment.group_a, assignment.group_b)]
        assert injector.history == [assignment]
        assert metrics.partitions_installed == 1
        [event] = events.of_type(EventType.PARTITION_INSTALLED)
        assert event.metadata["group_a"] == sorted(assignment.group_a)
        majority = assignment.majority_group()
        assert event.metadata["majority"] == (sorted(majority) if majority is not None else None)

    def test_event_names_majority_side(self):
        """Five servers always leave one side holding a majority."""
        events = EventLog()
        injector = PartitionInjector(RecordingController(), np.random.default_rng(13), events=events)
        for _ in range(20):
            injector.step()

        for event, assignment in zip(events.of_type(EventType.PARTITION_INSTALLED), injector.history):
            assert event.metadata["majority"] == sorted(assignment.majority_group())
            assert len(event.metadata["majority"]) >= 3

    def test_next_interval_adds_jitter(self):
        injector = PartitionInjector(
            RecordingController(),
            np.random.default_rng(0),
            election_timeout=seconds(1.0),
            jitter_dist=Constant(0.25),
        )
        assert injector.next_interval() == pytest.approx(1.25)

    def test_cancelled_before_start_installs_nothing(self):
        controller = RecordingController()
        injector = PartitionInjector(controller, np.random.default_rng(0), election_timeout=0.01)
        token = CancellationToken()
        token.cancel()

        assert injector.run(token) == 0
        assert controller.partitions == []

    def test_runs_until_cancelled(self):
        controller = RecordingController()
        injector = PartitionInjector(
            controller,
            np.random.default_rng(9),
            election_timeout=seconds(0.01),
            jitter_dist=Constant(0.0),
        )
        token = CancellationToken()
        result = {}
        worker = threading.Thread(target=lambda: result.setdefault("n", injector.run(token)))
        worker.start()

        time.sleep(0.2)
        token.cancel()
        worker.join(timeout=2.0)

        assert not worker.is_alive()
        assert result["n"] >= 2
        assert result["n"] == len(injector.history) == len(controller.partitions)

    def test_stop_latency_bounded_by_one_interval(self):
        """A long interval doesn't delay stopping: the wait wakes on cancel."""
        injector = PartitionInjector(
            RecordingController(),
            np.random.default_rng(0),
            election_timeout=seconds(30.0),
            jitter_dist=Constant(0.0),
        )
        token = CancellationToken()
        worker = threading.Thread(target=injector.run, args=(token,))
        worker.start()
        time.sleep(0.05)

        start = time.monotonic()
        token.cancel()
        worker.join(timeout=2.0)

        assert not worker.is_alive()
        assert time.monotonic() - start < 2.0
        assert len(injector.history) == 1

    def test_same_seed_same_history(self):
        histories = []
        for _ in range(2):
            injector = PartitionInjector(RecordingController(), np.random.default_rng(21))
            for _ in range(10):
                injector.step()
            histories.append(injector.history)
        assert histories[0] == histories[1]


# =============================================================================
# Crash / Restart Tests
# =============================================================================


class TestCrashRestartOrchestrator:
    def test_shutdown_all_then_restart_all_in_index_order(self):
        controller = RecordingController(n_servers=5)
        sleeps = []
        CrashRestartOrchestrator(controller, election_timeout=seconds(0.5), sleep=sleeps.append).run()

        assert controller.calls == (
            [("shutdown_server", i) for i in range(5)]
            + [("start_server", i) for i in range(5)]
            + [("reconnect_all",)]
        )
        assert sleeps == [0.5]

    def test_counts_and_events(self):
        controller = RecordingController(n_servers=3)
        metrics = MetricsCollector()
        events = EventLog()
        CrashRestartOrchestrator(
            controller, election_timeout=0.0, metrics=metrics, events=events, sleep=lambda s: None
        ).run()

        assert metrics.servers_shutdown == 3
        assert metrics.servers_started == 3
        assert [e.target for e in events.of_type(EventType.SERVER_SHUTDOWN)] == ["0", "1", "2"]
        assert [e.target for e in events.of_type(EventType.SERVER_STARTED)] == ["0", "1", "2"]
        assert len(events.of_type(EventType.NETWORK_HEALED)) == 1

    def test_controller_errors_propagate(self):
        class FailingController(RecordingController):
            def start_server(self, index: int) -> None:
                raise RuntimeError(f"server {index} would not start")

        controller = FailingController(n_servers=3)
        with pytest.raises(RuntimeError, match="server 0"):
            CrashRestartOrchestrator(controller, election_timeout=0.0, sleep=lambda s: None).run()
        assert ("reconnect_all",) not in controller.calls
