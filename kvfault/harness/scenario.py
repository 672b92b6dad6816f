"""
Scenario runner: the phased composition of workload, faults and verification.

A scenario moves strictly forward through

    INIT -> RUNNING_WORKLOAD -> [PARTITIONING] -> STOPPING
         -> [CRASH_RESTART] -> VERIFYING -> DONE

Client sessions and the partition injector run concurrently during
RUNNING_WORKLOAD / PARTITIONING / STOPPING. Every other phase runs on the
caller's thread, so topology is never changed by two actors at once: the
crash/restart phase only begins after the injector has signalled that it
stopped.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass, field, replace
from enum import Enum
import logging
import time
from typing import Any, Callable

import numpy as np

from .crash import CrashRestartOrchestrator
from .errors import BoundViolation, HarnessError, TimeoutFailure, ValueMismatch
from .events import Event, EventLog, EventType
from .interfaces import ClusterController, ClusterFactory, KVClient
from .metrics import CountingClient, MetricsCollector, MetricsSnapshot
from .partition import CancellationToken, PartitionInjector
from .timing import ELECTION_TIMEOUT, PARTITION_JITTER, Seconds, jitter
from .verifier import check_client_appends, check_contention_tokens, lock_holder
from .workload import (
    ClientDriver,
    LockContentionWorkload,
    OwnKeyAppendWorkload,
    SessionReport,
    Workload,
)

logger = logging.getLogger(__name__)

# Sentinel for ScenarioConfig.max_state_size meaning "no snapshots".
NO_SNAPSHOTS = -1

WORKLOADS = ("append", "lock_contention")


class ScenarioPhase(Enum):
    """Phases of a scenario run, in the only order they can occur."""

    INIT = "init"
    RUNNING_WORKLOAD = "running_workload"
    PARTITIONING = "partitioning"
    STOPPING = "stopping"
    CRASH_RESTART = "crash_restart"
    VERIFYING = "verifying"
    DONE = "done"


@dataclass
class ScenarioConfig:
    """Parameters of one generic scenario.

    Attributes:
        n_clients: Number of concurrent client sessions.
        part: Label appended to the title (e.g. "3A", "3B").
        unreliable: Whether the network drops requests and replies.
        crash: Whether every server is shut down and restarted before
            verification.
        partitions: Whether the partition injector runs during the workload.
        max_state_size: Persisted-state size that triggers a snapshot, in
            bytes. ``-1`` disables snapshots and the log-size check.
        n_servers: Number of servers in the cluster.
        max_snapshot_size: Optional bound on the persisted snapshot size.
        ops_per_client: Appends per session. Defaults to ``n_clients``.
        workload: ``"append"`` (markers on the client's own key, verified)
            or ``"lock_contention"`` (timestamp tokens on every key, logged).
        election_timeout: Base pacing interval in seconds.
        partition_grace: Seconds sessions run undisturbed before the
            injector starts.
        partition_jitter: Exclusive upper bound of the per-split jitter.
        session_timeout: Bound on waiting for all sessions (None = forever).
        injector_stop_timeout: Bound on waiting for the injector to stop
            (None = derived from the pacing interval).
        seed: Seed for the partition schedule.
    """

    n_clients: int
    part: str = "3A"
    unreliable: bool = False
    crash: bool = False
    partitions: bool = False
    max_state_size: int = NO_SNAPSHOTS
    n_servers: int = 5
    max_snapshot_size: int | None = None
    ops_per_client: int | None = None
    workload: str = "append"
    election_timeout: float = ELECTION_TIMEOUT
    partition_grace: float = 1.0
    partition_jitter: float = PARTITION_JITTER
    session_timeout: float | None = None
    injector_stop_timeout: float | None = None
    seed: int | None = None

    def __post_init__(self) -> None:
        if self.n_clients < 1:
            raise ValueError(f"n_clients must be >= 1, got {self.n_clients}")
        if self.n_servers < 1:
            raise ValueError(f"n_servers must be >= 1, got {self.n_servers}")
        if self.max_state_size < NO_SNAPSHOTS or self.max_state_size == 0:
            raise ValueError(
                f"max_state_size must be positive or {NO_SNAPSHOTS}, got {self.max_state_size}"
            )
        if self.ops_per_client is not None and self.ops_per_client < 0:
            raise ValueError(f"ops_per_client must be >= 0, got {self.ops_per_client}")
        if self.workload not in WORKLOADS:
            raise ValueError(f"workload must be one of {WORKLOADS}, got {self.workload!r}")
        if self.election_timeout < 0 or self.partition_grace < 0 or self.partition_jitter < 0:
            raise ValueError("timing parameters must be non-negative")

    @property
    def snapshots_enabled(self) -> bool:
        return self.max_state_size > 0

    @property
    def effective_ops_per_client(self) -> int:
        return self.n_clients if self.ops_per_client is None else self.ops_per_client

    @property
    def stop_timeout(self) -> float:
        """How long to wait for the injector once it has been told to stop."""
        if self.injector_stop_timeout is not None:
            return self.injector_stop_timeout
        return 2 * (self.election_timeout + self.partition_jitter) + 1.0

    @property
    def title(self) -> str:
        title = "Test: "
        if self.unreliable:
            # the network drops RPC requests and replies.
            title += "unreliable net, "
        if self.crash:
            # peers re-start, and thus persistence must work.
            title += "restarts, "
        if self.partitions:
            title += "partitions, "
        if self.max_state_size != NO_SNAPSHOTS:
            title += "snapshots, "
        title += "many clients" if self.n_clients > 1 else "one client"
        return f"{title} ({self.part})"

    def with_overrides(self, **changes: Any) -> ScenarioConfig:
        """Copy of this config with some fields replaced (and re-validated)."""
        return replace(self, **changes)


@dataclass
class ScenarioResult:
    """Outcome of a scenario that passed.

    Attributes:
        title: Human-readable scenario title.
        phase: Last phase reached (DONE for a completed run).
        elapsed: Wall-clock duration in seconds.
        reports: Per-session reports, ordered by client id.
        final_values: Values read back during verification, by key.
        metrics: Operation and fault counters.
        event_log: Recorded events (empty unless event logging was enabled).
        config: Configuration of a generic scenario (None for standalone ones).
    """

    title: str
    phase: ScenarioPhase
    elapsed: Seconds
    reports: list[SessionReport] = field(default_factory=list)
    final_values: dict[str, str] = field(default_factory=dict)
    metrics: MetricsSnapshot | None = None
    event_log: list[Event] = field(default_factory=list)
    config: ScenarioConfig | None = None

    def summary(self) -> str:
        ops = self.metrics.total_ops() if self.metrics else 0
        return f"{self.title}\n  ... Passed -- {self.elapsed:4.1f}s {ops:5d} ops"


def check(client: KVClient, key: str, value: str) -> None:
    """Read ``key`` and require it to equal ``value``.

    Raises:
        ValueMismatch: the read returned something else.
    """
    received = client.get(key)
    if received != value:
        raise ValueMismatch(key, value, received)


def check_state_bounds(
    controller: ClusterController,
    max_state_size: int,
    max_snapshot_size: int | None = None,
) -> None:
    """Require persisted log and snapshot sizes to stay within bounds.

    The log may reach twice ``max_state_size`` before compaction is
    considered late. Sizes are only checked when a bound is configured.

    Raises:
        BoundViolation: a size is over its bound.
    """
    if max_state_size > 0:
        log_size = controller.log_size()
        limit = 2 * max_state_size
        if log_size > limit:
            raise BoundViolation(
                "log",
                log_size,
                limit,
                f"logs were not trimmed ({log_size} > 2*{max_state_size})",
            )
    if max_snapshot_size is not None:
        snapshot_size = controller.snapshot_size()
        if snapshot_size > max_snapshot_size:
            raise BoundViolation(
                "snapshot",
                snapshot_size,
                max_snapshot_size,
                f"snapshot too large ({snapshot_size} > {max_snapshot_size})",
            )


class ScenarioRunner:
    """Runs one generic scenario against a freshly built cluster.

    Args:
        config: Scenario parameters.
        cluster_factory: Builds the cluster under test.
        log_events: Whether to keep a log of everything the harness did.
        sleep: Sleep function for grace periods and stabilization waits.
    """

    def __init__(
        self,
        config: ScenarioConfig,
        cluster_factory: ClusterFactory,
        log_events: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.cluster_factory = cluster_factory
        self.sleep = sleep
        self.rng = np.random.default_rng(config.seed)
        self.metrics = MetricsCollector()
        self.events = EventLog(enabled=log_events)
        self.phase = ScenarioPhase.INIT

    def _enter(self, phase: ScenarioPhase) -> None:
        self.phase = phase
        self.events.record(EventType.PHASE_ENTERED, phase.value)
        logger.debug("phase -> %s", phase.value)

    def _workload(self) -> Workload:
        if self.config.workload == "lock_contention":
            return LockContentionWorkload(n_keys=self.config.n_clients)
        return OwnKeyAppendWorkload(self.config.effective_ops_per_client)

    def run(self) -> ScenarioResult:
        """Run every phase; raise on the first failure.

        Raises:
            AssertionFailure: the cluster broke a correctness invariant.
            ClientSessionFailure: a session raised.
            TimeoutFailure: a session or the injector did not finish in time.
        """
        cfg = self.config
        start = time.monotonic()
        self._enter(ScenarioPhase.INIT)
        cluster = self.cluster_factory(cfg.n_servers, cfg.unreliable, cfg.max_state_size)
        control = None
        try:
            cluster.begin_scenario(cfg.title)
            control = cluster.new_client(cluster.all_servers())
            ck = CountingClient(control, self.metrics)

            reports = self._run_workload(cluster)
            if cfg.crash:
                self._crash_restart(cluster)
            final_values = self._verify(cluster, ck, reports)

            cluster.end_scenario()
            self._enter(ScenarioPhase.DONE)
        except HarnessError as exc:
            logger.error("%s failed during %s: %s", cfg.title, self.phase.value, exc)
            raise
        finally:
            if control is not None:
                cluster.release_client(control)
            cluster.teardown()

        result = ScenarioResult(
            title=cfg.title,
            phase=self.phase,
            elapsed=Seconds(time.monotonic() - start),
            reports=reports,
            final_values=final_values,
            metrics=self.metrics.snapshot(),
            event_log=self.events.events(),
            config=cfg,
        )
        logger.info("%s", result.summary())
        return result

    def _run_workload(self, cluster: ClusterController) -> list[SessionReport]:
        cfg = self.config
        driver = ClientDriver(cluster, cfg.n_clients, self._workload(), self.metrics, self.events)
        partitioner_done = CancellationToken()
        injector_future: Future | None = None
        executor = ThreadPoolExecutor(
            max_workers=cfg.n_clients + 1, thread_name_prefix="kvfault"
        )
        try:
            self._enter(ScenarioPhase.RUNNING_WORKLOAD)
            futures = driver.launch(executor)

            if cfg.partitions:
                # Allow the clients to perform some operations without interruption
                self.sleep(cfg.partition_grace)
                self._enter(ScenarioPhase.PARTITIONING)
                injector = PartitionInjector(
                    cluster,
                    self.rng,
                    election_timeout=Seconds(cfg.election_timeout),
                    jitter_dist=jitter(cfg.partition_jitter),
                    metrics=self.metrics,
                    events=self.events,
                )
                injector_future = executor.submit(injector.run, partitioner_done)

            self._enter(ScenarioPhase.STOPPING)
            try:
                reports = driver.wait(futures, timeout=cfg.session_timeout)
            finally:
                partitioner_done.cancel()

            if injector_future is not None:
                self._await_injector(injector_future)
                # A request submitted in a minority won't return until that
                # server discovers a new term has started.
                cluster.reconnect_all()
                self.events.record(EventType.NETWORK_HEALED, "network")
                self.sleep(cfg.election_timeout)
            return reports
        finally:
            partitioner_done.cancel()
            if injector_future is not None and not injector_future.done():
                wait_futures([injector_future], timeout=cfg.stop_timeout)
            executor.shutdown(wait=False, cancel_futures=True)

    def _await_injector(self, injector_future: Future) -> None:
        try:
            installed = injector_future.result(timeout=self.config.stop_timeout)
        except FuturesTimeoutError:
            raise TimeoutFailure("partition injector", self.config.stop_timeout) from None
        logger.debug("partitioner installed %d partitions", installed)

    def _crash_restart(self, cluster: ClusterController) -> None:
        self._enter(ScenarioPhase.CRASH_RESTART)
        CrashRestartOrchestrator(
            cluster,
            election_timeout=Seconds(self.config.election_timeout),
            metrics=self.metrics,
            events=self.events,
            sleep=self.sleep,
        ).run()
        cluster.reconnect_all()

    def _verify(
        self,
        cluster: ClusterController,
        ck: KVClient,
        reports: list[SessionReport],
    ) -> dict[str, str]:
        cfg = self.config
        self._enter(ScenarioPhase.VERIFYING)
        final_values = {}
        for report in reports:
            key = str(report.client_id)
            value = ck.get(key)
            final_values[key] = value
            self.events.record(EventType.VALUE_READ, key, length=len(value))
            logger.info("get k:%s, v:%s", key, value)

            if cfg.workload == "append":
                check_client_appends(report.client_id, value, report.count)
                if value != report.expected:
                    raise ValueMismatch(key, report.expected, value)
            else:
                logger.info("the lock %s is held by client %s", key, lock_holder(value))
                check_contention_tokens(value)

        # Check maximum after the servers have processed all client
        # requests and had time to checkpoint.
        check_state_bounds(cluster, cfg.max_state_size, cfg.max_snapshot_size)
        return final_values


def run_generic(
    config: ScenarioConfig,
    cluster_factory: ClusterFactory,
    log_events: bool = False,
) -> ScenarioResult:
    """Run a generic scenario and return its result."""
    return ScenarioRunner(config, cluster_factory, log_events=log_events).run()
