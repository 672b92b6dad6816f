"""
Fault-injection harness for replicated key-value stores.

This package drives concurrent client sessions against a cluster, injects
network partitions and crash/restart cycles while they run, and verifies
from the values read back that every acknowledged append was applied
exactly once and in per-client order.
"""

from .timing import (
    Seconds,
    milliseconds,
    seconds,
    ELECTION_TIMEOUT,
    PARTITION_JITTER,
    Distribution,
    Uniform,
    Constant,
    jitter,
)
from .errors import (
    HarnessError,
    AssertionFailure,
    ViolationKind,
    OrderingViolation,
    ValueMismatch,
    UnexpectedProgress,
    BoundViolation,
    ClientSessionFailure,
    TimeoutFailure,
)
from .interfaces import KVClient, ClusterController, ClusterFactory
from .verifier import (
    Marker,
    marker,
    next_value,
    client_append_violations,
    check_client_appends,
    check_concurrent_appends,
    contention_token,
    lock_holder,
    check_contention_tokens,
)
from .events import EventType, Event, EventLog
from .metrics import MetricsCollector, MetricsSnapshot, CountingClient
from .workload import (
    ClientSession,
    SessionReport,
    Workload,
    OwnKeyAppendWorkload,
    SharedKeyAppendWorkload,
    LockContentionWorkload,
    ClientDriver,
    run_client,
    spawn_clients_and_wait,
)
from .partition import PartitionAssignment, CancellationToken, PartitionInjector, random_partition
from .crash import CrashRestartOrchestrator
from .scenario import (
    NO_SNAPSHOTS,
    ScenarioPhase,
    ScenarioConfig,
    ScenarioResult,
    ScenarioRunner,
    check,
    check_state_bounds,
    run_generic,
)
from .scenarios import one_partition, snapshot_rpc, snapshot_size, unreliable_one_key
from .catalog import GENERIC_SCENARIOS, STANDALONE_SCENARIOS, Overrides, run_named, scenario_names
from .config import load_scenarios, parse_scenarios

__all__ = [
    # Time units
    "Seconds",
    "milliseconds",
    "seconds",
    "ELECTION_TIMEOUT",
    "PARTITION_JITTER",
    # Distributions
    "Distribution",
    "Uniform",
    "Constant",
    "jitter",
    # Errors
    "HarnessError",
    "AssertionFailure",
    "ViolationKind",
    "OrderingViolation",
    "ValueMismatch",
    "UnexpectedProgress",
    "BoundViolation",
    "ClientSessionFailure",
    "TimeoutFailure",
    # Interfaces
    "KVClient",
    "ClusterController",
    "ClusterFactory",
    # Verifier
    "Marker",
    "marker",
    "next_value",
    "client_append_violations",
    "check_client_appends",
    "check_concurrent_appends",
    "contention_token",
    "lock_holder",
    "check_contention_tokens",
    # Events
    "EventType",
    "Event",
    "EventLog",
    # Metrics
    "MetricsCollector",
    "MetricsSnapshot",
    "CountingClient",
    # Workload
    "ClientSession",
    "SessionReport",
    "Workload",
    "OwnKeyAppendWorkload",
    "SharedKeyAppendWorkload",
    "LockContentionWorkload",
    "ClientDriver",
    "run_client",
    "spawn_clients_and_wait",
    # Faults
    "PartitionAssignment",
    "CancellationToken",
    "PartitionInjector",
    "random_partition",
    "CrashRestartOrchestrator",
    # Scenarios
    "NO_SNAPSHOTS",
    "ScenarioPhase",
    "ScenarioConfig",
    "ScenarioResult",
    "ScenarioRunner",
    "check",
    "check_state_bounds",
    "run_generic",
    "one_partition",
    "snapshot_rpc",
    "snapshot_size",
    "unreliable_one_key",
    # Catalog
    "GENERIC_SCENARIOS",
    "STANDALONE_SCENARIOS",
    "Overrides",
    "run_named",
    "scenario_names",
    "load_scenarios",
    "parse_scenarios",
]
