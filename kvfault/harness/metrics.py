"""
Operation and fault counters for harness runs.

Every client operation the harness issues goes through ``CountingClient``,
which reports it to a shared ``MetricsCollector``. The partition injector and
the crash/restart orchestrator report the faults they inject.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import threading

from .interfaces import KVClient


@dataclass
class MetricsCollector:
    """Collects counters during a scenario run.

    Attributes:
        gets: Completed Get operations.
        puts: Completed Put operations.
        appends: Completed Append operations.
        partitions_installed: Partitions installed by the injector.
        servers_shutdown: Server shutdowns performed.
        servers_started: Server (re)starts performed.
    """

    gets: int = 0
    puts: int = 0
    appends: int = 0
    partitions_installed: int = 0
    servers_shutdown: int = 0
    servers_started: int = 0

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_op(self, kind: str) -> None:
        """Count one completed client operation ("get", "put" or "append")."""
        with self._lock:
            if kind == "get":
                self.gets += 1
            elif kind == "put":
                self.puts += 1
            elif kind == "append":
                self.appends += 1
            else:
                raise ValueError(f"Unknown operation kind {kind!r}")

    def record_partition(self) -> None:
        with self._lock:
            self.partitions_installed += 1

    def record_shutdown(self) -> None:
        with self._lock:
            self.servers_shutdown += 1

    def record_start(self) -> None:
        with self._lock:
            self.servers_started += 1

    def total_ops(self) -> int:
        """Total completed client operations."""
        with self._lock:
            return self.gets + self.puts + self.appends

    def snapshot(self) -> MetricsSnapshot:
        """Create an immutable snapshot of current counters."""
        with self._lock:
            return MetricsSnapshot(
                gets=self.gets,
                puts=self.puts,
                appends=self.appends,
                partitions_installed=self.partitions_installed,
                servers_shutdown=self.servers_shutdown,
                servers_started=self.servers_started,
            )


@dataclass(frozen=True)
class MetricsSnapshot:
    """Immutable snapshot of counters at the end of a run."""

    gets: int
    puts: int
    appends: int
    partitions_installed: int
    servers_shutdown: int
    servers_started: int

    def total_ops(self) -> int:
        return self.gets + self.puts + self.appends

    def __repr__(self) -> str:
        return (
            f"MetricsSnapshot(ops={self.total_ops()}, "
            f"partitions={self.partitions_installed}, "
            f"restarts={self.servers_started})"
        )


class CountingClient(KVClient):
    """Wraps a client handle and counts each operation once it completes."""

    def __init__(self, inner: KVClient, metrics: MetricsCollector):
        self.inner = inner
        self.metrics = metrics

    def get(self, key: str) -> str:
        value = self.inner.get(key)
        self.metrics.record_op("get")
        return value

    def put(self, key: str, value: str) -> None:
        self.inner.put(key, value)
        self.metrics.record_op("put")

    def append(self, key: str, value: str) -> None:
        self.inner.append(key, value)
        self.metrics.record_op("append")

    def __repr__(self) -> str:
        return f"CountingClient({self.inner!r})"
