"""
Client workload driver.

Spawns one concurrent session per client. Each session owns a private
client handle bound to every server, runs a fixed, deterministic sequence of
operations, and reports its completed operation count and expected value
through its own future. Sessions are not cancellable: they always run their
full iteration count, blocking inside client calls while the cluster is
unreachable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from concurrent.futures import Executor, Future, ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
import logging
import time
from typing import Callable

from .errors import ClientSessionFailure, TimeoutFailure
from .events import EventLog, EventType
from .interfaces import ClusterController, KVClient
from .metrics import CountingClient, MetricsCollector
from .verifier import contention_token, marker, next_value

logger = logging.getLogger(__name__)

# Low bits of the wall-clock nanosecond counter used in contention tokens.
_TIMESTAMP_MASK = 0x3FFFFFFFFF


@dataclass
class ClientSession:
    """One client's private view of a scenario.

    Attributes:
        client_id: Index of the client, also used in every marker it writes.
        client: Exclusive handle; never shared with another session.
        seq: Number of appends issued so far (the next marker's sequence).
        expected: Concatenation of everything this session appended.
    """

    client_id: int
    client: KVClient
    seq: int = 0
    expected: str = ""

    @property
    def own_key(self) -> str:
        return str(self.client_id)

    def get(self, key: str) -> str:
        return self.client.get(key)

    def put(self, key: str, value: str) -> None:
        self.client.put(key, value)

    def append(self, key: str, value: str) -> None:
        """Append ``value`` and advance the local sequence and expectation."""
        self.client.append(key, value)
        self.expected = next_value(self.expected, value)
        self.seq += 1

    def append_marker(self, key: str) -> str:
        """Append this session's next marker to ``key`` and return it."""
        value = marker(self.client_id, self.seq)
        self.append(key, value)
        return value


@dataclass(frozen=True)
class SessionReport:
    """What a finished session sends back over its completion future.

    Attributes:
        client_id: Index of the client.
        count: Appends the session completed.
        expected: Concatenation of the values it appended, in order.
    """

    client_id: int
    count: int
    expected: str


SessionFn = Callable[[ClientSession], None]


class Workload(ABC):
    """A fixed sequence of operations run by every session."""

    name: str = "workload"

    @abstractmethod
    def run(self, session: ClientSession) -> None:
        """Issue this workload's operations through ``session``."""

    def __call__(self, session: ClientSession) -> None:
        self.run(session)


class OwnKeyAppendWorkload(Workload):
    """Each client resets its own key, then appends its markers to it.

    Only the owning client writes to a key, so the final value must equal
    the session's expected value exactly.

    Args:
        ops_per_client: Number of markers each session appends.
    """

    name = "append"

    def __init__(self, ops_per_client: int):
        if ops_per_client < 0:
            raise ValueError(f"ops_per_client must be >= 0, got {ops_per_client}")
        self.ops_per_client = ops_per_client

    def run(self, session: ClientSession) -> None:
        key = session.own_key
        session.put(key, "")
        for _ in range(self.ops_per_client):
            session.append_marker(key)


class SharedKeyAppendWorkload(Workload):
    """Every client appends its markers to one shared key.

    The key is expected to be initialized by the caller before sessions start.

    Args:
        key: The shared key.
        ops_per_client: Number of markers each session appends.
    """

    name = "shared_key_append"

    def __init__(self, key: str, ops_per_client: int):
        self.key = key
        self.ops_per_client = ops_per_client

    def run(self, session: ClientSession) -> None:
        for _ in range(self.ops_per_client):
            session.append_marker(self.key)


class LockContentionWorkload(Workload):
    """Each client resets its own key, then stamps every key once.

    Tokens look like ``"I<client>T<timestamp>"``; the first token in a key
    names the client that "holds" that key's lock. Nothing about mutual
    exclusion is asserted: a reset by the key's owner can race with other
    clients' stamps.

    Args:
        n_keys: Keys ``0 .. n_keys - 1`` are stamped by every client.
    """

    name = "lock_contention"

    def __init__(self, n_keys: int):
        self.n_keys = n_keys

    def run(self, session: ClientSession) -> None:
        session.put(session.own_key, "")
        for lock in range(self.n_keys):
            timestamp = time.time_ns() & _TIMESTAMP_MASK
            session.append(str(lock), contention_token(session.client_id, timestamp))


def run_client(
    controller: ClusterController,
    client_id: int,
    fn: SessionFn,
    metrics: MetricsCollector | None = None,
    events: EventLog | None = None,
) -> SessionReport:
    """Run one session to completion on a fresh handle bound to every server.

    The handle is released when the session ends, whether or not it failed.

    Raises:
        ClientSessionFailure: ``fn`` raised; the original error is chained.
    """
    metrics = metrics if metrics is not None else MetricsCollector()
    events = events if events is not None else EventLog(enabled=False)

    handle = controller.new_client(controller.all_servers())
    session = ClientSession(client_id=client_id, client=CountingClient(handle, metrics))
    events.record(EventType.SESSION_STARTED, client_id)
    try:
        fn(session)
    except Exception as exc:
        events.record(EventType.SESSION_FINISHED, client_id, ok=False, count=session.seq)
        raise ClientSessionFailure(client_id, repr(exc), count=session.seq) from exc
    finally:
        controller.release_client(handle)

    events.record(EventType.SESSION_FINISHED, client_id, ok=True, count=session.seq)
    return SessionReport(client_id=client_id, count=session.seq, expected=session.expected)


class ClientDriver:
    """Fans sessions out onto an executor and joins them back.

    Args:
        controller: Cluster the sessions talk to.
        n_clients: Number of sessions to spawn (client ids ``0 .. n_clients - 1``).
        fn: Work each session performs.
        metrics: Shared operation counters.
        events: Shared event log.
    """

    def __init__(
        self,
        controller: ClusterController,
        n_clients: int,
        fn: SessionFn,
        metrics: MetricsCollector | None = None,
        events: EventLog | None = None,
    ):
        if n_clients < 1:
            raise ValueError(f"n_clients must be >= 1, got {n_clients}")
        self.controller = controller
        self.n_clients = n_clients
        self.fn = fn
        self.metrics = metrics if metrics is not None else MetricsCollector()
        self.events = events if events is not None else EventLog(enabled=False)

    def launch(self, executor: Executor) -> list[Future]:
        """Submit every session; the i-th future belongs to client i."""
        return [
            executor.submit(run_client, self.controller, cli, self.fn, self.metrics, self.events)
            for cli in range(self.n_clients)
        ]

    def wait(self, futures: list[Future], timeout: float | None = None) -> list[SessionReport]:
        """Block until every session reports, or one fails.

        Returns:
            Reports ordered by client id.

        Raises:
            ClientSessionFailure: the first session observed to fail.
            TimeoutFailure: not every session reported within ``timeout``.
        """
        try:
            for future in as_completed(futures, timeout=timeout):
                future.result()
        except FuturesTimeoutError:
            pending = sum(1 for f in futures if not f.done())
            logger.error("%d of %d client sessions still running", pending, len(futures))
            raise TimeoutFailure("client sessions", timeout) from None
        return [future.result() for future in futures]


def spawn_clients_and_wait(
    controller: ClusterController,
    n_clients: int,
    fn: SessionFn,
    timeout: float | None = None,
    metrics: MetricsCollector | None = None,
    events: EventLog | None = None,
) -> list[SessionReport]:
    """Spawn ``n_clients`` sessions running ``fn`` and wait for all of them.

    Raises:
        ClientSessionFailure: a session failed (its client id is attached).
        TimeoutFailure: sessions did not all finish within ``timeout``.
    """
    driver = ClientDriver(controller, n_clients, fn, metrics=metrics, events=events)
    executor = ThreadPoolExecutor(max_workers=n_clients, thread_name_prefix="kvfault-client")
    try:
        futures = driver.launch(executor)
        return driver.wait(futures, timeout=timeout)
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
