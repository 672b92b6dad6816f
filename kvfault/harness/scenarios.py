"""
Scenarios with their own choreography, outside the generic phase machine.

Each function builds a cluster, drives it through a fixed script of
partitions and client operations, and raises on the first broken
expectation. All of them tear the cluster down on the way out.
"""

from __future__ import annotations

from contextlib import contextmanager
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from collections.abc import Iterator
import logging
import time

from .errors import TimeoutFailure, UnexpectedProgress
from .interfaces import ClusterController, ClusterFactory, KVClient
from .metrics import CountingClient, MetricsCollector
from .scenario import ScenarioPhase, ScenarioResult, check, check_state_bounds
from .timing import ELECTION_TIMEOUT, Seconds, seconds
from .verifier import check_concurrent_appends
from .workload import SharedKeyAppendWorkload, spawn_clients_and_wait

logger = logging.getLogger(__name__)

# How long an operation in a minority must stay blocked.
MINORITY_WINDOW = seconds(1.0)

# How long a blocked operation may take to finish once the partition heals.
HEAL_WINDOW = seconds(3.0)


class _ScenarioContext:
    """Cluster, counters and handles owned by one standalone scenario."""

    def __init__(self, cluster: ClusterController, title: str):
        self.cluster = cluster
        self.title = title
        self.metrics = MetricsCollector()
        self.final_values: dict[str, str] = {}
        self._handles: list[KVClient] = []
        self._start = time.monotonic()

    def client(self, servers) -> tuple[KVClient, KVClient]:
        """New (raw handle, counting wrapper) pair bound to ``servers``."""
        handle = self.cluster.new_client(servers)
        self._handles.append(handle)
        return handle, CountingClient(handle, self.metrics)

    def result(self) -> ScenarioResult:
        return ScenarioResult(
            title=self.title,
            phase=ScenarioPhase.DONE,
            elapsed=Seconds(time.monotonic() - self._start),
            final_values=dict(self.final_values),
            metrics=self.metrics.snapshot(),
        )

    def release_all(self) -> None:
        for handle in self._handles:
            self.cluster.release_client(handle)
        self._handles.clear()


@contextmanager
def _scenario(
    cluster_factory: ClusterFactory,
    n_servers: int,
    unreliable: bool,
    max_state_size: int,
    title: str,
) -> Iterator[_ScenarioContext]:
    cluster = cluster_factory(n_servers, unreliable, max_state_size)
    ctx = _ScenarioContext(cluster, title)
    try:
        cluster.begin_scenario(title)
        yield ctx
        cluster.end_scenario()
    finally:
        ctx.release_all()
        cluster.teardown()


def _await(future: Future, what: str, timeout: float) -> None:
    try:
        future.result(timeout=timeout)
    except FuturesTimeoutError:
        raise TimeoutFailure(what, timeout) from None


def unreliable_one_key(
    cluster_factory: ClusterFactory,
    n_clients: int = 5,
    upto: int = 10,
) -> ScenarioResult:
    """Concurrent appends to one key over an unreliable network."""
    title = "Test: concurrent append to same key, unreliable (3A)"
    with _scenario(cluster_factory, 3, True, -1, title) as ctx:
        _, ck = ctx.client(ctx.cluster.all_servers())
        ck.put("k", "")

        spawn_clients_and_wait(
            ctx.cluster,
            n_clients,
            SharedKeyAppendWorkload("k", upto),
            metrics=ctx.metrics,
        )

        counts = [upto] * n_clients
        value = ck.get("k")
        ctx.final_values["k"] = value
        check_concurrent_appends(value, counts)
    return ctx.result()


def one_partition(
    cluster_factory: ClusterFactory,
    election_timeout: float = ELECTION_TIMEOUT,
    minority_window: float = MINORITY_WINDOW,
    heal_window: float = HEAL_WINDOW,
) -> ScenarioResult:
    """Progress in the majority, none in the minority, completion after heal.

    Servers are split into a majority and a minority. Writes through a
    handle bound to the majority must succeed; a Put and a Get through
    handles bound only to the minority must stay blocked for
    ``minority_window``, then finish within ``heal_window`` of the network
    healing.
    """
    title = "Test: one partition, minority blocks until heal (3A)"
    n_servers = 5
    with _scenario(cluster_factory, n_servers, False, -1, title) as ctx:
        cluster = ctx.cluster
        _, ck = ctx.client(cluster.all_servers())
        ck.put("1", "13")

        logger.info("Test: progress in majority (3A)")
        p2 = frozenset(range(n_servers // 2))
        p1 = cluster.all_servers() - p2
        cluster.install_partition(p1, p2)

        _, ckp1 = ctx.client(p1)
        ckp2a_handle, ckp2a = ctx.client(p2)
        ckp2b_handle, ckp2b = ctx.client(p2)

        ckp1.put("1", "14")
        check(ckp1, "1", "14")

        logger.info("Test: no progress in minority (3A)")
        # Neither worker can be cancelled once blocked; they finish after heal.
        executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="kvfault-minority")
        try:
            done0 = executor.submit(ckp2a.put, "1", "15")
            done1 = executor.submit(ckp2b.get, "1")  # different clerk in p2

            time.sleep(minority_window)
            if done0.done():
                raise UnexpectedProgress("Put in minority completed")
            if done1.done():
                raise UnexpectedProgress("Get in minority completed")

            check(ckp1, "1", "14")
            ckp1.put("1", "16")
            check(ckp1, "1", "16")

            logger.info("Test: completion after heal (3A)")
            cluster.reconnect_all()
            cluster.reconnect_client(ckp2a_handle, cluster.all_servers())
            cluster.reconnect_client(ckp2b_handle, cluster.all_servers())

            time.sleep(election_timeout)

            _await(done0, "Put after heal", heal_window)
            _await(done1, "Get after heal", heal_window)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        check(ck, "1", "15")
        ctx.final_values["1"] = "15"
    return ctx.result()


def snapshot_rpc(
    cluster_factory: ClusterFactory,
    election_timeout: float = ELECTION_TIMEOUT,
    max_state_size: int = 1000,
) -> ScenarioResult:
    """A lagging server must catch up through a snapshot.

    Also checks that the majority discards committed log entries even if
    the minority doesn't respond.
    """
    title = "Test: InstallSnapshot RPC (3B)"
    with _scenario(cluster_factory, 3, False, max_state_size, title) as ctx:
        cluster = ctx.cluster
        _, ck = ctx.client(cluster.all_servers())

        ck.put("a", "A")
        check(ck, "a", "A")

        # a bunch of puts into the majority partition.
        cluster.install_partition([0, 1], [2])
        _, ck1 = ctx.client([0, 1])
        for i in range(50):
            ck1.put(str(i), str(i))
        time.sleep(election_timeout)
        ck1.put("b", "B")

        # check that the majority partition has thrown away
        # most of its log entries.
        check_state_bounds(cluster, max_state_size)

        # now make group that requires participation of
        # lagging server, so that it has to catch up.
        cluster.install_partition([0, 2], [1])
        _, ck2 = ctx.client([0, 2])
        ck2.put("c", "C")
        ck2.put("d", "D")
        check(ck2, "a", "A")
        check(ck2, "b", "B")
        check(ck2, "1", "1")
        check(ck2, "49", "49")

        # now everybody
        cluster.install_partition([0, 1, 2], [])

        ck.put("e", "E")
        check(ck, "c", "C")
        check(ck, "e", "E")
        check(ck, "1", "1")
        ctx.final_values.update({"a": "A", "b": "B", "c": "C", "d": "D", "e": "E"})
    return ctx.result()


def snapshot_size(
    cluster_factory: ClusterFactory,
    max_state_size: int = 1000,
    max_snapshot_size: int = 500,
    rounds: int = 200,
) -> ScenarioResult:
    """Snapshots stay small when the same key is overwritten repeatedly.

    500 bytes is a generous bound for the operations done here.
    """
    title = "Test: snapshot size is reasonable (3B)"
    with _scenario(cluster_factory, 3, False, max_state_size, title) as ctx:
        _, ck = ctx.client(ctx.cluster.all_servers())

        for _ in range(rounds):
            ck.put("x", "0")
            check(ck, "x", "0")
            ck.put("x", "1")
            check(ck, "x", "1")

        # check that servers have thrown away most of their log entries
        # and that the snapshots are not unreasonably large
        check_state_bounds(ctx.cluster, max_state_size, max_snapshot_size)
        ctx.final_values["x"] = "1"
    return ctx.result()
