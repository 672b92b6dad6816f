"""
In-memory reference cluster.

A ``SimulatedCluster`` behaves like a correct replicated key-value service
from the outside: an operation completes only while the servers its client
can reach include a connected majority of running servers, lost requests
and replies are retried with exactly-once application, state survives
server restarts, and the log is compacted into a snapshot once it grows
past ``max_state_size``. It is not a consensus implementation; it exists so
the harness can be exercised end to end, and it can be told to misbehave
through ``SimulatedFaults`` to show that the verifier catches it.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
import logging
import threading
import time

import numpy as np

from ..harness.errors import HarnessError
from ..harness.interfaces import ClusterController, ClusterFactory, KVClient
from .network import NetworkConfig, NetworkState
from .server import ServerState
from .store import LogEntry, PersistentStore

logger = logging.getLogger(__name__)

# Pause before a client retries after a lost message.
RETRY_INTERVAL = 0.005

# How often a blocked operation re-checks for a reachable majority.
POLL_INTERVAL = 0.01


class ClusterClosed(HarnessError):
    """An operation was issued on a torn-down cluster or a released client."""


@dataclass(frozen=True)
class SimulatedFaults:
    """Deliberate bugs the cluster can exhibit.

    Attributes:
        duplicate_appends: Apply every Append twice.
        forget_on_restart: Lose all persisted state when a server starts
            while every other server is down.
    """

    duplicate_appends: bool = False
    forget_on_restart: bool = False


class SimClerk(KVClient):
    """Client handle bound to a set of servers of a ``SimulatedCluster``."""

    def __init__(self, cluster: SimulatedCluster, client_id: int, servers: Iterable[int]):
        self.cluster = cluster
        self.client_id = client_id
        self.servers = frozenset(servers)
        self.next_seq = 0
        self.released = False

    def get(self, key: str) -> str:
        return self.cluster.execute(self, "get", key)

    def put(self, key: str, value: str) -> None:
        self.cluster.execute(self, "put", key, value)

    def append(self, key: str, value: str) -> None:
        self.cluster.execute(self, "append", key, value)

    def __repr__(self) -> str:
        return f"SimClerk({self.client_id}, servers={sorted(self.servers)})"


class SimulatedCluster(ClusterController):
    """Thread-safe in-memory cluster implementing ``ClusterController``.

    Args:
        n_servers: Number of servers.
        unreliable: Whether requests and replies are dropped.
        max_state_size: Log size in bytes that triggers compaction
            (non-positive disables snapshots).
        seed: Seed for message loss and delay.
        network_config: Explicit loss and delay settings; overrides
            ``unreliable``.
        faults: Deliberate bugs to exhibit.
    """

    def __init__(
        self,
        n_servers: int,
        unreliable: bool = False,
        max_state_size: int = -1,
        seed: int | None = None,
        network_config: NetworkConfig | None = None,
        faults: SimulatedFaults | None = None,
    ):
        if n_servers < 1:
            raise ValueError(f"n_servers must be >= 1, got {n_servers}")
        self.servers = {i: ServerState(index=i) for i in range(n_servers)}
        self.network = NetworkState()
        if network_config is None:
            network_config = NetworkConfig.unreliable() if unreliable else NetworkConfig.reliable()
        self.network_config = network_config
        self.max_state_size = max_state_size
        self.faults = faults or SimulatedFaults()
        self.store = PersistentStore()
        self.rng = np.random.default_rng(seed)

        self.rpc_count = 0
        self.snapshot_installs = 0
        self._cond = threading.Condition()
        self._closed = False
        self._next_client_id = 0
        self._clients: dict[int, SimClerk] = {}
        self._title: str | None = None
        self._start = time.monotonic()
        self._rpcs_at_start = 0

    @classmethod
    def factory(cls, **kwargs) -> ClusterFactory:
        """Cluster factory passing extra keyword arguments to every cluster built."""

        def build(n_servers: int, unreliable: bool, max_state_size: int) -> SimulatedCluster:
            return cls(n_servers, unreliable, max_state_size, **kwargs)

        return build

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def quorum_size(self) -> int:
        return len(self.servers) // 2 + 1

    def all_servers(self) -> frozenset[int]:
        return frozenset(self.servers)

    def up_servers(self) -> set[int]:
        return {i for i, server in self.servers.items() if server.is_up}

    def serving_group(self, reachable: Iterable[int]) -> set[int] | None:
        """The majority component that a client reaching ``reachable`` can use.

        Returns:
            The connected set of running servers holding a majority and
            containing at least one server in ``reachable``, or None.
        """
        reachable = set(reachable)
        for component in self.network.get_connected_components(self.up_servers()):
            if len(component) >= self.quorum_size() and component & reachable:
                return component
        return None

    @property
    def closed(self) -> bool:
        return self._closed

    def log_size(self) -> int:
        with self._cond:
            return self.store.log_size()

    def snapshot_size(self) -> int:
        with self._cond:
            return self.store.snapshot_size()

    def value_of(self, key: str) -> str:
        """Read ``key`` directly from the store, bypassing any client."""
        with self._cond:
            return self.store.data.get(key, "")

    # -------------------------------------------------------------------------
    # Client operations
    # -------------------------------------------------------------------------

    def _check_open(self, clerk: SimClerk) -> None:
        if self._closed:
            raise ClusterClosed("cluster has been torn down")
        if clerk.released:
            raise ClusterClosed(f"client {clerk.client_id} has been released")

    def _wait_for_majority(self, clerk: SimClerk) -> set[int]:
        while True:
            self._check_open(clerk)
            group = self.serving_group(clerk.servers)
            if group is not None:
                return group
            self._cond.wait(POLL_INTERVAL)

    def _commit(self, group: set[int], entry: LogEntry) -> str:
        result = self.store.apply(entry, duplicate_appends=self.faults.duplicate_appends)
        for index in group:
            if self.servers[index].catch_up(self.store.commit_index, self.store.snapshot_index):
                self.snapshot_installs += 1
                logger.debug("server %d installed snapshot at %d", index, self.store.snapshot_index)
        if self.max_state_size > 0 and self.store.log_size() >= self.max_state_size:
            self.store.compact()
        return result

    def execute(self, clerk: SimClerk, op: str, key: str, value: str = "") -> str:
        """Run one operation for ``clerk``, blocking until it is applied.

        Raises:
            ClusterClosed: the cluster was torn down or the clerk released
                while the operation was pending.
        """
        with self._cond:
            self._check_open(clerk)
            seq = clerk.next_seq
            clerk.next_seq += 1

        while True:
            with self._cond:
                group = self._wait_for_majority(clerk)
                self.rpc_count += 1
                delay = self.network_config.delay_dist.sample(self.rng)
                delivered = False
                result = ""
                if self.rng.random() >= self.network_config.request_loss_rate:
                    entry = LogEntry(self.store.commit_index + 1, clerk.client_id, seq, op, key, value)
                    result = self._commit(group, entry)
                    delivered = self.rng.random() >= self.network_config.reply_loss_rate

            if delay > 0:
                time.sleep(delay)
            if delivered:
                return result
            time.sleep(RETRY_INTERVAL)

    # -------------------------------------------------------------------------
    # Topology
    # -------------------------------------------------------------------------

    def new_client(self, servers: Iterable[int]) -> SimClerk:
        servers = frozenset(servers)
        self._check_indices(servers)
        with self._cond:
            clerk = SimClerk(self, self._next_client_id, servers)
            self._clients[clerk.client_id] = clerk
            self._next_client_id += 1
            return clerk

    def release_client(self, client: KVClient) -> None:
        with self._cond:
            if isinstance(client, SimClerk):
                client.released = True
                self._clients.pop(client.client_id, None)
            self._cond.notify_all()

    def reconnect_client(self, client: KVClient, servers: Iterable[int]) -> None:
        if not isinstance(client, SimClerk):
            raise TypeError(f"Not a client of this cluster: {client!r}")
        servers = frozenset(servers)
        self._check_indices(servers)
        with self._cond:
            client.servers = servers
            self._cond.notify_all()

    def install_partition(self, group_a: Iterable[int], group_b: Iterable[int]) -> None:
        group_a, group_b = frozenset(group_a), frozenset(group_b)
        self._check_indices(group_a | group_b)
        with self._cond:
            self.network.install_partition(group_a, group_b)
            logger.debug("partition %s | %s", sorted(group_a), sorted(group_b))
            self._cond.notify_all()

    def reconnect_all(self) -> None:
        with self._cond:
            self.network.heal()
            self._cond.notify_all()

    def shutdown_server(self, index: int) -> None:
        self._check_indices([index])
        with self._cond:
            self.servers[index].is_up = False
            self._cond.notify_all()

    def start_server(self, index: int) -> None:
        self._check_indices([index])
        with self._cond:
            server = self.servers[index]
            if server.is_up:
                return
            if self.faults.forget_on_restart and not self.up_servers():
                logger.debug("server %d restarted with no peers up; dropping state", index)
                self.store.wipe()
            server.is_up = True
            server.restarts += 1
            self._cond.notify_all()

    def _check_indices(self, indices: Iterable[int]) -> None:
        for index in indices:
            if index not in self.servers:
                raise ValueError(f"No server {index} in a cluster of {len(self.servers)}")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def begin_scenario(self, title: str) -> None:
        with self._cond:
            self._title = title
            self._start = time.monotonic()
            self._rpcs_at_start = self.rpc_count
        logger.info("%s ...", title)

    def end_scenario(self) -> None:
        with self._cond:
            elapsed = time.monotonic() - self._start
            rpcs = self.rpc_count - self._rpcs_at_start
        logger.info("  ... Passed --  %4.1f  %d %5d", elapsed, len(self.servers), rpcs)

    def teardown(self) -> None:
        with self._cond:
            self._closed = True
            for server in self.servers.values():
                server.is_up = False
            self._cond.notify_all()

    def __repr__(self) -> str:
        return (
            f"SimulatedCluster(servers={len(self.servers)}, up={sorted(self.up_servers())}, "
            f"{self.network!r})"
        )
