"""
Interfaces the harness drives: the key-value client and the cluster controller.

The harness never looks inside the replicated store. It only issues client
operations and topology changes through these two abstractions, and judges
correctness from the values it reads back. Any cluster that provides
at-least-once client semantics and a linearizable per-key history once an
operation is acknowledged can be plugged in.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Callable


class KVClient(ABC):
    """Handle used by one session (or the control client) to talk to the store.

    Every operation is synchronous: it returns only once the cluster has
    applied it, retrying transparently across partitions and lost messages.
    A handle is never shared between sessions.
    """

    @abstractmethod
    def get(self, key: str) -> str:
        """Return the current value for ``key`` ("" if never written)."""

    @abstractmethod
    def put(self, key: str, value: str) -> None:
        """Overwrite the value for ``key``."""

    @abstractmethod
    def append(self, key: str, value: str) -> None:
        """Concatenate ``value`` to the current value for ``key``."""


class ClusterController(ABC):
    """Owner of the servers, the network between them, and client handles.

    Topology is global state. The harness mutates it only from the scenario
    runner and the partition injector, and never from both at once.
    """

    @abstractmethod
    def all_servers(self) -> frozenset[int]:
        """Indices of every server in the cluster."""

    @abstractmethod
    def new_client(self, servers: Iterable[int]) -> KVClient:
        """Create a client handle that can only reach ``servers``."""

    @abstractmethod
    def release_client(self, client: KVClient) -> None:
        """Dispose of a handle created by ``new_client``."""

    @abstractmethod
    def install_partition(self, group_a: Iterable[int], group_b: Iterable[int]) -> None:
        """Split the network so traffic only flows inside each group."""

    @abstractmethod
    def reconnect_all(self) -> None:
        """Remove every partition; all servers can talk to each other again."""

    @abstractmethod
    def reconnect_client(self, client: KVClient, servers: Iterable[int]) -> None:
        """Rebind an existing handle so it can reach ``servers``."""

    @abstractmethod
    def shutdown_server(self, index: int) -> None:
        """Stop server ``index``; its persisted state survives."""

    @abstractmethod
    def start_server(self, index: int) -> None:
        """(Re)start server ``index`` from its persisted state."""

    @abstractmethod
    def log_size(self) -> int:
        """Largest persisted log size across servers, in bytes."""

    @abstractmethod
    def snapshot_size(self) -> int:
        """Largest persisted snapshot size across servers, in bytes."""

    def begin_scenario(self, title: str) -> None:
        """Mark the start of a scenario (used for reporting only)."""

    def end_scenario(self) -> None:
        """Mark the successful end of a scenario (used for reporting only)."""

    @abstractmethod
    def teardown(self) -> None:
        """Stop every server and fail any operation still blocked."""


# Builds a cluster from (server_count, unreliable, max_state_size).
ClusterFactory = Callable[[int, bool, int], ClusterController]
