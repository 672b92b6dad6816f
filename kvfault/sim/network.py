"""
Network model for the in-memory reference cluster.

Models partitions between servers and the unreliability of message
delivery between clients and servers.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field

from ..harness.timing import Constant, Distribution, Uniform, milliseconds


@dataclass
class NetworkConfig:
    """Configuration for message loss and delay.

    Attributes:
        request_loss_rate: Probability a client request is dropped before
            it reaches the cluster.
        reply_loss_rate: Probability the reply to an applied request is
            dropped, forcing the client to retry an already-applied request.
        delay_dist: Distribution for the delay (seconds) of each attempt.
    """

    request_loss_rate: float = 0.0
    reply_loss_rate: float = 0.0
    delay_dist: Distribution = field(default_factory=lambda: Constant(0.0))

    def __post_init__(self) -> None:
        for name in ("request_loss_rate", "reply_loss_rate"):
            rate = getattr(self, name)
            if not 0.0 <= rate < 1.0:
                raise ValueError(f"{name} must be in [0, 1), got {rate}")

    @classmethod
    def reliable(cls) -> "NetworkConfig":
        return cls()

    @classmethod
    def unreliable(cls) -> "NetworkConfig":
        """Drops a tenth of requests and of replies, with short random delays."""
        return cls(
            request_loss_rate=0.1,
            reply_loss_rate=0.1,
            delay_dist=Uniform(0.0, milliseconds(5)),
        )


@dataclass
class NetworkState:
    """Dynamic partition state of the network.

    Attributes:
        groups: Current partition groups. Empty means fully connected.
            A server that appears in no group is cut off from everyone.
    """

    groups: list[frozenset[int]] = field(default_factory=list)

    def install_partition(self, group_a: Iterable[int], group_b: Iterable[int]) -> None:
        """Replace the current partition with a two-way split."""
        self.groups = [frozenset(group_a), frozenset(group_b)]

    def heal(self) -> None:
        """Remove every partition."""
        self.groups = []

    def is_partitioned(self, server_a: int, server_b: int) -> bool:
        """Check if two servers are cut off from each other."""
        if server_a == server_b or not self.groups:
            return False
        for group in self.groups:
            if server_a in group:
                return server_b not in group
        return True

    def servers_reachable_from(self, server: int, all_servers: Iterable[int]) -> set[int]:
        """Get all servers transitively reachable from the given server.

        Uses BFS over the servers in ``all_servers``; partitions block
        communication.

        Returns:
            Set of servers reachable from the starting server (includes itself).
        """
        candidates = set(all_servers)
        reachable = {server}
        frontier = [server]

        while frontier:
            current = frontier.pop()
            for other in candidates:
                if other not in reachable and not self.is_partitioned(current, other):
                    reachable.add(other)
                    frontier.append(other)

        return reachable

    def get_connected_components(self, all_servers: Iterable[int]) -> list[set[int]]:
        """Get all connected components of the given servers.

        Servers in the same component can all communicate with each other.
        """
        remaining = set(all_servers)
        components = []

        while remaining:
            start = min(remaining)
            component = self.servers_reachable_from(start, remaining)
            components.append(component)
            remaining -= component

        return components

    def __repr__(self) -> str:
        if not self.groups:
            return "NetworkState(connected)"
        groups = " | ".join(str(sorted(g)) for g in self.groups)
        return f"NetworkState(partitioned: {groups})"
