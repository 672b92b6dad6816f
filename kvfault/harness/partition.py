"""
Randomized network partition injector.

While client sessions run, the injector keeps splitting the servers into two
random groups, waiting an election timeout plus jitter between splits so the
cluster gets a chance to elect a leader on whichever side holds a majority.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
import logging
import threading

import numpy as np

from .events import EventLog, EventType
from .interfaces import ClusterController
from .metrics import MetricsCollector
from .timing import ELECTION_TIMEOUT, PARTITION_JITTER, Distribution, Seconds, jitter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PartitionAssignment:
    """Two disjoint groups of server indices covering every server.

    Either group may be empty; a split that puts every server on one side is
    a legitimate (if uneventful) assignment.

    Attributes:
        group_a: Servers on the first side.
        group_b: Servers on the second side.
    """

    group_a: frozenset[int]
    group_b: frozenset[int]

    def __post_init__(self) -> None:
        # Accept any iterable but store frozensets for hashing and equality
        object.__setattr__(self, "group_a", frozenset(self.group_a))
        object.__setattr__(self, "group_b", frozenset(self.group_b))
        overlap = self.group_a & self.group_b
        if overlap:
            raise ValueError(f"Partition groups overlap on servers {sorted(overlap)}")

    @property
    def servers(self) -> frozenset[int]:
        """Every server covered by the assignment."""
        return self.group_a | self.group_b

    def is_degenerate(self) -> bool:
        """True if one side is empty (no traffic is actually blocked)."""
        return not self.group_a or not self.group_b

    def majority_group(self) -> frozenset[int] | None:
        """The side holding a strict majority of servers, if either does."""
        quorum = len(self.servers) // 2 + 1
        for group in (self.group_a, self.group_b):
            if len(group) >= quorum:
                return group
        return None

    def __repr__(self) -> str:
        return f"PartitionAssignment({sorted(self.group_a)} | {sorted(self.group_b)})"


def random_partition(servers: Iterable[int], rng: np.random.Generator) -> PartitionAssignment:
    """Flip an independent fair coin for every server.

    Group sizes vary from split to split and may be completely unbalanced.
    """
    ordered = sorted(servers)
    sides = rng.integers(0, 2, size=len(ordered))
    group_a = frozenset(s for s, side in zip(ordered, sides) if side == 0)
    group_b = frozenset(s for s, side in zip(ordered, sides) if side == 1)
    return PartitionAssignment(group_a, group_b)


class CancellationToken:
    """One-way stop signal shared between the runner and a background actor."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return True if cancelled meanwhile."""
        return self._event.wait(timeout)

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"


class PartitionInjector:
    """Repeatedly installs random partitions until told to stop.

    The stop token is checked once per iteration, before each new split, so
    stopping takes at most one sleep interval. ``run`` returns exactly once;
    when submitted to an executor, its future is the one-shot completion
    signal. Failures from the cluster controller propagate unchanged.

    Args:
        controller: Cluster whose network is partitioned.
        rng: Random generator for the coin flips and the jitter.
        election_timeout: Base interval between splits.
        jitter_dist: Extra delay added to each interval.
        metrics: Counter for installed partitions.
        events: Event log receiving each installed partition.
    """

    def __init__(
        self,
        controller: ClusterController,
        rng: np.random.Generator,
        election_timeout: Seconds = ELECTION_TIMEOUT,
        jitter_dist: Distribution | None = None,
        metrics: MetricsCollector | None = None,
        events: EventLog | None = None,
    ):
        self.controller = controller
        self.rng = rng
        self.election_timeout = election_timeout
        self.jitter_dist = jitter_dist if jitter_dist is not None else jitter(PARTITION_JITTER)
        self.metrics = metrics if metrics is not None else MetricsCollector()
        self.events = events if events is not None else EventLog(enabled=False)
        self.history: list[PartitionAssignment] = []

    def next_interval(self) -> float:
        """Time to hold the current split before reshuffling."""
        return self.election_timeout + self.jitter_dist.sample(self.rng)

    def step(self) -> PartitionAssignment:
        """Install one fresh random partition."""
        assignment = random_partition(self.controller.all_servers(), self.rng)
        self.controller.install_partition(assignment.group_a, assignment.group_b)
        self.history.append(assignment)
        self.metrics.record_partition()
        majority = assignment.majority_group()
        self.events.record(
            EventType.PARTITION_INSTALLED,
            "network",
            group_a=sorted(assignment.group_a),
            group_b=sorted(assignment.group_b),
            majority=sorted(majority) if majority is not None else None,
        )
        if majority is None:
            logger.debug("installed %r; no side holds a majority", assignment)
        else:
            logger.debug("installed %r; majority %s", assignment, sorted(majority))
        return assignment

    def run(self, stop: CancellationToken) -> int:
        """Reshuffle until ``stop`` is cancelled.

        Returns:
            Number of partitions installed.
        """
        installed = 0
        while not stop.cancelled:
            self.step()
            installed += 1
            stop.wait(self.next_interval())
        logger.debug("partitioner stopped after %d partitions", installed)
        return installed
