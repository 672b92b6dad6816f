"""
Server model for the in-memory reference cluster.
"""

from dataclasses import dataclass


@dataclass
class ServerState:
    """Dynamic state of one server.

    Attributes:
        index: Server index within the cluster.
        is_up: Whether the server is running.
        restarts: Number of times the server was started after a shutdown.
        applied_index: Highest committed log index this server has applied.
        snapshot_installs: Times this server caught up from a snapshot
            because the log entries it was missing had been compacted away.
    """

    index: int
    is_up: bool = True
    restarts: int = 0
    applied_index: int = 0
    snapshot_installs: int = 0

    def is_up_to_date(self, commit_index: int) -> bool:
        return self.applied_index >= commit_index

    def catch_up(self, commit_index: int, snapshot_index: int) -> bool:
        """Bring the server to ``commit_index``.

        Returns:
            True if the server needed a snapshot (it was behind the
            compacted prefix), False if replaying the log sufficed.
        """
        if self.is_up_to_date(commit_index):
            return False
        needs_snapshot = self.applied_index < snapshot_index
        if needs_snapshot:
            self.snapshot_installs += 1
        self.applied_index = max(self.applied_index, commit_index)
        return needs_snapshot

    def __repr__(self) -> str:
        status = "up" if self.is_up else "down"
        return f"ServerState({self.index}, {status}, applied={self.applied_index})"
