"""
Persisted state of the in-memory reference cluster.

One authoritative copy of the key-value data, the per-client duplicate
table, the log of entries applied since the last snapshot, and the snapshot
itself. It survives server shutdowns; only an injected fault erases it.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import json


@dataclass(frozen=True)
class LogEntry:
    """One client operation as it is persisted in the log."""

    index: int
    client_id: int
    seq: int
    op: str
    key: str
    value: str = ""

    def encode(self) -> bytes:
        return json.dumps(asdict(self), separators=(",", ":")).encode("utf-8")


@dataclass
class PersistentStore:
    """Key-value data plus the log and snapshot that persist it.

    Attributes:
        data: Current value of every key.
        last_seq: Highest request sequence applied per client, used to drop
            retried requests that were already applied.
        log: Entries applied since the last snapshot.
        snapshot: Encoded data and duplicate table as of ``snapshot_index``.
        snapshot_index: Log index covered by the snapshot.
        commit_index: Index of the last applied entry.
    """

    data: dict[str, str] = field(default_factory=dict)
    last_seq: dict[int, int] = field(default_factory=dict)
    log: list[bytes] = field(default_factory=list)
    snapshot: bytes = b""
    snapshot_index: int = 0
    commit_index: int = 0

    def is_duplicate(self, client_id: int, seq: int) -> bool:
        return seq <= self.last_seq.get(client_id, -1)

    def apply(self, entry: LogEntry, duplicate_appends: bool = False) -> str:
        """Apply an entry and return the value a Get should observe.

        A retried request (same client, same or older sequence) is logged
        but does not change the data again.
        """
        self.commit_index = entry.index
        self.log.append(entry.encode())

        if entry.op != "get" and not self.is_duplicate(entry.client_id, entry.seq):
            if entry.op == "put":
                self.data[entry.key] = entry.value
            elif entry.op == "append":
                self.data[entry.key] = self.data.get(entry.key, "") + entry.value
                if duplicate_appends:
                    self.data[entry.key] += entry.value
            else:
                raise ValueError(f"Unknown operation {entry.op!r}")
        self.last_seq[entry.client_id] = max(self.last_seq.get(entry.client_id, -1), entry.seq)
        return self.data.get(entry.key, "")

    def log_size(self) -> int:
        return sum(len(e) for e in self.log)

    def snapshot_size(self) -> int:
        return len(self.snapshot)

    def compact(self) -> None:
        """Fold the log into a fresh snapshot."""
        state = {"data": self.data, "last_seq": self.last_seq}
        self.snapshot = json.dumps(state, separators=(",", ":")).encode("utf-8")
        self.snapshot_index = self.commit_index
        self.log.clear()

    def wipe(self) -> None:
        """Forget everything, as if the disks were replaced."""
        self.data.clear()
        self.last_seq.clear()
        self.log.clear()
        self.snapshot = b""
        self.snapshot_index = 0
