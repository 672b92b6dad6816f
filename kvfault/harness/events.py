"""
Event log for harness runs.

Records what the harness did to the cluster and when: phase changes,
session starts and finishes, partitions, server restarts and final reads.
The log is append-only and safe to write from concurrent sessions and the
partition injector.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
import threading
import time

from .timing import Seconds


class EventType(Enum):
    """Types of events that can occur during a scenario."""

    # Runner events
    PHASE_ENTERED = "phase_entered"  # Scenario runner changed phase

    # Session events
    SESSION_STARTED = "session_started"  # Client session obtained its handle
    SESSION_FINISHED = "session_finished"  # Client session reported completion

    # Topology events
    PARTITION_INSTALLED = "partition_installed"  # Servers split into two groups
    NETWORK_HEALED = "network_healed"  # Every server reconnected
    SERVER_SHUTDOWN = "server_shutdown"  # Server stopped
    SERVER_STARTED = "server_started"  # Server restarted from persisted state

    # Verification events
    VALUE_READ = "value_read"  # Control client read a final value


@dataclass(order=True)
class Event:
    """Something the harness did, stamped with seconds since the log began.

    Events are ordered by time.

    Attributes:
        time: Seconds since the owning log was created.
        event_type: Type of event (not used for ordering).
        target: Identifier of what the event concerns (phase name, client id,
            server index, or key).
        metadata: Additional event-specific data (not used for ordering).

    Metadata conventions:
        - SESSION_FINISHED: {"ok": bool, "count": int}
        - PARTITION_INSTALLED: {"group_a": list[int], "group_b": list[int],
          "majority": list[int] | None}
        - VALUE_READ: {"length": int}
    """

    time: Seconds
    event_type: EventType = field(compare=False)
    target: str = field(compare=False)
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    def __repr__(self) -> str:
        return f"Event({self.time:.3f}s, {self.event_type.value}, {self.target})"


class EventLog:
    """Thread-safe, append-only record of events.

    A disabled log accepts records and drops them, so callers never need to
    check whether logging was requested.
    """

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self._events: list[Event] = []
        self._lock = threading.Lock()
        self._start = time.monotonic()

    def record(self, event_type: EventType, target: Any, **metadata: Any) -> None:
        """Append an event stamped with the current elapsed time."""
        if not self.enabled:
            return
        event = Event(
            time=Seconds(time.monotonic() - self._start),
            event_type=event_type,
            target=str(target),
            metadata=metadata,
        )
        with self._lock:
            self._events.append(event)

    def events(self) -> list[Event]:
        """Copy of all recorded events in time order."""
        with self._lock:
            return sorted(self._events)

    def of_type(self, event_type: EventType) -> list[Event]:
        """Recorded events of a single type, in time order."""
        return [e for e in self.events() if e.event_type == event_type]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def __repr__(self) -> str:
        return f"EventLog({len(self)} events)"
