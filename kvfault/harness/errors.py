"""
Failure taxonomy for the fault-injection harness.

Correctness failures (``AssertionFailure`` and its subclasses) mean the
system under test broke an invariant. They are never retried; the running
scenario aborts as soon as one is raised. ``ClientSessionFailure`` and
``TimeoutFailure`` describe harness-level breakdowns around them.
"""

from enum import Enum


class HarnessError(Exception):
    """Base class for every failure raised by the harness."""


class AssertionFailure(HarnessError, AssertionError):
    """The system under test violated a correctness invariant."""


class ViolationKind(Enum):
    """Ways a client's markers can be wrong in an accumulated value."""

    MISSING = "missing"  # Acknowledged append never showed up
    DUPLICATE = "duplicate"  # Append applied more than once
    MISORDERED = "misordered"  # Appends from one client out of issue order


class OrderingViolation(AssertionFailure):
    """A marker is missing, duplicated, or out of order in an appended value.

    Attributes:
        kind: Which rule was broken.
        client_id: Client that issued the offending append.
        marker: The marker text that was searched for.
        value: The full value the marker was searched in.
    """

    def __init__(self, kind: ViolationKind, client_id: int, marker: str, value: str):
        self.kind = kind
        self.client_id = client_id
        self.marker = marker
        self.value = value
        if kind is ViolationKind.MISSING:
            message = f"{client_id} missing element {marker!r} in Append result {value!r}"
        elif kind is ViolationKind.DUPLICATE:
            message = f"duplicate element {marker!r} in Append result"
        else:
            message = f"wrong order for element {marker!r} in Append result"
        super().__init__(message)


class ValueMismatch(AssertionFailure):
    """A read returned something other than the expected value."""

    def __init__(self, key: str, expected: str, received: str):
        self.key = key
        self.expected = expected
        self.received = received
        super().__init__(f"Get({key}): expected:\n{expected}\nreceived:\n{received}")


class UnexpectedProgress(AssertionFailure):
    """An operation completed inside a window where it must stay blocked."""


class BoundViolation(AssertionFailure):
    """Log or snapshot size exceeded its configured bound.

    Attributes:
        what: Which size was measured ("log" or "snapshot").
        measured: Size reported by the cluster, in bytes.
        limit: Largest size that would have been accepted, in bytes.
    """

    def __init__(self, what: str, measured: int, limit: int, detail: str = ""):
        self.what = what
        self.measured = measured
        self.limit = limit
        message = detail or f"{what} too large ({measured} > {limit})"
        super().__init__(message)


class ClientSessionFailure(HarnessError):
    """A client session's workload raised instead of finishing.

    The original exception is chained as ``__cause__``. ``count`` is how many
    operations the session had completed when it failed.
    """

    def __init__(self, client_id: int, reason: str = "", count: int = 0):
        self.client_id = client_id
        self.count = count
        suffix = f": {reason}" if reason else ""
        super().__init__(f"client {client_id} failed{suffix}")


class TimeoutFailure(HarnessError):
    """An expected completion signal did not arrive within a bounded wait."""

    def __init__(self, what: str, timeout: float):
        self.what = what
        self.timeout = timeout
        super().__init__(f"{what} did not complete within {timeout:.2f}s")
