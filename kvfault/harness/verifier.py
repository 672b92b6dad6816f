"""
Append-order verification over accumulated string values.

A value built only by appends carries one marker per applied append. Each
marker names the issuing client and that client's sequence number, so the
final string alone tells us whether every acknowledged append landed exactly
once and in the order its client issued it.

Everything here is a pure function: no I/O, no shared state, identical
results on identical input.
"""

from collections.abc import Sequence
from dataclasses import dataclass
import re

from .errors import OrderingViolation, ViolationKind

_CONTENTION_TOKEN_RE = re.compile(r"I(\d+)T(\d+)")


@dataclass(frozen=True)
class Marker:
    """One (client, sequence) append, rendered as ``"x <client> <seq> y"``.

    The leading ``x`` and trailing ``y`` delimit the numbers, so the marker
    for client 1 never matches inside the marker for client 11.
    """

    client_id: int
    seq: int

    def render(self) -> str:
        return f"x {self.client_id} {self.seq} y"

    def __str__(self) -> str:
        return self.render()


def marker(client_id: int, seq: int) -> str:
    """Text of the marker for ``(client_id, seq)``."""
    return Marker(client_id, seq).render()


def next_value(prev: str, val: str) -> str:
    """Predict the effect of ``Append(k, val)`` when the old value is ``prev``."""
    return prev + val


def client_append_violations(
    client_id: int, value: str, count: int
) -> list[OrderingViolation]:
    """Every ordering violation for one client's first ``count`` markers.

    Rules, for each ``j`` in ``[0, count)``:
    - the marker for ``(client_id, j)`` occurs in ``value``;
    - it occurs exactly once (first index equals last index);
    - it occurs after the marker for ``j - 1``.

    A missing marker does not move the ordering reference point, so a single
    lost append is reported once rather than as a cascade.
    """
    violations = []
    last_offset = -1
    for j in range(count):
        wanted = marker(client_id, j)
        offset = value.find(wanted)
        if offset < 0:
            violations.append(
                OrderingViolation(ViolationKind.MISSING, client_id, wanted, value)
            )
            continue
        if value.rfind(wanted) != offset:
            violations.append(
                OrderingViolation(ViolationKind.DUPLICATE, client_id, wanted, value)
            )
        if offset <= last_offset:
            violations.append(
                OrderingViolation(ViolationKind.MISORDERED, client_id, wanted, value)
            )
        last_offset = offset
    return violations


def check_client_appends(client_id: int, value: str, count: int) -> None:
    """Raise on the first ordering violation among a client's markers.

    Checks are made in sequence order and, for each marker, in the order
    missing, duplicate, misordered.

    Raises:
        OrderingViolation: ``value`` breaks the append-order contract.
    """
    violations = client_append_violations(client_id, value, count)
    if violations:
        raise violations[0]


def check_concurrent_appends(value: str, counts: Sequence[int]) -> None:
    """Check every client that appended to one shared key.

    ``counts[i]`` is the number of appends client ``i`` issued. Interleaving
    between clients is unconstrained; only each client's own order matters.

    Raises:
        OrderingViolation: some client's markers break the contract.
    """
    for client_id, count in enumerate(counts):
        check_client_appends(client_id, value, count)


def contention_token(client_id: int, timestamp: int) -> str:
    """Token appended by the lock-contention workload."""
    return f"I{client_id}T{timestamp}"


def parse_contention_tokens(value: str) -> list[tuple[int, int]]:
    """(client, timestamp) pairs of every contention token in ``value``."""
    return [(int(m.group(1)), int(m.group(2))) for m in _CONTENTION_TOKEN_RE.finditer(value)]


def lock_holder(value: str) -> int | None:
    """Client whose token comes first in ``value``, or None if there is none."""
    tokens = parse_contention_tokens(value)
    if not tokens:
        return None
    return tokens[0][0]


def check_contention_tokens(value: str) -> None:
    """No contention token may appear twice in a key's value.

    Tokens embed a per-client timestamp, so a repeat can only come from the
    same append being applied more than once.

    Raises:
        OrderingViolation: a token was applied more than once.
    """
    seen = set()
    for client_id, timestamp in parse_contention_tokens(value):
        if (client_id, timestamp) in seen:
            raise OrderingViolation(
                ViolationKind.DUPLICATE,
                client_id,
                contention_token(client_id, timestamp),
                value,
            )
        seen.add((client_id, timestamp))
