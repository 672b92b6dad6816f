"""
Tests for append-order verification.

Covers marker formatting, the per-client missing / duplicate / misordered
rules, concurrent appends to one key, and lock-contention tokens.
"""

import pytest

from kvfault.harness import (
    AssertionFailure,
    Marker,
    OrderingViolation,
    ViolationKind,
    check_client_appends,
    check_concurrent_appends,
    check_contention_tokens,
    client_append_violations,
    contention_token,
    lock_holder,
    marker,
    next_value,
)


# =============================================================================
# Marker Tests
# =============================================================================


class TestMarkers:
    def test_marker_format(self):
        assert marker(0, 0) == "x 0 0 y"
        assert marker(3, 12) == "x 3 12 y"

    def test_marker_dataclass_renders_same_text(self):
        assert str(Marker(7, 2)) == marker(7, 2)

    def test_delimiters_prevent_prefix_matches(self):
        """Client 1's marker must not be found inside client 11's."""
        value = marker(11, 0)
        assert marker(1, 0) not in value
        assert marker(1, 1) not in value

    def test_next_value_concatenates(self):
        assert next_value("", "a") == "a"
        assert next_value("x 0 0 y", "x 0 1 y") == "x 0 0 yx 0 1 y"


# =============================================================================
# Single Client Tests
# =============================================================================


class TestCheckClientAppends:
    def test_two_appends_in_order_pass(self):
        check_client_appends(0, "x 0 0 yx 0 1 y", 2)

    def test_zero_count_accepts_anything(self):
        check_client_appends(0, "", 0)
        check_client_appends(0, "junk", 0)

    def test_extra_markers_beyond_count_are_ignored(self):
        check_client_appends(0, marker(0, 0) + marker(0, 1), 1)

    def test_missing_marker(self):
        with pytest.raises(OrderingViolation) as excinfo:
            check_client_appends(0, marker(0, 0), 2)

        assert excinfo.value.kind is ViolationKind.MISSING
        assert excinfo.value.marker == marker(0, 1)
        assert excinfo.value.client_id == 0

    def test_missing_first_marker_in_empty_value(self):
        with pytest.raises(OrderingViolation) as excinfo:
            check_client_appends(4, "", 1)
        assert excinfo.value.kind is ViolationKind.MISSING
        assert "4 missing element" in str(excinfo.value)

    def test_duplicate_marker(self):
        value = marker(0, 0) + marker(0, 1) + marker(0, 1)
        with pytest.raises(OrderingViolation) as excinfo:
            check_client_appends(0, value, 2)

        assert excinfo.value.kind is ViolationKind.DUPLICATE
        assert excinfo.value.marker == marker(0, 1)
        assert "duplicate element" in str(excinfo.value)

    def test_misordered_markers(self):
        value = marker(0, 1) + marker(0, 0)
        with pytest.raises(OrderingViolation) as excinfo:
            check_client_appends(0, value, 2)

        assert excinfo.value.kind is ViolationKind.MISORDERED
        assert excinfo.value.marker == marker(0, 1)
        assert "wrong order" in str(excinfo.value)

    def test_violation_is_assertion_failure(self):
        with pytest.raises(AssertionFailure):
            check_client_appends(0, "", 1)
        with pytest.raises(AssertionError):
            check_client_appends(0, "", 1)

    def test_other_clients_markers_interleaved(self):
        value = marker(0, 0) + marker(1, 0) + marker(0, 1) + marker(1, 1)
        check_client_appends(0, value, 2)
        check_client_appends(1, value, 2)


class TestClientAppendViolations:
    def test_clean_value_has_no_violations(self):
        assert client_append_violations(2, marker(2, 0) + marker(2, 1), 2) == []

    def test_single_loss_reported_once(self):
        """A lost append does not make every later marker look misordered."""
        value = marker(0, 0) + marker(0, 2) + marker(0, 3)
        violations = client_append_violations(0, value, 4)

        assert [v.kind for v in violations] == [ViolationKind.MISSING]
        assert violations[0].marker == marker(0, 1)

    def test_reports_every_kind(self):
        value = marker(0, 0) + marker(0, 0) + marker(0, 3) + marker(0, 2)
        kinds = [v.kind for v in client_append_violations(0, value, 4)]

        assert kinds == [
            ViolationKind.DUPLICATE,
            ViolationKind.MISSING,
            ViolationKind.MISORDERED,
        ]


# =============================================================================
# Shared Key Tests
# =============================================================================


class TestCheckConcurrentAppends:
    def test_arbitrary_interleaving_is_accepted(self):
        value = "".join(
            [marker(1, 0), marker(0, 0), marker(2, 0), marker(0, 1), marker(1, 1), marker(2, 1)]
        )
        check_concurrent_appends(value, [2, 2, 2])

    def test_lost_append_from_one_client(self):
        value = marker(0, 0) + marker(1, 0)
        with pytest.raises(OrderingViolation) as excinfo:
            check_concurrent_appends(value, [1, 2])
        assert excinfo.value.client_id == 1
        assert excinfo.value.kind is ViolationKind.MISSING

    def test_clients_with_no_appends(self):
        check_concurrent_appends(marker(1, 0), [0, 1])


# =============================================================================
# Repeatability Tests
# =============================================================================


CLEAN_VALUE = marker(0, 0) + marker(1, 0) + marker(0, 1) + marker(1, 1)
BROKEN_VALUE = marker(0, 1) + marker(0, 0) + marker(0, 0) + marker(1, 0)


def _raised(check, *args):
    """(kind, marker) of the violation ``check`` raises, or None if it passes."""
    try:
        check(*args)
    except OrderingViolation as exc:
        return exc.kind, exc.marker
    return None


class TestRepeatedChecks:
    """Checking the same value twice gives the same verdict and leaves it intact."""

    @pytest.mark.parametrize("value", [CLEAN_VALUE, BROKEN_VALUE])
    def test_violation_lists_identical(self, value):
        before = str(value)

        first = [(v.kind, v.marker) for v in client_append_violations(0, value, 2)]
        second = [(v.kind, v.marker) for v in client_append_violations(0, value, 2)]

        assert first == second
        assert value == before

    def test_broken_value_reports_same_violations_each_time(self):
        runs = [
            [(v.kind, v.marker) for v in client_append_violations(0, BROKEN_VALUE, 3)]
            for _ in range(3)
        ]

        assert runs[0] == [
            (ViolationKind.DUPLICATE, marker(0, 0)),
            (ViolationKind.MISORDERED, marker(0, 1)),
            (ViolationKind.MISSING, marker(0, 2)),
        ]
        assert runs[0] == runs[1] == runs[2]

    @pytest.mark.parametrize("value", [CLEAN_VALUE, BROKEN_VALUE])
    def test_check_client_appends_repeatable(self, value):
        before = str(value)
        assert _raised(check_client_appends, 0, value, 2) == _raised(
            check_client_appends, 0, value, 2
        )
        assert value == before

    def test_check_concurrent_appends_repeatable(self):
        assert _raised(check_concurrent_appends, CLEAN_VALUE, [2, 2]) is None
        assert _raised(check_concurrent_appends, CLEAN_VALUE, [2, 2]) is None

        first = _raised(check_concurrent_appends, BROKEN_VALUE, [2, 1])
        second = _raised(check_concurrent_appends, BROKEN_VALUE, [2, 1])
        assert first == second == (ViolationKind.DUPLICATE, marker(0, 0))


# =============================================================================
# Lock Contention Tests
# =============================================================================


class TestContentionTokens:
    def test_token_format(self):
        assert contention_token(3, 123456) == "I3T123456"

    def test_lock_holder_is_first_token(self):
        value = contention_token(2, 10) + contention_token(0, 5)
        assert lock_holder(value) == 2

    def test_lock_holder_of_empty_value(self):
        assert lock_holder("") is None

    def test_distinct_tokens_pass(self):
        value = contention_token(0, 1) + contention_token(1, 1) + contention_token(0, 2)
        check_contention_tokens(value)

    def test_repeated_token_is_duplicate(self):
        value = contention_token(0, 1) + contention_token(1, 7) + contention_token(0, 1)
        with pytest.raises(OrderingViolation) as excinfo:
            check_contention_tokens(value)
        assert excinfo.value.kind is ViolationKind.DUPLICATE
        assert excinfo.value.marker == "I0T1"
