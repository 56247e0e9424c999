"""Unit tests for the pending permission registry."""

from __future__ import annotations

import pytest

from sled_runtime.acp.permissions import PendingPermissions, parse_request_id
from sled_runtime.acp.types import PermissionRequest, parse_permission_request


def make_request(request_id: int | float) -> PermissionRequest:
    request = parse_permission_request(
        request_id,
        {
            "sessionId": "sess-1",
            "options": [{"kind": "allow_once", "name": "Allow", "optionId": "allow"}],
            "toolCall": {"toolCallId": "tool-1", "title": "Run"},
        },
    )
    assert request is not None
    return request


class TestPendingPermissions:
    """Tests for PendingPermissions."""

    def test_add_and_get(self) -> None:
        """Added requests are found by id."""
        registry = PendingPermissions()

        pending = registry.add(make_request(3))

        assert pending.element_id == "permission-3"
        assert registry.get(3) is pending
        assert 3 in registry
        assert len(registry) == 1

    def test_resolve_once(self) -> None:
        """A request resolves exactly once."""
        registry = PendingPermissions()
        registry.add(make_request(3))

        assert registry.resolve(3) is not None
        assert registry.resolve(3) is None
        assert len(registry) == 0

    def test_drain_in_order(self) -> None:
        """Drain returns everything oldest first and empties the registry."""
        registry = PendingPermissions()
        for request_id in (2, 0, 9):
            registry.add(make_request(request_id))

        drained = registry.drain()

        assert [p.request_id for p in drained] == [2, 0, 9]
        assert registry.drain() == []

    def test_replace_duplicate(self) -> None:
        """A repeated id replaces the earlier entry."""
        registry = PendingPermissions()
        registry.add(make_request(1))
        second = registry.add(make_request(1))

        assert registry.get(1) is second
        assert len(registry) == 1


class TestParseRequestId:
    """Tests for parse_request_id."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(7, 7), (0, 0), (1.5, 1.5), ("7", 7), (" 12 ", 12), ("2.5", 2.5), ("3.0", 3)],
    )
    def test_valid(self, value: object, expected: int | float) -> None:
        """Numbers and numeric strings are accepted."""
        assert parse_request_id(value) == expected

    @pytest.mark.parametrize("value", [True, False, None, "", "abc", [], {}])
    def test_invalid(self, value: object) -> None:
        """Everything else is rejected."""
        assert parse_request_id(value) is None
