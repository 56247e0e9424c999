"""Unit tests for the duplex bridge.

Tests message forwarding, transforms, close mirroring and single teardown
using in-memory endpoints.
"""

from __future__ import annotations

from typing import Any

import pytest

from sled_runtime.transport.base import CloseEvent, EndpointEvent
from sled_runtime.transport.bridge import (
    FORWARD_FAILURE_REASON,
    PEER_CLOSED_REASON,
    PEER_ERROR_REASON,
    TRANSFORM_FAILURE_REASON,
    DuplexBridge,
    bridge_endpoints,
)

# =============================================================================
# Forwarding Tests
# =============================================================================


class TestForwarding:
    """Tests for message relay."""

    @pytest.mark.asyncio
    async def test_both_directions(self, endpoints) -> None:
        """Messages flow both ways untouched."""
        local, remote = endpoints
        bridge_endpoints(local, remote)

        local.receive("up")
        remote.receive(b"down")

        assert remote.sent == ["up"]
        assert local.sent == [b"down"]

    @pytest.mark.asyncio
    async def test_transforms(self, endpoints) -> None:
        """Each direction has its own transform."""
        local, remote = endpoints
        bridge_endpoints(
            local,
            remote,
            transform_local_to_remote=str.upper,
            transform_remote_to_local=lambda data: f"<{data}>",
        )

        local.receive("hello")
        remote.receive("world")

        assert remote.sent == ["HELLO"]
        assert local.sent == ["<world>"]

    @pytest.mark.asyncio
    async def test_transform_drop(self, endpoints) -> None:
        """A transform returning None drops the message."""
        local, remote = endpoints
        bridge_endpoints(local, remote, transform_local_to_remote=lambda data: None)

        local.receive("ping")

        assert remote.sent == []
        assert local.closes == []

    @pytest.mark.asyncio
    async def test_transform_fan_out(self, endpoints) -> None:
        """A transform returning a list sends each item in order."""
        local, remote = endpoints
        bridge_endpoints(local, remote, transform_remote_to_local=lambda data: [data, data * 2])

        remote.receive("a")

        assert local.sent == ["a", "aa"]


# =============================================================================
# Close Tests
# =============================================================================


class TestClose:
    """Tests for close mirroring."""

    @pytest.mark.asyncio
    async def test_local_close_mirrored(self, endpoints) -> None:
        """A local close is mirrored to the remote with the same code and reason."""
        local, remote = endpoints
        done = bridge_endpoints(local, remote)

        local.peer_close(4001, "user_left")

        assert remote.closes == [(4001, "user_left")]
        assert local.closes == []
        assert done.done()

    @pytest.mark.asyncio
    async def test_remote_close_mirrored(self, endpoints) -> None:
        """A remote close is mirrored to the local side."""
        local, remote = endpoints
        done = bridge_endpoints(local, remote)

        remote.peer_close(1001, "going_away")

        assert local.closes == [(1001, "going_away")]
        assert remote.closes == []
        assert done.done()

    @pytest.mark.asyncio
    async def test_close_defaults(self, endpoints) -> None:
        """A close without code or reason uses the defaults."""
        local, remote = endpoints
        bridge_endpoints(local, remote)

        local.peer_close()

        assert remote.closes == [(1000, PEER_CLOSED_REASON)]

    @pytest.mark.asyncio
    async def test_close_event_not_dataclass(self, endpoints) -> None:
        """Close events are read by attribute, unknown shapes get defaults."""
        local, remote = endpoints
        bridge_endpoints(local, remote)

        local.emit(EndpointEvent.CLOSE, object())

        assert remote.closes == [(1000, PEER_CLOSED_REASON)]

    @pytest.mark.asyncio
    async def test_symmetry(self, endpoints) -> None:
        """Closing either side produces the mirrored result."""
        endpoint_type = type(endpoints[0])
        results: list[tuple[Any, Any]] = []
        for closing_side in ("local", "remote"):
            local, remote = endpoint_type("local"), endpoint_type("remote")
            bridge_endpoints(local, remote)
            closer, other = (local, remote) if closing_side == "local" else (remote, local)

            closer.peer_close(4000, "bye")

            results.append((closer.closes, other.closes))

        assert results[0] == results[1] == ([], [(4000, "bye")])

    @pytest.mark.asyncio
    async def test_messages_after_close_ignored(self, endpoints) -> None:
        """Nothing is forwarded after teardown."""
        local, remote = endpoints
        bridge_endpoints(local, remote)

        remote.peer_close()
        local.receive("late")

        assert remote.sent == []


# =============================================================================
# Failure Tests
# =============================================================================


class TestFailures:
    """Tests for error teardown."""

    @pytest.mark.asyncio
    async def test_peer_error(self, endpoints) -> None:
        """An endpoint error closes both sides with 1011."""
        local, remote = endpoints
        done = bridge_endpoints(local, remote)

        remote.peer_error(ConnectionResetError("reset"))

        assert local.closes == [(1011, PEER_ERROR_REASON)]
        assert remote.closes == [(1011, PEER_ERROR_REASON)]
        assert done.done()

    @pytest.mark.asyncio
    async def test_forward_failure(self, endpoints) -> None:
        """A failed send closes both sides."""
        local, remote = endpoints
        remote.fail_send = ConnectionError("broken")
        done = bridge_endpoints(local, remote)

        local.receive("data")

        assert local.closes == [(1011, FORWARD_FAILURE_REASON)]
        assert remote.closes == [(1011, FORWARD_FAILURE_REASON)]
        assert done.done()

    @pytest.mark.asyncio
    async def test_forward_failure_stops_fan_out(self, endpoints) -> None:
        """The rest of a fanned-out batch is not sent after a failure."""
        local, remote = endpoints
        bridge_endpoints(local, remote, transform_remote_to_local=lambda data: [1, 2, 3])
        local.fail_send = ConnectionError("broken")

        remote.receive("x")

        assert local.sent == []
        assert len(remote.closes) == 1

    @pytest.mark.asyncio
    async def test_transform_failure(self, endpoints) -> None:
        """A raising transform closes both sides."""
        local, remote = endpoints

        def explode(data: Any) -> Any:
            raise ValueError("bad frame")

        done = bridge_endpoints(local, remote, transform_local_to_remote=explode)

        local.receive("data")

        assert local.closes == [(1011, TRANSFORM_FAILURE_REASON)]
        assert remote.closes == [(1011, TRANSFORM_FAILURE_REASON)]
        assert done.done()

    @pytest.mark.asyncio
    async def test_close_failure_contained(self, endpoints) -> None:
        """An endpoint that fails to close does not stop teardown."""
        local, remote = endpoints
        local.fail_close = RuntimeError("already gone")
        done = bridge_endpoints(local, remote)

        remote.peer_error(RuntimeError("boom"))

        assert remote.closes == [(1011, PEER_ERROR_REASON)]
        assert done.done()


# =============================================================================
# Teardown Tests
# =============================================================================


class TestTeardown:
    """Tests for single resolution and listener cleanup."""

    @pytest.mark.asyncio
    async def test_listeners_removed(self, endpoints) -> None:
        """Teardown detaches every bridge listener."""
        local, remote = endpoints
        bridge = DuplexBridge(local, remote)
        for event in EndpointEvent:
            assert local.listener_count(event) == 1
            assert remote.listener_count(event) == 1

        local.peer_close()

        assert bridge.finished
        for event in EndpointEvent:
            assert local.listener_count(event) == 0
            assert remote.listener_count(event) == 0

    @pytest.mark.asyncio
    async def test_resolves_once(self, endpoints) -> None:
        """Later events after teardown change nothing."""
        local, remote = endpoints
        bridge = DuplexBridge(local, remote)

        local.peer_close(1000, "done")
        remote.peer_error(RuntimeError("late"))
        remote.peer_close(1000, "late")

        assert remote.closes == [(1000, "done")]
        assert local.closes == []
        await bridge.done
        assert bridge.done.result() is None

    @pytest.mark.asyncio
    async def test_close_event_dataclass(self, endpoints) -> None:
        """CloseEvent carries code and reason."""
        local, remote = endpoints
        bridge_endpoints(local, remote)

        remote.emit(EndpointEvent.CLOSE, CloseEvent(code=4400, reason="bad_request"))

        assert local.closes == [(4400, "bad_request")]
