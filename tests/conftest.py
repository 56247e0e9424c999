"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from typing import Any

import pytest

from sled_runtime.transport.base import CloseEvent, EndpointEvent, EventEmitterEndpoint


# =============================================================================
# Upstream wire recording
# =============================================================================


class WireRecorder:
    """Collects frames handed to ``send_upstream`` and decodes them."""

    def __init__(self) -> None:
        self.frames: list[str] = []
        self.fail_next: Exception | None = None

    def __call__(self, payload: str) -> None:
        if self.fail_next is not None:
            error, self.fail_next = self.fail_next, None
            raise error
        self.frames.append(payload)

    @property
    def messages(self) -> list[dict[str, Any]]:
        return [json.loads(frame) for frame in self.frames]

    def methods(self) -> list[str | None]:
        return [message.get("method") for message in self.messages]

    def last(self, method: str) -> dict[str, Any]:
        for message in reversed(self.messages):
            if message.get("method") == method:
                return message
        raise AssertionError(f"No {method} frame sent (sent: {self.methods()})")


@pytest.fixture
def wire() -> WireRecorder:
    """Recorder standing in for the agent's stdin."""
    return WireRecorder()


def make_id_factory(ids: Iterable[str] | None = None) -> Callable[[], str]:
    """Deterministic id generator: given ids first, then id-1, id-2, ..."""
    queue = list(ids or [])
    counter = 0

    def create_id() -> str:
        nonlocal counter
        if queue:
            return queue.pop(0)
        counter += 1
        return f"id-{counter}"

    return create_id


@pytest.fixture
def create_id() -> Callable[[], str]:
    return make_id_factory()


# =============================================================================
# In-memory bridge endpoint
# =============================================================================


class FakeEndpoint(EventEmitterEndpoint):
    """Socket-like endpoint recording what the bridge does to it."""

    def __init__(self, name: str = "endpoint") -> None:
        super().__init__()
        self.name = name
        self.sent: list[Any] = []
        self.closes: list[tuple[int | None, str | None]] = []
        self.fail_send: Exception | None = None
        self.fail_close: Exception | None = None

    def send(self, data: Any) -> None:
        if self.fail_send is not None:
            raise self.fail_send
        self.sent.append(data)

    def close(self, code: int | None = None, reason: str | None = None) -> None:
        self.closes.append((code, reason))
        if self.fail_close is not None:
            raise self.fail_close

    def listener_count(self, event: EndpointEvent) -> int:
        return len(self._listeners[event])

    # Peer-side actions
    def receive(self, data: Any) -> None:
        self.emit(EndpointEvent.MESSAGE, data)

    def peer_close(self, code: int | None = None, reason: str | None = None) -> None:
        self.emit(EndpointEvent.CLOSE, CloseEvent(code=code, reason=reason))

    def peer_error(self, error: Exception) -> None:
        self.emit(EndpointEvent.ERROR, error)


@pytest.fixture
def endpoints() -> tuple[FakeEndpoint, FakeEndpoint]:
    return FakeEndpoint("local"), FakeEndpoint("remote")


@pytest.fixture
def id_factory() -> Callable[..., Callable[[], str]]:
    """Build deterministic id generators with chosen leading ids."""
    return make_id_factory
