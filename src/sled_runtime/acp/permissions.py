"""Registry of permission requests awaiting a user decision."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .types import PermissionRequest

logger = logging.getLogger(__name__)

RequestId = int | float


@dataclass
class PendingPermission:
    """A permission request shown to the user and not yet answered."""

    request: PermissionRequest
    element_id: str

    @property
    def request_id(self) -> RequestId:
        return self.request.request_id


def parse_request_id(value: object) -> RequestId | None:
    """Read a peer request id echoed back by the browser.

    Browsers send the id back as a string (it travels through DOM attributes)
    while the agent used a number; ``"7"`` and ``7`` both map to ``7``.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        number = float(value)
    except ValueError:
        return None
    return int(number) if number.is_integer() else number


class PendingPermissions:
    """Tracks outstanding ``session/request_permission`` requests by request id.

    Each request is resolved exactly once: ``resolve`` and ``drain`` both
    remove what they return.
    """

    def __init__(self) -> None:
        self._pending: dict[RequestId, PendingPermission] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def add(self, request: PermissionRequest) -> PendingPermission:
        if request.request_id in self._pending:
            logger.warning(f"Replacing pending permission request {request.request_id}")
        pending = PendingPermission(request=request, element_id=f"permission-{request.request_id}")
        self._pending[request.request_id] = pending
        return pending

    def get(self, request_id: RequestId) -> PendingPermission | None:
        return self._pending.get(request_id)

    def resolve(self, request_id: RequestId) -> PendingPermission | None:
        """Remove and return a pending request, or None if unknown or already answered."""
        return self._pending.pop(request_id, None)

    def drain(self) -> list[PendingPermission]:
        """Remove and return every pending request, oldest first."""
        pending = list(self._pending.values())
        self._pending.clear()
        return pending
