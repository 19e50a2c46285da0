"""
gateway/registry.py — Client Registry

Maps device_id → the Connection that most recently paired with that id.
Uses a single asyncio.Lock; it is the only state shared between connection
handler tasks.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from r1gateway.gateway.connection import Connection
from r1gateway.observability.logger import get_logger

log = get_logger(__name__)


class ClientRegistry:
    """
    Async-safe device registry, one per gateway instance.

    A later pairing under the same id silently replaces the earlier entry;
    the replaced connection stays open but stops receiving send_text output.
    """

    def __init__(self) -> None:
        self._clients: dict[str, Connection] = {}
        self._lock = asyncio.Lock()

    async def register(self, device_id: str, connection: Connection) -> Optional[Connection]:
        """Insert or overwrite. Returns the connection that was replaced, if any."""
        async with self._lock:
            previous = self._clients.get(device_id)
            self._clients[device_id] = connection
        if previous is not None and previous is not connection:
            log.info(
                "registry.replaced",
                device_id=device_id,
                old_connection=previous.connection_id,
                new_connection=connection.connection_id,
            )
        return previous

    async def get(self, device_id: str) -> Optional[Connection]:
        """Get the connection for a device, or None if not paired."""
        async with self._lock:
            return self._clients.get(device_id)

    async def remove(
        self,
        device_id: str,
        connection: Optional[Connection] = None,
    ) -> bool:
        """
        Remove a device entry. Returns True if something was removed.

        When `connection` is given the entry is only removed if it still
        points at that connection.
        """
        async with self._lock:
            current = self._clients.get(device_id)
            if current is None:
                return False
            if connection is not None and current is not connection:
                return False
            del self._clients[device_id]
            return True

    async def device_ids(self) -> list[str]:
        """Return all paired device ids."""
        async with self._lock:
            return list(self._clients.keys())

    @property
    def count(self) -> int:
        """Synchronous count — use only from non-async contexts (e.g. tests)."""
        return len(self._clients)
