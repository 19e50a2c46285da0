"""
gateway/handshake.py — Pairing / Auth State Machine

    UNAUTHENTICATED ──connect(token ok)──▶ PAIRED
          │    ▲                             │
          │    └──connect(bad token): 401    │
          └──────────── close ───────────────┴──▶ CLOSED

Devices in the field send the token and device id in several places
depending on firmware version. Both are resolved by walking an explicit,
ordered list of field paths; the first non-empty string wins.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Any, Optional

from r1gateway.gateway.connection import Connection
from r1gateway.gateway.events import (
    DeviceConnected,
    DeviceDisconnected,
    GatewayEvents,
)
from r1gateway.gateway.protocol import (
    Request,
    make_auth_failed,
    make_connect_ok,
    make_pair_approved,
    make_paired_response,
)
from r1gateway.gateway.registry import ClientRegistry
from r1gateway.gateway.sender import OutboundSender
from r1gateway.observability.logger import bind_device, get_logger

log = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Field extraction
# ─────────────────────────────────────────────────────────────────────────────

# Paths are relative to the whole decoded frame, not to params.
TOKEN_PATHS: tuple[tuple[str, ...], ...] = (
    ("params", "auth", "token"),
    ("params", "authToken"),
    ("auth", "token"),
    ("token",),
)

DEVICE_ID_PATHS: tuple[tuple[str, ...], ...] = (
    ("params", "device", "id"),
    ("params", "deviceId"),
    ("params", "client", "id"),
    ("deviceId",),
)


def _dig(frame: dict[str, Any], path: tuple[str, ...]) -> Any:
    node: Any = frame
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def first_present(frame: dict[str, Any], paths: tuple[tuple[str, ...], ...]) -> Optional[str]:
    """Return the first non-empty string found along `paths`, in order."""
    for path in paths:
        value = _dig(frame, path)
        if isinstance(value, str) and value:
            return value
    return None


def extract_token(frame: dict[str, Any]) -> Optional[str]:
    return first_present(frame, TOKEN_PATHS)


def extract_device_id(frame: dict[str, Any]) -> Optional[str]:
    return first_present(frame, DEVICE_ID_PATHS)


def tokens_match(presented: Optional[str], expected: str) -> bool:
    """Byte-exact, constant-time comparison."""
    if presented is None:
        return False
    return secrets.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


# ─────────────────────────────────────────────────────────────────────────────
# State machine
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class HandshakeResult:
    ok: bool
    device_id: str


class Handshake:
    """Validates connect requests and promotes connections to PAIRED."""

    def __init__(
        self,
        token: str,
        registry: ClientRegistry,
        sender: OutboundSender,
        events: GatewayEvents,
    ):
        self._token = token
        self._registry = registry
        self._sender = sender
        self._events = events

    async def handle_connect(self, connection: Connection, request: Request) -> HandshakeResult:
        frame = request.raw or request.to_dict()
        presented = extract_token(frame)
        device_id = extract_device_id(frame) or f"device-{connection.remote}"

        if not tokens_match(presented, self._token):
            log.warning(
                "gateway.auth_failed",
                device_id=device_id,
                token_present=presented is not None,
            )
            await self._sender.deliver(connection, make_auth_failed(request.id))
            return HandshakeResult(ok=False, device_id=device_id)

        device_id = connection.mark_paired(device_id)
        await self._registry.register(device_id, connection)
        bind_device(device_id)
        log.info("gateway.device_paired", device_id=device_id)

        await self._sender.deliver(connection, make_pair_approved(device_id))
        await self._sender.deliver(connection, make_paired_response(request.id))
        await self._sender.deliver(connection, make_connect_ok(device_id))

        await self._events.device_connected(
            DeviceConnected(id=device_id, remote=connection.remote)
        )
        return HandshakeResult(ok=True, device_id=device_id)

    async def handle_close(self, connection: Connection) -> None:
        """Move to CLOSED; unregister and notify if the connection was paired."""
        was_paired = connection.is_paired
        connection.mark_closed()
        if not was_paired or connection.device_id is None:
            return

        removed = await self._registry.remove(connection.device_id, connection)
        log.info(
            "gateway.device_disconnected",
            device_id=connection.device_id,
            registry_entry_removed=removed,
        )
        await self._events.device_disconnected(DeviceDisconnected(id=connection.device_id))
