"""
gateway/sender.py — Outbound Sender

Single write path for every server → device frame. Writes are best-effort:
a transport that is not open, or closes mid-write, drops the frame. There is
no queueing and no retry.
"""

from __future__ import annotations

from typing import Optional

import websockets

from r1gateway.gateway.connection import Connection
from r1gateway.gateway.protocol import (
    Envelope,
    OutboundChatEvent,
    make_chat_event,
)
from r1gateway.gateway.registry import ClientRegistry
from r1gateway.observability.logger import get_logger

log = get_logger(__name__)


class OutboundSender:
    """Builds reply envelopes and writes them to the matching connection."""

    def __init__(self, registry: ClientRegistry, *, debug: bool = False):
        self._registry = registry
        self._debug = debug

    async def deliver(self, connection: Connection, envelope: Envelope) -> bool:
        """Write one envelope. Returns False if the frame was dropped."""
        if not connection.is_open:
            log.debug(
                "gateway.frame_dropped",
                connection_id=connection.connection_id,
                reason="transport_not_open",
            )
            return False

        raw = envelope.to_json()
        if self._debug:
            log.debug("gateway.frame_out", connection_id=connection.connection_id, frame=raw)
        try:
            await connection.transport.send(raw)
        except websockets.ConnectionClosed as e:
            log.info(
                "gateway.frame_dropped",
                connection_id=connection.connection_id,
                reason="connection_closed",
                code=getattr(e.rcvd, "code", None),
            )
            return False
        return True

    async def send_text(
        self,
        device_id: str,
        text: str,
        *,
        session_key: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> bool:
        """
        Push a final assistant `chat` event to a paired device.

        Returns False without side effects when the device is not in the
        registry, and False when its transport is no longer open.
        """
        connection = await self._registry.get(device_id)
        if connection is None:
            log.info("gateway.send_unknown_device", device_id=device_id)
            return False

        chat = OutboundChatEvent(text=text, session_key=session_key or "main")
        if run_id:
            chat.run_id = run_id

        delivered = await self.deliver(connection, make_chat_event(chat))
        if delivered:
            log.info("gateway.chat_sent", device_id=device_id, run_id=chat.run_id)
        else:
            log.info("gateway.send_dropped", device_id=device_id, run_id=chat.run_id)
        return delivered
