"""
gateway/router.py — Message Router

Dispatch table for parsed envelopes:

    connect / gateway.connect   → Handshake (any state)
    chat.send                   → InboundChatMessage + ack (PAIRED only)
    anything else               → ignored, no error frame
"""

from __future__ import annotations

from r1gateway.gateway.connection import Connection
from r1gateway.gateway.events import GatewayEvents, InboundChatMessage
from r1gateway.gateway.handshake import Handshake
from r1gateway.gateway.protocol import (
    CONNECT_METHODS,
    Envelope,
    Method,
    Request,
    make_ack,
)
from r1gateway.gateway.sender import OutboundSender
from r1gateway.observability.logger import get_logger

log = get_logger(__name__)


class MessageRouter:

    def __init__(
        self,
        handshake: Handshake,
        sender: OutboundSender,
        events: GatewayEvents,
    ):
        self._handshake = handshake
        self._sender = sender
        self._events = events

    async def route(self, connection: Connection, envelope: Envelope) -> None:
        """Route one inbound envelope for `connection`."""
        if not isinstance(envelope, Request):
            log.debug("gateway.ignored", reason="not_a_request", kind=type(envelope).__name__)
            return

        if envelope.method in CONNECT_METHODS:
            await self._handshake.handle_connect(connection, envelope)
            return

        if not connection.is_paired:
            log.debug("gateway.ignored", reason="unauthenticated", method=envelope.method)
            return

        if envelope.method == Method.CHAT_SEND.value:
            await self._handle_chat_send(connection, envelope)
            return

        log.debug("gateway.ignored", reason="unknown_method", method=envelope.method)

    async def _handle_chat_send(self, connection: Connection, request: Request) -> None:
        params = request.params
        message = InboundChatMessage(
            device_id=connection.device_id,
            text=params.get("message"),
            session_key=params.get("sessionKey"),
            idempotency_key=params.get("idempotencyKey"),
        )
        log.info(
            "gateway.chat_received",
            session_key=message.session_key,
            idempotency_key=message.idempotency_key,
        )
        await self._events.message(message)
        # The ack only confirms receipt; the reply goes out later via send_text.
        await self._sender.deliver(connection, make_ack(request.id))
