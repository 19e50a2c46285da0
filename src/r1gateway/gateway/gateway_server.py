"""
gateway/gateway_server.py — R1 WebSocket Gateway

The server a Rabbit R1 pairs with directly. Owns the listening socket and
creates one Connection per accepted WebSocket. Uses the `websockets` library.

Usage:
    gateway = RabbitGateway(port=18789)

    @gateway.on_message
    async def reply(msg):
        await gateway.send_text(msg.device_id, f"You said: {msg.text}",
                                run_id=msg.idempotency_key)

    await gateway.start()          # starts listening
    await gateway.wait_closed()    # blocks until shutdown
"""

from __future__ import annotations

import uuid
from typing import Any, Callable, Optional

import websockets
from websockets.asyncio.server import Server, ServerConnection

from r1gateway.config.settings import DEFAULT_PORT, DEFAULT_TAILSCALE_COMMANDS, Settings
from r1gateway.exceptions import EnvelopeParseError, GatewayStartError
from r1gateway.gateway.connection import Connection, format_remote
from r1gateway.gateway.events import (
    DeviceConnected,
    DeviceDisconnected,
    GatewayEvents,
    GatewayFault,
    InboundChatMessage,
)
from r1gateway.gateway.handshake import Handshake
from r1gateway.gateway.protocol import make_challenge, parse_envelope
from r1gateway.gateway.registry import ClientRegistry
from r1gateway.gateway.router import MessageRouter
from r1gateway.gateway.sender import OutboundSender
from r1gateway.observability.logger import bind_connection, clear_connection, get_logger
from r1gateway.pairing.network import discover_ips
from r1gateway.pairing.qr import render_qr_data_uri

log = get_logger(__name__)

PAIRING_PAYLOAD_TYPE = "clawdbot-gateway"
PAIRING_PAYLOAD_VERSION = 1


def generate_token() -> str:
    return uuid.uuid4().hex


class RabbitGateway:
    """
    WebSocket gateway for R1 devices.

    Each instance has its own registry, token and callbacks, so several
    gateways can run side by side in one process.
    """

    def __init__(
        self,
        *,
        host: str = "0.0.0.0",
        port: int = DEFAULT_PORT,
        token: Optional[str] = None,
        debug: bool = False,
        max_frame_bytes: int = 2**20,
        use_tailscale: bool = False,
        tailscale_commands: tuple[str, ...] | list[str] = DEFAULT_TAILSCALE_COMMANDS,
    ):
        self._host = host
        self._port = port
        self._token = token or generate_token()
        self._debug = debug
        self._max_frame_bytes = max_frame_bytes
        self._use_tailscale = use_tailscale
        self._tailscale_commands = tuple(tailscale_commands)
        self._server: Optional[Server] = None

        self._registry = ClientRegistry()
        self._events = GatewayEvents()
        self._sender = OutboundSender(self._registry, debug=debug)
        self._handshake = Handshake(self._token, self._registry, self._sender, self._events)
        self._router = MessageRouter(self._handshake, self._sender, self._events)

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "RabbitGateway":
        """Build a gateway from loaded Settings; keyword overrides win."""
        kwargs: dict[str, Any] = {
            "host": settings.gateway.host,
            "port": settings.gateway.port,
            "token": settings.gateway_token,
            "debug": settings.gateway.debug,
            "max_frame_bytes": settings.gateway.max_frame_bytes,
            "use_tailscale": settings.pairing.use_tailscale,
            "tailscale_commands": settings.pairing.tailscale_commands,
        }
        kwargs.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**kwargs)

    # ─────────────────────────────────────────────────────────────────────────
    # Properties
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def token(self) -> str:
        return self._token

    @property
    def host(self) -> str:
        return self._host

    @property
    def bound_port(self) -> int:
        """The port actually listened on (differs from the configured one for port 0)."""
        if self._server is not None and self._server.sockets:
            return self._server.sockets[0].getsockname()[1]
        return self._port

    @property
    def registry(self) -> ClientRegistry:
        return self._registry

    @property
    def events(self) -> GatewayEvents:
        return self._events

    # ─────────────────────────────────────────────────────────────────────────
    # Callback registration
    # ─────────────────────────────────────────────────────────────────────────

    def on_device_connected(self, callback: Callable[[DeviceConnected], Any]):
        return self._events.on_device_connected(callback)

    def on_device_disconnected(self, callback: Callable[[DeviceDisconnected], Any]):
        return self._events.on_device_disconnected(callback)

    def on_message(self, callback: Callable[[InboundChatMessage], Any]):
        return self._events.on_message(callback)

    def on_error(self, callback: Callable[[GatewayFault], Any]):
        return self._events.on_error(callback)

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Bind and start accepting connections. Raises GatewayStartError."""
        if self._server is not None:
            return
        try:
            self._server = await websockets.serve(
                self._handler,
                self._host,
                self._port,
                max_size=self._max_frame_bytes,
            )
        except OSError as e:
            log.error("gateway.bind_failed", host=self._host, port=self._port, error=str(e))
            raise GatewayStartError(self._host, self._port, e) from e

        log.info("gateway.started", host=self._host, port=self.bound_port)
        if self._debug:
            log.info("gateway.token", token=self._token)

    async def wait_closed(self) -> None:
        """Block until the server is closed."""
        if self._server:
            await self._server.wait_closed()

    async def shutdown(self) -> None:
        """Close the listener and every open connection."""
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        log.info("gateway.stopped")

    async def __aenter__(self) -> "RabbitGateway":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.shutdown()

    # ─────────────────────────────────────────────────────────────────────────
    # Application API
    # ─────────────────────────────────────────────────────────────────────────

    async def send_text(
        self,
        device_id: str,
        text: str,
        *,
        session_key: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> bool:
        """
        Send an assistant reply to a paired device.

        Returns True once the chat event is written. Returns False when no
        device is registered under device_id, and also when the device is
        registered but its transport is no longer open (nothing is written
        in that case).
        """
        return await self._sender.send_text(
            device_id, text, session_key=session_key, run_id=run_id
        )

    def pairing_payload(self, ips: list[str]) -> dict[str, Any]:
        """The JSON object the device reads from the pairing QR code."""
        return {
            "type": PAIRING_PAYLOAD_TYPE,
            "version": PAIRING_PAYLOAD_VERSION,
            "ips": list(ips),
            "port": self.bound_port,
            "token": self._token,
            "protocol": "ws",
        }

    async def get_qr_code(self, use_tailscale: Optional[bool] = None) -> str:
        """Pairing QR code as an SVG data URI."""
        if use_tailscale is None:
            use_tailscale = self._use_tailscale
        ips = await discover_ips(use_tailscale, self._tailscale_commands)
        return render_qr_data_uri(self.pairing_payload(ips))

    # ─────────────────────────────────────────────────────────────────────────
    # Connection handler
    # ─────────────────────────────────────────────────────────────────────────

    async def _handler(self, websocket: ServerConnection) -> None:
        """Handle a single WebSocket connection from accept to close."""
        connection = Connection(
            transport=websocket,
            remote=format_remote(getattr(websocket, "remote_address", None)),
        )
        bind_connection(connection.connection_id, connection.remote)
        log.info("gateway.client_connected")

        try:
            await self._sender.deliver(connection, make_challenge())
            async for raw in websocket:
                await self._receive(connection, raw)
        except websockets.ConnectionClosedError as e:
            log.warning("gateway.transport_error", error=str(e))
            await self._events.error(GatewayFault(error=e, remote=connection.remote))
        except Exception as e:
            log.exception("gateway.handler_error")
            await self._events.error(GatewayFault(error=e, remote=connection.remote))
        finally:
            await self._handshake.handle_close(connection)
            log.info("gateway.client_disconnected")
            clear_connection()

    async def _receive(self, connection: Connection, raw: str | bytes) -> None:
        """Parse and route one inbound frame. Parse errors keep the connection open."""
        if self._debug:
            log.debug("gateway.frame_in", frame=raw)
        try:
            envelope = parse_envelope(raw)
        except EnvelopeParseError as e:
            log.warning("gateway.parse_error", reason=e.reason)
            return
        await self._router.route(connection, envelope)
