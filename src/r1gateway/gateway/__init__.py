"""
gateway/ — R1 WebSocket Gateway

WebSocket server a Rabbit R1 connects to directly: challenge, token
pairing, `chat.send` dispatch and outbound `chat` replies.
"""

from r1gateway.gateway.connection import Connection, ConnectionState
from r1gateway.gateway.events import (
    DeviceConnected,
    DeviceDisconnected,
    GatewayEvents,
    GatewayFault,
    InboundChatMessage,
)
from r1gateway.gateway.gateway_server import RabbitGateway
from r1gateway.gateway.protocol import Event, OutboundChatEvent, Request, Response, parse_envelope
from r1gateway.gateway.registry import ClientRegistry

__all__ = [
    "ClientRegistry",
    "Connection",
    "ConnectionState",
    "DeviceConnected",
    "DeviceDisconnected",
    "Event",
    "GatewayEvents",
    "GatewayFault",
    "InboundChatMessage",
    "OutboundChatEvent",
    "RabbitGateway",
    "Request",
    "Response",
    "parse_envelope",
]
