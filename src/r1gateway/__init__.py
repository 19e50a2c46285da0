"""
r1gateway — self-hosted pairing and chat gateway for the Rabbit R1.
"""

from r1gateway.gateway import (
    DeviceConnected,
    DeviceDisconnected,
    GatewayFault,
    InboundChatMessage,
    RabbitGateway,
)

__version__ = "0.1.0"

__all__ = [
    "DeviceConnected",
    "DeviceDisconnected",
    "GatewayFault",
    "InboundChatMessage",
    "RabbitGateway",
    "__version__",
]
