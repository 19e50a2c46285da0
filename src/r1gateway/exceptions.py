"""
exceptions.py — r1gateway Error Hierarchy

All gateway-specific exceptions live here. Every layer raises typed
subclasses of R1GatewayError — never bare Exception.

Import from here, not from individual modules:
    from r1gateway.exceptions import EnvelopeParseError, GatewayStartError

Hierarchy:
    R1GatewayError
    ├── ProtocolError
    │   └── EnvelopeParseError
    ├── GatewayStartError
    └── PairingError
        └── QRRenderError

ConfigError is defined next to the settings it validates
(r1gateway.config.settings) and re-exported here.
"""

from __future__ import annotations


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class R1GatewayError(Exception):
    """Base class for all r1gateway exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Wire protocol
# ─────────────────────────────────────────────────────────────────────────────

class ProtocolError(R1GatewayError):
    """Base for wire protocol errors."""


class EnvelopeParseError(ProtocolError):
    """An inbound frame could not be parsed into a request, response or event."""

    def __init__(self, reason: str, raw: str | bytes | None = None) -> None:
        self.reason = reason
        self.raw = raw
        super().__init__(f"Malformed envelope: {reason}")


# ─────────────────────────────────────────────────────────────────────────────
# Gateway lifecycle
# ─────────────────────────────────────────────────────────────────────────────

class GatewayStartError(R1GatewayError):
    """The listening socket could not be bound. Fatal for the gateway."""

    def __init__(self, host: str, port: int, cause: BaseException) -> None:
        self.host = host
        self.port = port
        super().__init__(f"Cannot listen on {host}:{port}: {cause}")


# ─────────────────────────────────────────────────────────────────────────────
# Pairing collaborators
# ─────────────────────────────────────────────────────────────────────────────

class PairingError(R1GatewayError):
    """Base for pairing payload / QR code errors."""


class QRRenderError(PairingError):
    """The pairing payload could not be encoded as a QR image."""


from r1gateway.config.settings import ConfigError  # noqa: E402 — re-export


__all__ = [
    "R1GatewayError",
    "ProtocolError",
    "EnvelopeParseError",
    "GatewayStartError",
    "PairingError",
    "QRRenderError",
    "ConfigError",
]
