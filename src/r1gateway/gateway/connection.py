"""
gateway/connection.py — Per-connection state

One Connection per accepted transport. The device id lives here and in the
ClientRegistry; the transport object itself is never tagged.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from websockets.protocol import State


class ConnectionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    PAIRED          = "paired"
    CLOSED          = "closed"


@dataclass(eq=False)
class Connection:
    """
    Handshake/session context for one transport.

    Compared by identity: two Connection objects are never equal, even for
    the same device id, which is what lets the registry tell an old pairing
    from a newer one.
    """
    transport: Any
    remote: str
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    device_id: Optional[str] = None
    state: ConnectionState = ConnectionState.UNAUTHENTICATED

    @property
    def is_paired(self) -> bool:
        return self.state is ConnectionState.PAIRED

    @property
    def is_open(self) -> bool:
        """True while the underlying transport can still accept writes."""
        if self.state is ConnectionState.CLOSED:
            return False
        return getattr(self.transport, "state", None) is State.OPEN

    def mark_paired(self, device_id: str) -> str:
        """
        Transition to PAIRED. A connection keeps the first id it paired with;
        the bound id is returned.
        """
        if self.device_id is None:
            self.device_id = device_id
        self.state = ConnectionState.PAIRED
        return self.device_id

    def mark_closed(self) -> None:
        self.state = ConnectionState.CLOSED


def format_remote(remote_address: Any) -> str:
    """Render a socket peer address (tuple or None) as 'host:port'."""
    if isinstance(remote_address, (tuple, list)) and len(remote_address) >= 2:
        return f"{remote_address[0]}:{remote_address[1]}"
    if remote_address:
        return str(remote_address)
    return "unknown"
