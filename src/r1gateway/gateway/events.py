"""
gateway/events.py — Domain notifications raised to the application

Four notification types, each with its own typed registration method:

    events.on_device_connected(cb)     cb(DeviceConnected)
    events.on_device_disconnected(cb)  cb(DeviceDisconnected)
    events.on_message(cb)              cb(InboundChatMessage)
    events.on_error(cb)                cb(GatewayFault)

Callbacks may be plain functions or coroutines. They run in registration
order inside the connection's handler task, so notifications for one
connection arrive in the order the frames did.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar, Union

from r1gateway.observability.logger import get_logger

log = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Notification payloads
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DeviceConnected:
    id: str
    remote: str


@dataclass(frozen=True)
class DeviceDisconnected:
    id: str


@dataclass(frozen=True)
class InboundChatMessage:
    device_id: str
    text: Any
    session_key: Any = None
    idempotency_key: Any = None


@dataclass(frozen=True)
class GatewayFault:
    error: BaseException
    remote: str | None = None


E = TypeVar("E")
Callback = Callable[[E], Union[None, Awaitable[None]]]


class _Channel(Generic[E]):
    """Ordered list of callbacks for one notification type."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._callbacks: list[Callback] = []

    def add(self, callback: Callback) -> Callback:
        self._callbacks.append(callback)
        return callback

    def __len__(self) -> int:
        return len(self._callbacks)

    async def dispatch(self, event: E) -> None:
        for callback in list(self._callbacks):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                # Callback errors stay inside this dispatch.
                log.exception(
                    "gateway.callback_failed",
                    notification=self.name,
                    callback=getattr(callback, "__qualname__", repr(callback)),
                )


class GatewayEvents:
    """Typed callback registry owned by one gateway instance."""

    def __init__(self) -> None:
        self._connected: _Channel[DeviceConnected] = _Channel("deviceConnected")
        self._disconnected: _Channel[DeviceDisconnected] = _Channel("deviceDisconnected")
        self._message: _Channel[InboundChatMessage] = _Channel("message")
        self._error: _Channel[GatewayFault] = _Channel("error")

    # -- Registration (each returns the callback so it works as a decorator) --

    def on_device_connected(
        self, callback: Callable[[DeviceConnected], Any]
    ) -> Callable[[DeviceConnected], Any]:
        return self._connected.add(callback)

    def on_device_disconnected(
        self, callback: Callable[[DeviceDisconnected], Any]
    ) -> Callable[[DeviceDisconnected], Any]:
        return self._disconnected.add(callback)

    def on_message(
        self, callback: Callable[[InboundChatMessage], Any]
    ) -> Callable[[InboundChatMessage], Any]:
        return self._message.add(callback)

    def on_error(
        self, callback: Callable[[GatewayFault], Any]
    ) -> Callable[[GatewayFault], Any]:
        return self._error.add(callback)

    # -- Raising --

    async def device_connected(self, event: DeviceConnected) -> None:
        await self._connected.dispatch(event)

    async def device_disconnected(self, event: DeviceDisconnected) -> None:
        await self._disconnected.dispatch(event)

    async def message(self, event: InboundChatMessage) -> None:
        await self._message.dispatch(event)

    async def error(self, event: GatewayFault) -> None:
        await self._error.dispatch(event)
