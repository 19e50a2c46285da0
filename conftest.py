"""
Test conftest — isolate gateway environment variables and provide an
in-memory transport so handshake/router/sender tests need no sockets.
"""
import json

import pytest
from websockets.protocol import State

_GATEWAY_ENV_VARS = [
    "R1_GATEWAY_TOKEN",
    "R1GATEWAY_CONFIG",
]


@pytest.fixture(autouse=True)
def _clear_gateway_env(monkeypatch):
    """Remove gateway env vars for every test so Settings() behaves as if
    nothing is configured unless the test provides it. Also disables .env
    file loading so a developer's local token doesn't leak into tests."""
    for var in _GATEWAY_ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    import r1gateway.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)


class FakeTransport:
    """Stands in for a websockets ServerConnection: records sent frames."""

    def __init__(self, remote_address=("10.0.0.7", 51234)):
        self.remote_address = remote_address
        self.state = State.OPEN
        self.sent: list[str] = []

    async def send(self, raw: str) -> None:
        self.sent.append(raw)

    def close(self) -> None:
        self.state = State.CLOSED

    def frames(self) -> list[dict]:
        return [json.loads(s) for s in self.sent]


@pytest.fixture
def transport_factory():
    def _make(remote_address=("10.0.0.7", 51234)):
        return FakeTransport(remote_address)
    return _make
