"""
config/ — r1gateway settings (config.yaml + .env, validated by Pydantic).
"""

from r1gateway.config.settings import (
    ConfigError,
    GatewayConfig,
    LoggingConfig,
    PairingConfig,
    Settings,
    get_settings,
    load_settings,
)

__all__ = [
    "ConfigError",
    "GatewayConfig",
    "LoggingConfig",
    "PairingConfig",
    "Settings",
    "get_settings",
    "load_settings",
]
