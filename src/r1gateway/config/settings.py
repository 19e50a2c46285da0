"""
config/settings.py — r1gateway Runtime Settings

Merges config.yaml (structure/defaults) with .env and environment variables
(secrets). Pydantic-powered — all fields are validated and typed.

  - GatewayConfig rejects ports outside 0–65535 at parse time
  - LoggingConfig rejects unknown log levels
  - validate_all() performs cross-field startup validation and raises
    ConfigError with a numbered, human-readable list of every problem
  - load_settings() respects R1GATEWAY_CONFIG when no explicit path is given
"""

from __future__ import annotations

import os
import threading as _threading
from pathlib import Path
from typing import Any, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Raised by validate_all() when one or more config problems are found."""


_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

DEFAULT_PORT = 18789

DEFAULT_TAILSCALE_COMMANDS: tuple[str, ...] = (
    "tailscale ip -4",
    "/Applications/Tailscale.app/Contents/MacOS/Tailscale ip -4",
    "/usr/local/bin/tailscale ip -4",
    "/opt/homebrew/bin/tailscale ip -4",
)


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class GatewayConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    debug: bool = False
    max_frame_bytes: int = 2**20

    @field_validator("port")
    @classmethod
    def _valid_port(cls, v: int) -> int:
        # 0 asks the OS for an ephemeral port
        if not (0 <= v <= 65535):
            raise ValueError(f"gateway.port must be between 0 and 65535, got {v}")
        return v

    @field_validator("max_frame_bytes")
    @classmethod
    def _positive_frame_size(cls, v: int) -> int:
        if v < 1024:
            raise ValueError("gateway.max_frame_bytes must be >= 1024")
        return v


class PairingConfig(BaseModel):
    use_tailscale: bool = False
    tailscale_commands: List[str] = Field(
        default_factory=lambda: list(DEFAULT_TAILSCALE_COMMANDS)
    )


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: Optional[str] = "./data/logs"   # None = console only
    max_file_size_mb: int = 100
    backup_count: int = 5
    console_output: bool = True
    json_format: Optional[bool] = None

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    r1gateway runtime settings.

    Priority (highest to lowest):
      1. Environment variables
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Secrets from .env ---------------------------------------------------
    gateway_token: Optional[str] = Field(default=None, alias="R1_GATEWAY_TOKEN")

    # -- Structured config (from config.yaml) --------------------------------
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    pairing: PairingConfig = Field(default_factory=PairingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("gateway_token", mode="before")
    @classmethod
    def _blank_token_is_unset(cls, v: Any) -> Optional[str]:
        if v in (None, ""):
            return None
        return v

    @field_validator("gateway", mode="before")
    @classmethod
    def _coerce_gateway(cls, v: Any) -> Any:
        return GatewayConfig(**v) if isinstance(v, dict) else v

    @field_validator("pairing", mode="before")
    @classmethod
    def _coerce_pairing(cls, v: Any) -> Any:
        return PairingConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Optional[Path]:
        return Path(self.logging.log_dir) if self.logging.log_dir else None

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time; this
        catches the cross-field problems they can't see.
        """
        errors: list[str] = []

        if self.gateway_token is not None and not self.gateway_token.strip():
            errors.append(
                "R1_GATEWAY_TOKEN is whitespace only. Unset it to have a "
                "token generated at startup, or set a real secret."
            )

        if self.gateway_token is not None and len(self.gateway_token) < 8:
            errors.append(
                "R1_GATEWAY_TOKEN must be at least 8 characters long."
            )

        if self.pairing.use_tailscale and not self.pairing.tailscale_commands:
            errors.append(
                "pairing.use_tailscale is enabled but "
                "pairing.tailscale_commands is empty."
            )

        if not self.gateway.host.strip():
            errors.append("gateway.host must not be empty. Use '0.0.0.0'.")

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nr1gateway startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = _threading.Lock()

_KNOWN_SECTIONS = {"gateway", "pairing", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. R1GATEWAY_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("R1GATEWAY_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    yaml_data = _load_yaml(_resolve_config_path(config_path))
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading from the default config
    path on first use. Thread-safe.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is not None:
            return _singleton
    return load_settings()
