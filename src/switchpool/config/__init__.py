"""Configuration: Pydantic models for session identity and pool settings."""

from __future__ import annotations

import ipaddress
import json
import os
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator

from switchpool.errors import InvalidConfig

# Preferred SSH ciphers, in order. Entries the SSH library does not
# implement are dropped at dial time.
DEFAULT_CIPHERS: list[str] = [
    "aes128-ctr",
    "aes192-ctr",
    "aes256-ctr",
    "aes128-gcm@openssh.com",
    "arcfour256",
    "arcfour128",
    "aes128-cbc",
    "aes256-cbc",
    "3des-cbc",
    "des-cbc",
]


class SessionConfig(BaseModel):
    """Credentials and address of one device.

    Build instances with ``create_config()`` so that validation failures
    surface as ``InvalidConfig``.
    """

    model_config = ConfigDict(frozen=True)

    user: str = Field(min_length=1)
    secret: SecretStr
    host: str
    port: int = Field(ge=1, le=65535)
    vendor: str = ""

    @field_validator("secret")
    @classmethod
    def _secret_not_empty(cls, value: SecretStr) -> SecretStr:
        if not value.get_secret_value():
            raise ValueError("secret must not be empty")
        return value

    @field_validator("host")
    @classmethod
    def _host_is_ipv4(cls, value: str) -> str:
        try:
            ipaddress.IPv4Address(value)
        except ValueError as e:
            raise ValueError(f"host {value!r} is not an IPv4 address: {e}") from e
        return value

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def session_key(self) -> str:
        """Cache key for this config.

        Composed of user, secret and address only. Two configs that differ
        only by vendor map to the same cached session.
        """
        return f"{self.user}_{self.secret.get_secret_value()}_{self.address}"

    @property
    def label(self) -> str:
        """Secret-free identity used in logs and listings."""
        return f"{self.user}@{self.address}"


def create_config(
    user: str,
    secret: str,
    host: str,
    port: str | int,
    vendor: str = "",
) -> SessionConfig:
    """Validate and build a ``SessionConfig``.

    Raises:
        InvalidConfig: a field is empty, the host is not an IPv4 literal,
            or the port is not an integer in 1-65535.
    """
    if not user or not secret or not host or port in ("", None):
        raise InvalidConfig("user, secret, host and port are all required")
    try:
        return SessionConfig(
            user=user, secret=secret, host=host, port=port, vendor=vendor
        )
    except ValidationError as e:
        raise InvalidConfig(str(e)) from e


class PoolSettings(BaseModel):
    """Tunables for the session pool, its sessions and the SSH dialer."""

    idle_threshold: float = Field(
        default=600.0, description="Seconds unused before a session is evicted"
    )
    sweep_interval: float = Field(
        default=30.0, description="Seconds between idle sweeps"
    )
    dial_timeout: float = Field(default=20.0, description="TCP/SSH connect timeout")
    banner_timeout: float = Field(
        default=1.0, description="Grace period while draining the login banner"
    )
    init_timeout: float = Field(
        default=1.0, description="Grace period after the pagination-disable command"
    )
    probe_timeout: float = Field(
        default=2.0, description="Grace period for the liveness probe"
    )
    term: str = Field(default="vt100")
    cols: int = Field(default=80)
    rows: int = Field(default=40)
    command_queue_size: int = Field(default=1024)
    output_queue_size: int = Field(default=1024)
    read_chunk_size: int = Field(default=65 * 1024)
    ciphers: list[str] = Field(default_factory=lambda: list(DEFAULT_CIPHERS))

    @classmethod
    def load(cls, config_path: str | None = None) -> PoolSettings:
        """Load settings from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            SWITCHPOOL_IDLE_THRESHOLD  - Seconds before an unused session is evicted
            SWITCHPOOL_SWEEP_INTERVAL  - Seconds between idle sweeps
            SWITCHPOOL_DIAL_TIMEOUT    - SSH connect timeout
            SWITCHPOOL_PROBE_TIMEOUT   - Liveness probe grace period
        """
        load_dotenv(override=True)

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            with open(config_path) as f:
                config_data = json.load(f)

        env_overrides = {
            "idle_threshold": "SWITCHPOOL_IDLE_THRESHOLD",
            "sweep_interval": "SWITCHPOOL_SWEEP_INTERVAL",
            "dial_timeout": "SWITCHPOOL_DIAL_TIMEOUT",
            "probe_timeout": "SWITCHPOOL_PROBE_TIMEOUT",
        }
        for field_name, env_name in env_overrides.items():
            value = os.environ.get(env_name)
            if value:
                config_data[field_name] = float(value)

        return cls.model_validate(config_data)
