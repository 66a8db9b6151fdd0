"""Configuration dataclasses shared across the relay package."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from blueprint_relay.server.config.logging_policy import DebugPolicy, load_debug_policy


@dataclass(frozen=True)
class ColoniesEndpoint:
    """Where the console reaches the platform REST API."""

    host: str = "localhost"
    port: int = 50080
    tls: bool = False


@dataclass(frozen=True)
class RelayConfig:
    """Top-level relay configuration values."""

    colony_prv_key: str
    host: str = "0.0.0.0"
    port: int = 3000
    ws_path: str = "/ws"
    upstream_host: str = "localhost"
    upstream_port: int = 46701
    keepalive_s: float = 15.0
    phantom_delay_s: float = 0.2
    open_timeout_s: float = 10.0
    colonies: ColoniesEndpoint = field(default_factory=ColoniesEndpoint)
    colony_name: str = "dev"
    executor_prv_key: Optional[str] = None
    debug_policy: DebugPolicy = field(default_factory=lambda: load_debug_policy({}))

    @property
    def upstream_url(self) -> str:
        return f"ws://{self.upstream_host}:{self.upstream_port}"
