"""Console configuration: local tunables plus the relay's ``/api/config`` payload."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import requests

from blueprint_relay.errors import ConfigError
from blueprint_relay.server.config.models import ColoniesEndpoint
from blueprint_relay.utils.env import env_float, env_int, env_str

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsoleConfig:
    reconnect_delay_s: float = 2.0
    connect_timeout_s: float = 1.5
    history_capacity: int = 50
    identity: str = ""

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, *, identity: Optional[str] = None) -> "ConsoleConfig":
        return cls(
            reconnect_delay_s=env_float("BLUEPRINT_CONSOLE_RECONNECT_S", 2.0, env),
            connect_timeout_s=env_float("BLUEPRINT_CONSOLE_CONNECT_TIMEOUT_S", 1.5, env),
            history_capacity=max(1, env_int("BLUEPRINT_CONSOLE_HISTORY", 50, env)),
            identity=identity if identity is not None else (env_str("BLUEPRINT_CONSOLE_IDENTITY", "", env) or ""),
        )


@dataclass(frozen=True)
class BrowserConfig:
    """Parsed ``GET /api/config`` response."""

    colonies: ColoniesEndpoint
    colony_name: str
    reconciler_ws_url: Optional[str]
    colony_prv_key: Optional[str] = None
    executor_prv_key: Optional[str] = None

    @property
    def signing_key(self) -> Optional[str]:
        return self.executor_prv_key or self.colony_prv_key

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BrowserConfig":
        if not isinstance(data, Mapping):
            raise ConfigError("config payload must be a JSON object")
        colonies = data.get("colonies") or {}
        if not isinstance(colonies, Mapping):
            raise ConfigError("config.colonies must be an object")
        try:
            endpoint = ColoniesEndpoint(
                host=str(colonies.get("host") or "localhost"),
                port=int(colonies.get("port") or 50080),
                tls=bool(colonies.get("tls", False)),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"invalid config.colonies: {exc}") from exc
        return cls(
            colonies=endpoint,
            colony_name=str(data.get("colonyName") or "dev"),
            reconciler_ws_url=data.get("reconcilerWsUrl") or None,
            colony_prv_key=data.get("colonyPrvKey") or None,
            executor_prv_key=data.get("executorPrvKey") or None,
        )


def fetch_browser_config(url: str, *, timeout: float = 5.0) -> BrowserConfig:
    """Blocking fetch of the relay's config endpoint."""

    logger.info("Loading config from %s", url)
    try:
        resp = requests.get(url, timeout=timeout, headers={"Cache-Control": "no-cache"})
        resp.raise_for_status()
        payload = resp.json()
    except requests.RequestException as exc:
        raise ConfigError(f"failed to load config from {url}: {exc}") from exc
    except ValueError as exc:
        raise ConfigError(f"config from {url} is not JSON: {exc}") from exc
    return BrowserConfig.from_dict(payload)


__all__ = ["BrowserConfig", "ConsoleConfig", "fetch_browser_config"]
