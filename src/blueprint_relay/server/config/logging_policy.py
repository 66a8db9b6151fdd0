from __future__ import annotations

"""Central debug/logging policy plumbing for the relay and console."""

import json
import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(name)s - %(levelname)s - %(message)s"

_WEBSOCKETS_LOGGERS = (
    "websockets",
    "websockets.client",
    "websockets.server",
)


@dataclass(frozen=True)
class LoggingToggles:
    log_frames: bool = False
    log_keepalive: bool = False
    log_sessions: bool = True


@dataclass(frozen=True)
class DebugPolicy:
    enabled: bool
    logging: LoggingToggles
    websockets_debug: bool = False


_LOG_FLAG_MAP: dict[str, Iterable[str]] = {
    "frames": ("log_frames",),
    "keepalive": ("log_keepalive",),
    "sessions": ("log_sessions",),
}

_TRUTHY = {"1", "true", "yes", "on", "dbg", "debug"}
_FALSY = {"0", "false", "no", "off", ""}


def _coerce_bool(value: object, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        val = value.strip().lower()
        if val in _TRUTHY:
            return True
        if val in _FALSY:
            return False
    return default


def _split_flags(raw: object) -> set[str]:
    result: set[str] = set()
    items: Iterable[object]
    if raw is None:
        return result
    if isinstance(raw, str):
        items = raw.split(",")
    elif isinstance(raw, Iterable):
        items = raw
    else:
        return result
    for item in items:
        token = str(item).strip().lower()
        if token:
            result.add(token)
    return result


def _load_debug_config(env: Mapping[str, str]) -> tuple[bool, dict[str, object]]:
    raw = env.get("BLUEPRINT_RELAY_DEBUG")
    if raw is None:
        return False, {}
    raw_str = raw.strip()
    if raw_str.lower() in _FALSY:
        return False, {}
    if raw_str.lower() in _TRUTHY:
        return True, {}
    try:
        parsed = json.loads(raw_str)
        if isinstance(parsed, dict):
            enabled = _coerce_bool(parsed.get("enabled", True), True)
            return enabled, parsed
        if isinstance(parsed, (list, tuple)):
            return True, {"flags": parsed}
    except json.JSONDecodeError:
        logger.debug("Failed to parse BLUEPRINT_RELAY_DEBUG JSON; treating as flag list", exc_info=True)
    return True, {"flags": raw_str}


def load_debug_policy(env: Optional[Mapping[str, str]] = None) -> DebugPolicy:
    """Resolve logging toggles from ``BLUEPRINT_RELAY_DEBUG`` and ``BLUEPRINT_RELAY_LOG``.

    ``BLUEPRINT_RELAY_DEBUG`` accepts a boolean, a comma separated flag list,
    or a JSON object ``{"enabled": true, "flags": [...]}``. Flags listed in
    ``BLUEPRINT_RELAY_LOG`` are enabled regardless of the debug switch.
    """

    env = os.environ if env is None else env
    enabled, cfg = _load_debug_config(env)

    flags = _split_flags(cfg.get("flags") if isinstance(cfg, dict) else None)
    flags |= _split_flags(env.get("BLUEPRINT_RELAY_LOG"))

    defaults = LoggingToggles()
    log_kwargs = {name: getattr(defaults, name) for name in LoggingToggles.__annotations__.keys()}
    for flag, attrs in _LOG_FLAG_MAP.items():
        if flag in flags:
            for attr in attrs:
                log_kwargs[attr] = True
    if enabled and not flags:
        log_kwargs = {name: True for name in log_kwargs}

    return DebugPolicy(
        enabled=enabled,
        logging=LoggingToggles(**log_kwargs),
        websockets_debug=_coerce_bool(env.get("BLUEPRINT_RELAY_WEBSOCKETS_DEBUG"), False),
    )


def configure_logging(policy: DebugPolicy, *, debug: bool = False) -> None:
    """Install the root handler and apply module-level debug toggles."""

    # Keep root at INFO to avoid third-party DEBUG flood
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    if debug or policy.enabled:
        logging.getLogger("blueprint_relay").setLevel(logging.DEBUG)
    ws_level = logging.DEBUG if policy.websockets_debug else logging.INFO
    for name in _WEBSOCKETS_LOGGERS:
        logging.getLogger(name).setLevel(ws_level)


__all__ = [
    "LOG_FORMAT",
    "DebugPolicy",
    "LoggingToggles",
    "configure_logging",
    "load_debug_policy",
]
