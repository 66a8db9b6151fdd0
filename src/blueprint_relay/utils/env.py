from __future__ import annotations

import os
from typing import Mapping, Optional


def _lookup(name: str, env: Optional[Mapping[str, str]]) -> Optional[str]:
    source = os.environ if env is None else env
    return source.get(name)


def env_str(name: str, default: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    v = _lookup(name, env)
    return v if v not in (None, "") else default


def env_bool(name: str, default: bool = False, env: Optional[Mapping[str, str]] = None) -> bool:
    v = _lookup(name, env)
    if v is None:
        return default
    s = v.strip().lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off"):
        return False
    return default


def env_int(name: str, default: int, env: Optional[Mapping[str, str]] = None) -> int:
    v = _lookup(name, env)
    if not v:
        return default
    try:
        return int(v.strip(), 10)
    except ValueError:
        return default


def env_float(name: str, default: float, env: Optional[Mapping[str, str]] = None) -> float:
    v = _lookup(name, env)
    if not v:
        return default
    try:
        return float(v.strip())
    except ValueError:
        return default


def capture_env(source: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    """Copy environment variables so tests can inject overrides."""

    if source is None:
        return dict(os.environ)
    return dict(source)
