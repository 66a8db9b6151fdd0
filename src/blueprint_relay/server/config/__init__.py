"""Shared configuration dataclasses for the relay server."""

from .loader import apply_overrides, load_relay_config
from .models import ColoniesEndpoint, RelayConfig

__all__ = [
    "ColoniesEndpoint",
    "RelayConfig",
    "apply_overrides",
    "load_relay_config",
]
