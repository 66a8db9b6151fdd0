"""Error taxonomy shared by the relay and the console."""

from __future__ import annotations


class RelayError(RuntimeError):
    """Base class for relay and console failures."""


class ConfigError(RelayError):
    """Raised when required configuration is missing or invalid."""


class ConnectError(RelayError):
    """Raised when the upstream reconciliation engine is unreachable."""

    def __init__(self, address: str, reason: str) -> None:
        super().__init__(f"cannot reach {address}: {reason}")
        self.address = address
        self.reason = reason


class TransportError(RelayError):
    """Raised on a mid-session I/O failure on either link."""


class MalformedMessage(RelayError):
    """Raised for undecodable or unrecognized relayed payloads."""

    def __init__(self, message: str, *, payload: object = None) -> None:
        super().__init__(message)
        self.payload = payload


class PhantomConnection(RelayError):
    """Raised when a downstream peer disappears before setup completes."""


__all__ = [
    "ConfigError",
    "ConnectError",
    "MalformedMessage",
    "PhantomConnection",
    "RelayError",
    "TransportError",
]
