"""Relayed frame types consumed by the console."""

from .messages import (
    INIT_TYPE,
    SPEC_FIELDS,
    UPDATE_TYPE,
    DeviceState,
    InitMessage,
    RelayedMessage,
    UpdateMessage,
    decode_frame,
    encode_message,
    parse_relayed_message,
)

__all__ = [
    "INIT_TYPE",
    "SPEC_FIELDS",
    "UPDATE_TYPE",
    "DeviceState",
    "InitMessage",
    "RelayedMessage",
    "UpdateMessage",
    "decode_frame",
    "encode_message",
    "parse_relayed_message",
]
