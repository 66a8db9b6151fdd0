"""Message dataclasses for the relayed desired/actual frames.

The relay forwards these frames opaquely; only the console decodes them.
Two shapes are recognised:

``init``
    ``{"type": "init", "devices": {<device_id>: {"spec": {...}, "status": {...}}}}``
``update``
    ``{"type": "update", "device": <device_id>, "spec": {...}, "status": {...}}``

Frames with any other ``type`` decode to ``None`` so callers can log and move on.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union

from blueprint_relay.errors import MalformedMessage

INIT_TYPE = "init"
UPDATE_TYPE = "update"

# Fields of the desired configuration the console understands.
SPEC_FIELDS = (
    "name",
    "location",
    "appName",
    "appVersion",
    "enabled",
    "logInterval",
    "logFormat",
)


def _as_mapping(value: Any, field_name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise MalformedMessage(f"{field_name} must be a mapping", payload=value)
    return value


def _optional_mapping(value: Any, field_name: str) -> Dict[str, Any] | None:
    if value is None:
        return None
    return dict(_as_mapping(value, field_name))


def _require(condition: bool, message: str, payload: object = None) -> None:
    if not condition:
        raise MalformedMessage(message, payload=payload)


@dataclass(frozen=True)
class DeviceState:
    """Desired/actual pair for one device.

    ``status`` is ``None`` until the device (or its agent) has reported.
    """

    spec: Dict[str, Any] = field(default_factory=dict)
    status: Dict[str, Any] | None = None

    @property
    def desired_version(self) -> Optional[str]:
        return _version_of(self.spec)

    @property
    def actual_version(self) -> Optional[str]:
        return _version_of(self.status)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, context: str = "device") -> "DeviceState":
        payload = _as_mapping(data, context)
        spec = _optional_mapping(payload.get("spec"), f"{context}.spec")
        status = _optional_mapping(payload.get("status"), f"{context}.status")
        return cls(spec=spec or {}, status=status)

    def to_dict(self) -> Dict[str, Any]:
        return {"spec": dict(self.spec), "status": None if self.status is None else dict(self.status)}


def _version_of(data: Mapping[str, Any] | None) -> Optional[str]:
    if not data:
        return None
    value = data.get("appVersion")
    if value is None or value == "":
        return None
    return str(value)


@dataclass(frozen=True)
class InitMessage:
    devices: Dict[str, DeviceState]
    type: str = INIT_TYPE

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "InitMessage":
        raw_devices = data.get("devices")
        if raw_devices is None:
            raw_devices = {}
        devices_map = _as_mapping(raw_devices, "init.devices")
        devices = {
            str(device_id): DeviceState.from_dict(entry, context=f"init.devices[{device_id}]")
            for device_id, entry in devices_map.items()
        }
        return cls(devices=devices)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "devices": {device_id: state.to_dict() for device_id, state in self.devices.items()},
        }


@dataclass(frozen=True)
class UpdateMessage:
    device: str
    state: DeviceState
    type: str = UPDATE_TYPE

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UpdateMessage":
        device = data.get("device")
        _require(isinstance(device, str) and bool(device), "update.device must be a non-empty string", data)
        return cls(device=device, state=DeviceState.from_dict(data, context="update"))

    def to_dict(self) -> Dict[str, Any]:
        body = self.state.to_dict()
        return {"type": self.type, "device": self.device, "spec": body["spec"], "status": body["status"]}


RelayedMessage = Union[InitMessage, UpdateMessage]


def decode_frame(raw: Union[str, bytes, bytearray]) -> Dict[str, Any]:
    """Decode a text frame into a JSON object."""

    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedMessage("frame is not valid UTF-8", payload=raw) from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedMessage(f"frame is not valid JSON: {exc.msg}", payload=raw) from exc
    if not isinstance(data, dict):
        raise MalformedMessage("frame must be a JSON object", payload=data)
    return data


def parse_relayed_message(data: Mapping[str, Any]) -> Optional[RelayedMessage]:
    """Return the typed message for *data*, or ``None`` for unknown types."""

    msg_type = data.get("type")
    if msg_type == INIT_TYPE:
        return InitMessage.from_dict(data)
    if msg_type == UPDATE_TYPE:
        return UpdateMessage.from_dict(data)
    return None


def encode_message(message: RelayedMessage) -> str:
    return json.dumps(message.to_dict(), separators=(",", ":"))
