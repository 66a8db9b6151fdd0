"""Startup snapshot of device blueprints.

Blueprints belong to the platform; the console reads them once at startup
through a :class:`BlueprintSource` and keys the resulting table by
``metadata.name``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Protocol, Union

from blueprint_relay.errors import MalformedMessage
from blueprint_relay.protocol import DeviceState

logger = logging.getLogger(__name__)

DEVICE_KIND = "DataLogger"


class BlueprintSource(Protocol):
    def get_blueprints(self, colony: str, kind: str) -> List[Dict[str, Any]]: ...


class JsonFileBlueprintSource:
    """Blueprints exported to a JSON file (a list, or ``{"blueprints": [...]}``)."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def get_blueprints(self, colony: str, kind: str) -> List[Dict[str, Any]]:
        with self.path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        if isinstance(data, Mapping):
            data = data.get("blueprints") or []
        if not isinstance(data, list):
            raise MalformedMessage(f"{self.path}: expected a list of blueprints", payload=data)
        return [bp for bp in data if isinstance(bp, Mapping) and bp.get("kind", kind) == kind]


def devices_from_blueprints(blueprints: Iterable[Mapping[str, Any]]) -> Dict[str, DeviceState]:
    devices: Dict[str, DeviceState] = {}
    for bp in blueprints:
        metadata = bp.get("metadata") or {}
        name = metadata.get("name") if isinstance(metadata, Mapping) else None
        if not name:
            logger.debug("skipping blueprint without metadata.name")
            continue
        devices[str(name)] = DeviceState.from_dict(bp, context=f"blueprint[{name}]")
    return devices


__all__ = ["DEVICE_KIND", "BlueprintSource", "JsonFileBlueprintSource", "devices_from_blueprints"]
