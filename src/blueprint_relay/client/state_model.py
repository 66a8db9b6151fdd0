"""Reducer over relayed ``init``/``update`` messages for the console.

The model holds the last desired/actual pair per device and a bounded activity
history. Pairs are only ever replaced whole. Activity entries are appended at
the head in delivery order and are never retracted or de-duplicated, so a
duplicated ``update`` produces the same pair and logs its entries twice.
"""

from __future__ import annotations

import enum
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Iterator, List, Mapping, Optional, Tuple

from blueprint_relay.protocol import DeviceState, InitMessage, RelayedMessage, UpdateMessage

logger = logging.getLogger(__name__)

HISTORY_CAPACITY = 50


class Severity(str, enum.Enum):
    INFO = "info"
    SUCCESS = "success"
    RECONCILING = "reconciling"
    ERROR = "error"


class SyncStatus(str, enum.Enum):
    UNKNOWN = "unknown"
    SYNCED = "synced"
    PENDING = "pending"


@dataclass(frozen=True)
class ActivityEntry:
    timestamp: float
    message: str
    severity: Severity = Severity.INFO

    @property
    def time_label(self) -> str:
        return time.strftime("%H:%M:%S", time.localtime(self.timestamp))


ActivityListener = Callable[[ActivityEntry], None]


class ActivityLog:
    """Newest-first history holding at most ``capacity`` entries."""

    def __init__(self, capacity: int = HISTORY_CAPACITY, *, time_fn: Callable[[], float] = time.time) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = int(capacity)
        self._entries: Deque[ActivityEntry] = deque(maxlen=self.capacity)
        self._time_fn = time_fn
        self._listeners: List[ActivityListener] = []

    def add_listener(self, listener: ActivityListener) -> None:
        self._listeners.append(listener)

    def append(self, message: str, severity: Severity = Severity.INFO) -> ActivityEntry:
        entry = ActivityEntry(self._time_fn(), message, severity)
        self._entries.appendleft(entry)
        logger.debug("activity [%s] %s", severity.value, message)
        for listener in list(self._listeners):
            listener(entry)
        return entry

    @property
    def head(self) -> Optional[ActivityEntry]:
        return self._entries[0] if self._entries else None

    def entries(self) -> Tuple[ActivityEntry, ...]:
        return tuple(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ActivityEntry]:
        return iter(tuple(self._entries))


def compute_sync_status(state: DeviceState) -> SyncStatus:
    if state.status is None:
        return SyncStatus.UNKNOWN
    if state.desired_version == state.actual_version:
        return SyncStatus.SYNCED
    return SyncStatus.PENDING


@dataclass(frozen=True)
class DeviceView:
    device_id: str
    state: DeviceState
    sync_status: SyncStatus


StateListener = Callable[[DeviceView], None]


class ReconciliationStateModel:
    def __init__(self, capacity: int = HISTORY_CAPACITY, *, time_fn: Callable[[], float] = time.time) -> None:
        self.log = ActivityLog(capacity, time_fn=time_fn)
        self._devices: Dict[str, DeviceState] = {}
        self._listeners: List[StateListener] = []
        self._pulse_hooks: List[Callable[[], None]] = []
        self._removal_listeners: List[Callable[[str], None]] = []
        self._stream_seen = False
        self._snapshot_applied = False

    # --- observers ------------------------------------------------------------------
    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def add_pulse_hook(self, hook: Callable[[], None]) -> None:
        self._pulse_hooks.append(hook)

    def add_removal_listener(self, listener: Callable[[str], None]) -> None:
        """Register *listener* for devices dropped by an ``init`` table."""

        self._removal_listeners.append(listener)

    # --- queries --------------------------------------------------------------------
    @property
    def devices(self) -> Dict[str, DeviceState]:
        return dict(self._devices)

    def get(self, device_id: str) -> Optional[DeviceState]:
        return self._devices.get(device_id)

    def sync_status(self, device_id: str) -> SyncStatus:
        state = self._devices.get(device_id)
        if state is None:
            return SyncStatus.UNKNOWN
        return compute_sync_status(state)

    def view(self, device_id: str) -> Optional[DeviceView]:
        state = self._devices.get(device_id)
        if state is None:
            return None
        return DeviceView(device_id, state, compute_sync_status(state))

    # --- inputs ---------------------------------------------------------------------
    def apply_snapshot(self, devices: Mapping[str, DeviceState]) -> bool:
        """Seed the table from a REST snapshot.

        Applied at most once, and only if no stream message has arrived yet.
        """

        if self._snapshot_applied or self._stream_seen:
            logger.debug("snapshot ignored (applied=%s stream=%s)", self._snapshot_applied, self._stream_seen)
            return False
        self._snapshot_applied = True
        for device_id, state in devices.items():
            self._replace(device_id, state)
        return True

    def apply(self, message: RelayedMessage) -> None:
        if isinstance(message, InitMessage):
            self.apply_init(message)
        elif isinstance(message, UpdateMessage):
            self.apply_update(message)
        else:
            raise TypeError(f"unsupported message: {type(message).__name__}")

    def apply_init(self, message: InitMessage) -> None:
        self._stream_seen = True
        for device_id in [key for key in self._devices if key not in message.devices]:
            del self._devices[device_id]
            for listener in list(self._removal_listeners):
                listener(device_id)
        if message.devices:
            self.log.append("Connected - received device state")
        for device_id, state in message.devices.items():
            self._replace(device_id, state)

    def apply_update(self, message: UpdateMessage) -> None:
        self._stream_seen = True
        self.log.append(f"State updated: {message.device}", Severity.SUCCESS)
        self._replace(message.device, message.state)

    def reset(self) -> None:
        """Drop all in-memory state, as a page reload does."""

        self._devices.clear()
        self.log.clear()
        self._stream_seen = False
        self._snapshot_applied = False

    # --- reducer --------------------------------------------------------------------
    def _replace(self, device_id: str, state: DeviceState) -> None:
        previous = self._devices.get(device_id)
        self._devices[device_id] = state

        old_desired = previous.desired_version if previous is not None else None
        new_desired = state.desired_version
        new_actual = state.actual_version
        desired_changed = old_desired is not None and new_desired is not None and old_desired != new_desired
        if desired_changed:
            self.log.append(f"Desired version: v{old_desired} → v{new_desired}")

        status = compute_sync_status(state)
        if status is SyncStatus.SYNCED:
            if previous is not None and (desired_changed or self._actual_converged(previous, state)):
                self.log.append(f"Deployed v{new_desired} ✓", Severity.SUCCESS)
        elif new_actual is not None and new_actual != new_desired:
            self.log.append(f"Reconciling: v{new_actual} → v{new_desired}", Severity.RECONCILING)

        view = DeviceView(device_id, state, status)
        for listener in list(self._listeners):
            listener(view)
        for hook in list(self._pulse_hooks):
            hook()

    @staticmethod
    def _actual_converged(previous: DeviceState, state: DeviceState) -> bool:
        # The actual version moved onto the desired one since the last pair.
        return (
            compute_sync_status(previous) is not SyncStatus.SYNCED
            and previous.actual_version != state.actual_version
        )


__all__ = [
    "HISTORY_CAPACITY",
    "ActivityEntry",
    "ActivityLog",
    "DeviceView",
    "ReconciliationStateModel",
    "Severity",
    "SyncStatus",
    "compute_sync_status",
]
