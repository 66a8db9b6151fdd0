"""Console-side connection handling and reconciliation state."""

from __future__ import annotations

from .reconnect import ConnectionState, ReconnectionController
from .state_model import ReconciliationStateModel, Severity, SyncStatus

__all__ = ["ConnectionState", "ReconciliationStateModel", "ReconnectionController", "Severity", "SyncStatus"]
