"""
blueprint-relay: real-time desired/actual state relay

The relay bridges an operator console's websocket to the reconciliation
engine's event stream on a single port. The console side consumes the relayed
frames and derives sync status and an activity history per device.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
