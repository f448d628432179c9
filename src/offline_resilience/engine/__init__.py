"""Engine service and the tagged events it dispatches."""

from offline_resilience.engine.events import (
    ActivateEvent,
    ConnectivityChangeEvent,
    EngineEvent,
    EventKind,
    FetchEvent,
    InstallEvent,
)
from offline_resilience.engine.service import EngineStatus, OfflineEngine

__all__ = [
    "ActivateEvent",
    "ConnectivityChangeEvent",
    "EngineEvent",
    "EngineStatus",
    "EventKind",
    "FetchEvent",
    "InstallEvent",
    "OfflineEngine",
]
