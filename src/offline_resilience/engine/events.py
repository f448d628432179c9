from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from offline_resilience.core.models import HttpRequest


class EventKind(str, Enum):
    INSTALL = "install"
    ACTIVATE = "activate"
    FETCH = "fetch"
    CONNECTIVITY_CHANGE = "connectivity_change"


@dataclass(frozen=True, slots=True)
class InstallEvent:
    # Defaults to the configured application version.
    version: Optional[str] = None

    @property
    def kind(self) -> EventKind:
        return EventKind.INSTALL


@dataclass(frozen=True, slots=True)
class ActivateEvent:
    @property
    def kind(self) -> EventKind:
        return EventKind.ACTIVATE


@dataclass(frozen=True, slots=True)
class FetchEvent:
    request: HttpRequest

    @property
    def kind(self) -> EventKind:
        return EventKind.FETCH


@dataclass(frozen=True, slots=True)
class ConnectivityChangeEvent:
    online: bool

    @property
    def kind(self) -> EventKind:
        return EventKind.CONNECTIVITY_CHANGE


EngineEvent = Union[InstallEvent, ActivateEvent, FetchEvent, ConnectivityChangeEvent]
