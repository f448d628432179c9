from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from multidict import CIMultiDict

from offline_resilience.core.models import HttpRequest

SchemaVersion = 1


@dataclass(slots=True)
class QueuedMutation:
    id: int
    url: str
    method: str
    headers: CIMultiDict
    body: bytes
    enqueued_at: str
    attempt_count: int = 0
    tag: str = "mutation"

    def to_request(self) -> HttpRequest:
        return HttpRequest(method=self.method, url=self.url, headers=self.headers.copy(), body=self.body)


@dataclass(slots=True)
class ReplayResult:
    replayed: list[int] = field(default_factory=list)
    failed_id: Optional[int] = None
    remaining: int = 0
    # Another process held the replay lock, so nothing was sent.
    skipped: bool = False

    @property
    def completed(self) -> bool:
        return self.failed_id is None and not self.skipped
