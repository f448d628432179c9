from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Tuple, Union

from multidict import CIMultiDict

from offline_resilience.core.utils import cache_key

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

HeadersInput = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


def to_headers(value: Optional[HeadersInput]) -> CIMultiDict:
    """Copy headers into a case-insensitive multidict; repeated names such as Set-Cookie keep every value."""
    if value is None:
        return CIMultiDict()
    return CIMultiDict(value)


@dataclass(slots=True)
class HttpRequest:
    method: str
    url: str
    headers: CIMultiDict = field(default_factory=CIMultiDict)
    body: bytes = b""
    # Declared resource type of the request, e.g. "image" or "document".
    destination: str = ""
    client_id: Optional[str] = None

    def __post_init__(self) -> None:
        self.headers = to_headers(self.headers)

    @property
    def key(self) -> str:
        return cache_key(self.method, self.url)

    @property
    def is_mutating(self) -> bool:
        return self.method.upper() in MUTATING_METHODS

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name)

    def accepts_html(self) -> bool:
        if self.destination == "document":
            return True
        accept = self.header("Accept") or ""
        return "text/html" in accept


@dataclass(slots=True)
class HttpResponse:
    status: int
    headers: CIMultiDict = field(default_factory=CIMultiDict)
    body: bytes = b""
    url: str = ""

    def __post_init__(self) -> None:
        self.headers = to_headers(self.headers)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name)


@dataclass(frozen=True, slots=True)
class CacheEntry:
    key: str
    url: str
    status: int
    headers: CIMultiDict
    body: bytes
    captured_at: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", to_headers(self.headers))

    def to_response(self) -> HttpResponse:
        return HttpResponse(status=self.status, headers=self.headers.copy(), body=self.body, url=self.url)
