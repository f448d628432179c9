from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from offline_resilience.cache.store import BucketKind
from offline_resilience.config.models import CacheSettings
from offline_resilience.core.models import HttpRequest
from offline_resilience.core.utils import is_http_url, url_path

logger = logging.getLogger(__name__)


class Strategy(str, Enum):
    NETWORK_FIRST = "network_first"
    CACHE_FIRST = "cache_first"
    STALE_WHILE_REVALIDATE = "stale_while_revalidate"
    NETWORK_ONLY_QUEUED = "network_only_queued"


@dataclass(frozen=True, slots=True)
class RouteDecision:
    strategy: Strategy
    bucket: Optional[BucketKind]
    # Whether a successful response may be written to the bucket.
    cacheable: bool


class PolicyRouter:
    def __init__(
        self,
        *,
        api_prefix: str,
        api_cache_patterns: Sequence[str],
        image_extensions: Sequence[str],
    ) -> None:
        self._api_prefix = api_prefix
        self._api_cache_patterns = [re.compile(p) for p in api_cache_patterns]
        self._image_extensions = frozenset(ext.lower().lstrip(".") for ext in image_extensions)

    @classmethod
    def from_settings(cls, settings: CacheSettings) -> PolicyRouter:
        return cls(
            api_prefix=settings.api_prefix,
            api_cache_patterns=settings.api_cache_patterns,
            image_extensions=settings.image_extensions,
        )

    def is_api_path(self, path: str) -> bool:
        return path.startswith(self._api_prefix)

    def is_cache_eligible(self, path: str) -> bool:
        return any(pattern.search(path) for pattern in self._api_cache_patterns)

    def is_image(self, request: HttpRequest, path: str) -> bool:
        if request.destination == "image":
            return True
        extension = posixpath.splitext(path)[1].lower().lstrip(".")
        return extension in self._image_extensions

    def determine_routing(self, request: HttpRequest) -> Optional[RouteDecision]:
        """Classify a request. Returns None for requests that must not be intercepted."""
        if not is_http_url(request.url):
            return None

        if request.is_mutating:
            return RouteDecision(Strategy.NETWORK_ONLY_QUEUED, None, cacheable=False)

        path = url_path(request.url)
        is_get = request.method.upper() == "GET"

        # Checked independently so an image under the API prefix is never mistaken for API data.
        api = self.is_api_path(path)
        api_cacheable = api and self.is_cache_eligible(path)
        image = self.is_image(request, path)

        if api_cacheable:
            return RouteDecision(Strategy.NETWORK_FIRST, "dynamic", cacheable=is_get)
        if image:
            return RouteDecision(Strategy.CACHE_FIRST, "image", cacheable=is_get)
        if api:
            return RouteDecision(Strategy.NETWORK_FIRST, "dynamic", cacheable=False)
        return RouteDecision(Strategy.STALE_WHILE_REVALIDATE, "dynamic", cacheable=is_get)
