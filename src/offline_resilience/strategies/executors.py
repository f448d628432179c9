from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Coroutine, Optional
from urllib.parse import urljoin

from offline_resilience.cache.store import BucketKind, CacheStore, bucket_name, entry_from_response
from offline_resilience.core.errors import NetworkError
from offline_resilience.core.models import CacheEntry, HttpRequest, HttpResponse
from offline_resilience.core.utils import cache_key, url_path
from offline_resilience.network.fetcher import Fetcher
from offline_resilience.routing.router import RouteDecision, Strategy
from offline_resilience.sync.models import QueuedMutation
from offline_resilience.sync.queue import OfflineMutationQueue

logger = logging.getLogger(__name__)

PLACEHOLDER_IMAGE = (
    b'<svg xmlns="http://www.w3.org/2000/svg" width="64" height="64" viewBox="0 0 64 64">'
    b'<rect width="64" height="64" fill="#e5e7eb"/>'
    b'<path d="M14 46l12-16 9 11 6-7 9 12z" fill="#9ca3af"/>'
    b"</svg>"
)
QUEUED_HEADER = "X-Offline-Queued"


def _log_background_result(task: asyncio.Task) -> None:
    try:
        task.result()
    except asyncio.CancelledError:
        return
    except Exception:
        logger.exception("Background cache task failed unexpectedly. task=%s", task.get_name())


class StrategyExecutor:
    """Serves a classified request against one cache generation."""

    def __init__(
        self,
        *,
        store: CacheStore,
        fetcher: Fetcher,
        queue: OfflineMutationQueue,
        image_fallback_path: str = "",
        queue_tag: str = "mutation",
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._queue = queue
        self._image_fallback_path = image_fallback_path
        self._queue_tag = queue_tag
        self._background: set[asyncio.Task] = set()

    async def execute(self, request: HttpRequest, decision: RouteDecision, generation: str) -> HttpResponse:
        if decision.strategy is Strategy.NETWORK_ONLY_QUEUED:
            return await self.network_only_queued(request)
        assert decision.bucket is not None
        if decision.strategy is Strategy.NETWORK_FIRST:
            return await self.network_first(request, decision, generation)
        if decision.strategy is Strategy.CACHE_FIRST:
            return await self.cache_first(request, decision, generation)
        return await self.stale_while_revalidate(request, decision, generation)

    async def network_first(self, request: HttpRequest, decision: RouteDecision, generation: str) -> HttpResponse:
        assert decision.bucket is not None
        try:
            response = await self._fetcher.fetch(request)
        except NetworkError as e:
            cached = self._lookup(decision.bucket, generation, request.key)
            if cached is None:
                logger.info("Network failed with no cached copy. url=%s reason=%s", request.url, e.reason)
                raise
            logger.info("Network failed, serving cached copy. url=%s captured_at=%s", request.url, cached.captured_at)
            return cached.to_response()

        if response.ok and decision.cacheable:
            self._store_response(decision.bucket, generation, request.key, response)
        return response

    async def cache_first(self, request: HttpRequest, decision: RouteDecision, generation: str) -> HttpResponse:
        assert decision.bucket is not None
        cached = self._lookup(decision.bucket, generation, request.key)
        if cached is not None:
            return cached.to_response()

        try:
            response = await self._fetcher.fetch(request)
        except NetworkError as e:
            logger.info("Cache-first fetch failed, serving fallback. url=%s reason=%s", request.url, e.reason)
            return self._fallback_image(request, generation)

        if not response.ok:
            logger.info("Cache-first fetch returned an error, serving fallback. url=%s status=%s", request.url, response.status)
            return self._fallback_image(request, generation)
        if decision.cacheable:
            self._store_response(decision.bucket, generation, request.key, response)
        return response

    async def stale_while_revalidate(
        self, request: HttpRequest, decision: RouteDecision, generation: str
    ) -> HttpResponse:
        assert decision.bucket is not None
        cached = self._lookup(decision.bucket, generation, request.key)
        if cached is None and url_path(request.url) == "/":
            cached = self._lookup("static", generation, request.key)

        if cached is not None:
            if decision.cacheable:
                self._spawn(
                    self._revalidate(request, decision.bucket, generation),
                    name=f"revalidate {request.key}",
                )
            return cached.to_response()

        try:
            response = await self._fetcher.fetch(request)
        except NetworkError:
            if request.accepts_html():
                shell = self._app_shell(request, generation)
                if shell is not None:
                    logger.info("Offline navigation, serving app shell. url=%s", request.url)
                    return shell.to_response()
            raise

        if response.ok and decision.cacheable:
            self._store_response(decision.bucket, generation, request.key, response)
        return response

    async def network_only_queued(self, request: HttpRequest) -> HttpResponse:
        if self._queue.is_replaying or len(self._queue) > 0:
            # Sending now would let this mutation overtake older ones still waiting for replay.
            item = self._queue.enqueue(request, tag=self._queue_tag)
            logger.info("Mutation queued behind pending mutations. id=%s url=%s", item.id, request.url)
            if not self._queue.is_replaying:
                self._spawn(self._queue.replay(self._fetcher), name="replay pending mutations")
            return self._queued_response(request, item)
        try:
            return await self._fetcher.fetch(request)
        except NetworkError as e:
            item = self._queue.enqueue(request, tag=self._queue_tag)
            logger.info("Mutation deferred while offline. id=%s url=%s reason=%s", item.id, request.url, e.reason)
            return self._queued_response(request, item)

    def _queued_response(self, request: HttpRequest, item: QueuedMutation) -> HttpResponse:
        body = json.dumps({"queued": True, "id": item.id}).encode("utf-8")
        return HttpResponse(
            status=202,
            headers={"Content-Type": "application/json", QUEUED_HEADER: str(item.id)},
            body=body,
            url=request.url,
        )

    async def _revalidate(self, request: HttpRequest, kind: BucketKind, generation: str) -> None:
        try:
            response = await self._fetcher.fetch(request)
        except Exception as e:
            logger.debug("Background revalidation failed. url=%s error=%s", request.url, e)
            return
        if response.ok:
            self._store_response(kind, generation, request.key, response)

    def _spawn(self, coro: Coroutine[Any, Any, object], *, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        task.add_done_callback(_log_background_result)

    async def drain(self, *, timeout_seconds: float = 10.0) -> None:
        """Wait for detached refresh tasks, cancelling whatever is still running after the timeout."""
        if not self._background:
            return
        pending = list(self._background)
        _, still_running = await asyncio.wait(pending, timeout=timeout_seconds)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("Cancelled background cache tasks on shutdown. count=%d", len(still_running))
            await asyncio.gather(*still_running, return_exceptions=True)

    def _lookup(self, kind: BucketKind, generation: str, key: str) -> Optional[CacheEntry]:
        bucket = self._store.open_existing(bucket_name(kind, generation))
        if bucket is None:
            return None
        return bucket.get(key)

    def _store_response(self, kind: BucketKind, generation: str, key: str, response: HttpResponse) -> None:
        bucket = self._store.open_existing(bucket_name(kind, generation))
        if bucket is None:
            # The generation was retired while this request was in flight.
            logger.debug("Skipping cache write for retired generation. generation=%s key=%s", generation, key)
            return
        try:
            bucket.put(entry_from_response(key, response))
        except OSError:
            logger.warning("Failed to write cache entry. bucket=%s key=%s", bucket.name, key, exc_info=True)

    def _app_shell(self, request: HttpRequest, generation: str) -> Optional[CacheEntry]:
        root_key = cache_key("GET", urljoin(request.url, "/"))
        return self._store.match(
            root_key,
            [bucket_name("static", generation), bucket_name("dynamic", generation)],
        )

    def _fallback_image(self, request: HttpRequest, generation: str) -> HttpResponse:
        if self._image_fallback_path:
            fallback_key = cache_key("GET", urljoin(request.url, self._image_fallback_path))
            entry = self._store.match(
                fallback_key,
                [bucket_name("static", generation), bucket_name("image", generation)],
            )
            if entry is not None:
                return entry.to_response()
        return HttpResponse(
            status=200,
            headers={"Content-Type": "image/svg+xml", "Cache-Control": "no-store"},
            body=PLACEHOLDER_IMAGE,
            url=request.url,
        )
