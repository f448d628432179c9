from __future__ import annotations

import asyncio
import fcntl
import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator, Optional

from offline_resilience.cache.io import atomic_write_json, decode_body, decode_headers, encode_body, encode_headers
from offline_resilience.core.errors import NetworkError
from offline_resilience.core.models import HttpRequest
from offline_resilience.core.utils import format_rfc3339, utc_now
from offline_resilience.network.fetcher import Fetcher
from offline_resilience.sync.models import QueuedMutation, ReplayResult, SchemaVersion

logger = logging.getLogger(__name__)


def _encode_mutation(item: QueuedMutation) -> dict:
    return {
        "id": item.id,
        "url": item.url,
        "method": item.method,
        "headers": encode_headers(item.headers),
        "body": encode_body(item.body),
        "enqueued_at": item.enqueued_at,
        "attempt_count": item.attempt_count,
        "tag": item.tag,
    }


def _decode_mutation(payload: dict) -> QueuedMutation:
    return QueuedMutation(
        id=int(payload["id"]),
        url=payload["url"],
        method=payload["method"],
        headers=decode_headers(payload.get("headers", [])),
        body=decode_body(payload.get("body", "")),
        enqueued_at=payload["enqueued_at"],
        attempt_count=int(payload.get("attempt_count", 0)),
        tag=payload.get("tag", "mutation"),
    )


@contextmanager
def _exclusive(lock_path: Path) -> Iterator[None]:
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with open(lock_path, "a+b") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def _try_exclusive(lock_path: Path) -> Optional[IO[bytes]]:
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    handle = open(lock_path, "a+b")
    try:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        handle.close()
        return None
    return handle


def _release(handle: IO[bytes]) -> None:
    try:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    finally:
        handle.close()


class OfflineMutationQueue:
    """
    Durable FIFO queue of mutating requests that could not reach the network.

    The whole queue lives in one JSON document rewritten atomically on every change,
    together with the next id so ids stay monotonic across restarts.

    Several processes may share the file (a running proxy and the CLI). Every read or
    change reloads the document under an exclusive `flock` on `<path>.lock`, and a
    replay pass holds `<path>.replay.lock` so only one process sends mutations at a time.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock_path = self._path.with_name(self._path.name + ".lock")
        self._replay_lock_path = self._path.with_name(self._path.name + ".replay.lock")
        self._replay_lock = asyncio.Lock()
        self._items: list[QueuedMutation] = []
        self._next_id = 1
        with _exclusive(self._lock_path):
            self._load()
        if self._items:
            logger.info("Loaded offline mutation queue. path=%s pending=%d", self._path, len(self._items))

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with _exclusive(self._lock_path):
            self._load()
            yield

    def _load(self) -> None:
        if not self._path.exists():
            self._items = []
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.exception("Failed to read offline mutation queue. path=%s", self._path)
            raise
        schema_version = int(payload.get("schema_version", SchemaVersion))
        if schema_version != SchemaVersion:
            raise ValueError(
                f"Unsupported offline queue schema version {schema_version} in {self._path}"
            )
        self._items = [_decode_mutation(item) for item in payload.get("items", [])]
        self._items.sort(key=lambda item: item.id)
        highest = self._items[-1].id if self._items else 0
        self._next_id = max(int(payload.get("next_id", 1)), highest + 1, self._next_id)

    def _persist(self) -> None:
        atomic_write_json(
            self._path,
            {
                "schema_version": SchemaVersion,
                "next_id": self._next_id,
                "items": [_encode_mutation(item) for item in self._items],
            },
        )

    def __len__(self) -> int:
        with self._locked():
            return len(self._items)

    def pending(self) -> list[QueuedMutation]:
        with self._locked():
            return list(self._items)

    @property
    def is_replaying(self) -> bool:
        return self._replay_lock.locked()

    def enqueue(self, request: HttpRequest, *, tag: str = "mutation") -> QueuedMutation:
        with self._locked():
            item = QueuedMutation(
                id=self._next_id,
                url=request.url,
                method=request.method.upper(),
                headers=request.headers.copy(),
                body=request.body,
                enqueued_at=format_rfc3339(utc_now()),
                tag=tag,
            )
            self._next_id += 1
            self._items.append(item)
            self._persist()
            pending = len(self._items)
        logger.info(
            "Queued mutation for replay. id=%s method=%s url=%s pending=%d",
            item.id,
            item.method,
            item.url,
            pending,
        )
        return item

    def remove(self, mutation_id: int) -> bool:
        with self._locked():
            remaining = [item for item in self._items if item.id != mutation_id]
            if len(remaining) == len(self._items):
                return False
            self._items = remaining
            self._persist()
            return True

    def clear(self) -> int:
        with self._locked():
            count = len(self._items)
            self._items = []
            self._persist()
            return count

    async def replay(self, fetcher: Fetcher) -> ReplayResult:
        """
        Re-issue queued mutations in enqueue order.

        Only a 2xx response removes a mutation. Anything else stops the pass so later
        mutations never overtake an earlier one; the next reconnect retries the whole pass.
        """
        async with self._replay_lock:
            handle = _try_exclusive(self._replay_lock_path)
            if handle is None:
                logger.info("Offline mutation replay already running in another process. path=%s", self._path)
                return ReplayResult(remaining=len(self), skipped=True)
            try:
                return await self._replay_locked(fetcher)
            finally:
                _release(handle)

    def _next_attempt(self) -> Optional[QueuedMutation]:
        with self._locked():
            if not self._items:
                return None
            item = self._items[0]
            item.attempt_count += 1
            self._persist()
            return item

    async def _replay_locked(self, fetcher: Fetcher) -> ReplayResult:
        result = ReplayResult()
        item = self._next_attempt()
        if item is None:
            return result

        logger.info("Replaying offline mutations. path=%s", self._path)
        while item is not None:
            try:
                response = await fetcher.fetch(item.to_request())
                succeeded = response.ok
                detail = f"status={response.status}"
            except NetworkError as e:
                succeeded = False
                detail = f"error={e.reason}"

            if not succeeded:
                result.failed_id = item.id
                logger.warning(
                    "Mutation replay failed, pausing until next reconnect. id=%s method=%s url=%s attempt=%d %s",
                    item.id,
                    item.method,
                    item.url,
                    item.attempt_count,
                    detail,
                )
                break

            self.remove(item.id)
            result.replayed.append(item.id)
            logger.info("Replayed mutation. id=%s method=%s url=%s %s", item.id, item.method, item.url, detail)
            item = self._next_attempt()

        result.remaining = len(self)
        logger.info(
            "Offline mutation replay pass finished. replayed=%d remaining=%d",
            len(result.replayed),
            result.remaining,
        )
        return result
