from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence
from urllib.parse import urljoin

from offline_resilience.cache.store import BUCKET_KINDS, CacheStore, bucket_name, entry_from_response
from offline_resilience.core.errors import ManifestFetchError, NetworkError
from offline_resilience.core.models import HttpRequest, HttpResponse
from offline_resilience.network.fetcher import Fetcher

logger = logging.getLogger(__name__)

UpdateListener = Callable[[str], None]


class GenerationState(str, Enum):
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVATED = "activated"
    REDUNDANT = "redundant"


@dataclass(slots=True)
class Generation:
    version: str
    state: GenerationState


class LifecycleManager:
    """
    Owns cache generations for successive deployments.

    A registered version is installed (manifest pre-warmed into its static bucket),
    then either activated straight away or parked as waiting while clients of an
    older version are still connected. Activation deletes every bucket of other generations.

    Request dispatch waits on `wait_until_serving()`, which stays closed while no
    generation is active and for the whole duration of an activation.
    """

    def __init__(
        self,
        *,
        store: CacheStore,
        fetcher: Fetcher,
        origin: str,
        manifest: Sequence[str],
        skip_waiting_on_install: bool = False,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._origin = origin
        self._manifest = list(manifest)
        self._skip_waiting_on_install = skip_waiting_on_install

        self._active: Optional[Generation] = None
        self._waiting: Optional[Generation] = None
        self._transition_lock = asyncio.Lock()
        self._serving = asyncio.Event()
        self._clients: dict[str, str] = {}
        self._update_listeners: list[UpdateListener] = []

    @property
    def active(self) -> Optional[Generation]:
        return self._active

    @property
    def waiting(self) -> Optional[Generation]:
        return self._waiting

    @property
    def active_version(self) -> Optional[str]:
        return self._active.version if self._active else None

    @property
    def update_available(self) -> bool:
        return self._waiting is not None

    def add_update_listener(self, listener: UpdateListener) -> None:
        self._update_listeners.append(listener)

    def restore(self) -> Optional[str]:
        """Resume the generation recorded by a previous run, if its buckets survived."""
        version = self._store.current_generation()
        if version is None:
            return None
        if not self._store.has_bucket(bucket_name("static", version)):
            logger.warning("Recorded cache generation has no static bucket, ignoring it. version=%s", version)
            return None
        self._active = Generation(version=version, state=GenerationState.ACTIVATED)
        self._serving.set()
        logger.info("Restored active cache generation. version=%s", version)
        return version

    async def wait_until_serving(self) -> str:
        while True:
            await self._serving.wait()
            if self._active is not None and self._active.state is GenerationState.ACTIVATED:
                return self._active.version

    async def register(self, version: str) -> Generation:
        """Install a version and activate it now or leave it waiting."""
        if self._active is not None and self._active.version == version:
            logger.info("Generation already active, nothing to install. version=%s", version)
            return self._active
        if self._waiting is not None and self._waiting.version == version:
            return self._waiting

        generation = await self.install(version)

        if self._waiting is not None:
            replaced = self._waiting
            replaced.state = GenerationState.REDUNDANT
            self._delete_generation(replaced.version)
            logger.info("Waiting generation replaced by a newer one. old=%s new=%s", replaced.version, version)

        self._waiting = generation
        if self._active is None or self._skip_waiting_on_install or self._active_client_count() == 0:
            await self.activate()
            return generation

        logger.info(
            "New generation installed and waiting. version=%s active=%s clients=%d",
            version,
            self._active.version,
            self._active_client_count(),
        )
        for listener in list(self._update_listeners):
            try:
                listener(version)
            except Exception:
                logger.exception("Update listener failed. version=%s", version)
        return generation

    async def install(self, version: str) -> Generation:
        """Pre-warm the manifest into `static-<version>`. All manifest fetches must succeed."""
        generation = Generation(version=version, state=GenerationState.INSTALLING)
        logger.info("Installing cache generation. version=%s manifest_entries=%d", version, len(self._manifest))

        requests = [HttpRequest(method="GET", url=urljoin(self._origin, path)) for path in self._manifest]
        results = await asyncio.gather(*(self._fetcher.fetch(r) for r in requests), return_exceptions=True)

        failed: list[str] = []
        for path, result in zip(self._manifest, results):
            if isinstance(result, NetworkError):
                logger.warning("Manifest fetch failed. version=%s path=%s reason=%s", version, path, result.reason)
                failed.append(path)
            elif isinstance(result, BaseException):
                generation.state = GenerationState.REDUNDANT
                raise result
            elif not result.ok:
                logger.warning("Manifest fetch returned an error. version=%s path=%s status=%s", version, path, result.status)
                failed.append(path)

        if failed:
            generation.state = GenerationState.REDUNDANT
            raise ManifestFetchError(version, failed)

        try:
            static = self._store.open(bucket_name("static", version))
            for request, response in zip(requests, results):
                assert isinstance(response, HttpResponse)
                static.put(entry_from_response(request.key, response))
            for kind in BUCKET_KINDS:
                self._store.open(bucket_name(kind, version))
        except OSError:
            generation.state = GenerationState.REDUNDANT
            self._delete_generation(version)
            logger.exception("Failed to write manifest into the cache. version=%s", version)
            raise

        generation.state = GenerationState.INSTALLED
        logger.info("Cache generation installed. version=%s", version)
        return generation

    async def skip_waiting(self) -> bool:
        """Activate the waiting generation immediately. Returns False when nothing is waiting."""
        return await self._activate_waiting() is not None

    async def activate(self) -> Generation:
        generation = await self._activate_waiting()
        if generation is None:
            raise RuntimeError("No installed generation is waiting for activation.")
        return generation

    async def _activate_waiting(self) -> Optional[Generation]:
        async with self._transition_lock:
            generation = self._waiting
            if generation is None:
                return None

            self._serving.clear()
            try:
                generation.state = GenerationState.ACTIVATING
                logger.info("Activating cache generation. version=%s", generation.version)

                keep = self._generation_buckets(generation.version)
                removed = 0
                for name in self._store.list_buckets():
                    if name in keep:
                        continue
                    self._store.delete_bucket(name)
                    removed += 1
                    logger.info("Deleted stale cache bucket. bucket=%s", name)

                self._store.set_current_generation(generation.version)

                previous = self._active
                if previous is not None:
                    previous.state = GenerationState.REDUNDANT
                generation.state = GenerationState.ACTIVATED
                self._active = generation
                self._waiting = None

                claimed = self._claim_clients(generation.version)
                logger.info(
                    "Cache generation active. version=%s stale_buckets_removed=%d clients_claimed=%d",
                    generation.version,
                    removed,
                    claimed,
                )
                return generation
            finally:
                if self._active is not None:
                    self._serving.set()

    def connect_client(self, client_id: Optional[str] = None) -> str:
        """Attach a client to the active generation and return its id."""
        client_id = client_id or uuid.uuid4().hex
        if self._active is not None:
            self._clients[client_id] = self._active.version
        return client_id

    def client_version(self, client_id: str) -> Optional[str]:
        return self._clients.get(client_id)

    async def disconnect_client(self, client_id: str) -> None:
        self._clients.pop(client_id, None)
        if self._waiting is not None and self._active_client_count() == 0:
            logger.info(
                "Last client of the old generation closed, activating waiting generation. version=%s",
                self._waiting.version,
            )
            await self._activate_waiting()

    def _active_client_count(self) -> int:
        if self._active is None:
            return 0
        return sum(1 for version in self._clients.values() if version == self._active.version)

    def _claim_clients(self, version: str) -> int:
        for client_id in self._clients:
            self._clients[client_id] = version
        return len(self._clients)

    def _generation_buckets(self, version: str) -> set[str]:
        return {bucket_name(kind, version) for kind in BUCKET_KINDS}

    def _delete_generation(self, version: str) -> None:
        for name in self._generation_buckets(version):
            self._store.delete_bucket(name)
