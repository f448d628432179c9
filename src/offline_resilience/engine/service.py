from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from offline_resilience.cache.store import CacheStore
from offline_resilience.config.models import AppConfig
from offline_resilience.connectivity.state import (
    ConnectivitySnapshot,
    ConnectivityStateMachine,
    InstallOutcome,
    InstallPrompt,
    InstallState,
)
from offline_resilience.core.errors import ManifestFetchError
from offline_resilience.core.models import HttpRequest, HttpResponse
from offline_resilience.engine.events import (
    ActivateEvent,
    ConnectivityChangeEvent,
    EngineEvent,
    EventKind,
    FetchEvent,
    InstallEvent,
)
from offline_resilience.lifecycle.manager import LifecycleManager
from offline_resilience.network.fetcher import Fetcher
from offline_resilience.routing.router import PolicyRouter
from offline_resilience.strategies.executors import StrategyExecutor
from offline_resilience.sync.models import ReplayResult
from offline_resilience.sync.queue import OfflineMutationQueue

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EngineStatus:
    online: bool
    install_state: InstallState
    update_available: bool
    active_version: Optional[str]
    waiting_version: Optional[str]
    queued_mutations: int
    replaying: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "online": self.online,
            "offline": not self.online,
            "install_state": self.install_state.value,
            "installable": self.install_state is InstallState.INSTALLABLE,
            "installed": self.install_state is InstallState.INSTALLED,
            "update_available": self.update_available,
            "active_version": self.active_version,
            "waiting_version": self.waiting_version,
            "queued_mutations": self.queued_mutations,
            "replaying": self.replaying,
        }


StatusListener = Callable[[EngineStatus], None]


class OfflineEngine:
    """
    Caching proxy between the application and its backend.

    Built explicitly from configuration and collaborators; `start()` restores or
    installs the cache generation and `stop()` drains background work. All input
    arrives through `dispatch()` as tagged events.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        fetcher: Fetcher,
        store: Optional[CacheStore] = None,
        queue: Optional[OfflineMutationQueue] = None,
        online: Optional[bool] = None,
        on_reload: Optional[Callable[[], None]] = None,
    ) -> None:
        self._config = config
        self._fetcher = fetcher
        self._store = store or CacheStore(Path(config.cache.root_dir))
        self._queue = queue or OfflineMutationQueue(Path(config.queue.path))
        self._on_reload = on_reload
        self._router = PolicyRouter.from_settings(config.cache)
        self._executor = StrategyExecutor(
            store=self._store,
            fetcher=fetcher,
            queue=self._queue,
            image_fallback_path=config.cache.image_fallback_path,
            queue_tag=config.queue.tag,
        )
        self._lifecycle = LifecycleManager(
            store=self._store,
            fetcher=fetcher,
            origin=config.app.origin,
            manifest=config.cache.manifest,
            skip_waiting_on_install=config.cache.skip_waiting_on_install,
        )
        start_online = config.server.start_online if online is None else online
        self._connectivity = ConnectivityStateMachine(online=start_online, on_reconnect=self.replay)
        self._status_listeners: list[StatusListener] = []
        self._connectivity.add_listener(self._on_connectivity_change)
        self._lifecycle.add_update_listener(self._on_update_found)
        self._started = False

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def queue(self) -> OfflineMutationQueue:
        return self._queue

    @property
    def lifecycle(self) -> LifecycleManager:
        return self._lifecycle

    @property
    def connectivity(self) -> ConnectivityStateMachine:
        return self._connectivity

    @property
    def router(self) -> PolicyRouter:
        return self._router

    @property
    def executor(self) -> StrategyExecutor:
        return self._executor

    async def start(self) -> None:
        if self._started:
            return
        restored = self._lifecycle.restore()
        try:
            await self._lifecycle.register(self._config.app.version)
        except ManifestFetchError:
            if restored is None:
                raise
            logger.exception(
                "Install failed, continuing with the previous cache generation. active=%s attempted=%s",
                restored,
                self._config.app.version,
            )
        self._started = True
        pending = len(self._queue)
        if pending and self._connectivity.online:
            logger.info("Replaying mutations left from a previous run. pending=%d", pending)
            self._connectivity.resume_replay()
        logger.info(
            "Offline engine started. active=%s waiting=%s queued_mutations=%d online=%s",
            self._lifecycle.active_version,
            self._lifecycle.waiting.version if self._lifecycle.waiting else None,
            len(self._queue),
            self._connectivity.online,
        )

    async def stop(self) -> None:
        await self._connectivity.stop()
        await self._executor.drain()
        self._started = False
        logger.info("Offline engine stopped.")

    async def dispatch(self, event: EngineEvent) -> Any:
        if event.kind is EventKind.FETCH:
            assert isinstance(event, FetchEvent)
            return await self.handle_fetch(event.request)
        if event.kind is EventKind.INSTALL:
            assert isinstance(event, InstallEvent)
            return await self._lifecycle.register(event.version or self._config.app.version)
        if event.kind is EventKind.ACTIVATE:
            assert isinstance(event, ActivateEvent)
            return await self._lifecycle.skip_waiting()
        if event.kind is EventKind.CONNECTIVITY_CHANGE:
            assert isinstance(event, ConnectivityChangeEvent)
            if event.online:
                self._connectivity.set_online()
            else:
                self._connectivity.set_offline()
            return self._connectivity.snapshot
        raise ValueError(f"Unsupported engine event: {event!r}")

    async def handle_fetch(self, request: HttpRequest) -> Optional[HttpResponse]:
        """
        Serve one intercepted request.

        Returns None when the request is not ours to intercept. Raises NetworkError
        only when neither the network nor the cache can answer.
        """
        decision = self._router.determine_routing(request)
        if decision is None:
            logger.debug("Passing request through. method=%s url=%s", request.method, request.url)
            return None
        generation = await self._lifecycle.wait_until_serving()
        logger.debug(
            "Routing request. method=%s url=%s strategy=%s generation=%s",
            request.method,
            request.url,
            decision.strategy.value,
            generation,
        )
        return await self._executor.execute(request, decision, generation)

    async def replay(self) -> ReplayResult:
        result = await self._queue.replay(self._fetcher)
        self._emit_status()
        return result

    async def install_app(self) -> InstallOutcome:
        return await self._connectivity.install_app()

    def before_install(self, prompt: InstallPrompt) -> None:
        self._connectivity.before_install(prompt)

    def mark_installed(self) -> None:
        self._connectivity.mark_installed()

    async def update_app(self) -> bool:
        """Activate a waiting generation, then ask the application to reload."""
        activated = await self._lifecycle.skip_waiting()
        if self._on_reload is not None:
            self._on_reload()
        self._emit_status()
        return activated

    def status(self) -> EngineStatus:
        snapshot = self._connectivity.snapshot
        waiting = self._lifecycle.waiting
        return EngineStatus(
            online=snapshot.online,
            install_state=snapshot.install_state,
            update_available=self._lifecycle.update_available,
            active_version=self._lifecycle.active_version,
            waiting_version=waiting.version if waiting else None,
            queued_mutations=len(self._queue),
            replaying=self._queue.is_replaying,
        )

    def add_status_listener(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    def _on_connectivity_change(self, snapshot: ConnectivitySnapshot) -> None:
        _ = snapshot
        self._emit_status()

    def _on_update_found(self, version: str) -> None:
        logger.info("Update available. version=%s", version)
        self._emit_status()

    def _emit_status(self) -> None:
        if not self._status_listeners:
            return
        status = self.status()
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("Status listener failed.")
