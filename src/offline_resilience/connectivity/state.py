from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Literal, Optional, Protocol

logger = logging.getLogger(__name__)

InstallOutcome = Literal["accepted", "dismissed", "unavailable"]


class InstallState(str, Enum):
    NOT_INSTALLED = "not_installed"
    INSTALLABLE = "installable"
    INSTALLED = "installed"


class InstallPrompt(Protocol):
    """Install handle captured from the platform's before-install signal."""

    async def prompt(self) -> Literal["accepted", "dismissed"]:
        ...


@dataclass(frozen=True, slots=True)
class ConnectivitySnapshot:
    online: bool
    install_state: InstallState

    @property
    def is_offline(self) -> bool:
        return not self.online

    @property
    def is_installable(self) -> bool:
        return self.install_state is InstallState.INSTALLABLE

    @property
    def is_installed(self) -> bool:
        return self.install_state is InstallState.INSTALLED


StateListener = Callable[[ConnectivitySnapshot], None]
ReconnectHandler = Callable[[], Awaitable[object]]


class ConnectivityStateMachine:
    """
    Tracks online/offline and install-prompt state from platform signals.

    Only signals move the state; nothing is polled. Each offline -> online
    transition starts exactly one reconnect handler run.
    """

    def __init__(self, *, online: bool = True, on_reconnect: Optional[ReconnectHandler] = None) -> None:
        self._online = online
        self._install_state = InstallState.NOT_INSTALLED
        self._install_prompt: Optional[InstallPrompt] = None
        self._on_reconnect = on_reconnect
        self._listeners: list[StateListener] = []
        self._reconnect_task: Optional[asyncio.Task] = None

    @property
    def snapshot(self) -> ConnectivitySnapshot:
        return ConnectivitySnapshot(online=self._online, install_state=self._install_state)

    @property
    def online(self) -> bool:
        return self._online

    @property
    def install_state(self) -> InstallState:
        return self._install_state

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def set_online(self) -> bool:
        """Handle the platform "online" signal. Returns True if this was a transition."""
        if self._online:
            return False
        self._online = True
        logger.info("Connectivity restored.")
        self._notify()
        self._start_reconnect()
        return True

    def set_offline(self) -> bool:
        if not self._online:
            return False
        self._online = False
        logger.info("Connectivity lost, working offline.")
        self._notify()
        return True

    def before_install(self, prompt: InstallPrompt) -> None:
        if self._install_state is InstallState.INSTALLED:
            logger.debug("Ignoring install prompt, app is already installed.")
            return
        self._install_prompt = prompt
        self._install_state = InstallState.INSTALLABLE
        logger.info("App became installable.")
        self._notify()

    def mark_installed(self) -> None:
        self._install_prompt = None
        if self._install_state is InstallState.INSTALLED:
            return
        self._install_state = InstallState.INSTALLED
        logger.info("App installed.")
        self._notify()

    async def install_app(self) -> InstallOutcome:
        prompt = self._install_prompt
        if prompt is None:
            return "unavailable"
        try:
            outcome = await prompt.prompt()
        except Exception:
            logger.exception("Install prompt failed.")
            return "dismissed"
        logger.info("Install prompt answered. outcome=%s", outcome)
        if outcome == "accepted":
            self.mark_installed()
        return outcome

    def resume_replay(self) -> bool:
        """Start the reconnect handler while already online, unless one is running. Returns True if started."""
        if not self._online:
            return False
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return False
        self._start_reconnect()
        return self._reconnect_task is not None

    async def wait_for_reconnect(self) -> None:
        """Wait for the reconnect handler started by the last online transition, if any."""
        task = self._reconnect_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def stop(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.info("Reconnect handler cancelled during shutdown.")

    def _start_reconnect(self) -> None:
        if self._on_reconnect is None:
            return
        self._reconnect_task = asyncio.create_task(self._run_reconnect(self._on_reconnect), name="reconnect")

    async def _run_reconnect(self, handler: ReconnectHandler) -> None:
        try:
            await handler()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Reconnect handler failed.")

    def _notify(self) -> None:
        snapshot = self.snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Connectivity listener failed.")
