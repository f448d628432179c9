import asyncio
import unittest

from offline_resilience.connectivity import ConnectivitySnapshot, ConnectivityStateMachine, InstallState


class _Prompt:
    def __init__(self, outcome: str = "accepted", error: Exception | None = None) -> None:
        self.outcome = outcome
        self.error = error
        self.prompted = 0

    async def prompt(self):
        self.prompted += 1
        if self.error is not None:
            raise self.error
        return self.outcome


class ConnectivityStateMachineTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.replays = 0

        async def on_reconnect() -> None:
            self.replays += 1

        self.snapshots: list[ConnectivitySnapshot] = []
        self.machine = ConnectivityStateMachine(online=False, on_reconnect=on_reconnect)
        self.machine.add_listener(self.snapshots.append)

    async def test_online_transition_triggers_replay_once(self) -> None:
        self.assertTrue(self.machine.set_online())
        self.assertFalse(self.machine.set_online())
        await self.machine.wait_for_reconnect()

        self.assertEqual(self.replays, 1)

        self.machine.set_offline()
        self.machine.set_online()
        await self.machine.wait_for_reconnect()

        self.assertEqual(self.replays, 2)

    async def test_reading_state_does_not_trigger_replay(self) -> None:
        self.machine.set_online()
        await self.machine.wait_for_reconnect()
        for _ in range(3):
            self.assertTrue(self.machine.snapshot.online)
            self.assertTrue(self.machine.online)

        self.assertEqual(self.replays, 1)

    async def test_resume_replay_only_while_online(self) -> None:
        self.assertFalse(self.machine.resume_replay())
        self.assertEqual(self.replays, 0)

        self.machine.set_online()
        await self.machine.wait_for_reconnect()
        self.assertTrue(self.machine.resume_replay())
        await self.machine.wait_for_reconnect()

        self.assertEqual(self.replays, 2)

    async def test_offline_signal_flips_state(self) -> None:
        self.machine.set_online()
        self.machine.set_offline()

        self.assertTrue(self.machine.snapshot.is_offline)
        self.assertEqual([s.online for s in self.snapshots], [True, False])

    async def test_reconnect_handler_errors_are_contained(self) -> None:
        async def failing() -> None:
            raise RuntimeError("replay blew up")

        machine = ConnectivityStateMachine(online=False, on_reconnect=failing)
        machine.set_online()
        await machine.wait_for_reconnect()

        self.assertTrue(machine.online)

    async def test_install_prompt_accepted(self) -> None:
        prompt = _Prompt("accepted")

        self.machine.before_install(prompt)
        self.assertEqual(self.machine.install_state, InstallState.INSTALLABLE)

        outcome = await self.machine.install_app()

        self.assertEqual(outcome, "accepted")
        self.assertEqual(self.machine.install_state, InstallState.INSTALLED)
        self.assertEqual(await self.machine.install_app(), "unavailable")
        self.assertEqual(prompt.prompted, 1)

    async def test_install_prompt_dismissed_keeps_installable(self) -> None:
        self.machine.before_install(_Prompt("dismissed"))

        self.assertEqual(await self.machine.install_app(), "dismissed")
        self.assertEqual(self.machine.install_state, InstallState.INSTALLABLE)

    async def test_install_prompt_error_counts_as_dismissed(self) -> None:
        self.machine.before_install(_Prompt(error=RuntimeError("no user gesture")))

        self.assertEqual(await self.machine.install_app(), "dismissed")
        self.assertEqual(self.machine.install_state, InstallState.INSTALLABLE)

    async def test_install_without_prompt_is_unavailable(self) -> None:
        self.assertEqual(await self.machine.install_app(), "unavailable")
        self.assertEqual(self.machine.install_state, InstallState.NOT_INSTALLED)

    async def test_installed_signal_forces_installed(self) -> None:
        self.machine.mark_installed()
        self.assertTrue(self.machine.snapshot.is_installed)

        self.machine.before_install(_Prompt())
        self.assertEqual(self.machine.install_state, InstallState.INSTALLED)

    async def test_stop_cancels_pending_reconnect(self) -> None:
        started = asyncio.Event()

        async def slow() -> None:
            started.set()
            await asyncio.sleep(60)

        machine = ConnectivityStateMachine(online=False, on_reconnect=slow)
        machine.set_online()
        await started.wait()

        await machine.stop()


if __name__ == "__main__":
    unittest.main()
