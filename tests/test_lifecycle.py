import asyncio
import tempfile
import unittest
from pathlib import Path

from offline_resilience.cache import CacheStore, bucket_name
from offline_resilience.core.errors import ManifestFetchError
from offline_resilience.lifecycle import GenerationState, LifecycleManager

from tests.stubs import ORIGIN, StubFetcher, ok, url


class LifecycleManagerTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.store = CacheStore(Path(self._tmp.name) / "cache")
        self.fetcher = StubFetcher()
        self.fetcher.get("/", b"<html>shell</html>", content_type="text/html")
        self.fetcher.get("/login", b"<html>login</html>", content_type="text/html")

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _manager(self, manifest=("/", "/login"), **kwargs) -> LifecycleManager:
        return LifecycleManager(store=self.store, fetcher=self.fetcher, origin=ORIGIN, manifest=manifest, **kwargs)

    async def test_install_caches_every_manifest_entry(self) -> None:
        manager = self._manager()

        generation = await manager.register("v1")

        self.assertEqual(generation.state, GenerationState.ACTIVATED)
        static = self.store.open(bucket_name("static", "v1"))
        self.assertEqual(len(static.keys()), 2)
        self.assertEqual(self.store.current_generation(), "v1")
        self.assertEqual(
            self.store.list_buckets(),
            ["dynamic-v1", "image-v1", "static-v1"],
        )

    async def test_failed_manifest_fetch_rejects_install(self) -> None:
        manager = self._manager()
        await manager.register("v1")
        self.fetcher.reply("GET", url("/login"), ok(b"gone", status=404))

        with self.assertRaises(ManifestFetchError) as ctx:
            await manager.register("v2")

        self.assertEqual(ctx.exception.failed_paths, ["/login"])
        self.assertEqual(manager.active_version, "v1")
        self.assertIsNone(manager.waiting)
        self.assertNotIn("static-v2", self.store.list_buckets())
        self.assertEqual(self.store.current_generation(), "v1")

    async def test_activation_removes_other_generations(self) -> None:
        self.store.open("static-v0")
        self.store.open("image-v0")
        self.store.open("uzbek-talim-v1")
        manager = self._manager()

        await manager.register("v1")
        manager.connect_client()
        await manager.register("v2")
        await manager.skip_waiting()

        self.assertEqual(manager.active_version, "v2")
        self.assertEqual(self.store.list_buckets(), ["dynamic-v2", "image-v2", "static-v2"])

    async def test_new_version_waits_while_old_clients_are_connected(self) -> None:
        manager = self._manager()
        updates: list[str] = []
        manager.add_update_listener(updates.append)
        await manager.register("v1")
        first = manager.connect_client()
        second = manager.connect_client()

        await manager.register("v2")

        self.assertEqual(manager.active_version, "v1")
        assert manager.waiting is not None
        self.assertEqual(manager.waiting.state, GenerationState.INSTALLED)
        self.assertTrue(manager.update_available)
        self.assertEqual(updates, ["v2"])

        await manager.disconnect_client(first)
        self.assertEqual(manager.active_version, "v1")

        await manager.disconnect_client(second)
        self.assertEqual(manager.active_version, "v2")
        self.assertFalse(manager.update_available)

    async def test_skip_waiting_claims_connected_clients(self) -> None:
        manager = self._manager()
        await manager.register("v1")
        client = manager.connect_client()
        await manager.register("v2")

        self.assertEqual(manager.client_version(client), "v1")
        self.assertTrue(await manager.skip_waiting())

        self.assertEqual(manager.client_version(client), "v2")
        self.assertFalse(await manager.skip_waiting())

    async def test_skip_waiting_on_install(self) -> None:
        manager = self._manager(skip_waiting_on_install=True)
        await manager.register("v1")
        manager.connect_client()

        await manager.register("v2")

        self.assertEqual(manager.active_version, "v2")

    async def test_newer_install_replaces_waiting_generation(self) -> None:
        manager = self._manager()
        await manager.register("v1")
        manager.connect_client()
        await manager.register("v2")

        await manager.register("v3")

        assert manager.waiting is not None
        self.assertEqual(manager.waiting.version, "v3")
        self.assertNotIn("static-v2", self.store.list_buckets())

    async def test_registering_the_active_version_is_a_no_op(self) -> None:
        manager = self._manager()
        await manager.register("v1")
        calls = len(self.fetcher.calls)

        await manager.register("v1")

        self.assertEqual(len(self.fetcher.calls), calls)

    async def test_requests_wait_for_first_activation(self) -> None:
        manager = self._manager()
        waiter = asyncio.create_task(manager.wait_until_serving())
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        self.assertFalse(waiter.done())

        await manager.register("v1")

        self.assertEqual(await asyncio.wait_for(waiter, timeout=1), "v1")

    async def test_restore_resumes_persisted_generation(self) -> None:
        await self._manager().register("v1")

        restored = self._manager()

        self.assertEqual(restored.restore(), "v1")
        self.assertEqual(await restored.wait_until_serving(), "v1")

    async def test_restore_ignores_pointer_without_buckets(self) -> None:
        self.store.set_current_generation("v7")

        self.assertIsNone(self._manager().restore())


if __name__ == "__main__":
    unittest.main()
