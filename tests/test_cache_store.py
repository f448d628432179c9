import tempfile
import unittest
from pathlib import Path

from offline_resilience.cache import CacheStore, bucket_name, generation_of
from offline_resilience.core.errors import InvalidBucketNameError
from offline_resilience.core.models import CacheEntry
from offline_resilience.core.utils import cache_key


def _entry(key: str, body: bytes = b"payload") -> CacheEntry:
    return CacheEntry(
        key=key,
        url=key.split(" ", 1)[1],
        status=200,
        headers={"Content-Type": "text/plain"},
        body=body,
        captured_at="2026-01-01T00:00:00Z",
    )


class CacheKeyTests(unittest.TestCase):
    def test_cache_key_is_canonical(self) -> None:
        self.assertEqual(
            cache_key("get", "HTTP://Example.COM:80/api/tests?id=1#frag"),
            "GET http://example.com/api/tests?id=1",
        )
        self.assertEqual(cache_key("GET", "https://example.com"), "GET https://example.com/")
        self.assertEqual(cache_key("GET", "https://example.com:8443/x"), "GET https://example.com:8443/x")

    def test_generation_tag_parsing(self) -> None:
        self.assertEqual(bucket_name("static", "v2"), "static-v2")
        self.assertEqual(generation_of("dynamic-v2"), "v2")
        self.assertEqual(generation_of("image-1.4.0"), "1.4.0")
        self.assertIsNone(generation_of("uzbek-talim"))
        self.assertIsNone(generation_of("static-"))


class CacheStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.store = CacheStore(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_put_get_and_overwrite(self) -> None:
        bucket = self.store.open("dynamic-v1")
        key = cache_key("GET", "http://origin.test/dashboard")

        self.assertIsNone(bucket.get(key))
        bucket.put(_entry(key, b"first"))
        bucket.put(_entry(key, b"second"))

        entry = bucket.get(key)
        assert entry is not None
        self.assertEqual(entry.body, b"second")
        self.assertEqual(bucket.keys(), [key])

    def test_repeated_headers_survive_storage(self) -> None:
        bucket = self.store.open("dynamic-v1")
        key = cache_key("GET", "http://origin.test/login")
        bucket.put(
            CacheEntry(
                key=key,
                url="http://origin.test/login",
                status=200,
                headers=[("Set-Cookie", "a=1; Path=/"), ("Set-Cookie", "b=2; Path=/"), ("Content-Type", "text/html")],
                body=b"<html></html>",
                captured_at="2026-01-01T00:00:00Z",
            )
        )

        entry = bucket.get(key)
        assert entry is not None
        self.assertEqual(entry.headers.getall("set-cookie"), ["a=1; Path=/", "b=2; Path=/"])
        self.assertEqual(entry.to_response().header("content-type"), "text/html")

    def test_repeated_put_is_idempotent(self) -> None:
        bucket = self.store.open("dynamic-v1")
        key = cache_key("GET", "http://origin.test/lessons")
        entry = _entry(key)

        bucket.put(entry)
        files_before = sorted(p.name for p in (Path(self._tmp.name) / "dynamic-v1").iterdir())
        bucket.put(entry)
        files_after = sorted(p.name for p in (Path(self._tmp.name) / "dynamic-v1").iterdir())

        self.assertEqual(files_before, files_after)
        self.assertEqual(bucket.keys(), [key])
        self.assertEqual(bucket.get(key), entry)

    def test_delete_entry(self) -> None:
        bucket = self.store.open("image-v1")
        key = cache_key("GET", "http://origin.test/logo.png")
        bucket.put(_entry(key))

        self.assertTrue(bucket.delete(key))
        self.assertFalse(bucket.delete(key))
        self.assertEqual(bucket.keys(), [])

    def test_list_and_delete_buckets(self) -> None:
        self.store.open("static-v1")
        self.store.open("dynamic-v1")

        self.assertEqual(self.store.list_buckets(), ["dynamic-v1", "static-v1"])
        self.assertTrue(self.store.delete_bucket("static-v1"))
        self.assertFalse(self.store.delete_bucket("static-v1"))
        self.assertEqual(self.store.list_buckets(), ["dynamic-v1"])

    def test_open_existing_never_recreates(self) -> None:
        self.assertIsNone(self.store.open_existing("dynamic-v9"))
        self.assertEqual(self.store.list_buckets(), [])

    def test_match_searches_buckets_in_order(self) -> None:
        key = cache_key("GET", "http://origin.test/")
        self.store.open("static-v1").put(_entry(key, b"shell"))
        self.store.open("dynamic-v1").put(_entry(key, b"fresh"))

        entry = self.store.match(key, ["missing-v1", "dynamic-v1", "static-v1"])
        assert entry is not None
        self.assertEqual(entry.body, b"fresh")

    def test_generation_pointer_round_trip(self) -> None:
        self.assertIsNone(self.store.current_generation())
        self.store.set_current_generation("v3")
        self.assertEqual(CacheStore(self._tmp.name).current_generation(), "v3")

    def test_rejects_path_like_bucket_names(self) -> None:
        with self.assertRaises(InvalidBucketNameError):
            self.store.open("../escape")
        with self.assertRaises(InvalidBucketNameError):
            self.store.open("..")

    def test_unreadable_entry_is_a_miss(self) -> None:
        bucket = self.store.open("dynamic-v1")
        key = cache_key("GET", "http://origin.test/broken")
        bucket.put(_entry(key))
        for path in (Path(self._tmp.name) / "dynamic-v1").glob("*.json"):
            path.write_text("{not json", encoding="utf-8")

        self.assertIsNone(bucket.get(key))
        self.assertEqual(bucket.keys(), [])


if __name__ == "__main__":
    unittest.main()
