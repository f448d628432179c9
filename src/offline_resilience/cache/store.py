from __future__ import annotations

import json
import logging
import re
import shutil
from pathlib import Path
from typing import Iterable, Literal, Optional

from offline_resilience.cache.io import atomic_write_json, atomic_write_text, decode_entry, encode_entry
from offline_resilience.core.errors import InvalidBucketNameError
from offline_resilience.core.models import CacheEntry, HttpResponse
from offline_resilience.core.utils import format_rfc3339, hash_text, utc_now

logger = logging.getLogger(__name__)

BucketKind = Literal["static", "dynamic", "image"]
BUCKET_KINDS: tuple[BucketKind, ...] = ("static", "dynamic", "image")

_BUCKET_NAME_RE = re.compile(r"^[A-Za-z0-9._-]+$")
_GENERATION_POINTER = "CURRENT"
_ENTRY_SUFFIX = ".json"


def bucket_name(kind: BucketKind, version: str) -> str:
    return f"{kind}-{version}"


def generation_of(name: str) -> Optional[str]:
    """Return the generation tag of a bucket name, or None if it is not a generation bucket."""
    kind, sep, version = name.partition("-")
    if not sep or kind not in BUCKET_KINDS or not version:
        return None
    return version


def entry_from_response(key: str, response: HttpResponse) -> CacheEntry:
    return CacheEntry(
        key=key,
        url=response.url,
        status=response.status,
        headers=response.headers.copy(),
        body=response.body,
        captured_at=format_rfc3339(utc_now()),
    )


def _validate_bucket_name(name: str) -> str:
    if not _BUCKET_NAME_RE.match(name) or name in {".", ".."}:
        raise InvalidBucketNameError(f"Invalid bucket name: {name!r}")
    return name


class Bucket:
    """A named collection of cache entries stored as one JSON document per key."""

    def __init__(self, name: str, path: Path) -> None:
        self.name = name
        self._path = path

    def _entry_path(self, key: str) -> Path:
        return self._path / f"{hash_text(key)}{_ENTRY_SUFFIX}"

    def get(self, key: str) -> Optional[CacheEntry]:
        entry_path = self._entry_path(key)
        if not entry_path.exists():
            return None
        try:
            entry = decode_entry(json.loads(entry_path.read_text(encoding="utf-8")))
        except (OSError, ValueError, KeyError):
            logger.warning("Unreadable cache entry, treating as miss. bucket=%s key=%s", self.name, key, exc_info=True)
            return None
        if entry.key != key:
            logger.warning("Cache entry key mismatch. bucket=%s expected=%s actual=%s", self.name, key, entry.key)
            return None
        return entry

    def put(self, entry: CacheEntry) -> None:
        atomic_write_json(self._entry_path(entry.key), encode_entry(entry))
        logger.debug("Cache entry stored. bucket=%s key=%s size=%d", self.name, entry.key, len(entry.body))

    def delete(self, key: str) -> bool:
        entry_path = self._entry_path(key)
        try:
            entry_path.unlink()
        except FileNotFoundError:
            return False
        return True

    def keys(self) -> list[str]:
        if not self._path.exists():
            return []
        keys: list[str] = []
        for entry_path in sorted(self._path.glob(f"*{_ENTRY_SUFFIX}")):
            try:
                payload = json.loads(entry_path.read_text(encoding="utf-8"))
                keys.append(str(payload["key"]))
            except (OSError, ValueError, KeyError):
                logger.warning("Skipping unreadable cache entry. path=%s", entry_path)
        return keys

    def __len__(self) -> int:
        return len(self.keys())


class CacheStore:
    """Filesystem-backed set of named buckets plus the current generation pointer."""

    def __init__(self, root_dir: str | Path) -> None:
        self._root = Path(root_dir)

    @property
    def root_dir(self) -> Path:
        return self._root

    def open(self, name: str) -> Bucket:
        path = self._root / _validate_bucket_name(name)
        path.mkdir(parents=True, exist_ok=True)
        return Bucket(name, path)

    def open_existing(self, name: str) -> Optional[Bucket]:
        """Open a bucket only if it is still persisted; never recreates a deleted one."""
        path = self._root / _validate_bucket_name(name)
        if not path.is_dir():
            return None
        return Bucket(name, path)

    def has_bucket(self, name: str) -> bool:
        return (self._root / _validate_bucket_name(name)).is_dir()

    def list_buckets(self) -> list[str]:
        if not self._root.exists():
            return []
        return sorted(p.name for p in self._root.iterdir() if p.is_dir())

    def delete_bucket(self, name: str) -> bool:
        path = self._root / _validate_bucket_name(name)
        if not path.is_dir():
            return False
        shutil.rmtree(path)
        return True

    def match(self, key: str, bucket_names: Iterable[str]) -> Optional[CacheEntry]:
        """Look the key up in each existing bucket in order, returning the first hit."""
        for name in bucket_names:
            bucket = self.open_existing(name)
            if bucket is None:
                continue
            entry = bucket.get(key)
            if entry is not None:
                return entry
        return None

    def current_generation(self) -> Optional[str]:
        pointer = self._root / _GENERATION_POINTER
        if not pointer.exists():
            return None
        value = pointer.read_text(encoding="utf-8").strip()
        return value or None

    def set_current_generation(self, version: str) -> None:
        atomic_write_text(self._root / _GENERATION_POINTER, version)
