from __future__ import annotations

from typing import Sequence


class OfflineEngineError(Exception):
    """Base class for errors raised by the offline engine."""


class NetworkError(OfflineEngineError):
    """The origin could not be reached (transport-level failure)."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Network request failed: {url} ({reason})")
        self.url = url
        self.reason = reason


class ManifestFetchError(OfflineEngineError):
    def __init__(self, version: str, failed_paths: Sequence[str]) -> None:
        joined = ", ".join(failed_paths)
        super().__init__(f"Install of generation {version} failed; manifest fetch failed for: {joined}")
        self.version = version
        self.failed_paths = list(failed_paths)


class InvalidBucketNameError(OfflineEngineError, ValueError):
    pass
