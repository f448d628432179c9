from __future__ import annotations

import base64
import json
from pathlib import Path
from typing import Any

from multidict import CIMultiDict

from offline_resilience.core.models import CacheEntry


def atomic_write_json(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    tmp_path.replace(path)


def atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(text, encoding="utf-8")
    tmp_path.replace(path)


def encode_headers(headers: CIMultiDict) -> list[list[str]]:
    return [[name, value] for name, value in headers.items()]


def decode_headers(pairs: list[list[str]]) -> CIMultiDict:
    return CIMultiDict((str(name), str(value)) for name, value in pairs)


def encode_body(body: bytes) -> str:
    return base64.b64encode(body).decode("ascii")


def decode_body(value: str) -> bytes:
    return base64.b64decode(value.encode("ascii"))


def encode_entry(entry: CacheEntry) -> dict:
    return {
        "key": entry.key,
        "url": entry.url,
        "status": entry.status,
        "headers": encode_headers(entry.headers),
        "body": encode_body(entry.body),
        "captured_at": entry.captured_at,
    }


def decode_entry(payload: dict[str, Any]) -> CacheEntry:
    return CacheEntry(
        key=payload["key"],
        url=payload["url"],
        status=int(payload["status"]),
        headers=decode_headers(payload.get("headers", [])),
        body=decode_body(payload.get("body", "")),
        captured_at=payload["captured_at"],
    )
