from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from urllib.parse import urlsplit, urlunsplit

_DEFAULT_PORTS = {"http": 80, "https": 443}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_rfc3339(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def hash_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def is_http_url(url: str) -> bool:
    scheme = urlsplit(url).scheme.lower()
    return scheme in _DEFAULT_PORTS


def canonicalize_url(url: str) -> str:
    """
    Normalize a URL for use in a cache key.

    Scheme and host are lower-cased, default ports and fragments are dropped,
    an empty path becomes "/". The query string is kept verbatim.
    """
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    port = parts.port
    netloc = host
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        netloc = f"{host}:{port}"
    if parts.username:
        userinfo = parts.username
        if parts.password:
            userinfo = f"{userinfo}:{parts.password}"
        netloc = f"{userinfo}@{netloc}"
    path = parts.path or "/"
    return urlunsplit((scheme, netloc, path, parts.query, ""))


def cache_key(method: str, url: str) -> str:
    return f"{method.strip().upper()} {canonicalize_url(url)}"


def url_path(url: str) -> str:
    return urlsplit(url).path or "/"
