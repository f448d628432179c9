"""Persistent response buckets and cache generations."""

from offline_resilience.cache.store import (
    BUCKET_KINDS,
    Bucket,
    BucketKind,
    CacheStore,
    bucket_name,
    entry_from_response,
    generation_of,
)

__all__ = [
    "BUCKET_KINDS",
    "Bucket",
    "BucketKind",
    "CacheStore",
    "bucket_name",
    "entry_from_response",
    "generation_of",
]
