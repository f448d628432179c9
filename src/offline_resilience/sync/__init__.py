"""Durable queue for mutations made while offline."""

from offline_resilience.sync.models import QueuedMutation, ReplayResult
from offline_resilience.sync.queue import OfflineMutationQueue

__all__ = ["OfflineMutationQueue", "QueuedMutation", "ReplayResult"]
