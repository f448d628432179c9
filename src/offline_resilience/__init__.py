"""Offline resilience engine: a caching proxy with durable replay of offline writes."""

__version__ = "0.1.0"
