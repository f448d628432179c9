from offline_resilience.network.fetcher import AiohttpFetcher, Fetcher, forwardable_headers

__all__ = ["AiohttpFetcher", "Fetcher", "forwardable_headers"]
