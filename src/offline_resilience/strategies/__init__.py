from offline_resilience.strategies.executors import PLACEHOLDER_IMAGE, QUEUED_HEADER, StrategyExecutor

__all__ = ["PLACEHOLDER_IMAGE", "QUEUED_HEADER", "StrategyExecutor"]
