from offline_resilience.server.app import CONTROL_PREFIX, create_app

__all__ = ["CONTROL_PREFIX", "create_app"]
