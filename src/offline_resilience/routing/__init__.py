from offline_resilience.routing.router import PolicyRouter, RouteDecision, Strategy

__all__ = ["PolicyRouter", "RouteDecision", "Strategy"]
