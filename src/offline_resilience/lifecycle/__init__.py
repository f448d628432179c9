from offline_resilience.lifecycle.manager import Generation, GenerationState, LifecycleManager

__all__ = ["Generation", "GenerationState", "LifecycleManager"]
