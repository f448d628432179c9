from offline_resilience.connectivity.state import (
    ConnectivitySnapshot,
    ConnectivityStateMachine,
    InstallPrompt,
    InstallState,
)

__all__ = ["ConnectivitySnapshot", "ConnectivityStateMachine", "InstallPrompt", "InstallState"]
