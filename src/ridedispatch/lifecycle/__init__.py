from .state_machine import RideProgress, RideStateMachine

__all__ = ["RideProgress", "RideStateMachine"]
