from .assignment import mark_idle, mark_in_ride, release_driver
from .dispatch_engine import DispatchEngine

__all__ = ["DispatchEngine", "mark_idle", "mark_in_ride", "release_driver"]
