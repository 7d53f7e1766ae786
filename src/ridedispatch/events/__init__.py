from .bus import EventBus
from .schemas import DriverStatusEvent, RideEvent

__all__ = ["DriverStatusEvent", "EventBus", "RideEvent"]
