from .location_telemetry import LocationTelemetry
from .sweeper import StalenessSweeper

__all__ = ["LocationTelemetry", "StalenessSweeper"]
