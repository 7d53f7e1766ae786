"""Ride dispatch and lifecycle core."""

__version__ = "0.1.0"
