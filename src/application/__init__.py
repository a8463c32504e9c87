"""Application layer - aggregation, merge and session wiring."""

from .simple_event_bus import SimpleEventBus

__all__ = ["SimpleEventBus"]
