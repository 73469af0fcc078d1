"""Event system for decoupled schedule-change notifications."""

from seohub.events.event_bus import EventType
from seohub.events.event_bus import event_bus

__all__ = ["EventType", "event_bus"]
