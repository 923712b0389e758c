"""Data models for tag reads and backend events."""

from rfidzone.models._base import ReadMode, RfidBaseModel
from rfidzone.models.events import EventMeta, EventPayload, PresenceLookup, ZoneEvent
from rfidzone.models.tag import TagRead

__all__ = [
    "EventMeta",
    "EventPayload",
    "PresenceLookup",
    "ReadMode",
    "RfidBaseModel",
    "TagRead",
    "ZoneEvent",
]
