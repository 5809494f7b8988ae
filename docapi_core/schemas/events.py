"""
docapi schemas for the event publishing system

This module contains a schema for the event model as
well as an enum of the different known event types.
"""

import enum
from typing import Any, Dict, List, Optional

import pydantic


@enum.unique
class EventType(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class Event(pydantic.BaseModel):
    event: EventType
    collection: str
    id: Optional[str] = None
    timestamp: pydantic.NonNegativeInt
    data: Dict[str, Any]


class EventsNotification(pydantic.BaseModel):
    number: pydantic.PositiveInt
    events: List[Event]
