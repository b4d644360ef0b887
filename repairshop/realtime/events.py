from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


class EventType(str, Enum):
    TICKET_CREATED = "ticket:created"
    TICKET_UPDATED = "ticket:updated"
    TICKET_TRANSFERRED = "ticket:transferred"
    NOTIFICATION = "notification"


def ticket_channel(ticket_number: str) -> str:
    return f"ticket:{ticket_number}"


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


@dataclass(slots=True, frozen=True)
class Event:
    """Envelope delivered to live subscribers of ``channel``."""

    channel: str
    type: EventType
    payload: Mapping[str, Any] = field(default_factory=dict)

    def to_message(self) -> dict[str, Any]:
        return {"channel": self.channel, "type": self.type.value, "payload": dict(self.payload)}
