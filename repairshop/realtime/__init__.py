"""Live event fan-out to connected clients."""

from .events import Event, EventType, ticket_channel, user_channel
from .registry import Subscriber, SubscriptionRegistry

__all__ = [
    "Event",
    "EventType",
    "Subscriber",
    "SubscriptionRegistry",
    "ticket_channel",
    "user_channel",
]
