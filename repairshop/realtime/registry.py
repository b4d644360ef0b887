"""In-memory channel registry for live ticket and notification events."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from threading import Lock
from typing import TYPE_CHECKING, MutableMapping

from .events import Event, user_channel

if TYPE_CHECKING:
    from repairshop.tickets.models import Requester

logger = logging.getLogger(__name__)


class Subscriber:
    """A live connection and the bounded queue its events are written to."""

    def __init__(self, requester: Requester | None = None, *, queue_size: int = 100) -> None:
        self.id = str(uuid.uuid4())
        self.requester = requester
        self.queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=queue_size)

    def offer(self, event: Event) -> bool:
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    def __repr__(self) -> str:
        return f"Subscriber(id={self.id!r})"


class SubscriptionRegistry:
    """Map channel names to the subscribers currently listening on them.

    Nothing is persisted or replayed: a subscriber that is not connected when
    an event is published misses it.
    """

    def __init__(self, *, staff_channel: str = "staff") -> None:
        self.staff_channel = staff_channel
        self._channels: MutableMapping[str, dict[str, Subscriber]] = defaultdict(dict)
        self._memberships: MutableMapping[str, set[str]] = {}
        self._lock = Lock()

    def connect(self, subscriber: Subscriber) -> set[str]:
        """Register ``subscriber`` and join its default channels."""

        with self._lock:
            self._memberships.setdefault(subscriber.id, set())
        requester = subscriber.requester
        if requester is not None:
            self.subscribe(subscriber, user_channel(requester.id))
            if requester.is_staff:
                self.subscribe(subscriber, self.staff_channel)
        return self.channels_for(subscriber)

    def disconnect(self, subscriber: Subscriber) -> None:
        with self._lock:
            channels = self._memberships.pop(subscriber.id, set())
            for channel in channels:
                members = self._channels.get(channel)
                if members is None:
                    continue
                members.pop(subscriber.id, None)
                if not members:
                    del self._channels[channel]
        logger.debug("Subscriber %s disconnected from %d channel(s)", subscriber.id, len(channels))

    def subscribe(self, subscriber: Subscriber, channel: str) -> None:
        with self._lock:
            self._channels[channel][subscriber.id] = subscriber
            self._memberships.setdefault(subscriber.id, set()).add(channel)
        logger.debug("Subscriber %s joined %s", subscriber.id, channel)

    def unsubscribe(self, subscriber: Subscriber, channel: str) -> None:
        with self._lock:
            members = self._channels.get(channel)
            if members is not None:
                members.pop(subscriber.id, None)
                if not members:
                    del self._channels[channel]
            membership = self._memberships.get(subscriber.id)
            if membership is not None:
                membership.discard(channel)

    def channels_for(self, subscriber: Subscriber) -> set[str]:
        with self._lock:
            return set(self._memberships.get(subscriber.id, ()))

    def subscriber_count(self, channel: str) -> int:
        with self._lock:
            return len(self._channels.get(channel, ()))

    def publish(self, event: Event) -> int:
        """Queue ``event`` for every current subscriber of its channel.

        Never blocks; returns the number of subscribers that accepted it.
        """

        with self._lock:
            targets = list(self._channels.get(event.channel, {}).values())
        delivered = 0
        for subscriber in targets:
            if subscriber.offer(event):
                delivered += 1
            else:
                logger.warning("Dropping %s for subscriber %s: queue full", event.type.value, subscriber.id)
        return delivered
