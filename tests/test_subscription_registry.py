import logging

import pytest

from repairshop.realtime import Event, EventType, Subscriber, SubscriptionRegistry, ticket_channel, user_channel
from repairshop.tickets.models import Requester, Role


@pytest.mark.asyncio
async def test_connect_joins_personal_and_staff_channels():
    registry = SubscriptionRegistry(staff_channel="staff")
    technician = Subscriber(Requester(id="tech-1", role=Role.TECHNICIAN))
    customer = Subscriber(Requester(id="cust-1", role=Role.CUSTOMER))
    anonymous = Subscriber()

    assert registry.connect(technician) == {"user:tech-1", "staff"}
    assert registry.connect(customer) == {"user:cust-1"}
    assert registry.connect(anonymous) == set()
    assert registry.subscriber_count("staff") == 1


@pytest.mark.asyncio
async def test_publish_reaches_only_channel_members():
    registry = SubscriptionRegistry()
    watcher = Subscriber()
    bystander = Subscriber()
    registry.connect(watcher)
    registry.connect(bystander)
    registry.subscribe(watcher, ticket_channel("MOO-2026-0001"))

    delivered = registry.publish(
        Event(channel=ticket_channel("MOO-2026-0001"), type=EventType.TICKET_UPDATED, payload={"status": "READY"})
    )

    assert delivered == 1
    assert watcher.queue.get_nowait().to_message() == {
        "channel": "ticket:MOO-2026-0001",
        "type": "ticket:updated",
        "payload": {"status": "READY"},
    }
    assert bystander.queue.empty()


@pytest.mark.asyncio
async def test_unsubscribe_is_idempotent():
    registry = SubscriptionRegistry()
    subscriber = Subscriber()
    channel = ticket_channel("MOO-2026-0002")

    registry.unsubscribe(subscriber, channel)
    registry.subscribe(subscriber, channel)
    registry.unsubscribe(subscriber, channel)
    registry.unsubscribe(subscriber, channel)

    assert registry.subscriber_count(channel) == 0
    assert registry.channels_for(subscriber) == set()


@pytest.mark.asyncio
async def test_disconnect_removes_every_membership():
    registry = SubscriptionRegistry()
    subscriber = Subscriber(Requester(id="admin-1", role=Role.ADMIN))
    registry.connect(subscriber)
    registry.subscribe(subscriber, ticket_channel("MOO-2026-0003"))

    registry.disconnect(subscriber)

    assert registry.channels_for(subscriber) == set()
    assert registry.publish(Event(channel=user_channel("admin-1"), type=EventType.NOTIFICATION)) == 0


@pytest.mark.asyncio
async def test_publish_without_subscribers_is_a_no_op():
    registry = SubscriptionRegistry()
    assert registry.publish(Event(channel="ticket:UNKNOWN", type=EventType.TICKET_CREATED)) == 0


@pytest.mark.asyncio
async def test_full_queue_drops_events_without_blocking(caplog):
    registry = SubscriptionRegistry()
    slow = Subscriber(queue_size=1)
    registry.subscribe(slow, "staff")

    with caplog.at_level(logging.WARNING, logger="repairshop.realtime.registry"):
        first = registry.publish(Event(channel="staff", type=EventType.TICKET_CREATED, payload={"n": 1}))
        second = registry.publish(Event(channel="staff", type=EventType.TICKET_CREATED, payload={"n": 2}))

    assert (first, second) == (1, 0)
    assert slow.queue.qsize() == 1
    assert "queue full" in caplog.text
