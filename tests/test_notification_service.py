import pytest

from conftest import ADMIN_ID, CUSTOMER_ID
from repairshop.notifications import NotificationNotFoundError
from repairshop.realtime import Subscriber
from repairshop.tickets.models import Requester, Role


@pytest.mark.asyncio
async def test_notify_persists_and_pushes_live(notification_service, registry):
    live = Subscriber(Requester(id=CUSTOMER_ID, role=Role.CUSTOMER))
    registry.connect(live)

    notification = await notification_service.notify(
        CUSTOMER_ID,
        type="TICKET_UPDATED",
        title="Ticket Status Updated",
        message="Your ticket MOO-2026-0001 status has been updated to READY",
        metadata={"ticket_number": "MOO-2026-0001"},
    )

    event = live.queue.get_nowait()
    assert event.channel == f"user:{CUSTOMER_ID}"
    assert event.type.value == "notification"
    assert event.payload["id"] == notification.id
    assert event.payload["ticket_number"] == "MOO-2026-0001"
    assert await notification_service.unread_count(CUSTOMER_ID) == 1


@pytest.mark.asyncio
async def test_notify_without_live_connection_is_still_stored(notification_service):
    await notification_service.notify(CUSTOMER_ID, type="INFO", title="Hello", message="Welcome")
    page = await notification_service.list_for(CUSTOMER_ID)
    assert page.total == 1
    assert page.items[0].is_read is False


@pytest.mark.asyncio
async def test_mark_read_only_for_owner(notification_service):
    notification = await notification_service.notify(CUSTOMER_ID, type="INFO", title="Hi", message="Body")

    with pytest.raises(NotificationNotFoundError):
        await notification_service.mark_read(notification.id, ADMIN_ID)

    updated = await notification_service.mark_read(notification.id, CUSTOMER_ID)
    assert updated.is_read is True
    assert await notification_service.unread_count(CUSTOMER_ID) == 0


@pytest.mark.asyncio
async def test_mark_all_read_and_unread_filter(notification_service, clock):
    for index in range(3):
        clock.advance(minutes=1)
        await notification_service.notify(CUSTOMER_ID, type="INFO", title=f"N{index}", message="Body")

    unread = await notification_service.list_for(CUSTOMER_ID, unread_only=True, limit=2)
    assert unread.total == 3
    assert unread.pages == 2
    assert [item.title for item in unread.items] == ["N2", "N1"]

    assert await notification_service.mark_all_read(CUSTOMER_ID) == 3
    assert (await notification_service.list_for(CUSTOMER_ID, unread_only=True)).total == 0


@pytest.mark.asyncio
async def test_delete_notification(notification_service):
    notification = await notification_service.notify(CUSTOMER_ID, type="INFO", title="Bye", message="Body")

    with pytest.raises(NotificationNotFoundError):
        await notification_service.delete(notification.id, ADMIN_ID)

    await notification_service.delete(notification.id, CUSTOMER_ID)
    assert (await notification_service.list_for(CUSTOMER_ID)).total == 0
    with pytest.raises(NotificationNotFoundError):
        await notification_service.delete(notification.id, CUSTOMER_ID)
