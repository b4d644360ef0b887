import pytest

from conftest import make_draft
from repairshop.tickets.errors import TicketNotFoundError
from repairshop.tickets.models import TimelineOrder
from repairshop.tickets.state import TicketStatus


@pytest.mark.asyncio
async def test_entries_keep_append_order_when_timestamps_tie(ticket_service, ticket_repository, technician, clock):
    created = await ticket_service.create_ticket(make_draft(), actor=technician)
    ledger = ticket_repository.ledger(clock=clock)

    await ledger.append(created.ticket.id, TicketStatus.DIAGNOSED, "Backlight cable loose", technician.id)
    await ledger.append(created.ticket.id, TicketStatus.DIAGNOSED, "Customer approved quote", technician.id)

    entries = await ledger.list_for(created.ticket.id)
    assert [entry.sequence for entry in entries] == [1, 2, 3]
    assert entries[0].description == "Ticket created and device received"
    assert entries[-1].description == "Customer approved quote"

    newest = await ledger.list_for(created.ticket.id, TimelineOrder.DESC, limit=1)
    assert [entry.sequence for entry in newest] == [3]


@pytest.mark.asyncio
async def test_entries_sorted_by_time_then_sequence(ticket_service, technician, clock):
    created = await ticket_service.create_ticket(make_draft(), actor=technician)
    clock.advance(minutes=5)
    await ticket_service.update_status(created.ticket.id, "DIAGNOSED", actor=technician)
    clock.advance(minutes=5)
    await ticket_service.annotate(created.ticket.id, description="Waiting on customer call back", actor=technician)

    entries = await ticket_service.list_timeline(created.ticket.id)
    assert [entry.status for entry in entries] == [
        TicketStatus.RECEIVED,
        TicketStatus.DIAGNOSED,
        TicketStatus.DIAGNOSED,
    ]
    assert entries[0].created_at < entries[1].created_at < entries[2].created_at


@pytest.mark.asyncio
async def test_ledger_rejects_unknown_ticket(ticket_repository, clock):
    ledger = ticket_repository.ledger(clock=clock)
    with pytest.raises(TicketNotFoundError):
        await ledger.append("missing", TicketStatus.RECEIVED, "nothing", "someone")
    with pytest.raises(TicketNotFoundError):
        await ledger.list_for("missing")
