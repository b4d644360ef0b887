from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from repairshop.dependencies import auth as auth_deps
from repairshop.dependencies import services as service_deps
from repairshop.main import create_app
from repairshop.tickets.errors import (
    ForbiddenError,
    PhotoLimitExceededError,
    TicketNotFoundError,
    TicketNumberConflictError,
)
from repairshop.tickets.models import (
    Note,
    Photo,
    PhotoUpload,
    Requester,
    Role,
    Ticket,
    TicketAggregate,
    TicketPage,
    TicketStats,
    TimelineEntry,
)
from repairshop.tickets.state import PhotoStage, TicketPriority, TicketStatus
from repairshop.tickets.visibility import PublicTicketView

NOW = datetime(2026, 1, 1, 12, tzinfo=timezone.utc)


def _make_ticket(*, status: TicketStatus = TicketStatus.RECEIVED) -> Ticket:
    return Ticket(
        id="ticket-1",
        ticket_number="MOO-2026-0001",
        customer_id=None,
        customer_name="Somchai Jaidee",
        customer_email="somchai@example.com",
        customer_phone="081-234-5678",
        device_type="Laptop",
        device_brand="Lenovo",
        device_model="ThinkPad X1",
        serial_number=None,
        issue_description="Screen flickers after waking from sleep",
        priority=TicketPriority.MEDIUM,
        status=status,
        technician_id=None,
        created_at=NOW,
        updated_at=NOW,
    )


def _make_entry(status: TicketStatus = TicketStatus.RECEIVED, sequence: int = 1) -> TimelineEntry:
    return TimelineEntry(
        id=f"entry-{sequence}",
        ticket_id="ticket-1",
        sequence=sequence,
        status=status,
        description="Ticket created and device received",
        created_by="user-tech",
        created_at=NOW,
    )


class ClientContext:
    def __init__(self, client: TestClient, app, service: AsyncMock, storage: MagicMock) -> None:
        self.client = client
        self.app = app
        self.service = service
        self.storage = storage

    def act_as(self, requester: Requester | None) -> None:
        self.app.dependency_overrides[auth_deps.get_optional_requester] = lambda: requester
        if requester is None:
            self.app.dependency_overrides.pop(auth_deps.get_current_requester, None)
        else:
            self.app.dependency_overrides[auth_deps.get_current_requester] = lambda: requester


@pytest.fixture
def ticket_client():
    app = create_app()
    service = AsyncMock()
    storage = MagicMock()
    storage.save.side_effect = lambda content, *, original_name, mime_type: PhotoUpload(
        filename=f"stored-{original_name}", original_name=original_name, mime_type=mime_type, size=len(content)
    )

    async def override_service():
        return service

    async def override_storage():
        return storage

    app.dependency_overrides[service_deps.get_ticket_service] = override_service
    app.dependency_overrides[service_deps.get_photo_storage] = override_storage
    context = ClientContext(TestClient(app), app, service, storage)
    context.act_as(Requester("user-tech", Role.TECHNICIAN))
    try:
        yield context
    finally:
        app.dependency_overrides.clear()


def test_health_endpoint(ticket_client):
    response = ticket_client.client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_create_ticket_endpoint_returns_created(ticket_client):
    ticket = _make_ticket()
    ticket_client.service.create_ticket = AsyncMock(
        return_value=TicketAggregate(ticket=ticket, timeline=[_make_entry()])
    )

    response = ticket_client.client.post(
        "/api/tickets",
        json={
            "customer_name": "Somchai Jaidee",
            "customer_email": "somchai@example.com",
            "customer_phone": "081-234-5678",
            "device_type": "Laptop",
            "device_brand": "Lenovo",
            "device_model": "ThinkPad X1",
            "issue_description": "Screen flickers after waking from sleep",
        },
    )

    assert response.status_code == 201
    body = response.json()
    assert body["ticket_number"] == "MOO-2026-0001"
    assert body["timeline"][0]["status"] == "RECEIVED"
    assert body["suggested_statuses"] == ["DIAGNOSED", "CANCELLED", "RETURNED"]
    draft = ticket_client.service.create_ticket.await_args.args[0]
    assert draft.priority is TicketPriority.MEDIUM


def test_create_ticket_requires_authentication(ticket_client):
    ticket_client.act_as(None)
    response = ticket_client.client.post("/api/tickets", json={})
    assert response.status_code == 401


def test_create_ticket_conflict_maps_to_409(ticket_client):
    ticket_client.service.create_ticket = AsyncMock(side_effect=TicketNumberConflictError("busy"))
    response = ticket_client.client.post(
        "/api/tickets",
        json={
            "customer_name": "A",
            "customer_email": "a@example.com",
            "customer_phone": "0812345678",
            "device_type": "Laptop",
            "device_brand": "HP",
            "device_model": "Envy",
            "issue_description": "Does not power on at all",
        },
    )
    assert response.status_code == 409


def test_track_ticket_is_public(ticket_client):
    ticket_client.act_as(None)
    ticket_client.service.track_by_number = AsyncMock(
        return_value=PublicTicketView(
            ticket_number="MOO-2026-0001",
            status=TicketStatus.IN_PROGRESS,
            device_type="Laptop",
            device_brand="Lenovo",
            device_model="ThinkPad X1",
            issue_description="Screen flickers",
            priority=TicketPriority.MEDIUM,
            created_at=NOW,
            technician_name=None,
            timeline=[],
            can_view_sensitive_data=False,
        )
    )

    response = ticket_client.client.get("/api/tickets/track/moo-2026-0001")

    assert response.status_code == 200
    body = response.json()
    assert body["can_view_sensitive_data"] is False
    assert body["customer_email"] is None
    ticket_client.service.track_by_number.assert_awaited_with("moo-2026-0001", None)


def test_track_unknown_ticket_returns_404(ticket_client):
    ticket_client.service.track_by_number = AsyncMock(side_effect=TicketNotFoundError("Ticket not found"))
    response = ticket_client.client.get("/api/tickets/track/MOO-2026-9999")
    assert response.status_code == 404


def test_list_tickets_endpoint_filters_by_status(ticket_client):
    ticket = _make_ticket(status=TicketStatus.READY)
    ticket_client.service.list_tickets = AsyncMock(
        return_value=TicketPage(items=[TicketAggregate(ticket=ticket)], page=1, limit=10, total=1)
    )

    response = ticket_client.client.get("/api/tickets", params={"status": TicketStatus.READY.value})

    assert response.status_code == 200
    body = response.json()
    assert body["pagination"] == {"page": 1, "limit": 10, "total": 1, "pages": 1}
    assert body["tickets"][0]["status"] == "READY"
    filters = ticket_client.service.list_tickets.await_args.args[1]
    assert filters.status is TicketStatus.READY


def test_stats_endpoint(ticket_client):
    ticket_client.service.ticket_stats = AsyncMock(
        return_value=TicketStats(total=3, active=2, completed=1, cancelled=0, by_status={"RECEIVED": 2, "COMPLETED": 1})
    )
    response = ticket_client.client.get("/api/tickets/stats")
    assert response.status_code == 200
    assert response.json()["active"] == 2


def test_get_ticket_forbidden_for_other_customer(ticket_client):
    ticket_client.act_as(Requester("someone", Role.CUSTOMER))
    ticket_client.service.get_ticket = AsyncMock(side_effect=ForbiddenError("Access denied"))
    response = ticket_client.client.get("/api/tickets/ticket-1")
    assert response.status_code == 403


def test_timeline_endpoint_orders(ticket_client):
    ticket_client.service.list_timeline = AsyncMock(
        return_value=[_make_entry(TicketStatus.READY, 2), _make_entry(TicketStatus.RECEIVED, 1)]
    )
    response = ticket_client.client.get("/api/tickets/ticket-1/timeline", params={"order": "desc"})
    assert response.status_code == 200
    assert [item["status"] for item in response.json()] == ["READY", "RECEIVED"]
    ticket_client.service.get_ticket.assert_not_awaited()


def test_status_change_requires_staff(ticket_client):
    ticket_client.act_as(Requester("user-customer", Role.CUSTOMER))
    response = ticket_client.client.patch("/api/tickets/ticket-1/status", json={"status": "READY"})
    assert response.status_code == 403


def test_status_change_endpoint(ticket_client):
    ticket_client.service.update_status = AsyncMock(return_value=_make_ticket(status=TicketStatus.COMPLETED))
    response = ticket_client.client.patch(
        "/api/tickets/ticket-1/status", json={"status": "COMPLETED", "warranty_days": 30}
    )
    assert response.status_code == 200
    assert response.json()["status"] == "COMPLETED"
    kwargs = ticket_client.service.update_status.await_args.kwargs
    assert kwargs["warranty_days"] == 30


def test_status_change_rejects_unknown_status(ticket_client):
    response = ticket_client.client.patch("/api/tickets/ticket-1/status", json={"status": "FIXED"})
    assert response.status_code == 422


def test_note_endpoint(ticket_client):
    ticket_client.service.add_note = AsyncMock(
        return_value=Note(
            id="note-1",
            ticket_id="ticket-1",
            content="Ordered a new panel",
            is_private=True,
            created_by="user-tech",
            created_at=NOW,
        )
    )
    response = ticket_client.client.post("/api/tickets/ticket-1/notes", json={"content": "Ordered a new panel"})
    assert response.status_code == 201
    assert response.json()["is_private"] is True


def test_upload_photos_saves_files(ticket_client):
    ticket_client.service.add_photos = AsyncMock(
        return_value=[
            Photo(
                id="photo-1",
                ticket_id="ticket-1",
                stage=PhotoStage.RECEIVED,
                filename="stored-front.jpg",
                original_name="front.jpg",
                path="/uploads/tickets/stored-front.jpg",
                mime_type="image/jpeg",
                size=4,
                created_at=NOW,
            )
        ]
    )

    response = ticket_client.client.post(
        "/api/tickets/ticket-1/photos",
        data={"stage": "RECEIVED"},
        files=[("photos", ("front.jpg", b"\xff\xd8\xff\xe0", "image/jpeg"))],
    )

    assert response.status_code == 201
    assert response.json()[0]["path"] == "/uploads/tickets/stored-front.jpg"
    args = ticket_client.service.add_photos.await_args.args
    assert args[1] == "RECEIVED"
    assert [upload.filename for upload in args[2]] == ["stored-front.jpg"]


def test_upload_rejects_non_images(ticket_client):
    response = ticket_client.client.post(
        "/api/tickets/ticket-1/photos",
        data={"stage": "RECEIVED"},
        files=[("photos", ("notes.txt", b"hello", "text/plain"))],
    )
    assert response.status_code == 400
    ticket_client.storage.save.assert_not_called()


def test_upload_limit_removes_stored_files(ticket_client):
    ticket_client.service.add_photos = AsyncMock(
        side_effect=PhotoLimitExceededError("Maximum 3 photos per stage. You have 3 and trying to add 1.")
    )
    response = ticket_client.client.post(
        "/api/tickets/ticket-1/photos",
        data={"stage": "RECEIVED"},
        files=[("photos", ("front.jpg", b"\xff\xd8", "image/jpeg"))],
    )
    assert response.status_code == 400
    assert response.json()["detail"].startswith("Maximum 3 photos per stage")
    removed = list(ticket_client.storage.remove.call_args.args[0])
    assert removed == ["stored-front.jpg"]


def test_delete_requires_admin(ticket_client):
    response = ticket_client.client.delete("/api/tickets/ticket-1")
    assert response.status_code == 403

    ticket_client.act_as(Requester("user-admin", Role.ADMIN))
    response = ticket_client.client.delete("/api/tickets/ticket-1")
    assert response.status_code == 204
    ticket_client.service.delete_ticket.assert_awaited_with("ticket-1")


def test_upload_removes_stored_files_on_unexpected_failure(ticket_client):
    ticket_client.service.add_photos = AsyncMock(side_effect=RuntimeError("database went away"))

    with pytest.raises(RuntimeError):
        ticket_client.client.post(
            "/api/tickets/ticket-1/photos",
            data={"stage": "RECEIVED"},
            files=[("photos", ("front.jpg", b"\xff\xd8", "image/jpeg"))],
        )

    assert ticket_client.storage.remove.call_args.args[0] == ["stored-front.jpg"]
