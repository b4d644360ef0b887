from __future__ import annotations

import asyncio
import logging
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable, Sequence

from repairshop.core.logging import get_tracer
from repairshop.realtime import Event, EventType, SubscriptionRegistry, ticket_channel

from .errors import (
    ForbiddenError,
    InvalidAssigneeError,
    InvalidStageError,
    TicketNotFoundError,
    TicketNumberConflictError,
    TicketValidationError,
)
from .models import (
    Note,
    Photo,
    PhotoUpload,
    Requester,
    Role,
    StaffMember,
    Ticket,
    TicketAggregate,
    TicketDraft,
    TicketFilters,
    TicketPage,
    TicketStats,
    TimelineEntry,
    TimelineOrder,
)
from .numbering import next_ticket_number
from .repository import TicketNumberTakenError, TicketRepository
from .state import PhotoStage, TicketPriority, TicketStateMachine, TicketStatus
from .timeline import TimelineLedger
from .visibility import PublicTicketView, is_owner, normalize_phone, project

if TYPE_CHECKING:
    from repairshop.accounts import AccountRepository
    from repairshop.notifications import NotificationService
    from repairshop.storage import PhotoStorage

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_REQUIRED_FIELDS = (
    ("customer_name", "Customer name"),
    ("customer_email", "Customer email"),
    ("customer_phone", "Customer phone"),
    ("device_type", "Device type"),
    ("device_brand", "Device brand"),
    ("device_model", "Device model"),
    ("issue_description", "Issue description"),
)
ISSUE_MIN_LENGTH = 10
ISSUE_MAX_LENGTH = 2000
STATUS_DESCRIPTION_MAX_LENGTH = 500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketService:
    """High level orchestration for the repair ticket lifecycle.

    Every mutation runs as a single repository transaction that also appends
    to the timeline; live events are published afterwards and never block.
    """

    def __init__(
        self,
        repository: TicketRepository,
        *,
        accounts: AccountRepository,
        registry: SubscriptionRegistry,
        notifications: NotificationService,
        ledger: TimelineLedger | None = None,
        storage: PhotoStorage | None = None,
        ticket_prefix: str = "MOO",
        photos_per_stage: int = 3,
        number_attempts: int = 5,
        min_search_digits: int = 10,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._accounts = accounts
        self._registry = registry
        self._notifications = notifications
        self._clock = clock or _utcnow
        self._ledger = ledger or repository.ledger(clock=self._clock)
        self._storage = storage
        self._ticket_prefix = ticket_prefix
        self._photos_per_stage = photos_per_stage
        self._number_attempts = max(1, number_attempts)
        self._min_search_digits = min_search_digits

    async def ensure_schema(self) -> None:
        await self._repository.ensure_schema()

    async def create_ticket(self, draft: TicketDraft, *, actor: Requester) -> TicketAggregate:
        self._validate_draft(draft)
        priority = self._parse_priority(draft.priority)
        if draft.technician_id:
            await self._require_staff(draft.technician_id)

        customer_id = draft.customer_id
        if customer_id is None and actor.role is Role.CUSTOMER:
            customer_id = actor.id
        elif customer_id is not None and await self._accounts.get_member(customer_id) is None:
            raise TicketValidationError(f"Customer {customer_id} does not exist")

        status = TicketStateMachine.initial_state()
        aggregate: TicketAggregate | None = None
        for attempt in range(1, self._number_attempts + 1):
            now = self._clock()
            last_number = await self._repository.last_ticket_number(self._ticket_prefix, now.year)
            ticket = Ticket(
                id=str(uuid.uuid4()),
                ticket_number=next_ticket_number(self._ticket_prefix, now.year, last_number),
                customer_id=customer_id,
                customer_name=draft.customer_name.strip(),
                customer_email=draft.customer_email.strip().lower(),
                customer_phone=draft.customer_phone.strip(),
                device_type=draft.device_type.strip(),
                device_brand=draft.device_brand.strip(),
                device_model=draft.device_model.strip(),
                serial_number=(draft.serial_number or "").strip() or None,
                issue_description=draft.issue_description.strip(),
                priority=priority,
                status=status,
                technician_id=draft.technician_id or None,
                created_at=now,
                updated_at=now,
            )
            try:
                with get_tracer().start_as_current_span("tickets.create") as span:
                    span.set_attribute("ticket.number", ticket.ticket_number)
                    span.set_attribute("ticket.attempt", attempt)
                    aggregate = await self._repository.create_ticket(
                        ticket,
                        created_by=actor.id,
                        note="Ticket created and device received",
                    )
            except TicketNumberTakenError:
                logger.warning(
                    "Ticket number %s already taken (attempt %d/%d)",
                    ticket.ticket_number,
                    attempt,
                    self._number_attempts,
                )
                continue
            break

        if aggregate is None:
            raise TicketNumberConflictError("Could not allocate a unique ticket number")

        ticket = aggregate.ticket
        logger.info("Created ticket %s for %s", ticket.ticket_number, ticket.customer_name)
        payload = {"ticket_number": ticket.ticket_number, "status": ticket.status.value}
        for channel in (ticket_channel(ticket.ticket_number), self._registry.staff_channel):
            self._registry.publish(Event(channel=channel, type=EventType.TICKET_CREATED, payload=payload))
        return aggregate

    async def get_ticket(self, ticket_id: str, *, requester: Requester) -> TicketAggregate:
        aggregate = await self._repository.get_ticket(ticket_id, include_private_notes=requester.is_staff)
        if aggregate is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        if not requester.is_staff and not is_owner(aggregate.ticket, requester):
            raise ForbiddenError("Access denied")
        return aggregate

    async def list_tickets(self, requester: Requester, filters: TicketFilters | None = None) -> TicketPage:
        filters = filters or TicketFilters()
        if filters.page < 1 or not 1 <= filters.limit <= 100:
            raise TicketValidationError("Page must be positive and limit between 1 and 100")
        items, total = await self._repository.list_tickets(filters, requester=requester)
        return TicketPage(items=items, page=filters.page, limit=filters.limit, total=total)

    async def ticket_stats(self, requester: Requester) -> TicketStats:
        return await self._repository.ticket_stats(requester)

    async def track_by_number(self, ticket_number: str, requester: Requester | None = None) -> PublicTicketView:
        normalized = ticket_number.strip().upper()
        aggregate = await self._repository.get_ticket_by_number(normalized)
        if aggregate is None:
            raise TicketNotFoundError("Ticket not found. Please check your ticket number.")
        return project(aggregate, requester)

    async def search_by_phone(self, phone: str, requester: Requester | None = None) -> list[PublicTicketView]:
        digits = normalize_phone(phone)
        if len(digits) < self._min_search_digits:
            raise TicketValidationError(
                f"Please provide a valid phone number (at least {self._min_search_digits} digits)"
            )
        aggregates = await self._repository.find_by_phone(digits)
        if not aggregates:
            raise TicketNotFoundError("No tickets found for this phone number")
        return [project(aggregate, requester) for aggregate in aggregates]

    async def list_timeline(
        self,
        ticket_id: str,
        order: TimelineOrder = TimelineOrder.ASC,
        *,
        limit: int | None = None,
    ) -> list[TimelineEntry]:
        return await self._ledger.list_for(ticket_id, order, limit=limit)

    async def annotate(
        self, ticket_id: str, *, description: str, actor: Requester, status: TicketStatus | None = None
    ) -> TimelineEntry:
        """Append a manual timeline entry without changing the ticket status."""

        if not description or not description.strip():
            raise TicketValidationError("Description is required")
        if status is None:
            aggregate = await self._repository.get_ticket(ticket_id)
            if aggregate is None:
                raise TicketNotFoundError(f"Ticket {ticket_id} not found")
            status = aggregate.ticket.status
        return await self._ledger.append(ticket_id, status, description.strip(), actor.id)

    async def update_status(
        self,
        ticket_id: str,
        new_status: TicketStatus | str,
        *,
        actor: Requester,
        description: str | None = None,
        warranty_days: int | None = None,
        estimated_cost: float | None = None,
        estimated_completion: datetime | None = None,
    ) -> Ticket:
        target = TicketStateMachine.parse(new_status)
        if description is not None and len(description.strip()) > STATUS_DESCRIPTION_MAX_LENGTH:
            raise TicketValidationError("Description too long")
        if warranty_days is not None and warranty_days < 0:
            raise TicketValidationError("Warranty days cannot be negative")

        aggregate = await self._repository.get_ticket(ticket_id)
        if aggregate is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        current = aggregate.ticket
        TicketStateMachine.assert_transition(current.status, target)

        now = self._clock()
        changes: dict[str, object] = {}
        if estimated_cost is not None:
            changes["estimated_cost"] = estimated_cost
        if estimated_completion is not None:
            changes["estimated_completion"] = estimated_completion
        applied_warranty: int | None = None
        if target is TicketStatus.COMPLETED:
            changes["completed_at"] = now
            # Expiry always follows the latest completion; a bare re-completion keeps the stored term.
            days = current.warranty_days if warranty_days is None else warranty_days
            if days:
                applied_warranty = int(days)
                changes["warranty_days"] = applied_warranty
                changes["warranty_expires"] = now + timedelta(days=applied_warranty)
            else:
                changes["warranty_days"] = None
                changes["warranty_expires"] = None

        note = (description or "").strip()
        if not note:
            note = f"Status updated to {target.value}"
            if applied_warranty:
                note += f" with {applied_warranty} days warranty"

        with get_tracer().start_as_current_span("tickets.update_status") as span:
            span.set_attribute("ticket.id", ticket_id)
            span.set_attribute("ticket.status", target.value)
            result = await self._repository.update_status(
                ticket_id,
                status=target,
                description=note,
                actor=actor.id,
                now=now,
                changes=changes,
            )
        if result is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        ticket, _ = result
        logger.info("Ticket %s moved %s -> %s by %s", ticket.ticket_number, current.status.value, target.value, actor.id)

        self._registry.publish(
            Event(
                channel=ticket_channel(ticket.ticket_number),
                type=EventType.TICKET_UPDATED,
                payload={
                    "ticket_number": ticket.ticket_number,
                    "status": target.value,
                    "description": description,
                    "updated_at": now.isoformat(),
                },
            )
        )
        if ticket.customer_id:
            await self._notifications.notify(
                ticket.customer_id,
                type="TICKET_UPDATED",
                title="Ticket Status Updated",
                message=f"Your ticket {ticket.ticket_number} status has been updated to {target.value}",
                metadata={"ticket_id": ticket.id, "ticket_number": ticket.ticket_number, "status": target.value},
            )
        return ticket

    async def assign_technician(self, ticket_id: str, technician_id: str, *, actor: Requester) -> Ticket:
        technician = await self._require_staff(technician_id)
        result = await self._repository.set_technician(
            ticket_id,
            technician_id=technician.id,
            technician_name=technician.full_name,
            timeline_status=TicketStatus.IN_PROGRESS,
            description=f"Ticket assigned to {technician.full_name}",
            actor=actor.id,
            now=self._clock(),
        )
        if result is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        ticket, _ = result
        logger.info("Ticket %s assigned to %s", ticket.ticket_number, technician.id)
        return ticket

    async def transfer_technician(
        self,
        ticket_id: str,
        technician_id: str,
        *,
        actor: Requester,
        reason: str | None = None,
    ) -> Ticket:
        aggregate = await self._repository.get_ticket(ticket_id)
        if aggregate is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        previous_name = aggregate.ticket.technician_name or "Unassigned"
        technician = await self._require_staff(technician_id)

        reason = (reason or "").strip() or None
        note = f"Transferred from {previous_name} to {technician.full_name}"
        if reason:
            note += f". Reason: {reason}"

        result = await self._repository.set_technician(
            ticket_id,
            technician_id=technician.id,
            technician_name=technician.full_name,
            timeline_status=None,
            description=note,
            actor=actor.id,
            now=self._clock(),
        )
        if result is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        ticket, _ = result
        self._registry.publish(
            Event(
                channel=ticket_channel(ticket.ticket_number),
                type=EventType.TICKET_TRANSFERRED,
                payload={
                    "ticket_number": ticket.ticket_number,
                    "from_technician": previous_name,
                    "to_technician": technician.full_name,
                    "reason": reason,
                },
            )
        )
        return ticket

    async def add_photos(
        self,
        ticket_id: str,
        stage: PhotoStage | str,
        photos: Sequence[PhotoUpload],
        *,
        actor: Requester,
    ) -> list[Photo]:
        parsed_stage = self._parse_stage(stage)
        if not photos:
            raise TicketValidationError("No photos uploaded")

        stored = await self._repository.add_photos(
            ticket_id,
            stage=parsed_stage,
            uploads=list(photos),
            per_stage_limit=self._photos_per_stage,
            description=f'{len(photos)} photo(s) added for "{parsed_stage.label}" stage',
            actor=actor.id,
            now=self._clock(),
        )
        if stored is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return stored

    async def add_note(
        self, ticket_id: str, content: str, *, actor: Requester, is_private: bool = True
    ) -> Note:
        if not content or not content.strip():
            raise TicketValidationError("Note content is required")
        note = await self._repository.add_note(
            ticket_id, content=content.strip(), is_private=is_private, author=actor.id, now=self._clock()
        )
        if note is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return note

    async def delete_ticket(self, ticket_id: str) -> None:
        photos = await self._repository.delete_ticket(ticket_id)
        if photos is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        logger.info("Deleted ticket %s with %d photo(s)", ticket_id, len(photos))
        if self._storage is not None and photos:
            await asyncio.to_thread(self._storage.remove, [photo.filename for photo in photos])

    async def _require_staff(self, user_id: str) -> StaffMember:
        member = await self._accounts.get_member(user_id)
        if member is None or not member.role.is_staff:
            raise InvalidAssigneeError("Invalid technician")
        return member

    @staticmethod
    def _parse_stage(stage: PhotoStage | str) -> PhotoStage:
        if isinstance(stage, PhotoStage):
            return stage
        try:
            return PhotoStage(str(stage).strip().upper())
        except ValueError as exc:
            valid = ", ".join(item.value for item in PhotoStage)
            raise InvalidStageError(f"Invalid stage. Must be one of: {valid}") from exc

    @staticmethod
    def _parse_priority(priority: TicketPriority | str | None) -> TicketPriority:
        if priority is None:
            return TicketPriority.MEDIUM
        if isinstance(priority, TicketPriority):
            return priority
        try:
            return TicketPriority(str(priority).strip().upper())
        except ValueError as exc:
            raise TicketValidationError("Invalid priority") from exc

    @staticmethod
    def _validate_draft(draft: TicketDraft) -> None:
        missing = [label for name, label in _REQUIRED_FIELDS if not (getattr(draft, name) or "").strip()]
        if missing:
            raise TicketValidationError(f"Missing required fields: {', '.join(missing)}")
        if not _EMAIL_RE.match(draft.customer_email.strip()):
            raise TicketValidationError("Valid customer email is required")
        issue_length = len(draft.issue_description.strip())
        if not ISSUE_MIN_LENGTH <= issue_length <= ISSUE_MAX_LENGTH:
            raise TicketValidationError(
                f"Issue description must be {ISSUE_MIN_LENGTH}-{ISSUE_MAX_LENGTH} characters"
            )
