from __future__ import annotations

from enum import Enum

from .errors import TicketValidationError


class TicketStatus(str, Enum):
    """Supported states for a repair ticket's lifecycle."""

    RECEIVED = "RECEIVED"
    DIAGNOSED = "DIAGNOSED"
    WAITING_PARTS = "WAITING_PARTS"
    IN_PROGRESS = "IN_PROGRESS"
    READY = "READY"
    COMPLETED = "COMPLETED"
    RETURNED = "RETURNED"
    CANCELLED = "CANCELLED"


class TicketPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class PhotoStage(str, Enum):
    """When a photo was taken relative to the repair work."""

    RECEIVED = "RECEIVED"
    DURING_REPAIR = "DURING_REPAIR"
    REPAIRED = "REPAIRED"

    @property
    def label(self) -> str:
        return _STAGE_LABELS[self]

    @property
    def timeline_status(self) -> TicketStatus:
        """Status tag used for the timeline entry recording a photo upload."""

        if self is PhotoStage.REPAIRED:
            return TicketStatus.READY
        return TicketStatus.IN_PROGRESS


_STAGE_LABELS = {
    PhotoStage.RECEIVED: "Received",
    PhotoStage.DURING_REPAIR: "During Repair",
    PhotoStage.REPAIRED: "Repaired",
}


class TicketStateMachine:
    """Describe the repair workflow.

    Staff may move a ticket between any two statuses, including out of
    COMPLETED or CANCELLED, so corrections never need a database edit. The
    conventional order is only used for presentation.
    """

    _WORKFLOW: tuple[TicketStatus, ...] = (
        TicketStatus.RECEIVED,
        TicketStatus.DIAGNOSED,
        TicketStatus.WAITING_PARTS,
        TicketStatus.IN_PROGRESS,
        TicketStatus.READY,
        TicketStatus.COMPLETED,
    )
    _TERMINAL: frozenset[TicketStatus] = frozenset({TicketStatus.COMPLETED, TicketStatus.CANCELLED})
    _EXITS: frozenset[TicketStatus] = frozenset({TicketStatus.RETURNED, TicketStatus.CANCELLED})

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.RECEIVED

    @classmethod
    def parse(cls, value: TicketStatus | str) -> TicketStatus:
        if isinstance(value, TicketStatus):
            return value
        try:
            return TicketStatus(str(value).strip().upper())
        except ValueError as exc:
            raise TicketValidationError(f"Invalid status: {value}") from exc

    @classmethod
    def is_terminal(cls, status: TicketStatus) -> bool:
        return status in cls._TERMINAL

    @classmethod
    def can_transition(cls, current: TicketStatus, new: TicketStatus) -> bool:
        return isinstance(current, TicketStatus) and isinstance(new, TicketStatus)

    @classmethod
    def assert_transition(cls, current: TicketStatus, new: TicketStatus) -> None:
        if not cls.can_transition(current, new):
            raise TicketValidationError(f"Invalid ticket status transition: {current!s} -> {new!s}")

    @classmethod
    def conventional_next(cls, current: TicketStatus) -> tuple[TicketStatus, ...]:
        """Statuses a technician would normally pick next."""

        if cls.is_terminal(current) or current is TicketStatus.RETURNED:
            return ()
        following: tuple[TicketStatus, ...] = ()
        if current in cls._WORKFLOW:
            index = cls._WORKFLOW.index(current)
            following = cls._WORKFLOW[index + 1 : index + 2]
        return following + tuple(sorted(cls._EXITS, key=lambda status: status.value))
