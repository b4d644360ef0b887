class TicketServiceError(RuntimeError):
    """Base error for ticket service issues."""


class TicketNotFoundError(TicketServiceError):
    """Raised when a ticket, technician or entry could not be located."""


class TicketValidationError(TicketServiceError):
    """Raised when required fields are missing or malformed."""


class InvalidStageError(TicketValidationError):
    """Raised when a photo stage is not one of the supported stages."""


class PhotoLimitExceededError(TicketValidationError):
    """Raised when an upload would exceed the per-stage photo cap."""


class InvalidAssigneeError(TicketValidationError):
    """Raised when a ticket is assigned to someone who is not staff."""


class ForbiddenError(TicketServiceError):
    """Raised when the requester lacks ownership of the ticket."""


class TicketNumberConflictError(TicketServiceError):
    """Raised when no unique ticket number could be allocated."""
