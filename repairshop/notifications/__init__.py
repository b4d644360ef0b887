from .service import (
    Notification,
    NotificationNotFoundError,
    NotificationPage,
    NotificationRepository,
    NotificationService,
)

__all__ = [
    "Notification",
    "NotificationNotFoundError",
    "NotificationPage",
    "NotificationRepository",
    "NotificationService",
]
