from . import health, notifications, realtime, tickets

__all__ = ["health", "notifications", "realtime", "tickets"]
