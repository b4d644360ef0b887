"""Repair ticket lifecycle and live notification service."""

__version__ = "0.1.0"
