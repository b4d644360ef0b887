"""Human readable ticket numbers of the form ``PREFIX-YEAR-NNNN``."""

from __future__ import annotations

import re

_NUMBER_RE = re.compile(r"^(?P<prefix>[A-Z0-9]+)-(?P<year>\d{4})-(?P<sequence>\d{4,})$")


def year_prefix(prefix: str, year: int) -> str:
    return f"{prefix.upper()}-{year:04d}-"


def format_ticket_number(prefix: str, year: int, sequence: int) -> str:
    if sequence < 1:
        raise ValueError("sequence must be positive")
    return f"{year_prefix(prefix, year)}{sequence:04d}"


def parse_sequence(ticket_number: str) -> int:
    """Return the numeric suffix of a ticket number."""

    match = _NUMBER_RE.match(ticket_number.strip().upper())
    if match is None:
        raise ValueError(f"Malformed ticket number: {ticket_number}")
    return int(match.group("sequence"))


def next_ticket_number(prefix: str, year: int, last_number: str | None) -> str:
    """Return the number following ``last_number`` within the same year."""

    if last_number is None:
        return format_ticket_number(prefix, year, 1)
    return format_ticket_number(prefix, year, parse_sequence(last_number) + 1)
