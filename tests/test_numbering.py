import pytest

from repairshop.tickets.numbering import format_ticket_number, next_ticket_number, parse_sequence


def test_first_number_of_the_year():
    assert next_ticket_number("MOO", 2026, None) == "MOO-2026-0001"


def test_next_number_increments_last_suffix():
    assert next_ticket_number("MOO", 2026, "MOO-2026-0041") == "MOO-2026-0042"


def test_sequence_grows_past_four_digits():
    assert next_ticket_number("MOO", 2026, "MOO-2026-9999") == "MOO-2026-10000"
    assert parse_sequence("moo-2026-10000") == 10000


def test_format_rejects_non_positive_sequence():
    with pytest.raises(ValueError):
        format_ticket_number("MOO", 2026, 0)


def test_parse_rejects_malformed_numbers():
    with pytest.raises(ValueError):
        parse_sequence("TICKET-42")
