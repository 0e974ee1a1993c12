from __future__ import annotations

from datetime import date

import pytest

from whitelist.models import (
    Period,
    WhitelistRecord,
    format_access_flag,
    format_period,
    normalize_identity,
    parse_access_flag,
    parse_period,
)


@pytest.mark.parametrize("text", ["01.12.2025", "01.01.2026", "01.06.1999", "01.02.2024"])
def test_period_label_round_trips_on_first_of_month(text):
    assert format_period(parse_period(text)) == text


def test_parse_period_ignores_day_but_validates_it():
    assert parse_period("15.03.2026") == Period(2026, 3)
    assert parse_period("29.02.2024") == Period(2024, 2)
    assert parse_period("29.02.2025") is None
    assert parse_period("31.04.2026") is None


@pytest.mark.parametrize(
    "text",
    [
        None,
        "",
        "   ",
        "Dec.2025",
        "1.12.2025",
        "01-12-2025",
        "2025.12.01",
        "01.13.2025",
        "00.12.2025",
        "01.12.25",
        "01.12.2025x",
        "０１.１２.２０２５",
        12,
    ],
)
def test_parse_period_returns_none_for_malformed_input(text):
    assert parse_period(text) is None


def test_parse_period_tolerates_surrounding_whitespace():
    assert parse_period(" 01.12.2025 ") == Period(2025, 12)


def test_format_period_always_uses_day_one():
    assert format_period(Period(2026, 7)) == "01.07.2026"


def test_periods_are_ordered_by_year_then_month():
    assert Period(2025, 12) < Period(2026, 1)
    assert sorted([Period(2026, 2), Period(2025, 11), Period(2026, 1)]) == [
        Period(2025, 11),
        Period(2026, 1),
        Period(2026, 2),
    ]


def test_plus_months_crosses_year_boundary():
    assert Period(2025, 11).plus_months(3) == Period(2026, 2)
    assert Period(2026, 1).plus_months(-1) == Period(2025, 12)
    assert Period(2025, 1).plus_months(11) == Period(2025, 12)


def test_current_period_uses_supplied_date():
    assert Period.current(date(2026, 1, 31)) == Period(2026, 1)


def test_period_rejects_invalid_month():
    with pytest.raises(ValueError):
        Period(2026, 13)


@pytest.mark.parametrize("text", ["True", "true", "TRUE", " tRuE "])
def test_parse_access_flag_true_tokens(text):
    assert parse_access_flag(text) is True


@pytest.mark.parametrize("text", [None, "", "False", "false", "yes", "1", "Truee", "T"])
def test_parse_access_flag_everything_else_is_false(text):
    assert parse_access_flag(text) is False


def test_format_access_flag_is_exact_case():
    assert format_access_flag(True) == "True"
    assert format_access_flag(False) == "False"


def test_missing_period_is_unauthorized():
    record = WhitelistRecord("Steve")
    record.set_access(Period(2026, 1), True)

    assert record.has_access(Period(2026, 1)) is True
    assert record.has_access(Period(2026, 2)) is False
    assert record.has_current_access(Period(2025, 12)) is False


def test_record_periods_keep_insertion_order():
    record = WhitelistRecord("Alex")
    record.set_access(Period(2026, 3), False)
    record.set_access(Period(2025, 12), True)
    record.set_access(Period(2026, 3), True)

    assert record.periods() == [Period(2026, 3), Period(2025, 12)]
    assert record.access_map() == {Period(2026, 3): True, Period(2025, 12): True}


def test_record_identity_is_case_insensitive_but_display_is_preserved():
    record = WhitelistRecord("SteveMC")

    assert record.player_name == "SteveMC"
    assert record.identity == "stevemc"
    assert record == WhitelistRecord("stevemc")
    assert hash(record) == hash(WhitelistRecord("STEVEMC"))
    assert normalize_identity("  SteveMC ") == "stevemc"


def test_records_with_different_access_are_not_equal():
    granted = WhitelistRecord("Steve")
    granted.set_access(Period(2026, 1), True)
    denied = WhitelistRecord("steve")
    denied.set_access(Period(2026, 1), False)

    assert granted != denied
    assert granted != WhitelistRecord("Steve")

    denied.set_access(Period(2026, 1), True)
    assert granted == denied
    assert hash(granted) == hash(denied)
