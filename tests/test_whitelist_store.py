from __future__ import annotations

import pytest

from whitelist.models import Period, format_period
from whitelist.store import EXAMPLE_PLAYERS, WhitelistStore

EXAMPLE_DOCUMENT = "Playername,01.12.2025,01.01.2026\nSteve,True,True\nAlex,False,True\n"


@pytest.fixture
def store():
    return WhitelistStore()


def test_example_document_resolves_per_month(store):
    result = store.load_from_table(EXAMPLE_DOCUMENT, now=Period(2026, 1))

    assert result.success_count == 2
    assert result.failure_count == 0
    assert result.bootstrapped is False
    assert store.resolve_currently_authorized(Period(2026, 1)) == {"steve", "alex"}
    assert store.resolve_currently_authorized(Period(2025, 12)) == {"steve"}
    assert store.resolve_currently_authorized(Period(2026, 2)) == set()


def test_lookup_is_case_insensitive_and_keeps_display_name(store):
    store.load_from_table(EXAMPLE_DOCUMENT, now=Period(2026, 1))

    record = store.lookup("STEVE")
    assert record is not None
    assert record.player_name == "Steve"
    assert store.contains("alex")
    assert store.lookup("Carol") is None
    assert store.is_whitelisted("aLeX", Period(2026, 1)) is True
    assert store.is_whitelisted("aLeX", Period(2025, 12)) is False


def test_load_accepts_bytes_with_bom_and_crlf(store):
    raw = ("\ufeff" + EXAMPLE_DOCUMENT.replace("\n", "\r\n")).encode("utf-8")

    result = store.load_from_table(raw, now=Period(2026, 1))

    assert result.bootstrapped is False
    assert store.entry_count == 2


def test_header_label_is_case_insensitive(store):
    result = store.load_from_table("PLAYERNAME,01.01.2026\nSteve,True\n", now=Period(2026, 1))

    assert result.bootstrapped is False
    assert store.is_whitelisted("steve", Period(2026, 1))


def test_short_row_leaves_trailing_months_unauthorized(store):
    document = "Playername,01.01.2026,01.02.2026,01.03.2026\nSteve,True\nAlex,True,,\n"

    result = store.load_from_table(document, now=Period(2026, 1))

    assert result.failure_count == 0
    steve = store.lookup("steve")
    assert steve.has_access(Period(2026, 1)) is True
    assert steve.has_access(Period(2026, 2)) is False
    assert steve.has_access(Period(2026, 3)) is False
    assert steve.periods() == [Period(2026, 1)]
    alex = store.lookup("alex")
    assert alex.has_access(Period(2026, 2)) is False


def test_extra_data_columns_are_ignored(store):
    store.load_from_table("Playername,01.01.2026\nSteve,True,True,True\n", now=Period(2026, 1))

    assert store.lookup("steve").periods() == [Period(2026, 1)]


def test_unparseable_header_column_keeps_alignment(store):
    document = "Playername,01.12.2025,Notes,01.01.2026\nSteve,False,True,True\n"

    result = store.load_from_table(document, now=Period(2026, 1))

    assert result.bootstrapped is False
    assert any("Notes" in warning for warning in result.warnings)
    steve = store.lookup("steve")
    assert steve.periods() == [Period(2025, 12), Period(2026, 1)]
    assert steve.has_access(Period(2025, 12)) is False
    assert steve.has_access(Period(2026, 1)) is True


def test_empty_player_name_is_counted_and_skipped(store):
    document = "Playername,01.01.2026\n,True\n   ,True\nSteve,True\n"

    result = store.load_from_table(document, now=Period(2026, 1))

    assert result.success_count == 1
    assert result.failure_count == 2
    assert store.entry_count == 1


def test_blank_lines_are_skipped_without_counting(store):
    result = store.load_from_table("Playername,01.01.2026\n\nSteve,True\n\n", now=Period(2026, 1))

    assert result.success_count == 1
    assert result.failure_count == 0


def test_duplicate_rows_later_row_replaces_earlier(store):
    document = (
        "Playername,01.12.2025,01.01.2026\n"
        "Steve,True,True\n"
        "steve,False\n"
    )

    result = store.load_from_table(document, now=Period(2026, 1))

    assert result.success_count == 2
    assert store.entry_count == 1
    record = store.lookup("Steve")
    assert record.player_name == "steve"
    assert record.has_access(Period(2025, 12)) is False
    # not merged: the second row never mentions January
    assert record.has_access(Period(2026, 1)) is False


@pytest.mark.parametrize(
    "document",
    [
        "",
        None,
        b"",
        "\n\n",
        "Name,01.01.2026\nSteve,True\n",
        "Steve,True,True\n",
        "Playername\nSteve\n",
    ],
)
def test_missing_or_invalid_header_bootstraps_default(store, document):
    now = Period(2026, 10)

    result = store.load_from_table(document, now=now)

    assert result.bootstrapped is True
    assert result.document is not None
    assert store.entry_count == 2
    assert store.all_periods() == [now.plus_months(i) for i in range(12)]


def test_bootstrap_default_examples(store):
    now = Period(2025, 11)

    document = store.bootstrap_default(now)

    trial, full = (store.lookup(name) for name in EXAMPLE_PLAYERS)
    months = [now.plus_months(i) for i in range(12)]
    assert [trial.has_access(m) for m in months] == [True] * 3 + [False] * 9
    assert all(full.has_access(m) for m in months)

    header, *rows = document.strip().split("\n")
    assert header.split(",") == ["Playername"] + [format_period(m) for m in months]
    assert header.split(",")[1] == "01.11.2025"
    assert header.split(",")[-1] == "01.10.2026"
    assert rows[0] == "ExamplePlayer1," + ",".join(["True"] * 3 + ["False"] * 9)
    assert rows[1] == "ExamplePlayer2," + ",".join(["True"] * 12)


def test_bootstrap_document_reloads_to_same_store(store):
    now = Period(2026, 4)
    document = store.bootstrap_default(now)

    reloaded = WhitelistStore()
    result = reloaded.load_from_table(document, now=now)

    assert result.bootstrapped is False
    assert reloaded.serialize_to_table() == document


def test_serialize_uses_sorted_union_of_months(store):
    store.load_from_table(
        "Playername,01.03.2026,01.01.2026\nSteve,True\nAlex,False,True\n",
        now=Period(2026, 1),
    )

    assert store.serialize_to_table() == (
        "Playername,01.01.2026,01.03.2026\n"
        "Steve,False,True\n"
        "Alex,True,False\n"
    )


def test_serialize_then_load_is_equivalent(store):
    document = (
        "Playername,01.12.2025,bogus,01.01.2026,01.02.2026\n"
        "Steve,true,x,TRUE\n"
        "Alex,False,,True,garbage\n"
        "carol,,,,True\n"
    )
    store.load_from_table(document, now=Period(2026, 1))

    reloaded = WhitelistStore()
    reloaded.load_from_table(store.serialize_to_table(), now=Period(2026, 1))

    assert {r.identity for r in reloaded.records()} == {r.identity for r in store.records()}
    for period in store.all_periods():
        assert reloaded.resolve_currently_authorized(period) == store.resolve_currently_authorized(period)


def test_reload_replaces_previous_contents(store):
    store.load_from_table(EXAMPLE_DOCUMENT, now=Period(2026, 1))
    store.load_from_table("Playername,01.01.2026\nCarol,True\n", now=Period(2026, 1))

    assert [r.player_name for r in store.records()] == ["Carol"]


def test_clear_empties_store(store):
    store.load_from_table(EXAMPLE_DOCUMENT, now=Period(2026, 1))
    store.clear()

    assert len(store) == 0
    assert store.resolve_currently_authorized(Period(2026, 1)) == set()
