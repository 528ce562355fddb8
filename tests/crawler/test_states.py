"""Fixed jurisdiction table."""

from __future__ import annotations

from SchedulingLinks.Crawler.states import State, lookup_state, resolve_states, state_rows


def test_table_has_57_codes_with_stable_ids() -> None:
    rows = state_rows()

    assert len(rows) == 57
    assert rows[0] == (1, "AL")
    assert rows[-1] == (57, "UM")
    assert State.MA == 22
    assert State.DC == 9
    assert State.PR == 55


def test_lookup_is_case_insensitive() -> None:
    assert lookup_state("ma") is State.MA
    assert lookup_state(" Ri ") is State.RI
    assert lookup_state("ZZ") is None
    assert lookup_state(22) is None


def test_resolve_states_drops_unknown_and_duplicates(caplog) -> None:
    with caplog.at_level("WARNING"):
        states = resolve_states(["MA", "ZZ", "ma", "NH"], url="https://p.example/l.ndjson")

    assert states == [State.MA, State.NH]
    assert "ZZ" in caplog.text


def test_states_are_seeded_in_database(db) -> None:
    rows = db.fetchall("SELECT state_id, name FROM states ORDER BY state_id")

    assert [(r[0], r[1]) for r in rows] == state_rows()
