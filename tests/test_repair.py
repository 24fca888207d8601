from __future__ import annotations

import pytest

from conftest import add_entry, totals_consistent

from valot.database import SQLiteStorageEngine, check_integrity, repair_integrity
from valot.database.repair import (
    close_duplicate_active_entries,
    fix_invalid_intervals,
    normalize_durations,
    resync_instance_totals,
)


def _entries(db: SQLiteStorageEngine) -> list[dict]:
    return db.query("SELECT id, start_time, end_time, duration FROM TimeEntry ORDER BY id")


@pytest.mark.integration
def test_end_before_start_collapses_to_zero_length(engine: SQLiteStorageEngine) -> None:
    add_entry(engine, "Review", "2024-01-01 10:00:00", "2024-01-01 09:00:00", duration=-3600)

    assert fix_invalid_intervals(engine) == 1
    [entry] = _entries(engine)
    assert entry["end_time"] == "2024-01-01 10:00:00"
    assert entry["duration"] == 0


@pytest.mark.integration
def test_duplicate_active_entries_keep_latest_start(engine: SQLiteStorageEngine) -> None:
    instance = add_entry(engine, "Write", "2024-01-01 11:00:00", None)
    add_entry(engine, "Write", "2024-01-01 10:00:00", None, instance_id=instance)

    assert close_duplicate_active_entries(engine) == 1

    still_open = engine.query("SELECT start_time FROM TimeEntry WHERE end_time IS NULL")
    assert still_open == [{"start_time": "2024-01-01 11:00:00"}]
    closed = engine.query("SELECT start_time, end_time, duration FROM TimeEntry WHERE end_time IS NOT NULL")
    assert closed == [
        {"start_time": "2024-01-01 10:00:00", "end_time": "2024-01-01 10:00:00", "duration": 0}
    ]


@pytest.mark.integration
def test_open_entries_on_different_instances_are_left_alone(engine: SQLiteStorageEngine) -> None:
    add_entry(engine, "Write", "2024-01-01 10:00:00", None)
    add_entry(engine, "Write", "2024-01-01 11:00:00", None)
    assert close_duplicate_active_entries(engine) == 0


@pytest.mark.integration
def test_missing_and_negative_durations_are_normalized(engine: SQLiteStorageEngine) -> None:
    add_entry(engine, "A", "2024-01-01 10:00:00", "2024-01-01 10:30:00", duration=None)
    add_entry(engine, "B", "2024-01-01 10:00:00", "2024-01-01T10:00:45", duration=-2)
    add_entry(engine, "C", "garbage", "2024-01-01 10:00:00", duration=None)
    assert normalize_durations(engine) == 3
    assert [e["duration"] for e in _entries(engine)] == [1800, 45, 0]


@pytest.mark.integration
def test_resync_only_touches_mismatched_instances(engine: SQLiteStorageEngine) -> None:
    good = add_entry(engine, "A", "2024-01-01 10:00:00", "2024-01-01 10:10:00", duration=600)
    bad = add_entry(engine, "B", "2024-01-01 10:00:00", "2024-01-01 10:20:00", duration=1200)
    engine.execute("UPDATE TaskInstance SET total_time = 600 WHERE id = ?", (good,))
    engine.execute("UPDATE TaskInstance SET total_time = 5 WHERE id = ?", (bad,))

    assert resync_instance_totals(engine) == 1
    assert totals_consistent(engine)


@pytest.mark.integration
def test_repair_is_idempotent(engine: SQLiteStorageEngine) -> None:
    instance = add_entry(engine, "Write", "2024-01-01 11:00:00", None)
    add_entry(engine, "Write", "2024-01-01 10:00:00", None, instance_id=instance)
    add_entry(engine, "Review", "2024-01-02 10:00:00", "2024-01-02 09:00:00", duration=-3600)
    add_entry(engine, "Plan", "2024-01-03 10:00:00", "2024-01-03 10:05:00", duration=None)

    with engine.transaction():
        first = repair_integrity(engine)
    assert first.duplicate_active_closed == 1
    assert first.invalid_intervals_fixed == 1
    assert first.durations_normalized == 1
    assert first.totals_resynced >= 1
    assert check_integrity(engine).ok

    second = repair_integrity(engine)
    assert second.total_changes == 0
    assert second.as_dict() == {
        "duplicate_active_closed": 0,
        "invalid_intervals_fixed": 0,
        "durations_normalized": 0,
        "totals_resynced": 0,
    }


@pytest.mark.integration
def test_check_integrity_reports_violations_without_fixing(engine: SQLiteStorageEngine) -> None:
    instance = add_entry(engine, "Write", "2024-01-01 11:00:00", None)
    add_entry(engine, "Write", "2024-01-01 10:00:00", None, instance_id=instance)
    add_entry(engine, "Review", "2024-01-02 10:00:00", "2024-01-02 09:00:00", duration=0)
    engine.execute("UPDATE TaskInstance SET total_time = 99 WHERE id = ?", (instance,))

    report = check_integrity(engine)
    assert not report.ok
    assert report.multiple_active == [instance]
    assert len(report.invalid_intervals) == 1
    assert report.total_mismatches == [instance]
    assert report.missing_reserved == []
    assert report.summary()["multiple_active"] == 1

    assert len(engine.query("SELECT id FROM TimeEntry WHERE end_time IS NULL")) == 2


@pytest.mark.integration
def test_check_integrity_flags_missing_reserved_rows(engine: SQLiteStorageEngine) -> None:
    engine.execute("DELETE FROM Project WHERE id = 1")
    assert check_integrity(engine).missing_reserved == ["Project"]


@pytest.mark.integration
def test_initialize_repairs_databases_below_current_version(engine: SQLiteStorageEngine) -> None:
    instance = add_entry(engine, "Write", "2024-01-01 11:00:00", None)
    add_entry(engine, "Write", "2024-01-01 10:00:00", None, instance_id=instance)
    add_entry(engine, "Review", "2024-01-02 10:00:00", "2024-01-02 09:00:00", duration=-3600)
    engine.set_schema_version(2)

    engine.initialize()

    assert engine.get_schema_version() == 4
    assert check_integrity(engine).ok
    assert totals_consistent(engine)


@pytest.mark.integration
def test_initialize_at_current_version_does_not_repair(engine: SQLiteStorageEngine) -> None:
    add_entry(engine, "Review", "2024-01-02 10:00:00", "2024-01-02 09:00:00", duration=-3600)
    engine.initialize()
    assert _entries(engine)[0]["duration"] == -3600
