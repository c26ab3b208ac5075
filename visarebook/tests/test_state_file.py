from __future__ import annotations

import datetime as dt
import json
from pathlib import Path

import pytest

from visarebook.domain import BookingOutcome, ShutdownSnapshot
from visarebook.state_file import load_snapshot, save_booking_result, save_snapshot


def test_snapshot_is_written_and_read_back(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "state.json"

    save_snapshot(str(path), ShutdownSnapshot(current_booked_date=dt.date(2026, 1, 5)))

    assert json.loads(path.read_text(encoding="utf-8")) == {"currentBookedDate": "2026-01-05"}
    assert load_snapshot(str(path)) == ShutdownSnapshot(current_booked_date=dt.date(2026, 1, 5))
    assert list(path.parent.glob("*.tmp")) == []


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        "[]",
        '{"slots": []}',
        '{"currentBookedDate": "next week"}',
    ],
)
def test_broken_snapshot_is_ignored(tmp_path: Path, content: str) -> None:
    path = tmp_path / "state.json"
    path.write_text(content, encoding="utf-8")

    assert load_snapshot(str(path)) is None


def test_missing_snapshot(tmp_path: Path) -> None:
    assert load_snapshot(str(tmp_path / "state.json")) is None


def test_booking_result_record(tmp_path: Path) -> None:
    path = tmp_path / "booking_result.json"

    save_booking_result(
        str(path),
        BookingOutcome(success=True, date=dt.date(2026, 1, 5), facility_id="89", time="09:00"),
    )

    assert json.loads(path.read_text(encoding="utf-8")) == {
        "date": "2026-01-05",
        "facilityId": "89",
        "time": "09:00",
        "dryRun": False,
    }


def test_failed_outcome_is_not_persisted(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        save_booking_result(str(tmp_path / "booking_result.json"), BookingOutcome.failed())
