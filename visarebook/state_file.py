from __future__ import annotations

import datetime as dt
import json
import os
import tempfile
from typing import Any

from visarebook.domain import BookingOutcome, ShutdownSnapshot


def _write_json_atomic(path: str, data: dict[str, Any]) -> None:
    folder = os.path.dirname(os.path.abspath(path))
    if folder and not os.path.exists(folder):
        os.makedirs(folder, exist_ok=True)

    with tempfile.NamedTemporaryFile("w", delete=False, encoding="utf-8", dir=folder, suffix=".tmp") as tf:
        json.dump(data, tf, ensure_ascii=False, indent=2)
        tmp_name = tf.name

    os.replace(tmp_name, path)


def load_snapshot(path: str) -> ShutdownSnapshot | None:
    if not os.path.exists(path):
        return None

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError):
        # A broken snapshot must not block startup; the CLI date is used instead.
        return None

    if not isinstance(raw, dict):
        return None

    try:
        return ShutdownSnapshot(current_booked_date=dt.date.fromisoformat(str(raw["currentBookedDate"])))
    except (KeyError, ValueError):
        return None


def save_snapshot(path: str, snapshot: ShutdownSnapshot) -> None:
    _write_json_atomic(path, {"currentBookedDate": snapshot.current_booked_date.isoformat()})


def save_booking_result(path: str, outcome: BookingOutcome) -> None:
    if not outcome.success or outcome.date is None:
        raise ValueError("Only successful booking outcomes are persisted")

    data = {
        "date": outcome.date.isoformat(),
        "facilityId": outcome.facility_id,
        "time": outcome.time,
        "dryRun": outcome.dry_run,
    }
    _write_json_atomic(path, data)
