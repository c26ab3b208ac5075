from __future__ import annotations

import datetime as dt
import logging
from typing import Iterable, Sequence

from visarebook.domain import DRY_RUN_TIME, AppointmentCandidate, BookingOutcome, SchedulingClient, Session

logger = logging.getLogger(__name__)


def _check_time(
    client: SchedulingClient,
    session: Session,
    *,
    schedule_id: str,
    facility_id: str,
    date: dt.date,
) -> str | None:
    try:
        return client.check_available_time(session, schedule_id, facility_id, date)
    except Exception as e:
        logger.warning(
            "Time check failed for facility %s on %s (%s: %s)",
            facility_id,
            date,
            type(e).__name__,
            e,
        )
        return None


def _facility_order(candidate: AppointmentCandidate, facility_ids: Iterable[str]) -> list[str]:
    rest = [fid for fid in facility_ids if str(fid) != str(candidate.facility_id)]
    return [candidate.facility_id, *rest]


def resolve_booking(
    client: SchedulingClient,
    session: Session,
    candidate: AppointmentCandidate,
    *,
    schedule_id: str,
    facility_ids: Sequence[str],
    dry_run: bool = False,
) -> BookingOutcome:
    """Find a time for `candidate.date` and book it.

    The facility that reported the date is asked first, then the other
    configured facilities in their configured order. Returns a failed
    outcome when no facility has a time. In dry-run mode `client.book` is
    never called. Errors from `client.book` propagate.
    """

    date = candidate.date
    time: str | None = None
    facility_id: str | None = None

    for i, fid in enumerate(_facility_order(candidate, facility_ids)):
        time = _check_time(client, session, schedule_id=schedule_id, facility_id=fid, date=date)
        if time:
            facility_id = fid
            if i > 0:
                logger.info("Found time %s for %s at fallback facility %s", time, date, fid)
            break
        if i == 0:
            logger.info("No time for %s at facility %s, trying other facilities", date, fid)

    if not time or facility_id is None:
        logger.info("No available time slots for %s", date)
        return BookingOutcome.failed()

    if dry_run:
        logger.info("[DRY RUN] Would book %s %s (facility %s), not booking", date, time, facility_id)
        return BookingOutcome(success=True, date=date, facility_id=facility_id, time=DRY_RUN_TIME)

    client.book(session, schedule_id, facility_id, date, time)

    logger.info("Booked %s %s (facility %s)", date, time, facility_id)
    return BookingOutcome(success=True, date=date, facility_id=facility_id, time=time)
