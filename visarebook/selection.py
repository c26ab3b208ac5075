from __future__ import annotations

import datetime as dt
import logging
from typing import Mapping, Sequence

from visarebook.domain import AppointmentCandidate

logger = logging.getLogger(__name__)


def select_candidate(
    dates_by_facility: Mapping[str, Sequence[dt.date]],
    current_booked_date: dt.date,
    floor_date: dt.date | None = None,
) -> AppointmentCandidate | None:
    """Pick the earliest date that beats the held booking.

    Facilities that failed or returned nothing are simply absent or empty in
    `dates_by_facility`. With a floor date only dates on or before it are
    eligible. Equal dates go to the facility seen first.
    """

    candidates: list[AppointmentCandidate] = []
    for facility_id, dates in dates_by_facility.items():
        for date in dates or ():
            if date >= current_booked_date:
                logger.debug(
                    "Date %s (facility %s) is not earlier than the current booking %s",
                    date,
                    facility_id,
                    current_booked_date,
                )
                continue
            if floor_date is not None and date > floor_date:
                logger.debug("Date %s (facility %s) is after the floor date %s", date, facility_id, floor_date)
                continue
            candidates.append(AppointmentCandidate(date=date, facility_id=facility_id))

    if not candidates:
        logger.info("No suitable dates found after filtering")
        return None

    # sorted() is stable, so the first facility wins among equal dates.
    earliest = sorted(candidates, key=lambda c: c.date)[0]
    logger.info(
        "Found %d suitable date(s), earliest: %s (facility %s)",
        len(candidates),
        earliest.date,
        earliest.facility_id,
    )
    return earliest
