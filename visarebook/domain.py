from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass, replace
from typing import Protocol

DRY_RUN_TIME = "DRY_RUN"


@dataclass(frozen=True)
class Session:
    """Authenticated portal session: the `_yatri_session` cookie plus the CSRF token."""

    cookie: str
    csrf_token: str


@dataclass(frozen=True)
class AppointmentCandidate:
    date: dt.date
    facility_id: str


@dataclass(frozen=True)
class BookingOutcome:
    success: bool
    date: dt.date | None = None
    facility_id: str | None = None
    time: str | None = None

    @classmethod
    def failed(cls) -> BookingOutcome:
        return cls(success=False)

    @property
    def dry_run(self) -> bool:
        return self.time == DRY_RUN_TIME


@dataclass(frozen=True)
class OrchestratorState:
    """What the worker is trying to beat.

    `current_booked_date` only ever moves earlier: `advance()` keeps the
    earlier of the held date and the newly booked one.
    """

    current_booked_date: dt.date
    target_date: dt.date | None = None
    floor_date: dt.date | None = None

    def advance(self, booked_date: dt.date) -> OrchestratorState:
        return replace(self, current_booked_date=min(self.current_booked_date, booked_date))

    def target_reached(self) -> bool:
        return self.target_date is not None and self.current_booked_date <= self.target_date


@dataclass(frozen=True)
class ShutdownSnapshot:
    current_booked_date: dt.date


class Outcome(enum.Enum):
    TARGET_REACHED = "target_reached"
    SHUTDOWN_COMPLETED = "shutdown_completed"
    SINGLE_BOOKING_COMPLETED = "single_booking_completed"
    FATAL_ERROR = "fatal_error"


@dataclass(frozen=True)
class RunResult:
    outcome: Outcome
    state: OrchestratorState
    error: BaseException | None = None


class SchedulingClient(Protocol):
    def login(self) -> Session: ...

    def check_available_date(self, session: Session, schedule_id: str, facility_id: str) -> list[dt.date]: ...

    def check_available_time(
        self, session: Session, schedule_id: str, facility_id: str, date: dt.date
    ) -> str | None: ...

    def book(self, session: Session, schedule_id: str, facility_id: str, date: dt.date, time: str) -> None: ...


class AuthenticationError(RuntimeError):
    """Sign-in did not produce a usable session (no CSRF token or session cookie)."""


class ServiceError(RuntimeError):
    """The portal answered with an explicit `{"error": ...}` payload."""


class FatalError(RuntimeError):
    """Raised by a collaborator when retrying cannot help.

    The worker does not retry it: the run ends with `Outcome.FATAL_ERROR`.
    """
