from __future__ import annotations

import datetime as dt
import enum
import logging
import threading
from typing import Callable

from tenacity import RetryCallState, retry, retry_if_exception, stop_after_attempt, wait_none

from visarebook.booking import resolve_booking
from visarebook.config import Settings
from visarebook.domain import (
    BookingOutcome,
    FatalError,
    OrchestratorState,
    Outcome,
    RunResult,
    SchedulingClient,
    Session,
    ShutdownSnapshot,
)
from visarebook.retry import ErrorKind, classify
from visarebook.selection import select_candidate
from visarebook.state_file import save_booking_result, save_snapshot
from visarebook.telegram_notifier import broadcast_telegram

logger = logging.getLogger(__name__)


class WorkerState(enum.Enum):
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


def _send_status_message(settings: Settings, text: str) -> None:
    # Telegram is optional: without a token and chat ids there is nobody to tell.
    if not settings.telegram_bot_token or not settings.telegram_chat_ids:
        return
    broadcast_telegram(bot_token=settings.telegram_bot_token, chat_ids=settings.telegram_chat_ids, text=text)


def _format_booking(outcome: BookingOutcome) -> str:
    prefix = "[DRY RUN] Would book" if outcome.dry_run else "Booked"
    return f"{prefix} appointment on {outcome.date} (facility_id={outcome.facility_id}, time={outcome.time})"


def _short_exc(retry_state: RetryCallState) -> str | None:
    if retry_state.outcome is None or not retry_state.outcome.failed:
        return None
    exc = retry_state.outcome.exception()
    if exc is None:
        return None
    msg = str(exc).strip()
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


def _log_after_attempt(retry_state: RetryCallState) -> None:
    if retry_state.outcome is not None and retry_state.outcome.failed:
        logger.warning("Login attempt %s failed (%s)", retry_state.attempt_number, _short_exc(retry_state))


def _retry_login_now(error: BaseException) -> bool:
    return not isinstance(error, FatalError) and classify(error) is ErrorKind.OTHER


def _log_before_sleep(retry_state: RetryCallState) -> None:
    logger.info("Login attempt %s (reason: %s)", retry_state.attempt_number + 1, _short_exc(retry_state))


class Worker:
    """Polls every facility, books the earliest improvement, repeats.

    Owns the `OrchestratorState`. The host stops it by setting `shutdown`;
    the flag is checked once per iteration, before any polling starts.
    """

    def __init__(
        self,
        client: SchedulingClient,
        settings: Settings,
        state: OrchestratorState,
        *,
        shutdown: threading.Event | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.client = client
        self.settings = settings
        self.state = state
        self.status = WorkerState.RUNNING
        self._shutdown = shutdown or threading.Event()
        self._sleep = sleep or self._interruptible_sleep

    def _interruptible_sleep(self, seconds: float) -> None:
        # Returns early once shutdown is requested; the loop top then observes it.
        self._shutdown.wait(seconds)

    def request_shutdown(self) -> None:
        self._shutdown.set()

    def _login(self) -> Session:
        # Only non-network errors are retried here, and without a pause.
        # Network errors go straight to the loop, which applies the cooldown.
        decorated = retry(
            retry=retry_if_exception(_retry_login_now),
            stop=stop_after_attempt(self.settings.login_retry_attempts),
            wait=wait_none(),
            after=_log_after_attempt,
            before_sleep=_log_before_sleep,
            reraise=True,
        )(self.client.login)

        logger.info("Initializing session...")
        return decorated()

    def _fetch_dates(self, session: Session) -> dict[str, list[dt.date]]:
        dates_by_facility: dict[str, list[dt.date]] = {}
        logger.info("Checking facilities: %s", ", ".join(self.settings.facility_ids))

        for facility_id in self.settings.facility_ids:
            try:
                dates = self.client.check_available_date(session, self.settings.schedule_id, facility_id)
            except Exception as e:
                logger.warning("Date check failed for facility %s (%s: %s)", facility_id, type(e).__name__, e)
                continue

            if dates:
                logger.info("Facility %s returned %d date(s)", facility_id, len(dates))
                dates_by_facility[facility_id] = list(dates)
            else:
                logger.info("Facility %s returned no dates", facility_id)

        return dates_by_facility

    def _persist_booking(self, outcome: BookingOutcome) -> None:
        try:
            save_booking_result(self.settings.booking_result_file, outcome)
            logger.info("Booking result saved to %s", self.settings.booking_result_file)
        except Exception:
            logger.warning("Failed to save booking result to %s", self.settings.booking_result_file, exc_info=True)

        try:
            _send_status_message(self.settings, _format_booking(outcome))
        except Exception:
            logger.warning("Failed to send telegram booking message", exc_info=True)

    def _shut_down(self) -> RunResult:
        self.status = WorkerState.SHUTTING_DOWN
        snapshot = ShutdownSnapshot(current_booked_date=self.state.current_booked_date)
        logger.info("Shutdown requested, saving current booked date %s", snapshot.current_booked_date)

        try:
            save_snapshot(self.settings.state_file, snapshot)
            logger.info("State saved to %s", self.settings.state_file)
        except Exception:
            logger.error("Failed to save state to %s", self.settings.state_file, exc_info=True)

        self.status = WorkerState.TERMINATED
        return RunResult(outcome=Outcome.SHUTDOWN_COMPLETED, state=self.state)

    def _finish(self, outcome: Outcome, error: BaseException | None = None) -> RunResult:
        self.status = WorkerState.TERMINATED
        return RunResult(outcome=outcome, state=self.state, error=error)

    def run_cycle(self, session: Session) -> RunResult | None:
        """One poll/select/book pass. Returns a result only when the run is over."""

        dates_by_facility = self._fetch_dates(session)

        candidate = select_candidate(
            dates_by_facility,
            self.state.current_booked_date,
            self.state.floor_date,
        )
        if candidate is None:
            return None

        outcome = resolve_booking(
            self.client,
            session,
            candidate,
            schedule_id=self.settings.schedule_id,
            facility_ids=self.settings.facility_ids,
            dry_run=self.settings.dry_run,
        )
        if not outcome.success or outcome.date is None:
            return None

        self._persist_booking(outcome)
        self.state = self.state.advance(outcome.date)
        logger.info("Current booked date is now %s", self.state.current_booked_date)

        if self.state.target_reached():
            logger.info("Target date reached! Booked appointment on %s", outcome.date)
            return self._finish(Outcome.TARGET_REACHED)

        if self.settings.exit_after_booking:
            logger.info("Exiting after a single booking")
            return self._finish(Outcome.SINGLE_BOOKING_COMPLETED)

        return None

    def _recover(self, error: Exception) -> None:
        if classify(error) is ErrorKind.TRANSIENT_NETWORK:
            logger.warning(
                "Network error (%s: %s). Trying again after %.0f seconds...",
                type(error).__name__,
                error,
                self.settings.cooldown_seconds,
            )
            self._sleep(self.settings.cooldown_seconds)
        else:
            logger.warning("Session error (%s: %s). Retrying immediately...", type(error).__name__, error)

    def run(self) -> RunResult:
        logger.info(
            "Worker started. current=%s target=%s min=%s dry_run=%s interval=%ss",
            self.state.current_booked_date,
            self.state.target_date,
            self.state.floor_date,
            self.settings.dry_run,
            self.settings.refresh_delay_seconds,
        )

        session: Session | None = None
        while True:
            if self._shutdown.is_set():
                return self._shut_down()

            try:
                if session is None:
                    session = self._login()
                result = self.run_cycle(session)
            except FatalError as e:
                logger.error("Fatal error (%s: %s), stopping", type(e).__name__, e)
                return self._finish(Outcome.FATAL_ERROR, error=e)
            except Exception as e:
                # Drop the session; the next iteration logs in again with the latest state.
                session = None
                self._recover(e)
                continue

            if result is not None:
                return result

            self._sleep(self.settings.refresh_delay_seconds)
