import argparse
import datetime as dt
import logging
import signal
from dataclasses import replace

from visarebook.config import load_settings
from visarebook.domain import OrchestratorState, Outcome
from visarebook.state_file import load_snapshot
from visarebook.visa_client import VisaHttpClient
from visarebook.worker import Worker, _send_status_message

logger = logging.getLogger(__name__)

_EXIT_CODES = {
    Outcome.TARGET_REACHED: 0,
    Outcome.SINGLE_BOOKING_COMPLETED: 0,
    Outcome.SHUTDOWN_COMPLETED: 0,
    Outcome.FATAL_ERROR: 1,
}


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def _iso_date(value: str) -> dt.date:
    try:
        return dt.date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD") from e


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="visarebook: reschedule a visa appointment to an earlier date")
    parser.add_argument("-c", "--current", type=_iso_date, help="Currently booked date (YYYY-MM-DD)")
    parser.add_argument("-t", "--target", type=_iso_date, help="Stop once booked at or before this date")
    parser.add_argument("-m", "--min", type=_iso_date, help="Latest date still acceptable to book")
    parser.add_argument("--dry-run", action="store_true", help="Only log what would be booked")
    parser.add_argument("--exit-after-booking", action="store_true", help="Exit after the first successful booking")
    return parser


def _initial_state(args: argparse.Namespace, state_file: str) -> OrchestratorState:
    snapshot = load_snapshot(state_file)
    current = args.current

    if snapshot is not None:
        logger.info("Found saved state in %s: current booked date %s", state_file, snapshot.current_booked_date)
        if current is None or snapshot.current_booked_date < current:
            current = snapshot.current_booked_date

    if current is None:
        raise RuntimeError(f"Current booked date is required: pass --current or provide {state_file}")

    return OrchestratorState(current_booked_date=current, target_date=args.target, floor_date=args.min)


def main() -> int:
    args = _build_parser().parse_args()

    _setup_logging()
    settings = load_settings()
    # CLI flags can only switch these modes on.
    settings = replace(
        settings,
        dry_run=settings.dry_run or args.dry_run,
        exit_after_booking=settings.exit_after_booking or args.exit_after_booking,
    )

    state = _initial_state(args, settings.state_file)

    client = VisaHttpClient(
        country_code=settings.country_code,
        email=settings.email,
        password=settings.password,
        timeout_seconds=settings.request_timeout_seconds,
    )
    worker = Worker(client, settings, state)

    def _request_shutdown(signum, _frame) -> None:
        logger.info("Received signal %s, finishing the current cycle and saving state...", signum)
        worker.request_shutdown()

    signal.signal(signal.SIGTERM, _request_shutdown)
    signal.signal(signal.SIGINT, _request_shutdown)

    try:
        _send_status_message(
            settings,
            text=(
                "visarebook started.\n"
                f"Current booked date: {state.current_booked_date}\n"
                f"dry_run={settings.dry_run} exit_after_booking={settings.exit_after_booking}"
            ),
        )
    except Exception:
        logger.warning("Failed to send Telegram startup message", exc_info=True)

    try:
        result = worker.run()
        if result.outcome is Outcome.FATAL_ERROR:
            try:
                _send_status_message(
                    settings,
                    text=f"visarebook stopped with an error.\nReason: {type(result.error).__name__}: {result.error}",
                )
            except Exception:
                logger.warning("Failed to send Telegram crash message", exc_info=True)

        logger.info("Finished: %s (current booked date %s)", result.outcome.value, result.state.current_booked_date)
        return _EXIT_CODES[result.outcome]

    finally:
        try:
            _send_status_message(
                settings,
                text=f"visarebook stopped. Current booked date: {worker.state.current_booked_date}",
            )
        except Exception:
            logger.warning("Failed to send Telegram shutdown message", exc_info=True)


if __name__ == "__main__":
    raise SystemExit(main())
