from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass

from dotenv import load_dotenv


def _parse_facility_ids(raw: str) -> tuple[str, ...]:
    # FACILITY_ID supports several formats:
    #   FACILITY_ID=89
    #   FACILITY_ID=89,90   (also ';' or whitespace)
    #   FACILITY_ID=["89","90"]
    text = raw.strip()

    parts: list[str] | None = None
    if text.startswith("["):
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            parts = [str(p).strip() for p in parsed]

    if parts is None:
        cleaned = text.removeprefix("[").removesuffix("]")
        parts = [p.strip().strip("\"'") for p in re.split(r"[;,\s]+", cleaned)]

    seen: set[str] = set()
    result: list[str] = []
    for p in parts:
        if not p or p in seen:
            continue
        seen.add(p)
        result.append(p)

    if not result:
        raise RuntimeError("FACILITY_ID is empty. Provide at least one facility id.")

    return tuple(result)


def _parse_telegram_chat_ids(raw: str | None) -> tuple[str, ...]:
    # TELEGRAM_CHAT_ID is optional; when set it is a single value or a comma-separated list.
    if raw is None or not raw.strip():
        return ()

    seen: set[str] = set()
    result: list[str] = []
    for p in (p.strip() for p in raw.split(",")):
        if not p:
            continue
        try:
            int(p)
        except ValueError as e:
            raise RuntimeError(f"Invalid TELEGRAM_CHAT_ID value: {p!r}. Expected integer chat id.") from e

        if p == "0":
            raise RuntimeError("Invalid TELEGRAM_CHAT_ID value: '0' is not a valid chat id")

        if p in seen:
            continue
        seen.add(p)
        result.append(p)

    return tuple(result)


def _parse_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def _parse_positive_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        value = float(raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid {name} value: {raw!r}. Expected a number of seconds.") from e
    if value <= 0:
        raise RuntimeError(f"{name} must be > 0")
    return value


@dataclass(frozen=True)
class Settings:
    email: str
    password: str
    country_code: str
    schedule_id: str
    facility_ids: tuple[str, ...]

    refresh_delay_seconds: float = 3.0

    # Wait after a connection reset / DNS failure / timeout before logging in again.
    cooldown_seconds: float = 3600.0

    # Immediate tenacity login attempts for non-network errors before the error reaches the worker loop.
    login_retry_attempts: int = 3

    request_timeout_seconds: float = 30.0

    dry_run: bool = False

    # False: keep polling for an even earlier date after a booking.
    exit_after_booking: bool = False

    state_file: str = "state.json"
    booking_result_file: str = "booking_result.json"

    telegram_bot_token: str | None = None
    telegram_chat_ids: tuple[str, ...] = ()


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def load_settings(dotenv_path: str | None = None) -> Settings:
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    raw_attempts = os.getenv("LOGIN_RETRY_ATTEMPTS", "3")
    try:
        login_retry_attempts = int(raw_attempts)
    except ValueError as e:
        raise RuntimeError(f"Invalid LOGIN_RETRY_ATTEMPTS value: {raw_attempts!r}. Expected an integer.") from e
    if login_retry_attempts < 1:
        raise RuntimeError("LOGIN_RETRY_ATTEMPTS must be >= 1")

    return Settings(
        email=_require("EMAIL"),
        password=_require("PASSWORD"),
        country_code=_require("COUNTRY_CODE"),
        schedule_id=_require("SCHEDULE_ID"),
        facility_ids=_parse_facility_ids(_require("FACILITY_ID")),
        refresh_delay_seconds=_parse_positive_float("REFRESH_DELAY", "3"),
        cooldown_seconds=_parse_positive_float("COOLDOWN_SECONDS", "3600"),
        login_retry_attempts=login_retry_attempts,
        request_timeout_seconds=_parse_positive_float("REQUEST_TIMEOUT_SECONDS", "30"),
        dry_run=_parse_bool("DRY_RUN"),
        exit_after_booking=_parse_bool("EXIT_AFTER_BOOKING"),
        state_file=os.getenv("STATE_FILE", "state.json"),
        booking_result_file=os.getenv("BOOKING_RESULT_FILE", "booking_result.json"),
        telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN") or None,
        telegram_chat_ids=_parse_telegram_chat_ids(os.getenv("TELEGRAM_CHAT_ID")),
    )
