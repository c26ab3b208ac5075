from __future__ import annotations

import datetime as dt
import logging
import re
from typing import Any

import httpx

from visarebook.domain import AuthenticationError, ServiceError, Session

logger = logging.getLogger(__name__)

BASE_URL = "https://ais.usvisa-info.com"

SESSION_COOKIE = "_yatri_session"

_CSRF_RE = re.compile(r'<meta name="csrf-token" content="([^"]+)"')

_JSON_HEADERS = {
    "Accept": "application/json",
    "X-Requested-With": "XMLHttpRequest",
}


def build_base_uri(country_code: str) -> str:
    # e.g. en-ca
    return f"{BASE_URL}/{country_code}/niv"


def _extract_csrf_token(html: str) -> str | None:
    m = _CSRF_RE.search(html)
    return m.group(1) if m else None


def _handle_errors(data: Any) -> Any:
    if isinstance(data, dict) and data.get("error"):
        raise ServiceError(str(data["error"]))
    return data


class VisaHttpClient:
    """HTTP client for the visa appointment portal.

    Every call opens a short-lived httpx client; the session cookie and CSRF
    token travel explicitly in the `Session` instead of a cookie jar.
    """

    def __init__(
        self,
        *,
        country_code: str,
        email: str,
        password: str,
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_uri = build_base_uri(country_code)
        self._email = email
        self._password = password
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_uri,
            timeout=self._timeout_seconds,
            transport=self._transport,
            headers={"User-Agent": "", "Cache-Control": "no-store"},
        )

    def _session_headers(self, session: Session) -> dict[str, str]:
        return {
            "Cookie": f"{SESSION_COOKIE}={session.cookie}",
            "X-CSRF-Token": session.csrf_token,
            "Referer": self.base_uri,
        }

    def _session_from_page(self, r: httpx.Response, *, fallback_cookie: str | None = None) -> Session:
        token = _extract_csrf_token(r.text)
        if not token:
            raise AuthenticationError(f"CSRF token not found on {r.request.url}")
        cookie = r.cookies.get(SESSION_COOKIE) or fallback_cookie
        if not cookie:
            raise AuthenticationError(f"{SESSION_COOKIE} cookie not set by {r.request.url}")
        return Session(cookie=cookie, csrf_token=token)

    def login(self) -> Session:
        with self._client() as client:
            r = client.get("/users/sign_in")
            r.raise_for_status()
            anonymous = self._session_from_page(r)

            r = client.post(
                "/users/sign_in",
                headers={
                    **self._session_headers(anonymous),
                    "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
                },
                data={
                    "utf8": "✓",
                    "user[email]": self._email,
                    "user[password]": self._password,
                    "policy_confirmed": "1",
                    "commit": "Sign In",
                },
            )
            # Sign in answers with a redirect on success.
            if r.is_error:
                r.raise_for_status()

        cookie = r.cookies.get(SESSION_COOKIE)
        if not cookie:
            raise AuthenticationError("Sign in did not return a session cookie")

        logger.info("Logged in to %s", self.base_uri)
        return Session(cookie=cookie, csrf_token=anonymous.csrf_token)

    def _get_json(self, session: Session, path: str, params: dict[str, str]) -> Any:
        with self._client() as client:
            r = client.get(path, params=params, headers={**self._session_headers(session), **_JSON_HEADERS})
            r.raise_for_status()
            return _handle_errors(r.json())

    def check_available_date(self, session: Session, schedule_id: str, facility_id: str) -> list[dt.date]:
        data = self._get_json(
            session,
            f"/schedule/{schedule_id}/appointment/days/{facility_id}.json",
            {"appointments[expedite]": "false"},
        )
        return [dt.date.fromisoformat(item["date"]) for item in data or []]

    def check_available_time(
        self, session: Session, schedule_id: str, facility_id: str, date: dt.date
    ) -> str | None:
        data = self._get_json(
            session,
            f"/schedule/{schedule_id}/appointment/times/{facility_id}.json",
            {"date": date.isoformat(), "appointments[expedite]": "false"},
        )
        times = list(data.get("business_times") or []) + list(data.get("available_times") or [])
        return times[0] if times else None

    def book(self, session: Session, schedule_id: str, facility_id: str, date: dt.date, time: str) -> None:
        path = f"/schedule/{schedule_id}/appointment"

        with self._client() as client:
            # The appointment form carries its own CSRF token.
            r = client.get(path, headers={"Cookie": f"{SESSION_COOKIE}={session.cookie}"})
            r.raise_for_status()
            form_session = self._session_from_page(r, fallback_cookie=session.cookie)

            r = client.post(
                path,
                follow_redirects=True,
                headers={
                    **self._session_headers(form_session),
                    "Content-Type": "application/x-www-form-urlencoded",
                },
                data={
                    "utf8": "✓",
                    "authenticity_token": form_session.csrf_token,
                    "confirmed_limit_message": "1",
                    "use_consulate_appointment_capacity": "true",
                    "appointments[consulate_appointment][facility_id]": str(facility_id),
                    "appointments[consulate_appointment][date]": date.isoformat(),
                    "appointments[consulate_appointment][time]": time,
                    "appointments[asc_appointment][facility_id]": "",
                    "appointments[asc_appointment][date]": "",
                    "appointments[asc_appointment][time]": "",
                },
            )
            r.raise_for_status()
