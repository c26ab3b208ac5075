from __future__ import annotations

import datetime as dt
from urllib.parse import parse_qs

import httpx
import pytest

from visarebook.domain import AuthenticationError, ServiceError, Session
from visarebook.visa_client import VisaHttpClient, build_base_uri

SESSION = Session(cookie="authed", csrf_token="tok1")


def _page(token: str, cookie: str) -> httpx.Response:
    html = f'<html><head><meta name="csrf-token" content="{token}" /></head><body></body></html>'
    return httpx.Response(200, text=html, headers={"Set-Cookie": f"_yatri_session={cookie}; path=/; HttpOnly"})


def _client(handler) -> VisaHttpClient:
    return VisaHttpClient(
        country_code="en-ca",
        email="u@example.com",
        password="secret",
        transport=httpx.MockTransport(handler),
    )


def _form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode(), keep_blank_values=True).items()}


def test_build_base_uri() -> None:
    assert build_base_uri("en-ca") == "https://ais.usvisa-info.com/en-ca/niv"


def test_login_returns_session_from_sign_in_response() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        assert request.url.path == "/en-ca/niv/users/sign_in"
        if request.method == "GET":
            return _page("tok1", "anon")
        return httpx.Response(
            302,
            headers={"Location": "/en-ca/niv/groups/1", "Set-Cookie": "_yatri_session=authed; path=/"},
        )

    session = _client(handler).login()

    assert session == Session(cookie="authed", csrf_token="tok1")
    post = seen[1]
    assert post.headers["X-CSRF-Token"] == "tok1"
    assert "_yatri_session=anon" in post.headers["Cookie"]
    form = _form(post)
    assert form["user[email]"] == "u@example.com"
    assert form["user[password]"] == "secret"
    assert form["policy_confirmed"] == "1"


def test_login_without_csrf_token_fails() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html>")

    with pytest.raises(AuthenticationError, match="CSRF token"):
        _client(handler).login()


def test_login_without_session_cookie_fails() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return _page("tok1", "anon")
        return httpx.Response(200, text="Invalid email or password.")

    with pytest.raises(AuthenticationError, match="session cookie"):
        _client(handler).login()


def test_check_available_date_parses_dates() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/en-ca/niv/schedule/123/appointment/days/89.json"
        assert request.url.params["appointments[expedite]"] == "false"
        assert request.headers["Cookie"] == "_yatri_session=authed"
        assert request.headers["X-Requested-With"] == "XMLHttpRequest"
        return httpx.Response(
            200,
            json=[{"date": "2026-01-05", "business_day": True}, {"date": "2026-02-10", "business_day": True}],
        )

    dates = _client(handler).check_available_date(SESSION, "123", "89")

    assert dates == [dt.date(2026, 1, 5), dt.date(2026, 2, 10)]


def test_check_available_date_empty() -> None:
    client = _client(lambda request: httpx.Response(200, json=[]))

    assert client.check_available_date(SESSION, "123", "89") == []


def test_error_payload_raises_service_error() -> None:
    client = _client(lambda request: httpx.Response(200, json={"error": "You need to sign in or sign up before continuing."}))

    with pytest.raises(ServiceError, match="sign in"):
        client.check_available_date(SESSION, "123", "89")


def test_check_available_time_prefers_business_times() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/en-ca/niv/schedule/123/appointment/times/89.json"
        assert request.url.params["date"] == "2026-01-05"
        return httpx.Response(200, json={"available_times": ["10:00"], "business_times": ["08:15", "09:00"]})

    assert _client(handler).check_available_time(SESSION, "123", "89", dt.date(2026, 1, 5)) == "08:15"


@pytest.mark.parametrize(
    "payload",
    [
        {"available_times": [], "business_times": []},
        {"available_times": None, "business_times": None},
        {},
    ],
)
def test_check_available_time_none(payload: dict) -> None:
    client = _client(lambda request: httpx.Response(200, json=payload))

    assert client.check_available_time(SESSION, "123", "89", dt.date(2026, 1, 5)) is None


def test_book_posts_appointment_form_with_fresh_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/en-ca/niv/schedule/123/appointment/instructions":
            return httpx.Response(200, text="ok")
        assert request.url.path == "/en-ca/niv/schedule/123/appointment"
        if request.method == "GET":
            return _page("tok2", "fresh")
        return httpx.Response(302, headers={"Location": "/en-ca/niv/schedule/123/appointment/instructions"})

    _client(handler).book(SESSION, "123", "89", dt.date(2026, 1, 5), "09:00")

    post = seen[1]
    assert post.method == "POST"
    assert post.headers["X-CSRF-Token"] == "tok2"
    assert "_yatri_session=fresh" in post.headers["Cookie"]
    form = _form(post)
    assert form["authenticity_token"] == "tok2"
    assert form["appointments[consulate_appointment][facility_id]"] == "89"
    assert form["appointments[consulate_appointment][date]"] == "2026-01-05"
    assert form["appointments[consulate_appointment][time]"] == "09:00"
    assert form["appointments[asc_appointment][facility_id]"] == ""
    assert seen[-1].url.path.endswith("/instructions")


def test_book_with_expired_session_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(302, headers={"Location": "/en-ca/niv/users/sign_in"})

    with pytest.raises(httpx.HTTPStatusError):
        _client(handler).book(SESSION, "123", "89", dt.date(2026, 1, 5), "09:00")


def test_server_error_raises_http_status_error() -> None:
    client = _client(lambda request: httpx.Response(503, text="busy"))

    with pytest.raises(httpx.HTTPStatusError):
        client.check_available_time(SESSION, "123", "89", dt.date(2026, 1, 5))
