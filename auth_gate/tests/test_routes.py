"""Tests for the HTTP surface: forward-auth gate, challenge pages, cookie attributes."""
import asyncio
import time
from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi.testclient import TestClient

from auth_gate.config import Settings
from auth_gate.main import create_app, sweep_periodically
from auth_gate.routes import safe_redirect
from auth_gate.store import Store

FORWARDED = {
    "X-Forwarded-Host": "example.com",
    "X-Forwarded-Proto": "https",
    "X-Forwarded-Uri": "/private/page",
}
CLIENT_IP = {"X-Real-Ip": "203.0.113.7", "X-Forwarded-Host": "example.com"}


def _request_code(client, headers=CLIENT_IP, redirect_url="https://example.com/private/page"):
    return client.post("/_auth_code/request-code", data={"redirect_url": redirect_url}, headers=headers)


def _verify(client, code, headers=CLIENT_IP, redirect_url="https://example.com/private/page"):
    return client.post(
        "/_auth_code/verify-code",
        data={"code": code, "redirect_url": redirect_url},
        headers=headers,
        follow_redirects=False,
    )


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json().get("service") == "auth_gate"


# --- gate ---


def test_gate_without_session_redirects_to_login(client):
    r = client.get("/", headers=FORWARDED, follow_redirects=False)
    assert r.status_code == 302
    location = urlsplit(r.headers["location"])
    assert location.netloc == "example.com"
    assert location.path == "/_auth_code/login"
    assert parse_qs(location.query)["redirect_url"] == ["https://example.com/private/page"]


def test_gate_without_forwarded_host_is_401(client):
    r = client.get("/", headers={"X-Forwarded-Uri": "/private"}, follow_redirects=False)
    assert r.status_code == 401
    assert "location" not in r.headers
    assert "Missing X-Forwarded-Host" in r.text


def test_gate_passes_auth_flow_uri(client):
    r = client.get("/", headers={**FORWARDED, "X-Forwarded-Uri": "/_auth_code/login"}, follow_redirects=False)
    assert r.status_code == 200


def test_gate_passes_with_live_session(client, store):
    store.issue_session("live-session", 60)
    client.cookies.set("test_cookie", "live-session")
    r = client.get("/", headers=FORWARDED, follow_redirects=False)
    assert r.status_code == 200
    assert r.content == b""


def test_gate_accepts_any_method_and_path(client, store):
    store.issue_session("live-session", 60)
    client.cookies.set("test_cookie", "live-session")
    assert client.post("/some/path", headers=FORWARDED).status_code == 200
    assert client.delete("/other", headers=FORWARDED).status_code == 200


def test_gate_rejects_unknown_session(client):
    client.cookies.set("test_cookie", "forged")
    r = client.get("/", headers=FORWARDED, follow_redirects=False)
    assert r.status_code == 302


# --- login page ---


def test_login_page_renders_form(client):
    r = client.get(
        "/_auth_code/login", params={"redirect_url": "https://example.com/x"}, headers={"X-Forwarded-Host": "example.com"}
    )
    assert r.status_code == 200
    assert 'action="/_auth_code/request-code"' in r.text
    assert 'value="https://example.com/x"' in r.text


def test_login_page_escapes_and_sanitizes_redirect(client):
    r = client.get("/_auth_code/login", params={"redirect_url": 'javascript:alert("x")'})
    assert r.status_code == 200
    assert "javascript:" not in r.text
    r = client.get("/_auth_code/login", params={"redirect_url": '/a"><script>'})
    assert "<script>" not in r.text
    assert "&quot;&gt;&lt;script&gt;" in r.text


# --- request code ---


def test_request_code_sends_and_shows_verify_page(client, notifier):
    r = _request_code(client)
    assert r.status_code == 200
    assert 'action="/_auth_code/verify-code"' in r.text
    assert 'maxlength="6"' in r.text
    code, identity = notifier.sent[-1]
    assert identity == "203.0.113.7"
    # The code only travels through the notifier
    assert code not in r.text


def test_request_code_rate_limited(client, notifier):
    _request_code(client)
    r = _request_code(client)
    assert r.status_code == 429
    assert int(r.headers["retry-after"]) >= 1
    assert len(notifier.sent) == 1


def test_request_code_delivery_failure(client, notifier, store):
    notifier.fail = True
    r = _request_code(client)
    assert r.status_code == 502
    assert "Failed to send" in r.text
    assert store.peek_code("203.0.113.7") is not None


def test_request_code_identity_from_forwarded_for(client, notifier):
    _request_code(client, headers={"X-Forwarded-For": "198.51.100.4, 10.0.0.1"})
    assert notifier.sent[-1][1] == "198.51.100.4"


# --- verify code ---


def test_verify_success_sets_cookie_and_redirects(client, notifier, store, settings):
    _request_code(client)
    r = _verify(client, notifier.last_code)
    assert r.status_code == 302
    assert r.headers["location"] == "https://example.com/private/page"
    set_cookie = r.headers["set-cookie"]
    assert set_cookie.startswith("test_cookie=")
    lowered = set_cookie.lower()
    assert "httponly" in lowered
    assert "secure" in lowered
    assert "samesite=lax" in lowered
    assert "path=/" in lowered
    assert f"max-age={int(settings.session_ttl)}" in lowered
    session_id = set_cookie.split(";", 1)[0].split("=", 1)[1]
    assert store.is_session_live(session_id)
    assert store.peek_code("203.0.113.7") is None


def test_full_flow_then_gate_passes(client, notifier):
    assert client.get("/", headers=FORWARDED, follow_redirects=False).status_code == 302
    _request_code(client)
    _verify(client, notifier.last_code)
    assert client.get("/", headers=FORWARDED, follow_redirects=False).status_code == 200


def test_verify_unsafe_redirect_falls_back_to_root(client, notifier):
    _request_code(client)
    r = _verify(client, notifier.last_code, redirect_url="//evil.example/")
    assert r.status_code == 302
    assert r.headers["location"] == "/"


def test_verify_invalid_code(client, notifier, store):
    _request_code(client)
    wrong = "000000" if notifier.last_code != "000000" else "111111"
    r = _verify(client, wrong)
    assert r.status_code == 401
    assert "Invalid code" in r.text
    assert "set-cookie" not in r.headers
    assert store.peek_code("203.0.113.7").attempts == 1


def test_verify_lockout(client, notifier):
    _request_code(client)
    wrong = "000000" if notifier.last_code != "000000" else "111111"
    for _ in range(5):
        assert _verify(client, wrong).status_code == 401
    r = _verify(client, wrong)
    assert r.status_code == 403
    assert "Too many attempts" in r.text
    r = _verify(client, notifier.last_code)
    assert r.status_code == 401
    assert "expired or not requested" in r.text


def test_verify_no_challenge(client):
    r = _verify(client, "123456")
    assert r.status_code == 401
    assert "expired or not requested" in r.text


def test_verify_malformed(client, notifier, store):
    _request_code(client)
    r = _verify(client, "12ab")
    assert r.status_code == 400
    assert store.peek_code("203.0.113.7").attempts == 0
    r = client.post("/_auth_code/verify-code", data={}, headers=CLIENT_IP)
    assert r.status_code == 400


def test_verify_enforces_minimum_latency(store, notifier):
    settings = Settings(verify_delay=0.3, cookie_name="test_cookie")
    client = TestClient(create_app(settings=settings, store=store, notifier=notifier))
    start = time.monotonic()
    r = _verify(client, "123456")
    assert r.status_code == 401
    assert time.monotonic() - start >= 0.3


# --- logout ---


def test_logout_clears_session(client, store):
    store.issue_session("live-session", 60)
    client.cookies.set("test_cookie", "live-session")
    r = client.get("/_auth_code/logout")
    assert r.status_code == 200
    assert "Logged out" in r.text
    assert not store.is_session_live("live-session")


# --- custom prefix ---


def test_custom_path_prefix(store, notifier):
    settings = Settings(verify_delay=0, path_prefix="/auth")
    client = TestClient(create_app(settings=settings, store=store, notifier=notifier))
    assert client.get("/auth/login").status_code == 200
    r = client.get("/", headers={**FORWARDED, "X-Forwarded-Uri": "/auth/verify-code"})
    assert r.status_code == 200


# --- redirect sanitizing ---


@pytest.mark.parametrize(
    "url,expected",
    [
        (None, "/"),
        ("", "/"),
        ("/path?q=1", "/path?q=1"),
        ("https://example.com/a", "https://example.com/a"),
        ("http://example.com", "http://example.com"),
        ("https://EXAMPLE.com/a", "https://EXAMPLE.com/a"),
        ("https://evil.example/phish", "/"),
        ("https://example.com.evil.example/", "/"),
        ("https://user@evil.example/", "/"),
        ("//evil.example", "/"),
        ("javascript:alert(1)", "/"),
        ("ftp://example.com", "/"),
        ("relative/path", "/"),
        ("/\\evil.example", "/"),
        ("https:///nohost", "/"),
    ],
)
def test_safe_redirect(url, expected):
    assert safe_redirect(url, "example.com") == expected


def test_safe_redirect_without_known_host_only_allows_paths():
    assert safe_redirect("https://example.com/a", None) == "/"
    assert safe_redirect("/a", None) == "/a"


def test_verify_foreign_host_redirect_falls_back_to_root(client, notifier):
    _request_code(client)
    r = _verify(client, notifier.last_code, redirect_url="https://evil.example/phish")
    assert r.status_code == 302
    assert r.headers["location"] == "/"
    assert "set-cookie" in r.headers


def test_login_page_drops_foreign_host_redirect(client):
    r = client.get(
        "/_auth_code/login",
        params={"redirect_url": "https://evil.example/phish"},
        headers={"X-Forwarded-Host": "example.com"},
    )
    assert "evil.example" not in r.text
    assert 'value="/"' in r.text


def test_redirect_host_follows_forwarded_host_over_host(client, notifier):
    _request_code(client)
    headers = {**CLIENT_IP, "X-Forwarded-Host": "app.example.org"}
    r = _verify(client, notifier.last_code, headers=headers, redirect_url="https://app.example.org/home")
    assert r.headers["location"] == "https://app.example.org/home"


# --- client identity ---


def test_challenge_without_client_address_is_rejected(client, notifier, store, monkeypatch):
    monkeypatch.setattr("auth_gate.routes.get_client_ip", lambda request: None)
    r = _request_code(client)
    assert r.status_code == 400
    assert "Unable to determine client address" in r.text
    assert notifier.sent == []
    assert store.code_count() == 0
    r = _verify(client, "123456")
    assert r.status_code == 400
    assert store.session_count() == 0


# --- lifespan / sweep ---


def test_lifespan_runs_and_stops_cleanly(store, notifier):
    app = create_app(settings=Settings(verify_delay=0), store=store, notifier=notifier)
    with TestClient(app) as client:
        assert client.get("/health").status_code == 200


def test_sweep_periodically_purges(clock):
    store = Store(clock=clock)
    store.issue_code("ip", "123456", 1)
    store.issue_session("sid", 1)
    clock.advance(2)

    async def run():
        task = asyncio.create_task(sweep_periodically(store, 0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(run())
    assert store.code_count() == 0
    assert store.session_count() == 0


def test_startup_logs_config_warnings(store, notifier, caplog):
    app = create_app(settings=Settings(verify_delay=0), store=store, notifier=notifier)
    with caplog.at_level("WARNING", logger="auth_gate.main"):
        with TestClient(app):
            pass
    assert any("No notification channel configured" in rec.message for rec in caplog.records)
