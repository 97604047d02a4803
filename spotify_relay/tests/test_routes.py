"""Tests for spotify_relay routes: health, login, callback, token read, manual setup, lifespan."""
import json
from dataclasses import replace
from pathlib import Path
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

from fastapi.testclient import TestClient

from spotify_relay.errors import ProviderError
from spotify_relay.main import build_lifecycle, create_app
from spotify_relay.token_store import TokenSet, TokenStore

HOUR_MS = 3600 * 1000


def _login_state(client) -> str:
    r = client.get("/auth/login", follow_redirects=False)
    assert r.status_code == 302
    return parse_qs(urlparse(r.headers["location"]).query)["state"][0]


def test_health_without_token(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "message": "Spotify token relay running", "has_token": False}


def test_health_with_token(client, store):
    store.replace(TokenSet("at", "rt", 1))
    assert client.get("/").json()["has_token"] is True


def test_login_redirects_to_spotify(client, settings):
    r = client.get("/auth/login", follow_redirects=False)
    assert r.status_code == 302
    location = r.headers["location"]
    assert location.startswith("https://accounts.spotify.com/authorize?")
    params = parse_qs(urlparse(location).query)
    assert params["response_type"] == ["code"]
    assert params["client_id"] == ["test-client"]
    assert params["redirect_uri"] == [settings.redirect_uri]
    assert "streaming" in params["scope"][0]
    assert len(params["state"][0]) == 16


def test_login_without_credentials_is_503(settings, lifecycle):
    app = create_app(settings=replace(settings, client_secret=""), lifecycle=lifecycle)
    r = TestClient(app).get("/auth/login", follow_redirects=False)
    assert r.status_code == 503
    assert "SPOTIFY_CLIENT_SECRET" in r.text


def test_callback_success_redirects_to_frontend(client, provider, settings):
    provider.exchange_responses.append({"access_token": "at-1", "refresh_token": "rt-1", "expires_in": 3600})
    state = _login_state(client)

    r = client.get("/auth/callback", params={"code": "auth-code", "state": state}, follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == settings.frontend_success_url
    assert provider.exchange_calls == [("auth-code", settings.redirect_uri)]

    r = client.get("/auth/token")
    assert r.json() == {"access_token": "at-1", "is_authenticated": True}


def test_callback_provider_rejection_renders_failure(client, provider, store):
    provider.exchange_responses.append(
        ProviderError("Token endpoint returned 400", status_code=400, payload={"error": "invalid_grant"})
    )
    state = _login_state(client)

    r = client.get("/auth/callback", params={"code": "bad", "state": state}, follow_redirects=False)
    assert r.status_code == 400
    assert r.headers["content-type"].startswith("text/plain")
    assert r.text.startswith("Authentication failed:")
    assert "invalid_grant" in r.text
    assert store.tokens == TokenSet()


def test_callback_network_error_is_502(client, provider):
    provider.exchange_responses.append(ProviderError("Token endpoint request failed: refused"))
    state = _login_state(client)

    r = client.get("/auth/callback", params={"code": "c", "state": state}, follow_redirects=False)
    assert r.status_code == 502
    assert "Authentication error" in r.text


def test_callback_missing_state(client, provider):
    r = client.get("/auth/callback", params={"code": "c"}, follow_redirects=False)
    assert r.status_code == 400
    assert "state" in r.text.lower()
    assert provider.exchange_calls == []


def test_callback_unknown_state(client):
    r = client.get("/auth/callback", params={"code": "c", "state": "unknown-state"}, follow_redirects=False)
    assert r.status_code == 400
    assert "Invalid" in r.text or "expired" in r.text.lower()


def test_callback_missing_code(client):
    state = _login_state(client)
    r = client.get("/auth/callback", params={"state": state}, follow_redirects=False)
    assert r.status_code == 400
    assert "code" in r.text.lower()


def test_callback_error_from_spotify(client):
    r = client.get("/auth/callback", params={"error": "access_denied"}, follow_redirects=False)
    assert r.status_code == 400
    assert "access_denied" in r.text


def test_callback_with_real_client_and_patched_httpx(settings):
    """End to end through SpotifyTokenClient, with httpx.post patched."""
    app = create_app(settings=settings, lifecycle=build_lifecycle(settings))
    client = TestClient(app)

    class MockResponse:
        status_code = 200
        text = ""

        def json(self):
            return {
                "access_token": "real-at",
                "token_type": "Bearer",
                "expires_in": 3600,
                "refresh_token": "real-rt",
                "scope": "streaming",
            }

    state = _login_state(client)
    with patch("spotify_relay.provider.httpx.post", return_value=MockResponse()) as post:
        r = client.get("/auth/callback", params={"code": "xyz", "state": state}, follow_redirects=False)
    assert r.status_code == 302
    kwargs = post.call_args.kwargs
    assert kwargs["data"] == {"grant_type": "authorization_code", "code": "xyz", "redirect_uri": settings.redirect_uri}
    assert kwargs["headers"]["Authorization"].startswith("Basic ")
    assert kwargs["timeout"] == settings.provider_timeout_seconds
    assert json.loads(Path(settings.token_file).read_text())["access_token"] == "real-at"


def test_token_empty_store(client):
    r = client.get("/auth/token")
    assert r.status_code == 200
    assert r.json() == {"access_token": "", "is_authenticated": False}


def test_token_expired_is_refreshed_before_returning(client, lifecycle, provider, clock, token_path):
    token_path.write_text(
        json.dumps(
            {"access_token": "stale", "refresh_token": "rt", "expires_at": int(clock() * 1000) - HOUR_MS}
        ),
        encoding="utf-8",
    )
    lifecycle.store.load()
    provider.refresh_responses.append({"access_token": "X", "expires_in": 3600})

    r = client.get("/auth/token")
    assert r.json() == {"access_token": "X", "is_authenticated": True}
    assert provider.refresh_calls == ["rt"]
    assert "X" in token_path.read_text()
    assert json.loads(token_path.read_text())["refresh_token"] == "rt"


def test_setup_token_success(client, token_path):
    r = client.post("/setup-token", json={"access_token": "a", "refresh_token": "r", "expires_at": 1700000000000})
    assert r.status_code == 200
    assert r.json() == {"success": True, "message": "Tokens saved!"}
    assert json.loads(token_path.read_text()) == {"access_token": "a", "refresh_token": "r", "expires_at": 1700000000000}


def test_setup_token_missing_field_is_400_and_no_change(client, store):
    store.replace(TokenSet("keep", "keep-rt", 42))
    r = client.post("/setup-token", json={"access_token": "a", "refresh_token": "r"})
    assert r.status_code == 400
    assert "error" in r.json()
    assert store.tokens == TokenSet("keep", "keep-rt", 42)


def test_setup_token_non_json_body_is_400(client):
    r = client.post("/setup-token", content=b"not json", headers={"content-type": "application/json"})
    assert r.status_code == 400
    assert "error" in r.json()


def test_setup_token_disabled_in_production_without_secret(settings, lifecycle, store):
    app = create_app(settings=replace(settings, environment="production"), lifecycle=lifecycle)
    r = TestClient(app).post("/setup-token", json={"access_token": "a", "refresh_token": "r", "expires_at": 1})
    assert r.status_code == 403
    assert store.tokens == TokenSet()


def test_setup_token_requires_matching_secret(settings, lifecycle, store):
    app = create_app(settings=replace(settings, setup_secret="s3cret"), lifecycle=lifecycle)
    client = TestClient(app)
    body = {"access_token": "a", "refresh_token": "r", "expires_at": 1}

    assert client.post("/setup-token", json=body).status_code == 403
    assert client.post("/setup-token", json=body, headers={"X-Setup-Secret": "wrong"}).status_code == 403
    assert store.tokens == TokenSet()

    r = client.post("/setup-token", json=body, headers={"X-Setup-Secret": "s3cret"})
    assert r.status_code == 200
    assert store.tokens == TokenSet("a", "r", 1)


def test_cors_allows_configured_origin(client):
    r = client.options(
        "/auth/token",
        headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "GET"},
    )
    assert r.headers["access-control-allow-origin"] == "http://localhost:5173"
    assert r.headers["access-control-allow-credentials"] == "true"


def test_lifespan_loads_tokens_and_stops_scheduler(app, store, clock, token_path):
    token_path.write_text(
        json.dumps({"access_token": "saved", "refresh_token": "rt", "expires_at": int(clock() * 1000) + HOUR_MS}),
        encoding="utf-8",
    )
    with TestClient(app) as client:
        assert app.state.scheduler.running
        assert client.get("/auth/token").json() == {"access_token": "saved", "is_authenticated": True}
    assert not app.state.scheduler.running


def test_lifespan_survives_missing_credentials(settings, lifecycle):
    app = create_app(settings=replace(settings, client_id="", client_secret=""), lifecycle=lifecycle)
    with TestClient(app) as client:
        assert client.get("/").json()["status"] == "ok"


def test_setup_token_non_finite_expires_at_is_400(client, store, token_path):
    store.replace(TokenSet("keep", "keep-rt", 42))
    r = client.post(
        "/setup-token",
        content=b'{"access_token": "a", "refresh_token": "r", "expires_at": NaN}',
        headers={"content-type": "application/json"},
    )
    assert r.status_code == 400
    assert "error" in r.json()
    assert store.tokens == TokenSet("keep", "keep-rt", 42)


def test_setup_token_out_of_range_expires_at_is_400_and_restart_still_loads(client, store, token_path):
    store.replace(TokenSet("keep", "keep-rt", 42))
    r = client.post("/setup-token", json={"access_token": "a", "refresh_token": "r", "expires_at": 10**20})
    assert r.status_code == 400
    assert "error" in r.json()
    assert TokenStore(token_path).load() == TokenSet("keep", "keep-rt", 42)
