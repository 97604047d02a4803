"""
Pytest fixtures for spotify_relay. Token files live under tmp_path; the provider is a scripted fake
so no test touches the network.
"""
import pytest
from fastapi.testclient import TestClient

from spotify_relay.config import Settings
from spotify_relay.errors import ProviderError
from spotify_relay.lifecycle import TokenLifecycle
from spotify_relay.main import create_app
from spotify_relay.state_store import StateStore
from spotify_relay.token_store import TokenStore

REDIRECT_URI = "http://127.0.0.1:5173/auth/callback"
NOW = 1_700_000_000.0


class FakeClock:
    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider:
    """
    Stands in for SpotifyTokenClient. Queue dicts (responses) or exceptions in
    exchange_responses / refresh_responses; calls are recorded.
    """

    client_id = "test-client"

    def __init__(self):
        self.exchange_responses = []
        self.refresh_responses = []
        self.exchange_calls = []
        self.refresh_calls = []

    def exchange_code(self, code, redirect_uri):
        self.exchange_calls.append((code, redirect_uri))
        return self._next(self.exchange_responses)

    def refresh(self, refresh_token):
        self.refresh_calls.append(refresh_token)
        return self._next(self.refresh_responses)

    @staticmethod
    def _next(queue):
        if not queue:
            raise ProviderError("no scripted response", status_code=400, payload={"error": "invalid_grant"})
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def token_path(tmp_path):
    return tmp_path / "tokens.json"


@pytest.fixture
def store(token_path):
    return TokenStore(token_path)


@pytest.fixture
def lifecycle(store, provider, clock):
    return TokenLifecycle(
        store,
        provider,
        redirect_uri=REDIRECT_URI,
        state_store=StateStore(),
        verify_state=True,
        clock=clock,
    )


@pytest.fixture
def settings(token_path):
    return Settings(
        client_id="test-client",
        client_secret="test-secret",
        token_file=str(token_path),
        local_redirect_uri=REDIRECT_URI,
        frontend_success_url="http://localhost:5173/?spotify=connected",
        cors_origins=["http://localhost:5173"],
    )


@pytest.fixture
def app(settings, lifecycle):
    return create_app(settings=settings, lifecycle=lifecycle)


@pytest.fixture
def client(app):
    return TestClient(app)
