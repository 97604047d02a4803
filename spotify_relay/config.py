"""
Relay configuration. Values come from the environment (and an optional .env file).
No secrets in this file; client credentials come from env only.
"""
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from spotify_relay.errors import ConfigurationError

load_dotenv()

# Provider endpoints (Spotify accounts service)
AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
TOKEN_URL = "https://accounts.spotify.com/api/token"

# Callback used when running locally; the frontend dev server proxies /auth/callback
LOCAL_REDIRECT_URI = "http://127.0.0.1:5173/auth/callback"

DEFAULT_TOKEN_FILE = ".spotify_tokens.json"
DEFAULT_FRONTEND_SUCCESS_URL = "http://localhost:5173/?spotify=connected"
DEFAULT_CORS_ORIGINS = "http://localhost:5173"

# Proactive refresh: check every 10 minutes, refresh when within 10 minutes of expiry
DEFAULT_REFRESH_INTERVAL_SECONDS = 600
DEFAULT_REFRESH_LEAD_SECONDS = 600

DEFAULT_PROVIDER_TIMEOUT_SECONDS = 10.0
DEFAULT_PORT = 5001


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _split_origins(value: str) -> list[str]:
    return [origin.strip() for origin in value.split(",") if origin.strip()]


@dataclass
class Settings:
    client_id: str = ""
    client_secret: str = ""
    environment: str = "development"
    production_redirect_uri: str = ""
    local_redirect_uri: str = LOCAL_REDIRECT_URI
    redirect_uri_override: str = ""
    token_file: str = DEFAULT_TOKEN_FILE
    frontend_success_url: str = DEFAULT_FRONTEND_SUCCESS_URL
    cors_origins: list[str] = field(default_factory=lambda: _split_origins(DEFAULT_CORS_ORIGINS))
    refresh_interval_seconds: float = DEFAULT_REFRESH_INTERVAL_SECONDS
    refresh_lead_seconds: float = DEFAULT_REFRESH_LEAD_SECONDS
    provider_timeout_seconds: float = DEFAULT_PROVIDER_TIMEOUT_SECONDS
    setup_secret: str = ""
    verify_state: bool = True
    authorize_url: str = AUTHORIZE_URL
    token_url: str = TOKEN_URL
    port: int = DEFAULT_PORT
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            client_id=os.environ.get("SPOTIFY_CLIENT_ID", "").strip(),
            client_secret=os.environ.get("SPOTIFY_CLIENT_SECRET", "").strip(),
            environment=os.environ.get("RELAY_ENV", "development").strip().lower() or "development",
            production_redirect_uri=os.environ.get("RELAY_PRODUCTION_REDIRECT_URI", "").strip(),
            local_redirect_uri=os.environ.get("RELAY_LOCAL_REDIRECT_URI", LOCAL_REDIRECT_URI).strip(),
            redirect_uri_override=os.environ.get("SPOTIFY_REDIRECT_URI", "").strip(),
            token_file=os.environ.get("RELAY_TOKEN_FILE", DEFAULT_TOKEN_FILE),
            frontend_success_url=os.environ.get("RELAY_FRONTEND_SUCCESS_URL", DEFAULT_FRONTEND_SUCCESS_URL),
            cors_origins=_split_origins(os.environ.get("RELAY_CORS_ORIGINS", DEFAULT_CORS_ORIGINS)),
            refresh_interval_seconds=float(
                os.environ.get("RELAY_REFRESH_INTERVAL_SECONDS", DEFAULT_REFRESH_INTERVAL_SECONDS)
            ),
            refresh_lead_seconds=float(os.environ.get("RELAY_REFRESH_LEAD_SECONDS", DEFAULT_REFRESH_LEAD_SECONDS)),
            provider_timeout_seconds=float(
                os.environ.get("RELAY_PROVIDER_TIMEOUT_SECONDS", DEFAULT_PROVIDER_TIMEOUT_SECONDS)
            ),
            setup_secret=os.environ.get("RELAY_SETUP_SECRET", "").strip(),
            verify_state=_env_bool("RELAY_VERIFY_STATE", True),
            port=int(os.environ.get("PORT", DEFAULT_PORT)),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def redirect_uri(self) -> str:
        """
        Redirect URI for both the authorize step and the code exchange.
        The provider rejects the exchange unless both use the same value.
        """
        if self.redirect_uri_override:
            return self.redirect_uri_override
        if self.is_production and self.production_redirect_uri:
            return self.production_redirect_uri
        return self.local_redirect_uri

    def validate(self) -> None:
        """Raise ConfigurationError listing every missing required value."""
        missing = []
        if not self.client_id:
            missing.append("SPOTIFY_CLIENT_ID")
        if not self.client_secret:
            missing.append("SPOTIFY_CLIENT_SECRET")
        if self.is_production and not (self.redirect_uri_override or self.production_redirect_uri):
            missing.append("RELAY_PRODUCTION_REDIRECT_URI")
        if missing:
            raise ConfigurationError("Missing configuration: " + ", ".join(missing))
