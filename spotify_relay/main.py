"""
Spotify token relay.
Redirects the user to Spotify login, exchanges the callback code for tokens, keeps the access
token fresh and hands it to the frontend.
GET /, /auth/login, /auth/callback, /auth/token; POST /setup-token. Port 5001 by default.
"""
import json
import logging
import secrets
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse

from spotify_relay.config import Settings
from spotify_relay.errors import ConfigurationError, ProviderError, ValidationError
from spotify_relay.lifecycle import TokenLifecycle
from spotify_relay.logging_setup import configure_logging
from spotify_relay.provider import SpotifyTokenClient
from spotify_relay.scheduler import RefreshScheduler
from spotify_relay.state_store import StateStore
from spotify_relay.token_store import TokenStore

logger = logging.getLogger(__name__)
router = APIRouter()


def build_lifecycle(settings: Settings) -> TokenLifecycle:
    store = TokenStore(settings.token_file)
    provider = SpotifyTokenClient(
        settings.client_id,
        settings.client_secret,
        token_url=settings.token_url,
        timeout=settings.provider_timeout_seconds,
    )
    return TokenLifecycle(
        store,
        provider,
        redirect_uri=settings.redirect_uri,
        authorize_url=settings.authorize_url,
        state_store=StateStore(),
        verify_state=settings.verify_state,
    )


def _log_banner(settings: Settings) -> None:
    logger.info("Spotify token relay starting on port %s", settings.port)
    logger.info("Client ID: %s", "set" if settings.client_id else "MISSING")
    logger.info("Client secret: %s", "set" if settings.client_secret else "MISSING")
    logger.info("Environment: %s", settings.environment)
    logger.info("Redirect URI: %s", settings.redirect_uri)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Check config, load tokens (refreshing if expired), run the refresh scheduler until shutdown."""
    settings: Settings = app.state.settings
    lifecycle: TokenLifecycle = app.state.lifecycle
    configure_logging(settings.log_level)
    _log_banner(settings)
    try:
        settings.validate()
    except ConfigurationError as e:
        logger.critical("%s. Login, code exchange and token refresh will fail until this is fixed.", e)

    lifecycle.bootstrap()
    scheduler = RefreshScheduler(
        lifecycle,
        interval_seconds=settings.refresh_interval_seconds,
        lead_seconds=settings.refresh_lead_seconds,
    )
    scheduler.start()
    app.state.scheduler = scheduler
    try:
        yield
    finally:
        scheduler.stop()


def create_app(settings: Settings | None = None, lifecycle: TokenLifecycle | None = None) -> FastAPI:
    settings = settings or Settings.from_env()

    application = FastAPI(title="Spotify Token Relay", version="1.0.0", lifespan=lifespan)
    application.state.settings = settings
    application.state.lifecycle = lifecycle or build_lifecycle(settings)

    if settings.cors_origins:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    application.include_router(router)
    return application


def _lifecycle(request: Request) -> TokenLifecycle:
    return request.app.state.lifecycle


def _settings(request: Request) -> Settings:
    return request.app.state.settings


@router.get("/")
def health(request: Request):
    """Health check endpoint."""
    return {
        "status": "ok",
        "message": "Spotify token relay running",
        "has_token": _lifecycle(request).has_token,
    }


@router.get("/auth/login")
def login(request: Request):
    """Generate state and redirect to the Spotify authorize page."""
    try:
        _settings(request).validate()
    except ConfigurationError as e:
        return PlainTextResponse(f"Server misconfigured: {e}", status_code=503)
    url = _lifecycle(request).authorization_url()
    return RedirectResponse(url=url, status_code=302)


@router.get("/auth/callback")
def callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
):
    """
    Handle redirect from Spotify: exchange the code for tokens, then send the user back to the frontend.
    Failures are rendered as plain text, never redirected.
    """
    if error:
        return PlainTextResponse(f"Authentication failed: {error}", status_code=400)
    try:
        _lifecycle(request).exchange_code(code, state)
    except ValidationError as e:
        return PlainTextResponse(str(e), status_code=400)
    except ConfigurationError as e:
        return PlainTextResponse(f"Server misconfigured: {e}", status_code=503)
    except ProviderError as e:
        if e.status_code is None:
            logger.error("Auth error: %s", e)
            return PlainTextResponse(f"Authentication error: {e}", status_code=502)
        logger.error("Failed to get token: %s", e.payload)
        payload = e.payload if isinstance(e.payload, str) else json.dumps(e.payload)
        return PlainTextResponse(f"Authentication failed: {payload}", status_code=400)
    return RedirectResponse(url=_settings(request).frontend_success_url, status_code=302)


@router.get("/auth/token")
def token(request: Request):
    """Current access token for the frontend; refreshes first if it has expired."""
    access_token, is_authenticated = _lifecycle(request).read()
    return {"access_token": access_token, "is_authenticated": is_authenticated}


def _setup_allowed(settings: Settings, request: Request) -> bool:
    if settings.setup_secret:
        provided = request.headers.get("X-Setup-Secret", "")
        return secrets.compare_digest(provided.encode("utf-8"), settings.setup_secret.encode("utf-8"))
    return not settings.is_production


@router.post("/setup-token")
async def setup_token(request: Request):
    """One-time manual token setup. Requires X-Setup-Secret when RELAY_SETUP_SECRET is set."""
    if not _setup_allowed(_settings(request), request):
        logger.warning("Rejected /setup-token request")
        return JSONResponse({"error": "Manual token setup is not allowed"}, status_code=403)
    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse({"error": "Body must be JSON"}, status_code=400)
    try:
        await run_in_threadpool(_lifecycle(request).manual_override, payload)
    except ValidationError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    return {"success": True, "message": "Tokens saved!"}


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "spotify_relay.main:app",
        host="0.0.0.0",
        port=app.state.settings.port,
    )
