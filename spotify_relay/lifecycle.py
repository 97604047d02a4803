"""
Token lifecycle: bootstrap, authorize, code exchange, refresh (scheduled and on read), manual override.
All token mutations go through TokenStore.replace so memory and disk never diverge.
"""
import logging
import threading
import time
from enum import Enum
from typing import Any, Callable

from spotify_relay.authorize import build_authorize_url, generate_state
from spotify_relay.config import AUTHORIZE_URL
from spotify_relay.errors import ConfigurationError, ProviderError, ValidationError
from spotify_relay.provider import SpotifyTokenClient
from spotify_relay.state_store import StateStore
from spotify_relay.token_store import TokenSet, TokenStore, is_epoch_ms

logger = logging.getLogger(__name__)


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    VALID = "valid"
    EXPIRED = "expired"
    UNRECOVERABLE = "unrecoverable"


class TokenLifecycle:
    def __init__(
        self,
        store: TokenStore,
        provider: SpotifyTokenClient,
        *,
        redirect_uri: str,
        authorize_url: str = AUTHORIZE_URL,
        state_store: StateStore | None = None,
        verify_state: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.provider = provider
        self.redirect_uri = redirect_uri
        self.authorize_url = authorize_url
        self.state_store = state_store if state_store is not None else StateStore()
        self.verify_state = verify_state
        self._clock = clock
        # Single slot: at most one token-endpoint call mutating the TokenSet at a time
        self._refresh_lock = threading.Lock()

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _expires_at(self, expires_in: float) -> int:
        return self.now_ms() + int(expires_in * 1000)

    @property
    def state(self) -> AuthState:
        tokens = self.store.tokens
        if not tokens.access_token and not tokens.refresh_token:
            return AuthState.UNAUTHENTICATED
        if tokens.access_token and not tokens.is_expired(self.now_ms()):
            return AuthState.VALID
        if tokens.refresh_token:
            return AuthState.EXPIRED
        return AuthState.UNRECOVERABLE

    @property
    def has_token(self) -> bool:
        return bool(self.store.tokens.access_token)

    def bootstrap(self) -> threading.Thread | None:
        """
        Load persisted tokens. If they are expired, refresh in a background thread;
        startup does not wait for the outcome. Returns that thread (or None).
        """
        self.store.load()
        if self.state is not AuthState.EXPIRED:
            return None
        logger.warning("Access token expired at startup; refreshing in background")
        thread = threading.Thread(
            target=self.refresh,
            kwargs={"blocking": False},
            name="bootstrap-refresh",
            daemon=True,
        )
        thread.start()
        return thread

    def authorization_url(self) -> str:
        """Fresh state + provider authorize URL. Does not touch the TokenSet."""
        state = generate_state()
        self.state_store.add(state)
        logger.info("Login request; using redirect URI %s", self.redirect_uri)
        return build_authorize_url(
            authorize_url=self.authorize_url,
            client_id=self.provider.client_id,
            redirect_uri=self.redirect_uri,
            state=state,
        )

    def exchange_code(self, code: str | None, state: str | None = None) -> TokenSet:
        """
        authorization_code grant. On success the new TokenSet is persisted and returned.
        Raises ValidationError (bad code/state), ProviderError or ConfigurationError;
        the TokenSet is left unchanged in every failure case.
        """
        if not code:
            raise ValidationError("Missing code parameter.")
        if self.verify_state and (not state or not self.state_store.consume(state)):
            raise ValidationError("Invalid or expired state. Please try logging in again.")

        logger.info("Callback using redirect URI %s", self.redirect_uri)
        with self._refresh_lock:
            data = self.provider.exchange_code(code, self.redirect_uri)
            tokens = TokenSet(
                access_token=data["access_token"],
                refresh_token=data.get("refresh_token") or "",
                expires_at=self._expires_at(data["expires_in"]),
            )
            self.store.replace(tokens)
        logger.info("Tokens received and saved; access_token=%s...", tokens.access_token[:20])
        return tokens

    def refresh(self, blocking: bool = True) -> bool:
        """
        refresh_token grant. Never raises; returns True only when a new access token was committed.
        With blocking=False a refresh already in flight makes this call a skipped no-op.
        """
        if not self._refresh_lock.acquire(blocking=blocking):
            logger.info("Refresh already in flight; skipping")
            return False
        try:
            return self._refresh_locked()
        finally:
            self._refresh_lock.release()

    def _refresh_locked(self) -> bool:
        current = self.store.tokens
        if not current.refresh_token:
            logger.warning("No refresh token available (%s); login required", AuthState.UNRECOVERABLE.value)
            return False

        logger.info("Refreshing access token")
        try:
            data = self.provider.refresh(current.refresh_token)
        except ProviderError as e:
            logger.warning("Failed to refresh token: %s payload=%s", e, e.payload)
            return False
        except ConfigurationError as e:
            logger.error("Cannot refresh token: %s", e)
            return False

        tokens = TokenSet(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or current.refresh_token,
            expires_at=self._expires_at(data["expires_in"]),
        )
        self.store.replace(tokens)
        logger.info("Access token refreshed")
        return True

    def refresh_if_due(self, lead_ms: int) -> bool:
        """Proactive check: refresh when within lead_ms of expiry. Skips if a refresh is in flight."""
        tokens = self.store.tokens
        if not tokens.refresh_token or self.now_ms() < tokens.expires_at - lead_ms:
            return False
        logger.info("Token expiring soon, auto-refreshing")
        return self.refresh(blocking=False)

    def read(self) -> tuple[str, bool]:
        """
        Current access token and whether the user is authenticated.
        An expired token is refreshed first, and the caller sees the post-refresh value.
        """
        state = self.state
        if state is AuthState.EXPIRED:
            logger.warning("Token expired, refreshing before read")
            with self._refresh_lock:
                # Another thread may have refreshed while we waited for the lock
                if self.state is AuthState.EXPIRED:
                    self._refresh_locked()
        elif state is AuthState.UNRECOVERABLE:
            logger.warning("Access token expired and no refresh token; login required")
        access_token = self.store.tokens.access_token
        return access_token, bool(access_token)

    def manual_override(self, payload: Any) -> TokenSet:
        """
        Replace the whole TokenSet from caller-supplied values and persist it.
        Raises ValidationError with no mutation if any field is missing or malformed.
        """
        if not isinstance(payload, dict):
            raise ValidationError("Missing token data")
        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        expires_at = payload.get("expires_at")
        if not access_token or not refresh_token or expires_at is None:
            raise ValidationError("Missing token data")
        if not isinstance(access_token, str) or not isinstance(refresh_token, str):
            raise ValidationError("access_token and refresh_token must be strings")
        if not is_epoch_ms(expires_at):
            raise ValidationError("expires_at must be a number (epoch milliseconds)")

        tokens = TokenSet(access_token=access_token, refresh_token=refresh_token, expires_at=int(expires_at))
        with self._refresh_lock:
            self.store.replace(tokens)
        logger.info("Tokens manually set")
        return tokens
