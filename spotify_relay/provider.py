"""
Client for the provider token endpoint (POST /api/token). RFC 6749 §4.1.3 and §6.
Confidential client: credentials sent as Authorization: Basic base64(client_id:client_secret).
"""
import base64
import logging
import math
from typing import Any

import httpx

from spotify_relay.config import DEFAULT_PROVIDER_TIMEOUT_SECONDS, TOKEN_URL
from spotify_relay.errors import ConfigurationError, ProviderError

logger = logging.getLogger(__name__)

# Upper bound on a token lifetime the relay will accept (one year)
MAX_EXPIRES_IN_SECONDS = 365 * 24 * 3600


def _valid_expires_in(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and 0 <= value <= MAX_EXPIRES_IN_SECONDS


def basic_auth_header(client_id: str, client_secret: str) -> str:
    encoded = base64.b64encode(f"{client_id}:{client_secret}".encode("utf-8")).decode("ascii")
    return f"Basic {encoded}"


class SpotifyTokenClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        token_url: str = TOKEN_URL,
        timeout: float = DEFAULT_PROVIDER_TIMEOUT_SECONDS,
        http_client: httpx.Client | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.timeout = timeout
        self._http = http_client

    def exchange_code(self, code: str, redirect_uri: str) -> dict[str, Any]:
        """authorization_code grant. Returns the token response dict."""
        return self._post_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            }
        )

    def refresh(self, refresh_token: str) -> dict[str, Any]:
        """refresh_token grant. Response may or may not carry a new refresh_token."""
        return self._post_token(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            }
        )

    def _post_token(self, data: dict[str, str]) -> dict[str, Any]:
        if not self.client_id or not self.client_secret:
            raise ConfigurationError("SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET must be set")
        post = self._http.post if self._http is not None else httpx.post
        try:
            r = post(
                self.token_url,
                data=data,
                headers={
                    "Authorization": basic_auth_header(self.client_id, self.client_secret),
                    "Accept": "application/json",
                },
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise ProviderError(f"Token endpoint timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Token endpoint request failed: {e}") from e

        try:
            body = r.json()
        except ValueError:
            body = None

        if not 200 <= r.status_code < 300:
            payload = body if body is not None else r.text
            logger.warning(
                "%s grant rejected: status=%s payload=%s", data["grant_type"], r.status_code, payload
            )
            raise ProviderError(
                f"Token endpoint returned {r.status_code}",
                status_code=r.status_code,
                payload=payload,
            )

        if not isinstance(body, dict):
            raise ProviderError("Token endpoint returned a non-JSON body", status_code=r.status_code, payload=r.text)
        expires_in = body.get("expires_in")
        if not body.get("access_token") or not _valid_expires_in(expires_in):
            raise ProviderError(
                "Token response missing access_token or a usable expires_in",
                status_code=r.status_code,
                payload=body,
            )
        return body
