"""
Authorization request helpers for login initiation: state generation, scopes, authorize URL.
"""
import secrets
import string
from urllib.parse import urlencode

STATE_LENGTH = 16
_STATE_ALPHABET = string.ascii_letters + string.digits

# Streaming + profile + playback state read/write + private/collaborative playlists
SCOPES = (
    "streaming",
    "user-read-email",
    "user-read-private",
    "user-read-playback-state",
    "user-modify-playback-state",
    "playlist-read-private",
    "playlist-read-collaborative",
)


def generate_state(length: int = STATE_LENGTH) -> str:
    """Opaque alphanumeric value for CSRF protection; returned in callback."""
    return "".join(secrets.choice(_STATE_ALPHABET) for _ in range(length))


def build_authorize_url(
    *,
    authorize_url: str,
    client_id: str,
    redirect_uri: str,
    state: str,
    scope: str | None = None,
) -> str:
    """Build provider /authorize URL with the authorization-code params."""
    params = {
        "response_type": "code",
        "client_id": client_id,
        "scope": scope if scope is not None else " ".join(SCOPES),
        "redirect_uri": redirect_uri,
        "state": state,
    }
    return f"{authorize_url}?{urlencode(params)}"
