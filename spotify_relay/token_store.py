"""
File-backed store for the single token set.
Holds access_token, refresh_token, expires_at (epoch ms) in memory and mirrors them to a JSON file.
Single-tenant: one stored set per process, no per-user/session.
"""
import json
import logging
import math
import os
import tempfile
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path

from spotify_relay.errors import PersistenceError

logger = logging.getLogger(__name__)

# 9999-12-31T23:59:59.999Z, the last instant datetime can represent
MAX_EPOCH_MS = 253_402_300_799_999


def is_epoch_ms(value: object) -> bool:
    """True for a finite, non-bool number within [0, MAX_EPOCH_MS]."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and 0 <= value <= MAX_EPOCH_MS


@dataclass(frozen=True)
class TokenSet:
    access_token: str = ""
    refresh_token: str = ""
    expires_at: int = 0

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.expires_at

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: object) -> "TokenSet":
        """Build from a decoded JSON object. Raises PersistenceError on a wrong shape."""
        if not isinstance(data, dict):
            raise PersistenceError("token file does not contain a JSON object")
        access_token = data.get("access_token") or ""
        refresh_token = data.get("refresh_token") or ""
        expires_at = data.get("expires_at") or 0
        if not isinstance(access_token, str) or not isinstance(refresh_token, str):
            raise PersistenceError("access_token and refresh_token must be strings")
        if not is_epoch_ms(expires_at):
            raise PersistenceError(f"expires_at must be epoch milliseconds, got {expires_at!r}")
        return cls(access_token=access_token, refresh_token=refresh_token, expires_at=int(expires_at))


def _describe_expiry(expires_at: int) -> str:
    if not expires_at:
        return "UNKNOWN"
    try:
        return datetime.fromtimestamp(expires_at / 1000, tz=timezone.utc).isoformat()
    except (OverflowError, OSError, ValueError):
        return str(expires_at)


class TokenStore:
    """
    In-memory TokenSet plus its durable JSON mirror.
    Writes are atomic (temp file + rename) so a crash mid-write never leaves a half-written file.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._tokens = TokenSet()
        self._write_lock = threading.Lock()

    @property
    def tokens(self) -> TokenSet:
        return self._tokens

    def load(self) -> TokenSet:
        """
        Load the token file into memory. A missing file means "no token yet";
        a malformed one is logged and replaced in memory by an empty TokenSet.
        """
        try:
            self._tokens = self._read()
        except PersistenceError:
            logger.exception("Could not load tokens from %s; starting unauthenticated", self.path)
            self._tokens = TokenSet()
            return self._tokens

        tokens = self._tokens
        if tokens.access_token or tokens.refresh_token:
            logger.info(
                "Loaded saved tokens: access_token=%s refresh_token=%s expires_at=%s",
                tokens.access_token[:20] + "..." if tokens.access_token else "NONE",
                "EXISTS" if tokens.refresh_token else "NONE",
                _describe_expiry(tokens.expires_at),
            )
        else:
            logger.info("No saved tokens found; user needs to log in")
        return tokens

    def _read(self) -> TokenSet:
        if not self.path.exists():
            return TokenSet()
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"cannot read {self.path}: {e}") from e
        return TokenSet.from_dict(data)

    def save(self) -> bool:
        """Write the current TokenSet to disk. Returns False (and logs) on failure."""
        try:
            self._write(self._tokens)
        except PersistenceError:
            logger.exception("Could not save tokens to %s; keeping them in memory only", self.path)
            return False
        logger.info("Tokens saved to %s", self.path)
        return True

    def _write(self, tokens: TokenSet) -> None:
        with self._write_lock:
            directory = self.path.parent
            tmp = None
            try:
                directory.mkdir(parents=True, exist_ok=True)
                with tempfile.NamedTemporaryFile(
                    "w",
                    encoding="utf-8",
                    dir=directory,
                    prefix=self.path.name,
                    suffix=".tmp",
                    delete=False,
                ) as f:
                    tmp = f.name
                    json.dump(tokens.to_dict(), f, indent=2)
                    f.write("\n")
                os.replace(tmp, self.path)
            except OSError as e:
                if tmp is not None and os.path.exists(tmp):
                    os.unlink(tmp)
                raise PersistenceError(f"cannot write {self.path}: {e}") from e

    def replace(self, tokens: TokenSet) -> bool:
        """Swap in a new TokenSet and persist it. This is the commit point for every mutation."""
        self._tokens = tokens
        return self.save()
