from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from loguru import logger

from planetradio.auth.account import PlanetRadioAccountAuth
from planetradio.errors import AuthError


@dataclass(frozen=True)
class Session:
    session_token: str
    user_id: str
    csrf_value: str
    expires_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        if self.expires_at is None:
            return False
        return now > self.expires_at

    def expires_in_seconds(self, now: float) -> Optional[float]:
        if self.expires_at is None:
            return None
        return self.expires_at - now

    def expires_at_iso(self) -> Optional[str]:
        if self.expires_at is None:
            return None
        return datetime.fromtimestamp(self.expires_at, tz=timezone.utc).isoformat()


class AuthSession:
    """Holds the logged-in identity and its expiry.

    ``authenticate`` is idempotent while the session is valid; an expired
    session is dropped the next time it is looked at, which forces the full
    CSRF + login handshake again.
    """

    def __init__(
        self,
        auth: Optional[PlanetRadioAccountAuth] = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._auth = auth or PlanetRadioAccountAuth()
        self._clock = clock
        self._lock = threading.RLock()
        self._session: Optional[Session] = None

    @property
    def session(self) -> Optional[Session]:
        with self._lock:
            return self._session if self.is_valid() else None

    @property
    def user_id(self) -> Optional[str]:
        sess = self.session
        return sess.user_id if sess else None

    @property
    def session_token(self) -> Optional[str]:
        sess = self.session
        return sess.session_token if sess else None

    def is_valid(self) -> bool:
        with self._lock:
            sess = self._session
            if sess is None or not sess.user_id or not sess.session_token:
                return False
            if sess.is_expired(self._clock()):
                logger.info("Session token has expired, clearing authentication state")
                self._session = None
                return False
            return True

    def invalidate(self) -> None:
        with self._lock:
            self._session = None
        logger.info("Authentication state cleared")

    def authenticate(self, username: str, password: str) -> str:
        if not username or not password:
            raise AuthError("Username and password are required")

        with self._lock:
            if self.is_valid():
                logger.debug("User already authenticated, returning existing user ID")
                return self._session.user_id  # type: ignore[union-attr]

            try:
                result = self._auth.authenticate(username, password)
            except AuthError as exc:
                logger.error(f"Authentication failed: {exc}")
                raise

            claims = result.claims
            user_id = claims.get("id")
            if user_id is None or str(user_id) == "":
                raise AuthError("Failed to extract user ID from JWT token")

            expires_at: Optional[float] = None
            exp = claims.get("exp")
            if exp is not None:
                try:
                    expires_at = float(exp)
                except (TypeError, ValueError) as exc:
                    raise AuthError(f"Invalid expiry claim in JWT token: {exp!r}") from exc

            self._session = Session(
                session_token=result.session_token,
                user_id=str(user_id),
                csrf_value=result.csrf_value,
                expires_at=expires_at,
            )
            logger.info(f"Authenticated as listener {self._session.user_id}")
            if expires_at is not None:
                logger.debug(f"Session token expires at {self._session.expires_at_iso()}")
            return self._session.user_id
