"""
Security utilities: JWT tokens for the read API, API key verification,
tracking code generation and the auth-attempt limiter.
"""
import hmac
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from horizn.core.config import Settings
from horizn.core.context import Context
from horizn.core.logging import get_logger

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(
    settings: Settings,
    data: dict[str, Any],
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(hours=settings.jwt_expiration_hours)
    )
    to_encode.update({"exp": expire, "iat": datetime.now(timezone.utc)})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(settings: Settings, token: str) -> dict[str, Any] | None:
    """Decode and validate a JWT access token."""
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as e:
        logger.warning("Invalid JWT token", error=str(e))
        return None


def verify_api_key(settings: Settings, candidate: str) -> bool:
    return hmac.compare_digest(candidate.encode(), settings.api_key.encode())


def generate_tracking_code() -> str:
    """Public, unguessable site identifier embedded in the collector snippet."""
    return "hz_" + secrets.token_urlsafe(12)


@dataclass
class _AttemptWindow:
    attempts: int
    first_attempt: float


class AttemptLimiter:
    """
    Fixed-window attempt counter for authentication actions.

    The window opens at the first attempt and resets once it is older than
    `window` seconds. State is process-local.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        window: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_attempts = max_attempts
        self.window = window
        self.clock = clock
        self._windows: dict[str, _AttemptWindow] = {}

    def hit(self, key: str) -> bool:
        """Record an attempt; False when the limit for this window is reached."""
        now = self.clock()
        self._evict_expired(now)
        state = self._windows.get(key)

        if state is None:
            self._windows[key] = _AttemptWindow(attempts=1, first_attempt=now)
            return True

        if state.attempts >= self.max_attempts:
            return False

        state.attempts += 1
        return True

    def clear(self, key: str) -> None:
        """Forget the attempts for `key` after a successful authentication."""
        self._windows.pop(key, None)

    def __len__(self) -> int:
        return len(self._windows)

    def _evict_expired(self, now: float) -> None:
        for key in [k for k, w in self._windows.items() if now - w.first_attempt > self.window]:
            self._windows.pop(key, None)


async def require_api_token(
    ctx: Context,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> dict[str, Any]:
    """Dependency guarding the read/admin API."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_access_token(ctx.settings, credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload


ApiToken = Annotated[dict[str, Any], Depends(require_api_token)]
