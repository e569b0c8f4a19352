"""
Token issuance for the read/admin API.
"""
from datetime import timedelta

from fastapi import APIRouter, HTTPException, Request, status

from horizn.core.context import Context
from horizn.core.logging import get_logger
from horizn.core.security import AttemptLimiter, create_access_token, verify_api_key
from horizn.schemas.auth import TokenRequest, TokenResponse
from horizn.services.identity import client_ip

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/token", response_model=TokenResponse)
async def issue_token(payload: TokenRequest, request: Request, ctx: Context) -> TokenResponse:
    """
    Exchange the configured API key for a bearer token.

    Attempts are limited per client address.
    """
    limiter: AttemptLimiter = request.app.state.auth_limiter
    key = client_ip(request.headers, request.client.host if request.client else None)

    if not limiter.hit(key):
        logger.warning("Too many token attempts")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many attempts, try again later",
        )

    if not verify_api_key(ctx.settings, payload.api_key):
        logger.info("Rejected API key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )

    limiter.clear(key)
    expires = timedelta(hours=ctx.settings.jwt_expiration_hours)
    token = create_access_token(ctx.settings, {"sub": "api"}, expires_delta=expires)
    return TokenResponse(access_token=token, expires_in=int(expires.total_seconds()))
