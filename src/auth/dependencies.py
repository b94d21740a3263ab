import logging

from fastapi import Header, HTTPException, Request, status

from src.auth.signatures import verify_token
from src.config import settings
from src.observability import incr_metric, log_event


def _extract_bearer_token(authorization: str | None) -> str | None:
    """Extract token from 'Bearer <token>' header."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


async def require_internal_token(
    request: Request,
    authorization: str | None = Header(None),
) -> None:
    """
    Guard for cron and operator endpoints.

    When INTERNAL_API_TOKEN is unset the check is skipped (fail-open); startup
    logs a warning for that configuration.
    """
    configured = settings.internal_api_token
    if not configured:
        return
    token = _extract_bearer_token(authorization)
    if not verify_token(token, configured):
        incr_metric("internal.auth.failed", path=request.url.path)
        log_event(
            "internal_auth_failed",
            level=logging.WARNING,
            request_id=getattr(request.state, "request_id", None),
            path=request.url.path,
            has_token=bool(token),
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
