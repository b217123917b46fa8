import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from arovia.presentation.dependencies import get_container


logger = logging.getLogger(__name__)


def subject_rate_key(request: Request) -> str:
    """
    Key requests by authenticated subject, falling back to client address.

    get_current_user stores the subject on request.state before the
    limit is checked.
    """
    subject_id = getattr(request.state, "subject_id", None)
    if subject_id:
        return str(subject_id)
    return get_remote_address(request)


def current_rate_limit() -> str:
    """Limit string read from the configured settings on every check."""
    return get_container().settings.rate_limit


limiter = Limiter(key_func=subject_rate_key)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Inbound limiter exhaustion, distinct from upstream rate limiting."""
    logger.warning(f"Rate limit exceeded for {subject_rate_key(request)} on {request.url.path}")
    return JSONResponse(status_code=429, content={"detail": "Too many requests"})
