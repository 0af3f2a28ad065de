"""
backend/app/middleware/logging.py

Purpose:
    Request-scoped structured logging. Every HTTP request produces exactly
    one JSON line. Generation requests add the pipeline id and error kind
    that the betslips router leaves on ``request.state``.

Dependencies:
    - starlette
    - app.config
"""

import hashlib
import json
import logging
import time
import uuid
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from app.config import settings

logger = logging.getLogger("betai.http")

REQUEST_ID_HEADER = "X-Request-ID"

# Optional request.state attributes copied into the log line.
_STATE_FIELDS = ("generation_id", "error_kind")


def _client_fingerprint(request: Request) -> Optional[str]:
    if not request.client:
        return None
    return hashlib.sha256((request.client.host or "").encode()).hexdigest()[:12]


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """Echo or assign X-Request-ID and log the outcome of the request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:8]
        request.state.request_id = request_id
        started = time.perf_counter()

        response: Response = await call_next(request)

        entry = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            "client": _client_fingerprint(request),
        }
        for name in _STATE_FIELDS:
            value = getattr(request.state, name, None)
            if value is not None:
                entry[name] = value

        logger.log(_level_for(response.status_code), json.dumps(entry, separators=(",", ":")))
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def setup_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    # httpx logs every outbound call at INFO; the provider client logs its own failures.
    logging.getLogger("httpx").setLevel(logging.WARNING)
