"""structlog setup and per-request logging.

Each request binds ``request_id`` (and ``board`` for board routes) into
structlog's context vars, so board events logged while serving a gesture
carry the same ids as the ``request_completed`` line.
"""

from __future__ import annotations

import logging
import re
import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.dealboard.config import Environment, get_settings

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_BOARD_PATH = re.compile(r"^/api/v1/boards/([^/]+)")


def configure_structlog() -> None:
    """JSON lines in production, console rendering elsewhere."""
    settings = get_settings()
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.ENVIRONMENT == Environment.production
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs one line per request and echoes the request id.

    A client-supplied X-Request-ID is reused; otherwise a UUID is generated.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        context = {"request_id": request_id}
        match = _BOARD_PATH.match(request.url.path)
        if match:
            context["board"] = match.group(1)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(**context)
        start = time.monotonic()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            if status_code >= 500:
                log = logger.error
            elif status_code >= 400:
                log = logger.warning
            else:
                log = logger.info
            log(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_ms=round((time.monotonic() - start) * 1000, 2),
            )
            structlog.contextvars.clear_contextvars()
