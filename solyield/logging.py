import uuid
import logging
import structlog
import os
from typing import Optional
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


def setup_logging(level: Optional[str] = None, json_output: bool = True) -> None:
    """Configure structlog on top of stdlib logging. JSON lines unless json_output is False."""
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(format="%(message)s", level=getattr(logging, level, logging.INFO))
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.dict_tracebacks,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tags every log line of a request with its id and, when sent, the reporting device."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id
        context = {"request_id": request_id, "method": request.method, "path": request.url.path}
        device_id = request.headers.get("X-Device-ID")
        if device_id:
            context["device_id"] = device_id
        structlog.contextvars.bind_contextvars(**context)
        try:
            response: Response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars(*context.keys())
        response.headers["X-Request-ID"] = request_id
        return response
