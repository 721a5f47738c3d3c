import logging
import os
import sys
import time
import uuid
from contextvars import ContextVar
from pathlib import Path
from typing import Callable, List

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from schoolhub.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"
QUIET_LOGGERS = ("uvicorn", "sqlalchemy", "alembic", "httpx")

# Requests slower than this are logged at warning level
SLOW_REQUEST_SECONDS = 5.0

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    """Stamps the current request id on every record, '-' outside a request."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


def setup_logging() -> logging.Logger:
    """
    Configure the root logger for the API process.

    Logs go to stdout and, when LOG_FILE is set, to that file as well.
    Every handler carries the request id filter so service modules logging
    through logging.getLogger(__name__) are correlated with their request.
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.LOG_FILE:
        os.makedirs(Path(settings.LOG_FILE).parent, exist_ok=True)
        handlers.append(logging.FileHandler(settings.LOG_FILE))
    for handler in handlers:
        handler.addFilter(RequestIdFilter())

    logging.basicConfig(level=log_level, format=LOG_FORMAT, handlers=handlers)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = logging.getLogger("schoolhub")
    logger.setLevel(log_level)
    return logger


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request under an id, reusing the caller's X-Request-ID when sent."""

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.logger = logging.getLogger("schoolhub.request")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        token = request_id_var.set(request_id)
        request.state.request_id = request_id
        start_time = time.perf_counter()
        client = request.client.host if request.client else "unknown"

        try:
            self.logger.info(f"{request.method} {request.url.path} started [client: {client}]")
            try:
                response = await call_next(request)
            except Exception as e:
                self.logger.error(f"{request.method} {request.url.path} failed: {str(e)}", exc_info=True)
                raise

            duration = time.perf_counter() - start_time
            message = f"{request.method} {request.url.path} -> {response.status_code} in {duration:.3f}s"
            if duration > SLOW_REQUEST_SECONDS:
                self.logger.warning(f"Slow request: {message}")
            else:
                self.logger.info(message)
        finally:
            request_id_var.reset(token)

        response.headers["X-Request-ID"] = request_id
        return response


def add_logging_middleware(app: FastAPI):
    app.add_middleware(RequestLoggingMiddleware)
