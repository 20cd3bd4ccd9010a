import logging
import time
import uuid
from collections.abc import Callable
from typing import Any, Optional

from fastapi import FastAPI, Request, Response
from rich.console import Console
from rich.logging import RichHandler
from starlette.middleware.base import BaseHTTPMiddleware


REQUEST_ID_HEADER = "X-Request-ID"
DEFAULT_EXCLUDE_PATHS = ["/health", "/docs", "/redoc", "/openapi.json"]

METHOD_COLORS = {
    "GET": "green",
    "POST": "blue",
    "PUT": "yellow",
    "PATCH": "yellow",
    "DELETE": "red",
}

console = Console()

logger = logging.getLogger("api.request")


def setup_logging(level: int = logging.INFO) -> None:
    """Route application logs through a rich console handler."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )


def method_color(method: str) -> str:
    return METHOD_COLORS.get(method, "white")


def status_color(status_code: int) -> str:
    if status_code < 300:
        return "green"
    if status_code < 400:
        return "blue"
    if status_code < 500:
        return "yellow"
    return "red"


def status_log_level(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware for logging each request and its outcome
    in a single log entry.

    The request id is taken from the incoming X-Request-ID header when
    present, so a caller retrying a reward confirmation can correlate
    its attempts with the server log.
    """

    def __init__(
        self,
        app: Any,
        exclude_paths: Optional[list[str]] = None,
    ):
        super().__init__(app)
        self.exclude_paths = exclude_paths or DEFAULT_EXCLUDE_PATHS

    async def dispatch(
        self, request: Request, call_next: Callable[..., Any]
    ) -> Response:
        if any(
            request.url.path.startswith(path) for path in self.exclude_paths
        ):
            return await call_next(request)

        request_id = request.headers.get(REQUEST_ID_HEADER) or str(
            uuid.uuid4()
        )
        request.state.request_id = request_id

        start_time = time.perf_counter()
        method = request.method
        path = request.url.path
        client_ip = request.client.host if request.client else None
        prefix = f"[{method_color(method)}]{method}[/] {path}"
        suffix = f"Client: {client_ip} | ID: [dim]{request_id}[/]"

        try:
            response = await call_next(request)
        except Exception as e:  # pylint: disable=broad-exception-caught
            elapsed_ms = round((time.perf_counter() - start_time) * 1000, 2)
            logger.error(
                "%s | Error: [red]%s[/] | Time: [cyan]%sms[/] | %s",
                prefix,
                e,
                elapsed_ms,
                suffix,
                exc_info=True,
            )
            # Re-raise to let FastAPI handle the exception
            raise

        elapsed = time.perf_counter() - start_time
        elapsed_ms = round(elapsed * 1000, 2)

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Process-Time"] = str(elapsed)

        code = response.status_code
        logger.log(
            status_log_level(code),
            "%s | Status: [%s]%s[/] | Time: [cyan]%sms[/] | %s",
            prefix,
            status_color(code),
            code,
            elapsed_ms,
            suffix,
        )
        return response


def setup_request_logging_middleware(
    app: FastAPI,
    exclude_paths: Optional[list[str]] = None,
) -> None:
    """Add request logging middleware to FastAPI app."""
    app.add_middleware(
        RequestLoggingMiddleware,
        exclude_paths=exclude_paths,
    )
