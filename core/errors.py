from typing import List, Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

log = structlog.get_logger(__name__)


class AppError(Exception):
    """Base class for errors mapped to an HTTP response at the request boundary."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_body(self) -> dict:
        return {"detail": self.message}


class ValidationError(AppError):
    """Input violated one or more constraints. Carries every violation, not just the first."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, errors: List[str], message: str = "Validation failed"):
        super().__init__(message)
        self.errors = list(errors)

    def __str__(self) -> str:
        return f"{self.message}: {'; '.join(self.errors)}"

    def to_body(self) -> dict:
        return {"detail": self.message, "errors": self.errors}


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT


class StaleOrderError(ConflictError):
    """The order changed between read and write. Safe to re-read and retry."""


class InvalidStatusTransition(ConflictError):
    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move order from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested


class AuthenticationError(AppError):
    """Webhook signature missing or wrong. A client error so the provider redelivers."""

    status_code = status.HTTP_400_BAD_REQUEST


class GatewayError(AppError):
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, order_id: Optional[str] = None):
        super().__init__(message)
        self.order_id = order_id

    def to_body(self) -> dict:
        body = {"detail": self.message, "retryable": True}
        if self.order_id:
            body["order_id"] = self.order_id
        return body


class MalformedEventError(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST

    def to_body(self) -> dict:
        return {"detail": self.message}


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("request_failed", path=request.url.path, method=request.method, error=str(exc))
    else:
        log.info("request_rejected", path=request.url.path, method=request.method,
                 status_code=exc.status_code, error=str(exc))
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
