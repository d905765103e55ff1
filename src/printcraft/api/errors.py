"""Reusable error primitives for API exception handling."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..exceptions import (
    NotFoundError,
    QueueUnavailableError,
    QuotaExceededError,
    RepositoryError,
    ValidationError,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True, eq=False)
class ApiError(Exception):
    """Structured application-level error for HTTP handlers."""

    status_code: int
    code: str
    message: str
    headers: Mapping[str, str] | None = None

    def to_response(self) -> JSONResponse:
        """Materialise the error into a ``JSONResponse`` instance."""

        return JSONResponse(
            status_code=self.status_code,
            content={"error": {"code": self.code, "message": self.message}},
            headers=dict(self.headers or {}),
        )


async def api_error_handler(_: Request, exc: ApiError) -> JSONResponse:
    """Convert :class:`ApiError` exceptions into JSON payloads."""

    return exc.to_response()


async def validation_error_handler(_: Request, exc: ValidationError) -> JSONResponse:
    return ApiError(status.HTTP_400_BAD_REQUEST, "INVALID_REQUEST", str(exc)).to_response()


async def request_validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:  # pragma: no cover - fastapi always reports at least one error
        message = "request is malformed"
    return ApiError(status.HTTP_400_BAD_REQUEST, "INVALID_REQUEST", message).to_response()


async def quota_error_handler(_: Request, exc: QuotaExceededError) -> JSONResponse:
    return ApiError(status.HTTP_403_FORBIDDEN, "QUOTA_EXCEEDED", str(exc)).to_response()


async def not_found_error_handler(_: Request, exc: NotFoundError) -> JSONResponse:
    return ApiError(status.HTTP_404_NOT_FOUND, "NOT_FOUND", str(exc)).to_response()


async def unavailable_error_handler(_: Request, exc: Exception) -> JSONResponse:
    logger.error("api.storage.unavailable", exc_info=exc)
    return ApiError(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "SERVICE_UNAVAILABLE",
        "The service is temporarily unavailable. Please retry.",
    ).to_response()


def unauthorized_error(message: str) -> ApiError:
    """Return an :class:`ApiError` representing an authentication failure."""

    return ApiError(
        status.HTTP_401_UNAUTHORIZED,
        "UNAUTHORIZED",
        message,
        headers={"WWW-Authenticate": "Bearer"},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(QuotaExceededError, quota_error_handler)
    app.add_exception_handler(NotFoundError, not_found_error_handler)
    app.add_exception_handler(QueueUnavailableError, unavailable_error_handler)
    app.add_exception_handler(RepositoryError, unavailable_error_handler)


__all__ = ["ApiError", "api_error_handler", "register_error_handlers", "unauthorized_error"]
