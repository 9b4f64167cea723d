"""Typed service errors and their HTTP mapping.

Services raise ``ServiceError`` subclasses; the API layer turns them into
responses by switching on ``kind``. Messages are for humans only and are
never inspected to pick a status code.
"""

from __future__ import annotations

import enum
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    UNAUTHENTICATED = "unauthenticated"
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    INSUFFICIENT_ESCROW = "insufficient_escrow"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    ALREADY_RELEASED = "already_released"
    DUPLICATE_ESCROW = "duplicate_escrow"
    GATEWAY = "gateway"
    INTEGRATION = "integration"


HTTP_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.INSUFFICIENT_ESCROW: 409,
    ErrorKind.INSUFFICIENT_FUNDS: 409,
    ErrorKind.ALREADY_RELEASED: 409,
    ErrorKind.DUPLICATE_ESCROW: 409,
    ErrorKind.GATEWAY: 502,
    ErrorKind.INTEGRATION: 502,
}


class ServiceError(Exception):
    """Base exception for every domain failure."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        *,
        kind: ErrorKind | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details or {}
        if kind is not None:
            self.kind = kind


class InvalidRequest(ServiceError):
    kind = ErrorKind.VALIDATION


class InvalidAmount(InvalidRequest):
    """Raised when a money amount is missing, zero or negative."""


class Unauthenticated(ServiceError):
    kind = ErrorKind.UNAUTHENTICATED


class NotFound(ServiceError):
    kind = ErrorKind.NOT_FOUND


class InvalidState(ServiceError):
    kind = ErrorKind.INVALID_STATE


class InsufficientEscrow(ServiceError):
    kind = ErrorKind.INSUFFICIENT_ESCROW


class InsufficientFunds(ServiceError):
    kind = ErrorKind.INSUFFICIENT_FUNDS


class AlreadyReleased(ServiceError):
    kind = ErrorKind.ALREADY_RELEASED


class DuplicateEscrow(ServiceError):
    kind = ErrorKind.DUPLICATE_ESCROW


class GatewayError(ServiceError):
    kind = ErrorKind.GATEWAY


class IntegrationError(ServiceError):
    kind = ErrorKind.INTEGRATION


def error_body(exc: ServiceError) -> dict[str, Any]:
    return {
        "error": {
            "kind": exc.kind.value,
            "message": exc.message,
            "details": exc.details,
        }
    }


async def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    status_code = HTTP_STATUS_BY_KIND.get(exc.kind, 400)
    return JSONResponse(status_code=status_code, content=error_body(exc))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, _service_error_handler)
