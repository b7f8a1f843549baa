"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ValidationError(AppException):
    """Raised for malformed input (bad amount, bad phone, bad webhook shape)."""

    def __init__(self, message: str = "Validation error", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_VALIDATION",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class InsufficientFundsError(AppException):
    """Raised when a debit would drive the balance below zero."""

    def __init__(self, balance: Any = None, requested: Any = None):
        details = {}
        if balance is not None:
            details["balance"] = str(balance)
        if requested is not None:
            details["requested"] = str(requested)
        super().__init__(
            message="Insufficient funds",
            error_code="ERR_FUNDS_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class AccountNotFoundError(AppException):
    """Raised when an account cannot be resolved (by id or phone)."""

    def __init__(self, lookup: str, value: Any):
        super().__init__(
            message=f"Account with {lookup} {value} not found",
            error_code="ERR_ACCOUNT_404",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"lookup": lookup, "value": value}
        )


class ExternalServiceError(AppException):
    """Raised when the payment gateway (or another remote dependency) fails."""

    def __init__(self, service: str, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=f"{service}: {message}",
            error_code="ERR_EXTERNAL_001",
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={"service": service, **(details or {})}
        )
        self.service = service


class LedgerDivergenceError(AppException):
    """Raised when an account balance disagrees with its transaction trail."""

    def __init__(self, user_id: str, balance: Any, expected: Any):
        super().__init__(
            message=f"Ledger divergence for account {user_id}",
            error_code="ERR_LEDGER_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"user_id": user_id, "balance": str(balance), "expected": str(expected)}
        )


class ReconciliationRequiredError(AppException):
    """
    Raised when a claim was debited but the transfer failed permanently.

    The debit is compensated by a reversal credit (or queued for one),
    so the user sees a transient failure rather than lost funds.
    """

    def __init__(self, transaction_id: str, reversed: bool, reason: str = ""):
        if reversed:
            message = "Claim payout could not be completed. Your balance has been restored."
        else:
            message = "Claim payout could not be completed. Your balance will be restored shortly."
        super().__init__(
            message=message,
            error_code="ERR_RECON_001",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"transaction_id": transaction_id, "reversed": reversed, "reason": reason}
        )


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class AuthenticationError(AppException):
    """Raised for authentication failures."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_errors(exc.errors())
            }
        }
    )


def jsonable_errors(errors) -> list:
    """Strip non-serializable context (e.g. raised exceptions) from pydantic errors."""
    cleaned = []
    for error in errors:
        item = {k: v for k, v in error.items() if k != "ctx"}
        if "ctx" in error:
            item["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        cleaned.append(item)
    return cleaned


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
