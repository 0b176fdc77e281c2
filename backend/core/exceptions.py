"""Custom exception handlers for FastAPI."""
from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from bson.errors import InvalidId
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class FreightConnectException(Exception):
    """Base exception for the FreightConnect application."""
    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(FreightConnectException):
    """Resource not found."""
    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found", status_code=404)


class UnauthorizedError(FreightConnectException):
    """User not authenticated."""
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, status_code=401)


class ForbiddenError(FreightConnectException):
    """User forbidden from accessing resource."""
    def __init__(self, message: str = "Access denied"):
        super().__init__(message, status_code=403)


class ValidationError(FreightConnectException):
    """Malformed input: bad coordinates, missing fields, invalid role pairing."""
    def __init__(self, message: str):
        super().__init__(message, status_code=422)


class BusinessRuleError(FreightConnectException):
    """Business rule violation."""
    def __init__(self, message: str):
        super().__init__(message, status_code=400)


class ConflictError(FreightConnectException):
    """Duplicate active record."""
    def __init__(self, message: str):
        super().__init__(message, status_code=409)


class OverlapError(ConflictError):
    """Distance band interval overlaps an active band of the same table."""
    def __init__(self, message: str = "Overlapping distance band exists"):
        super().__init__(message)


class InsufficientTokensError(BusinessRuleError):
    """Driver wallet cannot cover the requested debit. Top up and retry."""
    def __init__(self, required: int = 0, balance: int = 0):
        self.required = required
        self.balance = balance
        super().__init__(
            f"Insufficient tokens: {required} required, {balance} available"
        )


class NotPricedError(FreightConnectException):
    """No active distance band covers the given distance, or there is no distance to price."""
    def __init__(self, distance_km: Optional[float] = None, message: Optional[str] = None):
        self.distance_km = distance_km
        if message is None:
            message = f"No active band covers {distance_km:g} km"
        super().__init__(message, status_code=422)


def setup_exception_handlers(app: FastAPI):
    """Register custom exception handlers."""

    @app.exception_handler(FreightConnectException)
    async def freightconnect_exception_handler(request: Request, exc: FreightConnectException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "error_type": exc.__class__.__name__}
        )

    @app.exception_handler(InvalidId)
    async def invalid_id_handler(request: Request, exc: InvalidId):
        return JSONResponse(
            status_code=400,
            content={"detail": "Invalid ID", "error_type": "InvalidId"}
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        # Don't override HTTPException
        if isinstance(exc, HTTPException):
            raise exc

        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "error_type": "InternalError"}
        )
