from typing import Dict, Any, Optional
from datetime import datetime, timezone
from fastapi import status
from pydantic import BaseModel
import logging

logger = logging.getLogger(__name__)


class BaseCustomException(Exception):
    """Base class for custom exceptions.

    Subclasses only declare their HTTP status, error code and default message;
    every one of them accepts an overriding ``message``, ``details`` and ``error_code``.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: Optional[str] = None
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        self.message = message or self.default_message
        self.details = details or {}
        self.error_code = error_code or type(self).error_code
        super().__init__(self.message)


class BadRequestError(BaseCustomException):
    """Malformed or unknown input (unknown verification code, bad identifier)"""
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "BAD_REQUEST_ERROR"
    default_message = "Bad request"


class InvalidCredentialsError(BaseCustomException):
    """A login whose identifier or password does not match"""
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "INVALID_CREDENTIALS"
    default_message = "Invalid login credentials"


class AuthenticationError(BaseCustomException):
    """Missing credentials or accounts that may not authenticate"""
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "AUTHENTICATION_ERROR"
    default_message = "Authentication failed"


class AuthorizationError(BaseCustomException):
    """Rejected tokens, revoked sessions and role checks"""
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "AUTHORIZATION_ERROR"
    default_message = "Access denied"


class NotFoundError(BaseCustomException):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND_ERROR"
    default_message = "Resource not found"


class ConflictError(BaseCustomException):
    """Duplicate value for a unique field"""
    status_code = status.HTTP_409_CONFLICT
    error_code = "CONFLICT_ERROR"
    default_message = "Resource conflict"


class DatabaseError(BaseCustomException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "DATABASE_ERROR"
    default_message = "Database operation failed"


class DeliveryError(BaseCustomException):
    """Email/SMS deliveries the provider did not accept"""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "DELIVERY_ERROR"
    default_message = "Message delivery failed"


# Response models for errors
class ErrorResponse(BaseModel):
    """Standard error response model"""
    error: str
    message: str
    error_code: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    timestamp: Optional[str] = None
    request_id: Optional[str] = None


def create_error_response(
    exception: BaseCustomException,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """Create standardized error response"""
    response = {
        "error": exception.__class__.__name__.replace("Error", " Error"),
        "message": exception.message,
        "error_code": exception.error_code,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id
    }

    # Server side failures never expose their details to the client
    if exception.details and exception.status_code < 500:
        response["details"] = exception.details

    return response


def create_validation_error_response(
    validation_errors: Dict[str, list],
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """Create validation error response"""
    return {
        "error": "Validation Error",
        "message": "Validation failed",
        "error_code": "VALIDATION_ERROR",
        "validation_errors": validation_errors,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id
    }


def handle_database_error(error: Exception, operation: str = "database operation") -> DatabaseError:
    """Handle database errors and convert to DatabaseError"""
    logger.error(f"Database error during {operation}: {error}")

    error_message = "Database operation failed"
    if "connection" in str(error).lower():
        error_message = "Database connection failed"
    elif "timeout" in str(error).lower():
        error_message = "Database operation timed out"

    return DatabaseError(
        message=error_message,
        details={"operation": operation},
        error_code="DATABASE_OPERATION_ERROR"
    )
