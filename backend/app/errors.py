"""
Application error types and the JSON error body shared by every endpoint.

Pipeline failures are caught at the webhook boundary and converted to a
coarse status code plus short message; internal detail is only surfaced in
development mode.
"""

from enum import Enum
from typing import Any


class ErrorType(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    SHOPIFY_ERROR = "SHOPIFY_ERROR"
    SENDGRID_ERROR = "SENDGRID_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class AppError(Exception):
    """Base error carrying a category and the HTTP status it maps to."""

    error_type: ErrorType = ErrorType.UNKNOWN_ERROR
    status_code: int = 500

    def __init__(self, message: str, *, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class PayloadValidationError(AppError):
    error_type = ErrorType.VALIDATION_ERROR
    status_code = 400


class ShopifyError(AppError):
    """A GraphQL call failed: transport error, timeout, HTTP error or GraphQL errors."""

    error_type = ErrorType.SHOPIFY_ERROR


class EmailDeliveryError(AppError):
    error_type = ErrorType.SENDGRID_ERROR


class ConfigurationError(AppError):
    error_type = ErrorType.CONFIGURATION_ERROR


class CustomerNotFoundError(AppError):
    def __init__(self, message: str = "Cliente no encontrado"):
        super().__init__(message)


class AdvisorNotFoundError(AppError):
    error_type = ErrorType.SHOPIFY_ERROR

    def __init__(self, message: str = "Asesor no encontrado"):
        super().__init__(message)


GENERIC_ERROR_MESSAGE = "Algo salió mal"


def create_error_response(
    error: Exception,
    *,
    title: str = "Error interno del servidor",
    message: str = GENERIC_ERROR_MESSAGE,
    expose_detail: bool = False,
) -> dict:
    """
    Build the JSON body for a failed request.

    The raw exception message is only included when expose_detail is True
    (development mode); otherwise callers see a generic message.
    """
    body = {
        "error": title,
        "message": str(error) if expose_detail else message,
    }
    if expose_detail:
        error_type = error.error_type if isinstance(error, AppError) else ErrorType.UNKNOWN_ERROR
        body["type"] = error_type.value
    return body
