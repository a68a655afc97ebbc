from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from rest_framework import status
from rest_framework.exceptions import (
    APIException,
    AuthenticationFailed,
    MethodNotAllowed,
    NotAuthenticated,
    NotFound,
    NotAcceptable,
    ParseError,
    PermissionDenied,
    Throttled,
    UnsupportedMediaType,
    ValidationError,
)
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR_MESSAGE = "An unexpected error occurred."


class InventoryError(APIException):
    """Base class for inventory engine business errors."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Inventory operation failed."
    default_code = "inventory_error"


class InvalidInput(InventoryError):
    default_detail = "Missing or malformed input."
    default_code = "invalid_input"


class RecordNotFound(InventoryError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Record not found."
    default_code = "not_found"


class InsufficientStock(InventoryError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Insufficient stock."
    default_code = "insufficient_stock"


class InvalidPrice(InventoryError):
    default_detail = "Price must be a positive number."
    default_code = "invalid_price"


class PolicyViolation(InventoryError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "Operation is not allowed by the approval policy."
    default_code = "policy_violation"


class PolicyConflict(InventoryError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Approval policy was changed by someone else. Reload and try again."
    default_code = "policy_conflict"


class AlreadyProcessing(InventoryError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "This request is already being processed."
    default_code = "already_processing"


class AlreadyResolved(InventoryError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "This request has already been resolved."
    default_code = "already_resolved"


class PartialFailure(InventoryError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "Operation failed before all writes completed."
    default_code = "partial_failure"


EXCEPTION_CODE_MAP: dict[type[Exception], str] = {
    ValidationError: "validation_error",
    NotAuthenticated: "not_authenticated",
    AuthenticationFailed: "authentication_failed",
    PermissionDenied: "permission_denied",
    NotFound: "not_found",
    MethodNotAllowed: "method_not_allowed",
    NotAcceptable: "not_acceptable",
    UnsupportedMediaType: "unsupported_media_type",
    ParseError: "parse_error",
    Throttled: "throttled",
}


def build_error_envelope(
    *,
    code: str,
    message: str,
    errors: Any,
    status_code: int,
) -> dict[str, Any]:
    return {
        "code": code,
        "message": message,
        "errors": errors,
        "status": status_code,
    }


def error_response(
    *,
    code: str,
    message: str,
    errors: Any = None,
    status_code: int = status.HTTP_400_BAD_REQUEST,
) -> Response:
    return Response(
        build_error_envelope(
            code=code,
            message=message,
            errors=errors,
            status_code=status_code,
        ),
        status=status_code,
    )


def custom_exception_handler(exc: Exception, context: dict[str, Any]) -> Response:
    response = drf_exception_handler(exc, context)

    if response is None:
        view_name = context.get("view").__class__.__name__ if context.get("view") else "unknown"
        logger.exception("Unhandled API exception in %s", view_name)
        return error_response(
            code="internal_server_error",
            message=GENERIC_SERVER_ERROR_MESSAGE,
            errors=None,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    status_code = response.status_code
    errors = _normalize_errors(response.data)
    message = _build_message(exc, response.data)
    code = _build_code(exc)

    response.data = build_error_envelope(
        code=code,
        message=message,
        errors=errors,
        status_code=status_code,
    )
    return response


def _build_code(exc: Exception) -> str:
    for exception_type, stable_code in EXCEPTION_CODE_MAP.items():
        if isinstance(exc, exception_type):
            return stable_code

    if isinstance(exc, APIException):
        return str(getattr(exc, "default_code", "api_error"))

    return "internal_server_error"


def _build_message(exc: Exception, data: Any) -> str:
    if isinstance(exc, ValidationError):
        return "Validation failed."

    detail = None
    if isinstance(data, Mapping):
        detail = data.get("detail")
    elif isinstance(data, str):
        detail = data

    if detail:
        return str(detail)

    if isinstance(exc, Throttled):
        return "Request was throttled."

    if isinstance(exc, APIException):
        return str(getattr(exc, "detail", "Request failed."))

    return GENERIC_SERVER_ERROR_MESSAGE


def _normalize_errors(data: Any) -> Any:
    if isinstance(data, Mapping):
        if set(data.keys()) == {"detail"}:
            return None
        return data

    if isinstance(data, Sequence) and not isinstance(data, str):
        return data

    return None
