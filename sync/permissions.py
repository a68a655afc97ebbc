from __future__ import annotations

from typing import Any

from rest_framework import status
from rest_framework.response import Response

from common.exceptions import error_response
from common.permissions import user_has_capability
from core.models import User


FORBIDDEN_LOCATION_CODE = "forbidden_location"
VALIDATION_FAILED_CODE = "validation_error"


def validation_failed_response(errors: dict[str, Any], *, status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY) -> Response:
    return error_response(
        code=VALIDATION_FAILED_CODE,
        message="Validation failed.",
        errors=errors,
        status_code=status_code,
    )


def forbidden_location_response(errors: dict[str, Any]) -> Response:
    return error_response(
        code=FORBIDDEN_LOCATION_CODE,
        message="Location access is not allowed.",
        errors=errors,
        status_code=status.HTTP_403_FORBIDDEN,
    )


def resolve_location_for_user(user: User, requested_location: str | None) -> tuple[str | None, str | None]:
    """Pick the location a subscriber may read.

    Returns ``(location, error)``. A ``None`` location with no error means the
    caller may read every location.
    """
    if _may_read_all_locations(user):
        return (requested_location or None), None

    home = getattr(user, "location", "") or ""
    if not home:
        return None, "Authenticated user has no home location."
    if requested_location and requested_location != home:
        return None, "Location does not match the authenticated user location."
    return home, None


def get_permitted_location(user: User, requested_location: str | None) -> tuple[str | None, Response | None]:
    location, error_message = resolve_location_for_user(user, requested_location)
    if error_message is None:
        return location, None
    return None, forbidden_location_response({"location": [error_message]})


def _may_read_all_locations(user: User) -> bool:
    return bool(user and (user.is_superuser or user_has_capability(user, "inventory.view.all_locations")))
