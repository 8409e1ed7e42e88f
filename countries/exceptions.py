"""
Refresh failures and the API-wide exception handler.

Each ``RefreshError`` carries the HTTP status it is reported with, so the
refresh view can turn any of them into a response without branching.
"""
import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class RefreshError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Refresh failed"

    def __init__(self, details=None):
        super().__init__(details or self.message)
        self.details = details

    def as_response_data(self):
        data = {"error": self.message}
        if self.details:
            data["details"] = self.details
        return data


class ConfigurationError(RefreshError):
    """An external source URL is not configured."""

    message = "Server misconfigured"


class SourceUnavailableError(RefreshError):
    """A source request failed, timed out or returned an error status."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    message = "External data source unavailable"


class InvalidSourceDataError(RefreshError):
    """A source answered, but with a payload of the wrong shape."""

    status_code = status.HTTP_502_BAD_GATEWAY
    message = "Invalid data from external source"


class NoValidCountriesError(RefreshError):
    status_code = status.HTTP_502_BAD_GATEWAY
    message = "No valid countries to store"


class SummaryRenderError(Exception):
    """The summary image could not be produced. Never fatal to a refresh."""


def api_exception_handler(exc, context):
    """
    DRF exception handler returning ``{"error": ..., "details": ...}`` bodies.

    Exceptions DRF does not know about are logged and reported as a 500
    instead of propagating out of the view.
    """
    if isinstance(exc, RefreshError):
        return Response(exc.as_response_data(), status=exc.status_code)

    response = exception_handler(exc, context)
    if response is not None:
        response.data = {"error": _error_title(response.status_code), "details": response.data}
        return response

    view = context.get("view")
    logger.exception("Unhandled error in %s", view.__class__.__name__ if view else "view")
    return Response(
        {"error": "Internal server error", "details": str(exc)},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def _error_title(status_code):
    if status_code == status.HTTP_400_BAD_REQUEST:
        return "Validation failed"
    if status_code == status.HTTP_404_NOT_FOUND:
        return "Not found"
    if status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        return "Method not allowed"
    return "Request failed"
