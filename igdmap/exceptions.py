"""Exception hierarchy for igdmap.

All errors raised by the discovery engine and the gateway control protocol
derive from :class:`IGDError`, which carries a message and a details dict.
"""

from __future__ import annotations

from typing import Any


class IGDError(Exception):
    """Base exception for all igdmap errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize igdmap error."""
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class NotReadyError(IGDError):
    """Operation issued before the discovery engine or gateway was ready."""


class DeviceUnavailableError(IGDError):
    """Device description could not be fetched, parsed or has no usable service."""


class ActionError(IGDError):
    """Base class for SOAP action failures."""


class ActionFaultError(ActionError):
    """Gateway answered an action with a UPnP SOAP fault."""

    def __init__(
        self,
        error_code: str | None,
        error_description: str | None,
        request: str = "",
        response: str = "",
    ):
        """Initialize SOAP fault error.

        Args:
            error_code: UPnPError errorCode (e.g. "718")
            error_description: UPnPError errorDescription
            request: SOAP request body that triggered the fault
            response: Raw response body

        """
        message = error_description or f"UPnP error {error_code}"
        super().__init__(
            message,
            {"error_code": error_code, "error_description": error_description},
        )
        self.error_code = error_code
        self.error_description = error_description
        self.request = request
        self.response = response


class ActionHttpError(ActionError):
    """Action failed at the HTTP level without a parseable SOAP fault."""

    def __init__(
        self,
        message: str,
        status: int | None = None,
        request: str = "",
        response: str = "",
    ):
        """Initialize HTTP-level action error."""
        super().__init__(message, {"status": status} if status is not None else None)
        self.status = status
        self.request = request
        self.response = response


class PreflightUnreachableError(IGDError):
    """Internal target of a new mapping did not accept a TCP connection."""


class ConfigurationError(IGDError):
    """Configuration validation errors."""
