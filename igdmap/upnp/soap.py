"""SOAP 1.1 action invocation against a gateway control URL."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Any
from xml.sax.saxutils import escape

import aiohttp

from igdmap.exceptions import ActionFaultError, ActionHttpError
from igdmap.upnp.description import GatewayInfo
from igdmap.upnp.http import HttpClient
from igdmap.upnp.xmltree import XML_ERRORS, descend, parse_xml, unwrap_fields

logger = logging.getLogger(__name__)

SOAP_ENVELOPE_NS = "http://schemas.xmlsoap.org/soap/envelope/"
SOAP_ENCODING_NS = "http://schemas.xmlsoap.org/soap/encoding/"

_QUOTE_ENTITIES = {'"': "&quot;", "'": "&apos;"}

ActionArgs = Iterable[tuple[str, Any]]


def escape_value(value: Any) -> str:
    """Convert an argument value to escaped XML text."""
    return escape(str(value), _QUOTE_ENTITIES)


def build_soap_envelope(action: str, service_type: str, args: ActionArgs = ()) -> str:
    """Build a SOAP request body.

    Args:
        action: Action name (e.g. "AddPortMapping")
        service_type: Service type URN, used as the action namespace
        args: Ordered (name, value) pairs; None values become empty elements

    Returns:
        SOAP envelope XML string

    """
    arg_xml = "".join(
        f"<{name}>{'' if value is None else escape_value(value)}</{name}>"
        for name, value in args
    )
    return (
        '<?xml version="1.0"?>'
        f'<s:Envelope xmlns:s="{SOAP_ENVELOPE_NS}" s:encodingStyle="{SOAP_ENCODING_NS}">'
        "<s:Body>"
        f'<u:{action} xmlns:u="{service_type}">'
        f"{arg_xml}"
        f"</u:{action}>"
        "</s:Body>"
        "</s:Envelope>"
    )


def build_soap_headers(action: str, service_type: str, body: bytes) -> dict[str, str]:
    """Build the HTTP headers of a SOAP request."""
    return {
        "Content-Type": 'text/xml; charset="utf-8"',
        "Content-Length": str(len(body)),
        "SOAPAction": f'"{service_type}#{action}"',
    }


def parse_fault(document: dict[str, Any]) -> tuple[str, str | None] | None:
    """Extract (errorCode, errorDescription) from a parsed SOAP fault.

    Returns:
        The UPnP error pair, or None if the document holds no UPnPError
        with an errorCode

    """
    try:
        error = descend(document, "Envelope", "Body", "Fault", "detail", "UPnPError")
    except KeyError:
        return None
    if not isinstance(error, dict):
        return None
    fields = unwrap_fields(error)
    error_code = fields.get("errorCode")
    if not isinstance(error_code, str) or not error_code:
        return None
    description = fields.get("errorDescription")
    return error_code, description if isinstance(description, str) else None


class ActionInvoker:
    """Invokes actions on the control URL of a gateway's selected service."""

    def __init__(self, http: HttpClient, info: GatewayInfo):
        """Initialize action invoker.

        Args:
            http: HTTP client used for the POST requests
            info: Selected service type and its control URL

        """
        self.http = http
        self.info = info

    async def call(self, action: str, args: ActionArgs = ()) -> dict[str, Any]:
        """Invoke an action and return the fields of its response element.

        Args:
            action: Action name
            args: Ordered (name, value) pairs

        Returns:
            Mapping of response field name to value

        Raises:
            ActionFaultError: the gateway answered with a UPnP fault
            ActionHttpError: transport failure, or a response that is neither
                a fault nor a well-formed ``<action>Response``

        """
        request = build_soap_envelope(action, self.info.service_type, args)
        body = request.encode("utf-8")
        headers = build_soap_headers(action, self.info.service_type, body)

        logger.debug("Invoking %s on %s", action, self.info.control_url)
        try:
            response = await self.http.post(self.info.control_url, body, headers)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            msg = f"Network error invoking {action}: {e}"
            raise ActionHttpError(msg, request=request) from e

        try:
            document = parse_xml(response.body)
        except XML_ERRORS as e:
            if response.status != 200:
                msg = f"{action} failed: HTTP {response.status}"
            else:
                msg = f"Failed to parse {action} response: {e}"
            raise ActionHttpError(
                msg,
                status=response.status,
                request=request,
                response=response.body,
            ) from e

        fault = parse_fault(document)
        if fault is not None:
            error_code, error_description = fault
            logger.debug(
                "%s fault (HTTP %d): %s %s",
                action,
                response.status,
                error_code,
                error_description,
            )
            raise ActionFaultError(
                error_code,
                error_description,
                request=request,
                response=response.body,
            )

        if response.status != 200:
            msg = f"{action} failed: HTTP {response.status}"
            raise ActionHttpError(
                msg,
                status=response.status,
                request=request,
                response=response.body,
            )

        try:
            result = descend(document, "Envelope", "Body", f"{action}Response")
        except KeyError as e:
            msg = f"{action} response has no {action}Response element"
            raise ActionHttpError(
                msg,
                status=response.status,
                request=request,
                response=response.body,
            ) from e

        if not isinstance(result, dict):
            # <u:ActionResponse/> with no output arguments
            return {}
        return unwrap_fields(result)
