"""Typed errors raised by adapters and the mapping engine.

Every remote failure is surfaced as an ``IntegrationError`` subclass so
callers can branch on the kind of failure instead of parsing messages.
"""

from __future__ import annotations

import httpx


class IntegrationError(Exception):
    """Base exception for integration errors.

    Attributes:
        kind: Stable machine-readable error kind.
        status_code: HTTP status the API layer reports for this error.
        remediation_hint: Suggestion for fixing the issue.
    """

    kind = "integration_error"
    status_code = 500

    def __init__(self, message: str = "", remediation_hint: str = "") -> None:
        self.message = message or self.__class__.__name__
        self.remediation_hint = remediation_hint
        super().__init__(self.message)


class Unauthenticated(IntegrationError):
    """Credentials were rejected by the remote system."""

    kind = "unauthenticated"
    status_code = 401


class Forbidden(IntegrationError):
    """Credentials are valid but lack the required scope."""

    kind = "forbidden"
    status_code = 403


class NotFound(IntegrationError):
    """The requested object type, record or resource does not exist."""

    kind = "not_found"
    status_code = 404


class ValidationFailed(IntegrationError):
    """Input was rejected, locally or by the remote system.

    Attributes:
        errors: Every individual problem found.
    """

    kind = "validation_failed"
    status_code = 422

    def __init__(self, message: str = "", errors: list[str] | None = None, remediation_hint: str = "") -> None:
        self.errors = list(errors or [])
        if not message and self.errors:
            message = "; ".join(self.errors)
        super().__init__(message, remediation_hint)


class RemoteUnavailable(IntegrationError):
    """The remote system could not be reached or returned a server error."""

    kind = "remote_unavailable"
    status_code = 502


class RemoteTimeout(IntegrationError):
    """The remote system did not answer within the configured timeout."""

    kind = "remote_timeout"
    status_code = 504


class NotConfigured(IntegrationError):
    """The integration is disabled or missing credentials."""

    kind = "not_configured"
    status_code = 409


def _remote_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        for key in ("message", "detail", "title", "error"):
            if body.get(key):
                return str(body[key])
    return response.text[:200]


def error_for_response(response: httpx.Response, context: str = "") -> IntegrationError:
    """Build the typed error for a non-success HTTP response.

    Args:
        response: The failed response.
        context: Short description of the call, prefixed to the message.

    Returns:
        The matching ``IntegrationError`` subclass instance.
    """
    code = response.status_code
    detail = _remote_message(response)
    prefix = f"{context}: " if context else ""

    if code == 401:
        return Unauthenticated(
            f"{prefix}Invalid credentials ({detail})" if detail else f"{prefix}Invalid credentials",
            remediation_hint="Check the access token or API key in the integration settings",
        )
    if code == 403:
        return Forbidden(
            f"{prefix}Access denied ({detail})" if detail else f"{prefix}Access denied",
            remediation_hint="Grant the required scopes to the token",
        )
    if code == 404:
        return NotFound(f"{prefix}Not found ({detail})" if detail else f"{prefix}Not found")
    if code == 429:
        return RemoteUnavailable(f"{prefix}Rate limited ({detail})", remediation_hint="Retry later")
    if code >= 500:
        return RemoteUnavailable(f"{prefix}API Error ({code}): {detail}")
    return ValidationFailed(f"{prefix}API Error ({code}): {detail}", errors=[detail] if detail else [])
