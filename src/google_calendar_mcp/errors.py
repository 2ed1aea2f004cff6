"""Error taxonomy and structured error payloads for calendar tools.

Every tool failure is reported to the MCP caller as a dict rather than a raised
exception. The kinds are:

- ``invalid_argument``: the locator/scope contract was violated.
- ``not_recurring``: a series operation was requested on a one-off event.
- ``remote_failure``: Google Calendar rejected or could not service a call.
- ``auth_failure``: client secrets or the OAuth token could not be used.
"""

from __future__ import annotations

import re
from typing import Any

import httpx

# Substring -> human-readable hint, checked in order against the lowercased message.
ERROR_HINTS: dict[str, str] = {
    "not found": "The calendar or event could not be found. Check the calendar_id and event_id.",
    "unauthorized": "Authentication failed. The stored token may need to be re-authorized.",
    "forbidden": "The authorized account does not have access to this calendar or event.",
    "invalid": "Google Calendar rejected one of the request parameters.",
    "quota": "The Google Calendar API quota is exhausted. Wait before trying again.",
    "rate limit": "Too many requests were sent. Wait before trying again.",
}


class CalendarError(RuntimeError):
    """Base error for every failure surfaced by calendar tools."""

    kind = "calendar_error"


class InvalidArgumentError(CalendarError):
    """Raised when a locator, scope or argument combination is unusable."""

    kind = "invalid_argument"


class NotRecurringError(CalendarError):
    """Raised when a series-only operation targets an event without recurrence rules."""

    kind = "not_recurring"

    def __init__(self, event_id: str) -> None:
        self.event_id = event_id
        super().__init__(f"Event '{event_id}' is not a recurring event")


class RemoteFailureError(CalendarError):
    """Raised when a Google Calendar API call fails.

    ``operation`` names the call that produced the failure (for example
    ``events.get`` or, inside the series split, ``fetch`` / ``truncate-patch`` /
    ``insert``). ``status_code`` is ``None`` for transport errors.
    """

    kind = "remote_failure"

    def __init__(
        self,
        *,
        operation: str,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.operation = operation
        self.status_code = status_code
        self.message = message
        self.details = details or {}
        if status_code is None:
            text = f"Google Calendar {operation} failed: {message}"
        else:
            text = f"Google Calendar {operation} failed ({status_code}): {message}"
        super().__init__(text)

    def retagged(self, operation: str, **details: Any) -> RemoteFailureError:
        """Return a copy tagged with *operation* and extra *details*."""
        return RemoteFailureError(
            operation=operation,
            message=self.message,
            status_code=self.status_code,
            details={**self.details, **details},
        )


class CalendarAuthError(CalendarError):
    """Base error for credential and token problems."""

    kind = "auth_failure"


class CalendarCredentialError(CalendarAuthError):
    """Raised when the client secrets file is missing or malformed."""


class CalendarTokenError(CalendarAuthError):
    """Raised when a token exchange or refresh fails."""


class AuthorizationTimeoutError(CalendarAuthError):
    """Raised when the browser authorization callback never arrives."""


def safe_google_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:200]
        if isinstance(error_payload, str) and error_payload.strip():
            description = payload.get("error_description")
            if isinstance(description, str) and description.strip():
                return " ".join(f"{error_payload}: {description}".split())[:200]
            return " ".join(error_payload.split())[:200]

    raw_text = response.text.strip()
    if raw_text:
        return " ".join(raw_text.split())[:200]
    return response.reason_phrase or "Request failed without an error payload"


def redact_credential_values(message: str) -> str:
    """Redact token and secret values that leaked into an error message."""
    redacted = message
    # key=value style pairs
    redacted = re.sub(
        r"(?i)\b(client_secret|refresh_token|access_token|code)\s*=\s*([^\s,;&]+)",
        r"\1=[REDACTED]",
        redacted,
    )
    # JSON/Python dict style quoted values
    redacted = re.sub(
        r"""(?i)(['"]?(?:client_secret|refresh_token|access_token)['"]?\s*:\s*)(['"]).*?\2""",
        r'\1"[REDACTED]"',
        redacted,
    )
    # Authorization headers
    redacted = re.sub(r"(?i)\bBearer\s+[A-Za-z0-9._\-]+", "Bearer [REDACTED]", redacted)
    return redacted


def failure_hint(message: str) -> str | None:
    lowered = message.lower()
    for pattern, hint in ERROR_HINTS.items():
        if pattern in lowered:
            return hint
    return None


def build_error_payload(exc: Exception, *, calendar_id: str | None = None) -> dict[str, Any]:
    """Build the structured error dict returned by a failed tool call.

    The message is redacted, whitespace-normalized and truncated to 300 chars.
    """
    sanitized = " ".join(redact_credential_values(str(exc)).split())[:300]
    payload: dict[str, Any] = {
        "status": "error",
        "error_type": getattr(exc, "kind", "invalid_argument"),
        "error": sanitized,
    }
    if calendar_id is not None:
        payload["calendar_id"] = calendar_id

    hint = failure_hint(sanitized) if isinstance(exc, RemoteFailureError) else None
    if hint is not None:
        payload["hint"] = hint

    if isinstance(exc, RemoteFailureError):
        payload["operation"] = exc.operation
        if exc.status_code is not None:
            payload["status_code"] = exc.status_code
        payload.update(exc.details)
    return payload
