"""Google Calendar v3 REST client.

``CalendarApi`` is the surface the tools and the recurring-edit resolver depend
on; ``GoogleCalendarClient`` implements it over httpx with bearer tokens from an
``AccessTokenSource`` (the OAuth session). Failed calls raise
``RemoteFailureError`` tagged with the API method name. No retries are made.
"""

from __future__ import annotations

import abc
import logging
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from google_calendar_mcp.errors import RemoteFailureError, safe_google_error_message
from google_calendar_mcp.recurrence import EventRef

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"


class AccessTokenSource(Protocol):
    async def get_access_token(self) -> str: ...


def _event_path(calendar_id: str, event_id: EventRef | str | None = None) -> str:
    path = f"/calendars/{quote(calendar_id, safe='')}/events"
    if event_id is None:
        return path
    return f"{path}/{quote(str(event_id), safe='')}"


def _send_updates_params(send_updates: str | None) -> dict[str, Any] | None:
    if send_updates is None:
        return None
    normalized = str(send_updates).strip()
    return {"sendUpdates": normalized} if normalized else None


class CalendarApi(abc.ABC):
    """Calendar operations used by the MCP tools."""

    @abc.abstractmethod
    async def list_calendars(self) -> dict[str, Any]: ...

    @abc.abstractmethod
    async def get_calendar(self, calendar_id: str) -> dict[str, Any]: ...

    @abc.abstractmethod
    async def list_events(self, calendar_id: str, params: dict[str, Any]) -> dict[str, Any]: ...

    @abc.abstractmethod
    async def get_event(self, calendar_id: str, event_id: EventRef | str) -> dict[str, Any]: ...

    @abc.abstractmethod
    async def insert_event(
        self,
        calendar_id: str,
        body: dict[str, Any],
        *,
        send_updates: str | None = None,
    ) -> dict[str, Any]: ...

    @abc.abstractmethod
    async def patch_event(
        self,
        calendar_id: str,
        event_id: EventRef | str,
        body: dict[str, Any],
        *,
        send_updates: str | None = None,
    ) -> dict[str, Any]: ...

    @abc.abstractmethod
    async def delete_event(
        self,
        calendar_id: str,
        event_id: EventRef | str,
        *,
        send_updates: str | None = None,
    ) -> None: ...

    @abc.abstractmethod
    async def query_freebusy(self, body: dict[str, Any]) -> dict[str, Any]: ...

    @abc.abstractmethod
    async def get_colors(self) -> dict[str, Any]: ...

    async def aclose(self) -> None:
        """Release client resources."""


class GoogleCalendarClient(CalendarApi):
    """Authenticated Google Calendar client backed by ``httpx.AsyncClient``."""

    def __init__(
        self,
        tokens: AccessTokenSource,
        http_client: httpx.AsyncClient | None = None,
        *,
        base_url: str = GOOGLE_CALENDAR_API_BASE_URL,
        timeout: float = 30.0,
    ) -> None:
        self._tokens = tokens
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self._base_url = base_url.rstrip("/")

    async def _request_google_json(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        normalized_path = path if path.startswith("/") else f"/{path}"
        url = f"{self._base_url}{normalized_path}"
        access_token = await self._tokens.get_access_token()

        logger.debug("Google Calendar %s: %s %s", operation, method, normalized_path)
        try:
            response = await self._http_client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            message = str(exc) or type(exc).__name__
            raise RemoteFailureError(operation=operation, message=message) from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise RemoteFailureError(
                operation=operation,
                status_code=response.status_code,
                message=safe_google_error_message(response),
            )

        if response.status_code == 204 or not response.content:
            return {}

        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteFailureError(
                operation=operation,
                status_code=response.status_code,
                message="Google Calendar API returned invalid JSON for a successful response",
            ) from exc

        if not isinstance(payload, dict):
            raise RemoteFailureError(
                operation=operation,
                status_code=response.status_code,
                message="Google Calendar API returned an unexpected JSON payload shape",
            )
        return payload

    async def list_calendars(self) -> dict[str, Any]:
        return await self._request_google_json(
            "GET", "/users/me/calendarList", operation="calendarList.list"
        )

    async def get_calendar(self, calendar_id: str) -> dict[str, Any]:
        return await self._request_google_json(
            "GET",
            f"/calendars/{quote(calendar_id, safe='')}",
            operation="calendars.get",
        )

    async def list_events(self, calendar_id: str, params: dict[str, Any]) -> dict[str, Any]:
        return await self._request_google_json(
            "GET",
            _event_path(calendar_id),
            operation="events.list",
            params={key: value for key, value in params.items() if value is not None},
        )

    async def get_event(self, calendar_id: str, event_id: EventRef | str) -> dict[str, Any]:
        return await self._request_google_json(
            "GET", _event_path(calendar_id, event_id), operation="events.get"
        )

    async def insert_event(
        self,
        calendar_id: str,
        body: dict[str, Any],
        *,
        send_updates: str | None = None,
    ) -> dict[str, Any]:
        return await self._request_google_json(
            "POST",
            _event_path(calendar_id),
            operation="events.insert",
            params=_send_updates_params(send_updates),
            json_body=body,
        )

    async def patch_event(
        self,
        calendar_id: str,
        event_id: EventRef | str,
        body: dict[str, Any],
        *,
        send_updates: str | None = None,
    ) -> dict[str, Any]:
        return await self._request_google_json(
            "PATCH",
            _event_path(calendar_id, event_id),
            operation="events.patch",
            params=_send_updates_params(send_updates),
            json_body=body,
        )

    async def delete_event(
        self,
        calendar_id: str,
        event_id: EventRef | str,
        *,
        send_updates: str | None = None,
    ) -> None:
        await self._request_google_json(
            "DELETE",
            _event_path(calendar_id, event_id),
            operation="events.delete",
            params=_send_updates_params(send_updates),
        )

    async def query_freebusy(self, body: dict[str, Any]) -> dict[str, Any]:
        return await self._request_google_json(
            "POST", "/freeBusy", operation="freebusy.query", json_body=body
        )

    async def get_colors(self) -> dict[str, Any]:
        return await self._request_google_json("GET", "/colors", operation="colors.get")

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()


__all__ = [
    "GOOGLE_CALENDAR_API_BASE_URL",
    "AccessTokenSource",
    "CalendarApi",
    "GoogleCalendarClient",
]
