"""Per-process server state.

``ServerContext`` owns the OAuth session and the calendar API client. Both are
created on first use and reused for the life of the process.
"""

from __future__ import annotations

import asyncio
import logging

from google_calendar_mcp.auth import GoogleOAuthSession
from google_calendar_mcp.client import CalendarApi, GoogleCalendarClient
from google_calendar_mcp.config import ServerConfig

logger = logging.getLogger(__name__)


class ServerContext:
    def __init__(
        self,
        config: ServerConfig,
        *,
        session: GoogleOAuthSession | None = None,
        api: CalendarApi | None = None,
    ) -> None:
        self.config = config
        self._session = session
        self._api = api
        self._authenticated = api is not None
        self._lock = asyncio.Lock()

    @property
    def default_calendar_id(self) -> str:
        return self.config.default_calendar_id

    @property
    def session(self) -> GoogleOAuthSession:
        if self._session is None:
            auth = self.config.auth
            self._session = GoogleOAuthSession(
                auth.client_secret_path,
                auth.token_path,
                timeout_seconds=auth.timeout_seconds,
                open_browser=auth.open_browser,
            )
        return self._session

    async def get_api(self) -> CalendarApi:
        """Return the calendar client, authenticating on the first call."""
        async with self._lock:
            if not self._authenticated:
                await self.session.ensure_authenticated()
                self._authenticated = True
            if self._api is None:
                self._api = GoogleCalendarClient(
                    self.session, timeout=self.config.request_timeout_seconds
                )
                logger.info("Google Calendar client initialized")
            return self._api

    async def aclose(self) -> None:
        if self._api is not None:
            await self._api.aclose()
        if self._session is not None:
            await self._session.aclose()
