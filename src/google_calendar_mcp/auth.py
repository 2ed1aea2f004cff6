"""Google OAuth for the calendar server.

Client secrets come from Google's downloaded JSON (``installed`` or ``web``
shape). Tokens are persisted to a local JSON file with ``expiry_date`` in epoch
milliseconds. ``GoogleOAuthSession`` hands out access tokens: a stored token is
reused while fresh, refreshed with its refresh token when stale, and, when no
usable token exists, the browser consent flow runs against a short-lived local
callback listener.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import secrets
import socket
import time
import webbrowser
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlencode, urlsplit

import httpx
import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse
from starlette.routing import Route

from google_calendar_mcp.errors import (
    AuthorizationTimeoutError,
    CalendarAuthError,
    CalendarCredentialError,
    CalendarTokenError,
    safe_google_error_message,
)

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar"
DEFAULT_REDIRECT_URI = "http://localhost:8080/callback"
AUTHORIZATION_TIMEOUT_SECONDS = 300.0

# Tokens are treated as expired this long before Google's stated expiry.
_REFRESH_MARGIN_MS = 60_000

_KNOWN_PROVIDER_ERRORS: dict[str, str] = {
    "access_denied": "The user denied access. OAuth flow cancelled.",
    "invalid_request": "The OAuth request was malformed. Please restart the flow.",
    "unauthorized_client": "This application is not authorized to use Google OAuth. "
    "Check your OAuth app configuration.",
    "invalid_scope": "The calendar OAuth scope is invalid or not permitted.",
    "server_error": "Google encountered an internal error. Please try again.",
    "temporarily_unavailable": "Google OAuth is temporarily unavailable. Please try again later.",
}

_SUCCESS_PAGE = """<!doctype html>
<html><head><title>Authorization complete</title></head>
<body><h1>Authorization complete</h1>
<p>Google Calendar access was granted. You can close this window.</p></body></html>
"""

_FAILURE_PAGE = """<!doctype html>
<html><head><title>Authorization failed</title></head>
<body><h1>Authorization failed</h1><p>{message}</p></body></html>
"""


def _sanitize_provider_error(error: str) -> str:
    return _KNOWN_PROVIDER_ERRORS.get(
        error,
        "The OAuth authorization failed. Please restart the flow.",
    )


def _now_ms() -> int:
    return int(time.time() * 1000)


def _extract_google_credential_value(payload: dict[str, Any], key: str) -> Any:
    if key in payload:
        return payload[key]

    for nested_key in ("installed", "web"):
        nested = payload.get(nested_key)
        if isinstance(nested, dict) and key in nested:
            return nested[key]
    return None


@dataclass(frozen=True)
class OAuthClientSecrets:
    client_id: str
    client_secret: str
    redirect_uri: str = DEFAULT_REDIRECT_URI

    @classmethod
    def from_file(cls, path: str | Path) -> OAuthClientSecrets:
        secrets_path = Path(path).expanduser()
        try:
            raw = secrets_path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise CalendarCredentialError(f"Client secrets file not found: {secrets_path}") from exc
        except OSError as exc:
            raise CalendarCredentialError(
                f"Client secrets file could not be read: {secrets_path}: {exc}"
            ) from exc

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CalendarCredentialError(
                f"Client secrets file must contain valid JSON: {secrets_path}"
            ) from exc
        if not isinstance(payload, dict):
            raise CalendarCredentialError("Client secrets JSON must be an object")

        missing: list[str] = []
        values: dict[str, str] = {}
        for key in ("client_id", "client_secret"):
            value = _extract_google_credential_value(payload, key)
            if not isinstance(value, str) or not value.strip():
                missing.append(key)
            else:
                values[key] = value.strip()
        if missing:
            raise CalendarCredentialError(
                "Client secrets JSON is missing required field(s): " + ", ".join(missing)
            )

        redirect_uris = _extract_google_credential_value(payload, "redirect_uris")
        redirect_uri = DEFAULT_REDIRECT_URI
        if isinstance(redirect_uris, list) and redirect_uris:
            first = redirect_uris[0]
            if isinstance(first, str) and first.strip():
                redirect_uri = first.strip()

        return cls(
            client_id=values["client_id"],
            client_secret=values["client_secret"],
            redirect_uri=redirect_uri,
        )

    @property
    def callback_host(self) -> str:
        return urlsplit(self.redirect_uri).hostname or "localhost"

    @property
    def callback_port(self) -> int:
        return urlsplit(self.redirect_uri).port or 8080

    @property
    def callback_path(self) -> str:
        path = urlsplit(self.redirect_uri).path
        return path if path and path != "/" else "/callback"


@dataclass(frozen=True)
class StoredToken:
    access_token: str
    refresh_token: str | None = None
    expiry_date: int | None = None
    token_type: str = "Bearer"
    scope: str | None = None

    def is_fresh(self, now_ms: int | None = None) -> bool:
        if not self.access_token or self.expiry_date is None:
            return False
        current = _now_ms() if now_ms is None else now_ms
        return current < self.expiry_date - _REFRESH_MARGIN_MS

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> StoredToken:
        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token.strip():
            raise CalendarTokenError("Token payload is missing a non-empty access_token")

        refresh_token = payload.get("refresh_token")
        expiry_date = payload.get("expiry_date")
        if isinstance(expiry_date, bool) or not isinstance(expiry_date, int | float):
            expiry_date = None

        return cls(
            access_token=access_token.strip(),
            refresh_token=(
                refresh_token if isinstance(refresh_token, str) and refresh_token else None
            ),
            expiry_date=int(expiry_date) if expiry_date is not None else None,
            token_type=str(payload.get("token_type") or "Bearer"),
            scope=payload.get("scope") if isinstance(payload.get("scope"), str) else None,
        )

    @classmethod
    def from_token_response(
        cls,
        payload: dict[str, Any],
        previous: StoredToken | None = None,
        now_ms: int | None = None,
    ) -> StoredToken:
        """Build a token from a Google token endpoint response.

        Refresh responses usually omit ``refresh_token``; the previous one is kept.
        """
        expires_in = payload.get("expires_in")
        if (
            isinstance(expires_in, bool)
            or not isinstance(expires_in, int | float)
            or expires_in <= 0
        ):
            expires_in = 3600
        current = _now_ms() if now_ms is None else now_ms

        merged = dict(payload)
        merged["expiry_date"] = current + int(expires_in) * 1000
        if not merged.get("refresh_token") and previous is not None:
            merged["refresh_token"] = previous.refresh_token
        if not merged.get("scope") and previous is not None:
            merged["scope"] = previous.scope
        return cls.from_payload(merged)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "access_token": self.access_token,
            "token_type": self.token_type,
        }
        if self.refresh_token is not None:
            payload["refresh_token"] = self.refresh_token
        if self.expiry_date is not None:
            payload["expiry_date"] = self.expiry_date
        if self.scope is not None:
            payload["scope"] = self.scope
        return payload


class TokenStore:
    """JSON token file readable only by the owning user."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def load(self) -> StoredToken | None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise CalendarTokenError(f"Token file could not be read: {self.path}: {exc}") from exc

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise CalendarTokenError(f"Token file must contain valid JSON: {self.path}") from exc
        if not isinstance(payload, dict):
            raise CalendarTokenError(f"Token file must contain a JSON object: {self.path}")
        return StoredToken.from_payload(payload)

    def save(self, token: StoredToken) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f".{self.path.name}.tmp")
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(token.to_payload(), handle, indent=2)
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.path)
        logger.info("Stored OAuth token at %s", self.path)


def build_authorization_url(client: OAuthClientSecrets, state: str) -> str:
    params = {
        "client_id": client.client_id,
        "redirect_uri": client.redirect_uri,
        "response_type": "code",
        "scope": CALENDAR_SCOPE,
        "access_type": "offline",
        "prompt": "consent",  # Force refresh token to be returned
        "state": state,
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


async def _post_token_request(
    http_client: httpx.AsyncClient, data: dict[str, str], action: str
) -> dict[str, Any]:
    try:
        response = await http_client.post(
            GOOGLE_TOKEN_URL,
            data=data,
            headers={"Accept": "application/json"},
        )
    except httpx.HTTPError as exc:
        raise CalendarTokenError(f"Google OAuth {action} request failed: {exc}") from exc

    if response.status_code < 200 or response.status_code >= 300:
        raise CalendarTokenError(
            f"Google OAuth {action} failed ({response.status_code}): "
            f"{safe_google_error_message(response)}"
        )

    try:
        payload = response.json()
    except ValueError as exc:
        raise CalendarTokenError(f"Google OAuth {action} returned invalid JSON") from exc
    if not isinstance(payload, dict):
        raise CalendarTokenError(f"Google OAuth {action} returned an unexpected payload")
    return payload


async def exchange_code_for_tokens(
    http_client: httpx.AsyncClient, client: OAuthClientSecrets, code: str
) -> dict[str, Any]:
    return await _post_token_request(
        http_client,
        {
            "code": code,
            "client_id": client.client_id,
            "client_secret": client.client_secret,
            "redirect_uri": client.redirect_uri,
            "grant_type": "authorization_code",
        },
        "token exchange",
    )


async def refresh_access_token(
    http_client: httpx.AsyncClient, client: OAuthClientSecrets, refresh_token: str
) -> dict[str, Any]:
    return await _post_token_request(
        http_client,
        {
            "client_id": client.client_id,
            "client_secret": client.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        },
        "token refresh",
    )


def build_callback_app(
    callback_path: str, expected_state: str, outcome: asyncio.Future[str]
) -> Starlette:
    """Starlette app that resolves *outcome* with the authorization code.

    Any other path gets Starlette's default 404.
    """

    def _fail(message: str) -> HTMLResponse:
        if not outcome.done():
            outcome.set_exception(CalendarTokenError(message))
        return HTMLResponse(_FAILURE_PAGE.format(message=message), status_code=400)

    async def callback(request: Request) -> HTMLResponse:
        params = request.query_params
        error = params.get("error")
        if error:
            logger.warning("Google OAuth provider error: %s", error)
            return _fail(_sanitize_provider_error(error))

        code = params.get("code")
        if not code:
            return _fail("Authorization code is missing from the callback.")

        if params.get("state") != expected_state:
            logger.warning("OAuth callback received a mismatched state token")
            return _fail("State parameter is invalid. Please restart the authorization.")

        if not outcome.done():
            outcome.set_result(code)
        return HTMLResponse(_SUCCESS_PAGE)

    return Starlette(routes=[Route(callback_path, callback, methods=["GET"])])


def _bind_callback_socket(host: str, port: int) -> socket.socket:
    """Bind the callback address; a busy port raises ``CalendarAuthError``."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError as exc:
        sock.close()
        raise CalendarAuthError(
            f"OAuth callback port {host}:{port} is in use or unavailable: {exc}"
        ) from exc
    return sock


async def wait_for_authorization_code(
    client: OAuthClientSecrets,
    state: str,
    *,
    authorization_url: str,
    timeout: float = AUTHORIZATION_TIMEOUT_SECONDS,
    open_browser: bool = True,
) -> str:
    """Serve the redirect URI locally until Google calls back with a code.

    The listener is shut down on success, on a failed callback and on timeout.
    """
    loop = asyncio.get_running_loop()
    outcome: asyncio.Future[str] = loop.create_future()
    sock = _bind_callback_socket(client.callback_host, client.callback_port)
    app = build_callback_app(client.callback_path, state, outcome)

    config = uvicorn.Config(
        app,
        host=client.callback_host,
        port=client.callback_port,
        log_level="warning",
        timeout_graceful_shutdown=0,
    )
    server = uvicorn.Server(config)
    serve_task = asyncio.create_task(server.serve(sockets=[sock]))

    logger.warning("Authorize Google Calendar access by visiting: %s", authorization_url)
    if open_browser and not webbrowser.open(authorization_url):
        logger.info("No browser could be opened; use the URL above")

    try:
        done, _ = await asyncio.wait(
            {outcome, serve_task},
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
        if outcome in done:
            return outcome.result()
        if serve_task in done:
            raise CalendarAuthError(
                f"OAuth callback listener on {client.callback_host}:{client.callback_port} "
                "stopped before authorization completed"
            )
        raise AuthorizationTimeoutError(
            f"Timed out after {int(timeout)}s waiting for the OAuth callback"
        )
    finally:
        server.should_exit = True
        if not outcome.done():
            outcome.cancel()
        await serve_task
        sock.close()


class GoogleOAuthSession:
    """Access-token source backed by the token file and the consent flow."""

    def __init__(
        self,
        client_secret_path: str | Path,
        token_path: str | Path,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = AUTHORIZATION_TIMEOUT_SECONDS,
        open_browser: bool = True,
    ) -> None:
        self._client_secret_path = Path(client_secret_path).expanduser()
        self._store = TokenStore(token_path)
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=15.0)
        self._timeout_seconds = timeout_seconds
        self._open_browser = open_browser
        self._client: OAuthClientSecrets | None = None
        self._token: StoredToken | None = None
        self._lock = asyncio.Lock()

    @property
    def token_store(self) -> TokenStore:
        return self._store

    @property
    def client_secrets(self) -> OAuthClientSecrets:
        if self._client is None:
            self._client = OAuthClientSecrets.from_file(self._client_secret_path)
        return self._client

    async def get_access_token(self) -> str:
        if self._token is not None and self._token.is_fresh():
            return self._token.access_token

        async with self._lock:
            if self._token is None or not self._token.is_fresh():
                self._token = await self._obtain_token()
            return self._token.access_token

    async def ensure_authenticated(self) -> StoredToken:
        await self.get_access_token()
        assert self._token is not None
        return self._token

    async def authorize(self) -> StoredToken:
        """Run the browser consent flow unconditionally and persist the result."""
        async with self._lock:
            self._token = await self._authorize_interactively()
            return self._token

    async def _obtain_token(self) -> StoredToken:
        stored = self._token or self._store.load()
        if stored is not None and stored.is_fresh():
            return stored

        if stored is not None and stored.refresh_token:
            try:
                return await self._refresh(stored)
            except CalendarTokenError as exc:
                logger.warning("Stored token could not be refreshed, re-authorizing: %s", exc)

        return await self._authorize_interactively()

    async def _refresh(self, stored: StoredToken) -> StoredToken:
        assert stored.refresh_token is not None
        payload = await refresh_access_token(
            self._http_client, self.client_secrets, stored.refresh_token
        )
        token = StoredToken.from_token_response(payload, previous=stored)
        self._store.save(token)
        logger.info("Refreshed Google OAuth access token")
        return token

    async def _authorize_interactively(self) -> StoredToken:
        client = self.client_secrets
        state = secrets.token_urlsafe(32)
        code = await wait_for_authorization_code(
            client,
            state,
            authorization_url=build_authorization_url(client, state),
            timeout=self._timeout_seconds,
            open_browser=self._open_browser,
        )
        payload = await exchange_code_for_tokens(self._http_client, client, code)
        token = StoredToken.from_token_response(payload, previous=self._token)
        if token.refresh_token is None:
            logger.warning("Google did not return a refresh token; re-authorization will be needed")
        self._store.save(token)
        logger.info("Google OAuth authorization complete (scope=%s)", token.scope)
        return token

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()
