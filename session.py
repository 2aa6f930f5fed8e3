"""Remote browser sessions: creation, CDP attach, live view and release.

A ``Session`` is released exactly once. Either the turn's own cleanup or a
timeout watchdog may win the race; the loser becomes a no-op.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol
from urllib.parse import urlencode

import httpx

from bots._cdp_connect import connect_remote, shutdown
from errors import ProviderError, StageError

logger = logging.getLogger(__name__)

BROWSERBASE_API = "https://api.browserbase.com"
BROWSERBASE_CONNECT = "wss://connect.browserbase.com"
SESSION_PAGE_URL = "https://www.browserbase.com/sessions/{session_id}"

DESKTOP_FINGERPRINT = {
    "devices": ["desktop"],
    "locales": ["en-US"],
    "operatingSystems": ["windows"],
}


class BrowserProvider(Protocol):
    def create(self, keep_alive: bool = False) -> Dict[str, Any]: ...

    def connect_url(self, session_id: str) -> str: ...

    def debug_info(self, session_id: str) -> Dict[str, Any]: ...

    def release(self, session_id: str) -> None: ...


@dataclass
class Session:
    session_id: str
    connect_url: str
    live_view_url: Optional[str] = None
    page: Any = None
    playwright: Any = None
    browser: Any = None
    context: Any = None
    keep_alive: bool = False
    released: bool = False
    disconnected: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def mark_released(self) -> bool:
        """Flip the release guard; True only for the first caller."""
        with self._lock:
            if self.released:
                return False
            self.released = True
            return True

    def mark_disconnected(self) -> bool:
        with self._lock:
            if self.disconnected:
                return False
            self.disconnected = True
            return True


def _usable_page(page: Dict[str, Any]) -> bool:
    url = page.get("url") or ""
    return bool(url) and url != "about:blank" and not url.startswith("chrome-extension://")


def resolve_live_view_url(session_id: str, debug: Optional[Dict[str, Any]]) -> str:
    """Pick the URL a human should open to watch the session.

    Preference: the fullscreen debugger of the active non-blank page (search
    pages and titled pages first), then the session-level debugger URL, then
    the provider's session page.
    """
    fallback = SESSION_PAGE_URL.format(session_id=session_id)
    if not debug:
        return fallback

    pages: List[Dict[str, Any]] = [p for p in debug.get("pages") or [] if isinstance(p, dict)]
    preferred = [
        p
        for p in pages
        if _usable_page(p)
        and (
            "google.com" in p["url"]
            or "duckduckgo.com" in p["url"]
            or (p.get("title") or "about:blank") != "about:blank"
        )
    ]
    candidates = preferred or [p for p in pages if _usable_page(p)]
    if candidates and candidates[0].get("debuggerFullscreenUrl"):
        return candidates[0]["debuggerFullscreenUrl"]
    return debug.get("debuggerFullscreenUrl") or fallback


class BrowserbaseProvider:
    """Browserbase REST API client (sessions, debug info, release)."""

    def __init__(
        self,
        api_key: str,
        project_id: str,
        *,
        base_url: str = BROWSERBASE_API,
        client: Optional[httpx.Client] = None,
        timeout: float = 30.0,
    ):
        self.api_key = api_key
        self.project_id = project_id
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def _headers(self) -> Dict[str, str]:
        return {"X-BB-API-Key": self.api_key, "Content-Type": "application/json"}

    def _error_for(self, response: httpx.Response, action: str) -> ProviderError:
        status = response.status_code
        if status == 401:
            return ProviderError(
                "Browserbase authentication failed",
                status=status,
                details=(
                    "Invalid API key. Check BROWSERBASE_API_KEY, generate a new key at "
                    "https://www.browserbase.com/dashboard and verify the account is active. "
                    f"Current API key starts with: {self.api_key[:10]}..."
                ),
            )
        if status == 403:
            return ProviderError(
                "Browserbase access forbidden",
                status=status,
                details="Please check your BROWSERBASE_PROJECT_ID and API key permissions",
            )
        if status == 404:
            if action == "create session":
                return ProviderError(
                    "Browserbase project not found",
                    status=status,
                    details="Please check your BROWSERBASE_PROJECT_ID is correct",
                )
            return ProviderError("Browserbase session not found", status=status, details=response.text)
        return ProviderError(
            f"Browserbase {action} failed with status {status}", status=status, details=response.text
        )

    def _request(self, method: str, path: str, action: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = self._client.request(method, path, headers=self._headers(), json=payload)
        except httpx.HTTPError as exc:
            raise ProviderError(f"Browserbase {action} failed: {exc}", details=str(exc)) from exc
        if response.status_code >= 400:
            raise self._error_for(response, action)
        if not response.content:
            return {}
        return response.json()

    def create(self, keep_alive: bool = False) -> Dict[str, Any]:
        payload = {
            "projectId": self.project_id,
            "keepAlive": keep_alive,
            "browserSettings": {"fingerprint": DESKTOP_FINGERPRINT},
        }
        data = self._request("POST", "/v1/sessions", "create session", payload)
        if not data.get("id"):
            raise ProviderError("Browserbase returned a session without an id", details=str(data))
        logger.info("📋 Created Browserbase session: %s", data["id"])
        return data

    def connect_url(self, session_id: str) -> str:
        query = urlencode({"apiKey": self.api_key, "sessionId": session_id})
        return f"{BROWSERBASE_CONNECT}?{query}"

    def debug_info(self, session_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/v1/sessions/{session_id}/debug", "debug session")

    def release(self, session_id: str) -> None:
        self._request(
            "POST",
            f"/v1/sessions/{session_id}",
            "release session",
            {"projectId": self.project_id, "status": "REQUEST_RELEASE"},
        )
        logger.info("🔒 Released Browserbase session: %s", session_id)


class SessionManager:
    """Acquires sessions from a provider and guarantees their release."""

    def __init__(
        self,
        provider: BrowserProvider,
        *,
        connector: Callable[..., Any] = connect_remote,
        disconnector: Callable[..., None] = shutdown,
    ):
        self.provider = provider
        self._connect = connector
        self._disconnect = disconnector

    def acquire(self, session_id: Optional[str] = None, keep_alive: bool = False) -> Session:
        """Create a new session, or reattach to ``session_id`` when given."""
        reuse = bool(session_id)
        if reuse:
            logger.info("🔗 Reconnecting to session %s", session_id)
            connect_url = self.provider.connect_url(session_id)
        else:
            created = self.provider.create(keep_alive=keep_alive)
            session_id = created["id"]
            connect_url = created.get("connectUrl") or self.provider.connect_url(session_id)

        session = Session(session_id=session_id, connect_url=connect_url, keep_alive=keep_alive)
        try:
            playwright, browser, context, page = self._connect(connect_url, reuse_existing=reuse)
        except Exception as exc:
            logger.error("❌ Could not attach to session %s: %s", session_id, exc)
            if not reuse:
                self.force_release(session)
            raise StageError("execute", f"Failed to connect to browser session: {exc}") from exc

        session.playwright, session.browser, session.context, session.page = playwright, browser, context, page
        logger.info("✅ Connected to session %s", session_id)
        return session

    def live_view(self, session: Session) -> str:
        try:
            debug = self.provider.debug_info(session.session_id)
        except Exception as exc:
            logger.warning("⚠️ Failed to get live view URL: %s", exc)
            debug = None
        session.live_view_url = resolve_live_view_url(session.session_id, debug)
        return session.live_view_url

    def force_release(self, session: Session) -> bool:
        """Ask the provider to end the session; safe to call from any thread.

        Returns True when this call performed the release.
        """
        if not session.mark_released():
            return False
        try:
            self.provider.release(session.session_id)
        except Exception as exc:
            logger.warning("⚠️ Failed to release session %s: %s", session.session_id, exc)
        return True

    def release(self, session: Session, keep_alive: bool = False) -> None:
        """Drop the local connection and, unless kept alive, the remote session.

        Must run on the thread that attached Playwright.
        """
        try:
            if not keep_alive:
                self.force_release(session)
        finally:
            if session.mark_disconnected():
                if keep_alive:
                    # closing the context would end the remote session
                    self._disconnect(session.playwright, None, None)
                else:
                    self._disconnect(session.playwright, session.browser, session.context)
