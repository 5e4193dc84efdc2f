"""
Session management for the username checker service.

This module owns the single authenticated identity the service presents to
the origin:
- Session wraps the cookie jar and derives expiry and validity from it
- SessionManager runs the login protocol (flow negotiation, CSRF token
  extraction, credential submission) when the session is not valid

Only one login runs at a time. Callers that find the session invalid while
a login is in flight wait for that login instead of starting their own.
Any login failure raises SessionFatalError; nothing in this module retries.
"""

import asyncio
import re
import time
from datetime import datetime, timezone
from http.cookiejar import Cookie
from typing import Callable, Optional

import httpx

from .audit_logger import AuditLogger
from .config import CredentialsConfig, OriginConfig, SessionConfig
from .enums import LoginErrorCode, LogLevel
from .exceptions import (
    CsrfMissingError,
    FlowIdMissingError,
    LoginRejectedError,
    SessionFatalError,
)


FLOW_ID_PATTERN = re.compile(
    r"flow=([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})",
    re.IGNORECASE,
)

BODY_SNIPPET_LENGTH = 200


def domain_matches(cookie_domain: str, host: str) -> bool:
    """Return True if a cookie set for cookie_domain is sent to host."""
    domain = cookie_domain.lstrip(".").lower()
    host = host.lower()
    return host == domain or host.endswith("." + domain)


class Session:
    """
    The authenticated identity, represented by its cookie jar.

    Validity is derived, never stored: a session is valid when the session
    cookie exists and does not expire within the safety margin.
    """

    def __init__(
        self,
        cookies: httpx.Cookies,
        session_cookie_name: str,
        safety_margin_seconds: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cookies = cookies
        self._session_cookie_name = session_cookie_name
        self._safety_margin = safety_margin_seconds
        self._clock = clock

    @property
    def cookies(self) -> httpx.Cookies:
        return self._cookies

    def _session_cookies(self) -> list[Cookie]:
        return [c for c in self._cookies.jar if c.name == self._session_cookie_name]

    def has_session_cookie(self) -> bool:
        return bool(self._session_cookies())

    @property
    def expiry(self) -> Optional[float]:
        """Epoch seconds at which the session cookie expires, None if unknown."""
        expiries = [c.expires for c in self._session_cookies() if c.expires is not None]
        if not expiries:
            return None
        return float(max(expiries))

    def is_valid(self) -> bool:
        """Snapshot check against the cookie jar; no network access."""
        if not self.has_session_cookie():
            return False
        expiry = self.expiry
        if expiry is None:
            # Cookie without an expiry lives as long as this process does.
            return True
        return self._clock() < expiry - self._safety_margin

    def find_cookie(self, name_prefix: str, host: str) -> Optional[Cookie]:
        """Find a cookie whose name starts with name_prefix and that is sent to host."""
        for cookie in self._cookies.jar:
            if cookie.name.startswith(name_prefix) and domain_matches(cookie.domain, host):
                return cookie
        return None

    def clear_session_cookie(self) -> None:
        """Forget the session cookie so the next validity check fails."""
        for cookie in self._session_cookies():
            self._cookies.jar.clear(cookie.domain, cookie.path, cookie.name)


class SessionManager:
    """
    Keeps exactly one valid authenticated session with the origin.

    The manager owns the HTTP client whose cookie jar is the session, so the
    origin client must send its requests through `client`.
    """

    def __init__(
        self,
        credentials: CredentialsConfig,
        origin: Optional[OriginConfig] = None,
        config: Optional[SessionConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Callable[[], float]] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the session manager.

        Args:
            credentials: Account identifier and password
            origin: Origin endpoints and cookie names
            config: Safety margin configuration
            transport: Optional httpx transport (tests use httpx.MockTransport)
            clock: Returns the current epoch time in seconds
            logger: Optional audit logger
        """
        self._credentials = credentials
        self._origin = origin or OriginConfig()
        self._config = config or SessionConfig()
        self._clock = clock or time.time
        self._logger = logger

        self._client = httpx.AsyncClient(
            transport=transport,
            timeout=httpx.Timeout(self._origin.timeout_seconds),
            follow_redirects=False,
        )
        self._session = Session(
            cookies=self._client.cookies,
            session_cookie_name=self._origin.session_cookie_name,
            safety_margin_seconds=self._config.safety_margin_seconds,
            clock=self._clock,
        )
        self._login_task: Optional[asyncio.Task] = None
        self._login_count = 0
        self._generation = 0

    async def __aenter__(self) -> "SessionManager":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def client(self) -> httpx.AsyncClient:
        """HTTP client carrying the session cookies."""
        return self._client

    @property
    def session(self) -> Session:
        return self._session

    @property
    def login_count(self) -> int:
        """Number of login attempts started by this manager."""
        return self._login_count

    @property
    def generation(self) -> int:
        """Number of completed logins; identifies the session cookie in the jar."""
        return self._generation

    @property
    def login_in_progress(self) -> bool:
        return self._login_task is not None

    def is_valid(self) -> bool:
        return self._session.is_valid()

    def get_expiry(self) -> Optional[datetime]:
        """Session cookie expiry as an aware UTC datetime, for status reporting."""
        expiry = self._session.expiry
        if expiry is None:
            return None
        return datetime.fromtimestamp(expiry, tz=timezone.utc)

    def invalidate(self, generation: Optional[int] = None) -> bool:
        """
        Drop the session cookie after the origin rejected it.

        Args:
            generation: Generation the rejected request was sent with. When
                a newer login has completed since, or one is running, the
                rejection is stale and the current session is kept.

        Returns:
            True if the session cookie was dropped
        """
        if self._login_task is not None:
            return False
        if generation is not None and generation != self._generation:
            self._log(
                LogLevel.DEBUG,
                "Ignoring rejection of a replaced session",
                {"rejected_generation": generation, "generation": self._generation},
            )
            return False
        self._session.clear_session_cookie()
        self._log(LogLevel.WARN, "Session invalidated", {"generation": self._generation})
        return True

    async def ensure_logged_in(self) -> None:
        """
        Make sure the session is valid, logging in if it is not.

        Concurrent callers share one in-flight login and all observe its
        outcome.

        Raises:
            SessionFatalError: If the login protocol fails at any step
        """
        if self._login_task is None and self._session.is_valid():
            return

        if self._login_task is None:
            self._log(LogLevel.INFO, "Session expired, logging in...", {})
            self._login_count += 1
            task = asyncio.ensure_future(self._login())
            task.add_done_callback(self._forget_login_task)
            self._login_task = task

        # A cancelled caller must not cancel the login the others wait for.
        await asyncio.shield(self._login_task)

    def _forget_login_task(self, task: asyncio.Task) -> None:
        if self._login_task is task:
            self._login_task = None
        # Every waiter may have been cancelled; the failure is already logged.
        if not task.cancelled():
            task.exception()

    async def _login(self) -> None:
        try:
            await self._run_login_protocol()
            self._generation += 1
        except SessionFatalError as e:
            if self._logger:
                self._logger.log_error("SessionManager", "Login failed", error=e, additional_data=e.details)
            raise
        except httpx.TimeoutException as e:
            error = SessionFatalError(
                code=LoginErrorCode.TIMEOUT.value,
                message=f"Login request timed out after {self._origin.timeout_seconds}s",
            )
            if self._logger:
                self._logger.log_error("SessionManager", "Login failed", error=error)
            raise error from e
        except httpx.HTTPError as e:
            error = SessionFatalError(
                code=LoginErrorCode.NETWORK_ERROR.value,
                message=f"Login request failed: {e}",
            )
            if self._logger:
                self._logger.log_error("SessionManager", "Login failed", error=error)
            raise error from e

    async def _run_login_protocol(self) -> None:
        origin = self._origin

        # Step 1: start a browser login flow; the redirect names the flow
        self._log(LogLevel.INFO, "Initializing login flow...", {})
        init_response = await self._client.get(origin.login_init_url, follow_redirects=False)
        location = init_response.headers.get("location", "")
        match = FLOW_ID_PATTERN.search(location)
        if not match:
            raise FlowIdMissingError(
                code=LoginErrorCode.FLOW_ID_MISSING.value,
                message="Could not extract flow ID",
                details={"status_code": init_response.status_code},
            )
        flow_id = match.group(1)
        self._log(LogLevel.INFO, "Flow ID obtained", {"flow_id": flow_id})

        # Step 2: the flow request left a CSRF cookie for the backend host
        backend_host = init_response.request.url.host
        csrf_cookie = self._session.find_cookie(origin.csrf_cookie_prefix, backend_host)
        if csrf_cookie is None:
            raise CsrfMissingError(
                code=LoginErrorCode.CSRF_MISSING.value,
                message="Could not find CSRF token cookie",
                details={"host": backend_host},
            )

        # Step 3: submit the credentials
        self._log(LogLevel.INFO, "Submitting login...", {})
        login_response = await self._client.post(
            origin.login_submit_url,
            params={"flow": flow_id},
            data={
                "csrf_token": csrf_cookie.value,
                "identifier": self._credentials.identifier,
                "password": self._credentials.password,
                "method": "password",
            },
            follow_redirects=False,
        )

        # Step 4: only a 303 to the settings page means success
        redirect_location = login_response.headers.get("location", "")
        if login_response.status_code != 303 or "/settings" not in redirect_location:
            raise LoginRejectedError(
                status_code=login_response.status_code,
                body_snippet=login_response.text[:BODY_SNIPPET_LENGTH],
            )

        # Step 5: following the redirect finalizes the session cookie
        await self._client.get(
            login_response.url.join(redirect_location),
            follow_redirects=True,
        )

        if not self._session.has_session_cookie():
            raise SessionFatalError(
                code=LoginErrorCode.SESSION_COOKIE_MISSING.value,
                message="Login finished without a session cookie",
                details={"cookie_name": origin.session_cookie_name},
            )

        expiry = self.get_expiry()
        if self._session.is_valid():
            self._log(
                LogLevel.INFO,
                "Login successful!",
                {"expires_at": expiry.isoformat() if expiry else None},
            )
        else:
            self._log(
                LogLevel.WARN,
                "Login finished with a session cookie inside the safety margin",
                {"expires_at": expiry.isoformat() if expiry else None},
            )

    async def probe(self) -> bool:
        """
        Ask the origin whether the current cookies are accepted.

        This costs one origin request and is meant for diagnostics only;
        request handling relies on is_valid().
        """
        try:
            response = await self._client.get(
                self._origin.availability_url,
                params={"username": self._origin.probe_username},
                follow_redirects=False,
            )
        except httpx.HTTPError as e:
            if self._logger:
                self._logger.log_error("SessionManager", "Session probe failed", error=e)
            return False
        return response.status_code in (200, 400)

    async def close(self) -> None:
        """Cancel a pending login, wait for it to unwind and close the HTTP client."""
        task = self._login_task
        if task is not None:
            if not task.done():
                task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self._client.aclose()

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, "SessionManager", message, data)
