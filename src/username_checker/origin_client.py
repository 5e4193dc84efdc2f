"""
Origin client for the username checker service.

Sends the authenticated availability probe through the session manager's
HTTP client. The origin answers 200 for an available name and 400 for a
taken one; everything else is passed back untouched for the checker to
report.
"""

import time
from typing import Optional

import httpx

from .audit_logger import AuditLogger
from .config import OriginConfig
from .enums import LogLevel
from .models import OriginResponse
from .session import SessionManager


# Statuses meaning the origin no longer accepts the session cookies
SESSION_REJECTED_STATUSES = frozenset({401, 403})

# Reported when no HTTP status was received (timeout, connection failure)
NO_RESPONSE_STATUS = 0


class OriginClient:
    """Availability lookups against the origin API."""

    def __init__(
        self,
        session_manager: SessionManager,
        origin: Optional[OriginConfig] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._session_manager = session_manager
        self._origin = origin or OriginConfig()
        self._logger = logger

    async def query(self, username: str) -> OriginResponse:
        """
        Ask the origin whether a username is available.

        The username is sent exactly as given; the origin's own case rules
        apply. Redirects are not followed, so a bounce to a login page can
        never be mistaken for a verdict.

        Args:
            username: Username in its original casing

        Returns:
            OriginResponse; status 0 when the request did not complete
        """
        generation = self._session_manager.generation
        start_time = time.perf_counter()
        try:
            response = await self._session_manager.client.get(
                self._origin.availability_url,
                params={"username": username},
                follow_redirects=False,
            )
        except httpx.TimeoutException:
            return self._failed(
                username,
                f"Origin request timed out after {self._origin.timeout_seconds}s",
                start_time,
                generation,
            )
        except httpx.HTTPError as e:
            return self._failed(username, f"Origin request failed: {e}", start_time, generation)

        if self._logger:
            self._logger.log(
                LogLevel.DEBUG,
                "OriginClient",
                f"Origin answered {response.status_code} for {username}",
                {
                    "username": username,
                    "status_code": response.status_code,
                    "duration_ms": self._elapsed_ms(start_time),
                },
            )
        return OriginResponse(status_code=response.status_code, session_generation=generation)

    @staticmethod
    def is_session_rejected(response: OriginResponse) -> bool:
        return response.status_code in SESSION_REJECTED_STATUSES

    def _failed(
        self, username: str, message: str, start_time: float, generation: int
    ) -> OriginResponse:
        if self._logger:
            self._logger.log_error(
                "OriginClient",
                message,
                request_url=self._origin.availability_url,
                additional_data={
                    "username": username,
                    "duration_ms": self._elapsed_ms(start_time),
                },
            )
        return OriginResponse(
            status_code=NO_RESPONSE_STATUS, error=message, session_generation=generation
        )

    def _elapsed_ms(self, start_time: float) -> float:
        """Calculate elapsed time in milliseconds."""
        return (time.perf_counter() - start_time) * 1000
