"""Talk to the attendance server.

The server exposes a single endpoint. GET returns the teacher's roster and
calendar snapshot, POST accepts a list of signed attendance records. Both
reply with a JSON object whose "status" field is "ok" or "error"; an "error"
status is a failure even when the HTTP status is 200.

Requests are blocking, so the async methods run them in a worker thread. The
`timeout` passed to requests only bounds the connect and each gap between
reads, so the whole exchange is also held to the same deadline on the event
loop. A slow body that keeps trickling in still ends in RequestTimeout.
"""

import asyncio
import json
import logging
import time
from collections.abc import Callable
from typing import Any, Optional, TypeVar

import requests


logger = logging.getLogger(__name__)

T = TypeVar("T")

EXCERPT_LENGTH = 150
"""Characters of an unexpected response body to include in error messages."""


class SyncError(Exception):
    """Communication with the attendance server failed."""


class NetworkUnreachable(SyncError):
    """The device has no working internet connection."""


class RequestTimeout(SyncError):
    """The server did not answer within the request timeout."""


class ServerRejected(SyncError):
    """The server answered with an explicit error."""


class MalformedResponse(SyncError):
    """The server answered with something other than the expected JSON."""

    excerpt: str
    """Start of the response body, for diagnosis."""

    def __init__(self, message: str, excerpt: str = "") -> None:
        super().__init__(message)
        self.excerpt = excerpt


class ApiClient:
    """Client for the attendance server endpoint."""

    endpoint: str
    """URL of the sync endpoint."""
    timeout: float
    """Seconds to wait for each request."""
    _session: requests.Session

    def __init__(
        self,
        endpoint: str,
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self._session = requests.Session() if session is None else session
        self._session.headers.update({"Accept": "application/json"})

    async def fetch_snapshot(self, identity: str) -> dict[str, Any]:
        """Download the roster and calendar snapshot for a teacher."""
        return await self._with_deadline(self._get_snapshot, identity)

    async def post_attendance(self, records: list[dict[str, Any]]) -> dict[str, Any]:
        """Send attendance records to the server."""
        return await self._with_deadline(self._post_attendance, records)

    async def _with_deadline(self, func: Callable[..., T], *args: Any) -> T:
        """Run a blocking request in a worker thread, bounded by the timeout.

        The worker cannot be interrupted and finishes on its own; its result is
        discarded.
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args), self.timeout
            )
        except TimeoutError as err:
            raise RequestTimeout(self._too_slow()) from err

    def _too_slow(self) -> str:
        return (
            f"The connection is too slow: no answer within "
            f"{self.timeout:g} seconds."
        )

    def _get_snapshot(self, identity: str) -> dict[str, Any]:
        params = {"identidad": identity, "_t": str(int(time.time() * 1000))}
        headers = {
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "Pragma": "no-cache",
            "Expires": "0",
        }
        logger.info("Downloading snapshot from %s", self.endpoint)
        response = self._send("GET", params=params, headers=headers)
        payload = self._parse(response)
        if payload.get("status") == "error":
            raise ServerRejected(
                payload.get("mensaje") or "The server refused the request."
            )
        return payload

    def _post_attendance(self, records: list[dict[str, Any]]) -> dict[str, Any]:
        logger.info("Posting %d attendance records", len(records))
        response = self._send("POST", json={"participaciones": records})
        payload = self._parse(response)
        if payload.get("status") == "error":
            raise ServerRejected(
                payload.get("message")
                or payload.get("mensaje")
                or "Unknown server error."
            )
        return payload

    def _send(self, method: str, **kwargs: Any) -> requests.Response:
        """Send a request and translate transport failures."""
        try:
            return self._session.request(
                method, self.endpoint, timeout=self.timeout, **kwargs
            )
        except requests.exceptions.Timeout as err:
            raise RequestTimeout(self._too_slow()) from err
        except requests.exceptions.ConnectionError as err:
            raise NetworkUnreachable("No internet connection.") from err
        except requests.exceptions.RequestException as err:
            raise SyncError(f"Request failed: {err}") from err

    @staticmethod
    def _parse(response: requests.Response) -> dict[str, Any]:
        """Decode a JSON object body, checking the HTTP status.

        Raises:
            MalformedResponse: If the body is not a JSON object, for example an
                HTML error page.
            ServerRejected: If the HTTP status is not 2xx.
        """
        text = response.text
        try:
            payload = json.loads(text)
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            excerpt = text[:EXCERPT_LENGTH]
            logger.error(
                "Unexpected response (HTTP %d): %s", response.status_code, excerpt
            )
            raise MalformedResponse(
                f"The server returned an unexpected response "
                f"(HTTP {response.status_code}): {excerpt}...",
                excerpt,
            )
        if not response.ok:
            raise ServerRejected(
                payload.get("message")
                or payload.get("mensaje")
                or f"Server error: HTTP {response.status_code}"
            )
        return payload
