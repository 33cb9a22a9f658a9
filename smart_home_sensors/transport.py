"""
HTTP transport shared by every REST call of the dashboard client.

All requests go through :func:`fetch_with_timeout`, which bounds the whole
request (connect, headers and body) by a timeout and optionally by a
caller supplied cancellation signal. Whichever fires first aborts the
request. The response body is read before returning so callers never hold
an open connection.

Example usage:

>>> async with aiohttp.ClientSession() as session:
...     resp = await fetch_with_timeout(session, "http://ha.local:8123/api", timeout=5)
...     resp.ok
True

The module also defines the exception hierarchy used across the package.
Callers of the readers and clients never see these exceptions; they are
caught and downgraded to "no data" one layer up.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from aiohttp import ClientError, ClientSession, ClientTimeout

from .const import DEFAULT_REQUEST_TIMEOUT


_LOGGER = logging.getLogger(__name__)


class DashboardError(Exception):
    """Base exception for dashboard client errors."""
    pass

class DashboardNetworkError(DashboardError):
    """Network-related errors (connection refused, DNS failure, reset, etc.)."""
    pass

class DashboardTimeoutError(DashboardNetworkError):
    """The request did not complete within its timeout."""
    pass

class DashboardRequestAborted(DashboardError):
    """The request was aborted by the caller's cancellation signal."""
    pass

class DashboardResponseError(DashboardError):
    """Non-2xx status or an unparseable response body."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status

class DashboardServiceError(DashboardResponseError):
    """A direct Home Assistant service call was rejected."""
    pass

class DashboardStorageError(DashboardError):
    """Persisting a record to the key-value store failed."""
    pass


@dataclass(frozen=True)
class FetchResponse:
    """Fully read HTTP response."""

    status: int
    reason: str
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """True for 2xx responses."""
        return 200 <= self.status < 300

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Decode the body as JSON.

        Raises
        ------
        DashboardResponseError
            If the body is not valid JSON.
        """
        try:
            return json.loads(self.body or b"null")
        except ValueError as err:
            raise DashboardResponseError(
                f"Invalid JSON in response: {err}", status=self.status
            ) from err

    def raise_for_status(self) -> None:
        if not self.ok:
            raise DashboardResponseError(f"{self.status} {self.reason}", status=self.status)


async def _perform_request(
    session: ClientSession,
    method: str,
    url: str,
    timeout: float,
    **kwargs: Any,
) -> FetchResponse:
    async with session.request(
        method, url, timeout=ClientTimeout(total=timeout), **kwargs
    ) as resp:
        body = await resp.read()
        return FetchResponse(
            status=resp.status,
            reason=resp.reason or "",
            body=body,
            headers=dict(resp.headers),
        )


async def _guarded_request(
    session: ClientSession,
    method: str,
    url: str,
    timeout: float,
    **kwargs: Any,
) -> FetchResponse:
    # The asyncio guard enforces the timeout even when the session's own
    # ClientTimeout is ignored (custom connectors, mocked sessions).
    try:
        return await asyncio.wait_for(
            _perform_request(session, method, url, timeout, **kwargs), timeout
        )
    except asyncio.TimeoutError as err:
        raise DashboardTimeoutError(f"Request timeout after {timeout}s: {url}") from err
    except ClientError as err:
        raise DashboardNetworkError(f"Network error for {url}: {err}") from err


async def fetch_with_timeout(
    session: ClientSession,
    url: str,
    *,
    method: str = "GET",
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
    signal: Optional[asyncio.Event] = None,
    **kwargs: Any,
) -> FetchResponse:
    """Perform an HTTP request that aborts after ``timeout`` seconds.

    Parameters
    ----------
    session: ClientSession
        Shared aiohttp session. It is never closed here.
    url: str
        Absolute request URL.
    method: str
        HTTP method (default: "GET").
    timeout: float
        Seconds allowed for the complete request, body included.
    signal: Optional[asyncio.Event]
        Caller cancellation signal. Setting it aborts the request.
    **kwargs
        Passed through to ``ClientSession.request`` (headers, json, params).

    Returns
    -------
    FetchResponse
        The fully read response, whatever its status code.

    Raises
    ------
    DashboardTimeoutError
        If the timeout elapsed first.
    DashboardRequestAborted
        If ``signal`` was set first.
    DashboardNetworkError
        If the request failed at the network layer.
    """
    if signal is not None and signal.is_set():
        raise DashboardRequestAborted(f"Request aborted before start: {url}")

    request = asyncio.ensure_future(_guarded_request(session, method, url, timeout, **kwargs))
    if signal is None:
        return await request

    abort_waiter = asyncio.ensure_future(signal.wait())
    try:
        done, _ = await asyncio.wait(
            {request, abort_waiter}, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        request.cancel()
        raise
    finally:
        abort_waiter.cancel()

    if request in done:
        return request.result()

    request.cancel()
    try:
        await request
    except asyncio.CancelledError:
        pass
    except DashboardError as err:
        _LOGGER.debug("Aborted request for %s finished with %s", url, err)
    raise DashboardRequestAborted(f"Request aborted by caller: {url}")
