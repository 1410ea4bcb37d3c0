"""HTTP transport for the backend store and the geocoder.

Maps every transport failure onto the pyissuemap error taxonomy in one
place: connection errors and timeouts become :class:`NetworkError`,
401/403 become :class:`AuthRequiredError`, 409 or a unique violation become
:class:`ConflictError`, other non-2xx become :class:`QueryError`.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import aiohttp

from pyissuemap._redact import redact_for_log, redact_query
from pyissuemap.exceptions import AuthRequiredError, ConflictError, NetworkError, QueryError

_logger = logging.getLogger(__name__)

USER_AGENT = "pyissuemap"
_UNIQUE_VIOLATION = "23505"


@dataclass(frozen=True)
class TransportResponse:
    """Decoded JSON body plus the response headers callers care about."""

    status: int
    data: Any
    headers: Mapping[str, str] = field(default_factory=dict)


class Transport(Protocol):
    """Structural transport interface used by endpoint modules.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`HttpTransport`) concrete.
    """

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, str] | None = None,
        json_body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> TransportResponse: ...


def _error_message(data: Any, text: str) -> tuple[str, str]:
    """Extract ``(code, message)`` from a PostgREST-style error body."""
    if isinstance(data, dict):
        code = str(data.get("code") or "")
        message = str(data.get("message") or data.get("error") or data.get("msg") or "")
        return code, message or text[:200]
    return "", text[:200]


def raise_for_status(status: int, data: Any, text: str, *, endpoint: str) -> None:
    """Raise the matching pyissuemap error for a non-2xx response."""
    if 200 <= status < 300:
        return
    code, message = _error_message(data, text)
    if status in (401, 403):
        raise AuthRequiredError(f"{endpoint} rejected credentials (HTTP {status}): {message}")
    if status == 409 or code == _UNIQUE_VIOLATION:
        raise ConflictError(f"{endpoint} conflict: {message}", endpoint=endpoint)
    raise QueryError(
        f"HTTP {status} from {endpoint}: {message}",
        code=code,
        status_code=status,
        endpoint=endpoint,
    )


class HttpTransport:
    """aiohttp-backed transport returning decoded JSON."""

    def __init__(self, http_session: aiohttp.ClientSession, *, timeout: float = 10.0) -> None:
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, str] | None = None,
        json_body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> TransportResponse:
        request_headers: dict[str, str] = {"accept": "application/json", "user-agent": USER_AGENT}
        if headers:
            request_headers.update(headers)

        _logger.debug(
            "%s %s params=%s headers=%s body=%s",
            method,
            url,
            redact_query(params),
            redact_for_log(request_headers),
            redact_for_log(json_body),
        )

        try:
            async with self._http.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=request_headers,
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                status = resp.status
                response_headers = {k.lower(): v for k, v in resp.headers.items()}
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise NetworkError(f"Request to {url} failed: {exc!r}", endpoint=url) from exc

        data: Any = None
        if text.strip():
            try:
                data = json.loads(text)
            except json.JSONDecodeError as exc:
                if 200 <= status < 300:
                    raise NetworkError(
                        f"Invalid JSON from {url}: {text[:200]}",
                        status_code=status,
                        endpoint=url,
                    ) from exc

        raise_for_status(status, data, text, endpoint=url)
        _logger.debug("%s %s -> %s", method, url, status)
        return TransportResponse(status=status, data=data, headers=response_headers)
