"""HTTP access to IPTV panels that block, throttle and misbehave."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Sequence

import httpx

from ..config import DEFAULT_USER_AGENTS, Settings
from ..exceptions import (
    DecodeError,
    EmptyResponseError,
    FlixSyncError,
    TransportError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

_DNS_FAILURE_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "name resolution",
    "no address associated",
    "no such host",
)
_RETRYABLE_TRANSPORT_ERRORS = (
    httpx.TimeoutException,
    httpx.RemoteProtocolError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.ConnectError,
)


@dataclass(slots=True)
class HttpResult:
    """Successful response captured in memory."""

    status_code: int
    body: bytes
    url: str

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


def create_http_client(
    settings: Settings,
    *,
    base_url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Build the shared client used for playlist panels.

    Certificate verification is off because panels routinely serve expired or
    self-signed certificates.
    """

    timeout = httpx.Timeout(
        settings.http_timeout_seconds, connect=settings.http_connect_timeout_seconds
    )
    kwargs: dict[str, Any] = {
        "verify": False,
        "timeout": timeout,
        "follow_redirects": True,
        "transport": transport,
    }
    if base_url:
        kwargs["base_url"] = base_url
    return httpx.AsyncClient(**kwargs)


def decode_json(body: bytes | str, *, expect: type | None = dict, url: str | None = None) -> Any:
    """Decode a JSON payload, coercing the shape quirks of Xtream panels.

    ``[]`` where an object is expected becomes ``{}``; an object where a list
    is expected becomes its values (an empty object becomes ``[]``).
    """

    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    text = body.strip().lstrip("\ufeff")
    if not text:
        raise EmptyResponseError(url)
    try:
        payload = json.loads(text)
    except ValueError as exc:
        raise DecodeError(f"Malformed JSON response from {url or 'server'}") from exc

    if expect is None:
        return payload
    if expect is dict:
        if payload is None:
            return {}
        if isinstance(payload, dict):
            return payload
        if isinstance(payload, list) and not payload:
            return {}
        raise DecodeError(
            f"Expected a JSON object from {url or 'server'}, got {type(payload).__name__}"
        )
    if expect is list:
        if payload is None:
            return []
        if isinstance(payload, list):
            return payload
        if isinstance(payload, dict):
            return list(payload.values())
        raise DecodeError(
            f"Expected a JSON array from {url or 'server'}, got {type(payload).__name__}"
        )
    raise ValueError(f"Unsupported JSON shape: {expect!r}")


class ResilientHttpClient:
    """Issue requests with user-agent rotation and exponential backoff.

    Each attempt uses the next user agent from the configured rotation; before
    every retry the client sleeps ``HTTP_RETRY_BACKOFF * 2**attempt`` seconds.
    Statuses in ``RETRY_STATUS_CODES`` and transient transport failures are
    retried, everything else raises immediately.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        user_agents: Sequence[str] | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ):
        self._settings = settings
        self._client = http_client
        self._user_agents = tuple(user_agents or settings.user_agents or DEFAULT_USER_AGENTS)
        self._sleep = sleep or asyncio.sleep
        self._retry_codes = frozenset(settings.retry_status_codes)
        self._overload_codes = frozenset(settings.overload_status_codes)

    @property
    def user_agents(self) -> tuple[str, ...]:
        return self._user_agents

    async def request(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> HttpResult:
        """Return the first successful response or raise the last failure."""

        last_error: FlixSyncError | None = None
        for attempt, agent in enumerate(self._user_agents):
            if attempt:
                await self._backoff(attempt, url, last_error)
            try:
                response = await self._client.request(
                    method, url, headers=self._headers(agent, headers), params=params
                )
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                error = self._transport_error(exc, url)
                if not error.retryable:
                    raise error from exc
                last_error = error
                continue

            if response.is_success:
                return HttpResult(
                    status_code=response.status_code,
                    body=response.content,
                    url=str(response.url),
                )
            error = self._status_error(response.status_code, response.content, url)
            if not error.retryable:
                raise error
            last_error = error

        if last_error is None:
            raise TransportError(f"No user agents configured for {url}", url=url)
        raise last_error

    async def get_json(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        expect: type | None = dict,
    ) -> Any:
        """Fetch ``url`` and decode its body with :func:`decode_json`."""

        result = await self.request(url, headers=headers, params=params)
        return decode_json(result.body, expect=expect, url=url)

    async def stream_lines(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> AsyncIterator[str]:
        """Yield the response body line by line without buffering it.

        Opening the stream follows the retry policy of :meth:`request`. Once
        the first line has been handed out a failure is raised instead of
        retried, so callers never see duplicated lines.
        """

        last_error: FlixSyncError | None = None
        started = False
        for attempt, agent in enumerate(self._user_agents):
            if attempt:
                await self._backoff(attempt, url, last_error)
            try:
                async with self._client.stream(
                    "GET", url, headers=self._headers(agent, headers), params=params
                ) as response:
                    if not response.is_success:
                        body = await response.aread()
                        error = self._status_error(response.status_code, body, url)
                        if not error.retryable:
                            raise error
                        last_error = error
                        continue
                    async for line in response.aiter_lines():
                        started = True
                        yield line
                    return
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                error = self._transport_error(exc, url)
                if started or not error.retryable:
                    raise error from exc
                last_error = error

        if last_error is None:
            raise TransportError(f"No user agents configured for {url}", url=url)
        raise last_error

    def _headers(self, agent: str, extra: Mapping[str, str] | None) -> dict[str, str]:
        headers = {"User-Agent": agent, "Accept": "*/*", "Connection": "close"}
        if extra:
            headers.update(extra)
        return headers

    async def _backoff(self, attempt: int, url: str, error: FlixSyncError | None) -> None:
        delay = self._settings.http_retry_backoff_seconds * (2**attempt)
        logger.info(
            "Retrying %s with user agent #%s in %.1fs after: %s",
            url,
            attempt + 1,
            delay,
            error,
        )
        await self._sleep(delay)

    def _status_error(self, status_code: int, body: bytes | None, url: str) -> UpstreamError:
        return UpstreamError(
            status_code,
            UpstreamError.extract_message(body),
            url=url,
            retryable=status_code in self._retry_codes,
            overloaded=status_code in self._overload_codes,
        )

    @staticmethod
    def _transport_error(exc: Exception, url: str) -> TransportError:
        message = str(exc) or exc.__class__.__name__
        if isinstance(exc, httpx.ConnectError) and _looks_like_dns_failure(message):
            return TransportError(f"Could not resolve host: {message}", url=url)
        retryable = isinstance(exc, _RETRYABLE_TRANSPORT_ERRORS)
        return TransportError(message, url=url, retryable=retryable)


def _looks_like_dns_failure(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _DNS_FAILURE_MARKERS)
