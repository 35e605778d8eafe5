"""Internal HTTP helper: one request through an aiohttp-retry client."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import aiohttp
from aiohttp_retry import ExponentialRetry, RetryClient

from thermia_online._constants import REQUEST_TIMEOUT
from thermia_online.exceptions import NetworkError

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """How transient failures are retried.

    A request is retried on connection errors, timeouts, and any response
    status in *statuses*.  The delay grows from *base_delay* by *factor*
    per attempt, capped at *max_delay* seconds.
    """

    attempts: int = 5
    base_delay: float = 0.5
    factor: float = 2.0
    max_delay: float = 30.0
    statuses: frozenset[int] = field(
        default_factory=lambda: frozenset({429, 500, 502, 503, 504})
    )
    methods: frozenset[str] = frozenset({"GET", "POST"})

    def options(self) -> ExponentialRetry:
        return ExponentialRetry(
            attempts=max(self.attempts, 1),
            start_timeout=self.base_delay,
            max_timeout=self.max_delay,
            factor=self.factor,
            statuses=set(self.statuses),
            exceptions={aiohttp.ClientError, asyncio.TimeoutError},
            methods=set(self.methods),
            retry_all_server_errors=False,
        )

    def client(self) -> RetryClient:
        """A fresh client with its own session and cookie jar."""
        return RetryClient(retry_options=self.options(), logger=_LOGGER)


@dataclass(frozen=True)
class Response:
    """A fully-read HTTP response."""

    status: int
    url: str
    headers: Mapping[str, str]
    text: str
    cookies: dict[str, str]

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        return json.loads(self.text)


async def request(
    client: RetryClient,
    method: str,
    url: str,
    **kwargs: Any,
) -> Response:
    """Send a request and read the whole body.

    Returns the last response once it is not retryable or the attempts are
    used up; the caller decides what a non-2xx status means.  Raises
    :class:`NetworkError` if no response could be obtained at all.
    """
    kwargs.setdefault("timeout", aiohttp.ClientTimeout(total=REQUEST_TIMEOUT))
    try:
        async with client.request(method, url, **kwargs) as resp:
            return Response(
                status=resp.status,
                url=str(resp.url),
                headers=resp.headers,
                text=await resp.text(),
                cookies={name: morsel.value for name, morsel in resp.cookies.items()},
            )
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise NetworkError(f"{method} {_strip_query(url)} failed: {e}") from e


def scrub(text: str, limit: int = 300) -> str:
    """Truncate a response body and blank out token-like fields for logging."""
    text = text[:limit]
    text = re.sub(
        r'("(?:access_token|refresh_token|id_token)"\s*:\s*")[^"]+(")',
        r"\1<redacted>\2",
        text,
        flags=re.IGNORECASE,
    )
    return re.sub(r"(code=)[^&\"\s]+", r"\1<redacted>", text, flags=re.IGNORECASE)


def _strip_query(url: str) -> str:
    return url.split("?", 1)[0]
