"""HTTP execution helpers shared by the hosting and inference clients."""

from __future__ import annotations

import asyncio
import json as jsonlib
from dataclasses import dataclass, field
from typing import Any, Awaitable, Mapping, Optional, Protocol, TypeVar

import requests
from loguru import logger

from watermark_relay.core.errors import AttemptTimeoutError, TransportError

T = TypeVar("T")


@dataclass(frozen=True)
class TransportResponse:
    """Fully buffered HTTP response."""

    status_code: int
    reason: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    content: bytes = b""
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def content_type(self) -> str:
        for key, value in self.headers.items():
            if key.lower() == "content-type":
                return value.lower()
        return ""

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return jsonlib.loads(self.content)


class Transport(Protocol):
    """Anything able to perform an HTTP request asynchronously."""

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        json: Any = None,
        data: Any = None,
        files: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> TransportResponse:
        ...


class RequestsTransport:
    """Transport backed by a ``requests.Session`` run on a worker thread."""

    def __init__(self, session: requests.Session | None = None, default_timeout: float | None = None) -> None:
        self._session = session or requests.Session()
        self._default_timeout = default_timeout

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        json: Any = None,
        data: Any = None,
        files: Optional[Mapping[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> TransportResponse:
        return await asyncio.to_thread(
            self._send,
            method,
            url,
            headers=headers,
            json=json,
            data=data,
            files=files,
            timeout=timeout if timeout is not None else self._default_timeout,
        )

    def _send(self, method: str, url: str, **kwargs: Any) -> TransportResponse:
        logger.debug("{} {}", method, url)
        try:
            response = self._session.request(method, url, **kwargs)
        except requests.RequestException as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc

        return TransportResponse(
            status_code=response.status_code,
            reason=response.reason or "",
            headers=dict(response.headers),
            content=response.content,
            url=response.url or url,
        )

    def close(self) -> None:
        self._session.close()


# Abandoned tasks stay referenced until they settle.
_ABANDONED: set[asyncio.Task] = set()


def _discard_outcome(task: asyncio.Task) -> None:
    _ABANDONED.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Abandoned call finished late with {}", exc)
    else:
        logger.debug("Abandoned call finished late; result discarded")


async def race_with_timeout(awaitable: Awaitable[T], seconds: float, label: str = "Upload") -> T:
    """Race ``awaitable`` against a timer.

    The loser of the race is abandoned, not cancelled: if the timer wins, the
    call keeps running in the background and its eventual outcome is drained
    and dropped.
    """

    task = asyncio.ensure_future(awaitable)
    done, _ = await asyncio.wait({task}, timeout=seconds)
    if task in done:
        return task.result()

    _ABANDONED.add(task)
    task.add_done_callback(_discard_outcome)
    raise AttemptTimeoutError(
        f"{label} timeout after {seconds:g} seconds",
        error_code="timeout",
        details={"timeout_seconds": seconds},
    )
