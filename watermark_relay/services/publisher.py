"""Publish a source asset at a public URL through fallback hosting backends."""

from __future__ import annotations

from typing import Callable, Optional, Sequence
from urllib.parse import urlparse

from loguru import logger

from watermark_relay.backends.base import HostingBackend
from watermark_relay.core.errors import HostingError, PublishError, TransportError
from watermark_relay.schemas.pipeline import ErrorReport, PublicUrl, PublishAttempt, SourceAsset
from watermark_relay.utils.transport import race_with_timeout

StatusCallback = Callable[[str], None]
FallbackCallback = Callable[[ErrorReport], None]

DEFAULT_ATTEMPT_TIMEOUT_SECONDS = 30.0


def is_absolute_url(value: object) -> bool:
    if not isinstance(value, str):
        return False
    parsed = urlparse(value.strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


class Publisher:
    """Try each backend once, in order, and keep the first usable URL."""

    def __init__(
        self,
        backends: Sequence[HostingBackend],
        timeout_seconds: float = DEFAULT_ATTEMPT_TIMEOUT_SECONDS,
    ) -> None:
        self._backends = list(backends)
        self._timeout_seconds = timeout_seconds

    async def publish(
        self,
        asset: SourceAsset,
        on_status: Optional[StatusCallback] = None,
        on_fallback: Optional[FallbackCallback] = None,
    ) -> PublicUrl:
        """Return the first backend URL that succeeds.

        Every failure followed by another backend is passed to ``on_fallback``
        as a recoverable report.

        Raises:
            PublishError: when every backend failed or timed out.
        """

        notify = on_status or (lambda _: None)
        failures: list[PublishAttempt] = []

        for index, backend in enumerate(self._backends):
            notify(f"Uploading to {backend.name}...")
            try:
                url = await race_with_timeout(backend.submit(asset), self._timeout_seconds)
                if not is_absolute_url(url):
                    raise HostingError(backend.name, f"{backend.name} returned a malformed URL: {url!r}")
            except (HostingError, TransportError) as exc:
                failures.append(PublishAttempt(backend=backend.name, error=str(exc)))
            except Exception as exc:  # noqa: BLE001 - a broken backend must not stop the fallback
                failures.append(PublishAttempt(backend=backend.name, error=f"{type(exc).__name__}: {exc}"))
            else:
                url = url.strip()
                logger.info("Published {} via {}: {}", asset.name, backend.name, url)
                notify(f"Uploaded to {backend.name} successfully")
                return PublicUrl(url=url, backend=backend.name)

            logger.warning("{} upload failed: {}", backend.name, failures[-1].error)
            notify(f"{backend.name} upload failed")
            if on_fallback and index < len(self._backends) - 1:
                on_fallback(ErrorReport(message=f"{backend.name}: {failures[-1].error}", recoverable=True))

        logger.error("All hosting backends failed for {}", asset.name)
        raise PublishError(
            attempted=[attempt.backend for attempt in failures],
            last_errors=[attempt.error for attempt in failures],
        )
