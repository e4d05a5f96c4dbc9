"""Concrete hosting backends and the configured fallback order."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Sequence
from urllib.parse import urlparse, urlunparse
from uuid import uuid4

from loguru import logger

from watermark_relay.backends.base import HostingBackend
from watermark_relay.core.config import Settings
from watermark_relay.core.errors import HostingError
from watermark_relay.schemas.pipeline import SourceAsset
from watermark_relay.utils.s3_uploader import S3Uploader
from watermark_relay.utils.transport import Transport, TransportResponse

TMPFILES_HOST = "tmpfiles.org"
DOWNLOAD_SEGMENT = "dl"
_MAX_FILENAME = 120


def _dig(payload: Any, path: str) -> Any:
    current = payload
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


class PlainTextUrl:
    """Response body is the bare URL."""

    def read(self, backend: str, response: TransportResponse) -> str:
        if not response.ok:
            raise HostingError(backend, f"{backend} upload failed: HTTP {response.status_code} {response.reason}".strip())
        url = response.text.strip()
        if not url.startswith("http"):
            raise HostingError(backend, f"{backend} upload failed: unexpected response body")
        return url


@dataclass(frozen=True)
class JsonUrl:
    """Response body is JSON with the URL at one of ``url_paths``.

    When ``success_path`` is set, the value found there must equal
    ``success_value`` for the upload to count.
    """

    url_paths: Sequence[str]
    success_path: Optional[str] = None
    success_value: Any = True
    error_paths: Sequence[str] = ("error.message", "error", "message")

    def read(self, backend: str, response: TransportResponse) -> str:
        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not response.ok:
            raise HostingError(backend, self._error_message(backend, response, payload))
        if not isinstance(payload, Mapping):
            raise HostingError(backend, f"{backend} upload failed: response is not a JSON object")
        if self.success_path is not None and _dig(payload, self.success_path) != self.success_value:
            raise HostingError(backend, self._error_message(backend, response, payload))

        for path in self.url_paths:
            value = _dig(payload, path)
            if isinstance(value, str) and value:
                return value
        raise HostingError(backend, f"{backend} upload failed: no URL in response")

    def _error_message(self, backend: str, response: TransportResponse, payload: Any) -> str:
        for path in self.error_paths:
            value = _dig(payload, path)
            if isinstance(value, str) and value:
                return f"{backend} upload failed: {value}"
        return f"{backend} upload failed: HTTP {response.status_code}"


class FormUploadBackend(HostingBackend):
    """Backend accepting a multipart form upload."""

    def __init__(
        self,
        name: str,
        endpoint: str,
        transport: Transport,
        reader: PlainTextUrl | JsonUrl,
        fields: Mapping[str, str] | None = None,
        file_field: str = "file",
    ) -> None:
        self.name = name
        self.endpoint = endpoint
        self._transport = transport
        self._reader = reader
        self._fields = dict(fields or {})
        self._file_field = file_field

    async def submit(self, asset: SourceAsset) -> str:
        files = {self._file_field: (asset.name, asset.data, asset.media_type or "application/octet-stream")}
        response = await self._transport.request(
            "POST",
            self.endpoint,
            data=self._fields or None,
            files=files,
        )
        url = self._reader.read(self.name, response)
        logger.info("{} returned URL {}", self.name, url)
        return url


def with_download_segment(url: str) -> str:
    """``https://tmpfiles.org/123/a.mp4`` -> ``https://tmpfiles.org/dl/123/a.mp4``."""

    parsed = urlparse(url)
    parts = [part for part in parsed.path.split("/") if part]
    if parts and parts[0] == DOWNLOAD_SEGMENT:
        return url
    return urlunparse(parsed._replace(path="/" + "/".join([DOWNLOAD_SEGMENT, *parts])))


def without_download_segment(url: str) -> str:
    """``https://tmpfiles.org/dl/123/a.mp4`` -> ``https://tmpfiles.org/123/a.mp4``."""

    parsed = urlparse(url)
    parts = [part for part in parsed.path.split("/") if part]
    if not parts or parts[0] != DOWNLOAD_SEGMENT:
        return url
    return urlunparse(parsed._replace(path="/" + "/".join(parts[1:])))


def _is_tmpfiles(url: str) -> bool:
    host = urlparse(url).hostname or ""
    return host == TMPFILES_HOST or host.endswith("." + TMPFILES_HOST)


class TmpfilesBackend(FormUploadBackend):
    """tmpfiles.org serves the same file at a ``/dl/`` and a direct path."""

    def __init__(self, endpoint: str, transport: Transport) -> None:
        super().__init__(
            name=TMPFILES_HOST,
            endpoint=endpoint,
            transport=transport,
            reader=JsonUrl(url_paths=("data.url",), success_path="status", success_value="success"),
        )

    def submission_url(self, url: str) -> str:
        return with_download_segment(url) if _is_tmpfiles(url) else url

    def alternate_url(self, url: str) -> str | None:
        if not _is_tmpfiles(url):
            return None
        direct = without_download_segment(url)
        return direct if direct != url else with_download_segment(url)


def _safe_filename(candidate: str | None, default: str = "video.mp4") -> str:
    if not candidate:
        return default

    candidate = candidate.strip().strip("/\\")
    if not candidate:
        return default

    suffix = Path(candidate).suffix
    stem = Path(candidate).stem or "file"

    cleaned_stem = "".join(ch if ch.isalnum() or ch in {"-", "_"} else "-" for ch in stem)
    return f"{cleaned_stem[: _MAX_FILENAME - len(suffix)]}{suffix}"


class S3Backend(HostingBackend):
    """Publishes to S3-compatible storage behind a presigned GET URL."""

    name = "s3"

    def __init__(self, uploader: S3Uploader, key_prefix: str = "uploads") -> None:
        self._uploader = uploader
        self._key_prefix = key_prefix

    async def submit(self, asset: SourceAsset) -> str:
        prefix = f"{self._key_prefix.rstrip('/')}/{uuid4().hex}"
        try:
            return await asyncio.to_thread(
                self._uploader.store_bytes_and_get_url,
                asset.data,
                key_prefix=prefix,
                filename=_safe_filename(asset.name),
                content_type=asset.media_type or None,
            )
        except Exception as exc:  # noqa: BLE001 - boto3 raises a wide family of errors
            raise HostingError(self.name, f"{self.name} upload failed: {exc}") from exc


@dataclass(frozen=True)
class BackendEntry:
    """One position in the fallback order."""

    name: str
    enabled: Callable[[Settings], bool]
    build: Callable[[Settings, Transport], HostingBackend]


def _cloudinary(settings: Settings, transport: Transport) -> HostingBackend:
    return FormUploadBackend(
        name="cloudinary",
        endpoint=f"https://api.cloudinary.com/v1_1/{settings.CLOUDINARY_CLOUD_NAME}/upload",
        transport=transport,
        reader=JsonUrl(url_paths=("secure_url", "url")),
        fields={"upload_preset": settings.CLOUDINARY_UPLOAD_PRESET or "", "resource_type": "video"},
    )


def _s3(settings: Settings, transport: Transport) -> HostingBackend:
    return S3Backend(S3Uploader(settings), key_prefix=settings.S3_KEY_PREFIX)


def _zero_x_zero(settings: Settings, transport: Transport) -> HostingBackend:
    return FormUploadBackend(name="0x0.st", endpoint=settings.ZERO_X_ZERO_URL, transport=transport, reader=PlainTextUrl())


def _tmpfiles(settings: Settings, transport: Transport) -> HostingBackend:
    return TmpfilesBackend(endpoint=settings.TMPFILES_URL, transport=transport)


def _file_io(settings: Settings, transport: Transport) -> HostingBackend:
    return FormUploadBackend(
        name="file.io",
        endpoint=settings.FILE_IO_URL,
        transport=transport,
        reader=JsonUrl(url_paths=("link",), success_path="success", success_value=True),
    )


# Preferred backends first; each is skipped when its credentials are absent.
HOSTING_BACKENDS: tuple[BackendEntry, ...] = (
    BackendEntry("cloudinary", lambda s: s.cloudinary_configured, _cloudinary),
    BackendEntry("s3", lambda s: bool(s.S3_BUCKET), _s3),
    BackendEntry("0x0.st", lambda s: True, _zero_x_zero),
    BackendEntry(TMPFILES_HOST, lambda s: True, _tmpfiles),
    BackendEntry("file.io", lambda s: True, _file_io),
)


def build_hosting_backends(
    settings: Settings,
    transport: Transport,
    entries: Sequence[BackendEntry] = HOSTING_BACKENDS,
) -> list[HostingBackend]:
    """Instantiate the enabled backends in fallback order."""

    backends = [entry.build(settings, transport) for entry in entries if entry.enabled(settings)]
    logger.debug("Hosting fallback order: {}", ", ".join(backend.name for backend in backends))
    return backends
