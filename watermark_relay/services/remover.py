"""Client for the Segmind video watermark remover."""

from __future__ import annotations

import json
from typing import Any, Callable, Mapping, Optional, Sequence

from loguru import logger

from watermark_relay.backends.base import HostingBackend
from watermark_relay.core.config import Settings
from watermark_relay.core.errors import DecodeError, RemovalError, TransportError
from watermark_relay.schemas.pipeline import (
    ErrorReport,
    InferenceEndpoint,
    InferenceRequest,
    InferenceResult,
    OutputEncoding,
    PublicUrl,
    RemovalErrorKind,
    ResultBlob,
    ResultUrl,
)
from watermark_relay.utils.transport import Transport, TransportResponse

StatusCallback = Callable[[str], None]
FallbackCallback = Callable[[ErrorReport], None]

RESULT_URL_FIELDS = ("output", "video_url", "url")
DURATION_PHRASES = ("duration", "could not determine")
HOST_ACCESS_GUIDANCE = (
    " The video URL may not be accessible from Segmind's servers. This could be due to network "
    "restrictions or the temporary hosting service blocking API access. Try using 0x0.st or file.io "
    "instead, or set up your own file hosting."
)
GENERIC_FAILURE = "Failed to process video"
NO_RESPONSE = "Failed to get response from Segmind API"

STATUS_ERRORS: dict[int, tuple[RemovalErrorKind, str]] = {
    401: (RemovalErrorKind.unauthorized, "Invalid API key. Please check your SEGMIND_API_KEY."),
    403: (RemovalErrorKind.forbidden, "Access forbidden. Check your API key permissions."),
    406: (RemovalErrorKind.insufficient_credit, "Insufficient credits. Please add credits to your Segmind account."),
    429: (RemovalErrorKind.rate_limited, "Rate limit exceeded. Please try again later."),
}

_NOT_JSON = object()


def default_endpoints(settings: Settings) -> list[InferenceEndpoint]:
    """v2 (long-running jobs) first, then v1."""

    return [
        InferenceEndpoint(name="v2", url=settings.SEGMIND_V2_ENDPOINT, input_field=settings.SEGMIND_INPUT_FIELD),
        InferenceEndpoint(name="v1", url=settings.SEGMIND_V1_ENDPOINT, input_field=settings.SEGMIND_INPUT_FIELD),
    ]


def mentions_undetectable_duration(message: str) -> bool:
    lowered = message.lower()
    return any(phrase in lowered for phrase in DURATION_PHRASES)


def classify_failure(response: TransportResponse) -> RemovalError:
    """Map a non-2xx inference response to a RemovalError."""

    known = STATUS_ERRORS.get(response.status_code)
    if known:
        kind, message = known
        return RemovalError(kind, message, status_code=response.status_code)

    try:
        body = response.json()
    except ValueError:
        message = response.reason or GENERIC_FAILURE
    else:
        detail = None
        if isinstance(body, Mapping):
            detail = body.get("message") or body.get("error")
        message = str(detail) if detail else GENERIC_FAILURE

    kind = (
        RemovalErrorKind.duration_undetectable
        if mentions_undetectable_duration(message)
        else RemovalErrorKind.bad_response
    )
    return RemovalError(kind, message, status_code=response.status_code)


def _parse_json(body: bytes) -> Any:
    try:
        return json.loads(body)
    except ValueError:
        return _NOT_JSON


def _result_url(payload: Any, fields: Sequence[str]) -> Optional[str]:
    if not isinstance(payload, Mapping):
        return None
    for field in fields:
        value = payload.get(field)
        if isinstance(value, str) and value:
            return value
    return None


def decode_inference_response(
    response: TransportResponse,
    result_fields: Sequence[str] = RESULT_URL_FIELDS,
) -> InferenceResult:
    """Normalize a successful response into a ResultUrl or a ResultBlob.

    The declared content type is trusted first. If it does not claim JSON, or
    the JSON does not parse, the body is sniffed for a leading ``{`` or ``[``.
    A parsed body carrying one of ``result_fields`` yields a ResultUrl; every
    other body is kept byte for byte as a ResultBlob.
    """

    body = response.content
    if not body:
        raise DecodeError("Inference service returned an empty response.", error_code="empty_response")

    payload: Any = _NOT_JSON
    if "application/json" in response.content_type:
        payload = _parse_json(body)
    if payload is _NOT_JSON and body.lstrip()[:1] in (b"{", b"["):
        payload = _parse_json(body)

    if payload is not _NOT_JSON:
        url = _result_url(payload, result_fields)
        if url:
            return ResultUrl(url=url)
        logger.warning("JSON response carries none of {}; keeping body as binary", ", ".join(result_fields))

    return ResultBlob(data=body, content_type=response.content_type)


class Remover:
    """Submit a published URL to the inference service and normalize its answer."""

    def __init__(
        self,
        transport: Transport,
        endpoints: Sequence[InferenceEndpoint],
        backends: Sequence[HostingBackend] = (),
        timeout_seconds: float | None = None,
        result_fields: Sequence[str] = RESULT_URL_FIELDS,
    ) -> None:
        self._transport = transport
        self._endpoints = list(endpoints)
        self._backends = {backend.name: backend for backend in backends}
        self._timeout_seconds = timeout_seconds
        self._result_fields = tuple(result_fields)

    async def remove(
        self,
        url: PublicUrl,
        credential: str,
        on_accepted: Optional[Callable[[], None]] = None,
        on_status: Optional[StatusCallback] = None,
        on_fallback: Optional[FallbackCallback] = None,
    ) -> InferenceResult:
        """Run one removal.

        Endpoint fallbacks and the duration retry are passed to ``on_fallback``
        as recoverable reports.

        Raises:
            RemovalError: the service refused or failed the job.
            DecodeError: the service accepted the job but returned nothing usable.
        """

        accepted = on_accepted or (lambda: None)
        notify = on_status or (lambda _: None)
        recovered = on_fallback or (lambda _: None)

        backend = self._backends.get(url.backend)
        source_url = backend.submission_url(url.url) if backend else url.url
        if source_url != url.url:
            logger.info("Using {} URL shape {}", url.backend, source_url)

        response, endpoint = await self._negotiate(source_url, credential, recovered)
        if response.ok:
            accepted()
            return self._decode(response)

        error = classify_failure(response)
        logger.error(
            "Segmind {} rejected {} with HTTP {}: {}",
            endpoint.name,
            source_url,
            response.status_code,
            error.message,
        )

        alternate = backend.alternate_url(source_url) if backend else None
        if error.kind is RemovalErrorKind.duration_undetectable and alternate and alternate != source_url:
            recovered(ErrorReport(message=error.message, recoverable=True))
            return await self._retry_with_alternate(endpoint, alternate, credential, error, accepted, notify)
        raise error

    async def _negotiate(
        self,
        source_url: str,
        credential: str,
        recovered: FallbackCallback,
    ) -> tuple[TransportResponse, InferenceEndpoint]:
        """Return the first endpoint response that is not a 404."""

        last_error: Optional[TransportError] = None
        for index, endpoint in enumerate(self._endpoints):
            is_last = index == len(self._endpoints) - 1
            try:
                response = await self._post(endpoint, source_url, credential)
            except TransportError as exc:
                last_error = exc
                logger.warning("Segmind {} endpoint error: {}", endpoint.name, exc)
                if not is_last:
                    recovered(ErrorReport(message=f"Segmind {endpoint.name} endpoint error: {exc}", recoverable=True))
                continue

            if response.status_code == 404 and not is_last:
                logger.info("Segmind {} endpoint not found, falling back", endpoint.name)
                recovered(ErrorReport(message=f"Segmind {endpoint.name} endpoint not found", recoverable=True))
                continue
            logger.info("Segmind {} answered HTTP {}", endpoint.name, response.status_code)
            return response, endpoint

        raise RemovalError(RemovalErrorKind.unknown, NO_RESPONSE) from last_error

    async def _retry_with_alternate(
        self,
        endpoint: InferenceEndpoint,
        alternate: str,
        credential: str,
        error: RemovalError,
        accepted: Callable[[], None],
        notify: StatusCallback,
    ) -> InferenceResult:
        logger.info("Duration could not be determined; retrying once with {}", alternate)
        notify("Retrying with direct URL format...")
        try:
            retry = await self._post(endpoint, alternate, credential)
        except TransportError as exc:
            logger.error("Retry with alternate URL shape failed: {}", exc)
        else:
            if retry.ok:
                accepted()
                try:
                    return self._decode(retry)
                except DecodeError as exc:
                    logger.error("Retry with alternate URL shape returned no result: {}", exc)
            else:
                logger.error(
                    "Retry with alternate URL shape also failed: HTTP {} {}",
                    retry.status_code,
                    classify_failure(retry).message,
                )
        raise error.with_message(error.message + HOST_ACCESS_GUIDANCE)

    async def _post(self, endpoint: InferenceEndpoint, source_url: str, credential: str) -> TransportResponse:
        request = InferenceRequest(source_url=source_url, output_encoding=OutputEncoding.binary)
        body = json.dumps(request.payload(endpoint.input_field), separators=(",", ":")).encode("utf-8")
        return await self._transport.request(
            "POST",
            endpoint.url,
            headers={"x-api-key": credential, "Content-Type": "application/json"},
            data=body,
            timeout=self._timeout_seconds,
        )

    def _decode(self, response: TransportResponse) -> InferenceResult:
        result = decode_inference_response(response, self._result_fields)
        if isinstance(result, ResultBlob):
            logger.info("Segmind returned {} bytes of {}", result.size, result.content_type or "binary data")
        else:
            logger.info("Segmind returned result URL {}", result.url)
        return result
