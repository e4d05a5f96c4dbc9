"""Sequence publishing and removal for a single source asset."""

from __future__ import annotations

import logging
import mimetypes
from typing import Callable, Optional
from uuid import uuid4

from watermark_relay.backends.hosting import build_hosting_backends
from watermark_relay.core.config import Settings, get_settings
from watermark_relay.core.errors import ConfigurationError, PipelineError, PublishError
from watermark_relay.schemas.pipeline import (
    ErrorReport,
    InferenceResult,
    PipelineState,
    Progress,
    ResultBlob,
    RunSnapshot,
    SourceAsset,
)
from watermark_relay.services.publisher import Publisher
from watermark_relay.services.remover import Remover, default_endpoints
from watermark_relay.utils.ephemeral import RESULT_SLOT, EphemeralUrlStore
from watermark_relay.utils.transport import RequestsTransport, Transport

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[RunSnapshot], None]

PUBLISH_STARTED = 10
PUBLISHED = 30
ACCEPTED = 60
COMPLETED = 100

MISSING_API_KEY = (
    "Segmind API key not configured. Please set SEGMIND_API_KEY in your environment or .env file."
)


class PipelineRun:
    """Progress, status and error slots owned by one invocation."""

    def __init__(self, on_update: Optional[UpdateCallback] = None) -> None:
        self.run_id = uuid4().hex
        self.state = PipelineState.idle
        self.progress: Optional[Progress] = None
        self.error: Optional[str] = None
        self.result: Optional[InferenceResult] = None
        self.recovered: list[ErrorReport] = []
        self._on_update = on_update

    def advance(self, state: PipelineState | None = None, percent: int | None = None, status: str | None = None) -> None:
        current = self.progress or Progress()
        # Milestones only move forward.
        new_percent = max(current.percent, percent) if percent is not None else current.percent
        self.progress = Progress(percent=new_percent, status=status if status is not None else current.status)
        if state is not None:
            self.state = state
        self._publish()

    def set_status(self, status: str) -> None:
        self.advance(status=status)

    def note_recovered(self, report: ErrorReport) -> None:
        logger.warning("Run %s recovered from: %s", self.run_id, report.message)
        self.recovered.append(report)

    def complete(self, result: InferenceResult, status: str) -> None:
        self.result = result
        self.advance(PipelineState.completed, COMPLETED, status)

    def fail(self, message: str) -> None:
        self.state = PipelineState.failed
        self.progress = None
        self.error = message
        self._publish()

    def snapshot(self) -> RunSnapshot:
        return RunSnapshot(
            run_id=self.run_id,
            state=self.state,
            progress=self.progress.percent if self.progress else None,
            status=self.progress.status if self.progress else "",
            error=self.error,
            result=self.result,
            recovered=tuple(self.recovered),
        )

    def _publish(self) -> None:
        logger.debug(
            "Run %s: %s %s%% %s",
            self.run_id,
            self.state.value,
            self.progress.percent if self.progress else "-",
            self.progress.status if self.progress else self.error,
        )
        if self._on_update:
            self._on_update(self.snapshot())


class Orchestrator:
    """Runs Publisher then Remover and reduces failures to one message."""

    def __init__(
        self,
        publisher: Publisher,
        remover: Remover,
        credential: str | None,
        store: EphemeralUrlStore | None = None,
        preferred_backend_configured: bool = False,
    ) -> None:
        self._publisher = publisher
        self._remover = remover
        self._credential = credential
        self.store = store or EphemeralUrlStore()
        self._preferred_backend_configured = preferred_backend_configured

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        transport: Transport | None = None,
        store: EphemeralUrlStore | None = None,
    ) -> "Orchestrator":
        """Wire the default backends and Segmind endpoints from configuration."""

        settings = settings or get_settings()
        transport = transport or RequestsTransport(default_timeout=settings.INFERENCE_TIMEOUT_SECONDS)
        backends = build_hosting_backends(settings, transport)
        publisher = Publisher(backends, timeout_seconds=settings.UPLOAD_TIMEOUT_SECONDS)
        remover = Remover(
            transport,
            default_endpoints(settings),
            backends=backends,
            timeout_seconds=settings.INFERENCE_TIMEOUT_SECONDS,
        )
        return cls(
            publisher,
            remover,
            credential=settings.SEGMIND_API_KEY,
            store=store or EphemeralUrlStore(settings.WORK_DIR / ".watermark-relay"),
            preferred_backend_configured=settings.cloudinary_configured,
        )

    async def run(
        self,
        asset: SourceAsset,
        on_update: Optional[UpdateCallback] = None,
        result_slot: str = RESULT_SLOT,
    ) -> InferenceResult:
        """Publish ``asset``, submit it for removal and return a playable result.

        Raises:
            ConfigurationError: no API key is configured; nothing was attempted.
            PipelineError: any failure after the run started.
        """

        if not self._credential:
            raise ConfigurationError(MISSING_API_KEY, error_code="missing_api_key")

        run = PipelineRun(on_update)
        logger.info("Run %s started for %s (%.2f MB)", run.run_id, asset.name, asset.size_megabytes)

        try:
            run.advance(PipelineState.publishing, PUBLISH_STARTED, "Preparing video for processing...")
            public_url = await self._publisher.publish(
                asset, on_status=run.set_status, on_fallback=run.note_recovered
            )

            run.advance(PipelineState.submitting, PUBLISHED, "Sending request to Segmind API...")
            result = await self._remover.remove(
                public_url,
                self._credential,
                on_accepted=lambda: run.advance(
                    percent=ACCEPTED, status="Processing video (this may take a few minutes)..."
                ),
                on_status=run.set_status,
                on_fallback=run.note_recovered,
            )
            result = self._materialize(result, result_slot)
        except Exception as exc:  # noqa: BLE001 - every failure ends the run with one message
            message = f"Error processing video: {self._user_message(exc)}"
            logger.error("Run %s failed: %s", run.run_id, message)
            run.fail(message)
            raise PipelineError(message, report=ErrorReport(message=message, recoverable=False)) from exc

        run.complete(result, "Watermark removed successfully!")
        logger.info("Run %s completed with %s result", run.run_id, result.kind)
        return result

    def _materialize(self, result: InferenceResult, slot: str) -> InferenceResult:
        if not isinstance(result, ResultBlob) or result.url:
            return result
        media_type = result.content_type.split(";")[0].strip()
        suffix = mimetypes.guess_extension(media_type) if media_type.startswith("video/") else None
        url = self.store.allocate(slot, result.data, suffix=suffix or ".mp4")
        return result.model_copy(update={"url": url})

    def _user_message(self, exc: Exception) -> str:
        if isinstance(exc, PublishError):
            names = ", ".join(exc.attempted) if exc.attempted else "none configured"
            hint = (
                "Cloudinary upload failed and all fallback services failed. Please check your Cloudinary configuration."
                if self._preferred_backend_configured
                else "Please configure Cloudinary (CLOUDINARY_CLOUD_NAME and CLOUDINARY_UPLOAD_PRESET) "
                "for reliable uploads."
            )
            return (
                "Failed to upload video to temporary storage after trying all hosting services "
                f"({names}). {hint}"
            )
        return getattr(exc, "message", None) or str(exc) or "Unknown error occurred"

    def close(self) -> None:
        self.store.close()
