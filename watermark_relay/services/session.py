"""Caller-side session: file selection, preview and result URLs, latest run state."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from watermark_relay.core.errors import AssetValidationError, WatermarkRelayError
from watermark_relay.schemas.pipeline import (
    DEFAULT_MAX_UPLOAD_BYTES,
    InferenceResult,
    PipelineState,
    RunSnapshot,
    SourceAsset,
    playable_url,
)
from watermark_relay.services.orchestrator import Orchestrator
from watermark_relay.utils.ephemeral import PREVIEW_SLOT, RESULT_SLOT

logger = logging.getLogger(__name__)

READY_STATUS = "File selected. Ready to remove watermark."


class RemovalSession:
    """Holds what a front end renders and applies last-invocation-wins.

    Runs cannot be cancelled, so every ``process`` call takes a generation
    number; a run that settles after a newer one started is discarded.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
        on_change: Optional[Callable[[RunSnapshot], None]] = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._store = orchestrator.store
        self._max_upload_bytes = max_upload_bytes
        self._on_change = on_change
        self._asset: Optional[SourceAsset] = None
        self._generation = 0
        self._result: Optional[InferenceResult] = None
        self._result_slot: Optional[str] = None
        self._snapshot: Optional[RunSnapshot] = None
        self._status = ""
        self._error: Optional[str] = None

    @property
    def asset(self) -> Optional[SourceAsset]:
        return self._asset

    @property
    def preview_url(self) -> Optional[str]:
        return self._store.url(PREVIEW_SLOT)

    @property
    def result(self) -> Optional[InferenceResult]:
        return self._result

    @property
    def result_url(self) -> Optional[str]:
        return playable_url(self._result) if self._result else None

    @property
    def snapshot(self) -> Optional[RunSnapshot]:
        return self._snapshot

    @property
    def status(self) -> str:
        return self._snapshot.status if self._snapshot else self._status

    @property
    def error(self) -> Optional[str]:
        return self._snapshot.error if self._snapshot and self._snapshot.error else self._error

    @property
    def is_processing(self) -> bool:
        return self._snapshot is not None and self._snapshot.state in {
            PipelineState.publishing,
            PipelineState.submitting,
        }

    @property
    def download_name(self) -> Optional[str]:
        return f"watermark-removed-{self._asset.name}" if self._asset else None

    def select(self, source: SourceAsset | Path | str) -> SourceAsset:
        """Accept a new file; a rejected file leaves the previous selection intact."""

        try:
            if isinstance(source, SourceAsset):
                # Assets built elsewhere were checked against the default limit only.
                asset = SourceAsset.from_bytes(
                    source.data,
                    name=source.name,
                    media_type=source.media_type,
                    max_bytes=self._max_upload_bytes,
                )
            else:
                asset = SourceAsset.from_path(Path(source), max_bytes=self._max_upload_bytes)
        except AssetValidationError as exc:
            self._error = exc.message
            logger.warning("Rejected selection: %s", exc.message)
            raise

        self._asset = asset
        # A run still in flight belongs to the previous selection.
        self._generation += 1
        self._store.allocate(PREVIEW_SLOT, asset.data, suffix=Path(asset.name).suffix or ".mp4")
        self._discard_result()
        self._snapshot = None
        self._error = None
        self._status = READY_STATUS
        logger.info("Selected %s (%.2f MB)", asset.name, asset.size_megabytes)
        return asset

    async def process(self) -> Optional[InferenceResult]:
        """Run the pipeline for the selected file.

        Returns the result, or None when a newer run superseded this one,
        whether the superseded run succeeded or failed.
        """

        if self._asset is None:
            self._error = "Please select a video file first."
            raise AssetValidationError(self._error, error_code="no_selection")

        self._generation += 1
        generation = self._generation
        slot = f"{RESULT_SLOT}-{generation}"
        self._discard_result()
        self._error = None

        def _track(snapshot: RunSnapshot) -> None:
            if generation != self._generation:
                return
            self._snapshot = snapshot
            if self._on_change:
                self._on_change(snapshot)

        try:
            result = await self._orchestrator.run(self._asset, on_update=_track, result_slot=slot)
        except WatermarkRelayError as exc:
            self._store.release(slot)
            if generation != self._generation:
                logger.info("Discarding failure of superseded run %d: %s", generation, exc.message)
                return None
            self._error = exc.message
            raise

        if generation != self._generation:
            logger.info("Discarding result of superseded run %d", generation)
            self._store.release(slot)
            return None

        self._result = result
        self._result_slot = slot
        return result

    def _discard_result(self) -> None:
        if self._result_slot:
            self._store.release(self._result_slot)
        self._result = None
        self._result_slot = None

    def close(self) -> None:
        """Release every URL the session owns."""

        self._discard_result()
        self._store.release(PREVIEW_SLOT)
        self._orchestrator.close()

    def __enter__(self) -> "RemovalSession":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
