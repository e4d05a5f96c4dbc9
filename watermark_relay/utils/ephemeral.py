"""Process-local URLs for in-memory bytes (previews and inline results)."""

from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from threading import Lock
from uuid import uuid4

logger = logging.getLogger(__name__)

PREVIEW_SLOT = "preview"
RESULT_SLOT = "result"


class EphemeralUrlStore:
    """Owns at most one local ``file://`` URL per slot.

    Allocating into an occupied slot releases the previous URL first. Every
    URL is released exactly once, either when superseded, on ``release`` or on
    ``close``.
    """

    def __init__(self, root: Path | None = None) -> None:
        base = Path(root) if root else None
        if base is not None:
            base.mkdir(parents=True, exist_ok=True)
        self._dir = Path(tempfile.mkdtemp(prefix="watermark-relay-", dir=base))
        self._slots: dict[str, Path] = {}
        self._lock = Lock()
        self._closed = False

    def allocate(self, slot: str, data: bytes, suffix: str = ".mp4") -> str:
        """Write ``data`` to a fresh file and return its URL."""

        with self._lock:
            if self._closed:
                raise RuntimeError("Ephemeral URL store is closed.")
            self._release_locked(slot)
            path = self._dir / f"{slot}-{uuid4().hex}{suffix}"
            path.write_bytes(data)
            self._slots[slot] = path
        logger.debug("Allocated %s URL at %s (%d bytes)", slot, path, len(data))
        return path.as_uri()

    def url(self, slot: str) -> str | None:
        with self._lock:
            path = self._slots.get(slot)
        return path.as_uri() if path else None

    def release(self, slot: str) -> bool:
        """Release the URL held in ``slot``; returns False if it was empty."""

        with self._lock:
            return self._release_locked(slot)

    def _release_locked(self, slot: str) -> bool:
        path = self._slots.pop(slot, None)
        if path is None:
            return False
        path.unlink(missing_ok=True)
        logger.debug("Released %s URL %s", slot, path)
        return True

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            for slot in list(self._slots):
                self._release_locked(slot)
            self._closed = True
        shutil.rmtree(self._dir, ignore_errors=True)

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "EphemeralUrlStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
