"""Local development harness: run one removal session against the live services."""

from __future__ import annotations

import asyncio
import logging
import shutil
import sys
from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname

# Ensure project root is on the import path when executed as a script.
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from watermark_relay.core.config import get_settings  # noqa: E402
from watermark_relay.core.errors import WatermarkRelayError  # noqa: E402
from watermark_relay.core.logging import configure_logging  # noqa: E402
from watermark_relay.schemas.pipeline import ResultBlob, RunSnapshot, playable_url  # noqa: E402
from watermark_relay.services.orchestrator import Orchestrator  # noqa: E402
from watermark_relay.services.session import RemovalSession  # noqa: E402

logger = logging.getLogger(__name__)


def _print_progress(snapshot: RunSnapshot) -> None:
    if snapshot.progress is not None:
        print(f"[{snapshot.progress:3d}%] {snapshot.status}")


async def main(source: Path, destination: Path | None) -> int:
    configure_logging()
    settings = get_settings()
    logger.info(
        "Launching %s %s in %s environment.", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT
    )

    with RemovalSession(
        Orchestrator.from_settings(settings),
        max_upload_bytes=settings.MAX_UPLOAD_BYTES,
        on_change=_print_progress,
    ) as session:
        try:
            session.select(source)
            result = await session.process()
        except WatermarkRelayError as exc:
            print(exc.message, file=sys.stderr)
            return 1

        if result is None:
            return 1
        if isinstance(result, ResultBlob):
            target = destination or Path.cwd() / (session.download_name or "watermark-removed.mp4")
            shutil.copyfile(url2pathname(urlparse(playable_url(result)).path), target)
            print(f"Saved processed video to {target}")
        else:
            print(f"Processed video: {playable_url(result)}")
    return 0


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("usage: remove_watermark.py <video.mp4> [output.mp4]", file=sys.stderr)
        sys.exit(2)
    output = Path(sys.argv[2]) if len(sys.argv) > 2 else None
    try:
        sys.exit(asyncio.run(main(Path(sys.argv[1]), output)))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
