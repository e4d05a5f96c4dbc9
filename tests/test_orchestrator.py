import asyncio
from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname

import pytest

from fakes import V1_URL, V2_URL, FakeTransport, StubBackend, json_response, make_asset, raw_response
from watermark_relay.core.config import Settings
from watermark_relay.core.errors import AssetValidationError, ConfigurationError, HostingError, PipelineError
from watermark_relay.schemas.pipeline import (
    InferenceEndpoint,
    PipelineState,
    ResultBlob,
    ResultUrl,
    SourceAsset,
    playable_url,
)
from watermark_relay.services.orchestrator import Orchestrator
from watermark_relay.services.publisher import Publisher
from watermark_relay.services.remover import Remover
from watermark_relay.utils.ephemeral import EphemeralUrlStore

ENDPOINTS = [InferenceEndpoint(name="v2", url=V2_URL), InferenceEndpoint(name="v1", url=V1_URL)]


def _orchestrator(tmp_path, backends, transport, credential="key", timeout=30.0, **kwargs) -> Orchestrator:
    return Orchestrator(
        Publisher(backends, timeout_seconds=timeout),
        Remover(transport, ENDPOINTS, backends=backends),
        credential,
        store=EphemeralUrlStore(tmp_path),
        **kwargs,
    )


def _local_path(url: str) -> Path:
    return Path(url2pathname(urlparse(url).path))


def test_end_to_end_with_timeout_and_endpoint_fallback(tmp_path) -> None:
    slow = StubBackend("slow", url="https://slow.example/v.mp4", delay=5)
    second = StubBackend("second", url="https://host/dl/abc/video.mp4")
    transport = FakeTransport(
        {
            V2_URL: [json_response({"message": "Not Found"}, status=404, reason="Not Found")],
            V1_URL: [json_response({"output": "https://cdn/out.mp4", "status": "success"})],
        }
    )
    snapshots = []

    result = asyncio.run(
        _orchestrator(tmp_path, [slow, second], transport, timeout=0.05).run(
            make_asset(size=2 * 1024 * 1024), on_update=snapshots.append
        )
    )

    assert result == ResultUrl(url="https://cdn/out.mp4")
    assert transport.sent_inputs() == ["https://host/dl/abc/video.mp4"] * 2

    milestones = []
    for snapshot in snapshots:
        if snapshot.progress is not None and (not milestones or milestones[-1] != snapshot.progress):
            milestones.append(snapshot.progress)
    assert milestones == [10, 30, 60, 100]
    assert all(snapshot.error is None for snapshot in snapshots)

    final = snapshots[-1]
    assert final.state is PipelineState.completed
    assert final.status == "Watermark removed successfully!"
    assert final.result == result
    assert [report.message for report in final.recovered] == [
        "slow: Upload timeout after 0.05 seconds",
        "Segmind v2 endpoint not found",
    ]


def test_progress_never_moves_backwards(tmp_path) -> None:
    backend = StubBackend("host", url="https://host.example/v.mp4")
    transport = FakeTransport({V2_URL: [json_response({"output": "https://cdn/out.mp4"})]})
    percents = []

    asyncio.run(
        _orchestrator(tmp_path, [backend], transport).run(
            make_asset(), on_update=lambda snapshot: percents.append(snapshot.progress)
        )
    )

    assert percents == sorted(percents)


def test_status_texts_follow_the_run(tmp_path) -> None:
    backend = StubBackend("host", url="https://host.example/v.mp4")
    transport = FakeTransport({V2_URL: [json_response({"output": "https://cdn/out.mp4"})]})
    statuses = []

    asyncio.run(
        _orchestrator(tmp_path, [backend], transport).run(
            make_asset(), on_update=lambda snapshot: statuses.append(snapshot.status)
        )
    )

    assert statuses == [
        "Preparing video for processing...",
        "Uploading to host...",
        "Uploaded to host successfully",
        "Sending request to Segmind API...",
        "Processing video (this may take a few minutes)...",
        "Watermark removed successfully!",
    ]


def test_all_backends_failing_never_reaches_inference(tmp_path) -> None:
    backends = [StubBackend(name, error=HostingError(name, "down")) for name in ("0x0.st", "tmpfiles.org", "file.io")]
    transport = FakeTransport()
    snapshots = []

    with pytest.raises(PipelineError) as excinfo:
        asyncio.run(_orchestrator(tmp_path, backends, transport).run(make_asset(), on_update=snapshots.append))

    message = excinfo.value.message
    assert message.startswith("Error processing video: Failed to upload video to temporary storage")
    assert "(0x0.st, tmpfiles.org, file.io)" in message
    assert "CLOUDINARY_CLOUD_NAME" in message
    assert transport.calls == []
    assert snapshots[-1].state is PipelineState.failed
    assert snapshots[-1].progress is None
    assert snapshots[-1].error == message


def test_publish_failure_hint_when_cloudinary_is_configured(tmp_path) -> None:
    backends = [StubBackend("cloudinary", error=HostingError("cloudinary", "bad preset"))]

    with pytest.raises(PipelineError) as excinfo:
        asyncio.run(
            _orchestrator(tmp_path, backends, FakeTransport(), preferred_backend_configured=True).run(make_asset())
        )

    assert "Please check your Cloudinary configuration." in excinfo.value.message


def test_removal_failure_is_reported_once(tmp_path) -> None:
    backend = StubBackend("host", url="https://host.example/v.mp4")
    transport = FakeTransport({V2_URL: [json_response({"message": "nope"}, status=401)]})

    with pytest.raises(PipelineError) as excinfo:
        asyncio.run(_orchestrator(tmp_path, [backend], transport).run(make_asset()))

    assert excinfo.value.message == "Error processing video: Invalid API key. Please check your SEGMIND_API_KEY."
    assert excinfo.value.report.recoverable is False


@pytest.mark.parametrize("credential", [None, ""])
def test_missing_credential_fails_before_any_request(tmp_path, credential) -> None:
    backend = StubBackend("host", url="https://host.example/v.mp4")
    transport = FakeTransport()
    snapshots = []

    with pytest.raises(ConfigurationError):
        asyncio.run(
            _orchestrator(tmp_path, [backend], transport, credential=credential).run(
                make_asset(), on_update=snapshots.append
            )
        )

    assert backend.calls == 0
    assert transport.calls == []
    assert snapshots == []


def test_binary_result_is_materialized_to_local_url(tmp_path) -> None:
    payload = b"\x00\x00\x00\x18ftypmp42" * 100
    backend = StubBackend("host", url="https://host.example/v.mp4")
    transport = FakeTransport({V2_URL: [raw_response(payload, content_type="video/mp4")]})
    orchestrator = _orchestrator(tmp_path, [backend], transport)

    result = asyncio.run(orchestrator.run(make_asset()))

    assert isinstance(result, ResultBlob)
    assert result.size == len(payload)
    assert playable_url(result).startswith("file://")
    assert _local_path(result.url).read_bytes() == payload
    assert orchestrator.store.url("result") == result.url

    orchestrator.close()
    assert not _local_path(result.url).exists()


def test_runs_are_independent(tmp_path) -> None:
    backend = StubBackend("host", url="https://host.example/v.mp4")
    transport = FakeTransport({V2_URL: [json_response({"output": "https://cdn/out.mp4"})]})
    orchestrator = _orchestrator(tmp_path, [backend], transport)
    first, second = [], []

    asyncio.run(orchestrator.run(make_asset(), on_update=first.append))
    asyncio.run(orchestrator.run(make_asset(), on_update=second.append))

    assert [s.progress for s in first] == [s.progress for s in second]
    assert first[-1].result == second[-1].result
    assert first[0].run_id != second[0].run_id
    assert len(transport.calls) == 2


def test_from_settings_wires_default_backends_and_credential(tmp_path) -> None:
    settings = Settings(_env_file=None, SEGMIND_API_KEY="key", WORK_DIR=tmp_path, UPLOAD_TIMEOUT_SECONDS=5)
    transport = FakeTransport(
        {
            "https://0x0.st": [raw_response(b"https://0x0.st/abc.mp4\n", content_type="text/plain")],
            V2_URL: [raw_response(b"processed")],
        }
    )
    orchestrator = Orchestrator.from_settings(settings, transport=transport)

    try:
        result = asyncio.run(orchestrator.run(make_asset()))
        assert str(tmp_path) in playable_url(result)
    finally:
        orchestrator.close()

    assert [call["url"] for call in transport.calls] == ["https://0x0.st", V2_URL]
    assert transport.calls[1]["headers"]["x-api-key"] == "key"
    assert orchestrator.store.closed


def test_fallbacks_are_recorded_as_recoverable_reports(tmp_path) -> None:
    backends = [
        StubBackend("first", error=HostingError("first", "first upload failed: HTTP 503")),
        StubBackend("second", url="https://second.example/v.mp4"),
    ]
    transport = FakeTransport(
        {
            V2_URL: [json_response({"message": "Not Found"}, status=404)],
            V1_URL: [json_response({"output": "https://cdn/out.mp4"})],
        }
    )
    snapshots = []

    asyncio.run(_orchestrator(tmp_path, backends, transport).run(make_asset(), on_update=snapshots.append))

    recovered = snapshots[-1].recovered
    assert [report.message for report in recovered] == [
        "first: first upload failed: HTTP 503",
        "Segmind v2 endpoint not found",
    ]
    assert all(report.recoverable for report in recovered)
    assert snapshots[-1].error is None


def test_final_backend_failure_is_not_reported_as_recovered(tmp_path) -> None:
    backends = [StubBackend("only", error=HostingError("only", "down"))]
    snapshots = []

    with pytest.raises(PipelineError):
        asyncio.run(_orchestrator(tmp_path, backends, FakeTransport()).run(make_asset(), on_update=snapshots.append))

    assert snapshots[-1].recovered == ()


def test_invalid_asset_cannot_reach_the_pipeline(tmp_path) -> None:
    backend = StubBackend("host", url="https://host.example/v.mp4")
    transport = FakeTransport()
    orchestrator = _orchestrator(tmp_path, [backend], transport)

    with pytest.raises(AssetValidationError):
        asyncio.run(orchestrator.run(SourceAsset(name="notes.txt", media_type="text/plain", data=b"")))

    assert backend.calls == 0
    assert transport.calls == []
