"""Pydantic models shared by the publisher, remover and orchestrator."""

from __future__ import annotations

import mimetypes
from enum import Enum
from pathlib import Path
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, model_validator

from watermark_relay.core.errors import AssetValidationError

DEFAULT_MAX_UPLOAD_BYTES = 100 * 1024 * 1024


def _format_megabytes(value: int) -> str:
    megabytes = value / (1024 * 1024)
    return f"{megabytes:.0f}MB" if megabytes.is_integer() else f"{megabytes:.2f}MB"


def _too_large(name: str, size: int, max_bytes: int) -> AssetValidationError:
    return AssetValidationError(
        f"File size too large. Maximum size is {_format_megabytes(max_bytes)} for processing.",
        error_code="too_large",
        details={"name": name, "size": size, "max_bytes": max_bytes},
    )


class SourceAsset(BaseModel):
    """The user-selected video file, immutable once accepted.

    Type, emptiness and size are checked on every construction path, so an
    invalid asset never exists. The size limit defaults to
    ``DEFAULT_MAX_UPLOAD_BYTES`` and can be lowered through the validation
    context key ``max_bytes``.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Display name of the selected file.")
    media_type: str = Field(default="", description="Declared media type, e.g. 'video/mp4'.")
    size: int = Field(..., ge=0, description="Payload length in bytes.")
    data: bytes = Field(..., repr=False, description="Raw file payload.")

    @model_validator(mode="before")
    @classmethod
    def _fill_defaults(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        values = dict(values)
        if "size" not in values and "data" in values:
            values["size"] = len(values["data"])
        if not values.get("media_type"):
            values["media_type"] = mimetypes.guess_type(str(values.get("name", "")))[0] or ""
        return values

    @model_validator(mode="after")
    def _check_constraints(self, info: ValidationInfo) -> "SourceAsset":
        max_bytes = (info.context or {}).get("max_bytes", DEFAULT_MAX_UPLOAD_BYTES)
        if not self.media_type.startswith("video/") and not self.name.lower().endswith(".mp4"):
            raise AssetValidationError(
                "Please select an MP4 video file.",
                error_code="invalid_type",
                details={"name": self.name, "media_type": self.media_type},
            )
        if not self.data:
            raise AssetValidationError(
                "The selected file is empty.",
                error_code="empty_file",
                details={"name": self.name},
            )
        if self.size != len(self.data):
            raise ValueError("size must match the payload length.")
        if self.size > max_bytes:
            raise _too_large(self.name, self.size, max_bytes)
        return self

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        *,
        name: str,
        media_type: str | None = None,
        max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
    ) -> "SourceAsset":
        """Validate a payload against ``max_bytes`` and build an asset."""

        return cls.model_validate(
            {"name": name, "media_type": media_type or "", "data": data},
            context={"max_bytes": max_bytes},
        )

    @classmethod
    def from_path(
        cls,
        path: Path,
        *,
        media_type: str | None = None,
        max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
    ) -> "SourceAsset":
        """Read a local file into an asset, checking the size before reading."""

        path = Path(path)
        try:
            size = path.stat().st_size
            if size > max_bytes:
                raise _too_large(path.name, size, max_bytes)
            data = path.read_bytes()
        except OSError as exc:
            raise AssetValidationError(
                f"Could not read the selected file: {path.name}",
                error_code="unreadable_file",
                details={"path": str(path), "reason": str(exc)},
            ) from exc
        return cls.from_bytes(data, name=path.name, media_type=media_type, max_bytes=max_bytes)

    @property
    def size_megabytes(self) -> float:
        return self.size / (1024 * 1024)


class PublicUrl(BaseModel):
    """URL of a published asset, tagged with the backend that produced it."""

    model_config = ConfigDict(frozen=True)

    url: str
    backend: str

    def __str__(self) -> str:
        return self.url


class OutputEncoding(str, Enum):
    """How the inference service should encode its output."""

    binary = "binary"
    base64 = "base64"


class InferenceEndpoint(BaseModel):
    """One address of the inference service and the input field it expects."""

    model_config = ConfigDict(frozen=True)

    name: str
    url: str
    input_field: str = "input"


class InferenceRequest(BaseModel):
    """A single submission to the inference service."""

    model_config = ConfigDict(frozen=True)

    source_url: str
    output_encoding: OutputEncoding = OutputEncoding.binary

    def payload(self, input_field: str = "input") -> dict[str, Any]:
        return {input_field: self.source_url, "base64": self.output_encoding is OutputEncoding.base64}


class ResultUrl(BaseModel):
    """Remote pointer to the processed video."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["url"] = "url"
    url: str


class ResultBlob(BaseModel):
    """Processed video bytes returned inline by the inference service."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["blob"] = "blob"
    data: bytes = Field(..., repr=False)
    content_type: str = ""
    url: Optional[str] = Field(default=None, description="Ephemeral local URL once materialized.")

    @property
    def size(self) -> int:
        return len(self.data)


InferenceResult = Union[ResultUrl, ResultBlob]


def playable_url(result: InferenceResult) -> str:
    """Return the URL a player or download link should use for a result."""

    if result.url is None:
        raise ValueError("Binary result has not been materialized to a local URL.")
    return result.url


class PipelineState(str, Enum):
    """Lifecycle state of a single pipeline run."""

    idle = "idle"
    publishing = "publishing"
    submitting = "submitting"
    completed = "completed"
    failed = "failed"


class Progress(BaseModel):
    """Latest progress checkpoint; replaced on every transition."""

    model_config = ConfigDict(frozen=True)

    percent: int = Field(default=0, ge=0, le=100)
    status: str = ""


class ErrorReport(BaseModel):
    """Error summary.

    Recoverable reports describe a failure the pipeline routed around through
    a fallback or the duration retry. An unrecoverable report ends the run.
    """

    model_config = ConfigDict(frozen=True)

    message: str
    recoverable: bool = False


class RunSnapshot(BaseModel):
    """What observers see after each transition of a run."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    state: PipelineState = PipelineState.idle
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    status: str = ""
    error: Optional[str] = None
    result: Optional[InferenceResult] = None
    recovered: tuple[ErrorReport, ...] = ()


class RemovalErrorKind(str, Enum):
    """Classification of inference service failures."""

    unauthorized = "unauthorized"
    forbidden = "forbidden"
    insufficient_credit = "insufficient_credit"
    rate_limited = "rate_limited"
    bad_response = "bad_response"
    duration_undetectable = "duration_undetectable"
    unknown = "unknown"


class PublishAttempt(BaseModel):
    """A failed attempt against one hosting backend."""

    model_config = ConfigDict(frozen=True)

    backend: str
    error: str
