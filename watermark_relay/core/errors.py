"""Exception hierarchy for the upload and submission pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Optional, Sequence

if TYPE_CHECKING:
    from watermark_relay.schemas.pipeline import ErrorReport, RemovalErrorKind


class WatermarkRelayError(Exception):
    """Base exception for the watermark relay pipeline."""

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[Dict] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}


class ConfigurationError(WatermarkRelayError):
    """Raised when a required setting (such as the API key) is missing."""


class AssetValidationError(WatermarkRelayError):
    """Raised when a selected file is rejected before entering the pipeline."""


class TransportError(WatermarkRelayError):
    """Raised when an HTTP request could not be completed."""


class AttemptTimeoutError(TransportError):
    """Raised when a raced call did not finish within its budget."""


class HostingError(WatermarkRelayError):
    """Raised by a single hosting backend when it cannot publish a file."""

    def __init__(self, backend: str, message: str):
        super().__init__(message, error_code="hosting_failed", details={"backend": backend})
        self.backend = backend


class PublishError(WatermarkRelayError):
    """Raised when every configured hosting backend failed."""

    def __init__(self, attempted: Sequence[str], last_errors: Sequence[str]):
        names = ", ".join(attempted) if attempted else "none configured"
        super().__init__(
            f"All hosting backends failed ({names}).",
            error_code="publish_failed",
            details={"attempted": list(attempted), "last_errors": list(last_errors)},
        )
        self.attempted = list(attempted)
        self.last_errors = list(last_errors)


class RemovalError(WatermarkRelayError):
    """Raised when the inference service rejected or failed a submission."""

    def __init__(self, kind: "RemovalErrorKind", message: str, status_code: Optional[int] = None):
        super().__init__(message, error_code=kind.value, details={"status_code": status_code})
        self.kind = kind
        self.status_code = status_code

    def with_message(self, message: str) -> "RemovalError":
        return RemovalError(self.kind, message, status_code=self.status_code)


class DecodeError(WatermarkRelayError):
    """Raised when a successful response has no recognisable shape."""


class PipelineError(WatermarkRelayError):
    """Single user-facing failure raised at the orchestrator boundary."""

    def __init__(self, message: str, report: "ErrorReport"):
        super().__init__(message, error_code="pipeline_failed")
        self.report = report
