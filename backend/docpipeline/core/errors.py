"""
Pipeline Error Taxonomy

Every stage converts its failures into a PipelineError subclass carrying:

  code        : machine-readable error code ("download_failed", "empty", …)
  kind        : ErrorKind, decides retryability
  status_code : HTTP-style code reused at stage boundaries
                (400 invalid input, 404 not found, 422 unprocessable, 500 other)

Only TRANSIENT_INFRA errors are retryable, and only the dispatcher acts on
that (by leaving the queue message for redelivery). Everything else is
terminal for the document's flow execution.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    INVALID_INPUT      = "invalid_input"       # caller error
    NOT_FOUND          = "not_found"           # missing source object
    UNPROCESSABLE      = "unprocessable"       # extraction yielded nothing
    TRANSIENT_INFRA    = "transient_infra"     # storage / queue / inference network errors
    MALFORMED_RESPONSE = "malformed_response"  # unexpected shape from inference endpoint
    INTERNAL           = "internal"


_DEFAULT_STATUS: dict[ErrorKind, int] = {
    ErrorKind.INVALID_INPUT:      400,
    ErrorKind.NOT_FOUND:          404,
    ErrorKind.UNPROCESSABLE:      422,
    ErrorKind.TRANSIENT_INFRA:    500,
    ErrorKind.MALFORMED_RESPONSE: 500,
    ErrorKind.INTERNAL:           500,
}


class PipelineError(Exception):
    """Base class for all structured pipeline failures."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        kind: ErrorKind = ErrorKind.INTERNAL,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.kind = kind
        self.status_code = status_code or _DEFAULT_STATUS[kind]

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT_INFRA

    def to_body(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, kind={self.kind.value}, message={self.message!r})"


# ---------------------------------------------------------------------------
# Text extraction
# ---------------------------------------------------------------------------

class ExtractionError(PipelineError):

    @classmethod
    def invalid_input(cls, message: str) -> ExtractionError:
        return cls("invalid_input", message, kind=ErrorKind.INVALID_INPUT)

    @classmethod
    def download_failed(cls, message: str, *, missing: bool) -> ExtractionError:
        # Both cases surface as 404; only the kind tells them apart
        kind = ErrorKind.NOT_FOUND if missing else ErrorKind.TRANSIENT_INFRA
        return cls("download_failed", message, kind=kind, status_code=404)

    @classmethod
    def empty(cls) -> ExtractionError:
        return cls(
            "empty",
            "Could not extract text from PDF. The file may be empty or corrupted.",
            kind=ErrorKind.UNPROCESSABLE,
        )

    @classmethod
    def unprocessable(cls, message: str) -> ExtractionError:
        return cls("unprocessable", message, kind=ErrorKind.UNPROCESSABLE)

    @classmethod
    def timeout(cls, seconds: float) -> ExtractionError:
        return cls(
            "timeout",
            f"Text extraction exceeded {seconds:.0f}s",
            kind=ErrorKind.TRANSIENT_INFRA,
        )


# ---------------------------------------------------------------------------
# Inference + enrichment
# ---------------------------------------------------------------------------

class InferenceError(PipelineError):
    """Transport or API failure talking to the inference endpoint."""

    def __init__(self, message: str, *, code: str = "inference_failed") -> None:
        super().__init__(code, message, kind=ErrorKind.TRANSIENT_INFRA)


class EnrichmentError(PipelineError):

    @classmethod
    def invalid_input(cls, message: str) -> EnrichmentError:
        return cls("invalid_input", message, kind=ErrorKind.INVALID_INPUT)

    @classmethod
    def malformed_response(cls, message: str) -> EnrichmentError:
        return cls("malformed_response", message, kind=ErrorKind.MALFORMED_RESPONSE)

    @classmethod
    def from_inference(cls, exc: InferenceError) -> EnrichmentError:
        return cls(exc.code, exc.message, kind=exc.kind)


# ---------------------------------------------------------------------------
# Dispatcher + flow
# ---------------------------------------------------------------------------

class MalformedNotification(PipelineError):
    """Permanent: the queue message can never produce a flow input."""

    def __init__(self, message: str, *, code: str = "malformed_notification") -> None:
        super().__init__(code, message, kind=ErrorKind.INVALID_INPUT)


class FlowStartError(PipelineError):
    """Starting a flow execution failed for a transient infrastructure reason."""

    def __init__(self, message: str) -> None:
        super().__init__("flow_start_failed", message, kind=ErrorKind.TRANSIENT_INFRA)


class InvalidTransition(PipelineError):

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            "invalid_transition",
            f"Flow cannot move from {current} to {target}",
            kind=ErrorKind.INTERNAL,
        )
