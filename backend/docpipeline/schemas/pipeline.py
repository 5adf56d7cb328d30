"""
Pipeline Data Model: Pydantic Schemas

Covers every payload that crosses a component boundary:
  - queue messages (boto SQS shape and Lambda event-record shape)
  - flow input / flow execution records
  - enrichment request / result
  - stage responses ({statusCode, body}) returned by the Lambda-style handlers
  - dispatcher batch outcomes

Design decisions:
  - dest_object_key is always derived (source key + ".json"); never supplied
    by a notification. Re-processing the same object targets the same key.
  - FlowExecution.status is derived from the state machine state so the two
    can never disagree.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field

RESULT_SUFFIX = ".json"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Source object + queue message
# ---------------------------------------------------------------------------

class SourceObjectRef(BaseModel):
    """One input document. Key is already URL-decoded."""
    model_config = ConfigDict(frozen=True)

    bucket: str = Field(..., min_length=1)
    key:    str = Field(..., min_length=1)

    @property
    def uri(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


class QueueMessage(BaseModel):
    """
    A claimed queue message. Must be deleted only after the flow it triggers
    has been started; until then the visibility timeout keeps it hidden.
    """
    model_config = ConfigDict(frozen=True)

    message_id:     str
    body:           str
    receipt_handle: str
    attributes:     dict[str, str] = Field(default_factory=dict)

    @property
    def receive_count(self) -> int:
        raw = self.attributes.get("ApproximateReceiveCount", "1")
        try:
            return int(raw)
        except ValueError:
            return 1

    @classmethod
    def from_sqs(cls, message: dict[str, Any]) -> QueueMessage:
        """Build from a boto3 ``receive_message`` entry."""
        return cls(
            message_id=message["MessageId"],
            body=message.get("Body", ""),
            receipt_handle=message["ReceiptHandle"],
            attributes=message.get("Attributes") or {},
        )

    @classmethod
    def from_lambda_record(cls, record: dict[str, Any]) -> QueueMessage:
        """Build from one record of a Lambda SQS event."""
        return cls(
            message_id=record["messageId"],
            body=record.get("body", ""),
            receipt_handle=record.get("receiptHandle", ""),
            attributes=record.get("attributes") or {},
        )


# ---------------------------------------------------------------------------
# Flow input / execution
# ---------------------------------------------------------------------------

class FlowInput(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_object_key: str = Field(..., min_length=1)
    project_name:      str
    input_bucket:      str = Field(..., min_length=1)
    dest_object_key:   str = Field(..., min_length=1)

    @classmethod
    def for_object(cls, ref: SourceObjectRef, project_name: str) -> FlowInput:
        return cls(
            source_object_key=ref.key,
            project_name=project_name,
            input_bucket=ref.bucket,
            dest_object_key=destination_key_for(ref.key),
        )


def destination_key_for(source_object_key: str) -> str:
    """Idempotency anchor: the result key is a pure function of the source key."""
    return source_object_key + RESULT_SUFFIX


class FlowState(str, Enum):
    STARTED    = "started"
    EXTRACTING = "extracting"
    ENRICHING  = "enriching"
    COMPLETED  = "completed"
    FAILED     = "failed"


class FlowStatus(str, Enum):
    RUNNING   = "running"
    SUCCEEDED = "succeeded"
    FAILED    = "failed"


class StageError(BaseModel):
    code:    str
    message: str


class FlowExecution(BaseModel):
    execution_id: str
    flow_name:    str
    flow_version: str
    input:        FlowInput
    state:        FlowState = FlowState.STARTED
    error:        StageError | None = None
    result_key:   str | None = None
    started_at:   datetime = Field(default_factory=_utcnow)
    finished_at:  datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> FlowStatus:
        if self.state is FlowState.COMPLETED:
            return FlowStatus.SUCCEEDED
        if self.state is FlowState.FAILED:
            return FlowStatus.FAILED
        return FlowStatus.RUNNING


# ---------------------------------------------------------------------------
# Enrichment
# ---------------------------------------------------------------------------

class EnrichmentMode(str, Enum):
    DEFAULT            = "default"
    EXECUTIVE          = "executive"
    BULLETS            = "bullets"
    DETAILED           = "detailed"
    STRUCTURED_EXTRACT = "structured-extract"

    @classmethod
    def parse(cls, value: str | EnrichmentMode | None) -> EnrichmentMode | None:
        """Return the matching mode, or None when the value is unrecognized."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


class EnrichmentRequest(BaseModel):
    text: str
    mode: str = EnrichmentMode.DEFAULT.value


class EnrichmentResult(BaseModel):
    summary:      str                    # summary text or structured JSON payload
    summary_type: str                    # mode as requested by the caller
    model_id:     str
    structured:   dict[str, Any] | list[Any] | None = None


# ---------------------------------------------------------------------------
# Stage boundary response
# ---------------------------------------------------------------------------

class StageResponse(BaseModel):
    """HTTP-style result returned by every stage entry point."""
    model_config = ConfigDict(populate_by_name=True)

    status_code: int = Field(..., alias="statusCode")
    body:        dict[str, Any]

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


# ---------------------------------------------------------------------------
# Dispatcher outcomes
# ---------------------------------------------------------------------------

class MessageOutcome(str, Enum):
    STARTED = "started"   # flow started, message acknowledged
    DROPPED = "dropped"   # permanent failure, message acknowledged
    RETRY   = "retry"     # left on the queue for redelivery


class MessageResult(BaseModel):
    message_id:   str
    outcome:      MessageOutcome
    execution_id: str | None = None
    reason:       str | None = None
    acknowledged: bool = False


class BatchResult(BaseModel):
    results: list[MessageResult] = Field(default_factory=list)

    def _with(self, outcome: MessageOutcome) -> list[MessageResult]:
        return [r for r in self.results if r.outcome is outcome]

    @property
    def started(self) -> list[MessageResult]:
        return self._with(MessageOutcome.STARTED)

    @property
    def dropped(self) -> list[MessageResult]:
        return self._with(MessageOutcome.DROPPED)

    @property
    def retry(self) -> list[MessageResult]:
        return self._with(MessageOutcome.RETRY)

    def batch_item_failures(self) -> dict[str, list[dict[str, str]]]:
        """Lambda partial batch response: only RETRY messages are redelivered."""
        return {
            "batchItemFailures": [
                {"itemIdentifier": r.message_id} for r in self.retry
            ]
        }
