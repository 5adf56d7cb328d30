"""
Ingestion Dispatcher
════════════════════

Turns object-created notifications into flow executions, one per message.

Per message:
  1. receive_count over max_receive_count → failure sink, ack, DROPPED
  2. parse the envelope (first record, key URL-decoded)
       malformed → failure sink, ack, DROPPED
  3. non-.pdf key (dispatcher_pdf_only) → failure sink, ack, DROPPED
  4. FlowInput.for_object(ref, project_name) → FlowStarter.start()
       ok               → ack, STARTED
       FlowStartError   → no ack, RETRY (redelivered after visibility timeout)
       other error      → failure sink, ack, DROPPED (flow_start_error)

A message is acknowledged only after its flow start succeeded or it was
dropped for good. Messages of a batch are handled concurrently, bounded by
dispatcher_concurrency; one message's failure never affects another's ack.

Acknowledgment goes through the optional `queue` (SqsQueue.delete). Without
one (Lambda SQS event source) nothing is deleted here and the caller reports
RETRY messages as batchItemFailures instead.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from docpipeline.core.config import Settings, settings as default_settings
from docpipeline.core.errors import FlowStartError, MalformedNotification
from docpipeline.dispatcher.notifications import parse_notification
from docpipeline.dispatcher.sqs import FailureSink, LoggingFailureSink, QueueError
from docpipeline.flow.starter import FlowStarter
from docpipeline.processing.extractor import is_pdf_key
from docpipeline.schemas.pipeline import (
    BatchResult,
    FlowInput,
    MessageOutcome,
    MessageResult,
    QueueMessage,
)

logger = logging.getLogger(__name__)


class Acknowledger(Protocol):
    async def delete(self, receipt_handle: str) -> None: ...


class Dispatcher:

    def __init__(
        self,
        flow_starter: FlowStarter,
        cfg: Settings | None = None,
        queue: Acknowledger | None = None,
        failure_sink: FailureSink | None = None,
    ) -> None:
        self._starter = flow_starter
        self._cfg = cfg or default_settings
        self._queue = queue
        self._sink = failure_sink or LoggingFailureSink()

    async def handle_batch(self, messages: list[QueueMessage]) -> BatchResult:
        semaphore = asyncio.Semaphore(self._cfg.dispatcher_concurrency)

        async def _bounded(message: QueueMessage) -> MessageResult:
            async with semaphore:
                return await self.handle_message(message)

        results = await asyncio.gather(*(_bounded(m) for m in messages))
        return BatchResult(results=list(results))

    async def handle_message(self, message: QueueMessage) -> MessageResult:
        if message.receive_count > self._cfg.max_receive_count:
            return await self._drop(
                message, "receive_limit_exceeded",
                f"Received {message.receive_count} times "
                f"(limit {self._cfg.max_receive_count})",
            )

        try:
            ref = parse_notification(message.body)
        except MalformedNotification as exc:
            return await self._drop(message, exc.code, exc.message)

        if self._cfg.dispatcher_pdf_only and not is_pdf_key(ref.key):
            return await self._drop(message, "unsupported_type", f"File {ref.key} is not a PDF")

        flow_input = FlowInput.for_object(ref, self._cfg.project_name)

        try:
            execution_id = await self._starter.start(flow_input)
        except FlowStartError as exc:
            logger.warning(
                "Flow start failed, leaving message for redelivery | message_id=%s key=%s error=%s",
                message.message_id, ref.key, exc.message,
            )
            return MessageResult(
                message_id=message.message_id,
                outcome=MessageOutcome.RETRY,
                reason=exc.code,
            )
        except Exception as exc:
            # Not transient: redelivery would fail the same way
            logger.exception(
                "Unexpected flow start error | message_id=%s key=%s",
                message.message_id, ref.key,
            )
            return await self._drop(
                message, "flow_start_error", f"{type(exc).__name__}: {exc}",
            )

        logger.info(
            "Flow start | execution=%s key=%s dest=%s",
            execution_id, ref.key, flow_input.dest_object_key,
        )
        return MessageResult(
            message_id=message.message_id,
            outcome=MessageOutcome.STARTED,
            execution_id=execution_id,
            acknowledged=await self._ack(message),
        )

    async def _drop(self, message: QueueMessage, code: str, detail: str) -> MessageResult:
        logger.warning(
            "Dropping message | message_id=%s code=%s detail=%s",
            message.message_id, code, detail,
        )
        try:
            await self._sink.record(message, f"{code}: {detail}")
        except QueueError as exc:
            # Message stays queued until the sink accepts it
            logger.error(
                "Failure sink unavailable | message_id=%s error=%s",
                message.message_id, exc,
            )
            return MessageResult(
                message_id=message.message_id,
                outcome=MessageOutcome.RETRY,
                reason="failure_sink_unavailable",
            )

        return MessageResult(
            message_id=message.message_id,
            outcome=MessageOutcome.DROPPED,
            reason=code,
            acknowledged=await self._ack(message),
        )

    async def _ack(self, message: QueueMessage) -> bool:
        if self._queue is None:
            return False
        try:
            await self._queue.delete(message.receipt_handle)
        except QueueError as exc:
            # The redelivered message targets the same destination key
            logger.error(
                "Ack failed | message_id=%s error=%s", message.message_id, exc,
            )
            return False
        return True
