"""
SQS adapters for the dispatcher.

  SqsQueue           receive / delete / send against one queue URL
  LoggingFailureSink permanent failures are only logged (default)
  QueueFailureSink   permanent failures are forwarded to a dead-letter queue
  SqsPoller          long-poll loop feeding Dispatcher.handle_batch

An aioboto3 client is opened per call, like the S3 store.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Protocol

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from docpipeline.core.config import Settings, settings as default_settings
from docpipeline.schemas.pipeline import BatchResult, QueueMessage

if TYPE_CHECKING:
    from docpipeline.dispatcher.service import Dispatcher

logger = logging.getLogger(__name__)


class QueueError(RuntimeError):
    """SQS receive/delete/send failed."""


class SqsQueue:

    def __init__(
        self,
        queue_url: str,
        cfg: Settings | None = None,
        session: aioboto3.Session | None = None,
    ) -> None:
        if not queue_url:
            raise ValueError("queue_url is required")
        self.queue_url = queue_url
        self._cfg = cfg or default_settings
        self._session = session or aioboto3.Session()

    def _client(self):
        return self._session.client("sqs", region_name=self._cfg.aws_region)

    async def receive(
        self,
        max_messages: int = 1,
        wait_seconds: int = 20,
        visibility_timeout: int = 300,
    ) -> list[QueueMessage]:
        async with self._client() as sqs:
            try:
                resp = await sqs.receive_message(
                    QueueUrl=self.queue_url,
                    MaxNumberOfMessages=max_messages,
                    WaitTimeSeconds=wait_seconds,
                    VisibilityTimeout=visibility_timeout,
                    AttributeNames=["ApproximateReceiveCount"],
                )
            except (ClientError, BotoCoreError) as exc:
                raise QueueError(f"SQS receive_message failed: {exc}") from exc

        return [QueueMessage.from_sqs(m) for m in resp.get("Messages", [])]

    async def delete(self, receipt_handle: str) -> None:
        async with self._client() as sqs:
            try:
                await sqs.delete_message(QueueUrl=self.queue_url, ReceiptHandle=receipt_handle)
            except (ClientError, BotoCoreError) as exc:
                raise QueueError(f"SQS delete_message failed: {exc}") from exc

    async def send(self, body: str) -> str:
        async with self._client() as sqs:
            try:
                resp = await sqs.send_message(QueueUrl=self.queue_url, MessageBody=body)
            except (ClientError, BotoCoreError) as exc:
                raise QueueError(f"SQS send_message failed: {exc}") from exc
        return resp["MessageId"]


# ---------------------------------------------------------------------------
# Failure sinks
# ---------------------------------------------------------------------------

class FailureSink(Protocol):
    async def record(self, message: QueueMessage, reason: str) -> None: ...


class LoggingFailureSink:

    async def record(self, message: QueueMessage, reason: str) -> None:
        logger.error(
            "Dropped message | message_id=%s receive_count=%d reason=%s body=%.500s",
            message.message_id, message.receive_count, reason, message.body,
        )


class QueueFailureSink:
    """Forwards the original body plus the drop reason to a dead-letter queue."""

    def __init__(self, queue: SqsQueue) -> None:
        self._queue = queue

    async def record(self, message: QueueMessage, reason: str) -> None:
        payload = json.dumps({
            "message_id":    message.message_id,
            "reason":        reason,
            "receive_count": message.receive_count,
            "body":          message.body,
        })
        await self._queue.send(payload)
        logger.warning(
            "Message sent to DLQ | message_id=%s reason=%s queue=%s",
            message.message_id, reason, self._queue.queue_url,
        )


def get_failure_sink(cfg: Settings | None = None) -> FailureSink:
    cfg = cfg or default_settings
    if cfg.dead_letter_queue_url:
        return QueueFailureSink(SqsQueue(cfg.dead_letter_queue_url, cfg))
    return LoggingFailureSink()


# ---------------------------------------------------------------------------
# Poller
# ---------------------------------------------------------------------------

class SqsPoller:

    def __init__(
        self,
        queue: SqsQueue,
        dispatcher: Dispatcher,
        cfg: Settings | None = None,
        error_backoff_seconds: float = 5.0,
    ) -> None:
        self._queue = queue
        self._dispatcher = dispatcher
        self._cfg = cfg or default_settings
        self._backoff = error_backoff_seconds

    async def run_once(self) -> BatchResult:
        messages = await self._queue.receive(
            max_messages=self._cfg.sqs_batch_size,
            wait_seconds=self._cfg.sqs_wait_time_seconds,
            visibility_timeout=self._cfg.sqs_visibility_timeout,
        )
        if not messages:
            return BatchResult()
        return await self._dispatcher.handle_batch(messages)

    async def run(self, stop_event: asyncio.Event) -> None:
        logger.info("Poller started | queue=%s", self._queue.queue_url)

        while not stop_event.is_set():
            try:
                result = await self.run_once()
            except QueueError as exc:
                logger.error("Receive failed, backing off %.0fs | error=%s", self._backoff, exc)
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self._backoff)
                except asyncio.TimeoutError:
                    pass
                continue

            if result.results:
                logger.info(
                    "Batch done | started=%d dropped=%d retry=%d",
                    len(result.started), len(result.dropped), len(result.retry),
                )

        logger.info("Poller stopped | queue=%s", self._queue.queue_url)
