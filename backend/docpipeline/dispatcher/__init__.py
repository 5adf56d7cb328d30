"""
Ingestion Dispatcher Package

Queue messages in, flow executions out:

  notifications.py  S3 event envelope → SourceObjectRef
  service.py        Dispatcher: one flow start per message, ack policy
  sqs.py            SqsQueue, failure sinks, long-poll SqsPoller
"""

from docpipeline.dispatcher.notifications import parse_notification
from docpipeline.dispatcher.service import Dispatcher
from docpipeline.dispatcher.sqs import (
    LoggingFailureSink,
    QueueFailureSink,
    SqsPoller,
    SqsQueue,
    get_failure_sink,
)

__all__ = [
    "Dispatcher",
    "LoggingFailureSink",
    "QueueFailureSink",
    "SqsPoller",
    "SqsQueue",
    "get_failure_sink",
    "parse_notification",
]
