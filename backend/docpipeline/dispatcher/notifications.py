"""
S3 object-created notification parsing.

Only the first record of an envelope is used. The object key arrives
percent-encoded with "+" for spaces and is decoded here, so every
downstream component sees the real key.
"""

from __future__ import annotations

import json
import logging
from urllib.parse import unquote_plus

from pydantic import BaseModel, ValidationError

from docpipeline.core.errors import MalformedNotification
from docpipeline.schemas.pipeline import SourceObjectRef

logger = logging.getLogger(__name__)

TEST_EVENT = "s3:TestEvent"


class _S3Bucket(BaseModel):
    name: str


class _S3Object(BaseModel):
    key: str


class _S3Entity(BaseModel):
    bucket: _S3Bucket
    object: _S3Object


class _S3Record(BaseModel):
    s3: _S3Entity


def parse_notification(body: str) -> SourceObjectRef:
    """
    Raises:
        MalformedNotification: non-JSON body, no records, missing bucket/key,
                               or an S3 test event.
    """
    try:
        envelope = json.loads(body)
    except (TypeError, ValueError) as exc:
        raise MalformedNotification(f"Notification body is not JSON: {exc}") from exc

    if not isinstance(envelope, dict):
        raise MalformedNotification("Notification body is not a JSON object")

    if envelope.get("Event") == TEST_EVENT:
        raise MalformedNotification("S3 test event carries no object", code="test_event")

    records = envelope.get("Records")
    if not isinstance(records, list) or not records:
        raise MalformedNotification("Notification has no Records")

    try:
        record = _S3Record.model_validate(records[0])
    except ValidationError as exc:
        raise MalformedNotification(
            f"First record is missing s3.bucket.name or s3.object.key: "
            f"{exc.error_count()} validation error(s)"
        ) from exc

    bucket = record.s3.bucket.name
    key = unquote_plus(record.s3.object.key)
    if not bucket or not key:
        raise MalformedNotification("Notification bucket or key is empty")

    if len(records) > 1:
        logger.debug("Notification has %d records, using the first", len(records))

    return SourceObjectRef(bucket=bucket, key=key)
