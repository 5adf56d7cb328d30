"""
Root conftest.py: shared fixtures for all tests

Environment strategy:
  - Settings are read from env at import time, so defaults are set here
    before any docpipeline module is imported.
  - No real AWS calls: S3, SQS and Bedrock are replaced with AsyncMock /
    MagicMock(spec=...) doubles; pdfplumber is patched where a real PDF
    isn't needed.
  - Celery uses the in-memory broker and result backend.

How to run:
  pytest                              # all tests
  pytest -m unit                      # unit tests only
  pytest -m dispatcher                # one feature area
  pytest backend/tests/unit/test_flow.py
"""

from __future__ import annotations

import json
import os
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# ─────────────────────────────────────────────────────────────────────────────
# Patch settings BEFORE any docpipeline imports so modules read test config
# ─────────────────────────────────────────────────────────────────────────────

os.environ.setdefault("AWS_REGION",            "us-east-1")
os.environ.setdefault("AWS_ACCESS_KEY_ID",     "test")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "test")
os.environ.setdefault("OUTPUT_BUCKET",         "test-output-bucket")
os.environ.setdefault("QUEUE_URL",             "https://sqs.us-east-1.amazonaws.com/000000000000/test-queue")
os.environ.setdefault("CELERY_BROKER_URL",     "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("APP_ENV",               "development")

TEST_INPUT_BUCKET  = "test-input-bucket"
TEST_OUTPUT_BUCKET = "test-output-bucket"
TEST_MODEL_ID      = "anthropic.claude-3-sonnet-20240229-v1:0"


# ─────────────────────────────────────────────────────────────────────────────
# Settings
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def test_settings():
    """Explicit Settings; init kwargs win over env."""
    from docpipeline.core.config import Settings
    return Settings(
        output_bucket=TEST_OUTPUT_BUCKET,
        queue_url="https://sqs.us-east-1.amazonaws.com/000000000000/test-queue",
        project_name="my-bedrock-project",
        flow_backend="celery",
        bedrock_model_id=TEST_MODEL_ID,
        dispatcher_concurrency=4,
        max_receive_count=5,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Notification / queue message builders
# ─────────────────────────────────────────────────────────────────────────────

def s3_event(bucket: str | None = TEST_INPUT_BUCKET, key: str | None = "folder/doc.pdf") -> dict[str, Any]:
    """Object-created envelope; pass None to leave a field out."""
    s3: dict[str, Any] = {}
    if bucket is not None:
        s3["bucket"] = {"name": bucket}
    if key is not None:
        s3["object"] = {"key": key}
    return {"Records": [{"eventName": "ObjectCreated:Put", "s3": s3}]}


@pytest.fixture
def make_message():
    """
    Factory fixture: returns a function that builds QueueMessages.

    Usage:
        msg = make_message(key="a/b.pdf")
        msg = make_message(body="not json", receive_count=7)
    """
    from docpipeline.schemas.pipeline import QueueMessage

    counter = {"n": 0}

    def _build(
        bucket: str | None = TEST_INPUT_BUCKET,
        key:    str | None = "folder/doc.pdf",
        body:   str | None = None,
        receive_count: int = 1,
    ) -> QueueMessage:
        counter["n"] += 1
        return QueueMessage(
            message_id=f"msg-{counter['n']}",
            body=body if body is not None else json.dumps(s3_event(bucket, key)),
            receipt_handle=f"rh-{counter['n']}",
            attributes={"ApproximateReceiveCount": str(receive_count)},
        )

    return _build


# ─────────────────────────────────────────────────────────────────────────────
# Sample file bytes
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def sample_pdf_bytes() -> bytes:
    """Minimal structurally valid one-page PDF with no text content."""
    return (
        b"%PDF-1.4\n"
        b"1 0 obj\n<< /Type /Catalog /Pages 2 0 R >>\nendobj\n"
        b"2 0 obj\n<< /Type /Pages /Kids [3 0 R] /Count 1 >>\nendobj\n"
        b"3 0 obj\n<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >>\nendobj\n"
        b"xref\n0 4\n"
        b"0000000000 65535 f \n"
        b"0000000009 00000 n \n"
        b"0000000058 00000 n \n"
        b"0000000115 00000 n \n"
        b"trailer\n<< /Size 4 /Root 1 0 R >>\n"
        b"startxref\n195\n%%EOF"
    )


# ─────────────────────────────────────────────────────────────────────────────
# pdfplumber doubles
# ─────────────────────────────────────────────────────────────────────────────

def fake_pdf(*page_texts: str | None) -> MagicMock:
    """A pdfplumber.open() return value whose pages yield the given texts."""
    pages = []
    for text in page_texts:
        page = MagicMock()
        page.extract_text.return_value = text
        pages.append(page)

    pdf = MagicMock()
    pdf.pages = pages
    pdf.__enter__.return_value = pdf
    pdf.__exit__.return_value = False
    return pdf


# ─────────────────────────────────────────────────────────────────────────────
# Mock S3 store
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def mock_store():
    """
    Fully mocked S3ObjectStore.
    All methods are AsyncMock; no real AWS calls made.
    """
    from docpipeline.storage.s3 import S3ObjectStore, StoredObject

    store = MagicMock(spec=S3ObjectStore)

    async def _put_json(bucket, key, payload):
        return StoredObject(
            bucket=bucket,
            key=key,
            size_bytes=len(json.dumps(payload, default=str)),
            etag="d41d8cd98f00b204e9800998ecf8427e",
        )

    store.get_object = AsyncMock(return_value=b"%PDF-1.4 fake")
    store.put_json   = AsyncMock(side_effect=_put_json)
    return store


# ─────────────────────────────────────────────────────────────────────────────
# Mock inference client
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def mock_inference():
    """BedrockInferenceClient double answering with a fixed AIMessage."""
    from langchain_core.messages import AIMessage

    from docpipeline.llm.bedrock import BedrockInferenceClient

    client = MagicMock(spec=BedrockInferenceClient)
    client.default_model_id = TEST_MODEL_ID
    client.invoke = AsyncMock(return_value=AIMessage(content="A short summary."))
    return client
