"""
Lambda-style entry points and the per-process component container.

  dispatch_handler  SQS event → Dispatcher → {"batchItemFailures": [...]}
  extract_handler   flow node payload → {statusCode, body: extraction | error}
  enrich_handler    {content, mode} or flow node payload
                    → {statusCode, body: {summary, summary_type} | error}

Stage handlers never raise: every failure becomes {statusCode, body: {error}}.
Components are built once per process by get_pipeline() and shared by every
invocation (and by the Celery worker).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from functools import cached_property, lru_cache
from typing import Any

from pydantic import ValidationError

from docpipeline.core.config import Settings, settings
from docpipeline.core.errors import EnrichmentError, ExtractionError, PipelineError
from docpipeline.core.logging_config import setup_logging
from docpipeline.dispatcher.service import Dispatcher
from docpipeline.dispatcher.sqs import get_failure_sink
from docpipeline.flow.orchestrator import DocumentFlow
from docpipeline.flow.starter import get_flow_starter
from docpipeline.llm.bedrock import BedrockInferenceClient
from docpipeline.processing.enrichment import EnrichmentStage
from docpipeline.processing.extractor import ExtractionService, PdfTextExtractor
from docpipeline.schemas.pipeline import EnrichmentRequest, QueueMessage, StageResponse
from docpipeline.storage.s3 import S3ObjectStore

logger = logging.getLogger(__name__)

# Keys older flow definitions used for the enrichment mode
_LEGACY_MODE_KEYS = ("Advanced_type", "summary_type")


# ---------------------------------------------------------------------------
# Component container
# ---------------------------------------------------------------------------

@dataclass
class Pipeline:
    cfg:        Settings
    store:      S3ObjectStore
    extraction: ExtractionService
    enrichment: EnrichmentStage

    @cached_property
    def flow(self) -> DocumentFlow:
        return DocumentFlow(self.extraction, self.enrichment, self.store, self.cfg)

    @cached_property
    def dispatcher(self) -> Dispatcher:
        # Lambda event source: no explicit delete, failures reported per item
        return Dispatcher(
            get_flow_starter(self.cfg),
            self.cfg,
            queue=None,
            failure_sink=get_failure_sink(self.cfg),
        )


def build_pipeline(cfg: Settings | None = None) -> Pipeline:
    cfg = cfg or settings
    store = S3ObjectStore(cfg)
    return Pipeline(
        cfg=cfg,
        store=store,
        extraction=ExtractionService(store, PdfTextExtractor.from_settings(cfg)),
        enrichment=EnrichmentStage(BedrockInferenceClient(cfg), cfg),
    )


@lru_cache(maxsize=1)
def get_pipeline() -> Pipeline:
    return build_pipeline()


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------

def _node_value(event: Any) -> dict[str, Any]:
    """event["node"]["inputs"][0]["value"], or invalid_input."""
    try:
        value = event["node"]["inputs"][0]["value"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ExtractionError.invalid_input("Unexpected event structure") from exc
    if not isinstance(value, dict):
        raise ExtractionError.invalid_input("Unexpected event structure")
    return value


def _requested_mode(payload: dict[str, Any], default: str) -> str:
    for key in ("mode", *_LEGACY_MODE_KEYS):
        if payload.get(key):
            return str(payload[key])
    return default


def _error_response(exc: PipelineError) -> StageResponse:
    return StageResponse(status_code=exc.status_code, body=exc.to_body())


def _internal_error(exc: Exception) -> StageResponse:
    return StageResponse(status_code=500, body={"error": f"Internal error: {exc}"})


# ---------------------------------------------------------------------------
# Stage handlers
# ---------------------------------------------------------------------------

async def _extract(event: Any) -> StageResponse:
    try:
        value = _node_value(event)
        outcome = await get_pipeline().extraction.extract_object(
            value.get("input_bucket"), value.get("source_object_key"),
        )
    except PipelineError as exc:
        logger.warning("Extract handler failed | code=%s error=%s", exc.code, exc.message)
        return _error_response(exc)
    except Exception as exc:
        logger.exception("Extract handler crashed")
        return _internal_error(exc)

    logger.info("Extract handler ok | key=%s chars=%d", outcome.object_key, outcome.char_count)
    return StageResponse(status_code=200, body=outcome.to_body())


async def _enrich(event: Any) -> StageResponse:
    pipeline = get_pipeline()
    default_mode = pipeline.cfg.enrichment_mode

    try:
        if isinstance(event, dict) and "node" in event:
            # PDF-chained: extract first, then enrich the extracted text
            value = _node_value(event)
            mode = _requested_mode(value, default_mode)
            outcome = await pipeline.extraction.extract_object(
                value.get("input_bucket"), value.get("source_object_key"),
            )
            request = EnrichmentRequest(text=outcome.text, mode=mode)
        else:
            payload = event if isinstance(event, dict) else {}
            try:
                request = EnrichmentRequest(
                    text=payload.get("content") or "",
                    mode=_requested_mode(payload, default_mode),
                )
            except ValidationError as exc:
                raise EnrichmentError.invalid_input("content must be a string") from exc

        result = await pipeline.enrichment.enrich(request.text, request.mode)
    except PipelineError as exc:
        logger.warning("Enrich handler failed | code=%s error=%s", exc.code, exc.message)
        return _error_response(exc)
    except Exception as exc:
        logger.exception("Enrich handler crashed")
        return _internal_error(exc)

    body: dict[str, Any] = {"summary": result.summary, "summary_type": result.summary_type}
    if result.structured is not None:
        body["structured"] = result.structured
    return StageResponse(status_code=200, body=body)


def extract_handler(event: Any, context: Any = None) -> dict[str, Any]:
    setup_logging(settings.log_level)
    return asyncio.run(_extract(event)).to_payload()


def enrich_handler(event: Any, context: Any = None) -> dict[str, Any]:
    setup_logging(settings.log_level)
    return asyncio.run(_enrich(event)).to_payload()


# ---------------------------------------------------------------------------
# Dispatcher handler (SQS event source)
# ---------------------------------------------------------------------------

def dispatch_handler(event: dict[str, Any], context: Any = None) -> dict[str, Any]:
    setup_logging(settings.log_level)

    messages = [QueueMessage.from_lambda_record(r) for r in event.get("Records", [])]
    result = asyncio.run(get_pipeline().dispatcher.handle_batch(messages))

    logger.info(
        "Dispatch batch | received=%d started=%d dropped=%d retry=%d",
        len(messages), len(result.started), len(result.dropped), len(result.retry),
    )
    return result.batch_item_failures()
