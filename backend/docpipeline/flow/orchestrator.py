"""
Document Flow: Extract → Enrich → Persist

A named, versioned workflow bound to one FlowInput per execution.

Per execution:
  1. started → extracting   download + extract text from the source PDF
  2. extracting → enriching  one inference call in the configured mode
  3. persist the EnrichmentResult at dest_object_key in the output bucket
  4. enriching → completed

Any stage failure moves the execution to `failed` with a structured
{code, message} and stops; nothing after the failing stage runs. The result
document is written only after enrichment fully succeeded, so a failed or
abandoned execution never leaves a partial artifact behind.

flow_timeout_seconds bounds Extract and Enrich only. Persist starts after
that deadline and is bounded by the S3 client's own timeouts, so a stored
result always belongs to a completed execution.

run() never raises for stage failures: the returned FlowExecution is the
whole outcome. Retrying means starting a new execution.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from docpipeline.core.config import Settings, settings as default_settings
from docpipeline.core.errors import ErrorKind, PipelineError
from docpipeline.flow.state import FlowStateMachine
from docpipeline.processing.enrichment import EnrichmentStage
from docpipeline.processing.extractor import ExtractionService
from docpipeline.schemas.pipeline import (
    EnrichmentMode,
    EnrichmentResult,
    FlowExecution,
    FlowInput,
    FlowState,
)
from docpipeline.storage.s3 import S3ObjectStore, StorageError

logger = logging.getLogger(__name__)


class DocumentFlow:

    def __init__(
        self,
        extraction: ExtractionService,
        enrichment: EnrichmentStage,
        store:      S3ObjectStore,
        cfg:        Settings | None = None,
    ) -> None:
        self._cfg = cfg or default_settings
        if not self._cfg.output_bucket:
            raise ValueError("OUTPUT_BUCKET must be configured to run the document flow")

        self._extraction = extraction
        self._enrichment = enrichment
        self._store      = store

    @property
    def name(self) -> str:
        return self._cfg.flow_name

    @property
    def version(self) -> str:
        return self._cfg.flow_version

    async def run(
        self,
        flow_input:   FlowInput,
        execution_id: str | None = None,
        mode:         str | EnrichmentMode | None = None,
    ) -> FlowExecution:
        execution = FlowExecution(
            execution_id=execution_id or uuid.uuid4().hex,
            flow_name=self.name,
            flow_version=self.version,
            input=flow_input,
        )
        machine = FlowStateMachine(execution)
        timeout = self._cfg.flow_timeout_seconds

        logger.info(
            "Flow start | flow=%s v%s execution=%s bucket=%s key=%s",
            self.name, self.version, execution.execution_id,
            flow_input.input_bucket, flow_input.source_object_key,
        )

        try:
            result = await asyncio.wait_for(self._run_stages(machine, mode), timeout=timeout)
            if result is not None:
                await self._persist(machine, result)
        except asyncio.TimeoutError:
            logger.error(
                "Flow timed out | execution=%s state=%s after=%ds",
                execution.execution_id, machine.state.value, timeout,
            )
            if machine.can_transition(FlowState.FAILED):
                machine.fail(PipelineError(
                    "timeout",
                    f"Flow execution exceeded {timeout}s during {machine.state.value}",
                    kind=ErrorKind.TRANSIENT_INFRA,
                ))
        except Exception as exc:
            logger.exception("Flow crashed | execution=%s", execution.execution_id)
            if machine.can_transition(FlowState.FAILED):
                machine.fail(PipelineError("internal", f"Internal error: {exc}"))
            else:
                raise

        logger.info(
            "Flow end | execution=%s status=%s state=%s error=%s result=%s",
            execution.execution_id, execution.status.value, execution.state.value,
            execution.error.code if execution.error else None,
            execution.result_key,
        )
        return execution

    async def _run_stages(
        self,
        machine: FlowStateMachine,
        mode:    str | EnrichmentMode | None,
    ) -> EnrichmentResult | None:
        flow_input = machine.execution.input

        # --- Extract ----------------------------------------------------
        machine.transition(FlowState.EXTRACTING)
        try:
            extracted = await self._extraction.extract_object(
                flow_input.input_bucket, flow_input.source_object_key,
            )
        except PipelineError as exc:
            logger.warning(
                "Extraction failed | execution=%s code=%s error=%s",
                machine.execution.execution_id, exc.code, exc.message,
            )
            machine.fail(exc)
            return None

        # --- Enrich -----------------------------------------------------
        machine.transition(FlowState.ENRICHING)
        try:
            result = await self._enrichment.enrich(
                extracted.text, mode or self._cfg.enrichment_mode,
            )
        except PipelineError as exc:
            logger.warning(
                "Enrichment failed | execution=%s code=%s error=%s",
                machine.execution.execution_id, exc.code, exc.message,
            )
            machine.fail(exc)
            return None

        return result

    async def _persist(self, machine: FlowStateMachine, result: EnrichmentResult) -> None:
        flow_input = machine.execution.input
        try:
            stored = await self._store.put_json(
                self._cfg.output_bucket,
                flow_input.dest_object_key,
                self._result_document(machine.execution, result),
            )
        except StorageError as exc:
            logger.error(
                "Result persistence failed | execution=%s key=%s error=%s",
                machine.execution.execution_id, flow_input.dest_object_key, exc,
            )
            machine.fail(PipelineError(
                "persist_failed", str(exc), kind=ErrorKind.TRANSIENT_INFRA,
            ))
            return

        machine.complete(stored.key)

    def _result_document(
        self,
        execution: FlowExecution,
        result:    EnrichmentResult,
    ) -> dict[str, Any]:
        return {
            **result.model_dump(exclude_none=True),
            "source": {
                "bucket":       execution.input.input_bucket,
                "key":          execution.input.source_object_key,
                "project_name": execution.input.project_name,
            },
            "flow": {
                "name":         execution.flow_name,
                "version":      execution.flow_version,
                "execution_id": execution.execution_id,
            },
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }
