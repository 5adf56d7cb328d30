"""
Celery Tasks: Document Flow Execution

Task: run_document_flow
  1. started → extracting   download the PDF from input_bucket, extract text
  2. extracting → enriching  one Bedrock call in the configured mode
  3. persist the result JSON at dest_object_key in the output bucket
  4. → completed (or failed with {code, message})

No automatic retries: a failed execution is reported in the returned
FlowExecution and a new execution must be started to try again. The Celery
task id doubles as the flow execution id.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from celery import Task

from docpipeline.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Async task helper
# Run async coroutines inside Celery's synchronous task context.
# ---------------------------------------------------------------------------

def run_async(coro):
    """
    Drive `coro` to completion from synchronous task code.

    A running loop (eager mode inside an async caller) gets a private loop on a
    helper thread. Errors raised by the coroutine propagate unchanged.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    import concurrent.futures
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()


@celery_app.task(
    name="docpipeline.workers.tasks.run_document_flow",
    bind=True,
    max_retries=0,
    acks_late=True,
    reject_on_worker_lost=True,
)
def run_document_flow(
    self: Task,
    *,
    source_object_key: str,
    project_name:      str,
    input_bucket:      str,
    dest_object_key:   str,
    mode:              str | None = None,
) -> dict[str, Any]:
    """Run one DocumentFlow execution and return the serialized FlowExecution."""
    from docpipeline.schemas.pipeline import FlowInput

    flow_input = FlowInput(
        source_object_key=source_object_key,
        project_name=project_name,
        input_bucket=input_bucket,
        dest_object_key=dest_object_key,
    )
    return run_async(_run_document_flow_async(self.request.id, flow_input, mode))


async def _run_document_flow_async(
    execution_id: str | None,
    flow_input,
    mode: str | None,
) -> dict[str, Any]:
    from docpipeline.handlers import get_pipeline

    pipeline = get_pipeline()
    execution = await pipeline.flow.run(flow_input, execution_id=execution_id, mode=mode)

    if execution.error:
        logger.warning(
            "Flow failed | execution=%s key=%s code=%s",
            execution.execution_id, flow_input.source_object_key, execution.error.code,
        )
    return execution.model_dump(mode="json")
