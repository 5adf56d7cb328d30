"""
Flow starters: hand a FlowInput to an execution backend and return its id.

  celery   run_document_flow is published to the broker; the worker runs
           DocumentFlow in-process. execution id = Celery task id.
  bedrock  a managed Bedrock Flow is invoked with the FlowInput as the
           "document" of its input node. execution id = executionId.

start() is fire-and-forget: it returns as soon as the backend accepted the
execution. Any broker/API failure is a FlowStartError (transient), which the
dispatcher answers by leaving the queue message for redelivery.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError
from kombu.exceptions import OperationalError

from docpipeline.core.config import Settings, settings as default_settings
from docpipeline.core.errors import FlowStartError
from docpipeline.schemas.pipeline import FlowInput

logger = logging.getLogger(__name__)

FLOW_INPUT_NODE   = "FlowInputNode"
FLOW_INPUT_OUTPUT = "document"


class FlowStarter(ABC):

    @abstractmethod
    async def start(self, flow_input: FlowInput) -> str:
        """Start one flow execution and return its execution id."""
        ...


class CeleryFlowStarter(FlowStarter):

    async def start(self, flow_input: FlowInput) -> str:
        from docpipeline.workers.tasks import run_document_flow

        loop = asyncio.get_running_loop()
        try:
            # apply_async blocks on the broker connection
            result = await loop.run_in_executor(
                None,
                lambda: run_document_flow.apply_async(kwargs=flow_input.model_dump()),
            )
        except (OperationalError, ConnectionError, OSError) as exc:
            logger.error(
                "Celery publish failed | key=%s error=%s",
                flow_input.source_object_key, exc,
            )
            raise FlowStartError(f"Could not enqueue flow task: {exc}") from exc

        return result.id


class BedrockFlowStarter(FlowStarter):

    def __init__(
        self,
        cfg: Settings | None = None,
        session: aioboto3.Session | None = None,
    ) -> None:
        self._cfg = cfg or default_settings
        if not self._cfg.bedrock_flow_id or not self._cfg.bedrock_flow_alias_id:
            raise ValueError(
                "BEDROCK_FLOW_ID and BEDROCK_FLOW_ALIAS_ID are required when FLOW_BACKEND=bedrock"
            )
        self._session = session or aioboto3.Session()

    async def start(self, flow_input: FlowInput) -> str:
        async with self._session.client(
            "bedrock-agent-runtime", region_name=self._cfg.aws_region,
        ) as client:
            try:
                resp = await client.invoke_flow(
                    flowIdentifier=self._cfg.bedrock_flow_id,
                    flowAliasIdentifier=self._cfg.bedrock_flow_alias_id,
                    inputs=[{
                        "nodeName":       FLOW_INPUT_NODE,
                        "nodeOutputName": FLOW_INPUT_OUTPUT,
                        "content":        {"document": flow_input.model_dump()},
                    }],
                )
            except (ClientError, BotoCoreError) as exc:
                logger.error(
                    "Bedrock invoke_flow failed | flow=%s key=%s error=%s",
                    self._cfg.bedrock_flow_id, flow_input.source_object_key, exc,
                )
                raise FlowStartError(f"Could not start Bedrock flow: {exc}") from exc

        execution_id = resp.get("executionId")
        if not execution_id:
            raise FlowStartError("Bedrock invoke_flow returned no executionId")
        return execution_id


def get_flow_starter(cfg: Settings | None = None) -> FlowStarter:
    cfg = cfg or default_settings
    if cfg.flow_backend == "bedrock":
        return BedrockFlowStarter(cfg)
    return CeleryFlowStarter()
