"""
Bedrock Inference Client

Thin, stateless wrapper: one prompt in, one model message out.

  - One ChatBedrock instance per model id, built lazily by an injectable
    factory and reused for the life of the process.
  - No retries, no fallback, no response caching. Transport and API errors
    are surfaced verbatim as InferenceError; retry policy belongs to whoever
    restarts the flow.
  - Every call is bounded by inference_timeout_seconds.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage

from docpipeline.core.config import Settings, settings as default_settings
from docpipeline.core.errors import InferenceError

logger = logging.getLogger(__name__)

ModelFactory = Callable[[str, int], BaseChatModel]


def build_bedrock_model(cfg: Settings) -> ModelFactory:
    """Default factory: a non-streaming ChatBedrock bound to cfg's region."""

    def _factory(model_id: str, max_tokens: int) -> BaseChatModel:
        from langchain_aws import ChatBedrock
        return ChatBedrock(
            model_id=model_id,
            region_name=cfg.aws_region,
            model_kwargs={
                "temperature": cfg.llm_temperature,
                "max_tokens":  max_tokens,
            },
            streaming=False,
        )

    return _factory


class BedrockInferenceClient:

    def __init__(
        self,
        cfg: Settings | None = None,
        model_factory: ModelFactory | None = None,
    ) -> None:
        self._cfg = cfg or default_settings
        self._factory = model_factory or build_bedrock_model(self._cfg)
        self._models: dict[tuple[str, int], BaseChatModel] = {}

    @property
    def default_model_id(self) -> str:
        return self._cfg.bedrock_model_id

    def _model(self, model_id: str, max_tokens: int) -> BaseChatModel:
        key = (model_id, max_tokens)
        if key not in self._models:
            self._models[key] = self._factory(model_id, max_tokens)
        return self._models[key]

    async def invoke(
        self,
        prompt: str,
        model_id: str | None = None,
        max_tokens: int | None = None,
    ) -> BaseMessage:
        """
        Send a single user-turn prompt and return the model's message.

        Raises:
            InferenceError: model construction, transport, API or timeout failure.
        """
        model_id   = model_id or self._cfg.bedrock_model_id
        max_tokens = max_tokens or self._cfg.llm_max_tokens
        timeout    = self._cfg.inference_timeout_seconds

        logger.info(
            "Invoking Bedrock model | model=%s prompt_chars=%d max_tokens=%d",
            model_id, len(prompt), max_tokens,
        )

        t0 = time.perf_counter()
        try:
            llm = self._model(model_id, max_tokens)
            message = await asyncio.wait_for(
                llm.ainvoke([HumanMessage(content=prompt)]),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise InferenceError(
                f"Bedrock invocation exceeded {timeout}s", code="inference_timeout"
            ) from exc
        except Exception as exc:
            logger.error("Bedrock invocation failed | model=%s error=%s", model_id, exc)
            raise InferenceError(f"{type(exc).__name__}: {exc}") from exc

        logger.info(
            "Bedrock response | model=%s latency_ms=%.1f",
            model_id, (time.perf_counter() - t0) * 1000,
        )
        return message
