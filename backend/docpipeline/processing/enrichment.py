"""
Structured / Summarization Stage

One stage, parameterized by mode. Each mode selects an instruction that is
prepended to the extracted text:

  default             concise summary
  executive           executive summary
  bullets             bullet-point key takeaways
  detailed            detailed summary preserving key information
  structured-extract  JSON-only extraction of the key elements of a tender
                      document written in tender_language

Unrecognized modes fall back to the default instruction; the result still
echoes the mode the caller asked for.

Exactly one inference call per enrich(). No retries here; the flow
decides whether a fresh execution should run.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from docpipeline.core.config import Settings, settings as default_settings
from docpipeline.core.errors import EnrichmentError, InferenceError
from docpipeline.llm.bedrock import BedrockInferenceClient
from docpipeline.schemas.pipeline import EnrichmentMode, EnrichmentResult

logger = logging.getLogger(__name__)


PROMPT_TEMPLATES: dict[EnrichmentMode, str] = {
    EnrichmentMode.DEFAULT:   "Summarize the following text concisely:",
    EnrichmentMode.EXECUTIVE: "Create an executive summary of the following text:",
    EnrichmentMode.BULLETS:   (
        "Summarize the following text as bullet points highlighting key takeaways:"
    ),
    EnrichmentMode.DETAILED:  (
        "Create a detailed summary of the following text preserving key "
        "information and insights:"
    ),
    EnrichmentMode.STRUCTURED_EXTRACT: (
        "Here is the content of a {language} PDF containing a tender. Deduce its "
        "key elements and extract them into a JSON file. The output should be "
        "the JSON file content only. Here is the content:"
    ),
}

_JSON_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL)


def select_instruction(mode: str | EnrichmentMode | None, *, language: str = "Hebrew") -> str:
    resolved = EnrichmentMode.parse(mode) or EnrichmentMode.DEFAULT
    return PROMPT_TEMPLATES[resolved].format(language=language)


def build_prompt(text: str, mode: str | EnrichmentMode | None, *, language: str = "Hebrew") -> str:
    return f"{select_instruction(mode, language=language)}\n\n{text}"


def response_text(message: Any) -> str:
    """
    Pull the primary text out of a model message.

    Bedrock/Anthropic messages carry either a plain string or a list of
    content blocks; only "text" blocks count.
    """
    content = getattr(message, "content", None)

    if isinstance(content, str):
        text = content
    elif isinstance(content, list):
        text = "".join(
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
            if not isinstance(block, dict) or block.get("type", "text") == "text"
        )
    else:
        raise EnrichmentError.malformed_response(
            f"Inference response has no text content (got {type(content).__name__})"
        )

    if not text.strip():
        raise EnrichmentError.malformed_response("Inference response text is empty")
    return text


def parse_structured_payload(text: str) -> dict[str, Any] | list[Any] | None:
    """Best-effort JSON parse of a structured-extract answer; None if it isn't JSON."""
    match = _JSON_FENCE_RE.match(text)
    candidate = match.group(1) if match else text.strip()
    try:
        parsed = json.loads(candidate)
    except ValueError:
        return None
    return parsed if isinstance(parsed, (dict, list)) else None


class EnrichmentStage:

    def __init__(
        self,
        client: BedrockInferenceClient,
        cfg: Settings | None = None,
    ) -> None:
        self._client = client
        self._cfg = cfg or default_settings

    async def enrich(
        self,
        text: str,
        mode: str | EnrichmentMode | None = None,
        *,
        model_id: str | None = None,
    ) -> EnrichmentResult:
        """
        Raises:
            EnrichmentError: invalid_input (empty text), malformed_response,
                             or the inference error kind (transient).
        """
        if not text or not text.strip():
            raise EnrichmentError.invalid_input("Missing required parameter: content")

        requested = mode.value if isinstance(mode, EnrichmentMode) else (mode or self._cfg.enrichment_mode)
        resolved  = EnrichmentMode.parse(requested)
        if resolved is None:
            logger.warning("Unknown enrichment mode %r, using default instruction", requested)

        model_id = model_id or self._cfg.bedrock_model_id
        prompt   = build_prompt(text, resolved, language=self._cfg.tender_language)

        try:
            message = await self._client.invoke(
                prompt,
                model_id=model_id,
                max_tokens=self._cfg.llm_max_tokens,
            )
        except InferenceError as exc:
            raise EnrichmentError.from_inference(exc) from exc

        summary = response_text(message)

        structured = None
        if resolved is EnrichmentMode.STRUCTURED_EXTRACT:
            structured = parse_structured_payload(summary)
            if structured is None:
                logger.warning("Structured extract did not return parseable JSON | chars=%d", len(summary))

        logger.info(
            "Enrichment | mode=%s resolved=%s input_chars=%d output_chars=%d",
            requested, (resolved or EnrichmentMode.DEFAULT).value, len(text), len(summary),
        )
        return EnrichmentResult(
            summary=summary,
            summary_type=requested,
            model_id=model_id,
            structured=structured,
        )
