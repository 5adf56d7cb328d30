"""
Unit Tests: Enrichment Stage + Bedrock Inference Client
════════════════════════════════════════════════════════
Tests for docpipeline/processing/enrichment.py and docpipeline/llm/bedrock.py

Coverage:
  ✅ Every known mode selects its own instruction
  ✅ Unknown mode → default instruction, summary_type echoes the request
  ✅ structured-extract instruction names the configured language
  ✅ Prompt = instruction + blank line + text
  ✅ Exactly one inference call with the configured output budget
  ✅ Empty / whitespace text → invalid_input, no inference call
  ✅ Empty or non-text response → malformed_response
  ✅ Content-block responses are joined
  ✅ Inference errors surface as transient EnrichmentError
  ✅ structured-extract parses JSON (with or without fences)
  ✅ Inference client: model cached per id, timeout, verbatim errors
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage

from docpipeline.core.errors import EnrichmentError, ErrorKind, InferenceError
from docpipeline.llm.bedrock import BedrockInferenceClient
from docpipeline.processing.enrichment import (
    PROMPT_TEMPLATES,
    EnrichmentStage,
    build_prompt,
    parse_structured_payload,
    response_text,
    select_instruction,
)
from docpipeline.schemas.pipeline import EnrichmentMode
from tests.conftest import TEST_MODEL_ID


# ─────────────────────────────────────────────────────────────────────────────
# Prompt selection
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.enrichment
class TestPromptSelection:

    @pytest.mark.parametrize(
        "mode, instruction",
        [
            ("default",   "Summarize the following text concisely:"),
            ("executive", "Create an executive summary of the following text:"),
            ("bullets",   "Summarize the following text as bullet points highlighting key takeaways:"),
            ("detailed",  "Create a detailed summary of the following text preserving key information and insights:"),
        ],
    )
    def test_summary_modes_select_their_template(self, mode, instruction):
        assert select_instruction(mode) == instruction

    def test_all_modes_have_distinct_templates(self):
        assert set(PROMPT_TEMPLATES) == set(EnrichmentMode)
        assert len(set(PROMPT_TEMPLATES.values())) == len(EnrichmentMode)

    @pytest.mark.parametrize("mode", ["summarize-please", "", None, "EXECUTIVE"])
    def test_unknown_mode_falls_back_to_default(self, mode):
        assert select_instruction(mode) == "Summarize the following text concisely:"

    def test_structured_extract_names_language(self):
        instruction = select_instruction("structured-extract", language="Arabic")

        assert instruction.startswith("Here is the content of a Arabic PDF containing a tender.")
        assert instruction.endswith("Here is the content:")

    def test_prompt_is_instruction_blank_line_text(self):
        assert build_prompt("Hello world\n", "default") == (
            "Summarize the following text concisely:\n\nHello world\n"
        )


# ─────────────────────────────────────────────────────────────────────────────
# Response parsing
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.enrichment
class TestResponseParsing:

    def test_string_content(self):
        assert response_text(AIMessage(content="Summary.")) == "Summary."

    def test_content_blocks_are_joined(self):
        message = AIMessage(content=[
            {"type": "text", "text": "Part one. "},
            {"type": "tool_use", "id": "t1", "name": "x", "input": {}},
            {"type": "text", "text": "Part two."},
        ])
        assert response_text(message) == "Part one. Part two."

    @pytest.mark.parametrize("message", [AIMessage(content=""), AIMessage(content="   "), object(), None])
    def test_missing_text_is_malformed(self, message):
        with pytest.raises(EnrichmentError) as exc_info:
            response_text(message)

        assert exc_info.value.kind is ErrorKind.MALFORMED_RESPONSE
        assert exc_info.value.status_code == 500

    @pytest.mark.parametrize(
        "text, expected",
        [
            ('{"title": "Tender 12"}',                      {"title": "Tender 12"}),
            ('```json\n{"title": "Tender 12"}\n```',        {"title": "Tender 12"}),
            ('```\n[{"item": 1}]\n```',                     [{"item": 1}]),
            ("Sure! Here are the key elements: ...",        None),
            ("42",                                          None),
        ],
    )
    def test_parse_structured_payload(self, text, expected):
        assert parse_structured_payload(text) == expected


# ─────────────────────────────────────────────────────────────────────────────
# Stage
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.enrichment
class TestEnrichmentStage:

    async def test_default_mode_single_call(self, mock_inference, test_settings):
        stage = EnrichmentStage(mock_inference, test_settings)

        result = await stage.enrich("Hello world\n", "default")

        mock_inference.invoke.assert_awaited_once_with(
            "Summarize the following text concisely:\n\nHello world\n",
            model_id=TEST_MODEL_ID,
            max_tokens=1000,
        )
        assert result.summary == "A short summary."
        assert result.summary_type == "default"
        assert result.model_id == TEST_MODEL_ID
        assert result.structured is None

    async def test_mode_defaults_to_configured(self, mock_inference, test_settings):
        cfg = test_settings.model_copy(update={"enrichment_mode": "bullets"})

        result = await EnrichmentStage(mock_inference, cfg).enrich("text")

        prompt = mock_inference.invoke.await_args.args[0]
        assert prompt.startswith("Summarize the following text as bullet points")
        assert result.summary_type == "bullets"

    async def test_enum_mode_is_accepted(self, mock_inference, test_settings):
        result = await EnrichmentStage(mock_inference, test_settings).enrich(
            "text", EnrichmentMode.EXECUTIVE,
        )
        assert result.summary_type == "executive"

    async def test_unknown_mode_echoed_with_default_template(self, mock_inference, test_settings):
        result = await EnrichmentStage(mock_inference, test_settings).enrich("text", "haiku")

        prompt = mock_inference.invoke.await_args.args[0]
        assert prompt.startswith("Summarize the following text concisely:")
        assert result.summary_type == "haiku"

    @pytest.mark.parametrize("text", ["", "   \n\t"])
    async def test_empty_text_is_invalid_input(self, mock_inference, test_settings, text):
        with pytest.raises(EnrichmentError) as exc_info:
            await EnrichmentStage(mock_inference, test_settings).enrich(text, "default")

        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Missing required parameter: content"
        mock_inference.invoke.assert_not_awaited()

    async def test_inference_error_is_transient(self, mock_inference, test_settings):
        mock_inference.invoke = AsyncMock(
            side_effect=InferenceError("ThrottlingException: Rate exceeded"),
        )

        with pytest.raises(EnrichmentError) as exc_info:
            await EnrichmentStage(mock_inference, test_settings).enrich("text")

        err = exc_info.value
        assert err.kind is ErrorKind.TRANSIENT_INFRA
        assert err.retryable is True
        assert "ThrottlingException: Rate exceeded" in err.message

    async def test_empty_response_is_malformed(self, mock_inference, test_settings):
        mock_inference.invoke = AsyncMock(return_value=AIMessage(content=""))

        with pytest.raises(EnrichmentError) as exc_info:
            await EnrichmentStage(mock_inference, test_settings).enrich("text")

        assert exc_info.value.code == "malformed_response"

    async def test_structured_extract_parses_json(self, mock_inference, test_settings):
        mock_inference.invoke = AsyncMock(return_value=AIMessage(
            content='```json\n{"tender_number": "12/2024", "deadline": "2024-05-01"}\n```',
        ))

        result = await EnrichmentStage(mock_inference, test_settings).enrich(
            "מכרז מספר 12/2024", "structured-extract",
        )

        prompt = mock_inference.invoke.await_args.args[0]
        assert prompt.startswith("Here is the content of a Hebrew PDF containing a tender.")
        assert prompt.endswith("\n\nמכרז מספר 12/2024")
        assert result.summary_type == "structured-extract"
        assert result.structured == {"tender_number": "12/2024", "deadline": "2024-05-01"}
        assert result.summary.startswith("```json")

    async def test_structured_extract_non_json_keeps_text(self, mock_inference, test_settings):
        mock_inference.invoke = AsyncMock(return_value=AIMessage(content="Not JSON, sorry."))

        result = await EnrichmentStage(mock_inference, test_settings).enrich("x", "structured-extract")

        assert result.summary == "Not JSON, sorry."
        assert result.structured is None


# ─────────────────────────────────────────────────────────────────────────────
# Inference client
# ─────────────────────────────────────────────────────────────────────────────

def _fake_model(answer: str = "ok", side_effect=None) -> MagicMock:
    model = MagicMock()
    model.ainvoke = AsyncMock(return_value=AIMessage(content=answer), side_effect=side_effect)
    return model


@pytest.mark.unit
@pytest.mark.enrichment
class TestBedrockInferenceClient:

    async def test_invoke_sends_single_human_message(self, test_settings):
        model = _fake_model("Summary")
        factory = MagicMock(return_value=model)
        client = BedrockInferenceClient(test_settings, model_factory=factory)

        message = await client.invoke("prompt text", max_tokens=500)

        assert message.content == "Summary"
        factory.assert_called_once_with(TEST_MODEL_ID, 500)
        sent = model.ainvoke.await_args.args[0]
        assert len(sent) == 1
        assert isinstance(sent[0], HumanMessage)
        assert sent[0].content == "prompt text"

    async def test_model_built_once_per_model_id(self, test_settings):
        factory = MagicMock(side_effect=lambda model_id, max_tokens: _fake_model())
        client = BedrockInferenceClient(test_settings, model_factory=factory)

        await client.invoke("a")
        await client.invoke("b")
        await client.invoke("c", model_id="anthropic.claude-3-haiku-20240307-v1:0")

        assert factory.call_count == 2
        assert client.default_model_id == TEST_MODEL_ID

    async def test_errors_surface_verbatim(self, test_settings):
        model = _fake_model(side_effect=RuntimeError("AccessDeniedException: not authorized"))
        client = BedrockInferenceClient(test_settings, model_factory=MagicMock(return_value=model))

        with pytest.raises(InferenceError) as exc_info:
            await client.invoke("prompt")

        assert exc_info.value.message == "RuntimeError: AccessDeniedException: not authorized"
        assert exc_info.value.kind is ErrorKind.TRANSIENT_INFRA

    async def test_timeout_raises_inference_error(self, test_settings):
        cfg = test_settings.model_copy(update={"inference_timeout_seconds": 0.01})

        async def _hang(_messages):
            await asyncio.sleep(1)

        model = MagicMock()
        model.ainvoke = _hang
        client = BedrockInferenceClient(cfg, model_factory=MagicMock(return_value=model))

        with pytest.raises(InferenceError) as exc_info:
            await client.invoke("prompt")

        assert exc_info.value.code == "inference_timeout"

    def test_default_factory_builds_chat_bedrock(self, test_settings):
        from langchain_aws import ChatBedrock

        from docpipeline.llm.bedrock import build_bedrock_model

        llm = build_bedrock_model(test_settings)(TEST_MODEL_ID, 1000)

        assert isinstance(llm, ChatBedrock)
        assert llm.model_id == TEST_MODEL_ID
