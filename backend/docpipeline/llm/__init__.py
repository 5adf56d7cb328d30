"""
LLM Package

Single-provider inference over AWS Bedrock (langchain-aws ChatBedrock).

Public API::

    from docpipeline.llm import BedrockInferenceClient

    client = BedrockInferenceClient()
    message = await client.invoke(prompt, max_tokens=1000)
"""

from docpipeline.llm.bedrock import BedrockInferenceClient, build_bedrock_model

__all__ = ["BedrockInferenceClient", "build_bedrock_model"]
