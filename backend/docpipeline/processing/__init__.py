"""
Document Processing Package
════════════════════════════

The two stages a flow execution runs on one document:

  Text Extraction → LLM Enrichment

Modules
───────
  extractor.py   PDF download + pdfplumber text extraction
  enrichment.py  Mode-selected prompt, one Bedrock call, EnrichmentResult
"""

from docpipeline.processing.enrichment import EnrichmentStage, build_prompt, select_instruction
from docpipeline.processing.extractor import ExtractionOutcome, ExtractionService, PdfTextExtractor

__all__ = [
    "EnrichmentStage",
    "ExtractionOutcome",
    "ExtractionService",
    "PdfTextExtractor",
    "build_prompt",
    "select_instruction",
]
