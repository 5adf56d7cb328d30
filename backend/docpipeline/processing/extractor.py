"""
PDF Text Extraction
═══════════════════

Two layers:

  PdfTextExtractor     bytes → text. pdfplumber, page by page, in order.
                       Character/line grouping tolerances are configurable;
                       the defaults (2/2) keep right-to-left scripts such as
                       Hebrew readable on noisy layouts.

  ExtractionService    (bucket, key) → ExtractionOutcome. Validates the
                       request, downloads the document from the input bucket,
                       then runs PdfTextExtractor off the event loop.

Failure mapping (ExtractionError):
  missing bucket/key, non-.pdf key   → invalid_input    (400)
  object missing / download failed   → download_failed  (404)
  parser crash, all pages blank      → unprocessable / empty (422)
  extraction over its time budget    → timeout          (500, transient)

The extractor never lets a parser exception escape; a malformed PDF can
fail its own flow execution but never the host process.
"""

from __future__ import annotations

import asyncio
import io
import logging
import time
from dataclasses import dataclass

import pdfplumber

from docpipeline.core.config import Settings
from docpipeline.core.errors import ExtractionError
from docpipeline.storage.s3 import ObjectNotFound, S3ObjectStore, StorageError

logger = logging.getLogger(__name__)

PDF_EXTENSION = ".pdf"


def is_pdf_key(key: str) -> bool:
    return key.lower().endswith(PDF_EXTENSION)


# ---------------------------------------------------------------------------
# Bytes → text
# ---------------------------------------------------------------------------

class PdfTextExtractor:
    """
    Stateless; safe for concurrent use. pdfplumber.open() returns an
    independent document object per call.
    """

    strategy_name = "pdfplumber"

    def __init__(
        self,
        x_tolerance: float = 2,
        y_tolerance: float = 2,
        timeout_seconds: float = 300,
    ) -> None:
        self._x_tolerance = x_tolerance
        self._y_tolerance = y_tolerance
        self._timeout = timeout_seconds

    @classmethod
    def from_settings(cls, cfg: Settings) -> PdfTextExtractor:
        return cls(
            x_tolerance=cfg.pdf_x_tolerance,
            y_tolerance=cfg.pdf_y_tolerance,
            timeout_seconds=cfg.extraction_timeout_seconds,
        )

    def extract(self, document_bytes: bytes) -> str:
        """
        Concatenate the text of every page, each followed by a newline.
        Pages that yield no text are skipped.

        Raises:
            ExtractionError: unprocessable (parser failure) or empty (no text).
        """
        t0 = time.monotonic()
        parts: list[str] = []

        try:
            with pdfplumber.open(io.BytesIO(document_bytes)) as pdf:
                page_count = len(pdf.pages)
                for page in pdf.pages:
                    page_text = page.extract_text(
                        x_tolerance=self._x_tolerance,
                        y_tolerance=self._y_tolerance,
                    )
                    if page_text and page_text.strip():
                        parts.append(page_text + "\n")
        except Exception as exc:
            logger.warning("PDF parse failed | strategy=%s error=%s", self.strategy_name, exc)
            raise ExtractionError.unprocessable(
                f"Could not parse PDF: {exc}"
            ) from exc

        text = "".join(parts)
        if not text.strip():
            raise ExtractionError.empty()

        logger.info(
            "Extraction | strategy=%s pages=%d pages_with_text=%d chars=%d elapsed_ms=%.0f",
            self.strategy_name, page_count, len(parts), len(text),
            (time.monotonic() - t0) * 1000,
        )
        return text

    async def extract_async(self, document_bytes: bytes) -> str:
        """Run extract() in the default executor, bounded by the extraction timeout."""
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, self.extract, document_bytes),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error("Extraction timed out after %.0fs", self._timeout)
            raise ExtractionError.timeout(self._timeout) from exc


# ---------------------------------------------------------------------------
# Object → text
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExtractionOutcome:
    text:       str
    input_pdf:  str    # s3://bucket/key
    object_key: str

    @property
    def char_count(self) -> int:
        return len(self.text)

    def to_body(self) -> dict[str, str]:
        return {
            "message":    "PDF text extracted successfully",
            "input_pdf":  self.input_pdf,
            "object_key": self.object_key,
            "pdf_text":   self.text,
        }


class ExtractionService:

    def __init__(self, store: S3ObjectStore, extractor: PdfTextExtractor) -> None:
        self._store = store
        self._extractor = extractor

    async def extract_object(self, bucket: str | None, key: str | None) -> ExtractionOutcome:
        if not key or not bucket:
            raise ExtractionError.invalid_input(
                "Missing required parameters: source_object_key and/or input_bucket"
            )
        if not is_pdf_key(key):
            raise ExtractionError.invalid_input(f"File {key} is not a PDF")

        logger.info("Downloading PDF | bucket=%s key=%s", bucket, key)
        try:
            data = await self._store.get_object(bucket, key)
        except ObjectNotFound as exc:
            raise ExtractionError.download_failed(
                f"Error downloading PDF from S3: {exc}", missing=True
            ) from exc
        except StorageError as exc:
            raise ExtractionError.download_failed(
                f"Error downloading PDF from S3: {exc}", missing=False
            ) from exc

        text = await self._extractor.extract_async(data)
        return ExtractionOutcome(
            text=text,
            input_pdf=f"s3://{bucket}/{key}",
            object_key=key,
        )
