"""Pydantic AI agents that read listing documents.

Two agents share one model configuration:
- ocr_agent returns the document text verbatim.
- listing_agent returns an ExtractionEnvelope of candidate listings.

DocumentExtractor wraps both. It checks the data URI before any model call,
bounds every call with a timeout and maps each failure onto the listing desk
error taxonomy. Neither agent retries on a bad answer: the user re-uploads.
"""

import asyncio
import logging
import os
from typing import Any

import logfire
from dotenv import load_dotenv
from pydantic_ai import Agent, BinaryContent
from pydantic_ai.exceptions import UnexpectedModelBehavior
from pydantic_ai.models import Model

from .documents import parse_data_uri
from .errors import ExtractionEmpty, ExtractionMalformedResponse, ExtractionServiceError
from .schemas import CandidateRecord, ExtractionEnvelope

load_dotenv()

logger = logging.getLogger(__name__)

# Configure Logfire for observability (optional - only if token is set)
if os.getenv("LOGFIRE_TOKEN"):
    logfire.configure()
    logfire.instrument_pydantic_ai()

EXTRACTION_MODEL = os.getenv("EXTRACTION_MODEL", "google-gla:gemini-2.5-flash")
EXTRACTION_TIMEOUT_SECONDS = float(os.getenv("EXTRACTION_TIMEOUT_SECONDS", "90"))
# Recall matters more than fluency for both tasks
EXTRACTION_TEMPERATURE = float(os.getenv("EXTRACTION_TEMPERATURE", "0.0"))


OCR_SYSTEM_PROMPT = """You are an OCR engine for real-estate documents.

Extract ALL text from the document exactly as written:
- Keep the original language, spelling, numbers and currency formatting.
- Preserve the structure: line breaks, lists and table rows (one row per line,
  cells separated by " | ").
- Do not summarize, translate, correct or reorder anything.
- If a region is unreadable, skip it. Never invent content.
- Return only the extracted text, with no commentary.
"""

LISTING_SYSTEM_PROMPT = """You are a real-estate data extraction specialist with OCR capabilities.

The document (PDF, DOCX or image, usually in Brazilian Portuguese) may contain
one or more property listings, often as a table with one listing per row.
Read the whole document and return EVERY distinct listing, in document order.

Rules:
- One record per listing. Do not merge or split listings.
- Fill a field only when the document states it. Leave unknown fields empty;
  never guess.
- price, area_sqm and total_area_sqm are plain numbers: "R$ 1.250.000,00"
  becomes 1250000 and "120,5 m²" becomes 120.5.
- bedrooms, bathrooms, suites and lavabos are whole numbers.
- property_type is one of HOUSE, APARTMENT, LOT, OTHER.
- status is AVAILABLE unless the document marks the listing as new this week
  (NEW_THIS_WEEK), changed (CHANGED), sold this week (SOLD_THIS_WEEK) or sold
  this month (SOLD_THIS_MONTH).
- categories may contain FRONT, SIDE, REAR, FURNISHED, STAGED, SEA_VIEW.
- Links must be copied exactly.
- If the document contains no listings, return an empty list.
"""

OCR_REQUEST = "Extract all text from this document."
LISTING_REQUEST = "Extract every property listing from this document."


ocr_agent = Agent(
    EXTRACTION_MODEL,
    name="ocr",
    output_type=str,
    system_prompt=OCR_SYSTEM_PROMPT,
    model_settings={"temperature": EXTRACTION_TEMPERATURE},
    retries=0,
    defer_model_check=True,
)

listing_agent = Agent(
    EXTRACTION_MODEL,
    name="listing_extraction",
    output_type=ExtractionEnvelope,
    system_prompt=LISTING_SYSTEM_PROMPT,
    model_settings={"temperature": EXTRACTION_TEMPERATURE},
    retries=0,
    defer_model_check=True,
)


class DocumentExtractor:
    """Turns a document data URI into raw text or candidate listings.

    Args:
        model: Model override (a pydantic-ai Model or model name). Defaults to
            the agents' EXTRACTION_MODEL.
        timeout: Upper bound in seconds for one model call.
    """

    def __init__(
        self,
        model: Model | str | None = None,
        timeout: float = EXTRACTION_TIMEOUT_SECONDS,
    ):
        self.model = model
        self.timeout = timeout

    async def _run(self, agent: Agent[Any, Any], request: str, document_data_uri: str) -> Any:
        """Run one agent on the decoded document and return its output."""
        document = parse_data_uri(document_data_uri)
        logger.info(
            f"Calling {agent.name or 'extraction'} agent "
            f"(mime={document.mime_type}, bytes={len(document.data)})"
        )
        prompt = [request, BinaryContent(data=document.data, media_type=document.mime_type)]

        try:
            result = await asyncio.wait_for(agent.run(prompt, model=self.model), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"Extraction timed out after {self.timeout}s")
            raise ExtractionServiceError(f"extraction timed out after {self.timeout}s", upstream=e) from e
        except UnexpectedModelBehavior:
            raise
        except Exception as e:
            logger.exception(f"Extraction service call failed: {e}")
            raise ExtractionServiceError(f"extraction service call failed: {e!r}", upstream=e) from e

        return result.output

    async def extract_text(self, document_data_uri: str) -> str:
        """OCR the document and return its text, stripped.

        Raises:
            InvalidInput: the data URI is malformed.
            ExtractionEmpty: the model returned nothing readable.
            ExtractionServiceError: the model could not be reached or timed out.
        """
        try:
            output = await self._run(ocr_agent, OCR_REQUEST, document_data_uri)
        except UnexpectedModelBehavior as e:
            raise ExtractionEmpty(f"model gave no usable text: {e}") from e

        text = (output or "").strip()
        if not text:
            raise ExtractionEmpty("model returned empty text")

        logger.info(f"OCR extracted {len(text)} characters")
        return text

    async def extract_records(self, document_data_uri: str) -> list[CandidateRecord]:
        """Extract candidate listings in document order.

        An empty list means "no listings found" and is not an error. Records
        with unreadable numbers are kept; they report field errors and block
        only themselves at commit time.

        Raises:
            InvalidInput: the data URI is malformed.
            ExtractionMalformedResponse: the answer does not fit the envelope.
            ExtractionServiceError: the model could not be reached or timed out.
        """
        try:
            envelope: ExtractionEnvelope = await self._run(listing_agent, LISTING_REQUEST, document_data_uri)
        except UnexpectedModelBehavior as e:
            raise ExtractionMalformedResponse(f"listing envelope could not be parsed: {e}") from e

        candidates = list(envelope.properties)
        flagged = sum(1 for candidate in candidates if not candidate.is_committable)
        logger.info(f"Extracted {len(candidates)} candidate listings ({flagged} need review)")
        return candidates
