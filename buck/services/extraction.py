"""AI extraction: structured data out of receipts, documents and spreadsheets.

PatternLearner only sees the ``ExtractionOracle`` protocol. The production
oracle talks to an OpenAI-compatible chat endpoint (Mistral by default) in
JSON mode and validates the answer against the requested pydantic schema.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Protocol, TypeVar
from uuid import uuid4

from openai import APIError, AsyncOpenAI
from pydantic import BaseModel, ValidationError

from buck.config import Settings, get_settings
from buck.core.logging import get_logger
from buck.services.document_ai.ocr import OCRProviderError, ocr_document, resolve_ocr_mime
from buck.services.storage import ObjectStorage, S3ObjectStorage, StorageError

logger = get_logger(__name__)

_M = TypeVar("_M", bound=BaseModel)


@dataclass(frozen=True)
class Upload:
    """A file handed to the learner by the chat UI."""

    filename: str
    content_type: str | None
    data: bytes

    def data_uri(self) -> str:
        mime = self.content_type or "application/octet-stream"
        return f"data:{mime};base64,{base64.b64encode(self.data).decode('ascii')}"


class ExtractionError(Exception):
    """Raised when text or structured data cannot be extracted from an upload."""


class ExtractionOracle(Protocol):
    async def generate_object(
        self,
        *,
        prompt: str,
        schema: type[_M],
        image_url: str | None = None,
    ) -> _M: ...

    async def extract_text(self, upload: Upload) -> str: ...

    async def upload(self, upload: Upload) -> str: ...


# ── Prompts ─────────────────────────────────────────────────────────

IMAGE_PROMPT = """\
Analyze this business document image and extract all relevant financial information.
Identify if it's a receipt, invoice, statement, or other document type.
Extract: amounts, dates, vendor/customer names, categories, tax information, line items."""

DOCUMENT_PROMPT = """\
Analyze this business document and extract key financial information:

{text}

Identify document type and extract relevant business data."""

SPREADSHEET_PROMPT = """\
Analyze this spreadsheet data and identify financial patterns:

{text}

Extract financial data, identify columns, and provide insights."""

SYSTEM_PROMPT = """\
You extract structured financial data for a small-business finance assistant.
Answer ONLY with a JSON object matching this JSON schema (omit unknown fields):
{schema}"""

# Keeps the prompt within the model context for very long documents
MAX_PROMPT_TEXT_CHARS = 40_000


def document_prompt(text: str) -> str:
    return DOCUMENT_PROMPT.format(text=text[:MAX_PROMPT_TEXT_CHARS])


def spreadsheet_prompt(text: str) -> str:
    return SPREADSHEET_PROMPT.format(text=text[:MAX_PROMPT_TEXT_CHARS])


# ── OpenAI-compatible oracle ────────────────────────────────────────


class OpenAIExtractionOracle:
    """ExtractionOracle backed by ``AsyncOpenAI``, Mistral OCR and object storage."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client: AsyncOpenAI | None = None,
        storage: ObjectStorage | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client or AsyncOpenAI(
            api_key=self._settings.openai_api_key or self._settings.mistral_api_key,
            base_url=self._settings.llm_base_url,
        )
        self._storage = storage or S3ObjectStorage(self._settings)

    async def generate_object(
        self,
        *,
        prompt: str,
        schema: type[_M],
        image_url: str | None = None,
    ) -> _M:
        system = SYSTEM_PROMPT.format(schema=json.dumps(schema.model_json_schema()))
        if image_url:
            model = self._settings.vision_model
            user_content: str | list[dict] = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": image_url}},
            ]
        else:
            model = self._settings.extraction_model
            user_content = prompt

        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user_content},
                ],
                max_tokens=self._settings.extraction_max_tokens,
                temperature=0.1,
                response_format={"type": "json_object"},
            )
        except APIError as e:
            logger.warning("extraction_llm_failed", model=model, error=str(e))
            raise ExtractionError(f"LLM call failed: {e}") from e

        raw = response.choices[0].message.content or "{}"
        try:
            result = schema.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("extraction_invalid_output", schema=schema.__name__, error=str(e))
            raise ExtractionError(f"Model output does not match {schema.__name__}") from e

        logger.info("extraction_done", schema=schema.__name__, model=model, has_image=bool(image_url))
        return result

    async def extract_text(self, upload: Upload) -> str:
        """OCR for PDFs and images, UTF-8 for everything else (CSV, TSV, plain text)."""
        if resolve_ocr_mime(upload.content_type, upload.filename):
            try:
                return await ocr_document(upload.data, upload.filename, upload.content_type)
            except OCRProviderError as e:
                raise ExtractionError(str(e)) from e

        try:
            return upload.data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ExtractionError(
                f"Unsupported binary format for {upload.filename}; export it as CSV"
            ) from e

    async def upload(self, upload: Upload) -> str:
        key = f"receipts/{uuid4().hex[:12]}_{upload.filename}"
        try:
            return await self._storage.upload(
                upload.data, key, upload.content_type or "application/octet-stream"
            )
        except StorageError as e:
            raise ExtractionError(str(e)) from e
