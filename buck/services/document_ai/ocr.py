"""Mistral OCR client for text extraction from PDFs and scanned documents."""

import base64
import logging
from pathlib import Path

import httpx

from buck.config import get_settings

logger = logging.getLogger(__name__)

MISTRAL_OCR_URL = "https://api.mistral.ai/v1/ocr"

OCR_MIME_TYPES = {
    "application/pdf",
    "image/jpeg",
    "image/png",
    "image/tiff",
    "image/webp",
    "image/bmp",
}

_EXTENSION_MIME = {
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".tiff": "image/tiff",
    ".tif": "image/tiff",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
}


class OCRProviderError(Exception):
    """Raised when the OCR provider fails."""


def resolve_ocr_mime(content_type: str | None, filename: str) -> str | None:
    """MIME type to send to OCR, or None when the file is not OCR material."""
    if content_type in OCR_MIME_TYPES:
        return content_type
    return _EXTENSION_MIME.get(Path(filename).suffix.lower())


async def ocr_document(
    file_bytes: bytes,
    filename: str,
    content_type: str | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = 120.0,
) -> str:
    """Extract the text of a PDF or image, pages joined by blank lines."""
    settings = get_settings()
    if not settings.mistral_api_key:
        raise OCRProviderError("MISTRAL_API_KEY is not configured")

    mime = resolve_ocr_mime(content_type, filename)
    if mime is None:
        raise OCRProviderError(f"Unsupported file type for OCR: {filename}")

    data_uri = f"data:{mime};base64,{base64.b64encode(file_bytes).decode('ascii')}"
    if mime.startswith("image/"):
        document = {"type": "image_url", "image_url": data_uri}
    else:
        document = {"type": "document_url", "document_url": data_uri}
    payload = {"model": settings.mistral_ocr_model, "document": document}

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=timeout)
    try:
        response = await client.post(
            MISTRAL_OCR_URL,
            json=payload,
            headers={"Authorization": f"Bearer {settings.mistral_api_key}"},
        )
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        logger.error("Mistral OCR HTTP error %s: %s", e.response.status_code, e.response.text[:500])
        raise OCRProviderError(f"Mistral OCR returned {e.response.status_code}") from e
    except httpx.RequestError as e:
        logger.error("Mistral OCR request error: %s", e)
        raise OCRProviderError(f"Mistral OCR request failed: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    # {"pages": [{"index": 0, "markdown": "..."}, ...]}
    pages = sorted(response.json().get("pages", []), key=lambda p: p.get("index", 0))
    text = "\n\n".join(p.get("markdown", "").strip() for p in pages if p.get("markdown"))

    logger.info("Mistral OCR: %d pages, %d chars from %s", len(pages), len(text), filename)
    return text
