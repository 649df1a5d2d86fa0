"""PatternLearner: business insights from the user's records and uploads.

Two inputs feed the learner:
- the records store (transactions, invoices, customers, vendors), analyzed in
  one pass by ``analyze_business_patterns``; the result replaces the user's
  previous learnings wholesale and refreshes the inferred business context;
- uploaded receipts, documents and spreadsheets, run through the extraction
  oracle by ``process_multi_modal_input``; each one is kept as a
  DocumentLearning and nudges the confidence of learnings it corroborates.

Every external call is bounded by ``timeout``. Failures are logged and turn
into an empty result, never an exception for the caller.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Awaitable, Mapping
from datetime import timedelta
from typing import Any, TypeVar

from buck.config import get_settings
from buck.core.clock import Clock, utc_now
from buck.core.locks import AsyncKeyedLock
from buck.core.logging import get_logger
from buck.schemas.learning import (
    BusinessLearning,
    DocumentAnalysis,
    DocumentLearning,
    DocumentType,
    InputKind,
    LearningDataExport,
    LearningStats,
    ReceiptExtraction,
    SpreadsheetAnalysis,
)
from buck.schemas.memory import BusinessContextUpdate
from buck.services import business_analysis as analysis
from buck.services.conversation_memory import ConversationMemory
from buck.services.data_store import DataStore
from buck.services.extraction import (
    IMAGE_PROMPT,
    ExtractionOracle,
    Upload,
    document_prompt,
    spreadsheet_prompt,
)

logger = get_logger(__name__)

_T = TypeVar("_T")

INSIGHT_MIN_CONFIDENCE = 0.7  # exclusive
HIGH_CONFIDENCE = 0.8  # exclusive
DOCUMENT_CONFIDENCE_BUMP = 0.05
DOCUMENT_CONFIDENCE_CAP = 0.95

_COLLECTIONS = ("transactions", "invoices", "customers", "vendors")
_DOCUMENT_TYPES = tuple(t for t in DocumentType if t is not DocumentType.DOCUMENT)


# ── Document helpers ────────────────────────────────────────────────


def structured_part(result: Mapping[str, Any]) -> Mapping[str, Any]:
    """The oracle's structured answer inside an extraction result."""
    for key in ("extracted_data", "analysis_result"):
        value = result.get(key)
        if isinstance(value, Mapping):
            return value
    return {}


def infer_document_type(data: Mapping[str, Any]) -> DocumentType:
    declared = str(data.get("document_type") or "").strip().lower()
    for doc_type in _DOCUMENT_TYPES:
        if doc_type.value in declared:
            return doc_type
    if data.get("vendor") and data.get("total_amount"):
        return DocumentType.RECEIPT
    if data.get("customer") and data.get("due_date"):
        return DocumentType.INVOICE
    return DocumentType.DOCUMENT


def _format_amount(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def extract_patterns(data: Mapping[str, Any]) -> list[str]:
    """Short "Label: value" facts plus any patterns the oracle reported."""
    patterns: list[str] = []
    if data.get("category"):
        patterns.append(f"Category: {data['category']}")
    if data.get("vendor"):
        patterns.append(f"Vendor: {data['vendor']}")
    if data.get("total_amount"):
        patterns.append(f"Amount: ${_format_amount(data['total_amount'])}")
    patterns.extend(str(p) for p in data.get("patterns") or [] if p)
    return patterns


def _evidence(pattern: str) -> str:
    """Lower-cased value of a "Label: value" pattern, or the whole pattern."""
    _, sep, value = pattern.partition(": ")
    return (value if sep else pattern).strip().lower()


def corroborates(learning: BusinessLearning, document_patterns: list[str]) -> bool:
    """True when some document value appears in the learning's pattern as whole words."""
    text = learning.pattern.lower()
    return any(
        ev and re.search(rf"(?<!\w){re.escape(ev)}(?!\w)", text)
        for ev in map(_evidence, document_patterns)
    )


# ── Service ─────────────────────────────────────────────────────────


class PatternLearner:
    def __init__(
        self,
        memory: ConversationMemory,
        store: DataStore,
        *,
        oracle: ExtractionOracle | None = None,
        clock: Clock = utc_now,
        timeout: float | None = None,
        expiry: timedelta | None = None,
    ) -> None:
        self._settings = get_settings()
        self._memory = memory
        self._store = store
        self._oracle = oracle
        self._clock = clock
        self.timeout = (
            timeout if timeout is not None else self._settings.external_call_timeout_seconds
        )
        self.expiry = expiry or timedelta(days=self._settings.memory_context_expiry_days)

        self._learnings: dict[str, list[BusinessLearning]] = {}
        self._documents: dict[str, list[DocumentLearning]] = {}
        self._lock = AsyncKeyedLock()

    async def _bounded(self, aw: Awaitable[_T]) -> _T:
        return await asyncio.wait_for(aw, timeout=self.timeout)

    # ── Records analysis ─────────────────────────────────────────

    async def _fetch_records(self, user_id: str) -> list[Any] | None:
        s = self._settings
        results = await asyncio.gather(
            self._bounded(self._store.list_transactions(user_id, s.learning_transactions_limit)),
            self._bounded(self._store.list_invoices(user_id, s.learning_invoices_limit)),
            self._bounded(self._store.list_customers(user_id, s.learning_customers_limit)),
            self._bounded(self._store.list_vendors(user_id, s.learning_vendors_limit)),
            return_exceptions=True,
        )

        failed = []
        for name, result in zip(_COLLECTIONS, results, strict=True):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                failed.append(name)
                logger.warning(
                    "learning_fetch_failed",
                    user_id=user_id,
                    collection=name,
                    error=str(result) or type(result).__name__,
                )
        return None if failed else list(results)

    def _run_analyzers(self, user_id: str, records: list[Any]) -> list[BusinessLearning]:
        transactions, invoices, customers, vendors = records
        now = self._clock()
        min_points = self._settings.learning_min_data_points
        candidates = [
            analysis.analyze_revenue(
                user_id, transactions, invoices, now, min_data_points=min_points
            ),
            analysis.analyze_expenses(user_id, transactions, now, min_data_points=min_points),
            analysis.analyze_customers(
                user_id, customers, invoices, now, min_data_points=min_points
            ),
            analysis.analyze_seasonality(
                user_id,
                transactions,
                invoices,
                now,
                min_data_points=self._settings.learning_min_seasonal_points,
            ),
            analysis.analyze_vendors(user_id, vendors, transactions, now, min_data_points=min_points),
        ]
        return [c for c in candidates if c is not None]

    async def analyze_business_patterns(self, user_id: str) -> list[BusinessLearning]:
        """Recompute the user's learnings from scratch.

        Returns [] (and keeps the previous learnings) when any collection
        cannot be fetched, so a partial batch never replaces a complete one.
        """
        async with self._lock(user_id):
            records = await self._fetch_records(user_id)
            if records is None:
                return []

            try:
                learnings = self._run_analyzers(user_id, records)
                transactions, invoices = records[0], records[1]
                inferred = BusinessContextUpdate(
                    industry=analysis.infer_industry(learnings),
                    business_type=analysis.infer_business_type(learnings),
                    revenue_range=analysis.infer_revenue_range(transactions, invoices),
                    primary_currency=analysis.infer_primary_currency(transactions),
                )
            except Exception:
                logger.exception("learning_analysis_failed", user_id=user_id)
                return []

            self._learnings[user_id] = learnings

        self._memory.update_business_context(user_id, inferred)

        logger.info(
            "business_patterns_analyzed",
            user_id=user_id,
            learnings=len(learnings),
            categories=[learning.category.value for learning in learnings],
            transactions=len(records[0]),
            invoices=len(records[1]),
        )
        return [learning.model_copy(deep=True) for learning in learnings]

    # ── Uploads ──────────────────────────────────────────────────

    async def _extract(
        self, oracle: ExtractionOracle, upload: Upload, kind: InputKind
    ) -> dict[str, Any]:
        if kind == InputKind.IMAGE:
            image_url = await self._bounded(oracle.upload(upload))
            receipt = await self._bounded(
                oracle.generate_object(
                    prompt=IMAGE_PROMPT,
                    schema=ReceiptExtraction,
                    image_url=upload.data_uri(),
                )
            )
            return {
                "image_url": image_url,
                "extracted_data": receipt.model_dump(mode="json", exclude_none=True),
                "processing_type": "image_ocr",
            }

        text = await self._bounded(oracle.extract_text(upload))
        if kind == InputKind.DOCUMENT:
            document = await self._bounded(
                oracle.generate_object(prompt=document_prompt(text), schema=DocumentAnalysis)
            )
            return {
                "extracted_text": text,
                "analysis_result": document.model_dump(mode="json", exclude_none=True),
                "processing_type": "document_analysis",
            }

        sheet = await self._bounded(
            oracle.generate_object(prompt=spreadsheet_prompt(text), schema=SpreadsheetAnalysis)
        )
        return {
            "extracted_data": text,
            "analysis_result": sheet.model_dump(mode="json", exclude_none=True),
            "processing_type": "spreadsheet_analysis",
        }

    async def process_multi_modal_input(
        self,
        user_id: str,
        upload: Upload,
        kind: InputKind | str,
    ) -> dict[str, Any]:
        """Extract structured data from an upload and learn from it.

        Returns the raw extraction result for display, or {} when extraction
        failed (nothing is recorded in that case).
        """
        kind = InputKind(kind)
        if self._oracle is None:
            logger.warning("multimodal_no_oracle", user_id=user_id, kind=kind.value)
            return {}

        try:
            result = await self._extract(self._oracle, upload, kind)
        except Exception as e:
            logger.warning(
                "multimodal_extraction_failed",
                user_id=user_id,
                kind=kind.value,
                filename=upload.filename,
                error=str(e) or type(e).__name__,
            )
            return {}

        data = structured_part(result)
        document = DocumentLearning(
            user_id=user_id,
            document_type=infer_document_type(data),
            kind=kind,
            extracted_data=result,
            patterns=extract_patterns(data),
            timestamp=self._clock(),
        )
        async with self._lock(user_id):
            self._documents.setdefault(user_id, []).append(document)
            bumped = self._apply_document_evidence(user_id, document)

        logger.info(
            "document_learned",
            user_id=user_id,
            kind=kind.value,
            document_type=document.document_type.value,
            patterns=len(document.patterns),
            corroborated=bumped,
        )
        return result

    def _apply_document_evidence(self, user_id: str, document: DocumentLearning) -> int:
        """Bump each learning the document corroborates, at most once per document."""
        if not document.patterns:
            return 0
        bumped = 0
        updated = []
        for learning in self._learnings.get(user_id, []):
            if corroborates(learning, document.patterns):
                learning = learning.model_copy(
                    update={
                        "data_points": learning.data_points + 1,
                        "confidence": min(
                            DOCUMENT_CONFIDENCE_CAP,
                            learning.confidence + DOCUMENT_CONFIDENCE_BUMP,
                        ),
                        "last_updated": document.timestamp,
                    }
                )
                bumped += 1
            updated.append(learning)
        if bumped:
            self._learnings[user_id] = updated
        return bumped

    # ── Reads ────────────────────────────────────────────────────

    def get_learnings(self, user_id: str) -> list[BusinessLearning]:
        return [learning.model_copy(deep=True) for learning in self._learnings.get(user_id, [])]

    def get_document_learnings(self, user_id: str) -> list[DocumentLearning]:
        return [doc.model_copy(deep=True) for doc in self._documents.get(user_id, [])]

    def get_personalized_insights(self, user_id: str) -> list[str]:
        """Prompt-ready lines: a header per confident learning, then its insights."""
        lines: list[str] = []
        for learning in self._learnings.get(user_id, []):
            if learning.confidence > INSIGHT_MIN_CONFIDENCE:
                lines.append(f"**{learning.category.heading}**: {learning.pattern}")
                lines.extend(f"  • {insight}" for insight in learning.insights)
        return lines

    def get_learning_stats(self, user_id: str) -> LearningStats:
        learnings = self._learnings.get(user_id, [])
        return LearningStats(
            total_patterns=len(learnings),
            high_confidence_patterns=sum(1 for lr in learnings if lr.confidence > HIGH_CONFIDENCE),
            documents_processed=len(self._documents.get(user_id, [])),
            last_learning_update=max((lr.last_updated for lr in learnings), default=None),
        )

    # ── Expiry ───────────────────────────────────────────────────

    async def clean_expired_data(self) -> int:
        """Drop learnings and documents not updated within the expiry window.

        Returns the number of removed entries.
        """
        cutoff = self._clock() - self.expiry
        removed = {"learnings": 0, "documents": 0}

        for user_id in set(self._learnings) | set(self._documents):
            async with self._lock(user_id):
                learnings = self._learnings.pop(user_id, [])
                kept = [lr for lr in learnings if lr.last_updated >= cutoff]
                removed["learnings"] += len(learnings) - len(kept)
                if kept:
                    self._learnings[user_id] = kept

                documents = self._documents.pop(user_id, [])
                recent = [doc for doc in documents if doc.timestamp >= cutoff]
                removed["documents"] += len(documents) - len(recent)
                if recent:
                    self._documents[user_id] = recent

        total = sum(removed.values())
        if total:
            logger.info("learning_expired_data_cleaned", **removed)
        return total

    # ── Privacy ──────────────────────────────────────────────────

    def export_user_data(self, user_id: str) -> LearningDataExport:
        return LearningDataExport(
            user_id=user_id,
            learnings=self.get_learnings(user_id),
            documents=self.get_document_learnings(user_id),
            exported_at=self._clock(),
        )

    async def delete_user_data(self, user_id: str) -> None:
        async with self._lock(user_id):
            self._learnings.pop(user_id, None)
            self._documents.pop(user_id, None)
        logger.info("learning_user_data_deleted", user_id=user_id)
