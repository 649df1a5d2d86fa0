"""Tests for PatternLearner: record analysis, uploads, insights, stats, privacy."""

from __future__ import annotations

import asyncio
from datetime import date, timedelta

import pytest
from conftest import FakeOracle, FakeStore, customer, invoice, txn, vendor

from buck.schemas.learning import BusinessLearning, DocumentType, InputKind, LearningCategory
from buck.services.extraction import ExtractionError, Upload
from buck.services.pattern_learner import (
    PatternLearner,
    corroborates,
    extract_patterns,
    infer_document_type,
    structured_part,
)


def _records() -> FakeStore:
    transactions = [
        txn(1000, date(2026, 1, 10)),
        txn(1500, date(2026, 2, 10)),
        txn(2000, date(2026, 3, 10)),
        txn(2500, date(2026, 4, 10)),
        txn(500, date(2026, 1, 11), type="expense", category="Inventory"),
        txn(300, date(2026, 1, 12), type="expense", category="Inventory"),
        txn(1000, date(2026, 1, 13), type="expense", category="Rent"),
        txn(200, date(2026, 1, 14), type="expense", category="Software"),
        txn(100, date(2026, 1, 15), type="expense", category="Marketing"),
    ]
    invoices = [invoice(3000, issued=date(2026, 5, 1), due=date(2026, 5, 31), paid=date(2026, 5, 20))]
    customers = [customer(i) for i in range(5)]
    return FakeStore(transactions, invoices, customers)


def _learner(memory, clock, store=None, oracle=None, **kwargs) -> PatternLearner:
    return PatternLearner(memory, store or _records(), oracle=oracle, clock=clock, **kwargs)


RECEIPT = {
    "document_type": "receipt",
    "vendor": "Office Depot",
    "date": "2026-03-01",
    "total_amount": 45.5,
    "currency": "USD",
    "category": "Inventory",
    "line_items": [{"description": "Paper", "amount": 45.5, "quantity": 1}],
}

PNG = Upload(filename="receipt.png", content_type="image/png", data=b"\x89PNG fake")


# ── Record analysis ───────────────────────────────────────────────


class TestAnalyzeBusinessPatterns:
    @pytest.mark.asyncio
    async def test_increasing_revenue_learning(self, memory, clock):
        learner = _learner(memory, clock)
        learnings = await learner.analyze_business_patterns("u1")

        revenue = next(lr for lr in learnings if lr.category == LearningCategory.REVENUE_PATTERNS)
        assert "increasing" in revenue.pattern
        assert {lr.category for lr in learnings} == {
            LearningCategory.REVENUE_PATTERNS,
            LearningCategory.EXPENSE_CATEGORIES,
            LearningCategory.CUSTOMER_BEHAVIOR,
        }

    @pytest.mark.asyncio
    async def test_updates_business_context(self, memory, clock):
        memory.update_business_context("u1", {"company_name": "Acme"})
        await _learner(memory, clock).analyze_business_patterns("u1")

        context = memory.get_business_context("u1")
        assert context.company_name == "Acme"
        assert context.industry == "Retail"
        assert context.business_type == "Traditional"
        assert context.revenue_range == "Under $100K"
        assert context.primary_currency == "USD"

    @pytest.mark.asyncio
    async def test_fetches_bounded_batches(self, memory, clock):
        store = _records()
        await _learner(memory, clock, store=store).analyze_business_patterns("u1")
        assert sorted(store.calls) == [
            ("customers", "u1", 100),
            ("invoices", "u1", 200),
            ("transactions", "u1", 500),
            ("vendors", "u1", 100),
        ]

    @pytest.mark.asyncio
    async def test_fetch_failure_returns_empty_and_keeps_previous_state(self, memory, clock):
        store = _records()
        learner = _learner(memory, clock, store=store)
        first = await learner.analyze_business_patterns("u1")
        context_before = memory.get_business_context("u1")

        store.fail = {"vendors"}
        clock.advance(hours=1)
        assert await learner.analyze_business_patterns("u1") == []

        assert learner.get_learnings("u1") == first
        assert memory.get_business_context("u1") == context_before

    @pytest.mark.asyncio
    async def test_slow_store_times_out(self, memory, clock):
        class SlowStore(FakeStore):
            async def list_customers(self, user_id, limit):
                await asyncio.sleep(5)
                return []

        learner = _learner(memory, clock, store=SlowStore(), timeout=0.01)
        assert await learner.analyze_business_patterns("u1") == []
        assert memory.get_business_context("u1") is None

    @pytest.mark.asyncio
    async def test_learnings_replaced_wholesale(self, memory, clock):
        store = _records()
        learner = _learner(memory, clock, store=store)
        await learner.analyze_business_patterns("u1")

        store.transactions = []
        learnings = await learner.analyze_business_patterns("u1")

        assert [lr.category for lr in learnings] == [LearningCategory.CUSTOMER_BEHAVIOR]
        assert learner.get_learnings("u1") == learnings

    @pytest.mark.asyncio
    async def test_not_enough_data(self, memory, clock):
        learner = _learner(memory, clock, store=FakeStore())
        assert await learner.analyze_business_patterns("u1") == []
        # inference still runs on an empty batch
        assert memory.get_business_context("u1").industry == "Services"


# ── Insights & stats ──────────────────────────────────────────────


class TestInsightsAndStats:
    @pytest.mark.asyncio
    async def test_only_confident_learnings(self, memory, clock):
        learner = _learner(memory, clock)
        await learner.analyze_business_patterns("u1")

        # revenue (5/12) and customers (0.7) are not above 0.7
        assert learner.get_personalized_insights("u1") == [
            "**EXPENSE CATEGORIES**: Top expense categories: Rent, Inventory, Software",
            "  • Rent: $1,000.00 (47.6%)",
            "  • Inventory: $800.00 (38.1%)",
            "  • Software: $200.00 (9.5%)",
        ]

    def test_unknown_user(self, memory, clock):
        learner = _learner(memory, clock)
        assert learner.get_personalized_insights("nobody") == []
        stats = learner.get_learning_stats("nobody")
        assert stats.total_patterns == 0
        assert stats.last_learning_update is None

    @pytest.mark.asyncio
    async def test_stats(self, memory, clock):
        learner = _learner(memory, clock, oracle=FakeOracle(RECEIPT))
        await learner.analyze_business_patterns("u1")

        stats = learner.get_learning_stats("u1")
        assert stats.total_patterns == 3
        assert stats.high_confidence_patterns == 0
        assert stats.documents_processed == 0
        assert stats.last_learning_update == clock.now

        clock.advance(minutes=10)
        await learner.process_multi_modal_input("u1", PNG, "image")

        stats = learner.get_learning_stats("u1")
        assert stats.high_confidence_patterns == 1
        assert stats.documents_processed == 1
        assert stats.last_learning_update == clock.now


# ── Uploads ───────────────────────────────────────────────────────


class TestProcessMultiModalInput:
    @pytest.mark.asyncio
    async def test_image(self, memory, clock):
        oracle = FakeOracle(RECEIPT)
        learner = _learner(memory, clock, oracle=oracle)

        result = await learner.process_multi_modal_input("u1", PNG, InputKind.IMAGE)

        assert result["processing_type"] == "image_ocr"
        assert result["image_url"] == "https://files.example.com/receipts/receipt.png"
        assert result["extracted_data"]["vendor"] == "Office Depot"
        assert result["extracted_data"]["line_items"][0]["description"] == "Paper"
        assert oracle.image_urls[0].startswith("data:image/png;base64,")

        (doc,) = learner.get_document_learnings("u1")
        assert doc.document_type == DocumentType.RECEIPT
        assert doc.kind == InputKind.IMAGE
        assert doc.patterns == ["Category: Inventory", "Vendor: Office Depot", "Amount: $45.5"]
        assert doc.extracted_data == result

    @pytest.mark.asyncio
    async def test_image_bumps_matching_learning(self, memory, clock):
        learner = _learner(memory, clock, oracle=FakeOracle(RECEIPT))
        await learner.analyze_business_patterns("u1")
        clock.advance(minutes=1)

        await learner.process_multi_modal_input("u1", PNG, "image")

        expenses = next(
            lr for lr in learner.get_learnings("u1")
            if lr.category == LearningCategory.EXPENSE_CATEGORIES
        )
        assert expenses.data_points == 6
        assert expenses.confidence == pytest.approx(0.85)
        assert expenses.last_updated == clock.now

        revenue = next(
            lr for lr in learner.get_learnings("u1")
            if lr.category == LearningCategory.REVENUE_PATTERNS
        )
        assert revenue.data_points == 5

    @pytest.mark.asyncio
    async def test_document(self, memory, clock):
        oracle = FakeOracle(
            {
                "document_type": "Sales Invoice",
                "key_financial_data": [{"category": "Total", "value": "$500", "amount": 500}],
                "business_insights": ["Net 30 payment terms"],
            },
            text="INVOICE #12\nTotal due: $500",
        )
        learner = _learner(memory, clock, oracle=oracle)
        upload = Upload(filename="inv.pdf", content_type="application/pdf", data=b"%PDF")

        result = await learner.process_multi_modal_input("u1", upload, "document")

        assert result["processing_type"] == "document_analysis"
        assert result["extracted_text"] == "INVOICE #12\nTotal due: $500"
        assert result["analysis_result"]["business_insights"] == ["Net 30 payment terms"]
        assert "Total due: $500" in oracle.prompts[0]
        assert oracle.image_urls == [None]
        (doc,) = learner.get_document_learnings("u1")
        assert doc.document_type == DocumentType.INVOICE

    @pytest.mark.asyncio
    async def test_spreadsheet_patterns_corroborate_revenue(self, memory, clock):
        oracle = FakeOracle(
            {"patterns": ["Revenue increasing"], "recommendations": ["Invoice faster"]},
            text="month,revenue\nJan,1000\nFeb,1500",
        )
        learner = _learner(memory, clock, oracle=oracle)
        await learner.analyze_business_patterns("u1")
        upload = Upload(filename="q1.csv", content_type="text/csv", data=b"month,revenue")

        result = await learner.process_multi_modal_input("u1", upload, "spreadsheet")

        assert result["processing_type"] == "spreadsheet_analysis"
        assert result["extracted_data"] == "month,revenue\nJan,1000\nFeb,1500"
        (doc,) = learner.get_document_learnings("u1")
        assert doc.patterns == ["Revenue increasing"]
        assert doc.document_type == DocumentType.DOCUMENT

        revenue = next(
            lr for lr in learner.get_learnings("u1")
            if lr.category == LearningCategory.REVENUE_PATTERNS
        )
        assert revenue.confidence == pytest.approx(5 / 12 + 0.05)

    @pytest.mark.asyncio
    async def test_bump_capped(self, memory, clock):
        # 11 months: confidence already at the 0.9 cap, too few entries for seasonality
        store = FakeStore([txn(100, date(2025, m, 1)) for m in range(1, 12)])
        oracle = FakeOracle({"patterns": ["stable"]})
        learner = _learner(memory, clock, store=store, oracle=oracle)
        await learner.analyze_business_patterns("u1")
        upload = Upload(filename="a.csv", content_type="text/csv", data=b"a")

        for _ in range(3):
            await learner.process_multi_modal_input("u1", upload, "spreadsheet")

        (revenue,) = learner.get_learnings("u1")
        assert revenue.confidence == 0.95
        assert revenue.data_points == 14

    @pytest.mark.asyncio
    async def test_one_bump_per_document(self, memory, clock):
        oracle = FakeOracle({"category": "Inventory", "vendor": "Rent"})
        learner = _learner(memory, clock, oracle=oracle)
        await learner.analyze_business_patterns("u1")

        await learner.process_multi_modal_input("u1", PNG, "image")

        expenses = next(
            lr for lr in learner.get_learnings("u1")
            if lr.category == LearningCategory.EXPENSE_CATEGORIES
        )
        assert expenses.confidence == pytest.approx(0.85)

    @pytest.mark.asyncio
    async def test_extraction_failure_returns_empty(self, memory, clock):
        oracle = FakeOracle(error=ExtractionError("model down"))
        learner = _learner(memory, clock, oracle=oracle)

        assert await learner.process_multi_modal_input("u1", PNG, "image") == {}
        assert learner.get_document_learnings("u1") == []

    @pytest.mark.asyncio
    async def test_extraction_timeout_returns_empty(self, memory, clock):
        class SlowOracle(FakeOracle):
            async def extract_text(self, upload):
                await asyncio.sleep(5)
                return ""

        learner = _learner(memory, clock, oracle=SlowOracle(), timeout=0.01)
        upload = Upload(filename="a.pdf", content_type="application/pdf", data=b"%PDF")
        assert await learner.process_multi_modal_input("u1", upload, "document") == {}

    @pytest.mark.asyncio
    async def test_without_oracle(self, memory, clock):
        learner = _learner(memory, clock)
        assert await learner.process_multi_modal_input("u1", PNG, "image") == {}

    @pytest.mark.asyncio
    async def test_unknown_kind(self, memory, clock):
        learner = _learner(memory, clock, oracle=FakeOracle())
        with pytest.raises(ValueError):
            await learner.process_multi_modal_input("u1", PNG, "video")


# ── Document helpers ──────────────────────────────────────────────


class TestDocumentHelpers:
    def test_structured_part(self):
        assert structured_part({"extracted_data": {"a": 1}}) == {"a": 1}
        assert structured_part({"extracted_data": "raw csv", "analysis_result": {"b": 2}}) == {"b": 2}
        assert structured_part({}) == {}

    @pytest.mark.parametrize(
        ("data", "expected"),
        [
            ({"document_type": "Bank Statement"}, DocumentType.STATEMENT),
            ({"document_type": "contract"}, DocumentType.CONTRACT),
            ({"vendor": "Acme", "total_amount": 10}, DocumentType.RECEIPT),
            ({"customer": "Bob", "due_date": "2026-01-01"}, DocumentType.INVOICE),
            ({"document_type": "memo"}, DocumentType.DOCUMENT),
            ({}, DocumentType.DOCUMENT),
        ],
    )
    def test_infer_document_type(self, data, expected):
        assert infer_document_type(data) == expected

    def test_extract_patterns(self):
        data = {"category": "Travel", "vendor": "Delta", "total_amount": 320.0, "patterns": ["Q3 spike", ""]}
        assert extract_patterns(data) == [
            "Category: Travel",
            "Vendor: Delta",
            "Amount: $320",
            "Q3 spike",
        ]

    def test_corroborates_uses_value_part(self, clock):
        learning = BusinessLearning(
            user_id="u1",
            category=LearningCategory.VENDOR_RELATIONSHIPS,
            pattern="Top vendor: Delta",
            confidence=0.7,
            last_updated=clock.now,
        )
        assert corroborates(learning, ["Vendor: delta"])
        assert not corroborates(learning, ["Vendor: United"])
        assert not corroborates(learning, [])

    def test_corroborates_whole_words_only(self, clock):
        learning = BusinessLearning(
            user_id="u1",
            category=LearningCategory.VENDOR_RELATIONSHIPS,
            pattern="Top vendor: Office Depot",
            confidence=0.7,
            last_updated=clock.now,
        )
        assert not corroborates(learning, ["Category: ice"])
        assert not corroborates(learning, ["Vendor: Depo"])
        assert corroborates(learning, ["Vendor: office depot"])
        assert corroborates(learning, ["Category: Office"])

    @pytest.mark.asyncio
    async def test_partial_word_does_not_bump(self, memory, clock):
        store = _records()
        store.vendors = [vendor(i) for i in range(5)]
        store.transactions.append(txn(4000, date(2026, 2, 1), type="expense", vendor="Office Depot"))
        learner = _learner(memory, clock, store=store, oracle=FakeOracle({"category": "ice"}))
        await learner.analyze_business_patterns("u1")
        before = learner.get_learnings("u1")
        assert any(lr.pattern == "Top vendor: Office Depot" for lr in before)

        await learner.process_multi_modal_input("u1", PNG, "image")

        assert learner.get_learnings("u1") == before


# ── Expiry ────────────────────────────────────────────────────────


class TestLearnerExpiry:
    async def _learner_with_data(self, memory, clock) -> PatternLearner:
        learner = _learner(memory, clock, oracle=FakeOracle(RECEIPT))
        await learner.analyze_business_patterns("u1")
        await learner.process_multi_modal_input("u1", PNG, "image")
        return learner

    @pytest.mark.asyncio
    async def test_kept_within_window(self, memory, clock):
        learner = await self._learner_with_data(memory, clock)
        clock.advance(days=29)

        assert await learner.clean_expired_data() == 0
        assert len(learner.get_learnings("u1")) == 3
        assert len(learner.get_document_learnings("u1")) == 1

    @pytest.mark.asyncio
    async def test_removed_after_window(self, memory, clock):
        learner = await self._learner_with_data(memory, clock)
        clock.advance(days=31)

        assert await learner.clean_expired_data() == 4
        assert learner.get_learnings("u1") == []
        assert learner.get_document_learnings("u1") == []
        assert learner.get_learning_stats("u1").documents_processed == 0

    @pytest.mark.asyncio
    async def test_corroborated_learning_stays_fresh(self, memory, clock):
        learner = _learner(memory, clock, oracle=FakeOracle(RECEIPT))
        await learner.analyze_business_patterns("u1")
        clock.advance(days=20)
        await learner.process_multi_modal_input("u1", PNG, "image")
        clock.advance(days=15)

        assert await learner.clean_expired_data() == 2
        (expenses,) = learner.get_learnings("u1")
        assert expenses.category == LearningCategory.EXPENSE_CATEGORIES
        assert len(learner.get_document_learnings("u1")) == 1

    @pytest.mark.asyncio
    async def test_custom_expiry(self, memory, clock):
        learner = _learner(memory, clock, oracle=FakeOracle(RECEIPT), expiry=timedelta(days=1))
        await learner.process_multi_modal_input("u1", PNG, "image")
        clock.advance(days=2)
        assert await learner.clean_expired_data() == 1


# ── Privacy ───────────────────────────────────────────────────────


class TestLearnerPrivacy:
    @pytest.mark.asyncio
    async def test_export_and_delete(self, memory, clock):
        learner = _learner(memory, clock, oracle=FakeOracle(RECEIPT))
        await learner.analyze_business_patterns("u1")
        await learner.process_multi_modal_input("u1", PNG, "image")

        export = learner.export_user_data("u1")
        assert len(export.learnings) == 3
        assert len(export.documents) == 1

        await learner.delete_user_data("u1")
        assert learner.get_learnings("u1") == []
        assert learner.get_document_learnings("u1") == []
        assert learner.get_learning_stats("u1").documents_processed == 0
