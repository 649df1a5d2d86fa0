"""Shared fixtures: a controllable clock, an in-memory records store, a scripted oracle."""

from __future__ import annotations

from datetime import UTC, date, datetime

import pytest
from pydantic import BaseModel

from buck.core.clock import ManualClock
from buck.schemas.records import (
    CustomerRecord,
    InvoiceRecord,
    TransactionRecord,
    VendorRecord,
)
from buck.services.conversation_memory import ConversationMemory
from buck.services.extraction import Upload

START = datetime(2026, 3, 2, 9, 30, tzinfo=UTC)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture
def memory(clock: ManualClock) -> ConversationMemory:
    return ConversationMemory(clock=clock)


# ── Record builders ───────────────────────────────────────────────


def txn(
    amount: float,
    on: date,
    *,
    type: str = "income",
    user_id: str = "u1",
    category: str | None = None,
    vendor: str | None = None,
    currency: str = "USD",
    description: str | None = None,
) -> TransactionRecord:
    return TransactionRecord(
        id=f"t-{on.isoformat()}-{amount}-{type}",
        user_id=user_id,
        type=type,
        amount=amount,
        description=description,
        category=category,
        vendor=vendor,
        currency=currency,
        date=on,
        created_at=datetime.combine(on, datetime.min.time(), tzinfo=UTC),
    )


def invoice(
    total: float,
    *,
    status: str = "paid",
    issued: date,
    due: date | None = None,
    paid: date | None = None,
    user_id: str = "u1",
) -> InvoiceRecord:
    created = datetime.combine(issued, datetime.min.time(), tzinfo=UTC)
    return InvoiceRecord(
        id=f"i-{issued.isoformat()}-{total}",
        user_id=user_id,
        customer_id="c1",
        invoice_number=f"INV-{issued.isoformat()}",
        status=status,
        total=total,
        currency="USD",
        issue_date=issued,
        due_date=due,
        paid_date=paid,
        created_at=created,
        updated_at=created,
    )


def customer(n: int, user_id: str = "u1") -> CustomerRecord:
    return CustomerRecord(
        id=f"c{n}", user_id=user_id, name=f"Customer {n}", created_at=START
    )


def vendor(n: int, user_id: str = "u1") -> VendorRecord:
    return VendorRecord(id=f"v{n}", user_id=user_id, name=f"Vendor {n}", created_at=START)


# ── Fakes ─────────────────────────────────────────────────────────


class FakeStore:
    """DataStore over plain lists; ``fail`` names collections that raise."""

    def __init__(self, transactions=(), invoices=(), customers=(), vendors=(), fail=()):
        self.transactions = list(transactions)
        self.invoices = list(invoices)
        self.customers = list(customers)
        self.vendors = list(vendors)
        self.fail = set(fail)
        self.calls: list[tuple[str, str, int]] = []

    async def _list(self, name: str, user_id: str, limit: int) -> list:
        self.calls.append((name, user_id, limit))
        if name in self.fail:
            raise ConnectionError(f"{name} unavailable")
        rows = [r for r in getattr(self, name) if r.user_id == user_id]
        return rows[:limit]

    async def list_transactions(self, user_id, limit):
        return await self._list("transactions", user_id, limit)

    async def list_invoices(self, user_id, limit):
        return await self._list("invoices", user_id, limit)

    async def list_customers(self, user_id, limit):
        return await self._list("customers", user_id, limit)

    async def list_vendors(self, user_id, limit):
        return await self._list("vendors", user_id, limit)


class FakeOracle:
    """ExtractionOracle returning canned payloads, validated like the real one."""

    def __init__(self, payload: dict | None = None, *, text: str = "", error: Exception | None = None):
        self.payload = payload or {}
        self.text = text
        self.error = error
        self.prompts: list[str] = []
        self.image_urls: list[str | None] = []

    async def generate_object(self, *, prompt: str, schema: type[BaseModel], image_url=None):
        self.prompts.append(prompt)
        self.image_urls.append(image_url)
        if self.error is not None:
            raise self.error
        return schema.model_validate(self.payload)

    async def extract_text(self, upload: Upload) -> str:
        return self.text

    async def upload(self, upload: Upload) -> str:
        return f"https://files.example.com/receipts/{upload.filename}"
