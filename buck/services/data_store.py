"""Records store: read access to a user's transactions, invoices and counterparties.

PatternLearner depends only on the ``DataStore`` protocol; ``SqlDataStore`` is
the production implementation over the async SQLAlchemy tables.
"""

from __future__ import annotations

from typing import Any, Protocol, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from buck.core.logging import get_logger
from buck.models import Customer, Invoice, Transaction, Vendor
from buck.schemas.records import (
    CustomerRecord,
    InvoiceRecord,
    TransactionRecord,
    VendorRecord,
)

logger = get_logger(__name__)

_R = TypeVar("_R", bound=BaseModel)


class DataStoreError(Exception):
    """Raised when the records store cannot be queried."""

    def __init__(self, collection: str, cause: Exception) -> None:
        self.collection = collection
        super().__init__(f"Query on '{collection}' failed: {cause}")


class DataStore(Protocol):
    """Newest-first listings of one user's records, bounded by ``limit``."""

    async def list_transactions(self, user_id: str, limit: int) -> list[TransactionRecord]: ...

    async def list_invoices(self, user_id: str, limit: int) -> list[InvoiceRecord]: ...

    async def list_customers(self, user_id: str, limit: int) -> list[CustomerRecord]: ...

    async def list_vendors(self, user_id: str, limit: int) -> list[VendorRecord]: ...


class SqlDataStore:
    """DataStore over the records tables, one short-lived session per query."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._session_maker = session_maker

    async def _fetch(self, collection: str, stmt: Any) -> list[Any]:
        try:
            async with self._session_maker() as db:
                result = await db.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.warning("data_store_query_failed", collection=collection, error=str(e))
            raise DataStoreError(collection, e) from e

    @staticmethod
    def _validate(collection: str, model: type[_R], rows: list[Any]) -> list[_R]:
        """Convert rows one by one. Rows that do not fit the read model are skipped."""
        records = []
        for row in rows:
            try:
                records.append(model.model_validate(row))
            except ValidationError as e:
                logger.warning(
                    "data_store_row_skipped",
                    collection=collection,
                    row_id=getattr(row, "id", None),
                    errors=e.error_count(),
                )
        return records

    async def list_transactions(self, user_id: str, limit: int) -> list[TransactionRecord]:
        rows = await self._fetch(
            "transactions",
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.date.desc().nulls_last(), Transaction.created_at.desc())
            .limit(limit),
        )
        return self._validate("transactions", TransactionRecord, rows)

    async def list_invoices(self, user_id: str, limit: int) -> list[InvoiceRecord]:
        rows = await self._fetch(
            "invoices",
            select(Invoice)
            .where(Invoice.user_id == user_id)
            .order_by(Invoice.created_at.desc())
            .limit(limit),
        )
        return self._validate("invoices", InvoiceRecord, rows)

    async def list_customers(self, user_id: str, limit: int) -> list[CustomerRecord]:
        rows = await self._fetch(
            "customers",
            select(Customer)
            .where(Customer.user_id == user_id)
            .order_by(Customer.created_at.desc())
            .limit(limit),
        )
        return self._validate("customers", CustomerRecord, rows)

    async def list_vendors(self, user_id: str, limit: int) -> list[VendorRecord]:
        rows = await self._fetch(
            "vendors",
            select(Vendor)
            .where(Vendor.user_id == user_id)
            .order_by(Vendor.created_at.desc())
            .limit(limit),
        )
        return self._validate("vendors", VendorRecord, rows)
