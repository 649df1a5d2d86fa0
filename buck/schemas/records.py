"""Read models for financial records fetched from the external data store.

Every field except the identifiers is optional: rows written by older clients
routinely miss categories, vendors or dates, and analysis must tolerate that.
"""

import datetime as dt
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, field_validator


class TransactionType(StrEnum):
    INCOME = "income"
    EXPENSE = "expense"


class InvoiceStatus(StrEnum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


def _lower(value: object) -> object:
    return value.strip().lower() if isinstance(value, str) else value


class TransactionRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    type: TransactionType
    amount: float = 0.0
    description: str | None = None
    category: str | None = None
    vendor: str | None = None
    currency: str | None = None
    date: dt.date | None = None
    created_at: dt.datetime | None = None

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: object) -> object:
        return _lower(v)

    @property
    def occurred_on(self) -> dt.date | None:
        if self.date is not None:
            return self.date
        return self.created_at.date() if self.created_at else None


class InvoiceRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    customer_id: str | None = None
    invoice_number: str | None = None
    status: InvoiceStatus = InvoiceStatus.DRAFT
    total: float = 0.0
    currency: str | None = None
    issue_date: dt.date | None = None
    due_date: dt.date | None = None
    paid_date: dt.date | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v: object) -> object:
        return _lower(v)

    @property
    def occurred_on(self) -> dt.date | None:
        """Settlement date for paid invoices, issue date otherwise."""
        for d in (self.paid_date, self.issue_date):
            if d is not None:
                return d
        return self.created_at.date() if self.created_at else None

    @property
    def settled_on(self) -> dt.date | None:
        if self.paid_date is not None:
            return self.paid_date
        return self.updated_at.date() if self.updated_at else None


class CustomerRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    name: str | None = None
    email: str | None = None
    created_at: dt.datetime | None = None


class VendorRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    name: str | None = None
    email: str | None = None
    created_at: dt.datetime | None = None
