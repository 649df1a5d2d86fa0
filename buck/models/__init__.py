"""SQLAlchemy models package (tables owned by the external records store)."""

from buck.models.invoice import Invoice
from buck.models.party import Customer, Vendor
from buck.models.transaction import Transaction

__all__ = [
    "Customer",
    "Invoice",
    "Transaction",
    "Vendor",
]
