"""Coarse statistics over a user's financial records.

Pure functions: no I/O, no clock reads (the caller passes ``now``). Each
``analyze_*`` returns a single BusinessLearning, or None when there is not
enough data to say anything.

The customer analysis keeps two literal placeholders (average payment time and
top-customer share) rather than computing them; see AVERAGE_PAYMENT_DAYS.
"""

from __future__ import annotations

import math
from collections import Counter, defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime

from buck.schemas.learning import BusinessLearning, LearningCategory
from buck.schemas.records import (
    CustomerRecord,
    InvoiceRecord,
    InvoiceStatus,
    TransactionRecord,
    TransactionType,
    VendorRecord,
)

MIN_DATA_POINTS = 5
MIN_SEASONAL_POINTS = 12

# Placeholders, not computed from data
AVERAGE_PAYMENT_DAYS = 30
TOP_CUSTOMER_PERCENTAGE = 25

DEFAULT_CURRENCY = "USD"

# (upper month index exclusive, name): Jan–Mar, Apr–Jun, Jul–Sep, Oct–Dec
SEASONS: tuple[tuple[int, str], ...] = (
    (3, "Winter"),
    (6, "Spring"),
    (9, "Summer"),
    (12, "Fall"),
)

REVENUE_RANGES: tuple[tuple[float, str], ...] = (
    (1_000_000, "$1M+"),
    (500_000, "$500K-$1M"),
    (100_000, "$100K-$500K"),
)

INDUSTRY_HINTS: tuple[tuple[str, str], ...] = (
    ("inventory", "Retail"),
    ("software", "Technology"),
    ("materials", "Manufacturing"),
)


@dataclass(frozen=True)
class Dated:
    """An amount on a day, the shape transactions and invoices share for bucketing."""

    on: date
    amount: float


# ── Grouping helpers ────────────────────────────────────────────────


def revenue_entries(
    transactions: Iterable[TransactionRecord],
    invoices: Iterable[InvoiceRecord],
) -> list[Dated]:
    """Income transactions plus paid invoices, skipping undated rows."""
    entries = [
        Dated(t.occurred_on, t.amount)
        for t in transactions
        if t.type == TransactionType.INCOME and t.occurred_on is not None
    ]
    entries += [
        Dated(i.occurred_on, i.total)
        for i in invoices
        if i.status == InvoiceStatus.PAID and i.occurred_on is not None
    ]
    return entries


def activity_entries(
    transactions: Iterable[TransactionRecord],
    invoices: Iterable[InvoiceRecord],
) -> list[Dated]:
    entries = [Dated(t.occurred_on, t.amount) for t in transactions if t.occurred_on]
    entries += [Dated(i.occurred_on, i.total) for i in invoices if i.occurred_on]
    return entries


def group_by_month(entries: Iterable[Dated]) -> list[float]:
    """Sum per calendar month, in chronological order."""
    monthly: dict[str, float] = defaultdict(float)
    for e in entries:
        monthly[e.on.strftime("%Y-%m")] += e.amount
    return [monthly[k] for k in sorted(monthly)]


def group_by_category(expenses: Iterable[TransactionRecord]) -> dict[str, float]:
    totals: dict[str, float] = defaultdict(float)
    for t in expenses:
        totals[t.category or "Uncategorized"] += t.amount
    return dict(totals)


def group_by_vendor(expenses: Iterable[TransactionRecord]) -> dict[str, float]:
    totals: dict[str, float] = defaultdict(float)
    for t in expenses:
        totals[t.vendor or t.description or "Unknown"] += t.amount
    return dict(totals)


def season_of(month: int) -> str:
    """Season name for a 1-based calendar month."""
    if not 1 <= month <= 12:
        raise ValueError(f"invalid month: {month}")
    index = month - 1
    return next(name for upper, name in SEASONS if index < upper)


def group_by_season(entries: Iterable[Dated]) -> dict[str, float]:
    seasons = {name: 0.0 for _, name in SEASONS}
    for e in entries:
        seasons[season_of(e.on.month)] += e.amount
    return seasons


# ── Statistics ──────────────────────────────────────────────────────


def calculate_trend(values: list[float]) -> float:
    """Percent change from first to last value (0 when undefined)."""
    if len(values) < 2 or values[0] == 0:
        return 0.0
    return (values[-1] - values[0]) / values[0] * 100


def calculate_average(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def calculate_volatility(values: list[float]) -> float:
    """Population standard deviation as a percentage of the mean."""
    avg = calculate_average(values)
    if not values or avg == 0:
        return 0.0
    variance = sum((v - avg) ** 2 for v in values) / len(values)
    return math.sqrt(variance) / avg * 100


def share(part: float, total: float) -> float:
    return part / total * 100 if total else 0.0


def _top(totals: dict[str, float], n: int) -> list[tuple[str, float]]:
    return sorted(totals.items(), key=lambda kv: kv[1], reverse=True)[:n]


def trend_word(trend: float) -> str:
    if trend > 0:
        return "increasing"
    if trend < 0:
        return "decreasing"
    return "stable"


# ── Analyzers ───────────────────────────────────────────────────────


def analyze_revenue(
    user_id: str,
    transactions: list[TransactionRecord],
    invoices: list[InvoiceRecord],
    now: datetime,
    *,
    min_data_points: int = MIN_DATA_POINTS,
) -> BusinessLearning | None:
    monthly = group_by_month(revenue_entries(transactions, invoices))
    if len(monthly) < min_data_points:
        return None

    trend = calculate_trend(monthly)
    direction = trend_word(trend)
    growth = {"increasing": "Growing", "decreasing": "Declining"}.get(direction, "Flat")
    return BusinessLearning(
        user_id=user_id,
        category=LearningCategory.REVENUE_PATTERNS,
        pattern=f"Monthly revenue {direction} by {abs(trend):.1f}%",
        confidence=min(0.9, len(monthly) / 12),
        data_points=len(monthly),
        last_updated=now,
        insights=[
            f"Revenue trend: {growth}",
            f"Average monthly revenue: ${calculate_average(monthly):,.2f}",
            f"Revenue volatility: {calculate_volatility(monthly):.1f}%",
        ],
    )


def analyze_expenses(
    user_id: str,
    transactions: list[TransactionRecord],
    now: datetime,
    *,
    min_data_points: int = MIN_DATA_POINTS,
) -> BusinessLearning | None:
    expenses = [t for t in transactions if t.type == TransactionType.EXPENSE]
    if len(expenses) < min_data_points:
        return None

    total = sum(t.amount for t in expenses)
    top = _top(group_by_category(expenses), 3)
    return BusinessLearning(
        user_id=user_id,
        category=LearningCategory.EXPENSE_CATEGORIES,
        pattern="Top expense categories: " + ", ".join(name for name, _ in top),
        confidence=0.8,
        data_points=len(expenses),
        last_updated=now,
        insights=[f"{name}: ${amount:,.2f} ({share(amount, total):.1f}%)" for name, amount in top],
    )


def analyze_customers(
    user_id: str,
    customers: list[CustomerRecord],
    invoices: list[InvoiceRecord],
    now: datetime,
    *,
    min_data_points: int = MIN_DATA_POINTS,
) -> BusinessLearning | None:
    if len(customers) < min_data_points:
        return None

    paid = [i for i in invoices if i.status == InvoiceStatus.PAID]
    on_time = [
        i for i in paid
        if i.due_date is not None and i.settled_on is not None and i.settled_on <= i.due_date
    ]
    on_time_pct = round(share(len(on_time), len(paid)))
    late_pct = round(share(len(paid) - len(on_time), len(paid)))

    return BusinessLearning(
        user_id=user_id,
        category=LearningCategory.CUSTOMER_BEHAVIOR,
        pattern=f"Average payment time: {AVERAGE_PAYMENT_DAYS} days",
        confidence=0.7,
        data_points=len(invoices),
        last_updated=now,
        insights=[
            f"{on_time_pct}% of customers pay on time",
            f"{late_pct}% of payments are late",
            f"Top customer represents {TOP_CUSTOMER_PERCENTAGE}% of revenue",
        ],
    )


def analyze_seasonality(
    user_id: str,
    transactions: list[TransactionRecord],
    invoices: list[InvoiceRecord],
    now: datetime,
    *,
    min_data_points: int = MIN_SEASONAL_POINTS,
) -> BusinessLearning | None:
    entries = activity_entries(transactions, invoices)
    if len(entries) < min_data_points:
        return None

    seasons = group_by_season(entries)
    name, amount = _top(seasons, 1)[0]
    return BusinessLearning(
        user_id=user_id,
        category=LearningCategory.SEASONAL_TRENDS,
        pattern=f"Strongest season: {name}",
        confidence=0.6,
        data_points=len(entries),
        last_updated=now,
        insights=[
            f"{name} generates {share(amount, sum(seasons.values())):.1f}% of annual activity",
            "Consider seasonal budgeting and cash flow planning",
            "Plan marketing campaigns around peak seasons",
        ],
    )


def analyze_vendors(
    user_id: str,
    vendors: list[VendorRecord],
    transactions: list[TransactionRecord],
    now: datetime,
    *,
    min_data_points: int = MIN_DATA_POINTS,
) -> BusinessLearning | None:
    expenses = [t for t in transactions if t.type == TransactionType.EXPENSE]
    if len(vendors) < min_data_points or not expenses:
        return None

    name, amount = _top(group_by_vendor(expenses), 1)[0]
    total = sum(t.amount for t in expenses)
    return BusinessLearning(
        user_id=user_id,
        category=LearningCategory.VENDOR_RELATIONSHIPS,
        pattern=f"Top vendor: {name}",
        confidence=0.7,
        data_points=len(expenses),
        last_updated=now,
        insights=[
            f"Top vendor represents {share(amount, total):.1f}% of expenses",
            "Consider negotiating better terms with top vendors",
            "Diversify vendor relationships to reduce risk",
        ],
    )


# ── Inference heuristics (approximate by nature) ────────────────────


def infer_industry(learnings: list[BusinessLearning]) -> str:
    texts = [
        learning.pattern.lower() for learning in learnings
        if learning.category == LearningCategory.EXPENSE_CATEGORIES
    ]
    for hint, industry in INDUSTRY_HINTS:
        if any(hint in t for t in texts):
            return industry
    return "Services"


def infer_business_type(learnings: list[BusinessLearning]) -> str:
    if any(
        "recurring" in learning.pattern.lower()
        for learning in learnings
        if learning.category == LearningCategory.REVENUE_PATTERNS
    ):
        return "Subscription"
    return "Traditional"


def infer_revenue_range(
    transactions: list[TransactionRecord],
    invoices: list[InvoiceRecord],
) -> str:
    total = sum(e.amount for e in revenue_entries(transactions, invoices))
    for threshold, label in REVENUE_RANGES:
        if total > threshold:
            return label
    return "Under $100K"


def infer_primary_currency(transactions: list[TransactionRecord]) -> str:
    counts = Counter(t.currency or DEFAULT_CURRENCY for t in transactions)
    if not counts:
        return DEFAULT_CURRENCY
    return counts.most_common(1)[0][0]
