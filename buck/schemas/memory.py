"""Conversation memory schemas (turns, business context, preferences, patterns)."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# ── Enums ────────────────────────────────────────────────────────────


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"


class PatternCategory(StrEnum):
    REVENUE = "revenue"
    EXPENSE = "expense"
    CUSTOMER = "customer"
    VENDOR = "vendor"
    SEASONAL = "seasonal"


class CommunicationStyle(StrEnum):
    FORMAL = "formal"
    CASUAL = "casual"
    TECHNICAL = "technical"


class ReportFrequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


# ── Conversation ─────────────────────────────────────────────────────


class ConversationTurn(BaseModel):
    """One message of a conversation. Immutable once recorded."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: Role
    content: str
    timestamp: datetime
    metadata: dict | None = None
    incomplete: bool = False  # stream abandoned or failed mid-way


# ── Business context ─────────────────────────────────────────────────


# Partials accept snake_case or camelCase keys and reject anything else.
_PARTIAL_CONFIG = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class _BusinessContextFields(BaseModel):
    company_name: str | None = None
    industry: str | None = None
    business_type: str | None = None
    revenue_range: str | None = None
    employee_count: str | None = None
    primary_currency: str | None = None
    fiscal_year_end: str | None = None


class BusinessContextUpdate(_BusinessContextFields):
    """Partial business context. Unset fields keep their previous value."""

    model_config = _PARTIAL_CONFIG


class BusinessContext(_BusinessContextFields):
    user_id: str
    last_updated: datetime


# ── Preferences ──────────────────────────────────────────────────────


def _dedupe(items: list[str]) -> list[str]:
    seen: set[str] = set()
    out = []
    for item in items:
        item = item.strip()
        if item and item not in seen:
            seen.add(item)
            out.append(item)
    return out


class UserPreferencesUpdate(BaseModel):
    model_config = _PARTIAL_CONFIG

    preferred_language: str | None = None
    communication_style: CommunicationStyle | None = None
    report_frequency: ReportFrequency | None = None
    focus_areas: list[str] | None = None
    timezone: str | None = None

    @field_validator("focus_areas")
    @classmethod
    def unique_focus_areas(cls, v: list[str] | None) -> list[str] | None:
        return None if v is None else _dedupe(v)


class UserPreferences(BaseModel):
    user_id: str
    preferred_language: str = "en"
    communication_style: CommunicationStyle = CommunicationStyle.CASUAL
    report_frequency: ReportFrequency = ReportFrequency.WEEKLY
    focus_areas: list[str] = Field(default_factory=list)
    timezone: str = "UTC"
    last_updated: datetime

    @field_validator("focus_areas")
    @classmethod
    def unique_focus_areas(cls, v: list[str]) -> list[str]:
        return _dedupe(v)


# ── Usage patterns ───────────────────────────────────────────────────


class FinancialPattern(BaseModel):
    """A keyword the user keeps coming back to, scored by how often it was seen."""

    user_id: str
    keyword: str
    pattern: str  # "Frequently asks about <keyword>"
    category: PatternCategory
    frequency: int = Field(ge=1, default=1)
    confidence: float = Field(ge=0.0, le=1.0, default=0.1)
    last_seen: datetime


# ── Privacy / diagnostics ────────────────────────────────────────────


class UserDataExport(BaseModel):
    user_id: str
    conversation: list[ConversationTurn] = Field(default_factory=list)
    business_context: BusinessContext | None = None
    preferences: UserPreferences | None = None
    patterns: list[FinancialPattern] = Field(default_factory=list)
    pattern_candidates: list[FinancialPattern] = Field(default_factory=list)
    exported_at: datetime


class MemoryStats(BaseModel):
    conversations: int = 0
    business_contexts: int = 0
    user_preferences: int = 0
    patterns: int = 0
