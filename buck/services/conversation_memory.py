"""Conversation memory: short-term dialogue state and usage patterns per user.

Holds, for every user id:
- a bounded conversation buffer (oldest turns evicted first)
- business context facts and communication preferences (merge-upsert)
- keyword-frequency patterns mined from the user's own messages

and renders all of it as one text block for system prompt injection.

State is process-local and lost on restart. Reads for unknown users return
empty/default structures; nothing here raises for well-formed input.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any, TypeVar
from uuid import uuid4
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel

from buck.config import get_settings
from buck.core.clock import Clock, utc_now
from buck.core.locks import KeyedLock
from buck.core.logging import get_logger
from buck.schemas.memory import (
    BusinessContext,
    BusinessContextUpdate,
    ConversationTurn,
    FinancialPattern,
    MemoryStats,
    PatternCategory,
    Role,
    UserDataExport,
    UserPreferences,
    UserPreferencesUpdate,
)

logger = get_logger(__name__)

# ── Keyword tables ───────────────────────────────────────────────────
# Plain case-insensitive substring tests. Thresholds below are calibrated
# against exactly this granularity.

PATTERN_KEYWORDS: dict[PatternCategory, tuple[str, ...]] = {
    PatternCategory.REVENUE: ("revenue", "income", "sales", "earnings", "profit"),
    PatternCategory.EXPENSE: ("expense", "cost", "spending", "bill", "payment"),
    PatternCategory.CUSTOMER: ("customer", "client", "invoice", "payment"),
    PatternCategory.VENDOR: ("vendor", "supplier", "purchase", "order"),
    PatternCategory.SEASONAL: ("monthly", "quarterly", "seasonal", "holiday", "year-end"),
}

RECOMMENDATIONS: dict[PatternCategory, str] = {
    PatternCategory.REVENUE: "Consider setting up automated revenue tracking and forecasting",
    PatternCategory.EXPENSE: "I can help you categorize expenses and identify cost-saving opportunities",
    PatternCategory.CUSTOMER: "Let's analyze your customer payment patterns and improve cash flow",
    PatternCategory.VENDOR: "I can help optimize your vendor relationships and payment terms",
    PatternCategory.SEASONAL: "Consider seasonal budgeting and cash flow planning",
}

FIRST_CONVERSATION_GREETING = (
    "This is our first conversation! I'm excited to learn about your business "
    "and help with your finances."
)
SUMMARY_CLOSING = "I'm here to continue helping with your financial questions and business insights!"

NOT_SPECIFIED = "Not specified"
DEFAULT_CURRENCY = "USD"

_PatternKey = tuple[PatternCategory, str]
_U = TypeVar("_U", bound=BaseModel)


def detect_keywords(message: str) -> list[_PatternKey]:
    """Every (category, keyword) pair whose keyword occurs in the message."""
    text = message.lower()
    return [
        (category, keyword)
        for category, keywords in PATTERN_KEYWORDS.items()
        for keyword in keywords
        if keyword in text
    ]


def pattern_confidence(frequency: int) -> float:
    return min(1.0, frequency / 10)


def _as_update(model: type[_U], partial: _U | Mapping[str, Any] | None) -> _U:
    if partial is None:
        return model()
    if isinstance(partial, model):
        return partial
    return model.model_validate(dict(partial))


def _zone(name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


class ConversationMemory:
    """Per-user conversation, profile and pattern memory.

    Every mutation of a user's state happens under that user's lock, so
    frequency/confidence read-modify-write stays atomic even when callers
    run on several threads. Different users never contend.
    """

    def __init__(
        self,
        *,
        clock: Clock = utc_now,
        max_conversation_length: int | None = None,
        context_expiry: timedelta | None = None,
        pattern_min_frequency: int | None = None,
        assistant_name: str | None = None,
    ) -> None:
        settings = get_settings()
        self._clock = clock
        self.max_conversation_length = (
            max_conversation_length or settings.memory_max_conversation_length
        )
        self.context_expiry = context_expiry or timedelta(days=settings.memory_context_expiry_days)
        self.pattern_min_frequency = (
            pattern_min_frequency or settings.memory_pattern_min_frequency
        )
        self.assistant_name = assistant_name or settings.assistant_name
        self.context_history_turns = settings.memory_context_history_turns
        self.context_max_patterns = settings.memory_context_max_patterns
        self.snippet_chars = settings.memory_context_snippet_chars
        self.summary_window = settings.memory_summary_window
        self.max_recommendations = settings.memory_max_recommendations

        self._conversations: dict[str, deque[ConversationTurn]] = {}
        self._business_contexts: dict[str, BusinessContext] = {}
        self._preferences: dict[str, UserPreferences] = {}
        # Visible patterns only ever hold frequency >= pattern_min_frequency;
        # observations below the threshold wait in the candidate tally.
        self._patterns: dict[str, dict[_PatternKey, FinancialPattern]] = {}
        self._candidates: dict[str, dict[_PatternKey, FinancialPattern]] = {}
        self._lock = KeyedLock()

    # ── Conversation ─────────────────────────────────────────────

    def add_message(
        self,
        user_id: str,
        role: Role | str,
        content: str,
        metadata: Mapping[str, Any] | None = None,
        *,
        incomplete: bool = False,
    ) -> None:
        """Append a turn, evicting the oldest beyond the cap. User turns feed pattern analysis."""
        role = Role(role)
        now = self._clock()
        turn = ConversationTurn(
            id=f"{int(now.timestamp() * 1000)}_{uuid4().hex[:9]}",
            role=role,
            content=content,
            timestamp=now,
            metadata=dict(metadata) if metadata else None,
            incomplete=incomplete,
        )

        with self._lock(user_id):
            buffer = self._conversations.get(user_id)
            if buffer is None:
                buffer = deque(maxlen=self.max_conversation_length)
                self._conversations[user_id] = buffer
            buffer.append(turn)

            if role is Role.USER:
                self._analyze_patterns(user_id, content, now)

        logger.debug(
            "conversation_turn_added",
            user_id=user_id,
            role=role.value,
            buffered=len(buffer),
            incomplete=incomplete,
        )

    def get_conversation_history(
        self,
        user_id: str,
        limit: int | None = 10,
    ) -> list[ConversationTurn]:
        """Most recent ``limit`` turns, oldest first. ``None`` returns the whole buffer."""
        with self._lock(user_id):
            turns = list(self._conversations.get(user_id, ()))
        if limit is None:
            return turns
        if limit <= 0:
            return []
        return turns[-limit:]

    # ── Business context & preferences ───────────────────────────

    def update_business_context(
        self,
        user_id: str,
        partial: BusinessContextUpdate | Mapping[str, Any] | None = None,
    ) -> BusinessContext:
        """Merge the given fields over the stored context; always refreshes last_updated."""
        fields = _as_update(BusinessContextUpdate, partial).model_dump(exclude_unset=True)
        with self._lock(user_id):
            existing = self._business_contexts.get(user_id)
            merged = existing.model_dump() if existing else {}
            merged.update(fields)
            merged.update(user_id=user_id, last_updated=self._clock())
            context = BusinessContext.model_validate(merged)
            self._business_contexts[user_id] = context
        return context.model_copy()

    def get_business_context(self, user_id: str) -> BusinessContext | None:
        with self._lock(user_id):
            context = self._business_contexts.get(user_id)
            return context.model_copy() if context else None

    def update_user_preferences(
        self,
        user_id: str,
        partial: UserPreferencesUpdate | Mapping[str, Any] | None = None,
    ) -> UserPreferences:
        """Merge the given fields over stored (or default) preferences."""
        fields = _as_update(UserPreferencesUpdate, partial).model_dump(exclude_unset=True)
        # None means "keep": preferences have no meaningful empty value
        fields = {k: v for k, v in fields.items() if v is not None}
        with self._lock(user_id):
            now = self._clock()
            existing = self._preferences.get(user_id)
            merged = (
                existing.model_dump()
                if existing
                else UserPreferences(user_id=user_id, last_updated=now).model_dump()
            )
            merged.update(fields)
            merged.update(user_id=user_id, last_updated=now)
            preferences = UserPreferences.model_validate(merged)
            self._preferences[user_id] = preferences
        return preferences.model_copy(deep=True)

    def get_user_preferences(self, user_id: str) -> UserPreferences:
        """Stored preferences, or the defaults (without storing them)."""
        with self._lock(user_id):
            preferences = self._preferences.get(user_id)
            if preferences is not None:
                return preferences.model_copy(deep=True)
        return UserPreferences(user_id=user_id, last_updated=self._clock())

    # ── Patterns ─────────────────────────────────────────────────

    def _analyze_patterns(self, user_id: str, message: str, now: datetime) -> None:
        """Count keyword hits. Caller holds the user's lock."""
        hits = detect_keywords(message)
        if not hits:
            return

        patterns = self._patterns.setdefault(user_id, {})
        candidates = self._candidates.setdefault(user_id, {})

        for key in hits:
            entry = patterns.get(key) or candidates.get(key)
            if entry is None:
                category, keyword = key
                entry = FinancialPattern(
                    user_id=user_id,
                    keyword=keyword,
                    pattern=f"Frequently asks about {keyword}",
                    category=category,
                    frequency=1,
                    confidence=pattern_confidence(1),
                    last_seen=now,
                )
                candidates[key] = entry
            else:
                entry.frequency += 1
                entry.last_seen = now
                entry.confidence = pattern_confidence(entry.frequency)

            if key in candidates and entry.frequency >= self.pattern_min_frequency:
                patterns[key] = candidates.pop(key)
                logger.info(
                    "pattern_established",
                    user_id=user_id,
                    category=key[0].value,
                    keyword=key[1],
                    frequency=entry.frequency,
                )

        if not candidates:
            del self._candidates[user_id]
        if not patterns:
            del self._patterns[user_id]

    def _ranked_patterns(self, user_id: str) -> list[FinancialPattern]:
        patterns = self._patterns.get(user_id, {}).values()
        return sorted(patterns, key=lambda p: (p.confidence, p.last_seen), reverse=True)

    def get_patterns(self, user_id: str) -> list[FinancialPattern]:
        """Established patterns, highest confidence first."""
        with self._lock(user_id):
            return [p.model_copy() for p in self._ranked_patterns(user_id)]

    # ── Prompt context ───────────────────────────────────────────

    def get_formatted_context(self, user_id: str) -> str:
        """Everything relevant about the user as one prompt-ready text block.

        Sections, in order, each omitted when empty: business context, user
        preferences, top patterns, recent conversation.
        """
        with self._lock(user_id):
            context = self._business_contexts.get(user_id)
            preferences = self._preferences.get(user_id)
            patterns = self._ranked_patterns(user_id)[: self.context_max_patterns]
            history = self.get_conversation_history(user_id, self.context_history_turns)

            sections: list[str] = []
            if context is not None:
                sections.append(self._format_business_context(context))
            if preferences is not None:
                sections.append(self._format_preferences(preferences))
            if patterns:
                sections.append(self._format_patterns(patterns))
            if history:
                tz = _zone(preferences.timezone if preferences else None)
                sections.append(self._format_history(history, tz))

        return "\n\n".join(sections)

    @staticmethod
    def _format_business_context(context: BusinessContext) -> str:
        lines = [
            "**Business Context:**",
            f"• Company: {context.company_name or NOT_SPECIFIED}",
            f"• Industry: {context.industry or NOT_SPECIFIED}",
            f"• Business Type: {context.business_type or NOT_SPECIFIED}",
        ]
        if context.revenue_range:
            lines.append(f"• Revenue Range: {context.revenue_range}")
        lines.append(f"• Currency: {context.primary_currency or DEFAULT_CURRENCY}")
        return "\n".join(lines)

    @staticmethod
    def _format_preferences(preferences: UserPreferences) -> str:
        focus = ", ".join(preferences.focus_areas) or "None"
        return "\n".join([
            "**User Preferences:**",
            f"• Language: {preferences.preferred_language}",
            f"• Communication Style: {preferences.communication_style.value}",
            f"• Report Frequency: {preferences.report_frequency.value}",
            f"• Focus Areas: {focus}",
        ])

    @staticmethod
    def _format_patterns(patterns: list[FinancialPattern]) -> str:
        lines = ["**Observed Patterns:**"]
        for p in patterns:
            lines.append(
                f"• {p.pattern} ({p.category.value}, confidence: {p.confidence * 100:.0f}%)"
            )
        return "\n".join(lines)

    def _format_history(self, history: list[ConversationTurn], tz: ZoneInfo) -> str:
        lines = ["**Recent Conversation:**"]
        for turn in history:
            label = "User" if turn.role is Role.USER else self.assistant_name
            time = turn.timestamp.astimezone(tz).strftime("%H:%M:%S")
            snippet = turn.content[: self.snippet_chars]
            if len(turn.content) > self.snippet_chars:
                snippet += "..."
            if turn.incomplete:
                snippet += " [incomplete]"
            lines.append(f"{label} ({time}): {snippet}")
        return "\n".join(lines)

    # ── Recommendations & summary ────────────────────────────────

    def get_personalized_recommendations(self, user_id: str) -> list[str]:
        """At most three distinct suggestions driven by patterns, industry and focus areas."""
        with self._lock(user_id):
            recommendations = [RECOMMENDATIONS[p.category] for p in self._ranked_patterns(user_id)]
            context = self._business_contexts.get(user_id)
            preferences = self._preferences.get(user_id)

            if context is not None and context.industry:
                recommendations.append(
                    f"I can provide industry-specific insights for {context.industry} businesses"
                )
            if preferences is not None and preferences.focus_areas:
                recommendations.append(
                    "Let's dive deeper into your focus areas: "
                    + ", ".join(preferences.focus_areas)
                )

        return list(dict.fromkeys(recommendations))[: self.max_recommendations]

    def get_conversation_summary(self, user_id: str) -> str:
        with self._lock(user_id):
            history = self.get_conversation_history(user_id, self.summary_window)
            ranked = self._ranked_patterns(user_id)

        if not history:
            return FIRST_CONVERSATION_GREETING

        user_turns = sum(1 for t in history if t.role is Role.USER)
        parts = [f"We've had {user_turns} exchange{'' if user_turns == 1 else 's'}."]
        if ranked:
            parts.append(f"You frequently ask about {ranked[0].keyword}.")
        parts.append(SUMMARY_CLOSING)
        return " ".join(parts)

    # ── Expiry ───────────────────────────────────────────────────

    def clean_expired_data(self) -> int:
        """Drop everything untouched for longer than the expiry window.

        Returns the number of removed entries (contexts, preference sets,
        conversations and individual patterns).
        """
        cutoff = self._clock() - self.context_expiry
        removed = {"business_contexts": 0, "preferences": 0, "conversations": 0, "patterns": 0}

        for user_id in list(self._business_contexts):
            with self._lock(user_id):
                context = self._business_contexts.get(user_id)
                if context is not None and context.last_updated < cutoff:
                    del self._business_contexts[user_id]
                    removed["business_contexts"] += 1

        for user_id in list(self._preferences):
            with self._lock(user_id):
                preferences = self._preferences.get(user_id)
                if preferences is not None and preferences.last_updated < cutoff:
                    del self._preferences[user_id]
                    removed["preferences"] += 1

        for user_id in list(self._conversations):
            with self._lock(user_id):
                buffer = self._conversations.get(user_id)
                if buffer is not None and (not buffer or buffer[-1].timestamp < cutoff):
                    del self._conversations[user_id]
                    removed["conversations"] += 1

        for store in (self._patterns, self._candidates):
            for user_id in list(store):
                with self._lock(user_id):
                    entries = store.get(user_id)
                    if entries is None:
                        continue
                    active = {k: p for k, p in entries.items() if p.last_seen >= cutoff}
                    removed["patterns"] += len(entries) - len(active)
                    if active:
                        store[user_id] = active
                    else:
                        del store[user_id]

        total = sum(removed.values())
        if total:
            logger.info("memory_expired_data_cleaned", **removed)
        return total

    # ── Diagnostics & privacy ────────────────────────────────────

    def get_memory_stats(self) -> MemoryStats:
        return MemoryStats(
            conversations=len(self._conversations),
            business_contexts=len(self._business_contexts),
            user_preferences=len(self._preferences),
            patterns=len(self._patterns),
        )

    def export_user_data(self, user_id: str) -> UserDataExport:
        """Snapshot of everything held about the user."""
        with self._lock(user_id):
            context = self._business_contexts.get(user_id)
            preferences = self._preferences.get(user_id)
            return UserDataExport(
                user_id=user_id,
                conversation=list(self._conversations.get(user_id, ())),
                business_context=context.model_copy() if context else None,
                preferences=preferences.model_copy(deep=True) if preferences else None,
                patterns=[p.model_copy() for p in self._ranked_patterns(user_id)],
                pattern_candidates=[
                    p.model_copy() for p in self._candidates.get(user_id, {}).values()
                ],
                exported_at=self._clock(),
            )

    def delete_user_data(self, user_id: str) -> None:
        """Irreversibly forget the user."""
        with self._lock(user_id):
            self._conversations.pop(user_id, None)
            self._business_contexts.pop(user_id, None)
            self._preferences.pop(user_id, None)
            self._patterns.pop(user_id, None)
            self._candidates.pop(user_id, None)
        logger.info("memory_user_data_deleted", user_id=user_id)
