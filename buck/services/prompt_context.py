"""Prompt context assembly for the chat assistant.

Gathers the user's memory context, business learnings and any extra async
sources (market data, compliance alerts, ...) in parallel. A source that fails
or times out contributes its default, so the prompt is always built.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from buck.config import get_settings
from buck.core.fanout import Source, gather_with_defaults
from buck.core.logging import get_logger
from buck.schemas.learning import InputKind
from buck.services.conversation_memory import ConversationMemory
from buck.services.pattern_learner import PatternLearner

logger = get_logger(__name__)

STILL_LEARNING = "Still learning about this business"

CHAT_FALLBACK_MESSAGE = (
    "I apologize, but I'm having trouble processing your request right now. "
    "Please try again in a moment."
)

UPLOAD_FALLBACK_MESSAGE = (
    'Sorry, I had trouble processing "{filename}".\n\n'
    "Please try uploading the file again. I can handle images (receipts, invoices), "
    "documents (PDFs) and spreadsheets (CSV)."
)

_RESERVED = frozenset({"context", "insights"})


@dataclass
class PromptContext:
    context: str = ""
    insights: list[str] = field(default_factory=list)
    extras: dict[str, Any] = field(default_factory=dict)
    failed: list[str] = field(default_factory=list)

    def render(self) -> str:
        sections = [
            f"**Current Business Context:**\n{self.context or 'No context yet'}",
            "**Personalized Business Learnings:**\n"
            + ("\n".join(self.insights) if self.insights else STILL_LEARNING),
        ]
        for name, value in self.extras.items():
            if not value:
                continue
            body = "\n".join(map(str, value)) if isinstance(value, list | tuple) else str(value)
            sections.append(f"**{name.replace('_', ' ').title()}:**\n{body}")
        return "\n\n".join(sections)


class PromptContextBuilder:
    def __init__(
        self,
        memory: ConversationMemory,
        learner: PatternLearner,
        *,
        timeout: float | None = None,
    ) -> None:
        self._memory = memory
        self._learner = learner
        self.timeout = (
            timeout if timeout is not None else get_settings().external_call_timeout_seconds
        )

    async def build(self, user_id: str, extra_sources: Iterable[Source] = ()) -> PromptContext:
        extra_sources = list(extra_sources)
        clash = _RESERVED.intersection(s.name for s in extra_sources)
        if clash:
            raise ValueError(f"Reserved source names: {sorted(clash)}")

        async def context() -> str:
            return await asyncio.to_thread(self._memory.get_formatted_context, user_id)

        async def insights() -> list[str]:
            return self._learner.get_personalized_insights(user_id)

        result = await gather_with_defaults(
            Source("context", context, ""),
            Source("insights", insights, []),
            *extra_sources,
            timeout=self.timeout,
        )
        if result.failed:
            logger.info("prompt_context_degraded", user_id=user_id, failed=result.failed)

        return PromptContext(
            context=result["context"],
            insights=result["insights"],
            extras={s.name: result[s.name] for s in extra_sources},
            failed=result.failed,
        )


# ── Upload replies ──────────────────────────────────────────────────


def _bullets(items: Iterable[Any]) -> list[str]:
    return [f"• {item}" for item in items if item]


def format_extraction_reply(filename: str, kind: InputKind | str, result: Mapping[str, Any]) -> str:
    """Chat message summarizing an extraction result."""
    if not result:
        return UPLOAD_FALLBACK_MESSAGE.format(filename=filename)

    lines = [f'**Successfully processed "{filename}"!**']

    extracted = result.get("extracted_data")
    if isinstance(extracted, Mapping):
        fields = [
            ("Document Type", extracted.get("document_type")),
            ("Total Amount", extracted.get("total_amount")),
            ("Vendor", extracted.get("vendor")),
            ("Date", extracted.get("date")),
        ]
        found = [f"• {label}: {value}" for label, value in fields if value]
        if found:
            lines += ["", "**Extracted Data:**", *found]

    analysis = result.get("analysis_result")
    if isinstance(analysis, Mapping):
        insights = _bullets(analysis.get("business_insights") or [])
        if insights:
            lines += ["", "**Business Insights:**", *insights]
        recommendations = _bullets(analysis.get("recommendations") or [])
        if recommendations:
            lines += ["", "**Recommendations:**", *recommendations]

    lines += ["", f"**What would you like me to help you with regarding this {InputKind(kind).value}?**"]
    return "\n".join(lines)
