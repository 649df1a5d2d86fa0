"""Conversation memory endpoints: history, context, profile and privacy."""

from __future__ import annotations

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from buck.deps import Learner, Memory, UserId
from buck.schemas.learning import LearningDataExport
from buck.schemas.memory import (
    BusinessContext,
    BusinessContextUpdate,
    ConversationTurn,
    Role,
    UserDataExport,
    UserPreferences,
    UserPreferencesUpdate,
)
from buck.services.prompt_context import PromptContextBuilder

router = APIRouter()


class MessageCreate(BaseModel):
    role: Role
    content: str = Field(min_length=1)
    metadata: dict | None = None
    incomplete: bool = False


class ContextRead(BaseModel):
    context: str


class SummaryRead(BaseModel):
    summary: str


class PromptContextRead(BaseModel):
    prompt: str
    failed: list[str]


class UserExport(BaseModel):
    """Everything held about the caller, across memory and learning."""

    memory: UserDataExport
    learning: LearningDataExport


@router.post("/messages", status_code=status.HTTP_204_NO_CONTENT)
async def add_message(data: MessageCreate, user_id: UserId, memory: Memory) -> None:
    """Record a chat turn. User turns feed pattern detection."""
    memory.add_message(
        user_id, data.role, data.content, data.metadata, incomplete=data.incomplete
    )


@router.get("/history", response_model=list[ConversationTurn])
async def get_history(
    user_id: UserId,
    memory: Memory,
    limit: int = Query(10, ge=1, le=50),
) -> list[ConversationTurn]:
    return memory.get_conversation_history(user_id, limit)


@router.get("/context", response_model=ContextRead)
async def get_context(user_id: UserId, memory: Memory) -> ContextRead:
    """Prompt-ready memory context."""
    return ContextRead(context=memory.get_formatted_context(user_id))


@router.get("/prompt-context", response_model=PromptContextRead)
async def get_prompt_context(
    user_id: UserId,
    memory: Memory,
    learner: Learner,
) -> PromptContextRead:
    """System prompt block for the chat assistant: memory context plus business learnings.

    A source that fails or times out renders empty and is listed in ``failed``.
    """
    built = await PromptContextBuilder(memory, learner).build(user_id)
    return PromptContextRead(prompt=built.render(), failed=built.failed)


@router.get("/summary", response_model=SummaryRead)
async def get_summary(user_id: UserId, memory: Memory) -> SummaryRead:
    return SummaryRead(summary=memory.get_conversation_summary(user_id))


@router.get("/recommendations", response_model=list[str])
async def get_recommendations(user_id: UserId, memory: Memory) -> list[str]:
    return memory.get_personalized_recommendations(user_id)


@router.patch("/business-context", response_model=BusinessContext)
async def update_business_context(
    data: BusinessContextUpdate,
    user_id: UserId,
    memory: Memory,
) -> BusinessContext:
    """Merge the given fields; omitted fields keep their value."""
    return memory.update_business_context(user_id, data)


@router.patch("/preferences", response_model=UserPreferences)
async def update_preferences(
    data: UserPreferencesUpdate,
    user_id: UserId,
    memory: Memory,
) -> UserPreferences:
    return memory.update_user_preferences(user_id, data)


@router.get("/export", response_model=UserExport)
async def export_user_data(user_id: UserId, memory: Memory, learner: Learner) -> UserExport:
    return UserExport(
        memory=memory.export_user_data(user_id),
        learning=learner.export_user_data(user_id),
    )


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user_data(user_id: UserId, memory: Memory, learner: Learner) -> None:
    """Forget the caller entirely."""
    memory.delete_user_data(user_id)
    await learner.delete_user_data(user_id)
