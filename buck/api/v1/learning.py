"""Business learning endpoints: record analysis and document uploads."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, UploadFile, status
from pydantic import BaseModel

from buck.config import get_settings
from buck.deps import Learner, Memory, UserId
from buck.schemas.learning import BusinessLearning, InputKind, LearningStats
from buck.schemas.memory import Role
from buck.services.extraction import Upload
from buck.services.prompt_context import format_extraction_reply

router = APIRouter()


class UploadResult(BaseModel):
    result: dict
    reply: str


@router.post("/analyze", response_model=list[BusinessLearning])
async def analyze(user_id: UserId, learner: Learner) -> list[BusinessLearning]:
    """Recompute learnings from the caller's records. Empty when data is short or unavailable."""
    return await learner.analyze_business_patterns(user_id)


@router.post("/uploads", response_model=UploadResult)
async def upload(
    file: UploadFile,
    user_id: UserId,
    learner: Learner,
    memory: Memory,
    kind: InputKind = Query(...),
) -> UploadResult:
    """Extract data from a receipt, document or spreadsheet and learn from it.

    The chat reply is recorded as an assistant turn.
    """
    data = await file.read()
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")
    if len(data) > get_settings().upload_max_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail="File too large",
        )

    filename = file.filename or "upload"
    result = await learner.process_multi_modal_input(
        user_id,
        Upload(filename=filename, content_type=file.content_type, data=data),
        kind,
    )
    reply = format_extraction_reply(filename, kind, result)
    memory.add_message(
        user_id,
        Role.ASSISTANT,
        reply,
        {"filename": filename, "kind": kind.value, "extracted": bool(result)},
    )
    return UploadResult(result=result, reply=reply)


@router.get("/insights", response_model=list[str])
async def get_insights(user_id: UserId, learner: Learner) -> list[str]:
    return learner.get_personalized_insights(user_id)


@router.get("/stats", response_model=LearningStats)
async def get_stats(user_id: UserId, learner: Learner) -> LearningStats:
    return learner.get_learning_stats(user_id)
