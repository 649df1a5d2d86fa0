"""FastAPI dependencies: the caller's user id and the app-scoped services."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from buck.services.conversation_memory import ConversationMemory
from buck.services.pattern_learner import PatternLearner


async def get_user_id(
    x_user_id: Annotated[str | None, Header(max_length=128)] = None,
) -> str:
    """User id set by the upstream auth proxy."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return user_id


def get_memory(request: Request) -> ConversationMemory:
    return request.app.state.memory


def get_learner(request: Request) -> PatternLearner:
    return request.app.state.learner


UserId = Annotated[str, Depends(get_user_id)]
Memory = Annotated[ConversationMemory, Depends(get_memory)]
Learner = Annotated[PatternLearner, Depends(get_learner)]
