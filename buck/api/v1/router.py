"""API v1 router aggregating all endpoints."""

from fastapi import APIRouter

from buck.api.v1 import learning, memory

api_router = APIRouter()

api_router.include_router(memory.router, prefix="/memory", tags=["memory"])
api_router.include_router(learning.router, prefix="/learning", tags=["learning"])
