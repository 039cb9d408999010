"""API router for v1 endpoints."""

from fastapi import APIRouter

from tutor_engine.api import chat

router = APIRouter()

router.include_router(chat.router, tags=["chat"])
