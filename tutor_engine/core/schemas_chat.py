"""Pydantic schemas for chat sessions, turns, and chat requests."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ChatMode(str, Enum):
    """Conversation mode; selects the system instruction template."""
    EXPLAIN = "explain"
    TUTOR = "tutor"
    EXAM = "exam"


class TurnRole(str, Enum):
    """Sender of a turn."""
    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def from_sender(cls, sender: str) -> "TurnRole":
        """Map a stored sender value. Legacy rows use 'ai' for the assistant."""
        if sender == "user":
            return cls.USER
        return cls.ASSISTANT


# ============================================================================
# Stored entities
# ============================================================================


class MediaAttachment(BaseModel):
    """Attached media descriptor on a turn."""
    url: str
    mime_type: Optional[str] = None
    size: Optional[int] = None

    @property
    def is_image(self) -> bool:
        return bool(self.mime_type and self.mime_type.startswith("image/"))


class Session(BaseModel):
    """A persisted conversation between one user and the assistant."""
    id: UUID
    user_id: UUID
    mode: ChatMode = ChatMode.EXPLAIN
    summary: Optional[str] = None
    created_at: datetime


class Turn(BaseModel):
    """One immutable message within a session."""
    id: UUID
    session_id: UUID
    role: TurnRole
    content: str
    media: Optional[MediaAttachment] = None
    created_at: datetime

    @classmethod
    def from_row(cls, row: dict) -> "Turn":
        media = None
        if row.get("media_url"):
            media = MediaAttachment(
                url=row["media_url"],
                mime_type=row.get("media_type"),
                size=row.get("media_size"),
            )
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            role=TurnRole.from_sender(row.get("sender", "assistant")),
            content=row.get("content") or "",
            media=media,
            created_at=row["created_at"],
        )


class SessionSummary(BaseModel):
    """Session list entry."""
    id: UUID
    mode: ChatMode
    date: datetime
    preview: str


# ============================================================================
# Request / response schemas
# ============================================================================


class ChatRequest(BaseModel):
    """Body of POST /chat."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[UUID] = Field(default=None, alias="sessionId")
    input: str
    mode: ChatMode = ChatMode.EXPLAIN
    context_resource_ids: list[UUID] = Field(default_factory=list, alias="contextResourceIds")
    seed_prompt: Optional[str] = Field(default=None, alias="seedPrompt")
    media_uri: Optional[str] = Field(default=None, alias="mediaUri")

    @field_validator("input")
    @classmethod
    def input_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("Input text is required.")
        return value

    @field_validator("mode", mode="before")
    @classmethod
    def default_mode(cls, value):
        return value or ChatMode.EXPLAIN

    @field_validator("context_resource_ids", mode="before")
    @classmethod
    def default_resource_ids(cls, value):
        return value or []


class MessageOut(BaseModel):
    """Message as returned by GET /chat/{session_id}/messages."""
    id: UUID
    role: TurnRole
    content: str
    timestamp: datetime
    media_url: Optional[str] = None
    media_type: Optional[str] = None
    media_size: Optional[int] = None

    @classmethod
    def from_turn(cls, turn: Turn) -> "MessageOut":
        return cls(
            id=turn.id,
            role=turn.role,
            content=turn.content,
            timestamp=turn.created_at,
            media_url=turn.media.url if turn.media else None,
            media_type=turn.media.mime_type if turn.media else None,
            media_size=turn.media.size if turn.media else None,
        )


class GreetingRequest(BaseModel):
    """Body of POST /chat/greeting."""
    topic: Optional[str] = None
    context: Optional[str] = None
    interests: list[str] = Field(default_factory=list)


class GreetingResponse(BaseModel):
    greeting: str
    cached: bool = False
