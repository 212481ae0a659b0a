"""
Conversation context models.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Message role in a conversation."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class CommunicationStyle(str, Enum):
    """How the assistant should address the user."""
    PROFESSIONAL = "professional"
    FRIENDLY = "friendly"
    DIRECT = "direct"


class MessageMetadata(BaseModel):
    """Optional annotations on a message."""
    topics: list[str] = Field(default_factory=list)
    sentiment: Optional[str] = None
    confidence: Optional[float] = None


class ConversationMessage(BaseModel):
    """A single turn in a conversation."""
    role: Role
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)
    metadata: Optional[MessageMetadata] = None

    def to_api_format(self) -> dict[str, Any]:
        """Convert to completion API format."""
        return {"role": self.role.value, "content": self.content}


class UserContext(BaseModel):
    """What the user has told us about themselves."""
    health_conditions: list[str] = Field(default_factory=list)
    medications: list[str] = Field(default_factory=list)
    wellness_goals: list[str] = Field(default_factory=list)
    recent_topics: list[str] = Field(default_factory=list)
    communication_style: CommunicationStyle = CommunicationStyle.PROFESSIONAL


class ConversationContext(BaseModel):
    """
    Conversation state for one (user_id, session_id) pair.

    Messages are append-only and their timestamps never decrease;
    ``message_count`` always equals ``len(messages)``.
    """
    user_id: str
    session_id: str
    messages: list[ConversationMessage] = Field(default_factory=list)
    context: UserContext = Field(default_factory=UserContext)
    message_count: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    last_updated: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _sync_message_count(self) -> "ConversationContext":
        self.message_count = len(self.messages)
        return self

    @property
    def key(self) -> tuple[str, str]:
        return (self.user_id, self.session_id)

    def add_message(
        self,
        role: Role | str,
        content: str,
        metadata: MessageMetadata | None = None,
        timestamp: datetime | None = None,
    ) -> ConversationMessage:
        """Append a message, keeping timestamps monotonic."""
        timestamp = timestamp or _utcnow()
        if self.messages and timestamp < self.messages[-1].timestamp:
            timestamp = self.messages[-1].timestamp

        message = ConversationMessage(
            role=Role(role),
            content=content,
            timestamp=timestamp,
            metadata=metadata,
        )
        self.messages.append(message)
        self.message_count = len(self.messages)
        self.last_updated = timestamp
        return message

    @property
    def last_message(self) -> ConversationMessage | None:
        return self.messages[-1] if self.messages else None

    def recent_messages(self, n: int = 3) -> list[ConversationMessage]:
        """Get the N most recent messages."""
        if n <= 0:
            return []
        return self.messages[-n:]

    def is_stopped(self) -> bool:
        """True if the latest message asked the conversation to stop."""
        last = self.last_message
        return last is not None and "stop" in last.content.lower()

    def touch(self) -> None:
        self.last_updated = max(_utcnow(), self.last_updated)
