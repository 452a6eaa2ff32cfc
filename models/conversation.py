"""Normalized conversation model produced by the parsers.

Every downstream component addresses messages by ``index`` alone, so the
parser assigns it densely from 0 in emission order and nothing re-numbers it.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ConversationSource(str, Enum):
    """Tool that produced a conversation log."""

    CLAUDE_CODE = "claude-code"
    CLAUDE_WEB = "claude-web"
    CURSOR = "cursor"
    OTHER = "other"


class Message(BaseModel):
    """One turn in a conversation.

    Attributes:
        index: Zero-based position within the conversation
        role: Who produced the turn
        content: Human-readable text of the turn
        reasoning_trace: Raw extended-thinking text for assistant turns, the
            highest-fidelity source for rationale
        timestamp: Event timestamp from the log, if present
    """

    model_config = ConfigDict(frozen=True)

    index: int = Field(..., ge=0)
    role: MessageRole
    content: str
    reasoning_trace: Optional[str] = None
    timestamp: Optional[datetime] = None


class ParsedConversation(BaseModel):
    """Output of a parser: the ordered messages plus session metadata."""

    model_config = ConfigDict(frozen=True)

    session_id: str = ""
    project_path: str = ""
    messages: list[Message] = Field(default_factory=list)
    created_at: datetime
    skipped_lines: int = 0

    @property
    def message_count(self) -> int:
        return len(self.messages)
