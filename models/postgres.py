from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.postgres import Base


def generate_uuid() -> str:
    return str(uuid4())


class Conversation(Base):
    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    org_id: Mapped[str] = mapped_column(String(100), index=True)
    workspace_id: Mapped[str] = mapped_column(String(100), index=True)
    source: Mapped[str] = mapped_column(String(20))  # claude-code, claude-web, cursor, other
    source_path: Mapped[str] = mapped_column(String(1024))
    project_path: Mapped[str] = mapped_column(String(1024), default="")
    session_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    message_count: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    extracted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    messages: Mapped[list["ConversationMessage"]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="ConversationMessage.index",
    )
    decisions: Mapped[list["Decision"]] = relationship(
        back_populates="conversation", cascade="all, delete-orphan"
    )


class ConversationMessage(Base):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    conversation_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("conversations.id", ondelete="CASCADE"), index=True
    )
    index: Mapped[int] = mapped_column(Integer)
    role: Mapped[str] = mapped_column(String(20))  # user, assistant, system
    content: Mapped[str] = mapped_column(Text)
    reasoning_trace: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    conversation: Mapped["Conversation"] = relationship(back_populates="messages")


class Decision(Base):
    __tablename__ = "decisions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    conversation_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("conversations.id", ondelete="CASCADE"), index=True
    )
    org_id: Mapped[str] = mapped_column(String(100), index=True)
    workspace_id: Mapped[str] = mapped_column(String(100), index=True)
    title: Mapped[str] = mapped_column(String(500))
    summary: Mapped[str] = mapped_column(Text)
    reasoning: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20))  # active, superseded, tentative
    confidence: Mapped[float] = mapped_column(Float)
    extracted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    # Relationships
    conversation: Mapped["Conversation"] = relationship(back_populates="decisions")
    appearances: Mapped[list["DecisionAppearance"]] = relationship(
        back_populates="decision", cascade="all, delete-orphan"
    )
    alternatives: Mapped[list["Alternative"]] = relationship(
        back_populates="decision", cascade="all, delete-orphan"
    )
    dependencies: Mapped[list["DecisionDependency"]] = relationship(
        back_populates="from_decision", cascade="all, delete-orphan"
    )


class DecisionAppearance(Base):
    """A (possibly non-contiguous) span where a decision surfaces."""

    __tablename__ = "decision_appearances"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    decision_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("decisions.id", ondelete="CASCADE"), index=True
    )
    message_start: Mapped[int] = mapped_column(Integer)
    message_end: Mapped[int] = mapped_column(Integer)
    type: Mapped[str] = mapped_column(String(20))  # introduced, elaborated, modified, reaffirmed
    context: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    decision: Mapped["Decision"] = relationship(back_populates="appearances")


class Alternative(Base):
    __tablename__ = "alternatives"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    decision_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("decisions.id", ondelete="CASCADE"), index=True
    )
    description: Mapped[str] = mapped_column(Text)
    why_rejected: Mapped[str] = mapped_column(Text)

    decision: Mapped["Decision"] = relationship(back_populates="alternatives")


class DecisionDependency(Base):
    """Directed edge; to_decision_ref is "decision:<id>" or an external reference."""

    __tablename__ = "decision_dependencies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    from_decision_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("decisions.id", ondelete="CASCADE"), index=True
    )
    to_decision_ref: Mapped[str] = mapped_column(String(512))

    from_decision: Mapped["Decision"] = relationship(back_populates="dependencies")
