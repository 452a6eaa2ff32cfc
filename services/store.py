"""Atomic persistence of one extracted conversation.

A conversation becomes visible with all of its messages, decisions,
appearances, alternatives and dependency edges, or not at all.
"""

from datetime import UTC, datetime
from uuid import NAMESPACE_URL, uuid5

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.conversation import ParsedConversation
from models.postgres import (
    Alternative,
    Conversation,
    ConversationMessage,
    Decision,
    DecisionAppearance,
    DecisionDependency,
    generate_uuid,
)
from models.schemas import ExtractConversationRequest, ExtractionResult, ResolvedGraph
from services.transcript import render
from utils.logging import get_logger

logger = get_logger(__name__)

# Transient failures worth retrying at the step level; integrity errors are not
STORE_RETRYABLE_EXCEPTIONS = (
    SQLAlchemyError,
    ConnectionError,
    TimeoutError,
    OSError,
)

CONVERSATION_ID_NAMESPACE = uuid5(NAMESPACE_URL, "decision-extraction/conversation")


def conversation_id_for_run(run_id: str) -> str:
    """Deterministic conversation id, so a retried commit finds its own row."""
    return str(uuid5(CONVERSATION_ID_NAMESPACE, run_id))


class ConversationStore:
    """Writes extraction results through a SQLAlchemy async session factory."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def count_decisions(self, session: AsyncSession, conversation_id: str) -> int:
        result = await session.execute(
            select(func.count())
            .select_from(Decision)
            .where(Decision.conversation_id == conversation_id)
        )
        return result.scalar_one()

    async def commit(
        self,
        conversation_id: str,
        request: ExtractConversationRequest,
        conversation: ParsedConversation,
        graph: ResolvedGraph,
    ) -> ExtractionResult:
        """Insert the full graph for a conversation in one transaction.

        If the conversation already exists (an earlier attempt committed but
        the acknowledgement was lost) nothing is written and the stored
        decision count is returned.
        """
        async with self.session_maker() as session:
            existing = await session.get(Conversation, conversation_id)
            if existing is not None:
                count = await self.count_decisions(session, conversation_id)
                logger.info(
                    f"Conversation {conversation_id} already stored with {count} decisions"
                )
                return ExtractionResult(conversation_id=conversation_id, decision_count=count)

            now = datetime.now(UTC)
            session.add(
                Conversation(
                    id=conversation_id,
                    org_id=request.org_id,
                    workspace_id=request.workspace_id,
                    source=request.source.value,
                    source_path=request.source_path,
                    project_path=conversation.project_path,
                    session_id=conversation.session_id,
                    message_count=conversation.message_count,
                    created_at=conversation.created_at,
                    extracted_at=now,
                )
            )

            for message in conversation.messages:
                session.add(
                    ConversationMessage(
                        id=generate_uuid(),
                        conversation_id=conversation_id,
                        index=message.index,
                        role=message.role.value,
                        content=message.content,
                        reasoning_trace=message.reasoning_trace,
                        timestamp=message.timestamp,
                    )
                )

            for resolved in graph.decisions:
                extracted = resolved.decision
                decision = Decision(
                    id=resolved.id,
                    conversation_id=conversation_id,
                    org_id=request.org_id,
                    workspace_id=request.workspace_id,
                    title=extracted.title,
                    summary=extracted.summary,
                    reasoning=extracted.reasoning,
                    status=extracted.status.value,
                    confidence=extracted.confidence,
                    extracted_at=now,
                )
                decision.appearances = [
                    DecisionAppearance(
                        id=generate_uuid(),
                        message_start=a.message_start,
                        message_end=a.message_end,
                        type=a.kind.value,
                        context=render(
                            conversation.messages[a.message_start : a.message_end + 1]
                        ),
                    )
                    for a in extracted.appearances
                ]
                decision.alternatives = [
                    Alternative(
                        id=generate_uuid(),
                        description=alt.description,
                        why_rejected=alt.why_rejected,
                    )
                    for alt in extracted.alternatives_considered
                ]
                session.add(decision)

            for edge in graph.edges:
                session.add(
                    DecisionDependency(
                        id=generate_uuid(),
                        from_decision_id=edge.from_decision_id,
                        to_decision_ref=edge.to_decision_ref,
                    )
                )

            try:
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        logger.info(
            f"Stored conversation {conversation_id}: "
            f"{conversation.message_count} messages, {len(graph.decisions)} decisions, "
            f"{len(graph.edges)} dependencies"
        )
        return ExtractionResult(
            conversation_id=conversation_id, decision_count=len(graph.decisions)
        )
