"""Tests for atomic conversation persistence (in-memory SQLite)."""

from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from models.conversation import ConversationSource
from models.postgres import (
    Alternative,
    Conversation,
    ConversationMessage,
    Decision,
    DecisionAppearance,
    DecisionDependency,
)
from models.schemas import ExtractConversationRequest
from services.parser import parse_conversation
from services.resolver import resolve
from services.store import conversation_id_for_run
from tests.factories import DecisionFactory, make_claude_code_log


async def count_rows(session_maker, model) -> int:
    async with session_maker() as session:
        result = await session.execute(select(func.count()).select_from(model))
        return result.scalar_one()


@pytest.fixture
def request_payload(source_path):
    return ExtractConversationRequest(
        org_id="org-1",
        workspace_id="ws-1",
        content=make_claude_code_log(6),
        source_path=source_path,
        source=ConversationSource.CLAUDE_CODE,
    )


@pytest.fixture
def conversation(request_payload, source_path):
    return parse_conversation(request_payload.content, "claude-code", source_path=source_path)


@pytest.fixture
def graph():
    return resolve(
        [
            DecisionFactory.extracted("decision_1", "Use PostgreSQL", spans=[(0, 1)]),
            DecisionFactory.extracted(
                "decision_2", "Add cache", depends_on=["decision_1", "ext"], spans=[(2, 3), (5, 5)]
            ),
        ]
    )


class TestConversationIds:
    def test_deterministic_per_run(self):
        assert conversation_id_for_run("run-1") == conversation_id_for_run("run-1")

    def test_distinct_runs(self):
        assert conversation_id_for_run("run-1") != conversation_id_for_run("run-2")


class TestConversationStore:
    @pytest.mark.asyncio
    async def test_commits_full_graph(
        self, conversation_store, session_maker, request_payload, conversation, graph
    ):
        result = await conversation_store.commit("conv-1", request_payload, conversation, graph)

        assert result.conversation_id == "conv-1"
        assert result.decision_count == 2
        assert await count_rows(session_maker, Conversation) == 1
        assert await count_rows(session_maker, ConversationMessage) == 6
        assert await count_rows(session_maker, Decision) == 2
        assert await count_rows(session_maker, DecisionAppearance) == 3
        assert await count_rows(session_maker, Alternative) == 0
        assert await count_rows(session_maker, DecisionDependency) == 2

    @pytest.mark.asyncio
    async def test_persisted_values(
        self, conversation_store, session_maker, request_payload, conversation, graph
    ):
        await conversation_store.commit("conv-1", request_payload, conversation, graph)

        async with session_maker() as session:
            stored = await session.get(Conversation, "conv-1")
            assert stored.org_id == "org-1"
            assert stored.source == "claude-code"
            assert stored.project_path == "Users/dev/code/app"
            assert stored.session_id == "session-abc"
            assert stored.message_count == 6

            deps = (await session.execute(select(DecisionDependency))).scalars().all()
            first_id = graph.decisions[0].id
            assert {d.to_decision_ref for d in deps} == {f"decision:{first_id}", "ext"}

            appearance = (
                await session.execute(
                    select(DecisionAppearance).where(DecisionAppearance.message_start == 5)
                )
            ).scalar_one()
            assert appearance.type == "introduced"
            assert appearance.context == "[5] ASSISTANT: message 5"

    @pytest.mark.asyncio
    async def test_second_commit_is_a_no_op(
        self, conversation_store, session_maker, request_payload, conversation, graph
    ):
        await conversation_store.commit("conv-1", request_payload, conversation, graph)
        again = await conversation_store.commit(
            "conv-1", request_payload, conversation, resolve([])
        )

        assert again.decision_count == 2
        assert await count_rows(session_maker, Conversation) == 1
        assert await count_rows(session_maker, Decision) == 2

    @pytest.mark.asyncio
    async def test_failed_commit_writes_nothing(
        self, conversation_store, session_maker, request_payload, conversation, graph
    ):
        with patch(
            "sqlalchemy.ext.asyncio.AsyncSession.commit",
            side_effect=OperationalError("COMMIT", {}, Exception("disk I/O error")),
        ):
            with pytest.raises(OperationalError):
                await conversation_store.commit("conv-1", request_payload, conversation, graph)

        assert await count_rows(session_maker, Conversation) == 0
        assert await count_rows(session_maker, Decision) == 0

    @pytest.mark.asyncio
    async def test_conversation_without_decisions(
        self, conversation_store, session_maker, request_payload, conversation
    ):
        result = await conversation_store.commit(
            "conv-1", request_payload, conversation, resolve([])
        )

        assert result.decision_count == 0
        assert await count_rows(session_maker, ConversationMessage) == 6
