"""Shared pytest fixtures for extraction service tests."""

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config import Settings
from db.postgres import create_tables
from services.checkpoints import InMemoryCheckpointStore
from services.llm import LLMClient
from services.pipeline import ExtractionConfig
from services.store import ConversationStore
from tests.factories import make_claude_code_log
from tests.mocks.llm_mock import MockLLMProvider
from utils.retry import RetryPolicy

# ============================================================================
# Settings & LLM Fixtures
# ============================================================================


@pytest.fixture
def test_settings():
    """Settings isolated from the environment, with retries that never sleep."""
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite://",
        checkpoint_backend="memory",
        llm_api_key="test-key",
        llm_model="mock-model",
        llm_max_retries=0,
        llm_retry_base_delay=0.0,
        llm_schema_retries=1,
        step_max_attempts=2,
        step_retry_base_delay=0.0,
        step_retry_max_delay=0.0,
    )


@pytest.fixture
def mock_provider():
    return MockLLMProvider()


@pytest.fixture
def llm_client(mock_provider, test_settings):
    """Real LLMClient over the scripted provider."""
    return LLMClient(provider=mock_provider, settings=test_settings)


@pytest.fixture
def fast_policy():
    return RetryPolicy(max_attempts=2, backoff_base=0.0, backoff_max=0.0, jitter=False)


@pytest.fixture
def extraction_config(fast_policy):
    return ExtractionConfig(
        context_buffer=2,
        model="mock-model",
        max_concurrency=1,
        identify_policy=fast_policy,
        extract_policy=fast_policy,
        store_policy=fast_policy,
    )


# ============================================================================
# Storage Fixtures
# ============================================================================


@pytest.fixture
def checkpoints():
    return InMemoryCheckpointStore()


@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite engine shared across sessions for one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest.fixture
def conversation_store(session_maker):
    return ConversationStore(session_maker)


@pytest.fixture
def mock_redis_with_data():
    """Factory for a mock Redis backed by a plain dict.

    Supports the calls the checkpoint store makes: get, setex, scan, delete.

    Example:
        redis = mock_redis_with_data({"workflow:r1:step:_status": "{...}"})
    """

    def _create_redis(data: dict):
        redis = AsyncMock()
        redis.ttls = {}

        async def mock_get(key):
            return data.get(key)

        async def mock_setex(key, ttl, value):
            data[key] = value
            redis.ttls[key] = ttl
            return True

        async def mock_scan(cursor, match=None, count=None):
            prefix = match.rstrip("*") if match else ""
            return 0, [k for k in data if k.startswith(prefix)]

        async def mock_delete(*keys):
            count = sum(1 for k in keys if k in data)
            for k in keys:
                data.pop(k, None)
            return count

        redis.get = AsyncMock(side_effect=mock_get)
        redis.setex = AsyncMock(side_effect=mock_setex)
        redis.scan = AsyncMock(side_effect=mock_scan)
        redis.delete = AsyncMock(side_effect=mock_delete)
        redis.ping = AsyncMock(return_value=True)
        return redis

    return _create_redis


# ============================================================================
# Conversation Fixtures
# ============================================================================


@pytest.fixture
def thirty_message_log():
    """Claude Code log with exactly 30 messages (indices 0-29)."""
    return make_claude_code_log(30)


@pytest.fixture
def source_path():
    return "/home/dev/.claude/projects/-Users-dev-code-app/session-abc.jsonl"
