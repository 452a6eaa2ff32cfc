"""Parse a conversation log and optionally run the full extraction pipeline.

Usage:
    python -m scripts.extract_conversation ~/.claude/projects/-Users-me-app/abc.jsonl
    python -m scripts.extract_conversation session.jsonl --extract --org acme --workspace core

Without ``--extract`` nothing leaves the machine: the log is parsed and a
summary plus a transcript preview is printed. ``--extract`` runs the two
LLM phases and stores the result (in ``--database-url``, default a local
SQLite file), using in-memory checkpoints.
"""

import argparse
import asyncio
import sys
import uuid
from pathlib import Path

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from config import get_settings
from db.postgres import create_tables
from models.conversation import ConversationSource
from models.errors import PipelineError
from models.schemas import ExtractConversationRequest
from services.checkpoints import InMemoryCheckpointStore
from services.parser import UnsupportedSourceError, parse_conversation
from services.pipeline import ExtractConversationWorkflow, ExtractionConfig
from services.store import ConversationStore
from services.transcript import render
from utils.logging import configure_logging

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./extractions.db"


def print_summary(path: Path, content: str, source: str, preview_chars: int) -> bool:
    try:
        conversation = parse_conversation(content, source, source_path=str(path))
    except UnsupportedSourceError as e:
        print(f"✗ {e}")
        return False

    roles: dict[str, int] = {}
    for message in conversation.messages:
        roles[message.role.value] = roles.get(message.role.value, 0) + 1
    with_thinking = sum(1 for m in conversation.messages if m.reasoning_trace)

    print(f"Session:   {conversation.session_id or '(none)'}")
    print(f"Project:   {conversation.project_path or '(unknown)'}")
    print(f"Created:   {conversation.created_at.isoformat()}")
    print(f"Messages:  {conversation.message_count} {roles}")
    print(f"Thinking:  {with_thinking} messages with reasoning traces")
    if conversation.skipped_lines:
        print(f"Skipped:   {conversation.skipped_lines} malformed lines")

    transcript = render(conversation.messages)
    print("\n--- transcript preview ---")
    print(transcript[:preview_chars])
    if len(transcript) > preview_chars:
        print(f"... ({len(transcript) - preview_chars} more characters)")
    return True


async def run_extraction(args: argparse.Namespace, content: str) -> int:
    settings = get_settings()
    database_url = args.database_url or settings.database_url or DEFAULT_DATABASE_URL

    engine = create_async_engine(database_url)
    await create_tables(engine)
    store = ConversationStore(async_sessionmaker(engine, expire_on_commit=False))

    config = ExtractionConfig.from_settings(settings)
    workflow = ExtractConversationWorkflow(
        store=store,
        checkpoints=InMemoryCheckpointStore(),
        config=config,
    )
    request = ExtractConversationRequest(
        org_id=args.org,
        workspace_id=args.workspace,
        content=content,
        source_path=str(args.path),
        source=args.source,
    )

    run_id = str(uuid.uuid4())
    print(f"\nRunning extraction {run_id} with {config.model}...")
    try:
        result = await workflow.run(request, run_id)
    except PipelineError as e:
        print(f"✗ {type(e).__name__} in {e.phase.value}: {e.message}")
        return 1
    finally:
        await engine.dispose()

    print(f"✓ Stored conversation {result.conversation_id} with {result.decision_count} decisions")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Decision extraction test harness")
    parser.add_argument("path", type=Path, help="Conversation log file (JSONL)")
    parser.add_argument(
        "--source",
        default=ConversationSource.CLAUDE_CODE.value,
        choices=[s.value for s in ConversationSource],
    )
    parser.add_argument("--preview", type=int, default=2000, help="Transcript preview length")
    parser.add_argument("--extract", action="store_true", help="Run both LLM phases and store")
    parser.add_argument("--org", default="local")
    parser.add_argument("--workspace", default="local")
    parser.add_argument("--database-url", default=None)
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()

    configure_logging(args.log_level, json_format=False)

    if not args.path.is_file():
        print(f"✗ File not found: {args.path}")
        return 1
    content = args.path.read_text(encoding="utf-8")

    if not print_summary(args.path, content, args.source, args.preview):
        return 1
    if args.extract:
        return asyncio.run(run_extraction(args, content))
    return 0


if __name__ == "__main__":
    sys.exit(main())
