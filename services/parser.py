"""Conversation log parsers.

Turns raw log text into a ``ParsedConversation``: dense zero-based message
indices in emission order, optional reasoning traces, and session metadata.
Individual malformed records are skipped and counted rather than failing the
whole parse; an empty result is not an error at this layer.

Only the Claude Code JSONL format is implemented. Each line is one event:

    {"type": "user", "sessionId": "...", "timestamp": "...",
     "message": {"role": "user", "content": "..."}}
    {"type": "assistant", "message": {"content": [
        {"type": "thinking", "thinking": "..."},
        {"type": "text", "text": "..."},
        {"type": "tool_use", "name": "Bash", "input": {"command": "ls"}}]}}
"""

import json
import re
from datetime import UTC, datetime
from typing import Optional

from models.conversation import (
    ConversationSource,
    Message,
    MessageRole,
    ParsedConversation,
)
from utils.logging import get_logger

logger = get_logger(__name__)

# ~/.claude/projects/-Users-me-code-app/<session>.jsonl
_PROJECT_DIR_RE = re.compile(r"projects/([^/]+)/")

# Parameters that best summarize a tool call, in priority order
_TOOL_PARAM_KEYS = ("command", "file_path", "path", "pattern", "query")


class UnsupportedSourceError(ValueError):
    """Raised when no parser exists for a conversation source."""

    def __init__(self, source: str):
        self.source = source
        super().__init__(f"Parser not implemented for source: {source}")


def _parse_timestamp(value: object) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts


def derive_project_path(source_path: Optional[str]) -> str:
    """Best-effort project path from a Claude Code log location.

    ``~/.claude/projects/-Users-me-app/x.jsonl`` -> ``Users/me/app``; returns
    an empty string when the path does not follow that layout.
    """
    if not source_path:
        return ""
    match = _PROJECT_DIR_RE.search(source_path)
    if not match:
        return ""
    return match.group(1).replace("-", "/").lstrip("/")


class ClaudeCodeParser:
    """Parser for Claude Code JSONL session logs."""

    @staticmethod
    def _tool_marker(block: dict) -> str:
        """Short "[Tool: Name(param)]" marker for a tool_use block."""
        name = block.get("name", "unknown")
        inp = block.get("input") or {}
        if isinstance(inp, dict):
            for key in _TOOL_PARAM_KEYS:
                if key in inp:
                    return f"[Tool: {name}({str(inp[key])[:80]})]"
        return f"[Tool: {name}]"

    @classmethod
    def _split_blocks(cls, raw_content: object) -> tuple[str, Optional[str]]:
        """Split message content into (text, thinking).

        Text and tool markers are joined with newlines; tool_result blocks are
        dropped (they are tool output, not conversation).
        """
        if isinstance(raw_content, str):
            return raw_content, None
        if not isinstance(raw_content, list):
            return "", None

        text_parts: list[str] = []
        thinking_parts: list[str] = []
        for block in raw_content:
            if isinstance(block, str):
                text_parts.append(block)
                continue
            if not isinstance(block, dict):
                continue

            btype = block.get("type", "")
            if btype == "text":
                text = block.get("text", "")
                if text:
                    text_parts.append(text)
            elif btype == "thinking":
                thinking = block.get("thinking") or block.get("text", "")
                if thinking:
                    thinking_parts.append(thinking)
            elif btype == "tool_use":
                text_parts.append(cls._tool_marker(block))

        thinking_text = "\n".join(thinking_parts) if thinking_parts else None
        return "\n".join(text_parts), thinking_text

    def parse(self, content: str, source_path: Optional[str] = None) -> ParsedConversation:
        messages: list[Message] = []
        session_id = ""
        earliest: Optional[datetime] = None
        skipped = 0

        # JSONL records end at "\n" only; str.splitlines would also break on
        # U+2028 and friends, which JSON allows unescaped inside strings
        for line_no, line in enumerate(content.split("\n"), start=1):
            line = line.strip()
            if not line:
                continue

            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                skipped += 1
                logger.debug(f"Skipping malformed JSONL line {line_no}")
                continue
            if not isinstance(event, dict):
                skipped += 1
                logger.debug(f"Skipping non-object JSONL line {line_no}")
                continue

            if not session_id and isinstance(event.get("sessionId"), str):
                session_id = event["sessionId"]

            timestamp = _parse_timestamp(event.get("timestamp"))
            if timestamp and (earliest is None or timestamp < earliest):
                earliest = timestamp

            # System events carry Claude Code's own instructions (compaction,
            # tool definitions), not project decisions
            event_type = event.get("type")
            if event_type not in (MessageRole.USER.value, MessageRole.ASSISTANT.value):
                continue

            msg = event.get("message")
            if not isinstance(msg, dict):
                skipped += 1
                logger.debug(f"Skipping {event_type} event without message on line {line_no}")
                continue

            text, thinking = self._split_blocks(msg.get("content", ""))
            if event_type == MessageRole.USER.value:
                # Tool results come back as user turns with no text
                if not text:
                    continue
                thinking = None
            elif not text and not thinking:
                continue

            messages.append(
                Message(
                    index=len(messages),
                    role=MessageRole(event_type),
                    content=text,
                    reasoning_trace=thinking,
                    timestamp=timestamp,
                )
            )

        if skipped:
            logger.warning(
                f"Skipped {skipped} malformed records while parsing",
                extra={"skipped_lines": skipped, "source_path": source_path},
            )

        return ParsedConversation(
            session_id=session_id,
            project_path=derive_project_path(source_path),
            messages=messages,
            created_at=earliest or datetime.now(UTC),
            skipped_lines=skipped,
        )


_PARSERS = {
    ConversationSource.CLAUDE_CODE: ClaudeCodeParser,
}


def parse_conversation(
    content: str,
    source: ConversationSource | str,
    source_path: Optional[str] = None,
) -> ParsedConversation:
    """Parse raw conversation text with the parser registered for ``source``.

    Raises:
        UnsupportedSourceError: No parser exists for the source tag
    """
    try:
        source = ConversationSource(source)
    except ValueError:
        raise UnsupportedSourceError(str(source)) from None

    parser_cls = _PARSERS.get(source)
    if parser_cls is None:
        raise UnsupportedSourceError(source.value)

    conversation = parser_cls().parse(content, source_path=source_path)
    logger.info(
        f"Parsed {conversation.message_count} messages from {source.value} log",
        extra={"session_id": conversation.session_id, "source_path": source_path},
    )
    return conversation
