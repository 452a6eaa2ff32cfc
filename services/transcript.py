"""Render conversations as LLM-ready transcripts.

Each message becomes one block::

    [12] ASSISTANT: I'll use SQLite for the local cache.
    [12] THINKING: The user wants zero setup, so a server database is out.

Blocks are separated by a blank line. The ``[index]`` prefix is what the
models cite back as ``messageStart`` / ``messageEnd``.
"""

from typing import Iterable, Sequence

from models.conversation import Message
from models.schemas import Appearance

DEFAULT_CONTEXT_BUFFER = 2


def render_message(message: Message) -> str:
    text = f"[{message.index}] {message.role.value.upper()}: {message.content}"
    if message.reasoning_trace:
        text += f"\n[{message.index}] THINKING: {message.reasoning_trace}"
    return text


def render(messages: Iterable[Message]) -> str:
    """Render messages in the order given (callers sort if they need to)."""
    return "\n\n".join(render_message(m) for m in messages)


def window_indices(
    message_count: int,
    appearances: Iterable[Appearance],
    buffer: int = DEFAULT_CONTEXT_BUFFER,
) -> list[int]:
    """Indices covered by every appearance widened by ``buffer`` on each side.

    Spans are clamped to ``[0, message_count - 1]``; overlapping spans merge.
    """
    if buffer < 0:
        raise ValueError("buffer must be non-negative")
    if message_count <= 0:
        return []

    indices: set[int] = set()
    for appearance in appearances:
        start = max(0, appearance.message_start - buffer)
        end = min(message_count - 1, appearance.message_end + buffer)
        indices.update(range(start, end + 1))
    return sorted(indices)


def render_window(
    messages: Sequence[Message],
    appearances: Iterable[Appearance],
    buffer: int = DEFAULT_CONTEXT_BUFFER,
) -> str:
    """Render only the messages around the given appearances."""
    return render(messages[i] for i in window_indices(len(messages), appearances, buffer))
