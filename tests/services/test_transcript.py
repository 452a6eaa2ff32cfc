"""Tests for transcript rendering and context windows."""

import pytest

from models.conversation import Message, MessageRole
from models.schemas import Appearance, AppearanceKind
from services.transcript import render, render_message, render_window, window_indices


def make_messages(count: int) -> list[Message]:
    return [
        Message(
            index=i,
            role=MessageRole.USER if i % 2 == 0 else MessageRole.ASSISTANT,
            content=f"message {i}",
        )
        for i in range(count)
    ]


def span(start: int, end: int) -> Appearance:
    return Appearance(message_start=start, message_end=end, kind=AppearanceKind.INTRODUCED)


class TestRender:
    def test_message_block_format(self):
        message = Message(index=12, role=MessageRole.ASSISTANT, content="Use SQLite.")
        assert render_message(message) == "[12] ASSISTANT: Use SQLite."

    def test_thinking_line_follows_content(self):
        message = Message(
            index=3,
            role=MessageRole.ASSISTANT,
            content="Use SQLite.",
            reasoning_trace="Zero setup matters.",
        )
        assert render_message(message) == (
            "[3] ASSISTANT: Use SQLite.\n[3] THINKING: Zero setup matters."
        )

    def test_blocks_separated_by_blank_line(self):
        assert render(make_messages(2)) == "[0] USER: message 0\n\n[1] ASSISTANT: message 1"

    def test_preserves_given_order(self):
        messages = list(reversed(make_messages(3)))
        assert render(messages).startswith("[2] USER: message 2")

    def test_empty(self):
        assert render([]) == ""


class TestWindowIndices:
    def test_buffer_around_single_message(self):
        assert window_indices(30, [span(10, 10)], buffer=2) == [8, 9, 10, 11, 12]

    def test_clamped_at_both_ends(self):
        assert window_indices(5, [span(0, 0), span(4, 4)], buffer=2) == [0, 1, 2, 3, 4]

    def test_overlapping_spans_merge(self):
        assert window_indices(30, [span(5, 6), span(8, 9)], buffer=1) == list(range(4, 11))

    def test_disjoint_spans_stay_disjoint(self):
        assert window_indices(30, [span(2, 2), span(20, 21)], buffer=1) == [
            1, 2, 3, 19, 20, 21, 22,
        ]

    def test_zero_buffer(self):
        assert window_indices(10, [span(3, 5)], buffer=0) == [3, 4, 5]

    def test_negative_buffer_rejected(self):
        with pytest.raises(ValueError):
            window_indices(10, [span(3, 5)], buffer=-1)

    def test_no_messages(self):
        assert window_indices(0, [span(0, 0)]) == []


class TestRenderWindow:
    def test_renders_exactly_the_window(self):
        text = render_window(make_messages(30), [span(10, 10)], buffer=2)

        assert text.count("\n\n") == 4
        assert text.startswith("[8] USER: message 8")
        assert text.endswith("[12] USER: message 12")

    def test_overlapping_windows_do_not_duplicate_blocks(self):
        text = render_window(make_messages(30), [span(10, 10), span(11, 12)], buffer=2)
        assert text.count("[11] ASSISTANT") == 1
