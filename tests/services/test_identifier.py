"""Tests for Phase 1 decision identification and candidate normalization."""

import logging

import pytest

from models.schemas import Appearance, AppearanceKind, DecisionCandidate
from services.identifier import DecisionIdentifier, normalize_candidates
from services.llm import SchemaValidationError
from services.prompts import build_identification_prompt
from tests.factories import DecisionFactory
from tests.mocks.llm_mock import IDENTIFICATION_MARKER


def candidate(temp_id: str, *spans: tuple[int, int]) -> DecisionCandidate:
    return DecisionCandidate(
        temp_id=temp_id,
        title=f"Title {temp_id}",
        appearances=[
            Appearance(message_start=s, message_end=e, kind=AppearanceKind.INTRODUCED)
            for s, e in spans
        ],
        confidence=0.7,
    )


class TestIdentificationPrompt:
    def test_contains_transcript_and_guidance(self):
        prompt = build_identification_prompt("[0] USER: use {braces} freely")

        assert "[0] USER: use {braces} freely" in prompt
        assert IDENTIFICATION_MARKER in prompt
        assert "list BOTH appearances" in prompt
        assert "Ignore tool output" in prompt


class TestDecisionIdentifier:
    @pytest.mark.asyncio
    async def test_returns_candidates_in_model_order(self, llm_client, mock_provider):
        mock_provider.set_identification(
            [
                DecisionFactory.identification_item("decision_1", "Use Postgres", [(2, 4)]),
                DecisionFactory.identification_item(
                    "decision_2", "Add a cache", [(6, 6), (20, 22)], kind="elaborated"
                ),
            ]
        )

        candidates = await DecisionIdentifier(llm_client).identify("[0] USER: hi")

        assert [c.temp_id for c in candidates] == ["decision_1", "decision_2"]
        assert len(candidates[1].appearances) == 2
        assert candidates[1].appearances[1].kind == AppearanceKind.ELABORATED

    @pytest.mark.asyncio
    async def test_empty_result(self, llm_client, mock_provider):
        mock_provider.set_identification([])
        assert await DecisionIdentifier(llm_client).identify("[0] USER: hi") == []

    @pytest.mark.asyncio
    async def test_invalid_output_raises(self, llm_client, mock_provider):
        mock_provider.set_response(IDENTIFICATION_MARKER, {"decisions": [{"tempId": "x"}]})

        with pytest.raises(SchemaValidationError):
            await DecisionIdentifier(llm_client).identify("[0] USER: hi")


class TestNormalizeCandidates:
    def test_in_range_candidates_unchanged(self):
        candidates = [candidate("decision_1", (0, 3)), candidate("decision_2", (5, 9))]
        assert normalize_candidates(candidates, 10) == candidates

    def test_partial_span_is_clamped(self, caplog):
        with caplog.at_level(logging.WARNING):
            [result] = normalize_candidates([candidate("d", (-2, 3), (8, 15))], 10)

        assert [(a.message_start, a.message_end) for a in result.appearances] == [
            (0, 3),
            (8, 9),
        ]
        assert "Adjusted appearance" in caplog.text

    def test_reversed_span_is_swapped(self):
        [result] = normalize_candidates([candidate("d", (7, 4))], 10)
        assert (result.appearances[0].message_start, result.appearances[0].message_end) == (4, 7)

    def test_out_of_range_span_is_dropped(self):
        [result] = normalize_candidates([candidate("d", (1, 2), (40, 45))], 10)
        assert len(result.appearances) == 1

    def test_candidate_without_appearances_is_dropped(self, caplog):
        with caplog.at_level(logging.WARNING):
            result = normalize_candidates(
                [candidate("keep", (1, 1)), candidate("gone", (50, 60))], 10
            )

        assert [c.temp_id for c in result] == ["keep"]
        assert "Dropping candidate gone" in caplog.text

    def test_duplicate_temp_ids_get_suffixes(self, caplog):
        with caplog.at_level(logging.WARNING):
            result = normalize_candidates(
                [
                    candidate("decision_1", (0, 0)),
                    candidate("decision_1", (1, 1)),
                    candidate("decision_1", (2, 2)),
                ],
                10,
            )

        assert [c.temp_id for c in result] == ["decision_1", "decision_1__2", "decision_1__3"]
        assert "Duplicate tempId" in caplog.text

    def test_suffix_avoids_existing_ids(self):
        result = normalize_candidates(
            [
                candidate("a__2", (0, 0)),
                candidate("a", (1, 1)),
                candidate("a", (2, 2)),
            ],
            10,
        )
        assert [c.temp_id for c in result] == ["a__2", "a", "a__3"]

    def test_empty_conversation_drops_everything(self):
        assert normalize_candidates([candidate("d", (0, 0))], 0) == []
