"""Phase 1: find every decision in a transcript and where it appears."""

from models.schemas import Appearance, DecisionCandidate, IdentificationResponse
from services.llm import LLMClient
from services.prompts import build_identification_prompt
from utils.logging import get_logger

logger = get_logger(__name__)


class DecisionIdentifier:
    """Single LLM pass over the full transcript.

    Returns candidates exactly as the model produced them (after schema
    validation); range checks against the conversation happen in
    ``normalize_candidates``.
    """

    def __init__(self, llm: LLMClient):
        self.llm = llm

    async def identify(self, transcript: str) -> list[DecisionCandidate]:
        prompt = build_identification_prompt(transcript)
        response = await self.llm.generate_structured(prompt, IdentificationResponse)
        logger.info(f"Identified {len(response.decisions)} decision candidates")
        return response.decisions


def _normalize_appearance(
    appearance: Appearance, message_count: int
) -> Appearance | None:
    start, end = appearance.message_start, appearance.message_end
    if start > end:
        start, end = end, start
    last = message_count - 1
    if end < 0 or start > last:
        return None
    return appearance.model_copy(
        update={"message_start": max(0, start), "message_end": min(last, end)}
    )


def normalize_candidates(
    candidates: list[DecisionCandidate], message_count: int
) -> list[DecisionCandidate]:
    """Bring model output in line with the conversation it describes.

    - reversed spans are swapped, partially out-of-range spans are clamped
      into ``[0, message_count - 1]``, wholly out-of-range spans are dropped
    - a candidate left with no appearances is dropped
    - duplicate tempIds get a ``__<n>`` suffix so references stay unambiguous

    Order is preserved; every adjustment is logged as a warning.
    """
    normalized: list[DecisionCandidate] = []
    seen: dict[str, int] = {}

    for candidate in candidates:
        appearances = []
        for appearance in candidate.appearances:
            fixed = _normalize_appearance(appearance, message_count)
            if fixed is None:
                logger.warning(
                    f"Dropping out-of-range appearance "
                    f"[{appearance.message_start}, {appearance.message_end}] "
                    f"of {candidate.temp_id} (message_count={message_count})"
                )
                continue
            if fixed != appearance:
                logger.warning(
                    f"Adjusted appearance of {candidate.temp_id} from "
                    f"[{appearance.message_start}, {appearance.message_end}] to "
                    f"[{fixed.message_start}, {fixed.message_end}]"
                )
            appearances.append(fixed)

        if not appearances:
            logger.warning(
                f"Dropping candidate {candidate.temp_id} ({candidate.title!r}): "
                "no appearances within the conversation"
            )
            continue

        temp_id = candidate.temp_id
        count = seen.get(temp_id, 0) + 1
        seen[temp_id] = count
        if count > 1:
            temp_id = f"{candidate.temp_id}__{count}"
            while temp_id in seen:
                count += 1
                temp_id = f"{candidate.temp_id}__{count}"
            seen[candidate.temp_id] = count
            seen[temp_id] = 1
            logger.warning(
                f"Duplicate tempId {candidate.temp_id!r} renamed to {temp_id!r}"
            )

        normalized.append(
            candidate.model_copy(update={"temp_id": temp_id, "appearances": appearances})
        )

    return normalized
