"""Phase 2: extract reasoning, alternatives and dependencies for one decision."""

from models.schemas import DecisionCandidate, ExtractedDecision, ExtractionResponse
from services.llm import LLMClient
from services.prompts import build_extraction_prompt
from utils.logging import get_logger

logger = get_logger(__name__)


class DecisionExtractor:
    """Extract the full record for one candidate from its context window.

    Holds no per-candidate state, so one instance can serve concurrent
    extractions.
    """

    def __init__(self, llm: LLMClient):
        self.llm = llm

    async def extract(
        self,
        candidate: DecisionCandidate,
        context_window: str,
        all_candidates: list[DecisionCandidate],
    ) -> ExtractedDecision:
        """Extract one decision.

        Args:
            candidate: The Phase 1 candidate being extracted
            context_window: Rendered messages around the candidate's appearances
            all_candidates: Every candidate in the run, for dependency matching

        Returns:
            The candidate composed with its extraction; ``depends_on`` still
            holds tempIds (resolution happens later).
        """
        prompt = build_extraction_prompt(candidate, context_window, all_candidates)
        response = await self.llm.generate_structured(prompt, ExtractionResponse)

        logger.debug(
            f"Extracted {candidate.temp_id}: status={response.status.value}, "
            f"{len(response.alternatives_considered)} alternatives, "
            f"depends_on={response.depends_on}"
        )
        return ExtractedDecision.compose(candidate, response)
