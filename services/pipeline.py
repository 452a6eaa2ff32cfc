"""Two-phase decision extraction workflow.

Steps, in order (each name is also its checkpoint key):

    parse-content         raw log -> ParsedConversation
    build-transcript      messages -> indexed transcript
    identify-decisions    Phase 1, one LLM call over the whole transcript
    extract-decision-<i>  Phase 2, one LLM call per candidate
    store-results         resolve dependencies, commit everything atomically

Re-running a run id replays completed steps from their checkpoints, so a run
that failed at candidate k resumes at k without repeating earlier LLM calls.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Callable, Optional

from config import Settings, get_settings
from models.conversation import ParsedConversation
from models.errors import (
    ExtractionFailure,
    IdentificationFailure,
    ParseFailure,
    PipelineError,
    PipelinePhase,
    StoreFailure,
)
from models.postgres import generate_uuid
from models.schemas import (
    DecisionCandidate,
    ExtractConversationRequest,
    ExtractedDecision,
    ExtractionResult,
    PipelineState,
    WorkflowErrorInfo,
    WorkflowStatus,
)
from services.checkpoints import INPUT_KEY, STATUS_KEY, CheckpointStore
from services.extractor import DecisionExtractor
from services.identifier import DecisionIdentifier, normalize_candidates
from services.llm import LLMClient, LLMError, is_retryable_llm_error
from services.llm_providers import get_llm_provider
from services.parser import UnsupportedSourceError, parse_conversation
from services.resolver import resolve
from services.store import STORE_RETRYABLE_EXCEPTIONS, ConversationStore, conversation_id_for_run
from services.transcript import render, render_window
from services.workflow import WorkflowStep
from utils.logging import LogContext, get_logger
from utils.retry import NO_RETRY, RetryPolicy

logger = get_logger(__name__)


def extract_step_name(index: int) -> str:
    return f"{PipelinePhase.EXTRACT.value}-{index}"


@dataclass(frozen=True)
class ExtractionConfig:
    """Per-run knobs, fixed when the workflow is constructed."""

    context_buffer: int = 2
    model: Optional[str] = None
    max_concurrency: int = 1
    identify_policy: RetryPolicy = field(default_factory=RetryPolicy)
    extract_policy: RetryPolicy = field(default_factory=RetryPolicy)
    store_policy: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self):
        if self.context_buffer < 0:
            raise ValueError("context_buffer must be non-negative")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ExtractionConfig":
        settings = settings or get_settings()
        policy = RetryPolicy(
            max_attempts=settings.step_max_attempts,
            backoff_base=settings.step_retry_base_delay,
            backoff_max=settings.step_retry_max_delay,
        )
        return cls(
            context_buffer=settings.extraction_context_buffer,
            model=settings.llm_model,
            max_concurrency=settings.extraction_max_concurrency,
            identify_policy=policy,
            extract_policy=policy,
            store_policy=policy,
        )


async def get_workflow_status(
    checkpoints: CheckpointStore, run_id: str
) -> WorkflowStatus | None:
    raw = await checkpoints.get(run_id, STATUS_KEY)
    return WorkflowStatus.model_validate_json(raw) if raw is not None else None


async def get_workflow_input(
    checkpoints: CheckpointStore, run_id: str
) -> ExtractConversationRequest | None:
    raw = await checkpoints.get(run_id, INPUT_KEY)
    return ExtractConversationRequest.model_validate_json(raw) if raw is not None else None


class ExtractConversationWorkflow:
    """Orchestrates one conversation through both extraction phases.

    Collaborators are injected so tests can swap the LLM, the checkpoint
    backend, the database and the id source.
    """

    def __init__(
        self,
        store: ConversationStore,
        checkpoints: CheckpointStore,
        llm_client: LLMClient | None = None,
        config: ExtractionConfig | None = None,
        id_factory: Callable[[], str] = generate_uuid,
    ):
        self.config = config or ExtractionConfig.from_settings()
        self.llm = llm_client or LLMClient(provider=get_llm_provider(self.config.model))
        self.store = store
        self.checkpoints = checkpoints
        self.id_factory = id_factory
        self.identifier = DecisionIdentifier(self.llm)
        self.extractor = DecisionExtractor(self.llm)

    async def _set_status(self, status: WorkflowStatus, **changes) -> WorkflowStatus:
        updated = status.model_copy(update={**changes, "updated_at": datetime.now(UTC)})
        await self.checkpoints.put(
            status.run_id, STATUS_KEY, updated.model_dump_json(by_alias=True)
        )
        return updated

    async def _save_input(self, run_id: str, request: ExtractConversationRequest) -> None:
        if await self.checkpoints.get(run_id, INPUT_KEY) is None:
            await self.checkpoints.put(run_id, INPUT_KEY, request.model_dump_json(by_alias=True))

    async def run(self, request: ExtractConversationRequest, run_id: str) -> ExtractionResult:
        """Run (or resume) the workflow for ``run_id``.

        Raises:
            PipelineError: The failing phase, with the candidate index for
                Phase 2 failures. The failure is also written to the status.
        """
        conversation_id = conversation_id_for_run(run_id)
        async with LogContext(run_id=run_id, conversation_id=conversation_id):
            await self._save_input(run_id, request)
            # A resumed run keeps the counts it already reached
            previous = await get_workflow_status(self.checkpoints, run_id)
            status = await self._set_status(
                previous
                or WorkflowStatus(
                    run_id=run_id,
                    state=PipelineState.PARSING,
                    updated_at=datetime.now(UTC),
                ),
                state=PipelineState.PARSING,
                error=None,
            )
            step = WorkflowStep(run_id, self.checkpoints)
            try:
                return await self._run_steps(step, request, conversation_id, status)
            except PipelineError as e:
                current = await get_workflow_status(self.checkpoints, run_id) or status
                await self._set_status(
                    current,
                    state=PipelineState.FAILED,
                    error=WorkflowErrorInfo(
                        phase=e.phase.value,
                        message=e.message,
                        candidate_index=e.candidate_index,
                    ),
                )
                logger.error(f"Extraction run failed in {e.phase.value}: {e.message}")
                raise

    async def _run_steps(
        self,
        step: WorkflowStep,
        request: ExtractConversationRequest,
        conversation_id: str,
        status: WorkflowStatus,
    ) -> ExtractionResult:
        try:
            conversation = await step.do(
                PipelinePhase.PARSE.value,
                lambda: parse_conversation(
                    request.content, request.source, source_path=request.source_path
                ),
                ParsedConversation,
                policy=NO_RETRY,
            )
        except UnsupportedSourceError as e:
            raise ParseFailure(str(e), cause=e) from e
        except Exception as e:
            raise ParseFailure(f"parse-content failed: {e}", cause=e) from e

        try:
            transcript = await step.do(
                PipelinePhase.TRANSCRIPT.value,
                lambda: render(conversation.messages),
                str,
                policy=NO_RETRY,
            )
        except Exception as e:
            raise ParseFailure(
                f"build-transcript failed: {e}", cause=e, phase=PipelinePhase.TRANSCRIPT
            ) from e
        status = await self._set_status(status, state=PipelineState.TRANSCRIPT_BUILT)

        async def identify() -> list[DecisionCandidate]:
            candidates = await self.identifier.identify(transcript)
            return normalize_candidates(candidates, conversation.message_count)

        try:
            candidates = await step.do(
                PipelinePhase.IDENTIFY.value,
                identify,
                list[DecisionCandidate],
                policy=self.config.identify_policy,
                retryable_exceptions=(LLMError,),
                should_retry=is_retryable_llm_error,
            )
        except Exception as e:
            raise IdentificationFailure(f"identify-decisions failed: {e}", cause=e) from e
        status = await self._set_status(
            status, state=PipelineState.IDENTIFIED, candidate_count=len(candidates)
        )

        status = await self._set_status(status, state=PipelineState.EXTRACTING)
        extracted = await self._extract_all(step, conversation, candidates)
        status = await self._set_status(status, extracted_count=len(extracted))

        async def store() -> ExtractionResult:
            graph = resolve(extracted, id_factory=self.id_factory)
            return await self.store.commit(conversation_id, request, conversation, graph)

        try:
            result = await step.do(
                PipelinePhase.STORE.value,
                store,
                ExtractionResult,
                policy=self.config.store_policy,
                retryable_exceptions=STORE_RETRYABLE_EXCEPTIONS,
            )
        except Exception as e:
            raise StoreFailure(f"store-results failed: {e}", cause=e) from e

        status = await self._set_status(
            status,
            state=PipelineState.STORED,
            conversation_id=result.conversation_id,
            decision_count=result.decision_count,
        )
        await self._set_status(status, state=PipelineState.DONE)
        logger.info(
            f"Extraction complete: {result.decision_count} decisions "
            f"from {conversation.message_count} messages"
        )
        return result

    async def _extract_all(
        self,
        step: WorkflowStep,
        conversation: ParsedConversation,
        candidates: list[DecisionCandidate],
    ) -> list[ExtractedDecision]:
        """Run Phase 2 for every candidate, bounded by ``max_concurrency``.

        Results come back in candidate order. Once any extraction fails no
        new one is started; the lowest failing index is raised.
        """
        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        halted = asyncio.Event()

        async def extract_one(index: int, candidate: DecisionCandidate) -> ExtractedDecision | None:
            async with semaphore:
                if halted.is_set():
                    return None
                context = render_window(
                    conversation.messages, candidate.appearances, self.config.context_buffer
                )
                try:
                    return await step.do(
                        extract_step_name(index),
                        lambda: self.extractor.extract(candidate, context, candidates),
                        ExtractedDecision,
                        policy=self.config.extract_policy,
                        retryable_exceptions=(LLMError,),
                        should_retry=is_retryable_llm_error,
                    )
                except Exception as e:
                    halted.set()
                    raise ExtractionFailure(
                        f"{extract_step_name(index)} failed: {e}",
                        candidate_index=index,
                        cause=e,
                    ) from e

        results = await asyncio.gather(
            *(extract_one(i, c) for i, c in enumerate(candidates)),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            failures.sort(
                key=lambda f: f.candidate_index if isinstance(f, ExtractionFailure) else -1
            )
            raise failures[0]

        return [r for r in results if r is not None]
