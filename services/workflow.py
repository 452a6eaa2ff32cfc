"""Checkpointed step execution.

``WorkflowStep.do`` gives each named unit of work exactly-once semantics per
run: a step whose result is already checkpointed is not executed again, so a
crashed or failed run can be re-run with the same id and pick up where it
stopped.

Usage:
    step = WorkflowStep(run_id, checkpoints)
    candidates = await step.do(
        "identify-decisions",
        lambda: identifier.identify(transcript),
        list[DecisionCandidate],
        policy=RetryPolicy(max_attempts=3),
    )
"""

import inspect
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from pydantic import TypeAdapter

from services.checkpoints import CheckpointStore
from utils.logging import get_logger
from utils.retry import RetryPolicy, retry_async

logger = get_logger(__name__)

T = TypeVar("T")


class WorkflowStep:
    """Runs named steps for one run id against a checkpoint store."""

    def __init__(self, run_id: str, checkpoints: CheckpointStore):
        self.run_id = run_id
        self.checkpoints = checkpoints

    async def load(self, name: str, result_type: Any) -> Any | None:
        """Return the checkpointed result of ``name`` or None."""
        raw = await self.checkpoints.get(self.run_id, name)
        if raw is None:
            return None
        return TypeAdapter(result_type).validate_json(raw)

    async def save(self, name: str, value: Any, result_type: Any) -> None:
        payload = TypeAdapter(result_type).dump_json(value, by_alias=True)
        await self.checkpoints.put(self.run_id, name, payload.decode())

    async def do(
        self,
        name: str,
        fn: Callable[[], Union[T, Awaitable[T]]],
        result_type: Any,
        policy: RetryPolicy,
        retryable_exceptions: tuple[type[BaseException], ...] = (Exception,),
        should_retry: Optional[Callable[[BaseException], bool]] = None,
    ) -> T:
        """Run ``fn`` once per run, or return its checkpointed result.

        ``fn`` may be sync or async. It is retried under ``policy`` for the
        given exception types; the last exception propagates when the budget
        is spent and nothing is checkpointed for the step. ``should_retry``
        can veto a retry for an individual exception.
        """
        raw = await self.checkpoints.get(self.run_id, name)
        if raw is not None:
            logger.info(f"Step {name} already completed; using checkpoint")
            return TypeAdapter(result_type).validate_json(raw)

        async def attempt() -> T:
            result = fn()
            if inspect.isawaitable(result):
                result = await result
            return result

        logger.info(f"Running step {name}")
        result = await retry_async(
            attempt,
            policy=policy,
            retryable_exceptions=retryable_exceptions,
            operation_name=f"Step {name}",
            should_retry=should_retry,
        )
        await self.save(name, result, result_type)
        return result
