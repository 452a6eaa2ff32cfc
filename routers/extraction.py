"""Extraction trigger and workflow status endpoints.

A run is started in the background and tracked by its workflow id, which is
also the checkpoint run id. Clients poll ``GET /api/workflows/{id}`` and can
resume a failed run without resubmitting the conversation.
"""

import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from db.postgres import get_session_maker
from models.errors import PipelineError
from models.schemas import (
    ExtractConversationRequest,
    ExtractionStartedResponse,
    PipelineState,
    WorkflowStatus,
)
from services.checkpoints import CheckpointStore, get_checkpoint_store
from services.pipeline import (
    ExtractConversationWorkflow,
    get_workflow_input,
    get_workflow_status,
)
from services.store import ConversationStore
from utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


def get_checkpoints() -> CheckpointStore:
    return get_checkpoint_store()


def get_workflow(
    checkpoints: CheckpointStore = Depends(get_checkpoints),
) -> ExtractConversationWorkflow:
    return ExtractConversationWorkflow(
        store=ConversationStore(get_session_maker()),
        checkpoints=checkpoints,
    )


async def run_workflow(
    workflow: ExtractConversationWorkflow,
    request: ExtractConversationRequest,
    run_id: str,
) -> None:
    """Background entry point; failures are already recorded in the status."""
    try:
        await workflow.run(request, run_id)
    except PipelineError as e:
        logger.warning(
            f"Workflow {run_id} stopped in {e.phase.value}",
            extra={"workflow_id": run_id, "details": e.to_details()},
        )


@router.post(
    "/conversations/extract",
    response_model=ExtractionStartedResponse,
    status_code=202,
)
async def start_extraction(
    request: ExtractConversationRequest,
    background_tasks: BackgroundTasks,
    workflow: ExtractConversationWorkflow = Depends(get_workflow),
):
    """Start extracting decisions from one conversation."""
    run_id = str(uuid.uuid4())
    background_tasks.add_task(run_workflow, workflow, request, run_id)
    logger.info(
        f"Started extraction workflow {run_id} for {request.source.value} conversation",
        extra={"workflow_id": run_id, "source_path": request.source_path},
    )
    return ExtractionStartedResponse(workflow_id=run_id)


@router.get("/workflows/{workflow_id}", response_model=WorkflowStatus)
async def get_status(
    workflow_id: str,
    checkpoints: CheckpointStore = Depends(get_checkpoints),
):
    status = await get_workflow_status(checkpoints, workflow_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return status


@router.post(
    "/workflows/{workflow_id}/resume",
    response_model=ExtractionStartedResponse,
    status_code=202,
)
async def resume_workflow(
    workflow_id: str,
    background_tasks: BackgroundTasks,
    checkpoints: CheckpointStore = Depends(get_checkpoints),
    workflow: ExtractConversationWorkflow = Depends(get_workflow),
):
    """Re-run a failed workflow; completed steps are served from checkpoints."""
    status = await get_workflow_status(checkpoints, workflow_id)
    request = await get_workflow_input(checkpoints, workflow_id)
    if status is None or request is None:
        raise HTTPException(status_code=404, detail="Workflow not found")
    if status.state != PipelineState.FAILED:
        raise HTTPException(
            status_code=409,
            detail=f"Workflow is {status.state.value}; only failed workflows can be resumed",
        )

    background_tasks.add_task(run_workflow, workflow, request, workflow_id)
    logger.info(f"Resuming workflow {workflow_id} after {status.error.phase} failure")
    return ExtractionStartedResponse(workflow_id=workflow_id, status="resumed")
