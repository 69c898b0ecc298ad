"""Workflow execution endpoints — run one task, submit / poll / stop background jobs."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, status

from api.schemas.common import ErrorResponse
from api.schemas.execution import (
    ExecuteWorkflowRequest,
    JobHandleResponse,
    JobStatusResponse,
    RunTaskRequest,
    StopJobResponse,
)
from app.dependencies import get_jobs, get_registry
from core.exceptions import TaskExecutionError
from integrations.prompt_library import InMemoryPromptLibrary
from tasks.registry import TaskRegistry
from worker.jobs import JobService
from workflow.executor import TaskExecutor

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/workflows", tags=["workflows"])


@router.get("/task-types", summary="List supported task kinds")
async def list_task_types(registry: TaskRegistry = Depends(get_registry)) -> dict[str, Any]:
    """Registered task kinds with their config schemas."""
    return {
        "task_types": registry.list_all(),
        "count": len(registry.available_types),
    }


@router.post(
    "/run-task",
    responses={500: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def run_task(
    request: RunTaskRequest,
    registry: TaskRegistry = Depends(get_registry),
) -> Any:
    """
    Execute a single task against the given DataStore snapshot.

    Returns the task's result as JSON; a failed task answers with
    ``{"message": <error>}``.
    """
    prompts = [request.prompt] if request.prompt else []
    executor = TaskExecutor(
        registry=registry,
        prompt_library=InMemoryPromptLibrary(prompts),
        provider_config=request.provider_config,
    )
    result = await executor.execute(request.task, request.data_store)
    if not result.success:
        logger.warning("run-task failed", task_id=request.task.id, error=result.error)
        raise TaskExecutionError(result.error or f'Failed to execute task "{request.task.label}"', task_id=request.task.id)
    return result.output


@router.post("/execute", response_model=JobHandleResponse, status_code=status.HTTP_202_ACCEPTED)
async def execute_workflow(
    request: ExecuteWorkflowRequest,
    jobs: JobService = Depends(get_jobs),
) -> JobHandleResponse:
    """
    Queue a workflow for background execution.

    Progress is pushed over ``/ws`` to connections subscribed to the returned ``jobId``.
    """
    execution = await jobs.submit(
        request.workflow,
        user_input=request.user_input,
        provider_config=request.provider_config,
        prompts=request.prompts,
    )
    return JobHandleResponse.model_validate(execution.model_dump(by_alias=True))


@router.get(
    "/jobs/{job_id}/status",
    response_model=JobStatusResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_job_status(job_id: str, jobs: JobService = Depends(get_jobs)) -> JobStatusResponse:
    """Current status of a job, including per-task state."""
    return JobStatusResponse.model_validate(jobs.get_status(job_id))


@router.post(
    "/stop/{job_id}",
    response_model=StopJobResponse,
    responses={404: {"model": ErrorResponse}},
)
async def stop_workflow(job_id: str, jobs: JobService = Depends(get_jobs)) -> StopJobResponse:
    """
    Request cancellation of a running job.

    The authoritative confirmation arrives as ``workflow_stopped`` on the push channel.
    """
    return StopJobResponse.model_validate(await jobs.stop(job_id))
