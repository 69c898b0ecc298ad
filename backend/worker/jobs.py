"""Background workflow jobs for the executor service.

``POST /workflows/execute`` hands a workflow to the JobService, which:

1. Creates a job handle (``workflow-<id>-<ms>``) and returns immediately
2. Runs the workflow in a background asyncio task with a server-side
   WorkflowRunner (at most ``MAX_CONCURRENT_JOBS`` at once)
3. Broadcasts ``workflow_progress`` / ``task_status`` while it runs and
   exactly one of ``workflow_complete`` / ``workflow_failed`` /
   ``workflow_stopped`` when it ends

Usage::

    service = get_job_service()
    execution = await service.submit(workflow, user_input, provider_config)
    service.get_status(execution.job_id)
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import structlog

from api.websockets.connection_manager import ConnectionManager, manager
from app.config import get_settings
from core.exceptions import NotFoundError
from integrations.prompt_library import InMemoryPromptLibrary
from tasks.registry import get_executor_registry
from workflow.events import (
    WIRE_TASK_STATUS,
    TaskStatusEvent,
    WorkflowCompleteEvent,
    WorkflowFailedEvent,
    WorkflowProgressEvent,
    WorkflowStoppedEvent,
)
from workflow.executor import TaskExecutor
from workflow.models import (
    RunState,
    RunStatus,
    TaskStatus,
    Workflow,
    WorkflowExecution,
)
from workflow.runner import WorkflowRunner

logger = structlog.get_logger(__name__)

TERMINAL_JOB_STATUSES = frozenset({"completed", "failed", "stopped"})
STOPPED_REASON = "Workflow cancelled by user."

ExecutorFactory = Callable[[InMemoryPromptLibrary, Dict[str, Any]], TaskExecutor]


def _default_executor_factory(prompt_library: InMemoryPromptLibrary, provider_config: Dict[str, Any]) -> TaskExecutor:
    return TaskExecutor(
        registry=get_executor_registry(),
        prompt_library=prompt_library,
        provider_config=provider_config,
    )


def make_job_id(workflow_id: str) -> str:
    return f"workflow-{workflow_id}-{int(time.time() * 1000)}"


@dataclass
class Job:
    execution: WorkflowExecution
    workflow: Workflow
    runner: WorkflowRunner
    user_input: Any = None
    task: Optional[asyncio.Task] = None
    error: Optional[str] = None
    stop_requested: bool = False
    final_message: Optional[Dict[str, Any]] = None
    finished_at: Optional[float] = None

    @property
    def is_finished(self) -> bool:
        return self.execution.status in TERMINAL_JOB_STATUSES


class JobService:
    """Owns every workflow job submitted to this executor process."""

    def __init__(
        self,
        connection_manager: Optional[ConnectionManager] = None,
        executor_factory: Optional[ExecutorFactory] = None,
        max_concurrent: Optional[int] = None,
        retention_seconds: Optional[float] = None,
        max_retained: Optional[int] = None,
    ):
        settings = get_settings()
        self.connections = connection_manager or manager
        self._executor_factory = executor_factory or _default_executor_factory
        limit = max_concurrent if max_concurrent is not None else settings.MAX_CONCURRENT_JOBS
        self.retention_seconds = (
            retention_seconds if retention_seconds is not None else settings.JOB_RETENTION_SECONDS
        )
        self.max_retained = max_retained if max_retained is not None else settings.MAX_RETAINED_JOBS
        self._semaphore = asyncio.Semaphore(max(limit, 1))
        self.jobs: Dict[str, Job] = {}

    # ─── Public API ──────────────────────────────────────────────

    async def submit(
        self,
        workflow: Workflow,
        user_input: Any = None,
        provider_config: Optional[Dict[str, Any]] = None,
        prompts: Optional[List[Any]] = None,
    ) -> WorkflowExecution:
        """Queue ``workflow`` for background execution and return its handle."""
        self._evict_finished()
        job_id = make_job_id(workflow.id)
        while job_id in self.jobs:
            await asyncio.sleep(0.001)
            job_id = make_job_id(workflow.id)

        executor = self._executor_factory(InMemoryPromptLibrary(prompts or []), provider_config or {})
        runner = WorkflowRunner(workflow, executor=executor, execution_mode="local")
        execution = WorkflowExecution(job_id=job_id, workflow_id=workflow.id)
        job = Job(execution=execution, workflow=workflow, runner=runner, user_input=user_input)
        runner.subscribe(self._make_observer(job))

        self.jobs[job_id] = job
        job.task = asyncio.create_task(self._run(job), name=f"job-{job_id}")
        logger.info("Job queued", job_id=job_id, workflow_id=workflow.id, tasks=len(workflow.tasks))
        return execution

    async def stop(self, job_id: str) -> Dict[str, Any]:
        """Request cooperative cancellation; confirmation goes out as workflow_stopped."""
        job = self._get(job_id)
        if job.is_finished:
            return {"jobId": job_id, "status": job.execution.status, "message": "Job already finished"}

        job.stop_requested = True
        await job.runner.stop()
        logger.info("Job stop requested", job_id=job_id)
        return {"jobId": job_id, "status": "stopping", "message": "Stop requested"}

    def get_status(self, job_id: str) -> Dict[str, Any]:
        job = self._get(job_id)
        snapshot = job.runner.state.snapshot()
        return {
            **job.execution.model_dump(mode="json", by_alias=True),
            "error": job.error,
            "taskStates": snapshot["taskStates"],
            "dataStore": snapshot["dataStore"],
            "feedback": snapshot["feedback"],
        }

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> WorkflowExecution:
        """Wait for a job's background task to finish."""
        job = self._get(job_id)
        if job.task is not None:
            await asyncio.wait_for(asyncio.shield(job.task), timeout)
        return job.execution

    async def shutdown(self) -> None:
        """Cancel all unfinished jobs (application shutdown)."""
        pending = [job.task for job in self.jobs.values() if job.task and not job.task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Job service stopped", cancelled=len(pending))

    # ─── Internals ───────────────────────────────────────────────

    def _get(self, job_id: str) -> Job:
        job = self.jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    def _evict_finished(self) -> None:
        """Forget finished jobs past the retention window, oldest first beyond the cap."""
        now = time.monotonic()
        finished = sorted(
            (job for job in self.jobs.values() if job.is_finished and job.finished_at is not None),
            key=lambda job: job.finished_at,
        )
        expired, kept = [], []
        for job in finished:
            if now - job.finished_at >= self.retention_seconds:
                expired.append(job)
            else:
                kept.append(job)
        overflow = max(len(kept) - self.max_retained, 0)
        for job in expired + kept[:overflow]:
            del self.jobs[job.execution.job_id]
        if expired or overflow:
            logger.debug("Evicted finished jobs", count=len(expired) + overflow, remaining=len(self.jobs))

    @staticmethod
    def _task_status_message(job: Job, state: RunState, task_id: str) -> Dict[str, Any]:
        task_state = state.task_states[task_id]
        task = job.workflow.get_task(task_id)
        return TaskStatusEvent(
            job_id=job.execution.job_id,
            task_id=task_id,
            task_name=task.label if task else task_id,
            status=WIRE_TASK_STATUS[task_state.status],
            result=task_state.result if task_state.status == TaskStatus.COMPLETED else None,
            error=task_state.error,
        ).to_message()

    def replay_messages(self, job_id: str) -> List[Dict[str, Any]]:
        """Messages that bring a late subscriber up to date.

        One ``task_status`` per task that has left PENDING, then the terminal
        event if the job already finished. Unknown jobs replay nothing.
        """
        job = self.jobs.get(job_id)
        if job is None:
            return []
        state = job.runner.state
        messages = [
            self._task_status_message(job, state, task_id)
            for task_id, task_state in state.task_states.items()
            if task_state.status != TaskStatus.PENDING
        ]
        if job.final_message is not None:
            messages.append(job.final_message)
        return messages

    def _make_observer(self, job: Job):
        async def observer(state: RunState, task_id: Optional[str]) -> None:
            if task_id is None:
                return
            await self._publish(job, self._task_status_message(job, state, task_id))

            task_state = state.task_states[task_id]
            if task_state.is_terminal:
                finished = sum(1 for s in state.task_states.values() if s.is_terminal)
                progress = WorkflowProgressEvent(
                    job_id=job.execution.job_id,
                    completed_tasks=finished,
                    total_tasks=len(state.task_states),
                )
                await self._publish(job, progress.to_message())

        return observer

    async def _publish(self, job: Job, message: Dict[str, Any]) -> None:
        await self.connections.broadcast_to_job(job.execution.job_id, message)

    async def _run(self, job: Job) -> None:
        job_id = job.execution.job_id
        async with self._semaphore:
            job.execution.touch("running")
            await self._publish(job, WorkflowProgressEvent(
                job_id=job_id,
                message=f"Workflow {job.workflow.name or job.workflow.id} started.",
                completed_tasks=0,
                total_tasks=len(job.workflow.tasks),
            ).to_message())

            if job.stop_requested:
                await self._conclude(job, "stopped", WorkflowStoppedEvent(job_id=job_id, reason=STOPPED_REASON))
                return

            try:
                state = await job.runner.run(job.user_input)
            except Exception as e:
                logger.error("Job crashed", job_id=job_id, error=str(e), exc_info=True)
                job.error = str(e) or type(e).__name__
                await self._conclude(job, "failed", WorkflowFailedEvent(job_id=job_id, error=job.error))
                return

            await self._report_outcome(job, state)

    async def _report_outcome(self, job: Job, state: RunState) -> None:
        job_id = job.execution.job_id

        if state.status == RunStatus.CANCELLED:
            status = "stopped"
            event = WorkflowStoppedEvent(job_id=job_id, reason=STOPPED_REASON)
        elif state.status == RunStatus.IDLE:
            # never started: dependency cycle
            job.error = "; ".join(state.feedback) or "Workflow could not be started."
            status = "failed"
            event = WorkflowFailedEvent(job_id=job_id, error=job.error)
        else:
            failed = [tid for tid, s in state.task_states.items() if s.status == TaskStatus.FAILED]
            if failed:
                job.error = f"Tasks failed: {', '.join(failed)}"
                status = "failed"
                event = WorkflowFailedEvent(job_id=job_id, error=job.error, data_store=state.data_store)
            else:
                status = "completed"
                event = WorkflowCompleteEvent(job_id=job_id, data_store=state.data_store)

        await self._conclude(job, status, event)

    async def _conclude(self, job: Job, status: str, event: Any) -> None:
        """Record the job's final status and terminal event, then broadcast it."""
        job.execution.touch(status)
        job.final_message = event.to_message()
        job.finished_at = time.monotonic()
        logger.info("Job finished", job_id=job.execution.job_id, status=status, error=job.error)
        await self._publish(job, job.final_message)


# Singleton
_job_service: Optional[JobService] = None


def get_job_service() -> JobService:
    """Get or create the process-wide JobService."""
    global _job_service
    if _job_service is None:
        _job_service = JobService()
    return _job_service
