"""
Async Execution Bridge — runs a workflow on the remote executor.

Submits the workflow, then follows the job's push channel and translates
remote events into the same TaskState / DataStore shape a local run
produces. Events for any other job handle are discarded. When the channel
ends, or stays silent for ``PUSH_IDLE_TIMEOUT`` seconds, without a terminal
event the bridge falls back to polling the job's status endpoint. After a
terminal event, tasks the channel never settled are taken from the job's
final status snapshot.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog
from pydantic import ValidationError

from app.config import get_settings
from core.exceptions import RemoteExecutionError
from integrations.executor_client import ExecutorClient
from integrations.prompt_library import PromptLibrary
from integrations.push_channel import ChannelFactory, websocket_channel_factory
from workflow.events import (
    ExecutionEvent,
    TaskStatusEvent,
    WorkflowCompleteEvent,
    WorkflowFailedEvent,
    WorkflowStoppedEvent,
    EVENT_TYPES,
    parse_event,
    task_status_from_wire,
)
from workflow.models import (
    CancellationToken,
    RunState,
    TaskStatus,
    Workflow,
    WorkflowExecution,
)

logger = structlog.get_logger(__name__)

ChangeCallback = Callable[[Optional[str]], Awaitable[None]]

CANCELLED_REASON = "Workflow cancelled by user."
UNREPORTED_REASON = "No final status reported by executor."
TERMINAL_JOB_STATUSES = frozenset({"completed", "failed", "stopped"})


class FollowOutcome:
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"
    CANCELLED = "cancelled"


class AsyncExecutionBridge:
    """Submit / follow / stop a workflow job on the remote executor."""

    def __init__(
        self,
        client: Optional[ExecutorClient] = None,
        channel_factory: Optional[ChannelFactory] = None,
        poll_interval: float = 1.0,
        idle_timeout: Optional[float] = None,
    ):
        self.client = client or ExecutorClient()
        self.channel_factory = channel_factory or websocket_channel_factory
        self.poll_interval = poll_interval
        self.idle_timeout = idle_timeout if idle_timeout is not None else get_settings().PUSH_IDLE_TIMEOUT

    async def submit(
        self,
        workflow: Workflow,
        staged_input: Any,
        provider_config: Optional[Dict[str, Any]] = None,
        prompt_library: Optional[PromptLibrary] = None,
    ) -> WorkflowExecution:
        """Submit ``workflow``; raises SubmissionError on failure."""
        prompts = []
        if prompt_library is not None:
            for prompt_id in sorted({t.prompt_id for t in workflow.tasks if t.prompt_id}):
                prompt = prompt_library.get_prompt(prompt_id)
                if prompt is not None:
                    prompts.append(prompt.to_wire())
        return await self.client.submit_workflow(
            workflow.to_wire(),
            staged_input,
            provider_config,
            prompts=prompts or None,
        )

    async def stop(self, execution: WorkflowExecution) -> None:
        """Ask the executor to stop the job; confirmation arrives on the channel."""
        await self.client.stop_workflow(execution.job_id)
        logger.info("Stop requested", job_id=execution.job_id)

    # ─── Following a job ──────────────────────────────────────────

    async def follow(
        self,
        execution: WorkflowExecution,
        state: RunState,
        token: CancellationToken,
        on_change: Optional[ChangeCallback] = None,
    ) -> str:
        """Apply the job's events to ``state`` until it ends; returns a FollowOutcome."""
        try:
            async with self.channel_factory(execution.job_id) as channel:
                messages = channel.__aiter__()
                while True:
                    try:
                        message = await asyncio.wait_for(messages.__anext__(), self.idle_timeout)
                    except StopAsyncIteration:
                        break
                    except asyncio.TimeoutError:
                        logger.warning(
                            "Push channel idle, polling", job_id=execution.job_id, idle_timeout=self.idle_timeout
                        )
                        break

                    if token.cancelled:
                        return FollowOutcome.CANCELLED
                    if message.get("type") not in EVENT_TYPES:
                        continue
                    try:
                        event = parse_event(message)
                    except ValidationError as e:
                        logger.warning("Ignoring malformed push message", job_id=execution.job_id, error=str(e))
                        continue
                    if event.job_id != execution.job_id:
                        logger.debug("Discarding stale event", job_id=event.job_id, active_job_id=execution.job_id)
                        continue

                    outcome, task_id = self.apply_event(event, state)
                    if on_change:
                        await on_change(task_id)
                    if outcome in (FollowOutcome.COMPLETED, FollowOutcome.FAILED):
                        await self._reconcile(execution, state, on_change)
                    if outcome:
                        return outcome
        except Exception as e:
            logger.error("Push channel error", job_id=execution.job_id, error=str(e))

        if token.cancelled:
            return FollowOutcome.CANCELLED
        logger.warning("Push channel ended before job finished, polling", job_id=execution.job_id)
        return await self._poll(execution, state, token, on_change)

    def apply_event(self, event: ExecutionEvent, state: RunState) -> tuple:
        """Apply one (already job-matched) event.

        Returns ``(outcome, task_id)``; outcome is None unless the event is terminal.
        """
        if isinstance(event, TaskStatusEvent):
            self._apply_task_status(event.task_id, event.status, state, event.result, event.error)
            return None, event.task_id

        if isinstance(event, WorkflowCompleteEvent):
            if event.data_store is not None:
                state.data_store = dict(event.data_store)
            return FollowOutcome.COMPLETED, None

        if isinstance(event, WorkflowFailedEvent):
            if event.data_store is not None:
                state.data_store = dict(event.data_store)
            state.error = event.error
            state.feedback.append(event.error)
            return FollowOutcome.FAILED, None

        if isinstance(event, WorkflowStoppedEvent):
            reason = event.reason or CANCELLED_REASON
            skip_pending(state, reason)
            return FollowOutcome.STOPPED, None

        # workflow_progress carries no state of its own
        return None, None

    def _apply_task_status(
        self,
        task_id: str,
        wire_status: str,
        state: RunState,
        result: Any = None,
        error: Optional[str] = None,
    ) -> None:
        task_state = state.task_states.get(task_id)
        status = task_status_from_wire(wire_status)
        if task_state is None or status is None:
            logger.warning("Ignoring task status", task_id=task_id, status=wire_status)
            return
        if task_state.is_terminal or status == task_state.status:
            return

        if status == TaskStatus.RUNNING:
            task_state.mark_running(task_id)
        elif status in (TaskStatus.COMPLETED, TaskStatus.FAILED):
            if task_state.status == TaskStatus.PENDING:
                task_state.mark_running(task_id)
            if status == TaskStatus.COMPLETED:
                task_state.mark_completed(task_id, result)
            else:
                task_state.mark_failed(task_id, error or "Task failed.")
        elif status == TaskStatus.SKIPPED and task_state.status == TaskStatus.PENDING:
            task_state.mark_skipped(task_id, error or "Skipped due to dependency failure.")

    def _apply_snapshot_tasks(self, snapshot: Dict[str, Any], state: RunState) -> None:
        for task_id, task_snapshot in (snapshot.get("taskStates") or {}).items():
            self._apply_task_status(
                task_id,
                task_snapshot.get("status", ""),
                state,
                task_snapshot.get("result"),
                task_snapshot.get("error"),
            )

    async def _reconcile(
        self,
        execution: WorkflowExecution,
        state: RunState,
        on_change: Optional[ChangeCallback] = None,
    ) -> None:
        """Settle tasks still open after a terminal event from the job's final status."""
        if all(task_state.is_terminal for task_state in state.task_states.values()):
            return
        try:
            snapshot = await self.client.get_job_status(execution.job_id)
        except RemoteExecutionError as e:
            logger.warning("Could not fetch final task states", job_id=execution.job_id, error=e.message)
            snapshot = {}

        self._apply_snapshot_tasks(snapshot, state)
        skip_pending(state, UNREPORTED_REASON)
        if on_change:
            await on_change(None)

    async def _poll(
        self,
        execution: WorkflowExecution,
        state: RunState,
        token: CancellationToken,
        on_change: Optional[ChangeCallback] = None,
    ) -> str:
        while not token.cancelled:
            try:
                snapshot = await self.client.get_job_status(execution.job_id)
            except RemoteExecutionError as e:
                state.error = f"Lost contact with executor: {e.message}"
                state.feedback.append(state.error)
                return FollowOutcome.FAILED

            self._apply_snapshot_tasks(snapshot, state)
            if on_change:
                await on_change(None)

            job_status = str(snapshot.get("status", "")).lower()
            if job_status in TERMINAL_JOB_STATUSES:
                if snapshot.get("dataStore") is not None:
                    state.data_store = dict(snapshot["dataStore"])
                if job_status == "failed":
                    state.error = snapshot.get("error") or "Workflow failed."
                    state.feedback.append(state.error)
                    return FollowOutcome.FAILED
                if job_status == "stopped":
                    skip_pending(state, CANCELLED_REASON)
                    return FollowOutcome.STOPPED
                return FollowOutcome.COMPLETED

            await asyncio.sleep(self.poll_interval)
        return FollowOutcome.CANCELLED


def skip_pending(state: RunState, reason: str) -> None:
    """Mark every still-PENDING task SKIPPED with ``reason``."""
    for task_id, task_state in state.task_states.items():
        if task_state.status == TaskStatus.PENDING:
            task_state.mark_skipped(task_id, reason)
