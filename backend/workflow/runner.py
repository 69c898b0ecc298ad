"""
Workflow Runner — drives one workflow run at a time.

State machine per run: IDLE -> RUNNING -> {COMPLETED, CANCELLED}. A run with
no tasks goes straight from IDLE to COMPLETED; a dependency cycle leaves the
runner IDLE with the cycle reported in ``feedback``.

Local mode executes tasks strictly sequentially in dependency order:
  1. Skip a task when any direct dependency FAILED or was SKIPPED
  2. Otherwise execute it against the current DataStore
  3. Write its output key on success (never on failure)
Cancellation is cooperative: checked before each task starts and right
after each task returns. In-flight tasks finish normally.

Async mode submits the whole workflow to the remote executor and mirrors
its push events into the same RunState shape.
"""

import asyncio
import inspect
from typing import Any, Callable, Dict, List, Optional, Union

import structlog

from app.config import get_settings
from core.exceptions import RemoteExecutionError, RunInProgressError, SubmissionError
from workflow.bridge import AsyncExecutionBridge, FollowOutcome, skip_pending
from workflow.executor import TaskExecutor
from workflow.models import (
    CancellationToken,
    ExecutionMode,
    RunState,
    RunStatus,
    Task,
    TaskStatus,
    Workflow,
)
from workflow.resolver import resolve_order

logger = structlog.get_logger(__name__)

SKIP_REASON = "Skipped due to dependency failure."

# callback(state, task_id); task_id is None for run-level changes
Observer = Callable[[RunState, Optional[str]], Any]


class WorkflowRunner:
    """Runs a workflow locally or on the remote executor and exposes its state."""

    def __init__(
        self,
        workflow: Workflow,
        executor: Optional[TaskExecutor] = None,
        bridge: Optional[AsyncExecutionBridge] = None,
        execution_mode: Union[ExecutionMode, str, None] = None,
        provider_config: Optional[Dict[str, Any]] = None,
    ):
        self.workflow = workflow
        self.provider_config = provider_config or {}
        self.executor = executor or TaskExecutor(provider_config=self.provider_config)
        self._bridge = bridge
        self.execution_mode = ExecutionMode(execution_mode or get_settings().DEFAULT_EXECUTION_MODE)

        self.state = RunState()
        self.state.init_tasks(workflow.tasks)
        self._observers: List[Observer] = []
        self._token: Optional[CancellationToken] = None
        self._active = False
        self._follow_task: Optional[asyncio.Task] = None

    # ─── State accessors ─────────────────────────────────────────

    @property
    def status(self) -> RunStatus:
        return self.state.status

    @property
    def is_running(self) -> bool:
        return self.state.status == RunStatus.RUNNING

    @property
    def data_store(self) -> Dict[str, Any]:
        return self.state.data_store

    @property
    def task_states(self):
        return self.state.task_states

    @property
    def feedback(self) -> List[str]:
        return self.state.feedback

    @property
    def bridge(self) -> AsyncExecutionBridge:
        if self._bridge is None:
            self._bridge = AsyncExecutionBridge()
        return self._bridge

    # ─── Observers ───────────────────────────────────────────────

    def subscribe(self, callback: Observer) -> Callable[[], None]:
        """Register ``callback``; returns a function that unregisters it."""
        self._observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return unsubscribe

    async def _notify(self, state: RunState, task_id: Optional[str] = None) -> None:
        for callback in list(self._observers):
            try:
                result = callback(state, task_id)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Run observer failed", workflow_id=self.workflow.id, error=str(e))

    # ─── Control ─────────────────────────────────────────────────

    async def run(self, staged_input: Any = None) -> RunState:
        """Execute the workflow once; returns the run's final state."""
        if self._active:
            raise RunInProgressError(f"Workflow {self.workflow.id} is already running")

        token = CancellationToken()
        self._token = token
        self._active = True
        state = self.state
        try:
            resolution = resolve_order(self.workflow.tasks)
            state.feedback = list(resolution.feedback)
            if resolution.has_cycle:
                state.status = RunStatus.IDLE
                logger.warning("Workflow not started: dependency cycle", workflow_id=self.workflow.id)
                await self._notify(state)
                return state

            state.init_tasks(self.workflow.tasks)
            state.data_store = {"userInput": staged_input}
            state.execution = None
            state.error = None

            if not resolution.ordered_tasks:
                state.status = RunStatus.COMPLETED
                await self._notify(state)
                return state

            logger.info(
                "Workflow run starting",
                workflow_id=self.workflow.id,
                mode=self.execution_mode.value,
                task_count=len(resolution.ordered_tasks),
            )
            if self.execution_mode == ExecutionMode.ASYNC:
                await self._run_remote(state, token, staged_input)
            else:
                await self._run_local(state, token, resolution.ordered_tasks)

            logger.info("Workflow run finished", workflow_id=self.workflow.id, status=state.status.value)
            return state
        finally:
            if self._token is token:
                self._active = False
                self._follow_task = None

    async def _run_local(self, state: RunState, token: CancellationToken, ordered: List[Task]) -> None:
        state.status = RunStatus.RUNNING
        await self._notify(state)

        for index, task in enumerate(ordered):
            if token.cancelled:
                self._cancel_remaining(state, ordered[index:], token.reason)
                break

            task_state = state.task_states[task.id]
            if self._has_failed_dependency(state, task):
                task_state.mark_skipped(task.id, SKIP_REASON)
                logger.info("Task skipped", task_id=task.id, reason=SKIP_REASON)
                await self._notify(state, task.id)
                continue

            task_state.mark_running(task.id)
            await self._notify(state, task.id)

            result = await self.executor.execute(task, dict(state.data_store))
            if result.success:
                state.data_store[task.output_key] = result.output
                task_state.mark_completed(task.id, result.output)
            else:
                task_state.mark_failed(task.id, result.error or "Task failed.")
            await self._notify(state, task.id)

            if token.cancelled:
                self._cancel_remaining(state, ordered[index + 1:], token.reason)
                break

        await self._finish(state, token)

    async def _run_remote(self, state: RunState, token: CancellationToken, staged_input: Any) -> None:
        try:
            execution = await self.bridge.submit(
                self.workflow, staged_input, self.provider_config, self.executor.prompt_library
            )
        except SubmissionError as e:
            logger.error("Workflow submission failed", workflow_id=self.workflow.id, error=e.message)
            state.feedback.append(e.message)
            state.status = RunStatus.IDLE
            await self._notify(state)
            return

        state.execution = execution
        state.status = RunStatus.RUNNING
        await self._notify(state)

        async def on_change(task_id: Optional[str]) -> None:
            await self._notify(state, task_id)

        follow_task = asyncio.ensure_future(self.bridge.follow(execution, state, token, on_change))
        self._follow_task = follow_task
        try:
            await asyncio.wait({follow_task})
        finally:
            if not follow_task.done():
                follow_task.cancel()

        outcome = FollowOutcome.CANCELLED if follow_task.cancelled() else follow_task.result()
        if outcome in (FollowOutcome.CANCELLED, FollowOutcome.STOPPED):
            token.cancel()
            skip_pending(state, token.reason)
        await self._finish(state, token)

    async def _finish(self, state: RunState, token: CancellationToken) -> None:
        if token.cancelled:
            state.status = RunStatus.CANCELLED
            if token.reason not in state.feedback:
                state.feedback.append(token.reason)
        else:
            state.status = RunStatus.COMPLETED
        await self._notify(state)

    async def stop(self) -> None:
        """Request cancellation of the active run; running-state flips immediately."""
        token = self._token
        if not self._active or token is None or token.cancelled:
            return

        token.cancel()
        state = self.state
        if state.status == RunStatus.RUNNING:
            state.status = RunStatus.CANCELLED
        logger.info("Workflow stop requested", workflow_id=self.workflow.id, mode=self.execution_mode.value)

        if self.execution_mode == ExecutionMode.ASYNC and state.execution is not None:
            if self._follow_task is not None:
                self._follow_task.cancel()
            try:
                await self.bridge.stop(state.execution)
            except RemoteExecutionError as e:
                logger.warning("Stop request failed", job_id=state.execution.job_id, error=e.message)
                state.feedback.append(f"Stop request failed: {e.message}")
        await self._notify(state)

    def reset(self) -> None:
        """Return to a fresh IDLE state; safe to call any number of times."""
        if self._token is not None:
            self._token.cancel()
        if self._follow_task is not None and not self._follow_task.done():
            self._follow_task.cancel()
        self._token = None
        self._active = False
        self._follow_task = None

        self.state = RunState()
        self.state.init_tasks(self.workflow.tasks)

    # ─── Helpers ─────────────────────────────────────────────────

    @staticmethod
    def _has_failed_dependency(state: RunState, task: Task) -> bool:
        for dep_id in task.dependencies:
            dep_state = state.task_states.get(dep_id)
            if dep_state and dep_state.status in (TaskStatus.FAILED, TaskStatus.SKIPPED):
                return True
        return False

    @staticmethod
    def _cancel_remaining(state: RunState, remaining: List[Task], reason: Optional[str]) -> None:
        for task in remaining:
            task_state = state.task_states[task.id]
            if task_state.status == TaskStatus.PENDING:
                task_state.mark_skipped(task.id, reason or "Workflow cancelled by user.")
