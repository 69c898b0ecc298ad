"""Push-channel messages exchanged between the executor service and clients.

Every server message carries ``type`` and ``jobId``; ``parse_event`` turns a
decoded JSON message into the matching model (pydantic discriminated union
on ``type``). The same models are used server-side to build broadcasts.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from workflow.models import TaskStatus


# Wire status of a task as reported by the executor ("active" == RUNNING).
WIRE_TASK_STATUS = {
    TaskStatus.PENDING: "pending",
    TaskStatus.RUNNING: "active",
    TaskStatus.COMPLETED: "completed",
    TaskStatus.FAILED: "failed",
    TaskStatus.SKIPPED: "skipped",
}

_STATUS_FROM_WIRE = {
    "pending": TaskStatus.PENDING,
    "active": TaskStatus.RUNNING,
    "running": TaskStatus.RUNNING,
    "completed": TaskStatus.COMPLETED,
    "failed": TaskStatus.FAILED,
    "skipped": TaskStatus.SKIPPED,
}


def task_status_from_wire(value: str) -> Optional[TaskStatus]:
    """Map a wire status (any case) onto TaskStatus; None if unknown."""
    return _STATUS_FROM_WIRE.get((value or "").lower())


class _Event(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    job_id: str = Field(alias="jobId")
    timestamp: Optional[str] = None

    def to_message(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class WorkflowProgressEvent(_Event):
    type: Literal["workflow_progress"] = "workflow_progress"
    message: Optional[str] = None
    completed_tasks: Optional[int] = Field(default=None, alias="completedTasks")
    total_tasks: Optional[int] = Field(default=None, alias="totalTasks")


class TaskStatusEvent(_Event):
    type: Literal["task_status"] = "task_status"
    task_id: str = Field(alias="taskId")
    task_name: Optional[str] = Field(default=None, alias="taskName")
    status: str
    result: Any = None
    error: Optional[str] = None


class WorkflowCompleteEvent(_Event):
    type: Literal["workflow_complete"] = "workflow_complete"
    data_store: Optional[dict[str, Any]] = Field(default=None, alias="dataStore")


class WorkflowFailedEvent(_Event):
    type: Literal["workflow_failed"] = "workflow_failed"
    error: str = "Workflow failed."
    data_store: Optional[dict[str, Any]] = Field(default=None, alias="dataStore")


class WorkflowStoppedEvent(_Event):
    type: Literal["workflow_stopped"] = "workflow_stopped"
    reason: Optional[str] = None


ExecutionEvent = Annotated[
    Union[
        WorkflowProgressEvent,
        TaskStatusEvent,
        WorkflowCompleteEvent,
        WorkflowFailedEvent,
        WorkflowStoppedEvent,
    ],
    Field(discriminator="type"),
]

EVENT_TYPES = frozenset({
    "workflow_progress",
    "task_status",
    "workflow_complete",
    "workflow_failed",
    "workflow_stopped",
})

_event_adapter = TypeAdapter(ExecutionEvent)


def parse_event(message: dict[str, Any]) -> ExecutionEvent:
    """Validate a decoded push message; raises pydantic.ValidationError."""
    return _event_adapter.validate_python(message)
