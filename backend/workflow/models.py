"""Workflow data model: tasks, workflows, per-task state and run state.

Task and Workflow definitions arrive as camelCase JSON from the studio UI
(``inputKeys``, ``outputKey``, ``staticValue`` ...). The pydantic models
accept both the wire aliases and the snake_case attribute names, and
``to_wire()`` serializes back to the camelCase shape the remote executor
expects.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from core.exceptions import InvalidTransitionError


DataStore = dict[str, Any]


# ─── Enumerations ─────────────────────────────────────────────

class TaskKind(str, Enum):
    """Kind of a workflow task; determines where and how it executes."""
    DATA_INPUT = "DATA_INPUT"
    TEXT_MANIPULATION = "TEXT_MANIPULATION"
    DISPLAY_CHART = "DISPLAY_CHART"
    SIMULATE_PROCESS = "SIMULATE_PROCESS"
    GEMINI_PROMPT = "GEMINI_PROMPT"
    GEMINI_GROUNDED = "GEMINI_GROUNDED"
    IMAGE_ANALYSIS = "IMAGE_ANALYSIS"


LOCAL_TASK_KINDS = frozenset({
    TaskKind.DATA_INPUT,
    TaskKind.TEXT_MANIPULATION,
    TaskKind.DISPLAY_CHART,
    TaskKind.SIMULATE_PROCESS,
})

REMOTE_TASK_KINDS = frozenset(set(TaskKind) - LOCAL_TASK_KINDS)


class TaskStatus(str, Enum):
    """Status of a single task within one run."""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


TERMINAL_TASK_STATUSES = frozenset({
    TaskStatus.COMPLETED,
    TaskStatus.FAILED,
    TaskStatus.SKIPPED,
})

_ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset] = {
    TaskStatus.PENDING: frozenset({TaskStatus.RUNNING, TaskStatus.SKIPPED}),
    TaskStatus.RUNNING: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
    TaskStatus.SKIPPED: frozenset(),
}


class RunStatus(str, Enum):
    """Status of a WorkflowRunner."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ExecutionMode(str, Enum):
    """Where a run executes: in this process or on the remote executor."""
    LOCAL = "local"
    ASYNC = "async"


# ─── Definitions (wire models) ────────────────────────────────

class AgentConfig(BaseModel):
    """Model parameters for AI task kinds."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    model: Optional[str] = None
    temperature: Optional[float] = None
    top_k: Optional[int] = Field(default=None, alias="topK")
    top_p: Optional[float] = Field(default=None, alias="topP")
    system_instruction: Optional[str] = Field(default=None, alias="systemInstruction")


class Task(BaseModel):
    """One unit of work with declared dependencies and a single output key."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: str = ""
    description: str = ""
    type: TaskKind
    dependencies: list[str] = Field(default_factory=list)
    input_keys: list[str] = Field(default_factory=list, alias="inputKeys")
    output_key: str = Field(alias="outputKey")

    # Kind-specific configuration
    static_value: Any = Field(default=None, alias="staticValue")
    function_body: Optional[str] = Field(default=None, alias="functionBody")
    data_key: Optional[str] = Field(default=None, alias="dataKey")
    prompt_template: Optional[str] = Field(default=None, alias="promptTemplate")
    prompt_id: Optional[str] = Field(default=None, alias="promptId")
    agent_config: Optional[AgentConfig] = Field(default=None, alias="agentConfig")

    @property
    def label(self) -> str:
        return self.name or self.id

    @property
    def is_local(self) -> bool:
        return self.type in LOCAL_TASK_KINDS

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Workflow(BaseModel):
    """A named, unordered set of tasks."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: str = ""
    description: str = ""
    tasks: list[Task] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_unique_ids(self) -> "Workflow":
        seen: set[str] = set()
        for task in self.tasks:
            if task.id in seen:
                raise ValueError(f"Duplicate task id in workflow {self.id}: {task.id}")
            seen.add(task.id)
        return self

    def get_task(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SFLTenor(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    ai_persona: str = Field(default="", alias="aiPersona")
    target_audience: list[str] = Field(default_factory=list, alias="targetAudience")
    desired_tone: str = Field(default="", alias="desiredTone")
    interpersonal_stance: str = Field(default="", alias="interpersonalStance")


class SFLMode(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    output_format: str = Field(default="", alias="outputFormat")
    rhetorical_structure: str = Field(default="", alias="rhetoricalStructure")
    length_constraint: str = Field(default="", alias="lengthConstraint")
    textual_directives: str = Field(default="", alias="textualDirectives")


class PromptDefinition(BaseModel):
    """Read-only prompt-library entry referenced by ``Task.prompt_id``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    title: str = ""
    prompt_text: str = Field(alias="promptText")
    sfl_tenor: SFLTenor = Field(default_factory=SFLTenor, alias="sflTenor")
    sfl_mode: SFLMode = Field(default_factory=SFLMode, alias="sflMode")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class WorkflowExecution(BaseModel):
    """Handle to a workflow executing on the remote executor."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")
    workflow_id: str = Field(alias="workflowId")
    status: str = "queued"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), alias="createdAt")
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), alias="updatedAt")

    def touch(self, status: Optional[str] = None) -> None:
        if status:
            self.status = status
        self.updated_at = datetime.now(timezone.utc)


# ─── Runtime state ────────────────────────────────────────────

def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TaskState:
    """Execution state of one task within one run."""
    status: TaskStatus = TaskStatus.PENDING
    result: Any = None
    error: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES

    def transition(self, task_id: str, to_status: TaskStatus) -> None:
        """Move to ``to_status`` or raise InvalidTransitionError."""
        if to_status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(task_id, self.status.value, to_status.value)
        self.status = to_status

    def mark_running(self, task_id: str) -> None:
        self.transition(task_id, TaskStatus.RUNNING)
        self.start_time = _now()

    def mark_completed(self, task_id: str, result: Any) -> None:
        self.transition(task_id, TaskStatus.COMPLETED)
        self.result = result
        self.end_time = _now()

    def mark_failed(self, task_id: str, error: str) -> None:
        self.transition(task_id, TaskStatus.FAILED)
        self.error = error
        self.end_time = _now()

    def mark_skipped(self, task_id: str, reason: str) -> None:
        self.transition(task_id, TaskStatus.SKIPPED)
        self.error = reason

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "startTime": self.start_time.isoformat() if self.start_time else None,
            "endTime": self.end_time.isoformat() if self.end_time else None,
        }


class CancellationToken:
    """Per-run cooperative cancellation flag."""

    def __init__(self):
        self._cancelled = False
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "Workflow cancelled by user.") -> None:
        if not self._cancelled:
            self._cancelled = True
            self.reason = reason


@dataclass
class RunState:
    """Everything one run produces: DataStore, task states and feedback."""
    status: RunStatus = RunStatus.IDLE
    data_store: DataStore = field(default_factory=dict)
    task_states: dict[str, TaskState] = field(default_factory=dict)
    feedback: list[str] = field(default_factory=list)
    execution: Optional[WorkflowExecution] = None
    error: Optional[str] = None

    def init_tasks(self, tasks: list[Task]) -> None:
        self.task_states = {task.id: TaskState() for task in tasks}

    def snapshot(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "dataStore": dict(self.data_store),
            "taskStates": {tid: s.to_dict() for tid, s in self.task_states.items()},
            "feedback": list(self.feedback),
            "jobId": self.execution.job_id if self.execution else None,
            "error": self.error,
        }
