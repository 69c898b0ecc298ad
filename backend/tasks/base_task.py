"""
Base task interface for all workflow task kinds.

Every task kind (data input, text manipulation, AI prompt, etc.)
is handled by a BaseTask subclass that implements execute().
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog

from integrations.prompt_library import PromptLibrary
from workflow.models import DataStore, Task

logger = structlog.get_logger(__name__)


class TaskResult:
    """Standardized result from task execution."""

    def __init__(
        self,
        success: bool,
        output: Any = None,
        error: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        duration_ms: float = 0,
    ):
        self.success = success
        self.output = output
        self.error = error
        self.metadata = metadata or {}
        self.duration_ms = duration_ms
        self.timestamp = datetime.now(timezone.utc)


@dataclass
class TaskContext:
    """What a task handler may read while it executes.

    ``inputs`` holds each declared input key resolved against the DataStore,
    keyed by the key's last path segment (``userInput.text`` -> ``text``).
    """
    data_store: DataStore
    inputs: Dict[str, Any] = field(default_factory=dict)
    prompt_library: Optional[PromptLibrary] = None
    provider_config: Dict[str, Any] = field(default_factory=dict)


class BaseTask(ABC):
    """
    Abstract base class for all task kind handlers.

    Subclasses must implement:
    - execute(task, context) -> TaskResult
    - task_type (class property)
    - display_name (class property)
    """

    task_type: str = "base"
    display_name: str = "Base Task"
    description: str = "Abstract base task"

    @abstractmethod
    async def execute(self, task: Task, context: TaskContext) -> TaskResult:
        """
        Execute the task.

        Args:
            task: Task definition from the workflow
            context: DataStore snapshot, resolved inputs and collaborators

        Returns:
            TaskResult with output or error
        """
        pass

    async def run(self, task: Task, context: TaskContext) -> TaskResult:
        """
        Run the task with timing and error handling.

        This is the entry point called by the TaskExecutor; it never raises.
        """
        start = time.monotonic()
        try:
            logger.info(
                "Task starting",
                task_id=task.id,
                task_type=self.task_type,
                task_name=task.label,
            )
            result = await self.execute(task, context)
            result.duration_ms = (time.monotonic() - start) * 1000

            logger.info(
                "Task completed",
                task_id=task.id,
                task_type=self.task_type,
                success=result.success,
                duration_ms=round(result.duration_ms, 2),
            )
            return result

        except Exception as e:
            duration_ms = (time.monotonic() - start) * 1000
            logger.error(
                "Task failed",
                task_id=task.id,
                task_type=self.task_type,
                error=str(e),
                duration_ms=round(duration_ms, 2),
            )
            return TaskResult(
                success=False,
                error=str(e) or type(e).__name__,
                duration_ms=duration_ms,
            )

    @classmethod
    def get_config_schema(cls) -> Dict[str, Any]:
        """
        Return JSON schema for the task's kind-specific configuration.

        Override in subclasses to define the expected fields.
        """
        return {"type": "object", "properties": {}}
