"""
Task Executor — runs a single task against a DataStore snapshot.

Resolves the task's declared inputs, picks the handler for its kind from the
TaskRegistry and returns a TaskResult. Never raises: handler exceptions and
remote errors come back as failed results.
"""

from typing import Any, Dict, Optional

import structlog

from integrations.prompt_library import PromptLibrary
from tasks.base_task import TaskContext, TaskResult
from tasks.registry import TaskRegistry, get_task_registry
from workflow.models import DataStore, Task
from workflow.templates import MISSING, TemplateEngine

logger = structlog.get_logger(__name__)


def resolve_inputs(task: Task, data_store: DataStore) -> Dict[str, Any]:
    """Resolve each input key by dot-path, keyed by its last path segment."""
    inputs: Dict[str, Any] = {}
    for key in task.input_keys:
        value = TemplateEngine.get_path(data_store, key)
        inputs[key.split(".")[-1]] = None if value is MISSING else value
    return inputs


class TaskExecutor:
    """Dispatches tasks to their kind handlers."""

    def __init__(
        self,
        registry: Optional[TaskRegistry] = None,
        prompt_library: Optional[PromptLibrary] = None,
        provider_config: Optional[Dict[str, Any]] = None,
    ):
        self.registry = registry or get_task_registry()
        self.prompt_library = prompt_library
        self.provider_config = provider_config or {}

    async def execute(self, task: Task, data_store: DataStore) -> TaskResult:
        handler = self.registry.get(task.type)
        if handler is None:
            logger.error("No handler for task kind", task_id=task.id, task_type=str(task.type))
            return TaskResult(success=False, error=f"Unsupported task type: {task.type}")

        context = TaskContext(
            data_store=data_store,
            inputs=resolve_inputs(task, data_store),
            prompt_library=self.prompt_library,
            provider_config=self.provider_config,
        )
        return await handler.run(task, context)
