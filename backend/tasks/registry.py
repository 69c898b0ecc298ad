"""
Task Kind Registry — maps each TaskKind to the handler that executes it.

Local kinds always run in-process. AI kinds are handled by a single
"model handler": RemoteModelTask on the studio side (the default), or
ModelPromptTask inside the executor service.
"""

from typing import Dict, List, Optional, Union

from tasks.base_task import BaseTask
from tasks.implementations.local_tasks import LOCAL_TASK_TYPES
from tasks.implementations.model_tasks import ModelPromptTask, RemoteModelTask
from workflow.models import REMOTE_TASK_KINDS, TaskKind


class TaskRegistry:
    """Central registry for all task kind handlers."""

    def __init__(self, model_handler: Optional[BaseTask] = None):
        self._tasks: Dict[TaskKind, BaseTask] = {}
        self._register_builtin_tasks(model_handler or RemoteModelTask())

    def _register_builtin_tasks(self, model_handler: BaseTask):
        for kind, task_class in LOCAL_TASK_TYPES.items():
            self.register(kind, task_class())

        for kind in REMOTE_TASK_KINDS:
            self.register(kind, model_handler)

    def register(self, kind: Union[TaskKind, str], handler: BaseTask):
        """Register (or replace) the handler for a kind."""
        self._tasks[TaskKind(kind)] = handler

    def get(self, kind: Union[TaskKind, str]) -> Optional[BaseTask]:
        """Get the handler for a kind, or None if the kind is unknown."""
        try:
            return self._tasks.get(TaskKind(kind))
        except ValueError:
            return None

    def list_all(self) -> List[dict]:
        """List all registered kinds with metadata."""
        return [
            {
                "task_type": kind.value,
                "display_name": handler.display_name,
                "description": handler.description,
                "config_schema": handler.get_config_schema(),
            }
            for kind, handler in self._tasks.items()
        ]

    @property
    def available_types(self) -> List[str]:
        return [kind.value for kind in self._tasks]


# Singletons
_registry: Optional[TaskRegistry] = None
_executor_registry: Optional[TaskRegistry] = None


def get_task_registry() -> TaskRegistry:
    """Get or create the singleton (studio-side) task registry."""
    global _registry
    if _registry is None:
        _registry = TaskRegistry()
    return _registry


def get_executor_registry() -> TaskRegistry:
    """Get or create the registry used inside the executor service.

    AI kinds compose their prompt and call the model invoker in-process.
    """
    global _executor_registry
    if _executor_registry is None:
        _executor_registry = TaskRegistry(model_handler=ModelPromptTask())
    return _executor_registry
