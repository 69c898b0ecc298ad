"""
AI task kinds (GEMINI_PROMPT, GEMINI_GROUNDED, IMAGE_ANALYSIS).

Two handlers share these kinds:

- RemoteModelTask: used by the studio-side runner; ships the task and a
  DataStore snapshot to the executor service and returns its JSON result.
- ModelPromptTask: used inside the executor service; composes the prompt and
  hands it to the configured ModelInvoker.
"""

from typing import Any, Dict, Optional

import structlog

from core.exceptions import EngineError
from integrations.executor_client import ExecutorClient
from integrations.model_invoker import ModelInvoker, get_model_invoker
from integrations.prompt_composer import compose_prompt
from tasks.base_task import BaseTask, TaskContext, TaskResult
from workflow.models import PromptDefinition, Task

logger = structlog.get_logger(__name__)


def _lookup_prompt(task: Task, context: TaskContext) -> Optional[PromptDefinition]:
    if not task.prompt_id or context.prompt_library is None:
        return None
    return context.prompt_library.get_prompt(task.prompt_id)


class RemoteModelTask(BaseTask):
    """Delegate an AI task to the remote executor."""

    task_type = "remote_model"
    display_name = "AI Task (remote)"
    description = "Run an AI task on the executor service"

    def __init__(self, client: Optional[ExecutorClient] = None):
        self._client = client

    @property
    def client(self) -> ExecutorClient:
        if self._client is None:
            self._client = ExecutorClient()
        return self._client

    async def execute(self, task: Task, context: TaskContext) -> TaskResult:
        prompt = _lookup_prompt(task, context)
        if task.prompt_id and prompt is None:
            return TaskResult(
                success=False,
                error=f'Task "{task.label}" requires prompt ID "{task.prompt_id}" but no prompt was provided.',
            )

        try:
            output = await self.client.run_task(
                task=task.to_wire(),
                data_store=context.data_store,
                provider_config=context.provider_config,
                prompt=prompt.to_wire() if prompt else None,
            )
        except EngineError as e:
            return TaskResult(success=False, error=e.message or f'Failed to execute task "{task.label}"')

        return TaskResult(success=True, output=output, metadata={"remote": True})


class ModelPromptTask(BaseTask):
    """Compose the prompt for an AI task and call the model invoker."""

    task_type = "model_prompt"
    display_name = "AI Task"
    description = "Compose an SFL/template prompt and invoke the model provider"

    def __init__(self, invoker: Optional[ModelInvoker] = None):
        self._invoker = invoker

    @property
    def invoker(self) -> ModelInvoker:
        return self._invoker or get_model_invoker()

    async def execute(self, task: Task, context: TaskContext) -> TaskResult:
        prompt = _lookup_prompt(task, context)
        composed = compose_prompt(task, context.data_store, prompt)
        output = await self.invoker.generate(composed, context.provider_config)
        return TaskResult(
            success=True,
            output=output,
            metadata={"model": composed.agent_config.model, "grounded": composed.grounded},
        )

    @classmethod
    def get_config_schema(cls) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "promptId": {"type": "string", "description": "Stored prompt to use"},
                "promptTemplate": {"type": "string", "description": "Inline {{template}} prompt"},
                "agentConfig": {
                    "type": "object",
                    "properties": {
                        "model": {"type": "string"},
                        "temperature": {"type": "number"},
                        "topK": {"type": "integer"},
                        "topP": {"type": "number"},
                        "systemInstruction": {"type": "string"},
                    },
                },
            },
        }
