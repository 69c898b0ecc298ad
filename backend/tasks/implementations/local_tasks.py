"""In-process task kinds.

- DATA_INPUT: static value, optionally templated against the DataStore
- TEXT_MANIPULATION: restricted expression over the task's named inputs
- DISPLAY_CHART: hands a DataStore value to the (external) chart renderer
- SIMULATE_PROCESS: canned result after a delay, for exercising orchestration
"""

import asyncio
from typing import Any, Dict

import structlog

from app.config import get_settings
from tasks.base_task import BaseTask, TaskContext, TaskResult
from workflow.models import Task, TaskKind
from workflow.templates import MISSING, TemplateEngine
from workflow.transforms import evaluate_function_body

logger = structlog.get_logger(__name__)


class DataInputTask(BaseTask):
    """Place a static value (or a templated string) into the DataStore."""

    task_type = TaskKind.DATA_INPUT.value
    display_name = "Data Input"
    description = "Provide static data or user input to the workflow"

    async def execute(self, task: Task, context: TaskContext) -> TaskResult:
        value = task.static_value
        if isinstance(value, str) and value:
            value = TemplateEngine.render(value, context.data_store)
        return TaskResult(success=True, output=value)

    @classmethod
    def get_config_schema(cls) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "staticValue": {"description": "Value or {{template}} to emit"},
            },
        }


class TextManipulationTask(BaseTask):
    """Evaluate a single-expression function body over the named inputs."""

    task_type = TaskKind.TEXT_MANIPULATION.value
    display_name = "Text Manipulation"
    description = "Transform inputs with a restricted expression"

    async def execute(self, task: Task, context: TaskContext) -> TaskResult:
        if not task.function_body:
            return TaskResult(success=False, error="Function body is missing.")
        try:
            output = evaluate_function_body(task.function_body, context.inputs)
        except Exception as e:
            return TaskResult(success=False, error=f"Error in custom function: {e}")
        return TaskResult(success=True, output=output)

    @classmethod
    def get_config_schema(cls) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "functionBody": {"type": "string", "description": "Expression over `inputs`"},
                "inputKeys": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["functionBody"],
        }


class DisplayChartTask(BaseTask):
    """Return the DataStore value at ``dataKey`` unchanged."""

    task_type = TaskKind.DISPLAY_CHART.value
    display_name = "Display Chart"
    description = "Select DataStore data for chart rendering"

    async def execute(self, task: Task, context: TaskContext) -> TaskResult:
        if not task.data_key:
            return TaskResult(success=False, error="Data key is missing for chart display.")
        value = TemplateEngine.get_path(context.data_store, task.data_key)
        return TaskResult(success=True, output=None if value is MISSING else value)


class SimulateProcessTask(BaseTask):
    """Resolve after a fixed delay with a canned status payload."""

    task_type = TaskKind.SIMULATE_PROCESS.value
    display_name = "Simulate Process"
    description = "Wait, then report success; useful for testing workflow structure"

    async def execute(self, task: Task, context: TaskContext) -> TaskResult:
        delay = get_settings().SIMULATED_TASK_DELAY
        await asyncio.sleep(max(delay, 0))
        return TaskResult(
            success=True,
            output={"status": "ok", "message": f"Simulated process for {task.label} completed."},
            metadata={"delay_seconds": delay},
        )


LOCAL_TASK_TYPES = {
    TaskKind.DATA_INPUT: DataInputTask,
    TaskKind.TEXT_MANIPULATION: TextManipulationTask,
    TaskKind.DISPLAY_CHART: DisplayChartTask,
    TaskKind.SIMULATE_PROCESS: SimulateProcessTask,
}
