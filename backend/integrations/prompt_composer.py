"""Prompt composition for AI task kinds.

Turns a task definition plus a DataStore snapshot into the exact prompt a
model should receive. Linked prompts (``promptId``) derive a system
instruction from the prompt's SFL tenor and mode; unlinked tasks use their
own ``promptTemplate``. Both are templated against the DataStore.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from core.exceptions import TaskExecutionError
from workflow.models import AgentConfig, PromptDefinition, Task, TaskKind
from workflow.templates import MISSING, TemplateEngine


@dataclass
class ComposedPrompt:
    """Everything a model invoker needs for one AI task."""
    kind: TaskKind
    text: str
    agent_config: AgentConfig = field(default_factory=AgentConfig)
    image: Optional[Dict[str, str]] = None  # {"data": <base64>, "mimeType": <type>}
    grounded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "text": self.text,
            "agentConfig": self.agent_config.model_dump(by_alias=True, exclude_none=True),
            "image": self.image,
            "grounded": self.grounded,
        }


def build_system_instruction(prompt: PromptDefinition) -> str:
    """Derive a system instruction from a prompt's SFL tenor and mode."""
    tenor, mode = prompt.sfl_tenor, prompt.sfl_mode
    parts = []
    if tenor.ai_persona:
        parts.append(f"You will act as a {tenor.ai_persona}.")
    if tenor.desired_tone:
        parts.append(f"Your tone should be {tenor.desired_tone}.")
    if tenor.target_audience:
        parts.append(f"You are writing for {', '.join(tenor.target_audience)}.")
    if mode.textual_directives:
        parts.append(f"Follow these directives: {mode.textual_directives}.")
    return " ".join(parts)


def _render_text(template: str, data_store: Dict[str, Any]) -> str:
    rendered = TemplateEngine.render(template, data_store)
    return rendered if isinstance(rendered, str) else TemplateEngine.format_value(rendered)


def compose_prompt(
    task: Task,
    data_store: Dict[str, Any],
    prompt: Optional[PromptDefinition] = None,
) -> ComposedPrompt:
    """Build the prompt for ``task``; raises TaskExecutionError when misconfigured."""
    for key in task.input_keys:
        if TemplateEngine.get_path(data_store, key) is MISSING:
            raise TaskExecutionError(
                f'Missing required input key "{key}" in data store for task "{task.label}".',
                task_id=task.id,
            )

    agent_config = task.agent_config or AgentConfig()

    if task.type == TaskKind.GEMINI_PROMPT and task.prompt_id:
        if prompt is None:
            raise TaskExecutionError(
                f'Task "{task.label}" requires prompt ID "{task.prompt_id}" but no prompt was provided.',
                task_id=task.id,
            )
        system_instruction = build_system_instruction(prompt)
        return ComposedPrompt(
            kind=task.type,
            text=_render_text(prompt.prompt_text, data_store),
            agent_config=agent_config.model_copy(update={"system_instruction": system_instruction or None}),
        )

    if not task.prompt_template:
        if task.type == TaskKind.GEMINI_PROMPT:
            raise TaskExecutionError("Prompt template is missing for non-linked prompt task.", task_id=task.id)
        raise TaskExecutionError("Prompt template is missing.", task_id=task.id)

    text = _render_text(task.prompt_template, data_store)

    if task.type == TaskKind.GEMINI_GROUNDED:
        return ComposedPrompt(kind=task.type, text=text, agent_config=agent_config, grounded=True)

    if task.type == TaskKind.IMAGE_ANALYSIS:
        if not task.input_keys:
            raise TaskExecutionError(
                "IMAGE_ANALYSIS task must have at least one input key pointing to the image data.",
                task_id=task.id,
            )
        image_key = task.input_keys[0]
        image = TemplateEngine.get_path(data_store, image_key)
        if not isinstance(image, dict) or not isinstance(image.get("base64"), str) \
                or not isinstance(image.get("type"), str):
            raise TaskExecutionError(
                f'Image data from key "{image_key}" is missing, malformed, or not found in inputs.',
                task_id=task.id,
            )
        return ComposedPrompt(
            kind=task.type,
            text=text,
            agent_config=agent_config,
            image={"data": image["base64"], "mimeType": image["type"]},
        )

    return ComposedPrompt(kind=task.type, text=text, agent_config=agent_config)
