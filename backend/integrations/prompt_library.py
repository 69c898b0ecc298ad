"""Read-only prompt library lookup.

Tasks of the AI kinds may reference a stored prompt by ``promptId``. The
engine only ever reads from the library; persistence lives elsewhere.
"""

from typing import Iterable, Optional, Protocol, Union

from workflow.models import PromptDefinition


class PromptLibrary(Protocol):
    """Anything that can look a prompt up by id."""

    def get_prompt(self, prompt_id: str) -> Optional[PromptDefinition]:
        ...


class InMemoryPromptLibrary:
    """Prompt library backed by a dict, loaded from definitions or raw JSON."""

    def __init__(self, prompts: Iterable[Union[PromptDefinition, dict]] = ()):
        self._prompts: dict[str, PromptDefinition] = {}
        for prompt in prompts:
            self.add(prompt)

    def add(self, prompt: Union[PromptDefinition, dict]) -> PromptDefinition:
        if not isinstance(prompt, PromptDefinition):
            prompt = PromptDefinition.model_validate(prompt)
        self._prompts[prompt.id] = prompt
        return prompt

    def get_prompt(self, prompt_id: str) -> Optional[PromptDefinition]:
        return self._prompts.get(prompt_id)

    def __len__(self) -> int:
        return len(self._prompts)
