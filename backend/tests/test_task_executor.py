"""Tests for the TaskExecutor and the task kind handlers."""

import pytest

from conftest import build_task
from core.exceptions import RemoteExecutionError
from integrations.prompt_library import InMemoryPromptLibrary
from tasks.implementations.model_tasks import RemoteModelTask
from tasks.registry import TaskRegistry
from workflow.executor import TaskExecutor, resolve_inputs


def _prompt(prompt_id="p-1"):
    return {
        "id": prompt_id,
        "title": "Summarizer",
        "promptText": "Summarize {{article}}",
        "sflTenor": {"aiPersona": "editor", "targetAudience": ["students"], "desiredTone": "calm"},
        "sflMode": {"textualDirectives": "be brief"},
    }


@pytest.fixture
def executor(fake_client):
    registry = TaskRegistry(model_handler=RemoteModelTask(client=fake_client))
    return TaskExecutor(
        registry=registry,
        prompt_library=InMemoryPromptLibrary([_prompt()]),
        provider_config={"provider": "test"},
    )


@pytest.mark.unit
class TestResolveInputs:

    def test_inputs_are_keyed_by_last_segment(self):
        task = build_task("t", "TEXT_MANIPULATION", inputKeys=["userInput.text", "article"])
        inputs = resolve_inputs(task, {"userInput": {"text": "hi"}, "article": "body"})
        assert inputs == {"text": "hi", "article": "body"}

    def test_missing_inputs_resolve_to_none(self):
        task = build_task("t", "TEXT_MANIPULATION", inputKeys=["nope.deeper"])
        assert resolve_inputs(task, {}) == {"deeper": None}


@pytest.mark.unit
class TestLocalKinds:

    @pytest.mark.asyncio
    async def test_data_input_renders_template(self, executor):
        task = build_task("t", "DATA_INPUT", staticValue="Hello {{userInput.name}}")
        result = await executor.execute(task, {"userInput": {"name": "Ada"}})
        assert result.success
        assert result.output == "Hello Ada"

    @pytest.mark.asyncio
    async def test_data_input_non_string_is_verbatim(self, executor):
        task = build_task("t", "DATA_INPUT", staticValue={"a": [1, 2]})
        result = await executor.execute(task, {})
        assert result.output == {"a": [1, 2]}

    @pytest.mark.asyncio
    async def test_text_manipulation(self, executor):
        task = build_task("t", "TEXT_MANIPULATION", functionBody="inputs.text.upper()", inputKeys=["userInput.text"])
        result = await executor.execute(task, {"userInput": {"text": "abc"}})
        assert result.success
        assert result.output == "ABC"

    @pytest.mark.asyncio
    async def test_text_manipulation_without_body(self, executor):
        result = await executor.execute(build_task("t", "TEXT_MANIPULATION"), {})
        assert not result.success
        assert result.error == "Function body is missing."

    @pytest.mark.asyncio
    async def test_text_manipulation_error_is_wrapped(self, executor):
        task = build_task("t", "TEXT_MANIPULATION", functionBody="inputs.n / 0", inputKeys=["n"])
        result = await executor.execute(task, {"n": 1})
        assert not result.success
        assert result.error.startswith("Error in custom function: ")

    @pytest.mark.asyncio
    async def test_display_chart_returns_value(self, executor):
        task = build_task("t", "DISPLAY_CHART", dataKey="series")
        result = await executor.execute(task, {"series": [1, 2, 3]})
        assert result.output == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_display_chart_without_key(self, executor):
        result = await executor.execute(build_task("t", "DISPLAY_CHART"), {})
        assert not result.success
        assert result.error == "Data key is missing for chart display."

    @pytest.mark.asyncio
    async def test_simulate_process(self, executor):
        task = build_task("t", "SIMULATE_PROCESS", name="Crunch")
        result = await executor.execute(task, {})
        assert result.success
        assert result.output == {"status": "ok", "message": "Simulated process for Crunch completed."}


@pytest.mark.unit
class TestRemoteKinds:

    @pytest.mark.asyncio
    async def test_ai_task_is_sent_to_executor(self, executor, fake_client):
        task = build_task("t", "GEMINI_PROMPT", promptTemplate="Summarize {{article}}", inputKeys=["article"])
        result = await executor.execute(task, {"article": "text"})

        assert result.success
        assert result.output == {"text": "model output"}
        call = fake_client.run_task_calls[0]
        assert call["task"]["promptTemplate"] == "Summarize {{article}}"
        assert call["data_store"] == {"article": "text"}
        assert call["provider_config"] == {"provider": "test"}
        assert call["prompt"] is None

    @pytest.mark.asyncio
    async def test_linked_prompt_is_attached(self, executor, fake_client):
        task = build_task("t", "GEMINI_PROMPT", promptId="p-1")
        await executor.execute(task, {})
        assert fake_client.run_task_calls[0]["prompt"]["promptText"] == "Summarize {{article}}"

    @pytest.mark.asyncio
    async def test_unknown_prompt_id_fails_without_calling_executor(self, executor, fake_client):
        task = build_task("t", "GEMINI_PROMPT", promptId="nope")
        result = await executor.execute(task, {})
        assert not result.success
        assert 'requires prompt ID "nope"' in result.error
        assert fake_client.run_task_calls == []

    @pytest.mark.asyncio
    async def test_error_response_becomes_failure(self, executor, fake_client):
        fake_client.run_task_error = RemoteExecutionError("Prompt template is missing.", status_code=500)
        result = await executor.execute(build_task("t", "IMAGE_ANALYSIS"), {})
        assert not result.success
        assert result.error == "Prompt template is missing."
