"""Shared pytest fixtures for the workflow engine test suite.

Provides:
- Task / workflow factories
- A fake executor client (no HTTP) and a scripted push channel (no WebSocket)
- A push channel and status client that drive a TestClient app
- A recording connection manager for the job service
- FastAPI test client (httpx.AsyncClient over ASGITransport)
"""

import asyncio
import os
from typing import Any, AsyncGenerator, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Override settings BEFORE any app imports
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("SIMULATED_TASK_DELAY", "0")
os.environ.setdefault("DEFAULT_EXECUTION_MODE", "local")

from core.exceptions import RemoteExecutionError, SubmissionError  # noqa: E402
from workflow.models import Task, Workflow, WorkflowExecution  # noqa: E402


# ---------------------------------------------------------------------------
# Definition factories
# ---------------------------------------------------------------------------

def build_task(task_id: str, type: str = "DATA_INPUT", **fields) -> Task:
    """Build a Task from camelCase or snake_case fields."""
    data: Dict[str, Any] = {
        "id": task_id,
        "name": fields.pop("name", f"Task {task_id}"),
        "type": type,
        "outputKey": fields.pop("output_key", fields.pop("outputKey", task_id)),
    }
    data.update(fields)
    return Task.model_validate(data)


def build_workflow(*tasks: Task, workflow_id: str = "wf-1") -> Workflow:
    return Workflow(id=workflow_id, name="Test Workflow", tasks=list(tasks))


@pytest.fixture
def make_task():
    return build_task


@pytest.fixture
def make_workflow():
    return build_workflow


@pytest.fixture
def article_workflow() -> Workflow:
    """input -> upper-case transform."""
    return build_workflow(
        build_task("t1", "DATA_INPUT", staticValue="{{userInput.text}}", outputKey="article"),
        build_task(
            "t2",
            "TEXT_MANIPULATION",
            functionBody="inputs.article.upper()",
            inputKeys=["article"],
            outputKey="upper",
            dependencies=["t1"],
        ),
    )


# ---------------------------------------------------------------------------
# Remote executor fakes
# ---------------------------------------------------------------------------

class FakeExecutorClient:
    """In-memory stand-in for ExecutorClient; records every call."""

    def __init__(self):
        self.run_task_calls: List[Dict[str, Any]] = []
        self.submitted: List[Dict[str, Any]] = []
        self.stopped: List[str] = []
        self.run_task_result: Any = {"text": "model output"}
        self.run_task_error: Optional[RemoteExecutionError] = None
        self.submit_error: Optional[SubmissionError] = None
        self.job_id = "workflow-wf-1-1000"
        self.status_snapshots: List[Dict[str, Any]] = []
        self.status_requests: List[str] = []

    async def run_task(self, task, data_store, provider_config=None, prompt=None):
        self.run_task_calls.append(
            {"task": task, "data_store": data_store, "provider_config": provider_config, "prompt": prompt}
        )
        if self.run_task_error:
            raise self.run_task_error
        return self.run_task_result

    async def submit_workflow(self, workflow, staged_input, provider_config=None, prompts=None):
        self.submitted.append(
            {"workflow": workflow, "userInput": staged_input, "providerConfig": provider_config, "prompts": prompts}
        )
        if self.submit_error:
            raise self.submit_error
        return WorkflowExecution(job_id=self.job_id, workflow_id=workflow["id"], status="queued")

    async def stop_workflow(self, job_id):
        self.stopped.append(job_id)
        return {"jobId": job_id, "status": "stopping", "message": "Stop requested"}

    async def get_job_status(self, job_id):
        self.status_requests.append(job_id)
        if not self.status_snapshots:
            raise RemoteExecutionError(f"Job {job_id} not found", status_code=404)
        if len(self.status_snapshots) > 1:
            return self.status_snapshots.pop(0)
        return self.status_snapshots[0]


class ScriptedChannel:
    """PushChannel that replays a fixed list of messages.

    With ``hold_open=True`` the channel stays open after the script until
    closed, like a live socket waiting for the next event.
    """

    def __init__(self, job_id: str, messages: List[Dict[str, Any]], hold_open: bool = False):
        self.job_id = job_id
        self.messages = messages
        self.hold_open = hold_open
        self.entered = False
        self.exited = False
        self._closed = asyncio.Event()

    async def __aenter__(self):
        self.entered = True
        return self

    async def __aexit__(self, *exc_info):
        self.exited = True
        self._closed.set()

    async def __aiter__(self):
        for message in self.messages:
            await asyncio.sleep(0)
            yield message
        if self.hold_open:
            await self._closed.wait()


class ChannelRecorder:
    """Channel factory that hands out ScriptedChannels and remembers them."""

    def __init__(self, messages: Optional[List[Dict[str, Any]]] = None, hold_open: bool = False):
        self.messages = messages or []
        self.hold_open = hold_open
        self.channels: List[ScriptedChannel] = []

    def __call__(self, job_id: str) -> ScriptedChannel:
        channel = ScriptedChannel(job_id, self.messages, hold_open=self.hold_open)
        self.channels.append(channel)
        return channel


class AppSocketChannel:
    """PushChannel over a Starlette TestClient session to the app's ``/ws``.

    The session is synchronous, so each receive runs in a worker thread.
    """

    def __init__(self, test_client, job_id: str):
        self.test_client = test_client
        self.job_id = job_id
        self._session = None
        self._ws = None

    async def __aenter__(self):
        self._session = self.test_client.websocket_connect("/ws")
        self._ws = self._session.__enter__()
        self._ws.send_json({"type": "subscribe", "jobId": self.job_id})
        return self

    async def __aexit__(self, *exc_info):
        self._session.__exit__(None, None, None)

    async def __aiter__(self):
        while True:
            yield await asyncio.to_thread(self._ws.receive_json)


class AppExecutorClient:
    """Status polling against the app through a TestClient."""

    def __init__(self, test_client):
        self.test_client = test_client

    async def get_job_status(self, job_id):
        resp = self.test_client.get(f"/api/workflows/jobs/{job_id}/status")
        if resp.status_code != 200:
            raise RemoteExecutionError(resp.json()["message"], status_code=resp.status_code)
        return resp.json()


@pytest.fixture
def fake_client() -> FakeExecutorClient:
    return FakeExecutorClient()


# ---------------------------------------------------------------------------
# Server-side fakes
# ---------------------------------------------------------------------------

class RecordingConnectionManager:
    """Collects every job broadcast instead of sending it."""

    def __init__(self):
        self.messages: List[Dict[str, Any]] = []

    async def broadcast_to_job(self, job_id: str, message: dict) -> None:
        self.messages.append({**message, "jobId": job_id})

    def types(self) -> List[str]:
        return [m["type"] for m in self.messages]


@pytest.fixture
def recorder() -> RecordingConnectionManager:
    return RecordingConnectionManager()


@pytest_asyncio.fixture
async def job_service(recorder):
    from worker.jobs import JobService

    service = JobService(connection_manager=recorder, max_concurrent=2)
    yield service
    await service.shutdown()


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def app(job_service):
    """FastAPI app whose job service broadcasts into the recorder."""
    from app.dependencies import get_jobs
    from app.main import create_app

    test_app = create_app()
    test_app.dependency_overrides[get_jobs] = lambda: job_service
    yield test_app
    test_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", follow_redirects=True) as ac:
        yield ac
