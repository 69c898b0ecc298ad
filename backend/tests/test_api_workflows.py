"""Integration tests for the executor HTTP API and WebSocket endpoint."""

import time

import pytest
from fastapi.testclient import TestClient

from api.websockets.connection_manager import manager
from app.main import create_app
from integrations.executor_client import ExecutorClient
from integrations.model_invoker import set_model_invoker
from core.exceptions import RemoteExecutionError, SubmissionError


def _article_payload():
    return {
        "id": "wf-1",
        "name": "Article",
        "tasks": [
            {"id": "t1", "name": "Input", "type": "DATA_INPUT",
             "staticValue": "{{userInput.text}}", "outputKey": "article", "dependencies": []},
            {"id": "t2", "name": "Upper", "type": "TEXT_MANIPULATION",
             "functionBody": "inputs.article.upper()", "inputKeys": ["article"],
             "outputKey": "upper", "dependencies": ["t1"]},
        ],
    }


@pytest.mark.integration
class TestHealth:

    @pytest.mark.asyncio
    async def test_liveness(self, client):
        resp = await client.get("/api/health/")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert "X-Request-ID" in resp.headers

    @pytest.mark.asyncio
    async def test_status_lists_task_types(self, client):
        resp = await client.get("/api/health/status")
        assert resp.status_code == 200
        assert "GEMINI_PROMPT" in resp.json()["task_types"]


@pytest.mark.integration
class TestTaskTypes:

    @pytest.mark.asyncio
    async def test_lists_every_kind(self, client):
        resp = await client.get("/api/workflows/task-types")
        assert resp.status_code == 200
        body = resp.json()
        kinds = {t["task_type"] for t in body["task_types"]}
        assert {"DATA_INPUT", "TEXT_MANIPULATION", "IMAGE_ANALYSIS"} <= kinds
        assert body["count"] == len(body["task_types"])


@pytest.mark.integration
class TestRunTask:

    @pytest.mark.asyncio
    async def test_local_kind(self, client):
        resp = await client.post("/api/workflows/run-task", json={
            "task": {"id": "t", "type": "TEXT_MANIPULATION", "functionBody": "inputs.text.upper()",
                     "inputKeys": ["userInput.text"], "outputKey": "out"},
            "dataStore": {"userInput": {"text": "abc"}},
        })
        assert resp.status_code == 200
        assert resp.json() == "ABC"

    @pytest.mark.asyncio
    async def test_failure_returns_message(self, client):
        resp = await client.post("/api/workflows/run-task", json={
            "task": {"id": "t", "type": "GEMINI_PROMPT", "outputKey": "out"},
            "dataStore": {},
        })
        assert resp.status_code == 500
        assert resp.json()["message"] == "Prompt template is missing for non-linked prompt task."

    @pytest.mark.asyncio
    async def test_installed_invoker_answers_ai_tasks(self, client):
        class UpperInvoker:
            async def generate(self, prompt, provider_config):
                return {"text": prompt.text.upper(), "provider": provider_config.get("provider")}

        set_model_invoker(UpperInvoker())
        try:
            resp = await client.post("/api/workflows/run-task", json={
                "task": {"id": "t", "type": "GEMINI_PROMPT", "promptTemplate": "hi {{userInput.name}}",
                         "outputKey": "out"},
                "dataStore": {"userInput": {"name": "ada"}},
                "providerConfig": {"provider": "fake"},
            })
        finally:
            set_model_invoker(None)

        assert resp.status_code == 200
        assert resp.json() == {"text": "HI ADA", "provider": "fake"}

    @pytest.mark.asyncio
    async def test_invalid_task_kind(self, client):
        resp = await client.post("/api/workflows/run-task", json={
            "task": {"id": "t", "type": "NOPE", "outputKey": "out"},
            "dataStore": {},
        })
        assert resp.status_code == 422


@pytest.mark.integration
class TestJobs:

    @pytest.mark.asyncio
    async def test_execute_then_poll(self, client, job_service):
        resp = await client.post("/api/workflows/execute", json={
            "workflow": _article_payload(),
            "userInput": {"text": "hello"},
            "providerConfig": {},
        })
        assert resp.status_code == 202
        handle = resp.json()
        assert handle["jobId"].startswith("workflow-wf-1-")
        assert handle["workflowId"] == "wf-1"

        await job_service.wait(handle["jobId"], timeout=2)

        resp = await client.get(f"/api/workflows/jobs/{handle['jobId']}/status")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "completed"
        assert body["dataStore"]["upper"] == "HELLO"
        assert body["taskStates"]["t1"]["status"] == "COMPLETED"

    @pytest.mark.asyncio
    async def test_unknown_job_is_404(self, client):
        resp = await client.get("/api/workflows/jobs/workflow-x-1/status")
        assert resp.status_code == 404
        assert "not found" in resp.json()["message"]

        resp = await client.post("/api/workflows/stop/workflow-x-1")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_duplicate_task_ids_rejected(self, client):
        payload = _article_payload()
        payload["tasks"][1]["id"] = "t1"
        resp = await client.post("/api/workflows/execute", json={"workflow": payload, "userInput": {}})
        assert resp.status_code == 422


@pytest.mark.integration
class TestExecutorClientAgainstApp:
    """The studio-side client talking to the real app over ASGI."""

    @pytest.mark.asyncio
    async def test_submit_and_status(self, app, job_service):
        from httpx import ASGITransport

        async with ExecutorClient(base_url="http://test/api", transport=ASGITransport(app=app)) as executor:
            execution = await executor.submit_workflow(_article_payload(), {"text": "hi"})
            await job_service.wait(execution.job_id, timeout=2)
            status = await executor.get_job_status(execution.job_id)

        assert status["status"] == "completed"
        assert status["dataStore"]["upper"] == "HI"

    @pytest.mark.asyncio
    async def test_error_response_raises(self, app):
        from httpx import ASGITransport

        async with ExecutorClient(base_url="http://test/api", transport=ASGITransport(app=app)) as executor:
            with pytest.raises(RemoteExecutionError) as exc_info:
                await executor.run_task({"id": "t", "type": "IMAGE_ANALYSIS", "outputKey": "o"}, {})
        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "Prompt template is missing."

    @pytest.mark.asyncio
    async def test_rejected_submission(self, app):
        from httpx import ASGITransport

        async with ExecutorClient(base_url="http://test/api", transport=ASGITransport(app=app)) as executor:
            with pytest.raises(SubmissionError):
                await executor.submit_workflow({"id": "wf", "tasks": [{"id": "x"}]}, {})


@pytest.mark.integration
class TestWebSocket:

    def test_subscribe_ping_unsubscribe(self):
        with TestClient(create_app()) as test_client:
            with test_client.websocket_connect("/ws") as ws:
                ws.send_json({"type": "ping"})
                assert ws.receive_json() == {"type": "pong"}

                ws.send_json({"type": "subscribe", "jobId": "job-1"})
                assert ws.receive_json() == {"type": "subscribed", "jobId": "job-1"}
                assert manager.subscriber_count("job-1") == 1

                ws.send_json({"type": "unsubscribe", "jobId": "job-1"})
                ws.send_json({"type": "ping"})
                assert ws.receive_json() == {"type": "pong"}
                assert manager.subscriber_count("job-1") == 0

    def test_invalid_json(self):
        with TestClient(create_app()) as test_client:
            with test_client.websocket_connect("/ws") as ws:
                ws.send_text("not json")
                assert ws.receive_json()["type"] == "error"

    def test_subscribe_after_job_finished_replays_outcome(self):
        from app.dependencies import get_jobs
        from worker.jobs import JobService

        service = JobService(max_concurrent=2)
        app = create_app()
        app.dependency_overrides[get_jobs] = lambda: service

        with TestClient(app) as test_client:
            resp = test_client.post("/api/workflows/execute", json={
                "workflow": _article_payload(),
                "userInput": {"text": "hello"},
            })
            job_id = resp.json()["jobId"]
            for _ in range(200):
                if test_client.get(f"/api/workflows/jobs/{job_id}/status").json()["status"] == "completed":
                    break
                time.sleep(0.01)

            with test_client.websocket_connect("/ws") as ws:
                ws.send_json({"type": "subscribe", "jobId": job_id})
                assert ws.receive_json() == {"type": "subscribed", "jobId": job_id}
                replayed = [ws.receive_json() for _ in range(3)]

        assert [(m["type"], m.get("taskId"), m.get("status")) for m in replayed] == [
            ("task_status", "t1", "completed"),
            ("task_status", "t2", "completed"),
            ("workflow_complete", None, None),
        ]
        assert all(m["jobId"] == job_id for m in replayed)
        assert replayed[1]["result"] == "HELLO"
        assert replayed[2]["dataStore"]["upper"] == "HELLO"

    def test_subscribe_to_unknown_job_replays_nothing(self):
        with TestClient(create_app()) as test_client:
            with test_client.websocket_connect("/ws") as ws:
                ws.send_json({"type": "subscribe", "jobId": "workflow-x-1"})
                assert ws.receive_json() == {"type": "subscribed", "jobId": "workflow-x-1"}
                ws.send_json({"type": "ping"})
                assert ws.receive_json() == {"type": "pong"}
