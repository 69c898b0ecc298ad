"""
Remote executor client — HTTP side of remote and async execution.

Talks to the executor service (see ``api/routes/workflows.py``):

- run-task: execute one AI task against a DataStore snapshot
- execute: submit a whole workflow as a background job, get a job handle
- stop: request cancellation of a job
- job status: poll a job (degraded mode when the push channel is down)
"""

from typing import Any, Dict, List, Optional

import httpx
import structlog

from app.config import get_settings
from core.exceptions import RemoteExecutionError, SubmissionError
from workflow.models import WorkflowExecution

logger = structlog.get_logger(__name__)


def _error_message(response: httpx.Response) -> str:
    """Pull a human-readable message out of an error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("detail") or body.get("error") or body)
    return str(body)


class ExecutorClient:
    """Async client for the remote executor's workflow endpoints."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.EXECUTOR_BASE_URL).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.EXECUTOR_TIMEOUT
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None and not self._client.is_closed

    def _ensure_client(self) -> httpx.AsyncClient:
        if not self.is_connected:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"content-type": "application/json"},
                timeout=httpx.Timeout(self._timeout, connect=10.0),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ExecutorClient":
        self._ensure_client()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _request(self, method: str, path: str, json: Any = None) -> httpx.Response:
        client = self._ensure_client()
        try:
            response = await client.request(method, path, json=json)
        except httpx.TimeoutException as e:
            logger.warning("Executor request timed out", path=path)
            raise RemoteExecutionError(f"Request to executor timed out: {path}", status_code=504) from e
        except httpx.HTTPError as e:
            logger.error("Executor request failed", path=path, error=str(e))
            raise RemoteExecutionError(f"Executor unreachable: {e}") from e

        if response.is_error:
            message = _error_message(response)
            logger.warning("Executor returned an error", path=path, status=response.status_code, error=message)
            raise RemoteExecutionError(message, status_code=response.status_code)
        return response

    # ─── Endpoints ─────────────────────────────────────────────────

    async def run_task(
        self,
        task: Dict[str, Any],
        data_store: Dict[str, Any],
        provider_config: Optional[Dict[str, Any]] = None,
        prompt: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Execute one task remotely; returns the task's JSON result."""
        payload: Dict[str, Any] = {"task": task, "dataStore": data_store}
        if provider_config:
            payload["providerConfig"] = provider_config
        if prompt:
            payload["prompt"] = prompt
        response = await self._request("POST", "/workflows/run-task", json=payload)
        return response.json()

    async def submit_workflow(
        self,
        workflow: Dict[str, Any],
        staged_input: Any,
        provider_config: Optional[Dict[str, Any]] = None,
        prompts: Optional[List[Dict[str, Any]]] = None,
    ) -> WorkflowExecution:
        """Submit a whole workflow for background execution.

        ``prompts`` carries the library entries referenced by the workflow's tasks.
        """
        payload: Dict[str, Any] = {
            "workflow": workflow,
            "userInput": staged_input,
            "providerConfig": provider_config or {},
        }
        if prompts:
            payload["prompts"] = prompts
        try:
            response = await self._request("POST", "/workflows/execute", json=payload)
            execution = WorkflowExecution.model_validate(response.json())
        except RemoteExecutionError as e:
            raise SubmissionError(f"Workflow submission failed: {e.message}", status_code=e.status_code) from e
        except ValueError as e:
            raise SubmissionError(f"Workflow submission returned an invalid job handle: {e}") from e

        logger.info("Workflow submitted", job_id=execution.job_id, workflow_id=execution.workflow_id)
        return execution

    async def stop_workflow(self, job_id: str) -> Dict[str, Any]:
        response = await self._request("POST", f"/workflows/stop/{job_id}")
        return response.json()

    async def get_job_status(self, job_id: str) -> Dict[str, Any]:
        response = await self._request("GET", f"/workflows/jobs/{job_id}/status")
        return response.json()
