"""Request / response schemas for the executor's workflow endpoints."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from workflow.models import PromptDefinition, Task, Workflow


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RunTaskRequest(_CamelModel):
    """Execute one task against a DataStore snapshot."""

    task: Task = Field(description="Task definition")
    data_store: Dict[str, Any] = Field(default_factory=dict, alias="dataStore")
    provider_config: Dict[str, Any] = Field(default_factory=dict, alias="providerConfig")
    prompt: Optional[PromptDefinition] = Field(default=None, description="Linked prompt, if any")


class ExecuteWorkflowRequest(_CamelModel):
    """Submit a whole workflow for background execution."""

    workflow: Workflow
    user_input: Any = Field(default=None, alias="userInput")
    provider_config: Dict[str, Any] = Field(default_factory=dict, alias="providerConfig")
    prompts: List[PromptDefinition] = Field(default_factory=list)


class JobHandleResponse(_CamelModel):
    """Handle returned by POST /workflows/execute."""

    job_id: str = Field(alias="jobId")
    workflow_id: str = Field(alias="workflowId")
    status: str
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")


class JobStatusResponse(JobHandleResponse):
    """Polled job state (degraded mode when the push channel is down)."""

    error: Optional[str] = None
    task_states: Dict[str, Dict[str, Any]] = Field(default_factory=dict, alias="taskStates")
    data_store: Dict[str, Any] = Field(default_factory=dict, alias="dataStore")
    feedback: List[str] = Field(default_factory=list)


class StopJobResponse(_CamelModel):
    job_id: str = Field(alias="jobId")
    status: str
    message: str
