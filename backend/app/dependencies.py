"""FastAPI dependency injection functions."""

from tasks.registry import TaskRegistry, get_executor_registry
from worker.jobs import JobService, get_job_service


def get_jobs() -> JobService:
    """Provide the process-wide JobService."""
    return get_job_service()


def get_registry() -> TaskRegistry:
    """Provide the executor-side task registry (AI kinds run in-process)."""
    return get_executor_registry()
