"""Dependency resolution: execution order, cycle detection, dangling edges.

Depth-first visitation with a recursion stack. Tasks are visited in the
order given and each task's dependencies in the order declared, so the
same workflow always yields the same order.
"""

from dataclasses import dataclass, field

import structlog

from workflow.models import Task

logger = structlog.get_logger(__name__)

CYCLE_MARKER = "Cycle detected"


@dataclass
class ResolutionResult:
    """Ordered tasks plus human-readable feedback.

    ``ordered_tasks`` is empty whenever a cycle was found.
    """
    ordered_tasks: list[Task] = field(default_factory=list)
    feedback: list[str] = field(default_factory=list)

    @property
    def has_cycle(self) -> bool:
        return any(CYCLE_MARKER in entry for entry in self.feedback)

    @property
    def warnings(self) -> list[str]:
        return [entry for entry in self.feedback if CYCLE_MARKER not in entry]


def resolve_order(tasks: list[Task]) -> ResolutionResult:
    """Topologically order ``tasks`` so dependencies precede dependents.

    Unknown dependency ids produce a warning and the edge is dropped.
    A cycle produces a fatal feedback entry and an empty order.
    """
    ordered: list[Task] = []
    feedback: list[str] = []
    visited: set[str] = set()
    on_stack: set[str] = set()
    task_map = {task.id: task for task in tasks}

    def visit(task_id: str) -> None:
        if task_id in on_stack:
            feedback.append(f"{CYCLE_MARKER} in workflow involving task ID: {task_id}")
            return
        if task_id in visited:
            return

        visited.add(task_id)
        on_stack.add(task_id)

        task = task_map[task_id]
        for dep_id in task.dependencies:
            if dep_id in task_map:
                visit(dep_id)
            else:
                feedback.append(
                    f'Warning: Task "{task.label}" has an unknown dependency: '
                    f'"{dep_id}". It will be ignored.'
                )
        ordered.append(task)

        on_stack.discard(task_id)

    for task in tasks:
        if task.id not in visited:
            visit(task.id)

    result = ResolutionResult(ordered_tasks=ordered, feedback=feedback)
    if result.has_cycle:
        logger.warning("Workflow contains a cycle", feedback=feedback)
        return ResolutionResult(ordered_tasks=[], feedback=feedback)

    if feedback:
        logger.warning("Workflow resolved with warnings", warnings=feedback)
    return result
