"""Tests for dependency resolution."""

import pytest

from conftest import build_task
from workflow.resolver import CYCLE_MARKER, resolve_order


def _ids(result):
    return [task.id for task in result.ordered_tasks]


@pytest.mark.unit
class TestResolveOrder:

    def test_dependencies_precede_dependents(self):
        tasks = [
            build_task("c", dependencies=["b"]),
            build_task("a"),
            build_task("b", dependencies=["a"]),
        ]
        result = resolve_order(tasks)
        assert _ids(result) == ["a", "b", "c"]
        assert result.feedback == []

    def test_every_task_appears_once(self):
        tasks = [
            build_task("a"),
            build_task("b", dependencies=["a"]),
            build_task("c", dependencies=["a"]),
            build_task("d", dependencies=["b", "c"]),
        ]
        ids = _ids(resolve_order(tasks))
        assert sorted(ids) == ["a", "b", "c", "d"]
        for task in tasks:
            for dep in task.dependencies:
                assert ids.index(dep) < ids.index(task.id)

    def test_independent_tasks_keep_input_order(self):
        tasks = [build_task("x"), build_task("y"), build_task("z")]
        assert _ids(resolve_order(tasks)) == ["x", "y", "z"]

    def test_order_is_deterministic(self):
        tasks = [
            build_task("b", dependencies=["a"]),
            build_task("a"),
            build_task("c"),
        ]
        assert _ids(resolve_order(tasks)) == _ids(resolve_order(tasks))

    def test_empty_workflow(self):
        result = resolve_order([])
        assert result.ordered_tasks == []
        assert not result.has_cycle


@pytest.mark.unit
class TestCycles:

    def test_two_task_cycle_yields_empty_order(self):
        tasks = [
            build_task("a", dependencies=["b"]),
            build_task("b", dependencies=["a"]),
        ]
        result = resolve_order(tasks)
        assert result.ordered_tasks == []
        assert result.has_cycle
        assert any(CYCLE_MARKER in entry for entry in result.feedback)

    def test_self_dependency_is_a_cycle(self):
        result = resolve_order([build_task("a", dependencies=["a"])])
        assert result.ordered_tasks == []
        assert result.feedback == ["Cycle detected in workflow involving task ID: a"]


@pytest.mark.unit
class TestUnknownDependencies:

    def test_dangling_dependency_is_dropped_with_warning(self):
        tasks = [
            build_task("a", name="Load"),
            build_task("b", name="Summarize", dependencies=["a", "ghost"]),
        ]
        result = resolve_order(tasks)
        assert _ids(result) == ["a", "b"]
        assert not result.has_cycle
        assert result.warnings == [
            'Warning: Task "Summarize" has an unknown dependency: "ghost". It will be ignored.'
        ]
