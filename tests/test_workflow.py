"""Tests for the tier-3 workflow runner."""

import pytest

from skillstack.execution.models import (
    BASE_MEMORY_BYTES,
    ExecutionFailure,
    ExecutionMetadata,
    ExecutionResult,
    ResourceUsage,
)
from skillstack.execution.workflow import WorkflowRunner, WorkflowStep
from skillstack.skills.models import ResourceConstraint


def _steps(*raw):
    return [WorkflowStep.model_validate(s) for s in raw]


async def _invoke(skill_id, input):
    if skill_id == "broken":
        return ExecutionResult(
            success=False,
            error={"type": "runtime_error", "code": "X", "message": "boom"},
            metadata=ExecutionMetadata(skill_id=skill_id, execution_id="e"),
        )
    return ExecutionResult(
        success=True,
        output={"echo": input},
        metadata=ExecutionMetadata(
            skill_id=skill_id,
            execution_id="e",
            resource_usage=ResourceUsage(network_requests=2),
        ),
    )


@pytest.fixture
def runner():
    return WorkflowRunner(_invoke, api_latency_ms=0)


class TestWorkflowRunner:
    @pytest.mark.asyncio
    async def test_pipeline_of_steps(self, runner):
        steps = _steps(
            {"id": "fetch", "type": "api_call", "config": {"endpoint": "/users", "response": {"name": "ada", "age": 36}}},
            {"id": "pick", "type": "data_transform", "depends_on": ["fetch"], "config": {"source": "fetch", "operation": "identity"}},
            {"id": "call", "type": "skill_invoke", "depends_on": ["pick"], "config": {"skill_id": "other", "input": {"k": 1}}},
        )
        result = await runner.run(steps, {"q": 1})
        assert result.success
        assert result.completed == ["fetch", "pick", "call"]
        assert result.outputs["fetch"]["data"] == {"name": "ada", "age": 36}
        assert result.outputs["pick"]["status"] == 200
        assert result.last_output == {"echo": {"k": 1}}
        assert result.resource_usage.network_requests == 3

    @pytest.mark.asyncio
    async def test_transforms(self, runner):
        steps = _steps(
            {"id": "pick", "type": "data_transform", "config": {"operation": "pick", "fields": ["a"]}},
            {"id": "rename", "type": "data_transform", "config": {"source": "pick", "operation": "rename", "mapping": {"a": "b"}}},
            {"id": "merge", "type": "data_transform", "config": {"source": ["pick", "rename"], "operation": "merge"}},
        )
        result = await runner.run(steps, {"a": 1, "z": 2})
        assert result.outputs["pick"] == {"a": 1}
        assert result.outputs["rename"] == {"b": 1}
        assert result.outputs["merge"] == {"a": 1, "b": 1}

    @pytest.mark.asyncio
    async def test_fail_fast_stops(self, runner):
        steps = _steps(
            {"id": "bad", "type": "api_call", "config": {"endpoint": "/x", "status": 500}},
            {"id": "after", "type": "data_transform"},
        )
        result = await runner.run(steps, {})
        assert not result.success
        assert list(result.errors) == ["bad"]
        assert result.completed == []

    @pytest.mark.asyncio
    async def test_continue_on_error(self, runner):
        steps = _steps(
            {"id": "bad", "type": "skill_invoke", "config": {"skill_id": "broken"}},
            {"id": "needs_bad", "type": "data_transform", "depends_on": ["bad"]},
            {"id": "ok", "type": "data_transform"},
        )
        result = await runner.run(steps, {}, error_handling="continue_on_error")
        assert not result.success
        assert set(result.errors) == {"bad", "needs_bad"}
        assert "boom" in result.errors["bad"]
        assert "Unmet dependencies" in result.errors["needs_bad"]
        assert result.completed == ["ok"]

    @pytest.mark.asyncio
    async def test_unknown_dependency_and_operation(self, runner):
        steps = _steps(
            {"id": "a", "type": "data_transform", "depends_on": ["ghost"]},
            {"id": "b", "type": "data_transform", "config": {"operation": "explode"}},
        )
        result = await runner.run(steps, {}, error_handling="continue_on_error")
        assert "Unknown dependencies" in result.errors["a"]
        assert "Unknown transform operation" in result.errors["b"]

    @pytest.mark.asyncio
    async def test_non_numeric_status_fails_the_step(self, runner):
        steps = _steps({"id": "a", "type": "api_call", "config": {"status": "abc"}})
        result = await runner.run(steps, {})
        assert not result.success
        assert "Invalid status" in result.errors["a"]

    @pytest.mark.asyncio
    async def test_limits_checked_after_each_step(self):
        runner = WorkflowRunner(_invoke, api_latency_ms=0)
        steps = _steps(
            {"id": "one", "type": "skill_invoke", "config": {"skill_id": "other"}},
            {"id": "two", "type": "skill_invoke", "config": {"skill_id": "other"}},
        )
        usage = ResourceUsage()
        with pytest.raises(ExecutionFailure) as exc:
            await runner.run(
                steps, {}, usage=usage, limits=ResourceConstraint(max_memory=BASE_MEMORY_BYTES)
            )
        assert exc.value.error.code == "RESOURCE_LIMIT_EXCEEDED"
        assert exc.value.error.details["completed_steps"] == ["one"]
        assert usage.network_requests == 2
