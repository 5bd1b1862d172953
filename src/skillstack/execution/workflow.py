"""
Tier-3 workflow runner.

A workflow is an ordered list of steps. Each step may name the steps it
depends on; a step whose dependencies did not complete is not run. Network
calls are simulated with a fixed latency and counted in the resource usage.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Literal, Mapping, Optional, Sequence

from pydantic import BaseModel, Field

from ..skills.models import ResourceConstraint
from .models import (
    BASE_MEMORY_BYTES,
    ExecutionErrorType,
    ExecutionFailure,
    ExecutionResult,
    ResourceUsage,
)

logger = logging.getLogger(__name__)

StepType = Literal["api_call", "data_transform", "skill_invoke"]
ErrorHandling = Literal["fail_fast", "continue_on_error"]

# Reference to the workflow input in a step's ``source``.
INPUT_REF = "$input"

SkillInvoker = Callable[[str, Dict[str, Any]], Awaitable[ExecutionResult]]


class WorkflowStep(BaseModel):
    id: str
    type: StepType
    depends_on: List[str] = Field(default_factory=list)
    config: Dict[str, Any] = Field(default_factory=dict)


class StepFailed(Exception):
    pass


@dataclass
class WorkflowResult:
    success: bool
    outputs: Dict[str, Any] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    completed: List[str] = field(default_factory=list)
    resource_usage: ResourceUsage = field(default_factory=ResourceUsage)

    @property
    def last_output(self) -> Any:
        return self.outputs[self.completed[-1]] if self.completed else None


def _transform(operation: str, value: Any, config: Mapping[str, Any]) -> Any:
    if operation == "identity":
        return value
    if operation == "pick":
        fields = config.get("fields") or []
        return {k: value[k] for k in fields if k in value}
    if operation == "rename":
        mapping = config.get("mapping") or {}
        return {mapping.get(k, k): v for k, v in value.items()}
    if operation == "merge":
        merged: Dict[str, Any] = {}
        for item in value:
            merged.update(item)
        return merged
    if operation == "upper":
        return str(value).upper()
    if operation == "lower":
        return str(value).lower()
    if operation == "length":
        return len(value)
    raise StepFailed(f"Unknown transform operation: {operation}")


class WorkflowRunner:
    """Runs workflow steps in order against shared outputs."""

    def __init__(
        self,
        invoke_skill: Optional[SkillInvoker] = None,
        *,
        api_latency_ms: int = 10,
    ) -> None:
        self._invoke_skill = invoke_skill
        self._api_latency_ms = api_latency_ms

    async def run(
        self,
        steps: Sequence[WorkflowStep],
        workflow_input: Dict[str, Any],
        *,
        error_handling: ErrorHandling = "fail_fast",
        usage: Optional[ResourceUsage] = None,
        limits: Optional[ResourceConstraint] = None,
    ) -> WorkflowResult:
        """Run ``steps`` in order.

        ``usage`` is updated as steps run, so a caller that is cancelled
        part-way still sees what was consumed. After every step the usage is
        checked against ``limits``.

        Raises:
            ExecutionFailure: RESOURCE_ERROR when the workflow exceeds ``limits``
        """
        result = WorkflowResult(
            success=True, resource_usage=usage if usage is not None else ResourceUsage()
        )
        result.resource_usage.memory_used = max(
            result.resource_usage.memory_used, BASE_MEMORY_BYTES
        )
        known = {s.id for s in steps}
        started = time.perf_counter()

        for step in steps:
            missing = [d for d in step.depends_on if d not in result.completed]
            if missing:
                unknown = [d for d in missing if d not in known]
                reason = (
                    f"Unknown dependencies: {unknown}"
                    if unknown
                    else f"Unmet dependencies: {missing}"
                )
                result.errors[step.id] = reason
            else:
                step_started = time.perf_counter()
                try:
                    output = await self._run_step(step, workflow_input, result)
                except StepFailed as e:
                    result.errors[step.id] = str(e)
                else:
                    result.outputs[step.id] = output
                    result.completed.append(step.id)
                finally:
                    # Nested skills report their own cpu time.
                    if step.type != "skill_invoke":
                        result.resource_usage.cpu_time += int(
                            (time.perf_counter() - step_started) * 1000
                        )
                self._check_limits(
                    result, limits, (time.perf_counter() - started) * 1000
                )
                if step.id not in result.errors:
                    continue

            logger.info("Workflow step %s failed: %s", step.id, result.errors[step.id])
            if error_handling == "fail_fast":
                break

        result.success = not result.errors
        return result

    @staticmethod
    def _check_limits(
        result: WorkflowResult, limits: Optional[ResourceConstraint], elapsed_ms: float
    ) -> None:
        if limits is None:
            return
        usage = result.resource_usage
        usage.memory_used = max(
            usage.memory_used, BASE_MEMORY_BYTES + len(repr(result.outputs))
        )
        exceeded: Dict[str, Any] = {}
        if limits.max_memory is not None and usage.memory_used > limits.max_memory:
            exceeded["memory_used"] = usage.memory_used
        if limits.max_cpu is not None and usage.cpu_time > limits.max_cpu:
            exceeded["cpu_time"] = usage.cpu_time
        if limits.max_duration is not None and elapsed_ms > limits.max_duration:
            exceeded["duration_ms"] = elapsed_ms
        if exceeded:
            raise ExecutionFailure(
                ExecutionErrorType.RESOURCE_ERROR,
                "RESOURCE_LIMIT_EXCEEDED",
                "Workflow exceeded its resource envelope",
                details={
                    "exceeded": exceeded,
                    "limits": limits.model_dump(exclude_none=True),
                    "completed_steps": list(result.completed),
                },
            )

    def _source(
        self, step: WorkflowStep, workflow_input: Dict[str, Any], result: WorkflowResult
    ) -> Any:
        source = step.config.get("source", INPUT_REF)
        if isinstance(source, list):
            return [self._lookup(ref, workflow_input, result) for ref in source]
        return self._lookup(source, workflow_input, result)

    @staticmethod
    def _lookup(ref: Any, workflow_input: Dict[str, Any], result: WorkflowResult) -> Any:
        if not isinstance(ref, str):
            raise StepFailed(f"Step source must be a step id or '{INPUT_REF}', got {ref!r}")
        if ref == INPUT_REF:
            return workflow_input
        if ref not in result.outputs:
            raise StepFailed(f"No output available from step '{ref}'")
        return result.outputs[ref]

    async def _run_step(
        self, step: WorkflowStep, workflow_input: Dict[str, Any], result: WorkflowResult
    ) -> Any:
        config = step.config

        if step.type == "api_call":
            await asyncio.sleep(self._api_latency_ms / 1000)
            result.resource_usage.network_requests += 1
            try:
                status = int(config.get("status", 200))
            except (TypeError, ValueError):
                raise StepFailed(
                    f"Invalid status {config.get('status')!r} in step '{step.id}'"
                ) from None
            endpoint = config.get("endpoint", "")
            if status >= 400:
                raise StepFailed(f"API call to '{endpoint}' failed with status {status}")
            return {
                "status": status,
                "endpoint": endpoint,
                "method": config.get("method", "GET"),
                "data": config.get("response", config.get("payload")),
            }

        if step.type == "data_transform":
            value = self._source(step, workflow_input, result)
            operation = config.get("operation", "identity")
            if not isinstance(operation, str):
                raise StepFailed(f"Unknown transform operation: {operation!r}")
            try:
                return _transform(operation, value, config)
            except (TypeError, KeyError, AttributeError, ValueError) as e:
                raise StepFailed(f"Transform failed: {e}") from e

        if step.type == "skill_invoke":
            if self._invoke_skill is None:
                raise StepFailed("Skill invocation is not available")
            skill_id = config.get("skill_id")
            if not skill_id or not isinstance(skill_id, str):
                raise StepFailed("skill_invoke step requires a string 'skill_id'")
            nested_input = config.get("input") or {}
            if not isinstance(nested_input, Mapping):
                raise StepFailed(f"Input for skill '{skill_id}' must be an object")
            nested = await self._invoke_skill(skill_id, dict(nested_input))
            result.resource_usage.add(nested.metadata.resource_usage)
            if not nested.success:
                message = nested.error.message if nested.error else "unknown error"
                raise StepFailed(f"Skill '{skill_id}' failed: {message}")
            return nested.output

        raise StepFailed(f"Unknown step type: {step.type}")
