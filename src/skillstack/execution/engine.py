"""
Layered Execution Engine: The single entry point for invoking skills.

``execute`` resolves the skill and its routed extension, validates the
input against the declared parameters, dispatches on the skill's layer and
returns an ExecutionResult. Failures are returned as data; only an
unexpected internal fault propagates. The effective timeout bounds the whole
pipeline, and cancelling it tears down any sandbox in use.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
import time
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple, Union

from pydantic import ValidationError

from ..config import RuntimeConfig
from ..errors import SkillNotFoundError
from ..events import EventBus
from ..extensions.manager import ExtensionManager
from ..extensions.models import Extension, ExtensionType
from ..skills.models import (
    ResourceConstraint,
    SkillDefinition,
    SkillDependencyType,
    SkillLayer,
)
from ..skills.registry import SkillRegistry
from ..skills.validation import SkillValidator
from .functions import FunctionRegistry, call_function
from .models import (
    ExecutionError,
    ExecutionErrorType,
    ExecutionFailure,
    ExecutionMetadata,
    ExecutionResult,
    InvocationContext,
    ResourceUsage,
)
from .sandbox import SandboxManager
from .workflow import WorkflowRunner, WorkflowStep

logger = logging.getLogger(__name__)

ERROR_HANDLING_MODES = ("fail_fast", "continue_on_error")


class ExecutionEngine:
    """Executes skills according to their layer."""

    def __init__(
        self,
        registry: SkillRegistry,
        extensions: ExtensionManager,
        *,
        config: Optional[RuntimeConfig] = None,
        events: Optional[EventBus] = None,
        functions: Optional[FunctionRegistry] = None,
        sandboxes: Optional[SandboxManager] = None,
        validator: Optional[SkillValidator] = None,
    ) -> None:
        self._registry = registry
        self._extensions = extensions
        self._config = config or RuntimeConfig()
        self._events = events or EventBus()
        self._functions = functions or FunctionRegistry()
        self._sandboxes = sandboxes or SandboxManager(root=self._config.sandbox_root)
        self._validator = validator or registry.validator
        self._workflows = WorkflowRunner(
            self._invoke_nested, api_latency_ms=self._config.api_latency_ms
        )

        self._total = 0
        self._by_layer: Counter = Counter()
        self._active: Set[str] = set()

    @property
    def functions(self) -> FunctionRegistry:
        return self._functions

    @property
    def sandboxes(self) -> SandboxManager:
        return self._sandboxes

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    @property
    def active_executions(self) -> List[str]:
        return sorted(self._active)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_executions": self._total,
            "executions_by_layer": dict(self._by_layer),
            "active_executions": len(self._active),
        }

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def execute(
        self,
        skill_id: str,
        input: Optional[Mapping[str, Any]] = None,
        context: Optional[Union[InvocationContext, Mapping[str, Any]]] = None,
    ) -> ExecutionResult:
        execution_id = f"exec_{uuid.uuid4().hex}"
        metadata = ExecutionMetadata(skill_id=skill_id, execution_id=execution_id)
        started = time.perf_counter()
        output: Any = None
        error: Optional[ExecutionError] = None

        self._total += 1
        self._active.add(execution_id)
        await self._events.publish(
            "execution_started", skill_id=skill_id, execution_id=execution_id
        )

        try:
            ctx = self._coerce_context(context)
            try:
                skill = await self._registry.resolve(skill_id)
            except SkillNotFoundError:
                raise ExecutionFailure(
                    ExecutionErrorType.RUNTIME_ERROR,
                    "SKILL_NOT_FOUND",
                    f"Skill not found: {skill_id}",
                ) from None

            metadata.layer = skill.layer
            self._by_layer[skill.layer] += 1
            timeout_ms = self._effective_timeout(skill, ctx)
            try:
                output = await asyncio.wait_for(
                    self._pipeline(skill, input, ctx, metadata), timeout_ms / 1000
                )
            except asyncio.TimeoutError:
                raise ExecutionFailure(
                    ExecutionErrorType.TIMEOUT_ERROR,
                    "TIMEOUT_EXCEEDED",
                    f"Execution of '{skill_id}' exceeded {timeout_ms}ms",
                    details={"timeout_ms": timeout_ms},
                    suggestions=["Increase the timeout or reduce the work done per call"],
                ) from None
        except ExecutionFailure as failure:
            error = failure.error
        finally:
            metadata.end_time = datetime.now(timezone.utc)
            metadata.duration_ms = (time.perf_counter() - started) * 1000
            self._active.discard(execution_id)

        result = ExecutionResult(
            success=error is None, output=output, error=error, metadata=metadata
        )
        if error is None:
            logger.info(
                "Executed %s (%s) in %.1fms", skill_id, execution_id, metadata.duration_ms
            )
        else:
            logger.info(
                "Execution %s of %s failed: %s %s", execution_id, skill_id, error.code, error.message
            )
        await self._events.publish(
            "execution_finished",
            skill_id=skill_id,
            execution_id=execution_id,
            success=result.success,
            error_code=error.code if error else None,
            duration_ms=metadata.duration_ms,
        )
        return result

    async def _invoke_nested(self, skill_id: str, input: Dict[str, Any]) -> ExecutionResult:
        return await self.execute(skill_id, input)

    @staticmethod
    def _coerce_context(
        context: Optional[Union[InvocationContext, Mapping[str, Any]]]
    ) -> InvocationContext:
        if context is None:
            return InvocationContext()
        if isinstance(context, InvocationContext):
            return context
        try:
            return InvocationContext.model_validate(dict(context))
        except ValidationError as e:
            raise ExecutionFailure(
                ExecutionErrorType.VALIDATION_ERROR,
                "INVALID_CONTEXT",
                f"Invalid invocation context: {e}",
            ) from e

    def _effective_timeout(self, skill: SkillDefinition, ctx: InvocationContext) -> int:
        if ctx.timeout_ms is not None:
            return ctx.timeout_ms
        declared = skill.invocation_spec.execution_context.timeout
        if declared is not None:
            return declared
        return self._config.defaults_for(skill.layer).timeout_ms

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _pipeline(
        self,
        skill: SkillDefinition,
        input: Optional[Mapping[str, Any]],
        ctx: InvocationContext,
        metadata: ExecutionMetadata,
    ) -> Any:
        await self._check_dependencies(skill)
        params = self._validate_parameters(skill, input)

        routed = self._extensions.get_routed_extension(skill.id)
        if routed is None:
            return await self._run_default(skill, params, ctx, metadata.resource_usage)

        metadata.extension_id = routed.id
        ext_type = routed.extension_type
        if ext_type == ExtensionType.OVERRIDE:
            return await self._run_override(skill, routed, params, ctx, metadata.resource_usage)

        output = await self._run_default(skill, params, ctx, metadata.resource_usage)
        implementation = routed.implementation
        if ext_type == ExtensionType.DECORATE:
            if callable(implementation):
                return await self._call_extension(routed, output)
            return {"output": output, "decoration": implementation}
        if ext_type == ExtensionType.COMPOSE:
            extra = (
                await self._call_extension(routed, params)
                if callable(implementation)
                else implementation
            )
            return {"base": output, "extension": extra}
        raise ExecutionFailure(
            ExecutionErrorType.RUNTIME_ERROR,
            "INVALID_EXTENSION_TYPE",
            f"Unsupported extension type: {routed.type}",
        )

    async def _check_dependencies(self, skill: SkillDefinition) -> None:
        missing = [
            dep.id
            for dep in skill.dependencies
            if dep.type == SkillDependencyType.SKILL
            and not dep.optional
            and not await self._registry.exists(dep.id)
        ]
        if missing:
            raise ExecutionFailure(
                ExecutionErrorType.DEPENDENCY_ERROR,
                "MISSING_DEPENDENCY",
                f"Required skill dependencies are not registered: {', '.join(missing)}",
                details={"missing": missing},
            )

    def _validate_parameters(
        self, skill: SkillDefinition, input: Optional[Mapping[str, Any]]
    ) -> Dict[str, Any]:
        if input is None:
            input = {}
        if not isinstance(input, Mapping):
            raise ExecutionFailure(
                ExecutionErrorType.VALIDATION_ERROR,
                "INVALID_INPUT",
                "Skill input must be an object",
            )
        params = dict(input)

        for param in skill.invocation_spec.parameters:
            if param.name not in params:
                if param.required:
                    raise ExecutionFailure(
                        ExecutionErrorType.VALIDATION_ERROR,
                        "MISSING_REQUIRED_PARAMETER",
                        f"Required parameter '{param.name}' is missing",
                        details={"parameter": param.name},
                        suggestions=[f"Provide a value for '{param.name}'"],
                    )
                if param.default_value is not None:
                    params[param.name] = param.default_value
                continue

            if param.validation:
                check = self._validator.validate_data(params[param.name], param.validation)
                if not check.valid:
                    raise ExecutionFailure(
                        ExecutionErrorType.VALIDATION_ERROR,
                        "INVALID_PARAMETER",
                        f"Parameter '{param.name}' is invalid: "
                        + ", ".join(e.message for e in check.errors),
                        details={"parameter": param.name, "errors": check.error_codes},
                    )

        check = self._validator.validate_data(params, skill.invocation_spec.input_schema)
        if not check.valid:
            raise ExecutionFailure(
                ExecutionErrorType.VALIDATION_ERROR,
                "SCHEMA_VALIDATION_ERROR",
                "Input does not match the skill's input schema: "
                + ", ".join(e.message for e in check.errors),
                details={"errors": [e.model_dump() for e in check.errors]},
            )
        return params

    # ------------------------------------------------------------------
    # Layer dispatch
    # ------------------------------------------------------------------

    async def _run_default(
        self,
        skill: SkillDefinition,
        params: Dict[str, Any],
        ctx: InvocationContext,
        usage: ResourceUsage,
    ) -> Any:
        layer = SkillLayer(skill.layer)
        if layer == SkillLayer.ATOMIC:
            return await self._run_atomic(skill, params)
        if layer == SkillLayer.COMMAND:
            return await self._run_command(skill, params, ctx, usage)
        if layer == SkillLayer.WORKFLOW:
            return await self._run_workflow(skill, params, usage)
        raise AssertionError(f"unhandled layer {layer!r}")

    async def _run_override(
        self,
        skill: SkillDefinition,
        extension: Extension,
        params: Dict[str, Any],
        ctx: InvocationContext,
        usage: ResourceUsage,
    ) -> Any:
        implementation = extension.implementation
        if callable(implementation):
            return await self._call_extension(extension, params)
        if isinstance(implementation, Mapping):
            if skill.layer == SkillLayer.ATOMIC and "function" in implementation:
                return await self._run_atomic(skill, params, implementation["function"])
            if skill.layer == SkillLayer.COMMAND and "command" in implementation:
                return await self._run_command(skill, params, ctx, usage, implementation)
            if skill.layer == SkillLayer.WORKFLOW and "steps" in implementation:
                return await self._run_workflow(skill, params, usage, implementation)
        return implementation

    async def _call_extension(self, extension: Extension, value: Any) -> Any:
        try:
            return await call_function(extension.implementation, value)
        except Exception as e:
            logger.exception("Extension %s failed", extension.id)
            raise ExecutionFailure(
                ExecutionErrorType.RUNTIME_ERROR,
                "FUNCTION_FAILED",
                f"Extension '{extension.id}' failed: {e}",
                details={"extension_id": extension.id, "exception": type(e).__name__},
            ) from e

    # ------------------------------------------------------------------
    # Tier 1
    # ------------------------------------------------------------------

    async def _run_atomic(
        self,
        skill: SkillDefinition,
        params: Dict[str, Any],
        function_name: Optional[str] = None,
    ) -> Any:
        name = function_name or skill.name
        fn = self._functions.get(name)
        if fn is None:
            if function_name is not None:
                raise ExecutionFailure(
                    ExecutionErrorType.RUNTIME_ERROR,
                    "FUNCTION_FAILED",
                    f"No atomic function registered as '{function_name}'",
                )
            return {
                "result": f"Executed {skill.name}",
                "acknowledged": True,
                "parameters": params,
            }
        try:
            value = await call_function(fn, params)
        except Exception as e:
            raise ExecutionFailure(
                ExecutionErrorType.RUNTIME_ERROR,
                "FUNCTION_FAILED",
                f"Function '{name}' failed: {e}",
                details={"function": name, "exception": type(e).__name__},
            ) from e
        return {"result": value}

    # ------------------------------------------------------------------
    # Tier 2
    # ------------------------------------------------------------------

    def _command_request(
        self,
        skill: SkillDefinition,
        params: Dict[str, Any],
        ctx: InvocationContext,
        request: Optional[Mapping[str, Any]],
    ) -> Tuple[str, List[str]]:
        if request is not None:
            command, args = request.get("command"), request.get("args")
        elif ctx.command:
            command, args = ctx.command, ctx.args
        elif params.get("command"):
            command, args = params["command"], params.get("args")
        else:
            command, args = skill.invocation_spec.execution_context.entrypoint, None

        if args is not None and not isinstance(args, (str, list, tuple)):
            raise ExecutionFailure(
                ExecutionErrorType.VALIDATION_ERROR,
                "INVALID_COMMAND",
                "Command args must be a string or a list",
            )
        if isinstance(args, str):
            args = self._split_command(args)
        args = [str(a) for a in (args or [])]
        if command and not args:
            parts = self._split_command(str(command))
            command, args = (parts[0], parts[1:]) if parts else (None, [])

        if not command or not str(command).strip():
            raise ExecutionFailure(
                ExecutionErrorType.VALIDATION_ERROR,
                "MISSING_COMMAND",
                f"No command given for layer 2 skill '{skill.id}'",
                suggestions=[
                    "Pass 'command' in the input or context, or set execution_context.entrypoint"
                ],
            )
        return str(command), args

    @staticmethod
    def _split_command(text: str) -> List[str]:
        try:
            return shlex.split(text)
        except ValueError as e:
            raise ExecutionFailure(
                ExecutionErrorType.VALIDATION_ERROR,
                "INVALID_COMMAND",
                f"Cannot parse command line {text!r}: {e}",
            ) from e

    async def _run_command(
        self,
        skill: SkillDefinition,
        params: Dict[str, Any],
        ctx: InvocationContext,
        usage: ResourceUsage,
        request: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        command, args = self._command_request(skill, params, ctx, request)
        files = params.get("files") or {}
        if not isinstance(files, Mapping):
            raise ExecutionFailure(
                ExecutionErrorType.VALIDATION_ERROR,
                "INVALID_INPUT",
                "'files' must be an object mapping paths to contents",
                details={"parameter": "files"},
            )

        exec_context = skill.invocation_spec.execution_context
        security = exec_context.security
        limits = self._resource_limits(skill)

        allowed = list(security.allowed_commands) if security else []
        if not allowed:
            allowed = list(self._config.allowed_commands)

        async with self._sandboxes.session(
            allowed_commands=allowed,
            allowed_paths=list(security.allowed_paths) if security else [],
            environment={**exec_context.environment, **ctx.environment},
            max_memory=limits.max_memory,
            max_cpu=limits.max_cpu,
            max_duration=limits.max_duration,
            max_file_size=limits.max_file_size,
        ) as sandbox:
            for path, content in files.items():
                sandbox.write_file(str(path), str(content))

            result = await self._sandboxes.run(sandbox, command, args, usage=usage)
            if result.exit_code != 0:
                raise ExecutionFailure(
                    ExecutionErrorType.RUNTIME_ERROR,
                    "COMMAND_FAILED",
                    f"Command '{command}' exited with code {result.exit_code}",
                    details={
                        "exit_code": result.exit_code,
                        "stdout": result.stdout,
                        "stderr": result.stderr,
                    },
                )
            return {
                "stdout": result.stdout,
                "stderr": result.stderr,
                "exit_code": result.exit_code,
                "duration_ms": result.duration_ms,
                "sandbox_id": sandbox.id,
            }

    # ------------------------------------------------------------------
    # Tier 3
    # ------------------------------------------------------------------

    async def _run_workflow(
        self,
        skill: SkillDefinition,
        params: Dict[str, Any],
        usage: ResourceUsage,
        request: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        source: Mapping[str, Any] = request if request is not None else params
        raw_steps = source.get("steps") or [
            {
                "id": "call",
                "type": "api_call",
                "config": {"endpoint": skill.id, "payload": params},
            }
        ]
        error_handling = source.get("error_handling", "fail_fast")
        if error_handling not in ERROR_HANDLING_MODES:
            raise ExecutionFailure(
                ExecutionErrorType.VALIDATION_ERROR,
                "INVALID_WORKFLOW",
                f"error_handling must be one of {list(ERROR_HANDLING_MODES)}",
            )
        if not isinstance(raw_steps, (list, tuple)):
            raise ExecutionFailure(
                ExecutionErrorType.VALIDATION_ERROR,
                "INVALID_WORKFLOW",
                "Workflow steps must be a list",
            )
        try:
            steps = [
                s if isinstance(s, WorkflowStep) else WorkflowStep.model_validate(s)
                for s in raw_steps
            ]
        except ValidationError as e:
            raise ExecutionFailure(
                ExecutionErrorType.VALIDATION_ERROR,
                "INVALID_WORKFLOW",
                f"Invalid workflow steps: {e}",
            ) from e

        result = await self._workflows.run(
            steps,
            params,
            error_handling=error_handling,
            usage=usage,
            limits=self._resource_limits(skill),
        )
        if not result.success:
            raise ExecutionFailure(
                ExecutionErrorType.RUNTIME_ERROR,
                "WORKFLOW_FAILED",
                f"Workflow of '{skill.id}' failed in {len(result.errors)} step(s)",
                details={
                    "step_errors": result.errors,
                    "completed_steps": result.completed,
                    "outputs": result.outputs,
                },
            )
        return {
            "result": result.last_output,
            "steps": result.outputs,
            "completed_steps": result.completed,
        }

    def _resource_limits(self, skill: SkillDefinition) -> ResourceConstraint:
        """The skill's declared envelope, with tier defaults filling the gaps."""
        declared = skill.invocation_spec.execution_context.resources or ResourceConstraint()
        defaults = self._config.defaults_for(skill.layer)
        return ResourceConstraint(
            max_memory=declared.max_memory or defaults.max_memory,
            max_cpu=declared.max_cpu or defaults.max_cpu_ms,
            max_duration=declared.max_duration,
            max_file_size=declared.max_file_size or defaults.max_file_size,
        )
