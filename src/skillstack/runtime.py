"""
SkillRuntime: The facade outer layers (UI, CLI, sync) talk to.

Wires one registry, extension manager and execution engine around a shared
config, validator and event bus.
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Sequence, Union

from .config import RuntimeConfig
from .events import EventBus, EventObserver
from .execution.engine import ExecutionEngine
from .execution.functions import AtomicFunction, FunctionRegistry, register_builtin_functions
from .execution.models import ExecutionResult, InvocationContext
from .execution.sandbox import CommandHandler, SandboxManager
from .extensions.manager import ExtensionInput, ExtensionManager
from .extensions.models import Extension
from .skills.models import SkillDefinition, SkillQuery, ValidationResult
from .skills.registry import SkillInput, SkillRegistry
from .skills.stores import SkillStore
from .skills.validation import JsonSchemaSkillValidator, SkillValidator

logger = logging.getLogger(__name__)


class SkillRuntime:
    def __init__(
        self,
        config: Optional[RuntimeConfig] = None,
        *,
        store: Optional[SkillStore] = None,
        validator: Optional[SkillValidator] = None,
        events: Optional[EventBus] = None,
        builtin_functions: bool = True,
    ) -> None:
        self.config = config or RuntimeConfig()
        self.events = events or EventBus()
        self.validator = validator or JsonSchemaSkillValidator(
            validate_examples=self.config.validate_examples
        )
        self.registry = SkillRegistry(
            store, validator=self.validator, events=self.events, config=self.config
        )
        self.extensions = ExtensionManager(
            self.registry, config=self.config, events=self.events
        )

        functions = FunctionRegistry()
        if builtin_functions:
            register_builtin_functions(functions)
        self.engine = ExecutionEngine(
            self.registry,
            self.extensions,
            config=self.config,
            events=self.events,
            functions=functions,
            sandboxes=SandboxManager(root=self.config.sandbox_root),
            validator=self.validator,
        )
        logger.debug(
            "SkillRuntime ready (tie_break=%s, builtin_functions=%s)",
            self.config.tie_break.value,
            builtin_functions,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], **kwargs: Any) -> "SkillRuntime":
        return cls(RuntimeConfig.from_dict(data), **kwargs)

    # -- skills ---------------------------------------------------------

    async def register(self, skill: SkillInput) -> ValidationResult:
        return await self.registry.register(skill)

    async def discover(
        self, query: Optional[Union[SkillQuery, Mapping[str, Any]]] = None, **filters: Any
    ) -> List[SkillDefinition]:
        return await self.registry.discover(query, **filters)

    async def resolve(self, skill_id: str) -> SkillDefinition:
        return await self.registry.resolve(skill_id)

    def validate(self, skill: SkillInput) -> ValidationResult:
        return self.registry.validate(skill)

    # -- extensions -----------------------------------------------------

    async def extend(self, base_skill_id: str, extension: ExtensionInput) -> str:
        return await self.extensions.extend(base_skill_id, extension)

    async def compose(self, skill_ids: Sequence[str]) -> SkillDefinition:
        return await self.extensions.compose(skill_ids)

    def get_routed_extension(self, base_skill_id: str) -> Optional[Extension]:
        return self.extensions.get_routed_extension(base_skill_id)

    # -- execution ------------------------------------------------------

    async def execute(
        self,
        skill_id: str,
        input: Optional[Mapping[str, Any]] = None,
        context: Optional[Union[InvocationContext, Mapping[str, Any]]] = None,
    ) -> ExecutionResult:
        return await self.engine.execute(skill_id, input, context)

    def register_function(self, name: str, fn: AtomicFunction) -> None:
        self.engine.functions.register(name, fn)

    def register_command(self, name: str, handler: CommandHandler) -> None:
        self.engine.sandboxes.register_command(name, handler)

    def subscribe(self, observer: EventObserver) -> None:
        self.events.subscribe(observer)
