"""
Skill Registry: The authoritative store of skill definitions.

Handles registration, discovery, whole-value updates and removal while
enforcing identity (unique id), naming (unique name per layer) and tier
rules. Definitions are copied on the way in and on the way out, so callers
never hold a reference to stored state.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from ..config import RuntimeConfig
from ..errors import (
    LayerRuleViolation,
    SkillConflictError,
    SkillDependencyError,
    SkillNotFoundError,
    StructuralValidationError,
)
from ..events import EventBus
from .models import (
    SkillDefinition,
    SkillDependencyType,
    SkillLayer,
    SkillQuery,
    ValidationIssue,
    ValidationResult,
    ValidationSeverity,
)
from .stores import InMemorySkillStore, SkillStore
from .validation import JsonSchemaSkillValidator, SkillValidator

logger = logging.getLogger(__name__)

SkillInput = Union[SkillDefinition, Mapping[str, Any]]
UnregisterHook = Callable[[str], Awaitable[None]]

# Tier-3 skills talk to remote APIs and need room to do so.
LAYER3_MIN_TIMEOUT_MS = 5000


def check_layer_rules(skill: SkillDefinition) -> ValidationResult:
    """Tier rules applied on top of structural validation."""
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []
    context = skill.invocation_spec.execution_context

    if skill.layer == SkillLayer.ATOMIC:
        if skill.is_sandboxed:
            warnings.append(
                ValidationIssue(
                    code="LAYER1_SANDBOX_WARNING",
                    message="Layer 1 skills typically do not require sandboxing",
                    path="invocation_spec.execution_context.security.sandboxed",
                    severity=ValidationSeverity.WARNING,
                )
            )
    elif skill.layer == SkillLayer.COMMAND:
        if not skill.is_sandboxed:
            errors.append(
                ValidationIssue(
                    code="LAYER2_SANDBOX_REQUIRED",
                    message="Layer 2 skills must be sandboxed for security",
                    path="invocation_spec.execution_context.security.sandboxed",
                    suggestions=["Set execution_context.security.sandboxed to true"],
                )
            )
    elif skill.layer == SkillLayer.WORKFLOW:
        if context.timeout is None or context.timeout < LAYER3_MIN_TIMEOUT_MS:
            warnings.append(
                ValidationIssue(
                    code="LAYER3_TIMEOUT_WARNING",
                    message="Layer 3 skills typically need longer timeout for API calls",
                    path="invocation_spec.execution_context.timeout",
                    severity=ValidationSeverity.WARNING,
                    suggestions=[f"Use a timeout of at least {LAYER3_MIN_TIMEOUT_MS}ms"],
                )
            )

    return ValidationResult.from_issues(errors, warnings)


def _messages(issues: List[ValidationIssue]) -> str:
    return ", ".join(i.message for i in issues)


class SkillRegistry:
    """In-memory registry with identity, naming and dependency invariants."""

    def __init__(
        self,
        store: Optional[SkillStore] = None,
        *,
        validator: Optional[SkillValidator] = None,
        events: Optional[EventBus] = None,
        config: Optional[RuntimeConfig] = None,
    ) -> None:
        self._config = config or RuntimeConfig()
        self._store = store or InMemorySkillStore()
        self._validator = validator or JsonSchemaSkillValidator(
            validate_examples=self._config.validate_examples
        )
        self._events = events or EventBus()
        self._lock = asyncio.Lock()
        self._unregister_hooks: List[UnregisterHook] = []

    @property
    def validator(self) -> SkillValidator:
        return self._validator

    def add_unregister_hook(self, hook: UnregisterHook) -> None:
        """Call ``hook(skill_id)`` for every skill removed by ``unregister``.

        Hooks run before the removal events are published, so state keyed
        by the skill id is gone by the time observers hear about it.
        """
        self._unregister_hooks.append(hook)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _coerce(skill: SkillInput) -> SkillDefinition:
        if isinstance(skill, SkillDefinition):
            return skill.model_copy(deep=True)
        try:
            return SkillDefinition.model_validate(skill)
        except ValidationError as e:
            issues = [
                ValidationIssue(
                    code="INVALID_STRUCTURE",
                    message=f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}",
                    path=".".join(str(p) for p in err["loc"]),
                )
                for err in e.errors()
            ]
            raise StructuralValidationError(
                f"Skill validation failed: {_messages(issues)}", issues
            ) from e

    def validate(self, skill: SkillInput) -> ValidationResult:
        """Pre-flight validation. Applies exactly the rules ``register`` applies."""
        try:
            definition = self._coerce(skill)
        except StructuralValidationError as e:
            return ValidationResult.from_issues(e.errors)
        structural = self._validator.validate_skill_definition(definition)
        return structural.merge(check_layer_rules(definition))

    def _validate_or_raise(self, definition: SkillDefinition) -> ValidationResult:
        structural = self._validator.validate_skill_definition(definition)
        if not structural.valid:
            raise StructuralValidationError(
                f"Skill validation failed: {_messages(structural.errors)}",
                structural.errors,
            )
        layer_rules = check_layer_rules(definition)
        if not layer_rules.valid:
            raise LayerRuleViolation(
                f"Skill validation failed: {_messages(layer_rules.errors)}",
                layer_rules.errors,
            )
        result = structural.merge(layer_rules)
        for warning in result.warnings:
            logger.warning(
                "Skill %s: %s (%s)", definition.id, warning.message, warning.code
            )
        return result

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def register(self, skill: SkillInput) -> ValidationResult:
        """Register a new skill.

        Returns:
            The ValidationResult, whose warnings never block registration.

        Raises:
            StructuralValidationError: the definition is malformed
            LayerRuleViolation: a tier rule is broken
            SkillConflictError: id or (name, layer) is already taken
        """
        definition = self._coerce(skill)
        result = self._validate_or_raise(definition)

        async with self._lock:
            if await self._store.get(definition.id) is not None:
                raise SkillConflictError(
                    f"Skill with ID '{definition.id}' already exists. "
                    "Use update() to modify existing skills."
                )
            if await self._store.find_by_name(definition.name, definition.layer) is not None:
                raise SkillConflictError(
                    f"Skill with name '{definition.name}' already exists in layer "
                    f"{definition.layer}. Skill names must be unique within each layer."
                )
            await self._store.add(definition)

        logger.info("Registered skill %s (layer %s)", definition.id, definition.layer)
        await self._events.publish(
            "skill_registered",
            skill_id=definition.id,
            layer=definition.layer,
            warnings=result.warning_codes,
        )
        return result

    async def update(self, skill_id: str, skill: SkillInput) -> ValidationResult:
        """Replace a stored definition as a whole value."""
        definition = self._coerce(skill)
        if definition.id != skill_id:
            raise SkillConflictError(
                f"Cannot change skill id from '{skill_id}' to '{definition.id}'"
            )
        result = self._validate_or_raise(definition)
        definition.metadata.updated = datetime.now(timezone.utc)

        async with self._lock:
            existing = await self._store.get(skill_id)
            if existing is None:
                raise SkillNotFoundError(skill_id)
            clash = await self._store.find_by_name(definition.name, definition.layer)
            if clash is not None and clash.id != skill_id:
                raise SkillConflictError(
                    f"Skill with name '{definition.name}' already exists in layer "
                    f"{definition.layer}."
                )
            await self._store.replace(definition)

        logger.info("Updated skill %s", skill_id)
        await self._events.publish(
            "skill_updated", skill_id=skill_id, layer=definition.layer
        )
        return result

    async def unregister(self, skill_id: str, *, cascade: bool = False) -> List[str]:
        """Remove a skill.

        Refuses while other skills depend on it unless ``cascade`` is set,
        in which case dependents are removed first (transitively).

        Returns:
            Ids of every removed skill, dependents first.
        """
        async with self._lock:
            if await self._store.get(skill_id) is None:
                raise SkillNotFoundError(skill_id)

            all_skills = await self._store.list_skills()
            dependents = self._dependents_of(skill_id, all_skills)
            if dependents and not cascade:
                raise SkillDependencyError(skill_id, dependents)

            removal_order = self._transitive_dependents(skill_id, all_skills)
            removal_order.append(skill_id)
            for sid in removal_order:
                await self._store.delete(sid)

        for sid in removal_order:
            for hook in self._unregister_hooks:
                await hook(sid)
            logger.info("Unregistered skill %s", sid)
            await self._events.publish("skill_unregistered", skill_id=sid)
        return removal_order

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def resolve(self, skill_id: str) -> SkillDefinition:
        skill = await self._store.get(skill_id)
        if skill is None:
            raise SkillNotFoundError(skill_id)
        return skill.model_copy(deep=True)

    async def exists(self, skill_id: str) -> bool:
        return await self._store.get(skill_id) is not None

    async def discover(
        self,
        query: Optional[Union[SkillQuery, Mapping[str, Any]]] = None,
        **filters: Any,
    ) -> List[SkillDefinition]:
        """Find skills matching every set field of the query."""
        if query is None:
            query = SkillQuery(**filters)
        elif not isinstance(query, SkillQuery):
            query = SkillQuery(**{**dict(query), **filters})

        limit = query.limit if query.limit is not None else self._config.discover_default_limit
        matches = [s for s in await self._store.list_skills() if query.matches(s)]
        window = matches[query.offset : query.offset + limit]
        return [s.model_copy(deep=True) for s in window]

    async def search(self, term: str) -> List[SkillDefinition]:
        """Substring search over name, description and tags."""
        needle = term.lower()
        return [
            s.model_copy(deep=True)
            for s in await self._store.list_skills()
            if needle in s.name.lower()
            or needle in s.description.lower()
            or any(needle in tag.lower() for tag in s.metadata.tags)
        ]

    async def list_skills(self) -> List[SkillDefinition]:
        return [s.model_copy(deep=True) for s in await self._store.list_skills()]

    async def count(self) -> int:
        return len(await self._store.list_skills())

    async def get_by_layer(self, layer: int) -> List[SkillDefinition]:
        return [
            s.model_copy(deep=True) for s in await self._store.list_skills(layer=layer)
        ]

    async def get_dependent_skills(self, skill_id: str) -> List[SkillDefinition]:
        all_skills = await self._store.list_skills()
        dependents = set(self._dependents_of(skill_id, all_skills))
        return [s.model_copy(deep=True) for s in all_skills if s.id in dependents]

    async def check_conflicts(self, skill: SkillInput) -> List[str]:
        """Advisory pre-flight check. Never raises on a conflict."""
        definition = self._coerce(skill)
        conflicts: List[str] = []

        if await self._store.get(definition.id) is not None:
            conflicts.append(f"Skill ID '{definition.id}' already exists")

        if await self._store.find_by_name(definition.name, definition.layer) is not None:
            conflicts.append(
                f"Skill name '{definition.name}' already exists in layer {definition.layer}"
            )

        for dep in definition.dependencies:
            if dep.type != SkillDependencyType.SKILL or dep.optional:
                continue
            if await self._store.get(dep.id) is None:
                conflicts.append(f"Required skill dependency '{dep.id}' not found")

        return conflicts

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _dependents_of(skill_id: str, skills: List[SkillDefinition]) -> List[str]:
        return [
            s.id
            for s in skills
            if s.id != skill_id and any(dep.id == skill_id for dep in s.dependencies)
        ]

    def _transitive_dependents(
        self, skill_id: str, skills: List[SkillDefinition]
    ) -> List[str]:
        """Dependents of ``skill_id``, deepest first."""
        order: List[str] = []
        visited: Dict[str, bool] = {skill_id: True}

        def visit(sid: str) -> None:
            for dependent in self._dependents_of(sid, skills):
                if dependent in visited:
                    continue
                visited[dependent] = True
                visit(dependent)
                order.append(dependent)

        visit(skill_id)
        return order
