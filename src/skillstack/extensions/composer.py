"""
Skill Composer: Merges several registered skills into one definition.

Composition is only allowed between adjacent layers. The composed skill
takes the highest member layer, depends on every member, and namespaces
member parameters and schema properties as ``skill<i>_<name>``.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Sequence

from ..errors import CompositionError, SkillNotFoundError
from ..skills.models import (
    Dependency,
    ExecutionContext,
    ExtensionPoint,
    InvocationSpec,
    Parameter,
    SecurityContext,
    SkillDefinition,
    SkillDependencyType,
    SkillLayer,
    SkillMetadata,
)
from ..skills.registry import SkillRegistry

logger = logging.getLogger(__name__)

COMPOSED_TAG = "composed"


class SkillComposer:
    def __init__(self, registry: SkillRegistry) -> None:
        self._registry = registry

    async def compose(self, skill_ids: Sequence[str]) -> SkillDefinition:
        """Compose the given skills into a new, unregistered definition.

        Raises:
            CompositionError: no ids, a missing member, non-adjacent layers
                or members requiring different versions of one dependency
        """
        if not skill_ids:
            raise CompositionError("At least one skill ID is required for composition")

        member_ids = list(dict.fromkeys(skill_ids))
        skills: List[SkillDefinition] = []
        for skill_id in member_ids:
            try:
                skills.append(await self._registry.resolve(skill_id))
            except SkillNotFoundError:
                raise CompositionError(
                    f"Cannot compose: skill not found: {skill_id}"
                ) from None

        self._check_compatibility(skills)

        names = [s.name for s in skills]
        layer = max(s.layer for s in skills)
        composed = SkillDefinition(
            id=f"composed_{uuid.uuid4().hex}",
            name=" + ".join(names),
            version="1.0.0",
            layer=layer,
            description=f"Composition of skills: {', '.join(names)}",
            invocation_spec=self._merge_invocation_specs(skills, layer),
            extension_points=self._merge_extension_points(skills),
            dependencies=[
                Dependency(
                    id=s.id,
                    name=s.name,
                    version=s.version,
                    type=SkillDependencyType.SKILL,
                    optional=False,
                )
                for s in skills
            ],
            metadata=SkillMetadata(
                author="system",
                tags=self._merge_tags(skills),
                category="composition",
            ),
        )
        logger.info("Composed %s into %s (layer %s)", member_ids, composed.id, layer)
        return composed

    @staticmethod
    def _check_compatibility(skills: List[SkillDefinition]) -> None:
        if len(skills) < 2:
            return

        layers = [s.layer for s in skills]
        if max(layers) - min(layers) > 1:
            raise CompositionError(
                "Cannot compose skills from non-adjacent layers: "
                f"{min(layers)} and {max(layers)}"
            )

        versions: Dict[str, set] = {}
        for skill in skills:
            for dep in skill.dependencies:
                versions.setdefault(dep.id, set()).add(dep.version)
        clashes = [
            f"{dep_id}: {' vs '.join(sorted(v))}"
            for dep_id, v in versions.items()
            if len(v) > 1
        ]
        if clashes:
            raise CompositionError(f"Composition conflicts: {', '.join(clashes)}")

    @staticmethod
    def _merge_invocation_specs(
        skills: List[SkillDefinition], layer: int
    ) -> InvocationSpec:
        input_props: Dict[str, Any] = {}
        required: List[str] = []
        output_props: Dict[str, Any] = {}
        parameters: List[Parameter] = []
        environment: Dict[str, str] = {}
        allowed_commands: List[str] = []
        timeouts: List[int] = []

        for index, skill in enumerate(skills):
            prefix = f"skill{index}_"
            spec = skill.invocation_spec

            for prop, schema in (spec.input_schema.get("properties") or {}).items():
                input_props[prefix + prop] = schema
            required.extend(prefix + r for r in spec.input_schema.get("required") or [])
            for prop, schema in (spec.output_schema.get("properties") or {}).items():
                output_props[prefix + prop] = schema

            for param in spec.parameters:
                parameters.append(param.model_copy(update={"name": prefix + param.name}))

            context = spec.execution_context
            environment.update(context.environment)
            if context.timeout is not None:
                timeouts.append(context.timeout)
            if context.security is not None:
                for command in context.security.allowed_commands:
                    if command not in allowed_commands:
                        allowed_commands.append(command)

        input_schema: Dict[str, Any] = {"type": "object", "properties": input_props}
        if required:
            input_schema["required"] = required

        sandboxed = layer == SkillLayer.COMMAND or any(s.is_sandboxed for s in skills)
        return InvocationSpec(
            input_schema=input_schema,
            output_schema={"type": "object", "properties": output_props},
            execution_context=ExecutionContext(
                environment=environment,
                timeout=max(timeouts) if timeouts else None,
                security=SecurityContext(
                    sandboxed=sandboxed, allowed_commands=allowed_commands
                ),
            ),
            parameters=parameters,
        )

    @staticmethod
    def _merge_extension_points(skills: List[SkillDefinition]) -> List[ExtensionPoint]:
        merged: List[ExtensionPoint] = []
        for index, skill in enumerate(skills):
            for point in skill.extension_points:
                merged.append(
                    point.model_copy(
                        update={
                            "id": f"skill{index}_{point.id}",
                            "name": f"{skill.name} - {point.name}",
                        }
                    )
                )
        return merged

    @staticmethod
    def _merge_tags(skills: List[SkillDefinition]) -> List[str]:
        tags: List[str] = []
        for skill in skills:
            for tag in skill.metadata.tags:
                if tag not in tags:
                    tags.append(tag)
        if COMPOSED_TAG not in tags:
            tags.append(COMPOSED_TAG)
        return tags
