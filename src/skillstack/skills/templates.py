"""
Skill templates: Tier-appropriate starting points for new definitions.

Templates are valid by construction: a layer-2 template is sandboxed and a
layer-3 template carries a timeout long enough for API calls.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..config import RuntimeConfig
from .models import (
    ExecutionContext,
    ExtensionPoint,
    InvocationSpec,
    ResourceConstraint,
    SecurityContext,
    SkillDefinition,
    SkillExtensionType,
    SkillLayer,
    SkillMetadata,
)

_DEFAULT_CATEGORY = {
    SkillLayer.ATOMIC: "atomic",
    SkillLayer.COMMAND: "command",
    SkillLayer.WORKFLOW: "workflow",
}


def generate_skill_id(prefix: str = "skill") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _extension_points(layer: SkillLayer) -> List[ExtensionPoint]:
    points = [
        ExtensionPoint(
            id="pre-execution",
            name="Pre-execution Hook",
            description="Called before skill execution",
            type=SkillExtensionType.HOOK,
            interface={
                "type": "object",
                "properties": {"params": {"type": "object"}, "context": {"type": "object"}},
            },
        ),
        ExtensionPoint(
            id="post-execution",
            name="Post-execution Hook",
            description="Called after skill execution",
            type=SkillExtensionType.HOOK,
            interface={
                "type": "object",
                "properties": {"result": {"type": "object"}, "context": {"type": "object"}},
            },
        ),
    ]
    if layer == SkillLayer.ATOMIC:
        points.append(
            ExtensionPoint(
                id="function-override",
                name="Function Override",
                description="Replace the atomic function",
                type=SkillExtensionType.OVERRIDE,
            )
        )
    elif layer == SkillLayer.COMMAND:
        points.append(
            ExtensionPoint(
                id="command-decorator",
                name="Command Decorator",
                description="Post-process command output",
                type=SkillExtensionType.DECORATE,
            )
        )
    else:
        points.append(
            ExtensionPoint(
                id="workflow-composition",
                name="Workflow Composition",
                description="Add steps to the workflow",
                type=SkillExtensionType.COMPOSE,
            )
        )
    return points


def create_skill_template(
    layer: int,
    *,
    skill_id: Optional[str] = None,
    name: Optional[str] = None,
    version: str = "1.0.0",
    description: str = "",
    author: str = "",
    tags: Optional[List[str]] = None,
    category: Optional[str] = None,
    config: Optional[RuntimeConfig] = None,
) -> SkillDefinition:
    """Build a new definition with tier defaults from ``config``."""
    tier = SkillLayer(layer)
    config = config or RuntimeConfig()
    defaults = config.defaults_for(tier)
    sandboxed = tier != SkillLayer.ATOMIC

    return SkillDefinition(
        id=skill_id or generate_skill_id(),
        name=name or f"Layer {tier.value} Skill",
        version=version,
        layer=tier.value,
        description=description,
        invocation_spec=InvocationSpec(
            output_schema={
                "type": "object",
                "properties": {"result": {}},
            },
            execution_context=ExecutionContext(
                timeout=defaults.timeout_ms,
                resources=ResourceConstraint(
                    max_memory=defaults.max_memory,
                    max_cpu=defaults.max_cpu_ms,
                    max_duration=defaults.timeout_ms,
                    max_file_size=defaults.max_file_size,
                ),
                security=SecurityContext(
                    sandboxed=sandboxed,
                    allowed_paths=["/tmp", "/var/tmp"] if tier == SkillLayer.COMMAND else [],
                    allowed_commands=(
                        list(config.allowed_commands) if tier == SkillLayer.COMMAND else []
                    ),
                ),
            ),
        ),
        extension_points=_extension_points(tier),
        metadata=SkillMetadata(
            author=author,
            tags=list(tags or []),
            category=category or _DEFAULT_CATEGORY[tier],
        ),
    )


def clone_skill(source: SkillDefinition, **overrides: Any) -> SkillDefinition:
    """Deep-copy a definition with a fresh id and timestamps.

    ``overrides`` may set top-level fields (id, name, version, description,
    layer) and metadata fields (author, tags, category).
    """
    cloned = source.model_copy(deep=True)
    metadata_fields = {"author", "tags", "category"}

    top_level: Dict[str, Any] = {}
    for key, value in overrides.items():
        if key in metadata_fields:
            setattr(cloned.metadata, key, value)
        elif key in SkillDefinition.model_fields:
            top_level[key] = value
        else:
            raise ValueError(f"Unknown override: {key}")

    top_level.setdefault("id", generate_skill_id())
    now = datetime.now(timezone.utc)
    cloned.metadata.created = now
    cloned.metadata.updated = now
    return cloned.model_copy(update=top_level)
