"""
Skill definitions, validation, storage and the registry.
"""

from .models import (
    Dependency,
    ExecutionContext,
    ExtensionPoint,
    InvocationSpec,
    Parameter,
    ResourceConstraint,
    SecurityContext,
    SkillDefinition,
    SkillLayer,
    SkillMetadata,
    SkillQuery,
    ValidationIssue,
    ValidationResult,
)
from .registry import SkillRegistry, check_layer_rules
from .stores import InMemorySkillStore, SkillStore
from .templates import clone_skill, create_skill_template
from .validation import JsonSchemaSkillValidator, SkillValidator

__all__ = [
    "SkillDefinition",
    "SkillLayer",
    "SkillMetadata",
    "SkillQuery",
    "InvocationSpec",
    "ExecutionContext",
    "ResourceConstraint",
    "SecurityContext",
    "Parameter",
    "Dependency",
    "ExtensionPoint",
    "ValidationIssue",
    "ValidationResult",
    "SkillRegistry",
    "check_layer_rules",
    "SkillStore",
    "InMemorySkillStore",
    "SkillValidator",
    "JsonSchemaSkillValidator",
    "create_skill_template",
    "clone_skill",
]
