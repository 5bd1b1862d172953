"""
Pydantic models for skill definitions.

Defines SkillDefinition (the declarative, versioned unit of capability),
its invocation contract, the discovery query, and the ValidationResult
shared by the registry, the validator and the extension manager.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SkillLayer(IntEnum):
    """The three fixed execution tiers."""

    ATOMIC = 1
    COMMAND = 2
    WORKFLOW = 3


class SkillExtensionType(str, Enum):
    """Kinds of extension point a skill can declare."""

    OVERRIDE = "override"
    COMPOSE = "compose"
    DECORATE = "decorate"
    HOOK = "hook"


class SkillDependencyType(str, Enum):
    SKILL = "skill"
    LIBRARY = "library"
    TOOL = "tool"
    SERVICE = "service"


class ValidationSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


# ---------------------------------------------------------------------------
# Invocation contract
# ---------------------------------------------------------------------------


class ResourceConstraint(BaseModel):
    """Resource envelope declared by a skill."""

    max_memory: Optional[int] = Field(default=None, description="Bytes")
    max_cpu: Optional[int] = Field(default=None, description="CPU time in ms")
    max_duration: Optional[int] = Field(default=None, description="Wall time in ms")
    max_file_size: Optional[int] = Field(default=None, description="Bytes")


class SecurityContext(BaseModel):
    """Permissions requested by a skill."""

    sandboxed: bool = Field(default=False)
    allowed_paths: List[str] = Field(default_factory=list)
    allowed_network_hosts: List[str] = Field(default_factory=list)
    allowed_commands: List[str] = Field(
        default_factory=list,
        description="Command allow-list for tier-2 sandboxes (empty = runtime default)",
    )


class ExecutionContext(BaseModel):
    """How and where a skill runs."""

    environment: Dict[str, str] = Field(default_factory=dict)
    working_directory: Optional[str] = None
    timeout: Optional[int] = Field(default=None, description="Timeout in ms")
    resources: Optional[ResourceConstraint] = None
    security: Optional[SecurityContext] = None
    entrypoint: Optional[str] = Field(
        default=None,
        description="Command run by a tier-2 skill when the call does not name one",
    )


class Parameter(BaseModel):
    """A named input accepted by a skill."""

    name: str
    type: str = Field(default="string")
    description: str = Field(default="")
    required: bool = Field(default=False)
    default_value: Any = None
    validation: Optional[Dict[str, Any]] = Field(
        default=None, description="JSON schema applied to this parameter's value"
    )


class Example(BaseModel):
    name: str
    description: str = ""
    input: Any = None
    expected_output: Any = None


class InvocationSpec(BaseModel):
    """The contract for invoking a skill."""

    input_schema: Dict[str, Any] = Field(default_factory=lambda: {"type": "object"})
    output_schema: Dict[str, Any] = Field(default_factory=lambda: {"type": "object"})
    execution_context: ExecutionContext = Field(default_factory=ExecutionContext)
    parameters: List[Parameter] = Field(default_factory=list)
    examples: List[Example] = Field(default_factory=list)


class ExtensionPoint(BaseModel):
    id: str
    name: str
    description: str = ""
    type: SkillExtensionType = SkillExtensionType.HOOK
    interface: Dict[str, Any] = Field(default_factory=dict)
    required: bool = False


class Dependency(BaseModel):
    id: str
    name: str = ""
    version: str = ""
    type: SkillDependencyType = SkillDependencyType.SKILL
    optional: bool = False
    source: Optional[str] = None


class SkillMetadata(BaseModel):
    author: str = ""
    created: datetime = Field(default_factory=_utcnow)
    updated: datetime = Field(default_factory=_utcnow)
    tags: List[str] = Field(default_factory=list)
    category: str = ""
    license: Optional[str] = None
    documentation: Optional[str] = None
    repository: Optional[str] = None


# ---------------------------------------------------------------------------
# SkillDefinition (top-level)
# ---------------------------------------------------------------------------


class SkillDefinition(BaseModel):
    """Declarative, versioned skill definition.

    Construction is permissive: an empty id or an unknown layer still builds
    a model so the validator can report the problem with a code.
    """

    id: str = Field(description="Registry-wide unique id ([A-Za-z0-9_-]+)")
    name: str = Field(description="Unique within its layer")
    version: str = Field(default="1.0.0", description="Semantic version")
    layer: int = Field(description="Execution tier: 1, 2 or 3")
    description: str = Field(default="")
    invocation_spec: InvocationSpec = Field(default_factory=InvocationSpec)
    extension_points: List[ExtensionPoint] = Field(default_factory=list)
    dependencies: List[Dependency] = Field(default_factory=list)
    metadata: SkillMetadata = Field(default_factory=SkillMetadata)

    @property
    def security(self) -> Optional[SecurityContext]:
        return self.invocation_spec.execution_context.security

    @property
    def is_sandboxed(self) -> bool:
        security = self.security
        return bool(security and security.sandboxed)

    def required_parameters(self) -> List[str]:
        return [p.name for p in self.invocation_spec.parameters if p.required]


# ---------------------------------------------------------------------------
# Discovery and validation
# ---------------------------------------------------------------------------


class SkillQuery(BaseModel):
    """Discovery filter. All set fields must match (AND)."""

    name: Optional[str] = Field(default=None, description="Case-insensitive substring")
    layer: Optional[int] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = Field(default=None, description="Any-match")
    author: Optional[str] = None
    description: Optional[str] = Field(
        default=None, description="Case-insensitive substring"
    )
    limit: Optional[int] = Field(default=None, ge=0)
    offset: int = Field(default=0, ge=0)

    def matches(self, skill: SkillDefinition) -> bool:
        if self.name and self.name.lower() not in skill.name.lower():
            return False
        if self.layer is not None and skill.layer != self.layer:
            return False
        if self.category and skill.metadata.category != self.category:
            return False
        if self.tags and not any(tag in skill.metadata.tags for tag in self.tags):
            return False
        if self.author and skill.metadata.author != self.author:
            return False
        if self.description and (
            self.description.lower() not in skill.description.lower()
        ):
            return False
        return True


class ValidationIssue(BaseModel):
    """A single validation error or warning."""

    code: str
    message: str
    path: Optional[str] = None
    severity: ValidationSeverity = ValidationSeverity.ERROR
    suggestions: List[str] = Field(default_factory=list)


class ValidationResult(BaseModel):
    """Outcome of validating a skill, an extension or a payload."""

    valid: bool = True
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)

    @classmethod
    def from_issues(
        cls,
        errors: List[ValidationIssue],
        warnings: Optional[List[ValidationIssue]] = None,
    ) -> "ValidationResult":
        return cls(valid=not errors, errors=errors, warnings=list(warnings or []))

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        return ValidationResult.from_issues(
            self.errors + other.errors, self.warnings + other.warnings
        )

    @property
    def error_codes(self) -> List[str]:
        return [e.code for e in self.errors]

    @property
    def warning_codes(self) -> List[str]:
        return [w.code for w in self.warnings]
