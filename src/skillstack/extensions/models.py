"""
Pydantic models for skill extensions, conflicts and conflict resolutions.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field


class ExtensionType(str, Enum):
    OVERRIDE = "override"
    COMPOSE = "compose"
    DECORATE = "decorate"


class ConflictType(str, Enum):
    PRIORITY_CONFLICT = "priority_conflict"
    INTERFACE_CONFLICT = "interface_conflict"
    DEPENDENCY_CONFLICT = "dependency_conflict"


class ConflictSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ResolutionStrategy(str, Enum):
    PRIORITY_BASED = "priority_based"
    USER_CHOICE = "user_choice"
    AUTOMATIC = "automatic"
    DISABLE_CONFLICTING = "disable_conflicting"


class Extension(BaseModel):
    """A prioritized override/compose/decorate attachment to a base skill.

    ``type`` and ``priority`` are loosely typed so that ``validate_extension``
    can report INVALID_TYPE / INVALID_PRIORITY instead of failing at
    construction time.
    """

    id: str = Field(default="")
    base_skill_id: str = Field(default="")
    name: str = Field(default="")
    version: str = Field(default="")
    type: Any = Field(default=ExtensionType.OVERRIDE, description="override | compose | decorate")
    implementation: Any = Field(default=None, description="Opaque payload")
    priority: Any = Field(default=50, description="Conventionally 0-100")
    description: Optional[str] = None
    author: Optional[str] = None
    dependencies: List[Any] = Field(default_factory=list)

    # Maintained by the ExtensionManager.
    active: bool = Field(default=True)
    registered_at: Optional[datetime] = None
    sequence: int = Field(default=0, description="Monotonic registration order")

    @property
    def extension_type(self) -> ExtensionType:
        return ExtensionType(self.type)

    def stamp(self, sequence: int) -> None:
        self.sequence = sequence
        self.registered_at = datetime.now(timezone.utc)


class Conflict(BaseModel):
    """A detected inconsistency between extensions on one base skill.

    Derived on demand and never persisted.
    """

    type: ConflictType
    base_skill_id: str
    extensions: List[Extension]
    description: str
    severity: ConflictSeverity

    @property
    def extension_ids(self) -> List[str]:
        return [e.id for e in self.extensions]


class Resolution(BaseModel):
    conflict_id: str
    strategy: ResolutionStrategy
    selected_extensions: List[str] = Field(default_factory=list)
    reasoning: str = ""
