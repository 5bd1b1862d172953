"""
Exceptions raised by the registry, the extension manager and the composer.

Execution failures are never raised; the engine returns them as data
(see ``skillstack.execution.models.ExecutionError``).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Sequence

if TYPE_CHECKING:
    from .skills.models import ValidationIssue


class SkillStackError(Exception):
    """Base class for all rejected operations."""


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class _IssueCarrier(SkillStackError):
    def __init__(
        self, message: str, errors: Optional[Sequence[ValidationIssue]] = None
    ) -> None:
        super().__init__(message)
        self.errors: List[ValidationIssue] = list(errors or [])

    @property
    def codes(self) -> List[str]:
        return [e.code for e in self.errors]


class StructuralValidationError(_IssueCarrier):
    """The skill definition is malformed."""


class LayerRuleViolation(_IssueCarrier):
    """The skill breaks a tier rule (e.g. tier 2 must be sandboxed)."""


class SkillConflictError(SkillStackError):
    """Id or (name, layer) collision."""


class SkillNotFoundError(SkillStackError):
    def __init__(self, skill_id: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Skill not found: {skill_id}")
        self.skill_id = skill_id


class SkillDependencyError(SkillStackError):
    """Removing a skill would orphan the skills that depend on it."""

    def __init__(self, skill_id: str, dependents: Sequence[str]) -> None:
        super().__init__(
            f"Cannot unregister '{skill_id}': required by {sorted(dependents)}"
        )
        self.skill_id = skill_id
        self.dependents = list(dependents)


# ---------------------------------------------------------------------------
# Extensions and composition
# ---------------------------------------------------------------------------


class ExtensionValidationError(_IssueCarrier):
    """The extension was rejected by ``validate_extension``."""


class ExtensionNotFoundError(SkillStackError):
    def __init__(self, extension_id: str) -> None:
        super().__init__(f"Extension not found: {extension_id}")
        self.extension_id = extension_id


class CompositionError(SkillStackError):
    """Skills cannot be composed (missing member, non-adjacent layers...)."""
