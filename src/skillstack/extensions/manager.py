"""
Extension Manager: Tracks extensions per base skill and routes calls.

Each base skill has at most one routed extension: the highest-priority
active extension, ties broken by the configured TieBreakPolicy. Routing is
recomputed after every mutation of a base's extension set and cached, so
``get_routed_extension`` is a dictionary lookup.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from ..config import RuntimeConfig, TieBreakPolicy
from ..errors import ExtensionNotFoundError, ExtensionValidationError, SkillNotFoundError
from ..events import EventBus
from ..skills.models import SkillDefinition, ValidationIssue, ValidationResult
from ..skills.registry import SkillRegistry
from ..skills.validation import error_issue, is_semver, warning_issue
from .composer import SkillComposer
from .models import (
    Conflict,
    ConflictSeverity,
    ConflictType,
    Extension,
    ExtensionType,
    Resolution,
    ResolutionStrategy,
)

logger = logging.getLogger(__name__)

ExtensionInput = Union[Extension, Mapping[str, Any]]

PRIORITY_MIN = 0
PRIORITY_MAX = 100


def _dependency_ids(ext: Extension) -> List[str]:
    ids: List[str] = []
    for dep in ext.dependencies:
        if isinstance(dep, Mapping):
            dep = dep.get("id")
        if isinstance(dep, str) and dep.strip():
            ids.append(dep)
    return ids


class ExtensionManager:
    """Extension registration, conflict handling, routing and composition."""

    def __init__(
        self,
        registry: SkillRegistry,
        *,
        config: Optional[RuntimeConfig] = None,
        events: Optional[EventBus] = None,
    ) -> None:
        self._registry = registry
        self._config = config or RuntimeConfig()
        self._events = events or EventBus()
        self._composer = SkillComposer(registry)

        self._extensions: Dict[str, Extension] = {}
        self._by_base: Dict[str, List[str]] = {}
        self._routes: Dict[str, Optional[str]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._sequence = itertools.count(1)
        registry.add_unregister_hook(self.remove_extensions_for)

    def _lock_for(self, base_skill_id: str) -> asyncio.Lock:
        lock = self._locks.get(base_skill_id)
        if lock is None:
            lock = self._locks[base_skill_id] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    def _rank_key(self, ext: Extension) -> Tuple[float, int]:
        sequence = ext.sequence
        if self._config.tie_break == TieBreakPolicy.EARLIEST:
            sequence = -sequence
        return (float(ext.priority), sequence)

    def _ranked(self, extensions: Sequence[Extension]) -> List[Extension]:
        """Highest-ranked first."""
        return sorted(extensions, key=self._rank_key, reverse=True)

    def _active_for(self, base_skill_id: str) -> List[Extension]:
        return [
            self._extensions[i]
            for i in self._by_base.get(base_skill_id, [])
            if self._extensions[i].active
        ]

    def _recompute_route(self, base_skill_id: str) -> Optional[str]:
        active = self._ranked(self._active_for(base_skill_id))
        routed = active[0].id if active else None
        previous = self._routes.get(base_skill_id)
        if routed is None:
            self._routes.pop(base_skill_id, None)
        else:
            self._routes[base_skill_id] = routed
        if routed != previous:
            logger.info("Routing for %s: %s -> %s", base_skill_id, previous, routed)
        return routed

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_extension(self, ext: ExtensionInput) -> ValidationResult:
        """Check an extension's shape. Never raises."""
        if not isinstance(ext, Extension):
            try:
                ext = Extension.model_validate(ext)
            except ValidationError as e:
                return ValidationResult.from_issues(
                    [error_issue("INVALID_STRUCTURE", str(e))]
                )

        errors: List[ValidationIssue] = []
        warnings: List[ValidationIssue] = []

        if not ext.id:
            errors.append(error_issue("MISSING_ID", "Extension ID is required", "id"))
        if not ext.base_skill_id:
            errors.append(
                error_issue("MISSING_BASE_SKILL_ID", "Base skill ID is required", "base_skill_id")
            )
        if not ext.name:
            errors.append(error_issue("MISSING_NAME", "Extension name is required", "name"))
        if not ext.version:
            errors.append(error_issue("MISSING_VERSION", "Extension version is required", "version"))
        elif not is_semver(ext.version):
            warnings.append(
                warning_issue(
                    "INVALID_VERSION_FORMAT",
                    "Version should follow semantic versioning (e.g. 1.0.0)",
                    "version",
                )
            )

        valid_types = [t.value for t in ExtensionType]
        if ext.type not in valid_types:
            errors.append(
                error_issue(
                    "INVALID_TYPE",
                    f"Extension type must be one of {valid_types}",
                    "type",
                )
            )

        priority = ext.priority
        if isinstance(priority, bool) or not isinstance(priority, (int, float)):
            errors.append(error_issue("INVALID_PRIORITY", "Priority must be a number", "priority"))
        elif not PRIORITY_MIN <= priority <= PRIORITY_MAX:
            warnings.append(
                warning_issue(
                    "PRIORITY_OUT_OF_RANGE",
                    f"Priority should be between {PRIORITY_MIN} and {PRIORITY_MAX}",
                    "priority",
                )
            )

        if ext.implementation is None:
            errors.append(
                error_issue(
                    "MISSING_IMPLEMENTATION",
                    "Extension implementation is required",
                    "implementation",
                )
            )

        for index, dep in enumerate(ext.dependencies):
            dep_id = dep.get("id") if isinstance(dep, Mapping) else dep
            if not isinstance(dep_id, str) or not dep_id.strip():
                errors.append(
                    error_issue(
                        "INVALID_DEPENDENCY",
                        "Extension dependency must name an id",
                        f"dependencies[{index}]",
                    )
                )

        return ValidationResult.from_issues(errors, warnings)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def extend(self, base_skill_id: str, ext: ExtensionInput) -> str:
        """Attach an extension to a base skill and re-route that base.

        Returns:
            The extension id.

        Raises:
            ExtensionValidationError: invalid, duplicate id or base mismatch
            SkillNotFoundError: the base skill is not registered
        """
        if isinstance(ext, Extension):
            extension = ext.model_copy(deep=True)
        else:
            data = dict(ext)
            data.setdefault("base_skill_id", base_skill_id)
            try:
                extension = Extension.model_validate(data)
            except ValidationError as e:
                raise ExtensionValidationError(
                    f"Extension validation failed: {e}",
                    [error_issue("INVALID_STRUCTURE", str(e))],
                ) from e
        if not extension.base_skill_id:
            extension.base_skill_id = base_skill_id

        result = self.validate_extension(extension)
        issues = list(result.errors)
        if extension.base_skill_id != base_skill_id:
            issues.append(
                error_issue(
                    "BASE_SKILL_MISMATCH",
                    f"Extension targets '{extension.base_skill_id}', not '{base_skill_id}'",
                    "base_skill_id",
                )
            )
        if issues:
            raise ExtensionValidationError(
                "Extension validation failed: " + ", ".join(i.message for i in issues),
                issues,
            )

        if not await self._registry.exists(base_skill_id):
            raise SkillNotFoundError(
                base_skill_id, f"Base skill not found: {base_skill_id}"
            )

        async with self._lock_for(base_skill_id):
            if extension.id in self._extensions:
                raise ExtensionValidationError(
                    "Extension validation failed: "
                    f"extension '{extension.id}' is already registered",
                    [
                        error_issue(
                            "DUPLICATE_EXTENSION_ID",
                            f"Extension '{extension.id}' is already registered",
                            "id",
                        )
                    ],
                )

            extension.active = True
            extension.stamp(next(self._sequence))
            self._extensions[extension.id] = extension
            self._by_base.setdefault(base_skill_id, []).append(extension.id)

            self._auto_resolve_priority(base_skill_id, extension)
            overrides = [
                e
                for e in self._active_for(base_skill_id)
                if e.type == ExtensionType.OVERRIDE.value
            ]
            if len(overrides) > 1:
                logger.warning(
                    "Interface conflict on %s: multiple active overrides %s",
                    base_skill_id,
                    [e.id for e in overrides],
                )
            routed = self._recompute_route(base_skill_id)

        for warning in result.warnings:
            logger.warning("Extension %s: %s", extension.id, warning.message)
        logger.info("Extension %s added to %s", extension.id, base_skill_id)
        await self._events.publish(
            "extension_added",
            extension_id=extension.id,
            base_skill_id=base_skill_id,
            routed_extension_id=routed,
        )
        return extension.id

    def _auto_resolve_priority(self, base_skill_id: str, newcomer: Extension) -> None:
        contenders = [
            e
            for e in self._active_for(base_skill_id)
            if float(e.priority) == float(newcomer.priority)
        ]
        if len(contenders) < 2:
            return
        winner, *losers = self._ranked(contenders)
        for loser in losers:
            loser.active = False
        logger.warning(
            "Priority conflict on %s at priority %s: kept %s, deactivated %s",
            base_skill_id,
            newcomer.priority,
            winner.id,
            [e.id for e in losers],
        )

    async def remove_extension(self, extension_id: str) -> None:
        ext = self._extensions.get(extension_id)
        if ext is None:
            raise ExtensionNotFoundError(extension_id)

        base_skill_id = ext.base_skill_id
        async with self._lock_for(base_skill_id):
            if self._extensions.pop(extension_id, None) is None:
                raise ExtensionNotFoundError(extension_id)
            ids = self._by_base.get(base_skill_id, [])
            if extension_id in ids:
                ids.remove(extension_id)
            if not ids:
                self._by_base.pop(base_skill_id, None)
            routed = self._recompute_route(base_skill_id)

        logger.info("Extension %s removed from %s", extension_id, base_skill_id)
        await self._events.publish(
            "extension_removed",
            extension_id=extension_id,
            base_skill_id=base_skill_id,
            routed_extension_id=routed,
        )

    async def remove_extensions_for(self, base_skill_id: str) -> List[str]:
        """Drop every extension of ``base_skill_id`` and its cached route.

        Called when the base skill is unregistered; a skill registered later
        under the same id starts with no extensions.
        """
        async with self._lock_for(base_skill_id):
            removed = self._by_base.pop(base_skill_id, [])
            for extension_id in removed:
                self._extensions.pop(extension_id, None)
            self._routes.pop(base_skill_id, None)

        for extension_id in removed:
            logger.info("Extension %s removed with base skill %s", extension_id, base_skill_id)
            await self._events.publish(
                "extension_removed",
                extension_id=extension_id,
                base_skill_id=base_skill_id,
                routed_extension_id=None,
            )
        return removed

    async def compose(self, skill_ids: Sequence[str]) -> SkillDefinition:
        return await self._composer.compose(skill_ids)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_routed_extension(self, base_skill_id: str) -> Optional[Extension]:
        extension_id = self._routes.get(base_skill_id)
        if extension_id is None:
            return None
        return self._extensions[extension_id].model_copy(deep=True)

    def get_extension(self, extension_id: str) -> Extension:
        ext = self._extensions.get(extension_id)
        if ext is None:
            raise ExtensionNotFoundError(extension_id)
        return ext.model_copy(deep=True)

    def list_extensions(self, base_skill_id: Optional[str] = None) -> List[Extension]:
        if base_skill_id is None:
            ids = list(self._extensions)
        else:
            ids = list(self._by_base.get(base_skill_id, []))
        return [self._extensions[i].model_copy(deep=True) for i in ids]

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    def get_conflicts(self) -> List[Conflict]:
        conflicts: List[Conflict] = []
        for base_skill_id in self._by_base:
            active = self._active_for(base_skill_id)
            if len(active) < 2:
                continue

            by_priority: Dict[float, List[Extension]] = {}
            for ext in active:
                by_priority.setdefault(float(ext.priority), []).append(ext)
            for priority, group in by_priority.items():
                if len(group) > 1:
                    conflicts.append(
                        Conflict(
                            type=ConflictType.PRIORITY_CONFLICT,
                            base_skill_id=base_skill_id,
                            extensions=[e.model_copy(deep=True) for e in group],
                            description=(
                                f"{len(group)} extensions share priority {priority:g}"
                            ),
                            severity=ConflictSeverity.MEDIUM,
                        )
                    )

            overrides = [e for e in active if e.type == ExtensionType.OVERRIDE.value]
            if len(overrides) > 1:
                conflicts.append(
                    Conflict(
                        type=ConflictType.INTERFACE_CONFLICT,
                        base_skill_id=base_skill_id,
                        extensions=[e.model_copy(deep=True) for e in overrides],
                        description="Multiple override extensions target the same skill",
                        severity=ConflictSeverity.CRITICAL,
                    )
                )

            seen = set()
            for ext in active:
                for other in active:
                    pair = frozenset((ext.id, other.id))
                    if ext.id == other.id or pair in seen:
                        continue
                    if other.id in _dependency_ids(ext) and ext.id in _dependency_ids(other):
                        seen.add(pair)
                        conflicts.append(
                            Conflict(
                                type=ConflictType.DEPENDENCY_CONFLICT,
                                base_skill_id=base_skill_id,
                                extensions=[
                                    ext.model_copy(deep=True),
                                    other.model_copy(deep=True),
                                ],
                                description=(
                                    f"Extensions {ext.id} and {other.id} depend on each other"
                                ),
                                severity=ConflictSeverity.HIGH,
                            )
                        )
        return conflicts

    def resolve_conflicts(self, conflicts: Sequence[Conflict]) -> Resolution:
        """Pick a resolution strategy for a batch of conflicts."""
        if not conflicts:
            return Resolution(
                conflict_id="none",
                strategy=ResolutionStrategy.AUTOMATIC,
                reasoning="No conflicts to resolve",
            )

        critical = [c for c in conflicts if c.severity == ConflictSeverity.CRITICAL]
        if critical:
            return Resolution(
                conflict_id=self._conflict_id(critical[0]),
                strategy=ResolutionStrategy.USER_CHOICE,
                reasoning="Critical conflicts require user intervention",
            )

        high = [c for c in conflicts if c.severity == ConflictSeverity.HIGH]
        if high:
            return Resolution(
                conflict_id=self._conflict_id(high[0]),
                strategy=ResolutionStrategy.PRIORITY_BASED,
                selected_extensions=self._top_ids(high[0]),
                reasoning="Selected the highest-ranked extension of a high severity conflict",
            )

        priority = [c for c in conflicts if c.type == ConflictType.PRIORITY_CONFLICT]
        if priority:
            return Resolution(
                conflict_id=self._conflict_id(priority[0]),
                strategy=ResolutionStrategy.PRIORITY_BASED,
                selected_extensions=self._top_ids(priority[0]),
                reasoning=(
                    f"Selected by priority with {self._config.tie_break.value} tie-break"
                ),
            )

        return Resolution(
            conflict_id=self._conflict_id(conflicts[0]),
            strategy=ResolutionStrategy.AUTOMATIC,
            reasoning="Low severity conflicts are resolved automatically",
        )

    @staticmethod
    def _conflict_id(conflict: Conflict) -> str:
        return f"{conflict.type.value}:{conflict.base_skill_id}"

    def _top_ids(self, conflict: Conflict) -> List[str]:
        ranked = self._ranked(conflict.extensions)
        return [ranked[0].id] if ranked else []
