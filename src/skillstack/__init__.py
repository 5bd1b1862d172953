"""
SkillStack: A layered skill composition and execution runtime.

Register declarative skills, attach prioritized extensions, compose skills
from adjacent layers and execute them through one entry point.
"""

import logging

from .config import LayerDefaults, RuntimeConfig, TieBreakPolicy
from .errors import (
    CompositionError,
    ExtensionNotFoundError,
    ExtensionValidationError,
    LayerRuleViolation,
    SkillConflictError,
    SkillDependencyError,
    SkillNotFoundError,
    SkillStackError,
    StructuralValidationError,
)
from .events import EventBus, EventObserver, LoggingObserver, RuntimeEvent
from .execution import ExecutionEngine, ExecutionResult, InvocationContext
from .extensions import Extension, ExtensionManager, ExtensionType
from .runtime import SkillRuntime
from .skills import SkillDefinition, SkillLayer, SkillQuery, SkillRegistry, ValidationResult

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    "SkillRuntime",
    "RuntimeConfig",
    "LayerDefaults",
    "TieBreakPolicy",
    "SkillDefinition",
    "SkillLayer",
    "SkillQuery",
    "SkillRegistry",
    "ValidationResult",
    "Extension",
    "ExtensionType",
    "ExtensionManager",
    "ExecutionEngine",
    "ExecutionResult",
    "InvocationContext",
    "EventBus",
    "EventObserver",
    "LoggingObserver",
    "RuntimeEvent",
    "SkillStackError",
    "StructuralValidationError",
    "LayerRuleViolation",
    "SkillConflictError",
    "SkillNotFoundError",
    "SkillDependencyError",
    "ExtensionValidationError",
    "ExtensionNotFoundError",
    "CompositionError",
]
