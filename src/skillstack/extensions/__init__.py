"""
Extensions, conflict handling, routing and skill composition.
"""

from .composer import SkillComposer
from .manager import ExtensionManager
from .models import (
    Conflict,
    ConflictSeverity,
    ConflictType,
    Extension,
    ExtensionType,
    Resolution,
    ResolutionStrategy,
)

__all__ = [
    "Extension",
    "ExtensionType",
    "Conflict",
    "ConflictType",
    "ConflictSeverity",
    "Resolution",
    "ResolutionStrategy",
    "ExtensionManager",
    "SkillComposer",
]
