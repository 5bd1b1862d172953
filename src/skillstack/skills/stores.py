"""
Storage interfaces and in-memory implementations for the Skill Registry.

A store only keeps and indexes definitions; identity and naming invariants
are enforced by ``SkillRegistry`` before anything reaches the store.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from .models import SkillDefinition


def name_key(name: str, layer: int) -> Tuple[str, int]:
    """Key of the (name, layer) index. Names compare case-insensitively."""
    return (name.strip().lower(), int(layer))


class SkillStore(ABC):
    """Keyed storage for skill definitions."""

    @abstractmethod
    async def add(self, skill: SkillDefinition) -> SkillDefinition:
        ...

    @abstractmethod
    async def get(self, skill_id: str) -> Optional[SkillDefinition]:
        ...

    @abstractmethod
    async def find_by_name(self, name: str, layer: int) -> Optional[SkillDefinition]:
        ...

    @abstractmethod
    async def list_skills(self, *, layer: Optional[int] = None) -> List[SkillDefinition]:
        ...

    @abstractmethod
    async def replace(self, skill: SkillDefinition) -> SkillDefinition:
        ...

    @abstractmethod
    async def delete(self, skill_id: str) -> bool:
        ...


class InMemorySkillStore(SkillStore):
    """Non-persistent, in-memory reference implementation.

    Maintains three indices: by id, by layer and by (name, layer). Every
    mutation updates all three before returning, and no method awaits
    in the middle of a mutation.
    """

    def __init__(self) -> None:
        self._by_id: Dict[str, SkillDefinition] = {}
        self._by_layer: Dict[int, List[str]] = {}
        self._by_name: Dict[Tuple[str, int], str] = {}

    def _index(self, skill: SkillDefinition) -> None:
        self._by_id[skill.id] = skill
        ids = self._by_layer.setdefault(skill.layer, [])
        if skill.id not in ids:
            ids.append(skill.id)
        self._by_name[name_key(skill.name, skill.layer)] = skill.id

    def _unindex(self, skill: SkillDefinition) -> None:
        self._by_id.pop(skill.id, None)
        ids = self._by_layer.get(skill.layer, [])
        if skill.id in ids:
            ids.remove(skill.id)
        if not ids:
            self._by_layer.pop(skill.layer, None)
        key = name_key(skill.name, skill.layer)
        if self._by_name.get(key) == skill.id:
            del self._by_name[key]

    async def add(self, skill: SkillDefinition) -> SkillDefinition:
        self._index(skill)
        return skill

    async def get(self, skill_id: str) -> Optional[SkillDefinition]:
        return self._by_id.get(skill_id)

    async def find_by_name(self, name: str, layer: int) -> Optional[SkillDefinition]:
        skill_id = self._by_name.get(name_key(name, layer))
        return self._by_id.get(skill_id) if skill_id is not None else None

    async def list_skills(self, *, layer: Optional[int] = None) -> List[SkillDefinition]:
        if layer is None:
            return list(self._by_id.values())
        return [self._by_id[i] for i in self._by_layer.get(layer, [])]

    async def replace(self, skill: SkillDefinition) -> SkillDefinition:
        previous = self._by_id.get(skill.id)
        if previous is not None:
            self._unindex(previous)
        self._index(skill)
        return skill

    async def delete(self, skill_id: str) -> bool:
        skill = self._by_id.get(skill_id)
        if skill is None:
            return False
        self._unindex(skill)
        return True
