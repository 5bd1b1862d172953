"""Tests for skill composition."""

import pytest

from skillstack.errors import CompositionError
from skillstack.skills.models import Dependency, SkillDependencyType

from helpers import make_skill


def _lib(version):
    return Dependency(id="lib", name="lib", version=version, type=SkillDependencyType.LIBRARY)


class TestCompose:
    @pytest.mark.asyncio
    async def test_adjacent_layers(self, registry, manager):
        await registry.register(
            make_skill("a", name="Alpha", layer=1, tags=["x"], parameters=[{"name": "p", "required": True}])
        )
        await registry.register(make_skill("b", name="Beta", layer=2, tags=["y", "x"], timeout=2000))

        composed = await manager.compose(["a", "b"])
        assert composed.name == "Alpha + Beta"
        assert composed.layer == 2
        assert composed.id.startswith("composed_")
        assert composed.metadata.category == "composition"
        assert composed.metadata.tags == ["x", "y", "composed"]
        assert [d.id for d in composed.dependencies] == ["a", "b"]
        assert all(d.type == SkillDependencyType.SKILL for d in composed.dependencies)

        spec = composed.invocation_spec
        assert [p.name for p in spec.parameters] == ["skill0_p"]
        assert spec.execution_context.timeout == 2000
        assert spec.execution_context.security.sandboxed is True

        # the composed skill is returned, not registered
        assert not await registry.exists(composed.id)
        assert registry.validate(composed).valid

    @pytest.mark.asyncio
    async def test_non_adjacent_layers(self, registry, manager):
        await registry.register(make_skill("a", layer=1))
        await registry.register(make_skill("c", layer=3))
        with pytest.raises(CompositionError, match="non-adjacent layers"):
            await manager.compose(["a", "c"])

    @pytest.mark.asyncio
    async def test_missing_member(self, registry, manager):
        await registry.register(make_skill("a"))
        with pytest.raises(CompositionError, match="skill not found: ghost"):
            await manager.compose(["a", "ghost"])

    @pytest.mark.asyncio
    async def test_requires_ids(self, manager):
        with pytest.raises(CompositionError, match="At least one skill ID"):
            await manager.compose([])

    @pytest.mark.asyncio
    async def test_dependency_version_clash(self, registry, manager):
        await registry.register(make_skill("a", dependencies=[_lib("1.0.0")]))
        await registry.register(make_skill("b", dependencies=[_lib("2.0.0")]))
        with pytest.raises(CompositionError, match="Composition conflicts"):
            await manager.compose(["a", "b"])

    @pytest.mark.asyncio
    async def test_duplicate_member_counted_once(self, registry, manager):
        await registry.register(make_skill("a"))
        composed = await manager.compose(["a", "a"])
        assert [d.id for d in composed.dependencies] == ["a"]
