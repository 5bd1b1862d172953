"""Tests for the Skill Registry."""

import asyncio

import pytest

from skillstack.errors import (
    LayerRuleViolation,
    SkillConflictError,
    SkillDependencyError,
    SkillNotFoundError,
    StructuralValidationError,
)
from skillstack.skills.models import Dependency, SkillQuery

from helpers import make_skill


def _dep(skill_id):
    return Dependency(id=skill_id, name=skill_id, version="1.0.0")


class TestRegister:
    def test_register_and_resolve(self, registry):
        async def run():
            result = await registry.register(make_skill("a"))
            assert result.valid
            fetched = await registry.resolve("a")
            assert fetched == make_skill("a").model_copy(
                update={"metadata": fetched.metadata}
            )

        asyncio.run(run())

    def test_resolve_returns_a_copy(self, registry):
        async def run():
            await registry.register(make_skill("a"))
            first = await registry.resolve("a")
            first.name = "mutated"
            first.metadata.tags.append("x")
            again = await registry.resolve("a")
            assert again.name == "a"
            assert "x" not in again.metadata.tags

        asyncio.run(run())

    def test_register_from_mapping(self, registry):
        async def run():
            await registry.register({"id": "m", "name": "M", "layer": 1})
            assert await registry.exists("m")

        asyncio.run(run())

    def test_uncoercible_mapping(self, registry):
        async def run():
            with pytest.raises(StructuralValidationError) as exc:
                await registry.register({"id": "m", "name": "M", "layer": "high"})
            assert "INVALID_STRUCTURE" in exc.value.codes

        asyncio.run(run())

    def test_structural_errors_reject(self, registry):
        async def run():
            with pytest.raises(StructuralValidationError) as exc:
                await registry.register(make_skill("bad id"))
            assert exc.value.codes == ["INVALID_ID_FORMAT"]
            assert await registry.count() == 0

        asyncio.run(run())

    def test_layer2_requires_sandbox(self, registry):
        async def run():
            with pytest.raises(LayerRuleViolation) as exc:
                await registry.register(make_skill("cmd", layer=2, sandboxed=False))
            assert exc.value.codes == ["LAYER2_SANDBOX_REQUIRED"]

        asyncio.run(run())

    def test_layer_warnings_do_not_block(self, registry):
        async def run():
            r1 = await registry.register(make_skill("a1", layer=1, sandboxed=True))
            assert r1.warning_codes == ["LAYER1_SANDBOX_WARNING"]
            r3 = await registry.register(make_skill("w3", layer=3, timeout=1000))
            assert r3.warning_codes == ["LAYER3_TIMEOUT_WARNING"]
            assert await registry.count() == 2

        asyncio.run(run())

    def test_duplicate_id(self, registry):
        async def run():
            await registry.register(make_skill("a", name="First"))
            with pytest.raises(SkillConflictError, match="already exists"):
                await registry.register(make_skill("a", name="Second"))

        asyncio.run(run())

    def test_duplicate_name_within_layer(self, registry):
        async def run():
            await registry.register(make_skill("a", name="Echo"))
            with pytest.raises(SkillConflictError, match="already exists in layer"):
                await registry.register(make_skill("b", name="echo"))
            # same name in another layer is fine
            await registry.register(make_skill("c", name="Echo", layer=3))

        asyncio.run(run())

    def test_validate_matches_register(self, registry):
        skill = make_skill("cmd", layer=2, sandboxed=False)
        result = registry.validate(skill)
        assert not result.valid
        assert result.error_codes == ["LAYER2_SANDBOX_REQUIRED"]
        assert registry.validate(make_skill("ok")).valid

    def test_register_publishes_event(self, registry, events):
        seen = []

        class Recorder:
            async def on_event(self, event):
                seen.append(event)

        events.subscribe(Recorder())

        async def run():
            await registry.register(make_skill("a"))

        asyncio.run(run())
        assert [e.event_type for e in seen] == ["skill_registered"]
        assert seen[0].payload["skill_id"] == "a"


class TestDiscovery:
    @pytest.mark.asyncio
    async def test_empty_query_returns_all(self, registry):
        for i in range(5):
            await registry.register(make_skill(f"s{i}", layer=(i % 3) + 1))
        found = await registry.discover()
        assert {s.id for s in found} == {f"s{i}" for i in range(5)}

    @pytest.mark.asyncio
    async def test_query_forms(self, registry):
        await registry.register(make_skill("a", name="Read File", tags=["fs"]))
        await registry.register(make_skill("b", name="Fetch", tags=["net"], layer=3))

        by_model = await registry.discover(SkillQuery(tags=["fs"]))
        by_mapping = await registry.discover({"name": "read"})
        by_kwargs = await registry.discover(layer=3)
        assert [s.id for s in by_model] == ["a"]
        assert [s.id for s in by_mapping] == ["a"]
        assert [s.id for s in by_kwargs] == ["b"]

    @pytest.mark.asyncio
    async def test_limit_and_offset(self, registry):
        for i in range(5):
            await registry.register(make_skill(f"s{i}"))
        page = await registry.discover(limit=2, offset=1)
        assert [s.id for s in page] == ["s1", "s2"]

    @pytest.mark.asyncio
    async def test_layers_partition_the_registry(self, registry):
        for i in range(6):
            await registry.register(make_skill(f"s{i}", layer=(i % 3) + 1))
        by_layer = [await registry.get_by_layer(layer) for layer in (1, 2, 3)]
        ids = [s.id for group in by_layer for s in group]
        assert sorted(ids) == sorted(s.id for s in await registry.list_skills())
        assert len(ids) == len(set(ids))

    @pytest.mark.asyncio
    async def test_search(self, registry):
        await registry.register(make_skill("a", description="Parses CSV"))
        await registry.register(make_skill("b", tags=["csv-tools"]))
        await registry.register(make_skill("c"))
        found = await registry.search("csv")
        assert {s.id for s in found} == {"a", "b"}


class TestUpdate:
    @pytest.mark.asyncio
    async def test_update_replaces_whole_value(self, registry):
        await registry.register(make_skill("a", description="old"))
        before = (await registry.resolve("a")).metadata.updated
        await registry.update("a", make_skill("a", description="new"))
        after = await registry.resolve("a")
        assert after.description == "new"
        assert after.metadata.updated >= before

    @pytest.mark.asyncio
    async def test_update_rejects_id_change(self, registry):
        await registry.register(make_skill("a"))
        with pytest.raises(SkillConflictError):
            await registry.update("a", make_skill("b"))

    @pytest.mark.asyncio
    async def test_update_missing(self, registry):
        with pytest.raises(SkillNotFoundError):
            await registry.update("ghost", make_skill("ghost"))

    @pytest.mark.asyncio
    async def test_update_name_clash(self, registry):
        await registry.register(make_skill("a", name="A"))
        await registry.register(make_skill("b", name="B"))
        with pytest.raises(SkillConflictError):
            await registry.update("b", make_skill("b", name="A"))
        assert (await registry.resolve("b")).name == "B"

    @pytest.mark.asyncio
    async def test_rename_frees_old_name(self, registry):
        await registry.register(make_skill("a", name="Old"))
        await registry.update("a", make_skill("a", name="New"))
        await registry.register(make_skill("b", name="Old"))
        assert await registry.count() == 2


class TestUnregister:
    @pytest.mark.asyncio
    async def test_refuses_with_dependents(self, registry):
        await registry.register(make_skill("base"))
        await registry.register(make_skill("user", dependencies=[_dep("base")]))
        with pytest.raises(SkillDependencyError) as exc:
            await registry.unregister("base")
        assert exc.value.dependents == ["user"]
        assert await registry.exists("base")

    @pytest.mark.asyncio
    async def test_cascade_removes_dependents_first(self, registry):
        await registry.register(make_skill("base"))
        await registry.register(make_skill("mid", dependencies=[_dep("base")]))
        await registry.register(make_skill("top", dependencies=[_dep("mid")]))
        removed = await registry.unregister("base", cascade=True)
        assert removed == ["top", "mid", "base"]
        assert await registry.count() == 0

    @pytest.mark.asyncio
    async def test_missing(self, registry):
        with pytest.raises(SkillNotFoundError):
            await registry.unregister("ghost")

    @pytest.mark.asyncio
    async def test_dependents_and_conflicts(self, registry):
        await registry.register(make_skill("base"))
        await registry.register(make_skill("user", dependencies=[_dep("base")]))
        dependents = await registry.get_dependent_skills("base")
        assert [s.id for s in dependents] == ["user"]

        conflicts = await registry.check_conflicts(
            make_skill("base", name="user", dependencies=[_dep("ghost")])
        )
        assert len(conflicts) == 3
        assert any("ghost" in c for c in conflicts)
