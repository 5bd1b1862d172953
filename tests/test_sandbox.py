"""Tests for the simulated tier-2 sandbox."""

import asyncio

import pytest

from skillstack.execution.models import (
    BASE_MEMORY_BYTES,
    CommandResult,
    ExecutionFailure,
    ResourceUsage,
)
from skillstack.execution.sandbox import SandboxManager


@pytest.fixture
def sandboxes():
    return SandboxManager(root="/tmp")


def _options(**overrides):
    options = {"allowed_commands": ["echo", "cat", "ls", "grep", "wc", "pwd", "sleep"]}
    options.update(overrides)
    return options


class TestSandboxManager:
    @pytest.mark.asyncio
    async def test_echo(self, sandboxes):
        async with sandboxes.session(**_options()) as sandbox:
            result = await sandboxes.run(sandbox, "echo", ["hello", "world"])
        assert result.stdout == "hello world\n"
        assert result.exit_code == 0
        assert result.resource_usage.memory_used > 0

    @pytest.mark.asyncio
    async def test_session_cleans_up(self, sandboxes):
        async with sandboxes.session(**_options()) as sandbox:
            assert sandboxes.active_sandboxes() == [sandbox.id]
            assert sandbox.working_directory.startswith("/tmp/sandbox-")
        assert sandboxes.active_sandboxes() == []
        assert sandbox.destroyed

    @pytest.mark.asyncio
    async def test_session_cleans_up_on_error(self, sandboxes):
        with pytest.raises(ExecutionFailure):
            async with sandboxes.session(**_options(allowed_commands=["echo"])) as sandbox:
                await sandboxes.run(sandbox, "rm", ["-rf", "/"])
        assert sandboxes.active_sandboxes() == []

    @pytest.mark.asyncio
    async def test_disallowed_command(self, sandboxes):
        async with sandboxes.session(**_options(allowed_commands=["echo"])) as sandbox:
            with pytest.raises(ExecutionFailure) as exc:
                await sandboxes.run(sandbox, "cat", ["x"])
        assert exc.value.error.type.value == "permission_error"
        assert exc.value.error.code == "COMMAND_NOT_ALLOWED"

    @pytest.mark.asyncio
    async def test_files(self, sandboxes):
        async with sandboxes.session(**_options()) as sandbox:
            sandbox.write_file("notes.txt", "alpha\nbeta\ngamma\n")
            cat = await sandboxes.run(sandbox, "cat", ["notes.txt"])
            grep = await sandboxes.run(sandbox, "grep", ["^b", "notes.txt"])
            wc = await sandboxes.run(sandbox, "wc", ["notes.txt"])
            ls = await sandboxes.run(sandbox, "ls", [])
            missing = await sandboxes.run(sandbox, "cat", ["nope.txt"])
        assert cat.stdout == "alpha\nbeta\ngamma\n"
        assert cat.resource_usage.files_accessed == [sandbox.working_directory + "/notes.txt"]
        assert grep.stdout == "beta\n"
        assert wc.stdout == "3 3 17 notes.txt\n"
        assert ls.stdout == "notes.txt\n"
        assert missing.exit_code == 1
        assert "No such file" in missing.stderr

    @pytest.mark.asyncio
    async def test_paths_outside_sandbox_are_denied(self, sandboxes):
        async with sandboxes.session(**_options()) as sandbox:
            result = await sandboxes.run(sandbox, "cat", ["/etc/passwd"])
        assert result.exit_code == 1
        assert "Permission denied" in result.stderr

    @pytest.mark.asyncio
    async def test_allowed_but_unimplemented_command(self, sandboxes):
        async with sandboxes.session(**_options(allowed_commands=["awk"])) as sandbox:
            result = await sandboxes.run(sandbox, "awk", ["{print}"])
        assert result.exit_code == 127

    @pytest.mark.asyncio
    async def test_registered_command_and_resource_limit(self, sandboxes):
        def hog(sandbox, args):
            return CommandResult(command="hog", resource_usage=ResourceUsage(memory_used=10**9))

        sandboxes.register_command("hog", hog)
        async with sandboxes.session(**_options(allowed_commands=["hog"], max_memory=1024)) as sandbox:
            with pytest.raises(ExecutionFailure) as exc:
                await sandboxes.run(sandbox, "hog", [])
        assert exc.value.error.code == "RESOURCE_LIMIT_EXCEEDED"
        assert "memory_used" in exc.value.error.details["exceeded"]

    @pytest.mark.asyncio
    async def test_cancellation_cleans_up(self, sandboxes):
        async def slow():
            async with sandboxes.session(**_options()) as sandbox:
                await sandboxes.run(sandbox, "sleep", ["5"])

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(slow(), 0.05)
        assert sandboxes.active_sandboxes() == []

    @pytest.mark.asyncio
    async def test_usage_is_recorded_before_limit_check(self, sandboxes):
        def hog(sandbox, args):
            return CommandResult(command="hog", resource_usage=ResourceUsage(memory_used=10**9))

        sandboxes.register_command("hog", hog)
        usage = ResourceUsage()
        async with sandboxes.session(**_options(allowed_commands=["hog"], max_memory=1024)) as sandbox:
            with pytest.raises(ExecutionFailure):
                await sandboxes.run(sandbox, "hog", [], usage=usage)
        assert usage.memory_used == 10**9

    @pytest.mark.asyncio
    async def test_cancelled_command_is_charged(self, sandboxes):
        usage = ResourceUsage()

        async def slow():
            async with sandboxes.session(**_options()) as sandbox:
                await sandboxes.run(sandbox, "sleep", ["5"], usage=usage)

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(slow(), 0.05)
        assert usage.memory_used == BASE_MEMORY_BYTES
        assert usage.cpu_time > 0

    @pytest.mark.asyncio
    async def test_failing_handler_exits_non_zero(self, sandboxes):
        def broken(sandbox, args):
            raise RuntimeError("disk on fire")

        sandboxes.register_command("broken", broken)
        async with sandboxes.session(**_options(allowed_commands=["broken"])) as sandbox:
            result = await sandboxes.run(sandbox, "broken", [])
        assert result.exit_code == 1
        assert "disk on fire" in result.stderr

    @pytest.mark.asyncio
    async def test_file_size_limit(self, sandboxes):
        async with sandboxes.session(**_options(max_file_size=4)) as sandbox:
            sandbox.write_file("ok.txt", "four")
            with pytest.raises(ExecutionFailure) as exc:
                sandbox.write_file("big.txt", "five!")
            assert sandbox.read_file("big.txt") is None
        assert exc.value.error.code == "RESOURCE_LIMIT_EXCEEDED"
        assert exc.value.error.details["exceeded"] == {"file_size": 5}
