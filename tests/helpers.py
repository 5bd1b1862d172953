"""Builders for skill definitions used across the test suite."""

from skillstack.skills.models import (
    ExecutionContext,
    InvocationSpec,
    Parameter,
    ResourceConstraint,
    SecurityContext,
    SkillDefinition,
    SkillMetadata,
)


def make_skill(
    skill_id="skill-1",
    name=None,
    layer=1,
    *,
    parameters=None,
    sandboxed=None,
    timeout=None,
    allowed_commands=None,
    entrypoint=None,
    dependencies=None,
    tags=None,
    category="test",
    author="tester",
    description="",
    input_schema=None,
    resources=None,
):
    if sandboxed is None:
        sandboxed = layer == 2
    if timeout is None and layer == 3:
        timeout = 10_000
    spec = InvocationSpec(
        execution_context=ExecutionContext(
            timeout=timeout,
            entrypoint=entrypoint,
            resources=(
                resources
                if resources is None or isinstance(resources, ResourceConstraint)
                else ResourceConstraint(**resources)
            ),
            security=SecurityContext(
                sandboxed=sandboxed, allowed_commands=list(allowed_commands or [])
            ),
        ),
        parameters=[
            p if isinstance(p, Parameter) else Parameter(**p) for p in (parameters or [])
        ],
    )
    if input_schema is not None:
        spec.input_schema = input_schema
    return SkillDefinition(
        id=skill_id,
        name=name or skill_id,
        layer=layer,
        description=description,
        invocation_spec=spec,
        dependencies=list(dependencies or []),
        metadata=SkillMetadata(
            author=author, category=category, tags=list(tags or ["test"])
        ),
    )
