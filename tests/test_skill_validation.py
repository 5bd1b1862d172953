"""Tests for the jsonschema-backed skill validator."""

import pytest

from skillstack.skills.models import Dependency, Example, Parameter, SkillDefinition
from skillstack.skills.validation import JsonSchemaSkillValidator, is_semver

from helpers import make_skill


@pytest.fixture
def validator():
    return JsonSchemaSkillValidator()


class TestValidateData:
    def test_valid_payload(self, validator):
        schema = {"type": "object", "properties": {"n": {"type": "integer"}}}
        assert validator.validate_data({"n": 1}, schema).valid

    def test_invalid_payload(self, validator):
        schema = {"type": "object", "required": ["n"]}
        result = validator.validate_data({}, schema)
        assert not result.valid
        assert result.error_codes == ["SCHEMA_VALIDATION_ERROR"]
        assert result.errors[0].suggestions

    def test_invalid_schema(self, validator):
        result = validator.validate_data({}, {"type": "not-a-type"})
        assert result.error_codes == ["INVALID_SCHEMA"]


class TestValidateSkillDefinition:
    def test_complete_definition_is_clean(self, validator):
        result = validator.validate_skill_definition(make_skill())
        assert result.valid
        assert result.warnings == []

    def test_missing_fields(self, validator):
        skill = SkillDefinition(id="", name=" ", version="", layer=1)
        codes = validator.validate_skill_definition(skill).error_codes
        assert {"MISSING_ID", "MISSING_NAME", "MISSING_VERSION"} <= set(codes)

    def test_invalid_id_and_layer(self, validator):
        skill = SkillDefinition(id="has space", name="x", layer=4)
        codes = validator.validate_skill_definition(skill).error_codes
        assert "INVALID_ID_FORMAT" in codes
        assert "INVALID_LAYER" in codes

    def test_version_format_is_a_warning(self, validator):
        skill = make_skill()
        skill.version = "v1"
        result = validator.validate_skill_definition(skill)
        assert result.valid
        assert "INVALID_VERSION_FORMAT" in result.warning_codes

    def test_metadata_warnings(self, validator):
        skill = SkillDefinition(id="bare", name="Bare", layer=1)
        result = validator.validate_skill_definition(skill)
        assert result.valid
        assert set(result.warning_codes) == {"MISSING_AUTHOR", "MISSING_CATEGORY", "MISSING_TAGS"}

    def test_bad_schemas(self, validator):
        skill = make_skill()
        skill.invocation_spec.input_schema = {"type": 5}
        skill.invocation_spec.parameters = [
            Parameter(name="p", validation={"type": "nope"}),
            Parameter(name="p"),
        ]
        codes = validator.validate_skill_definition(skill).error_codes
        assert "INVALID_INPUT_SCHEMA" in codes
        assert "INVALID_PARAMETER_SCHEMA" in codes
        assert "DUPLICATE_PARAMETER" in codes

    def test_incomplete_dependency(self, validator):
        skill = make_skill(dependencies=[Dependency(id="other")])
        codes = validator.validate_skill_definition(skill).error_codes
        assert codes == ["INCOMPLETE_DEPENDENCY"]

    def test_examples_checked_against_schemas(self, validator):
        skill = make_skill(
            input_schema={"type": "object", "required": ["msg"]},
        )
        skill.invocation_spec.output_schema = {"type": "object", "required": ["out"]}
        skill.invocation_spec.examples = [
            Example(name="bad", input={}, expected_output={"x": 1}),
        ]
        codes = validator.validate_skill_definition(skill).error_codes
        assert codes == ["EXAMPLE_INPUT_INVALID", "EXAMPLE_OUTPUT_INVALID"]

    def test_examples_can_be_skipped(self):
        skill = make_skill(input_schema={"type": "object", "required": ["msg"]})
        skill.invocation_spec.examples = [Example(name="bad", input={})]
        lenient = JsonSchemaSkillValidator(validate_examples=False)
        assert lenient.validate_skill_definition(skill).valid

    @pytest.mark.parametrize(
        "version,expected",
        [("1.0.0", True), ("2.10.3-beta.1", True), ("1.0", False), ("", False)],
    )
    def test_is_semver(self, version, expected):
        assert is_semver(version) is expected
