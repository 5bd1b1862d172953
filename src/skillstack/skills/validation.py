"""
Skill validation service: Deterministic, schema-based.

The registry delegates structural checks to a SkillValidator. The default
implementation validates JSON schemas and payloads with ``jsonschema``
(Draft 7) and checks the shape of a SkillDefinition.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

from .models import (
    SkillDefinition,
    SkillLayer,
    ValidationIssue,
    ValidationResult,
    ValidationSeverity,
)

SKILL_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
SEMVER_PATTERN = re.compile(
    r"^\d+\.\d+\.\d+(-[0-9A-Za-z.-]+)?(\+[0-9A-Za-z.-]+)?$"
)


def is_semver(version: str) -> bool:
    return bool(SEMVER_PATTERN.match(version or ""))


def error_issue(
    code: str,
    message: str,
    path: Optional[str] = None,
    suggestions: Optional[List[str]] = None,
) -> ValidationIssue:
    return ValidationIssue(
        code=code,
        message=message,
        path=path,
        severity=ValidationSeverity.ERROR,
        suggestions=list(suggestions or []),
    )


def warning_issue(
    code: str,
    message: str,
    path: Optional[str] = None,
    suggestions: Optional[List[str]] = None,
) -> ValidationIssue:
    return ValidationIssue(
        code=code,
        message=message,
        path=path,
        severity=ValidationSeverity.WARNING,
        suggestions=list(suggestions or []),
    )


class SkillValidator(ABC):
    """Pluggable structural validation service."""

    @abstractmethod
    def validate_data(self, data: Any, schema: Dict[str, Any]) -> ValidationResult:
        ...

    @abstractmethod
    def validate_skill_definition(self, skill: SkillDefinition) -> ValidationResult:
        ...


class JsonSchemaSkillValidator(SkillValidator):
    """Default validator backed by jsonschema.

    NO side effects. The same definition always yields the same result.
    """

    def __init__(self, *, validate_examples: bool = True) -> None:
        self._validate_examples = validate_examples

    # -- payloads ----------------------------------------------------------

    def validate_data(self, data: Any, schema: Dict[str, Any]) -> ValidationResult:
        try:
            Draft7Validator.check_schema(schema)
        except SchemaError as e:
            return ValidationResult.from_issues(
                [error_issue("INVALID_SCHEMA", f"Invalid schema: {e.message}")]
            )

        errors: List[ValidationIssue] = []
        validator = Draft7Validator(schema)
        for err in sorted(validator.iter_errors(data), key=lambda e: list(e.path)):
            path = "/".join(str(p) for p in err.path)
            errors.append(
                error_issue(
                    "SCHEMA_VALIDATION_ERROR",
                    f"{path or 'root'}: {err.message}",
                    path=path or None,
                    suggestions=self._suggestions_for(err.validator, err.validator_value),
                )
            )
        return ValidationResult.from_issues(errors)

    @staticmethod
    def _suggestions_for(keyword: str, value: Any) -> List[str]:
        if keyword == "required":
            return [f"Add the required properties: {value}"]
        if keyword == "type":
            return [f"Expected type {value}"]
        if keyword == "format":
            return [f"Value should match format: {value}"]
        return ["Check the data format and try again"]

    # -- definitions -------------------------------------------------------

    def validate_skill_definition(self, skill: SkillDefinition) -> ValidationResult:
        errors: List[ValidationIssue] = []
        warnings: List[ValidationIssue] = []

        # --- Required fields ---
        if not skill.id:
            errors.append(error_issue("MISSING_ID", "Skill ID is required", "id"))
        elif not SKILL_ID_PATTERN.match(skill.id):
            errors.append(
                error_issue(
                    "INVALID_ID_FORMAT",
                    f"Skill ID '{skill.id}' may only contain letters, digits, '_' and '-'",
                    "id",
                )
            )

        if not skill.name or not skill.name.strip():
            errors.append(error_issue("MISSING_NAME", "Skill name is required", "name"))

        if not skill.version:
            errors.append(error_issue("MISSING_VERSION", "Skill version is required", "version"))
        elif not is_semver(skill.version):
            warnings.append(
                warning_issue(
                    "INVALID_VERSION_FORMAT",
                    "Version should follow semantic versioning (e.g., 1.0.0)",
                    "version",
                    ["Use semantic versioning format: MAJOR.MINOR.PATCH"],
                )
            )

        if skill.layer not in {layer.value for layer in SkillLayer}:
            errors.append(
                error_issue(
                    "INVALID_LAYER",
                    "Skill layer must be 1, 2, or 3",
                    "layer",
                    [
                        "Use layer 1 for atomic operations",
                        "Use layer 2 for command tools",
                        "Use layer 3 for API wrappers",
                    ],
                )
            )

        # --- Schemas ---
        spec = skill.invocation_spec
        for attr, code in (
            ("input_schema", "INVALID_INPUT_SCHEMA"),
            ("output_schema", "INVALID_OUTPUT_SCHEMA"),
        ):
            try:
                Draft7Validator.check_schema(getattr(spec, attr))
            except SchemaError as e:
                errors.append(
                    error_issue(code, f"Invalid {attr}: {e.message}", f"invocation_spec.{attr}")
                )

        seen_params = set()
        for i, param in enumerate(spec.parameters):
            if param.name in seen_params:
                errors.append(
                    error_issue(
                        "DUPLICATE_PARAMETER",
                        f"Parameter '{param.name}' is declared more than once",
                        f"invocation_spec.parameters[{i}]",
                    )
                )
            seen_params.add(param.name)
            if param.validation is not None:
                try:
                    Draft7Validator.check_schema(param.validation)
                except SchemaError as e:
                    errors.append(
                        error_issue(
                            "INVALID_PARAMETER_SCHEMA",
                            f"Invalid validation schema for '{param.name}': {e.message}",
                            f"invocation_spec.parameters[{i}].validation",
                        )
                    )

        # --- Dependencies ---
        for i, dep in enumerate(skill.dependencies):
            if not dep.id or not dep.name or not dep.version:
                errors.append(
                    error_issue(
                        "INCOMPLETE_DEPENDENCY",
                        "Dependencies must have id, name, and version",
                        f"dependencies[{i}]",
                    )
                )

        # --- Examples ---
        if self._validate_examples and not errors:
            for i, example in enumerate(spec.examples):
                if not self.validate_data(example.input, spec.input_schema).valid:
                    errors.append(
                        error_issue(
                            "EXAMPLE_INPUT_INVALID",
                            f"Example {i + 1} input does not match input schema",
                            f"invocation_spec.examples[{i}].input",
                        )
                    )
                if example.expected_output is not None and not self.validate_data(
                    example.expected_output, spec.output_schema
                ).valid:
                    errors.append(
                        error_issue(
                            "EXAMPLE_OUTPUT_INVALID",
                            f"Example {i + 1} output does not match output schema",
                            f"invocation_spec.examples[{i}].expected_output",
                        )
                    )

        # --- Metadata recommendations ---
        if not skill.metadata.author:
            warnings.append(warning_issue("MISSING_AUTHOR", "Author information is recommended"))
        if not skill.metadata.category:
            warnings.append(warning_issue("MISSING_CATEGORY", "Category information is recommended"))
        if not skill.metadata.tags:
            warnings.append(
                warning_issue("MISSING_TAGS", "Tags are recommended for better discoverability")
            )

        return ValidationResult.from_issues(errors, warnings)
