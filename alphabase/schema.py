"""JSON Schema validation for stored values."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from jsonschema import Draft202012Validator

from .interfaces import SchemaIssue, ValidationResult


def _path_to_str(path: Iterable[Any]) -> str:
    parts = ["$"]
    for part in path:
        if isinstance(part, int):
            parts.append(f"[{part}]")
        else:
            parts.append(f".{part}")
    return "".join(parts)


class JsonSchemaValidator:
    """
    Draft 2020-12 validator for a single schema.

    The schema itself is checked on construction, so a bad schema fails when
    the store opens rather than on the first write.
    """

    def __init__(self, schema: Mapping[str, Any]):
        Draft202012Validator.check_schema(schema)
        self._schema = dict(schema)
        self._validator = Draft202012Validator(self._schema)

    @property
    def schema(self) -> dict[str, Any]:
        return self._schema

    def validate(self, value: Any) -> ValidationResult:
        errors = sorted(
            self._validator.iter_errors(value),
            key=lambda err: (_path_to_str(err.absolute_path), err.message),
        )
        issues = tuple(SchemaIssue(path=_path_to_str(err.absolute_path), message=err.message) for err in errors)
        return ValidationResult(ok=not issues, errors=issues)
