"""Declarative schema validation with default-based recovery for persisted JSON.

Persisted state is flat JSON rewritten by processes that may crash at any
moment, so every reader has to cope with partial, stale or hand-edited files.
A schema is a mapping of field name to :class:`FieldSpec`; one generic
algorithm evaluates it for every entity kind. With ``recover=True`` a field
that fails its rules is replaced by its declared default and the problem is
reported as a *recovered* issue, turning a corrupt document into degraded
but usable state. Fields without a default cannot be recovered and keep the
document invalid.

Undeclared keys are passed through untouched so older readers accept files
written by newer versions.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from issue_pilot.common import parse_iso_or_none
from issue_pilot.diagnostics import NULL_DIAGNOSTICS, DiagnosticsSink

_MAX_REPORTED_ERRORS = 5


class FieldType(str, Enum):
    """JSON value kinds a field may declare."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


class _NoDefault:
    def __repr__(self) -> str:
        return "NO_DEFAULT"


NO_DEFAULT: Any = _NoDefault()


@dataclass(slots=True, frozen=True)
class FieldSpec:
    """Validation and recovery rules for one field."""

    type: FieldType
    required: bool = False
    min: float | None = None
    max: float | None = None
    integer: bool = False
    min_length: int | None = None
    max_length: int | None = None
    pattern: re.Pattern[str] | None = None
    timestamp: bool = False
    enum: tuple[str, ...] | None = None
    default: Any = NO_DEFAULT
    properties: Mapping[str, FieldSpec] | None = None
    items: FieldSpec | None = None

    @property
    def has_default(self) -> bool:
        return self.default is not NO_DEFAULT


@dataclass(slots=True, frozen=True)
class EntitySchema:
    """Named set of field rules for one persisted entity kind."""

    name: str
    fields: Mapping[str, FieldSpec]


@dataclass(slots=True)
class ValidationIssue:
    """One problem found during validation."""

    path: str
    message: str
    value: Any = None
    recovered: bool = False


@dataclass(slots=True)
class ValidationResult:
    """Outcome of validating a single document."""

    valid: bool
    data: dict[str, Any] | None
    errors: list[ValidationIssue] = field(default_factory=list)
    has_recoveries: bool = False


@dataclass(slots=True)
class ArrayValidationResult:
    """Outcome of validating a list of documents against one schema."""

    valid: bool
    data: list[Any]
    errors: list[ValidationIssue] = field(default_factory=list)
    dropped: list[int] = field(default_factory=list)


class SchemaValidator:
    """Evaluates :class:`EntitySchema` descriptors against decoded JSON."""

    def __init__(self, diagnostics: DiagnosticsSink | None = None) -> None:
        self.diagnostics = diagnostics or NULL_DIAGNOSTICS

    def validate(
        self,
        data: Any,
        schema: EntitySchema,
        *,
        recover: bool = True,
        file_path: str | None = None,
    ) -> ValidationResult:
        """Validate one document. Never raises; problems land in ``errors``."""

        if not isinstance(data, dict):
            issue = ValidationIssue(
                path="",
                message=f"Expected object for {schema.name}, got {json_type_name(data)}",
                value=data,
            )
            self._report(schema, [issue], file_path)
            return ValidationResult(valid=False, data=None, errors=[issue])

        issues: list[ValidationIssue] = []
        validated = dict(data)
        for name, spec in schema.fields.items():
            value, recovered = self._validate_field(data.get(name), spec, name, issues, recover)
            if recovered:
                validated[name] = value

        self._report(schema, issues, file_path)
        valid = not any(not issue.recovered for issue in issues)
        return ValidationResult(
            valid=valid,
            data=validated if valid else None,
            errors=issues,
            has_recoveries=any(issue.recovered for issue in issues),
        )

    def validate_array(
        self,
        items: Any,
        schema: EntitySchema,
        *,
        recover: bool = True,
        file_path: str | None = None,
    ) -> ArrayValidationResult:
        """Validate every element of a list.

        With ``recover`` elements that stay invalid after recovery are dropped
        and the remaining ones are returned; their issues are still reported.
        """

        if not isinstance(items, list):
            issue = ValidationIssue(
                path="",
                message=f"Expected array of {schema.name}, got {json_type_name(items)}",
                value=items,
            )
            self._report(schema, [issue], file_path)
            return ArrayValidationResult(valid=False, data=[], errors=[issue])

        kept: list[Any] = []
        issues: list[ValidationIssue] = []
        dropped: list[int] = []
        for index, item in enumerate(items):
            item_source = f"{file_path}[{index}]" if file_path else f"[{index}]"
            result = self.validate(item, schema, recover=recover, file_path=item_source)
            issues.extend(
                ValidationIssue(
                    path=_index_path(index, issue.path),
                    message=issue.message,
                    value=issue.value,
                    recovered=issue.recovered,
                )
                for issue in result.errors
            )
            if result.valid:
                kept.append(result.data)
            elif recover:
                dropped.append(index)
            else:
                kept.append(item)

        if dropped:
            source = f" in {file_path}" if file_path else ""
            self.diagnostics.emit(
                f"Skipped {len(dropped)} invalid item(s) from {schema.name} array{source}",
            )

        if recover:
            valid = True
        else:
            valid = not any(not issue.recovered for issue in issues)
        return ArrayValidationResult(valid=valid, data=kept, errors=issues, dropped=dropped)

    def _validate_field(
        self,
        value: Any,
        spec: FieldSpec,
        path: str,
        issues: list[ValidationIssue],
        recover: bool,
    ) -> tuple[Any, bool]:
        if value is None:
            if not spec.required:
                return value, False
            if recover and spec.has_default:
                default = copy.deepcopy(spec.default)
                issues.append(
                    ValidationIssue(
                        path=path,
                        message="Required field missing, using default",
                        value=default,
                        recovered=True,
                    ),
                )
                return default, True
            issues.append(ValidationIssue(path=path, message="Required field missing"))
            return value, False

        failures = list(_field_failures(value, spec))
        if failures:
            if recover and spec.has_default:
                default = copy.deepcopy(spec.default)
                issues.append(
                    ValidationIssue(
                        path=path,
                        message=f"{failures[0]}, using default",
                        value=default,
                        recovered=True,
                    ),
                )
                return default, True
            issues.extend(
                ValidationIssue(path=path, message=message, value=value) for message in failures
            )
            return value, False

        if spec.type is FieldType.OBJECT and spec.properties:
            nested = dict(value)
            nested_recovered = False
            for name, nested_spec in spec.properties.items():
                nested_value, recovered = self._validate_field(
                    value.get(name),
                    nested_spec,
                    f"{path}.{name}" if path else name,
                    issues,
                    recover,
                )
                if recovered:
                    nested[name] = nested_value
                    nested_recovered = True
            return (nested, True) if nested_recovered else (value, False)

        if spec.type is FieldType.ARRAY and spec.items is not None:
            elements = list(value)
            elements_recovered = False
            for index, element in enumerate(value):
                element_value, recovered = self._validate_field(
                    element,
                    spec.items,
                    f"{path}[{index}]",
                    issues,
                    recover,
                )
                if recovered:
                    elements[index] = element_value
                    elements_recovered = True
            return (elements, True) if elements_recovered else (value, False)

        return value, False

    def _report(
        self,
        schema: EntitySchema,
        issues: list[ValidationIssue],
        file_path: str | None,
    ) -> None:
        if not issues:
            return
        source = f" in {file_path}" if file_path else ""
        fatal = [issue for issue in issues if not issue.recovered]
        if fatal:
            self.diagnostics.emit(f"Schema validation errors for {schema.name}{source}:")
            for issue in fatal[:_MAX_REPORTED_ERRORS]:
                self.diagnostics.emit(f"  - {issue.path or '<root>'}: {issue.message}")
            if len(fatal) > _MAX_REPORTED_ERRORS:
                self.diagnostics.emit(
                    f"  ... and {len(fatal) - _MAX_REPORTED_ERRORS} more errors",
                )
        recovered_count = len(issues) - len(fatal)
        if recovered_count:
            self.diagnostics.emit(
                f"Recovered {recovered_count} field(s) of {schema.name}{source} using defaults",
            )


def json_type_name(value: Any) -> str:
    """JSON-flavoured type name of a decoded value."""

    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int | float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _field_failures(value: Any, spec: FieldSpec) -> Iterator[str]:
    actual = json_type_name(value)
    if actual != spec.type.value:
        yield f"Expected {spec.type.value}, got {actual}"
        return

    if spec.type is FieldType.NUMBER:
        if not math.isfinite(value):
            yield f"Expected finite number, got {value}"
            return
        if spec.integer and isinstance(value, float) and not value.is_integer():
            yield f"Expected integer, got {value}"
        if spec.min is not None and value < spec.min:
            yield f"Value {value} is below minimum {spec.min}"
        if spec.max is not None and value > spec.max:
            yield f"Value {value} exceeds maximum {spec.max}"

    elif spec.type is FieldType.STRING:
        if spec.min_length is not None and len(value) < spec.min_length:
            yield f"String length {len(value)} is below minimum {spec.min_length}"
        if spec.max_length is not None and len(value) > spec.max_length:
            yield f"String length {len(value)} exceeds maximum {spec.max_length}"
        if spec.pattern is not None and not spec.pattern.search(value):
            yield "String does not match expected pattern"
        elif spec.timestamp and parse_iso_or_none(value) is None:
            yield f"Invalid timestamp {value!r}"
        if spec.enum is not None and value not in spec.enum:
            yield f"Invalid enum value {value!r}, expected one of: {', '.join(spec.enum)}"


def _index_path(index: int, path: str) -> str:
    return f"[{index}].{path}" if path else f"[{index}]"
