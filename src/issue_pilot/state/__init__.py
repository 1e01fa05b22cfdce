"""Schema-validated JSON state shared by worker processes."""

from issue_pilot.state.files import StateFileError, atomic_write_json, load_json
from issue_pilot.state.schema import (
    NO_DEFAULT,
    ArrayValidationResult,
    EntitySchema,
    FieldSpec,
    FieldType,
    SchemaValidator,
    ValidationIssue,
    ValidationResult,
)
from issue_pilot.state.schemas import DATA_BOUNDS, get_schema, schema_names, validate

__all__ = [
    "DATA_BOUNDS",
    "NO_DEFAULT",
    "ArrayValidationResult",
    "EntitySchema",
    "FieldSpec",
    "FieldType",
    "SchemaValidator",
    "StateFileError",
    "ValidationIssue",
    "ValidationResult",
    "atomic_write_json",
    "get_schema",
    "load_json",
    "schema_names",
    "validate",
]
