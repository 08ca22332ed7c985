"""Declarative parameter schemas for tools.

A :class:`ToolSchema` serves two purposes: it is exported as JSON Schema for the
model endpoint and the tools prompt, and it validates candidate arguments
before a tool is executed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from jsonschema import Draft7Validator, ValidationError

__all__ = ["ParameterSchema", "SchemaValidationError", "ToolSchema"]


class SchemaValidationError(ValueError):
    """Raised when tool arguments do not satisfy the declared schema."""

    def __init__(self, errors: Sequence[str]) -> None:
        self.errors = list(errors)
        super().__init__("Parameter validation failed: " + "; ".join(self.errors))


@dataclass(slots=True, frozen=True)
class ParameterSchema:
    """Schema for a single tool parameter.

    Attributes:
        name: Parameter name.
        type: JSON Schema type (string, integer, number, boolean, object, array).
        description: Human-readable description.
        required: Whether the parameter is required.
        default: Value filled in when the parameter is absent.
        enum: Allowed values.
        minimum: Minimum value for numbers.
        maximum: Maximum value for numbers.
        min_length: Minimum string length.
        properties: Nested properties for object types.
        items: Schema for array items.
    """

    name: str
    type: str
    description: str = ""
    required: bool = False
    default: Any = None
    enum: Sequence[Any] | None = None
    minimum: int | float | None = None
    maximum: int | float | None = None
    min_length: int | None = None
    properties: Sequence["ParameterSchema"] | None = None
    items: "ParameterSchema" | None = None

    def to_json_schema(self) -> dict[str, Any]:
        """Convert to JSON Schema format."""
        schema: dict[str, Any] = {"type": self.type}
        if self.description:
            schema["description"] = self.description
        if self.default is not None:
            schema["default"] = self.default
        if self.enum:
            schema["enum"] = list(self.enum)
        if self.minimum is not None:
            schema["minimum"] = self.minimum
        if self.maximum is not None:
            schema["maximum"] = self.maximum
        if self.min_length is not None:
            schema["minLength"] = self.min_length
        if self.properties:
            schema["properties"] = {prop.name: prop.to_json_schema() for prop in self.properties}
            required = [prop.name for prop in self.properties if prop.required]
            if required:
                schema["required"] = required
            schema["additionalProperties"] = False
        if self.items is not None:
            schema["items"] = self.items.to_json_schema()
        return schema


@dataclass(slots=True, frozen=True)
class ToolSchema:
    """Parameter list for one tool."""

    parameters: Sequence[ParameterSchema] = field(default_factory=tuple)

    def to_json_schema(self) -> dict[str, Any]:
        """Convert to JSON Schema format for OpenAI function calling."""
        properties: dict[str, Any] = {}
        required: list[str] = []
        for param in self.parameters:
            properties[param.name] = param.to_json_schema()
            if param.required:
                required.append(param.name)

        schema: dict[str, Any] = {
            "type": "object",
            "properties": properties,
            "additionalProperties": False,
        }
        if required:
            schema["required"] = required
        return schema

    def validate(self, arguments: Mapping[str, Any]) -> dict[str, Any]:
        """Return arguments with defaults applied or raise :class:`SchemaValidationError`.

        Optional parameters sent as ``null`` count as absent. Everything else is
        checked with a Draft 7 validator built from :meth:`to_json_schema`, so
        undeclared keys are rejected exactly as the exported schema says.
        """
        if not isinstance(arguments, Mapping):
            raise SchemaValidationError([f"arguments must be an object, got {type(arguments).__name__}"])
        candidate = _with_defaults(self.parameters, arguments)
        validator = Draft7Validator(self.to_json_schema())
        errors = sorted(validator.iter_errors(candidate), key=lambda error: [str(part) for part in error.absolute_path])
        if errors:
            raise SchemaValidationError([_format_validation_error(error) for error in errors])
        return candidate


def _with_defaults(parameters: Sequence[ParameterSchema], value: Mapping[str, Any]) -> dict[str, Any]:
    filled = dict(value)
    for prop in parameters:
        current = filled.get(prop.name)
        if current is None:
            if prop.required:
                continue
            filled.pop(prop.name, None)
            if prop.default is not None:
                filled[prop.name] = prop.default
            continue
        filled[prop.name] = _nested_defaults(prop, current)
    return filled


def _nested_defaults(prop: ParameterSchema, value: Any) -> Any:
    if prop.type == "object" and prop.properties and isinstance(value, Mapping):
        return _with_defaults(prop.properties, value)
    if prop.type == "array" and prop.items is not None and isinstance(value, list):
        return [_nested_defaults(prop.items, item) for item in value]
    return value


def _format_validation_error(error: ValidationError) -> str:
    path = ""
    for part in error.absolute_path:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    if path:
        return f"{path}: {error.message}"
    return error.message
