"""Structural output contracts for agents.

A ``SchemaDescriptor`` is handed to the provider as its response schema and is
checked again against the decoded value, since the provider does not always
honour it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class SchemaKind(StrEnum):
    OBJECT = "object"
    ARRAY = "array"
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"


@dataclass(frozen=True, slots=True)
class SchemaDescriptor:
    kind: SchemaKind
    properties: dict[str, SchemaDescriptor] = field(default_factory=dict)
    items: SchemaDescriptor | None = None
    required: tuple[str, ...] = ()
    description: str | None = None

    def validate(self, value: Any, path: str = "$") -> list[str]:
        """Return structural violations of ``value``; an empty list means valid.

        Unknown extra object fields are tolerated. Required fields default to
        every declared property and may not be null; optional fields may be.
        """
        violations: list[str] = []
        if not _matches_kind(value, self.kind):
            violations.append(f"{path}: expected {self.kind.value}, got {_kind_name(value)}")
            return violations

        if self.kind is SchemaKind.OBJECT:
            required = self.required or tuple(self.properties)
            for name in required:
                if name not in value:
                    violations.append(f"{path}.{name}: missing required field")
                elif value[name] is None:
                    violations.append(f"{path}.{name}: null not allowed")
            for name, child in self.properties.items():
                if name in value and value[name] is not None:
                    violations.extend(child.validate(value[name], f"{path}.{name}"))

        if self.kind is SchemaKind.ARRAY and self.items is not None:
            for index, item in enumerate(value):
                violations.extend(self.items.validate(item, f"{path}[{index}]"))

        return violations


def obj(
    properties: dict[str, SchemaDescriptor],
    required: tuple[str, ...] | None = None,
    description: str | None = None,
) -> SchemaDescriptor:
    return SchemaDescriptor(
        kind=SchemaKind.OBJECT,
        properties=properties,
        required=tuple(properties) if required is None else required,
        description=description,
    )


def array_of(items: SchemaDescriptor, description: str | None = None) -> SchemaDescriptor:
    return SchemaDescriptor(kind=SchemaKind.ARRAY, items=items, description=description)


def string(description: str | None = None) -> SchemaDescriptor:
    return SchemaDescriptor(kind=SchemaKind.STRING, description=description)


def integer(description: str | None = None) -> SchemaDescriptor:
    return SchemaDescriptor(kind=SchemaKind.INTEGER, description=description)


def number(description: str | None = None) -> SchemaDescriptor:
    return SchemaDescriptor(kind=SchemaKind.NUMBER, description=description)


def boolean(description: str | None = None) -> SchemaDescriptor:
    return SchemaDescriptor(kind=SchemaKind.BOOLEAN, description=description)


def _matches_kind(value: Any, kind: SchemaKind) -> bool:
    if kind is SchemaKind.OBJECT:
        return isinstance(value, dict)
    if kind is SchemaKind.ARRAY:
        return isinstance(value, list)
    if kind is SchemaKind.STRING:
        return isinstance(value, str)
    if kind is SchemaKind.BOOLEAN:
        return isinstance(value, bool)
    if kind is SchemaKind.INTEGER:
        # Models emit 85.0 for integer fields often enough to accept integral floats.
        if isinstance(value, bool):
            return False
        return isinstance(value, int) or (
            isinstance(value, float) and math.isfinite(value) and value.is_integer()
        )
    if kind is SchemaKind.NUMBER:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        return math.isfinite(value)
    return True


def _kind_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, list):
        return "array"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (int, float)):
        return "number"
    return type(value).__name__
