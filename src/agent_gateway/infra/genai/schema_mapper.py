from __future__ import annotations

from google.genai import types

from agent_gateway.domain.schema import SchemaDescriptor, SchemaKind

_TYPE_BY_KIND = {
    SchemaKind.OBJECT: types.Type.OBJECT,
    SchemaKind.ARRAY: types.Type.ARRAY,
    SchemaKind.STRING: types.Type.STRING,
    SchemaKind.INTEGER: types.Type.INTEGER,
    SchemaKind.NUMBER: types.Type.NUMBER,
    SchemaKind.BOOLEAN: types.Type.BOOLEAN,
}


def to_genai_schema(descriptor: SchemaDescriptor) -> types.Schema:
    """Render a descriptor as the provider's response schema, recursively."""
    properties = None
    required = None
    if descriptor.properties:
        properties = {
            name: to_genai_schema(child) for name, child in descriptor.properties.items()
        }
        required = list(descriptor.required or descriptor.properties)
    return types.Schema(
        type=_TYPE_BY_KIND[descriptor.kind],
        description=descriptor.description or None,
        properties=properties,
        required=required,
        items=to_genai_schema(descriptor.items) if descriptor.items is not None else None,
    )
