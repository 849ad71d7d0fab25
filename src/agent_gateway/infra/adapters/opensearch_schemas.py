from __future__ import annotations

from typing import Any

from agent_gateway.domain.exceptions import StorageSchemaError

INDEX_ACCOUNTS = "gateway_accounts"
INDEX_SETTLEMENTS = "gateway_settlements"
INDEX_CREDITS = "gateway_credits"
INDEX_AUDIT = "gateway_audit"

ALL_INDEXES = [
    INDEX_ACCOUNTS,
    INDEX_SETTLEMENTS,
    INDEX_CREDITS,
    INDEX_AUDIT,
]

AUDIT_RETENTION_POLICY = "gateway-audit-retention-policy"
DEFAULT_AUDIT_RETENTION_DAYS = 365

_MAPPINGS: dict[str, dict[str, Any]] = {
    INDEX_ACCOUNTS: {
        "user_id": {"type": "keyword"},
        "tier": {"type": "keyword"},
        "status": {"type": "keyword"},
        "updated_at": {"type": "date"},
    },
    INDEX_SETTLEMENTS: {
        "reference": {"type": "keyword"},
        "user_id": {"type": "keyword"},
        "purchase_type": {"type": "keyword"},
        "claimed_at": {"type": "date"},
    },
    INDEX_CREDITS: {
        "reference": {"type": "keyword"},
        "user_id": {"type": "keyword"},
        "purchase_type": {"type": "keyword"},
        # Decimal amounts are stored as strings to keep minor units exact.
        "amount": {"type": "keyword"},
        "currency": {"type": "keyword"},
        "created_at": {"type": "date"},
    },
    INDEX_AUDIT: {
        "event_type": {"type": "keyword"},
        "reference": {"type": "keyword"},
        "status": {"type": "keyword"},
        "reason": {"type": "keyword"},
        "payload": {"type": "object", "enabled": True, "dynamic": True},
        "ts": {"type": "date"},
    },
}


def resolve_index_name(base_name: str, prefix: str = "") -> str:
    if not prefix:
        return base_name
    return f"{prefix}_{base_name}"


def build_index_definition(index_name: str) -> dict[str, Any]:
    properties = _MAPPINGS.get(index_name)
    if properties is None:
        msg = "unsupported_index_definition"
        raise ValueError(msg)

    definition: dict[str, Any] = {
        "mappings": {
            "dynamic": "strict",
            "properties": properties,
        }
    }
    if index_name == INDEX_AUDIT:
        definition["settings"] = {
            "index": {"plugins.index_state_management.policy_id": AUDIT_RETENTION_POLICY}
        }
    return definition


def build_audit_retention_policy(
    retention_days: int = DEFAULT_AUDIT_RETENTION_DAYS,
) -> dict[str, Any]:
    return {
        "policy": {
            "policy_id": AUDIT_RETENTION_POLICY,
            "description": "Retention policy for settlement audit records",
            "default_state": "hot",
            "states": [
                {
                    "name": "hot",
                    "actions": [],
                    "transitions": [
                        {
                            "state_name": "delete",
                            "conditions": {"min_index_age": f"{retention_days}d"},
                        }
                    ],
                },
                {
                    "name": "delete",
                    "actions": [{"delete": {}}],
                    "transitions": [],
                },
            ],
        }
    }


LOCAL_DOCUMENT_SCHEMAS: dict[str, dict[str, Any]] = {
    INDEX_ACCOUNTS: {
        "required": {
            "user_id": "string",
            "tier": "string",
            "status": "string",
            "updated_at": "string",
        },
        "optional": {},
    },
    INDEX_SETTLEMENTS: {
        "required": {
            "reference": "string",
            "purchase_type": "string",
            "claimed_at": "string",
        },
        "optional": {
            "user_id": "string_or_null",
        },
    },
    INDEX_CREDITS: {
        "required": {
            "reference": "string",
            "purchase_type": "string",
            "amount": "string",
            "currency": "string",
            "created_at": "string",
        },
        "optional": {
            "user_id": "string_or_null",
        },
    },
    INDEX_AUDIT: {
        "required": {
            "event_type": "string",
            "status": "string",
            "reason": "string",
            "payload": "object",
            "ts": "string",
        },
        "optional": {
            "reference": "string_or_null",
        },
    },
}


def validate_document_schema(index_name: str, document: dict[str, Any]) -> None:
    schema = LOCAL_DOCUMENT_SCHEMAS.get(index_name)
    if schema is None:
        msg = f"schema_not_found:{index_name}"
        raise StorageSchemaError(msg)

    required_fields = schema["required"]
    optional_fields = schema["optional"]
    allowed_fields = set(required_fields) | set(optional_fields)

    for field_name in required_fields:
        if field_name not in document:
            msg = f"storage_schema_error: missing required field '{field_name}'"
            raise StorageSchemaError(msg)

    for field_name in document:
        if field_name not in allowed_fields:
            msg = f"storage_schema_error: unexpected field '{field_name}'"
            raise StorageSchemaError(msg)

    for field_name, value in document.items():
        expected = required_fields.get(field_name) or optional_fields[field_name]
        if not _matches_type(value, expected):
            msg = f"storage_schema_error: field '{field_name}' must be {expected.replace('_', ' ')}"
            raise StorageSchemaError(msg)


def _matches_type(value: Any, expected_type: str) -> bool:
    if expected_type == "string":
        return isinstance(value, str)
    if expected_type == "string_or_null":
        return value is None or isinstance(value, str)
    if expected_type == "object":
        return isinstance(value, dict)
    return False
