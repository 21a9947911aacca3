"""Serialization helpers for documents, Temporal payloads and audit logs."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict


def sanitize_for_json(data: Any) -> Any:
    """
    Recursively convert Decimal, datetime and Enum values to JSON-safe values.

    Decimals become strings so that money keeps its full precision when it
    is written to Couchbase or handed to Temporal.

    Args:
        data: Any data structure that might contain Decimal values

    Returns:
        Data with all Decimal/datetime/Enum values converted
    """
    if isinstance(data, Enum):
        return data.value
    elif isinstance(data, Decimal):
        return str(data)
    elif isinstance(data, datetime):
        return data.isoformat()
    elif isinstance(data, dict):
        return {key: sanitize_for_json(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [sanitize_for_json(item) for item in data]
    elif isinstance(data, tuple):
        return tuple(sanitize_for_json(item) for item in data)
    else:
        return data


def prepare_activity_result(result: Dict[str, Any]) -> Dict[str, Any]:
    """Prepare an activity result for return to a Temporal workflow."""
    return sanitize_for_json(result)
