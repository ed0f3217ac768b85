# ==============================================================================
# Payload Sanitizer - Pure Domain Logic
# ==============================================================================
"""
Bounds client telemetry before it is validated and stored.

Oversized input is cut down, never rejected: a runaway client must not be
able to fail a request (or balloon storage) with a large payload.
"""

import json
from collections.abc import Mapping
from typing import Any, NamedTuple

TRUNCATION_MARKER = "..."


class PayloadLimits(NamedTuple):
    """Size budgets applied to every payload."""

    max_key_length: int = 100
    max_string_length: int = 1000
    max_nested_length: int = 500
    max_payload_keys: int = 50

    @classmethod
    def from_settings(cls, ingestion) -> "PayloadLimits":
        return cls(
            max_key_length=ingestion.max_key_length,
            max_string_length=ingestion.max_string_length,
            max_nested_length=ingestion.max_nested_length,
            max_payload_keys=ingestion.max_payload_keys,
        )


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


def sanitize_value(value: Any, limits: PayloadLimits) -> Any:
    """
    Bound a single payload value.

    Strings are truncated, nested containers are flattened to a JSON string,
    scalars pass through unchanged.
    """
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return _truncate(value, limits.max_string_length)
    if isinstance(value, (Mapping, list, tuple, set)):
        if isinstance(value, Mapping):
            value = {str(k): v for k, v in value.items()}
        elif isinstance(value, set):
            value = sorted(value, key=str)
        flattened = json.dumps(value, default=str)
        return _truncate(flattened, limits.max_nested_length)
    return _truncate(str(value), limits.max_string_length)


def sanitize_payload(payload: Mapping[str, Any], limits: PayloadLimits = PayloadLimits()) -> dict[str, Any]:
    """
    Sanitize a payload mapping.

    Args:
        payload: Raw client payload
        limits: Size budgets

    Returns:
        New dict holding at most `max_payload_keys` entries. Keys longer than
        `max_key_length` are dropped; values are bounded by sanitize_value().
    """
    sanitized: dict[str, Any] = {}
    for key, value in payload.items():
        if len(sanitized) >= limits.max_payload_keys:
            break
        key = str(key)
        if len(key) > limits.max_key_length:
            continue
        sanitized[key] = sanitize_value(value, limits)
    return sanitized
