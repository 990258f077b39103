"""Parameter helpers: identifier validation, normalization and summaries."""

import json
import re
from typing import Any

from api_cache.core.exceptions import ValidationError

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
MAX_PARAM_DEPTH = 20
SUMMARY_VALUE_LENGTH = 100


def validate_identifier(identifier: str) -> str:
    """Ensure an identifier only contains ASCII letters, digits, ``-`` and ``_``.

    Raises:
        ValidationError: If the identifier is empty or contains anything else
    """
    if not isinstance(identifier, str) or not IDENTIFIER_PATTERN.fullmatch(identifier):
        raise ValidationError(
            f"Invalid identifier {identifier!r}: only letters, digits, hyphens and underscores are allowed",
            {"identifier": identifier},
        )
    return identifier


def normalize_params(params: Any, depth: int = 0) -> Any:
    """Recursively sort mapping keys so equal parameter sets normalize identically.

    Lists keep their order. Scalars (None, bool, int, float, str) are returned
    as-is so their JSON encodings stay distinct.

    Raises:
        ValidationError: For values that cannot be serialized to JSON or
            nesting deeper than MAX_PARAM_DEPTH, or keys that collide once
            converted to strings (``1`` and ``"1"``)
    """
    if depth > MAX_PARAM_DEPTH:
        raise ValidationError(f"Parameters nested deeper than {MAX_PARAM_DEPTH} levels")

    if isinstance(params, dict):
        normalized = {}
        for k in sorted(params, key=str):
            name = str(k)
            if name in normalized:
                raise ValidationError(f"Parameter key {name!r} appears more than once", {"key": name})
            normalized[name] = normalize_params(params[k], depth + 1)
        return normalized
    if isinstance(params, (list, tuple)):
        return [normalize_params(v, depth + 1) for v in params]
    if params is None or isinstance(params, (bool, int, float, str)):
        return params

    raise ValidationError(
        f"Unsupported parameter value of type {type(params).__name__}",
        {"type": type(params).__name__},
    )


def canonical_json(params: Any) -> str:
    """Deterministic JSON encoding of normalized params."""
    return json.dumps(normalize_params(params), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _truncate(value: str, length: int = SUMMARY_VALUE_LENGTH) -> str:
    if len(value) > length:
        return value[:length] + "..."
    return value


def summarize_params(params: Any, pretty: bool = False) -> str:
    """Short human-readable digest of request params.

    Null values are dropped, long strings are cut to 100 characters, nested
    structures are flattened to a truncated JSON string. A list holding a
    single mapping (a one-task payload) is summarized as that mapping.
    """
    if isinstance(params, (list, tuple)) and len(params) == 1 and isinstance(params[0], dict):
        params = params[0]

    def summarize_value(value):
        if isinstance(value, str):
            return _truncate(value)
        if isinstance(value, (dict, list, tuple)):
            return _truncate(canonical_json(value))
        return value

    if isinstance(params, dict):
        summary: Any = {
            str(k): summarize_value(v) for k, v in sorted(params.items(), key=lambda kv: str(kv[0])) if v is not None
        }
    elif isinstance(params, (list, tuple)):
        summary = [summarize_value(v) for v in params if v is not None]
    else:
        summary = summarize_value(params)

    if pretty:
        return json.dumps(summary, indent=4, ensure_ascii=False)
    return json.dumps(summary, separators=(",", ":"), ensure_ascii=False)
