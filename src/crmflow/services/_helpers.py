"""Shared service-layer helper functions."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any


def now_iso() -> str:
    """Current UTC time as standard ISO 8601."""
    return datetime.now(UTC).isoformat()


def dumps(value: Any) -> str:
    """JSON-encode a context or payload for a TEXT column."""
    return json.dumps(value, default=str, sort_keys=False)


def loads(raw: str | None, default: Any = None) -> Any:
    """Decode a JSON TEXT column, returning *default* for NULL."""
    if raw is None or raw == "":
        return default
    return json.loads(raw)


def row_to_dict(row: Any, *, json_columns: tuple[str, ...] = ()) -> dict[str, Any]:
    """Convert a SQLAlchemy row to a plain dict, decoding *json_columns*.

    Integer flag columns (``is_bundle``, ``archived`` ...) become bools.

    Examples:
        >>> class R:
        ...     _mapping = {"id": "wf_1", "archived": 0, "bundle_inputs": "[]"}
        >>> row_to_dict(R(), json_columns=("bundle_inputs",))
        {'id': 'wf_1', 'archived': False, 'bundle_inputs': []}
    """
    out: dict[str, Any] = {}
    for key, value in row._mapping.items():
        if key in json_columns:
            out[key] = loads(value, default=None)
        elif key in _FLAG_COLUMNS:
            out[key] = bool(value)
        else:
            out[key] = value
    return out


_FLAG_COLUMNS = frozenset({"is_bundle", "is_template", "archived", "is_default", "is_active"})


def parse_json_option(raw: str | None) -> Any:
    """Parse a JSON string supplied on the command line (``--data``).

    Raises:
        ValueError: If *raw* is not valid JSON.
    """
    if raw is None or raw.strip() == "":
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        msg = f"Invalid JSON: {exc.msg}"
        raise ValueError(msg) from exc
