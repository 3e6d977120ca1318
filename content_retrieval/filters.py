"""Translate :class:`RetrievalFilters` into a DuckDB WHERE clause."""

import json
from typing import Any, Dict, List, Tuple

from .models import WELL_KNOWN_FIELDS, RetrievalFilters

# Pass-through keys that live in their own column rather than raw_metadata.
_COLUMN_KEYS = {**WELL_KNOWN_FIELDS, "content": "content"}


def _json_path(key: str) -> str:
    escaped = key.replace("\\", "\\\\").replace('"', '\\"')
    return f'$."{escaped}"'


def _raw_value(value: Any) -> str:
    # json_extract_string renders scalars the way json.dumps does, strings unquoted.
    return value if isinstance(value, str) else json.dumps(value)


def build_filter_clause(
    filters: RetrievalFilters | None,
    param_prefix: str = "f_",
) -> Tuple[str, Dict[str, Any]]:
    """Return ``(sql, params)`` for a conjunctive filter.

    Equality filters hit the first-class columns, ``publishedAfter`` and
    ``publishedBefore`` are inclusive bounds on ``published_at``,
    ``startTimeRange`` is an inclusive range on ``start_time``. Any other key
    is an equality test against the raw metadata JSON. An empty filter
    yields ``"TRUE"``.
    """
    if filters is None:
        return "TRUE", {}

    clauses: List[str] = []
    params: Dict[str, Any] = {}

    def bind(name: str, value: Any) -> str:
        key = f"{param_prefix}{name}"
        params[key] = value
        return f":{key}"

    if filters.video_id is not None:
        clauses.append(f"video_id = {bind('video_id', filters.video_id)}")
    if filters.playlist_id is not None:
        clauses.append(f"playlist_id = {bind('playlist_id', filters.playlist_id)}")
    if filters.published_after is not None:
        clauses.append(
            f"published_at >= {bind('published_after', filters.published_after)}"
        )
    if filters.published_before is not None:
        clauses.append(
            f"published_at <= {bind('published_before', filters.published_before)}"
        )
    if filters.start_time_range is not None:
        if filters.start_time_range.min is not None:
            clauses.append(
                f"start_time >= {bind('start_time_min', filters.start_time_range.min)}"
            )
        if filters.start_time_range.max is not None:
            clauses.append(
                f"start_time <= {bind('start_time_max', filters.start_time_range.max)}"
            )

    for i, (key, value) in enumerate(sorted(filters.extra_filters.items())):
        column = _COLUMN_KEYS.get(key)
        if column is not None:
            if value is None:
                clauses.append(f"{column} IS NULL")
            else:
                clauses.append(f"{column} = {bind(f'extra_{i}', value)}")
            continue
        path = bind(f"path_{i}", _json_path(key))
        if value is None:
            clauses.append(f"json_extract_string(raw_metadata, {path}) IS NULL")
        else:
            clauses.append(
                f"json_extract_string(raw_metadata, {path}) = "
                f"{bind(f'extra_{i}', _raw_value(value))}"
            )

    return (" AND ".join(clauses) if clauses else "TRUE"), params
