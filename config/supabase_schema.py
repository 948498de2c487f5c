"""Centralised Supabase table and column configuration.

InspectZen stores its data in three Supabase/PostgREST tables.  Each table
name and column identifier used by the code base is defined here so that
deployments can adjust naming conventions without needing to modify
application logic.  When a mapping for a particular table or column is not
present the helper functions fall back to the identifier supplied by the
caller.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping


@dataclass(frozen=True)
class SupabaseTable:
    """Configuration for a Supabase table."""

    name: str
    columns: Mapping[str, str] = field(default_factory=dict)


# Default table and column mappings. These act as fallbacks if no environment
# overrides are supplied.
_DEFAULT_SUPABASE_SCHEMA: Dict[str, SupabaseTable] = {
    "inspection_records": SupabaseTable(
        name="inspection_records",
        columns={
            "id": "id",
            "date": "date",
            "part_name": "part_name",
            "shift": "shift",
            "material_inspection": "material_inspection",
            "final_inspection": "final_inspection",
            "tpi_inspection": "tpi_inspection",
            "dispatch": "dispatch",
            "rejections": "rejections",
            "tpi_rejections": "tpi_rejections",
            "created_at": "created_at",
            "updated_at": "updated_at",
        },
    ),
    "app_config": SupabaseTable(
        name="app_config",
        columns={
            "key": "key",
            "value": "value",
            "updated_at": "updated_at",
        },
    ),
    "app_users": SupabaseTable(
        name="app_users",
        columns={
            "id": "id",
            "username": "username",
            "display_name": "display_name",
            "mobile": "mobile",
            "password_hash": "password_hash",
            "role": "role",
            "status": "status",
            "created_at": "created_at",
            "updated_at": "updated_at",
        },
    ),
}


def _normalise_columns(columns: Any) -> Dict[str, str]:
    """Return a string-to-string column mapping from ``columns``."""

    if not isinstance(columns, Mapping):
        return {}
    return {
        str(logical): str(actual)
        for logical, actual in columns.items()
        if isinstance(logical, str) and isinstance(actual, str)
    }


def _merge_table(base: SupabaseTable | None, entry: Mapping[str, Any]) -> SupabaseTable | None:
    """Overlay one ``SUPABASE_SCHEMA_JSON`` entry on the default table.

    A partial column mapping only renames the columns it lists; every other
    logical column keeps its default identifier.
    """

    name = entry.get("name")
    if not isinstance(name, str) or not name:
        if base is None:
            return None
        name = base.name

    columns = dict(base.columns) if base else {}
    columns.update(_normalise_columns(entry.get("columns", {})))
    return SupabaseTable(name=name, columns=columns)


def load_schema(raw_schema: str | None = None) -> Dict[str, SupabaseTable]:
    """Build the table mapping, applying ``raw_schema`` JSON overrides if given."""

    schema = dict(_DEFAULT_SUPABASE_SCHEMA)
    if not raw_schema:
        return schema

    try:
        parsed = json.loads(raw_schema)
    except json.JSONDecodeError:
        return schema
    if not isinstance(parsed, Mapping):
        return schema

    for identifier, entry in parsed.items():
        if not isinstance(identifier, str) or not isinstance(entry, Mapping):
            continue
        merged = _merge_table(schema.get(identifier), entry)
        if merged is not None:
            schema[identifier] = merged
    return schema


SUPABASE_SCHEMA: Dict[str, SupabaseTable] = load_schema(os.getenv("SUPABASE_SCHEMA_JSON"))


def table_name(identifier: str) -> str:
    """Return the configured Supabase table name for ``identifier``."""

    table = SUPABASE_SCHEMA.get(identifier)
    if table:
        return table.name
    return identifier


def column_name(table_identifier: str, column_identifier: str) -> str:
    """Return the configured column name for ``table_identifier``."""

    table = SUPABASE_SCHEMA.get(table_identifier)
    if table and column_identifier in table.columns:
        return table.columns[column_identifier]
    return column_identifier


def table_columns(table_identifier: str) -> Mapping[str, str]:
    """Return the configured column mapping for ``table_identifier``."""

    table = SUPABASE_SCHEMA.get(table_identifier)
    if table:
        return table.columns
    return {}


def to_supabase_payload(
    table_identifier: str, payload: Mapping[str, Any]
) -> Dict[str, Any]:
    """Return ``payload`` with keys mapped to Supabase column names."""

    columns = table_columns(table_identifier)
    if not columns:
        return dict(payload)
    return {columns.get(key, key): value for key, value in payload.items()}


def from_supabase_row(
    table_identifier: str, row: Mapping[str, Any]
) -> Dict[str, Any]:
    """Return ``row`` with Supabase column names mapped back to logical keys."""

    columns = table_columns(table_identifier)
    if not columns:
        return dict(row)
    reverse = {actual: logical for logical, actual in columns.items()}
    return {reverse.get(key, key): value for key, value in row.items()}
