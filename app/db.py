from datetime import date, datetime, timezone
from typing import Any, Tuple

from flask import current_app

from app.constants import (
    DEFECT_LIST_FIELD,
    DEFECT_TYPES_KEY,
    INITIAL_DEFECT_TYPES,
    MONTHLY_TARGETS_KEY,
    PART_NAMES,
)
from app.records import normalize_record, normalize_records, record_payload
from config.supabase_schema import (
    column_name,
    from_supabase_row,
    table_name,
    to_supabase_payload,
)

DELETE_BATCH_SIZE = 499


def _get_client():
    """Return the configured Supabase client."""
    return current_app.config["SUPABASE"]


def _ensure_supabase_client() -> Tuple[Any, str | None]:
    """Return the configured Supabase client or an explanatory error.

    Returns:
        tuple: (client, error). When Supabase is unavailable the client will be
        ``None`` and ``error`` will contain a message explaining the failure.
    """

    supabase = current_app.config.get("SUPABASE")
    if not supabase or not hasattr(supabase, "table"):
        return None, (
            "Supabase client is not configured. Set SUPABASE_URL and SUPABASE_"
            "SERVICE_KEY to enable the inspection data store."
        )
    return supabase, None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _normalize_date_for_query(value: date | datetime | str | None) -> str | None:
    """Return an ISO formatted date string for Supabase filters."""

    if not value:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _fetch_paginated_rows(
    table: str, columns: str = "*", *, page_size: int = 1000
) -> list[dict]:
    """Fetch ``columns`` of every row of ``table`` newest first.

    Supabase caps responses to 1,000 rows by default, so the rows are read in
    ``page_size`` chunks until a short page comes back.
    """

    if page_size <= 0:
        raise ValueError("page_size must be greater than zero")

    supabase = _get_client()
    rows: list[dict] = []
    offset = 0
    while True:
        response = (
            supabase.table(table_name(table))
            .select(columns)
            .order(column_name(table, "date"), desc=True)
            .order(column_name(table, "shift"), desc=True)
            .range(offset, offset + page_size - 1)
            .execute()
        )
        batch = response.data or []
        rows.extend(batch)
        if len(batch) < page_size:
            break
        offset += page_size
    return rows


# ---------------------------------------------------------------------------
# Inspection records
# ---------------------------------------------------------------------------


def fetch_inspection_records() -> tuple[list[dict] | None, str | None]:
    """Return every inspection record, normalised, ordered date desc, shift desc."""

    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    try:
        rows = _fetch_paginated_rows("inspection_records")
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to fetch inspection records: {exc}"
    return normalize_records(from_supabase_row("inspection_records", row) for row in rows), None


def fetch_record_by_key(
    record_date: date | str, part_name: str, shift: str
) -> tuple[dict | None, str | None]:
    """Return the record stored for ``(record_date, part_name, shift)`` if any."""

    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    try:
        response = (
            supabase.table(table_name("inspection_records"))
            .select("*")
            .eq(column_name("inspection_records", "date"), _normalize_date_for_query(record_date))
            .eq(column_name("inspection_records", "part_name"), part_name)
            .eq(column_name("inspection_records", "shift"), shift)
            .limit(1)
            .execute()
        )
        rows = response.data or []
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to fetch inspection record: {exc}"
    if not rows:
        return None, None
    return normalize_record(from_supabase_row("inspection_records", rows[0])), None


def insert_inspection_record(record: dict) -> tuple[dict | None, str | None]:
    """Insert ``record`` and return the stored row."""

    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    payload = record_payload(record)
    now = _now_iso()
    payload["created_at"] = now
    payload["updated_at"] = now
    payload = to_supabase_payload("inspection_records", payload)

    try:
        response = supabase.table(table_name("inspection_records")).insert(payload).execute()
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to save inspection record: {exc}"
    rows = response.data or []
    stored = rows[0] if rows else payload
    return normalize_record(from_supabase_row("inspection_records", stored)), None


def update_inspection_record(record_id, record: dict) -> tuple[dict | None, str | None]:
    """Overwrite every stored field of the record identified by ``record_id``."""

    if record_id in (None, ""):
        return None, "Record id is required"

    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    payload = record_payload(record)
    payload["updated_at"] = _now_iso()
    payload = to_supabase_payload("inspection_records", payload)

    try:
        response = (
            supabase.table(table_name("inspection_records"))
            .update(payload)
            .eq(column_name("inspection_records", "id"), record_id)
            .execute()
        )
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to update inspection record: {exc}"
    rows = response.data or []
    if not rows:
        return None, "Inspection record not found."
    return normalize_record(from_supabase_row("inspection_records", rows[0])), None


def delete_inspection_record(record_id) -> tuple[list[dict] | None, str | None]:
    """Delete the record identified by ``record_id``."""

    if record_id in (None, ""):
        return None, "Record id is required"

    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    try:
        response = (
            supabase.table(table_name("inspection_records"))
            .delete()
            .eq(column_name("inspection_records", "id"), record_id)
            .execute()
        )
        return response.data, None
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to delete inspection record: {exc}"


def clear_inspection_records() -> tuple[str | None, str | None]:
    """Delete every inspection record in batches.

    Returns:
        tuple: ``(message, error)`` where ``message`` reports how many records
        were removed.
    """

    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    id_column = column_name("inspection_records", "id")
    try:
        rows = _fetch_paginated_rows("inspection_records", id_column)
        ids = [row.get(id_column) for row in rows if row.get(id_column) is not None]
        if not ids:
            return "No inspection records found to delete.", None

        for start in range(0, len(ids), DELETE_BATCH_SIZE):
            batch = ids[start:start + DELETE_BATCH_SIZE]
            (
                supabase.table(table_name("inspection_records"))
                .delete()
                .in_(id_column, batch)
                .execute()
            )
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to clear inspection records: {exc}"
    return f"Deleted {len(ids)} inspection records.", None


# ---------------------------------------------------------------------------
# Application configuration (monthly targets, defect vocabulary)
# ---------------------------------------------------------------------------


def _fetch_config_value(key: str) -> tuple[Any, str | None]:
    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    try:
        response = (
            supabase.table(table_name("app_config"))
            .select("*")
            .eq(column_name("app_config", "key"), key)
            .limit(1)
            .execute()
        )
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to fetch {key}: {exc}"
    rows = response.data or []
    if not rows:
        return None, None
    return rows[0].get(column_name("app_config", "value")), None


def _store_config_value(key: str, value: Any) -> tuple[list[dict] | None, str | None]:
    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    payload = to_supabase_payload(
        "app_config", {"key": key, "value": value, "updated_at": _now_iso()}
    )
    try:
        response = (
            supabase.table(table_name("app_config"))
            .upsert(payload, on_conflict=column_name("app_config", "key"))
            .execute()
        )
        return response.data or [], None
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to update {key}: {exc}"


def fetch_monthly_targets() -> tuple[dict[str, int], str | None]:
    """Return the monthly target of every part, defaulting to zero."""

    stored, error = _fetch_config_value(MONTHLY_TARGETS_KEY)
    targets = {part: 0 for part in PART_NAMES}
    if isinstance(stored, dict):
        for part in PART_NAMES:
            try:
                targets[part] = max(0, int(stored.get(part) or 0))
            except (TypeError, ValueError):
                targets[part] = 0
    return targets, error


def update_monthly_target(part_name: str, target: int) -> tuple[dict | None, str | None]:
    """Set ``part_name``'s monthly target, keeping the other parts' values."""

    if part_name not in PART_NAMES:
        return None, f"Unknown part: {part_name}"

    targets, error = fetch_monthly_targets()
    if error:
        return None, error
    targets[part_name] = target
    _, error = _store_config_value(MONTHLY_TARGETS_KEY, targets)
    if error:
        return None, error
    return targets, None


def fetch_defect_types() -> tuple[list[str], str | None]:
    """Return the defect vocabulary, falling back to the built-in list."""

    stored, error = _fetch_config_value(DEFECT_TYPES_KEY)
    if isinstance(stored, dict) and isinstance(stored.get(DEFECT_LIST_FIELD), list):
        return [str(item) for item in stored[DEFECT_LIST_FIELD]], error
    return list(INITIAL_DEFECT_TYPES), error


def add_defect_type(name: str) -> tuple[list[str] | None, str | None]:
    """Append ``name`` to the defect vocabulary unless it already exists."""

    trimmed = (name or "").strip()
    if not trimmed:
        return None, "Defect type cannot be empty."

    defects, error = fetch_defect_types()
    if error:
        return None, error
    if any(existing.casefold() == trimmed.casefold() for existing in defects):
        return None, f'"{trimmed}" already exists.'

    defects.append(trimmed)
    _, error = _store_config_value(DEFECT_TYPES_KEY, {DEFECT_LIST_FIELD: defects})
    if error:
        return None, error
    return defects, None


# ---------------------------------------------------------------------------
# Application users
# ---------------------------------------------------------------------------


def fetch_app_users(include_sensitive: bool = False) -> tuple[list[dict] | None, str | None]:
    """Return application users stored in Supabase.

    Args:
        include_sensitive: When ``True`` the returned records include sensitive
            fields such as ``password_hash``.  Callers must take care not to
            expose these values.

    Returns:
        tuple[list | None, str | None]: The list of user dictionaries or an
        error message if the query failed.
    """

    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    try:
        response = supabase.table(table_name("app_users")).select("*").execute()
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to fetch app users: {exc}"

    data = [from_supabase_row("app_users", row) for row in response.data or []]
    if not include_sensitive:
        data = [
            {key: value for key, value in row.items() if key != "password_hash"}
            for row in data
        ]
    return data, None


def fetch_app_user_credentials(username: str) -> tuple[dict | None, str | None]:
    """Return the Supabase record for ``username`` if it exists."""

    records, error = fetch_app_users(include_sensitive=True)
    if error:
        return None, error

    normalized = (username or "").casefold()
    for record in records or []:
        if (record.get("username") or "").casefold() == normalized:
            return record, None
    return None, None


def fetch_app_user(user_id) -> tuple[dict | None, str | None]:
    """Return the user identified by ``user_id`` without its password hash."""

    records, error = fetch_app_users()
    if error:
        return None, error
    for record in records or []:
        if str(record.get("id")) == str(user_id):
            return record, None
    return None, None


def insert_app_user(record: dict) -> tuple[list[dict] | None, str | None]:
    """Insert a new user into the ``app_users`` table."""

    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    payload = dict(record)
    now = _now_iso()
    payload.setdefault("created_at", now)
    payload["updated_at"] = now
    try:
        payload = to_supabase_payload("app_users", payload)
        response = supabase.table(table_name("app_users")).insert(payload).execute()
        return response.data, None
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to create user: {exc}"


def update_app_user(user_id, updates: dict[str, Any]) -> tuple[list[dict] | None, str | None]:
    """Update the role or status of the user identified by ``user_id``."""

    if not updates:
        return None, "No updates supplied"

    supabase, error = _ensure_supabase_client()
    if error:
        return None, error

    payload = dict(updates)
    payload["updated_at"] = _now_iso()
    payload = to_supabase_payload("app_users", payload)

    try:
        response = (
            supabase.table(table_name("app_users"))
            .update(payload)
            .eq(column_name("app_users", "id"), user_id)
            .execute()
        )
        return response.data, None
    except Exception as exc:  # pragma: no cover - network errors
        return None, f"Failed to update user: {exc}"
