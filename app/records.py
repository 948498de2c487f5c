"""Inspection record shape, normalisation and form validation.

Records travel through the application as plain dictionaries, exactly as the
Supabase client returns them.  The helpers here fill in missing counter
groups, coerce counters to integers and validate submitted form payloads
before they are written back to the store.
"""

from __future__ import annotations

import copy
import json
import math
from datetime import date, datetime
from typing import Any, Iterable

from app.constants import PART_NAMES, SHIFT_OPTIONS

DEFAULT_INSPECTION_VALUES: dict[str, Any] = {
    "material_inspection": {"washing_pending": 0, "multigauge_pending": 0},
    "final_inspection": {
        "multigauge": {"total": 0, "ok": 0, "not_ok": 0},
        "visual": {"pending": 0, "visual_done": 0, "ok": 0, "not_ok": 0},
    },
    "tpi_inspection": {"pending": 0, "done": 0, "ok": 0, "not_ok": 0},
    "dispatch": {
        "rfd": {"cumulative": 0, "today": 0},
        "dispatch": {"cumulative": 0, "today": 0},
    },
    "rejections": [],
    "tpi_rejections": [],
}

# Every integer counter of a record, addressed by its nested key path.
COUNTER_PATHS: list[tuple[str, ...]] = [
    ("material_inspection", "washing_pending"),
    ("material_inspection", "multigauge_pending"),
    ("final_inspection", "multigauge", "total"),
    ("final_inspection", "multigauge", "ok"),
    ("final_inspection", "multigauge", "not_ok"),
    ("final_inspection", "visual", "pending"),
    ("final_inspection", "visual", "visual_done"),
    ("final_inspection", "visual", "ok"),
    ("final_inspection", "visual", "not_ok"),
    ("tpi_inspection", "pending"),
    ("tpi_inspection", "done"),
    ("tpi_inspection", "ok"),
    ("tpi_inspection", "not_ok"),
    ("dispatch", "rfd", "cumulative"),
    ("dispatch", "rfd", "today"),
    ("dispatch", "dispatch", "cumulative"),
    ("dispatch", "dispatch", "today"),
]

REJECTION_LISTS = ("rejections", "tpi_rejections")


def default_record_values() -> dict[str, Any]:
    """Return a fresh copy of the zeroed counter groups."""

    return copy.deepcopy(DEFAULT_INSPECTION_VALUES)


def path_key(path: Iterable[str]) -> str:
    return ".".join(path)


def get_path(record: dict, path: Iterable[str], default: Any = 0) -> Any:
    """Return the value stored at ``path`` inside ``record``."""

    current: Any = record
    for key in path:
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
    return current


def set_path(record: dict, path: tuple[str, ...], value: Any) -> None:
    current = record
    for key in path[:-1]:
        current = current.setdefault(key, {})
    current[path[-1]] = value


def parse_record_date(value: Any) -> date | None:
    """Return ``value`` as a :class:`date` or ``None`` when it cannot be parsed."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def coerce_count(value: Any) -> int | None:
    """Return ``value`` as a whole number, or ``None`` when it is not one."""

    if value is None:
        return 0
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value) or not value.is_integer():
            return None
        return int(value)
    text = str(value).strip().replace(",", "")
    if not text:
        return 0
    try:
        number = float(text)
    except ValueError:
        return None
    if math.isnan(number) or math.isinf(number) or not number.is_integer():
        return None
    return int(number)


def _normalize_rejections(entries: Any) -> list[dict]:
    if isinstance(entries, str):
        try:
            entries = json.loads(entries)
        except json.JSONDecodeError:
            return []
    normalized: list[dict] = []
    for entry in entries or []:
        if not isinstance(entry, dict):
            continue
        defect = entry.get("defect_type") or entry.get("defectType") or ""
        quantity = coerce_count(entry.get("quantity")) or 0
        remarks = entry.get("remarks") or None
        normalized.append(
            {"defect_type": str(defect), "quantity": quantity, "remarks": remarks}
        )
    return normalized


def normalize_record(row: dict) -> dict:
    """Return a copy of ``row`` with every counter group present.

    Missing counters default to zero and a missing shift defaults to shift A.
    The multigauge total is recomputed from its OK and Not OK counts.
    """

    record = default_record_values()
    for key in ("id", "created_at", "updated_at"):
        if row.get(key) is not None:
            record[key] = row[key]

    parsed = parse_record_date(row.get("date"))
    record["date"] = parsed.isoformat() if parsed else row.get("date")
    record["part_name"] = row.get("part_name")
    record["shift"] = row.get("shift") or SHIFT_OPTIONS[0]

    groups = {}
    for key in ("material_inspection", "final_inspection", "tpi_inspection", "dispatch"):
        group = row.get(key)
        if isinstance(group, str):
            # JSON columns can come back serialised from some PostgREST setups.
            try:
                group = json.loads(group)
            except json.JSONDecodeError:
                group = None
        groups[key] = group if isinstance(group, dict) else {}

    for path in COUNTER_PATHS:
        value = coerce_count(get_path(groups, path, None))
        set_path(record, path, value if value is not None and value >= 0 else 0)

    multigauge = record["final_inspection"]["multigauge"]
    multigauge["total"] = multigauge["ok"] + multigauge["not_ok"]

    for list_key in REJECTION_LISTS:
        record[list_key] = _normalize_rejections(row.get(list_key))
    return record


def normalize_records(rows: Iterable[dict]) -> list[dict]:
    return [normalize_record(row) for row in rows or [] if isinstance(row, dict)]


def record_sort_key(record: dict) -> tuple[date, str]:
    """Chronological key: calendar date first, then shift letter."""

    return (parse_record_date(record.get("date")) or date.min, record.get("shift") or "")


def find_record(records: Iterable[dict], record_date: Any, part_name: str, shift: str) -> dict | None:
    """Return the record addressed by ``(date, part_name, shift)`` if present."""

    target = parse_record_date(record_date)
    for record in records:
        if (
            parse_record_date(record.get("date")) == target
            and record.get("part_name") == part_name
            and record.get("shift") == shift
        ):
            return record
    return None


def record_payload(record: dict) -> dict:
    """Return the storable fields of ``record`` (no id or timestamps)."""

    payload = {
        "date": record.get("date"),
        "part_name": record.get("part_name"),
        "shift": record.get("shift"),
    }
    for key in DEFAULT_INSPECTION_VALUES:
        payload[key] = copy.deepcopy(record.get(key, DEFAULT_INSPECTION_VALUES[key]))
    return payload


def _clean_rejections(entries: Any, list_key: str, errors: dict[str, str]) -> list[dict]:
    if entries in (None, ""):
        return []
    if not isinstance(entries, list):
        errors[list_key] = "Rejections must be a list."
        return []

    cleaned: list[dict] = []
    for index, entry in enumerate(entries):
        prefix = f"{list_key}.{index}"
        if not isinstance(entry, dict):
            errors[prefix] = "Invalid rejection entry."
            continue
        defect = str(entry.get("defect_type") or "").strip()
        if not defect:
            errors[f"{prefix}.defect_type"] = "Defect type cannot be empty."
        quantity = coerce_count(entry.get("quantity"))
        if quantity is None or quantity < 1:
            errors[f"{prefix}.quantity"] = "Quantity must be at least 1."
        remarks = entry.get("remarks")
        remarks = str(remarks).strip() if remarks not in (None, "") else None
        cleaned.append(
            {"defect_type": defect, "quantity": quantity or 0, "remarks": remarks or None}
        )
    return cleaned


def clean_inspection_form(payload: dict) -> tuple[dict, dict[str, str]]:
    """Parse a submitted form payload into a record.

    Returns:
        tuple: ``(record, errors)``.  ``errors`` maps dotted field paths to a
        message and is empty when the payload is well formed.
    """

    errors: dict[str, str] = {}
    payload = payload or {}

    record = default_record_values()
    parsed_date = parse_record_date(payload.get("date"))
    if payload.get("date") in (None, ""):
        errors["date"] = "Date is required."
    elif parsed_date is None:
        errors["date"] = "Date must be formatted as YYYY-MM-DD."
    record["date"] = parsed_date.isoformat() if parsed_date else None

    part_name = payload.get("part_name")
    if part_name not in PART_NAMES:
        errors["part_name"] = "Part name is required."
    record["part_name"] = part_name

    shift = payload.get("shift")
    if shift not in SHIFT_OPTIONS:
        errors["shift"] = "Shift is required."
    record["shift"] = shift

    for path in COUNTER_PATHS:
        raw = get_path(payload, path, 0)
        value = coerce_count(raw)
        if value is None:
            errors[path_key(path)] = "Value must be a whole number."
            value = 0
        elif value < 0:
            errors[path_key(path)] = "Value cannot be negative."
        set_path(record, path, value)

    for list_key in REJECTION_LISTS:
        record[list_key] = _clean_rejections(payload.get(list_key), list_key, errors)

    return record, errors


def check_inspection_invariants(record: dict) -> dict[str, str]:
    """Return errors for counter combinations that cannot be saved."""

    errors: dict[str, str] = {}
    visual = record["final_inspection"]["visual"]
    if visual["ok"] + visual["not_ok"] > visual["visual_done"]:
        message = "Sum of OK and Not OK cannot exceed Visual Done."
        errors["final_inspection.visual.ok"] = message
        errors["final_inspection.visual.not_ok"] = message

    tpi = record["tpi_inspection"]
    if tpi["ok"] + tpi["not_ok"] > tpi["done"]:
        message = "Sum of TPI OK and Not OK cannot exceed TPI Done."
        errors["tpi_inspection.ok"] = message
        errors["tpi_inspection.not_ok"] = message
    return errors


def validate_inspection_form(payload: dict) -> tuple[dict | None, dict[str, str]]:
    """Clean ``payload`` and check the counter invariants in one pass."""

    record, errors = clean_inspection_form(payload)
    if not errors:
        errors.update(check_inspection_invariants(record))
    if errors:
        return None, errors
    return record, {}
