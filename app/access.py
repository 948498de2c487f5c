"""Role based access to the data-entry form and to admin actions.

The form is described once by :data:`FORM_SECTIONS`.  The template renders
from it and :func:`prepare_record_for_save` uses the same schema to decide
which submitted values a role is allowed to change.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field

from flask import session

from app.constants import (
    ROLE_ADMIN,
    ROLE_DATA_VIEWER,
    ROLE_FINAL_INSPECTOR,
    ROLE_TPI_INSPECTOR,
    STATUS_ACTIVE,
    USER_ROLES,
)
from app.metrics import CumulativeSeed
from app.records import default_record_values, get_path, path_key, set_path


@dataclass(frozen=True)
class UserContext:
    user_id: str | None
    username: str | None
    role: str | None
    status: str = STATUS_ACTIVE

    @property
    def is_authenticated(self) -> bool:
        return bool(self.username)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def can_edit_records(self) -> bool:
        return self.role in USER_ROLES and self.role != ROLE_DATA_VIEWER


def current_user_context() -> UserContext:
    """Build the request's :class:`UserContext` from the Flask session."""

    role = (session.get("role") or "").upper() or None
    return UserContext(
        user_id=session.get("user_id"),
        username=session.get("username"),
        role=role,
        status=session.get("status") or STATUS_ACTIVE,
    )


@dataclass(frozen=True)
class FieldSpec:
    path: tuple[str, ...]
    label: str
    always_disabled: bool = False
    disabled_for: frozenset[str] = frozenset()

    @property
    def name(self) -> str:
        return path_key(self.path)


@dataclass(frozen=True)
class SubsectionSpec:
    title: str
    fields: tuple[FieldSpec, ...]


@dataclass(frozen=True)
class SectionSpec:
    key: str
    title: str
    subsections: tuple[SubsectionSpec, ...] = ()
    hidden_for: frozenset[str] = frozenset()
    read_only_for: frozenset[str] = frozenset({ROLE_DATA_VIEWER})

    @property
    def fields(self) -> list[FieldSpec]:
        return [spec for sub in self.subsections for spec in sub.fields]


@dataclass(frozen=True)
class SectionAccess:
    hidden: bool
    read_only: bool

    @property
    def editable(self) -> bool:
        return not self.hidden and not self.read_only


CUMULATIVE_PATHS = (
    ("dispatch", "rfd", "cumulative"),
    ("dispatch", "dispatch", "cumulative"),
)

# Fields computed from OK + Not OK for the listed role.
AUTO_DONE_FIELDS = {
    ("final_inspection", "visual", "visual_done"): ROLE_FINAL_INSPECTOR,
    ("tpi_inspection", "done"): ROLE_TPI_INSPECTOR,
}

FORM_SECTIONS: tuple[SectionSpec, ...] = (
    SectionSpec(
        key="material_inspection",
        title="Material Inspection",
        hidden_for=frozenset({ROLE_TPI_INSPECTOR}),
        subsections=(
            SubsectionSpec("Washing", (
                FieldSpec(("material_inspection", "washing_pending"), "Pending"),
            )),
            SubsectionSpec("Multigauge", (
                FieldSpec(("material_inspection", "multigauge_pending"), "Pending"),
            )),
        ),
    ),
    SectionSpec(
        key="final_inspection",
        title="Final Inspection",
        hidden_for=frozenset({ROLE_TPI_INSPECTOR}),
        subsections=(
            SubsectionSpec("Multigauge Inspection", (
                FieldSpec(("final_inspection", "multigauge", "total"), "Total Inspected", always_disabled=True),
                FieldSpec(("final_inspection", "multigauge", "ok"), "OK"),
                FieldSpec(("final_inspection", "multigauge", "not_ok"), "Not OK"),
            )),
            SubsectionSpec("Visual Inspection", (
                FieldSpec(("final_inspection", "visual", "pending"), "Pending for Inspection"),
                FieldSpec(("final_inspection", "visual", "visual_done"), "Visual Done"),
                FieldSpec(("final_inspection", "visual", "ok"), "OK"),
                FieldSpec(("final_inspection", "visual", "not_ok"), "Not OK"),
            )),
        ),
    ),
    SectionSpec(
        key="tpi_inspection",
        title="TPI Inspection",
        hidden_for=frozenset({ROLE_FINAL_INSPECTOR}),
        subsections=(
            SubsectionSpec("TPI Status", (
                FieldSpec(("tpi_inspection", "pending"), "Pending"),
                FieldSpec(("tpi_inspection", "done"), "Done"),
                FieldSpec(("tpi_inspection", "ok"), "OK"),
                FieldSpec(("tpi_inspection", "not_ok"), "Not OK"),
            )),
        ),
    ),
    SectionSpec(
        key="dispatch",
        title="Dispatch",
        subsections=(
            SubsectionSpec("RFD (Ready for Dispatch)", (
                FieldSpec(("dispatch", "rfd", "cumulative"), "Cumulative RFD"),
                FieldSpec(("dispatch", "rfd", "today"), "Today's RFD"),
            )),
            SubsectionSpec("Actual Dispatch Status", (
                FieldSpec(("dispatch", "dispatch", "cumulative"), "Cumulative Dispatch"),
                FieldSpec(
                    ("dispatch", "dispatch", "today"),
                    "Today's Actual Dispatch",
                    disabled_for=frozenset({ROLE_TPI_INSPECTOR}),
                ),
            )),
        ),
    ),
)

REJECTION_SECTIONS: dict[str, SectionSpec] = {
    "rejections": SectionSpec(
        key="rejections",
        title="Final Inspection Rejections",
        hidden_for=frozenset({ROLE_TPI_INSPECTOR}),
    ),
    "tpi_rejections": SectionSpec(
        key="tpi_rejections",
        title="TPI Rejections",
        hidden_for=frozenset({ROLE_FINAL_INSPECTOR}),
    ),
}


def section_access(role: str | None, section: SectionSpec) -> SectionAccess:
    """Return whether ``section`` is hidden or read-only for ``role``."""

    if role not in USER_ROLES:
        return SectionAccess(hidden=True, read_only=True)
    if role == ROLE_DATA_VIEWER:
        return SectionAccess(hidden=False, read_only=True)
    return SectionAccess(
        hidden=role in section.hidden_for,
        read_only=role in section.read_only_for,
    )


def field_disabled(role: str | None, section: SectionSpec, spec: FieldSpec) -> bool:
    """Return ``True`` when ``role`` may not type into ``spec``."""

    access = section_access(role, section)
    if access.hidden or access.read_only:
        return True
    if spec.path in CUMULATIVE_PATHS:
        return role != ROLE_ADMIN
    if AUTO_DONE_FIELDS.get(spec.path) == role:
        return True
    if role in spec.disabled_for:
        return True
    return spec.always_disabled


def form_layout(role: str | None) -> list[dict]:
    """Describe the visible sections and field states for the template."""

    layout = []
    for section in FORM_SECTIONS:
        access = section_access(role, section)
        if access.hidden:
            continue
        layout.append(
            {
                "key": section.key,
                "title": section.title,
                "read_only": access.read_only,
                "subsections": [
                    {
                        "title": sub.title,
                        "fields": [
                            {
                                "name": spec.name,
                                "label": spec.label,
                                "disabled": field_disabled(role, section, spec),
                            }
                            for spec in sub.fields
                        ],
                    }
                    for sub in section.subsections
                ],
            }
        )
    return layout


def rejection_access(role: str | None) -> dict[str, SectionAccess]:
    return {key: section_access(role, spec) for key, spec in REJECTION_SECTIONS.items()}


def prepare_record_for_save(
    role: str | None,
    submitted: dict,
    existing: dict | None,
    seed: CumulativeSeed,
) -> dict:
    """Merge a submitted record into what ``role`` is allowed to change.

    Values the role cannot edit come from ``existing`` (or zero defaults for
    a new record).  Derived counters are recomputed afterwards: the
    multigauge total always, visual or TPI done for the inspector that owns
    them, and the cumulative RFD and dispatch for everyone but admins.
    """

    base = copy.deepcopy(existing) if existing else default_record_values()
    record = default_record_values()
    for key in ("date", "part_name", "shift"):
        record[key] = submitted.get(key)

    for section in FORM_SECTIONS:
        for spec in section.fields:
            source = base if field_disabled(role, section, spec) else submitted
            set_path(record, spec.path, int(get_path(source, spec.path) or 0))

    for list_key, section in REJECTION_SECTIONS.items():
        source = submitted if section_access(role, section).editable else base
        record[list_key] = copy.deepcopy(source.get(list_key) or [])

    multigauge = record["final_inspection"]["multigauge"]
    multigauge["total"] = multigauge["ok"] + multigauge["not_ok"]

    for path, owner in AUTO_DONE_FIELDS.items():
        if role == owner:
            group = get_path(record, path[:-1], {})
            group[path[-1]] = group["ok"] + group["not_ok"]

    if role != ROLE_ADMIN:
        rfd = record["dispatch"]["rfd"]
        shipped = record["dispatch"]["dispatch"]
        rfd["cumulative"] = seed.cumulative_rfd + rfd["today"]
        shipped["cumulative"] = seed.cumulative_dispatch + shipped["today"]
    return record


def active_admin_ids(users: list[dict]) -> set:
    return {
        user.get("id")
        for user in users or []
        if (user.get("role") or "").upper() == ROLE_ADMIN
        and (user.get("status") or STATUS_ACTIVE) == STATUS_ACTIVE
    }


def can_change_admin_state(
    users: list[dict],
    acting_user_id,
    target_user_id,
    new_role: str | None = None,
    new_status: str | None = None,
) -> tuple[bool, str | None]:
    """Refuse to let the sole active admin demote or suspend themselves.

    Returns:
        tuple: ``(allowed, message)``; ``message`` explains a refusal.
    """

    if acting_user_id is None or str(acting_user_id) != str(target_user_id):
        return True, None

    demoting = new_role is not None and new_role != ROLE_ADMIN
    suspending = new_status is not None and new_status != STATUS_ACTIVE
    if not (demoting or suspending):
        return True, None

    admins = {str(user_id) for user_id in active_admin_ids(users)}
    if admins == {str(target_user_id)}:
        return False, "You cannot remove the last active admin."
    return True, None
