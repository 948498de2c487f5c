from conftest import make_record

from app.access import (
    FORM_SECTIONS,
    REJECTION_SECTIONS,
    can_change_admin_state,
    field_disabled,
    form_layout,
    prepare_record_for_save,
    section_access,
)
from app.metrics import CumulativeSeed

SECTIONS = {section.key: section for section in FORM_SECTIONS}


def _field(section_key, name):
    section = SECTIONS[section_key]
    return section, next(spec for spec in section.fields if spec.name == name)


def test_data_viewer_sees_everything_read_only():
    for section in list(FORM_SECTIONS) + list(REJECTION_SECTIONS.values()):
        access = section_access("DATA_VIEWER", section)
        assert access.hidden is False
        assert access.read_only is True


def test_inspectors_only_see_their_sections():
    assert section_access("TPI_INSPECTOR", SECTIONS["material_inspection"]).hidden
    assert section_access("TPI_INSPECTOR", SECTIONS["final_inspection"]).hidden
    assert section_access("FINAL_INSPECTOR", SECTIONS["tpi_inspection"]).hidden
    assert not section_access("FINAL_INSPECTOR", SECTIONS["final_inspection"]).hidden
    assert section_access("TPI_INSPECTOR", REJECTION_SECTIONS["rejections"]).hidden
    assert section_access("FINAL_INSPECTOR", REJECTION_SECTIONS["tpi_rejections"]).hidden
    assert section_access("ADMIN", REJECTION_SECTIONS["tpi_rejections"]).editable


def test_unknown_role_gets_nothing():
    assert section_access(None, SECTIONS["dispatch"]).hidden


def test_field_rules():
    assert not field_disabled("ADMIN", *_field("dispatch", "dispatch.rfd.cumulative"))
    assert field_disabled("FINAL_INSPECTOR", *_field("dispatch", "dispatch.rfd.cumulative"))
    assert field_disabled("FINAL_INSPECTOR", *_field("final_inspection", "final_inspection.visual.visual_done"))
    assert not field_disabled("ADMIN", *_field("final_inspection", "final_inspection.visual.visual_done"))
    assert field_disabled("TPI_INSPECTOR", *_field("tpi_inspection", "tpi_inspection.done"))
    assert field_disabled("ADMIN", *_field("final_inspection", "final_inspection.multigauge.total"))
    assert field_disabled("TPI_INSPECTOR", *_field("dispatch", "dispatch.dispatch.today"))
    assert not field_disabled("TPI_INSPECTOR", *_field("dispatch", "dispatch.rfd.today"))


def test_form_layout_omits_hidden_sections():
    keys = [section["key"] for section in form_layout("TPI_INSPECTOR")]

    assert keys == ["tpi_inspection", "dispatch"]


def _submitted():
    return make_record(
        "2024-06-10", "Input shaft", "B",
        material_inspection__washing_pending=9,
        final_inspection__multigauge__ok=10,
        final_inspection__multigauge__not_ok=2,
        final_inspection__multigauge__total=500,
        final_inspection__visual__visual_done=1,
        final_inspection__visual__ok=30,
        final_inspection__visual__not_ok=3,
        tpi_inspection__done=2,
        tpi_inspection__ok=7,
        tpi_inspection__not_ok=1,
        dispatch__rfd__today=5,
        dispatch__rfd__cumulative=999,
        dispatch__dispatch__today=4,
        dispatch__dispatch__cumulative=999,
        rejections=[{"defect_type": "Teeth dent", "quantity": 3, "remarks": None}],
        tpi_rejections=[{"defect_type": "Root burr", "quantity": 1, "remarks": None}],
    )


def test_final_inspector_save_computes_derived_fields_and_keeps_hidden_values():
    existing = make_record(
        "2024-06-10", "Input shaft", "B", id="rec-1",
        tpi_inspection__done=20, tpi_inspection__ok=19,
        tpi_rejections=[{"defect_type": "Spline dent", "quantity": 1, "remarks": None}],
    )

    record = prepare_record_for_save(
        "FINAL_INSPECTOR", _submitted(), existing, CumulativeSeed(100, 40)
    )

    assert record["final_inspection"]["multigauge"]["total"] == 12
    assert record["final_inspection"]["visual"]["visual_done"] == 33
    assert record["tpi_inspection"]["done"] == 20
    assert record["tpi_inspection"]["ok"] == 19
    assert record["tpi_rejections"] == existing["tpi_rejections"]
    assert record["rejections"][0]["defect_type"] == "Teeth dent"
    assert record["dispatch"]["rfd"] == {"cumulative": 105, "today": 5}
    assert record["dispatch"]["dispatch"] == {"cumulative": 44, "today": 4}
    assert "id" not in record


def test_tpi_inspector_save_without_existing_record():
    record = prepare_record_for_save("TPI_INSPECTOR", _submitted(), None, CumulativeSeed(10, 0))

    assert record["material_inspection"]["washing_pending"] == 0
    assert record["final_inspection"]["visual"]["ok"] == 0
    assert record["tpi_inspection"]["done"] == 8
    assert record["dispatch"]["dispatch"]["today"] == 0
    assert record["dispatch"]["rfd"]["cumulative"] == 15
    assert record["rejections"] == []


def test_admin_may_override_cumulative_totals():
    record = prepare_record_for_save("ADMIN", _submitted(), None, CumulativeSeed(10, 0))

    assert record["dispatch"]["rfd"]["cumulative"] == 999
    assert record["final_inspection"]["visual"]["visual_done"] == 1


USERS = [
    {"id": "u1", "role": "ADMIN", "status": "active"},
    {"id": "u2", "role": "ADMIN", "status": "suspended"},
    {"id": "u3", "role": "DATA_VIEWER", "status": "active"},
]


def test_sole_active_admin_cannot_demote_or_suspend_themselves():
    allowed, message = can_change_admin_state(USERS, "u1", "u1", new_role="DATA_VIEWER")
    assert allowed is False
    assert message

    allowed, _ = can_change_admin_state(USERS, "u1", "u1", new_status="suspended")
    assert allowed is False


def test_admin_state_changes_allowed_otherwise():
    assert can_change_admin_state(USERS, "u1", "u3", new_role="ADMIN")[0]
    assert can_change_admin_state(USERS, "u1", "u1", new_status="active")[0]

    users = USERS + [{"id": "u4", "role": "admin", "status": "active"}]
    assert can_change_admin_state(users, "u1", "u1", new_role="DATA_VIEWER")[0]
