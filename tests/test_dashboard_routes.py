from datetime import timezone

import pytest
from zoneinfo import ZoneInfoNotFoundError
from conftest import FakeAIClient, captured_templates, login_as, make_record

from app.ai import AIServiceError, ProgressImage, StatusSuggestion
from app.constants import ROLE_DATA_VIEWER
from app.main import routes


@pytest.fixture
def seeded(fake_supabase):
    fake_supabase.tables["inspection_records"] = [
        make_record(
            "2024-06-24", "Input shaft", "B", id="r1",
            dispatch__rfd__cumulative=40, dispatch__dispatch__cumulative=30,
            final_inspection__visual__visual_done=50,
            final_inspection__visual__ok=45,
            final_inspection__visual__not_ok=3,
            rejections=[{"defect_type": "Teeth dent", "quantity": 3, "remarks": None}],
            tpi_inspection__done=10, tpi_inspection__ok=8,
            tpi_rejections=[{"defect_type": "Root burr", "quantity": 5, "remarks": None}],
        ),
        make_record(
            "2024-06-20", "Lay shaft assy", "A", id="r2",
            rejections=[{"defect_type": "Spline dent", "quantity": 1, "remarks": None}],
        ),
    ]
    fake_supabase.tables["app_config"] = [
        {"key": "monthly_targets", "value": {"Input shaft": 100}},
    ]
    return fake_supabase


def test_dashboard_summary_api(client, seeded):
    login_as(client, ROLE_DATA_VIEWER)

    response = client.get(
        "/api/dashboard", query_string={"part": "Input shaft", "date": "2024-06-25"}
    )

    body = response.get_json()
    assert response.status_code == 200
    assert body["target"] == 100
    assert body["total_inspected"] == 50
    assert body["pending_other_visual"] == 2
    assert body["total_cumulative_dispatched"] == 30
    assert body["overall_progress"] == 45.0
    assert body["remaining_dispatch_qty"] == -15
    assert body["remaining_days"] == 6
    assert body["asking_rate"] == {
        "rate": 10, "is_target_met": False, "needed": 60, "days": 6, "surplus": 0,
    }


def test_dashboard_summary_rejects_bad_arguments(client, seeded):
    login_as(client, ROLE_DATA_VIEWER)

    unknown_part = client.get("/api/dashboard", query_string={"part": "Gearbox"})
    bad_date = client.get("/api/dashboard", query_string={"date": "25-06-2024"})

    assert unknown_part.status_code == 400
    assert bad_date.status_code == 400
    assert "date" in bad_date.get_json()["errors"]


def test_pareto_api_final_only_by_default(client, seeded):
    login_as(client, ROLE_DATA_VIEWER)

    final_only = client.get("/api/dashboard/pareto").get_json()
    combined = client.get("/api/dashboard/pareto", query_string={"include_tpi": "true"}).get_json()
    invalid = client.get("/api/dashboard/pareto", query_string={"range": "forever"})

    assert [p["name"] for p in final_only["points"]] == ["Teeth dent", "Spline dent"]
    assert final_only["points"][0]["percentage"] == pytest.approx(75.0)
    assert [p["name"] for p in combined["points"]] == ["Root burr", "Teeth dent", "Spline dent"]
    assert combined["points"][-1]["cumulative_percentage"] == pytest.approx(100.0)
    assert invalid.status_code == 400


def test_progress_report_with_generated_image(app, client, seeded):
    image = ProgressImage(image_data_uri="data:image/png;base64,AAA", image_prompt="prompt")
    ai_client = FakeAIClient(image=image)
    app.config["AI_CLIENT"] = ai_client
    login_as(client, ROLE_DATA_VIEWER)

    response = client.post("/api/dashboard/report", json={"date": "2024-06-25", "shift": "A"})

    body = response.get_json()
    assert response.status_code == 200
    assert body["text"].startswith("InspectZen Inspection Report - June 25, 2024")
    assert "Shift A Summary" in body["text"]
    assert body["image_data_uri"] == "data:image/png;base64,AAA"
    assert body["image_error"] is None
    assert ai_client.calls[0][2] == "2024-06-25"
    assert body["parts_progress"][2] == {
        "name": "Input shaft", "target": 100, "inspected": 50, "ok": 45,
    }


def test_progress_report_survives_image_failure(app, client, seeded):
    app.config["AI_CLIENT"] = FakeAIClient(error=AIServiceError("quota exceeded"))
    login_as(client, ROLE_DATA_VIEWER)

    response = client.post("/api/dashboard/report", json={"date": "2024-06-25"})

    body = response.get_json()
    assert response.status_code == 200
    assert "Daily Summary" in body["text"]
    assert body["image_error"] == "quota exceeded"
    assert body["image_data_uri"].startswith("data:image/png;base64,")


def test_progress_report_rejects_unknown_shift(client, seeded):
    login_as(client, ROLE_DATA_VIEWER)

    response = client.post("/api/dashboard/report", json={"shift": "C"})

    assert response.status_code == 400


def test_status_suggestion(app, client, seeded):
    ai_client = FakeAIClient(
        suggestion=StatusSuggestion(suggested_status="Pending", confidence_level=0.8, rationale="Trend")
    )
    app.config["AI_CLIENT"] = ai_client
    login_as(client, ROLE_DATA_VIEWER)

    response = client.post(
        "/api/ai/suggest-status",
        json={"part_name": "Input shaft", "section": "Dispatch", "subsection": "RFD"},
    )

    assert response.get_json() == {
        "suggested_status": "Pending", "confidence_level": 0.8, "rationale": "Trend",
    }
    history = ai_client.calls[0][4]
    assert '"r1"' not in history
    assert '"Lay shaft assy"' not in history


def test_status_suggestion_errors(app, client, seeded):
    app.config["AI_CLIENT"] = FakeAIClient(error=AIServiceError("timeout"))
    login_as(client, ROLE_DATA_VIEWER)

    failed = client.post(
        "/api/ai/suggest-status",
        json={"part_name": "Input shaft", "section": "Dispatch", "subsection": "RFD"},
    )
    invalid = client.post(
        "/api/ai/suggest-status",
        json={"part_name": "Input shaft", "section": "Dispatch", "subsection": "TPI Done"},
    )

    assert failed.status_code == 502
    assert failed.get_json()["error"] == "Could not fetch suggestion."
    assert invalid.status_code == 400
    assert "subsection" in invalid.get_json()["errors"]


def test_tpi_report_api(client, seeded):
    login_as(client, ROLE_DATA_VIEWER)

    response = client.get(
        "/api/reports/tpi", query_string={"start_date": "2024-06-01", "end_date": "2024-06-30"}
    )
    reversed_range = client.get(
        "/api/reports/tpi", query_string={"start_date": "2024-06-30", "end_date": "2024-06-01"}
    )

    body = response.get_json()
    assert body["stats"] == {"total_done": 10, "total_ok": 8, "total_rejected": 5}
    assert [p["name"] for p in body["pareto"]] == ["Input shaft"]
    assert reversed_range.status_code == 400


def test_dashboard_page_renders(app, client, seeded):
    login_as(client, ROLE_DATA_VIEWER)

    with captured_templates(app) as templates:
        response = client.get("/dashboard")

    assert response.status_code == 200
    template, context = templates[0]
    assert template.name == "dashboard.html"
    assert context["summary"].target == 100
    assert [p.name for p in context["pareto_points"]] == ["Teeth dent", "Spline dent"]


def test_pending_report_pages(app, client, seeded):
    login_as(client, ROLE_DATA_VIEWER)

    with captured_templates(app) as templates:
        client.get("/reports/material-inspection")
        client.get("/reports/final-inspection")
        client.get("/reports/tpi-inspection")

    names = [template.name for template, _ in templates if not template.name.startswith("base")]
    assert "reports/material_inspection.html" in names
    assert "reports/tpi_inspection.html" in names
    for template, context in templates:
        if template.name.startswith("reports/") and "rows" in context:
            assert [row["part_name"] for row in context["rows"]] == [
                "Lay shaft assy", "Main reduction gear", "Input shaft",
            ]


def test_part_report_page(app, client, seeded):
    login_as(client, ROLE_DATA_VIEWER)

    with captured_templates(app) as templates:
        response = client.get("/reports/part/input-shaft")
    unknown = client.get("/reports/part/gearbox")

    assert response.status_code == 200
    _, context = templates[0]
    assert context["report"]["part_name"] == "Input shaft"
    assert unknown.status_code == 302
    assert unknown.headers["Location"].endswith("/dashboard")


def test_report_timezone_falls_back_to_utc(app, monkeypatch):
    def _raise_zoneinfo(name):
        raise ZoneInfoNotFoundError()

    monkeypatch.setattr(routes, "ZoneInfo", _raise_zoneinfo)
    app.config["LOCAL_TIMEZONE"] = "Mars/Olympus"

    with app.test_request_context():
        assert routes._report_timezone() is timezone.utc
