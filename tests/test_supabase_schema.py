import json

from config.supabase_schema import from_supabase_row, load_schema, to_supabase_payload


def test_defaults_without_overrides():
    schema = load_schema(None)

    assert schema["inspection_records"].name == "inspection_records"
    assert schema["app_users"].columns["password_hash"] == "password_hash"


def test_partial_column_override_keeps_other_columns():
    raw = json.dumps(
        {
            "inspection_records": {"name": "qc_entries", "columns": {"part_name": "part"}},
            "app_config": {"columns": {"value": "payload"}},
        }
    )

    schema = load_schema(raw)

    records = schema["inspection_records"]
    assert records.name == "qc_entries"
    assert records.columns["part_name"] == "part"
    assert records.columns["shift"] == "shift"
    assert schema["app_config"].name == "app_config"
    assert schema["app_config"].columns["value"] == "payload"


def test_invalid_overrides_are_ignored():
    assert load_schema("not json")["app_users"].name == "app_users"
    assert load_schema("[1, 2]")["app_users"].name == "app_users"
    schema = load_schema(json.dumps({"audit_log": {"columns": {"id": "pk"}}}))
    assert "audit_log" not in schema


def test_payload_mapping_round_trips_known_columns():
    payload = to_supabase_payload("app_users", {"username": "asha", "extra": 1})

    assert payload == {"username": "asha", "extra": 1}
    assert from_supabase_row("app_users", payload) == payload
