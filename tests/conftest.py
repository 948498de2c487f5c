import os
import sys
from contextlib import contextmanager
from pathlib import Path
from types import SimpleNamespace

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

os.environ.setdefault("ADMIN_PASSWORD", "pw")
os.environ.setdefault("SECRET_KEY", "test")
os.environ.setdefault("SUPABASE_URL", "http://localhost")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "service")

from flask import template_rendered

import app as app_module
from app import create_app
from app.records import default_record_values


class FakeQuery:
    def __init__(self, supabase, table_name):
        self.supabase = supabase
        self.table_name = table_name
        self._operation = None
        self._payload = None
        self._filters = []
        self._orders = []
        self._range = None
        self._limit = None
        self._select = "*"
        self._on_conflict = None

    def select(self, columns="*"):
        self._operation = "select"
        self._select = columns
        return self

    def insert(self, rows):
        self._operation = "insert"
        self._payload = rows
        return self

    def update(self, payload):
        self._operation = "update"
        self._payload = payload
        return self

    def upsert(self, payload, on_conflict=None):
        self._operation = "upsert"
        self._payload = payload
        self._on_conflict = on_conflict
        return self

    def delete(self):
        self._operation = "delete"
        return self

    def eq(self, column, value):
        self._filters.append(("eq", column, value))
        return self

    def in_(self, column, values):
        self._filters.append(("in", column, list(values)))
        return self

    def order(self, column, desc=False):
        self._orders.append((column, desc))
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    def limit(self, value):
        self._limit = value
        return self

    def _matches(self, row):
        for op, column, value in self._filters:
            if op == "eq" and row.get(column) != value:
                return False
            if op == "in" and row.get(column) not in value:
                return False
        return True

    def execute(self):
        self.supabase.calls.append((self.table_name, self._operation, list(self._filters)))
        table = self.supabase.tables.setdefault(self.table_name, [])
        if self._operation == "select":
            data = [row for row in table if self._matches(row)]
            for column, desc in reversed(self._orders):
                data.sort(key=lambda row: row.get(column) or "", reverse=desc)
            if self._range is not None:
                start, end = self._range
                data = data[start:end + 1]
            if self.supabase.max_rows is not None:
                data = data[: self.supabase.max_rows]
            if self._limit is not None:
                data = data[: self._limit]
            if self._select != "*":
                columns = [col.strip() for col in self._select.split(",")]
                data = [{col: row.get(col) for col in columns if col in row} for row in data]
            else:
                data = [dict(row) for row in data]
            return SimpleNamespace(data=data, count=len(data))
        if self._operation == "insert":
            rows = self._payload
            if isinstance(rows, dict):
                rows = [rows]
            inserted = []
            for row in rows:
                self.supabase.next_id += 1
                new_row = dict(row)
                new_row.setdefault("id", f"fake-{self.supabase.next_id}")
                table.append(new_row)
                inserted.append(dict(new_row))
            return SimpleNamespace(data=inserted, count=len(inserted))
        if self._operation == "update":
            updated = []
            for row in table:
                if self._matches(row):
                    row.update(self._payload)
                    updated.append(dict(row))
            return SimpleNamespace(data=updated, count=len(updated))
        if self._operation == "upsert":
            key = self._on_conflict
            for row in table:
                if key and row.get(key) == self._payload.get(key):
                    row.update(self._payload)
                    return SimpleNamespace(data=[dict(row)], count=1)
            table.append(dict(self._payload))
            return SimpleNamespace(data=[dict(self._payload)], count=1)
        if self._operation == "delete":
            deleted = [row for row in table if self._filters and self._matches(row)]
            self.supabase.tables[self.table_name] = [row for row in table if row not in deleted]
            return SimpleNamespace(data=deleted, count=len(deleted))
        return SimpleNamespace(data=None, count=None)


class FakeSupabase:
    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.calls: list[tuple] = []
        self.next_id = 0
        # PostgREST returns at most this many rows per select when set.
        self.max_rows = None

    def table(self, name):
        return FakeQuery(self, name)


class FakeAIClient:
    def __init__(self, image=None, suggestion=None, error=None):
        self.image = image
        self.suggestion = suggestion
        self.error = error
        self.calls = []

    def generate_progress_report_image(self, parts_progress, report_date):
        self.calls.append(("image", parts_progress, report_date))
        if self.error:
            raise self.error
        return self.image

    def suggest_inspection_status(self, part_name, section, subsection, historical_data):
        self.calls.append(("suggest", part_name, section, subsection, historical_data))
        if self.error:
            raise self.error
        return self.suggestion


@contextmanager
def captured_templates(app):
    recorded = []

    def record(sender, template, context, **extra):
        recorded.append((template, context))

    template_rendered.connect(record, app)
    try:
        yield recorded
    finally:
        template_rendered.disconnect(record, app)


def make_record(record_date, part_name="Lay shaft assy", shift="A", **counters):
    """Build a normalised record; ``counters`` use ``group__sub__field`` keys."""

    record = default_record_values()
    record.update({"date": record_date, "part_name": part_name, "shift": shift})
    for key, value in counters.items():
        if key in ("id", "rejections", "tpi_rejections"):
            record[key] = value
            continue
        path = key.split("__")
        current = record
        for part in path[:-1]:
            current = current[part]
        current[path[-1]] = value
    return record


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture
def app(monkeypatch, fake_supabase):
    monkeypatch.setattr(
        app_module, "create_client", lambda url, key, **kwargs: fake_supabase
    )
    flask_app = create_app()
    flask_app.testing = True
    flask_app.config["LOCAL_TIMEZONE"] = "UTC"
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


def login_as(client, role, user_id=None, username=None):
    with client.session_transaction() as sess:
        sess["username"] = username or role.lower()
        sess["role"] = role
        sess["user_id"] = user_id
        sess["status"] = "active"
