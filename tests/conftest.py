"""Pytest fixtures for the map generator tests."""
import copy
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from mapgen import logging_analytics
from mapgen.pipeline import MapGenerationPipeline
from mapgen.stores import Stores


# --- In-memory Supabase ---


class FakeResult:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    """Subset of the postgrest query builder used by the stores."""

    def __init__(self, db, table_name):
        self.db = db
        self.table_name = table_name
        self.operation = "select"
        self.payload = None
        self.filters = []
        self.orders = []
        self.limit_value = None
        self.range_value = None
        self.count_mode = None

    def select(self, *columns, count=None):
        self.operation = "select"
        self.count_mode = count
        return self

    def insert(self, data):
        self.operation = "insert"
        self.payload = data
        return self

    def update(self, data):
        self.operation = "update"
        self.payload = data
        return self

    def delete(self):
        self.operation = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self.filters.append(lambda row: row.get(column) != value)
        return self

    def order(self, column, desc=False):
        self.orders.append((column, desc))
        return self

    def limit(self, n):
        self.limit_value = n
        return self

    def range(self, start, end):
        self.range_value = (start, end)
        return self

    def _matching(self):
        rows = self.db.tables.setdefault(self.table_name, [])
        return [row for row in rows if all(f(row) for f in self.filters)]

    def execute(self):
        if self.db.fail:
            raise RuntimeError("backend unavailable")
        rows = self.db.tables.setdefault(self.table_name, [])

        if self.operation == "insert":
            row = self.db.new_row(self.payload)
            rows.append(row)
            return FakeResult([copy.deepcopy(row)])

        if self.operation == "update":
            matched = self._matching()
            for row in matched:
                row.update(copy.deepcopy(self.payload))
            return FakeResult([copy.deepcopy(row) for row in matched])

        if self.operation == "delete":
            matched = self._matching()
            self.db.tables[self.table_name] = [row for row in rows if row not in matched]
            return FakeResult([copy.deepcopy(row) for row in matched])

        matched = self._matching()
        total = len(matched)
        for column, desc in reversed(self.orders):
            matched = sorted(matched, key=lambda r: (r.get(column) is None, r.get(column) or ""), reverse=desc)
        if self.range_value:
            start, end = self.range_value
            matched = matched[start:end + 1]
        if self.limit_value is not None:
            matched = matched[:self.limit_value]
        count = total if self.count_mode else None
        return FakeResult([copy.deepcopy(row) for row in matched], count)


class FakeAuth:
    def __init__(self):
        self.users = {}

    def add_user(self, token, user_id, email=None):
        self.users[token] = SimpleNamespace(id=user_id, email=email)

    def get_user(self, token):
        if token not in self.users:
            raise RuntimeError("invalid JWT")
        return SimpleNamespace(user=self.users[token])


class FakeSupabase:
    """Stands in for supabase-py's Client: table() and auth."""

    def __init__(self):
        self.tables = {}
        self.fail = False
        self.auth = FakeAuth()
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def new_row(self, data):
        self._clock += timedelta(seconds=1)
        row = {"id": str(uuid.uuid4()), "created_at": self._clock.isoformat()}
        row.update(copy.deepcopy(data))
        return row

    def table(self, name):
        return FakeQuery(self, name)

    def seed(self, table_name, *rows):
        inserted = [self.new_row(row) for row in rows]
        self.tables.setdefault(table_name, []).extend(inserted)
        return inserted


# --- Collaborator fakes ---


class FakeLLM:
    """Returns canned text, or raises the given exception."""

    def __init__(self, response="{}", error=None):
        self.response = response
        self.error = error
        self.calls = []

    def complete(self, system_prompt, user_prompt, model=None, **kwargs):
        self.calls.append({"system": system_prompt, "user": user_prompt, "model": model})
        if self.error is not None:
            raise self.error
        return self.response


class FakeGeocoder:
    """Resolves every location to central Dijon, recording the queries."""

    def __init__(self):
        self.queries = []

    def geocode(self, location, context=None):
        self.queries.append((location, context))
        return {
            "latitude": 47.3220,
            "longitude": 5.0415,
            "address": f"{location}, Dijon",
            "approximate": False,
        }

    def geocode_many(self, locations, max_workers=None):
        return [self.geocode(loc, ctx) for loc, ctx in locations]


def square(x, y, size=0.1):
    return {
        "type": "Polygon",
        "coordinates": [[[x, y], [x + size, y], [x + size, y + size], [x, y + size], [x, y]]],
    }


COMMUNES = {
    "type": "FeatureCollection",
    "features": [
        {"type": "Feature", "geometry": square(5.0, 47.3), "properties": {"code": "21231", "nom": "Dijon"}},
        {"type": "Feature", "geometry": square(6.0, 47.2), "properties": {"code": "25056", "nom": "Besançon"}},
        {"type": "Feature", "geometry": square(3.5, 47.8), "properties": {"code": "89024", "nom": "Auxerre"}},
    ],
}


@pytest.fixture(autouse=True)
def local_logging_only(monkeypatch, tmp_path):
    """No cloud logging and analytics written under tmp_path."""
    monkeypatch.setattr(logging_analytics, "_supabase_client", False)
    monkeypatch.setattr(logging_analytics, "analytics_log_path", tmp_path / "generations.jsonl")


@pytest.fixture
def fake_db() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def stores(fake_db) -> Stores:
    return Stores(fake_db)


@pytest.fixture
def communes() -> dict:
    return copy.deepcopy(COMMUNES)


@pytest.fixture
def boundary_loader(communes):
    def load(level):
        if level == "communes":
            return communes
        raise FileNotFoundError(f"Boundary file not found: {level}")
    return load


@pytest.fixture
def fake_geocoder() -> FakeGeocoder:
    return FakeGeocoder()


@pytest.fixture
def make_pipeline(stores, fake_geocoder, boundary_loader):
    """Build a pipeline around a FakeLLM. Returns (pipeline, llm)."""
    def build(response="{}", error=None):
        llm = FakeLLM(response, error)
        pipeline = MapGenerationPipeline(
            stores,
            llm_factory=lambda api_key_name: llm,
            geocoder=fake_geocoder,
            boundary_loader=boundary_loader,
            max_workers=1,
        )
        return pipeline, llm
    return build


@pytest.fixture
def api(fake_db, stores, fake_geocoder, make_pipeline):
    """
    TestClient with Supabase, Mistral and the geocoder replaced by fakes.
    api.llm is the FakeLLM behind /generate; tokens "user-token",
    "other-token" and "admin-token" are valid bearer tokens.
    """
    import app as app_module

    pipeline, llm = make_pipeline()
    fake_db.auth.add_user("user-token", "user-1", "user@example.fr")
    fake_db.auth.add_user("other-token", "user-2", "other@example.fr")
    fake_db.auth.add_user("admin-token", "admin-1", "admin@example.fr")
    fake_db.seed("profiles", {"user_id": "admin-1", "is_admin": True})

    overrides = app_module.app.dependency_overrides
    overrides[app_module.get_stores] = lambda: stores
    overrides[app_module.get_auth_client] = lambda: fake_db.auth
    overrides[app_module.get_pipeline] = lambda: pipeline
    overrides[app_module.get_geocoder] = lambda: fake_geocoder

    client = TestClient(app_module.app)
    client.llm = llm
    client.db = fake_db
    yield client
    overrides.clear()


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers():
    return auth_header
