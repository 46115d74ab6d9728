"""
Shared fixtures for AgriSense tests.

- Provider credentials are cleared for every test; tests opt in with `monkeypatch.setenv`.
- `upstream` installs an httpx.MockTransport behind the vision service and records calls.
- `fake_db` installs an in-memory stand-in for the supabase-py client.
"""
import time
import uuid
from types import SimpleNamespace

import httpx
import jwt
import pytest
from fastapi.testclient import TestClient

from agrisense.main import app
from agrisense.services import database

JWT_SECRET = "test-jwt-secret"
MANAGED_ENV_VARS = (
    "LOVABLE_API_KEY", "OPENAI_API_KEY", "GEMINI_API_KEY",
    "LOVABLE_MODEL", "OPENAI_MODEL", "GEMINI_MODEL",
    "LOVABLE_GATEWAY_URL", "OPENAI_API_URL", "GEMINI_API_BASE",
    "SUPABASE_JWT_SECRET", "SUPABASE_URL", "SUPABASE_KEY", "SUPABASE_ANON_KEY",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in MANAGED_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class Upstream:
    """Scripted upstream: one canned response, every request recorded."""

    def __init__(self):
        self.calls = []
        self.status_code = 200
        self.json_body = {}
        self.text_body = None

    def respond(self, status_code=200, json_body=None, text=None):
        self.status_code = status_code
        self.json_body = json_body if json_body is not None else {}
        self.text_body = text

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if self.text_body is not None:
            return httpx.Response(self.status_code, text=self.text_body)
        return httpx.Response(self.status_code, json=self.json_body)

    def client(self):
        return httpx.Client(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def upstream(monkeypatch):
    mock = Upstream()
    monkeypatch.setattr("agrisense.services.vision.open_http_client", mock.client)
    return mock


def chat_completion(content):
    return {"choices": [{"index": 0, "message": {"role": "assistant", "content": content}}]}


def gemini_answer(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


# ---- in-memory supabase --------------------------------------------------------

class FakeQuery:
    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.op = "select"
        self.columns = "*"
        self.count_mode = None
        self.filters = []
        self.order_key = None
        self.order_desc = False
        self.limit_n = None
        self.payload = None

    def select(self, columns="*", count=None):
        self.op, self.columns, self.count_mode = "select", columns, count
        return self

    def insert(self, row):
        self.op, self.payload = "insert", row
        return self

    def update(self, fields):
        self.op, self.payload = "update", fields
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(lambda r: r.get(column) == value)
        return self

    def in_(self, column, values):
        values = list(values)
        self.db.in_queries.append((self.table, column, values))
        self.filters.append(lambda r: r.get(column) in values)
        return self

    def order(self, column, desc=False):
        self.order_key, self.order_desc = column, desc
        return self

    def limit(self, n):
        self.limit_n = n
        return self

    def _matches(self, row):
        return all(f(row) for f in self.filters)

    def _project(self, row):
        if self.columns.strip() == "*":
            return dict(row)
        keys = [c.strip() for c in self.columns.split(",")]
        return {k: row.get(k) for k in keys}

    def execute(self):
        rows = self.db.tables.setdefault(self.table, [])
        if self.op == "insert":
            row = dict(self.payload)
            row.setdefault("id", str(uuid.uuid4()))
            rows.append(row)
            return SimpleNamespace(data=[dict(row)], count=None)
        if self.op == "update":
            changed = []
            for row in rows:
                if self._matches(row):
                    row.update(self.payload)
                    changed.append(dict(row))
            return SimpleNamespace(data=changed, count=None)
        if self.op == "delete":
            removed = [r for r in rows if self._matches(r)]
            self.db.tables[self.table] = [r for r in rows if not self._matches(r)]
            return SimpleNamespace(data=removed, count=None)

        selected = [r for r in rows if self._matches(r)]
        if self.order_key:
            selected.sort(key=lambda r: r.get(self.order_key) or "", reverse=self.order_desc)
        if self.limit_n:
            selected = selected[:self.limit_n]
        count = len(selected) if self.count_mode == "exact" else None
        return SimpleNamespace(data=[self._project(r) for r in selected], count=count)


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.in_queries = []
        self.functions = {}
        self.auth = SimpleNamespace()

    def table(self, name):
        return FakeQuery(self, name)

    def rpc(self, name, params):
        fn = self.functions[name]
        return SimpleNamespace(execute=lambda: SimpleNamespace(data=fn(**params)))


@pytest.fixture
def fake_db():
    fake = FakeSupabase()
    database.set_client(fake)
    yield fake
    database.set_client(None)


# ---- auth --------------------------------------------------------------------

def make_token(user_id, secret=JWT_SECRET, **claims):
    payload = {"sub": user_id, "aud": "authenticated", "exp": int(time.time()) + 3600}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def jwt_secret(monkeypatch):
    monkeypatch.setenv("SUPABASE_JWT_SECRET", JWT_SECRET)
    return JWT_SECRET


@pytest.fixture
def auth_headers(jwt_secret):
    return {"Authorization": f"Bearer {make_token('user-1')}"}


@pytest.fixture
def client():
    return TestClient(app)
