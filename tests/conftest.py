"""Shared fixtures: in-memory store and identity fakes that record every call"""
import pytest
from fastapi.testclient import TestClient
from starlette.datastructures import Secret

from dataproxy.config import ProxySettings
from dataproxy.errors import AuthError, UpstreamError
from dataproxy.main import create_app
from dataproxy.security.encryption import FieldCipher

TEST_KEY = bytes(range(32))

ADMIN_TOKEN = "admin-token"
ENGINEER_TOKEN = "engineer-token"
CLIENT_TOKEN = "client-token"
NO_ROLE_TOKEN = "no-role-token"


def _matches(row, f):
    value = row.get(f.column)
    if f.op == "eq":
        return value is not None and str(value) == str(f.value)
    if f.op == "gte":
        return value is not None and str(value) >= str(f.value)
    if f.op == "in":
        return value in f.value
    raise AssertionError(f"Unsupported filter op {f.op}")


class FakeStore:
    """Read-only table store; every select is recorded"""

    def __init__(self, tables=None):
        self.tables = tables or {}
        self.calls = []
        self.fail_on = set()

    async def select(self, table, columns="*", filters=(), order_by="created_at", descending=True, limit=None):
        self.calls.append({"table": table, "columns": columns, "filters": list(filters), "limit": limit})
        if table in self.fail_on:
            raise UpstreamError()

        rows = [dict(row) for row in self.tables.get(table, []) if all(_matches(row, f) for f in filters)]
        if order_by:
            rows.sort(key=lambda r: str(r.get(order_by) or ""), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    def calls_for(self, table):
        return [c for c in self.calls if c["table"] == table]


class FakeIdentity:
    def __init__(self, tokens):
        self.tokens = tokens
        self.verified = []

    async def verify_token(self, token):
        self.verified.append(token)
        if token not in self.tokens:
            raise AuthError("Invalid token")
        return self.tokens[token]

    async def ping(self):
        return True


@pytest.fixture
def settings():
    return ProxySettings(
        supabase_url="https://project.supabase.co",
        supabase_anon_key=Secret("anon-key"),
        supabase_service_role_key=Secret("service-key"),
        data_encryption_key=Secret(TEST_KEY.hex()),
    )


@pytest.fixture
def cipher():
    return FieldCipher(TEST_KEY)


@pytest.fixture
def store():
    return FakeStore({
        "user_roles": [
            {"user_id": "admin-1", "role": "admin"},
            {"user_id": "eng-1", "role": "engineer"},
            {"user_id": "client-1", "role": "client"},
        ],
    })


@pytest.fixture
def identity():
    return FakeIdentity({
        ADMIN_TOKEN: "admin-1",
        ENGINEER_TOKEN: "eng-1",
        CLIENT_TOKEN: "client-1",
        NO_ROLE_TOKEN: "nobody-1",
    })


@pytest.fixture
def client(settings, store, identity, cipher):
    app = create_app(settings=settings, store=store, identity=identity, cipher=cipher)
    return TestClient(app)