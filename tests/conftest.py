from __future__ import annotations

import copy
from datetime import date

import pytest
from postgrest.exceptions import APIError

import audit as audit_mod
from models import GroupConfig, Member


# -------------------------
# In-memory stand-in for the supabase-py query builder
# -------------------------
class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    def __init__(self, client: "FakeClient", table: str):
        self.client = client
        self.table = table
        self.op = "select"
        self.payload = None
        self.on_conflict = None
        self.filters = []
        self._order = None
        self._limit = None

    # builders
    def select(self, cols="*"):
        self.op = "select"
        return self

    def insert(self, payload):
        self.op, self.payload = "insert", payload
        return self

    def upsert(self, payload, on_conflict=None):
        self.op, self.payload, self.on_conflict = "upsert", payload, on_conflict
        return self

    def update(self, payload):
        self.op, self.payload = "update", payload
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, key, value):
        self.filters.append(lambda r: str(r.get(key)) == str(value))
        return self

    def in_(self, key, values):
        allowed = {str(v) for v in values}
        self.filters.append(lambda r: str(r.get(key)) in allowed)
        return self

    def order(self, col, desc=False):
        self._order = (col, desc)
        return self

    def limit(self, n):
        self._limit = n
        return self

    def _match(self, row) -> bool:
        return all(f(row) for f in self.filters)

    def execute(self):
        if (self.table, self.op) in self.client.fail:
            raise APIError({"message": f"{self.op} on {self.table} failed", "code": "500", "hint": None, "details": None})

        rows = self.client.tables.setdefault(self.table, [])
        self.client.calls.append((self.table, self.op, copy.deepcopy(self.payload)))

        if self.op == "select":
            out = [dict(r) for r in rows if self._match(r)]
            if self._order:
                col, desc = self._order
                out.sort(key=lambda r: str(r.get(col)), reverse=desc)
            if self._limit is not None:
                out = out[: self._limit]
            return FakeResponse(out)

        payloads = self.payload if isinstance(self.payload, list) else [self.payload]

        if self.op == "insert":
            for p in payloads:
                rows.append(dict(p))
            return FakeResponse([dict(p) for p in payloads])

        if self.op == "upsert":
            keys = (self.on_conflict or "id").split(",")
            for p in payloads:
                hit = next((r for r in rows if all(str(r.get(k)) == str(p.get(k)) for k in keys)), None)
                if hit is None:
                    rows.append(dict(p))
                else:
                    hit.update(p)
            return FakeResponse([dict(p) for p in payloads])

        if self.op == "update":
            hits = [r for r in rows if self._match(r)]
            for r in hits:
                r.update(self.payload)
            return FakeResponse([dict(r) for r in hits])

        if self.op == "delete":
            kept = [r for r in rows if not self._match(r)]
            gone = [r for r in rows if self._match(r)]
            self.client.tables[self.table] = kept
            return FakeResponse(gone)

        raise AssertionError(f"unsupported op {self.op}")


class FakeClient:
    def __init__(self, tables: dict | None = None):
        self.tables = {k: [dict(r) for r in v] for k, v in (tables or {}).items()}
        self.fail: set[tuple[str, str]] = set()
        self.calls: list[tuple[str, str, object]] = []

    def schema(self, name):
        return self

    def table(self, name):
        return FakeQuery(self, name)

    def rows(self, table):
        return self.tables.get(table, [])


# -------------------------
# Fixtures
# -------------------------
@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    monkeypatch.setenv("SUPABASE_SCHEMA", "public")
    audit_mod.clear_column_cache()
    yield
    audit_mod.clear_column_cache()


@pytest.fixture
def group() -> GroupConfig:
    return GroupConfig(
        id="g1",
        name="Tontine Test",
        contribution_amount=500,
        admin_fee=50,
        penalty_per_day=200,
        start_date=date(2026, 2, 7),
        rotation_days=7,
    )


@pytest.fixture
def member() -> Member:
    return Member(id="m1", group_id="g1", full_name="Awa Diallo")


@pytest.fixture
def fake_client():
    return FakeClient({
        "groups": [{
            "id": "g1",
            "name": "Tontine Test",
            "contribution_amount": 500,
            "admin_fee": 50,
            "penalty_per_day": 200,
            "start_date": "2026-02-07",
            "rotation_days": 7,
            "currency": "F",
        }],
        "members": [
            {"id": "m1", "group_id": "g1", "full_name": "Awa Diallo", "status": "ACTIVE", "wallet_balance": 100},
            {"id": "m2", "group_id": "g1", "full_name": "Kofi Mensah", "status": "ALERT_8J", "wallet_balance": None},
        ],
        "attendance": [],
        "pots": [],
        "audit_log": [],
    })
