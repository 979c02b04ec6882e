"""引擎接口 /v1/engine/* 单元测试。"""

import os
import sqlite3
import tempfile

import pytest
from fastapi.testclient import TestClient

# 在导入 app 模块之前设置测试数据库路径
_tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False, prefix="engine_routes_")
_tmp.close()
os.environ["DB_PATH"] = _tmp.name

import app.database as _db_mod
from app.database import init_db
from app.main import app
from app.services.cursor_store import reset_cursor_store

NOW = 1_700_000_000_000


@pytest.fixture(autouse=True)
def _setup_db(monkeypatch):
    """每个测试前重建数据库，游标存储走 SQLite。"""
    os.environ["DB_PATH"] = _tmp.name
    _db_mod.DB_PATH = _tmp.name
    monkeypatch.setenv("CURSOR_BACKEND", "sqlite")
    monkeypatch.setenv("DISPATCH_AUDIT_ENABLED", "1")
    reset_cursor_store()
    conn = sqlite3.connect(_tmp.name)
    conn.executescript("""
        DROP TABLE IF EXISTS dispatch_logs;
        DROP TABLE IF EXISTS dispatch_cursors;
    """)
    conn.close()
    init_db()
    yield
    reset_cursor_store()


@pytest.fixture
def client():
    return TestClient(app)


def _context(**overrides) -> dict:
    ctx = {
        "subject_id": "M1",
        "trx_type": "payin",
        "trx_method": "upi",
        "ccy": "INR",
        "amount": "1000",
        "timestamp": NOW,
    }
    ctx.update(overrides)
    return ctx


class TestRoutingResolve:
    """POST /v1/engine/routing/resolve"""

    def test_exclusive_rule_wins(self, client):
        resp = client.post("/v1/engine/routing/resolve", json={
            "context": _context(amount="50"),
            "rules": [
                {"id": 1, "trx_type": "payin", "priority": 10, "channel_code": "A"},
                {"id": 2, "trx_type": "payin", "mid": "M1", "priority": 5,
                 "ccy": "INR", "channel_code": "B", "channel_account": "acc-1"},
            ],
        })
        data = resp.json()
        assert data["code"] == 1
        assert data["rule_id"] == 2
        assert data["channel_code"] == "B"
        assert data["channel_account"] == "acc-1"

    def test_no_match(self, client):
        resp = client.post("/v1/engine/routing/resolve", json={
            "context": _context(),
            "rules": [{"id": 1, "trx_type": "payout", "channel_code": "A"}],
        })
        data = resp.json()
        assert data["code"] == -1
        assert data["error"] == "NoMatchingRule"

    def test_invalid_rule(self, client):
        resp = client.post("/v1/engine/routing/resolve", json={
            "context": _context(),
            "rules": [{"id": 1, "trx_type": "payin", "min_amount": "500",
                       "max_amount": "100", "channel_code": "A"}],
        })
        assert resp.json()["error"] == "InvalidRuleConfiguration"

    def test_missing_context_field(self, client):
        resp = client.post("/v1/engine/routing/resolve", json={
            "context": {"subject_id": "M1"},
            "rules": [],
        })
        assert resp.status_code == 422


class TestCommissionResolve:
    """POST /v1/engine/commission/resolve"""

    def test_fee(self, client):
        resp = client.post("/v1/engine/commission/resolve", json={
            "context": _context(usd_amount="12"),
            "configs": [
                {"id": 1, "trx_type": "payin", "rate": "3"},
                {"id": 2, "trx_type": "payin", "cid": "M1", "fixed_commission": "2",
                 "rate": "1.5", "max_fee": "100", "usd_rate": "2"},
            ],
        })
        data = resp.json()
        assert data["code"] == 1
        assert data["rule_id"] == 2
        assert data["fee"] == "17.00"
        assert data["rate"] == "1.5"
        assert data["usd_fee"] == "0.24"

    def test_no_config(self, client):
        resp = client.post("/v1/engine/commission/resolve", json={
            "context": _context(),
            "configs": [],
        })
        assert resp.json()["error"] == "NoMatchingRule"


class TestSettlementResolve:
    """POST /v1/engine/settlement/resolve"""

    def _contract(self, settle_ccy="INR"):
        return {
            "contract_id": "C1",
            "sid": "M1",
            "start_at": NOW - 1000,
            "payin": {
                "trx_type": "payin",
                "configs": [{"trx_type": "payin", "trx_method": "upi", "ccy": "INR"}],
                "settle": [{
                    "id": 5,
                    "type": "T1",
                    "trx_type": "payin",
                    "strategies": ["S1"],
                    "strategy_list": [{
                        "id": 1,
                        "code": "S1",
                        "settle_ccy": settle_ccy,
                        "rules": [{"rule_id": "R1", "trx_type": "payin", "rate": "2"}],
                    }],
                }],
            },
        }

    def test_decision(self, client):
        resp = client.post("/v1/engine/settlement/resolve", json={
            "context": _context(),
            "contract": self._contract(),
        })
        data = resp.json()
        assert data["code"] == 1
        assert data["settlement"] == {
            "type": "T1",
            "settle_config_id": 5,
            "strategy_code": "S1",
            "rule_id": "R1",
            "settle_ccy": "INR",
            "fee": "20.00",
            "rate": "2",
            "usd_fee": None,
        }

    def test_no_binding_returns_null(self, client):
        contract = self._contract()
        contract["payin"]["settle"] = []
        resp = client.post("/v1/engine/settlement/resolve", json={
            "context": _context(),
            "contract": contract,
        })
        data = resp.json()
        assert data["code"] == 1
        assert data["settlement"] is None

    def test_contract_rejects(self, client):
        resp = client.post("/v1/engine/settlement/resolve", json={
            "context": _context(ccy="PHP"),
            "contract": self._contract(),
        })
        assert resp.json()["error"] == "NoMatchingRule"


class TestDispatchRoute:
    """POST /v1/engine/dispatch 及游标、日志接口。"""

    def _body(self, rules=None, candidates=None):
        return {
            "context": _context(subject_id="T1", trx_type="cashier_payin", amount="100"),
            "routers": [{"id": 1, "trx_type": "cashier_payin", "strategy_code": "S1"}],
            "strategies": [{"id": 1, "code": "S1", "rules": rules or {}}],
            "candidates": candidates if candidates is not None else [
                {"id": "a", "user_online": True, "available_balance": "1000", "score": 1},
                {"id": "b", "user_online": True, "available_balance": "1000", "score": 2},
                {"id": "c", "user_online": False, "available_balance": "1000", "score": 3},
            ],
        }

    def test_dispatch(self, client):
        resp = client.post("/v1/engine/dispatch", json=self._body({"user_online_required": True}))
        data = resp.json()
        assert data["code"] == 1
        assert data["router_id"] == 1
        assert data["strategy_code"] == "S1"
        assert data["candidates"] == ["b", "a"]
        assert {"id": "c", "passed": False, "reason": "user_online_required"} in data["trace"]

    def test_insufficient(self, client):
        resp = client.post("/v1/engine/dispatch", json=self._body({"limit_min_candidates": 5}))
        data = resp.json()
        assert data["code"] == -1
        assert data["error"] == "InsufficientCandidates"

    def test_invalid_rules(self, client):
        resp = client.post("/v1/engine/dispatch", json=self._body({"sort_random_factor": 2}))
        assert resp.json()["error"] == "InvalidRuleConfiguration"

    def test_round_robin_cursor_endpoints(self, client):
        body = self._body({"sort_by": "round_robin"})
        first = client.post("/v1/engine/dispatch", json=body).json()["candidates"][0]
        second = client.post("/v1/engine/dispatch", json=body).json()["candidates"][0]
        assert (first, second) == ("a", "b")

        resp = client.get("/v1/engine/dispatch/cursors/S1")
        assert resp.json()["cursor"] == 2

        resp = client.delete("/v1/engine/dispatch/cursors/S1")
        assert resp.json()["code"] == 1
        assert client.get("/v1/engine/dispatch/cursors/S1").json()["cursor"] == 0

    def test_logs(self, client):
        client.post("/v1/engine/dispatch", json=self._body())
        client.post("/v1/engine/dispatch", json=self._body({"limit_min_candidates": 9}))
        data = client.get("/v1/engine/dispatch/logs").json()
        assert data["code"] == 1
        assert [log["result"] for log in data["data"]] == ["InsufficientCandidates", "OK"]
        assert data["data"][1]["candidate_ids"] == ["c", "b", "a"]

        data = client.get("/v1/engine/dispatch/logs", params={"strategy_code": "OTHER"}).json()
        assert data["data"] == []

    def test_logs_limit_validated(self, client):
        assert client.get("/v1/engine/dispatch/logs", params={"limit": 0}).status_code == 422
