"""
tests/test_server.py
====================
HTTP layer: session state routes, analysis tools, agent route, fetch proxy,
bearer-token gate and payload validation.
"""
import base64
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from audit_platform import config, server
from audit_platform.state import SessionStore
from audit_platform.types import AgentMessage, AgentResult, TokenUsage

PERIODS = [
    {"periodLabel": "Q1", "revenue": 1000, "netIncome": 100, "assets": 800, "liabilities": 400, "equity": 500},
    {"periodLabel": "Q2", "revenue": 1200, "netIncome": 120, "assets": 900, "liabilities": 1200, "equity": 500},
]


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def client(store, monkeypatch):
    monkeypatch.setattr(config, "AUDIT_API_TOKEN", None)
    monkeypatch.setattr(config, "OPENAI_API_KEY", None)
    app = server.create_app()
    app.dependency_overrides[server.get_store] = lambda: store
    return TestClient(app)


class TestStateRoutes:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_default_session(self, client):
        body = client.get("/api/state").json()
        assert body["tenantId"] == "default"
        assert body["sessionId"] == "anonymous"
        assert body["state"]["actionItems"] == []

    def test_patch_and_isolation(self, client):
        headers = {"X-Tenant-Id": "acme", "X-Session-Id": "s1"}
        resp = client.post("/api/state/patch", json={"patch": {"context": {"userNotes": "hi"}}}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["state"]["context"] == {"userNotes": "hi"}
        assert client.get("/api/state", headers=headers).json()["state"]["context"] == {"userNotes": "hi"}
        assert client.get("/api/state").json()["state"]["context"] == {}

    def test_delete(self, client):
        client.post("/api/state/patch", json={"patch": {"context": {"a": 1}}})
        assert client.delete("/api/state").json() == {"ok": True}
        assert client.get("/api/state").json()["state"]["context"] == {}


class TestToolRoutes:
    def test_metrics_stored(self, client):
        body = client.post("/api/tools/metrics", json={"periods": PERIODS}).json()
        assert body["financialMetrics"]["solvency"]["debtToEquity"] == pytest.approx(2.4)
        state = client.get("/api/state").json()["state"]
        assert state["financialMetrics"] == body["financialMetrics"]

    def test_overflowing_figure_is_absent(self, client):
        raw = '{"periods":[{"periodLabel":"Q1","revenue":1e400,"costOfGoodsSold":10}]}'
        headers = {"Content-Type": "application/json"}
        resp = client.post("/api/tools/metrics", content=raw, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["financialMetrics"]["profitability"] == {}

        resp = client.post("/api/tools/analysis", content=raw, headers=headers)
        assert resp.status_code == 200
        state = client.get("/api/state").json()["state"]
        assert state["periods"] == [{"periodLabel": "Q1", "costOfGoodsSold": 10.0}]

    def test_anomalies(self, client):
        body = client.post("/api/tools/anomalies", json={"periods": PERIODS}).json()
        assert body == {"anomalies": {"notes": []}}

    def test_analysis_derives_items_once(self, client):
        first = client.post("/api/tools/analysis", json={"periods": PERIODS}).json()
        titles = [i["title"] for i in first["actionItems"]]
        assert "Follow up: Why is debt-to-equity above 2?" in titles
        assert first["analysis"]["executiveSummary"]["reportingPeriod"] == "Q2"

        second = client.post("/api/tools/analysis", json={}).json()
        assert second["actionItems"] == first["actionItems"]

    def test_analysis_uses_stored_periods(self, client):
        client.post("/api/state/patch", json={"patch": {"periods": PERIODS[:1]}})
        body = client.post("/api/tools/analysis", json={}).json()
        assert body["analysis"]["executiveSummary"]["reportingPeriod"] == "Q1"

    def test_classify(self, client):
        resp = client.post("/api/tools/classify", json={"text": "Statement of Financial Position"})
        assert resp.json() == {"docType": "financial_statement"}


class TestAgentRoute:
    def test_echo_reply_counts_usage(self, client):
        resp = client.post("/api/agent", json={"messages": [{"role": "user", "content": "hello"}]})
        assert resp.status_code == 200
        assert resp.json()["newMessages"][0] == {"role": "assistant", "content": "Agent received 1 messages."}
        usage = client.get("/api/state").json()["state"]["tokenUsage"]
        assert usage["requests"] == 1
        assert client.get("/api/state").json()["state"]["analysis"] is None

    def test_invalid_role_rejected(self, client):
        resp = client.post("/api/agent", json={"messages": [{"role": "robot", "content": "x"}]})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid payload"
        assert resp.json()["issues"]

    def test_accepted_reply_replaces_analysis(self, client, monkeypatch):
        reply = {
            "executiveSummary": {"purpose": "LLM"},
            "financialMetrics": {},
            "complianceAndRisk": {"nonComplianceNotes": ["Late SOX certification"]},
            "risks": ["FX exposure"],
        }

        def fake_run_agent(messages):
            return AgentResult([AgentMessage("assistant", json.dumps(reply))], TokenUsage(3, 4, 7))

        monkeypatch.setattr(server, "run_agent", fake_run_agent)
        client.post("/api/agent", json={"messages": [{"role": "user", "content": "analyze"}]})

        state = client.get("/api/state").json()["state"]
        assert state["analysis"] == reply
        assert state["tokenUsage"]["totalTokens"] == 7
        titles = [i["title"] for i in state["actionItems"]]
        assert titles == ["Address non-compliance: Late SOX certification", "Mitigate risk: FX exposure"]

    def test_backend_error_is_502(self, client, monkeypatch):
        def failing(messages):
            raise server.AgentError("down")

        monkeypatch.setattr(server, "run_agent", failing)
        resp = client.post("/api/agent", json={"messages": [{"role": "user", "content": "x"}]})
        assert resp.status_code == 502


class TestFetchRoute:
    def test_pdf_as_base64(self, client, monkeypatch):
        monkeypatch.setattr(server, "fetch_document", lambda url, timeout: (b"%PDF-1.4", "remote.pdf"))
        body = client.post("/api/fetch", json={"url": "https://example.com/a.pdf"}).json()
        assert body == {"type": "pdf", "data": base64.b64encode(b"%PDF-1.4").decode("ascii")}

    def test_text(self, client, monkeypatch):
        monkeypatch.setattr(server, "fetch_document", lambda url, timeout: (b"<p>hi</p>", "remote.html"))
        body = client.post("/api/fetch", json={"url": "https://example.com"}).json()
        assert body == {"type": "text", "text": "<p>hi</p>"}

    def test_upstream_failure(self, client, monkeypatch):
        def failing(url, timeout):
            raise httpx.ConnectError("refused")

        monkeypatch.setattr(server, "fetch_document", failing)
        resp = client.post("/api/fetch", json={"url": "https://example.com"})
        assert resp.status_code == 502

    def test_non_http_url(self, client):
        assert client.post("/api/fetch", json={"url": "file:///etc/passwd"}).status_code == 400


class TestTokenGate:
    def test_token_required_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(config, "AUDIT_API_TOKEN", "secret")
        assert client.get("/api/state").status_code == 401
        assert client.get("/api/state", headers={"Authorization": "Bearer wrong"}).status_code == 401
        assert client.get("/api/state", headers={"Authorization": "Bearer secret"}).status_code == 200
        assert client.get("/health").status_code == 200
