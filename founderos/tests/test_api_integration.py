"""Integration tests for the FastAPI endpoints.

Uses TestClient against an in-memory database shared through StaticPool.
"""
from __future__ import annotations

from io import BytesIO
from unittest.mock import AsyncMock, patch

import openpyxl
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from founderos.config import get_settings
from founderos.models import Base, Idea, Subscription

TENANT = "demo-tenant"


@pytest.fixture()
def test_db():
    """Create a temporary SQLite in-memory database for testing.

    Uses StaticPool so all connections share the same in-memory database.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return engine, TestSession


@pytest.fixture()
def client(test_db, tmp_path, monkeypatch):
    """FastAPI TestClient using in-memory database."""
    monkeypatch.setenv("FOUNDEROS_DB_PATH", str(tmp_path / "lifespan.db"))
    monkeypatch.setenv("FOUNDEROS_TENANT_ID", TENANT)
    monkeypatch.setenv("LLM_PROVIDER", "rule-based")
    get_settings.cache_clear()
    engine, TestSession = test_db
    from founderos.app import app, db_session

    def override_db_session():
        session = TestSession()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[db_session] = override_db_session
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c, TestSession
    app.dependency_overrides.clear()
    get_settings.cache_clear()


@pytest.fixture()
def seeded_client(client):
    """Client with one scoreable idea pre-seeded."""
    c, TestSession = client
    session = TestSession()
    idea = Idea(
        tenant_id=TENANT, title="Recurring daily weekly email workflow", description="",
        arpu_estimate=100.0, founder_fit_signal=True, state="PENDING_REVIEW",
    )
    session.add(idea)
    session.commit()
    idea_id = idea.id
    session.close()
    return c, TestSession, idea_id


class TestIdeaEndpoints:
    def test_create_and_list(self, client):
        c, _ = client
        resp = c.post("/api/ideas", json={
            "title": "Recurring email workflow", "description": "Weekly CRM review",
            "arpu_estimate": 100, "founder_fit_signal": True,
        })
        assert resp.status_code == 201
        created = resp.json()
        assert created["state"] in ("SCORING", "EXPERIMENTING")
        assert created["total_score"] is not None
        assert created["experiments"] == []

        listing = c.get("/api/ideas").json()
        assert [i["id"] for i in listing] == [created["id"]]

    def test_create_requires_title(self, client):
        c, _ = client
        assert c.post("/api/ideas", json={"title": "  ", "description": "x"}).status_code == 422

    def test_get_idea_404(self, client):
        c, _ = client
        resp = c.get("/api/ideas/999")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Idea not found"

    def test_evaluate(self, seeded_client):
        c, _, idea_id = seeded_client
        resp = c.post(f"/api/ideas/{idea_id}/evaluate")
        assert resp.status_code == 200
        assert resp.json()["state"] == "EXPERIMENTING"
        assert resp.json()["total_score"] == 9

    def test_filter_by_state(self, seeded_client):
        c, _, idea_id = seeded_client
        c.post(f"/api/ideas/{idea_id}/evaluate")
        assert [i["id"] for i in c.get("/api/ideas", params={"state": "experimenting"}).json()] == [idea_id]
        assert c.get("/api/ideas", params={"state": "KILLED"}).json() == []

    def test_log_experiment(self, seeded_client):
        c, _, idea_id = seeded_client
        resp = c.post(f"/api/ideas/{idea_id}/experiments", json={
            "type": "signal", "description": "Posted on LinkedIn", "result": "passed",
        })
        assert resp.status_code == 201
        assert resp.json()["type"] == "SIGNAL"
        assert resp.json()["result"] == "PASSED"
        detail = c.get(f"/api/ideas/{idea_id}").json()
        assert len(detail["experiments"]) == 1

    def test_log_experiment_bad_type(self, seeded_client):
        c, _, idea_id = seeded_client
        resp = c.post(f"/api/ideas/{idea_id}/experiments", json={"type": "MAGIC", "description": "x"})
        assert resp.status_code == 422


class TestUpdateState:
    def test_update_state(self, seeded_client):
        c, _, idea_id = seeded_client
        resp = c.post("/api/ideas/update-state", data={"ideaId": str(idea_id), "state": "KILLED"})
        assert resp.status_code == 200
        assert resp.json()["state"] == "KILLED"

    def test_missing_fields(self, client):
        c, _ = client
        assert c.post("/api/ideas/update-state", data={"state": "KILLED"}).status_code == 400
        assert c.post("/api/ideas/update-state", data={"ideaId": "1"}).status_code == 400

    def test_invalid_state(self, seeded_client):
        c, _, idea_id = seeded_client
        resp = c.post("/api/ideas/update-state", data={"ideaId": str(idea_id), "state": "DONE"})
        assert resp.status_code == 400

    def test_non_numeric_id(self, client):
        c, _ = client
        resp = c.post("/api/ideas/update-state", data={"ideaId": "abc", "state": "KILLED"})
        assert resp.status_code == 400

    def test_unknown_idea(self, client):
        c, _ = client
        resp = c.post("/api/ideas/update-state", data={"ideaId": "4242", "state": "KILLED"})
        assert resp.status_code == 404


class TestFlows:
    def test_discover_falls_back_to_sample_feeds(self, client):
        c, _ = client
        with patch("founderos.services.fetch_external_signals", new=AsyncMock(return_value=[])):
            resp = c.post("/api/ideas/discover")
            again = c.post("/api/ideas/discover")

        assert resp.status_code == 200
        data = resp.json()
        assert data["signalSource"] == "sample"
        assert data["signalsIngested"] == 5
        assert [i["title"] for i in data["ideas"]] == [
            "Inbox Spend Guardian Autopilot",
            "AI Finance Briefing Partner",
            "RevOps Signal Watch",
            "Support Intelligence Compressor",
        ]
        assert all(i["state"] in ("SCORING", "EXPERIMENTING") for i in data["ideas"])

        assert again.json()["signalsIngested"] == 0
        assert again.json()["ideas"] == []
        assert len(c.get("/api/signals").json()) == 5
        assert c.get("/api/stats").json()["total_ideas"] == 4

    def test_refresh(self, seeded_client):
        c, _, idea_id = seeded_client
        resp = c.post("/api/ideas/refresh")
        assert resp.status_code == 200
        assert resp.json()["results"] == [{"ideaId": idea_id, "state": "EXPERIMENTING"}]

    def test_experiment_loop_designs(self, seeded_client):
        c, _, idea_id = seeded_client
        c.post(f"/api/ideas/{idea_id}/evaluate")
        resp = c.post("/api/ideas/experiment-loop")
        assert resp.status_code == 200
        assert {r["action"] for r in resp.json()["results"]} == {"designed_experiment"}
        assert len(c.get(f"/api/ideas/{idea_id}").json()["experiments"]) >= 1

    def test_weekly_summary_and_approve(self, client):
        c, TestSession = client
        session = TestSession()
        session.add(Subscription(tenant_id=TENANT, account_name="Acme", plan="pro", mrr=400.0, status="active"))
        session.commit()
        session.close()

        resp = c.post("/api/weekly-summary", json={"runway_months": 12})
        assert resp.status_code == 200
        summary = resp.json()
        assert summary["state"] == "PENDING_APPROVAL"
        assert "MRR: $400" in summary["narrative"]

        approved = c.post(f"/api/founder-summary/{summary['id']}/approve")
        assert approved.status_code == 200
        assert approved.json()["state"] == "PUBLISHED"
        assert c.post(f"/api/founder-summary/{summary['id']}/approve").json()["state"] == "PUBLISHED"

        assert len(c.get("/api/founder-summaries").json()) == 1
        assert c.get("/api/metrics-snapshots").json()[0]["mrr"] == 400.0
        types = [e["type"] for e in c.get("/api/events", params={"limit": 100}).json()]
        assert types.count("FOUNDERSUMMARY_PUBLISHED") == 1

    def test_weekly_summary_without_body(self, client):
        c, _ = client
        resp = c.post("/api/weekly-summary")
        assert resp.status_code == 200
        assert resp.json()["state"] == "PENDING_APPROVAL"

    def test_approve_unknown(self, client):
        c, _ = client
        assert c.post("/api/founder-summary/999/approve").status_code == 404


class TestSettings:
    def test_idea_settings_round_trip(self, client):
        c, _ = client
        assert c.get("/api/settings/ideas").json()["version"] == "default"
        resp = c.put("/api/settings/ideas", json={"arpu_floor": 80, "excluded_domains": "crypto, legal"})
        assert resp.status_code == 200
        assert resp.json()["version"] == "v1"
        assert resp.json()["excluded_domains"] == ["crypto", "legal"]
        assert c.get("/api/settings/ideas").json()["arpu_floor"] == 80

    def test_business_settings(self, client):
        c, _ = client
        resp = c.put("/api/settings/business", json={"target_mrr": 30000, "summary_max_actions": 3})
        assert resp.status_code == 200
        data = c.get("/api/settings/business").json()
        assert data["target_mrr"] == 30000
        assert data["summary_max_actions"] == 3
        assert data["version"] == "v1"


class TestArchetypes:
    def test_create_test_and_pause(self, client):
        c, _ = client
        resp = c.post("/api/archetypes", json={"pattern_key": "cashflow_guardian", "icp_key": "agencies"})
        assert resp.status_code == 201
        instance = resp.json()
        assert instance["total_score"] == 12
        assert instance["label"] == "Cashflow Guardian for Lean Agencies"

        test = c.post(f"/api/archetypes/{instance['id']}/demand-test").json()
        assert test["verdict"] == "PASS"
        assert test["outreach_count"] == 10

        paused = c.post(f"/api/archetypes/{instance['id']}/pause").json()
        assert paused["state"] == "PAUSED"
        assert paused["last_demand_test_verdict"] == "PASS"
        assert c.post(f"/api/archetypes/{instance['id']}/kill").json()["state"] == "KILLED"
        assert len(c.get("/api/archetypes").json()) == 1

    def test_unknown_pattern(self, client):
        c, _ = client
        assert c.post("/api/archetypes", json={"pattern_key": "nope"}).status_code == 400

    def test_unknown_instance(self, client):
        c, _ = client
        assert c.post("/api/archetypes/77/demand-test").status_code == 404

    def test_framework(self, client):
        c, _ = client
        assert len(c.get("/api/archetypes/framework").json()["patterns"]) == 3


class TestImport:
    def _workbook(self) -> bytes:
        wb = openpyxl.Workbook()
        ideas = wb.active
        ideas.title = "Ideas"
        ideas.append(["Title", "Description", "ICP", "ARPU", "Regulated", "Manual", "Founder fit"])
        ideas.append(["Renewal radar", "Monitor inbox renewals weekly", "Agencies", 120, "no", "no", "yes"])
        ideas.append(["", "missing title", None, None, None, None, None])
        subs = wb.create_sheet("Subscriptions")
        subs.append(["Account", "Plan", "MRR", "Status", "Started", "Cancelled"])
        subs.append(["Acme", "pro", 250, "active", "2024-05-01", None])
        buf = BytesIO()
        wb.save(buf)
        return buf.getvalue()

    def test_import_xlsx(self, client):
        c, _ = client
        files = {"file": ("founder.xlsx", self._workbook(),
                          "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")}
        resp = c.post("/api/import", files=files)
        assert resp.status_code == 200
        assert resp.json() == {"ideas_imported": 1, "ideas_skipped": 0, "subscriptions_imported": 1}

        again = c.post("/api/import", files=files).json()
        assert again["ideas_imported"] == 0
        assert again["ideas_skipped"] == 1

        ideas = c.get("/api/ideas").json()
        assert ideas[0]["title"] == "Renewal radar"
        assert ideas[0]["founder_fit_signal"] is True
        assert ideas[0]["state"] == "PENDING_REVIEW"

    def test_rejects_non_xlsx(self, client):
        c, _ = client
        resp = c.post("/api/import", files={"file": ("data.csv", b"a,b", "text/csv")})
        assert resp.status_code == 400


class TestStats:
    def test_empty_stats(self, client):
        c, _ = client
        data = c.get("/api/stats").json()
        assert data["total_ideas"] == 0
        assert data["latest_mrr"] is None

    def test_root(self, client):
        c, _ = client
        assert c.get("/").json()["tenant_id"] == TENANT
