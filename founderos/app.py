from __future__ import annotations

import logging
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Generator

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from founderos import archetypes, events, intent, services
from founderos.config import get_settings
from founderos.db import current_db_path, get_session, init_db
from founderos.importer import import_xlsx
from founderos.llm import get_llm_client
from founderos.models import ArchetypeInstance
from founderos.schemas import (
    ArchetypeCreate,
    ArchetypeOut,
    BusinessIntentOut,
    BusinessIntentUpdate,
    DemandTestOut,
    EventOut,
    ExperimentCreate,
    ExperimentOut,
    FounderSummaryOut,
    IdeaCreate,
    IdeaDetail,
    IdeaFiltersOut,
    IdeaFiltersUpdate,
    IdeaOut,
    ImportResult,
    MetricsSnapshotOut,
    SignalOut,
    StatsOut,
    WeeklySummaryRequest,
)
from founderos.utils import NotFoundError

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="FounderOS",
    version="0.1.0",
    description=(
        "Founder operating system: turn market signals into scored product ideas, "
        "validate them with experiments, and publish a weekly founder summary. "
        "All endpoints return JSON. No authentication required."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Ideas", "description": "Browse, create, evaluate and override ideas."},
        {"name": "Flows", "description": "Discover, refresh, experiment loop and weekly summary runs."},
        {"name": "Signals", "description": "Raw market signals ingested from external sources."},
        {"name": "Founder summary", "description": "Metrics snapshots and the approval workflow."},
        {"name": "Archetypes", "description": "Archetype instances and demand tests."},
        {"name": "Settings", "description": "Tenant idea filters and business guardrails."},
        {"name": "Import", "description": "Bulk import ideas and subscriptions from XLSX spreadsheets."},
        {"name": "Stats", "description": "Aggregate statistics and the event log."},
    ],
)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def tenant_id() -> str:
    return get_settings().tenant_id


def _parse_id(raw: str | None, label: str) -> int:
    try:
        return int((raw or "").strip())
    except ValueError:
        raise HTTPException(400, f"{label} must be an integer") from None


# ---------------------------------------------------------------------------
# Routes: Root
# ---------------------------------------------------------------------------


@app.get("/", tags=["Stats"], summary="Service info")
async def root():
    db_path = current_db_path()
    return {
        "name": "FounderOS",
        "tenant_id": tenant_id(),
        "database": str(db_path) if db_path else None,
        "docs": "/docs",
    }


# ---------------------------------------------------------------------------
# Routes: Flows (fixed paths before /api/ideas/{idea_id})
# ---------------------------------------------------------------------------


@app.post("/api/ideas/discover", tags=["Flows"],
          summary="Ingest signals, map them into ideas and score the new ones")
async def discover_ideas(
    external: bool = Query(True, description="Fetch Apify/RSS sources before falling back to the sample feeds"),
    session: Session = Depends(db_session),
):
    result = await services.run_discover_flow(
        session, tenant_id(), use_external=external, client=get_llm_client(),
    )
    session.commit()
    return result


@app.post("/api/ideas/refresh", tags=["Flows"], summary="Re-run filters and scores over every idea")
async def refresh_ideas(session: Session = Depends(db_session)):
    results = services.run_ideas_refresh_flow(session, tenant_id())
    session.commit()
    return {"results": results}


@app.post("/api/ideas/experiment-loop", tags=["Flows"],
          summary="Design experiments for new EXPERIMENTING ideas and act on completed results")
async def experiment_loop(session: Session = Depends(db_session)):
    results = await services.run_experiment_loop(session, tenant_id())
    session.commit()
    return {"results": results}


@app.post("/api/ideas/update-state", response_model=IdeaOut, tags=["Ideas"],
          summary="Manually override an idea's state")
async def update_idea_state(
    raw_idea_id: str | None = Form(None, alias="ideaId"),
    state: str | None = Form(None),
    session: Session = Depends(db_session),
):
    if not raw_idea_id or not state:
        raise HTTPException(400, "ideaId and state are required")
    idea_id = _parse_id(raw_idea_id, "ideaId")
    try:
        idea = services.update_idea_state(session, tenant_id(), idea_id, state)
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from None
    session.commit()
    return services.idea_summary(idea)


@app.post("/api/weekly-summary", response_model=FounderSummaryOut, tags=["Flows"],
          summary="Snapshot metrics and draft a founder summary for approval")
async def weekly_summary(body: WeeklySummaryRequest | None = None, session: Session = Depends(db_session)):
    runway = body.runway_months if body else None
    summary = services.run_weekly_summary_flow(session, tenant_id(), runway_months=runway)
    session.commit()
    return services.founder_summary_dict(summary)


@app.post("/api/founder-summary/{summary_id}/approve", response_model=FounderSummaryOut,
          tags=["Founder summary"], summary="Approve and publish a founder summary")
async def approve_summary(summary_id: int, session: Session = Depends(db_session)):
    summary = services.approve_founder_summary(session, tenant_id(), summary_id)
    session.commit()
    return services.founder_summary_dict(summary)


# ---------------------------------------------------------------------------
# Routes: Ideas
# ---------------------------------------------------------------------------


@app.get("/api/ideas", response_model=list[IdeaOut], tags=["Ideas"],
         summary="List ideas, best score first")
async def list_ideas(
    state: str | None = Query(None, description="Comma-separated: PENDING_REVIEW, SCORING, EXPERIMENTING, VALIDATED, KILLED"),
    session: Session = Depends(db_session),
):
    return [services.idea_summary(i) for i in services.list_ideas(session, tenant_id(), state)]


@app.post("/api/ideas", response_model=IdeaDetail, status_code=201, tags=["Ideas"],
          summary="Create an idea and evaluate it")
async def create_idea(body: IdeaCreate, session: Session = Depends(db_session)):
    tenant = tenant_id()
    idea = services.create_idea(session, tenant, body.model_dump())
    idea = services.evaluate_idea(session, tenant, idea.id)
    session.commit()
    return services.idea_detail(idea)


@app.get("/api/ideas/{idea_id}", response_model=IdeaDetail, tags=["Ideas"],
         summary="Get an idea with its experiments")
async def get_idea(idea_id: int, session: Session = Depends(db_session)):
    return services.idea_detail(services.get_idea(session, tenant_id(), idea_id))


@app.post("/api/ideas/{idea_id}/evaluate", response_model=IdeaDetail, tags=["Ideas"],
          summary="Run hard filters, scores and the state decision on one idea")
async def evaluate_idea(idea_id: int, session: Session = Depends(db_session)):
    idea = services.evaluate_idea(session, tenant_id(), idea_id)
    session.commit()
    return services.idea_detail(idea)


@app.post("/api/ideas/{idea_id}/experiments", response_model=ExperimentOut, status_code=201,
          tags=["Ideas"], summary="Log an experiment against an idea")
async def log_experiment(idea_id: int, body: ExperimentCreate, session: Session = Depends(db_session)):
    try:
        experiment = services.log_idea_experiment(
            session, tenant_id(), idea_id, body.type, body.description, body.result,
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from None
    session.commit()
    return services.experiment_dict(experiment)


# ---------------------------------------------------------------------------
# Routes: Read views
# ---------------------------------------------------------------------------


@app.get("/api/signals", response_model=list[SignalOut], tags=["Signals"], summary="Most recent signals")
async def list_signals(limit: int = Query(100, ge=1, le=500), session: Session = Depends(db_session)):
    return [services.signal_dict(s) for s in services.list_signals(session, tenant_id(), limit)]


@app.get("/api/founder-summaries", response_model=list[FounderSummaryOut], tags=["Founder summary"],
         summary="Founder summaries, newest period first")
async def list_founder_summaries(limit: int = Query(20, ge=1, le=100), session: Session = Depends(db_session)):
    return [services.founder_summary_dict(s) for s in services.list_founder_summaries(session, tenant_id(), limit)]


@app.get("/api/metrics-snapshots", response_model=list[MetricsSnapshotOut], tags=["Founder summary"],
         summary="Metrics snapshots, newest period first")
async def list_snapshots(limit: int = Query(20, ge=1, le=100), session: Session = Depends(db_session)):
    return [services.snapshot_dict(s) for s in services.list_snapshots(session, tenant_id(), limit)]


@app.get("/api/events", response_model=list[EventOut], tags=["Stats"], summary="Event log, newest first")
async def list_events(
    type: str | None = Query(None, description="Only events of this type"),
    limit: int = Query(50, ge=1, le=500),
    session: Session = Depends(db_session),
):
    rows = events.recent_events(session, tenant_id(), event_type=type, limit=limit)
    return [events.event_dict(e) for e in rows]


@app.get("/api/stats", response_model=StatsOut, tags=["Stats"], summary="Idea pipeline and revenue statistics")
async def get_stats(session: Session = Depends(db_session)):
    return services.compute_stats(session, tenant_id())


# ---------------------------------------------------------------------------
# Routes: Settings
# ---------------------------------------------------------------------------


@app.get("/api/settings/ideas", response_model=IdeaFiltersOut, tags=["Settings"], summary="Current idea filters")
async def get_idea_settings(session: Session = Depends(db_session)):
    return intent.intent_dict(*intent.get_idea_filters(session, tenant_id()))


@app.put("/api/settings/ideas", response_model=IdeaFiltersOut, tags=["Settings"],
         summary="Replace idea filters (empty fields reset to defaults)")
async def update_idea_settings(body: IdeaFiltersUpdate, session: Session = Depends(db_session)):
    result = intent.upsert_idea_filters(session, tenant_id(), body.model_dump())
    session.commit()
    return intent.intent_dict(*result)


@app.get("/api/settings/business", response_model=BusinessIntentOut, tags=["Settings"],
         summary="Current business guardrails")
async def get_business_settings(session: Session = Depends(db_session)):
    return intent.intent_dict(*intent.get_business_intent(session, tenant_id()))


@app.put("/api/settings/business", response_model=BusinessIntentOut, tags=["Settings"],
         summary="Replace business guardrails (empty fields reset to defaults)")
async def update_business_settings(body: BusinessIntentUpdate, session: Session = Depends(db_session)):
    result = intent.upsert_business_intent(session, tenant_id(), body.model_dump())
    session.commit()
    return intent.intent_dict(*result)


# ---------------------------------------------------------------------------
# Routes: Archetypes
# ---------------------------------------------------------------------------


@app.get("/api/archetypes/framework", tags=["Archetypes"], summary="Static archetype patterns and ICP options")
async def archetype_framework():
    return archetypes.framework_dict()


@app.get("/api/archetypes", response_model=list[ArchetypeOut], tags=["Archetypes"],
         summary="Archetype instances, best score first")
async def list_archetypes(session: Session = Depends(db_session)):
    rows = session.execute(
        select(ArchetypeInstance)
        .where(ArchetypeInstance.tenant_id == tenant_id())
        .order_by(ArchetypeInstance.total_score.desc().nulls_last(), ArchetypeInstance.id)
    ).scalars().all()
    return [archetypes.instance_dict(i) for i in rows]


@app.post("/api/archetypes", response_model=ArchetypeOut, status_code=201, tags=["Archetypes"],
          summary="Create and score an archetype instance")
async def create_archetype(body: ArchetypeCreate, session: Session = Depends(db_session)):
    try:
        instance = archetypes.create_instance(
            session, tenant_id(), body.pattern_key, body.icp_key,
            summary=body.summary, data_surfaces=body.data_surfaces,
            source_signal_ids=body.source_signal_ids,
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from None
    session.commit()
    return archetypes.instance_dict(instance)


@app.post("/api/archetypes/{instance_id}/demand-test", response_model=DemandTestOut, tags=["Archetypes"],
          summary="Run a demand test and rescore the instance")
async def run_demand_test(instance_id: int, session: Session = Depends(db_session)):
    test = archetypes.run_demand_test(session, tenant_id(), instance_id)
    session.commit()
    return {
        "id": test.id, "archetype_instance_id": test.archetype_instance_id,
        "outreach_count": test.outreach_count, "positive_responses": test.positive_responses,
        "meetings_booked": test.meetings_booked, "willingness_signals": test.willingness_signals,
        "verdict": test.verdict, "notes": test.notes,
    }


@app.post("/api/archetypes/{instance_id}/pause", response_model=ArchetypeOut, tags=["Archetypes"],
          summary="Pause an archetype instance")
async def pause_archetype(instance_id: int, session: Session = Depends(db_session)):
    instance = archetypes.set_instance_state(session, tenant_id(), instance_id, "PAUSED")
    session.commit()
    return archetypes.instance_dict(instance)


@app.post("/api/archetypes/{instance_id}/kill", response_model=ArchetypeOut, tags=["Archetypes"],
          summary="Kill an archetype instance")
async def kill_archetype(instance_id: int, session: Session = Depends(db_session)):
    instance = archetypes.set_instance_state(session, tenant_id(), instance_id, "KILLED")
    session.commit()
    return archetypes.instance_dict(instance)


# ---------------------------------------------------------------------------
# Routes: Import
# ---------------------------------------------------------------------------


@app.post("/api/import", response_model=ImportResult,
          tags=["Import"], summary="Import ideas and subscriptions from an XLSX spreadsheet")
async def import_file(file: UploadFile = File(...), session: Session = Depends(db_session)):
    if not file.filename or not file.filename.endswith(".xlsx"):
        raise HTTPException(400, "Only .xlsx files are supported")
    content = await file.read()
    tmp_path = None
    try:
        with tempfile.NamedTemporaryFile(suffix=".xlsx", delete=False) as f:
            tmp_path = Path(f.name)
            f.write(content)
        return import_xlsx(tmp_path, session, tenant_id())
    finally:
        if tmp_path:
            tmp_path.unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("founderos.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
