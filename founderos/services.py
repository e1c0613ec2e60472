"""Shared business logic for the FounderOS API and MCP server.

Every function takes the tenant explicitly. Functions stage changes on the
given session; the caller commits.
"""
from __future__ import annotations

import json
import logging
from collections import Counter
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from founderos import events
from founderos.experiments import CONFIDENCE_ORDER, ExperimentInterpreter, design_experiments, get_interpreter
from founderos.ingestion import SAMPLE_SIGNAL_FEEDS, fetch_external_signals, ingest_signals
from founderos.intent import IdeaFilters, get_business_intent, get_idea_filters
from founderos.llm import LLMClient
from founderos.mapper import map_signals_with_llm
from founderos.metrics import aggregate_metrics, generate_founder_summary
from founderos.models import (
    EXPERIMENT_RESULTS,
    EXPERIMENT_TYPES,
    IDEA_STATES,
    TERMINAL_IDEA_STATES,
    ArchetypeInstance,
    FounderSummary,
    Idea,
    IdeaExperiment,
    IdeaSignal,
    MetricsSnapshot,
)
from founderos.scorer import evaluate
from founderos.utils import flow_instance_id, get_or_raise, json_parse

log = logging.getLogger(__name__)

RECENT_EVENT_WINDOW = timedelta(days=7)

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------

IDEA_FIELDS = (
    "id", "title", "description", "icp_description", "arpu_estimate",
    "regulated_concern", "manual_work_heavy", "founder_fit_signal",
    "passes_market", "passes_regulation", "passes_agent_fit", "passes_founder_fit",
    "pain_frequency_score", "agent_leverage_score", "data_surface_score",
    "repeatability_score", "total_score", "state", "transformation",
)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def experiment_dict(exp: IdeaExperiment) -> dict:
    return {
        "id": exp.id, "idea_id": exp.idea_id, "type": exp.type,
        "description": exp.description, "result": exp.result,
        "created_at": _iso(exp.created_at), "updated_at": _iso(exp.updated_at),
    }


def idea_summary(idea: Idea) -> dict:
    return {
        **{f: getattr(idea, f) for f in IDEA_FIELDS},
        "source_signal_ids": json_parse(idea.source_signal_ids_json, []),
        "created_at": _iso(idea.created_at),
        "updated_at": _iso(idea.updated_at),
    }


def idea_detail(idea: Idea) -> dict:
    base = idea_summary(idea)
    base["experiments"] = [experiment_dict(e) for e in idea.experiments]
    return base


def signal_dict(signal: IdeaSignal) -> dict:
    return {"id": signal.id, "source": signal.source, "content": signal.content,
            "created_at": _iso(signal.created_at)}


def snapshot_dict(snap: MetricsSnapshot) -> dict:
    return {
        "id": snap.id, "period_end": _iso(snap.period_end), "mrr": snap.mrr,
        "new_mrr": snap.new_mrr, "churned_mrr": snap.churned_mrr,
        "active_customers": snap.active_customers, "runway_months": snap.runway_months,
        "created_at": _iso(snap.created_at),
    }


def founder_summary_dict(summary: FounderSummary) -> dict:
    return {
        "id": summary.id, "metrics_snapshot_id": summary.metrics_snapshot_id,
        "period_end": _iso(summary.period_end), "narrative": summary.narrative,
        "recommended_actions": [a for a in (summary.recommended_actions or "").split("\n") if a],
        "state": summary.state,
        "created_at": _iso(summary.created_at), "updated_at": _iso(summary.updated_at),
    }


# ---------------------------------------------------------------------------
# Ideas: manual operations
# ---------------------------------------------------------------------------


def get_idea(session: Session, tenant_id: str, idea_id: int) -> Idea:
    return get_or_raise(session, Idea, idea_id, tenant_id, "Idea")


def list_ideas(session: Session, tenant_id: str, state: str | None = None) -> list[Idea]:
    stmt = select(Idea).where(Idea.tenant_id == tenant_id)
    if state:
        stmt = stmt.where(Idea.state.in_([s.strip().upper() for s in state.split(",")]))
    stmt = stmt.order_by(Idea.total_score.desc().nulls_last(), Idea.id)
    return list(session.execute(stmt).scalars().all())


def create_idea(session: Session, tenant_id: str, data: dict[str, Any]) -> Idea:
    """Create a PENDING_REVIEW idea. Raises ValueError without title and description."""
    title = str(data.get("title") or "").strip()
    description = str(data.get("description") or "").strip()
    if not title or not description:
        raise ValueError("Title and description are required")
    try:
        arpu = float(data.get("arpu_estimate") or 0) or None
    except (TypeError, ValueError):
        arpu = None
    idea = Idea(
        tenant_id=tenant_id,
        title=title,
        description=description,
        icp_description=str(data.get("icp_description") or "").strip() or None,
        arpu_estimate=arpu,
        regulated_concern=bool(data.get("regulated_concern")),
        manual_work_heavy=bool(data.get("manual_work_heavy")),
        founder_fit_signal=bool(data.get("founder_fit_signal")),
        source_signal_ids_json=json.dumps(list(data.get("source_signal_ids") or [])),
        state="PENDING_REVIEW",
    )
    session.add(idea)
    session.flush()
    events.log_event(session, tenant_id, events.IDEA_CREATED, {"title": title}, primary_entity_id=idea.id)
    return idea


def count_experimenting(session: Session, tenant_id: str, exclude_id: int | None = None) -> int:
    stmt = select(func.count(Idea.id)).where(Idea.tenant_id == tenant_id, Idea.state == "EXPERIMENTING")
    if exclude_id is not None:
        stmt = stmt.where(Idea.id != exclude_id)
    return session.execute(stmt).scalar_one()


def evaluate_idea(
    session: Session,
    tenant_id: str,
    idea_id: int,
    filters_response: tuple[IdeaFilters, str] | None = None,
) -> Idea:
    """Run filters, scores and the state decision on one idea and log ``IDEA_SCORED``.

    The experimenting cap is a plain count-then-decide: two concurrent
    evaluations can both see room under the cap.
    """
    idea = get_idea(session, tenant_id, idea_id)
    filters, version = filters_response or get_idea_filters(session, tenant_id)

    experimenting = 0
    if filters.max_experimenting_ideas is not None:
        experimenting = count_experimenting(session, tenant_id, exclude_id=idea.id)
    result = evaluate(idea, filters, experimenting)

    # A failed hard filter always kills; otherwise terminal states only move through manual override
    if result.state == "KILLED" or idea.state not in TERMINAL_IDEA_STATES:
        state = result.state
    else:
        state = idea.state

    idea.transformation = result.transformation
    for key, value in result.hard_filters.as_dict().items():
        setattr(idea, key, value)
    for key, value in result.scores.as_dict().items():
        setattr(idea, key, value)
    idea.state = state
    session.flush()

    events.log_event(
        session, tenant_id, events.IDEA_SCORED,
        {
            "hardFilters": result.hard_filters.as_dict(),
            "scores": result.scores.as_dict(),
            "state": state,
            "ideaIntentVersion": version,
        },
        primary_entity_id=idea.id,
    )
    return idea


def update_idea_state(session: Session, tenant_id: str, idea_id: int, state: str) -> Idea:
    """Manual override. Raises ValueError for an unknown state, NotFoundError for an unknown idea."""
    state = (state or "").strip().upper()
    if state not in IDEA_STATES:
        raise ValueError(f"Invalid state: {state!r}")
    idea = get_idea(session, tenant_id, idea_id)
    idea.state = state
    events.log_event(session, tenant_id, events.IDEA_STATE_CHANGED, {"state": state}, primary_entity_id=idea.id)
    return idea


def log_idea_experiment(
    session: Session,
    tenant_id: str,
    idea_id: int,
    experiment_type: str,
    description: str,
    result: str = "PENDING",
) -> IdeaExperiment:
    experiment_type = (experiment_type or "").strip().upper()
    result = (result or "PENDING").strip().upper()
    if experiment_type not in EXPERIMENT_TYPES:
        raise ValueError(f"Invalid experiment type: {experiment_type!r}")
    if result not in EXPERIMENT_RESULTS:
        raise ValueError(f"Invalid experiment result: {result!r}")
    if not (description or "").strip():
        raise ValueError("Description required")
    idea = get_idea(session, tenant_id, idea_id)
    experiment = IdeaExperiment(
        tenant_id=tenant_id, idea_id=idea.id, type=experiment_type,
        description=description.strip(), result=result,
    )
    session.add(experiment)
    session.flush()
    events.log_event(
        session, tenant_id, events.IDEA_EXPERIMENT_LOGGED,
        {"experimentId": experiment.id, "type": experiment_type, "result": result},
        primary_entity_id=idea.id,
    )
    return experiment


# ---------------------------------------------------------------------------
# Flows
# ---------------------------------------------------------------------------


def run_ideas_refresh_flow(session: Session, tenant_id: str) -> list[dict]:
    """Re-evaluate every idea of the tenant against the current filters."""
    flow_id = flow_instance_id("ideas-refresh")
    filters_response = get_idea_filters(session, tenant_id)
    version = filters_response[1]
    events.log_event(
        session, tenant_id, events.FLOW_STARTED,
        {"flow": "ideasRefreshFlow", "ideaIntentVersion": version}, flow_instance_id=flow_id,
    )

    idea_ids = session.execute(
        select(Idea.id).where(Idea.tenant_id == tenant_id).order_by(Idea.id)
    ).scalars().all()
    results = []
    for idea_id in idea_ids:
        idea = evaluate_idea(session, tenant_id, idea_id, filters_response)
        results.append({"ideaId": idea.id, "state": idea.state})

    events.log_event(
        session, tenant_id, events.FLOW_COMPLETED,
        {"flow": "ideasRefreshFlow", "results": results, "ideaIntentVersion": version},
        flow_instance_id=flow_id,
    )
    log.info("Refreshed %d ideas for %s", len(results), tenant_id)
    return results


async def run_discover_flow(
    session: Session,
    tenant_id: str,
    *,
    use_external: bool = True,
    client: LLMClient | None = None,
) -> dict:
    """Ingest signals, map the new ones into candidates, create and evaluate ideas.

    Falls back to the built-in sample feeds when no external source returned
    anything.
    """
    flow_id = flow_instance_id("ideas-discover")
    filters_response = get_idea_filters(session, tenant_id)
    filters, version = filters_response
    events.log_event(
        session, tenant_id, events.FLOW_STARTED,
        {"flow": "weeklyDiscoverAndCompressFlow", "ideaIntentVersion": version}, flow_instance_id=flow_id,
    )

    seeds = await fetch_external_signals() if use_external else []
    source = "external"
    if not seeds:
        seeds = list(SAMPLE_SIGNAL_FEEDS)
        source = "sample"
    new_signals = ingest_signals(session, tenant_id, seeds)

    candidates = await map_signals_with_llm(new_signals, filters, client) if new_signals else []
    existing_titles = {
        t.lower() for t in session.execute(select(Idea.title).where(Idea.tenant_id == tenant_id)).scalars()
    }

    created: list[dict] = []
    skipped: list[str] = []
    for candidate in candidates:
        if candidate.title.lower() in existing_titles:
            skipped.append(candidate.title)
            continue
        idea = create_idea(session, tenant_id, {
            "title": candidate.title,
            "description": candidate.description,
            "icp_description": candidate.icp_description,
            "arpu_estimate": candidate.arpu_estimate,
            "founder_fit_signal": True,
            "source_signal_ids": candidate.source_signal_ids,
        })
        existing_titles.add(candidate.title.lower())
        idea = evaluate_idea(session, tenant_id, idea.id, filters_response)
        created.append({"ideaId": idea.id, "title": idea.title, "state": idea.state})

    result = {
        "flowInstanceId": flow_id,
        "signalSource": source,
        "signalsIngested": len(new_signals),
        "ideas": created,
        "skipped": skipped,
    }
    events.log_event(
        session, tenant_id, events.FLOW_COMPLETED,
        {"flow": "weeklyDiscoverAndCompressFlow", **result}, flow_instance_id=flow_id,
    )
    log.info("Discover for %s: %d signals, %d ideas", tenant_id, len(new_signals), len(created))
    return result


async def run_experiment_loop(
    session: Session,
    tenant_id: str,
    interpreter: ExperimentInterpreter | None = None,
) -> list[dict]:
    """Design experiments for bare EXPERIMENTING ideas and act on completed results."""
    interpreter = interpreter or get_interpreter()
    flow_id = flow_instance_id("experiment-loop")
    _, version = get_idea_filters(session, tenant_id)
    events.log_event(
        session, tenant_id, events.FLOW_STARTED,
        {"flow": "experimentLoop", "ideaIntentVersion": version}, flow_instance_id=flow_id,
    )

    ideas = session.execute(
        select(Idea)
        .where(Idea.tenant_id == tenant_id, Idea.state == "EXPERIMENTING")
        .options(selectinload(Idea.experiments))
        .order_by(Idea.id)
    ).scalars().all()

    results: list[dict] = []
    for idea in ideas:
        existing = list(idea.experiments)

        if not existing:
            for design in design_experiments(idea):
                experiment = IdeaExperiment(
                    tenant_id=tenant_id, idea_id=idea.id, type=design.type,
                    description=design.description, result="PENDING",
                )
                session.add(experiment)
                session.flush()
                events.log_event(
                    session, tenant_id, events.IDEA_EXPERIMENT_DESIGNED,
                    {"experimentId": experiment.id, "type": design.type}, primary_entity_id=idea.id,
                )
                results.append({"ideaId": idea.id, "action": "designed_experiment", "experimentId": experiment.id})

        completed = [e for e in existing if e.result and e.result != "PENDING"]
        if not completed:
            continue

        all_passed = True
        any_failed = False
        highest = "LOW"
        for experiment in completed:
            verdict = await interpreter.interpret(experiment, idea.title)
            if CONFIDENCE_ORDER[verdict.confidence] > CONFIDENCE_ORDER[highest]:
                highest = verdict.confidence
            if verdict.verdict != experiment.result and verdict.confidence == "HIGH":
                experiment.result = verdict.verdict
            if verdict.verdict == "FAILED":
                any_failed = True
            if verdict.verdict != "PASSED":
                all_passed = False

        new_state = idea.state
        if any_failed and highest == "HIGH":
            new_state = "KILLED"
        elif all_passed and len(completed) >= 2 and any(e.type == "AGENT_OWNERSHIP" for e in completed):
            new_state = "VALIDATED"

        if new_state != idea.state:
            idea.state = new_state
            events.log_event(
                session, tenant_id, events.IDEA_STATE_CHANGED,
                {"state": new_state, "reason": "experiment_results", "experimentCount": len(completed)},
                primary_entity_id=idea.id,
            )
            results.append({"ideaId": idea.id, "action": "state_updated", "newState": new_state})

    session.flush()
    events.log_event(
        session, tenant_id, events.FLOW_COMPLETED,
        {"flow": "experimentLoop", "results": results, "ideaIntentVersion": version},
        flow_instance_id=flow_id,
    )
    return results


def top_archetypes(session: Session, tenant_id: str, limit: int = 5) -> list[ArchetypeInstance]:
    return list(session.execute(
        select(ArchetypeInstance)
        .where(ArchetypeInstance.tenant_id == tenant_id)
        .order_by(ArchetypeInstance.total_score.desc().nulls_last(), ArchetypeInstance.updated_at.desc())
        .limit(limit)
    ).scalars().all())


def run_weekly_summary_flow(
    session: Session,
    tenant_id: str,
    period_end: datetime | None = None,
    runway_months: float | None = None,
) -> FounderSummary:
    """Snapshot metrics, draft a founder summary and request approval."""
    flow_id = flow_instance_id("weekly-founder-summary")
    intent, version = get_business_intent(session, tenant_id)
    events.log_event(
        session, tenant_id, events.FLOW_STARTED,
        {"flow": "weeklyFounderSummaryFlow", "businessIntentVersion": version}, flow_instance_id=flow_id,
    )

    snapshot = aggregate_metrics(session, tenant_id, period_end, runway_months)
    recent = events.recent_events(
        session, tenant_id, since=datetime.now(UTC) - RECENT_EVENT_WINDOW, limit=20,
    )
    summary = generate_founder_summary(
        session, tenant_id, snapshot, recent, intent, top_archetypes(session, tenant_id),
    )

    summary.state = "PENDING_APPROVAL"
    events.log_event(
        session, tenant_id, events.FOUNDERSUMMARY_APPROVAL_REQUESTED,
        {"businessIntentVersion": version}, flow_instance_id=flow_id, primary_entity_id=summary.id,
    )
    events.log_event(
        session, tenant_id, events.FLOW_COMPLETED, {"summaryId": summary.id}, flow_instance_id=flow_id,
    )
    return summary


def approve_founder_summary(session: Session, tenant_id: str, summary_id: int) -> FounderSummary:
    """Publish a summary. Publishing twice changes nothing."""
    summary = get_or_raise(session, FounderSummary, summary_id, tenant_id, "Founder summary")
    if summary.state == "PUBLISHED":
        return summary
    summary.state = "PUBLISHED"
    events.log_event(session, tenant_id, events.FOUNDERSUMMARY_APPROVED, primary_entity_id=summary.id)
    events.log_event(session, tenant_id, events.FOUNDERSUMMARY_PUBLISHED, primary_entity_id=summary.id)
    return summary


# ---------------------------------------------------------------------------
# Read views
# ---------------------------------------------------------------------------


def list_signals(session: Session, tenant_id: str, limit: int = 100) -> list[IdeaSignal]:
    return list(session.execute(
        select(IdeaSignal).where(IdeaSignal.tenant_id == tenant_id)
        .order_by(IdeaSignal.created_at.desc(), IdeaSignal.id.desc()).limit(limit)
    ).scalars().all())


def list_founder_summaries(session: Session, tenant_id: str, limit: int = 20) -> list[FounderSummary]:
    return list(session.execute(
        select(FounderSummary).where(FounderSummary.tenant_id == tenant_id)
        .order_by(FounderSummary.period_end.desc(), FounderSummary.id.desc()).limit(limit)
    ).scalars().all())


def list_snapshots(session: Session, tenant_id: str, limit: int = 20) -> list[MetricsSnapshot]:
    return list(session.execute(
        select(MetricsSnapshot).where(MetricsSnapshot.tenant_id == tenant_id)
        .order_by(MetricsSnapshot.period_end.desc(), MetricsSnapshot.id.desc()).limit(limit)
    ).scalars().all())


def compute_stats(session: Session, tenant_id: str) -> dict:
    ideas = session.execute(select(Idea).where(Idea.tenant_id == tenant_id)).scalars().all()
    by_state: Counter[str] = Counter(i.state for i in ideas)
    scored = [i.total_score for i in ideas if i.total_score is not None]
    signals = session.execute(
        select(func.count(IdeaSignal.id)).where(IdeaSignal.tenant_id == tenant_id)
    ).scalar_one()
    experiments = session.execute(
        select(IdeaExperiment.result, func.count(IdeaExperiment.id))
        .where(IdeaExperiment.tenant_id == tenant_id)
        .group_by(IdeaExperiment.result)
    ).all()
    latest = session.execute(
        select(MetricsSnapshot).where(MetricsSnapshot.tenant_id == tenant_id)
        .order_by(MetricsSnapshot.period_end.desc(), MetricsSnapshot.id.desc()).limit(1)
    ).scalars().first()
    return {
        "total_ideas": len(ideas),
        "by_state": dict(by_state),
        "avg_total_score": round(sum(scored) / len(scored), 2) if scored else None,
        "signals": signals,
        "experiments_by_result": {result: count for result, count in experiments},
        "latest_mrr": latest.mrr if latest else None,
    }
