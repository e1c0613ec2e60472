from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from founderos import archetypes, events, intent, services
from founderos.config import get_settings
from founderos.db import init_db, session_scope
from founderos.llm import get_llm_client
from founderos.models import EXPERIMENT_RESULTS, EXPERIMENT_TYPES, IDEA_STATES
from founderos.utils import NotFoundError

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def founderos_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "FounderOS",
    instructions=(
        "FounderOS turns market signals into scored product ideas and a weekly founder summary. "
        "Start with get_stats() for an overview, run discover_ideas() to pull in new signals, "
        "then list_ideas() and get_idea(id). run_experiment_loop() advances EXPERIMENTING ideas."
    ),
    lifespan=founderos_lifespan,
    json_response=True,
)


def _tenant() -> str:
    return get_settings().tenant_id


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("founderos://overview")
def founderos_overview() -> str:
    """Overview of FounderOS: data model, workflow, and idea states."""
    return json.dumps({
        "system": "FounderOS",
        "description": (
            "Ingests market signals, maps them into product ideas, filters and scores them, "
            "designs validation experiments and reports weekly revenue metrics to the founder."
        ),
        "data_model": {
            "signal": "A short piece of market text (post, review, feed item) from one source.",
            "idea": "A candidate product with hard-filter results, four 1-3 sub-scores and a state.",
            "experiment": "SIGNAL, WORKFLOW or AGENT_OWNERSHIP test attached to an idea.",
            "founder_summary": "Weekly narrative over a metrics snapshot, published after approval.",
            "archetype": "Reusable product pattern for an ICP, validated with demand tests.",
        },
        "workflow": [
            "1. get_stats() - idea pipeline and latest MRR.",
            "2. discover_ideas() - ingest signals and create scored ideas.",
            "3. list_ideas(state) / get_idea(id) - inspect the pipeline.",
            "4. log_experiment(idea_id, ...) - record evidence against an idea.",
            "5. run_experiment_loop() - design experiments and act on completed results.",
            "6. weekly_summary() then approve_summary(id) - founder reporting.",
        ],
        "idea_states": list(IDEA_STATES),
        "experiment_types": list(EXPERIMENT_TYPES),
        "experiment_results": list(EXPERIMENT_RESULTS),
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: Ideas
# ---------------------------------------------------------------------------


@mcp.tool()
def list_ideas(state: str | None = None) -> list[dict]:
    """List ideas, best total score first.

    Args:
        state: Comma-separated filter from PENDING_REVIEW, SCORING, EXPERIMENTING, VALIDATED, KILLED.
    """
    with session_scope() as session:
        return [services.idea_summary(i) for i in services.list_ideas(session, _tenant(), state)]


@mcp.tool()
def get_idea(idea_id: int) -> dict:
    """Get one idea with its hard filters, scores and experiments."""
    with session_scope() as session:
        try:
            return services.idea_detail(services.get_idea(session, _tenant(), idea_id))
        except NotFoundError as exc:
            return {"error": str(exc)}


@mcp.tool()
def create_idea(
    title: str, description: str,
    icp_description: str | None = None, arpu_estimate: float | None = None,
    regulated_concern: bool = False, manual_work_heavy: bool = False,
    founder_fit_signal: bool = False,
) -> dict:
    """Create an idea and evaluate it immediately."""
    tenant = _tenant()
    with session_scope() as session:
        try:
            idea = services.create_idea(session, tenant, {
                "title": title, "description": description,
                "icp_description": icp_description, "arpu_estimate": arpu_estimate,
                "regulated_concern": regulated_concern, "manual_work_heavy": manual_work_heavy,
                "founder_fit_signal": founder_fit_signal,
            })
        except ValueError as exc:
            return {"error": str(exc)}
        idea = services.evaluate_idea(session, tenant, idea.id)
        session.commit()
        return services.idea_detail(idea)


@mcp.tool()
def update_idea_state(idea_id: int, state: str) -> dict:
    """Manually move an idea to another state (e.g. KILLED or VALIDATED)."""
    with session_scope() as session:
        try:
            idea = services.update_idea_state(session, _tenant(), idea_id, state)
        except (ValueError, NotFoundError) as exc:
            return {"error": str(exc)}
        session.commit()
        return services.idea_summary(idea)


@mcp.tool()
def log_experiment(idea_id: int, experiment_type: str, description: str, result: str = "PENDING") -> dict:
    """Record an experiment against an idea.

    Args:
        experiment_type: SIGNAL, WORKFLOW or AGENT_OWNERSHIP.
        description: What was tried and what happened.
        result: PENDING, PASSED, FAILED or INCONCLUSIVE.
    """
    with session_scope() as session:
        try:
            experiment = services.log_idea_experiment(
                session, _tenant(), idea_id, experiment_type, description, result,
            )
        except (ValueError, NotFoundError) as exc:
            return {"error": str(exc)}
        session.commit()
        return services.experiment_dict(experiment)


# ---------------------------------------------------------------------------
# Tools: Flows
# ---------------------------------------------------------------------------


@mcp.tool()
async def discover_ideas(external: bool = True) -> dict:
    """Ingest signals (Apify/RSS, else sample feeds), map them into ideas and score the new ones."""
    with session_scope() as session:
        result = await services.run_discover_flow(
            session, _tenant(), use_external=external, client=get_llm_client(),
        )
        session.commit()
        return result


@mcp.tool()
def refresh_ideas() -> dict:
    """Re-run hard filters and scores over every idea."""
    with session_scope() as session:
        results = services.run_ideas_refresh_flow(session, _tenant())
        session.commit()
        return {"results": results}


@mcp.tool()
async def run_experiment_loop() -> dict:
    """Design experiments for bare EXPERIMENTING ideas and validate or kill ideas with results."""
    with session_scope() as session:
        results = await services.run_experiment_loop(session, _tenant())
        session.commit()
        return {"results": results}


@mcp.tool()
def weekly_summary(runway_months: float | None = None) -> dict:
    """Snapshot revenue metrics and draft a founder summary awaiting approval."""
    with session_scope() as session:
        summary = services.run_weekly_summary_flow(session, _tenant(), runway_months=runway_months)
        session.commit()
        return services.founder_summary_dict(summary)


@mcp.tool()
def approve_summary(summary_id: int) -> dict:
    """Approve and publish a founder summary."""
    with session_scope() as session:
        try:
            summary = services.approve_founder_summary(session, _tenant(), summary_id)
        except NotFoundError as exc:
            return {"error": str(exc)}
        session.commit()
        return services.founder_summary_dict(summary)


# ---------------------------------------------------------------------------
# Tools: Archetypes
# ---------------------------------------------------------------------------


@mcp.tool()
def get_archetype_framework() -> dict:
    """Static archetype patterns with their ICP options."""
    return archetypes.framework_dict()


@mcp.tool()
def create_archetype(pattern_key: str, icp_key: str | None = None, summary: str | None = None) -> dict:
    """Create and score an archetype instance for a pattern and ICP."""
    with session_scope() as session:
        try:
            instance = archetypes.create_instance(session, _tenant(), pattern_key, icp_key, summary=summary)
        except ValueError as exc:
            return {"error": str(exc)}
        session.commit()
        return archetypes.instance_dict(instance)


@mcp.tool()
def run_demand_test(instance_id: int) -> dict:
    """Run a demand test on an archetype instance and rescore it."""
    with session_scope() as session:
        try:
            test = archetypes.run_demand_test(session, _tenant(), instance_id)
        except NotFoundError as exc:
            return {"error": str(exc)}
        session.commit()
        return {
            "demand_test_id": test.id, "verdict": test.verdict, "notes": test.notes,
            "outreach_count": test.outreach_count, "positive_responses": test.positive_responses,
            "meetings_booked": test.meetings_booked,
        }


# ---------------------------------------------------------------------------
# Tools: Stats & settings
# ---------------------------------------------------------------------------


@mcp.tool()
def get_stats() -> dict:
    """Idea counts by state, average score, signal count and latest MRR."""
    with session_scope() as session:
        return services.compute_stats(session, _tenant())


@mcp.tool()
def get_settings_overview() -> dict:
    """Current idea filters and business guardrails with their versions."""
    with session_scope() as session:
        tenant = _tenant()
        return {
            "ideas": intent.intent_dict(*intent.get_idea_filters(session, tenant)),
            "business": intent.intent_dict(*intent.get_business_intent(session, tenant)),
        }


@mcp.tool()
def recent_events(event_type: str | None = None, limit: int = 20) -> list[dict]:
    """Newest events from the audit log, optionally of one type."""
    with session_scope() as session:
        rows = events.recent_events(session, _tenant(), event_type=event_type, limit=max(1, min(limit, 200)))
        return [events.event_dict(e) for e in rows]


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the FounderOS MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
