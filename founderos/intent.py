"""Per-tenant intent configuration: idea filters and business guardrails.

Each tenant has at most one row of each config. Missing rows resolve to the
in-code defaults and report the version ``"default"``; every upsert bumps the
integer version, reported as ``"v{n}"``.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from founderos.models import BusinessIntentConfig, IdeaIntentConfig
from founderos.utils import json_parse

log = logging.getLogger(__name__)

DEFAULT_VERSION = "default"
SUMMARY_TONES = ("concise", "narrative")


@dataclass
class IdeaFilters:
    arpu_floor: float = 50.0
    excluded_domains: list[str] = field(default_factory=lambda: ["medical", "securities", "gambling"])
    founder_strengths: list[str] = field(default_factory=lambda: ["gtm", "ops", "partnerships"])
    agent_fit_keywords: list[str] = field(
        default_factory=lambda: ["inbox", "email", "crm", "ticket", "document", "schedule", "summary"]
    )
    min_score_for_experiment: int = 9
    max_experimenting_ideas: int | None = None


@dataclass
class BusinessIntent:
    target_mrr: float = 20000.0
    acceptable_churn_rate: float = 0.05
    alert_churn_rate: float = 0.08
    alert_runway_months: float | None = 6.0
    summary_tone: str = "concise"
    summary_max_actions: int = 4


def parse_list_input(value: Any, fallback: list[str]) -> list[str]:
    """Split newline/comma separated text (or take a list); empty → *fallback*."""
    if isinstance(value, (list, tuple)):
        items = [str(v).strip() for v in value]
    else:
        items = [part.strip() for part in re.split(r"[\n,]", str(value or ""))]
    items = [i for i in items if i]
    return items or list(fallback)


def _version_label(version: int | None) -> str:
    return f"v{version}" if version else DEFAULT_VERSION


# ---------------------------------------------------------------------------
# Idea filters
# ---------------------------------------------------------------------------


def _idea_row(session: Session, tenant_id: str) -> IdeaIntentConfig | None:
    return session.execute(
        select(IdeaIntentConfig).where(IdeaIntentConfig.tenant_id == tenant_id)
    ).scalars().first()


def get_idea_filters(session: Session, tenant_id: str) -> tuple[IdeaFilters, str]:
    """Return the tenant's filters and their version label."""
    row = _idea_row(session, tenant_id)
    if row is None:
        return IdeaFilters(), DEFAULT_VERSION
    defaults = IdeaFilters()
    filters = IdeaFilters(
        arpu_floor=row.arpu_floor if row.arpu_floor is not None else defaults.arpu_floor,
        excluded_domains=json_parse(row.excluded_domains_json, None) or defaults.excluded_domains,
        founder_strengths=json_parse(row.founder_strengths_json, None) or defaults.founder_strengths,
        agent_fit_keywords=json_parse(row.agent_fit_keywords_json, None) or defaults.agent_fit_keywords,
        min_score_for_experiment=row.min_score_for_experiment or defaults.min_score_for_experiment,
        max_experimenting_ideas=row.max_experimenting_ideas,
    )
    return filters, _version_label(row.version)


def upsert_idea_filters(session: Session, tenant_id: str, updates: dict[str, Any]) -> tuple[IdeaFilters, str]:
    """Merge form-style *updates* over the defaults and store them (caller must commit).

    Falsy numeric fields and empty lists fall back to the defaults.
    """
    defaults = IdeaFilters()
    row = _idea_row(session, tenant_id)
    if row is None:
        row = IdeaIntentConfig(tenant_id=tenant_id, version=0)
        session.add(row)
    row.arpu_floor = float(updates.get("arpu_floor") or defaults.arpu_floor)
    row.excluded_domains_json = json.dumps(
        parse_list_input(updates.get("excluded_domains"), defaults.excluded_domains))
    row.founder_strengths_json = json.dumps(
        parse_list_input(updates.get("founder_strengths"), defaults.founder_strengths))
    row.agent_fit_keywords_json = json.dumps(
        parse_list_input(updates.get("agent_fit_keywords"), defaults.agent_fit_keywords))
    row.min_score_for_experiment = int(updates.get("min_score_for_experiment") or defaults.min_score_for_experiment)
    cap = updates.get("max_experimenting_ideas")
    row.max_experimenting_ideas = int(cap) if cap else None
    row.version = (row.version or 0) + 1
    session.flush()
    log.info("Idea filters for %s updated to v%d", tenant_id, row.version)
    return get_idea_filters(session, tenant_id)


# ---------------------------------------------------------------------------
# Business intent
# ---------------------------------------------------------------------------


def _business_row(session: Session, tenant_id: str) -> BusinessIntentConfig | None:
    return session.execute(
        select(BusinessIntentConfig).where(BusinessIntentConfig.tenant_id == tenant_id)
    ).scalars().first()


def get_business_intent(session: Session, tenant_id: str) -> tuple[BusinessIntent, str]:
    row = _business_row(session, tenant_id)
    if row is None:
        return BusinessIntent(), DEFAULT_VERSION
    defaults = BusinessIntent()
    intent = BusinessIntent(
        target_mrr=row.target_mrr or defaults.target_mrr,
        acceptable_churn_rate=row.acceptable_churn_rate or defaults.acceptable_churn_rate,
        alert_churn_rate=row.alert_churn_rate or defaults.alert_churn_rate,
        alert_runway_months=row.alert_runway_months,
        summary_tone=row.summary_tone if row.summary_tone in SUMMARY_TONES else defaults.summary_tone,
        summary_max_actions=row.summary_max_actions or defaults.summary_max_actions,
    )
    return intent, _version_label(row.version)


def upsert_business_intent(
    session: Session, tenant_id: str, updates: dict[str, Any],
) -> tuple[BusinessIntent, str]:
    """Store the tenant's business guardrails (caller must commit)."""
    defaults = BusinessIntent()
    row = _business_row(session, tenant_id)
    if row is None:
        row = BusinessIntentConfig(tenant_id=tenant_id, version=0)
        session.add(row)
    row.target_mrr = float(updates.get("target_mrr") or defaults.target_mrr)
    row.acceptable_churn_rate = float(updates.get("acceptable_churn_rate") or defaults.acceptable_churn_rate)
    row.alert_churn_rate = float(updates.get("alert_churn_rate") or defaults.alert_churn_rate)
    runway = updates.get("alert_runway_months") or defaults.alert_runway_months
    row.alert_runway_months = float(runway) if runway else None
    tone = str(updates.get("summary_tone") or defaults.summary_tone).strip().lower()
    row.summary_tone = tone if tone in SUMMARY_TONES else defaults.summary_tone
    max_actions = int(updates.get("summary_max_actions") or defaults.summary_max_actions)
    row.summary_max_actions = max(1, min(10, max_actions))
    row.version = (row.version or 0) + 1
    session.flush()
    log.info("Business intent for %s updated to v%d", tenant_id, row.version)
    return get_business_intent(session, tenant_id)


def intent_dict(intent: IdeaFilters | BusinessIntent, version: str) -> dict:
    return {**asdict(intent), "version": version}
