"""Pydantic request/response schemas for the FounderOS API."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, field_validator

from founderos.models import EXPERIMENT_RESULTS, EXPERIMENT_TYPES


class _ScoresMixin(BaseModel):
    pain_frequency_score: int | None = None
    agent_leverage_score: int | None = None
    data_surface_score: int | None = None
    repeatability_score: int | None = None
    total_score: int | None = None


class ExperimentOut(BaseModel):
    id: int
    idea_id: int
    type: str
    description: str
    result: str
    created_at: str | None = None
    updated_at: str | None = None


class IdeaOut(_ScoresMixin):
    id: int
    title: str
    description: str
    icp_description: str | None = None
    arpu_estimate: float | None = None
    regulated_concern: bool = False
    manual_work_heavy: bool = False
    founder_fit_signal: bool = False
    passes_market: bool | None = None
    passes_regulation: bool | None = None
    passes_agent_fit: bool | None = None
    passes_founder_fit: bool | None = None
    state: str
    transformation: str | None = None
    source_signal_ids: list[int] = []
    created_at: str | None = None
    updated_at: str | None = None


class IdeaDetail(IdeaOut):
    experiments: list[ExperimentOut] = []


class IdeaCreate(BaseModel):
    title: str
    description: str
    icp_description: str | None = None
    arpu_estimate: float | None = None
    regulated_concern: bool = False
    manual_work_heavy: bool = False
    founder_fit_signal: bool = False

    @field_validator("title", "description")
    @classmethod
    def must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class ExperimentCreate(BaseModel):
    type: str
    description: str
    result: str = "PENDING"

    @field_validator("type")
    @classmethod
    def type_must_be_known(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in EXPERIMENT_TYPES:
            raise ValueError(f"type must be one of {', '.join(EXPERIMENT_TYPES)}")
        return v

    @field_validator("result")
    @classmethod
    def result_must_be_known(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in EXPERIMENT_RESULTS:
            raise ValueError(f"result must be one of {', '.join(EXPERIMENT_RESULTS)}")
        return v


class SignalOut(BaseModel):
    id: int
    source: str
    content: str
    created_at: str | None = None


class MetricsSnapshotOut(BaseModel):
    id: int
    period_end: str | None = None
    mrr: float
    new_mrr: float
    churned_mrr: float
    active_customers: int
    runway_months: float | None = None
    created_at: str | None = None


class FounderSummaryOut(BaseModel):
    id: int
    metrics_snapshot_id: int
    period_end: str | None = None
    narrative: str
    recommended_actions: list[str] = []
    state: str
    created_at: str | None = None
    updated_at: str | None = None


class WeeklySummaryRequest(BaseModel):
    runway_months: float | None = None


class EventOut(BaseModel):
    id: int
    type: str
    payload: dict[str, Any] = {}
    flow_instance_id: str | None = None
    primary_entity_id: str | None = None
    created_at: str | None = None


# Settings forms: lists may arrive as newline/comma separated text
class IdeaFiltersUpdate(BaseModel):
    arpu_floor: float | None = None
    excluded_domains: list[str] | str | None = None
    founder_strengths: list[str] | str | None = None
    agent_fit_keywords: list[str] | str | None = None
    min_score_for_experiment: int | None = None
    max_experimenting_ideas: int | None = None


class IdeaFiltersOut(BaseModel):
    arpu_floor: float
    excluded_domains: list[str]
    founder_strengths: list[str]
    agent_fit_keywords: list[str]
    min_score_for_experiment: int
    max_experimenting_ideas: int | None = None
    version: str


class BusinessIntentUpdate(BaseModel):
    target_mrr: float | None = None
    acceptable_churn_rate: float | None = None
    alert_churn_rate: float | None = None
    alert_runway_months: float | None = None
    summary_tone: str | None = None
    summary_max_actions: int | None = None


class BusinessIntentOut(BaseModel):
    target_mrr: float
    acceptable_churn_rate: float
    alert_churn_rate: float
    alert_runway_months: float | None = None
    summary_tone: str
    summary_max_actions: int
    version: str


class ArchetypeCreate(BaseModel):
    pattern_key: str
    icp_key: str | None = None
    summary: str | None = None
    data_surfaces: list[str] = []
    source_signal_ids: list[int] = []


class ArchetypeOut(BaseModel):
    id: int
    pattern_key: str
    icp_key: str
    label: str
    summary: str | None = None
    state: str
    data_surfaces: list[str] = []
    source_signal_ids: list[int] = []
    monetization_score: int | None = None
    data_surface_score: int | None = None
    agent_leverage_score: int | None = None
    reachability_score: int | None = None
    os_fit_score: int | None = None
    total_score: int | None = None
    last_demand_test_verdict: str | None = None
    last_demand_test_at: str | None = None


class DemandTestOut(BaseModel):
    id: int
    archetype_instance_id: int
    outreach_count: int
    positive_responses: int
    meetings_booked: int
    willingness_signals: int
    verdict: str
    notes: str


class ImportResult(BaseModel):
    ideas_imported: int
    ideas_skipped: int
    subscriptions_imported: int


class StatsOut(BaseModel):
    total_ideas: int
    by_state: dict[str, int]
    avg_total_score: float | None = None
    signals: int
    experiments_by_result: dict[str, int]
    latest_mrr: float | None = None
