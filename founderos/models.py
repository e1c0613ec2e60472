from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# ---------------------------------------------------------------------------
# State vocabularies
# ---------------------------------------------------------------------------

IDEA_STATES = ("PENDING_REVIEW", "BACKLOG", "SCORING", "EXPERIMENTING", "VALIDATED", "KILLED")
TERMINAL_IDEA_STATES = frozenset({"VALIDATED", "KILLED"})

EXPERIMENT_TYPES = ("SIGNAL", "WORKFLOW", "AGENT_OWNERSHIP")
EXPERIMENT_RESULTS = ("PENDING", "PASSED", "FAILED", "INCONCLUSIVE")

SUMMARY_STATES = ("DRAFT", "PENDING_APPROVAL", "PUBLISHED")

ARCHETYPE_STATES = ("ACTIVE", "PAUSED", "KILLED")
DEMAND_TEST_VERDICTS = ("PASS", "FAIL", "INCONCLUSIVE")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Ideas
# ---------------------------------------------------------------------------


class Idea(Base):
    __tablename__ = "ideas"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    icp_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    arpu_estimate: Mapped[float | None] = mapped_column(Float, nullable=True)

    regulated_concern: Mapped[bool] = mapped_column(Boolean, default=False)
    manual_work_heavy: Mapped[bool] = mapped_column(Boolean, default=False)
    founder_fit_signal: Mapped[bool] = mapped_column(Boolean, default=False)

    passes_market: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    passes_regulation: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    passes_agent_fit: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    passes_founder_fit: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    pain_frequency_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    agent_leverage_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    data_surface_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    repeatability_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_score: Mapped[int | None] = mapped_column(Integer, nullable=True)

    state: Mapped[str] = mapped_column(String(30), default="PENDING_REVIEW", index=True)
    source_signal_ids_json: Mapped[str] = mapped_column(Text, default="[]")
    transformation: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    experiments: Mapped[list[IdeaExperiment]] = relationship(
        "IdeaExperiment", back_populates="idea", order_by="IdeaExperiment.id",
    )


class IdeaSignal(Base):
    __tablename__ = "idea_signals"
    __table_args__ = (UniqueConstraint("tenant_id", "content", name="uq_signal_tenant_content"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    source: Mapped[str] = mapped_column(String(200), default="")
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)


class IdeaExperiment(Base):
    __tablename__ = "idea_experiments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    idea_id: Mapped[int] = mapped_column(Integer, ForeignKey("ideas.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)  # SIGNAL | WORKFLOW | AGENT_OWNERSHIP
    description: Mapped[str] = mapped_column(Text, default="")
    result: Mapped[str] = mapped_column(String(30), default="PENDING")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    idea: Mapped[Idea] = relationship("Idea", back_populates="experiments")


# ---------------------------------------------------------------------------
# Tenant intent configuration (one row per tenant)
# ---------------------------------------------------------------------------


class IdeaIntentConfig(Base):
    __tablename__ = "idea_intent_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    arpu_floor: Mapped[float] = mapped_column(Float, default=50.0)
    excluded_domains_json: Mapped[str] = mapped_column(Text, default="[]")
    founder_strengths_json: Mapped[str] = mapped_column(Text, default="[]")
    agent_fit_keywords_json: Mapped[str] = mapped_column(Text, default="[]")
    min_score_for_experiment: Mapped[int] = mapped_column(Integer, default=9)
    max_experimenting_ideas: Mapped[int | None] = mapped_column(Integer, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)


class BusinessIntentConfig(Base):
    __tablename__ = "business_intent_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    target_mrr: Mapped[float] = mapped_column(Float, default=20000.0)
    acceptable_churn_rate: Mapped[float] = mapped_column(Float, default=0.05)
    alert_churn_rate: Mapped[float] = mapped_column(Float, default=0.08)
    alert_runway_months: Mapped[float | None] = mapped_column(Float, nullable=True)
    summary_tone: Mapped[str] = mapped_column(String(20), default="concise")
    summary_max_actions: Mapped[int] = mapped_column(Integer, default=4)
    version: Mapped[int] = mapped_column(Integer, default=1)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)


# ---------------------------------------------------------------------------
# Billing and founder reporting
# ---------------------------------------------------------------------------


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    account_name: Mapped[str] = mapped_column(String(300), default="")
    plan: Mapped[str] = mapped_column(String(100), default="")
    mrr: Mapped[float] = mapped_column(Float, default=0.0)
    status: Mapped[str] = mapped_column(String(30), default="active")
    started_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class MetricsSnapshot(Base):
    __tablename__ = "metrics_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    period_end: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    mrr: Mapped[float] = mapped_column(Float, default=0.0)
    new_mrr: Mapped[float] = mapped_column(Float, default=0.0)
    churned_mrr: Mapped[float] = mapped_column(Float, default=0.0)
    active_customers: Mapped[int] = mapped_column(Integer, default=0)
    runway_months: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)


class FounderSummary(Base):
    __tablename__ = "founder_summaries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    metrics_snapshot_id: Mapped[int] = mapped_column(Integer, ForeignKey("metrics_snapshots.id"), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    narrative: Mapped[str] = mapped_column(Text, default="")
    recommended_actions: Mapped[str] = mapped_column(Text, default="")
    state: Mapped[str] = mapped_column(String(30), default="DRAFT")  # DRAFT | PENDING_APPROVAL | PUBLISHED
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)

    metrics_snapshot: Mapped[MetricsSnapshot] = relationship("MetricsSnapshot")


class Event(Base):
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    payload_json: Mapped[str] = mapped_column(Text, default="{}")
    flow_instance_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    primary_entity_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, index=True)


# ---------------------------------------------------------------------------
# Archetype demand-test track
# ---------------------------------------------------------------------------


class ArchetypeInstance(Base):
    __tablename__ = "archetype_instances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    pattern_key: Mapped[str] = mapped_column(String(100), nullable=False)
    icp_key: Mapped[str] = mapped_column(String(100), default="")
    label: Mapped[str] = mapped_column(String(300), default="")
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    data_surfaces_json: Mapped[str] = mapped_column(Text, default="[]")
    source_signal_ids_json: Mapped[str] = mapped_column(Text, default="[]")
    state: Mapped[str] = mapped_column(String(30), default="ACTIVE")

    monetization_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    data_surface_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    agent_leverage_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reachability_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    os_fit_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    score_updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    last_demand_test_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_demand_test_verdict: Mapped[str | None] = mapped_column(String(30), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, onupdate=_utcnow)


class ArchetypeScore(Base):
    __tablename__ = "archetype_scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    archetype_instance_id: Mapped[int] = mapped_column(Integer, ForeignKey("archetype_instances.id"), nullable=False)
    monetization_score: Mapped[int] = mapped_column(Integer, default=1)
    data_surface_score: Mapped[int] = mapped_column(Integer, default=1)
    agent_leverage_score: Mapped[int] = mapped_column(Integer, default=1)
    reachability_score: Mapped[int] = mapped_column(Integer, default=1)
    os_fit_score: Mapped[int] = mapped_column(Integer, default=1)
    total_score: Mapped[int] = mapped_column(Integer, default=5)
    explanation_json: Mapped[str] = mapped_column(Text, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)


class ArchetypeDemandTest(Base):
    __tablename__ = "archetype_demand_tests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    archetype_instance_id: Mapped[int] = mapped_column(Integer, ForeignKey("archetype_instances.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="COMPLETED")
    outreach_count: Mapped[int] = mapped_column(Integer, default=0)
    positive_responses: Mapped[int] = mapped_column(Integer, default=0)
    meetings_booked: Mapped[int] = mapped_column(Integer, default=0)
    willingness_signals: Mapped[int] = mapped_column(Integer, default=0)
    verdict: Mapped[str] = mapped_column(String(30), default="INCONCLUSIVE")
    notes: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
