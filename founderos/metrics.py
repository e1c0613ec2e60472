"""Metrics aggregation and founder summary assembly."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from founderos import events
from founderos.intent import BusinessIntent
from founderos.models import ArchetypeInstance, Event, FounderSummary, MetricsSnapshot, Subscription
from founderos.utils import as_utc

log = logging.getLogger(__name__)

WINDOW = timedelta(days=30)

VERDICT_LABELS = {
    "PASS": "✅ PASS",
    "FAIL": "❌ FAIL",
    "INCONCLUSIVE": "⚠️ INCONCLUSIVE",
}
NOT_TESTED = "⏳ NOT TESTED"

TOP_ARCHETYPE_MIN_SCORE = 10


@dataclass(frozen=True)
class MetricsTotals:
    mrr: float
    new_mrr: float
    churned_mrr: float
    active_customers: int


def _in_window(value: datetime | None, start: datetime, end: datetime) -> bool:
    value = as_utc(value)
    return value is not None and start <= value <= end


def compute_totals(subscriptions: list[Subscription], period_end: datetime) -> MetricsTotals:
    """Sum MRR over active subscriptions plus the trailing 30-day movements."""
    end = as_utc(period_end)
    start = end - WINDOW
    active = [s for s in subscriptions if s.status == "active"]
    return MetricsTotals(
        mrr=sum(s.mrr or 0 for s in active),
        new_mrr=sum(s.mrr or 0 for s in subscriptions if _in_window(s.started_at, start, end)),
        churned_mrr=sum(s.mrr or 0 for s in subscriptions if _in_window(s.cancelled_at, start, end)),
        active_customers=len(active),
    )


def aggregate_metrics(
    session: Session,
    tenant_id: str,
    period_end: datetime | None = None,
    runway_months: float | None = None,
) -> MetricsSnapshot:
    """Append a new snapshot for the tenant (caller must commit)."""
    period_end = as_utc(period_end) or datetime.now(UTC)
    subscriptions = session.execute(
        select(Subscription).where(Subscription.tenant_id == tenant_id)
    ).scalars().all()
    totals = compute_totals(list(subscriptions), period_end)
    snapshot = MetricsSnapshot(
        tenant_id=tenant_id,
        period_end=period_end,
        mrr=totals.mrr,
        new_mrr=totals.new_mrr,
        churned_mrr=totals.churned_mrr,
        active_customers=totals.active_customers,
        runway_months=runway_months,
    )
    session.add(snapshot)
    session.flush()
    events.log_event(
        session, tenant_id, events.METRICS_SNAPSHOT_CREATED,
        {"snapshotId": snapshot.id}, primary_entity_id=snapshot.id,
    )
    return snapshot


# ---------------------------------------------------------------------------
# Founder summary
# ---------------------------------------------------------------------------


def churn_rate(snapshot: MetricsSnapshot) -> float:
    if not snapshot.mrr:
        return 0.0
    return snapshot.churned_mrr / snapshot.mrr


def _money(value: float) -> str:
    return f"{value or 0:,.2f}".rstrip("0").rstrip(".") or "0"


def compute_alerts(snapshot: MetricsSnapshot, intent: BusinessIntent) -> list[str]:
    alerts: list[str] = []
    if churn_rate(snapshot) > intent.alert_churn_rate:
        alerts.append("Churn rate above guardrail.")
    if intent.alert_runway_months and snapshot.runway_months and snapshot.runway_months < intent.alert_runway_months:
        alerts.append("Runway below preferred threshold.")
    return alerts


def _archetype_lines(top_archetypes: list[ArchetypeInstance]) -> list[str]:
    if not top_archetypes:
        return []
    lines = ["\nTop Archetype Opportunities:"]
    for arch in top_archetypes[:3]:
        verdict = VERDICT_LABELS.get(arch.last_demand_test_verdict or "", NOT_TESTED)
        score = arch.total_score if arch.total_score is not None else "N/A"
        lines.append(f"• {arch.label} (score: {score}) – {verdict}")
    return lines


def build_narrative(
    snapshot: MetricsSnapshot,
    alerts: list[str],
    top_archetypes: list[ArchetypeInstance] | None = None,
) -> str:
    rate = churn_rate(snapshot)
    period_end = as_utc(snapshot.period_end)
    lines = [
        f"Weekly summary for period ending {period_end.strftime('%a %b %d %Y')}.",
        f"MRR: ${_money(snapshot.mrr)}",
        f"New MRR (30d): ${_money(snapshot.new_mrr)}",
        f"Churned MRR (30d): ${_money(snapshot.churned_mrr)} ({rate * 100:.1f}%)",
        f"Active customers: {snapshot.active_customers}",
        f"Alerts: {' '.join(alerts)}" if alerts else "No major alerts.",
        *_archetype_lines(top_archetypes or []),
    ]
    return "\n".join(lines)


def build_recommended_actions(
    snapshot: MetricsSnapshot,
    alerts: list[str],
    intent: BusinessIntent,
    recent_events: list[Event],
    top_archetypes: list[ArchetypeInstance] | None = None,
) -> list[str]:
    actions: list[str] = []

    if snapshot.new_mrr < intent.target_mrr * 0.05:
        actions.append("Increase top-of-funnel activity to boost new MRR.")

    if alerts:
        actions.append("Review churned accounts and identify root causes.")

    gtm = [e for e in recent_events if e.type.startswith(events.GTM_PREFIX)][:2]
    actions.extend(f"Follow up on {e.type.lower()}." for e in gtm)

    candidates = [a for a in (top_archetypes or []) if (a.total_score or 0) >= TOP_ARCHETYPE_MIN_SCORE]
    if candidates:
        top = max(candidates, key=lambda a: a.total_score or 0)
        verdict = top.last_demand_test_verdict
        if verdict == "PASS":
            actions.append(f'Double down on "{top.label}" – demand test passed. Consider promoting to product.')
        elif not verdict:
            actions.append(
                f'Run demand test for "{top.label}" (score: {top.total_score}) to validate market interest.'
            )
        elif verdict == "INCONCLUSIVE":
            actions.append(f'Refine targeting for "{top.label}" and rerun demand test.')

    if not actions:
        actions.append("Stay the course and focus on steady execution.")

    return actions[:intent.summary_max_actions]


def generate_founder_summary(
    session: Session,
    tenant_id: str,
    snapshot: MetricsSnapshot,
    recent_events: list[Event],
    intent: BusinessIntent,
    top_archetypes: list[ArchetypeInstance] | None = None,
) -> FounderSummary:
    """Assemble a DRAFT summary from a snapshot (caller must commit)."""
    alerts = compute_alerts(snapshot, intent)
    summary = FounderSummary(
        tenant_id=tenant_id,
        metrics_snapshot_id=snapshot.id,
        period_end=snapshot.period_end,
        narrative=build_narrative(snapshot, alerts, top_archetypes),
        recommended_actions="\n".join(
            build_recommended_actions(snapshot, alerts, intent, recent_events, top_archetypes)
        ),
        state="DRAFT",
    )
    session.add(summary)
    session.flush()
    events.log_event(
        session, tenant_id, events.FOUNDERSUMMARY_GENERATED,
        {"founderSummaryId": summary.id}, primary_entity_id=summary.id,
    )
    return summary
