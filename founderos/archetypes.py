"""Archetype track: pattern framework, heuristic scorer and simulated demand tests.

An archetype instance pairs a pattern (e.g. *Cashflow Guardian*) with one of
its ICP options. Scores come straight from the ICP's 1–3 heuristics on five
axes, so the total is 5–15.
"""
from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from founderos import events
from founderos.models import ArchetypeDemandTest, ArchetypeInstance, ArchetypeScore
from founderos.utils import flow_instance_id, get_or_raise, json_parse

log = logging.getLogger(__name__)

FRAMEWORK_VERSION = "default"


@dataclass(frozen=True)
class ArchetypeHeuristics:
    monetization: int = 1
    data_surface: int = 1
    agent_leverage: int = 1
    reachability: int = 1
    os_fit: int = 1

    @property
    def total(self) -> int:
        return self.monetization + self.data_surface + self.agent_leverage + self.reachability + self.os_fit


@dataclass(frozen=True)
class ArchetypeIcp:
    key: str
    label: str
    icp_description: str
    heuristics: ArchetypeHeuristics


@dataclass(frozen=True)
class ArchetypePattern:
    key: str
    label: str
    description: str
    transformation_template: str
    data_surfaces: tuple[str, ...]
    icp_options: tuple[ArchetypeIcp, ...]

    def icp(self, key: str | None) -> ArchetypeIcp | None:
        """ICP option by key, the first option when the key is unknown."""
        for option in self.icp_options:
            if option.key == key:
                return option
        return self.icp_options[0] if self.icp_options else None

    def transformation(self, icp: ArchetypeIcp | None) -> str:
        return self.transformation_template.format(
            data_surfaces=", ".join(self.data_surfaces),
            icp=icp.icp_description if icp else "the target buyer",
        )


DEFAULT_ARCHETYPE_FRAMEWORK: tuple[ArchetypePattern, ...] = (
    ArchetypePattern(
        key="cashflow_guardian",
        label="Cashflow Guardian",
        description="Connect to Stripe/bank/inbox to surface weekly spend, renewals, and pricing moves.",
        transformation_template=(
            "We connect to {data_surfaces}, monitor every transaction for {icp}, and deliver a weekly "
            "cashflow decision pack that protects runway and finds savings."
        ),
        data_surfaces=("stripe", "bank", "gmail", "accounting"),
        icp_options=(
            ArchetypeIcp("solo_saas", "Solo / 2-person SaaS",
                         "Bootstrapped SaaS founders doing $10k–$50k MRR.",
                         ArchetypeHeuristics(3, 3, 3, 2, 3)),
            ArchetypeIcp("agencies", "Lean Agencies",
                         "Productized service & agency operators <20 headcount.",
                         ArchetypeHeuristics(2, 2, 3, 2, 3)),
            ArchetypeIcp("creators", "High-ticket creators / course builders",
                         "Creators with recurring course/cohort revenue that need FP&A help.",
                         ArchetypeHeuristics(2, 2, 2, 2, 2)),
        ),
    ),
    ArchetypePattern(
        key="revops_signal_watch",
        label="RevOps Signal Watch",
        description="Tap CRM + inbox to keep pipeline healthy, flag risks, and draft follow-ups.",
        transformation_template=(
            "We watch {data_surfaces} for {icp} and deliver a weekly revenue actions brief that keeps "
            "the pipeline clean and moving."
        ),
        data_surfaces=("hubspot", "salesforce", "gmail"),
        icp_options=(
            ArchetypeIcp("seed_ae_teams", "Seed/Series A AE teams",
                         "B2B SaaS teams with <10 AEs and no RevOps headcount.",
                         ArchetypeHeuristics(3, 2, 2, 2, 3)),
            ArchetypeIcp("cs_ops", "Customer success / CS Ops",
                         "Post-sales orgs that need ticket / renewal intelligence.",
                         ArchetypeHeuristics(2, 2, 2, 2, 2)),
        ),
    ),
    ArchetypePattern(
        key="ops_control_panel",
        label="Ops Control Panel",
        description="Aggregate Notion/Sheets/Project tools into a weekly decision cockpit for operators.",
        transformation_template=(
            "We connect to {data_surfaces} and compile a founder/ops control panel that highlights "
            "blockers and next bets for {icp}."
        ),
        data_surfaces=("notion", "linear", "slack"),
        icp_options=(
            ArchetypeIcp("agency_leads", "Agency leads",
                         "Agencies juggling retainers and delivery teams in Notion/Sheets.",
                         ArchetypeHeuristics(2, 2, 2, 2, 2)),
            ArchetypeIcp("ops_heads", "Ops leaders",
                         "Fractional COOs that manage multiple clients.",
                         ArchetypeHeuristics(3, 1, 2, 1, 2)),
        ),
    ),
)

PATTERNS_BY_KEY = {p.key: p for p in DEFAULT_ARCHETYPE_FRAMEWORK}


def get_pattern(key: str) -> ArchetypePattern | None:
    return PATTERNS_BY_KEY.get(key)


def framework_dict() -> dict:
    return {
        "version": FRAMEWORK_VERSION,
        "patterns": [
            {
                "key": p.key, "label": p.label, "description": p.description,
                "data_surfaces": list(p.data_surfaces),
                "icp_options": [
                    {"key": i.key, "label": i.label, "icp_description": i.icp_description,
                     "max_score": i.heuristics.total}
                    for i in p.icp_options
                ],
            }
            for p in DEFAULT_ARCHETYPE_FRAMEWORK
        ],
    }


# ---------------------------------------------------------------------------
# Instances
# ---------------------------------------------------------------------------


def create_instance(
    session: Session,
    tenant_id: str,
    pattern_key: str,
    icp_key: str | None = None,
    *,
    summary: str | None = None,
    data_surfaces: list[str] | None = None,
    source_signal_ids: list[int] | None = None,
) -> ArchetypeInstance:
    """Create and immediately score an instance (caller must commit).

    Raises ValueError for an unknown pattern.
    """
    pattern = get_pattern(pattern_key)
    if pattern is None:
        raise ValueError(f"Unknown archetype pattern: {pattern_key!r}")
    icp = pattern.icp(icp_key)
    instance = ArchetypeInstance(
        tenant_id=tenant_id,
        pattern_key=pattern.key,
        icp_key=icp.key if icp else "",
        label=f"{pattern.label} for {icp.label}" if icp else pattern.label,
        summary=summary or pattern.transformation(icp),
        data_surfaces_json=json.dumps(data_surfaces or []),
        source_signal_ids_json=json.dumps(source_signal_ids or []),
        state="ACTIVE",
    )
    session.add(instance)
    session.flush()
    score_instance(session, tenant_id, instance.id)
    return instance


def score_instance(session: Session, tenant_id: str, instance_id: int) -> ArchetypeScore:
    """Write a score row from the ICP heuristics and copy it onto the instance."""
    instance = get_or_raise(session, ArchetypeInstance, instance_id, tenant_id, "Archetype instance")
    pattern = get_pattern(instance.pattern_key)
    if pattern is None:
        raise ValueError(f"Unknown archetype pattern: {instance.pattern_key!r}")
    icp = pattern.icp(instance.icp_key)
    heuristics = icp.heuristics if icp else ArchetypeHeuristics()
    referenced = json_parse(instance.data_surfaces_json, [])

    explanation = {
        "monetization": f"Based on {icp.label if icp else 'default ICP'} willingness to pay.",
        "dataSurface": (
            f"Requires {', '.join(pattern.data_surfaces)} which "
            f"{'were referenced' if referenced else 'still need validation'}."
        ),
        "agentLeverage": f"Workflow described as {instance.summary or 'agent-native'} giving leverage.",
        "reachability": "Derived from ICP specificity and known channels.",
        "osFit": "Pattern leverages existing Inbox Spend / Ops flows.",
    }

    score = ArchetypeScore(
        tenant_id=tenant_id,
        archetype_instance_id=instance.id,
        monetization_score=heuristics.monetization,
        data_surface_score=heuristics.data_surface,
        agent_leverage_score=heuristics.agent_leverage,
        reachability_score=heuristics.reachability,
        os_fit_score=heuristics.os_fit,
        total_score=heuristics.total,
        explanation_json=json.dumps(explanation),
    )
    session.add(score)

    instance.monetization_score = score.monetization_score
    instance.data_surface_score = score.data_surface_score
    instance.agent_leverage_score = score.agent_leverage_score
    instance.reachability_score = score.reachability_score
    instance.os_fit_score = score.os_fit_score
    instance.total_score = score.total_score
    instance.score_updated_at = datetime.now(UTC)
    session.flush()

    events.log_event(
        session, tenant_id, events.ARCHETYPE_SCORED,
        {"totalScore": score.total_score}, primary_entity_id=instance.id,
    )
    return score


def set_instance_state(session: Session, tenant_id: str, instance_id: int, state: str) -> ArchetypeInstance:
    """Pause or kill an instance (caller must commit)."""
    instance = get_or_raise(session, ArchetypeInstance, instance_id, tenant_id, "Archetype instance")
    instance.state = state
    events.log_event(
        session, tenant_id, events.ARCHETYPE_STATE_CHANGED,
        {"state": state}, primary_entity_id=instance.id,
    )
    return instance


# ---------------------------------------------------------------------------
# Demand test
# ---------------------------------------------------------------------------


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class DemandTestOutcome:
    outreach_count: int
    positive_responses: int
    meetings_booked: int
    willingness_signals: int

    @property
    def win_rate(self) -> float:
        return self.positive_responses / self.outreach_count if self.outreach_count else 0.0

    @property
    def verdict(self) -> str:
        if self.win_rate >= 0.2:
            return "PASS"
        if self.win_rate <= 0.05:
            return "FAIL"
        return "INCONCLUSIVE"

    @property
    def notes(self) -> str:
        return {
            "PASS": "Strong signal from outreach sample.",
            "FAIL": "Low engagement; consider pausing.",
        }.get(self.verdict, "Mixed signals; rerun with refined targeting.")


def simulate_demand_test(source_signal_count: int) -> DemandTestOutcome:
    outreach = max(10, source_signal_count * 5)
    positive = _round_half_up(outreach * 0.18)
    meetings = max(0, _round_half_up(positive * 0.35))
    return DemandTestOutcome(
        outreach_count=outreach,
        positive_responses=positive,
        meetings_booked=meetings,
        willingness_signals=max(meetings, _round_half_up(positive * 0.5)),
    )


def run_demand_test(session: Session, tenant_id: str, instance_id: int) -> ArchetypeDemandTest:
    """Record a demand test, stamp the verdict on the instance and rescore (caller must commit)."""
    instance = get_or_raise(session, ArchetypeInstance, instance_id, tenant_id, "Archetype instance")
    flow_id = flow_instance_id("archetype-demand")
    events.log_event(
        session, tenant_id, events.FLOW_STARTED,
        {"flow": "archetypeDemandTest", "archetypeInstanceId": instance.id},
        flow_instance_id=flow_id,
    )

    outcome = simulate_demand_test(len(json_parse(instance.source_signal_ids_json, [])))
    test = ArchetypeDemandTest(
        tenant_id=tenant_id,
        archetype_instance_id=instance.id,
        status="COMPLETED",
        outreach_count=outcome.outreach_count,
        positive_responses=outcome.positive_responses,
        meetings_booked=outcome.meetings_booked,
        willingness_signals=outcome.willingness_signals,
        verdict=outcome.verdict,
        notes=outcome.notes,
        created_at=datetime.now(UTC),
    )
    session.add(test)
    session.flush()

    instance.last_demand_test_at = test.created_at
    instance.last_demand_test_verdict = test.verdict
    score_instance(session, tenant_id, instance.id)

    events.log_event(
        session, tenant_id, events.ARCHETYPE_DEMAND_TEST_COMPLETED,
        {"demandTestId": test.id, "verdict": test.verdict}, primary_entity_id=instance.id,
    )
    events.log_event(
        session, tenant_id, events.FLOW_COMPLETED,
        {
            "flow": "archetypeDemandTest",
            "archetypeInstanceId": instance.id,
            "verdict": outcome.verdict,
            "outreachCount": outcome.outreach_count,
            "positiveResponses": outcome.positive_responses,
            "meetingsBooked": outcome.meetings_booked,
        },
        flow_instance_id=flow_id,
    )
    log.info("Demand test for archetype %s: %s", instance.id, outcome.verdict)
    return test


def instance_dict(instance: ArchetypeInstance) -> dict:
    return {
        "id": instance.id,
        "pattern_key": instance.pattern_key,
        "icp_key": instance.icp_key,
        "label": instance.label,
        "summary": instance.summary,
        "state": instance.state,
        "data_surfaces": json_parse(instance.data_surfaces_json, []),
        "source_signal_ids": json_parse(instance.source_signal_ids_json, []),
        "monetization_score": instance.monetization_score,
        "data_surface_score": instance.data_surface_score,
        "agent_leverage_score": instance.agent_leverage_score,
        "reachability_score": instance.reachability_score,
        "os_fit_score": instance.os_fit_score,
        "total_score": instance.total_score,
        "last_demand_test_verdict": instance.last_demand_test_verdict,
        "last_demand_test_at": instance.last_demand_test_at.isoformat() if instance.last_demand_test_at else None,
    }
