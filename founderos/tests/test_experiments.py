"""Tests for the experiment designer, the interpreter table and the experiment loop."""
from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker

from founderos import services
from founderos.experiments import (
    LLMInterpreter,
    RuleBasedInterpreter,
    design_experiments,
    interpret_experiment,
)
from founderos.llm import LLMCallError
from founderos.models import Base, Event, Idea, IdeaExperiment

TENANT = "t-exp"


@pytest.fixture()
def engine():
    eng = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture()
def session(engine):
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    sess = factory()
    try:
        yield sess
    finally:
        sess.close()


def _experimenting_idea(session: Session, title: str = "Inbox Spend Guardian") -> Idea:
    idea = Idea(
        tenant_id=TENANT, title=title, description="Agents monitor inboxes.",
        arpu_estimate=150.0, founder_fit_signal=True, state="EXPERIMENTING",
        agent_leverage_score=2, total_score=10,
    )
    session.add(idea)
    session.flush()
    return idea


def _experiment(session: Session, idea: Idea, type_: str, result: str, description: str) -> IdeaExperiment:
    exp = IdeaExperiment(tenant_id=TENANT, idea_id=idea.id, type=type_, result=result, description=description)
    session.add(exp)
    session.flush()
    return exp


# ---------------------------------------------------------------------------
# Designer
# ---------------------------------------------------------------------------


class TestDesigner:
    def test_signal_only_for_low_leverage_without_automation_words(self):
        idea = Idea(title="Pottery", description="Classes for hobbyists", agent_leverage_score=1, total_score=6)
        designs = design_experiments(idea)
        assert [d.type for d in designs] == ["SIGNAL"]
        assert '"Pottery"' in designs[0].description
        assert "Target: target ICP." in designs[0].description
        assert len(designs[0].suggested_steps) == 4

    def test_automation_keyword_adds_workflow(self):
        idea = Idea(title="X", description="We automate renewals", agent_leverage_score=1, total_score=6)
        assert [d.type for d in design_experiments(idea)] == ["SIGNAL", "WORKFLOW"]

    def test_leverage_adds_workflow(self):
        idea = Idea(title="X", description="Plain", agent_leverage_score=2, total_score=8)
        assert [d.type for d in design_experiments(idea)] == ["SIGNAL", "WORKFLOW"]

    def test_high_total_adds_agent_ownership(self):
        idea = Idea(title="X", description="Plain", agent_leverage_score=2, total_score=9,
                    icp_description="Agencies")
        designs = design_experiments(idea)
        assert [d.type for d in designs] == ["SIGNAL", "WORKFLOW", "AGENT_OWNERSHIP"]
        assert "Target: Agencies." in designs[0].description
        assert '"Plain"' in designs[1].description

    def test_unscored_idea_gets_signal_only(self):
        idea = Idea(title="X", description="Plain")
        assert [d.type for d in design_experiments(idea)] == ["SIGNAL"]


# ---------------------------------------------------------------------------
# Interpreter table
# ---------------------------------------------------------------------------


def _exp(type_: str, description: str, result: str = "PENDING") -> IdeaExperiment:
    return IdeaExperiment(type=type_, description=description, result=result)


class TestInterpreter:
    @pytest.mark.parametrize("result,text,expected", [
        ("PASSED", "strong pull from buyers", ("PASSED", "HIGH")),
        ("PASSED", "ok-ish", ("PASSED", "MEDIUM")),
        ("FAILED", "no response at all", ("FAILED", "HIGH")),
        ("FAILED", "meh", ("FAILED", "MEDIUM")),
        ("INCONCLUSIVE", "strong", ("INCONCLUSIVE", "MEDIUM")),
    ])
    def test_recorded_result(self, result, text, expected):
        verdict = interpret_experiment(_exp("SIGNAL", text, result))
        assert (verdict.verdict, verdict.confidence) == expected

    @pytest.mark.parametrize("type_,text,expected", [
        ("SIGNAL", "Got 12 signup requests", ("PASSED", "MEDIUM")),
        ("SIGNAL", "Low interest overall", ("FAILED", "MEDIUM")),
        ("SIGNAL", "no response", ("FAILED", "MEDIUM")),
        ("WORKFLOW", "Saved 4 hours a week", ("PASSED", "HIGH")),
        ("WORKFLOW", "Saved time but too complex", ("FAILED", "MEDIUM")),
        ("AGENT_OWNERSHIP", "Automated 70% with good quality", ("PASSED", "HIGH")),
        ("AGENT_OWNERSHIP", "Automated but too many errors", ("INCONCLUSIVE", "MEDIUM")),
        ("WORKFLOW", "We talked to people", ("INCONCLUSIVE", "LOW")),
    ])
    def test_pending_description(self, type_, text, expected):
        verdict = interpret_experiment(_exp(type_, text))
        assert (verdict.verdict, verdict.confidence) == expected
        assert verdict.next_steps

    @pytest.mark.asyncio
    async def test_llm_interpreter_uses_reply(self):
        client = AsyncMock()
        client.call.return_value = {"verdict": "passed", "confidence": "high", "reasoning": "ok", "next_steps": ["a"]}
        verdict = await LLMInterpreter(client).interpret(_exp("SIGNAL", "whatever"), "Idea")
        assert (verdict.verdict, verdict.confidence, verdict.next_steps) == ("PASSED", "HIGH", ["a"])

    @pytest.mark.asyncio
    async def test_llm_interpreter_falls_back_exactly_to_rules(self):
        client = AsyncMock()
        client.call.side_effect = LLMCallError("down", retryable=True)
        exp = _exp("WORKFLOW", "Saved 4 hours a week")
        verdict = await LLMInterpreter(client).interpret(exp, "Idea")
        assert verdict == interpret_experiment(exp)

    @pytest.mark.asyncio
    async def test_llm_interpreter_rejects_out_of_range(self):
        client = AsyncMock()
        client.call.return_value = {"verdict": "MAYBE", "confidence": "HIGH"}
        exp = _exp("SIGNAL", "no response")
        verdict = await LLMInterpreter(client).interpret(exp, "Idea")
        assert verdict == interpret_experiment(exp)


# ---------------------------------------------------------------------------
# Experiment loop
# ---------------------------------------------------------------------------


class TestExperimentLoop:
    @pytest.mark.asyncio
    async def test_designs_experiments_for_bare_idea(self, session):
        idea = _experimenting_idea(session)
        results = await services.run_experiment_loop(session, TENANT, RuleBasedInterpreter())
        assert [r["action"] for r in results] == ["designed_experiment"] * 3
        experiments = session.execute(
            select(IdeaExperiment).where(IdeaExperiment.idea_id == idea.id).order_by(IdeaExperiment.id)
        ).scalars().all()
        assert [e.type for e in experiments] == ["SIGNAL", "WORKFLOW", "AGENT_OWNERSHIP"]
        assert all(e.result == "PENDING" for e in experiments)
        assert idea.state == "EXPERIMENTING"

    @pytest.mark.asyncio
    async def test_three_passes_with_agent_ownership_validate(self, session):
        idea = _experimenting_idea(session)
        _experiment(session, idea, "SIGNAL", "PASSED", "Strong replies")
        _experiment(session, idea, "WORKFLOW", "PASSED", "Worked")
        _experiment(session, idea, "AGENT_OWNERSHIP", "PASSED", "Agents handled it")

        results = await services.run_experiment_loop(session, TENANT, RuleBasedInterpreter())
        assert results == [{"ideaId": idea.id, "action": "state_updated", "newState": "VALIDATED"}]
        assert idea.state == "VALIDATED"

        change = session.execute(
            select(Event).where(Event.type == "IDEA_STATE_CHANGED")
        ).scalars().one()
        assert json.loads(change.payload_json) == {
            "state": "VALIDATED", "reason": "experiment_results", "experimentCount": 3,
        }

    @pytest.mark.asyncio
    async def test_passes_without_agent_ownership_do_not_validate(self, session):
        idea = _experimenting_idea(session)
        _experiment(session, idea, "SIGNAL", "PASSED", "Strong replies")
        _experiment(session, idea, "WORKFLOW", "PASSED", "Worked")
        results = await services.run_experiment_loop(session, TENANT, RuleBasedInterpreter())
        assert results == []
        assert idea.state == "EXPERIMENTING"

    @pytest.mark.asyncio
    async def test_high_confidence_failure_kills(self, session):
        idea = _experimenting_idea(session)
        _experiment(session, idea, "SIGNAL", "FAILED", "No response from 40 agencies")
        results = await services.run_experiment_loop(session, TENANT, RuleBasedInterpreter())
        assert results == [{"ideaId": idea.id, "action": "state_updated", "newState": "KILLED"}]
        assert idea.state == "KILLED"

    @pytest.mark.asyncio
    async def test_medium_confidence_failure_keeps_experimenting(self, session):
        idea = _experimenting_idea(session)
        _experiment(session, idea, "SIGNAL", "FAILED", "Meh")
        await services.run_experiment_loop(session, TENANT, RuleBasedInterpreter())
        assert idea.state == "EXPERIMENTING"

    @pytest.mark.asyncio
    async def test_pending_only_idea_is_left_alone(self, session):
        idea = _experimenting_idea(session)
        _experiment(session, idea, "SIGNAL", "PENDING", "Posted on LinkedIn")
        results = await services.run_experiment_loop(session, TENANT, RuleBasedInterpreter())
        assert results == []
        count = session.execute(select(IdeaExperiment).where(IdeaExperiment.idea_id == idea.id)).scalars().all()
        assert len(count) == 1

    @pytest.mark.asyncio
    async def test_flow_events_wrap_the_run(self, session):
        _experimenting_idea(session)
        await services.run_experiment_loop(session, TENANT, RuleBasedInterpreter())
        session.flush()
        flow = session.execute(
            select(Event).where(Event.type.in_(["FLOW_STARTED", "FLOW_COMPLETED"])).order_by(Event.id)
        ).scalars().all()
        assert [e.type for e in flow] == ["FLOW_STARTED", "FLOW_COMPLETED"]
        assert flow[0].flow_instance_id == flow[1].flow_instance_id
        assert flow[0].flow_instance_id.startswith("experiment-loop-")
