"""Experiment designer and interpreter.

The designer turns an idea into one to three cheap validation tests. The
interpreter reads an experiment's free-text description back into a verdict
through a fixed keyword decision table. :class:`LLMInterpreter` asks a remote
model first and returns exactly the table's answer whenever that fails.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from founderos.llm import LLMCallError, LLMClient, get_llm_client
from founderos.models import Idea, IdeaExperiment

log = logging.getLogger(__name__)

VERDICTS = ("PASSED", "FAILED", "INCONCLUSIVE")
CONFIDENCE_ORDER = {"LOW": 0, "MEDIUM": 1, "HIGH": 2}


@dataclass
class ExperimentDesign:
    type: str
    description: str
    suggested_steps: list[str] = field(default_factory=list)


@dataclass
class ExperimentVerdict:
    verdict: str
    confidence: str
    reasoning: str
    next_steps: list[str] = field(default_factory=list)


def _has_any(text: str, *keywords: str) -> bool:
    return any(kw in text for kw in keywords)


# ---------------------------------------------------------------------------
# Designer
# ---------------------------------------------------------------------------

AUTOMATION_KEYWORDS = ("agent", "automate", "monitor", "parse")


def design_experiments(idea: Idea) -> list[ExperimentDesign]:
    """Signal test always; workflow and agent-ownership tests when the idea earns them."""
    leverage = idea.agent_leverage_score or 0
    total = idea.total_score or 0
    description = idea.description or ""

    designs = [ExperimentDesign(
        type="SIGNAL",
        description=(
            f'Create a simple landing page or LinkedIn post describing "{idea.title}" and '
            f"measure response rate. Target: {idea.icp_description or 'target ICP'}. "
            "Look for \"that's me\" responses, not just polite interest."
        ),
        suggested_steps=[
            "Draft a 2-3 sentence value proposition",
            "Post on LinkedIn or create a simple landing page",
            "Track responses over 1-2 weeks",
            "Measure: % of responses that show genuine pain vs polite interest",
        ],
    )]

    if _has_any(description.lower(), *AUTOMATION_KEYWORDS) or leverage >= 2:
        designs.append(ExperimentDesign(
            type="WORKFLOW",
            description=(
                "Manually or semi-automate the core workflow for 5-10 real users. "
                f'Confirm the end-to-end transformation "{description}" delivers measurable value.'
            ),
            suggested_steps=[
                "Identify 5-10 target users matching ICP",
                "Manually execute the core workflow for each",
                "Measure time saved, errors reduced, or value created",
                "Collect feedback on what worked vs what didn't",
                "Estimate: Can this scale with agents handling 70%+ of the work?",
            ],
        ))

    if leverage >= 2 and total >= 9:
        designs.append(ExperimentDesign(
            type="AGENT_OWNERSHIP",
            description=(
                "Gradually move steps from human → agent. Start with 1-2 steps, measure "
                "quality and error rates. Aim for ~70% of recurring work handled by agents "
                "with acceptable quality."
            ),
            suggested_steps=[
                "Identify the 3-5 core steps in the workflow",
                "Start with automating 1-2 simplest steps",
                "Measure: accuracy, time saved, error rate",
                "Gradually expand agent ownership",
                "Target: 70%+ of recurring work automated with <5% error rate",
            ],
        ))

    return designs


# ---------------------------------------------------------------------------
# Rule-based interpreter
# ---------------------------------------------------------------------------


def _interpret_existing_result(result: str, text: str) -> ExperimentVerdict:
    if result == "PASSED":
        strong = _has_any(text, "strong", "exceeded", "multiple", "high response")
        if strong:
            return ExperimentVerdict(
                "PASSED", "HIGH", "Experiment passed. Strong positive signals observed.",
                ["Move to next experiment type", "Consider moving idea to VALIDATED state"],
            )
        return ExperimentVerdict(
            "PASSED", "MEDIUM", "Experiment passed. Positive results, but consider running additional tests.",
            ["Run additional validation", "Gather more data points"],
        )

    if result == "FAILED":
        clear = _has_any(text, "no response", "low interest", "not a fit", "rejected")
        return ExperimentVerdict(
            "FAILED",
            "HIGH" if clear else "MEDIUM",
            "Experiment failed. "
            + ("Clear negative signals." if clear else "Results suggest idea may not be viable."),
            ["Consider pivoting the idea", "Or move idea to KILLED state", "Document learnings for future ideas"],
        )

    return ExperimentVerdict(
        "INCONCLUSIVE", "MEDIUM", "Results are unclear. Need more data or a different test approach.",
        [
            "Run experiment again with clearer success criteria",
            "Try a different experiment type",
            "Gather more qualitative feedback",
        ],
    )


def _classify_description(experiment_type: str, text: str) -> ExperimentVerdict:
    if experiment_type == "SIGNAL":
        positive = _has_any(text, "response", "interest", "signup", "inquiry")
        negative = _has_any(text, "no response", "low", "rejected", "not interested")
        if positive and not negative:
            return ExperimentVerdict(
                "PASSED", "MEDIUM", "Positive signals detected. Consider running workflow test next.",
                ["Proceed to WORKFLOW test", "Document specific pain points mentioned"],
            )
        if negative:
            return ExperimentVerdict(
                "FAILED", "MEDIUM", "Negative signals detected. Idea may not resonate with target ICP.",
                ["Consider pivoting", "Or test with different ICP segment"],
            )

    elif experiment_type == "WORKFLOW":
        value = _has_any(text, "saved", "reduced", "improved", "valuable", "works")
        issues = _has_any(text, "difficult", "too complex", "not worth", "manual")
        if value and not issues:
            return ExperimentVerdict(
                "PASSED", "HIGH", "Workflow delivers measurable value. Ready for agent automation test.",
                ["Proceed to AGENT_OWNERSHIP test", "Document workflow steps"],
            )
        if issues:
            return ExperimentVerdict(
                "FAILED", "MEDIUM", "Workflow has issues that prevent value delivery.",
                ["Simplify workflow", "Or pivot idea"],
            )

    elif experiment_type == "AGENT_OWNERSHIP":
        success = _has_any(text, "automated", "70%", "error rate", "quality", "accurate")
        issues = _has_any(text, "too many errors", "low quality", "not reliable", "manual")
        if success and not issues:
            return ExperimentVerdict(
                "PASSED", "HIGH", "Agent automation successful. Idea is validated and ready to build.",
                ["Move idea to VALIDATED state", "Begin product development"],
            )
        if issues:
            return ExperimentVerdict(
                "INCONCLUSIVE", "MEDIUM",
                "Automation has quality issues. May need refinement or different approach.",
                ["Refine automation approach", "Consider hybrid human-agent workflow"],
            )

    return ExperimentVerdict(
        "INCONCLUSIVE", "LOW", "Unable to determine verdict from description. Need more specific results.",
        ["Update experiment with specific metrics", "Run additional tests"],
    )


def interpret_experiment(experiment: IdeaExperiment, idea_title: str = "") -> ExperimentVerdict:
    """Deterministic verdict for one experiment."""
    text = (experiment.description or "").lower()
    if experiment.result and experiment.result != "PENDING":
        return _interpret_existing_result(experiment.result, text)
    return _classify_description(experiment.type, text)


# ---------------------------------------------------------------------------
# Interpreter capability
# ---------------------------------------------------------------------------


class ExperimentInterpreter(Protocol):
    async def interpret(self, experiment: IdeaExperiment, idea_title: str) -> ExperimentVerdict: ...


class RuleBasedInterpreter:
    """Always available; the keyword decision table."""

    async def interpret(self, experiment: IdeaExperiment, idea_title: str) -> ExperimentVerdict:
        return interpret_experiment(experiment, idea_title)


INTERPRETER_SYSTEM_PROMPT = """\
You review the outcome of a cheap validation experiment for a B2B product idea.

Decide whether the experiment PASSED, FAILED or is INCONCLUSIVE and how \
confident you are (HIGH, MEDIUM, LOW). Be strict: polite interest is not a pass.

Respond with ONLY valid JSON:
{
  "verdict": "<PASSED|FAILED|INCONCLUSIVE>",
  "confidence": "<HIGH|MEDIUM|LOW>",
  "reasoning": "<1-2 sentences>",
  "next_steps": ["<step>", "<step>"]
}
"""


def _validate_verdict(raw: Any) -> ExperimentVerdict:
    if not isinstance(raw, dict):
        raise LLMCallError("LLM verdict is not a JSON object")
    verdict = str(raw.get("verdict", "")).strip().upper()
    confidence = str(raw.get("confidence", "")).strip().upper()
    if verdict not in VERDICTS or confidence not in CONFIDENCE_ORDER:
        raise LLMCallError(f"LLM verdict out of range: {verdict!r}/{confidence!r}")
    steps = raw.get("next_steps", [])
    if not isinstance(steps, list):
        steps = []
    return ExperimentVerdict(
        verdict=verdict,
        confidence=confidence,
        reasoning=str(raw.get("reasoning", "")),
        next_steps=[str(s) for s in steps[:5]],
    )


class LLMInterpreter:
    """Routes through the LLM and falls back to the rule table on any failure."""

    def __init__(self, client: LLMClient):
        self.client = client
        self.fallback = RuleBasedInterpreter()

    async def interpret(self, experiment: IdeaExperiment, idea_title: str) -> ExperimentVerdict:
        user = "\n".join([
            f"IDEA: {idea_title}",
            f"EXPERIMENT TYPE: {experiment.type}",
            f"RECORDED RESULT: {experiment.result}",
            f"DESCRIPTION: {experiment.description}",
        ])
        try:
            return _validate_verdict(await self.client.call(INTERPRETER_SYSTEM_PROMPT, user))
        except LLMCallError as exc:
            log.warning("LLM interpretation failed for experiment %s, using rules: %s", experiment.id, exc)
            return await self.fallback.interpret(experiment, idea_title)


def get_interpreter(client: LLMClient | None = None) -> ExperimentInterpreter:
    """Interpreter for the configured provider; rule-based when none is usable."""
    client = client or get_llm_client()
    if client is None:
        return RuleBasedInterpreter()
    return LLMInterpreter(client)
