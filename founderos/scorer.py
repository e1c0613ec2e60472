"""Idea filter/scorer: hard filters, keyword sub-scores and the state decision.

Everything here is pure. Persistence, the experimenting count and event
logging live in :mod:`founderos.services`.

Pipeline
--------
1. **Hard filters**: market (ARPU floor), regulation (flag + excluded
   domains), agent fit (not manual-work-heavy), founder fit.
2. **Sub-scores**: only when every hard filter passes. Four axes over the
   lowercased ``title + " " + description``; each maps keyword hits to
   1 (none), 2 (one or two) or 3 (three or more). Total is 4–12.
3. **State**: any failed filter → ``KILLED``; total at or above the
   tenant's minimum → ``EXPERIMENTING`` unless the experimenting cap is
   already met → ``SCORING``; otherwise ``SCORING``.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass

from founderos.intent import IdeaFilters
from founderos.models import Idea

PAIN_FREQUENCY_KEYWORDS = ("recurring", "weekly", "daily", "pain", "always")
DATA_SURFACE_KEYWORDS = ("email", "inbox", "crm", "ticket", "doc")
REPEATABILITY_KEYWORDS = ("workflow", "process", "monitor", "review")


@dataclass(frozen=True)
class HardFilterResult:
    passes_market: bool
    passes_regulation: bool
    passes_agent_fit: bool
    passes_founder_fit: bool

    @property
    def passes_all(self) -> bool:
        return all((self.passes_market, self.passes_regulation, self.passes_agent_fit, self.passes_founder_fit))

    def as_dict(self) -> dict[str, bool]:
        return asdict(self)


@dataclass(frozen=True)
class IdeaScores:
    pain_frequency_score: int = 1
    agent_leverage_score: int = 1
    data_surface_score: int = 1
    repeatability_score: int = 1

    @property
    def total_score(self) -> int:
        return (
            self.pain_frequency_score + self.agent_leverage_score
            + self.data_surface_score + self.repeatability_score
        )

    def as_dict(self) -> dict[str, int]:
        return {**asdict(self), "total_score": self.total_score}


@dataclass(frozen=True)
class Evaluation:
    """Outcome of one evaluation, ready to be written onto the idea."""
    hard_filters: HardFilterResult
    scores: IdeaScores
    state: str
    transformation: str


def _idea_text(idea: Idea) -> str:
    return f"{idea.title or ''} {idea.description or ''}".lower()


def keyword_hits(text: str, keywords) -> int:
    return sum(1 for kw in keywords if kw and kw.lower() in text)


def hits_to_score(hits: int) -> int:
    if hits >= 3:
        return 3
    if hits >= 1:
        return 2
    return 1


def run_hard_filters(idea: Idea, filters: IdeaFilters) -> HardFilterResult:
    text = _idea_text(idea)
    arpu = idea.arpu_estimate or 0
    excluded_hit = any(domain.lower() in text for domain in filters.excluded_domains if domain)
    return HardFilterResult(
        passes_market=arpu >= filters.arpu_floor,
        passes_regulation=not idea.regulated_concern and not excluded_hit,
        passes_agent_fit=not idea.manual_work_heavy,
        passes_founder_fit=bool(idea.founder_fit_signal),
    )


def score_idea(idea: Idea, filters: IdeaFilters) -> IdeaScores:
    text = _idea_text(idea)
    return IdeaScores(
        pain_frequency_score=hits_to_score(keyword_hits(text, PAIN_FREQUENCY_KEYWORDS)),
        agent_leverage_score=hits_to_score(keyword_hits(text, filters.agent_fit_keywords)),
        data_surface_score=hits_to_score(keyword_hits(text, DATA_SURFACE_KEYWORDS)),
        repeatability_score=hits_to_score(keyword_hits(text, REPEATABILITY_KEYWORDS)),
    )


def stored_scores(idea: Idea) -> IdeaScores:
    """Sub-scores already on the idea, 1 for any that were never computed."""
    return IdeaScores(
        pain_frequency_score=idea.pain_frequency_score or 1,
        agent_leverage_score=idea.agent_leverage_score or 1,
        data_surface_score=idea.data_surface_score or 1,
        repeatability_score=idea.repeatability_score or 1,
    )


def decide_state(
    hard_filters: HardFilterResult,
    scores: IdeaScores,
    filters: IdeaFilters,
    experimenting_count: int = 0,
) -> str:
    """Pipeline state for an idea.

    *experimenting_count* is the number of other ideas of the tenant that
    are currently ``EXPERIMENTING``; it only matters when a cap is set.
    """
    if not hard_filters.passes_all:
        return "KILLED"
    if scores.total_score < filters.min_score_for_experiment:
        return "SCORING"
    cap = filters.max_experimenting_ideas
    if cap is not None and experimenting_count >= cap:
        return "SCORING"
    return "EXPERIMENTING"


def draft_transformation_statement(idea: Idea) -> str:
    inputs = f"{idea.icp_description} operations" if idea.icp_description else "customer workflows"
    if "agent" in (idea.title or "").lower():
        capabilities = "specialized agents"
    else:
        capabilities = "agents that parse emails, docs, and events"
    outcomes = (idea.description or "").split(".")[0] or idea.title
    return f"We take {inputs}, apply {capabilities}, and deliver {outcomes} for the target buyer."


def evaluate(idea: Idea, filters: IdeaFilters, experimenting_count: int = 0) -> Evaluation:
    """Run filters, scoring and the state decision without touching the database."""
    hard = run_hard_filters(idea, filters)
    scores = score_idea(idea, filters) if hard.passes_all else stored_scores(idea)
    return Evaluation(
        hard_filters=hard,
        scores=scores,
        state=decide_state(hard, scores, filters, experimenting_count),
        transformation=idea.transformation or draft_transformation_statement(idea),
    )
