"""Problem mapper: groups signals into fixed category buckets and emits one
idea candidate per non-empty bucket.

Each signal lands in the first category (in declaration order) that has a
keyword hit in its lowercased content, so no signal is ever counted twice.
When an LLM client is supplied, :func:`map_signals_with_llm` asks it first and
falls back to the buckets on any failure or malformed reply.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from founderos.intent import IdeaFilters
from founderos.llm import LLMCallError, LLMClient
from founderos.models import IdeaSignal

log = logging.getLogger(__name__)


@dataclass
class IdeaCandidate:
    title: str
    description: str
    icp_description: str | None = None
    arpu_estimate: float | None = None
    source_signal_ids: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class CategoryTemplate:
    key: str
    keywords: tuple[str, ...]
    title: str
    description: str
    icp_description: str
    arpu: Callable[[IdeaFilters], float]

    def matches(self, content: str) -> bool:
        lower = content.lower()
        return any(kw in lower for kw in self.keywords)

    def build(self, signals: list[IdeaSignal], filters: IdeaFilters) -> IdeaCandidate:
        return IdeaCandidate(
            title=self.title,
            description=self.description,
            icp_description=self.icp_description,
            arpu_estimate=self.arpu(filters),
            source_signal_ids=[s.id for s in signals],
        )


CATEGORY_TEMPLATES: tuple[CategoryTemplate, ...] = (
    CategoryTemplate(
        key="inbox-spend",
        keywords=("invoice", "vendor", "renewal", "spend", "auto-renew"),
        title="Inbox Spend Guardian Autopilot",
        description=(
            "Agents monitor inboxes for invoices, flag risky renewals, and push "
            "curated savings actions with evidence."
        ),
        icp_description="Agencies and finance leads juggling 20+ SaaS vendors via Gmail/Outlook.",
        arpu=lambda f: max(f.arpu_floor, 150),
    ),
    CategoryTemplate(
        key="mrr-briefing",
        keywords=("mrr", "stripe", "cfo", "quickbooks", "forecast"),
        title="AI Finance Briefing Partner",
        description=(
            "Pulls Stripe + billing data, drafts weekly CFO-ready narratives, and "
            "highlights churn / expansion anomalies."
        ),
        icp_description="Fractional CFOs and founders < $5M ARR.",
        arpu=lambda f: max(f.arpu_floor, 120),
    ),
    CategoryTemplate(
        key="revops-guardian",
        keywords=("crm", "pipeline", "revops", "salesforce", "hubspot"),
        title="RevOps Signal Watch",
        description=(
            "Agents watch CRM hygiene, pipeline risk, and ops alerts, then recommend "
            "playbooks for AEs/CSMs."
        ),
        icp_description="Seed/Series A B2B teams with lean RevOps.",
        arpu=lambda f: max(f.arpu_floor, 100),
    ),
    CategoryTemplate(
        key="support-compressor",
        keywords=("support", "tickets", "feedback", "feature request"),
        title="Support Intelligence Compressor",
        description="Summarizes support tickets, groups themes, and powers weekly product/CS actions.",
        icp_description="B2B teams with >200 monthly tickets.",
        arpu=lambda f: f.arpu_floor,
    ),
    CategoryTemplate(
        key="partner-copilot",
        keywords=("partner", "upsell", "client account"),
        title="Client Growth Copilot",
        description=(
            "Monitors client accounts for renewals, usage drops, upsell triggers, "
            "and drafts outreach."
        ),
        icp_description="Agencies and services firms with recurring retainers.",
        arpu=lambda f: max(f.arpu_floor, 130),
    ),
)


def categorize_signal(content: str) -> str | None:
    """Key of the first category matching *content*, or ``None``."""
    for template in CATEGORY_TEMPLATES:
        if template.matches(content):
            return template.key
    return None


def bucket_signals(signals: list[IdeaSignal]) -> dict[str, list[IdeaSignal]]:
    buckets: dict[str, list[IdeaSignal]] = {t.key: [] for t in CATEGORY_TEMPLATES}
    for signal in signals:
        key = categorize_signal(signal.content or "")
        if key is not None:
            buckets[key].append(signal)
    return buckets


def map_signals(signals: list[IdeaSignal], filters: IdeaFilters) -> list[IdeaCandidate]:
    """Rule-based mapper: one candidate per non-empty bucket, in category order."""
    buckets = bucket_signals(signals)
    return [
        template.build(buckets[template.key], filters)
        for template in CATEGORY_TEMPLATES
        if buckets[template.key]
    ]


# ---------------------------------------------------------------------------
# Optional LLM path
# ---------------------------------------------------------------------------

MAPPER_SYSTEM_PROMPT = """\
You turn raw market signals into B2B product ideas for a solo founder who \
builds agent-operated services.

Group related signals and propose at most five ideas. Each idea must name the \
buyer, the recurring pain and how agents take over the work.

Respond with ONLY valid JSON:
{
  "candidates": [
    {
      "title": "<short product name>",
      "description": "<1-2 sentences>",
      "icp_description": "<who pays>",
      "arpu_estimate": <monthly price in USD>,
      "source_signal_ids": [<ids of the signals this idea came from>]
    }
  ]
}
"""


def _build_signal_prompt(signals: list[IdeaSignal], filters: IdeaFilters) -> str:
    lines = [f"MINIMUM MONTHLY ARPU: {filters.arpu_floor:g}", "SIGNALS:"]
    for s in signals:
        lines.append(f"- [{s.id}] ({s.source}) {s.content}")
    return "\n".join(lines)


def _validate_candidates(
    raw: dict[str, Any], signals: list[IdeaSignal], filters: IdeaFilters,
) -> list[IdeaCandidate]:
    items = raw.get("candidates")
    if not isinstance(items, list) or not items:
        raise LLMCallError("LLM reply has no candidates", retryable=False)
    known_ids = {s.id for s in signals}
    candidates: list[IdeaCandidate] = []
    for item in items[:5]:
        if not isinstance(item, dict):
            continue
        title = str(item.get("title") or "").strip()
        description = str(item.get("description") or "").strip()
        if not title or not description:
            continue
        try:
            arpu = max(filters.arpu_floor, float(item.get("arpu_estimate") or 0))
        except (TypeError, ValueError):
            arpu = filters.arpu_floor
        ids = item.get("source_signal_ids") or []
        if not isinstance(ids, list):
            ids = []
        candidates.append(IdeaCandidate(
            title=title[:300],
            description=description,
            icp_description=str(item.get("icp_description") or "").strip() or None,
            arpu_estimate=arpu,
            source_signal_ids=[i for i in ids if isinstance(i, int) and i in known_ids],
        ))
    if not candidates:
        raise LLMCallError("LLM reply has no usable candidates", retryable=False)
    return candidates


async def map_signals_with_llm(
    signals: list[IdeaSignal],
    filters: IdeaFilters,
    client: LLMClient | None,
) -> list[IdeaCandidate]:
    """Ask the LLM for candidates, falling back to :func:`map_signals`."""
    if client is None or not signals:
        return map_signals(signals, filters)
    try:
        raw = await client.call(MAPPER_SYSTEM_PROMPT, _build_signal_prompt(signals, filters))
        if not isinstance(raw, dict):
            raise LLMCallError(f"Unexpected LLM reply: {json.dumps(raw)[:200]}")
        return _validate_candidates(raw, signals, filters)
    except LLMCallError as exc:
        log.warning("LLM problem mapping failed, using keyword buckets: %s", exc)
        return map_signals(signals, filters)
