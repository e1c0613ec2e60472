"""Signal ingestion: Apify actor runs, RSS feeds and the built-in sample feeds.

Fetching never raises: any provider failure is logged and yields no signals
for that source. Storing deduplicates on exact ``(tenant_id, content)``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx
from lxml import etree, html as lxml_html
from sqlalchemy import select
from sqlalchemy.orm import Session

from founderos import events
from founderos.config import Settings, get_settings
from founderos.models import IdeaSignal

log = logging.getLogger(__name__)

_MAX_SIGNAL_TEXT = 1_000


class ApifyError(Exception):
    """Actor run or dataset fetch failed."""


@dataclass(frozen=True)
class SignalSeed:
    source_id: str
    source_label: str
    content: str


SAMPLE_SIGNAL_FEEDS: tuple[SignalSeed, ...] = (
    SignalSeed(
        "ops-email-noise", "Founder DMs",
        "Agency founders complaining that vendor invoices get lost in flooded inboxes "
        "and no one notices auto-renewals.",
    ),
    SignalSeed(
        "finance-slack", "Finance Slack",
        "Fractional CFOs still paste Stripe + QuickBooks exports into Google Sheets every "
        "week to explain MRR changes.",
    ),
    SignalSeed(
        "gtm-job-post", "GTM Job Posts",
        "Multiple startups hiring “AI revops analyst” to watch CRM hygiene and pipeline risk daily.",
    ),
    SignalSeed(
        "support-forums", "Support Forums",
        "B2B product teams asking for better ways to summarize support tickets + feature "
        "requests into a single action list.",
    ),
    SignalSeed(
        "partnerships-news", "Partner Newsletters",
        "Agencies want a co-pilot that monitors client accounts for renewals, usage drops, "
        "and new upsell triggers.",
    ),
)


# ---------------------------------------------------------------------------
# Apify actor sources
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApifySource:
    source_id: str
    label: str
    actor_id: str
    input: dict[str, Any] = field(default_factory=dict)
    # Dataset item keys joined (in order) into the signal text
    text_fields: tuple[str, ...] = ("title", "description")


APIFY_SOURCES: tuple[ApifySource, ...] = (
    ApifySource(
        "linkedin-revops", "LinkedIn Jobs (RevOps)", "harvestapi/linkedin-job-search",
        {"jobTitles": ["RevOps analyst", "Revenue operations"], "maxItems": 40},
        ("title", "descriptionText"),
    ),
    ApifySource(
        "linkedin-support-ops", "LinkedIn Jobs (Support Ops)", "harvestapi/linkedin-job-search",
        {"jobTitles": ["Support operations", "Support ops manager"], "maxItems": 40},
        ("title", "descriptionText"),
    ),
    ApifySource(
        "linkedin-finance-ops", "LinkedIn Jobs (Finance Ops)", "harvestapi/linkedin-job-search",
        {"jobTitles": ["Finance operations", "Fractional CFO"], "maxItems": 40},
        ("title", "descriptionText"),
    ),
    ApifySource(
        "reddit-support-pain", "Reddit (Support Pain)", "fatihtahta/reddit-scraper-search-fast",
        {"queries": ["support tickets overwhelming"], "maxItems": 30},
        ("title", "body"),
    ),
    ApifySource(
        "reddit-agency-reporting", "Reddit (Agency Reporting)", "fatihtahta/reddit-scraper-search-fast",
        {"queries": ["agency client reporting manual"], "maxItems": 30},
        ("title", "body"),
    ),
    ApifySource(
        "g2-reviews", "G2 Reviews", "jupri/g2-explorer",
        {"query": "spend management", "mode": "reviews", "limit": 30},
        ("title", "text"),
    ),
)


async def run_apify_actor(
    actor_id: str,
    actor_input: dict[str, Any] | None = None,
    *,
    settings: Settings | None = None,
    client: httpx.AsyncClient | None = None,
) -> list[dict[str, Any]]:
    """Run an actor synchronously (``waitForFinish``) and return its dataset items.

    Raises :class:`ApifyError` on a missing token or a non-2xx response.
    A run without a default dataset yields ``[]``.
    """
    settings = settings or get_settings()
    token = settings.apify_token
    if not token:
        raise ApifyError("APIFY token is required to run actors.")

    base = settings.apify_api_url.rstrip("/")
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.request_timeout_seconds + settings.apify_wait_seconds),
            headers={"User-Agent": settings.user_agent},
        )
    try:
        run = await client.post(
            f"{base}/v2/acts/{actor_id.replace('/', '~')}/runs",
            params={"token": token, "waitForFinish": str(settings.apify_wait_seconds)},
            json=actor_input or {},
        )
        if run.status_code >= 400:
            raise ApifyError(f"Apify actor run failed ({run.status_code}): {run.text[:200]}")
        try:
            dataset_id = (run.json().get("data") or {}).get("defaultDatasetId")
        except (ValueError, AttributeError):
            dataset_id = None
        if not dataset_id:
            return []

        items = await client.get(
            f"{base}/v2/datasets/{dataset_id}/items",
            params={"token": token, "clean": "1"},
        )
        if items.status_code >= 400:
            raise ApifyError(f"Apify dataset fetch failed ({items.status_code}): {items.text[:200]}")
        try:
            data = items.json()
        except ValueError:
            return []
        return [item for item in data if isinstance(item, dict)] if isinstance(data, list) else []
    finally:
        if owns_client:
            await client.aclose()


def _item_text(item: dict[str, Any], text_fields: tuple[str, ...]) -> str:
    parts = [str(item.get(key) or "").strip() for key in text_fields]
    text = " - ".join(p for p in parts if p)
    return " ".join(text.split())[:_MAX_SIGNAL_TEXT]


async def fetch_apify_signals(
    sources: tuple[ApifySource, ...] = APIFY_SOURCES,
    *,
    settings: Settings | None = None,
    client: httpx.AsyncClient | None = None,
) -> list[SignalSeed]:
    """Run every configured actor; a failing source contributes nothing."""
    settings = settings or get_settings()
    if not settings.apify_token:
        log.info("APIFY_TOKEN not set, skipping actor sources")
        return []

    seeds: list[SignalSeed] = []
    for source in sources:
        try:
            items = await run_apify_actor(source.actor_id, source.input, settings=settings, client=client)
        except (ApifyError, httpx.HTTPError) as exc:
            log.warning("Apify source %s failed: %s", source.source_id, exc)
            continue
        for item in items:
            text = _item_text(item, source.text_fields)
            if text:
                seeds.append(SignalSeed(source.source_id, source.label, text))
    return seeds


# ---------------------------------------------------------------------------
# RSS / Atom feeds
# ---------------------------------------------------------------------------

_ATOM_NS = "{http://www.w3.org/2005/Atom}"


def _plain_text(fragment: str) -> str:
    """Strip markup from an HTML fragment."""
    fragment = (fragment or "").strip()
    if not fragment:
        return ""
    try:
        return lxml_html.fromstring(fragment).text_content().strip()
    except (etree.ParserError, etree.XMLSyntaxError, ValueError):
        return fragment


def parse_feed(raw: bytes) -> list[str]:
    """Extract ``title - description`` texts from an RSS 2.0 or Atom document."""
    try:
        root = etree.fromstring(raw, parser=etree.XMLParser(recover=True, resolve_entities=False))
    except (etree.XMLSyntaxError, ValueError):
        return []
    if root is None:
        return []

    texts: list[str] = []
    for item in root.iter("item", f"{_ATOM_NS}entry"):
        title = item.findtext("title") or item.findtext(f"{_ATOM_NS}title") or ""
        body = (
            item.findtext("description")
            or item.findtext(f"{_ATOM_NS}summary")
            or item.findtext(f"{_ATOM_NS}content")
            or ""
        )
        parts = [p for p in (title.strip(), _plain_text(body)) if p]
        text = " ".join(" - ".join(parts).split())[:_MAX_SIGNAL_TEXT]
        if text:
            texts.append(text)
    return texts


async def fetch_rss_signals(
    urls: list[str],
    *,
    settings: Settings | None = None,
    client: httpx.AsyncClient | None = None,
) -> list[SignalSeed]:
    settings = settings or get_settings()
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(
            follow_redirects=True,
            timeout=httpx.Timeout(settings.request_timeout_seconds),
            headers={"User-Agent": settings.user_agent},
        )
    seeds: list[SignalSeed] = []
    try:
        for url in urls:
            try:
                resp = await client.get(url)
                resp.raise_for_status()
            except httpx.HTTPError as exc:
                log.warning("RSS feed %s failed: %s", url, exc)
                continue
            host = httpx.URL(url).host or url
            for text in parse_feed(resp.content):
                seeds.append(SignalSeed(f"rss:{host}", f"RSS ({host})", text))
    finally:
        if owns_client:
            await client.aclose()
    return seeds


async def fetch_external_signals(settings: Settings | None = None) -> list[SignalSeed]:
    """All configured external sources, Apify first."""
    settings = settings or get_settings()
    seeds = await fetch_apify_signals(settings=settings)
    if settings.rss_feeds:
        seeds.extend(await fetch_rss_signals(settings.rss_feeds, settings=settings))
    return seeds


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


def ingest_signals(
    session: Session,
    tenant_id: str,
    seeds: list[SignalSeed] | tuple[SignalSeed, ...] = SAMPLE_SIGNAL_FEEDS,
) -> list[IdeaSignal]:
    """Store unseen seeds and return only the newly created signals (caller must commit)."""
    created: list[IdeaSignal] = []
    for seed in seeds:
        content = (seed.content or "").strip()
        if not content:
            continue
        exists = session.execute(
            select(IdeaSignal.id).where(IdeaSignal.tenant_id == tenant_id, IdeaSignal.content == content)
        ).first()
        if exists:
            continue
        signal = IdeaSignal(tenant_id=tenant_id, source=seed.source_label, content=content)
        session.add(signal)
        session.flush()
        created.append(signal)
        events.log_event(
            session, tenant_id, events.IDEA_SIGNAL_INGESTED,
            {"sourceId": seed.source_id, "sourceLabel": seed.source_label},
            primary_entity_id=signal.id,
        )
    if created:
        log.info("Ingested %d new signals for %s", len(created), tenant_id)
    return created
