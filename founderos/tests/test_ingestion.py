"""Tests for signal ingestion: dedup store, Apify actor client and RSS feeds."""
from __future__ import annotations

import json

import httpx
import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from founderos.config import Settings
from founderos.ingestion import (
    SAMPLE_SIGNAL_FEEDS,
    ApifyError,
    ApifySource,
    SignalSeed,
    fetch_apify_signals,
    fetch_rss_signals,
    ingest_signals,
    parse_feed,
    run_apify_actor,
)
from founderos.models import Base, Event, IdeaSignal

TENANT = "t-ingest"


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


@pytest.fixture()
def apify_settings():
    return Settings(apify_token="tok-123", apify_api_url="https://apify.test", apify_wait_seconds=5)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class TestIngestSignals:
    def test_samples_are_stored_once(self, session):
        first = ingest_signals(session, TENANT)
        assert len(first) == len(SAMPLE_SIGNAL_FEEDS)
        second = ingest_signals(session, TENANT)
        assert second == []
        rows = session.execute(select(IdeaSignal).where(IdeaSignal.tenant_id == TENANT)).scalars().all()
        assert len(rows) == len(SAMPLE_SIGNAL_FEEDS)

    def test_duplicate_within_one_batch(self, session):
        seed = SignalSeed("src", "Source", "Invoices keep piling up")
        created = ingest_signals(session, TENANT, [seed, seed])
        assert len(created) == 1

    def test_same_content_for_another_tenant_is_new(self, session):
        seed = SignalSeed("src", "Source", "Invoices keep piling up")
        ingest_signals(session, TENANT, [seed])
        assert len(ingest_signals(session, "other-tenant", [seed])) == 1

    def test_blank_content_is_skipped(self, session):
        assert ingest_signals(session, TENANT, [SignalSeed("src", "Source", "   ")]) == []

    def test_logs_one_event_per_new_signal(self, session):
        ingest_signals(session, TENANT, [SignalSeed("finance-slack", "Finance Slack", "MRR questions")])
        session.flush()
        event = session.execute(select(Event)).scalars().one()
        assert event.type == "IDEA_SIGNAL_INGESTED"
        assert json.loads(event.payload_json) == {"sourceId": "finance-slack", "sourceLabel": "Finance Slack"}


# ---------------------------------------------------------------------------
# Apify
# ---------------------------------------------------------------------------


class TestApify:
    @pytest.mark.asyncio
    async def test_run_then_fetch_dataset(self, apify_settings):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.method == "POST":
                return httpx.Response(201, json={"data": {"id": "run-1", "defaultDatasetId": "ds-9"}})
            return httpx.Response(200, json=[{"title": "RevOps analyst"}, "junk"])

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            items = await run_apify_actor(
                "harvestapi/linkedin-job-search", {"maxItems": 5}, settings=apify_settings, client=client,
            )

        assert items == [{"title": "RevOps analyst"}]
        post, get = seen
        assert post.url.path == "/v2/acts/harvestapi~linkedin-job-search/runs"
        assert post.url.params["token"] == "tok-123"
        assert post.url.params["waitForFinish"] == "5"
        assert json.loads(post.content) == {"maxItems": 5}
        assert get.url.path == "/v2/datasets/ds-9/items"
        assert get.url.params["clean"] == "1"

    @pytest.mark.asyncio
    async def test_non_ok_run_raises(self, apify_settings):
        transport = httpx.MockTransport(lambda request: httpx.Response(402, text="payment required"))
        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(ApifyError):
                await run_apify_actor("a/b", settings=apify_settings, client=client)

    @pytest.mark.asyncio
    async def test_run_without_dataset_returns_empty(self, apify_settings):
        transport = httpx.MockTransport(lambda request: httpx.Response(201, json={"data": {"id": "run-1"}}))
        async with httpx.AsyncClient(transport=transport) as client:
            assert await run_apify_actor("a/b", settings=apify_settings, client=client) == []

    @pytest.mark.asyncio
    async def test_missing_token_raises(self):
        with pytest.raises(ApifyError):
            await run_apify_actor("a/b", settings=Settings(apify_token=""))

    @pytest.mark.asyncio
    async def test_fetch_without_token_is_empty(self):
        assert await fetch_apify_signals(settings=Settings(apify_token="")) == []

    @pytest.mark.asyncio
    async def test_failing_source_is_skipped(self, apify_settings):
        def handler(request: httpx.Request) -> httpx.Response:
            if "bad~actor" in request.url.path:
                return httpx.Response(500, text="boom")
            if request.method == "POST":
                return httpx.Response(201, json={"data": {"defaultDatasetId": "ds-1"}})
            return httpx.Response(200, json=[{"title": "Support ops", "body": "  tickets   everywhere "}])

        sources = (
            ApifySource("bad", "Bad", "bad/actor"),
            ApifySource("reddit", "Reddit", "good/actor", {}, ("title", "body")),
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            seeds = await fetch_apify_signals(sources, settings=apify_settings, client=client)

        assert seeds == [SignalSeed("reddit", "Reddit", "Support ops - tickets everywhere")]


# ---------------------------------------------------------------------------
# RSS / Atom
# ---------------------------------------------------------------------------

RSS = b"""<?xml version="1.0"?>
<rss version="2.0"><channel><title>Ops</title>
  <item><title>Renewals slipping</title><description>&lt;p&gt;Vendors auto-renew &lt;b&gt;silently&lt;/b&gt;&lt;/p&gt;</description></item>
  <item><title>CRM hygiene</title></item>
</channel></rss>"""

ATOM = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Support</title>
  <entry><title>Ticket overload</title><summary>Teams drown in tickets</summary></entry>
</feed>"""


class TestFeeds:
    def test_parse_rss(self):
        assert parse_feed(RSS) == [
            "Renewals slipping - Vendors auto-renew silently",
            "CRM hygiene",
        ]

    def test_parse_atom(self):
        assert parse_feed(ATOM) == ["Ticket overload - Teams drown in tickets"]

    def test_parse_garbage(self):
        assert parse_feed(b"not xml at all") == []

    @pytest.mark.asyncio
    async def test_fetch_rss_tags_source_by_host(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "down.example":
                return httpx.Response(503)
            return httpx.Response(200, content=ATOM)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            seeds = await fetch_rss_signals(
                ["https://down.example/feed", "https://blog.example/atom.xml"],
                settings=Settings(), client=client,
            )
        assert seeds == [SignalSeed("rss:blog.example", "RSS (blog.example)", "Ticket overload - Teams drown in tickets")]
