"""Tests for tenant intent configuration."""
from __future__ import annotations

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from founderos.intent import (
    BusinessIntent,
    IdeaFilters,
    get_business_intent,
    get_idea_filters,
    intent_dict,
    parse_list_input,
    upsert_business_intent,
    upsert_idea_filters,
)
from founderos.models import Base

TENANT = "t-intent"


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


class TestParseListInput:
    def test_text_with_commas_and_newlines(self):
        assert parse_list_input("crm, inbox\n\nticket", ["x"]) == ["crm", "inbox", "ticket"]

    def test_list(self):
        assert parse_list_input([" a ", "", "b"], ["x"]) == ["a", "b"]

    @pytest.mark.parametrize("value", [None, "", " , \n", []])
    def test_empty_uses_fallback(self, value):
        assert parse_list_input(value, ["x"]) == ["x"]


class TestIdeaFilters:
    def test_defaults_without_row(self, session):
        filters, version = get_idea_filters(session, TENANT)
        assert filters == IdeaFilters()
        assert version == "default"

    def test_upsert_bumps_version(self, session):
        filters, version = upsert_idea_filters(session, TENANT, {
            "arpu_floor": 80, "excluded_domains": "crypto\nlegal", "max_experimenting_ideas": 3,
        })
        assert version == "v1"
        assert filters.arpu_floor == 80
        assert filters.excluded_domains == ["crypto", "legal"]
        assert filters.agent_fit_keywords == IdeaFilters().agent_fit_keywords
        assert filters.max_experimenting_ideas == 3

        filters, version = upsert_idea_filters(session, TENANT, {})
        assert version == "v2"
        assert filters == IdeaFilters()

    def test_tenants_are_separate(self, session):
        upsert_idea_filters(session, TENANT, {"arpu_floor": 80})
        assert get_idea_filters(session, "other")[1] == "default"


class TestBusinessIntent:
    def test_defaults_without_row(self, session):
        assert get_business_intent(session, TENANT) == (BusinessIntent(), "default")

    def test_upsert_clamps_and_validates(self, session):
        intent, version = upsert_business_intent(session, TENANT, {
            "target_mrr": 50000, "summary_tone": "Shouty", "summary_max_actions": 50,
        })
        assert version == "v1"
        assert intent.target_mrr == 50000
        assert intent.summary_tone == "concise"
        assert intent.summary_max_actions == 10

    def test_intent_dict_carries_version(self, session):
        data = intent_dict(*upsert_business_intent(session, TENANT, {"summary_tone": "narrative"}))
        assert data["summary_tone"] == "narrative"
        assert data["version"] == "v1"
