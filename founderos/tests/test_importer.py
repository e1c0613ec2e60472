"""Tests for the XLSX importer."""
from __future__ import annotations

from datetime import UTC, datetime

import openpyxl
import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from founderos.importer import _b, _dt, _f, import_xlsx
from founderos.models import Base, Event, Idea, Subscription

TENANT = "t-import"


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


def _write(path, ideas=(), subscriptions=()):
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Ideas"
    ws.append(["Title", "Description", "ICP", "ARPU", "Regulated", "Manual", "Founder fit"])
    for row in ideas:
        ws.append(list(row))
    subs = wb.create_sheet("Subscriptions")
    subs.append(["Account", "Plan", "MRR", "Status", "Started", "Cancelled"])
    for row in subscriptions:
        subs.append(list(row))
    wb.save(path)
    return path


class TestCellHelpers:
    def test_bool(self):
        assert _b("Yes") and _b(True) and _b(1)
        assert not _b(None) and not _b("no")

    def test_float(self):
        assert _f("12.5") == 12.5
        assert _f("") is None
        assert _f("n/a") is None

    def test_datetime(self):
        assert _dt("2024-05-01") == datetime(2024, 5, 1, tzinfo=UTC)
        assert _dt(datetime(2024, 5, 1, 8)) == datetime(2024, 5, 1, 8, tzinfo=UTC)
        assert _dt("soon") is None


class TestImportXlsx:
    def test_ideas_are_created_and_deduplicated(self, session, tmp_path):
        session.add(Idea(tenant_id=TENANT, title="Existing idea", description="x", state="SCORING"))
        session.commit()
        path = _write(tmp_path / "a.xlsx", ideas=[
            ("existing IDEA", "dupe", None, None, None, None, None),
            ("Renewal radar", "Monitor inbox renewals", "Agencies", 120, "no", "no", "yes"),
            ("Renewal radar", "Second copy", None, None, None, None, None),
        ])
        result = import_xlsx(path, session, TENANT)
        assert (result.ideas_imported, result.ideas_skipped) == (1, 2)

        idea = session.execute(select(Idea).where(Idea.title == "Renewal radar")).scalars().one()
        assert idea.arpu_estimate == 120
        assert idea.founder_fit_signal is True
        assert idea.state == "PENDING_REVIEW"
        created = session.execute(select(Event).where(Event.type == "IDEA_CREATED")).scalars().all()
        assert len(created) == 1

    def test_subscriptions_upsert_by_account_and_plan(self, session, tmp_path):
        first = _write(tmp_path / "a.xlsx", subscriptions=[
            ("Acme", "pro", 250, "active", "2024-05-01", None),
            ("Beta", "starter", 90, "Cancelled", "2024-01-01", "2024-06-01"),
            ("", "pro", 10, "active", None, None),
        ])
        assert import_xlsx(first, session, TENANT).subscriptions_imported == 2

        second = _write(tmp_path / "b.xlsx", subscriptions=[("acme", "PRO", 300, "active", "2024-05-01", None)])
        import_xlsx(second, session, TENANT)

        subs = session.execute(select(Subscription).order_by(Subscription.id)).scalars().all()
        assert len(subs) == 2
        assert subs[0].mrr == 300
        assert subs[1].status == "cancelled"
        assert subs[1].cancelled_at is not None
