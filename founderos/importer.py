from __future__ import annotations

import logging
from datetime import UTC, date, datetime
from pathlib import Path

import openpyxl
from sqlalchemy import select
from sqlalchemy.orm import Session

from founderos import events
from founderos.models import Idea, Subscription
from founderos.schemas import ImportResult

log = logging.getLogger(__name__)


def _s(value: object) -> str:
    """Safely coerce cell value to stripped string."""
    if value is None:
        return ""
    return str(value).strip()


def _col(row: tuple, idx: int) -> object:
    """Safely get a column value from a row tuple."""
    return row[idx] if idx < len(row) else None


def _f(value: object) -> float | None:
    """Safely coerce cell value to float, None if missing."""
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def _b(value: object) -> bool:
    """Safely coerce cell value to bool."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes", "y", "on")


def _dt(value: object) -> datetime | None:
    """Cell value to an aware UTC datetime (Excel dates or ISO strings)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    try:
        parsed = datetime.fromisoformat(str(value).strip())
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


# ---------------------------------------------------------------------------
# Sheet parsers
# ---------------------------------------------------------------------------

# Ideas: title | description | icp | arpu | regulated | manual-heavy | founder-fit
_IDEA_COLS = {
    "title": 0, "description": 1, "icp_description": 2, "arpu_estimate": 3,
    "regulated_concern": 4, "manual_work_heavy": 5, "founder_fit_signal": 6,
}

# Subscriptions: account | plan | mrr | status | started | cancelled
_SUBSCRIPTION_COLS = {
    "account_name": 0, "plan": 1, "mrr": 2, "status": 3, "started_at": 4, "cancelled_at": 5,
}


def _parse_ideas(ws) -> list[dict]:
    out: list[dict] = []
    for row in ws.iter_rows(min_row=2, values_only=True):
        if not row:
            continue
        title = _s(_col(row, _IDEA_COLS["title"]))
        description = _s(_col(row, _IDEA_COLS["description"]))
        if not title or not description:
            continue
        out.append({
            "title": title,
            "description": description,
            "icp_description": _s(_col(row, _IDEA_COLS["icp_description"])) or None,
            "arpu_estimate": _f(_col(row, _IDEA_COLS["arpu_estimate"])),
            "regulated_concern": _b(_col(row, _IDEA_COLS["regulated_concern"])),
            "manual_work_heavy": _b(_col(row, _IDEA_COLS["manual_work_heavy"])),
            "founder_fit_signal": _b(_col(row, _IDEA_COLS["founder_fit_signal"])),
        })
    return out


def _parse_subscriptions(ws) -> list[dict]:
    out: list[dict] = []
    for row in ws.iter_rows(min_row=2, values_only=True):
        if not row:
            continue
        account = _s(_col(row, _SUBSCRIPTION_COLS["account_name"]))
        mrr = _f(_col(row, _SUBSCRIPTION_COLS["mrr"]))
        if not account or mrr is None:
            continue
        out.append({
            "account_name": account,
            "plan": _s(_col(row, _SUBSCRIPTION_COLS["plan"])),
            "mrr": mrr,
            "status": (_s(_col(row, _SUBSCRIPTION_COLS["status"])) or "active").lower(),
            "started_at": _dt(_col(row, _SUBSCRIPTION_COLS["started_at"])) or datetime.now(UTC),
            "cancelled_at": _dt(_col(row, _SUBSCRIPTION_COLS["cancelled_at"])),
        })
    return out


def _sub_key(account: str, plan: str) -> str:
    return f"{account.strip().casefold()}|{plan.strip().casefold()}"


def import_xlsx(file_path: str | Path, session: Session, tenant_id: str) -> ImportResult:
    """Import the ``Ideas`` and ``Subscriptions`` sheets.

    Ideas are skipped when the tenant already has one with the same title.
    Subscriptions upsert by account name + plan.
    """
    file_path = Path(file_path)
    wb = openpyxl.load_workbook(file_path, read_only=True, data_only=True)

    idea_rows: list[dict] = []
    subscription_rows: list[dict] = []
    for sheet_name in wb.sheetnames:
        lower = sheet_name.casefold()
        if "idea" in lower:
            idea_rows = _parse_ideas(wb[sheet_name])
        elif "subscription" in lower:
            subscription_rows = _parse_subscriptions(wb[sheet_name])
    wb.close()

    titles = {
        t.casefold() for t in session.execute(select(Idea.title).where(Idea.tenant_id == tenant_id)).scalars()
    }
    imported = skipped = 0
    for data in idea_rows:
        if data["title"].casefold() in titles:
            skipped += 1
            continue
        idea = Idea(tenant_id=tenant_id, state="PENDING_REVIEW", **data)
        session.add(idea)
        session.flush()
        events.log_event(
            session, tenant_id, events.IDEA_CREATED,
            {"title": idea.title, "source": "xlsx"}, primary_entity_id=idea.id,
        )
        titles.add(data["title"].casefold())
        imported += 1

    existing_subs = {
        _sub_key(s.account_name, s.plan): s
        for s in session.execute(select(Subscription).where(Subscription.tenant_id == tenant_id)).scalars()
    }
    for data in subscription_rows:
        key = _sub_key(data["account_name"], data["plan"])
        if key in existing_subs:
            sub = existing_subs[key]
            for field, value in data.items():
                setattr(sub, field, value)
        else:
            sub = Subscription(tenant_id=tenant_id, **data)
            session.add(sub)
            existing_subs[key] = sub

    session.commit()
    log.info("Imported %d ideas (%d skipped) and %d subscriptions for %s",
             imported, skipped, len(subscription_rows), tenant_id)

    return ImportResult(
        ideas_imported=imported,
        ideas_skipped=skipped,
        subscriptions_imported=len(subscription_rows),
    )
