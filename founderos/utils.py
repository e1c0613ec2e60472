"""Shared utility functions used across FounderOS modules."""
from __future__ import annotations

import json
import time
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

_MISSING = object()


class NotFoundError(LookupError):
    """A tenant-scoped entity does not exist."""


def get_or_raise(session: Session, model, entity_id: int, tenant_id: str, label: str = "Entity"):
    obj = session.execute(
        select(model).where(model.id == entity_id, model.tenant_id == tenant_id)
    ).scalars().first()
    if obj is None:
        raise NotFoundError(f"{label} not found")
    return obj


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Safely parse a JSON string, returning *default* on failure.

    If no default is given, returns ``{}`` on parse error.
    """
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops the tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def flow_instance_id(prefix: str) -> str:
    """``{prefix}-{epoch millis}``, the id shared by all events of one flow run."""
    return f"{prefix}-{int(time.time() * 1000)}"
