"""Append-only audit trail of everything the flows do."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from founderos.models import Event
from founderos.utils import json_parse

# Flow bookkeeping
FLOW_STARTED = "FLOW_STARTED"
FLOW_COMPLETED = "FLOW_COMPLETED"

# Idea pipeline
IDEA_SIGNAL_INGESTED = "IDEA_SIGNAL_INGESTED"
IDEA_CREATED = "IDEA_CREATED"
IDEA_SCORED = "IDEA_SCORED"
IDEA_STATE_CHANGED = "IDEA_STATE_CHANGED"
IDEA_EXPERIMENT_DESIGNED = "IDEA_EXPERIMENT_DESIGNED"
IDEA_EXPERIMENT_LOGGED = "IDEA_EXPERIMENT_LOGGED"

# Founder reporting
METRICS_SNAPSHOT_CREATED = "METRICS_SNAPSHOT_CREATED"
FOUNDERSUMMARY_GENERATED = "FOUNDERSUMMARY_GENERATED"
FOUNDERSUMMARY_APPROVAL_REQUESTED = "FOUNDERSUMMARY_APPROVAL_REQUESTED"
FOUNDERSUMMARY_APPROVED = "FOUNDERSUMMARY_APPROVED"
FOUNDERSUMMARY_PUBLISHED = "FOUNDERSUMMARY_PUBLISHED"

# Archetype track
ARCHETYPE_SCORED = "ARCHETYPE_SCORED"
ARCHETYPE_DEMAND_TEST_COMPLETED = "ARCHETYPE_DEMAND_TEST_COMPLETED"
ARCHETYPE_STATE_CHANGED = "ARCHETYPE_STATE_CHANGED"

GTM_PREFIX = "GTM_"


def log_event(
    session: Session,
    tenant_id: str,
    event_type: str,
    payload: dict[str, Any] | None = None,
    *,
    flow_instance_id: str | None = None,
    primary_entity_id: int | str | None = None,
) -> Event:
    """Stage an event row (caller must commit)."""
    event = Event(
        tenant_id=tenant_id,
        type=event_type,
        payload_json=json.dumps(payload or {}, default=str),
        flow_instance_id=flow_instance_id,
        primary_entity_id=str(primary_entity_id) if primary_entity_id is not None else None,
    )
    session.add(event)
    return event


def recent_events(
    session: Session,
    tenant_id: str,
    *,
    since: datetime | None = None,
    event_type: str | None = None,
    limit: int = 50,
) -> list[Event]:
    """Newest-first events for a tenant."""
    stmt = select(Event).where(Event.tenant_id == tenant_id)
    if since is not None:
        stmt = stmt.where(Event.created_at >= since)
    if event_type:
        stmt = stmt.where(Event.type == event_type)
    stmt = stmt.order_by(Event.created_at.desc(), Event.id.desc()).limit(limit)
    return list(session.execute(stmt).scalars().all())


def event_dict(event: Event) -> dict:
    return {
        "id": event.id,
        "type": event.type,
        "payload": json_parse(event.payload_json),
        "flow_instance_id": event.flow_instance_id,
        "primary_entity_id": event.primary_entity_id,
        "created_at": event.created_at.isoformat() if event.created_at else None,
    }
