# Overview: Service-layer operations for the activity log; append-only audit sink.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import ActivityLog
from ..time_utils import utcnow
"""
Activity Log Invariants (authoritative)

- Append-only audit log for cross-cutting workflow events.
- No domain/business logic in the log itself.
- Entries are written inside the same DB transaction as the domain event they record.
- occurred_at is business time; defaults to now.
"""


def record_activity(
    actor_user_id: int | None,
    action: str,
    entity_type: str,
    entity_id: int,
    details: Optional[str] = None,
    *,
    occurred_at: Optional[datetime] = None,
) -> ActivityLog:
    """
    Append-only activity entry.

    - No domain logic here.
    - No deletes/updates of existing entries.
    """
    if not action:
        raise ValueError("action is required for activity entries")

    entry = ActivityLog(
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(entry)
    db.session.flush()  # ensures entry.id is assigned without committing
    return entry


def list_activity(
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    actor_user_id: int | None = None,
    limit: int = 100,
) -> list[ActivityLog]:
    query = db.session.query(ActivityLog)
    if entity_type:
        query = query.filter(ActivityLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(ActivityLog.entity_id == entity_id)
    if actor_user_id is not None:
        query = query.filter(ActivityLog.actor_user_id == actor_user_id)

    if limit < 1:
        limit = 1
    if limit > 500:
        limit = 500

    return query.order_by(ActivityLog.id.desc()).limit(limit).all()
