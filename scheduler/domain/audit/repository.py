"""Audit repository - append-only log of admin changes"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import SchedulerAuditLog


class AuditRepository:
    """Repository for scheduler audit log rows"""

    @staticmethod
    def record(
        db: Session,
        actor,
        action: str,
        entity_type: str,
        entity_id: Optional[str],
        before: Optional[dict] = None,
        after: Optional[dict] = None,
        note: Optional[str] = None,
    ) -> SchedulerAuditLog:
        """Add an audit row to the session; the caller commits with its own change"""
        entry = SchedulerAuditLog(
            actor_user_id=getattr(actor, "id", None),
            actor_email=getattr(actor, "email", None),
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            before=before,
            after=after,
            note=note,
        )
        db.add(entry)
        return entry

    @staticmethod
    def list_entries(
        db: Session,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[SchedulerAuditLog]:
        query = db.query(SchedulerAuditLog)
        if entity_type:
            query = query.filter(SchedulerAuditLog.entity_type == entity_type)
        if entity_id:
            query = query.filter(SchedulerAuditLog.entity_id == entity_id)
        return (
            query.order_by(SchedulerAuditLog.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )


def snapshot_row(row, fields: list[str]) -> dict:
    """JSON-safe dict of selected model attributes for before/after audit payloads"""
    data = {}
    for name in fields:
        value = getattr(row, name, None)
        data[name] = value.isoformat() if hasattr(value, "isoformat") else value
    return data
