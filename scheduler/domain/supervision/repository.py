"""Supervision repository - Database operations for supervision relationships"""

from datetime import date
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from ...models import SupervisionRelationship


class SupervisionRepository:
    """Repository for supervision_relationships rows"""

    @staticmethod
    def get(db: Session, relationship_id: str) -> Optional[SupervisionRelationship]:
        return (
            db.query(SupervisionRelationship)
            .filter(SupervisionRelationship.id == relationship_id)
            .first()
        )

    @staticmethod
    def list_relationships(
        db: Session,
        supervisee_id: Optional[str] = None,
        supervisor_id: Optional[str] = None,
        payer_id: Optional[str] = None,
        active_only: bool = True,
    ) -> list[SupervisionRelationship]:
        query = db.query(SupervisionRelationship).options(
            joinedload(SupervisionRelationship.supervisor),
            joinedload(SupervisionRelationship.supervisee),
            joinedload(SupervisionRelationship.payer),
        )
        if supervisee_id:
            query = query.filter(SupervisionRelationship.supervisee_provider_id == supervisee_id)
        if supervisor_id:
            query = query.filter(SupervisionRelationship.supervisor_provider_id == supervisor_id)
        if payer_id:
            query = query.filter(SupervisionRelationship.payer_id == payer_id)
        if active_only:
            query = query.filter(SupervisionRelationship.is_active.is_(True))
        return query.order_by(SupervisionRelationship.start_date.desc()).all()

    @staticmethod
    def find_overlapping(
        db: Session,
        supervisor_id: str,
        supervisee_id: str,
        payer_id: str,
        start_date: date,
        end_date: Optional[date],
        exclude_id: Optional[str] = None,
    ) -> Optional[SupervisionRelationship]:
        """Active relationship for the same triple whose window overlaps [start, end]"""
        query = db.query(SupervisionRelationship).filter(
            SupervisionRelationship.supervisor_provider_id == supervisor_id,
            SupervisionRelationship.supervisee_provider_id == supervisee_id,
            SupervisionRelationship.payer_id == payer_id,
            SupervisionRelationship.is_active.is_(True),
            or_(
                SupervisionRelationship.end_date.is_(None),
                SupervisionRelationship.end_date >= start_date,
            ),
        )
        if end_date is not None:
            query = query.filter(SupervisionRelationship.start_date <= end_date)
        if exclude_id:
            query = query.filter(SupervisionRelationship.id != exclude_id)
        return query.first()
