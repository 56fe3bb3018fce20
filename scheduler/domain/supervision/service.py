"""Supervision service - Business logic for supervision relationships"""

import logging
from datetime import date
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...cache import invalidate_bookability_cache
from ...models import SupervisionRelationship
from ...shared.timeutils import clinic_today
from ..audit.repository import AuditRepository, snapshot_row
from ..bookability.repository import BookabilityRepository
from ..bookability.rules import ACTIVE_CONTRACT_STATUSES
from ..contracts.repository import ContractRepository
from ..contracts.service import append_note
from .repository import SupervisionRepository
from .schemas import (
    SupervisionCreate,
    SupervisionDeactivate,
    SupervisionResponse,
    SupervisionUpdate,
)

logger = logging.getLogger(__name__)

AUDIT_FIELDS = [
    "supervisor_provider_id",
    "supervisee_provider_id",
    "payer_id",
    "start_date",
    "end_date",
    "is_active",
    "supervision_level",
]


def to_response(relationship: SupervisionRelationship) -> SupervisionResponse:
    response = SupervisionResponse.model_validate(relationship)
    response.supervisor_name = relationship.supervisor.full_name if relationship.supervisor else None
    response.supervisee_name = relationship.supervisee.full_name if relationship.supervisee else None
    response.payer_name = relationship.payer.name if relationship.payer else None
    return response


def _windows_overlap(a_start: date, a_end: Optional[date], b_start: date, b_end: Optional[date]) -> bool:
    return (a_end is None or a_end >= b_start) and (b_end is None or b_end >= a_start)


class SupervisionService:
    """Service layer for supervision business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = SupervisionRepository()

    def list_relationships(
        self,
        supervisee_id: Optional[str] = None,
        supervisor_id: Optional[str] = None,
        payer_id: Optional[str] = None,
        active_only: bool = True,
    ) -> list[SupervisionRelationship]:
        return self.repo.list_relationships(
            self.db, supervisee_id, supervisor_id, payer_id, active_only
        )

    def get_relationship(self, relationship_id: str) -> SupervisionRelationship:
        relationship = self.repo.get(self.db, relationship_id)
        if not relationship:
            raise HTTPException(status_code=404, detail="Supervision relationship not found")
        return relationship

    def _validate(self, data: SupervisionCreate, exclude_id: Optional[str] = None) -> None:
        """Referential and business checks shared by create, bulk create and update"""
        supervisor = BookabilityRepository.get_provider(self.db, data.supervisor_provider_id)
        if not supervisor:
            raise HTTPException(status_code=404, detail="Supervisor provider not found")
        if not BookabilityRepository.get_provider(self.db, data.supervisee_provider_id):
            raise HTTPException(status_code=404, detail="Supervisee provider not found")
        payer = BookabilityRepository.get_payer(self.db, data.payer_id)
        if not payer:
            raise HTTPException(status_code=404, detail="Payer not found")

        if not (payer.allows_supervised or payer.requires_attending):
            raise HTTPException(
                status_code=422,
                detail={
                    "code": "PAYER_DISALLOWS_SUPERVISION",
                    "message": f"{payer.name} does not allow supervised billing",
                },
            )

        contract = ContractRepository.get_contract_for_pair(
            self.db, data.supervisor_provider_id, data.payer_id
        )
        if contract is None or contract.status not in ACTIVE_CONTRACT_STATUSES:
            raise HTTPException(
                status_code=422,
                detail={
                    "code": "SUPERVISOR_NOT_CONTRACTED",
                    "message": f"{supervisor.full_name} has no active contract with {payer.name}",
                },
            )

        existing = self.repo.find_overlapping(
            self.db,
            data.supervisor_provider_id,
            data.supervisee_provider_id,
            data.payer_id,
            data.start_date,
            data.end_date,
            exclude_id=exclude_id,
        )
        if existing:
            raise HTTPException(
                status_code=409,
                detail={
                    "code": "DUPLICATE_RELATIONSHIP",
                    "message": "An active supervision relationship already covers these dates",
                    "existing_id": existing.id,
                },
            )

    def _build(self, data: SupervisionCreate) -> SupervisionRelationship:
        return SupervisionRelationship(
            supervisor_provider_id=data.supervisor_provider_id,
            supervisee_provider_id=data.supervisee_provider_id,
            payer_id=data.payer_id,
            start_date=data.start_date,
            end_date=data.end_date,
            supervision_level=data.supervision_level,
            supervision_type=data.supervision_type,
            notes=data.notes,
            is_active=True,
        )

    def _record(self, actor, action: str, relationship, before=None, note=None) -> None:
        AuditRepository.record(
            self.db,
            actor,
            action,
            "supervision_relationship",
            relationship.id,
            before=before,
            after=snapshot_row(relationship, AUDIT_FIELDS),
            note=note,
        )

    def create_relationship(self, data: SupervisionCreate, actor) -> SupervisionRelationship:
        self._validate(data)
        relationship = self._build(data)
        self.db.add(relationship)
        self.db.flush()
        self._record(actor, "supervision.create", relationship, note=data.notes)
        self.db.commit()
        self.db.refresh(relationship)
        invalidate_bookability_cache()
        logger.info(
            f"🆕 Supervision {relationship.supervisor_provider_id} -> "
            f"{relationship.supervisee_provider_id} for payer {relationship.payer_id}"
        )
        return relationship

    def bulk_create(self, items: list[SupervisionCreate], actor) -> list[SupervisionRelationship]:
        """Create every relationship or none of them"""
        for index, item in enumerate(items):
            self._validate(item)
            for other in items[:index]:
                same_triple = (
                    other.supervisor_provider_id == item.supervisor_provider_id
                    and other.supervisee_provider_id == item.supervisee_provider_id
                    and other.payer_id == item.payer_id
                )
                if same_triple and _windows_overlap(
                    other.start_date, other.end_date, item.start_date, item.end_date
                ):
                    raise HTTPException(
                        status_code=409,
                        detail={
                            "code": "DUPLICATE_RELATIONSHIP",
                            "message": f"Relationship {index + 1} overlaps another in the same request",
                        },
                    )

        created = []
        for item in items:
            relationship = self._build(item)
            self.db.add(relationship)
            self.db.flush()
            self._record(actor, "supervision.create", relationship, note=item.notes)
            created.append(relationship)
        self.db.commit()
        for relationship in created:
            self.db.refresh(relationship)
        invalidate_bookability_cache()
        logger.info(f"🆕 Created {len(created)} supervision relationships")
        return created

    def update_relationship(
        self, relationship_id: str, data: SupervisionUpdate, actor
    ) -> SupervisionRelationship:
        relationship = self.get_relationship(relationship_id)
        before = snapshot_row(relationship, AUDIT_FIELDS)

        start_date = data.start_date or relationship.start_date
        end_date = data.end_date if data.end_date is not None else relationship.end_date
        if end_date and end_date < start_date:
            raise HTTPException(status_code=422, detail="end_date must be on or after start_date")

        will_be_active = relationship.is_active if data.is_active is None else data.is_active
        if will_be_active:
            self._validate(
                SupervisionCreate(
                    supervisor_provider_id=relationship.supervisor_provider_id,
                    supervisee_provider_id=relationship.supervisee_provider_id,
                    payer_id=relationship.payer_id,
                    start_date=start_date,
                    end_date=end_date,
                ),
                exclude_id=relationship.id,
            )

        relationship.start_date = start_date
        relationship.end_date = end_date
        relationship.is_active = will_be_active
        if data.supervision_level is not None:
            relationship.supervision_level = data.supervision_level
        if data.supervision_type is not None:
            relationship.supervision_type = data.supervision_type
        relationship.notes = append_note(relationship.notes, data.notes)

        self._record(actor, "supervision.update", relationship, before=before, note=data.notes)
        self.db.commit()
        self.db.refresh(relationship)
        invalidate_bookability_cache()
        return relationship

    def deactivate_relationship(
        self, relationship_id: str, data: SupervisionDeactivate, actor
    ) -> SupervisionRelationship:
        """Soft delete: keep the row for history, end it and mark it inactive"""
        relationship = self.get_relationship(relationship_id)
        before = snapshot_row(relationship, AUDIT_FIELDS)

        end_date = data.end_date or clinic_today()
        if end_date < relationship.start_date:
            end_date = relationship.start_date
        relationship.end_date = end_date
        relationship.is_active = False
        relationship.notes = append_note(relationship.notes, data.notes)

        self._record(actor, "supervision.deactivate", relationship, before=before, note=data.notes)
        self.db.commit()
        self.db.refresh(relationship)
        invalidate_bookability_cache()
        logger.info(f"🛑 Deactivated supervision {relationship.id} as of {end_date}")
        return relationship
