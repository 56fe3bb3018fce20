"""Supervision router - admin endpoints for supervision relationships"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import AuthUser, require_admin
from ...database import get_db
from .schemas import (
    SupervisionBulkCreate,
    SupervisionCreate,
    SupervisionDeactivate,
    SupervisionResponse,
    SupervisionUpdate,
)
from .service import SupervisionService, to_response

router = APIRouter(prefix="/api/admin/supervision", tags=["Supervision"])


def get_supervision_service(db: Session = Depends(get_db)) -> SupervisionService:
    """Dependency injection for SupervisionService"""
    return SupervisionService(db)


@router.get("", response_model=list[SupervisionResponse])
async def list_relationships(
    supervisee_id: Optional[str] = Query(None),
    supervisor_id: Optional[str] = Query(None),
    payer_id: Optional[str] = Query(None),
    active_only: bool = Query(True),
    _admin: AuthUser = Depends(require_admin),
    service: SupervisionService = Depends(get_supervision_service),
):
    """List supervision relationships with provider and payer names"""
    relationships = service.list_relationships(supervisee_id, supervisor_id, payer_id, active_only)
    return [to_response(r) for r in relationships]


@router.post("", response_model=SupervisionResponse, status_code=201)
async def create_relationship(
    data: SupervisionCreate,
    admin: AuthUser = Depends(require_admin),
    service: SupervisionService = Depends(get_supervision_service),
):
    return to_response(service.create_relationship(data, admin))


@router.post("/bulk", response_model=list[SupervisionResponse], status_code=201)
async def bulk_create_relationships(
    data: SupervisionBulkCreate,
    admin: AuthUser = Depends(require_admin),
    service: SupervisionService = Depends(get_supervision_service),
):
    """Create several relationships atomically"""
    return [to_response(r) for r in service.bulk_create(data.relationships, admin)]


@router.patch("/{relationship_id}", response_model=SupervisionResponse)
async def update_relationship(
    relationship_id: str,
    data: SupervisionUpdate,
    admin: AuthUser = Depends(require_admin),
    service: SupervisionService = Depends(get_supervision_service),
):
    return to_response(service.update_relationship(relationship_id, data, admin))


@router.post("/{relationship_id}/deactivate", response_model=SupervisionResponse)
async def deactivate_relationship(
    relationship_id: str,
    data: SupervisionDeactivate,
    admin: AuthUser = Depends(require_admin),
    service: SupervisionService = Depends(get_supervision_service),
):
    """End a relationship (soft delete)"""
    return to_response(service.deactivate_relationship(relationship_id, data, admin))


__all__ = ["router"]
