"""Partner router - partner dashboard and organization admin"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import AuthUser, get_current_partner_user, require_admin
from ...database import get_db
from ...models import PartnerUser
from .schemas import (
    AssignProviderRequest,
    OrganizationCreate,
    OrganizationListResponse,
    OrganizationResponse,
    ReferralCreate,
)
from .service import PartnerService

router = APIRouter(prefix="/api/partner-dashboard", tags=["Partner Dashboard"])
admin_router = APIRouter(prefix="/api/admin/organizations", tags=["Organizations"])


def get_partner_service(db: Session = Depends(get_db)) -> PartnerService:
    """Dependency injection for PartnerService"""
    return PartnerService(db)


@router.get("/patients")
async def list_patients(
    status: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    partner_user: PartnerUser = Depends(get_current_partner_user),
    service: PartnerService = Depends(get_partner_service),
):
    return service.list_patients(partner_user, status, search)


@router.post("/patients", status_code=201)
async def refer_patient(
    data: ReferralCreate,
    partner_user: PartnerUser = Depends(get_current_partner_user),
    service: PartnerService = Depends(get_partner_service),
):
    """Refer a patient to the practice"""
    return service.refer_patient(partner_user, data)


@router.post("/patients/{patient_id}/assign-provider")
async def assign_provider(
    patient_id: str,
    data: AssignProviderRequest,
    partner_user: PartnerUser = Depends(get_current_partner_user),
    service: PartnerService = Depends(get_partner_service),
):
    return service.assign_provider(partner_user, patient_id, data)


@router.get("/patients/{patient_id}/activity")
async def patient_activity(
    patient_id: str,
    partner_user: PartnerUser = Depends(get_current_partner_user),
    service: PartnerService = Depends(get_partner_service),
):
    return service.patient_activity(partner_user, patient_id)


@admin_router.get("", response_model=OrganizationListResponse)
async def list_organizations(
    search: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    type: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _admin: AuthUser = Depends(require_admin),
    service: PartnerService = Depends(get_partner_service),
):
    return service.list_organizations(search, status, type, limit, offset)


@admin_router.post("", response_model=OrganizationResponse, status_code=201)
async def create_organization(
    data: OrganizationCreate,
    _admin: AuthUser = Depends(require_admin),
    service: PartnerService = Depends(get_partner_service),
):
    return service.create_organization(data)


__all__ = ["router", "admin_router"]
