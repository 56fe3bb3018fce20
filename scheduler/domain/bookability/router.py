"""Bookability router - public look-ups and admin coverage/health reports"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import AuthUser, require_admin
from ...database import get_db
from ...shared.timeutils import clinic_today
from .service import BookabilityService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookability", tags=["Bookability"])
admin_router = APIRouter(prefix="/api/admin/bookability", tags=["Bookability Admin"])


def get_bookability_service(db: Session = Depends(get_db)) -> BookabilityService:
    """Dependency injection for BookabilityService"""
    return BookabilityService(db)


@router.get("/payers/{payer_id}/providers")
async def get_providers_for_payer(
    payer_id: str,
    as_of: Optional[date] = Query(None, description="Defaults to today in the clinic time zone"),
    language: Optional[str] = Query(None),
    service: BookabilityService = Depends(get_bookability_service),
):
    """Providers bookable for a payer on a date (direct and supervised)"""
    return service.providers_for_payer(payer_id, as_of or clinic_today(), language)


@router.get("/check")
async def check_bookability(
    provider_id: str = Query(...),
    payer_id: str = Query(...),
    as_of: Optional[date] = Query(None),
    service: BookabilityService = Depends(get_bookability_service),
):
    """Explain whether a provider can be booked for a payer on a date"""
    return service.is_bookable(provider_id, payer_id, as_of or clinic_today()).to_dict()


@router.get("/providers/{provider_id}/payers")
async def get_payers_for_provider(
    provider_id: str,
    as_of: Optional[date] = Query(None),
    horizon_days: int = Query(90, ge=1, le=365),
    service: BookabilityService = Depends(get_bookability_service),
):
    """Payers a provider accepts today and those starting within the horizon"""
    return service.payers_for_provider(provider_id, as_of or clinic_today(), horizon_days)


@admin_router.get("/coverage")
async def get_coverage(
    view: str = Query(..., pattern="^(provider|payer)$"),
    id: str = Query(..., description="Provider id for view=provider, payer id for view=payer"),
    mode: str = Query("today", pattern="^(today|service_date)$"),
    service_date: Optional[date] = Query(None),
    _admin: AuthUser = Depends(require_admin),
    service: BookabilityService = Depends(get_bookability_service),
):
    """Coverage report for one provider or one payer"""
    return service.coverage(view, id, mode, service_date)


@admin_router.get("/health")
async def get_health(
    as_of: Optional[date] = Query(None),
    _admin: AuthUser = Depends(require_admin),
    service: BookabilityService = Depends(get_bookability_service),
):
    """Providers without payers, payers without providers and expiring contracts"""
    return service.health(as_of)


__all__ = ["router", "admin_router"]
