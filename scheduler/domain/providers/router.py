"""Provider router - public provider/payer directory and admin flags"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import AuthUser, require_admin
from ...database import get_db
from .schemas import ProviderFlagsUpdate
from .service import ProviderService

router = APIRouter(prefix="/api", tags=["Providers"])
admin_router = APIRouter(prefix="/api/admin/providers", tags=["Providers Admin"])


def get_provider_service(db: Session = Depends(get_db)) -> ProviderService:
    """Dependency injection for ProviderService"""
    return ProviderService(db)


@router.get("/providers")
async def list_providers(
    payer_id: Optional[str] = Query(None),
    language: Optional[str] = Query(None),
    accepting_new_patients: Optional[bool] = Query(None),
    as_of: Optional[date] = Query(None),
    service: ProviderService = Depends(get_provider_service),
):
    """Public provider list, narrowed to providers bookable for payer_id when given"""
    providers = service.list_providers(payer_id, language, accepting_new_patients, as_of)
    return {"providers": providers, "total": len(providers)}


@router.get("/providers/{provider_id}")
async def get_provider(
    provider_id: str,
    service: ProviderService = Depends(get_provider_service),
):
    return service.get_provider(provider_id)


@router.get("/payers")
async def list_payers(
    search: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    service: ProviderService = Depends(get_provider_service),
):
    payers = service.list_payers(search, state)
    return {"payers": payers, "total": len(payers)}


@admin_router.patch("/{provider_id}")
async def update_provider_flags(
    provider_id: str,
    data: ProviderFlagsUpdate,
    admin: AuthUser = Depends(require_admin),
    service: ProviderService = Depends(get_provider_service),
):
    return service.update_provider_flags(provider_id, data, admin)


__all__ = ["router", "admin_router"]
