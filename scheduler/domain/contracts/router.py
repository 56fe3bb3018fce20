"""Contract router - admin endpoints for provider/payer contracts"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from ...auth import AuthUser, require_admin
from ...database import get_db
from .schemas import ContractResponse, ContractTerminate, ContractUpsert
from .service import ContractService, to_response

router = APIRouter(prefix="/api/admin/contracts", tags=["Contracts"])


def get_contract_service(db: Session = Depends(get_db)) -> ContractService:
    """Dependency injection for ContractService"""
    return ContractService(db)


@router.get("", response_model=list[ContractResponse])
async def list_contracts(
    provider_id: Optional[str] = Query(None),
    payer_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    _admin: AuthUser = Depends(require_admin),
    service: ContractService = Depends(get_contract_service),
):
    """List contracts, optionally filtered by provider, payer or status"""
    return [to_response(c) for c in service.list_contracts(provider_id, payer_id, status)]


@router.put("", response_model=ContractResponse)
async def upsert_contract(
    data: ContractUpsert,
    response: Response,
    admin: AuthUser = Depends(require_admin),
    service: ContractService = Depends(get_contract_service),
):
    """Create or update the contract for a provider/payer pair (201 when created)"""
    contract, created = service.upsert_contract(data, admin)
    response.status_code = 201 if created else 200
    return to_response(contract)


@router.post("/{contract_id}/terminate", response_model=ContractResponse)
async def terminate_contract(
    contract_id: str,
    data: ContractTerminate,
    admin: AuthUser = Depends(require_admin),
    service: ContractService = Depends(get_contract_service),
):
    """Terminate a contract as of expiration_date (default today)"""
    return to_response(service.terminate_contract(contract_id, data, admin))


__all__ = ["router"]
