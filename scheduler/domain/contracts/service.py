"""Contract service - Business logic for direct provider/payer contracts"""

import logging
from datetime import date
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...cache import invalidate_bookability_cache
from ...models import ProviderPayerNetwork
from ...shared.timeutils import clinic_today
from ..audit.repository import AuditRepository, snapshot_row
from ..bookability.repository import BookabilityRepository
from .repository import ContractRepository
from .schemas import ContractResponse, ContractTerminate, ContractUpsert

logger = logging.getLogger(__name__)

AUDIT_FIELDS = [
    "provider_id",
    "payer_id",
    "effective_date",
    "expiration_date",
    "bookable_from_date",
    "status",
]


def append_note(existing: Optional[str], note: Optional[str]) -> Optional[str]:
    """Notes accumulate one line per change"""
    if not note:
        return existing
    return f"{existing}\n{note}" if existing else note


def to_response(contract: ProviderPayerNetwork) -> ContractResponse:
    response = ContractResponse.model_validate(contract)
    response.provider_name = contract.provider.full_name if contract.provider else None
    response.payer_name = contract.payer.name if contract.payer else None
    return response


class ContractService:
    """Service layer for contract business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = ContractRepository()

    def get_contract(self, contract_id: str) -> ProviderPayerNetwork:
        contract = self.repo.get_contract(self.db, contract_id)
        if not contract:
            raise HTTPException(status_code=404, detail="Contract not found")
        return contract

    def list_contracts(
        self,
        provider_id: Optional[str] = None,
        payer_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[ProviderPayerNetwork]:
        return self.repo.list_contracts(self.db, provider_id, payer_id, status)

    def upsert_contract(self, data: ContractUpsert, actor) -> tuple[ProviderPayerNetwork, bool]:
        """Create the pair's contract or update it in place. Returns (contract, created)"""
        if not BookabilityRepository.get_provider(self.db, data.provider_id):
            raise HTTPException(status_code=404, detail="Provider not found")
        if not BookabilityRepository.get_payer(self.db, data.payer_id):
            raise HTTPException(status_code=404, detail="Payer not found")

        contract = self.repo.get_contract_for_pair(self.db, data.provider_id, data.payer_id)
        created = contract is None
        before = None if created else snapshot_row(contract, AUDIT_FIELDS)

        if created:
            contract = self.repo.add(
                self.db,
                ProviderPayerNetwork(
                    provider_id=data.provider_id,
                    payer_id=data.payer_id,
                    effective_date=data.effective_date,
                    expiration_date=data.expiration_date,
                    bookable_from_date=data.bookable_from_date,
                    status=data.status,
                    notes=data.notes,
                ),
            )
        else:
            contract.effective_date = data.effective_date
            contract.expiration_date = data.expiration_date
            contract.bookable_from_date = data.bookable_from_date
            contract.status = data.status
            contract.notes = append_note(contract.notes, data.notes)

        AuditRepository.record(
            self.db,
            actor,
            "contract.create" if created else "contract.update",
            "provider_payer_network",
            contract.id,
            before=before,
            after=snapshot_row(contract, AUDIT_FIELDS),
            note=data.notes,
        )
        self.db.commit()
        self.db.refresh(contract)
        invalidate_bookability_cache()

        logger.info(
            f"{'🆕 Created' if created else '🔄 Updated'} contract {contract.provider_id} x {contract.payer_id} "
            f"({contract.status}, {contract.effective_date} to {contract.expiration_date or 'open'})"
        )
        return contract, created

    def terminate_contract(
        self, contract_id: str, data: ContractTerminate, actor
    ) -> ProviderPayerNetwork:
        """Mark a contract terminated; it stops being bookable after expiration_date"""
        contract = self.get_contract(contract_id)
        before = snapshot_row(contract, AUDIT_FIELDS)

        end: date = data.expiration_date or clinic_today()
        if contract.effective_date and end < contract.effective_date:
            raise HTTPException(
                status_code=422, detail="expiration_date must be on or after effective_date"
            )

        contract.status = "terminated"
        contract.expiration_date = end
        contract.notes = append_note(contract.notes, data.notes)

        AuditRepository.record(
            self.db,
            actor,
            "contract.terminate",
            "provider_payer_network",
            contract.id,
            before=before,
            after=snapshot_row(contract, AUDIT_FIELDS),
            note=data.notes,
        )
        self.db.commit()
        self.db.refresh(contract)
        invalidate_bookability_cache()
        logger.info(f"🛑 Terminated contract {contract.id} effective {end}")
        return contract
