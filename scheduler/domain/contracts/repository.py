"""Contract repository - Database operations for provider/payer contracts"""

from typing import Optional

from sqlalchemy.orm import Session, joinedload

from ...models import ProviderPayerNetwork


class ContractRepository:
    """Repository for provider_payer_networks rows"""

    @staticmethod
    def get_contract(db: Session, contract_id: str) -> Optional[ProviderPayerNetwork]:
        return db.query(ProviderPayerNetwork).filter(ProviderPayerNetwork.id == contract_id).first()

    @staticmethod
    def get_contract_for_pair(
        db: Session, provider_id: str, payer_id: str
    ) -> Optional[ProviderPayerNetwork]:
        return (
            db.query(ProviderPayerNetwork)
            .filter(
                ProviderPayerNetwork.provider_id == provider_id,
                ProviderPayerNetwork.payer_id == payer_id,
            )
            .first()
        )

    @staticmethod
    def list_contracts(
        db: Session,
        provider_id: Optional[str] = None,
        payer_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[ProviderPayerNetwork]:
        query = db.query(ProviderPayerNetwork).options(
            joinedload(ProviderPayerNetwork.provider), joinedload(ProviderPayerNetwork.payer)
        )
        if provider_id:
            query = query.filter(ProviderPayerNetwork.provider_id == provider_id)
        if payer_id:
            query = query.filter(ProviderPayerNetwork.payer_id == payer_id)
        if status:
            query = query.filter(ProviderPayerNetwork.status == status)
        return query.order_by(ProviderPayerNetwork.effective_date.desc()).all()

    @staticmethod
    def add(db: Session, contract: ProviderPayerNetwork) -> ProviderPayerNetwork:
        db.add(contract)
        db.flush()
        return contract
