"""Bookability repository - loads rule snapshots from the database"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import Payer, Provider, ProviderPayerNetwork, SupervisionRelationship
from .rules import (
    BookabilitySnapshot,
    ContractFacts,
    PayerFacts,
    ProviderFacts,
    SupervisionFacts,
)


def provider_facts(provider: Provider) -> ProviderFacts:
    return ProviderFacts(
        id=provider.id, is_active=bool(provider.is_active), is_bookable=bool(provider.is_bookable)
    )


def payer_facts(payer: Payer) -> PayerFacts:
    return PayerFacts(
        id=payer.id,
        allows_supervised=bool(payer.allows_supervised),
        requires_attending=bool(payer.requires_attending),
        supervision_level=payer.supervision_level,
    )


def contract_facts(contract: ProviderPayerNetwork) -> ContractFacts:
    return ContractFacts(
        id=contract.id,
        provider_id=contract.provider_id,
        payer_id=contract.payer_id,
        effective_date=contract.effective_date,
        expiration_date=contract.expiration_date,
        bookable_from_date=contract.bookable_from_date,
        status=contract.status,
    )


def supervision_facts(supervision: SupervisionRelationship) -> SupervisionFacts:
    return SupervisionFacts(
        id=supervision.id,
        supervisor_id=supervision.supervisor_provider_id,
        supervisee_id=supervision.supervisee_provider_id,
        payer_id=supervision.payer_id,
        start_date=supervision.start_date,
        end_date=supervision.end_date,
        is_active=bool(supervision.is_active),
        supervision_level=supervision.supervision_level,
    )


class BookabilityRepository:
    """Repository for the rows the bookability rules need"""

    @staticmethod
    def load_snapshot(
        db: Session, payer_id: Optional[str] = None, provider_id: Optional[str] = None
    ) -> BookabilitySnapshot:
        """Load contracts, supervision and the providers/payers they reference"""
        supervision_query = db.query(SupervisionRelationship)
        contract_query = db.query(ProviderPayerNetwork)
        if payer_id:
            supervision_query = supervision_query.filter(
                SupervisionRelationship.payer_id == payer_id
            )
            contract_query = contract_query.filter(ProviderPayerNetwork.payer_id == payer_id)
        if provider_id:
            supervision_query = supervision_query.filter(
                SupervisionRelationship.supervisee_provider_id == provider_id
            )
        supervisions = supervision_query.all()

        if provider_id:
            # Supervised rows also need the supervisors' own contracts
            relevant = {provider_id} | {s.supervisor_provider_id for s in supervisions}
            contract_query = contract_query.filter(ProviderPayerNetwork.provider_id.in_(relevant))
        contracts = contract_query.all()

        provider_ids = {c.provider_id for c in contracts}
        for s in supervisions:
            provider_ids.update((s.supervisor_provider_id, s.supervisee_provider_id))
        if provider_id:
            provider_ids.add(provider_id)

        payer_ids = {c.payer_id for c in contracts} | {s.payer_id for s in supervisions}
        if payer_id:
            payer_ids.add(payer_id)

        providers = (
            db.query(Provider).filter(Provider.id.in_(provider_ids)).all() if provider_ids else []
        )
        payers = db.query(Payer).filter(Payer.id.in_(payer_ids)).all() if payer_ids else []

        return BookabilitySnapshot(
            providers={p.id: provider_facts(p) for p in providers},
            payers={p.id: payer_facts(p) for p in payers},
            contracts=[contract_facts(c) for c in contracts],
            supervisions=[supervision_facts(s) for s in supervisions],
        )

    @staticmethod
    def load_full_snapshot(db: Session) -> BookabilitySnapshot:
        """Snapshot of every provider and payer, for coverage and health reports"""
        return BookabilitySnapshot(
            providers={p.id: provider_facts(p) for p in db.query(Provider).all()},
            payers={p.id: payer_facts(p) for p in db.query(Payer).all()},
            contracts=[contract_facts(c) for c in db.query(ProviderPayerNetwork).all()],
            supervisions=[supervision_facts(s) for s in db.query(SupervisionRelationship).all()],
        )

    @staticmethod
    def get_provider(db: Session, provider_id: str) -> Optional[Provider]:
        return db.query(Provider).filter(Provider.id == provider_id).first()

    @staticmethod
    def get_payer(db: Session, payer_id: str) -> Optional[Payer]:
        return db.query(Payer).filter(Payer.id == payer_id).first()

    @staticmethod
    def get_providers(db: Session, provider_ids: set[str]) -> dict[str, Provider]:
        if not provider_ids:
            return {}
        rows = db.query(Provider).filter(Provider.id.in_(provider_ids)).all()
        return {p.id: p for p in rows}

    @staticmethod
    def get_payers(db: Session, payer_ids: set[str]) -> dict[str, Payer]:
        if not payer_ids:
            return {}
        rows = db.query(Payer).filter(Payer.id.in_(payer_ids)).all()
        return {p.id: p for p in rows}
