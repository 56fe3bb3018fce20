"""Provider repository - provider and payer directory queries"""

from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models import Payer, Provider


class ProviderRepository:
    """Repository for provider directory data access"""

    @staticmethod
    def list_listed_providers(
        db: Session, accepting_new_patients: Optional[bool] = None
    ) -> list[Provider]:
        query = db.query(Provider).filter(
            Provider.is_active.is_(True), Provider.list_on_provider_page.is_(True)
        )
        if accepting_new_patients is not None:
            query = query.filter(Provider.accepts_new_patients.is_(accepting_new_patients))
        return query.order_by(Provider.last_name, Provider.first_name).all()

    @staticmethod
    def get_provider(db: Session, provider_id: str) -> Optional[Provider]:
        return db.query(Provider).filter(Provider.id == provider_id).first()

    @staticmethod
    def list_payers(
        db: Session, search: Optional[str] = None, state: Optional[str] = None
    ) -> list[Payer]:
        query = db.query(Payer)
        if search:
            query = query.filter(Payer.name.ilike(f"%{search.strip()}%"))
        if state:
            query = query.filter(func.upper(Payer.state) == state.strip().upper())
        return query.order_by(Payer.name).all()
