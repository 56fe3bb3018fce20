"""Provider service - public directory and admin flag updates"""

import logging
from datetime import date
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...cache import invalidate_bookability_cache
from ...shared.timeutils import clinic_today
from ..audit.repository import AuditRepository, snapshot_row
from ..bookability.rules import filter_by_language
from ..bookability.service import BookabilityService
from .repository import ProviderRepository
from .schemas import ProviderFlagsUpdate, payer_to_dict, provider_to_dict

logger = logging.getLogger(__name__)

FLAG_FIELDS = [
    "is_active",
    "is_bookable",
    "accepts_new_patients",
    "list_on_provider_page",
    "telehealth_enabled",
    "languages_spoken",
    "intakeq_practitioner_id",
]


class ProviderService:
    """Service layer for the provider and payer directory"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = ProviderRepository()
        self.bookability = BookabilityService(db)

    def list_providers(
        self,
        payer_id: Optional[str] = None,
        language: Optional[str] = None,
        accepting_new_patients: Optional[bool] = None,
        as_of: Optional[date] = None,
    ) -> list[dict]:
        """Providers shown on the public provider page"""
        providers = self.repo.list_listed_providers(self.db, accepting_new_patients)
        rows = [provider_to_dict(p) for p in providers]

        if payer_id:
            self.bookability.require_payer(payer_id)
            relationships = {
                r.provider_id: r
                for r in self.bookability.get_bookable(as_of or clinic_today(), payer_id=payer_id)
            }
            rows = [
                {**row, "relationship_type": relationships[row["id"]].relationship_type}
                for row in rows
                if row["id"] in relationships
            ]
        return filter_by_language(rows, language)

    def get_provider(self, provider_id: str) -> dict:
        provider = self.repo.get_provider(self.db, provider_id)
        if not provider or not provider.is_active:
            raise HTTPException(
                status_code=404,
                detail={"code": "INVALID_PROVIDER", "message": "Provider not found"},
            )
        return provider_to_dict(provider)

    def list_payers(self, search: Optional[str] = None, state: Optional[str] = None) -> list[dict]:
        return [payer_to_dict(p) for p in self.repo.list_payers(self.db, search, state)]

    def update_provider_flags(self, provider_id: str, data: ProviderFlagsUpdate, actor) -> dict:
        provider = self.repo.get_provider(self.db, provider_id)
        if not provider:
            raise HTTPException(
                status_code=404,
                detail={"code": "INVALID_PROVIDER", "message": "Provider not found"},
            )

        changes = data.model_dump(exclude_unset=True)
        if not changes:
            return provider_to_dict(provider)

        before = snapshot_row(provider, FLAG_FIELDS)
        for field, value in changes.items():
            setattr(provider, field, value)
        AuditRepository.record(
            self.db,
            actor,
            "provider.flags_updated",
            "provider",
            provider.id,
            before=before,
            after=snapshot_row(provider, FLAG_FIELDS),
        )
        self.db.commit()
        self.db.refresh(provider)
        invalidate_bookability_cache()
        logger.info(f"✅ Provider {provider.id} flags updated: {sorted(changes)}")
        return provider_to_dict(provider)
