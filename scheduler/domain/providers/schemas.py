"""Provider and payer schemas - Pydantic models and response shaping"""

from typing import Optional

from pydantic import BaseModel, field_validator

from ...models import Payer, Provider
from ..bookability.rules import normalize_languages


def provider_to_dict(provider: Provider) -> dict:
    """Public provider fields shared by bookability, availability and booking responses"""
    return {
        "id": provider.id,
        "first_name": provider.first_name,
        "last_name": provider.last_name,
        "full_name": provider.full_name,
        "title": provider.title,
        "role": provider.role,
        "languages_spoken": normalize_languages(provider.languages_spoken),
        "accepts_new_patients": bool(provider.accepts_new_patients),
        "telehealth_enabled": bool(provider.telehealth_enabled),
        "is_bookable": bool(provider.is_bookable),
        "intakeq_practitioner_id": provider.intakeq_practitioner_id,
    }


def payer_to_dict(payer: Payer) -> dict:
    return {
        "id": payer.id,
        "name": payer.name,
        "payer_type": payer.payer_type,
        "state": payer.state,
        "status_code": payer.status_code,
        "effective_date": payer.effective_date.isoformat() if payer.effective_date else None,
        "requires_attending": bool(payer.requires_attending),
        "allows_supervised": bool(payer.allows_supervised),
        "supervision_level": payer.supervision_level,
    }


class ProviderFlagsUpdate(BaseModel):
    """Admin update of provider listing and booking flags"""

    is_active: Optional[bool] = None
    is_bookable: Optional[bool] = None
    accepts_new_patients: Optional[bool] = None
    list_on_provider_page: Optional[bool] = None
    telehealth_enabled: Optional[bool] = None
    languages_spoken: Optional[list[str]] = None
    intakeq_practitioner_id: Optional[str] = None

    @field_validator("languages_spoken")
    @classmethod
    def clean_languages(cls, v):
        if v is None:
            return v
        return normalize_languages(v)
