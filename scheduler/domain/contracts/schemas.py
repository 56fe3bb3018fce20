"""Contract domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, field_validator, model_validator

from ..bookability.rules import CONTRACT_STATUSES


class ContractUpsert(BaseModel):
    """Create or update the single contract row for a provider/payer pair"""

    provider_id: str
    payer_id: str
    effective_date: date
    expiration_date: Optional[date] = None
    bookable_from_date: Optional[date] = None
    status: str = "in_network"
    notes: Optional[str] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v not in CONTRACT_STATUSES:
            raise ValueError(f"status must be one of {sorted(CONTRACT_STATUSES)}")
        return v

    @model_validator(mode="after")
    def validate_dates(self):
        if self.expiration_date and self.expiration_date < self.effective_date:
            raise ValueError("expiration_date must be on or after effective_date")
        if self.bookable_from_date and self.bookable_from_date < self.effective_date:
            raise ValueError("bookable_from_date must be on or after effective_date")
        return self


class ContractTerminate(BaseModel):
    expiration_date: Optional[date] = None
    notes: Optional[str] = None


class ContractResponse(BaseModel):
    id: str
    provider_id: str
    payer_id: str
    provider_name: Optional[str] = None
    payer_name: Optional[str] = None
    effective_date: Optional[date] = None
    expiration_date: Optional[date] = None
    bookable_from_date: Optional[date] = None
    status: str
    notes: Optional[str] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
