"""Supervision domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, field_validator, model_validator

from ..bookability.rules import SUPERVISION_LEVELS


def _check_level(v):
    if v is not None and v not in SUPERVISION_LEVELS:
        raise ValueError(f"supervision_level must be one of {list(SUPERVISION_LEVELS)}")
    return v


class SupervisionCreate(BaseModel):
    supervisor_provider_id: str
    supervisee_provider_id: str
    payer_id: str
    start_date: date
    end_date: Optional[date] = None
    supervision_level: Optional[str] = None
    supervision_type: Optional[str] = "general"
    notes: Optional[str] = None

    @field_validator("supervision_level")
    @classmethod
    def validate_level(cls, v):
        return _check_level(v)

    @model_validator(mode="after")
    def validate_relationship(self):
        if self.supervisor_provider_id == self.supervisee_provider_id:
            raise ValueError("A provider cannot supervise themselves")
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class SupervisionBulkCreate(BaseModel):
    relationships: list[SupervisionCreate]

    @field_validator("relationships")
    @classmethod
    def not_empty(cls, v):
        if not v:
            raise ValueError("At least one relationship is required")
        return v


class SupervisionUpdate(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    supervision_level: Optional[str] = None
    supervision_type: Optional[str] = None
    is_active: Optional[bool] = None
    notes: Optional[str] = None

    @field_validator("supervision_level")
    @classmethod
    def validate_level(cls, v):
        return _check_level(v)


class SupervisionDeactivate(BaseModel):
    end_date: Optional[date] = None
    notes: Optional[str] = None


class SupervisionResponse(BaseModel):
    id: str
    supervisor_provider_id: str
    supervisee_provider_id: str
    payer_id: str
    supervisor_name: Optional[str] = None
    supervisee_name: Optional[str] = None
    payer_name: Optional[str] = None
    start_date: date
    end_date: Optional[date] = None
    is_active: bool
    supervision_level: Optional[str] = None
    supervision_type: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
