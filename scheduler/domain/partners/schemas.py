"""Partner domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, field_validator

from ...shared.validators import validate_email, validate_us_phone

ORGANIZATION_TYPES = ("treatment_center", "shelter", "clinic", "court", "other")
ASSIGNING_ROLES = ("partner_admin", "partner_case_manager")


class OrganizationCreate(BaseModel):
    name: str
    type: Optional[str] = None
    status: str = "active"
    city: Optional[str] = None
    state: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("name cannot be empty")
        return v

    @field_validator("type")
    @classmethod
    def validate_type(cls, v):
        if v and v not in ORGANIZATION_TYPES:
            raise ValueError(f"type must be one of: {', '.join(ORGANIZATION_TYPES)}")
        return v

    @field_validator("state")
    @classmethod
    def validate_state(cls, v):
        if v:
            v = v.strip().upper()
            if len(v) != 2:
                raise ValueError("state must be a two-letter code")
        return v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        if v:
            return validate_us_phone(v)
        return v


class OrganizationResponse(BaseModel):
    id: str
    name: str
    type: Optional[str] = None
    status: str
    city: Optional[str] = None
    state: Optional[str] = None
    phone: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrganizationListResponse(BaseModel):
    organizations: list[OrganizationResponse]
    total: int
    limit: int
    offset: int


class ReferralCreate(BaseModel):
    """A partner referring a patient to the practice"""

    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    consent_on_file: bool = False
    notes: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email_field(cls, v):
        return validate_email(v)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        if v:
            return validate_us_phone(v)
        return v


class AssignProviderRequest(BaseModel):
    provider_id: str
    note: Optional[str] = None
