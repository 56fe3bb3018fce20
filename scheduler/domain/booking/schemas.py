"""Booking domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, field_validator

from ...shared.validators import validate_email, validate_us_phone

LOCATION_TYPES = ("telehealth", "in_person")


class PatientIn(BaseModel):
    """New or returning patient details from the booking widget"""

    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None

    @field_validator("first_name", "last_name")
    @classmethod
    def validate_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("name cannot be empty")
        return v

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


class BookingRequest(BaseModel):
    """Schema for booking an intake appointment"""

    patient_id: Optional[str] = None
    patient: Optional[PatientIn] = None
    provider_id: str
    payer_id: str
    # Aware datetimes are converted to UTC; naive ones are clinic-local
    start: datetime
    location_type: str = "telehealth"
    notes: Optional[str] = None
    member_id: Optional[str] = None
    group_number: Optional[str] = None
    referral_code: Optional[str] = None
    idempotency_key: Optional[str] = None
    booking_source: str = "widget"

    @field_validator("location_type")
    @classmethod
    def validate_location_type(cls, v):
        if v not in LOCATION_TYPES:
            raise ValueError(f"location_type must be one of: {', '.join(LOCATION_TYPES)}")
        return v


class RescheduleRequest(BaseModel):
    start: datetime
    reason: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None
    notify_patient: bool = True


class AppointmentResponse(BaseModel):
    """Schema for appointment response"""

    id: str
    patient_id: str
    provider_id: str
    payer_id: Optional[str] = None
    service_instance_id: Optional[str] = None
    start_time: datetime
    end_time: datetime
    timezone: Optional[str] = None
    status: str
    location_type: Optional[str] = None
    booking_source: Optional[str] = None
    pq_appointment_id: Optional[str] = None
    cancellation_reason: Optional[str] = None
    insurance_info: Optional[dict] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AppointmentListParams(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: Optional[str] = None
    provider_id: Optional[str] = None
    payer_id: Optional[str] = None
    patient_id: Optional[str] = None
    limit: int = 100
    offset: int = 0
