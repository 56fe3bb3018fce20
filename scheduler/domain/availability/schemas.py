"""Availability domain schemas - Pydantic models for validation"""

from datetime import date, time
from typing import Optional

from pydantic import BaseModel, model_validator


class AvailabilityBlockIn(BaseModel):
    """One weekly block on the provider dashboard"""

    day_of_week: int  # 0 = Sunday ... 6 = Saturday
    start_time: time
    end_time: time
    is_recurring: bool = True
    effective_date: Optional[date] = None
    expiration_date: Optional[date] = None

    @model_validator(mode="after")
    def validate_block(self):
        if not 0 <= self.day_of_week <= 6:
            raise ValueError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        if not self.is_recurring and not self.effective_date:
            raise ValueError("one-off blocks need an effective_date")
        return self


class AvailabilityScheduleUpdate(BaseModel):
    blocks: list[AvailabilityBlockIn]


class AvailabilityBlockOut(AvailabilityBlockIn):
    id: str

    class Config:
        from_attributes = True


class CachePopulateRequest(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    service_instance_id: Optional[str] = None
    provider_id: Optional[str] = None
    force: bool = False

    @model_validator(mode="after")
    def validate_range(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


EXCEPTION_TYPES = ("unavailable", "vacation", "partial_block", "custom_hours")


class AvailabilityExceptionIn(BaseModel):
    """A date-specific change; leave the times empty to take the whole day off"""

    exception_date: date
    exception_type: str = "unavailable"
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    reason: Optional[str] = None

    @model_validator(mode="after")
    def validate_exception(self):
        if self.exception_type not in EXCEPTION_TYPES:
            raise ValueError(f"exception_type must be one of {', '.join(EXCEPTION_TYPES)}")
        if (self.start_time is None) != (self.end_time is None):
            raise ValueError("start_time and end_time must be given together")
        if self.start_time is not None and self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        if self.exception_type in ("partial_block", "custom_hours") and self.start_time is None:
            raise ValueError(f"{self.exception_type} exceptions need start_time and end_time")
        return self


class AvailabilityExceptionOut(AvailabilityExceptionIn):
    id: str

    class Config:
        from_attributes = True
