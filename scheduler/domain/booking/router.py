"""Booking router - patient booking and appointment management"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Response
from sqlalchemy.orm import Session

from ...auth import AuthUser, get_current_provider, get_current_user, require_admin
from ...database import get_db
from ...models import Provider
from ...rate_limiter import create_rate_limiter
from .schemas import (
    AppointmentListParams,
    AppointmentResponse,
    BookingRequest,
    CancelRequest,
    RescheduleRequest,
)
from .service import BookingService

router = APIRouter(prefix="/api/patient-booking", tags=["Patient Booking"])
appointments_router = APIRouter(prefix="/api/appointments", tags=["Appointments"])
provider_router = APIRouter(prefix="/api/providers/me", tags=["Provider Dashboard"])
admin_router = APIRouter(prefix="/api/admin/appointments", tags=["Appointments Admin"])

# 10 bookings per 10 minutes per IP
booking_rate_limit = create_rate_limiter(limit=10, window_seconds=600, key_prefix="booking")


def get_booking_service(db: Session = Depends(get_db)) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db)


@router.post("/book")
async def book_appointment(
    data: BookingRequest,
    response: Response,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    _: None = Depends(booking_rate_limit),
    service: BookingService = Depends(get_booking_service),
):
    """Book an intake appointment (201 when created, 200 on an idempotent replay or a double submit)"""
    result = await service.book(data, idempotency_key)
    response.status_code = 200 if result.get("idempotent_replay") or result.get("is_duplicate") else 201
    return result


@appointments_router.post("/{appointment_id}/reschedule")
async def reschedule_appointment(
    appointment_id: str,
    data: RescheduleRequest,
    user: AuthUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    appointment = service.get_appointment_for(user, appointment_id)
    return await service.reschedule(appointment, data)


@appointments_router.post("/{appointment_id}/cancel")
async def cancel_appointment(
    appointment_id: str,
    data: CancelRequest,
    user: AuthUser = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    appointment = service.get_appointment_for(user, appointment_id)
    return await service.cancel(appointment, data)


@provider_router.get("/appointments", response_model=list[AppointmentResponse])
async def my_appointments(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    status: Optional[str] = Query(None),
    provider: Provider = Depends(get_current_provider),
    service: BookingService = Depends(get_booking_service),
):
    """Appointments for the signed-in provider"""
    params = AppointmentListParams(start_date=start_date, end_date=end_date, status=status)
    return service.list_for_provider(provider, params)


@admin_router.get("", response_model=list[AppointmentResponse])
async def list_appointments(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    status: Optional[str] = Query(None),
    provider_id: Optional[str] = Query(None),
    payer_id: Optional[str] = Query(None),
    patient_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    _admin: AuthUser = Depends(require_admin),
    service: BookingService = Depends(get_booking_service),
):
    params = AppointmentListParams(
        start_date=start_date,
        end_date=end_date,
        status=status,
        provider_id=provider_id,
        payer_id=payer_id,
        patient_id=patient_id,
        limit=limit,
        offset=offset,
    )
    return service.list_appointments(params)


__all__ = ["router", "appointments_router", "provider_router", "admin_router"]
