"""Availability router - patient calendars, provider schedules and cache admin"""

import logging
from datetime import date, timedelta
from typing import Optional

from arq import create_pool
from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from ... import config
from ...auth import AuthUser, get_current_provider, require_admin
from ...database import get_db
from ...models import Provider
from ...shared.timeutils import clinic_today
from ...worker import get_redis_settings
from .schemas import (
    AvailabilityBlockOut,
    AvailabilityExceptionIn,
    AvailabilityExceptionOut,
    AvailabilityScheduleUpdate,
    CachePopulateRequest,
)
from .service import AvailabilityService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/patient-booking", tags=["Patient Booking"])
provider_router = APIRouter(prefix="/api/providers/me", tags=["Provider Dashboard"])
admin_router = APIRouter(prefix="/api/admin/availability-cache", tags=["Availability Admin"])


def get_availability_service(db: Session = Depends(get_db)) -> AvailabilityService:
    """Dependency injection for AvailabilityService"""
    return AvailabilityService(db)


async def queue_cache_refresh(provider_id: str) -> Optional[str]:
    """Ask the worker to rebuild a provider's cached days; reads rebuild them lazily if this fails"""
    if not config.BACKGROUND_JOBS_ENABLED:
        return None
    try:
        pool = await create_pool(get_redis_settings())
        try:
            job = await pool.enqueue_job("refresh_availability_cache_task", provider_id)
        finally:
            await pool.close()
    except Exception as e:
        logger.warning(f"⚠️ Failed to queue availability refresh for provider {provider_id}: {e}")
        return None
    job_id = job.job_id if job else None
    logger.info(f"📋 Availability refresh queued for provider {provider_id}: {job_id}")
    return job_id


@router.get("/merged-availability")
async def merged_availability(
    payer_id: str = Query(...),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    duration_minutes: Optional[int] = Query(None, ge=5, le=480),
    provider_id: Optional[str] = Query(None),
    service_instance_id: Optional[str] = Query(None),
    language: Optional[str] = Query(None),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Merged calendar of every provider bookable for the payer (defaults to two weeks)"""
    start = start_date or clinic_today()
    end = end_date or start + timedelta(days=13)
    return await service.merged_availability(
        payer_id, start, end, duration_minutes, provider_id, service_instance_id, language
    )


@router.get("/slots-for-payer")
async def slots_for_payer(
    payer_id: str = Query(...),
    from_date: date = Query(..., alias="from"),
    thru_date: date = Query(..., alias="thru"),
    service_instance_id: Optional[str] = Query(None),
    tz: Optional[str] = Query(None),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Slots per provider and date for the payer's intake service"""
    return await service.slots_for_payer(payer_id, from_date, thru_date, service_instance_id, tz)


@router.get("/available-services")
async def available_services(
    payer_id: str = Query(...),
    from_date: Optional[date] = Query(None, alias="from"),
    thru_date: Optional[date] = Query(None, alias="thru"),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Service instances with open slots for the payer"""
    start = from_date or clinic_today()
    end = thru_date or start + timedelta(days=29)
    return service.available_services(payer_id, start, end)


@provider_router.get("/availability", response_model=list[AvailabilityBlockOut])
async def get_my_availability(
    provider: Provider = Depends(get_current_provider),
    service: AvailabilityService = Depends(get_availability_service),
):
    return service.get_schedule(provider)


@provider_router.put("/availability", response_model=list[AvailabilityBlockOut])
async def set_my_availability(
    data: AvailabilityScheduleUpdate,
    provider: Provider = Depends(get_current_provider),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Replace the weekly schedule and queue a rebuild of the provider's cached days"""
    blocks = service.set_schedule(provider, data)
    await queue_cache_refresh(provider.id)
    return blocks


@provider_router.get("/availability/exceptions", response_model=list[AvailabilityExceptionOut])
async def list_my_exceptions(
    from_date: Optional[date] = Query(None, alias="from"),
    provider: Provider = Depends(get_current_provider),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Upcoming days off and changed hours (from today unless given)"""
    return service.list_exceptions(provider, from_date)


@provider_router.post(
    "/availability/exceptions", response_model=AvailabilityExceptionOut, status_code=201
)
async def add_my_exception(
    data: AvailabilityExceptionIn,
    provider: Provider = Depends(get_current_provider),
    service: AvailabilityService = Depends(get_availability_service),
):
    exception = service.add_exception(provider, data)
    await queue_cache_refresh(provider.id)
    return exception


@provider_router.delete("/availability/exceptions/{exception_id}", status_code=204)
async def delete_my_exception(
    exception_id: str,
    provider: Provider = Depends(get_current_provider),
    service: AvailabilityService = Depends(get_availability_service),
):
    service.delete_exception(provider, exception_id)
    await queue_cache_refresh(provider.id)
    return Response(status_code=204)


@admin_router.post("/populate")
async def populate_cache(
    data: CachePopulateRequest,
    _admin: AuthUser = Depends(require_admin),
    service: AvailabilityService = Depends(get_availability_service),
):
    """Precompute cached slots for a date range"""
    provider_ids = {data.provider_id} if data.provider_id else None
    return service.populate_cache(
        data.start_date, data.end_date, data.service_instance_id, provider_ids, data.force
    )


__all__ = ["router", "provider_router", "admin_router"]
