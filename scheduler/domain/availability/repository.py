"""Availability repository - weekly blocks, exceptions, slot cache and busy intervals"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import (
    Appointment,
    Provider,
    ProviderAvailability,
    ProviderAvailabilityCache,
    ProviderAvailabilityException,
    Service,
    ServiceInstance,
)
from ...shared.timeutils import utc_now

INACTIVE_APPOINTMENT_STATUSES = ("cancelled", "no_show")


class AvailabilityRepository:
    """Repository for availability rows"""

    @staticmethod
    def get_blocks(db: Session, provider_ids: set[str]) -> list[ProviderAvailability]:
        if not provider_ids:
            return []
        return (
            db.query(ProviderAvailability)
            .filter(ProviderAvailability.provider_id.in_(provider_ids))
            .order_by(ProviderAvailability.day_of_week, ProviderAvailability.start_time)
            .all()
        )

    @staticmethod
    def replace_blocks(
        db: Session, provider_id: str, blocks: list[ProviderAvailability]
    ) -> None:
        db.query(ProviderAvailability).filter(
            ProviderAvailability.provider_id == provider_id
        ).delete(synchronize_session=False)
        db.add_all(blocks)

    @staticmethod
    def get_exceptions(
        db: Session,
        provider_ids: set[str],
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[ProviderAvailabilityException]:
        if not provider_ids:
            return []
        query = db.query(ProviderAvailabilityException).filter(
            ProviderAvailabilityException.provider_id.in_(provider_ids)
        )
        if start_date:
            query = query.filter(ProviderAvailabilityException.exception_date >= start_date)
        if end_date:
            query = query.filter(ProviderAvailabilityException.exception_date <= end_date)
        return query.order_by(
            ProviderAvailabilityException.exception_date, ProviderAvailabilityException.start_time
        ).all()

    @staticmethod
    def get_exception(
        db: Session, provider_id: str, exception_id: str
    ) -> Optional[ProviderAvailabilityException]:
        return (
            db.query(ProviderAvailabilityException)
            .filter(
                ProviderAvailabilityException.id == exception_id,
                ProviderAvailabilityException.provider_id == provider_id,
            )
            .first()
        )

    @staticmethod
    def get_cacheable_providers(db: Session, provider_id: Optional[str] = None) -> list[Provider]:
        query = db.query(Provider).filter(
            Provider.is_active.is_(True), Provider.is_bookable.is_(True)
        )
        if provider_id:
            query = query.filter(Provider.id == provider_id)
        return query.all()

    @staticmethod
    def get_cache_rows(
        db: Session,
        provider_ids: set[str],
        start_date: date,
        end_date: date,
        service_instance_id: Optional[str] = None,
    ) -> list[ProviderAvailabilityCache]:
        if not provider_ids:
            return []
        query = db.query(ProviderAvailabilityCache).filter(
            ProviderAvailabilityCache.provider_id.in_(provider_ids),
            ProviderAvailabilityCache.service_date >= start_date,
            ProviderAvailabilityCache.service_date <= end_date,
        )
        if service_instance_id:
            query = query.filter(ProviderAvailabilityCache.service_instance_id == service_instance_id)
        return query.order_by(ProviderAvailabilityCache.service_date).all()

    @staticmethod
    def cached_keys(
        db: Session, service_instance_id: str, start_date: date, end_date: date
    ) -> set[tuple[str, date]]:
        rows = (
            db.query(ProviderAvailabilityCache.provider_id, ProviderAvailabilityCache.service_date)
            .filter(
                ProviderAvailabilityCache.service_instance_id == service_instance_id,
                ProviderAvailabilityCache.service_date >= start_date,
                ProviderAvailabilityCache.service_date <= end_date,
            )
            .all()
        )
        return {(provider_id, service_date) for provider_id, service_date in rows}

    @staticmethod
    def upsert_cache_row(
        db: Session, provider_id: str, service_instance_id: str, service_date: date, slots: list[dict]
    ) -> bool:
        """Write the day's slots; returns True when a new row was inserted"""
        row = (
            db.query(ProviderAvailabilityCache)
            .filter(
                ProviderAvailabilityCache.provider_id == provider_id,
                ProviderAvailabilityCache.service_instance_id == service_instance_id,
                ProviderAvailabilityCache.service_date == service_date,
            )
            .first()
        )
        if row:
            row.available_slots = slots
            row.last_synced_at = utc_now()
            return False
        db.add(
            ProviderAvailabilityCache(
                provider_id=provider_id,
                service_instance_id=service_instance_id,
                service_date=service_date,
                available_slots=slots,
            )
        )
        return True

    @staticmethod
    def delete_cache_rows(
        db: Session, provider_id: str, from_date: date, to_date: Optional[date] = None
    ) -> int:
        query = db.query(ProviderAvailabilityCache).filter(
            ProviderAvailabilityCache.provider_id == provider_id,
            ProviderAvailabilityCache.service_date >= from_date,
        )
        if to_date:
            query = query.filter(ProviderAvailabilityCache.service_date <= to_date)
        return query.delete(synchronize_session=False)

    @staticmethod
    def get_busy_intervals(
        db: Session,
        provider_ids: set[str],
        start_utc: datetime,
        end_utc: datetime,
        exclude_appointment_id: Optional[str] = None,
    ) -> dict[str, list[tuple[datetime, datetime]]]:
        """Booked appointment intervals per provider overlapping [start_utc, end_utc)"""
        if not provider_ids:
            return {}
        query = db.query(Appointment).filter(
            Appointment.provider_id.in_(provider_ids),
            Appointment.status.notin_(INACTIVE_APPOINTMENT_STATUSES),
            Appointment.start_time < end_utc,
            Appointment.end_time > start_utc,
        )
        if exclude_appointment_id:
            query = query.filter(Appointment.id != exclude_appointment_id)
        busy: dict[str, list[tuple[datetime, datetime]]] = {}
        for appointment in query.all():
            busy.setdefault(appointment.provider_id, []).append(
                (appointment.start_time, appointment.end_time)
            )
        return busy

    @staticmethod
    def get_service_instances(db: Session, instance_ids: set[str]) -> list[ServiceInstance]:
        if not instance_ids:
            return []
        return (
            db.query(ServiceInstance)
            .join(Service, ServiceInstance.service_id == Service.id)
            .filter(ServiceInstance.id.in_(instance_ids))
            .all()
        )
