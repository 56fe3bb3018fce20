"""Availability service - slot cache maintenance and patient-facing calendars"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ... import config
from ...models import Provider, ProviderAvailability, ProviderAvailabilityException
from ...services.intakeq_service import IntakeQError, IntakeQService, intakeq_service
from ...shared.timeutils import (
    clinic_today,
    get_zone,
    local_to_utc_naive,
    parse_hhmm,
    utc_naive_to_local,
    utc_now,
)
from ..bookability.repository import BookabilityRepository
from ..bookability.rules import filter_by_language
from ..bookability.service import BookabilityService
from ..providers.schemas import provider_to_dict
from ..service_instances.resolver import ResolvedServiceInstance, ServiceInstanceResolver
from .repository import AvailabilityRepository
from .schemas import AvailabilityExceptionIn, AvailabilityScheduleUpdate
from .slots import (
    AvailabilityBlock,
    ScheduleException,
    build_day_slots,
    emr_busy_interval,
    filter_conflicts,
    merge_provider_slots,
)

logger = logging.getLogger(__name__)

PREVIEW_SLOT_LIMIT = 50


def date_range(start: date, end: date):
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


def to_block(row: ProviderAvailability) -> AvailabilityBlock:
    return AvailabilityBlock(
        day_of_week=row.day_of_week,
        start_time=row.start_time,
        end_time=row.end_time,
        is_recurring=bool(row.is_recurring),
        effective_date=row.effective_date,
        expiration_date=row.expiration_date,
    )


def to_exception(row: ProviderAvailabilityException) -> ScheduleException:
    return ScheduleException(
        exception_date=row.exception_date,
        exception_type=row.exception_type,
        start_time=row.start_time,
        end_time=row.end_time,
    )


class AvailabilityService:
    """Service layer for availability business logic"""

    def __init__(self, db: Session, emr: Optional[IntakeQService] = None):
        self.db = db
        self.repo = AvailabilityRepository()
        self.bookability = BookabilityService(db)
        self.resolver = ServiceInstanceResolver(db)
        self.emr = emr or intakeq_service

    # ========================================================================
    # CACHE MAINTENANCE
    # ========================================================================

    def _resolve_instance(
        self, service_instance_id: Optional[str], payer_id: Optional[str] = None
    ) -> ResolvedServiceInstance:
        if service_instance_id:
            return self.resolver.get_instance(service_instance_id)
        return self.resolver.resolve_intake(payer_id, require_mapping=False)

    def populate_cache(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        service_instance_id: Optional[str] = None,
        provider_ids: Optional[set[str]] = None,
        force: bool = False,
    ) -> dict:
        """Expand weekly blocks, less exceptions, into cached slots for each provider and date"""
        start = start_date or clinic_today()
        end = end_date or start + timedelta(days=config.AVAILABILITY_CACHE_DAYS - 1)
        if end < start:
            raise HTTPException(status_code=422, detail="end_date must be on or after start_date")
        instance = self._resolve_instance(service_instance_id)

        providers = self.repo.get_cacheable_providers(self.db)
        if provider_ids is not None:
            providers = [p for p in providers if p.id in provider_ids]
        blocks: dict[str, list[AvailabilityBlock]] = {}
        for row in self.repo.get_blocks(self.db, {p.id for p in providers}):
            blocks.setdefault(row.provider_id, []).append(to_block(row))
        exceptions: dict[str, list[ScheduleException]] = {}
        for row in self.repo.get_exceptions(self.db, {p.id for p in providers}, start, end):
            exceptions.setdefault(row.provider_id, []).append(to_exception(row))

        existing = set() if force else self.repo.cached_keys(self.db, instance.service_instance_id, start, end)
        created = updated = skipped = 0
        for provider in providers:
            provider_blocks = blocks.get(provider.id)
            if not provider_blocks:
                continue
            for day in date_range(start, end):
                if (provider.id, day) in existing:
                    skipped += 1
                    continue
                slots = build_day_slots(
                    provider_blocks, day, instance.duration_minutes, exceptions.get(provider.id, ())
                )
                inserted = self.repo.upsert_cache_row(
                    self.db, provider.id, instance.service_instance_id, day, slots
                )
                if inserted:
                    created += 1
                else:
                    updated += 1
        self.db.commit()

        if created or updated:
            logger.info(
                f"📅 Availability cache {start} to {end} for instance {instance.service_instance_id}: "
                f"{created} created, {updated} updated, {skipped} skipped"
            )
        return {
            "service_instance_id": instance.service_instance_id,
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "providers": len(providers),
            "created": created,
            "updated": updated,
            "skipped": skipped,
        }

    def warm_cache(self, provider_ids: Optional[set[str]] = None, force: bool = False) -> list[dict]:
        """Populate the rolling window for every intake instance, global and payer-specific"""
        return [
            self.populate_cache(
                service_instance_id=instance.service_instance_id, provider_ids=provider_ids, force=force
            )
            for instance in self.resolver.list_intake_instances()
        ]

    def invalidate_provider(
        self, provider_id: str, from_date: Optional[date] = None, to_date: Optional[date] = None
    ) -> int:
        """Drop cached days from from_date on (through to_date) so the next read recomputes them"""
        deleted = self.repo.delete_cache_rows(
            self.db, provider_id, from_date or clinic_today(), to_date
        )
        self.db.commit()
        logger.info(f"🧹 Cleared {deleted} cached availability days for provider {provider_id}")
        return deleted

    # ========================================================================
    # PATIENT CALENDARS
    # ========================================================================

    def _validate_range(self, start_date: date, end_date: date) -> None:
        if end_date < start_date:
            raise HTTPException(status_code=422, detail="end_date must be on or after start_date")
        if (end_date - start_date).days + 1 > config.MAX_AVAILABILITY_RANGE_DAYS:
            raise HTTPException(
                status_code=422,
                detail=f"Date range cannot exceed {config.MAX_AVAILABILITY_RANGE_DAYS} days",
            )

    async def _emr_busy_intervals(
        self, providers: dict[str, dict], start_date: date, end_date: date
    ) -> dict[str, list[tuple[datetime, datetime]]]:
        """Appointments booked directly in the EMR, per provider; an unreachable EMR blocks nothing"""
        practitioners = {
            p["intakeq_practitioner_id"]: pid
            for pid, p in providers.items()
            if p.get("intakeq_practitioner_id")
        }
        if not practitioners or not self.emr.is_configured:
            return {}
        try:
            # EMR date filters use its own calendar days, so pad the range
            appointments = await self.emr.list_appointments(
                start_date - timedelta(days=1), end_date + timedelta(days=1)
            )
        except IntakeQError as e:
            logger.warning(f"⚠️ EMR appointments unavailable, skipping EMR conflict check: {e}")
            return {}

        busy: dict[str, list[tuple[datetime, datetime]]] = {}
        for appointment in appointments:
            provider_id = practitioners.get(appointment.get("PractitionerId"))
            if not provider_id:
                continue
            interval = emr_busy_interval(appointment, config.DEFAULT_SLOT_DURATION_MINUTES)
            if interval:
                busy.setdefault(provider_id, []).append(interval)
        return busy

    async def _collect_slots(
        self,
        payer_id: str,
        start_date: date,
        end_date: date,
        instance: ResolvedServiceInstance,
        provider_id: Optional[str] = None,
        duration_minutes: Optional[int] = None,
        language: Optional[str] = None,
    ) -> dict:
        """Open, future, conflict-free slots of bookable providers for the payer"""
        days = self.bookability.get_bookable_range(payer_id, start_date, end_date, provider_id)
        by_day = {day: {r.provider_id: r for r in rows} for day, rows in days.items()}
        provider_ids = {pid for rows in by_day.values() for pid in rows}

        providers = {
            p["id"]: p
            for p in filter_by_language(
                [
                    provider_to_dict(p)
                    for p in BookabilityRepository.get_providers(self.db, provider_ids).values()
                ],
                language,
            )
        }
        if not providers:
            return {"slots": [], "providers": {}, "cache_rows": 0}

        self.populate_cache(
            start_date, end_date, instance.service_instance_id, provider_ids=set(providers)
        )
        rows = self.repo.get_cache_rows(
            self.db, set(providers), start_date, end_date, instance.service_instance_id
        )

        now = utc_now()
        slots = []
        for row in rows:
            relationship = by_day.get(row.service_date, {}).get(row.provider_id)
            if relationship is None:
                continue
            provider = providers[row.provider_id]
            for cached_slot in row.available_slots or []:
                if not cached_slot.get("available", True):
                    continue
                minutes = (
                    duration_minutes
                    or cached_slot.get("duration_minutes")
                    or config.DEFAULT_SLOT_DURATION_MINUTES
                )
                start_utc = local_to_utc_naive(row.service_date, parse_hhmm(cached_slot["start_time"]))
                if start_utc <= now:
                    continue
                slots.append(
                    {
                        "date": row.service_date.isoformat(),
                        "start_time": cached_slot["start_time"],
                        "duration_minutes": minutes,
                        "start_utc": start_utc,
                        "end_utc": start_utc + timedelta(minutes=minutes),
                        "provider_id": row.provider_id,
                        "provider_name": provider["full_name"],
                        "service_instance_id": row.service_instance_id,
                        "relationship_type": relationship.relationship_type,
                        "billing_provider_id": relationship.billing_provider_id,
                        "rendering_provider_id": relationship.rendering_provider_id,
                        "supervising_provider_id": relationship.supervising_provider_id,
                        "supervision_level": relationship.supervision_level,
                        "requires_co_visit": relationship.requires_co_visit,
                    }
                )

        range_start = local_to_utc_naive(start_date, time.min)
        range_end = local_to_utc_naive(end_date + timedelta(days=1), time.min)
        busy = self.repo.get_busy_intervals(self.db, set(providers), range_start, range_end)
        emr_busy = await self._emr_busy_intervals(providers, start_date, end_date) if slots else {}
        for provider_id, intervals in emr_busy.items():
            busy.setdefault(provider_id, []).extend(intervals)
        return {
            "slots": filter_conflicts(slots, busy),
            "providers": providers,
            "cache_rows": len(rows),
        }

    @staticmethod
    def _finish_slot(slot: dict, tz_name: Optional[str] = None) -> dict:
        """Replace internal UTC fields with ISO times in the requested zone"""
        shaped = {k: v for k, v in slot.items() if k not in ("start_utc", "end_utc")}
        shaped["start"] = utc_naive_to_local(slot["start_utc"], tz_name).isoformat()
        shaped["end"] = utc_naive_to_local(slot["end_utc"], tz_name).isoformat()
        shaped["end_time"] = utc_naive_to_local(slot["end_utc"]).strftime("%H:%M")
        return shaped

    async def merged_availability(
        self,
        payer_id: str,
        start_date: date,
        end_date: date,
        duration_minutes: Optional[int] = None,
        provider_id: Optional[str] = None,
        service_instance_id: Optional[str] = None,
        language: Optional[str] = None,
    ) -> dict:
        """One calendar across every provider bookable for the payer on each day"""
        self._validate_range(start_date, end_date)
        payer = self.bookability.require_payer(payer_id)
        instance = self._resolve_instance(service_instance_id, payer_id)

        collected = await self._collect_slots(
            payer_id, start_date, end_date, instance, provider_id, duration_minutes, language
        )
        by_date = merge_provider_slots(collected["slots"])
        slots_by_date = {
            day: [self._finish_slot(s) for s in day_slots] for day, day_slots in by_date.items()
        }
        flat = [s for day in sorted(slots_by_date) for s in slots_by_date[day]]

        counts: dict[str, int] = {}
        for slot in flat:
            counts[slot["provider_id"]] = counts.get(slot["provider_id"], 0) + 1
        providers = [
            {**p, "slot_count": counts.get(pid, 0)} for pid, p in collected["providers"].items()
        ]
        providers.sort(key=lambda p: (-p["slot_count"], p["last_name"]))

        if flat:
            message = f"Found {len(flat)} available slots across {len(counts)} providers"
        elif not collected["providers"]:
            message = f"No providers are currently bookable for {payer.name}"
        else:
            message = "No availability in the requested date range"

        return {
            "payer_id": payer_id,
            "service_instance_id": instance.service_instance_id,
            "date_range": {"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
            "total_slots": len(flat),
            "slots_by_date": slots_by_date,
            "available_slots": flat[:PREVIEW_SLOT_LIMIT],
            "providers": providers,
            "message": message,
        }

    async def slots_for_payer(
        self,
        payer_id: str,
        from_date: date,
        thru_date: date,
        service_instance_id: Optional[str] = None,
        tz_name: Optional[str] = None,
    ) -> dict:
        """Slots grouped per provider and date, with times in the caller's zone"""
        self._validate_range(from_date, thru_date)
        try:
            get_zone(tz_name)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        self.bookability.require_payer(payer_id)
        instance = self._resolve_instance(service_instance_id, payer_id)

        collected = await self._collect_slots(payer_id, from_date, thru_date, instance)
        if not collected["providers"]:
            method_used = "no_providers"
        elif not collected["cache_rows"]:
            method_used = "no_cache_data"
        else:
            method_used = "bookable_relationships"

        groups: dict[tuple[str, str], dict] = {}
        for day, day_slots in merge_provider_slots(collected["slots"]).items():
            for slot in day_slots:
                key = (slot["provider_id"], day)
                group = groups.setdefault(
                    key,
                    {
                        "provider_id": slot["provider_id"],
                        "provider_name": slot["provider_name"],
                        "date": day,
                        "relationship_type": slot["relationship_type"],
                        "billing_provider_id": slot["billing_provider_id"],
                        "supervising_provider_id": slot["supervising_provider_id"],
                        "slots": [],
                    },
                )
                finished = self._finish_slot(slot, tz_name)
                group["slots"].append({"start": finished["start"], "end": finished["end"]})

        return {
            "payer_id": payer_id,
            "service_instance_id": instance.service_instance_id,
            "service_instance_source": instance.source,
            "duration_minutes": instance.duration_minutes,
            "timezone": tz_name or config.CLINIC_TIMEZONE,
            "method_used": method_used,
            "total_slots": sum(len(g["slots"]) for g in groups.values()),
            "slots": sorted(groups.values(), key=lambda g: (g["date"], g["provider_name"])),
        }

    def available_services(self, payer_id: str, from_date: date, thru_date: date) -> dict:
        """Service instances with open cached slots for providers bookable under the payer"""
        self._validate_range(from_date, thru_date)
        self.bookability.require_payer(payer_id)
        days = self.bookability.get_bookable_range(payer_id, from_date, thru_date)
        bookable_by_day = {day: {r.provider_id for r in rows} for day, rows in days.items()}
        provider_ids = set().union(*bookable_by_day.values()) if bookable_by_day else set()

        today = clinic_today()
        stats: dict[str, dict] = {}
        for row in self.repo.get_cache_rows(self.db, provider_ids, from_date, thru_date):
            if row.service_date < today or row.provider_id not in bookable_by_day.get(row.service_date, set()):
                continue
            open_slots = sum(1 for s in row.available_slots or [] if s.get("available", True))
            if not open_slots:
                continue
            entry = stats.setdefault(
                row.service_instance_id, {"slot_count": 0, "providers": set(), "dates": set()}
            )
            entry["slot_count"] += open_slots
            entry["providers"].add(row.provider_id)
            entry["dates"].add(row.service_date)

        services = []
        for instance in self.repo.get_service_instances(self.db, set(stats)):
            entry = stats[instance.id]
            services.append(
                {
                    "service_instance_id": instance.id,
                    "service_id": instance.service_id,
                    "service_name": instance.service.name,
                    "duration_minutes": instance.service.duration_minutes,
                    "location": instance.location,
                    "payer_specific": instance.payer_id == payer_id,
                    "slot_count": entry["slot_count"],
                    "provider_count": len(entry["providers"]),
                    "first_available_date": min(entry["dates"]).isoformat(),
                    "last_available_date": max(entry["dates"]).isoformat(),
                }
            )
        services.sort(key=lambda s: (not s["payer_specific"], s["service_name"]))
        return {
            "payer_id": payer_id,
            "date_range": {"from": from_date.isoformat(), "thru": thru_date.isoformat()},
            "services": services,
        }

    # ========================================================================
    # PROVIDER DASHBOARD
    # ========================================================================

    def get_schedule(self, provider: Provider) -> list[ProviderAvailability]:
        return self.repo.get_blocks(self.db, {provider.id})

    def set_schedule(
        self, provider: Provider, data: AvailabilityScheduleUpdate
    ) -> list[ProviderAvailability]:
        """Replace the provider's weekly blocks and drop their cached future days"""
        rows = [
            ProviderAvailability(
                provider_id=provider.id,
                day_of_week=block.day_of_week,
                start_time=block.start_time,
                end_time=block.end_time,
                is_recurring=block.is_recurring,
                effective_date=block.effective_date,
                expiration_date=block.expiration_date,
            )
            for block in data.blocks
        ]
        self.repo.replace_blocks(self.db, provider.id, rows)
        self.db.commit()
        logger.info(f"🗓️ Provider {provider.id} saved {len(rows)} availability blocks")
        self.invalidate_provider(provider.id)
        return self.get_schedule(provider)

    def list_exceptions(
        self, provider: Provider, from_date: Optional[date] = None
    ) -> list[ProviderAvailabilityException]:
        return self.repo.get_exceptions(self.db, {provider.id}, from_date or clinic_today())

    def add_exception(
        self, provider: Provider, data: AvailabilityExceptionIn
    ) -> ProviderAvailabilityException:
        """Record a date-specific change and drop that day's cached slots"""
        exception = ProviderAvailabilityException(
            provider_id=provider.id,
            exception_date=data.exception_date,
            exception_type=data.exception_type,
            start_time=data.start_time,
            end_time=data.end_time,
            reason=data.reason,
        )
        self.db.add(exception)
        self.db.commit()
        self.db.refresh(exception)
        span = f"{data.start_time}-{data.end_time}" if data.start_time else "all day"
        logger.info(
            f"🚫 Provider {provider.id} added {data.exception_type} exception on "
            f"{data.exception_date} ({span})"
        )
        self.invalidate_provider(provider.id, data.exception_date, data.exception_date)
        return exception

    def delete_exception(self, provider: Provider, exception_id: str) -> None:
        exception = self.repo.get_exception(self.db, provider.id, exception_id)
        if not exception:
            raise HTTPException(
                status_code=404,
                detail={"code": "EXCEPTION_NOT_FOUND", "message": "Availability exception not found"},
            )
        exception_date = exception.exception_date
        self.db.delete(exception)
        self.db.commit()
        logger.info(f"🗑️ Provider {provider.id} removed exception {exception_id}")
        self.invalidate_provider(provider.id, exception_date, exception_date)
