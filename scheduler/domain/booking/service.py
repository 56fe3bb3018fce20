"""Booking service - intake booking, reschedule and cancellation"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ... import config, email_service
from ...auth import AuthUser, is_admin
from ...models import Appointment, Patient, Payer, Provider
from ...services.intakeq_service import (
    IntakeQError,
    IntakeQService,
    intakeq_service,
    normalize_client_id,
    to_epoch_ms,
)
from ...shared.timeutils import local_to_utc_naive, to_utc_naive, utc_naive_to_local, utc_now
from ...shared.validators import phone_digits, validate_date_range
from ..bookability.service import BookabilityService
from ..partners.repository import PartnerRepository
from ..service_instances.resolver import ServiceInstanceResolver
from .repository import BookingRepository
from .schemas import AppointmentListParams, BookingRequest, CancelRequest, RescheduleRequest

logger = logging.getLogger(__name__)

DUPLICATE_WINDOW_SECONDS = 30


def _error(status_code: int, code: str, message: str, **extra) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message, **extra})


class BookingService:
    """Service layer for booking business logic"""

    def __init__(self, db: Session, emr: Optional[IntakeQService] = None):
        self.db = db
        self.repo = BookingRepository()
        self.bookability = BookabilityService(db)
        self.resolver = ServiceInstanceResolver(db)
        self.emr = emr or intakeq_service

    # ========================================================================
    # PATIENTS
    # ========================================================================

    def resolve_patient(self, data: BookingRequest, payer_id: str) -> tuple[Patient, str, bool]:
        """
        Find or create the patient for a booking.

        Returns (patient, match_type, created). Existing records are only reused
        on a strong match (email, names and date of birth) or, when no date of
        birth is given, a fallback match on email, names and phone digits.
        Case managers book several patients under one email, so an email match
        alone never merges two people.
        """
        if data.patient_id:
            patient = self.repo.get_patient(self.db, data.patient_id)
            if not patient:
                raise _error(404, "PATIENT_NOT_FOUND", f"Patient {data.patient_id} not found")
            if not patient.primary_payer_id:
                patient.primary_payer_id = payer_id
            return patient, "existing", False

        if not data.patient:
            raise _error(400, "INVALID_REQUEST", "Provide either patient_id or patient details")

        info = data.patient
        candidates = self.repo.find_patients_by_identity(
            self.db, info.email, info.first_name, info.last_name
        )
        if info.date_of_birth:
            for candidate in candidates:
                if candidate.date_of_birth == info.date_of_birth:
                    logger.info(f"✅ Strong patient match {candidate.id}")
                    return candidate, "strong", False
        elif info.phone:
            wanted = phone_digits(info.phone)
            for candidate in candidates:
                if candidate.phone and phone_digits(candidate.phone) == wanted:
                    logger.info(f"✅ Fallback patient match {candidate.id}")
                    return candidate, "fallback", False

        patient = Patient(
            first_name=info.first_name,
            last_name=info.last_name,
            email=info.email,
            phone=info.phone,
            date_of_birth=info.date_of_birth,
            primary_payer_id=payer_id,
            status="active",
        )
        self.db.add(patient)
        self.db.flush()
        logger.info(f"🆕 Created patient {patient.id}")
        return patient, "none", True

    def _track_referral(self, patient: Patient, referral_code: Optional[str]) -> None:
        """Link the patient to the referring partner organization when a referral code is given"""
        if not referral_code:
            return
        partner_user = self.repo.get_partner_user_by_email(self.db, referral_code)
        if not partner_user:
            logger.info(f"⚠️ Referral code not recognised: {referral_code}")
            return
        affiliation, created = PartnerRepository.ensure_affiliation(
            self.db, patient.id, partner_user.organization_id, partner_user.id
        )
        if created:
            PartnerRepository.add_activity(
                self.db,
                patient.id,
                activity_type="referral",
                title="Referred through booking",
                actor_type="partner",
                actor_id=partner_user.id,
                metadata={"organization_id": partner_user.organization_id},
            )

    # ========================================================================
    # EMR SYNC
    # ========================================================================

    async def _ensure_emr_client(
        self, patient: Patient, payer: Payer, data: Optional[BookingRequest] = None
    ) -> str:
        existing = normalize_client_id(patient.intakeq_client_id)
        if existing:
            return existing
        if patient.intakeq_client_id:
            logger.warning(
                f"⚠️ Patient {patient.id} has malformed EMR client id {patient.intakeq_client_id!r}, recreating"
            )

        client_data = {
            "FirstName": patient.first_name,
            "LastName": patient.last_name,
            "Email": patient.email or "",
            "Phone": patient.phone or "",
        }
        if patient.date_of_birth:
            client_data["DateOfBirth"] = to_epoch_ms(datetime.combine(patient.date_of_birth, time.min))
        if config.PRACTICEQ_ENRICH_ENABLED and data is not None:
            client_data["PrimaryInsuranceName"] = payer.name
            if data.member_id:
                client_data["PrimaryMemberID"] = data.member_id
            if data.group_number:
                client_data["PrimaryGroupNumber"] = data.group_number

        try:
            client_id = await self.emr.create_client(client_data)
        except IntakeQError as e:
            self.repo.log_sync(
                self.db, "create_client", "failed", error_message=str(e), attempts=e.attempts
            )
            raise
        patient.intakeq_client_id = client_id
        self.db.commit()
        self.repo.log_sync(self.db, "create_client", "success", payload={"patient_id": patient.id})
        return client_id

    async def _sync_new_appointment(
        self,
        appointment: Appointment,
        patient: Patient,
        provider: Provider,
        payer: Payer,
        emr_service_id: Optional[str],
        data: BookingRequest,
    ) -> list[str]:
        """Create the EMR appointment; problems come back as warnings, never exceptions"""
        if not self.emr.is_configured:
            logger.info("📌 EMR sync skipped (no API key configured)")
            return []
        if not provider.intakeq_practitioner_id:
            self.repo.log_sync(
                self.db,
                "create_appointment",
                "failed",
                appointment_id=appointment.id,
                error_message="Provider has no EMR practitioner mapping",
            )
            return ["EMR sync skipped: provider has no EMR practitioner mapping"]

        try:
            client_id = await self._ensure_emr_client(patient, payer, data)
            pq_id = await self.emr.create_appointment(
                client_id, provider.intakeq_practitioner_id, emr_service_id, appointment.start_time
            )
        except IntakeQError as e:
            self.repo.log_sync(
                self.db,
                "create_appointment",
                "failed",
                appointment_id=appointment.id,
                error_message=str(e),
                attempts=e.attempts,
            )
            logger.error(f"❌ EMR sync failed for appointment {appointment.id}: {e}")
            return [f"EMR sync failed: {e}"]

        appointment.pq_appointment_id = pq_id
        self.db.commit()
        self.repo.log_sync(
            self.db,
            "create_appointment",
            "success",
            appointment_id=appointment.id,
            payload={"pq_appointment_id": pq_id},
        )
        return []

    # ========================================================================
    # BOOKING
    # ========================================================================

    def _check_conflicts(
        self,
        provider_id: str,
        start_utc: datetime,
        end_utc: datetime,
        patient_id: Optional[str] = None,
        exclude_appointment_id: Optional[str] = None,
    ) -> Optional[Appointment]:
        """
        Raise 409 CONFLICT when the interval overlaps a live appointment.

        An overlapping appointment the same patient created within the last
        DUPLICATE_WINDOW_SECONDS is a double submit: it is returned instead so
        the caller can answer with the existing booking.
        """
        conflicts = self.repo.find_overlapping(
            self.db, provider_id, start_utc, end_utc, exclude_appointment_id
        )
        if not conflicts:
            return None
        if patient_id:
            now = utc_now()
            for existing in conflicts:
                recent = existing.created_at and (now - existing.created_at).total_seconds() < DUPLICATE_WINDOW_SECONDS
                if existing.patient_id == patient_id and recent:
                    logger.warning(f"⚠️ Duplicate booking request, returning appointment {existing.id}")
                    return existing
        logger.warning(f"⚠️ Slot conflict for provider {provider_id} at {start_utc}")
        raise _error(409, "CONFLICT", "The selected time slot is no longer available")

    @staticmethod
    def _duplicate_response(appointment: Appointment) -> dict:
        provider = appointment.provider
        return {
            "success": True,
            "appointment_id": appointment.id,
            "pq_appointment_id": appointment.pq_appointment_id,
            "status": appointment.status,
            "start": utc_naive_to_local(appointment.start_time).isoformat(),
            "end": utc_naive_to_local(appointment.end_time).isoformat(),
            "duration_minutes": int((appointment.end_time - appointment.start_time).total_seconds() // 60),
            "provider": {"id": appointment.provider_id, "name": provider.full_name if provider else None},
            "patient": {"id": appointment.patient_id, "created": False, "match_type": "existing"},
            "message": "This appointment was just booked",
            "warnings": [],
            "is_duplicate": True,
            "idempotent_replay": False,
        }

    def _require_bookable(self, provider_id: str, payer_id: str, local_day: date):
        decision = self.bookability.is_bookable(provider_id, payer_id, local_day)
        if not decision.bookable:
            raise _error(
                422,
                "NOT_BOOKABLE",
                "Provider cannot be booked for this payer on the selected date",
                reasons=decision.reasons,
            )
        return decision.relationship

    async def _notify_booking(
        self,
        appointment: Appointment,
        patient: Patient,
        provider: Provider,
        payer: Payer,
        supervising_name: Optional[str],
        warnings: list[str],
    ) -> list[str]:
        if not config.RESEND_API_KEY:
            return []
        local_start = utc_naive_to_local(appointment.start_time)
        patient_name = f"{patient.first_name} {patient.last_name}"
        failures = []
        sends = [
            (
                "confirmation",
                patient.email,
                lambda: email_service.send_booking_confirmation(
                    patient.email, patient.first_name, provider.full_name, local_start, appointment.location_type
                ),
            ),
            (
                "contact mirror",
                config.BOOKING_CONTACT_EMAIL,
                lambda: email_service.send_booking_staff_notification(
                    patient_name,
                    patient.email or "",
                    patient.phone or "",
                    provider.full_name,
                    payer.name,
                    local_start,
                    appointment.id,
                    appointment.booking_source or "widget",
                    warnings,
                ),
            ),
            (
                "provider notice",
                provider.email,
                lambda: email_service.send_provider_booking_notice(
                    provider.email, provider.full_name, patient_name, local_start, supervising_name
                ),
            ),
        ]
        for label, recipient, send in sends:
            if not recipient:
                continue
            try:
                await send()
            except Exception as e:
                logger.error(f"❌ Booking {label} email failed for {appointment.id}: {e}")
                failures.append(f"Email ({label}) failed: {e}")
        return failures

    async def book(self, data: BookingRequest, idempotency_key: Optional[str] = None) -> dict:
        """Book an intake appointment end to end"""
        key = idempotency_key or data.idempotency_key
        if key:
            previous = self.repo.get_idempotency(self.db, key)
            if previous:
                logger.info(f"🔁 Idempotent replay for appointment {previous.appointment_id}")
                return {**previous.response_data, "idempotent_replay": True}

        payer = self.bookability.require_payer(data.payer_id)
        provider = self.bookability.require_provider(data.provider_id)

        start_utc = to_utc_naive(data.start)
        if start_utc <= utc_now():
            raise _error(422, "INVALID_REQUEST", "Appointment start must be in the future")
        local_day = utc_naive_to_local(start_utc).date()

        relationship = self._require_bookable(provider.id, payer.id, local_day)
        instance = self.resolver.resolve_intake(payer.id, require_mapping=True)
        end_utc = start_utc + timedelta(minutes=instance.duration_minutes)

        patient, match_type, created = self.resolve_patient(data, payer.id)
        duplicate = self._check_conflicts(provider.id, start_utc, end_utc, patient_id=patient.id)
        if duplicate:
            return self._duplicate_response(duplicate)

        if not patient.primary_provider_id:
            patient.primary_provider_id = provider.id
        self._track_referral(patient, data.referral_code)

        appointment = Appointment(
            patient_id=patient.id,
            provider_id=provider.id,
            service_instance_id=instance.service_instance_id,
            payer_id=payer.id,
            start_time=start_utc,
            end_time=end_utc,
            timezone=config.CLINIC_TIMEZONE,
            status="scheduled",
            appointment_type="intake",
            location_type=data.location_type,
            booking_source=data.booking_source,
            patient_info={
                "patient_id": patient.id,
                "first_name": patient.first_name,
                "last_name": patient.last_name,
                "email": patient.email,
                "phone": patient.phone,
                "match_type": match_type,
            },
            insurance_info={
                "payer_id": payer.id,
                "payer_name": payer.name,
                "member_id": data.member_id,
                "group_number": data.group_number,
                "relationship_type": relationship.relationship_type,
                "billing_provider_id": relationship.billing_provider_id,
                "rendering_provider_id": relationship.rendering_provider_id,
                "supervising_provider_id": relationship.supervising_provider_id,
                "supervision_level": relationship.supervision_level,
                "requires_co_visit": relationship.requires_co_visit,
            },
            notes=data.notes,
        )
        self.db.add(appointment)
        self.db.commit()
        self.db.refresh(appointment)
        logger.info(
            f"📅 Booked appointment {appointment.id}: provider {provider.id}, payer {payer.id}, "
            f"{start_utc.isoformat()} UTC ({relationship.relationship_type})"
        )

        warnings = await self._sync_new_appointment(
            appointment, patient, provider, payer, instance.emr_service_id, data
        )
        supervising_name = None
        if relationship.supervising_provider_id:
            supervisor = self.bookability.repo.get_provider(self.db, relationship.supervising_provider_id)
            supervising_name = supervisor.full_name if supervisor else None
        warnings += await self._notify_booking(
            appointment, patient, provider, payer, supervising_name, warnings
        )

        response = {
            "success": True,
            "appointment_id": appointment.id,
            "pq_appointment_id": appointment.pq_appointment_id,
            "status": appointment.status,
            "start": utc_naive_to_local(start_utc).isoformat(),
            "end": utc_naive_to_local(end_utc).isoformat(),
            "duration_minutes": instance.duration_minutes,
            "provider": {"id": provider.id, "name": provider.full_name},
            "patient": {"id": patient.id, "created": created, "match_type": match_type},
            "service": {
                "service_instance_id": instance.service_instance_id,
                "service_name": instance.service_name,
                "emr_service_id": instance.emr_service_id,
                "source": instance.source,
            },
            "relationship": relationship.to_dict(),
            "warnings": warnings,
            "is_duplicate": False,
            "idempotent_replay": False,
        }
        if key:
            self.repo.save_idempotency(
                self.db, key, appointment.id, data.model_dump(mode="json"), response
            )
        return response

    # ========================================================================
    # CHANGES
    # ========================================================================

    def get_appointment_for(self, user: AuthUser, appointment_id: str) -> Appointment:
        """Load an appointment the user may change: admins, or the appointment's provider"""
        appointment = self.repo.get_appointment(self.db, appointment_id)
        if not appointment:
            raise _error(404, "APPOINTMENT_NOT_FOUND", "Appointment not found")
        if is_admin(user, self.db):
            return appointment
        provider = appointment.provider
        if provider and provider.auth_user_id == user.id:
            return appointment
        raise HTTPException(status_code=403, detail="Not allowed to change this appointment")

    async def reschedule(self, appointment: Appointment, data: RescheduleRequest) -> dict:
        if appointment.status in ("cancelled", "no_show", "completed"):
            raise _error(409, "INVALID_STATUS", f"Cannot reschedule a {appointment.status} appointment")

        start_utc = to_utc_naive(data.start)
        if start_utc <= utc_now():
            raise _error(422, "INVALID_REQUEST", "Appointment start must be in the future")
        duration = appointment.end_time - appointment.start_time
        end_utc = start_utc + duration

        if appointment.payer_id:
            self._require_bookable(
                appointment.provider_id, appointment.payer_id, utc_naive_to_local(start_utc).date()
            )
        self._check_conflicts(
            appointment.provider_id, start_utc, end_utc, exclude_appointment_id=appointment.id
        )

        previous_start = appointment.start_time
        appointment.start_time = start_utc
        appointment.end_time = end_utc
        if data.reason:
            appointment.notes = f"{appointment.notes}\n{data.reason}".strip() if appointment.notes else data.reason
        self.db.commit()
        logger.info(f"🔄 Rescheduled appointment {appointment.id} from {previous_start} to {start_utc}")

        warnings = []
        if appointment.pq_appointment_id and self.emr.is_configured:
            try:
                await self.emr.reschedule_appointment(appointment.pq_appointment_id, start_utc, end_utc)
                self.repo.log_sync(self.db, "reschedule_appointment", "success", appointment.id)
            except IntakeQError as e:
                self.repo.log_sync(
                    self.db,
                    "reschedule_appointment",
                    "failed",
                    appointment.id,
                    error_message=str(e),
                    attempts=e.attempts,
                )
                warnings.append(f"EMR reschedule failed: {e}")

        patient = appointment.patient
        if config.RESEND_API_KEY and patient and patient.email:
            try:
                await email_service.send_appointment_changed(
                    patient.email,
                    patient.first_name,
                    appointment.provider.full_name,
                    utc_naive_to_local(start_utc),
                    reason=data.reason,
                )
            except Exception as e:
                logger.error(f"❌ Reschedule email failed for {appointment.id}: {e}")
                warnings.append(f"Email (reschedule) failed: {e}")

        return {
            "appointment_id": appointment.id,
            "status": appointment.status,
            "previous_start": utc_naive_to_local(previous_start).isoformat(),
            "start": utc_naive_to_local(start_utc).isoformat(),
            "end": utc_naive_to_local(end_utc).isoformat(),
            "warnings": warnings,
        }

    async def cancel(self, appointment: Appointment, data: CancelRequest) -> dict:
        if appointment.status == "cancelled":
            raise _error(409, "INVALID_STATUS", "Appointment is already cancelled")

        appointment.status = "cancelled"
        appointment.cancellation_reason = data.reason
        self.db.commit()
        logger.info(f"🗑️ Cancelled appointment {appointment.id}")

        warnings = []
        if appointment.pq_appointment_id and self.emr.is_configured:
            try:
                await self.emr.update_appointment_status(appointment.pq_appointment_id, "Cancelled")
                self.repo.log_sync(self.db, "cancel_appointment", "success", appointment.id)
            except IntakeQError as e:
                self.repo.log_sync(
                    self.db,
                    "cancel_appointment",
                    "failed",
                    appointment.id,
                    error_message=str(e),
                    attempts=e.attempts,
                )
                warnings.append(f"EMR cancellation failed: {e}")

        patient = appointment.patient
        if data.notify_patient and config.RESEND_API_KEY and patient and patient.email:
            try:
                await email_service.send_appointment_changed(
                    patient.email,
                    patient.first_name,
                    appointment.provider.full_name,
                    utc_naive_to_local(appointment.start_time),
                    cancelled=True,
                    reason=data.reason,
                )
            except Exception as e:
                logger.error(f"❌ Cancellation email failed for {appointment.id}: {e}")
                warnings.append(f"Email (cancellation) failed: {e}")

        return {"appointment_id": appointment.id, "status": appointment.status, "warnings": warnings}

    # ========================================================================
    # LISTS
    # ========================================================================

    def list_appointments(self, params: AppointmentListParams) -> list[Appointment]:
        try:
            validate_date_range(params.start_date, params.end_date)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        start_utc = local_to_utc_naive(params.start_date, time.min) if params.start_date else None
        end_utc = (
            local_to_utc_naive(params.end_date + timedelta(days=1), time.min)
            if params.end_date
            else None
        )
        return self.repo.list_appointments(
            self.db,
            start_utc=start_utc,
            end_utc=end_utc,
            status=params.status,
            provider_id=params.provider_id,
            payer_id=params.payer_id,
            patient_id=params.patient_id,
            limit=params.limit,
            offset=params.offset,
        )

    def list_for_provider(self, provider: Provider, params: AppointmentListParams) -> list[Appointment]:
        scoped = params.model_copy(update={"provider_id": provider.id})
        return self.list_appointments(scoped)

    # ========================================================================
    # EMR RECONCILIATION
    # ========================================================================

    async def sync_emr_statuses(self, from_date: Optional[date] = None) -> dict:
        """Mirror EMR-side cancellations and no-shows onto local appointments"""
        if not self.emr.is_configured:
            return {"checked": 0, "updated": 0, "failed": 0}
        status_map = {"Cancelled": "cancelled", "Canceled": "cancelled", "NoShow": "no_show"}
        checked = updated = failed = 0
        for appointment in self.repo.get_synced_appointments(self.db, from_date or utc_now().date()):
            checked += 1
            try:
                remote = await self.emr.get_appointment(appointment.pq_appointment_id)
            except IntakeQError as e:
                failed += 1
                logger.warning(f"⚠️ Could not fetch EMR appointment {appointment.pq_appointment_id}: {e}")
                continue
            new_status = status_map.get((remote or {}).get("Status"))
            if new_status and new_status != appointment.status:
                logger.info(f"🔄 Appointment {appointment.id} is {new_status} in the EMR")
                appointment.status = new_status
                updated += 1
        self.db.commit()
        if updated:
            logger.info(f"✅ EMR status sync updated {updated} appointments")
        return {"checked": checked, "updated": updated, "failed": failed}
