"""Booking repository - patients, appointments and idempotency records"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ...models import Appointment, IdempotencyRequest, IntakeqSyncLog, PartnerUser, Patient
from ..availability.repository import INACTIVE_APPOINTMENT_STATUSES


class BookingRepository:
    """Repository for booking data access"""

    @staticmethod
    def get_idempotency(db: Session, key: str) -> Optional[IdempotencyRequest]:
        return db.query(IdempotencyRequest).filter(IdempotencyRequest.key == key).first()

    @staticmethod
    def save_idempotency(
        db: Session, key: str, appointment_id: str, request_payload: dict, response_data: dict
    ) -> IdempotencyRequest:
        record = IdempotencyRequest(
            key=key,
            appointment_id=appointment_id,
            request_payload=request_payload,
            response_data=response_data,
        )
        db.add(record)
        db.commit()
        return record

    @staticmethod
    def get_patient(db: Session, patient_id: str) -> Optional[Patient]:
        return db.query(Patient).filter(Patient.id == patient_id).first()

    @staticmethod
    def find_patients_by_identity(
        db: Session, email: str, first_name: str, last_name: str
    ) -> list[Patient]:
        """Case-insensitive match on email and both names"""
        return (
            db.query(Patient)
            .filter(
                func.lower(Patient.email) == email.lower(),
                func.lower(Patient.first_name) == first_name.strip().lower(),
                func.lower(Patient.last_name) == last_name.strip().lower(),
            )
            .order_by(Patient.created_at)
            .all()
        )

    @staticmethod
    def get_partner_user_by_email(db: Session, email: str) -> Optional[PartnerUser]:
        return (
            db.query(PartnerUser)
            .filter(
                func.lower(PartnerUser.email) == email.strip().lower(),
                PartnerUser.is_active.is_(True),
            )
            .first()
        )

    @staticmethod
    def get_appointment(db: Session, appointment_id: str) -> Optional[Appointment]:
        return (
            db.query(Appointment)
            .options(joinedload(Appointment.patient), joinedload(Appointment.provider))
            .filter(Appointment.id == appointment_id)
            .first()
        )

    @staticmethod
    def find_overlapping(
        db: Session,
        provider_id: str,
        start_utc: datetime,
        end_utc: datetime,
        exclude_appointment_id: Optional[str] = None,
    ) -> list[Appointment]:
        query = db.query(Appointment).filter(
            Appointment.provider_id == provider_id,
            Appointment.status.notin_(INACTIVE_APPOINTMENT_STATUSES),
            Appointment.start_time < end_utc,
            Appointment.end_time > start_utc,
        )
        if exclude_appointment_id:
            query = query.filter(Appointment.id != exclude_appointment_id)
        return query.order_by(Appointment.start_time).all()

    @staticmethod
    def list_appointments(
        db: Session,
        start_utc: Optional[datetime] = None,
        end_utc: Optional[datetime] = None,
        status: Optional[str] = None,
        provider_id: Optional[str] = None,
        payer_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Appointment]:
        query = db.query(Appointment)
        if start_utc:
            query = query.filter(Appointment.start_time >= start_utc)
        if end_utc:
            query = query.filter(Appointment.start_time < end_utc)
        if status:
            query = query.filter(Appointment.status == status)
        if provider_id:
            query = query.filter(Appointment.provider_id == provider_id)
        if payer_id:
            query = query.filter(Appointment.payer_id == payer_id)
        if patient_id:
            query = query.filter(Appointment.patient_id == patient_id)
        return query.order_by(Appointment.start_time).offset(offset).limit(limit).all()

    @staticmethod
    def get_synced_appointments(db: Session, from_date: date) -> list[Appointment]:
        """Future appointments that have an EMR id and are still active locally"""
        return (
            db.query(Appointment)
            .filter(
                Appointment.pq_appointment_id.isnot(None),
                Appointment.status.notin_(INACTIVE_APPOINTMENT_STATUSES),
                Appointment.start_time >= datetime.combine(from_date, datetime.min.time()),
            )
            .all()
        )

    @staticmethod
    def log_sync(
        db: Session,
        operation: str,
        status: str,
        appointment_id: Optional[str] = None,
        error_message: Optional[str] = None,
        payload: Optional[dict] = None,
        attempts: int = 1,
    ) -> IntakeqSyncLog:
        entry = IntakeqSyncLog(
            appointment_id=appointment_id,
            operation=operation,
            status=status,
            error_message=error_message,
            payload=payload,
            attempts=attempts,
        )
        db.add(entry)
        db.commit()
        return entry
