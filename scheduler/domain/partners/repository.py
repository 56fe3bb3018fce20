"""Partner repository - organizations, affiliations and patient activity"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ...models import (
    Appointment,
    Organization,
    Patient,
    PatientActivityLog,
    PatientOrganizationAffiliation,
)
from ...shared.timeutils import clinic_today


class PartnerRepository:
    """Repository for partner data access"""

    # ---- organizations ----

    @staticmethod
    def list_organizations(
        db: Session,
        search: Optional[str] = None,
        status: Optional[str] = None,
        org_type: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Organization], int]:
        query = db.query(Organization)
        if search:
            query = query.filter(Organization.name.ilike(f"%{search}%"))
        if status:
            query = query.filter(Organization.status == status)
        if org_type:
            query = query.filter(Organization.type == org_type)
        total = query.count()
        rows = query.order_by(Organization.name).offset(offset).limit(limit).all()
        return rows, total

    @staticmethod
    def get_organization_by_name(db: Session, name: str) -> Optional[Organization]:
        return (
            db.query(Organization)
            .filter(func.lower(Organization.name) == name.strip().lower())
            .first()
        )

    @staticmethod
    def create_organization(db: Session, **fields) -> Organization:
        organization = Organization(**fields)
        db.add(organization)
        db.commit()
        db.refresh(organization)
        return organization

    # ---- affiliations ----

    @staticmethod
    def get_affiliation(
        db: Session, patient_id: str, organization_id: str
    ) -> Optional[PatientOrganizationAffiliation]:
        return (
            db.query(PatientOrganizationAffiliation)
            .filter(
                PatientOrganizationAffiliation.patient_id == patient_id,
                PatientOrganizationAffiliation.organization_id == organization_id,
            )
            .first()
        )

    @staticmethod
    def ensure_affiliation(
        db: Session,
        patient_id: str,
        organization_id: str,
        partner_user_id: Optional[str] = None,
        consent_on_file: bool = False,
    ) -> tuple[PatientOrganizationAffiliation, bool]:
        """Existing affiliation or a new referral one; the caller commits"""
        affiliation = PartnerRepository.get_affiliation(db, patient_id, organization_id)
        if affiliation:
            return affiliation, False
        affiliation = PatientOrganizationAffiliation(
            patient_id=patient_id,
            organization_id=organization_id,
            affiliation_type="referral",
            status="active",
            consent_on_file=consent_on_file,
            roi_consent_date=clinic_today() if consent_on_file else None,
            primary_contact_user_id=partner_user_id,
            start_date=clinic_today(),
        )
        db.add(affiliation)
        return affiliation, True

    @staticmethod
    def list_affiliated_patients(
        db: Session,
        organization_id: str,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> list[tuple[Patient, PatientOrganizationAffiliation]]:
        query = (
            db.query(Patient, PatientOrganizationAffiliation)
            .join(
                PatientOrganizationAffiliation,
                PatientOrganizationAffiliation.patient_id == Patient.id,
            )
            .filter(PatientOrganizationAffiliation.organization_id == organization_id)
        )
        if status:
            query = query.filter(PatientOrganizationAffiliation.status == status)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(
                or_(
                    Patient.first_name.ilike(pattern),
                    Patient.last_name.ilike(pattern),
                    Patient.email.ilike(pattern),
                )
            )
        return query.order_by(Patient.last_name, Patient.first_name).all()

    @staticmethod
    def next_appointments(db: Session, patient_ids: list[str], after: datetime) -> dict[str, Appointment]:
        """Earliest upcoming scheduled appointment per patient"""
        if not patient_ids:
            return {}
        rows = (
            db.query(Appointment)
            .filter(
                Appointment.patient_id.in_(patient_ids),
                Appointment.status.in_(("scheduled", "confirmed")),
                Appointment.start_time >= after,
            )
            .order_by(Appointment.start_time)
            .all()
        )
        upcoming: dict[str, Appointment] = {}
        for appointment in rows:
            upcoming.setdefault(appointment.patient_id, appointment)
        return upcoming

    @staticmethod
    def find_patient_by_email(db: Session, email: str) -> Optional[Patient]:
        return (
            db.query(Patient)
            .filter(func.lower(Patient.email) == email.strip().lower())
            .order_by(Patient.created_at)
            .first()
        )

    # ---- activity ----

    @staticmethod
    def add_activity(
        db: Session,
        patient_id: str,
        activity_type: str,
        title: str,
        description: Optional[str] = None,
        actor_type: Optional[str] = None,
        actor_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> PatientActivityLog:
        entry = PatientActivityLog(
            patient_id=patient_id,
            activity_type=activity_type,
            title=title,
            description=description,
            actor_type=actor_type,
            actor_id=actor_id,
            activity_metadata=metadata,
        )
        db.add(entry)
        return entry

    @staticmethod
    def list_activity(db: Session, patient_id: str, limit: int = 50) -> list[PatientActivityLog]:
        return (
            db.query(PatientActivityLog)
            .filter(PatientActivityLog.patient_id == patient_id)
            .order_by(PatientActivityLog.created_at.desc())
            .limit(limit)
            .all()
        )
