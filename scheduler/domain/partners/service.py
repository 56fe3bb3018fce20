"""Partner service - organizations, partner dashboard and referrals"""

import logging
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...models import Patient, PartnerUser, Provider
from ...shared.timeutils import utc_naive_to_local, utc_now
from .repository import PartnerRepository
from .schemas import ASSIGNING_ROLES, AssignProviderRequest, OrganizationCreate, ReferralCreate

logger = logging.getLogger(__name__)


def patient_summary(patient: Patient) -> dict:
    return {
        "id": patient.id,
        "first_name": patient.first_name,
        "last_name": patient.last_name,
        "email": patient.email,
        "phone": patient.phone,
        "date_of_birth": patient.date_of_birth.isoformat() if patient.date_of_birth else None,
        "status": patient.status,
    }


def provider_summary(provider: Optional[Provider]) -> Optional[dict]:
    if provider is None:
        return None
    return {"id": provider.id, "name": provider.full_name, "title": provider.title}


class PartnerService:
    """Service layer for partner business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = PartnerRepository()

    # ========================================================================
    # ORGANIZATIONS (admin)
    # ========================================================================

    def list_organizations(
        self,
        search: Optional[str] = None,
        status: Optional[str] = None,
        org_type: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict:
        rows, total = self.repo.list_organizations(self.db, search, status, org_type, limit, offset)
        return {"organizations": rows, "total": total, "limit": limit, "offset": offset}

    def create_organization(self, data: OrganizationCreate):
        if self.repo.get_organization_by_name(self.db, data.name):
            raise HTTPException(
                status_code=409,
                detail={"code": "DUPLICATE_ORGANIZATION", "message": f"{data.name} already exists"},
            )
        organization = self.repo.create_organization(self.db, **data.model_dump())
        logger.info(f"🏢 Created organization {organization.id} ({organization.name})")
        return organization

    # ========================================================================
    # PARTNER DASHBOARD
    # ========================================================================

    def list_patients(
        self, partner_user: PartnerUser, status: Optional[str] = None, search: Optional[str] = None
    ) -> dict:
        """Patients affiliated with the partner's organization and their next appointment"""
        rows = self.repo.list_affiliated_patients(
            self.db, partner_user.organization_id, status, search
        )
        upcoming = self.repo.next_appointments(self.db, [p.id for p, _ in rows], utc_now())

        patients = []
        for patient, affiliation in rows:
            appointment = upcoming.get(patient.id)
            next_appointment = None
            if appointment:
                next_appointment = {
                    "id": appointment.id,
                    "start": utc_naive_to_local(appointment.start_time).isoformat(),
                    "status": appointment.status,
                    "provider": provider_summary(appointment.provider),
                }
            patients.append(
                {
                    **patient_summary(patient),
                    "affiliation": {
                        "id": affiliation.id,
                        "type": affiliation.affiliation_type,
                        "status": affiliation.status,
                        "consent_on_file": affiliation.consent_on_file,
                        "start_date": affiliation.start_date.isoformat() if affiliation.start_date else None,
                    },
                    "primary_provider": provider_summary(patient.primary_provider),
                    "next_appointment": next_appointment,
                }
            )
        return {
            "organization_id": partner_user.organization_id,
            "total": len(patients),
            "patients": patients,
        }

    def refer_patient(self, partner_user: PartnerUser, data: ReferralCreate) -> dict:
        """Find or create the patient by email and affiliate them with the organization"""
        patient = self.repo.find_patient_by_email(self.db, data.email)
        patient_created = patient is None
        if patient_created:
            patient = Patient(
                first_name=data.first_name,
                last_name=data.last_name,
                email=data.email,
                phone=data.phone,
                date_of_birth=data.date_of_birth,
                status="active",
            )
            self.db.add(patient)
            self.db.flush()

        affiliation, affiliation_created = self.repo.ensure_affiliation(
            self.db,
            patient.id,
            partner_user.organization_id,
            partner_user.id,
            consent_on_file=data.consent_on_file,
        )
        if not affiliation_created and affiliation.status != "active":
            affiliation.status = "active"

        self.repo.add_activity(
            self.db,
            patient.id,
            activity_type="referral",
            title=f"Referred by {partner_user.full_name or partner_user.email}",
            description=data.notes,
            actor_type="partner",
            actor_id=partner_user.id,
            metadata={"organization_id": partner_user.organization_id},
        )
        self.db.commit()
        logger.info(
            f"🤝 Partner user {partner_user.id} referred patient {patient.id} "
            f"(patient created: {patient_created})"
        )
        return {
            "patient": patient_summary(patient),
            "patient_created": patient_created,
            "affiliation_id": affiliation.id,
            "affiliation_created": affiliation_created,
        }

    def assign_provider(
        self, partner_user: PartnerUser, patient_id: str, data: AssignProviderRequest
    ) -> dict:
        if partner_user.role not in ASSIGNING_ROLES:
            raise HTTPException(
                status_code=403, detail="Only partner admins and case managers can assign providers"
            )

        affiliation = self.repo.get_affiliation(self.db, patient_id, partner_user.organization_id)
        if not affiliation or affiliation.status != "active":
            raise HTTPException(
                status_code=403, detail="Patient is not actively affiliated with your organization"
            )

        provider = (
            self.db.query(Provider)
            .filter(Provider.id == data.provider_id, Provider.is_active.is_(True))
            .first()
        )
        if not provider:
            raise HTTPException(
                status_code=404,
                detail={"code": "INVALID_PROVIDER", "message": "Provider not found or inactive"},
            )

        patient = affiliation.patient
        previous_provider = patient.primary_provider
        patient.primary_provider_id = provider.id
        self.repo.add_activity(
            self.db,
            patient.id,
            activity_type="provider_assigned",
            title=f"Assigned to {provider.full_name}",
            description=data.note,
            actor_type="partner",
            actor_id=partner_user.id,
            metadata={
                "provider_id": provider.id,
                "previous_provider_id": previous_provider.id if previous_provider else None,
            },
        )
        self.db.commit()
        self.db.refresh(patient)
        logger.info(f"👤 Patient {patient.id} assigned to provider {provider.id} by {partner_user.id}")
        return {
            "patient": patient_summary(patient),
            "provider": provider_summary(provider),
            "previous_provider": provider_summary(previous_provider),
        }

    def patient_activity(self, partner_user: PartnerUser, patient_id: str) -> list[dict]:
        affiliation = self.repo.get_affiliation(self.db, patient_id, partner_user.organization_id)
        if not affiliation:
            raise HTTPException(status_code=404, detail="Patient not found")
        return [
            {
                "id": entry.id,
                "activity_type": entry.activity_type,
                "title": entry.title,
                "description": entry.description,
                "actor_type": entry.actor_type,
                "metadata": entry.activity_metadata,
                "created_at": entry.created_at.isoformat() if entry.created_at else None,
            }
            for entry in self.repo.list_activity(self.db, patient_id)
        ]
