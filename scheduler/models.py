import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_uuid():
    """Generate a string UUID primary key"""
    return str(uuid.uuid4())


class Provider(Base):
    __tablename__ = "providers"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    title = Column(String(50), nullable=True)  # MD, DO, PMHNP
    role = Column(String(50), nullable=True)  # attending, resident, nurse_practitioner
    email = Column(String(255), nullable=True, index=True)
    auth_user_id = Column(String(255), nullable=True, unique=True, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_bookable = Column(Boolean, default=True, nullable=False)
    accepts_new_patients = Column(Boolean, default=True, nullable=False)
    list_on_provider_page = Column(Boolean, default=True, nullable=False)
    telehealth_enabled = Column(Boolean, default=True, nullable=False)
    languages_spoken = Column(JSON, nullable=True)  # ["English", "Spanish"]
    intakeq_practitioner_id = Column(String(100), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    contracts = relationship("ProviderPayerNetwork", back_populates="provider")
    availability = relationship(
        "ProviderAvailability", back_populates="provider", cascade="all, delete-orphan"
    )

    @property
    def full_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return f"{name}, {self.title}" if self.title else name


class Payer(Base):
    __tablename__ = "payers"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False, index=True)
    payer_type = Column(String(50), nullable=True)  # Medicaid, Commercial, Self-pay
    state = Column(String(2), nullable=True)
    status_code = Column(String(50), nullable=True)  # approved, pending, not_accepted
    effective_date = Column(Date, nullable=True)
    requires_attending = Column(Boolean, default=False, nullable=False)
    allows_supervised = Column(Boolean, default=False, nullable=False)
    supervision_level = Column(String(50), nullable=True)
    requires_individual_contract = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    contracts = relationship("ProviderPayerNetwork", back_populates="payer")


class ProviderPayerNetwork(Base):
    """Direct contract between a provider and a payer"""

    __tablename__ = "provider_payer_networks"
    __table_args__ = (UniqueConstraint("provider_id", "payer_id", name="uq_provider_payer"),)

    id = Column(String(36), primary_key=True, default=generate_uuid)
    provider_id = Column(String(36), ForeignKey("providers.id"), nullable=False, index=True)
    payer_id = Column(String(36), ForeignKey("payers.id"), nullable=False, index=True)
    effective_date = Column(Date, nullable=True)
    expiration_date = Column(Date, nullable=True)
    bookable_from_date = Column(Date, nullable=True)  # Defaults to effective_date when null
    status = Column(String(50), default="in_network", nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    provider = relationship("Provider", back_populates="contracts")
    payer = relationship("Payer", back_populates="contracts")


class SupervisionRelationship(Base):
    __tablename__ = "supervision_relationships"
    __table_args__ = (
        Index("ix_supervision_supervisee_payer", "supervisee_provider_id", "payer_id"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    supervisor_provider_id = Column(String(36), ForeignKey("providers.id"), nullable=False)
    supervisee_provider_id = Column(String(36), ForeignKey("providers.id"), nullable=False)
    payer_id = Column(String(36), ForeignKey("payers.id"), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    # sign_off_only, first_visit_in_person, co_visit_required
    supervision_level = Column(String(50), nullable=True)
    supervision_type = Column(String(50), default="general", nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    supervisor = relationship("Provider", foreign_keys=[supervisor_provider_id])
    supervisee = relationship("Provider", foreign_keys=[supervisee_provider_id])
    payer = relationship("Payer")


class ProviderAvailability(Base):
    """Recurring weekly availability block"""

    __tablename__ = "provider_availability"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    provider_id = Column(String(36), ForeignKey("providers.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday ... 6 = Saturday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_recurring = Column(Boolean, default=True, nullable=False)
    effective_date = Column(Date, nullable=True)
    expiration_date = Column(Date, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    provider = relationship("Provider", back_populates="availability")


class ProviderAvailabilityException(Base):
    """Date-specific change to a provider's weekly schedule (day off, blocked hours, custom hours)"""

    __tablename__ = "provider_availability_exceptions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    provider_id = Column(String(36), ForeignKey("providers.id"), nullable=False, index=True)
    exception_date = Column(Date, nullable=False, index=True)
    # unavailable, vacation, partial_block, custom_hours
    exception_type = Column(String(30), nullable=False, default="unavailable")
    # Null times on unavailable/vacation mean the whole day
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class ProviderAvailabilityCache(Base):
    """Precomputed open slots for one provider, service instance and date"""

    __tablename__ = "provider_availability_cache"
    __table_args__ = (
        UniqueConstraint(
            "provider_id", "service_instance_id", "service_date", name="uq_availability_cache_day"
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    provider_id = Column(String(36), ForeignKey("providers.id"), nullable=False, index=True)
    service_instance_id = Column(
        String(36), ForeignKey("service_instances.id"), nullable=False, index=True
    )
    service_date = Column(Date, nullable=False, index=True)
    # [{"start_time": "09:00", "end_time": "10:00", "available": true, "duration_minutes": 60}]
    available_slots = Column(JSON, nullable=False, default=list)
    last_synced_at = Column(DateTime, server_default=func.now())


class Service(Base):
    __tablename__ = "services"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    duration_minutes = Column(Integer, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    instances = relationship("ServiceInstance", back_populates="service")


class ServiceInstance(Base):
    """A service offered under a specific payer (or globally when payer_id is null)"""

    __tablename__ = "service_instances"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    service_id = Column(String(36), ForeignKey("services.id"), nullable=False)
    payer_id = Column(String(36), ForeignKey("payers.id"), nullable=True, index=True)
    location = Column(String(100), default="Telehealth", nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    service = relationship("Service", back_populates="instances")
    integrations = relationship("ServiceInstanceIntegration", back_populates="service_instance")


class ServiceInstanceIntegration(Base):
    """External system id for a service instance"""

    __tablename__ = "service_instance_integrations"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    service_instance_id = Column(
        String(36), ForeignKey("service_instances.id"), nullable=False, index=True
    )
    system = Column(String(50), nullable=False)  # intakeq, practiceq
    external_id = Column(String(255), nullable=False)

    service_instance = relationship("ServiceInstance", back_populates="integrations")


class Patient(Base):
    __tablename__ = "patients"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(50), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    primary_payer_id = Column(String(36), ForeignKey("payers.id"), nullable=True)
    primary_provider_id = Column(String(36), ForeignKey("providers.id"), nullable=True)
    intakeq_client_id = Column(String(100), nullable=True)
    status = Column(String(50), default="active", nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    primary_provider = relationship("Provider", foreign_keys=[primary_provider_id])
    appointments = relationship("Appointment", back_populates="patient")


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (Index("ix_appointments_provider_start", "provider_id", "start_time"),)

    id = Column(String(36), primary_key=True, default=generate_uuid)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False, index=True)
    provider_id = Column(String(36), ForeignKey("providers.id"), nullable=False)
    service_instance_id = Column(String(36), ForeignKey("service_instances.id"), nullable=True)
    payer_id = Column(String(36), ForeignKey("payers.id"), nullable=True)
    # Stored as naive UTC
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    timezone = Column(String(64), nullable=True)
    status = Column(String(50), default="scheduled", nullable=False)
    appointment_type = Column(String(50), nullable=True)
    location_type = Column(String(50), default="telehealth", nullable=True)
    booking_source = Column(String(50), default="widget", nullable=True)
    patient_info = Column(JSON, nullable=True)
    insurance_info = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)
    pq_appointment_id = Column(String(100), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patient = relationship("Patient", back_populates="appointments")
    provider = relationship("Provider")
    payer = relationship("Payer")


class IdempotencyRequest(Base):
    __tablename__ = "idempotency_requests"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    key = Column(String(255), unique=True, nullable=False, index=True)
    appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=True)
    request_payload = Column(JSON, nullable=True)
    response_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False, unique=True)
    type = Column(String(50), nullable=True)  # treatment_center, shelter, clinic
    status = Column(String(50), default="active", nullable=False)
    city = Column(String(100), nullable=True)
    state = Column(String(2), nullable=True)
    phone = Column(String(50), nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class PartnerUser(Base):
    __tablename__ = "partner_users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    auth_user_id = Column(String(255), nullable=True, unique=True, index=True)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False)
    full_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=False)
    # partner_admin, partner_case_manager, partner_referrer
    role = Column(String(50), default="partner_referrer", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    organization = relationship("Organization")


class PatientOrganizationAffiliation(Base):
    __tablename__ = "patient_organization_affiliations"
    __table_args__ = (
        UniqueConstraint("patient_id", "organization_id", name="uq_patient_organization"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False, index=True)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    affiliation_type = Column(String(50), default="referral", nullable=False)
    status = Column(String(50), default="active", nullable=False)
    consent_on_file = Column(Boolean, default=False, nullable=False)
    roi_consent_date = Column(Date, nullable=True)
    primary_contact_user_id = Column(String(36), ForeignKey("partner_users.id"), nullable=True)
    start_date = Column(Date, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    patient = relationship("Patient")
    organization = relationship("Organization")


class PatientActivityLog(Base):
    __tablename__ = "patient_activity_log"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False, index=True)
    activity_type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    actor_type = Column(String(50), nullable=True)  # partner, admin, system, patient
    actor_id = Column(String(255), nullable=True)
    activity_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class AdminUser(Base):
    __tablename__ = "admin_users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    email = Column(String(255), unique=True, nullable=False)
    auth_user_id = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class SchedulerAuditLog(Base):
    __tablename__ = "scheduler_audit_logs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    actor_user_id = Column(String(255), nullable=True)
    actor_email = Column(String(255), nullable=True)
    action = Column(String(100), nullable=False)
    entity_type = Column(String(100), nullable=False)
    entity_id = Column(String(36), nullable=True, index=True)
    before = Column(JSON, nullable=True)
    after = Column(JSON, nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class IntakeqSyncLog(Base):
    __tablename__ = "intakeq_sync_logs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=True, index=True)
    operation = Column(String(50), nullable=False)  # create_client, create_appointment, ...
    status = Column(String(20), nullable=False)  # success, failed
    error_message = Column(Text, nullable=True)
    payload = Column(JSON, nullable=True)
    attempts = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
