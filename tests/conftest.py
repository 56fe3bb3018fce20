import os
import sys
import time as time_module
from datetime import date, datetime, time, timedelta

# Configure the app for tests before anything imports scheduler.config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SUPABASE_JWT_SECRET"] = "test-secret"
os.environ["ADMIN_EMAILS"] = "admin@trymoonlit.com"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["CACHE_ENABLED"] = "false"
os.environ["BACKGROUND_JOBS_ENABLED"] = "false"
os.environ["SECURITY_HEADERS_ENABLED"] = "true"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"
os.environ["INTAKEQ_API_KEY"] = ""
os.environ["RESEND_API_KEY"] = ""
os.environ["CLINIC_TIMEZONE"] = "America/Denver"

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from scheduler import models
from scheduler.database import Base, SessionLocal, engine, get_db
from scheduler.main import app
from scheduler.shared.timeutils import clinic_today


@pytest.fixture()
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def make_token(sub: str, email: str = None) -> str:
    claims = {
        "sub": sub,
        "email": email,
        "aud": "authenticated",
        "role": "authenticated",
        "exp": int(time_module.time()) + 3600,
    }
    return jwt.encode(claims, "test-secret", algorithm="HS256")


def auth_headers(sub: str, email: str = None) -> dict:
    return {"Authorization": f"Bearer {make_token(sub, email)}"}


@pytest.fixture()
def admin_headers():
    return auth_headers("admin-user", "admin@trymoonlit.com")


# ============================================================================
# FACTORIES
# ============================================================================


def today() -> date:
    return clinic_today()


def add_provider(db, first_name="Ada", last_name="Lovelace", **kwargs):
    provider = models.Provider(first_name=first_name, last_name=last_name, **kwargs)
    db.add(provider)
    db.commit()
    return provider


def add_payer(db, name="Utah Medicaid", **kwargs):
    payer = models.Payer(name=name, **kwargs)
    db.add(payer)
    db.commit()
    return payer


def add_contract(db, provider, payer, effective_date=None, **kwargs):
    contract = models.ProviderPayerNetwork(
        provider_id=provider.id,
        payer_id=payer.id,
        effective_date=effective_date or today() - timedelta(days=30),
        **kwargs,
    )
    db.add(contract)
    db.commit()
    return contract


def add_supervision(db, supervisor, supervisee, payer, start_date=None, **kwargs):
    relationship = models.SupervisionRelationship(
        supervisor_provider_id=supervisor.id,
        supervisee_provider_id=supervisee.id,
        payer_id=payer.id,
        start_date=start_date or today() - timedelta(days=30),
        **kwargs,
    )
    db.add(relationship)
    db.commit()
    return relationship


def add_intake_instance(db, payer=None, duration_minutes=60, emr_service_id="svc-intake"):
    service = models.Service(name="New Patient Intake", duration_minutes=duration_minutes)
    db.add(service)
    db.flush()
    instance = models.ServiceInstance(service_id=service.id, payer_id=payer.id if payer else None)
    db.add(instance)
    db.flush()
    if emr_service_id:
        db.add(
            models.ServiceInstanceIntegration(
                service_instance_id=instance.id, system="intakeq", external_id=emr_service_id
            )
        )
    db.commit()
    return instance


def add_weekly_availability(db, provider, start=time(9, 0), end=time(12, 0)):
    for weekday in range(7):
        db.add(
            models.ProviderAvailability(
                provider_id=provider.id, day_of_week=weekday, start_time=start, end_time=end
            )
        )
    db.commit()


def add_patient(db, **kwargs):
    values = {"first_name": "Grace", "last_name": "Hopper", "email": "grace@example.com"}
    values.update(kwargs)
    patient = models.Patient(**values)
    db.add(patient)
    db.commit()
    return patient


def local_start(days_ahead: int = 7, hour: int = 10) -> datetime:
    """Naive clinic-local datetime, which the booking API reads as clinic time"""
    return datetime.combine(today() + timedelta(days=days_ahead), time(hour, 0))


@pytest.fixture()
def bookable_setup(db):
    """A directly contracted provider with an intake service and weekly availability"""
    payer = add_payer(db)
    provider = add_provider(
        db,
        email="ada@trymoonlit.com",
        auth_user_id="provider-ada",
        intakeq_practitioner_id="pract-1",
    )
    add_contract(db, provider, payer)
    instance = add_intake_instance(db, payer)
    add_weekly_availability(db, provider)
    return {"payer": payer, "provider": provider, "instance": instance}
