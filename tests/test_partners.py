from datetime import timedelta

import pytest

from conftest import add_patient, add_provider, auth_headers, local_start
from scheduler import models
from scheduler.shared.timeutils import to_utc_naive


@pytest.fixture()
def organization(db):
    organization = models.Organization(name="Fourth Street Clinic", type="clinic")
    db.add(organization)
    db.commit()
    return organization


def add_partner_user(db, organization, role="partner_case_manager", auth_user_id="partner-1"):
    partner_user = models.PartnerUser(
        organization_id=organization.id,
        auth_user_id=auth_user_id,
        email=f"{auth_user_id}@fourthstreet.org",
        full_name="Casey Manager",
        role=role,
    )
    db.add(partner_user)
    db.commit()
    return partner_user


def partner_headers(partner_user):
    return auth_headers(partner_user.auth_user_id, partner_user.email)


def refer(client, partner_user, **overrides):
    body = {"first_name": "Grace", "last_name": "Hopper", "email": "grace@example.com", "consent_on_file": True}
    body.update(overrides)
    return client.post("/api/partner-dashboard/patients", json=body, headers=partner_headers(partner_user))


def test_refer_new_patient(client, db, organization):
    partner_user = add_partner_user(db, organization)
    response = refer(client, partner_user, notes="Needs intake this week")

    assert response.status_code == 201
    body = response.json()
    assert body["patient_created"] is True
    assert body["affiliation_created"] is True
    activity = db.query(models.PatientActivityLog).one()
    assert activity.activity_type == "referral"
    assert activity.title == "Referred by Casey Manager"


def test_refer_existing_patient_reuses_record(client, db, organization):
    existing = add_patient(db)
    partner_user = add_partner_user(db, organization)
    body = refer(client, partner_user, email="GRACE@example.com").json()
    assert body["patient"]["id"] == existing.id
    assert body["patient_created"] is False


def test_non_partner_is_forbidden(client, db):
    response = client.get(
        "/api/partner-dashboard/patients", headers=auth_headers("nobody", "nobody@example.com")
    )
    assert response.status_code == 403


def test_list_patients_shows_next_appointment(client, db, organization):
    partner_user = add_partner_user(db, organization)
    provider = add_provider(db)
    patient_id = refer(client, partner_user).json()["patient"]["id"]
    start = to_utc_naive(local_start(days_ahead=2))
    db.add(
        models.Appointment(
            patient_id=patient_id,
            provider_id=provider.id,
            start_time=start,
            end_time=start + timedelta(hours=1),
        )
    )
    db.commit()

    body = client.get("/api/partner-dashboard/patients", headers=partner_headers(partner_user)).json()
    assert body["total"] == 1
    patient = body["patients"][0]
    assert patient["affiliation"]["consent_on_file"] is True
    assert patient["next_appointment"]["provider"]["id"] == provider.id


def test_list_patients_is_scoped_to_organization(client, db, organization):
    other_org = models.Organization(name="Other Shelter", type="shelter")
    db.add(other_org)
    db.commit()
    ours = add_partner_user(db, organization)
    theirs = add_partner_user(db, other_org, auth_user_id="partner-2")
    refer(client, ours)

    body = client.get("/api/partner-dashboard/patients", headers=partner_headers(theirs)).json()
    assert body["total"] == 0


def test_case_manager_assigns_provider(client, db, organization):
    partner_user = add_partner_user(db, organization)
    provider = add_provider(db)
    patient_id = refer(client, partner_user).json()["patient"]["id"]

    response = client.post(
        f"/api/partner-dashboard/patients/{patient_id}/assign-provider",
        json={"provider_id": provider.id, "note": "Prefers afternoons"},
        headers=partner_headers(partner_user),
    )
    assert response.status_code == 200
    assert response.json()["provider"]["id"] == provider.id
    assert response.json()["previous_provider"] is None

    activity = client.get(
        f"/api/partner-dashboard/patients/{patient_id}/activity", headers=partner_headers(partner_user)
    ).json()
    assert {a["activity_type"] for a in activity} == {"referral", "provider_assigned"}


def test_referrer_cannot_assign_provider(client, db, organization):
    partner_user = add_partner_user(db, organization, role="partner_referrer")
    provider = add_provider(db)
    patient_id = refer(client, partner_user).json()["patient"]["id"]

    response = client.post(
        f"/api/partner-dashboard/patients/{patient_id}/assign-provider",
        json={"provider_id": provider.id},
        headers=partner_headers(partner_user),
    )
    assert response.status_code == 403


def test_assign_inactive_provider_is_404(client, db, organization):
    partner_user = add_partner_user(db, organization)
    provider = add_provider(db, is_active=False)
    patient_id = refer(client, partner_user).json()["patient"]["id"]

    response = client.post(
        f"/api/partner-dashboard/patients/{patient_id}/assign-provider",
        json={"provider_id": provider.id},
        headers=partner_headers(partner_user),
    )
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "INVALID_PROVIDER"


def test_activity_for_unaffiliated_patient_is_404(client, db, organization):
    partner_user = add_partner_user(db, organization)
    patient = add_patient(db)
    response = client.get(
        f"/api/partner-dashboard/patients/{patient.id}/activity", headers=partner_headers(partner_user)
    )
    assert response.status_code == 404


def test_admin_creates_and_lists_organizations(client, db, admin_headers):
    created = client.post(
        "/api/admin/organizations",
        json={"name": "Valley Recovery", "type": "treatment_center", "state": "ut", "phone": "8015550100"},
        headers=admin_headers,
    )
    duplicate = client.post("/api/admin/organizations", json={"name": "Valley Recovery"}, headers=admin_headers)

    assert created.status_code == 201
    assert created.json()["state"] == "UT"
    assert created.json()["phone"] == "+18015550100"
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"]["code"] == "DUPLICATE_ORGANIZATION"

    listing = client.get(
        "/api/admin/organizations", params={"search": "valley"}, headers=admin_headers
    ).json()
    assert listing["total"] == 1
    assert listing["organizations"][0]["name"] == "Valley Recovery"


def test_organization_type_is_validated(client, db, admin_headers):
    response = client.post(
        "/api/admin/organizations", json={"name": "Somewhere", "type": "casino"}, headers=admin_headers
    )
    assert response.status_code == 422
