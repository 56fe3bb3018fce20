from datetime import timedelta

import pytest

from conftest import (
    add_contract,
    add_intake_instance,
    add_patient,
    add_payer,
    add_provider,
    add_supervision,
    auth_headers,
    local_start,
)
from scheduler import models


def booking_payload(setup, start=None, **overrides):
    payload = {
        "provider_id": setup["provider"].id,
        "payer_id": setup["payer"].id,
        "start": (start or local_start()).isoformat(),
        "patient": {
            "first_name": "Grace",
            "last_name": "Hopper",
            "email": "Grace@Example.com",
            "phone": "(801) 555-0101",
            "date_of_birth": "1990-12-09",
        },
        "member_id": "M123",
    }
    payload.update(overrides)
    return payload


def book(client, payload, headers=None):
    return client.post("/api/patient-booking/book", json=payload, headers=headers or {})


def test_book_creates_patient_and_appointment(client, db, bookable_setup):
    response = book(client, booking_payload(bookable_setup))
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["patient"]["created"] is True
    assert body["duration_minutes"] == 60
    assert body["relationship"]["relationship_type"] == "direct"
    assert body["service"]["emr_service_id"] == "svc-intake"
    assert body["warnings"] == []

    appointment = db.query(models.Appointment).one()
    assert appointment.status == "scheduled"
    assert appointment.end_time - appointment.start_time == timedelta(minutes=60)
    assert appointment.insurance_info["member_id"] == "M123"
    patient = db.query(models.Patient).one()
    assert patient.email == "grace@example.com"
    assert patient.phone == "+18015550101"
    assert patient.primary_provider_id == bookable_setup["provider"].id


def test_idempotency_key_replays_first_response(client, db, bookable_setup):
    headers = {"Idempotency-Key": "widget-abc"}
    first = book(client, booking_payload(bookable_setup), headers)
    second = book(client, booking_payload(bookable_setup), headers)

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["idempotent_replay"] is True
    assert second.json()["appointment_id"] == first.json()["appointment_id"]
    assert db.query(models.Appointment).count() == 1


def test_same_patient_rebooking_same_slot_is_duplicate(client, db, bookable_setup):
    first = book(client, booking_payload(bookable_setup))
    second = book(client, booking_payload(bookable_setup))

    assert first.status_code == 201
    assert first.json()["is_duplicate"] is False
    assert second.status_code == 200
    body = second.json()
    assert body["success"] is True
    assert body["is_duplicate"] is True
    assert body["appointment_id"] == first.json()["appointment_id"]
    assert db.query(models.Appointment).count() == 1


def test_same_patient_shifted_resubmit_returns_existing_booking(client, db, bookable_setup):
    first = book(client, booking_payload(bookable_setup))
    shifted = booking_payload(bookable_setup, start=local_start() + timedelta(minutes=15))
    second = book(client, shifted)

    assert second.status_code == 200
    assert second.json()["is_duplicate"] is True
    assert second.json()["appointment_id"] == first.json()["appointment_id"]
    assert second.json()["start"] == first.json()["start"]
    assert db.query(models.Appointment).count() == 1


def test_overlapping_booking_for_other_patient_conflicts(client, db, bookable_setup):
    book(client, booking_payload(bookable_setup))
    other = booking_payload(bookable_setup)
    other["patient"] = {"first_name": "Alan", "last_name": "Turing", "email": "alan@example.com"}
    other["start"] = (local_start() + timedelta(minutes=30)).isoformat()

    response = book(client, other)
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "CONFLICT"


def test_back_to_back_bookings_do_not_conflict(client, db, bookable_setup):
    book(client, booking_payload(bookable_setup))
    other = booking_payload(bookable_setup, start=local_start() + timedelta(hours=1))
    other["patient"] = {"first_name": "Alan", "last_name": "Turing", "email": "alan@example.com"}
    assert book(client, other).status_code == 201


def test_unbookable_provider_is_rejected(client, db, bookable_setup):
    stranger = add_provider(db, "No", "Contract")
    response = book(client, booking_payload(bookable_setup, provider_id=stranger.id))
    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["code"] == "NOT_BOOKABLE"
    assert "no direct contract with payer" in detail["reasons"]


def test_past_start_is_rejected(client, db, bookable_setup):
    response = book(client, booking_payload(bookable_setup, start=local_start(days_ahead=-1)))
    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "INVALID_REQUEST"


def test_patient_details_are_required(client, db, bookable_setup):
    payload = booking_payload(bookable_setup)
    del payload["patient"]
    response = book(client, payload)
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_REQUEST"


def test_unknown_patient_id_is_404(client, db, bookable_setup):
    payload = booking_payload(bookable_setup, patient_id="missing")
    response = book(client, payload)
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "PATIENT_NOT_FOUND"


def test_payer_without_mapped_intake_service(client, db):
    payer = add_payer(db)
    provider = add_provider(db)
    add_contract(db, provider, payer)
    add_intake_instance(db, payer, emr_service_id=None)

    response = book(client, booking_payload({"provider": provider, "payer": payer}))
    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "NO_INTAKE_INSTANCE_FOR_PAYER"


def test_global_intake_instance_is_the_fallback(client, db):
    payer = add_payer(db)
    provider = add_provider(db)
    add_contract(db, provider, payer)
    add_intake_instance(db, payer=None, duration_minutes=45)

    body = book(client, booking_payload({"provider": provider, "payer": payer})).json()
    assert body["service"]["source"] == "global"
    assert body["duration_minutes"] == 45


def test_fallback_match_reuses_patient_without_dob(client, db, bookable_setup):
    existing = add_patient(db, phone="801.555.0101")
    payload = booking_payload(bookable_setup)
    del payload["patient"]["date_of_birth"]

    body = book(client, payload).json()
    assert body["patient"] == {"id": existing.id, "created": False, "match_type": "fallback"}


def test_shared_email_with_different_name_creates_new_patient(client, db, bookable_setup):
    add_patient(db, first_name="Case", last_name="Manager", email="grace@example.com")
    body = book(client, booking_payload(bookable_setup)).json()
    assert body["patient"]["created"] is True
    assert db.query(models.Patient).count() == 2


def test_supervised_booking_records_billing_provider(client, db, bookable_setup):
    payer = bookable_setup["payer"]
    payer.allows_supervised = True
    db.commit()
    resident = add_provider(db, "Rex", "Resident")
    add_supervision(db, bookable_setup["provider"], resident, payer)

    body = book(client, booking_payload(bookable_setup, provider_id=resident.id)).json()
    assert body["relationship"]["relationship_type"] == "supervised"
    appointment = db.query(models.Appointment).one()
    assert appointment.insurance_info["billing_provider_id"] == bookable_setup["provider"].id
    assert appointment.insurance_info["rendering_provider_id"] == resident.id


def test_referral_code_affiliates_patient(client, db, bookable_setup):
    organization = models.Organization(name="Fourth Street Clinic")
    db.add(organization)
    db.flush()
    partner = models.PartnerUser(organization_id=organization.id, email="cm@fourthstreet.org")
    db.add(partner)
    db.commit()

    book(client, booking_payload(bookable_setup, referral_code="CM@fourthstreet.org"))
    affiliation = db.query(models.PatientOrganizationAffiliation).one()
    assert affiliation.organization_id == organization.id
    assert db.query(models.PatientActivityLog).filter_by(activity_type="referral").count() == 1


@pytest.fixture()
def booked(client, db, bookable_setup):
    response = book(client, booking_payload(bookable_setup))
    return db.query(models.Appointment).filter_by(id=response.json()["appointment_id"]).one()


def test_provider_can_reschedule_own_appointment(client, db, bookable_setup, booked):
    headers = auth_headers("provider-ada", "ada@trymoonlit.com")
    new_start = local_start(days_ahead=8, hour=11)
    response = client.post(
        f"/api/appointments/{booked.id}/reschedule",
        json={"start": new_start.isoformat(), "reason": "Provider conflict"},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["start"].startswith(new_start.isoformat())
    db.refresh(booked)
    assert booked.end_time - booked.start_time == timedelta(minutes=60)


def test_reschedule_overlapping_itself_is_allowed(client, db, bookable_setup, booked):
    headers = auth_headers("provider-ada", "ada@trymoonlit.com")
    response = client.post(
        f"/api/appointments/{booked.id}/reschedule",
        json={"start": (local_start() + timedelta(minutes=30)).isoformat()},
        headers=headers,
    )
    assert response.status_code == 200


def test_other_users_cannot_change_appointment(client, db, booked):
    response = client.post(
        f"/api/appointments/{booked.id}/cancel",
        json={"reason": "nope"},
        headers=auth_headers("someone-else", "someone@example.com"),
    )
    assert response.status_code == 403


def test_admin_cancel_then_cancel_again(client, db, booked, admin_headers):
    first = client.post(
        f"/api/appointments/{booked.id}/cancel", json={"reason": "Patient request"}, headers=admin_headers
    )
    second = client.post(f"/api/appointments/{booked.id}/cancel", json={}, headers=admin_headers)

    assert first.status_code == 200
    assert first.json()["status"] == "cancelled"
    assert second.status_code == 409
    assert second.json()["detail"]["code"] == "INVALID_STATUS"


def test_cancelled_appointment_cannot_be_rescheduled(client, db, booked, admin_headers):
    client.post(f"/api/appointments/{booked.id}/cancel", json={}, headers=admin_headers)
    response = client.post(
        f"/api/appointments/{booked.id}/reschedule",
        json={"start": local_start(days_ahead=9).isoformat()},
        headers=admin_headers,
    )
    assert response.status_code == 409


def test_missing_appointment_is_404(client, db, admin_headers):
    response = client.post("/api/appointments/missing/cancel", json={}, headers=admin_headers)
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "APPOINTMENT_NOT_FOUND"


def test_provider_and_admin_lists(client, db, bookable_setup, booked, admin_headers):
    mine = client.get(
        "/api/providers/me/appointments", headers=auth_headers("provider-ada", "ada@trymoonlit.com")
    )
    everything = client.get(
        "/api/admin/appointments",
        params={"payer_id": bookable_setup["payer"].id},
        headers=admin_headers,
    )
    assert [a["id"] for a in mine.json()] == [booked.id]
    assert [a["id"] for a in everything.json()] == [booked.id]


def test_admin_list_rejects_backwards_range(client, db, admin_headers):
    response = client.get(
        "/api/admin/appointments",
        params={"start_date": "2025-06-10", "end_date": "2025-06-01"},
        headers=admin_headers,
    )
    assert response.status_code == 422
