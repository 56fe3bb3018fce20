import asyncio
import json
from datetime import date, timedelta

import httpx

from conftest import add_patient, add_provider, local_start
from scheduler import models
from scheduler.domain.booking.schemas import BookingRequest, CancelRequest
from scheduler.domain.booking.service import BookingService
from scheduler.services.intakeq_service import IntakeQService
from scheduler.shared.timeutils import to_utc_naive


def emr_with(handler):
    return IntakeQService(
        api_key="test-key",
        base_url="https://intakeq.test/api/v1",
        max_retries=3,
        backoff_seconds=0,
        transport=httpx.MockTransport(handler),
    )


def request_for(setup):
    return BookingRequest(
        provider_id=setup["provider"].id,
        payer_id=setup["payer"].id,
        start=local_start(),
        patient={
            "first_name": "Grace",
            "last_name": "Hopper",
            "email": "grace@example.com",
            "date_of_birth": "1990-12-09",
        },
        member_id="M123",
    )


def test_booking_syncs_client_and_appointment(db, bookable_setup):
    calls = []

    def handler(request):
        calls.append((request.method, request.url.path, json.loads(request.content)))
        if request.url.path.endswith("/clients"):
            return httpx.Response(200, json={"ClientId": 501})
        if request.url.path.endswith("/appointments"):
            return httpx.Response(200, json={"Id": "pq-900"})
        return httpx.Response(404)

    service = BookingService(db, emr=emr_with(handler))
    result = asyncio.run(service.book(request_for(bookable_setup)))

    assert result["warnings"] == []
    assert result["pq_appointment_id"] == "pq-900"
    patient = db.query(models.Patient).one()
    assert patient.intakeq_client_id == "501"
    appointment_payload = calls[1][2]
    assert appointment_payload["ClientId"] == "501"
    assert appointment_payload["PractitionerId"] == "pract-1"
    assert appointment_payload["ServiceId"] == "svc-intake"
    operations = {(log.operation, log.status) for log in db.query(models.IntakeqSyncLog).all()}
    assert operations == {("create_client", "success"), ("create_appointment", "success")}


def test_existing_client_id_is_reused(db, bookable_setup):
    add_patient(db, date_of_birth=date(1990, 12, 9), intakeq_client_id='{"Id":"77"}')
    paths = []

    def handler(request):
        paths.append(request.url.path)
        return httpx.Response(200, json={"Id": "pq-1"})

    asyncio.run(BookingService(db, emr=emr_with(handler)).book(request_for(bookable_setup)))
    assert len(paths) == 1
    assert paths[0].endswith("/appointments")


def test_emr_failure_keeps_local_appointment(db, bookable_setup):
    def handler(request):
        if request.url.path.endswith("/clients"):
            return httpx.Response(200, json={"Id": 501})
        return httpx.Response(500, text="IntakeQ is down")

    result = asyncio.run(BookingService(db, emr=emr_with(handler)).book(request_for(bookable_setup)))

    assert result["success"] is True
    assert result["pq_appointment_id"] is None
    assert result["warnings"][0].startswith("EMR sync failed")
    assert db.query(models.Appointment).count() == 1
    failed = db.query(models.IntakeqSyncLog).filter_by(status="failed").one()
    assert failed.operation == "create_appointment"
    assert failed.attempts == 3


def test_provider_without_practitioner_mapping_warns(db, bookable_setup):
    provider = bookable_setup["provider"]
    provider.intakeq_practitioner_id = None
    db.commit()

    def handler(request):
        raise AssertionError("EMR should not be called")

    result = asyncio.run(BookingService(db, emr=emr_with(handler)).book(request_for(bookable_setup)))
    assert result["warnings"] == ["EMR sync skipped: provider has no EMR practitioner mapping"]


def test_cancel_updates_emr_status(db, bookable_setup):
    bodies = []

    def handler(request):
        if request.method == "PUT":
            bodies.append(json.loads(request.content))
            return httpx.Response(200)
        if request.url.path.endswith("/clients"):
            return httpx.Response(200, json={"Id": 501})
        return httpx.Response(200, json={"Id": "pq-900"})

    service = BookingService(db, emr=emr_with(handler))
    result = asyncio.run(service.book(request_for(bookable_setup)))
    appointment = db.query(models.Appointment).filter_by(id=result["appointment_id"]).one()

    cancelled = asyncio.run(service.cancel(appointment, CancelRequest(reason="Patient request")))
    assert cancelled["status"] == "cancelled"
    assert bodies == [{"Status": "Cancelled"}]


def test_sync_emr_statuses_mirrors_cancellations(db, bookable_setup):
    patient = add_patient(db)
    other = add_provider(db, "Bo", "Other")
    start = to_utc_naive(local_start(days_ahead=3))
    for pq_id, provider in (("pq-1", bookable_setup["provider"]), ("pq-2", other)):
        db.add(
            models.Appointment(
                patient_id=patient.id,
                provider_id=provider.id,
                start_time=start,
                end_time=start + timedelta(hours=1),
                pq_appointment_id=pq_id,
            )
        )
    db.commit()

    def handler(request):
        if request.url.path.endswith("/pq-1"):
            return httpx.Response(200, json={"Id": "pq-1", "Status": "Cancelled"})
        return httpx.Response(200, json={"Id": "pq-2", "Status": "Confirmed"})

    summary = asyncio.run(BookingService(db, emr=emr_with(handler)).sync_emr_statuses())
    assert summary == {"checked": 2, "updated": 1, "failed": 0}
    statuses = {a.pq_appointment_id: a.status for a in db.query(models.Appointment).all()}
    assert statuses == {"pq-1": "cancelled", "pq-2": "scheduled"}


def test_sync_is_a_no_op_without_api_key(db):
    service = BookingService(db, emr=IntakeQService(api_key=""))
    assert asyncio.run(service.sync_emr_statuses()) == {"checked": 0, "updated": 0, "failed": 0}
