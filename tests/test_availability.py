import asyncio
from datetime import time, timedelta
from types import SimpleNamespace

import httpx

from conftest import (
    add_contract,
    add_intake_instance,
    add_patient,
    add_payer,
    add_provider,
    add_supervision,
    add_weekly_availability,
    auth_headers,
    today,
)
from scheduler import config, models
from scheduler.domain.availability import router as availability_router
from scheduler.domain.availability import service as availability_service
from scheduler.domain.availability.service import AvailabilityService
from scheduler.services.intakeq_service import IntakeQService, to_epoch_ms
from scheduler.shared.timeutils import local_to_utc_naive
from scheduler.worker import nightly_availability_refresh_task


def merged(client, payer_id, days=3, **params):
    start = today() + timedelta(days=1)
    return client.get(
        "/api/patient-booking/merged-availability",
        params={
            "payer_id": payer_id,
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(days=days - 1)).isoformat(),
            **params,
        },
    )


def test_merged_availability_builds_cache_lazily(client, db, bookable_setup):
    response = merged(client, bookable_setup["payer"].id)
    assert response.status_code == 200
    body = response.json()
    assert body["total_slots"] == 9
    assert len(body["slots_by_date"]) == 3
    first = body["available_slots"][0]
    assert first["start_time"] == "09:00"
    assert first["end_time"] == "10:00"
    assert first["relationship_type"] == "direct"
    assert body["providers"][0]["slot_count"] == 9
    assert db.query(models.ProviderAvailabilityCache).count() == 3


def test_booked_appointments_remove_slots(client, db, bookable_setup):
    day = today() + timedelta(days=1)
    patient = add_patient(db)
    start = local_to_utc_naive(day, time(9, 0))
    db.add(
        models.Appointment(
            patient_id=patient.id,
            provider_id=bookable_setup["provider"].id,
            start_time=start,
            end_time=start + timedelta(hours=1),
        )
    )
    db.commit()

    body = merged(client, bookable_setup["payer"].id, days=1).json()
    assert [s["start_time"] for s in body["slots_by_date"][day.isoformat()]] == ["10:00", "11:00"]


def test_cancelled_appointments_do_not_block(client, db, bookable_setup):
    day = today() + timedelta(days=1)
    patient = add_patient(db)
    start = local_to_utc_naive(day, time(9, 0))
    db.add(
        models.Appointment(
            patient_id=patient.id,
            provider_id=bookable_setup["provider"].id,
            start_time=start,
            end_time=start + timedelta(hours=1),
            status="cancelled",
        )
    )
    db.commit()

    assert merged(client, bookable_setup["payer"].id, days=1).json()["total_slots"] == 3


def test_slots_stop_when_contract_expires(client, db, bookable_setup):
    contract = db.query(models.ProviderPayerNetwork).one()
    contract.expiration_date = today() + timedelta(days=1)
    db.commit()

    body = merged(client, bookable_setup["payer"].id, days=3).json()
    assert list(body["slots_by_date"]) == [(today() + timedelta(days=1)).isoformat()]


def test_supervised_provider_slots_carry_billing_provider(client, db, bookable_setup):
    payer = bookable_setup["payer"]
    payer.allows_supervised = True
    db.commit()
    resident = add_provider(db, "Rex", "Resident")
    add_weekly_availability(db, resident, start=time(13, 0), end=time(14, 0))
    add_supervision(db, bookable_setup["provider"], resident, payer)

    body = merged(client, payer.id, days=1, provider_id=resident.id).json()
    assert body["total_slots"] == 1
    slot = body["available_slots"][0]
    assert slot["relationship_type"] == "supervised"
    assert slot["billing_provider_id"] == bookable_setup["provider"].id
    assert slot["rendering_provider_id"] == resident.id


def test_payer_without_providers_reports_message(client, db, bookable_setup):
    other = add_payer(db, "Self Pay")
    add_intake_instance(db, payer=None)
    body = merged(client, other.id).json()
    assert body["total_slots"] == 0
    assert body["message"] == "No providers are currently bookable for Self Pay"


def test_range_validation(client, db, bookable_setup):
    payer_id = bookable_setup["payer"].id
    start = today() + timedelta(days=5)
    backwards = client.get(
        "/api/patient-booking/merged-availability",
        params={
            "payer_id": payer_id,
            "start_date": start.isoformat(),
            "end_date": (start - timedelta(days=1)).isoformat(),
        },
    )
    too_long = merged(client, payer_id, days=91)
    assert backwards.status_code == 422
    assert too_long.status_code == 422


def test_slots_for_payer_uses_requested_timezone(client, db, bookable_setup):
    day = today() + timedelta(days=1)
    response = client.get(
        "/api/patient-booking/slots-for-payer",
        params={
            "payer_id": bookable_setup["payer"].id,
            "from": day.isoformat(),
            "thru": day.isoformat(),
            "tz": "America/New_York",
        },
    )
    assert response.status_code == 200
    body = response.json()
    assert body["method_used"] == "bookable_relationships"
    assert body["service_instance_source"] == "payer_specific"
    group = body["slots"][0]
    assert group["provider_id"] == bookable_setup["provider"].id
    assert group["slots"][0]["start"].startswith(f"{day.isoformat()}T11:00")


def test_slots_for_payer_rejects_unknown_timezone(client, db, bookable_setup):
    day = today() + timedelta(days=1)
    response = client.get(
        "/api/patient-booking/slots-for-payer",
        params={
            "payer_id": bookable_setup["payer"].id,
            "from": day.isoformat(),
            "thru": day.isoformat(),
            "tz": "Mars/Olympus",
        },
    )
    assert response.status_code == 422


def test_available_services_after_populate(client, db, bookable_setup, admin_headers):
    start = today() + timedelta(days=1)
    populate = client.post(
        "/api/admin/availability-cache/populate",
        json={
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(days=1)).isoformat(),
            "service_instance_id": bookable_setup["instance"].id,
        },
        headers=admin_headers,
    )
    assert populate.status_code == 200
    assert populate.json()["created"] == 2

    body = client.get(
        "/api/patient-booking/available-services",
        params={"payer_id": bookable_setup["payer"].id},
    ).json()
    service = body["services"][0]
    assert service["service_instance_id"] == bookable_setup["instance"].id
    assert service["slot_count"] == 6
    assert service["payer_specific"] is True


def test_provider_updates_weekly_schedule(client, db, bookable_setup):
    headers = auth_headers("provider-ada", "ada@trymoonlit.com")
    merged(client, bookable_setup["payer"].id, days=1)

    response = client.put(
        "/api/providers/me/availability",
        json={"blocks": [{"day_of_week": 1, "start_time": "08:00", "end_time": "10:00"}]},
        headers=headers,
    )
    assert response.status_code == 200
    assert len(response.json()) == 1
    assert db.query(models.ProviderAvailabilityCache).count() == 0

    schedule = client.get("/api/providers/me/availability", headers=headers).json()
    assert schedule[0]["start_time"] == "08:00:00"


def test_invalid_block_is_rejected(client, db, bookable_setup):
    headers = auth_headers("provider-ada", "ada@trymoonlit.com")
    response = client.put(
        "/api/providers/me/availability",
        json={"blocks": [{"day_of_week": 7, "start_time": "10:00", "end_time": "09:00"}]},
        headers=headers,
    )
    assert response.status_code == 422


def provider_headers():
    return auth_headers("provider-ada", "ada@trymoonlit.com")


def slot_times(body, day):
    return [s["start_time"] for s in body["slots_by_date"].get(day.isoformat(), [])]


def test_past_slots_are_dropped(client, db, bookable_setup, monkeypatch):
    day = today() + timedelta(days=1)
    monkeypatch.setattr(availability_service, "utc_now", lambda: local_to_utc_naive(day, time(10, 30)))

    body = merged(client, bookable_setup["payer"].id, days=2).json()
    assert slot_times(body, day) == ["11:00"]
    assert slot_times(body, day + timedelta(days=1)) == ["09:00", "10:00", "11:00"]


def test_all_day_exception_removes_the_day(client, db, bookable_setup):
    payer_id = bookable_setup["payer"].id
    day_off = today() + timedelta(days=2)
    assert merged(client, payer_id).json()["total_slots"] == 9

    response = client.post(
        "/api/providers/me/availability/exceptions",
        json={"exception_date": day_off.isoformat(), "reason": "Conference"},
        headers=provider_headers(),
    )
    assert response.status_code == 201
    assert response.json()["exception_type"] == "unavailable"
    cached_days = {row.service_date for row in db.query(models.ProviderAvailabilityCache)}
    assert day_off not in cached_days
    assert len(cached_days) == 2

    body = merged(client, payer_id).json()
    assert body["total_slots"] == 6
    assert day_off.isoformat() not in body["slots_by_date"]


def test_partial_exception_blocks_hours(client, db, bookable_setup):
    day = today() + timedelta(days=1)
    client.post(
        "/api/providers/me/availability/exceptions",
        json={
            "exception_date": day.isoformat(),
            "exception_type": "partial_block",
            "start_time": "10:00",
            "end_time": "11:00",
        },
        headers=provider_headers(),
    )
    body = merged(client, bookable_setup["payer"].id, days=1).json()
    assert slot_times(body, day) == ["09:00", "11:00"]


def test_exceptions_list_and_delete(client, db, bookable_setup):
    payer_id = bookable_setup["payer"].id
    day = today() + timedelta(days=1)
    created = client.post(
        "/api/providers/me/availability/exceptions",
        json={"exception_date": day.isoformat(), "exception_type": "vacation"},
        headers=provider_headers(),
    ).json()
    assert merged(client, payer_id, days=1).json()["total_slots"] == 0

    listing = client.get("/api/providers/me/availability/exceptions", headers=provider_headers()).json()
    assert [e["id"] for e in listing] == [created["id"]]

    deleted = client.delete(
        f"/api/providers/me/availability/exceptions/{created['id']}", headers=provider_headers()
    )
    assert deleted.status_code == 204
    assert merged(client, payer_id, days=1).json()["total_slots"] == 3

    missing = client.delete(
        f"/api/providers/me/availability/exceptions/{created['id']}", headers=provider_headers()
    )
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "EXCEPTION_NOT_FOUND"


def test_partial_block_needs_times(client, db, bookable_setup):
    response = client.post(
        "/api/providers/me/availability/exceptions",
        json={"exception_date": today().isoformat(), "exception_type": "partial_block"},
        headers=provider_headers(),
    )
    assert response.status_code == 422


def emr_service(handler):
    return IntakeQService(
        api_key="test-key",
        base_url="https://intakeq.test/api/v1",
        max_retries=1,
        backoff_seconds=0,
        transport=httpx.MockTransport(handler),
    )


def test_emr_appointments_remove_slots(db, bookable_setup):
    day = today() + timedelta(days=1)
    nine = local_to_utc_naive(day, time(9, 0))
    ten = local_to_utc_naive(day, time(10, 0))

    def handler(request):
        return httpx.Response(
            200,
            json=[
                {
                    "Id": "emr-1",
                    "PractitionerId": "pract-1",
                    "StartDate": to_epoch_ms(nine),
                    "EndDate": to_epoch_ms(nine + timedelta(hours=1)),
                    "Status": "Confirmed",
                },
                {
                    "Id": "emr-2",
                    "PractitionerId": "pract-1",
                    "StartDate": to_epoch_ms(ten),
                    "Status": "Cancelled",
                },
                {"Id": "emr-3", "PractitionerId": "someone-else", "StartDate": to_epoch_ms(ten)},
            ],
        )

    service = AvailabilityService(db, emr=emr_service(handler))
    body = asyncio.run(service.merged_availability(bookable_setup["payer"].id, day, day))
    assert slot_times(body, day) == ["10:00", "11:00"]


def test_unreachable_emr_keeps_slots(db, bookable_setup):
    day = today() + timedelta(days=1)

    def handler(request):
        return httpx.Response(500, text="down")

    service = AvailabilityService(db, emr=emr_service(handler))
    body = asyncio.run(service.merged_availability(bookable_setup["payer"].id, day, day))
    assert slot_times(body, day) == ["09:00", "10:00", "11:00"]


def test_warm_cache_covers_global_and_payer_instances(db, bookable_setup):
    global_instance = add_intake_instance(db, payer=None)
    service = AvailabilityService(db)

    summaries = service.warm_cache()
    assert [s["service_instance_id"] for s in summaries] == [
        global_instance.id,
        bookable_setup["instance"].id,
    ]
    assert all(s["created"] == config.AVAILABILITY_CACHE_DAYS for s in summaries)

    again = service.warm_cache()
    assert all(s["skipped"] == config.AVAILABILITY_CACHE_DAYS for s in again)


def test_nightly_refresh_rewrites_cached_days(db, bookable_setup):
    AvailabilityService(db).warm_cache()

    summaries = asyncio.run(nightly_availability_refresh_task({}))
    assert summaries[0]["updated"] == config.AVAILABILITY_CACHE_DAYS
    assert summaries[0]["skipped"] == 0


class RecordingPool:
    def __init__(self):
        self.jobs = []
        self.closed = False

    async def enqueue_job(self, function, *args):
        self.jobs.append((function, *args))
        return SimpleNamespace(job_id=f"job-{len(self.jobs)}")

    async def close(self):
        self.closed = True


def test_schedule_change_queues_cache_refresh(client, db, bookable_setup, monkeypatch):
    pool = RecordingPool()

    async def create_pool(settings):
        return pool

    monkeypatch.setattr(config, "BACKGROUND_JOBS_ENABLED", True)
    monkeypatch.setattr(availability_router, "create_pool", create_pool)

    response = client.put(
        "/api/providers/me/availability",
        json={"blocks": [{"day_of_week": 1, "start_time": "08:00", "end_time": "10:00"}]},
        headers=provider_headers(),
    )
    assert response.status_code == 200
    assert pool.jobs == [("refresh_availability_cache_task", bookable_setup["provider"].id)]
    assert pool.closed


def test_failed_queue_does_not_fail_schedule_change(client, db, bookable_setup, monkeypatch):
    async def create_pool(settings):
        raise ConnectionError("redis down")

    monkeypatch.setattr(config, "BACKGROUND_JOBS_ENABLED", True)
    monkeypatch.setattr(availability_router, "create_pool", create_pool)

    response = client.put(
        "/api/providers/me/availability",
        json={"blocks": [{"day_of_week": 1, "start_time": "08:00", "end_time": "10:00"}]},
        headers=provider_headers(),
    )
    assert response.status_code == 200
