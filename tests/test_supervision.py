from datetime import timedelta

import pytest

from conftest import add_contract, add_payer, add_provider, add_supervision, today
from scheduler import models


@pytest.fixture()
def team(db):
    payer = add_payer(db, allows_supervised=True)
    attending = add_provider(db, "Ada", "Attending")
    resident = add_provider(db, "Rex", "Resident", role="resident")
    add_contract(db, attending, payer)
    return {"payer": payer, "attending": attending, "resident": resident}


def relationship_body(team, **overrides):
    body = {
        "supervisor_provider_id": team["attending"].id,
        "supervisee_provider_id": team["resident"].id,
        "payer_id": team["payer"].id,
        "start_date": today().isoformat(),
        "supervision_level": "sign_off_only",
    }
    body.update(overrides)
    return body


def test_create_relationship(client, db, team, admin_headers):
    response = client.post("/api/admin/supervision", json=relationship_body(team), headers=admin_headers)
    assert response.status_code == 201
    body = response.json()
    assert body["is_active"] is True
    assert body["supervisor_name"] == "Ada Attending"
    assert body["payer_name"] == "Utah Medicaid"
    assert db.query(models.SchedulerAuditLog).filter_by(action="supervision.create").count() == 1


def test_self_supervision_is_rejected(client, db, team, admin_headers):
    body = relationship_body(team, supervisee_provider_id=team["attending"].id)
    response = client.post("/api/admin/supervision", json=body, headers=admin_headers)
    assert response.status_code == 422


def test_unknown_level_is_rejected(client, db, team, admin_headers):
    body = relationship_body(team, supervision_level="whenever")
    response = client.post("/api/admin/supervision", json=body, headers=admin_headers)
    assert response.status_code == 422


def test_payer_must_allow_supervision(client, db, team, admin_headers):
    team["payer"].allows_supervised = False
    db.commit()
    response = client.post("/api/admin/supervision", json=relationship_body(team), headers=admin_headers)
    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "PAYER_DISALLOWS_SUPERVISION"


def test_supervisor_must_be_contracted(client, db, team, admin_headers):
    other = add_provider(db, "No", "Contract")
    body = relationship_body(team, supervisor_provider_id=other.id)
    response = client.post("/api/admin/supervision", json=body, headers=admin_headers)
    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "SUPERVISOR_NOT_CONTRACTED"


def test_overlapping_relationship_is_duplicate(client, db, team, admin_headers):
    existing = add_supervision(db, team["attending"], team["resident"], team["payer"])
    response = client.post("/api/admin/supervision", json=relationship_body(team), headers=admin_headers)
    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["code"] == "DUPLICATE_RELATIONSHIP"
    assert detail["existing_id"] == existing.id


def test_non_overlapping_window_is_allowed(client, db, team, admin_headers):
    add_supervision(
        db,
        team["attending"],
        team["resident"],
        team["payer"],
        start_date=today() - timedelta(days=60),
        end_date=today() - timedelta(days=1),
    )
    response = client.post("/api/admin/supervision", json=relationship_body(team), headers=admin_headers)
    assert response.status_code == 201


def test_bulk_create_is_all_or_nothing(client, db, team, admin_headers):
    second_resident = add_provider(db, "Ria", "Resident")
    outsider = add_provider(db, "No", "Contract")
    good = relationship_body(team, supervisee_provider_id=second_resident.id)
    bad = relationship_body(team, supervisor_provider_id=outsider.id)

    response = client.post(
        "/api/admin/supervision/bulk",
        json={"relationships": [relationship_body(team), good, bad]},
        headers=admin_headers,
    )
    assert response.status_code == 422
    assert db.query(models.SupervisionRelationship).count() == 0


def test_bulk_create_rejects_overlaps_within_request(client, db, team, admin_headers):
    response = client.post(
        "/api/admin/supervision/bulk",
        json={"relationships": [relationship_body(team), relationship_body(team)]},
        headers=admin_headers,
    )
    assert response.status_code == 409
    assert db.query(models.SupervisionRelationship).count() == 0


def test_bulk_create_success(client, db, team, admin_headers):
    second_resident = add_provider(db, "Ria", "Resident")
    response = client.post(
        "/api/admin/supervision/bulk",
        json={
            "relationships": [
                relationship_body(team),
                relationship_body(team, supervisee_provider_id=second_resident.id),
            ]
        },
        headers=admin_headers,
    )
    assert response.status_code == 201
    assert len(response.json()) == 2


def test_deactivate_keeps_history(client, db, team, admin_headers):
    relationship = add_supervision(db, team["attending"], team["resident"], team["payer"])
    response = client.post(
        f"/api/admin/supervision/{relationship.id}/deactivate",
        json={"notes": "Residency ended"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["is_active"] is False
    assert body["end_date"] == today().isoformat()
    assert db.query(models.SupervisionRelationship).count() == 1

    active = client.get("/api/admin/supervision", headers=admin_headers).json()
    everything = client.get(
        "/api/admin/supervision", params={"active_only": "false"}, headers=admin_headers
    ).json()
    assert active == []
    assert len(everything) == 1


def test_update_relationship_level(client, db, team, admin_headers):
    relationship = add_supervision(db, team["attending"], team["resident"], team["payer"])
    response = client.patch(
        f"/api/admin/supervision/{relationship.id}",
        json={"supervision_level": "co_visit_required"},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["supervision_level"] == "co_visit_required"


def test_update_with_backwards_dates_is_rejected(client, db, team, admin_headers):
    relationship = add_supervision(db, team["attending"], team["resident"], team["payer"])
    response = client.patch(
        f"/api/admin/supervision/{relationship.id}",
        json={"end_date": (today() - timedelta(days=90)).isoformat()},
        headers=admin_headers,
    )
    assert response.status_code == 422


def test_missing_relationship_is_404(client, db, admin_headers):
    response = client.post(
        "/api/admin/supervision/missing/deactivate", json={}, headers=admin_headers
    )
    assert response.status_code == 404
