from conftest import add_contract, add_payer, add_provider
from scheduler import models


def test_public_provider_list(client, db):
    add_provider(db, "Ada", "Lovelace")
    add_provider(db, "Hidden", "Provider", list_on_provider_page=False)
    add_provider(db, "Gone", "Provider", is_active=False)

    body = client.get("/api/providers").json()
    assert body["total"] == 1
    assert body["providers"][0]["full_name"] == "Ada Lovelace"


def test_provider_list_narrowed_by_payer(client, db):
    payer = add_payer(db)
    contracted = add_provider(db, "Ada", "Lovelace")
    add_provider(db, "Ed", "Uncontracted")
    add_contract(db, contracted, payer)

    body = client.get("/api/providers", params={"payer_id": payer.id}).json()
    assert [p["id"] for p in body["providers"]] == [contracted.id]
    assert body["providers"][0]["relationship_type"] == "direct"


def test_provider_list_by_language(client, db):
    add_provider(db, "Sofia", "Reyes", languages_spoken=["English", "Spanish"])
    add_provider(db, "Ed", "Brown")

    body = client.get("/api/providers", params={"language": "spanish"}).json()
    assert [p["full_name"] for p in body["providers"]] == ["Sofia Reyes"]
    assert body["providers"][0]["languages_spoken"] == ["English", "Spanish"]


def test_get_provider(client, db):
    provider = add_provider(db, title="MD")
    response = client.get(f"/api/providers/{provider.id}")
    assert response.status_code == 200
    assert response.json()["full_name"] == "Ada Lovelace, MD"

    missing = client.get("/api/providers/missing")
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "INVALID_PROVIDER"


def test_payer_search(client, db):
    add_payer(db, "Utah Medicaid", state="UT")
    add_payer(db, "Idaho Medicaid", state="ID")
    add_payer(db, "Aetna")

    medicaid = client.get("/api/payers", params={"search": "medicaid"}).json()
    utah = client.get("/api/payers", params={"state": "ut"}).json()
    assert [p["name"] for p in medicaid["payers"]] == ["Idaho Medicaid", "Utah Medicaid"]
    assert [p["name"] for p in utah["payers"]] == ["Utah Medicaid"]


def test_admin_updates_provider_flags(client, db, admin_headers):
    provider = add_provider(db)
    response = client.patch(
        f"/api/admin/providers/{provider.id}",
        json={"is_bookable": False, "languages_spoken": ["Spanish", " "]},
        headers=admin_headers,
    )
    assert response.status_code == 200
    assert response.json()["is_bookable"] is False
    assert response.json()["languages_spoken"] == ["Spanish"]

    entry = db.query(models.SchedulerAuditLog).filter_by(action="provider.flags_updated").one()
    assert entry.before["is_bookable"] is True
    assert entry.after["is_bookable"] is False


def test_unbookable_flag_removes_provider_from_payer_list(client, db, admin_headers):
    payer = add_payer(db)
    provider = add_provider(db)
    add_contract(db, provider, payer)
    client.patch(f"/api/admin/providers/{provider.id}", json={"is_bookable": False}, headers=admin_headers)

    body = client.get(f"/api/bookability/payers/{payer.id}/providers").json()
    assert body["total_providers"] == 0


def test_flag_update_for_missing_provider(client, db, admin_headers):
    response = client.patch("/api/admin/providers/missing", json={"is_bookable": True}, headers=admin_headers)
    assert response.status_code == 404
