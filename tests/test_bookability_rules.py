from datetime import date

from scheduler.domain.bookability import rules
from scheduler.domain.bookability.rules import (
    BookabilitySnapshot,
    ContractFacts,
    PayerFacts,
    ProviderFacts,
    SupervisionFacts,
)

AS_OF = date(2025, 6, 15)


def snapshot(contracts=(), supervisions=(), payer=None, providers=("doc", "resident")):
    payer = payer or PayerFacts(id="medicaid", allows_supervised=True)
    return BookabilitySnapshot(
        providers={pid: ProviderFacts(id=pid) for pid in providers},
        payers={payer.id: payer},
        contracts=list(contracts),
        supervisions=list(supervisions),
    )


def contract(provider_id="doc", **kwargs):
    values = {
        "id": f"c-{provider_id}",
        "provider_id": provider_id,
        "payer_id": "medicaid",
        "effective_date": date(2025, 1, 1),
    }
    values.update(kwargs)
    return ContractFacts(**values)


def supervision(supervisor_id="doc", supervisee_id="resident", **kwargs):
    values = {
        "id": f"s-{supervisor_id}",
        "supervisor_id": supervisor_id,
        "supervisee_id": supervisee_id,
        "payer_id": "medicaid",
        "start_date": date(2025, 2, 1),
    }
    values.update(kwargs)
    return SupervisionFacts(**values)


def test_direct_contract_is_bookable_inside_window():
    snap = snapshot([contract()])
    rel = rules.resolve_relationship(snap, "doc", "medicaid", AS_OF)
    assert rel.relationship_type == "direct"
    assert rel.billing_provider_id == "doc"
    assert rel.rendering_provider_id == "doc"


def test_contract_window_edges_are_inclusive():
    snap = snapshot([contract(effective_date=AS_OF, expiration_date=AS_OF)])
    assert rules.resolve_relationship(snap, "doc", "medicaid", AS_OF) is not None


def test_expired_and_future_contracts_are_not_bookable():
    expired = snapshot([contract(expiration_date=date(2025, 6, 14))])
    future = snapshot([contract(effective_date=date(2025, 6, 16))])
    assert rules.resolve_relationship(expired, "doc", "medicaid", AS_OF) is None
    assert rules.resolve_relationship(future, "doc", "medicaid", AS_OF) is None


def test_bookable_from_date_delays_booking():
    snap = snapshot([contract(bookable_from_date=date(2025, 7, 1))])
    assert rules.resolve_relationship(snap, "doc", "medicaid", AS_OF) is None
    rel = rules.resolve_relationship(snap, "doc", "medicaid", date(2025, 7, 1))
    assert rel.bookable_from_date == date(2025, 7, 1)


def test_contract_without_effective_date_is_never_bookable():
    snap = snapshot([contract(effective_date=None)])
    decision = rules.explain(snap, "doc", "medicaid", AS_OF)
    assert decision.bookable is False
    assert "contract has no effective date" in decision.reasons


def test_pending_contract_is_not_bookable():
    snap = snapshot([contract(status="pending")])
    decision = rules.explain(snap, "doc", "medicaid", AS_OF)
    assert not decision.bookable
    assert decision.reasons[0] == "contract status is 'pending'"


def test_supervised_provider_bills_under_supervisor():
    snap = snapshot([contract("doc")], [supervision()])
    rel = rules.resolve_relationship(snap, "resident", "medicaid", AS_OF)
    assert rel.relationship_type == "supervised"
    assert rel.billing_provider_id == "doc"
    assert rel.rendering_provider_id == "resident"
    assert rel.supervising_provider_id == "doc"
    assert rel.supervision_level == "sign_off_only"
    # Window is the intersection of supervision and supervisor contract
    assert rel.effective_date == date(2025, 2, 1)


def test_supervision_requires_payer_permission():
    payer = PayerFacts(id="medicaid", allows_supervised=False, requires_attending=False)
    snap = snapshot([contract("doc")], [supervision()], payer=payer)
    decision = rules.explain(snap, "resident", "medicaid", AS_OF)
    assert not decision.bookable
    assert any("does not allow supervised billing" in r for r in decision.reasons)


def test_requires_attending_also_permits_supervision():
    payer = PayerFacts(id="medicaid", requires_attending=True)
    snap = snapshot([contract("doc")], [supervision()], payer=payer)
    assert rules.resolve_relationship(snap, "resident", "medicaid", AS_OF) is not None


def test_supervision_fails_when_supervisor_contract_expired():
    snap = snapshot([contract("doc", expiration_date=date(2025, 5, 31))], [supervision()])
    decision = rules.explain(snap, "resident", "medicaid", AS_OF)
    assert not decision.bookable
    assert any(r.startswith("supervision by doc: supervisor contract expired") for r in decision.reasons)


def test_inactive_or_ended_supervision_is_ignored():
    inactive = snapshot([contract("doc")], [supervision(is_active=False)])
    ended = snapshot([contract("doc")], [supervision(end_date=date(2025, 6, 14))])
    assert rules.resolve_relationship(inactive, "resident", "medicaid", AS_OF) is None
    assert rules.resolve_relationship(ended, "resident", "medicaid", AS_OF) is None


def test_self_supervision_is_rejected():
    snap = snapshot([contract("doc")], [supervision("doc", "doc")])
    rows = rules.bookable_as_of(snap, AS_OF, payer_id="medicaid")
    assert [r.relationship_type for r in rows] == ["direct"]


def test_direct_beats_supervised_for_same_pair():
    snap = snapshot([contract("doc"), contract("resident")], [supervision()])
    rel = rules.resolve_relationship(snap, "resident", "medicaid", AS_OF)
    assert rel.relationship_type == "direct"
    rows = rules.bookable_as_of(snap, AS_OF, payer_id="medicaid")
    assert len(rows) == 2


def test_earliest_supervisor_wins_between_supervised_routes():
    snap = snapshot(
        [contract("doc"), contract("attending", effective_date=date(2025, 3, 1))],
        [supervision("attending"), supervision("doc")],
        providers=("doc", "attending", "resident"),
    )
    rel = rules.resolve_relationship(snap, "resident", "medicaid", AS_OF)
    assert rel.supervising_provider_id == "doc"


def test_co_visit_level_sets_flag():
    snap = snapshot([contract("doc")], [supervision(supervision_level="co_visit_required")])
    rel = rules.resolve_relationship(snap, "resident", "medicaid", AS_OF)
    assert rel.requires_co_visit is True


def test_payer_supervision_level_is_the_default():
    payer = PayerFacts(id="medicaid", allows_supervised=True, supervision_level="first_visit_in_person")
    snap = snapshot([contract("doc")], [supervision()], payer=payer)
    rel = rules.resolve_relationship(snap, "resident", "medicaid", AS_OF)
    assert rel.supervision_level == "first_visit_in_person"


def test_unbookable_provider_is_excluded():
    snap = snapshot([contract()])
    snap.providers["doc"] = ProviderFacts(id="doc", is_bookable=False)
    decision = rules.explain(snap, "doc", "medicaid", AS_OF)
    assert not decision.bookable
    assert decision.reasons == ["provider is not marked bookable"]


def test_earliest_bookable_date_finds_future_start():
    snap = snapshot([contract(effective_date=date(2025, 8, 1))])
    assert rules.earliest_bookable_date(snap, "doc", "medicaid", AS_OF) == date(2025, 8, 1)
    assert rules.earliest_bookable_date(snap, "doc", "medicaid", AS_OF, horizon_days=10) is None


def test_legacy_provider_shape():
    snap = snapshot([contract("doc")], [supervision()])
    rel = rules.resolve_relationship(snap, "resident", "medicaid", AS_OF)
    row = rules.to_legacy_provider(rel, {"id": "resident", "first_name": "R"})
    assert row["via"] == "supervised"
    assert row["attending_provider_id"] == "doc"
    assert row["effective"] == "2025-02-01"


def test_normalize_languages_accepts_many_shapes():
    assert rules.normalize_languages(None) == ["English"]
    assert rules.normalize_languages('["English", "Spanish"]') == ["English", "Spanish"]
    assert rules.normalize_languages("English, Spanish") == ["English", "Spanish"]
    assert rules.normalize_languages([]) == ["English"]


def test_filter_by_language_is_case_insensitive():
    providers = [
        {"id": "a", "languages_spoken": ["English", "Spanish"]},
        {"id": "b", "languages_spoken": None},
    ]
    assert [p["id"] for p in rules.filter_by_language(providers, "spanish")] == ["a"]
    assert [p["id"] for p in rules.filter_by_language(providers, "English")] == ["a", "b"]
