"""
Bookability rules - pure domain logic

Decides whether a provider can be booked against a payer on a given date.
Two routes make a provider bookable:

1. Direct network: the provider holds an active contract with the payer whose
   effective window (and bookable-from date) covers the date.
2. Supervised network: the provider is supervised, for that payer, by a
   provider who is themselves directly contracted on that date. The
   supervisor bills, the supervisee renders.

Direct always wins over supervised for the same provider/payer pair.

Nothing here touches the database: callers hand in a BookabilitySnapshot
built from whatever storage they use.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Optional

ACTIVE_CONTRACT_STATUSES = {"in_network", "active"}
CONTRACT_STATUSES = {"in_network", "active", "pending", "terminated"}

SUPERVISION_LEVELS = ("sign_off_only", "first_visit_in_person", "co_visit_required")
DEFAULT_SUPERVISION_LEVEL = "sign_off_only"

DIRECT = "direct"
SUPERVISED = "supervised"


@dataclass(frozen=True)
class ProviderFacts:
    id: str
    is_active: bool = True
    is_bookable: bool = True


@dataclass(frozen=True)
class PayerFacts:
    id: str
    allows_supervised: bool = False
    requires_attending: bool = False
    supervision_level: Optional[str] = None

    @property
    def permits_supervision(self) -> bool:
        return self.allows_supervised or self.requires_attending


@dataclass(frozen=True)
class ContractFacts:
    id: str
    provider_id: str
    payer_id: str
    effective_date: Optional[date]
    expiration_date: Optional[date] = None
    bookable_from_date: Optional[date] = None
    status: str = "in_network"

    @property
    def starts_on(self) -> Optional[date]:
        """First bookable day: the later of effective and bookable-from dates"""
        if self.effective_date is None:
            return None
        if self.bookable_from_date and self.bookable_from_date > self.effective_date:
            return self.bookable_from_date
        return self.effective_date


@dataclass(frozen=True)
class SupervisionFacts:
    id: str
    supervisor_id: str
    supervisee_id: str
    payer_id: str
    start_date: date
    end_date: Optional[date] = None
    is_active: bool = True
    supervision_level: Optional[str] = None


@dataclass
class BookabilitySnapshot:
    providers: dict = field(default_factory=dict)  # id -> ProviderFacts
    payers: dict = field(default_factory=dict)  # id -> PayerFacts
    contracts: list = field(default_factory=list)
    supervisions: list = field(default_factory=list)

    def contract_for(self, provider_id: str, payer_id: str) -> Optional[ContractFacts]:
        for contract in self.contracts:
            if contract.provider_id == provider_id and contract.payer_id == payer_id:
                return contract
        return None


@dataclass(frozen=True)
class BookableRelationship:
    provider_id: str
    payer_id: str
    relationship_type: str
    billing_provider_id: str
    rendering_provider_id: str
    effective_date: date
    expiration_date: Optional[date]
    bookable_from_date: date
    network_status: str
    supervising_provider_id: Optional[str] = None
    supervision_level: Optional[str] = None
    requires_co_visit: bool = False
    contract_id: Optional[str] = None
    supervision_id: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("effective_date", "expiration_date", "bookable_from_date"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class BookabilityDecision:
    provider_id: str
    payer_id: str
    as_of: date
    bookable: bool
    relationship: Optional[BookableRelationship] = None
    reasons: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "provider_id": self.provider_id,
            "payer_id": self.payer_id,
            "as_of": self.as_of.isoformat(),
            "bookable": self.bookable,
            "relationship": self.relationship.to_dict() if self.relationship else None,
            "reasons": list(self.reasons),
        }


# ============================================================================
# WINDOW CHECKS
# ============================================================================


def contract_reason(contract: ContractFacts, as_of: date) -> Optional[str]:
    """Why a direct contract is not bookable on as_of, or None when it is"""
    if contract.status not in ACTIVE_CONTRACT_STATUSES:
        return f"contract status is '{contract.status}'"
    if contract.effective_date is None:
        return "contract has no effective date"
    if contract.effective_date > as_of:
        return f"contract not effective until {contract.effective_date.isoformat()}"
    if contract.expiration_date is not None and contract.expiration_date < as_of:
        return f"contract expired on {contract.expiration_date.isoformat()}"
    if contract.starts_on > as_of:
        return f"contract not bookable until {contract.starts_on.isoformat()}"
    return None


def contract_is_bookable(contract: ContractFacts, as_of: date) -> bool:
    return contract_reason(contract, as_of) is None


def supervision_window_reason(supervision: SupervisionFacts, as_of: date) -> Optional[str]:
    if not supervision.is_active:
        return "supervision relationship is inactive"
    if supervision.supervisor_id == supervision.supervisee_id:
        return "provider cannot supervise themselves"
    if supervision.start_date > as_of:
        return f"supervision starts {supervision.start_date.isoformat()}"
    if supervision.end_date is not None and supervision.end_date < as_of:
        return f"supervision ended {supervision.end_date.isoformat()}"
    return None


def provider_reason(provider: Optional[ProviderFacts], label: str = "provider") -> Optional[str]:
    if provider is None:
        return f"{label} not found"
    if not provider.is_active:
        return f"{label} is inactive"
    return None


def resolve_supervision_level(
    supervision: SupervisionFacts, payer: Optional[PayerFacts]
) -> str:
    if supervision.supervision_level:
        return supervision.supervision_level
    if payer is not None and payer.supervision_level:
        return payer.supervision_level
    return DEFAULT_SUPERVISION_LEVEL


def _latest(*values: Optional[date]) -> date:
    return max(v for v in values if v is not None)


def _earliest(*values: Optional[date]) -> Optional[date]:
    present = [v for v in values if v is not None]
    return min(present) if present else None


# ============================================================================
# CANDIDATES
# ============================================================================


def _direct_candidate(
    snapshot: BookabilitySnapshot, contract: ContractFacts, as_of: date
) -> Optional[BookableRelationship]:
    provider = snapshot.providers.get(contract.provider_id)
    if provider_reason(provider) or not provider.is_bookable:
        return None
    if contract.payer_id not in snapshot.payers:
        return None
    if not contract_is_bookable(contract, as_of):
        return None
    return BookableRelationship(
        provider_id=contract.provider_id,
        payer_id=contract.payer_id,
        relationship_type=DIRECT,
        billing_provider_id=contract.provider_id,
        rendering_provider_id=contract.provider_id,
        effective_date=contract.effective_date,
        expiration_date=contract.expiration_date,
        bookable_from_date=contract.starts_on,
        network_status=contract.status,
        contract_id=contract.id,
    )


def _supervised_candidate(
    snapshot: BookabilitySnapshot, supervision: SupervisionFacts, as_of: date
) -> Optional[BookableRelationship]:
    if supervision_window_reason(supervision, as_of):
        return None
    payer = snapshot.payers.get(supervision.payer_id)
    if payer is None or not payer.permits_supervision:
        return None
    supervisee = snapshot.providers.get(supervision.supervisee_id)
    supervisor = snapshot.providers.get(supervision.supervisor_id)
    if provider_reason(supervisee) or not supervisee.is_bookable:
        return None
    if provider_reason(supervisor):
        return None
    contract = snapshot.contract_for(supervision.supervisor_id, supervision.payer_id)
    if contract is None or not contract_is_bookable(contract, as_of):
        return None

    level = resolve_supervision_level(supervision, payer)
    return BookableRelationship(
        provider_id=supervision.supervisee_id,
        payer_id=supervision.payer_id,
        relationship_type=SUPERVISED,
        billing_provider_id=supervision.supervisor_id,
        rendering_provider_id=supervision.supervisee_id,
        supervising_provider_id=supervision.supervisor_id,
        effective_date=_latest(supervision.start_date, contract.effective_date),
        expiration_date=_earliest(supervision.end_date, contract.expiration_date),
        bookable_from_date=_latest(supervision.start_date, contract.starts_on),
        network_status=contract.status,
        supervision_level=level,
        requires_co_visit=level == "co_visit_required",
        contract_id=contract.id,
        supervision_id=supervision.id,
    )


def _prefer(
    current: Optional[BookableRelationship], candidate: BookableRelationship
) -> BookableRelationship:
    """Direct beats supervised; otherwise earliest bookable-from, then supervisor id"""
    if current is None:
        return candidate
    if current.relationship_type != candidate.relationship_type:
        return current if current.relationship_type == DIRECT else candidate
    current_key = (current.bookable_from_date, current.billing_provider_id)
    candidate_key = (candidate.bookable_from_date, candidate.billing_provider_id)
    return candidate if candidate_key < current_key else current


# ============================================================================
# PUBLIC API
# ============================================================================


def bookable_as_of(
    snapshot: BookabilitySnapshot,
    as_of: date,
    payer_id: Optional[str] = None,
    provider_id: Optional[str] = None,
) -> list[BookableRelationship]:
    """All bookable provider/payer pairs on as_of, one row per pair"""
    winners: dict[tuple[str, str], BookableRelationship] = {}

    for contract in snapshot.contracts:
        if payer_id and contract.payer_id != payer_id:
            continue
        if provider_id and contract.provider_id != provider_id:
            continue
        candidate = _direct_candidate(snapshot, contract, as_of)
        if candidate:
            key = (candidate.provider_id, candidate.payer_id)
            winners[key] = _prefer(winners.get(key), candidate)

    for supervision in snapshot.supervisions:
        if payer_id and supervision.payer_id != payer_id:
            continue
        if provider_id and supervision.supervisee_id != provider_id:
            continue
        candidate = _supervised_candidate(snapshot, supervision, as_of)
        if candidate:
            key = (candidate.provider_id, candidate.payer_id)
            winners[key] = _prefer(winners.get(key), candidate)

    return sorted(winners.values(), key=lambda r: (r.payer_id, r.provider_id))


def resolve_relationship(
    snapshot: BookabilitySnapshot, provider_id: str, payer_id: str, as_of: date
) -> Optional[BookableRelationship]:
    """Direct network first, then supervised network"""
    rows = bookable_as_of(snapshot, as_of, payer_id=payer_id, provider_id=provider_id)
    return rows[0] if rows else None


def explain(
    snapshot: BookabilitySnapshot, provider_id: str, payer_id: str, as_of: date
) -> BookabilityDecision:
    """Bookability decision with the reasons each route failed"""
    decision = BookabilityDecision(
        provider_id=provider_id, payer_id=payer_id, as_of=as_of, bookable=False
    )

    provider = snapshot.providers.get(provider_id)
    payer = snapshot.payers.get(payer_id)
    problem = provider_reason(provider)
    if problem:
        decision.reasons.append(problem)
        return decision
    if not provider.is_bookable:
        decision.reasons.append("provider is not marked bookable")
        return decision
    if payer is None:
        decision.reasons.append("payer not found")
        return decision

    relationship = resolve_relationship(snapshot, provider_id, payer_id, as_of)
    if relationship:
        decision.bookable = True
        decision.relationship = relationship
        return decision

    contract = snapshot.contract_for(provider_id, payer_id)
    if contract is None:
        decision.reasons.append("no direct contract with payer")
    else:
        decision.reasons.append(contract_reason(contract, as_of))

    supervisions = [
        s
        for s in snapshot.supervisions
        if s.supervisee_id == provider_id and s.payer_id == payer_id
    ]
    if not supervisions:
        decision.reasons.append("no supervision relationship for payer")
    for supervision in supervisions:
        decision.reasons.append(_supervision_failure(snapshot, supervision, payer, as_of))

    return decision


def _supervision_failure(
    snapshot: BookabilitySnapshot,
    supervision: SupervisionFacts,
    payer: PayerFacts,
    as_of: date,
) -> str:
    prefix = f"supervision by {supervision.supervisor_id}"
    problem = supervision_window_reason(supervision, as_of)
    if problem:
        return f"{prefix}: {problem}"
    if not payer.permits_supervision:
        return f"{prefix}: payer does not allow supervised billing"
    problem = provider_reason(snapshot.providers.get(supervision.supervisor_id), "supervisor")
    if problem:
        return f"{prefix}: {problem}"
    contract = snapshot.contract_for(supervision.supervisor_id, supervision.payer_id)
    if contract is None:
        return f"{prefix}: supervisor has no contract with payer"
    return f"{prefix}: supervisor {contract_reason(contract, as_of)}"


def earliest_bookable_date(
    snapshot: BookabilitySnapshot,
    provider_id: str,
    payer_id: str,
    on_or_after: date,
    horizon_days: int = 365,
) -> Optional[date]:
    """First day within the horizon on which the pair becomes bookable"""
    horizon = on_or_after + timedelta(days=horizon_days)

    # Bookability can only switch on at a window start, so checking those is enough
    candidates = {on_or_after}
    contracts = [
        c for c in snapshot.contracts if c.payer_id == payer_id and c.starts_on is not None
    ]
    for contract in contracts:
        candidates.add(contract.starts_on)
    for supervision in snapshot.supervisions:
        if supervision.supervisee_id == provider_id and supervision.payer_id == payer_id:
            candidates.add(supervision.start_date)

    for day in sorted(d for d in candidates if on_or_after <= d <= horizon):
        if resolve_relationship(snapshot, provider_id, payer_id, day):
            return day
    return None


# ============================================================================
# RESPONSE SHAPING
# ============================================================================


def to_legacy_provider(relationship: BookableRelationship, provider: dict) -> dict:
    """Flat provider row consumed by the booking widget"""
    return {
        **provider,
        "provider_id": relationship.provider_id,
        "via": relationship.relationship_type,
        "relationship_type": relationship.relationship_type,
        "attending_provider_id": relationship.supervising_provider_id,
        "billing_provider_id": relationship.billing_provider_id,
        "rendering_provider_id": relationship.rendering_provider_id,
        "supervision_level": relationship.supervision_level,
        "requires_co_visit": relationship.requires_co_visit,
        "effective": relationship.effective_date.isoformat(),
        "expiration_date": (
            relationship.expiration_date.isoformat() if relationship.expiration_date else None
        ),
        "bookable_from_date": relationship.bookable_from_date.isoformat(),
        "network_status": relationship.network_status,
    }


def group_by_supervision(rows: list[dict]) -> dict:
    return {
        "direct": [r for r in rows if r.get("via") == DIRECT],
        "supervised": [r for r in rows if r.get("via") == SUPERVISED],
    }


def normalize_languages(value) -> list[str]:
    """Accept a list, a JSON list string or a comma string"""
    if value is None or value == "":
        return ["English"]
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            try:
                value = json.loads(text)
            except json.JSONDecodeError:
                value = text.strip("[]").replace('"', "").split(",")
        else:
            value = text.split(",")
    languages = [str(v).strip() for v in value if str(v).strip()]
    return languages or ["English"]


def filter_by_language(providers: list[dict], language: Optional[str]) -> list[dict]:
    if not language:
        return providers
    wanted = language.strip().lower()
    return [
        p
        for p in providers
        if wanted in (lang.lower() for lang in normalize_languages(p.get("languages_spoken")))
    ]
