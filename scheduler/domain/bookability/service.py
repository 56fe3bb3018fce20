"""Bookability service - applies the rules to stored contracts and supervision"""

import logging
from datetime import date, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...cache import BOOKABILITY_PREFIX, cached
from ...shared.timeutils import clinic_today
from ..providers.schemas import payer_to_dict, provider_to_dict
from . import rules
from .repository import BookabilityRepository

logger = logging.getLogger(__name__)

EXPIRY_BUCKETS = (30, 60, 90)


def _payer_key(self, payer_id, as_of, language=None):
    return f"{BOOKABILITY_PREFIX}:payer:{payer_id}:{as_of.isoformat()}:{(language or 'any').lower()}"


def _provider_key(self, provider_id, as_of, horizon_days=90):
    return f"{BOOKABILITY_PREFIX}:provider:{provider_id}:{as_of.isoformat()}:{horizon_days}"


class BookabilityService:
    """Service layer for bookability look-ups and reports"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = BookabilityRepository()

    def require_payer(self, payer_id: str):
        payer = self.repo.get_payer(self.db, payer_id)
        if not payer:
            raise HTTPException(
                status_code=404, detail={"code": "INVALID_PAYER", "message": "Payer not found"}
            )
        return payer

    def require_provider(self, provider_id: str):
        provider = self.repo.get_provider(self.db, provider_id)
        if not provider:
            raise HTTPException(
                status_code=404,
                detail={"code": "INVALID_PROVIDER", "message": "Provider not found"},
            )
        return provider

    # ========================================================================
    # LOOK-UPS
    # ========================================================================

    def get_bookable(
        self,
        as_of: date,
        payer_id: Optional[str] = None,
        provider_id: Optional[str] = None,
    ) -> list[rules.BookableRelationship]:
        """Bookable relationships on as_of, optionally narrowed to a payer or provider"""
        snapshot = self.repo.load_snapshot(self.db, payer_id=payer_id, provider_id=provider_id)
        return rules.bookable_as_of(snapshot, as_of, payer_id=payer_id, provider_id=provider_id)

    def get_bookable_range(
        self, payer_id: str, start_date: date, end_date: date, provider_id: Optional[str] = None
    ) -> dict[date, list[rules.BookableRelationship]]:
        """Bookable relationships for every day in the range, from a single snapshot"""
        snapshot = self.repo.load_snapshot(self.db, payer_id=payer_id, provider_id=provider_id)
        days = {}
        day = start_date
        while day <= end_date:
            days[day] = rules.bookable_as_of(
                snapshot, day, payer_id=payer_id, provider_id=provider_id
            )
            day += timedelta(days=1)
        return days

    def is_bookable(self, provider_id: str, payer_id: str, as_of: date) -> rules.BookabilityDecision:
        snapshot = self.repo.load_snapshot(self.db, payer_id=payer_id, provider_id=provider_id)
        decision = rules.explain(snapshot, provider_id, payer_id, as_of)
        logger.debug(
            f"Bookability {provider_id} x {payer_id} on {as_of}: {decision.bookable} {decision.reasons}"
        )
        return decision

    @cached(key_builder=_payer_key)
    def providers_for_payer(
        self, payer_id: str, as_of: date, language: Optional[str] = None
    ) -> dict:
        """Providers bookable for a payer, in the flat shape the booking widget reads"""
        payer = self.require_payer(payer_id)
        relationships = self.get_bookable(as_of, payer_id=payer_id)
        providers = self.repo.get_providers(self.db, {r.provider_id for r in relationships})

        rows = [
            rules.to_legacy_provider(r, provider_to_dict(providers[r.provider_id]))
            for r in relationships
            if r.provider_id in providers
        ]
        rows = rules.filter_by_language(rows, language)
        rows.sort(key=lambda r: (r["last_name"], r["first_name"]))
        grouped = rules.group_by_supervision(rows)

        logger.info(
            f"📋 Payer {payer.name}: {len(rows)} bookable providers as of {as_of} "
            f"({len(grouped['direct'])} direct, {len(grouped['supervised'])} supervised)"
        )
        return {
            "payer": payer_to_dict(payer),
            "as_of": as_of.isoformat(),
            "language": language,
            "providers": rows,
            "total_providers": len(rows),
            "bookable_count": len(rows),
            "direct_count": len(grouped["direct"]),
            "supervised_count": len(grouped["supervised"]),
            "grouped": grouped,
        }

    @cached(key_builder=_provider_key)
    def payers_for_provider(self, provider_id: str, as_of: date, horizon_days: int = 90) -> dict:
        """Payers a provider is bookable for now, plus those becoming bookable soon"""
        provider = self.require_provider(provider_id)
        snapshot = self.repo.load_snapshot(self.db, provider_id=provider_id)

        current = rules.bookable_as_of(snapshot, as_of, provider_id=provider_id)
        current_ids = {r.payer_id for r in current}

        upcoming = []
        candidate_payers = {c.payer_id for c in snapshot.contracts if c.provider_id == provider_id}
        candidate_payers |= {s.payer_id for s in snapshot.supervisions}
        for payer_id in sorted(candidate_payers - current_ids):
            first_day = rules.earliest_bookable_date(
                snapshot, provider_id, payer_id, as_of + timedelta(days=1), horizon_days
            )
            if first_day:
                upcoming.append({"payer_id": payer_id, "bookable_from_date": first_day.isoformat()})

        payers = self.repo.get_payers(
            self.db, current_ids | {u["payer_id"] for u in upcoming}
        )
        return {
            "provider": provider_to_dict(provider),
            "as_of": as_of.isoformat(),
            "bookable": [
                {**payer_to_dict(payers[r.payer_id]), "relationship": r.to_dict()}
                for r in current
                if r.payer_id in payers
            ],
            "bookable_soon": [
                {**payer_to_dict(payers[u["payer_id"]]), **u}
                for u in upcoming
                if u["payer_id"] in payers
            ],
        }

    # ========================================================================
    # ADMIN REPORTS
    # ========================================================================

    def coverage(
        self,
        view: str,
        entity_id: str,
        mode: str = "today",
        service_date: Optional[date] = None,
    ) -> dict:
        """Coverage of one provider (payer view) or one payer (provider view)"""
        if mode == "service_date":
            if not service_date:
                raise HTTPException(
                    status_code=422, detail="service_date is required when mode=service_date"
                )
            as_of = service_date
        elif mode == "today":
            as_of = clinic_today()
        else:
            raise HTTPException(status_code=422, detail="mode must be 'today' or 'service_date'")

        if view == "provider":
            return self._provider_coverage(entity_id, as_of, mode)
        if view == "payer":
            return self._payer_coverage(entity_id, as_of, mode)
        raise HTTPException(status_code=422, detail="view must be 'provider' or 'payer'")

    def _contract_status(self, contract: rules.ContractFacts, as_of: date) -> str:
        if contract.status == "terminated":
            return "terminated"
        if contract.status not in rules.ACTIVE_CONTRACT_STATUSES:
            return "pending"
        if contract.expiration_date and contract.expiration_date < as_of:
            return "expired"
        if contract.starts_on is None or contract.starts_on > as_of:
            return "future"
        return "bookable"

    def _provider_coverage(self, provider_id: str, as_of: date, mode: str) -> dict:
        provider = self.require_provider(provider_id)
        snapshot = self.repo.load_snapshot(self.db, provider_id=provider_id)
        bookable = {
            r.payer_id: r for r in rules.bookable_as_of(snapshot, as_of, provider_id=provider_id)
        }

        entries = []
        for contract in snapshot.contracts:
            if contract.provider_id != provider_id:
                continue
            entries.append(
                {
                    "payer_id": contract.payer_id,
                    "route": rules.DIRECT,
                    "status": self._contract_status(contract, as_of),
                    "effective_date": contract.effective_date,
                    "expiration_date": contract.expiration_date,
                    "bookable_from_date": contract.starts_on,
                    "supervising_provider_id": None,
                }
            )
        for supervision in snapshot.supervisions:
            winner = bookable.get(supervision.payer_id)
            is_winner = winner is not None and winner.supervision_id == supervision.id
            entries.append(
                {
                    "payer_id": supervision.payer_id,
                    "route": rules.SUPERVISED,
                    "status": "bookable" if is_winner else self._supervision_status(supervision, as_of),
                    "effective_date": supervision.start_date,
                    "expiration_date": supervision.end_date,
                    "bookable_from_date": winner.bookable_from_date if is_winner else None,
                    "supervising_provider_id": supervision.supervisor_id,
                }
            )

        payers = self.repo.get_payers(self.db, {e["payer_id"] for e in entries})
        for entry in entries:
            payer = payers.get(entry["payer_id"])
            entry["payer_name"] = payer.name if payer else None
            for key in ("effective_date", "expiration_date", "bookable_from_date"):
                if entry[key] is not None:
                    entry[key] = entry[key].isoformat()
        entries.sort(key=lambda e: (e["payer_name"] or "", e["route"]))

        return {
            "view": "provider",
            "mode": mode,
            "as_of": as_of.isoformat(),
            "provider": provider_to_dict(provider),
            "payers": entries,
            "summary": {
                "bookable_payers": len(bookable),
                "direct": sum(1 for r in bookable.values() if r.relationship_type == rules.DIRECT),
                "supervised": sum(
                    1 for r in bookable.values() if r.relationship_type == rules.SUPERVISED
                ),
            },
        }

    def _supervision_status(self, supervision: rules.SupervisionFacts, as_of: date) -> str:
        if not supervision.is_active:
            return "inactive"
        if supervision.start_date > as_of:
            return "future"
        if supervision.end_date and supervision.end_date < as_of:
            return "expired"
        return "not_bookable"

    def _payer_coverage(self, payer_id: str, as_of: date, mode: str) -> dict:
        payer = self.require_payer(payer_id)
        snapshot = self.repo.load_snapshot(self.db, payer_id=payer_id)
        relationships = rules.bookable_as_of(snapshot, as_of, payer_id=payer_id)
        bookable_ids = {r.provider_id for r in relationships}

        upcoming = []
        for contract in snapshot.contracts:
            if contract.provider_id in bookable_ids:
                continue
            status = self._contract_status(contract, as_of)
            if status in ("future", "pending"):
                upcoming.append(
                    {
                        "provider_id": contract.provider_id,
                        "status": status,
                        "bookable_from_date": (
                            contract.starts_on.isoformat() if contract.starts_on else None
                        ),
                    }
                )

        providers = self.repo.get_providers(
            self.db, bookable_ids | {u["provider_id"] for u in upcoming}
        )
        rows = [
            {**r.to_dict(), "provider_name": providers[r.provider_id].full_name}
            for r in relationships
            if r.provider_id in providers
        ]
        for entry in upcoming:
            provider = providers.get(entry["provider_id"])
            entry["provider_name"] = provider.full_name if provider else None

        return {
            "view": "payer",
            "mode": mode,
            "as_of": as_of.isoformat(),
            "payer": payer_to_dict(payer),
            "providers": rows,
            "upcoming": upcoming,
            "summary": {
                "bookable_providers": len(rows),
                "direct": sum(1 for r in relationships if r.relationship_type == rules.DIRECT),
                "supervised": sum(
                    1 for r in relationships if r.relationship_type == rules.SUPERVISED
                ),
            },
        }

    def health(self, as_of: Optional[date] = None) -> dict:
        """Gaps in the bookability data that need admin attention"""
        as_of = as_of or clinic_today()
        snapshot = self.repo.load_full_snapshot(self.db)
        relationships = rules.bookable_as_of(snapshot, as_of)

        payers_by_provider: dict[str, int] = {}
        providers_by_payer: dict[str, int] = {}
        for r in relationships:
            payers_by_provider[r.provider_id] = payers_by_provider.get(r.provider_id, 0) + 1
            providers_by_payer[r.payer_id] = providers_by_payer.get(r.payer_id, 0) + 1

        bookable_providers = [
            p for p in snapshot.providers.values() if p.is_active and p.is_bookable
        ]
        contracted = {c.provider_id for c in snapshot.contracts}

        expiring = []
        horizon = as_of + timedelta(days=EXPIRY_BUCKETS[-1])
        for contract in snapshot.contracts:
            if contract.status not in rules.ACTIVE_CONTRACT_STATUSES:
                continue
            if contract.expiration_date and as_of <= contract.expiration_date <= horizon:
                days_left = (contract.expiration_date - as_of).days
                expiring.append(
                    {
                        "contract_id": contract.id,
                        "provider_id": contract.provider_id,
                        "payer_id": contract.payer_id,
                        "expiration_date": contract.expiration_date.isoformat(),
                        "days_until_expiration": days_left,
                        "bucket": next(b for b in EXPIRY_BUCKETS if days_left <= b),
                    }
                )
        expiring.sort(key=lambda e: e["days_until_expiration"])

        orphaned = []
        for supervision in snapshot.supervisions:
            if rules.supervision_window_reason(supervision, as_of):
                continue
            contract = snapshot.contract_for(supervision.supervisor_id, supervision.payer_id)
            if contract is None or not rules.contract_is_bookable(contract, as_of):
                orphaned.append(
                    {
                        "supervision_id": supervision.id,
                        "supervisor_provider_id": supervision.supervisor_id,
                        "supervisee_provider_id": supervision.supervisee_id,
                        "payer_id": supervision.payer_id,
                    }
                )

        report = {
            "as_of": as_of.isoformat(),
            "providers_zero_payers": sorted(
                p.id for p in bookable_providers if p.id not in payers_by_provider
            ),
            "payers_zero_providers": sorted(
                p for p in snapshot.payers if p not in providers_by_payer
            ),
            "contracts_expiring": expiring,
            "providers_no_contracts": sorted(
                p.id for p in bookable_providers if p.id not in contracted
            ),
            "supervision_without_contract": orphaned,
        }
        report["summary"] = {
            "bookable_relationships": len(relationships),
            "providers_zero_payers": len(report["providers_zero_payers"]),
            "payers_zero_providers": len(report["payers_zero_providers"]),
            "contracts_expiring_30": sum(1 for e in expiring if e["bucket"] == 30),
            "contracts_expiring_60": sum(1 for e in expiring if e["bucket"] == 60),
            "contracts_expiring_90": sum(1 for e in expiring if e["bucket"] == 90),
            "providers_no_contracts": len(report["providers_no_contracts"]),
            "supervision_without_contract": len(orphaned),
        }
        if any(report["summary"][k] for k in ("providers_zero_payers", "supervision_without_contract")):
            logger.warning(f"⚠️ Bookability health issues as of {as_of}: {report['summary']}")
        return report
