"""
Service instance resolution

New-patient bookings use the payer's intake service instance. The fallback
chain is: payer-specific intake instance, then the global intake instance
(payer_id is null), then DEFAULT_SERVICE_INSTANCE_ID from configuration.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from ... import config
from ...models import Payer, Service, ServiceInstance, ServiceInstanceIntegration

logger = logging.getLogger(__name__)

EMR_SYSTEMS = ("intakeq", "practiceq")
INTAKE_NAME_PATTERNS = ("%intake%", "%new patient%")


@dataclass(frozen=True)
class ResolvedServiceInstance:
    service_instance_id: str
    service_name: str
    duration_minutes: int
    source: str  # payer_specific, global, default
    emr_service_id: Optional[str] = None


def _error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": code, "message": message})


class ServiceInstanceResolver:
    """Resolves which service instance (and EMR service id) a booking uses"""

    def __init__(self, db: Session):
        self.db = db

    def get_emr_service_id(self, service_instance_id: str) -> Optional[str]:
        row = (
            self.db.query(ServiceInstanceIntegration)
            .filter(
                ServiceInstanceIntegration.service_instance_id == service_instance_id,
                ServiceInstanceIntegration.system.in_(EMR_SYSTEMS),
            )
            .first()
        )
        return row.external_id if row else None

    def _intake_query(self):
        return (
            self.db.query(ServiceInstance)
            .join(Service, ServiceInstance.service_id == Service.id)
            .options(joinedload(ServiceInstance.service))
            .filter(
                Service.is_active.is_(True),
                or_(*[func.lower(Service.name).like(p) for p in INTAKE_NAME_PATTERNS]),
            )
        )

    def _intake_instances(self, payer_id: Optional[str]) -> list[ServiceInstance]:
        query = self._intake_query()
        if payer_id is None:
            query = query.filter(ServiceInstance.payer_id.is_(None))
        else:
            query = query.filter(ServiceInstance.payer_id == payer_id)
        return query.order_by(ServiceInstance.created_at, ServiceInstance.id).all()

    def _describe(
        self, instance: ServiceInstance, source: str, require_mapping: bool
    ) -> ResolvedServiceInstance:
        emr_service_id = self.get_emr_service_id(instance.id)
        if require_mapping and not emr_service_id:
            raise _error(
                422,
                "MISSING_SERVICE_MAPPING",
                f"Service instance {instance.id} has no EMR service mapping",
            )
        duration = instance.service.duration_minutes if instance.service else None
        if not duration:
            raise _error(
                422,
                "MISSING_DURATION",
                f"Service for instance {instance.id} has no duration configured",
            )
        return ResolvedServiceInstance(
            service_instance_id=instance.id,
            service_name=instance.service.name,
            duration_minutes=duration,
            source=source,
            emr_service_id=emr_service_id,
        )

    def get_instance(self, service_instance_id: str, require_mapping: bool = False) -> ResolvedServiceInstance:
        instance = (
            self.db.query(ServiceInstance)
            .options(joinedload(ServiceInstance.service))
            .filter(ServiceInstance.id == service_instance_id)
            .first()
        )
        if not instance:
            raise _error(404, "INVALID_SERVICE_INSTANCE", "Service instance not found")
        return self._describe(instance, "explicit", require_mapping)

    def list_intake_instances(self) -> list[ResolvedServiceInstance]:
        """Every intake instance, global ones first; instances without a duration are skipped"""
        instances = self._intake_query().order_by(
            ServiceInstance.payer_id.isnot(None), ServiceInstance.created_at, ServiceInstance.id
        ).all()
        resolved = []
        for instance in instances:
            source = "global" if instance.payer_id is None else "payer_specific"
            try:
                resolved.append(self._describe(instance, source, require_mapping=False))
            except HTTPException as e:
                logger.warning(f"⚠️ Skipping intake instance {instance.id}: {e.detail['message']}")
        return resolved

    def resolve_intake(
        self, payer_id: Optional[str], require_mapping: bool = True
    ) -> ResolvedServiceInstance:
        """Walk the fallback chain for the payer's intake service instance"""
        if payer_id is not None:
            if not self.db.query(Payer.id).filter(Payer.id == payer_id).first():
                raise _error(422, "INVALID_PAYER_ID", f"Payer {payer_id} does not exist")
            for instance in self._intake_instances(payer_id):
                if not require_mapping or self.get_emr_service_id(instance.id):
                    return self._describe(instance, "payer_specific", require_mapping)

        for instance in self._intake_instances(None):
            if not require_mapping or self.get_emr_service_id(instance.id):
                logger.info(f"↪️ Using global intake instance {instance.id} for payer {payer_id}")
                return self._describe(instance, "global", require_mapping)

        if config.DEFAULT_SERVICE_INSTANCE_ID:
            logger.warning(
                f"⚠️ No intake instance for payer {payer_id}, using default {config.DEFAULT_SERVICE_INSTANCE_ID}"
            )
            resolved = self.get_instance(config.DEFAULT_SERVICE_INSTANCE_ID, require_mapping)
            return replace(resolved, source="default")

        raise _error(
            422,
            "NO_INTAKE_INSTANCE_FOR_PAYER",
            f"No intake service instance is configured for payer {payer_id}",
        )
