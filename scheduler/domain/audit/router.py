"""Audit router - admin read access to the change log"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ...auth import AuthUser, require_admin
from ...database import get_db
from .repository import AuditRepository

router = APIRouter(prefix="/api/admin/audit-logs", tags=["Audit"])


class AuditLogResponse(BaseModel):
    id: str
    actor_user_id: Optional[str] = None
    actor_email: Optional[str] = None
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    before: Optional[dict] = None
    after: Optional[dict] = None
    note: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


@router.get("", response_model=list[AuditLogResponse])
async def list_audit_logs(
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    _admin: AuthUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Most recent audit entries, optionally for one entity"""
    return AuditRepository.list_entries(db, entity_type, entity_id, limit, offset)


__all__ = ["router"]
