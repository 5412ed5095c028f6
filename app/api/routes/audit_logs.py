from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.models.audit_log import AuditLog
from app.models.landlord import LandlordProfile
from app.schemas.audit_log import AuditLogOut
from app.services.access_gate import get_current_landlord

router = APIRouter(prefix="/audit-logs", tags=["audit-logs"])


def _parse_dt(value: str) -> datetime:
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid date-time '{value}'")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@router.get("", response_model=List[AuditLogOut])
def list_audit_logs(
    db: Session = Depends(get_db),
    landlord: LandlordProfile = Depends(get_current_landlord),
    start_date: Optional[str] = Query(None, description="ISO date-time"),
    end_date: Optional[str] = Query(None, description="ISO date-time"),
    entity_type: Optional[str] = Query(None, description="rent_payment|payment_method|payout_account"),
    entity_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    source: Optional[str] = Query(None, description="api|webhook|reconciliation"),
    risk_level: Optional[str] = Query(None, description="low|medium|high"),
    high_risk_only: Optional[bool] = Query(False),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """The caller's own trail, newest first. Returned payments show up as high risk."""
    q = db.query(AuditLog).filter(AuditLog.landlord_id == landlord.id)

    if start_date:
        q = q.filter(AuditLog.created_at >= _parse_dt(start_date))
    if end_date:
        q = q.filter(AuditLog.created_at <= _parse_dt(end_date))
    if entity_type:
        q = q.filter(AuditLog.entity_type == entity_type)
    if entity_id:
        q = q.filter(AuditLog.entity_id == entity_id)
    if action:
        q = q.filter(AuditLog.action == action)
    if source:
        q = q.filter(AuditLog.source == source)
    if high_risk_only:
        q = q.filter(AuditLog.risk_level == "high")
    elif risk_level:
        q = q.filter(AuditLog.risk_level == risk_level)

    return q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(offset).limit(limit).all()


@router.get("/stats")
def audit_log_stats(
    db: Session = Depends(get_db),
    landlord: LandlordProfile = Depends(get_current_landlord),
):
    now = datetime.now(timezone.utc)
    start_today = now.replace(hour=0, minute=0, second=0, microsecond=0)

    base = db.query(AuditLog).filter(AuditLog.landlord_id == landlord.id)
    return {
        "total": base.count(),
        "today": base.filter(AuditLog.created_at >= start_today).count(),
        "high_risk": base.filter(AuditLog.risk_level == "high").count(),
        "returned_payments": base.filter(
            AuditLog.entity_type == "rent_payment", AuditLog.action == "returned"
        ).count(),
        "collected_after_failure": base.filter(AuditLog.action == "collected_after_failure").count(),
    }
