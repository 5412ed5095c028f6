import logging
from typing import Optional

from app.models.audit_log import AuditLog
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# Statuses that change what the landlord should believe about their income
_HIGH_RISK_STATUSES = {"returned"}
_MEDIUM_RISK_STATUSES = {"failed"}


def _compute_risk_level(action: str, status: Optional[str], explicit: Optional[str] = None) -> str:
    if explicit:
        return explicit
    status_l = (status or "").lower()
    if status_l in _HIGH_RISK_STATUSES:
        return "high"
    if status_l in _MEDIUM_RISK_STATUSES:
        return "medium"
    return "low"


def log_audit(
    db: Session,
    *,
    landlord_id: str,
    action: str,
    entity_type: str,
    entity_id: str,
    actor_id: Optional[str] = None,
    source: str = "api",
    status: Optional[str] = None,
    tenant_id: Optional[str] = None,
    amount: Optional[int] = None,
    description: Optional[str] = None,
    risk_level: Optional[str] = None,
    commit: bool = True,
) -> AuditLog:
    """
    Record one audit entry.

    With commit=False the row joins the caller's transaction, so it lands
    atomically with the state change it describes.
    """
    log = AuditLog(
        landlord_id=landlord_id,
        actor_id=actor_id or landlord_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        source=source,
        status=status,
        tenant_id=tenant_id,
        amount=amount,
        description=description,
        risk_level=_compute_risk_level(action, status, risk_level),
    )
    db.add(log)
    if commit:
        db.commit()
        db.refresh(log)
    logger.debug("Audit %s %s %s (%s)", action, entity_type, entity_id, log.risk_level)
    return log
