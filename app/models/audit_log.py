from sqlalchemy import Column, String, DateTime, Integer
from sqlalchemy.sql import func
from app.core.database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    # Landlord whose data the entry concerns; readers only ever see their own
    landlord_id = Column(String(36), nullable=False, index=True)
    actor_id = Column(String, nullable=False)  # landlord id, or "processor" for webhooks
    action = Column(String, nullable=False, index=True)  # created/submitted/failed/settled/returned/linked/removed/collected_after_failure
    entity_type = Column(String, nullable=False, index=True)  # rent_payment/payment_method/payout_account
    entity_id = Column(String, nullable=False, index=True)
    source = Column(String, nullable=True, index=True)  # api/webhook/reconciliation
    status = Column(String, nullable=True, index=True)
    tenant_id = Column(String(36), nullable=True, index=True)
    amount = Column(Integer, nullable=True)  # cents, when the entry concerns money
    risk_level = Column(String, nullable=False, default="low", index=True)
    description = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
