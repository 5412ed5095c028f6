import enum

from sqlalchemy import Column, Integer, ForeignKey, Date, String, DateTime, CheckConstraint, Index, func
from sqlalchemy.orm import relationship

from app.core.database import Base, new_id, utcnow


class RentPaymentStatus(str, enum.Enum):
    PENDING = "pending"          # recorded, not yet known to be at the processor
    PROCESSING = "processing"    # accepted by the processor, awaiting settlement
    SUCCEEDED = "succeeded"      # settled; the only status that counts as collected
    FAILED = "failed"            # rejected before acceptance; never affected income
    RETURNED = "returned"        # reversed after acceptance; clawback of reported income


TERMINAL_STATUSES = frozenset(
    {RentPaymentStatus.SUCCEEDED, RentPaymentStatus.FAILED, RentPaymentStatus.RETURNED}
)


class FeePayer(str, enum.Enum):
    LANDLORD = "landlord"
    TENANT = "tenant"
    SPLIT = "split"


def _in_list(column: str, enum_cls) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


class RentPayment(Base):
    __tablename__ = "rent_payments"

    id = Column(String(36), primary_key=True, default=new_id)

    landlord_id = Column(String(36), ForeignKey("landlord_profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="SET NULL"), nullable=True, index=True)
    property_id = Column(String(36), ForeignKey("properties.id", ondelete="SET NULL"), nullable=True, index=True)
    payment_method_id = Column(String(36), ForeignKey("payment_methods.id", ondelete="SET NULL"), nullable=True)

    # All amounts are integer cents
    amount = Column(Integer, nullable=False)          # rent requested by the landlord
    charged_amount = Column(Integer, nullable=False)  # pulled from the tenant's account
    fee_amount = Column(Integer, nullable=False)      # kept by the processor
    net_amount = Column(Integer, nullable=False)      # due to the landlord
    fee_payer = Column(String(10), nullable=False, default=FeePayer.LANDLORD.value)
    # Fee schedule in effect at creation, so the row stays auditable after rate changes
    fee_schedule_version = Column(String, nullable=False)

    status = Column(String(12), nullable=False, default=RentPaymentStatus.PENDING.value, index=True)
    idempotency_key = Column(String, nullable=False, unique=True)
    processor_ref = Column(String, nullable=True, unique=True)
    failure_reason = Column(String, nullable=True)

    rent_period_start = Column(Date, nullable=True)
    rent_period_end = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True, index=True)
    description = Column(String, nullable=True)

    submitted_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    returned_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    tenant = relationship("Tenant")
    property = relationship("Property", back_populates="rent_payments")
    payment_method = relationship("PaymentMethod")

    __table_args__ = (
        CheckConstraint("amount >= 0 AND charged_amount >= 0 AND fee_amount >= 0 AND net_amount >= 0", name="ck_rent_payments_non_negative"),
        CheckConstraint("charged_amount - net_amount = fee_amount", name="ck_rent_payments_fee_balance"),
        CheckConstraint(_in_list("status", RentPaymentStatus), name="ck_rent_payments_status"),
        CheckConstraint(_in_list("fee_payer", FeePayer), name="ck_rent_payments_fee_payer"),
        Index("ix_rent_payments_landlord_created", "landlord_id", "created_at"),
    )
