from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Index, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base, new_id
from app.core.stripe_processor import BANK_ACCOUNT


class PaymentMethod(Base):
    """A tenant's linked bank account, scoped to the landlord who onboarded it."""
    __tablename__ = "payment_methods"

    id = Column(String(36), primary_key=True, default=new_id)
    landlord_id = Column(String(36), ForeignKey("landlord_profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)

    processor_customer_ref = Column(String, nullable=False)
    processor_method_ref = Column(String, nullable=False, unique=True)
    method_type = Column(String, nullable=False, default=BANK_ACCOUNT)

    bank_name = Column(String, nullable=True)
    last_four = Column(String(4), nullable=True)

    is_default = Column(Boolean, nullable=False, default=False)
    is_verified = Column(Boolean, nullable=False, default=False)

    tenant = relationship("Tenant", back_populates="payment_methods")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        # At most one default per (landlord, tenant), enforced by the database
        Index(
            "uq_payment_methods_default_per_tenant",
            "landlord_id",
            "tenant_id",
            unique=True,
            postgresql_where=text("is_default"),
            sqlite_where=text("is_default = 1"),
        ),
    )
