from sqlalchemy import Column, String, DateTime, Boolean
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base


class LandlordProfile(Base):
    __tablename__ = "landlord_profiles"

    # Same id as the Supabase auth user
    id = Column(String(36), primary_key=True)
    email = Column(String, nullable=True)

    # free / basic / pro; maintained by the billing side of the app
    subscription_tier = Column(String, nullable=False, default="free")

    # Stripe Connect account that receives net rent
    payout_account_ref = Column(String, nullable=True, unique=True, index=True)
    charges_enabled = Column(Boolean, nullable=False, default=False)
    payouts_enabled = Column(Boolean, nullable=False, default=False)
    details_submitted = Column(Boolean, nullable=False, default=False)

    tenants = relationship("Tenant", back_populates="landlord", cascade="all, delete-orphan")
    properties = relationship("Property", back_populates="landlord", cascade="all, delete-orphan")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    @property
    def onboarding_complete(self) -> bool:
        return bool(self.payout_account_ref and self.details_submitted and self.charges_enabled)
