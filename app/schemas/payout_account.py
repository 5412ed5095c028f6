from pydantic import BaseModel
from typing import Optional


class PayoutAccountStatusOut(BaseModel):
    account_ref: Optional[str] = None
    charges_enabled: bool = False
    payouts_enabled: bool = False
    details_submitted: bool = False
    onboarding_complete: bool = False

    class Config:
        from_attributes = True


class OnboardingOut(BaseModel):
    account_ref: str
    onboarding_complete: bool
    onboarding_url: Optional[str] = None

    class Config:
        from_attributes = True
