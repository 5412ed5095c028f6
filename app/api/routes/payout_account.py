from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_processor
from app.models.landlord import LandlordProfile
from app.schemas.payout_account import OnboardingOut, PayoutAccountStatusOut
from app.services.access_gate import get_current_landlord, require_rent_collection
from app.services.payout_accounts import start_onboarding

router = APIRouter(prefix="/payout-account", tags=["payout-account"])


@router.get("", response_model=PayoutAccountStatusOut)
def get_payout_account_status(landlord: LandlordProfile = Depends(get_current_landlord)):
    return PayoutAccountStatusOut(
        account_ref=landlord.payout_account_ref,
        charges_enabled=landlord.charges_enabled,
        payouts_enabled=landlord.payouts_enabled,
        details_submitted=landlord.details_submitted,
        onboarding_complete=landlord.onboarding_complete,
    )


@router.post("/onboarding", response_model=OnboardingOut)
def start_payout_onboarding(
    db: Session = Depends(get_db),
    landlord: LandlordProfile = Depends(require_rent_collection),
    processor=Depends(get_processor),
):
    """Create the payout account if needed and return where to finish setting it up."""
    return start_onboarding(db, processor, landlord)
