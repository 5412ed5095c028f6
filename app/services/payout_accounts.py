"""Landlord payout (Connect) accounts: the destination of net rent."""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from app.core.audit import log_audit
from app.core.config import settings
from app.models.landlord import LandlordProfile

logger = logging.getLogger(__name__)


@dataclass
class OnboardingResult:
    account_ref: str
    onboarding_complete: bool
    onboarding_url: Optional[str] = None


def _apply_state(landlord: LandlordProfile, state) -> None:
    landlord.charges_enabled = state.charges_enabled
    landlord.payouts_enabled = state.payouts_enabled
    landlord.details_submitted = state.details_submitted


def start_onboarding(db: Session, processor, landlord: LandlordProfile) -> OnboardingResult:
    """Create the account on first use; hand back an onboarding link until it is complete."""
    if not landlord.payout_account_ref:
        landlord.payout_account_ref = processor.create_payout_account(landlord.email, {"landlord_id": landlord.id})
        db.commit()
        log_audit(
            db,
            landlord_id=landlord.id,
            action="created",
            entity_type="payout_account",
            entity_id=landlord.payout_account_ref,
        )

    _apply_state(landlord, processor.get_payout_account(landlord.payout_account_ref))
    db.commit()

    if landlord.onboarding_complete:
        return OnboardingResult(account_ref=landlord.payout_account_ref, onboarding_complete=True)

    base = settings.APP_URL.rstrip("/")
    url = processor.create_onboarding_link(
        landlord.payout_account_ref,
        f"{base}/dashboard/settings?connect=refresh",
        f"{base}/dashboard/settings?connect=complete",
    )
    return OnboardingResult(account_ref=landlord.payout_account_ref, onboarding_complete=False, onboarding_url=url)


def apply_account_update(db: Session, state) -> Optional[LandlordProfile]:
    """Webhook path: refresh the stored flags for a known account."""
    landlord = (
        db.query(LandlordProfile)
        .filter(LandlordProfile.payout_account_ref == state.account_ref)
        .first()
    )
    if landlord is None:
        logger.warning("account.updated for unknown payout account %s", state.account_ref)
        return None
    _apply_state(landlord, state)
    db.commit()
    logger.info("Payout account %s updated (complete=%s)", state.account_ref, landlord.onboarding_complete)
    return landlord
