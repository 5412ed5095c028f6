"""
Access Gate: who may touch which rent-collection resources.

Checks run before any ledger or registry mutation and never inside the
fee or ledger math. Callers are told why access was denied for their own
account (tier, payout setup), but rows owned by someone else are answered
exactly like missing rows.
"""
import enum
import logging
from typing import FrozenSet, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.core.auth import User, get_current_user
from app.core.config import settings
from app.core.errors import AuthorizationError, NotFoundError, OwnershipError
from app.models.landlord import LandlordProfile
from app.models.payment_method import PaymentMethod
from app.models.property import Property
from app.models.tenant import Tenant

logger = logging.getLogger(__name__)


class Capability(str, enum.Enum):
    RENT_COLLECTION = "rent_collection"


def tier_capabilities(tier: Optional[str]) -> FrozenSet[Capability]:
    if (tier or "").lower() in {t.lower() for t in settings.RENT_COLLECTION_TIERS}:
        return frozenset({Capability.RENT_COLLECTION})
    return frozenset()


def require_capability(landlord: LandlordProfile, capability: Capability) -> None:
    if capability not in tier_capabilities(landlord.subscription_tier):
        raise AuthorizationError("Rent collection requires Pro subscription", capability=capability.value)


def require_payout_account(landlord: LandlordProfile) -> None:
    if not landlord.onboarding_complete:
        raise AuthorizationError("Please complete payment account setup first", capability="payout_account")


def load_landlord(db: Session, user: User) -> LandlordProfile:
    landlord = db.get(LandlordProfile, user.id)
    if landlord is None:
        raise AuthorizationError("Landlord profile is not set up")
    return landlord


# ----------------------------------------------------------------------
# FastAPI dependencies
# ----------------------------------------------------------------------

def get_current_landlord(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> LandlordProfile:
    return load_landlord(db, current_user)


def require_rent_collection(landlord: LandlordProfile = Depends(get_current_landlord)) -> LandlordProfile:
    require_capability(landlord, Capability.RENT_COLLECTION)
    return landlord


def require_origination(landlord: LandlordProfile = Depends(require_rent_collection)) -> LandlordProfile:
    """Entitlement plus a finished payout account: the bar for submitting a charge."""
    require_payout_account(landlord)
    return landlord


# ----------------------------------------------------------------------
# Ownership
# ----------------------------------------------------------------------

def deny_foreign(caller_id: str, owner_id: str, resource: str, resource_id: str, detail: str) -> OwnershipError:
    """
    Build the error for a row owned by another landlord.

    The attempt is logged for operators but nothing is written: the caller
    gets the same 404 as for a missing row, and no durable trace is left.
    """
    logger.warning("Landlord %s denied access to %s %s owned by %s", caller_id, resource, resource_id, owner_id)
    return OwnershipError(detail, resource=resource, resource_id=resource_id, owner_id=owner_id)


def get_owned_tenant(db: Session, landlord_id: str, tenant_id: str) -> Tenant:
    tenant = db.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFoundError("Tenant not found")
    if tenant.landlord_id != landlord_id:
        raise deny_foreign(landlord_id, tenant.landlord_id, "tenant", tenant_id, "Tenant not found")
    return tenant


def get_owned_property(db: Session, landlord_id: str, property_id: str) -> Property:
    prop = db.get(Property, property_id)
    if prop is None:
        raise NotFoundError("Property not found")
    if prop.landlord_id != landlord_id:
        raise deny_foreign(landlord_id, prop.landlord_id, "property", property_id, "Property not found")
    return prop


def get_owned_payment_method(db: Session, landlord_id: str, method_id: str) -> PaymentMethod:
    method = db.get(PaymentMethod, method_id)
    if method is None:
        raise NotFoundError("Payment method not found")
    if method.landlord_id != landlord_id:
        raise deny_foreign(landlord_id, method.landlord_id, "payment_method", method_id, "Payment method not found")
    return method
