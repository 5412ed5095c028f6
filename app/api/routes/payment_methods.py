from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_processor
from app.models.landlord import LandlordProfile
from app.schemas.payment_method import (
    PaymentMethodConfirm,
    PaymentMethodLinkOut,
    PaymentMethodLinkRequest,
    PaymentMethodOut,
)
from app.services.access_gate import get_current_landlord, get_owned_tenant, require_rent_collection
from app.services.payment_methods import PaymentMethodRegistry

router = APIRouter(prefix="/payment-methods", tags=["payment-methods"])


@router.get("", response_model=List[PaymentMethodOut])
def list_payment_methods(
    db: Session = Depends(get_db),
    landlord: LandlordProfile = Depends(get_current_landlord),
    processor=Depends(get_processor),
    tenant_id: Optional[str] = Query(None),
):
    if tenant_id:
        get_owned_tenant(db, landlord.id, tenant_id)
    return PaymentMethodRegistry(db, processor).list_methods(landlord.id, tenant_id=tenant_id)


@router.post("/link", response_model=PaymentMethodLinkOut)
def link_payment_method(
    payload: PaymentMethodLinkRequest,
    db: Session = Depends(get_db),
    landlord: LandlordProfile = Depends(require_rent_collection),
    processor=Depends(get_processor),
):
    """Start bank-account verification; the client finishes it with the returned secret."""
    tenant = get_owned_tenant(db, landlord.id, payload.tenant_id)
    return PaymentMethodRegistry(db, processor).link(landlord, tenant)


@router.post("/confirm", response_model=PaymentMethodOut, status_code=201)
def confirm_payment_method(
    payload: PaymentMethodConfirm,
    db: Session = Depends(get_db),
    landlord: LandlordProfile = Depends(require_rent_collection),
    processor=Depends(get_processor),
):
    tenant = get_owned_tenant(db, landlord.id, payload.tenant_id)
    return PaymentMethodRegistry(db, processor).confirm(
        landlord,
        tenant,
        payload.payment_method_ref,
        payload.customer_ref,
        set_default=payload.set_default,
    )


@router.delete("/{method_id}", status_code=204)
def delete_payment_method(
    method_id: str,
    db: Session = Depends(get_db),
    landlord: LandlordProfile = Depends(get_current_landlord),
    processor=Depends(get_processor),
):
    # Removal stays available after a downgrade so records never get stuck
    PaymentMethodRegistry(db, processor).remove(landlord, method_id)
    return None
