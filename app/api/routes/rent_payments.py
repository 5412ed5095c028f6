from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_processor
from app.core.audit import log_audit
from app.core.errors import InvalidTransitionError, PaymentValidationError, ProcessorRejectedError
from app.models.landlord import LandlordProfile
from app.models.rent_payments import RentPaymentStatus, TERMINAL_STATUSES
from app.schemas.rent_payment import (
    OriginationOut,
    ReconcileOut,
    RentPaymentCreate,
    RentPaymentOut,
    RentPaymentPageOut,
    RentPaymentSummaryOut,
)
from app.services.access_gate import (
    get_current_landlord,
    get_owned_payment_method,
    get_owned_property,
    get_owned_tenant,
    require_origination,
    require_rent_collection,
)
from app.services.charge_calculator import compute_charge, parse_fee_payer
from app.services.fee_policy import get_fee_schedule
from app.services.reconciliation import ReconciliationSweep
from app.services.rent_ledger import RentLedger
from app.services.settlement import AMBIGUOUS, REJECTED, SettlementCoordinator

router = APIRouter(prefix="/rent-payments", tags=["rent-payments"])


@router.post("", response_model=OriginationOut, status_code=201)
def create_rent_payment(
    payload: RentPaymentCreate,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    landlord: LandlordProfile = Depends(require_origination),
    processor=Depends(get_processor),
):
    """
    Originate one rent collection.

    Everything that can be rejected is checked before the row is written;
    once the pending row exists, every outcome leaves it behind:
    - 201: the processor accepted the charge (processing, or succeeded)
    - 202: the processor did not answer; the row stays pending for reconciliation
    - 402: the processor declined; the row is failed with the verbatim reason
    """
    tenant = get_owned_tenant(db, landlord.id, payload.tenant_id)
    if payload.property_id:
        prop_id = get_owned_property(db, landlord.id, payload.property_id).id
    else:
        prop_id = tenant.property_id

    method = get_owned_payment_method(db, landlord.id, payload.payment_method_id)
    if method.tenant_id != tenant.id:
        raise PaymentValidationError("Payment method does not belong to this tenant")
    if not method.is_verified:
        raise PaymentValidationError("Payment method must be verified before it can be charged")

    if payload.amount <= 0:
        raise PaymentValidationError("Amount must be a positive number of cents")
    fee_payer = parse_fee_payer(payload.fee_payer)
    schedule = get_fee_schedule()
    breakdown = compute_charge(payload.amount, schedule.compute_fee(payload.amount), fee_payer)

    ledger = RentLedger(db)
    payment = ledger.create(
        landlord_id=landlord.id,
        tenant_id=tenant.id,
        property_id=prop_id,
        payment_method_id=method.id,
        amount=payload.amount,
        breakdown=breakdown,
        fee_payer=fee_payer,
        fee_schedule_version=schedule.version,
        rent_period_start=payload.rent_period_start,
        rent_period_end=payload.rent_period_end,
        due_date=payload.due_date,
        description=payload.description or f"Rent payment for {tenant.full_name}",
    )
    log_audit(
        db,
        landlord_id=landlord.id,
        action="created",
        entity_type="rent_payment",
        entity_id=payment.id,
        status=payment.status,
        tenant_id=tenant.id,
        amount=payment.charged_amount,
    )

    outcome = SettlementCoordinator(db, processor, ledger).submit(
        payment,
        landlord,
        client_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    if outcome.result == REJECTED:
        raise ProcessorRejectedError(outcome.detail, payment_id=outcome.payment.id)
    if outcome.result == AMBIGUOUS:
        response.status_code = 202

    return {"payment": outcome.payment, "submission": outcome.result, "detail": outcome.detail}


@router.get("", response_model=RentPaymentPageOut)
def list_rent_payments(
    db: Session = Depends(get_db),
    landlord: LandlordProfile = Depends(get_current_landlord),
    tenant_id: Optional[str] = Query(None),
    property_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None, description="pending|processing|succeeded|failed|returned"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
):
    return RentLedger(db).list_payments(
        landlord.id,
        tenant_id=tenant_id,
        property_id=property_id,
        status=status,
        page=page,
        page_size=page_size,
    )


@router.get("/summary", response_model=RentPaymentSummaryOut)
def rent_payments_summary(
    db: Session = Depends(get_db),
    landlord: LandlordProfile = Depends(get_current_landlord),
):
    return RentLedger(db).summary(landlord.id)


@router.post("/reconcile", response_model=ReconcileOut)
def reconcile_rent_payments(
    db: Session = Depends(get_db),
    landlord: LandlordProfile = Depends(require_rent_collection),
    processor=Depends(get_processor),
):
    """Resolve this landlord's pending payments whose submission outcome was lost."""
    return ReconciliationSweep(db, processor).run(landlord_id=landlord.id)


@router.get("/{payment_id}", response_model=RentPaymentOut)
def get_rent_payment(
    payment_id: str,
    db: Session = Depends(get_db),
    landlord: LandlordProfile = Depends(get_current_landlord),
):
    return RentLedger(db).get(payment_id, landlord_id=landlord.id)


@router.post("/{payment_id}/cancel")
def cancel_rent_payment(
    payment_id: str,
    db: Session = Depends(get_db),
    landlord: LandlordProfile = Depends(get_current_landlord),
):
    """There is no local cancel; this says why for the payment's current status."""
    payment = RentLedger(db).get(payment_id, landlord_id=landlord.id)
    status = RentPaymentStatus(payment.status)
    if status in TERMINAL_STATUSES:
        detail = f"Rent payment is already {status.value} and cannot be cancelled"
    elif status is RentPaymentStatus.PENDING:
        detail = (
            "Rent payment may already have reached the payment processor; "
            "it cannot be cancelled until reconciliation resolves it"
        )
    else:
        detail = (
            "Rent payment has been submitted to the payment processor and can only be "
            "stopped through the processor's own cancellation or return process"
        )
    raise InvalidTransitionError(detail, current_status=status.value)
