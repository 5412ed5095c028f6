"""
Rent Payment Ledger: the durable record of every collection attempt.

State machine:

    pending ──► processing ──► succeeded
       │             └───────► returned
       └──────► failed

Every transition is a compare-and-set UPDATE guarded by the expected
current status, so the synchronous submission path and the webhook path
can race without overwriting each other. A CAS that matches no row raises
InvalidTransitionError and leaves the row untouched.
"""
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, FrozenSet, List, Optional

from sqlalchemy import case, func, or_
from sqlalchemy.orm import Session

from app.core.database import new_id, utcnow
from app.core.errors import InvalidTransitionError, NotFoundError, PaymentValidationError
from app.models.rent_payments import FeePayer, RentPayment, RentPaymentStatus
from app.services.charge_calculator import ChargeBreakdown

logger = logging.getLogger(__name__)

S = RentPaymentStatus

ALLOWED_TRANSITIONS: Dict[RentPaymentStatus, FrozenSet[RentPaymentStatus]] = {
    S.PENDING: frozenset({S.PROCESSING, S.FAILED}),
    S.PROCESSING: frozenset({S.SUCCEEDED, S.RETURNED}),
    S.SUCCEEDED: frozenset(),
    S.FAILED: frozenset(),
    S.RETURNED: frozenset(),
}

SETTLEMENT_OUTCOMES = {
    "succeeded": S.SUCCEEDED,
    "returned": S.RETURNED,
}


@dataclass
class RentPaymentPage:
    items: List[RentPayment]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.page_size else 0


def idempotency_key_for(payment_id: str) -> str:
    return f"rent_payment:{payment_id}"


class RentLedger:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Creation and reads
    # ------------------------------------------------------------------

    def create(
        self,
        *,
        landlord_id: str,
        tenant_id: str,
        payment_method_id: str,
        amount: int,
        breakdown: ChargeBreakdown,
        fee_payer: FeePayer,
        fee_schedule_version: str,
        property_id: Optional[str] = None,
        rent_period_start: Optional[date] = None,
        rent_period_end: Optional[date] = None,
        due_date: Optional[date] = None,
        description: Optional[str] = None,
    ) -> RentPayment:
        """Insert a `pending` row and commit it before anything is sent to the processor."""
        if breakdown.charged_amount - breakdown.net_amount != breakdown.fee_amount:
            raise PaymentValidationError("Charge breakdown does not balance")
        if rent_period_start and rent_period_end and rent_period_end < rent_period_start:
            raise PaymentValidationError("rent_period_end must not be before rent_period_start")

        payment_id = new_id()
        payment = RentPayment(
            id=payment_id,
            # Derived from the row id, so retrying this row can never charge twice
            idempotency_key=idempotency_key_for(payment_id),
            landlord_id=landlord_id,
            tenant_id=tenant_id,
            property_id=property_id,
            payment_method_id=payment_method_id,
            amount=amount,
            charged_amount=breakdown.charged_amount,
            fee_amount=breakdown.fee_amount,
            net_amount=breakdown.net_amount,
            fee_payer=FeePayer(fee_payer).value,
            fee_schedule_version=fee_schedule_version,
            status=S.PENDING.value,
            rent_period_start=rent_period_start,
            rent_period_end=rent_period_end,
            due_date=due_date,
            description=description,
        )
        self.db.add(payment)
        self.db.commit()
        self.db.refresh(payment)
        logger.info(
            "Rent payment %s recorded as pending (charged=%s fee=%s net=%s mode=%s)",
            payment.id, payment.charged_amount, payment.fee_amount, payment.net_amount, payment.fee_payer,
        )
        return payment

    def get(self, payment_id: str, landlord_id: Optional[str] = None) -> RentPayment:
        q = self.db.query(RentPayment).filter(RentPayment.id == payment_id)
        if landlord_id is not None:
            q = q.filter(RentPayment.landlord_id == landlord_id)
        payment = q.first()
        if payment is None:
            raise NotFoundError("Rent payment not found")
        return payment

    def find_by_processor_ref(self, processor_ref: str) -> Optional[RentPayment]:
        return self.db.query(RentPayment).filter(RentPayment.processor_ref == processor_ref).first()

    def list_payments(
        self,
        landlord_id: str,
        *,
        tenant_id: Optional[str] = None,
        property_id: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> RentPaymentPage:
        """Newest first, with an exact total count for the same filters."""
        q = self.db.query(RentPayment).filter(RentPayment.landlord_id == landlord_id)
        if tenant_id:
            q = q.filter(RentPayment.tenant_id == tenant_id)
        if property_id:
            q = q.filter(RentPayment.property_id == property_id)
        if status:
            try:
                q = q.filter(RentPayment.status == RentPaymentStatus(status).value)
            except ValueError:
                raise PaymentValidationError(f"Unknown status '{status}'")

        total = q.order_by(None).count()
        items = (
            q.order_by(RentPayment.created_at.desc(), RentPayment.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return RentPaymentPage(items=items, total=total, page=page, page_size=page_size)

    def find_stale_pending(self, older_than: timedelta, landlord_id: Optional[str] = None) -> List[RentPayment]:
        cutoff = utcnow() - older_than
        q = self.db.query(RentPayment).filter(
            RentPayment.status == S.PENDING.value,
            RentPayment.created_at < cutoff,
        )
        if landlord_id is not None:
            q = q.filter(RentPayment.landlord_id == landlord_id)
        return q.order_by(RentPayment.created_at.asc()).all()

    def summary(self, landlord_id: str, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or utcnow()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

        def total(expr, *statuses):
            return func.coalesce(
                func.sum(case((RentPayment.status.in_([s.value for s in statuses]), expr), else_=0)), 0
            )

        row = (
            self.db.query(
                total(RentPayment.net_amount, S.SUCCEEDED),
                total(RentPayment.charged_amount, S.PENDING, S.PROCESSING),
                total(RentPayment.charged_amount, S.FAILED),
                total(RentPayment.net_amount, S.RETURNED),
                func.coalesce(
                    func.sum(
                        case(
                            (
                                (RentPayment.status == S.SUCCEEDED.value) & (RentPayment.paid_at >= month_start),
                                RentPayment.net_amount,
                            ),
                            else_=0,
                        )
                    ),
                    0,
                ),
                func.count(case((RentPayment.status == S.SUCCEEDED.value, 1))),
            )
            .filter(RentPayment.landlord_id == landlord_id)
            .one()
        )
        return {
            "total_collected": int(row[0]),
            "total_in_flight": int(row[1]),
            "total_failed": int(row[2]),
            "total_returned": int(row[3]),
            "collected_this_month": int(row[4]),
            "succeeded_count": int(row[5]),
        }

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(self, payment_id: str, expected: RentPaymentStatus, new: RentPaymentStatus, **values) -> None:
        """Compare-and-set one status change inside the current transaction."""
        if new not in ALLOWED_TRANSITIONS[expected]:
            raise InvalidTransitionError(f"Transition {expected.value} -> {new.value} is not allowed")

        values.update(status=new.value, updated_at=utcnow())
        updated = (
            self.db.query(RentPayment)
            .filter(RentPayment.id == payment_id, RentPayment.status == expected.value)
            .update(values, synchronize_session=False)
        )
        if updated != 1:
            current = (
                self.db.query(RentPayment.status).filter(RentPayment.id == payment_id).scalar()
            )
            if current is None:
                raise NotFoundError("Rent payment not found")
            raise InvalidTransitionError(
                f"Rent payment {payment_id} is {current}, expected {expected.value}",
                current_status=current,
            )

    def _commit_and_load(self, payment_id: str) -> RentPayment:
        self.db.commit()
        return self.get(payment_id)

    def mark_submitted(self, payment_id: str, processor_ref: str, initial_status: str = "processing") -> RentPayment:
        """
        Record that the processor accepted the charge.

        An immediate synchronous success is stored as pending -> processing
        -> succeeded in one transaction, so no state is skipped.
        """
        initial = RentPaymentStatus(initial_status)
        if initial not in (S.PROCESSING, S.SUCCEEDED):
            raise InvalidTransitionError(f"Submission cannot start in status {initial.value}")

        now = utcnow()
        try:
            self._transition(payment_id, S.PENDING, S.PROCESSING, processor_ref=processor_ref, submitted_at=now)
            if initial is S.SUCCEEDED:
                self._transition(payment_id, S.PROCESSING, S.SUCCEEDED, paid_at=now)
        except Exception:
            self.db.rollback()
            raise
        payment = self._commit_and_load(payment_id)
        logger.info("Rent payment %s submitted as %s (ref %s)", payment_id, payment.status, processor_ref)
        return payment

    def mark_failed(self, payment_id: str, reason: str, processor_ref: Optional[str] = None) -> RentPayment:
        values = {"failure_reason": reason}
        if processor_ref:
            values["processor_ref"] = processor_ref
        try:
            self._transition(payment_id, S.PENDING, S.FAILED, **values)
        except Exception:
            self.db.rollback()
            raise
        payment = self._commit_and_load(payment_id)
        logger.info("Rent payment %s failed: %s", payment_id, reason)
        return payment

    def bind_late_settlement(self, payment_id: str, processor_ref: str) -> RentPayment:
        """
        Attach the processor reference of a charge that settled after the row
        was already recorded as failed. The status is not changed.

        Only a failed row with no reference, or with this same reference,
        can be bound.
        """
        try:
            updated = (
                self.db.query(RentPayment)
                .filter(
                    RentPayment.id == payment_id,
                    RentPayment.status == S.FAILED.value,
                    or_(RentPayment.processor_ref.is_(None), RentPayment.processor_ref == processor_ref),
                )
                .update({"processor_ref": processor_ref, "updated_at": utcnow()}, synchronize_session=False)
            )
            if updated != 1:
                current = self.db.query(RentPayment.status).filter(RentPayment.id == payment_id).scalar()
                if current is None:
                    raise NotFoundError("Rent payment not found")
                raise InvalidTransitionError(
                    f"Rent payment {payment_id} cannot take processor reference {processor_ref}",
                    current_status=current,
                )
        except Exception:
            self.db.rollback()
            raise
        return self._commit_and_load(payment_id)

    def apply_settlement_event(self, processor_ref: str, outcome: str, reason: Optional[str] = None) -> RentPayment:
        """
        Move a `processing` payment to its settled outcome.

        Replays are no-ops: if the row is already in the outcome's status it
        is returned unchanged. Any other non-processing status is rejected.
        """
        target = SETTLEMENT_OUTCOMES.get(outcome)
        if target is None:
            raise PaymentValidationError(f"Unknown settlement outcome '{outcome}'")

        payment = self.find_by_processor_ref(processor_ref)
        if payment is None:
            raise NotFoundError(f"No rent payment for processor reference {processor_ref}")
        if payment.status == target.value:
            logger.info("Settlement %s for %s already applied", outcome, payment.id)
            return payment

        now = utcnow()
        values = {"paid_at": now} if target is S.SUCCEEDED else {"returned_at": now, "failure_reason": reason}
        try:
            self._transition(payment.id, S.PROCESSING, target, **values)
        except InvalidTransitionError:
            self.db.rollback()
            # Lost a race with an identical replay
            current = self.get(payment.id)
            if current.status == target.value:
                return current
            raise
        except Exception:
            self.db.rollback()
            raise
        payment = self._commit_and_load(payment.id)
        logger.info("Rent payment %s settled as %s", payment.id, payment.status)
        return payment
