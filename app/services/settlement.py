"""
Settlement Coordinator: hands ledger rows to the processor and applies
what the processor later reports.

Two paths write to a row after creation, and they may run in either order:

- submit(), from the origination request, records the synchronous answer;
- handle_event(), from the webhook, records the asynchronous settlement.

Both go through the ledger's compare-and-set transitions. No lock is held
while waiting on the processor.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from app.core.audit import log_audit
from app.core.errors import (
    InvalidTransitionError,
    NotFoundError,
    PaymentValidationError,
    ProcessorRejectedError,
    ProcessorUnavailableError,
)
from app.core.stripe_processor import RENT_PAYMENT_METADATA_TYPE
from app.models.audit_log import AuditLog
from app.models.landlord import LandlordProfile
from app.models.payment_method import PaymentMethod
from app.models.rent_payments import RentPayment, RentPaymentStatus
from app.services.rent_ledger import RentLedger

logger = logging.getLogger(__name__)

ACCEPTED = "accepted"
REJECTED = "rejected"
AMBIGUOUS = "ambiguous"

COLLECTED_AFTER_FAILURE = "collected_after_failure"

S = RentPaymentStatus


@dataclass
class SubmissionOutcome:
    payment: RentPayment
    result: str  # accepted / rejected / ambiguous
    processor_ref: Optional[str] = None
    detail: Optional[str] = None


class SettlementCoordinator:
    def __init__(self, db: Session, processor, ledger: Optional[RentLedger] = None):
        self.db = db
        self.processor = processor
        self.ledger = ledger or RentLedger(db)

    def _charge_metadata(self, payment: RentPayment) -> dict:
        period = f"{payment.rent_period_start or ''} to {payment.rent_period_end or ''}"
        return {
            "type": RENT_PAYMENT_METADATA_TYPE,
            "rent_payment_id": payment.id,
            "landlord_id": payment.landlord_id,
            "tenant_id": payment.tenant_id or "",
            "property_id": payment.property_id or "",
            "rent_period": period,
            "description": payment.description or "Rent payment",
        }

    def submit(
        self,
        payment: RentPayment,
        landlord: LandlordProfile,
        *,
        client_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SubmissionOutcome:
        """
        Send a pending payment to the processor.

        The charge uses the amounts already stored on the row; nothing is
        recomputed here. Transport failures leave the row pending for the
        reconciliation sweep rather than retrying on the spot.
        """
        if payment.status != S.PENDING.value:
            raise InvalidTransitionError(
                f"Rent payment {payment.id} is {payment.status}; only pending payments can be submitted",
                current_status=payment.status,
            )
        method = self.db.get(PaymentMethod, payment.payment_method_id) if payment.payment_method_id else None
        if method is None or not method.is_verified:
            raise PaymentValidationError("Payment method is missing or not verified")

        payment_id = payment.id
        try:
            result = self.processor.charge(
                method.processor_customer_ref,
                method.processor_method_ref,
                payment.charged_amount,
                self._charge_metadata(payment),
                payment.idempotency_key,
                destination=landlord.payout_account_ref,
                destination_amount=payment.net_amount,
                client_ip=client_ip,
                user_agent=user_agent,
            )
        except ProcessorRejectedError as e:
            try:
                failed = self.ledger.mark_failed(payment_id, e.detail, processor_ref=e.extra.get("operation_ref"))
            except InvalidTransitionError:
                # A webhook already resolved the row
                failed = self.ledger.get(payment_id)
            self.audit(failed, "failed", description=e.detail)
            return SubmissionOutcome(payment=failed, result=REJECTED, detail=e.detail)
        except ProcessorUnavailableError as e:
            logger.warning("Rent payment %s left pending after transport failure: %s", payment_id, e.detail)
            pending = self.ledger.get(payment_id)
            self.audit(pending, "submission_unconfirmed", description=e.detail)
            return SubmissionOutcome(payment=pending, result=AMBIGUOUS, detail=e.detail)

        try:
            submitted = self.ledger.mark_submitted(payment_id, result.operation_ref, result.status)
        except InvalidTransitionError as e:
            # The webhook got here first; its transitions already recorded the reference
            submitted = self.ledger.get(payment_id)
            logger.info(
                "Rent payment %s already advanced to %s before the submit response (%s)",
                payment_id, submitted.status, e.detail,
            )
        self.audit(submitted, "submitted")
        return SubmissionOutcome(payment=submitted, result=ACCEPTED, processor_ref=result.operation_ref)

    def handle_event(
        self,
        processor_ref: str,
        outcome: str,
        reason: Optional[str] = None,
        rent_payment_id: Optional[str] = None,
        source: str = "webhook",
    ) -> Optional[RentPayment]:
        """
        Apply one settlement notification. Safe under at-least-once delivery.

        Returns the updated payment, or None when the event was logged and
        dropped (unknown reference, or an outcome that conflicts with the
        row's terminal state).
        """
        payment = self.ledger.find_by_processor_ref(processor_ref)
        if payment is None and rent_payment_id:
            try:
                payment = self.ledger.get(rent_payment_id)
            except NotFoundError:
                payment = None
            if payment is not None and payment.processor_ref not in (None, processor_ref):
                logger.warning(
                    "Event for %s names payment %s which is bound to %s; dropping",
                    processor_ref, payment.id, payment.processor_ref,
                )
                return None
        if payment is None:
            logger.warning("Dropping settlement event for unknown processor reference %s", processor_ref)
            return None

        if payment.status == S.FAILED.value and outcome == "succeeded":
            return self._collected_after_failure(payment, processor_ref, source)

        if payment.status == S.FAILED.value and outcome == "returned":
            logger.info("Failure for %s already recorded on payment %s", processor_ref, payment.id)
            return payment

        before = payment.status
        try:
            if payment.status == S.PENDING.value:
                payment = self._resolve_pending(payment, processor_ref, outcome, reason)
                if payment.status == S.FAILED.value:
                    self.audit(payment, "failed", source=source, description=reason)
                    return payment
            payment = self.ledger.apply_settlement_event(processor_ref, outcome, reason)
        except (InvalidTransitionError, PaymentValidationError, NotFoundError) as e:
            logger.warning(
                "Dropping %s event for %s (payment %s is %s): %s",
                outcome, processor_ref, payment.id, payment.status, e.detail,
            )
            return None

        if payment.status != before:
            self._record_settlement(payment, source)
        return payment

    def _resolve_pending(self, payment: RentPayment, processor_ref: str, outcome: str, reason: Optional[str]) -> RentPayment:
        """
        The event beat the synchronous response (or the response was lost).

        A failure for a row we never saw accepted is a rejection, not a
        return; anything else proves acceptance, so record the submission first.
        """
        try:
            if outcome == "returned":
                return self.ledger.mark_failed(payment.id, reason or "Payment failed", processor_ref=processor_ref)
            return self.ledger.mark_submitted(payment.id, processor_ref, S.PROCESSING.value)
        except InvalidTransitionError:
            # The submit path moved it meanwhile
            return self.ledger.get(payment.id)

    def _collected_after_failure(self, payment: RentPayment, processor_ref: str, source: str) -> Optional[RentPayment]:
        """
        The processor settled a charge for a row already recorded as failed,
        e.g. one the sweep could not find yet. The row stays failed; the
        reference is bound and the landlord gets a high-risk audit entry.
        """
        try:
            payment = self.ledger.bind_late_settlement(payment.id, processor_ref)
        except InvalidTransitionError as e:
            logger.warning("Dropping succeeded event for %s: %s", processor_ref, e.detail)
            return None

        already_flagged = (
            self.db.query(AuditLog.id)
            .filter(
                AuditLog.entity_type == "rent_payment",
                AuditLog.entity_id == payment.id,
                AuditLog.action == COLLECTED_AFTER_FAILURE,
            )
            .first()
        )
        if already_flagged is not None:
            logger.info("Late settlement of %s already flagged on payment %s", processor_ref, payment.id)
            return payment

        logger.error(
            "Rent payment %s is recorded as failed but processor charge %s succeeded; "
            "%s cents were collected for landlord %s and need manual reconciliation",
            payment.id, processor_ref, payment.charged_amount, payment.landlord_id,
        )
        self.audit(
            payment,
            COLLECTED_AFTER_FAILURE,
            source=source,
            description=f"Processor charge {processor_ref} succeeded after this payment was recorded as failed. "
                        f"{payment.net_amount} cents are due to the landlord.",
            risk_level="high",
        )
        return payment

    def _record_settlement(self, payment: RentPayment, source: str) -> None:
        if payment.status == S.RETURNED.value:
            # Clawback notice: this net amount may already have been reported as income
            logger.warning(
                "Rent payment %s returned after acceptance; %s cents of reported income is being clawed back from landlord %s",
                payment.id, payment.net_amount, payment.landlord_id,
            )
            self.audit(
                payment,
                "returned",
                source=source,
                description=f"Returned after acceptance: {payment.failure_reason or 'no reason given'}. "
                            f"{payment.net_amount} cents previously expected will be clawed back.",
            )
        else:
            self.audit(payment, "settled", source=source)

    def audit(
        self,
        payment: RentPayment,
        action: str,
        source: str = "api",
        description: Optional[str] = None,
        risk_level: Optional[str] = None,
    ) -> None:
        log_audit(
            self.db,
            landlord_id=payment.landlord_id,
            actor_id={"api": payment.landlord_id, "webhook": "processor"}.get(source, "system"),
            action=action,
            entity_type="rent_payment",
            entity_id=payment.id,
            source=source,
            status=payment.status,
            tenant_id=payment.tenant_id,
            amount=payment.charged_amount,
            description=description,
            risk_level=risk_level,
        )
