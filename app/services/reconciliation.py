"""
Reconciliation sweep for pending payments whose submission outcome was lost.

A row stays `pending` when the processor call timed out or the process
died between recording the row and hearing back. After a grace period the
sweep asks the processor whether it ever saw the charge (by the row's
idempotency key) and resolves the row through the normal ledger paths.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import InvalidTransitionError, ProcessorRejectedError, ProcessorUnavailableError
from app.core.stripe_processor import CHARGE_FAILED, CHARGE_SUCCEEDED
from app.services.rent_ledger import RentLedger
from app.services.settlement import SettlementCoordinator

logger = logging.getLogger(__name__)

SOURCE = "reconciliation"
NOT_RECEIVED_REASON = "Submission was never received by the payment processor"


@dataclass
class SweepReport:
    examined: int = 0
    submitted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    unresolved: List[str] = field(default_factory=list)


class ReconciliationSweep:
    def __init__(self, db: Session, processor, older_than: Optional[timedelta] = None):
        self.db = db
        self.processor = processor
        self.ledger = RentLedger(db)
        self.coordinator = SettlementCoordinator(db, processor, self.ledger)
        if older_than is None:
            older_than = timedelta(minutes=settings.RECONCILE_PENDING_AFTER_MINUTES)
        self.older_than = older_than

    def run(self, landlord_id: Optional[str] = None) -> SweepReport:
        report = SweepReport()
        for payment in self.ledger.find_stale_pending(self.older_than, landlord_id=landlord_id):
            report.examined += 1
            payment_id = payment.id
            try:
                found = self.processor.find_charge(payment.idempotency_key)
            except (ProcessorUnavailableError, ProcessorRejectedError) as e:
                logger.warning("Could not reconcile rent payment %s: %s", payment_id, e.detail)
                report.unresolved.append(payment_id)
                continue

            try:
                if found is None:
                    failed = self.ledger.mark_failed(payment_id, NOT_RECEIVED_REASON)
                    self.coordinator.audit(failed, "failed", source=SOURCE, description=NOT_RECEIVED_REASON)
                    report.failed.append(payment_id)
                elif found.status == CHARGE_FAILED:
                    reason = found.failure_reason or "Payment failed"
                    failed = self.ledger.mark_failed(payment_id, reason, processor_ref=found.operation_ref)
                    self.coordinator.audit(failed, "failed", source=SOURCE, description=reason)
                    report.failed.append(payment_id)
                else:
                    submitted = self.ledger.mark_submitted(payment_id, found.operation_ref)
                    self.coordinator.audit(submitted, "submitted", source=SOURCE)
                    if found.status == CHARGE_SUCCEEDED:
                        self.coordinator.handle_event(found.operation_ref, "succeeded", source=SOURCE)
                    report.submitted.append(payment_id)
            except InvalidTransitionError:
                # Resolved by a webhook while we were asking
                logger.info("Rent payment %s resolved concurrently", payment_id)
                continue

        logger.info(
            "Reconciliation sweep: examined=%s submitted=%s failed=%s unresolved=%s",
            report.examined, len(report.submitted), len(report.failed), len(report.unresolved),
        )
        return report
