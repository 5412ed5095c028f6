"""
Inbound processor events.

Signature first, then the event-id ledger, then dispatch. A replayed event
id stops at the ledger; a replayed *outcome* under a new event id is still
harmless because settlement goes through the ledger's compare-and-set.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.processor_event import ProcessorEvent
from app.services.payout_accounts import apply_account_update
from app.services.settlement import SettlementCoordinator

logger = logging.getLogger(__name__)

APPLIED = "applied"
IGNORED = "ignored"
DROPPED = "dropped"


@dataclass
class WebhookResult:
    event_id: str
    event_type: str
    result: str
    duplicate: bool = False
    detail: Optional[str] = None


class WebhookProcessor:
    def __init__(self, db: Session, processor):
        self.db = db
        self.processor = processor

    def process(self, payload: bytes, signature: Optional[str]) -> WebhookResult:
        # Raises WebhookSignatureError before anything is read or written
        event = self.processor.parse_event(payload, signature)

        seen = self.db.query(ProcessorEvent).filter(ProcessorEvent.event_id == event.event_id).first()
        if seen is not None:
            logger.info("Event %s already processed (%s) - skipping", event.event_id, seen.result)
            return WebhookResult(event.event_id, event.event_type, seen.result, duplicate=True)

        result, detail = self._dispatch(event)

        self.db.add(
            ProcessorEvent(
                event_id=event.event_id,
                event_type=event.event_type,
                operation_ref=event.operation_ref,
                result=result,
                detail=detail,
            )
        )
        try:
            self.db.commit()
        except IntegrityError:
            # Same event delivered twice concurrently; the other copy recorded it
            self.db.rollback()
            logger.info("Event %s recorded concurrently - skipping", event.event_id)
            return WebhookResult(event.event_id, event.event_type, result, duplicate=True, detail=detail)

        if result == DROPPED:
            logger.warning("Dropped event %s (%s): %s", event.event_id, event.event_type, detail)
        return WebhookResult(event.event_id, event.event_type, result, detail=detail)

    def _dispatch(self, event):
        if event.account is not None:
            landlord = apply_account_update(self.db, event.account)
            if landlord is None:
                return DROPPED, f"Unknown payout account {event.account.account_ref}"
            return APPLIED, None

        if event.outcome is not None:
            payment = SettlementCoordinator(self.db, self.processor).handle_event(
                event.operation_ref,
                event.outcome,
                reason=event.reason,
                rent_payment_id=event.metadata.get("rent_payment_id"),
            )
            if payment is None:
                return DROPPED, f"No applicable rent payment for {event.operation_ref}"
            return APPLIED, f"rent payment {payment.id} is {payment.status}"

        return IGNORED, None
