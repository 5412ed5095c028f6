"""
Payment Method Registry: verified bank accounts per tenant, per landlord.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.audit import log_audit
from app.core.errors import PaymentValidationError, ProcessorRejectedError, ProcessorUnavailableError
from app.core.stripe_processor import BANK_ACCOUNT
from app.models.landlord import LandlordProfile
from app.models.payment_method import PaymentMethod
from app.models.tenant import Tenant
from app.services.access_gate import deny_foreign, get_owned_payment_method

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LinkResult:
    client_secret: str
    customer_ref: str


class PaymentMethodRegistry:
    def __init__(self, db: Session, processor):
        self.db = db
        self.processor = processor

    def list_methods(self, landlord_id: str, tenant_id: Optional[str] = None) -> List[PaymentMethod]:
        q = self.db.query(PaymentMethod).filter(PaymentMethod.landlord_id == landlord_id)
        if tenant_id:
            q = q.filter(PaymentMethod.tenant_id == tenant_id)
        return q.order_by(PaymentMethod.is_default.desc(), PaymentMethod.created_at.desc()).all()

    def _existing_customer_ref(self, landlord_id: str, tenant_id: str) -> Optional[str]:
        return (
            self.db.query(PaymentMethod.processor_customer_ref)
            .filter(PaymentMethod.landlord_id == landlord_id, PaymentMethod.tenant_id == tenant_id)
            .limit(1)
            .scalar()
        )

    def link(self, landlord: LandlordProfile, tenant: Tenant) -> LinkResult:
        """Reuse or create the tenant's processor customer, then start bank verification."""
        metadata = {"tenant_id": tenant.id, "landlord_id": landlord.id}
        customer_ref = self._existing_customer_ref(landlord.id, tenant.id)
        if customer_ref is None:
            customer_ref = self.processor.create_customer(
                tenant.email or f"tenant-{tenant.id}@tenants.invalid",
                tenant.full_name,
                {**metadata, "type": "tenant"},
            )
            logger.info("Created processor customer %s for tenant %s", customer_ref, tenant.id)

        intent = self.processor.create_verification_intent(customer_ref, metadata)
        return LinkResult(client_secret=intent.client_secret, customer_ref=customer_ref)

    def confirm(
        self,
        landlord: LandlordProfile,
        tenant: Tenant,
        method_ref: str,
        customer_ref: str,
        set_default: bool = True,
    ) -> PaymentMethod:
        """
        Persist a bank account after the client-side verification flow.

        Clearing the old default and setting the new one happen in one
        transaction under a lock on the tenant row; the partial unique index
        on (landlord_id, tenant_id) WHERE is_default backs this up when two
        confirms race, and the loser retries once.
        """
        instrument = self.processor.get_instrument(method_ref)
        if instrument.type != BANK_ACCOUNT:
            raise PaymentValidationError(f"Unsupported payment method type '{instrument.type}'")
        if instrument.customer_ref and instrument.customer_ref != customer_ref:
            raise PaymentValidationError("Payment method belongs to a different customer")

        for attempt in range(2):
            try:
                method = self._save(landlord, tenant, instrument, customer_ref, set_default)
                break
            except IntegrityError:
                self.db.rollback()
                if attempt == 1:
                    raise
                logger.info("Concurrent default change for tenant %s, retrying", tenant.id)

        log_audit(
            self.db,
            landlord_id=landlord.id,
            action="linked",
            entity_type="payment_method",
            entity_id=method.id,
            tenant_id=tenant.id,
            status="verified" if method.is_verified else "unverified",
            description=f"{method.bank_name or 'Bank account'} ending {method.last_four or '????'}",
        )
        return method

    def _save(self, landlord, tenant, instrument, customer_ref, set_default) -> PaymentMethod:
        # Serializes default changes per tenant (no-op on SQLite)
        self.db.query(Tenant).filter(Tenant.id == tenant.id).with_for_update().one()

        method = (
            self.db.query(PaymentMethod)
            .filter(PaymentMethod.processor_method_ref == instrument.ref)
            .first()
        )
        if method is not None and method.landlord_id != landlord.id:
            owner_id, method_id = method.landlord_id, method.id
            self.db.rollback()
            raise deny_foreign(landlord.id, owner_id, "payment_method", method_id, "Payment method not found")
        if method is not None and method.tenant_id != tenant.id:
            self.db.rollback()
            raise PaymentValidationError("Payment method is linked to a different tenant")

        if set_default:
            q = self.db.query(PaymentMethod).filter(
                PaymentMethod.landlord_id == landlord.id,
                PaymentMethod.tenant_id == tenant.id,
                PaymentMethod.is_default.is_(True),
            )
            if method is not None:
                q = q.filter(PaymentMethod.id != method.id)
            q.update({PaymentMethod.is_default: False}, synchronize_session="fetch")
            self.db.flush()

        if method is None:
            method = PaymentMethod(
                landlord_id=landlord.id,
                tenant_id=tenant.id,
                processor_method_ref=instrument.ref,
            )
            self.db.add(method)

        method.processor_customer_ref = customer_ref
        method.method_type = instrument.type
        method.bank_name = instrument.bank_name
        method.last_four = instrument.last_four
        method.is_verified = instrument.verified
        if set_default:
            method.is_default = True

        self.db.commit()
        self.db.refresh(method)
        return method

    def remove(self, landlord: LandlordProfile, method_id: str) -> None:
        """
        Delete a payment method.

        The processor detach is best-effort: a failure is logged and the local
        row is deleted anyway, so a record can never become un-removable.
        """
        method = get_owned_payment_method(self.db, landlord.id, method_id)
        try:
            self.processor.detach_instrument(method.processor_method_ref)
        except (ProcessorRejectedError, ProcessorUnavailableError):
            logger.exception("Failed to detach payment method %s from processor", method.id)

        tenant_id = method.tenant_id
        self.db.delete(method)
        self.db.commit()
        log_audit(
            self.db,
            landlord_id=landlord.id,
            action="removed",
            entity_type="payment_method",
            entity_id=method_id,
            tenant_id=tenant_id,
        )
