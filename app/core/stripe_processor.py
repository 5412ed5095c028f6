"""
Stripe binding for the payment processor contract.

Only this module talks to Stripe. Everything above it sees plain
dataclasses and the two processor errors from app.core.errors:

- ProcessorRejectedError: Stripe answered and said no (card/bank errors,
  invalid requests). The message is passed through verbatim.
- ProcessorUnavailableError: no usable answer (connection errors,
  timeouts, 5xx). The operation may or may not have happened.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import stripe

from app.core.config import settings
from app.core.errors import (
    ProcessorRejectedError,
    ProcessorUnavailableError,
    WebhookSignatureError,
)

logger = logging.getLogger(__name__)

BANK_ACCOUNT = "us_bank_account"
RENT_PAYMENT_METADATA_TYPE = "rent_payment"

# Normalized charge statuses
CHARGE_PROCESSING = "processing"
CHARGE_SUCCEEDED = "succeeded"
CHARGE_FAILED = "failed"

_INTENT_STATUS_MAP = {
    "succeeded": CHARGE_SUCCEEDED,
    "processing": CHARGE_PROCESSING,
    "requires_action": CHARGE_PROCESSING,
    "requires_confirmation": CHARGE_PROCESSING,
    "requires_capture": CHARGE_PROCESSING,
    "requires_payment_method": CHARGE_FAILED,
    "canceled": CHARGE_FAILED,
}


@dataclass(frozen=True)
class VerificationIntent:
    client_secret: str
    instrument_ref: str


@dataclass(frozen=True)
class Instrument:
    ref: str
    type: str
    bank_name: Optional[str]
    last_four: Optional[str]
    customer_ref: Optional[str]
    verified: bool


@dataclass(frozen=True)
class ChargeResult:
    operation_ref: str
    status: str
    failure_reason: Optional[str] = None


@dataclass(frozen=True)
class PayoutAccountState:
    account_ref: str
    charges_enabled: bool
    payouts_enabled: bool
    details_submitted: bool


@dataclass(frozen=True)
class WebhookEvent:
    event_id: str
    event_type: str
    operation_ref: Optional[str] = None
    # "succeeded" / "returned" for rent payment settlement events, else None
    outcome: Optional[str] = None
    reason: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    account: Optional[PayoutAccountState] = None


def _error_message(e: stripe.StripeError) -> str:
    return e.user_message or str(e)


def _stripe_call(fn, *args, **kwargs):
    """Run one Stripe API call, translating its errors into processor errors."""
    try:
        return fn(*args, **kwargs)
    except (stripe.CardError, stripe.InvalidRequestError) as e:
        raise ProcessorRejectedError(_error_message(e))
    except stripe.APIConnectionError as e:
        raise ProcessorUnavailableError(f"Payment processor unreachable: {_error_message(e)}")
    except stripe.StripeError as e:
        if e.http_status is not None and 400 <= e.http_status < 500 and e.http_status != 429:
            raise ProcessorRejectedError(_error_message(e))
        raise ProcessorUnavailableError(f"Payment processor error: {_error_message(e)}")


def _charge_result(intent) -> ChargeResult:
    status = _INTENT_STATUS_MAP.get(intent.status, CHARGE_PROCESSING)
    reason = None
    if status == CHARGE_FAILED:
        error = intent.get("last_payment_error") or {}
        reason = error.get("message") or f"Payment {intent.status}"
    return ChargeResult(operation_ref=intent.id, status=status, failure_reason=reason)


def _account_state(account) -> PayoutAccountState:
    return PayoutAccountState(
        account_ref=account.id,
        charges_enabled=bool(account.get("charges_enabled")),
        payouts_enabled=bool(account.get("payouts_enabled")),
        details_submitted=bool(account.get("details_submitted")),
    )


class StripeProcessor:
    """Bank-debit collection and Connect payouts through Stripe."""

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None,
                 timeout: Optional[int] = None):
        stripe.api_key = (api_key or settings.STRIPE_SECRET_KEY).strip()
        stripe.default_http_client = stripe.RequestsClient(
            timeout=timeout or settings.STRIPE_TIMEOUT_SECONDS
        )
        self.webhook_secret = (webhook_secret or settings.STRIPE_WEBHOOK_SECRET).strip()

    # ------------------------------------------------------------------
    # Customers and bank-account verification
    # ------------------------------------------------------------------

    def create_customer(self, external_identity: str, display_name: str, metadata: Dict[str, str]) -> str:
        customer = _stripe_call(
            stripe.Customer.create,
            email=external_identity,
            name=display_name,
            metadata={**metadata, "source": "rent-collection"},
        )
        return customer.id

    def create_verification_intent(self, customer_ref: str, metadata: Dict[str, str]) -> VerificationIntent:
        intent = _stripe_call(
            stripe.SetupIntent.create,
            customer=customer_ref,
            payment_method_types=[BANK_ACCOUNT],
            payment_method_options={
                BANK_ACCOUNT: {
                    "financial_connections": {"permissions": ["payment_method", "balances"]},
                    "verification_method": "instant",
                },
            },
            metadata=metadata,
        )
        return VerificationIntent(client_secret=intent.client_secret, instrument_ref=intent.id)

    def get_instrument(self, instrument_ref: str) -> Instrument:
        pm = _stripe_call(stripe.PaymentMethod.retrieve, instrument_ref)
        bank = pm.get(BANK_ACCOUNT) or {}
        customer = pm.get("customer")
        return Instrument(
            ref=pm.id,
            type=pm.type,
            bank_name=bank.get("bank_name"),
            last_four=bank.get("last4"),
            customer_ref=customer if isinstance(customer, str) or customer is None else customer.id,
            # Stripe only attaches the method to the customer once verification succeeded
            verified=customer is not None,
        )

    def detach_instrument(self, instrument_ref: str) -> None:
        _stripe_call(stripe.PaymentMethod.detach, instrument_ref)

    # ------------------------------------------------------------------
    # Charges
    # ------------------------------------------------------------------

    def charge(
        self,
        customer_ref: str,
        instrument_ref: str,
        amount: int,
        metadata: Dict[str, str],
        idempotency_key: str,
        destination: Optional[str] = None,
        destination_amount: Optional[int] = None,
        client_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> ChargeResult:
        """
        Create and confirm a bank-debit PaymentIntent.

        Raises ProcessorRejectedError when Stripe declines outright, including
        an intent that comes back already failed.
        """
        params: Dict[str, Any] = {
            "amount": amount,
            "currency": "usd",
            "customer": customer_ref,
            "payment_method": instrument_ref,
            "payment_method_types": [BANK_ACCOUNT],
            "confirm": True,
            "mandate_data": {
                "customer_acceptance": {
                    "type": "online",
                    "online": {
                        "ip_address": client_ip or "0.0.0.0",
                        "user_agent": user_agent or "rent-collection",
                    },
                },
            },
            "metadata": {**metadata, "idempotency_key": idempotency_key},
        }
        if destination:
            params["transfer_data"] = {"destination": destination}
            if destination_amount is not None:
                params["transfer_data"]["amount"] = destination_amount

        intent = _stripe_call(stripe.PaymentIntent.create, idempotency_key=idempotency_key, **params)
        result = _charge_result(intent)
        if result.status == CHARGE_FAILED:
            raise ProcessorRejectedError(result.failure_reason, operation_ref=result.operation_ref)
        return result

    def find_charge(self, idempotency_key: str) -> Optional[ChargeResult]:
        """Look a charge up by the idempotency key stored in its metadata."""
        found = _stripe_call(
            stripe.PaymentIntent.search,
            query=f"metadata['idempotency_key']:'{idempotency_key}'",
            limit=1,
        )
        if not found.data:
            return None
        return _charge_result(found.data[0])

    # ------------------------------------------------------------------
    # Connect payout accounts
    # ------------------------------------------------------------------

    def create_payout_account(self, email: Optional[str], metadata: Dict[str, str]) -> str:
        account = _stripe_call(
            stripe.Account.create,
            type="express",
            country="US",
            email=email,
            capabilities={"transfers": {"requested": True}},
            metadata={**metadata, "source": "rent-collection"},
        )
        return account.id

    def create_onboarding_link(self, account_ref: str, refresh_url: str, return_url: str) -> str:
        link = _stripe_call(
            stripe.AccountLink.create,
            account=account_ref,
            refresh_url=refresh_url,
            return_url=return_url,
            type="account_onboarding",
        )
        return link.url

    def get_payout_account(self, account_ref: str) -> PayoutAccountState:
        return _account_state(_stripe_call(stripe.Account.retrieve, account_ref))

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def parse_event(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        """Verify the Stripe-Signature header and normalize the event."""
        if not self.webhook_secret:
            raise WebhookSignatureError("STRIPE_WEBHOOK_SECRET is not configured")
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(f"Invalid signature: {e}")
        except ValueError as e:
            raise WebhookSignatureError(f"Invalid payload: {e}")

        obj = event["data"]["object"]
        event_type = event["type"]
        metadata = dict(obj.get("metadata") or {})

        if event_type == "account.updated":
            return WebhookEvent(event_id=event["id"], event_type=event_type, account=_account_state(obj))

        if event_type.startswith("payment_intent.") and metadata.get("type") == RENT_PAYMENT_METADATA_TYPE:
            outcome, reason = None, None
            if event_type == "payment_intent.succeeded":
                outcome = "succeeded"
            elif event_type == "payment_intent.payment_failed":
                outcome = "returned"
                error = obj.get("last_payment_error") or {}
                reason = error.get("message") or "Payment failed"
            return WebhookEvent(
                event_id=event["id"],
                event_type=event_type,
                operation_ref=obj["id"],
                outcome=outcome,
                reason=reason,
                metadata=metadata,
            )

        return WebhookEvent(event_id=event["id"], event_type=event_type, metadata=metadata)
