"""
Shared fixtures: an in-memory SQLite database, an in-memory processor and
a TestClient whose auth, DB and processor dependencies point at them.
"""
import json
import os
from typing import Optional

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_dummy")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.deps import get_db, get_processor
from app.core.auth import User, get_current_user
from app.core.database import Base
from app.core.errors import ProcessorRejectedError, ProcessorUnavailableError, WebhookSignatureError
from app.core.stripe_processor import (
    BANK_ACCOUNT,
    CHARGE_FAILED,
    ChargeResult,
    Instrument,
    PayoutAccountState,
    VerificationIntent,
    WebhookEvent,
)
from app.main import app
from app.models.landlord import LandlordProfile
from app.models.payment_method import PaymentMethod
from app.models.property import Property
from app.models.tenant import Tenant

FAKE_SIGNATURE = "t=1,v1=fake"


class FakeProcessor:
    """In-memory stand-in for StripeProcessor with scriptable charge outcomes."""

    def __init__(self):
        self.customers = {}
        self.instruments = {}
        self.accounts = {}
        self.charges = {}  # idempotency_key -> ChargeResult
        self.charge_calls = []
        self.detached = []
        self.verification_intents = 0
        self._seq = 0

        # "processing", "succeeded", or an exception instance to raise
        self.charge_outcome = "processing"
        # An ambiguous failure that still reached the processor
        self.charge_reaches_processor = False
        # Called with the ChargeResult before charge() returns (webhook races)
        self.on_charge = None
        self.detach_error = None
        self.find_error = None

    def _next(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}_{self._seq:04d}"

    def add_instrument(self, customer_ref: Optional[str], type_: str = BANK_ACCOUNT, verified: bool = True,
                       bank_name: str = "STRIPE TEST BANK", last_four: str = "6789") -> str:
        ref = self._next("pm")
        self.instruments[ref] = Instrument(
            ref=ref,
            type=type_,
            bank_name=bank_name,
            last_four=last_four,
            customer_ref=customer_ref,
            verified=verified,
        )
        return ref

    def create_customer(self, external_identity, display_name, metadata):
        ref = self._next("cus")
        self.customers[ref] = {"email": external_identity, "name": display_name, "metadata": metadata}
        return ref

    def create_verification_intent(self, customer_ref, metadata):
        self.verification_intents += 1
        seti = self._next("seti")
        return VerificationIntent(client_secret=f"{seti}_secret", instrument_ref=seti)

    def get_instrument(self, ref):
        if ref not in self.instruments:
            raise ProcessorRejectedError(f"No such PaymentMethod: '{ref}'")
        return self.instruments[ref]

    def detach_instrument(self, ref):
        if self.detach_error is not None:
            raise self.detach_error
        self.detached.append(ref)

    def charge(self, customer_ref, instrument_ref, amount, metadata, idempotency_key,
               destination=None, destination_amount=None, client_ip=None, user_agent=None):
        self.charge_calls.append(
            {
                "customer_ref": customer_ref,
                "instrument_ref": instrument_ref,
                "amount": amount,
                "metadata": metadata,
                "idempotency_key": idempotency_key,
                "destination": destination,
                "destination_amount": destination_amount,
            }
        )
        if idempotency_key in self.charges:
            return self.charges[idempotency_key]

        outcome = self.charge_outcome
        if isinstance(outcome, ProcessorUnavailableError):
            if self.charge_reaches_processor:
                self.charges[idempotency_key] = ChargeResult(operation_ref=self._next("pi"), status="processing")
            raise outcome
        if isinstance(outcome, Exception):
            raise outcome

        result = ChargeResult(operation_ref=self._next("pi"), status=outcome)
        self.charges[idempotency_key] = result
        if self.on_charge is not None:
            self.on_charge(result, metadata)
        return result

    def find_charge(self, idempotency_key):
        if self.find_error is not None:
            raise self.find_error
        return self.charges.get(idempotency_key)

    def fail_charge(self, idempotency_key, reason):
        ref = self.charges[idempotency_key].operation_ref
        self.charges[idempotency_key] = ChargeResult(operation_ref=ref, status=CHARGE_FAILED, failure_reason=reason)

    def create_payout_account(self, email, metadata):
        ref = self._next("acct")
        self.accounts[ref] = PayoutAccountState(ref, False, False, False)
        return ref

    def create_onboarding_link(self, account_ref, refresh_url, return_url):
        return f"https://connect.stripe.test/setup/{account_ref}"

    def get_payout_account(self, ref):
        return self.accounts[ref]

    def parse_event(self, payload, signature):
        if signature != FAKE_SIGNATURE:
            raise WebhookSignatureError("Invalid signature: no signatures found matching the expected signature")
        data = json.loads(payload)
        account = data.pop("account", None)
        return WebhookEvent(account=PayoutAccountState(**account) if account else None, **data)


def event_payload(event_id: str, event_type: str = "payment_intent.succeeded", **fields) -> bytes:
    return json.dumps({"event_id": event_id, "event_type": event_type, **fields}).encode()


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def db(engine):
    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def processor():
    return FakeProcessor()


def make_landlord(db, landlord_id="landlord-1", tier="pro", onboarded=True) -> LandlordProfile:
    landlord = LandlordProfile(
        id=landlord_id,
        email=f"{landlord_id}@example.com",
        subscription_tier=tier,
        payout_account_ref=f"acct_{landlord_id}" if onboarded else None,
        charges_enabled=onboarded,
        payouts_enabled=onboarded,
        details_submitted=onboarded,
    )
    db.add(landlord)
    db.commit()
    return landlord


def make_tenant(db, landlord, first_name="Jane", last_name="Doe", with_property=True) -> Tenant:
    prop = None
    if with_property:
        prop = Property(landlord_id=landlord.id, name="Maple Court", address="12 Maple St", city="Austin", state="TX")
        db.add(prop)
        db.flush()
    tenant = Tenant(
        landlord_id=landlord.id,
        property_id=prop.id if prop else None,
        first_name=first_name,
        last_name=last_name,
        email=f"{first_name.lower()}@example.com",
    )
    db.add(tenant)
    db.commit()
    return tenant


def make_method(db, processor, landlord, tenant, verified=True, is_default=True) -> PaymentMethod:
    customer_ref = processor.create_customer(tenant.email, tenant.full_name, {})
    ref = processor.add_instrument(customer_ref, verified=verified)
    method = PaymentMethod(
        landlord_id=landlord.id,
        tenant_id=tenant.id,
        processor_customer_ref=customer_ref,
        processor_method_ref=ref,
        method_type=BANK_ACCOUNT,
        bank_name="STRIPE TEST BANK",
        last_four="6789",
        is_default=is_default,
        is_verified=verified,
    )
    db.add(method)
    db.commit()
    return method


@pytest.fixture
def landlord(db):
    return make_landlord(db)


@pytest.fixture
def tenant(db, landlord):
    return make_tenant(db, landlord)


@pytest.fixture
def method(db, processor, landlord, tenant):
    return make_method(db, processor, landlord, tenant)


@pytest.fixture
def auth():
    """Who the next request is authenticated as; tests may reassign user_id."""
    class _Auth:
        user_id = "landlord-1"
    return _Auth()


@pytest.fixture
def client(db, processor, auth):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_processor] = lambda: processor
    app.dependency_overrides[get_current_user] = lambda: User(user_id=auth.user_id)
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
