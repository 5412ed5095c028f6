from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from app.core.errors import InvalidTransitionError, NotFoundError, PaymentValidationError
from app.models.rent_payments import FeePayer, RentPayment, RentPaymentStatus
from app.services.charge_calculator import ChargeBreakdown, compute_charge
from app.services.rent_ledger import RentLedger, idempotency_key_for

from conftest import make_landlord, make_tenant


def _create(ledger, landlord, tenant, method, amount=150000, fee=500, mode="landlord", **kwargs):
    return ledger.create(
        landlord_id=landlord.id,
        tenant_id=tenant.id,
        property_id=tenant.property_id,
        payment_method_id=method.id,
        amount=amount,
        breakdown=compute_charge(amount, fee, mode),
        fee_payer=FeePayer(mode),
        fee_schedule_version="ach-2024-11",
        **kwargs,
    )


@pytest.fixture
def ledger(db):
    return RentLedger(db)


def test_create_records_pending_row_with_idempotency_key(ledger, landlord, tenant, method):
    payment = _create(ledger, landlord, tenant, method, rent_period_start=date(2026, 10, 1),
                      rent_period_end=date(2026, 10, 31), due_date=date(2026, 10, 1))

    assert payment.status == "pending"
    assert payment.idempotency_key == idempotency_key_for(payment.id)
    assert payment.processor_ref is None
    assert (payment.charged_amount, payment.fee_amount, payment.net_amount) == (150000, 500, 149500)
    assert payment.fee_schedule_version == "ach-2024-11"


def test_create_rejects_unbalanced_breakdown(ledger, landlord, tenant, method):
    with pytest.raises(PaymentValidationError):
        ledger.create(
            landlord_id=landlord.id,
            tenant_id=tenant.id,
            payment_method_id=method.id,
            amount=1000,
            breakdown=ChargeBreakdown(charged_amount=1000, fee_amount=10, net_amount=995),
            fee_payer=FeePayer.LANDLORD,
            fee_schedule_version="v",
        )


def test_create_rejects_inverted_period(ledger, landlord, tenant, method):
    with pytest.raises(PaymentValidationError):
        _create(ledger, landlord, tenant, method, rent_period_start=date(2026, 10, 31),
                rent_period_end=date(2026, 10, 1))


def test_database_enforces_fee_balance(db, landlord, tenant, method):
    db.add(
        RentPayment(
            landlord_id=landlord.id,
            tenant_id=tenant.id,
            amount=1000,
            charged_amount=1000,
            fee_amount=10,
            net_amount=900,
            fee_payer="landlord",
            fee_schedule_version="v",
            idempotency_key="rent_payment:manual",
        )
    )
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_processing_then_succeeded(ledger, landlord, tenant, method):
    payment = _create(ledger, landlord, tenant, method)
    payment = ledger.mark_submitted(payment.id, "pi_1")
    assert payment.status == "processing"
    assert payment.processor_ref == "pi_1"
    assert payment.submitted_at is not None

    payment = ledger.apply_settlement_event("pi_1", "succeeded")
    assert payment.status == "succeeded"
    assert payment.paid_at is not None


def test_immediate_success_passes_through_processing(ledger, landlord, tenant, method):
    payment = _create(ledger, landlord, tenant, method)
    payment = ledger.mark_submitted(payment.id, "pi_now", "succeeded")
    assert payment.status == "succeeded"
    assert payment.submitted_at is not None and payment.paid_at is not None


def test_mark_failed_stores_reason(ledger, landlord, tenant, method):
    payment = _create(ledger, landlord, tenant, method)
    payment = ledger.mark_failed(payment.id, "Your bank account was closed.", processor_ref="pi_x")
    assert payment.status == "failed"
    assert payment.failure_reason == "Your bank account was closed."
    assert payment.processor_ref == "pi_x"


def _snapshot(payment):
    return (payment.status, payment.processor_ref, payment.failure_reason, payment.paid_at, payment.returned_at)


@pytest.mark.parametrize(
    "setup, attempt",
    [
        # from processing
        (["submit"], lambda l, p: l.mark_submitted(p, "pi_other")),
        (["submit"], lambda l, p: l.mark_failed(p, "too late")),
        # from succeeded
        (["submit", "succeed"], lambda l, p: l.apply_settlement_event("pi_t", "returned")),
        (["submit", "succeed"], lambda l, p: l.mark_failed(p, "nope")),
        # from failed
        (["fail"], lambda l, p: l.mark_submitted(p, "pi_new")),
        (["fail"], lambda l, p: l.mark_failed(p, "again")),
        # from returned
        (["submit", "return"], lambda l, p: l.apply_settlement_event("pi_t", "succeeded")),
    ],
)
def test_disallowed_transitions_leave_row_unchanged(db, ledger, landlord, tenant, method, setup, attempt):
    payment = _create(ledger, landlord, tenant, method)
    pid = payment.id
    for step in setup:
        if step == "submit":
            ledger.mark_submitted(pid, "pi_t")
        elif step == "succeed":
            ledger.apply_settlement_event("pi_t", "succeeded")
        elif step == "return":
            ledger.apply_settlement_event("pi_t", "returned", "R01")
        elif step == "fail":
            ledger.mark_failed(pid, "declined", processor_ref="pi_t")
    before = _snapshot(ledger.get(pid))

    with pytest.raises(InvalidTransitionError):
        attempt(ledger, pid)

    db.expire_all()
    assert _snapshot(ledger.get(pid)) == before


def test_invalid_transition_reports_current_status(ledger, landlord, tenant, method):
    payment = _create(ledger, landlord, tenant, method)
    ledger.mark_failed(payment.id, "declined")
    with pytest.raises(InvalidTransitionError) as exc:
        ledger.mark_submitted(payment.id, "pi_late")
    assert exc.value.current_status == "failed"
    assert exc.value.extra["current_status"] == "failed"


def test_submission_cannot_start_as_terminal_failure(ledger, landlord, tenant, method):
    payment = _create(ledger, landlord, tenant, method)
    with pytest.raises(InvalidTransitionError):
        ledger.mark_submitted(payment.id, "pi_1", "failed")
    assert ledger.get(payment.id).status == "pending"


def test_settlement_replay_is_a_no_op(ledger, landlord, tenant, method):
    payment = _create(ledger, landlord, tenant, method)
    ledger.mark_submitted(payment.id, "pi_r")
    first = ledger.apply_settlement_event("pi_r", "succeeded")
    paid_at = first.paid_at
    again = ledger.apply_settlement_event("pi_r", "succeeded")
    assert again.status == "succeeded"
    assert again.paid_at == paid_at


def test_unknown_settlement_outcome_rejected(ledger, landlord, tenant, method):
    payment = _create(ledger, landlord, tenant, method)
    ledger.mark_submitted(payment.id, "pi_u")
    with pytest.raises(PaymentValidationError):
        ledger.apply_settlement_event("pi_u", "refunded")


def test_unknown_processor_ref_is_not_found(ledger):
    with pytest.raises(NotFoundError):
        ledger.apply_settlement_event("pi_missing", "succeeded")


def test_get_is_scoped_to_landlord(db, ledger, landlord, tenant, method):
    payment = _create(ledger, landlord, tenant, method)
    other = make_landlord(db, "landlord-2")
    assert ledger.get(payment.id, landlord_id=landlord.id).id == payment.id
    with pytest.raises(NotFoundError):
        ledger.get(payment.id, landlord_id=other.id)


def _age(db, payment, created_at):
    db.query(RentPayment).filter(RentPayment.id == payment.id).update(
        {"created_at": created_at}, synchronize_session=False
    )
    db.commit()


def test_listing_is_newest_first_with_exact_total(db, ledger, landlord, tenant, method):
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    ids = []
    for i in range(7):
        payment = _create(ledger, landlord, tenant, method, amount=100000 + i)
        _age(db, payment, base + timedelta(days=i))
        ids.append(payment.id)

    first = ledger.list_payments(landlord.id, page=1, page_size=3)
    second = ledger.list_payments(landlord.id, page=2, page_size=3)
    third = ledger.list_payments(landlord.id, page=3, page_size=3)

    assert first.total == second.total == third.total == 7
    assert first.total_pages == 3
    listed = [p.id for p in first.items + second.items + third.items]
    assert listed == list(reversed(ids))


def test_listing_filters_by_tenant_property_and_status(db, ledger, landlord, tenant, method):
    other_tenant = make_tenant(db, landlord, first_name="Sam", last_name="Lee")
    mine = _create(ledger, landlord, tenant, method)
    theirs = _create(ledger, landlord, other_tenant, method)
    ledger.mark_submitted(theirs.id, "pi_f")

    by_tenant = ledger.list_payments(landlord.id, tenant_id=tenant.id)
    assert [p.id for p in by_tenant.items] == [mine.id]

    by_property = ledger.list_payments(landlord.id, property_id=other_tenant.property_id)
    assert [p.id for p in by_property.items] == [theirs.id]

    processing = ledger.list_payments(landlord.id, status="processing")
    assert processing.total == 1 and processing.items[0].id == theirs.id

    with pytest.raises(PaymentValidationError):
        ledger.list_payments(landlord.id, status="collected")


def test_listing_never_shows_other_landlords(db, ledger, landlord, tenant, method):
    _create(ledger, landlord, tenant, method)
    other = make_landlord(db, "landlord-2")
    assert ledger.list_payments(other.id).total == 0


def test_summary_counts_only_succeeded_as_collected(db, ledger, landlord, tenant, method):
    ok = _create(ledger, landlord, tenant, method, amount=100000)
    ledger.mark_submitted(ok.id, "pi_ok")
    ledger.apply_settlement_event("pi_ok", "succeeded")

    in_flight = _create(ledger, landlord, tenant, method, amount=50000)
    ledger.mark_submitted(in_flight.id, "pi_fly")
    _create(ledger, landlord, tenant, method, amount=20000)  # still pending

    failed = _create(ledger, landlord, tenant, method, amount=30000)
    ledger.mark_failed(failed.id, "declined")

    returned = _create(ledger, landlord, tenant, method, amount=40000)
    ledger.mark_submitted(returned.id, "pi_ret")
    ledger.apply_settlement_event("pi_ret", "returned", "R01")

    summary = ledger.summary(landlord.id)
    assert summary["total_collected"] == 99500
    assert summary["collected_this_month"] == 99500
    assert summary["succeeded_count"] == 1
    assert summary["total_in_flight"] == 70000
    assert summary["total_failed"] == 30000
    assert summary["total_returned"] == 39500


def test_find_stale_pending(db, ledger, landlord, tenant, method):
    fresh = _create(ledger, landlord, tenant, method)
    stale = _create(ledger, landlord, tenant, method)
    submitted = _create(ledger, landlord, tenant, method)
    ledger.mark_submitted(submitted.id, "pi_s")
    an_hour_ago = datetime.now(timezone.utc) - timedelta(hours=1)
    _age(db, stale, an_hour_ago)
    _age(db, submitted, an_hour_ago)

    found = ledger.find_stale_pending(timedelta(minutes=30))
    assert [p.id for p in found] == [stale.id]
    assert fresh.id not in [p.id for p in found]
    assert ledger.find_stale_pending(timedelta(minutes=30), landlord_id="landlord-2") == []


@pytest.mark.parametrize(
    "expected, new",
    [
        (RentPaymentStatus.PENDING, RentPaymentStatus.SUCCEEDED),
        (RentPaymentStatus.PENDING, RentPaymentStatus.RETURNED),
        (RentPaymentStatus.PROCESSING, RentPaymentStatus.FAILED),
        (RentPaymentStatus.PROCESSING, RentPaymentStatus.PENDING),
        (RentPaymentStatus.FAILED, RentPaymentStatus.PROCESSING),
        (RentPaymentStatus.RETURNED, RentPaymentStatus.SUCCEEDED),
        (RentPaymentStatus.SUCCEEDED, RentPaymentStatus.RETURNED),
    ],
)
def test_state_machine_rejects_skips_and_reversals(ledger, landlord, tenant, method, expected, new):
    payment = _create(ledger, landlord, tenant, method)
    with pytest.raises(InvalidTransitionError):
        ledger._transition(payment.id, expected, new)
    assert ledger.get(payment.id).status == "pending"
