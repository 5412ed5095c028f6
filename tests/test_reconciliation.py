from datetime import datetime, timedelta, timezone

import pytest

from app.core.errors import ProcessorUnavailableError
from app.core.stripe_processor import ChargeResult
from app.models.audit_log import AuditLog
from app.models.rent_payments import FeePayer, RentPayment
from app.services.charge_calculator import compute_charge
from app.services.reconciliation import NOT_RECEIVED_REASON, ReconciliationSweep
from app.services.rent_ledger import RentLedger
from app.services.settlement import COLLECTED_AFTER_FAILURE, SettlementCoordinator

from conftest import make_landlord, make_method, make_tenant


def _stale_pending(db, landlord, tenant, method, minutes_old=60):
    payment = RentLedger(db).create(
        landlord_id=landlord.id,
        tenant_id=tenant.id,
        payment_method_id=method.id,
        amount=120000,
        breakdown=compute_charge(120000, 500, "landlord"),
        fee_payer=FeePayer.LANDLORD,
        fee_schedule_version="ach-2024-11",
    )
    db.query(RentPayment).filter(RentPayment.id == payment.id).update(
        {"created_at": datetime.now(timezone.utc) - timedelta(minutes=minutes_old)},
        synchronize_session=False,
    )
    db.commit()
    return payment


@pytest.fixture
def sweep(db, processor):
    return ReconciliationSweep(db, processor, older_than=timedelta(minutes=30))


def test_charge_never_received_is_failed(db, sweep, landlord, tenant, method):
    payment = _stale_pending(db, landlord, tenant, method)

    report = sweep.run()

    assert report.examined == 1
    assert report.failed == [payment.id]
    stored = db.get(RentPayment, payment.id)
    assert stored.status == "failed"
    assert stored.failure_reason == NOT_RECEIVED_REASON
    audit = db.query(AuditLog).filter(AuditLog.entity_id == payment.id).one()
    assert (audit.action, audit.source) == ("failed", "reconciliation")


def test_found_processing_charge_is_recorded_as_submitted(db, sweep, processor, landlord, tenant, method):
    payment = _stale_pending(db, landlord, tenant, method)
    processor.charges[payment.idempotency_key] = ChargeResult(operation_ref="pi_found", status="processing")

    report = sweep.run()

    assert report.submitted == [payment.id]
    stored = db.get(RentPayment, payment.id)
    assert stored.status == "processing"
    assert stored.processor_ref == "pi_found"


def test_found_succeeded_charge_is_settled(db, sweep, processor, landlord, tenant, method):
    payment = _stale_pending(db, landlord, tenant, method)
    processor.charges[payment.idempotency_key] = ChargeResult(operation_ref="pi_paid", status="succeeded")

    sweep.run()

    stored = db.get(RentPayment, payment.id)
    assert stored.status == "succeeded"
    assert stored.paid_at is not None


def test_found_failed_charge_keeps_processor_reason(db, sweep, processor, landlord, tenant, method):
    payment = _stale_pending(db, landlord, tenant, method)
    processor.charges[payment.idempotency_key] = ChargeResult(
        operation_ref="pi_bad", status="failed", failure_reason="The bank account has been closed."
    )

    report = sweep.run()

    assert report.failed == [payment.id]
    stored = db.get(RentPayment, payment.id)
    assert stored.status == "failed"
    assert stored.failure_reason == "The bank account has been closed."
    assert stored.processor_ref == "pi_bad"


def test_processor_outage_leaves_rows_pending(db, sweep, processor, landlord, tenant, method):
    payment = _stale_pending(db, landlord, tenant, method)
    processor.find_error = ProcessorUnavailableError("Payment processor unreachable: timed out")

    report = sweep.run()

    assert report.unresolved == [payment.id]
    assert db.get(RentPayment, payment.id).status == "pending"


def test_recent_pending_rows_are_left_alone(db, sweep, landlord, tenant, method):
    payment = _stale_pending(db, landlord, tenant, method, minutes_old=5)
    report = sweep.run()
    assert report.examined == 0
    assert db.get(RentPayment, payment.id).status == "pending"


def test_sweep_can_be_scoped_to_one_landlord(db, sweep, processor, landlord, tenant, method):
    other = make_landlord(db, "landlord-2")
    other_tenant = make_tenant(db, other, first_name="Ana", last_name="Ruiz")
    other_method = make_method(db, processor, other, other_tenant)
    mine = _stale_pending(db, landlord, tenant, method)
    theirs = _stale_pending(db, other, other_tenant, other_method)

    report = sweep.run(landlord_id=landlord.id)

    assert report.failed == [mine.id]
    assert db.get(RentPayment, theirs.id).status == "pending"


def test_charge_settling_after_a_missed_search_is_flagged(db, sweep, processor, landlord, tenant, method, caplog):
    payment = _stale_pending(db, landlord, tenant, method)
    # The search index had not caught up yet
    sweep.run()
    assert db.get(RentPayment, payment.id).status == "failed"

    coordinator = SettlementCoordinator(db, processor)
    late = coordinator.handle_event("pi_late", "succeeded", rent_payment_id=payment.id)

    assert late is not None
    assert late.status == "failed"
    assert late.processor_ref == "pi_late"
    flagged = (
        db.query(AuditLog)
        .filter(AuditLog.entity_id == payment.id, AuditLog.action == COLLECTED_AFTER_FAILURE)
        .one()
    )
    assert flagged.risk_level == "high"
    assert "pi_late" in flagged.description
    assert any(r.levelname == "ERROR" and payment.id in r.getMessage() for r in caplog.records)

    # Redelivery under a new event id neither duplicates the alert nor moves the row
    again = coordinator.handle_event("pi_late", "succeeded")
    assert again.status == "failed"
    assert (
        db.query(AuditLog)
        .filter(AuditLog.entity_id == payment.id, AuditLog.action == COLLECTED_AFTER_FAILURE)
        .count()
        == 1
    )


def test_late_success_for_a_row_bound_to_another_charge_is_dropped(db, sweep, processor, landlord, tenant, method):
    payment = _stale_pending(db, landlord, tenant, method)
    processor.charges[payment.idempotency_key] = ChargeResult(
        operation_ref="pi_bad", status="failed", failure_reason="The bank account has been closed."
    )
    sweep.run()

    coordinator = SettlementCoordinator(db, processor)
    assert coordinator.handle_event("pi_other", "succeeded", rent_payment_id=payment.id) is None
    assert db.get(RentPayment, payment.id).processor_ref == "pi_bad"
