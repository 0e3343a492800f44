from decimal import Decimal

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from medbook.models.transaction import LedgerEntry
from medbook.models.user import User
from medbook.routes.payment_routes import (
    BulkUpdateTransactionsRequest,
    PayoutRequest,
    RefundRequest,
    UpdateTransactionStatusRequest,
    bulk_update_transactions,
    get_doctor_payout_details,
    get_my_earnings_summary,
    get_my_transaction_history,
    get_transaction,
    list_pending_transactions,
    list_reconciliation_cases,
    process_doctor_payout,
    refund_transaction,
    update_transaction_status,
)
from medbook.services import payments
from medbook.services.ledger import SettlementLedger, percentage_fee_policy
from medbook.services.payments import PaymentResult


@pytest.fixture(autouse=True)
def skip_schema_check(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('medbook.routes.payment_routes.ensure_database_ready', lambda: None)


def record(db, doctor_id: int, appointment_id: int, status: str = payments.SUCCEEDED) -> LedgerEntry:
    entry = SettlementLedger(db).record(
        appointment_id,
        1,
        doctor_id,
        '500.00',
        percentage_fee_policy(10),
        PaymentResult(status=status, method='chapa', reference=f'ref-{appointment_id}'),
    )
    db.commit()
    return entry


def account_for(db, profile) -> User:
    return db.query(User).filter(User.id == profile.user_id).one()


def test_update_status_request_normalizes_fields() -> None:
    request = UpdateTransactionStatusRequest(status=' Refunded ', notes='   ')

    assert request.status == 'refunded'
    assert request.notes is None


def test_bulk_request_requires_ids() -> None:
    with pytest.raises(ValidationError):
        BulkUpdateTransactionsRequest(transaction_ids=[], status='failed')


def test_payout_request_rejects_unknown_method() -> None:
    with pytest.raises(ValidationError):
        PayoutRequest(payout_method='carrier pigeon')


def test_get_transaction_missing(db, admin) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_transaction(transaction_id=5, current_user=admin, db=db)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Transaction not found.'


def test_update_transaction_status_rejects_unknown_status(db, admin, doctor) -> None:
    entry = record(db, doctor.id, 1)

    with pytest.raises(HTTPException) as exception_info:
        update_transaction_status(
            transaction_id=entry.id,
            data=UpdateTransactionStatusRequest(status='lost'),
            current_user=admin,
            db=db,
        )

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Invalid status.'


def test_update_transaction_status_records_notes(db, admin, doctor) -> None:
    entry = record(db, doctor.id, 1, status=payments.PENDING)

    response = update_transaction_status(
        transaction_id=entry.id,
        data=UpdateTransactionStatusRequest(status='completed', notes='Cash received at front desk'),
        current_user=admin,
        db=db,
    )

    assert response.status == 'completed'
    assert response.admin_notes == 'Cash received at front desk'


def test_bulk_update_transactions_counts_changes(db, admin, doctor) -> None:
    first = record(db, doctor.id, 1)
    second = record(db, doctor.id, 2)

    response = bulk_update_transactions(
        data=BulkUpdateTransactionsRequest(transaction_ids=[first.id, second.id], status='failed'),
        current_user=admin,
        db=db,
    )

    assert response.count == 2
    assert response.status == 'failed'


def test_refund_transaction_twice_conflicts(db, admin, doctor) -> None:
    entry = record(db, doctor.id, 1)
    refund_transaction(transaction_id=entry.id, data=RefundRequest(), current_user=admin, db=db)

    with pytest.raises(HTTPException) as exception_info:
        refund_transaction(transaction_id=entry.id, data=RefundRequest(), current_user=admin, db=db)

    assert exception_info.value.status_code == 409


def test_payout_then_preview(db, admin, doctor) -> None:
    record(db, doctor.id, 1)
    record(db, doctor.id, 2)

    before = get_doctor_payout_details(doctor_id=doctor.id, current_user=admin, db=db)
    assert before.pending_count == 2
    assert before.pending_amount == Decimal('900.00')

    payout = process_doctor_payout(
        doctor_id=doctor.id,
        data=PayoutRequest(payout_method='bank_transfer', payout_reference='BT-9'),
        current_user=admin,
        db=db,
    )

    assert payout.total_amount == Decimal('900.00')
    assert payout.entry_count == 2
    assert payout.doctor_name == doctor.full_name

    after = get_doctor_payout_details(doctor_id=doctor.id, current_user=admin, db=db)
    assert after.pending_count == 0
    assert after.total_paid == Decimal('900.00')
    assert [batch.id for batch in after.recent_payouts] == [payout.batch_id]


def test_second_payout_is_rejected(db, admin, doctor) -> None:
    record(db, doctor.id, 1)
    process_doctor_payout(doctor_id=doctor.id, data=PayoutRequest(), current_user=admin, db=db)

    with pytest.raises(HTTPException) as exception_info:
        process_doctor_payout(doctor_id=doctor.id, data=PayoutRequest(), current_user=admin, db=db)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'No pending payouts for this doctor'


def test_payout_unknown_doctor(db, admin) -> None:
    with pytest.raises(HTTPException) as exception_info:
        process_doctor_payout(doctor_id=77, data=PayoutRequest(), current_user=admin, db=db)

    assert exception_info.value.status_code == 404


def test_reconciliation_lists_refunds_after_payout(db, admin, doctor) -> None:
    entry = record(db, doctor.id, 1)
    process_doctor_payout(doctor_id=doctor.id, data=PayoutRequest(), current_user=admin, db=db)
    refund_transaction(transaction_id=entry.id, data=RefundRequest(notes='Dispute'), current_user=admin, db=db)

    cases = list_reconciliation_cases(doctor_id=doctor.id, current_user=admin, db=db)

    assert [case.id for case in cases] == [entry.id]
    assert cases[0].admin_notes == 'Dispute'


def test_list_pending_transactions_is_review_queue(db, admin, doctor) -> None:
    pending = record(db, doctor.id, 1, status=payments.PENDING)
    record(db, doctor.id, 2)

    queue = list_pending_transactions(current_user=admin, db=db)

    assert [entry.id for entry in queue] == [pending.id]


def test_doctor_earnings_summary(db, doctor) -> None:
    record(db, doctor.id, 1)
    record(db, doctor.id, 2, status=payments.PENDING)

    summary = get_my_earnings_summary(current_user=account_for(db, doctor), db=db)

    assert summary.total_earnings == Decimal('450.00')
    assert summary.awaiting_payout == Decimal('450.00')
    assert summary.pending_payments == Decimal('450.00')
    assert summary.total_consultations == 1
    assert summary.consultation_fee == Decimal('500.00')


def test_doctor_earnings_summary_requires_profile(db) -> None:
    orphan = User(email='orphan.doctor@example.com', role='doctor')
    db.add(orphan)
    db.commit()

    with pytest.raises(HTTPException) as exception_info:
        get_my_earnings_summary(current_user=orphan, db=db)

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Doctor profile not found'


def test_doctor_transaction_history_is_paginated(db, doctor, make_doctor) -> None:
    for appointment_id in (1, 2, 3):
        record(db, doctor.id, appointment_id)
    other = make_doctor(email='elsewhere@example.com')
    record(db, other.id, 4)

    history = get_my_transaction_history(page=2, limit=2, current_user=account_for(db, doctor), db=db)

    assert len(history.transactions) == 1
    assert history.transactions[0].appointment_id == 1
    assert (history.pagination.total, history.pagination.page, history.pagination.pages) == (3, 2, 2)
