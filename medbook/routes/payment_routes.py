from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medbook.auth.dependencies import require_role
from medbook.database import get_db
from medbook.models.user import ADMIN_ROLE, DOCTOR_ROLE, User
from medbook.routes.common import database_unavailable, ensure_database_ready, resolve_doctor, to_http_exception
from medbook.services.booking import consultation_fee
from medbook.services.errors import BookingError
from medbook.services.ledger import DEFAULT_PAGE_SIZE, SettlementLedger
from medbook.services.payouts import PayoutBatcher

router = APIRouter(tags=['payments'])

MAX_NOTES_LENGTH = 600
MAX_PAGE_SIZE = 100
PAYOUT_METHODS = ('bank_transfer', 'mobile_money', 'cash', 'check')


def _normalize_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_NOTES_LENGTH:
        raise ValueError(f'Notes must be {MAX_NOTES_LENGTH} characters or fewer.')

    return normalized


class UpdateTransactionStatusRequest(BaseModel):
    status: str
    notes: str | None = None

    @field_validator('status')
    @classmethod
    def normalize_status(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


class BulkUpdateTransactionsRequest(UpdateTransactionStatusRequest):
    transaction_ids: list[int] = Field(min_length=1)


class RefundRequest(BaseModel):
    notes: str | None = None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


class PayoutRequest(BaseModel):
    payout_method: str = 'bank_transfer'
    payout_reference: str | None = None
    notes: str | None = None

    @field_validator('payout_method')
    @classmethod
    def validate_payout_method(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in PAYOUT_METHODS:
            raise ValueError('Invalid payout method.')
        return normalized

    @field_validator('payout_reference')
    @classmethod
    def validate_payout_reference(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


class TransactionResponse(BaseModel):
    id: int
    appointment_id: int
    patient_id: int
    doctor_id: int
    amount: Decimal
    platform_fee: Decimal
    doctor_earning: Decimal
    payment_method: str | None = None
    status: str
    transaction_ref: str | None = None
    admin_notes: str | None = None
    payout_status: str | None = None
    payout_batch_id: str | None = None
    payout_method: str | None = None
    payout_reference: str | None = None
    payout_date: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class BulkUpdateResponse(BaseModel):
    count: int
    status: str


class PayoutResponse(BaseModel):
    doctor_name: str
    total_amount: Decimal
    entry_count: int
    batch_id: str
    payout_reference: str | None = None


class PayoutBatchResponse(BaseModel):
    id: str
    total_amount: Decimal
    entry_count: int
    payout_method: str
    payout_reference: str | None = None
    paid_at: datetime

    class Config:
        from_attributes = True


class PayoutPreviewResponse(BaseModel):
    doctor_id: int
    doctor_name: str
    pending_amount: Decimal
    pending_count: int
    pending_transactions: list[TransactionResponse]
    total_paid: Decimal
    recent_payouts: list[PayoutBatchResponse]


class EarningsSummaryResponse(BaseModel):
    total_earnings: Decimal
    monthly_earnings: Decimal
    weekly_earnings: Decimal
    awaiting_payout: Decimal
    pending_payments: Decimal
    total_consultations: int
    consultation_fee: Decimal


class Pagination(BaseModel):
    total: int
    page: int
    pages: int


class TransactionHistoryResponse(BaseModel):
    transactions: list[TransactionResponse]
    pagination: Pagination


@router.get('/transactions/pending', response_model=list[TransactionResponse])
def list_pending_transactions(
    current_user: User = Depends(require_role(ADMIN_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return SettlementLedger(db).list_pending()
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.get('/transactions/{transaction_id}', response_model=TransactionResponse)
def get_transaction(
    transaction_id: int,
    current_user: User = Depends(require_role(ADMIN_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return SettlementLedger(db).get(transaction_id)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.patch('/transactions/{transaction_id}/status', response_model=TransactionResponse)
def update_transaction_status(
    transaction_id: int,
    data: UpdateTransactionStatusRequest,
    current_user: User = Depends(require_role(ADMIN_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return SettlementLedger(db).update_status(transaction_id, data.status, notes=data.notes)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.post('/transactions/bulk-status', response_model=BulkUpdateResponse)
def bulk_update_transactions(
    data: BulkUpdateTransactionsRequest,
    current_user: User = Depends(require_role(ADMIN_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        count = SettlementLedger(db).bulk_update_status(data.transaction_ids, data.status, notes=data.notes)
        return BulkUpdateResponse(count=count, status=data.status)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.post('/transactions/{transaction_id}/refund', response_model=TransactionResponse)
def refund_transaction(
    transaction_id: int,
    data: RefundRequest = Body(default_factory=RefundRequest),
    current_user: User = Depends(require_role(ADMIN_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return SettlementLedger(db).refund(transaction_id, notes=data.notes)
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.get('/reconciliation', response_model=list[TransactionResponse])
def list_reconciliation_cases(
    doctor_id: int | None = Query(default=None),
    current_user: User = Depends(require_role(ADMIN_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return SettlementLedger(db).list_reconciliation_cases(doctor_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.get('/payouts/{doctor_id}', response_model=PayoutPreviewResponse)
def get_doctor_payout_details(
    doctor_id: int,
    current_user: User = Depends(require_role(ADMIN_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        preview = PayoutBatcher(db).preview(doctor_id)
        return PayoutPreviewResponse(
            doctor_id=preview.doctor_id,
            doctor_name=preview.doctor_name,
            pending_amount=preview.pending_amount,
            pending_count=len(preview.pending_entries),
            pending_transactions=[TransactionResponse.model_validate(entry) for entry in preview.pending_entries],
            total_paid=preview.total_paid,
            recent_payouts=[PayoutBatchResponse.model_validate(batch) for batch in preview.recent_batches],
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.post('/payouts/{doctor_id}', response_model=PayoutResponse)
def process_doctor_payout(
    doctor_id: int,
    data: PayoutRequest,
    current_user: User = Depends(require_role(ADMIN_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        result = PayoutBatcher(db).run_payout(
            doctor_id,
            data.payout_method,
            reference=data.payout_reference,
            notes=data.notes,
        )
        return PayoutResponse(
            doctor_name=result.doctor_name,
            total_amount=result.total_amount,
            entry_count=result.entry_count,
            batch_id=result.batch_id,
            payout_reference=result.payout_reference,
        )
    except BookingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.get('/earnings/summary', response_model=EarningsSummaryResponse)
def get_my_earnings_summary(
    current_user: User = Depends(require_role(DOCTOR_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        doctor = resolve_doctor(db, current_user)
        summary = SettlementLedger(db).earnings_summary(doctor.id)
        return EarningsSummaryResponse(
            total_earnings=summary.total_earnings,
            monthly_earnings=summary.monthly_earnings,
            weekly_earnings=summary.weekly_earnings,
            awaiting_payout=summary.awaiting_payout,
            pending_payments=summary.pending_payments,
            total_consultations=summary.total_consultations,
            consultation_fee=consultation_fee(doctor),
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.get('/earnings/transactions', response_model=TransactionHistoryResponse)
def get_my_transaction_history(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    current_user: User = Depends(require_role(DOCTOR_ROLE)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        doctor = resolve_doctor(db, current_user)
        history = SettlementLedger(db).list_for_doctor(doctor.id, page=page, limit=limit)
        return TransactionHistoryResponse(
            transactions=[TransactionResponse.model_validate(entry) for entry in history.entries],
            pagination=Pagination(total=history.total, page=history.page, pages=history.pages),
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc
