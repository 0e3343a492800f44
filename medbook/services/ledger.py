"""One financial entry per appointment.

The gross amount is split into platform fee and doctor earning once, at
record time. Later changes move ``status`` and the payout columns only.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from medbook.models.transaction import (
    COMPLETED,
    FAILED,
    LEDGER_STATUSES,
    PAYOUT_PAID,
    PAYOUT_PENDING,
    PENDING,
    REFUNDED,
    LedgerEntry,
)
from medbook.services.errors import (
    BookingError,
    InvalidAmount,
    InvalidLedgerStatus,
    InvalidTransition,
    LedgerEntryNotFound,
    LedgerImbalance,
)
from medbook.services.payments import PaymentResult

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

FeePolicy = Callable[[Decimal], Decimal]

DEFAULT_PAGE_SIZE = 20

# Moves an admin may make through update_status; refunded goes through refund.
STATUS_TRANSITIONS = {
    PENDING: (COMPLETED, FAILED),
    COMPLETED: (FAILED,),
    FAILED: (),
    REFUNDED: (),
}


@dataclass(frozen=True)
class EarningsSummary:
    total_earnings: Decimal
    monthly_earnings: Decimal
    weekly_earnings: Decimal
    awaiting_payout: Decimal
    pending_payments: Decimal
    total_consultations: int


@dataclass
class TransactionPage:
    entries: list[LedgerEntry]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def percentage_fee_policy(percent) -> FeePolicy:
    rate = Decimal(str(percent)) / Decimal(100)

    def policy(gross: Decimal) -> Decimal:
        return to_money(gross * rate)

    return policy


def _unpaid():
    return or_(LedgerEntry.payout_status.is_(None), LedgerEntry.payout_status == PAYOUT_PENDING)


class SettlementLedger:
    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def check_balanced(entry: LedgerEntry) -> LedgerEntry:
        if to_money(entry.amount) != to_money(entry.platform_fee) + to_money(entry.doctor_earning):
            raise LedgerImbalance(f'Transaction {entry.id} amounts do not balance.')
        return entry

    def get(self, entry_id: int) -> LedgerEntry:
        entry = self.db.query(LedgerEntry).filter(LedgerEntry.id == entry_id).first()
        if entry is None:
            raise LedgerEntryNotFound()
        return entry

    def get_for_appointment(self, appointment_id: int) -> LedgerEntry | None:
        return self.db.query(LedgerEntry).filter(LedgerEntry.appointment_id == appointment_id).first()

    def record(
        self,
        appointment_id: int,
        patient_id: int,
        doctor_id: int,
        gross_amount,
        fee_policy: FeePolicy,
        payment: PaymentResult,
    ) -> LedgerEntry:
        """Add the appointment's entry to the caller's transaction (flush only)."""
        gross = to_money(gross_amount)
        if gross <= 0:
            raise InvalidAmount('Consultation amount must be positive.')

        platform_fee = to_money(fee_policy(gross))
        if platform_fee < 0 or platform_fee > gross:
            raise InvalidAmount('Platform fee must be between zero and the consultation amount.')

        if payment.is_settled:
            status = COMPLETED
        elif payment.is_declined:
            status = FAILED
        else:
            status = PENDING

        entry = LedgerEntry(
            appointment_id=appointment_id,
            patient_id=patient_id,
            doctor_id=doctor_id,
            amount=gross,
            platform_fee=platform_fee,
            doctor_earning=gross - platform_fee,
            payment_method=payment.method,
            status=status,
            transaction_ref=payment.reference,
        )
        self.db.add(entry)
        self.db.flush()
        return self.check_balanced(entry)

    def _move(self, entry_id: int, allowed_from: Iterable[str], target: str, notes: str | None = None) -> int:
        values = {LedgerEntry.status: target}
        if notes is not None:
            values[LedgerEntry.admin_notes] = notes
        return self.db.query(LedgerEntry).filter(
            LedgerEntry.id == entry_id,
            LedgerEntry.status.in_(tuple(allowed_from)),
        ).update(values, synchronize_session=False)

    def _finish(self, entry: LedgerEntry, commit: bool) -> LedgerEntry:
        if commit:
            self.db.commit()
        self.db.refresh(entry)
        return self.check_balanced(entry)

    def refund(self, entry_id: int, notes: str | None = None, commit: bool = True) -> LedgerEntry:
        """Move a completed entry to refunded.

        Earnings already paid out are not clawed back; such entries are
        reported by ``list_reconciliation_cases``.
        """
        entry = self.get(entry_id)
        if not self._move(entry_id, (COMPLETED,), REFUNDED, notes):
            self.db.rollback()
            raise InvalidTransition(f'Cannot refund a {self.get(entry_id).status} transaction.')

        entry = self._finish(entry, commit)
        if entry.payout_status == PAYOUT_PAID:
            logger.warning(
                'Transaction %s refunded after payout %s; earning of %s needs reconciliation',
                entry.id,
                entry.payout_batch_id,
                entry.doctor_earning,
            )
        return entry

    def settle(self, entry_id: int, commit: bool = True) -> LedgerEntry:
        """Record a late payment confirmation: pending to completed."""
        entry = self.get(entry_id)
        if not self._move(entry_id, (PENDING,), COMPLETED):
            self.db.rollback()
            raise InvalidTransition(f'Cannot settle a {self.get(entry_id).status} transaction.')
        return self._finish(entry, commit)

    def update_status(
        self,
        entry_id: int,
        status: str,
        notes: str | None = None,
        commit: bool = True,
    ) -> LedgerEntry:
        if status not in LEDGER_STATUSES:
            raise InvalidLedgerStatus()
        if status == REFUNDED:
            return self.refund(entry_id, notes=notes, commit=commit)

        entry = self.get(entry_id)
        current = entry.status
        if status != current:
            if entry.payout_status == PAYOUT_PAID:
                raise InvalidTransition('Paid-out transactions can only be refunded.')
            if status not in STATUS_TRANSITIONS[current]:
                raise InvalidTransition(f'Cannot move a {current} transaction to {status}.')

        if not self._move(entry_id, (current,), status, notes):
            self.db.rollback()
            raise InvalidTransition('Transaction changed concurrently. Please reload and retry.')
        return self._finish(entry, commit)

    def bulk_update_status(self, entry_ids: list[int], status: str, notes: str | None = None) -> int:
        """Apply one status to several entries; all of them change or none do."""
        if status not in LEDGER_STATUSES:
            raise InvalidLedgerStatus()

        try:
            for entry_id in entry_ids:
                self.update_status(entry_id, status, notes=notes, commit=False)
        except BookingError:
            self.db.rollback()
            raise

        self.db.commit()
        return len(entry_ids)

    def payable_entries(self, doctor_id: int, lock: bool = False) -> list[LedgerEntry]:
        query = self.db.query(LedgerEntry).filter(
            LedgerEntry.doctor_id == doctor_id,
            LedgerEntry.status == COMPLETED,
            _unpaid(),
        ).order_by(LedgerEntry.id.asc())
        if lock:
            query = query.with_for_update()
        return query.all()

    def mark_paid(
        self,
        entry_ids: list[int],
        batch_id: str,
        method: str,
        reference: str | None,
        paid_at: datetime,
    ) -> int:
        """Mark still-payable entries as paid within the caller's transaction.

        Returns how many rows changed; fewer than ``len(entry_ids)`` means
        some entry was refunded or paid by someone else in the meantime.
        """
        return self.db.query(LedgerEntry).filter(
            LedgerEntry.id.in_(entry_ids),
            LedgerEntry.status == COMPLETED,
            _unpaid(),
        ).update(
            {
                LedgerEntry.payout_status: PAYOUT_PAID,
                LedgerEntry.payout_batch_id: batch_id,
                LedgerEntry.payout_method: method,
                LedgerEntry.payout_reference: reference,
                LedgerEntry.payout_date: paid_at,
            },
            synchronize_session=False,
        )

    def list_paid(self, doctor_id: int) -> list[LedgerEntry]:
        return self.db.query(LedgerEntry).filter(
            LedgerEntry.doctor_id == doctor_id,
            LedgerEntry.payout_status == PAYOUT_PAID,
        ).order_by(LedgerEntry.payout_date.desc(), LedgerEntry.id.desc()).all()

    def list_reconciliation_cases(self, doctor_id: int | None = None) -> list[LedgerEntry]:
        query = self.db.query(LedgerEntry).filter(
            LedgerEntry.status == REFUNDED,
            LedgerEntry.payout_status == PAYOUT_PAID,
        )
        if doctor_id is not None:
            query = query.filter(LedgerEntry.doctor_id == doctor_id)
        return query.order_by(LedgerEntry.payout_date.desc()).all()

    def list_pending(self) -> list[LedgerEntry]:
        """Entries still waiting for a payment confirmation, oldest first."""
        return self.db.query(LedgerEntry).filter(
            LedgerEntry.status == PENDING,
        ).order_by(LedgerEntry.created_at.asc(), LedgerEntry.id.asc()).all()

    def list_for_doctor(self, doctor_id: int, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> TransactionPage:
        query = self.db.query(LedgerEntry).filter(LedgerEntry.doctor_id == doctor_id)
        total = query.count()
        entries = query.order_by(
            LedgerEntry.created_at.desc(),
            LedgerEntry.id.desc(),
        ).offset((page - 1) * limit).limit(limit).all()
        return TransactionPage(entries=entries, total=total, page=page, limit=limit)

    def _sum_earnings(self, *criteria) -> Decimal:
        total = self.db.query(func.sum(LedgerEntry.doctor_earning)).filter(*criteria).scalar()
        return to_money(total or 0)

    def earnings_summary(self, doctor_id: int, today: date | None = None) -> EarningsSummary:
        """Settled earnings overall, this month and this week (weeks start on Sunday)."""
        today = today or date.today()
        month_start = datetime.combine(today.replace(day=1), time.min)
        week_start = datetime.combine(today - timedelta(days=(today.weekday() + 1) % 7), time.min)

        settled = (LedgerEntry.doctor_id == doctor_id, LedgerEntry.status == COMPLETED)
        return EarningsSummary(
            total_earnings=self._sum_earnings(*settled),
            monthly_earnings=self._sum_earnings(*settled, LedgerEntry.created_at >= month_start),
            weekly_earnings=self._sum_earnings(*settled, LedgerEntry.created_at >= week_start),
            awaiting_payout=self._sum_earnings(*settled, _unpaid()),
            pending_payments=self._sum_earnings(LedgerEntry.doctor_id == doctor_id, LedgerEntry.status == PENDING),
            total_consultations=self.db.query(LedgerEntry).filter(*settled).count(),
        )
