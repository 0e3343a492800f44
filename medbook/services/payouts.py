"""Paying doctors their settled earnings.

A payout run selects the doctor's completed, unpaid ledger entries, records
a ``PayoutBatch`` and marks every selected entry paid in one transaction.
Because selection filters on "not yet paid", running again right after a
successful run finds nothing.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from medbook.models.transaction import LedgerEntry, PayoutBatch
from medbook.services.errors import DoctorNotFound, NothingToPayout, StaleLedgerState
from medbook.services.ledger import SettlementLedger, to_money
from medbook.services.profiles import ProfileDirectory

logger = logging.getLogger(__name__)

RECENT_BATCH_LIMIT = 20


@dataclass(frozen=True)
class PayoutResult:
    doctor_name: str
    total_amount: Decimal
    entry_count: int
    batch_id: str
    payout_reference: str | None


@dataclass
class PayoutPreview:
    doctor_id: int
    doctor_name: str
    pending_amount: Decimal
    pending_entries: list[LedgerEntry] = field(default_factory=list)
    total_paid: Decimal = Decimal("0.00")
    recent_batches: list[PayoutBatch] = field(default_factory=list)


class PayoutBatcher:
    def __init__(self, db: Session, ledger: SettlementLedger | None = None, profiles: ProfileDirectory | None = None):
        self.db = db
        self.ledger = ledger or SettlementLedger(db)
        self.profiles = profiles or ProfileDirectory(db)

    def run_payout(
        self,
        doctor_id: int,
        method: str,
        reference: str | None = None,
        notes: str | None = None,
    ) -> PayoutResult:
        doctor = self.profiles.get_doctor(doctor_id)
        if doctor is None:
            raise DoctorNotFound()

        entries = self.ledger.payable_entries(doctor_id, lock=True)
        if not entries:
            self.db.rollback()
            logger.info('No pending payouts for doctor %s', doctor_id)
            raise NothingToPayout()

        entry_ids = [entry.id for entry in entries]
        total = sum((to_money(entry.doctor_earning) for entry in entries), Decimal("0.00"))
        paid_at = datetime.now()

        batch_id = uuid.uuid4().hex
        batch = PayoutBatch(
            id=batch_id,
            doctor_id=doctor_id,
            total_amount=total,
            entry_count=len(entry_ids),
            payout_method=method,
            payout_reference=reference,
            notes=notes,
            paid_at=paid_at,
        )
        self.db.add(batch)
        self.db.flush()

        marked = self.ledger.mark_paid(entry_ids, batch_id, method, reference, paid_at)
        if marked != len(entry_ids):
            self.db.rollback()
            logger.warning(
                'Payout for doctor %s aborted: %s of %s entries changed during the run',
                doctor_id,
                len(entry_ids) - marked,
                len(entry_ids),
            )
            raise StaleLedgerState()

        self.db.commit()
        logger.info(
            'Paid doctor %s %s across %s entries (batch %s, ref %s)',
            doctor_id,
            total,
            len(entry_ids),
            batch_id,
            reference,
        )
        return PayoutResult(
            doctor_name=doctor.full_name,
            total_amount=total,
            entry_count=len(entry_ids),
            batch_id=batch_id,
            payout_reference=reference,
        )

    def preview(self, doctor_id: int) -> PayoutPreview:
        doctor = self.profiles.get_doctor(doctor_id)
        if doctor is None:
            raise DoctorNotFound()

        pending = self.ledger.payable_entries(doctor_id)
        paid = self.ledger.list_paid(doctor_id)
        batches = self.db.query(PayoutBatch).filter(
            PayoutBatch.doctor_id == doctor_id,
        ).order_by(PayoutBatch.paid_at.desc()).limit(RECENT_BATCH_LIMIT).all()

        return PayoutPreview(
            doctor_id=doctor_id,
            doctor_name=doctor.full_name,
            pending_amount=sum((to_money(entry.doctor_earning) for entry in pending), Decimal("0.00")),
            pending_entries=pending,
            total_paid=sum((to_money(entry.doctor_earning) for entry in paid), Decimal("0.00")),
            recent_batches=batches,
        )
