"""Ledger and payout model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, func
from medbook.database import Base

PENDING = "pending"
COMPLETED = "completed"
FAILED = "failed"
REFUNDED = "refunded"

LEDGER_STATUSES = (PENDING, COMPLETED, FAILED, REFUNDED)

PAYOUT_PENDING = "pending"
PAYOUT_PAID = "paid"

PAYMENT_METHODS = ("chapa", "stripe", "cash")


class PayoutBatch(Base):
    """One payout run for a doctor, shared by every ledger entry it paid."""
    __tablename__ = "payout_batches"

    id = Column(String(32), primary_key=True)
    doctor_id = Column(Integer, nullable=False, index=True)
    total_amount = Column(Numeric(12, 2), nullable=False)
    entry_count = Column(Integer, nullable=False)
    payout_method = Column(String, nullable=False)
    payout_reference = Column(String)
    notes = Column(Text)
    paid_at = Column(DateTime, nullable=False)


class LedgerEntry(Base):
    """The financial record of one appointment.

    ``amount == platform_fee + doctor_earning`` holds for the lifetime of
    the row; status and payout changes never touch the amounts.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        Index("idx_transactions_doctor_payout", "doctor_id", "status", "payout_status"),
    )

    id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, nullable=False, unique=True)
    patient_id = Column(Integer, nullable=False)
    doctor_id = Column(Integer, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    platform_fee = Column(Numeric(10, 2), nullable=False, default=0)
    doctor_earning = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(String, default="chapa")
    status = Column(String, nullable=False, default=PENDING)
    transaction_ref = Column(String)
    admin_notes = Column(Text)

    payout_status = Column(String)  # NULL/pending/paid
    payout_batch_id = Column(String(32), ForeignKey("payout_batches.id"))
    payout_method = Column(String)
    payout_reference = Column(String)
    payout_date = Column(DateTime)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
