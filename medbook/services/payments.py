"""Payment collaborator.

Gateway integration is stubbed; the stub reports a fixed outcome so the
ledger can be exercised in every state.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal

from medbook.core import config

SUCCEEDED = "succeeded"
PENDING = "pending"
FAILED = "failed"


@dataclass(frozen=True)
class PaymentDetails:
    method: str = "chapa"
    reference: str | None = None


@dataclass(frozen=True)
class PaymentResult:
    status: str
    method: str
    reference: str | None = None

    @property
    def is_settled(self) -> bool:
        return self.status == SUCCEEDED

    @property
    def is_declined(self) -> bool:
        return self.status == FAILED


class StubPaymentGateway:
    def __init__(self, outcome: str | None = None):
        self.outcome = outcome or config.PAYMENT_STUB_STATUS

    def charge(self, amount: Decimal, details: PaymentDetails) -> PaymentResult:
        reference = details.reference or f"stub_{uuid.uuid4().hex[:12]}"
        return PaymentResult(status=self.outcome, method=details.method, reference=reference)
