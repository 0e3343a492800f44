import os
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./medbook.db")
DATABASE_ECHO = _get_bool(os.getenv("DATABASE_ECHO"), default=False)

CORS_ALLOW_ORIGINS = _get_list(os.getenv("CORS_ALLOW_ORIGINS"), ["http://localhost:4200"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

PLATFORM_FEE_PERCENT = Decimal(os.getenv("PLATFORM_FEE_PERCENT", "10"))
DEFAULT_CONSULTATION_FEE = Decimal(os.getenv("DEFAULT_CONSULTATION_FEE", "500"))

# always | never | unless_paid_out
CANCELLATION_REFUND_POLICY = os.getenv("CANCELLATION_REFUND_POLICY", "unless_paid_out").strip().lower()

# succeeded | pending | failed; the gateway is stubbed
PAYMENT_STUB_STATUS = os.getenv("PAYMENT_STUB_STATUS", "succeeded").strip().lower()

REFUND_POLICY_NAMES = {"always", "never", "unless_paid_out"}
PAYMENT_STUB_STATUSES = {"succeeded", "pending", "failed"}


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if CANCELLATION_REFUND_POLICY not in REFUND_POLICY_NAMES:
        raise RuntimeError(f"Unknown CANCELLATION_REFUND_POLICY: {CANCELLATION_REFUND_POLICY}")
    if PAYMENT_STUB_STATUS not in PAYMENT_STUB_STATUSES:
        raise RuntimeError(f"Unknown PAYMENT_STUB_STATUS: {PAYMENT_STUB_STATUS}")
    if not (Decimal("0") <= PLATFORM_FEE_PERCENT <= Decimal("100")):
        raise RuntimeError("PLATFORM_FEE_PERCENT must be between 0 and 100.")
