# Payout Configuration
# Fee rates, payment statuses and environment-driven settings

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional, Tuple

# Default fee rates (fraction of the order's base price)
DEFAULT_PLATFORM_FEE_RATE = Decimal("0.15")
DEFAULT_PAYMENT_GATEWAY_FEE_RATE = Decimal("0.03")

DEFAULT_CURRENCY = "USD"

# Payment lifecycle
STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_REFUNDED = "refunded"

PAYMENT_STATUSES = (
    STATUS_PENDING,
    STATUS_PROCESSING,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_REFUNDED,
)

# Allowed status changes; anything else is rejected
STATUS_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    STATUS_PENDING: (STATUS_PROCESSING, STATUS_FAILED),
    STATUS_PROCESSING: (STATUS_COMPLETED, STATUS_FAILED, STATUS_PENDING),
    STATUS_COMPLETED: (STATUS_REFUNDED,),
    STATUS_FAILED: (STATUS_PENDING,),
    STATUS_REFUNDED: (),
}

CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "AUD": "A$",
    "TRY": "₺",
}


def can_transition(current: str, new: str) -> bool:
    """Check whether a payment may move from one status to another"""
    return new in STATUS_TRANSITIONS.get(current, ())


def can_update_externally(current: str, new: str) -> bool:
    """
    Status changes allowed from outside the payout flow.
    Entering or leaving processing is reserved for the payout itself.
    """
    if STATUS_PROCESSING in (current, new):
        return False
    return can_transition(current, new)


def get_currency_symbol(currency: str) -> str:
    """Get display symbol for a currency code, falling back to the code itself"""
    if not currency:
        currency = DEFAULT_CURRENCY
    return CURRENCY_SYMBOLS.get(currency.upper(), f"{currency.upper()} ")


def parse_fee_rate(raw: Optional[str], default: Decimal, name: str) -> Decimal:
    """
    Parse a fee rate from the environment.
    Rates must be fractions in [0, 1); a bad value is a startup error.
    """
    if raw is None or raw.strip() == "":
        return default
    try:
        rate = Decimal(raw.strip())
    except InvalidOperation as e:
        raise ValueError(f"{name} must be a decimal fraction, got {raw!r}") from e
    if not rate.is_finite():
        raise ValueError(f"{name} must be a finite decimal fraction, got {raw!r}")
    if not (Decimal("0") <= rate < Decimal("1")):
        raise ValueError(f"{name} must be in [0, 1), got {rate}")
    return rate


@dataclass(frozen=True)
class Settings:
    mongo_url: Optional[str] = None
    db_name: str = "payouts"
    storage_backend: str = "mongo"
    jwt_secret: str = "change-me"
    admin_password: str = "admin123"
    owner_id: str = "admin"
    platform_fee_rate: Decimal = DEFAULT_PLATFORM_FEE_RATE
    payment_gateway_fee_rate: Decimal = DEFAULT_PAYMENT_GATEWAY_FEE_RATE
    default_currency: str = DEFAULT_CURRENCY
    payout_api_url: Optional[str] = None
    payout_api_key: Optional[str] = None
    cors_origins: Tuple[str, ...] = ("*",)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables (call after load_dotenv)"""
        return cls(
            mongo_url=os.environ.get("MONGO_URL"),
            db_name=os.environ.get("DB_NAME", "payouts"),
            storage_backend=os.environ.get("STORAGE_BACKEND", "mongo").lower(),
            jwt_secret=os.environ.get("JWT_SECRET") or os.urandom(32).hex(),
            admin_password=os.environ.get("APP_ADMIN_PASSWORD", "admin123"),
            owner_id=os.environ.get("APP_OWNER_ID", "admin"),
            platform_fee_rate=parse_fee_rate(
                os.environ.get("PLATFORM_FEE_RATE"), DEFAULT_PLATFORM_FEE_RATE, "PLATFORM_FEE_RATE"
            ),
            payment_gateway_fee_rate=parse_fee_rate(
                os.environ.get("PAYMENT_GATEWAY_FEE_RATE"),
                DEFAULT_PAYMENT_GATEWAY_FEE_RATE,
                "PAYMENT_GATEWAY_FEE_RATE",
            ),
            default_currency=os.environ.get("DEFAULT_CURRENCY", DEFAULT_CURRENCY).upper(),
            payout_api_url=os.environ.get("PAYOUT_API_URL") or None,
            payout_api_key=os.environ.get("PAYOUT_API_KEY") or None,
            cors_origins=tuple(os.environ.get("CORS_ORIGINS", "*").split(",")),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )
