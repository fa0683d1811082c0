from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Mapping
from zoneinfo import ZoneInfo

from sqlalchemy import func
from sqlalchemy.orm import Session

from zhinao_geo.models.credit_transaction import CreditTransaction, TransactionType
from zhinao_geo.models.profile import Profile

CreditOperation = Literal["monitoring", "diagnosis", "simulation"]

# Monitoring is billed per selected AI model; the others are flat.
CREDIT_COSTS: dict[str, int] = {
    "monitoring": 2,
    "diagnosis": 5,
    "simulation": 3,
}
PER_UNIT_OPERATIONS = frozenset({"monitoring"})


class InsufficientCreditsError(ValueError):
    def __init__(self, *, required: int, balance: int) -> None:
        super().__init__("insufficient_credits")
        self.required = int(required)
        self.balance = int(balance)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def credit_cost(
    operation: str,
    unit_count: int = 1,
    prices: Mapping[str, int] | None = None,
) -> int:
    table = prices or CREDIT_COSTS
    if operation not in table:
        raise ValueError(f"unknown credit operation: {operation}")
    unit_price = max(0, int(table[operation]))
    if operation in PER_UNIT_OPERATIONS:
        return unit_price * max(1, int(unit_count or 1))
    return unit_price


def has_enough_credits(
    balance: int,
    operation: str,
    unit_count: int = 1,
    prices: Mapping[str, int] | None = None,
) -> bool:
    return int(balance or 0) >= credit_cost(operation, unit_count, prices)


def ensure_affordable(
    balance: int,
    operation: str,
    unit_count: int = 1,
    prices: Mapping[str, int] | None = None,
) -> int:
    required = credit_cost(operation, unit_count, prices)
    if int(balance or 0) < required:
        raise InsufficientCreditsError(required=required, balance=balance)
    return required


def free_credits_remaining(quota: int, used: int) -> int:
    return max(0, int(quota or 0) - max(0, int(used or 0)))


def paid_credits(balance: int, free_remaining: int) -> int:
    """Display-only split of the balance; never store or spend from it."""
    return max(0, int(balance or 0) - max(0, int(free_remaining or 0)))


def month_start(now: datetime | None = None, tz_name: str = "UTC") -> datetime:
    """First instant of the calendar month containing ``now`` in ``tz_name``, as UTC."""
    tz = ZoneInfo(tz_name)
    now = now or utcnow()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local = now.astimezone(tz)
    start_local = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return start_local.astimezone(timezone.utc)


def get_profile(db: Session, user_id: str) -> Profile | None:
    return db.query(Profile).filter(Profile.id == user_id).first()


def get_balance(db: Session, user_id: str) -> int:
    profile = get_profile(db, user_id)
    if profile is None:
        return 0
    return int(profile.credits_balance or 0)


def get_monthly_free_quota(db: Session, user_id: str, default: int) -> int:
    profile = get_profile(db, user_id)
    if profile is None or profile.monthly_free_quota is None:
        return int(default)
    return int(profile.monthly_free_quota)


def monthly_usage(
    db: Session,
    user_id: str,
    now: datetime | None = None,
    tz_name: str = "UTC",
) -> int:
    since = month_start(now, tz_name)
    total = (
        db.query(func.coalesce(func.sum(func.abs(CreditTransaction.amount)), 0))
        .filter(CreditTransaction.user_id == user_id)
        .filter(CreditTransaction.transaction_type == TransactionType.DEDUCTION.value)
        .filter(CreditTransaction.created_at >= since)
        .scalar()
    )
    return int(total or 0)


def list_transactions(db: Session, user_id: str, limit: int = 20) -> list[CreditTransaction]:
    limit = max(1, min(int(limit or 20), 200))
    return (
        db.query(CreditTransaction)
        .filter(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        .limit(limit)
        .all()
    )
