# models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

DEFAULT_CURRENCY = "F"

# -------------------------
# Member statuses
# -------------------------
STATUS_ACTIVE = "ACTIVE"
STATUS_ALERT = "ALERT"
STATUS_EXCLUDED = "EXCLUDED"
STATUS_COMPLETED = "COMPLETED"
STATUS_ARCHIVED = "ARCHIVED"

VALID_MEMBER_STATUSES = {
    STATUS_ACTIVE,
    STATUS_ALERT,
    STATUS_EXCLUDED,
    STATUS_COMPLETED,
    STATUS_ARCHIVED,
}

# stored spellings seen in the members table
MEMBER_STATUS_ALIASES: dict[str, str] = {
    "ALERT_8J": STATUS_ALERT,
}

# -------------------------
# Attendance statuses
# -------------------------
ATT_PAID = "PAID"
ATT_LATE = "LATE"
ATT_PENDING = "PENDING"

VALID_ATTENDANCE_STATUSES = {ATT_PAID, ATT_LATE, ATT_PENDING}
CONTRIBUTING_STATUSES = (ATT_PAID, ATT_LATE)

# -------------------------
# Pot statuses
# -------------------------
POT_PENDING = "PENDING"
POT_COMPLETED = "COMPLETED"


def normalize_member_status(status: str | None) -> str:
    s = (status or STATUS_ACTIVE).strip().upper()
    s = MEMBER_STATUS_ALIASES.get(s, s)
    return s if s in VALID_MEMBER_STATUSES else STATUS_ACTIVE


def normalize_attendance_status(status: str | None) -> str:
    s = (status or ATT_PENDING).strip().upper()
    return s if s in VALID_ATTENDANCE_STATUSES else ATT_PENDING


def to_date(x) -> date | None:
    """Accepts date / datetime / 'YYYY-MM-DD[T...]' strings."""
    if x is None:
        return None
    if isinstance(x, date):
        # datetime is a subclass of date
        return date(x.year, x.month, x.day)
    try:
        return date.fromisoformat(str(x)[:10])
    except ValueError:
        return None


def _int(x, default: int = 0) -> int:
    if x is None or x == "":
        return default
    return int(float(x))


def _id(x) -> str | None:
    return None if x is None else str(x)


# ============================================================
# SNAPSHOT RECORDS (read from the hosted store)
# ============================================================
@dataclass(frozen=True)
class GroupConfig:
    contribution_amount: int
    penalty_per_day: int
    start_date: date
    rotation_days: int = 1
    admin_fee: int = 0
    id: str | None = None
    name: str = ""
    currency: str = DEFAULT_CURRENCY
    pot_amount: int = 0

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "GroupConfig":
        start = to_date(row.get("start_date"))
        if start is None:
            raise ValueError(f"Group {row.get('id')} has no valid start_date.")
        return cls(
            id=_id(row.get("id")),
            name=str(row.get("name") or ""),
            contribution_amount=_int(row.get("contribution_amount")),
            admin_fee=_int(row.get("admin_fee")),
            penalty_per_day=_int(row.get("penalty_per_day")),
            start_date=start,
            rotation_days=_int(row.get("rotation_days"), 1),
            currency=str(row.get("currency") or DEFAULT_CURRENCY),
            pot_amount=_int(row.get("pot_amount")),
        )


@dataclass(frozen=True)
class Member:
    id: str
    group_id: str | None = None
    full_name: str = ""
    status: str = STATUS_ACTIVE
    wallet_balance: int = 0
    join_date: date | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Member":
        return cls(
            id=str(row.get("id")),
            group_id=_id(row.get("group_id")),
            full_name=str(row.get("full_name") or ""),
            status=normalize_member_status(row.get("status")),
            wallet_balance=max(0, _int(row.get("wallet_balance"))),
            join_date=to_date(row.get("join_date")),
        )


@dataclass(frozen=True)
class AttendanceRecord:
    member_id: str
    date: date
    status: str = ATT_PENDING
    amount_paid: int = 0
    penalty_paid: int = 0
    fee_paid: int = 0
    id: str | None = None

    @property
    def counts_as_contribution(self) -> bool:
        return self.status in CONTRIBUTING_STATUSES

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "AttendanceRecord":
        d = to_date(row.get("date"))
        if d is None:
            raise ValueError(f"Attendance {row.get('id')} has no valid date.")
        if row.get("member_id") is None:
            raise ValueError(f"Attendance {row.get('id')} has no member_id.")
        return cls(
            id=_id(row.get("id")),
            member_id=str(row.get("member_id")),
            date=d,
            status=normalize_attendance_status(row.get("status")),
            amount_paid=_int(row.get("amount_paid")),
            penalty_paid=_int(row.get("penalty_paid")),
            fee_paid=_int(row.get("fee_paid")),
        )


@dataclass(frozen=True)
class PotDistribution:
    member_id: str
    distribution_date: date
    amount: int
    group_id: str | None = None
    status: str = POT_PENDING
    id: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "PotDistribution":
        d = to_date(row.get("distribution_date"))
        if d is None:
            raise ValueError(f"Pot {row.get('id')} has no valid distribution_date.")
        return cls(
            id=_id(row.get("id")),
            group_id=_id(row.get("group_id")),
            member_id=str(row.get("member_id")),
            distribution_date=d,
            amount=_int(row.get("amount")),
            status=str(row.get("status") or POT_PENDING).upper(),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "group_id": self.group_id,
            "member_id": self.member_id,
            "distribution_date": self.distribution_date.isoformat(),
            "amount": int(self.amount),
            "status": self.status,
        }


# ============================================================
# DERIVED RESULTS (never persisted by the calculator)
# ============================================================
@dataclass(frozen=True)
class MemberFinanceStatus:
    total_contribution_due: int
    total_penalty_due: int
    total_paid: int
    balance: int  # negative = debt
    days_late: int
    status: str  # suggested, not written back
    unpaid_contributions: int  # contributions + admin fees
    unpaid_penalties: int
    total_fee_due: int = 0
    penalty_days: int = 0
    days_since_start: int = 0

    @property
    def is_in_debt(self) -> bool:
        return self.balance < 0

    @property
    def amount_owed(self) -> int:
        return -self.balance if self.balance < 0 else 0


@dataclass(frozen=True)
class PaymentStep:
    date: date
    pay_penalty: bool = False
    pay_fee: bool = False
    pay_contribution: bool = False
    penalty_cost: int = 0
    fee_cost: int = 0
    contribution_cost: int = 0

    @property
    def total_cost(self) -> int:
        return self.penalty_cost + self.fee_cost + self.contribution_cost


@dataclass(frozen=True)
class PaymentBreakdown:
    contributions: int = 0
    penalties: int = 0
    fees: int = 0


@dataclass(frozen=True)
class PaymentSimulation:
    total_covered: int
    breakdown: PaymentBreakdown
    remaining_amount: int
    steps: tuple[PaymentStep, ...] = field(default_factory=tuple)

    @property
    def amount_allocated(self) -> int:
        return sum(s.total_cost for s in self.steps)


@dataclass(frozen=True)
class DailyTotal:
    date: date
    total_contributions: int = 0
    total_penalties: int = 0
    total_fees: int = 0

    @property
    def total(self) -> int:
        return self.total_contributions + self.total_penalties + self.total_fees
