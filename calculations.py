# calculations.py
# Ledger calculator for the tontine: member debt status, payment waterfall,
# daily collection totals. Pure functions over snapshots; nothing here reads
# or writes the database.
from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

import pandas as pd

from models import (
    ATT_PAID,
    STATUS_ACTIVE,
    STATUS_ALERT,
    STATUS_EXCLUDED,
    AttendanceRecord,
    DailyTotal,
    GroupConfig,
    Member,
    MemberFinanceStatus,
    PaymentBreakdown,
    PaymentSimulation,
    PaymentStep,
)

# -------------------------
# CONFIG (group rules)
# -------------------------
EVENING_CUTOFF_HOUR = 20  # today's penalty day only counts from 20:00
ALERT_DAYS_LATE = 4
EXCLUDED_DAYS_LATE = 12
MAX_SIMULATION_DAYS = 365 * 2  # safety bound for the day-by-day waterfall

DAILY_TOTALS_COLUMNS = ["date", "total_contributions", "total_penalties", "total_fees", "total"]
MEMBER_STATUS_COLUMNS = [
    "member_id",
    "full_name",
    "stored_status",
    "suggested_status",
    "days_late",
    "balance",
    "unpaid_contributions",
    "unpaid_penalties",
]

HISTORY_PERIODS = ("all", "7d", "30d", "month", "custom")


# -------------------------
# Helpers
# -------------------------
def _as_datetime(reference: Optional[datetime | date]) -> datetime:
    if reference is None:
        return datetime.now()
    if isinstance(reference, datetime):
        return reference
    return datetime(reference.year, reference.month, reference.day)


def _own_records(member_id, attendances: Iterable[AttendanceRecord]) -> list[AttendanceRecord]:
    mid = str(member_id)
    return [a for a in attendances if str(a.member_id) == mid]


def suggest_status(days_late: int) -> str:
    if days_late >= EXCLUDED_DAYS_LATE:
        return STATUS_EXCLUDED
    if days_late >= ALERT_DAYS_LATE:
        return STATUS_ALERT
    return STATUS_ACTIVE


def _split_unpaid(contribution_gap: int, penalty_gap: int) -> tuple[int, int]:
    """
    Split the debt into (contributions+fees, penalties).
    A surplus in one bucket offsets the other, so the two parts always add up
    to the debt when there is one.
    """
    unpaid_contrib = max(0, contribution_gap + min(0, penalty_gap))
    unpaid_penalty = max(0, penalty_gap + min(0, contribution_gap))
    return unpaid_contrib, unpaid_penalty


# ============================================================
# MEMBER FINANCE STATUS
# ============================================================
def compute_member_status(
    member: Member,
    group: GroupConfig,
    member_attendance_history: Iterable[AttendanceRecord],
    reference: Optional[datetime] = None,
) -> MemberFinanceStatus:
    """
    Debt position of one member as of `reference` (default: now).

    - The start day counts as day 1; today's contribution and fee are due all day.
    - Before 20:00 the in-progress day carries no penalty yet.
    - Suggested status: ALERT from 4 days late, EXCLUDED from 12. Advisory only.
    - Records belonging to other members are ignored.
    """
    ref = _as_datetime(reference)
    history = _own_records(member.id, member_attendance_history)

    days_since_start = (ref.date() - group.start_date).days + 1

    # group has not started yet
    if days_since_start <= 0:
        return MemberFinanceStatus(
            total_contribution_due=0,
            total_penalty_due=0,
            total_paid=0,
            balance=0,
            days_late=0,
            status=member.status,
            unpaid_contributions=0,
            unpaid_penalties=0,
        )

    contribution_amount = int(group.contribution_amount)
    total_contribution_due = days_since_start * contribution_amount
    total_fee_due = days_since_start * int(group.admin_fee or 0)

    paid_contribution = 0
    paid_fee = 0
    paid_penalty = 0
    for att in history:
        if att.counts_as_contribution:
            paid_contribution += int(att.amount_paid)
            paid_fee += int(att.fee_paid or 0)
        paid_penalty += int(att.penalty_paid or 0)

    paid_days = paid_contribution // contribution_amount
    raw_days_late = max(0, days_since_start - paid_days)

    penalty_days = raw_days_late
    if raw_days_late > 0 and ref.hour < EVENING_CUTOFF_HOUR:
        penalty_days = max(0, raw_days_late - 1)

    penalty_due = penalty_days * int(group.penalty_per_day)

    balance = (paid_contribution + paid_penalty + paid_fee) - (
        total_contribution_due + total_fee_due + penalty_due
    )

    unpaid_contributions, unpaid_penalties = _split_unpaid(
        (total_contribution_due + total_fee_due) - (paid_contribution + paid_fee),
        penalty_due - paid_penalty,
    )

    return MemberFinanceStatus(
        total_contribution_due=total_contribution_due,
        total_penalty_due=penalty_due,
        total_paid=paid_contribution,
        balance=balance,
        days_late=raw_days_late,
        status=suggest_status(raw_days_late),
        unpaid_contributions=unpaid_contributions,
        unpaid_penalties=unpaid_penalties,
        total_fee_due=total_fee_due,
        penalty_days=penalty_days,
        days_since_start=days_since_start,
    )


# ============================================================
# PAYMENT WATERFALL
# ============================================================
def _day_costs(
    group: GroupConfig,
    existing: Optional[AttendanceRecord],
    strictly_late: bool,
) -> tuple[int, int, int]:
    """Outstanding (penalty, fee, contribution) for one day."""
    penalty_cost = 0
    if strictly_late:
        already = existing.penalty_paid if existing else 0
        penalty_cost = max(0, int(group.penalty_per_day or 0) - int(already))

    already_fee = existing.fee_paid if existing else 0
    fee_cost = max(0, int(group.admin_fee or 0) - int(already_fee))

    contribution = int(group.contribution_amount)
    already_contrib = contribution if (existing and existing.status == ATT_PAID) else 0
    contribution_cost = max(0, contribution - already_contrib)

    return penalty_cost, fee_cost, contribution_cost


def simulate_payment(
    member_id,
    amount: int,
    group: GroupConfig,
    attendances: Iterable[AttendanceRecord],
    wallet_balance: int = 0,
    reference: Optional[datetime] = None,
    max_days: int = MAX_SIMULATION_DAYS,
) -> PaymentSimulation:
    """
    Walk the calendar from the group start and settle, for each day and in
    this order, penalty -> admin fee -> contribution.

    A bucket is paid in full or not at all. The first bucket that cannot be
    covered stops the whole simulation; whatever is left is returned as
    `remaining_amount` (to be credited to the member's wallet).
    Today is never penalised here; only days strictly before `reference` are.
    """
    wallet = max(0, int(wallet_balance or 0))
    if amount is None or amount <= 0:
        return PaymentSimulation(
            total_covered=0,
            breakdown=PaymentBreakdown(),
            remaining_amount=wallet,
        )

    ref_day = _as_datetime(reference).date()
    remaining = int(amount) + wallet

    by_date: dict[date, AttendanceRecord] = {a.date: a for a in _own_records(member_id, attendances)}

    steps: list[PaymentStep] = []
    counts = {"penalty": 0, "fee": 0, "contribution": 0}

    day = group.start_date
    iterations = 0
    halted = False
    while remaining > 0 and iterations < max_days and not halted:
        existing = by_date.get(day)
        strictly_late = (ref_day - day).days >= 1
        penalty_cost, fee_cost, contribution_cost = _day_costs(group, existing, strictly_late)

        paid: dict[str, int] = {}
        for bucket, cost in (("penalty", penalty_cost), ("fee", fee_cost), ("contribution", contribution_cost)):
            if cost <= 0:
                continue
            if remaining < cost:
                halted = True
                break
            remaining -= cost
            paid[bucket] = cost
            counts[bucket] += 1

        if paid:
            steps.append(
                PaymentStep(
                    date=day,
                    pay_penalty="penalty" in paid,
                    pay_fee="fee" in paid,
                    pay_contribution="contribution" in paid,
                    penalty_cost=paid.get("penalty", 0),
                    fee_cost=paid.get("fee", 0),
                    contribution_cost=paid.get("contribution", 0),
                )
            )

        day = day + timedelta(days=1)
        iterations += 1

    breakdown = PaymentBreakdown(
        contributions=counts["contribution"],
        penalties=counts["penalty"],
        fees=counts["fee"],
    )
    return PaymentSimulation(
        total_covered=breakdown.contributions,
        breakdown=breakdown,
        remaining_amount=remaining,
        steps=tuple(steps),
    )


# ============================================================
# DAILY TOTALS
# ============================================================
def compute_daily_totals(attendances: Iterable[AttendanceRecord]) -> list[DailyTotal]:
    """One total per date, most recent first."""
    per_day: dict[date, list[int]] = {}
    for att in attendances:
        t = per_day.setdefault(att.date, [0, 0, 0])
        if att.counts_as_contribution:
            t[0] += int(att.amount_paid)
        t[1] += int(att.penalty_paid or 0)
        t[2] += int(att.fee_paid or 0)

    return [
        DailyTotal(date=d, total_contributions=c, total_penalties=p, total_fees=f)
        for d, (c, p, f) in sorted(per_day.items(), key=lambda kv: kv[0], reverse=True)
    ]


def daily_totals_frame(attendances: Iterable[AttendanceRecord]) -> pd.DataFrame:
    rows = [
        {
            "date": t.date,
            "total_contributions": t.total_contributions,
            "total_penalties": t.total_penalties,
            "total_fees": t.total_fees,
            "total": t.total,
        }
        for t in compute_daily_totals(attendances)
    ]
    if not rows:
        return pd.DataFrame(columns=DAILY_TOTALS_COLUMNS)
    return pd.DataFrame(rows, columns=DAILY_TOTALS_COLUMNS)


def member_status_frame(
    members: Iterable[Member],
    group: GroupConfig,
    attendances: Iterable[AttendanceRecord],
    reference: Optional[datetime] = None,
) -> pd.DataFrame:
    """Roster with the computed status of every member, most days late first."""
    ref = _as_datetime(reference)
    atts = list(attendances)

    out = []
    for m in members:
        st_ = compute_member_status(m, group, atts, ref)
        out.append({
            "member_id": m.id,
            "full_name": m.full_name,
            "stored_status": m.status,
            "suggested_status": st_.status,
            "days_late": st_.days_late,
            "balance": st_.balance,
            "unpaid_contributions": st_.unpaid_contributions,
            "unpaid_penalties": st_.unpaid_penalties,
        })

    df = pd.DataFrame(out, columns=MEMBER_STATUS_COLUMNS)
    if not df.empty:
        df = df.sort_values(["days_late", "full_name"], ascending=[False, True]).reset_index(drop=True)
    return df


# ============================================================
# MEMBER HISTORY + GROUP OVERVIEW
# ============================================================
def _period_bounds(
    period: str,
    today: date,
    start: Optional[date],
    end: Optional[date],
) -> tuple[Optional[date], Optional[date]]:
    if period == "all":
        return None, None
    if period == "7d":
        return today - timedelta(days=7), None
    if period == "30d":
        return today - timedelta(days=30), None
    if period == "month":
        last = calendar.monthrange(today.year, today.month)[1]
        return today.replace(day=1), today.replace(day=last)
    if period == "custom":
        return start, end
    raise ValueError(f"Unknown period '{period}'. Use one of: {', '.join(HISTORY_PERIODS)}.")


def member_history(
    attendances: Iterable[AttendanceRecord],
    member_id,
    period: str = "all",
    reference: Optional[datetime] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> dict:
    lo, hi = _period_bounds(period, _as_datetime(reference).date(), start, end)

    mid = str(member_id)
    records = [a for a in attendances if str(a.member_id) == mid]
    if lo is not None:
        records = [a for a in records if a.date >= lo]
    if hi is not None:
        records = [a for a in records if a.date <= hi]
    records.sort(key=lambda a: a.date, reverse=True)

    return {
        "member_id": mid,
        "period": period,
        "start": lo,
        "end": hi,
        "records": records,
        "count": len(records),
        "total_contributed": sum(int(a.amount_paid or 0) for a in records),
        "total_penalties": sum(int(a.penalty_paid or 0) for a in records),
        "total_fees": sum(int(a.fee_paid or 0) for a in records),
    }


def group_overview(
    members: Iterable[Member],
    attendances: Iterable[AttendanceRecord],
    reference: Optional[datetime] = None,
) -> dict:
    today = _as_datetime(reference).date()
    members = list(members)
    atts = list(attendances)
    return {
        "collected_amount": sum(int(a.amount_paid or 0) for a in atts),
        "penalty_amount": sum(int(a.penalty_paid or 0) for a in atts),
        "fee_amount": sum(int(a.fee_paid or 0) for a in atts),
        "alerts_count": sum(1 for m in members if m.status == STATUS_ALERT),
        "active_members": sum(1 for m in members if m.status == STATUS_ACTIVE),
        "session_validated": any(a.date == today for a in atts),
    }
