# payments.py
# Write-back of check-ins and bulk payments into the attendance table.
# The waterfall itself lives in calculations.simulate_payment; this module
# only turns a confirmed simulation into rows and persists them.
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Iterable, Optional

import db
from audit import audit
from calculations import simulate_payment
from models import (
    ATT_PAID,
    ATT_PENDING,
    VALID_ATTENDANCE_STATUSES,
    AttendanceRecord,
    GroupConfig,
    PaymentSimulation,
)

logger = logging.getLogger(__name__)


def validate_group(group: GroupConfig) -> None:
    if int(group.contribution_amount) <= 0:
        raise ValueError("Group contribution_amount must be > 0.")
    if int(group.rotation_days) <= 0:
        raise ValueError("Group rotation_days must be > 0.")
    if int(group.penalty_per_day) < 0 or int(group.admin_fee or 0) < 0:
        raise ValueError("Group penalty_per_day and admin_fee cannot be negative.")


# ============================================================
# PAYLOAD BUILDERS (pure)
# ============================================================
def check_in_payload(
    group: GroupConfig,
    member_id,
    day: date,
    status: str,
    penalty_paid: bool = False,
    fee_paid: bool = False,
) -> dict:
    """Single-day check-in as ticked on the daily attendance sheet."""
    status = str(status or "").strip().upper()
    if status not in VALID_ATTENDANCE_STATUSES:
        raise ValueError(f"Invalid attendance status '{status}'.")

    return {
        "member_id": str(member_id),
        "date": day.isoformat(),
        "status": status,
        "amount_paid": int(group.contribution_amount) if status == ATT_PAID else 0,
        "penalty_paid": int(group.penalty_per_day or 0) if penalty_paid else 0,
        "fee_paid": int(group.admin_fee or 0) if fee_paid else 0,
    }


def attendance_payloads_from_simulation(
    member_id,
    simulation: PaymentSimulation,
    group: GroupConfig,
    attendances: Iterable[AttendanceRecord],
) -> list[dict]:
    """
    One upsert row per simulated step. Amounts are cumulative: what the day
    already had plus what the step pays.
    """
    mid = str(member_id)
    existing = {a.date: a for a in attendances if str(a.member_id) == mid}

    rows = []
    for step in simulation.steps:
        prev = existing.get(step.date)
        prev_status = prev.status if prev else ATT_PENDING

        status = ATT_PAID if (step.pay_contribution or prev_status == ATT_PAID) else prev_status
        amount_paid = int(group.contribution_amount) if status == ATT_PAID else (prev.amount_paid if prev else 0)

        rows.append({
            "member_id": mid,
            "date": step.date.isoformat(),
            "status": status,
            "amount_paid": int(amount_paid),
            "penalty_paid": (prev.penalty_paid if prev else 0) + step.penalty_cost,
            "fee_paid": (prev.fee_paid if prev else 0) + step.fee_cost,
        })
    return rows


# ============================================================
# PERSISTED ACTIONS
# ============================================================
def mark_attendance(
    c,
    group: GroupConfig,
    member_id,
    day: date,
    status: str,
    penalty_paid: bool = False,
    fee_paid: bool = False,
    actor_user_id: str | None = None,
) -> dict:
    payload = check_in_payload(group, member_id, day, status, penalty_paid, fee_paid)
    db.upsert_attendance(c, [payload])
    audit(c, "attendance_marked", "ok", payload, actor_user_id=actor_user_id)
    return payload


def apply_bulk_payment(
    c,
    member_id,
    amount: int,
    reference: Optional[datetime] = None,
    actor_user_id: str | None = None,
) -> PaymentSimulation:
    """
    Settle a lump sum for one member:
      - load group, member (wallet) and attendance snapshots
      - run the waterfall with the wallet added
      - upsert one attendance row per covered day
      - leftover goes back to members.wallet_balance
    """
    if amount is None or amount <= 0:
        raise ValueError("Amount must be > 0.")

    member = db.load_member(c, member_id)
    if not member.group_id:
        raise RuntimeError(f"Member {member_id} has no group.")
    group = db.load_group(c, member.group_id)
    validate_group(group)

    attendances = db.load_attendance(c, [member.id])

    sim = simulate_payment(
        member.id,
        int(amount),
        group,
        attendances,
        wallet_balance=member.wallet_balance,
        reference=reference,
    )

    payloads = attendance_payloads_from_simulation(member.id, sim, group, attendances)
    try:
        written = db.upsert_attendance(c, payloads)
        if sim.remaining_amount != member.wallet_balance:
            db.update_wallet(c, member.id, sim.remaining_amount)
    except Exception as e:
        audit(
            c,
            "bulk_payment_failed",
            "error",
            {"member_id": member.id, "amount": int(amount), "error": str(e)},
            actor_user_id=actor_user_id,
        )
        raise

    logger.info(
        "Bulk payment for member %s: amount=%s wallet=%s days=%d remaining=%s",
        member.id, amount, member.wallet_balance, written, sim.remaining_amount,
    )
    audit(
        c,
        "bulk_payment_applied",
        "ok",
        {
            "member_id": member.id,
            "amount": int(amount),
            "wallet_before": member.wallet_balance,
            "wallet_after": sim.remaining_amount,
            "contributions": sim.breakdown.contributions,
            "penalties": sim.breakdown.penalties,
            "fees": sim.breakdown.fees,
            "days": [s.date.isoformat() for s in sim.steps],
        },
        actor_user_id=actor_user_id,
    )
    return sim
