# payout.py (tontine pot rotation: schedule, reschedule, next beneficiary)
from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Iterable, Optional

from postgrest.exceptions import APIError

import db
from audit import audit
from models import (
    POT_COMPLETED,
    POT_PENDING,
    STATUS_ARCHIVED,
    STATUS_EXCLUDED,
    GroupConfig,
    Member,
    PotDistribution,
)

logger = logging.getLogger(__name__)

# members that no longer take a turn
NON_ROTATING_STATUSES = {STATUS_ARCHIVED, STATUS_EXCLUDED}


# -------------------------
# Pot / dates
# -------------------------
def pot_amount(group: GroupConfig, member_count: int, rotation_days: int | None = None) -> int:
    """Contribution x rotation length x members. Admin fees are not part of the pot."""
    days = int(rotation_days or group.rotation_days)
    return int(group.contribution_amount) * days * int(member_count)


def payout_date(start: date, index: int, rotation_days: int) -> date:
    """Last day of the (index+1)-th cycle, the start day counting as day 1."""
    return start + timedelta(days=(index + 1) * int(rotation_days) - 1)


# -------------------------
# Schedule
# -------------------------
def generate_payout_schedule(
    group: GroupConfig,
    members: Iterable[Member],
    start_date: date | None = None,
    rotation_days: int | None = None,
) -> list[PotDistribution]:
    start = start_date or group.start_date
    days = int(rotation_days or group.rotation_days)
    if days <= 0:
        raise ValueError("rotation_days must be > 0.")

    rotating = [m for m in members if m.status not in NON_ROTATING_STATUSES]
    amount = pot_amount(group, len(rotating), days)

    return [
        PotDistribution(
            group_id=group.id,
            member_id=m.id,
            distribution_date=payout_date(start, i, days),
            amount=amount,
            status=POT_PENDING,
        )
        for i, m in enumerate(rotating)
    ]


def reschedule_payouts(
    pots: Iterable[PotDistribution],
    start_date: date,
    rotation_days: int,
) -> list[PotDistribution]:
    """Recompute dates after a change of start date / rotation, keeping the turn order."""
    if int(rotation_days) <= 0:
        raise ValueError("rotation_days must be > 0.")

    ordered = sorted(pots, key=lambda p: p.distribution_date)
    return [
        PotDistribution(
            id=p.id,
            group_id=p.group_id,
            member_id=p.member_id,
            distribution_date=payout_date(start_date, i, rotation_days),
            amount=p.amount,
            status=p.status,
        )
        for i, p in enumerate(ordered)
    ]


def next_pending_payout(
    pots: Iterable[PotDistribution],
    member_id=None,
    today: Optional[date] = None,
) -> Optional[PotDistribution]:
    candidates = [p for p in pots if p.status == POT_PENDING]
    if member_id is not None:
        candidates = [p for p in candidates if str(p.member_id) == str(member_id)]
    if today is not None:
        candidates = [p for p in candidates if p.distribution_date >= today]
    if not candidates:
        return None
    return min(candidates, key=lambda p: p.distribution_date)


# -------------------------
# Rotation helpers
# -------------------------
def next_unpaid_beneficiary(member_ids: list, already_paid_ids: set, start_id):
    """
    Walk the rotation from start_id (wrapping around) and return the first
    member not yet paid. Falls back to start_id when everybody was paid.
    """
    if not member_ids:
        return start_id

    rotation_ids = list(dict.fromkeys(member_ids))
    if start_id not in rotation_ids:
        start_id = rotation_ids[0]

    start_pos = rotation_ids.index(start_id)
    rotation = rotation_ids[start_pos:] + rotation_ids[:start_pos]

    for mid in rotation:
        if mid not in already_paid_ids:
            return mid

    return start_id


# -------------------------
# Persistence
# -------------------------
def replace_payout_schedule(c, group_id, pots: list[PotDistribution], actor_user_id: str | None = None) -> int:
    """Delete the group's pots then insert the new schedule."""
    schema = db.get_schema()
    try:
        c.schema(schema).table(db.POTS_TABLE).delete().eq("group_id", group_id).execute()
        if pots:
            c.schema(schema).table(db.POTS_TABLE).insert([p.to_payload() for p in pots]).execute()
    except APIError as e:
        logger.error("Payout schedule write failed for group %s: %s", group_id, e)
        audit(c, "payout_schedule_failed", "error", {"group_id": group_id, "error": str(e)}, actor_user_id=actor_user_id)
        raise

    logger.info("Payout schedule replaced for group %s (%d pots)", group_id, len(pots))
    audit(
        c,
        "payout_schedule_replaced",
        "ok",
        {"group_id": group_id, "pots": [p.to_payload() for p in pots]},
        actor_user_id=actor_user_id,
    )
    return len(pots)


def complete_payout(c, pot_id, actor_user_id: str | None = None) -> None:
    if pot_id is None or str(pot_id).strip() == "":
        raise ValueError("Invalid pot_id.")
    try:
        c.schema(db.get_schema()).table(db.POTS_TABLE).update({"status": POT_COMPLETED}).eq("id", pot_id).execute()
    except APIError as e:
        logger.error("Payout validation failed for pot %s: %s", pot_id, e)
        raise
    audit(c, "payout_completed", "ok", {"pot_id": pot_id}, actor_user_id=actor_user_id)
