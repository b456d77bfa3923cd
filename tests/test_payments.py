from dataclasses import replace
from datetime import date, datetime

import pytest
from postgrest.exceptions import APIError

from calculations import simulate_payment
from models import ATT_LATE, ATT_PAID, ATT_PENDING, AttendanceRecord
from payments import (
    apply_bulk_payment,
    attendance_payloads_from_simulation,
    check_in_payload,
    mark_attendance,
    validate_group,
)

REF = datetime(2026, 2, 8, 10, 0)


# -------------------------
# Pure payload builders
# -------------------------
def test_check_in_payload(group):
    p = check_in_payload(group, "m1", date(2026, 2, 8), "paid", penalty_paid=True, fee_paid=True)
    assert p == {
        "member_id": "m1",
        "date": "2026-02-08",
        "status": ATT_PAID,
        "amount_paid": 500,
        "penalty_paid": 200,
        "fee_paid": 50,
    }

    absent = check_in_payload(group, "m1", date(2026, 2, 8), ATT_PENDING)
    assert (absent["amount_paid"], absent["penalty_paid"], absent["fee_paid"]) == (0, 0, 0)


def test_check_in_payload_rejects_unknown_status(group):
    with pytest.raises(ValueError):
        check_in_payload(group, "m1", date(2026, 2, 8), "ABSENT")


def test_payloads_are_cumulative(group):
    history = [AttendanceRecord("m1", date(2026, 2, 7), ATT_PENDING, 0, 100, 0)]
    sim = simulate_payment("m1", 650, group, history, reference=REF)

    rows = attendance_payloads_from_simulation("m1", sim, group, history)
    assert rows == [{
        "member_id": "m1",
        "date": "2026-02-07",
        "status": ATT_PAID,
        "amount_paid": 500,
        "penalty_paid": 200,
        "fee_paid": 50,
    }]


def test_payload_keeps_status_when_contribution_not_paid(group):
    history = [AttendanceRecord("m1", date(2026, 2, 7), ATT_LATE, 300, 0, 0)]
    sim = simulate_payment("m1", 260, group, history, reference=REF)

    rows = attendance_payloads_from_simulation("m1", sim, group, history)
    assert len(rows) == 1
    assert rows[0]["status"] == ATT_LATE
    assert rows[0]["amount_paid"] == 300
    assert (rows[0]["penalty_paid"], rows[0]["fee_paid"]) == (200, 50)


def test_validate_group(group):
    validate_group(group)
    for bad in (
        replace(group, contribution_amount=0),
        replace(group, rotation_days=0),
        replace(group, penalty_per_day=-1),
        replace(group, admin_fee=-5),
    ):
        with pytest.raises(ValueError):
            validate_group(bad)


# -------------------------
# Persisted actions
# -------------------------
def test_apply_bulk_payment_writes_days_and_wallet(fake_client):
    sim = apply_bulk_payment(fake_client, "m1", 1000, reference=REF, actor_user_id="admin-1")

    # 1000 + wallet 100: day 1 late (750), day 2 fee (50), 300 left < contribution
    assert sim.total_covered == 1
    assert sim.remaining_amount == 300

    rows = fake_client.rows("attendance")
    assert rows[0] == {
        "member_id": "m1", "date": "2026-02-07", "status": ATT_PAID,
        "amount_paid": 500, "penalty_paid": 200, "fee_paid": 50,
    }
    # day 2 only got its admin fee; the contribution could not be covered
    assert rows[1]["date"] == "2026-02-08"
    assert rows[1]["status"] == ATT_PENDING
    assert rows[1]["fee_paid"] == 50

    m1 = next(r for r in fake_client.rows("members") if r["id"] == "m1")
    assert m1["wallet_balance"] == 300

    last = fake_client.rows("audit_log")[-1]
    assert last["action"] == "bulk_payment_applied"
    assert last["actor_user_id"] == "admin-1"


def test_apply_bulk_payment_credits_leftover_to_wallet(fake_client):
    fake_client.tables["attendance"] = [
        {"id": 1, "member_id": "m1", "date": "2026-02-07", "status": "PAID",
         "amount_paid": 500, "penalty_paid": 0, "fee_paid": 50},
    ]
    sim = apply_bulk_payment(fake_client, "m1", 200, reference=REF)

    # 300 available, day 1 penalty is 200 -> 100 left, day 2 fee 50 -> 50 left, contribution blocks
    assert sim.remaining_amount == 50
    m1 = next(r for r in fake_client.rows("members") if r["id"] == "m1")
    assert m1["wallet_balance"] == 50
    day1 = next(r for r in fake_client.rows("attendance") if r["date"] == "2026-02-07")
    assert day1["penalty_paid"] == 200
    assert day1["status"] == ATT_PAID


def test_apply_bulk_payment_rejects_non_positive_amount(fake_client):
    with pytest.raises(ValueError):
        apply_bulk_payment(fake_client, "m1", 0)


def test_apply_bulk_payment_unknown_member(fake_client):
    with pytest.raises(RuntimeError):
        apply_bulk_payment(fake_client, "nope", 500)


def test_apply_bulk_payment_invalid_group(fake_client):
    fake_client.tables["groups"][0]["contribution_amount"] = 0
    with pytest.raises(ValueError):
        apply_bulk_payment(fake_client, "m1", 500, reference=REF)
    assert fake_client.rows("attendance") == []


def test_apply_bulk_payment_write_failure_is_audited(fake_client):
    fake_client.fail.add(("attendance", "upsert"))
    with pytest.raises(APIError):
        apply_bulk_payment(fake_client, "m1", 1000, reference=REF)

    assert fake_client.rows("audit_log")[-1]["action"] == "bulk_payment_failed"
    m1 = next(r for r in fake_client.rows("members") if r["id"] == "m1")
    assert m1["wallet_balance"] == 100


def test_mark_attendance_upserts_one_day(fake_client, group):
    mark_attendance(fake_client, group, "m2", date(2026, 2, 7), ATT_PAID, fee_paid=True)
    mark_attendance(fake_client, group, "m2", date(2026, 2, 7), ATT_LATE, penalty_paid=True)

    rows = fake_client.rows("attendance")
    assert len(rows) == 1
    assert rows[0]["status"] == ATT_LATE
    assert rows[0]["penalty_paid"] == 200
    assert rows[0]["fee_paid"] == 0
    assert fake_client.rows("audit_log")[-1]["action"] == "attendance_marked"
