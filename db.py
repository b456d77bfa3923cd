# db.py
from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from postgrest.exceptions import APIError
from supabase import create_client

from models import AttendanceRecord, GroupConfig, Member, PotDistribution

logger = logging.getLogger(__name__)

GROUPS_TABLE = "groups"
MEMBERS_TABLE = "members"
ATTENDANCE_TABLE = "attendance"
POTS_TABLE = "pots"

ATTENDANCE_CONFLICT = "member_id,date"
DEFAULT_SCHEMA = "public"
MAX_ROWS = 20000


# -------------------------
# TIME HELPERS
# -------------------------
def now_iso() -> str:
    """UTC ISO string with Z suffix."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


# -------------------------
# SECRETS
# -------------------------
def get_secret(key: str, default: Optional[str] = None):
    # Railway / local (env vars)
    if os.getenv(key):
        return os.getenv(key)

    # Streamlit Cloud (secrets)
    try:
        import streamlit as st

        if key in st.secrets:
            return st.secrets[key]
    except Exception:
        # no secrets.toml outside a Streamlit deployment
        pass

    return default


def get_schema() -> str:
    return str(get_secret("SUPABASE_SCHEMA", DEFAULT_SCHEMA))


# -------------------------
# SUPABASE CLIENTS
# -------------------------
def get_client(service: bool = True):
    """
    Service key client for write paths when available, anon client otherwise.
    """
    url = get_secret("SUPABASE_URL")
    key = get_secret("SUPABASE_SERVICE_KEY") if service else None
    key = key or get_secret("SUPABASE_ANON_KEY")
    if not url or not key:
        raise RuntimeError("Missing SUPABASE_URL / SUPABASE_ANON_KEY (env vars or Streamlit secrets).")
    return create_client(url, key)


# -------------------------
# QUERY HELPERS
# -------------------------
def fetch_one(query_builder) -> Optional[Dict[str, Any]]:
    """
    Execute a Supabase query builder and return the first row (dict) or None.
    """
    resp = query_builder.limit(1).execute()
    data = getattr(resp, "data", None) or []
    return data[0] if data else None


def _table(c, table: str, schema: Optional[str] = None):
    return c.schema(schema or get_schema()).table(table)


def safe_select(
    c,
    table: str,
    cols: str = "*",
    order_by: str | None = None,
    desc: bool = False,
    limit: int | None = None,
    schema: str | None = None,
    **eq_filters,
) -> list[dict]:
    """Best-effort read: logs and returns [] when the table is unreadable."""
    try:
        q = _table(c, table, schema).select(cols)
        for k, v in eq_filters.items():
            if v is None:
                continue
            q = q.eq(k, v)
        if order_by:
            q = q.order(order_by, desc=desc)
        if limit is not None:
            q = q.limit(limit)
        return q.execute().data or []
    except APIError as e:
        logger.warning("Supabase read error on %s: %s", table, e)
        return []


def _required_select(q, what: str) -> list[dict]:
    try:
        return q.execute().data or []
    except APIError as e:
        logger.error("Could not load %s: %s", what, e)
        raise RuntimeError(f"Could not load {what}.") from e


# -------------------------
# SNAPSHOT LOADERS
# -------------------------
def load_group(c, group_id) -> GroupConfig:
    row = fetch_one(_table(c, GROUPS_TABLE).select("*").eq("id", group_id))
    if not row:
        raise RuntimeError(f"Group {group_id} not found.")
    return GroupConfig.from_row(row)


def load_member(c, member_id) -> Member:
    row = fetch_one(_table(c, MEMBERS_TABLE).select("*").eq("id", member_id))
    if not row:
        raise RuntimeError(f"Member {member_id} not found.")
    return Member.from_row(row)


def load_members(c, group_id) -> List[Member]:
    rows = _required_select(
        _table(c, MEMBERS_TABLE).select("*").eq("group_id", group_id).limit(MAX_ROWS),
        f"members of group {group_id}",
    )
    return [Member.from_row(r) for r in rows]


def load_attendance(c, member_ids: Iterable) -> List[AttendanceRecord]:
    ids = [str(m) for m in member_ids]
    if not ids:
        return []
    rows = _required_select(
        _table(c, ATTENDANCE_TABLE).select("*").in_("member_id", ids).limit(MAX_ROWS),
        "attendance",
    )
    return [AttendanceRecord.from_row(r) for r in rows]


def load_pots(c, group_id) -> List[PotDistribution]:
    rows = safe_select(c, POTS_TABLE, "*", order_by="distribution_date", group_id=group_id)
    return [PotDistribution.from_row(r) for r in rows]


# -------------------------
# WRITES
# -------------------------
def upsert_attendance(c, payloads: List[dict]) -> int:
    """Upsert check-in rows keyed on (member_id, date). Returns rows written."""
    if not payloads:
        return 0
    try:
        _table(c, ATTENDANCE_TABLE).upsert(payloads, on_conflict=ATTENDANCE_CONFLICT).execute()
    except APIError as e:
        logger.error("Attendance upsert failed (%d rows): %s", len(payloads), e)
        raise
    return len(payloads)


def update_wallet(c, member_id, wallet_balance: int) -> None:
    if wallet_balance < 0:
        raise ValueError("Wallet balance cannot be negative.")
    try:
        _table(c, MEMBERS_TABLE).update({"wallet_balance": int(wallet_balance)}).eq("id", member_id).execute()
    except APIError as e:
        logger.error("Wallet update failed for member %s: %s", member_id, e)
        raise
