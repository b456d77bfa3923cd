# audit.py (schema-safe, cached optional column checks)
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)

AUDIT_TABLE = "audit_log"

# (schema, table, cols) -> selectable
_column_cache: dict[tuple[str, str, str], bool] = {}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _has_columns(c, schema: str, table: str, cols: list[str]) -> bool:
    """
    Check if a table can SELECT the given columns.
    Cached so every audit call does not hit Supabase again.
    """
    key = (schema, table, ",".join(cols))
    if key in _column_cache:
        return _column_cache[key]

    try:
        c.schema(schema).table(table).select(key[2]).limit(1).execute()
        ok = True
    except Exception:
        ok = False
    _column_cache[key] = ok
    return ok


def clear_column_cache() -> None:
    _column_cache.clear()


def audit(
    c,
    action: str,
    status: str = "ok",
    details: dict[str, Any] | None = None,
    actor_user_id: str | None = None,
    schema: str = "public",
) -> bool:
    """
    Write one audit_log row.

    Minimum required columns: created_at, action, status
    Optional columns: details, actor_user_id

    Returns False instead of raising so a failed audit never breaks a payment.
    """
    payload: dict[str, Any] = {
        "created_at": _now_iso(),
        "action": action,
        "status": status,
    }

    try:
        if _has_columns(c, schema, AUDIT_TABLE, ["details"]):
            payload["details"] = json.dumps(details or {}, default=str)

        if actor_user_id is not None and _has_columns(c, schema, AUDIT_TABLE, ["actor_user_id"]):
            payload["actor_user_id"] = actor_user_id

        c.schema(schema).table(AUDIT_TABLE).insert(payload).execute()
        return True
    except Exception as e:
        logger.warning("Audit write failed for %s: %s", action, e)
        return False
