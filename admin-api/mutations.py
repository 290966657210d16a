"""
Audit trail for admin writes.

Every committed station action, network delete/merge, mass upload and trip
story review lands here as one row. The dashboard reads it back either as a
paginated feed or as the moderation history of a single record.
"""

import json
import logging
import math
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query

from models import CurrentUser
from middleware import get_current_user
from db_auth import get_auth_db

logger = logging.getLogger("ev-admin.mutations")

router = APIRouter(prefix="/api/mutations", tags=["mutations"])

AUDITED_TABLES = ("charging_station", "network", "trip")


def log_mutation(
    user: CurrentUser,
    action: str,
    table_name: str,
    record_id: Any,
    new_values: Optional[Dict[str, Any]] = None,
) -> int:
    """Append one audit row and return its id."""
    payload = json.dumps(new_values, default=str) if new_values else None
    with get_auth_db() as conn:
        cursor = conn.execute(
            """INSERT INTO ev_mutations
               (user_id, user_name, action, table_name, record_id, new_values)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (user.user_id, user.name or user.user_id, action, table_name, str(record_id), payload),
        )
        mutation_id = cursor.lastrowid
    logger.info("Audit #%d: %s on %s %s by %s", mutation_id, action, table_name, record_id, user.user_id)
    return mutation_id


def _decode(row) -> Dict[str, Any]:
    entry = dict(row)
    if entry.get("new_values"):
        entry["new_values"] = json.loads(entry["new_values"])
    return entry


def _check_table(table_name: str) -> None:
    if table_name not in AUDITED_TABLES:
        raise HTTPException(status_code=400, detail=f"Unknown audit table '{table_name}'")


def _feed_filters(
    table: Optional[str],
    record: Optional[str],
    user_id: Optional[str],
    action: Optional[str],
    since: Optional[date],
    until: Optional[date],
) -> Tuple[str, List[Any]]:
    clauses: List[str] = []
    params: List[Any] = []

    if table:
        _check_table(table)
        clauses.append("table_name = ?")
        params.append(table)
    if record:
        if not table:
            raise HTTPException(status_code=400, detail="record filter requires table")
        clauses.append("record_id = ?")
        params.append(record)
    for column, value in (("user_id", user_id), ("action", action)):
        if value:
            clauses.append(f"{column} = ?")
            params.append(value)
    # timestamps are stored as 'YYYY-MM-DD HH:MM:SS' text, so date bounds compare lexically
    if since:
        clauses.append("timestamp >= ?")
        params.append(since.isoformat())
    if until:
        clauses.append("timestamp < ?")
        params.append((until + timedelta(days=1)).isoformat())

    return (" WHERE " + " AND ".join(clauses)) if clauses else "", params


@router.get("")
def list_mutations(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    table: Optional[str] = Query(None),
    record: Optional[str] = Query(None),
    user_id_filter: Optional[str] = Query(None, alias="user"),
    action: Optional[str] = Query(None),
    since: Optional[date] = Query(None, alias="from"),
    until: Optional[date] = Query(None, alias="to"),
    user: CurrentUser = Depends(get_current_user),
):
    """Newest-first audit feed."""
    if since and until and since > until:
        raise HTTPException(status_code=400, detail="from must not be after to")
    where_sql, params = _feed_filters(table, record, user_id_filter, action, since, until)

    with get_auth_db() as conn:
        total = conn.execute(f"SELECT COUNT(*) FROM ev_mutations{where_sql}", params).fetchone()[0]
        rows = conn.execute(
            f"""SELECT id, timestamp, user_id, user_name, action, table_name, record_id
                FROM ev_mutations{where_sql}
                ORDER BY id DESC
                LIMIT ? OFFSET ?""",
            params + [limit, (page - 1) * limit],
        ).fetchall()

    return {
        "mutations": [dict(r) for r in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "pages": max(1, math.ceil(total / limit)),
    }


@router.get("/history/{table_name}/{record_id}")
def record_history(
    table_name: str,
    record_id: str,
    user: CurrentUser = Depends(get_current_user),
):
    """Every audited change to one station, network or trip, oldest first."""
    _check_table(table_name)
    with get_auth_db() as conn:
        rows = conn.execute(
            """SELECT id, timestamp, user_id, user_name, action, new_values
               FROM ev_mutations
               WHERE table_name = ? AND record_id = ?
               ORDER BY id""",
            (table_name, record_id),
        ).fetchall()
    return {"table": table_name, "recordId": record_id, "history": [_decode(r) for r in rows]}


@router.get("/{mutation_id}")
def get_mutation(
    mutation_id: int,
    user: CurrentUser = Depends(get_current_user),
):
    with get_auth_db() as conn:
        row = conn.execute("SELECT * FROM ev_mutations WHERE id = ?", (mutation_id,)).fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="Mutation not found")
    return _decode(row)
