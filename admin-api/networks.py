"""
Network endpoints and the network reconciler.

Network names are free text typed in at station submission, so the same
name can end up on several rows. Stations get attached to a placeholder
(inactive) network on create; the reconciler collapses every row sharing a
name into the oldest one when an operator activates it during review.
All reconciler functions take the cursor of an open transaction and never
commit.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException

from models import CurrentUser
from middleware import get_current_user
from mutations import log_mutation

logger = logging.getLogger("ev-admin.networks")

router = APIRouter(prefix="/api/networks", tags=["networks"])


class WorkflowError(RuntimeError):
    """An invariant the write workflow relies on does not hold; roll back."""


def _get_connection():
    from admin_api import get_connection
    return get_connection()


def _transaction():
    from admin_api import transaction
    return transaction()


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------

def normalize_network_status(value: Any) -> Optional[int]:
    """'1'/1/true -> 1, '0'/0/false -> 0, blank -> None."""
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    text = str(value).strip().lower()
    if text == "":
        return None
    if text in ("1", "true", "active"):
        return 1
    if text in ("0", "false", "inactive"):
        return 0
    raise ValueError(f"Invalid networkStatus '{value}'. Use 0 or 1")


def find_network(cursor, network_id: Any) -> Optional[int]:
    cursor.execute("SELECT id FROM network WHERE id = %s LIMIT 1", (network_id,))
    row = cursor.fetchone()
    return row[0] if row else None


def create_network(cursor, name: str) -> int:
    """Insert an inactive placeholder network and return its id."""
    cursor.execute(
        "INSERT INTO network (name, status, created_at, updated_at) "
        "VALUES (%s, 0, NOW(), NOW()) RETURNING id",
        (name,),
    )
    network_id = cursor.fetchone()[0]
    logger.info("Created placeholder network #%s '%s'", network_id, name)
    return network_id


def merge_networks_by_name(cursor, name: str) -> Tuple[int, List[int]]:
    """Collapse every network named ``name`` into the oldest and activate it.

    Stations on each duplicate are moved to the survivor before the
    duplicate is deleted. Returns (canonical_id, deleted_ids). Running it
    again for the same name only refreshes the survivor's timestamp.
    """
    # Serializes concurrent merges of the same name until commit/rollback
    cursor.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (name,))

    cursor.execute(
        "SELECT id FROM network WHERE name = %s ORDER BY created_at ASC, id ASC",
        (name,),
    )
    ids = [row[0] for row in cursor.fetchall()]
    if not ids:
        raise WorkflowError(f"Network not found for name '{name}'")

    canonical, duplicates = ids[0], ids[1:]
    for dup in duplicates:
        cursor.execute(
            "UPDATE charging_station SET network_id = %s WHERE network_id = %s",
            (canonical, dup),
        )
        cursor.execute("DELETE FROM network WHERE id = %s", (dup,))

    cursor.execute(
        "UPDATE network SET name = %s, status = 1, updated_at = NOW() WHERE id = %s",
        (name, canonical),
    )
    if duplicates:
        logger.info("Merged networks %s into #%s '%s'", duplicates, canonical, name)
    return canonical, duplicates


def resolve_network_by_name(cursor, name: str) -> int:
    """Oldest network carrying ``name``, or a new placeholder when none does."""
    cursor.execute(
        "SELECT id FROM network WHERE name = %s ORDER BY created_at ASC, id ASC LIMIT 1",
        (name,),
    )
    row = cursor.fetchone()
    return row[0] if row else create_network(cursor, name)


def link_station(cursor, station_id: int, network_id: int) -> None:
    cursor.execute(
        "UPDATE charging_station SET network_id = %s, updated_at = NOW() WHERE id = %s",
        (network_id, station_id),
    )


def reconcile_network(
    cursor,
    station_id: Optional[int],
    network_status: Optional[int],
    network_id: Optional[int],
    network_name: Optional[str],
) -> Optional[int]:
    """Resolve the canonical network for a station edit and link the station.

    - asserted active with an id: the id is canonical if the row exists
    - asserted inactive with a name: merge-and-activate by name
    - otherwise: an existing id, or the oldest row with the name, or a new
      placeholder for the name

    Returns the canonical id, or None when neither an id nor a name was given.
    """
    name = (network_name or "").strip() or None
    canonical: Optional[int] = None

    if network_status == 1 and network_id:
        canonical = find_network(cursor, network_id)
        if canonical is None:
            if not name:
                raise WorkflowError("Network not found")
            logger.warning("Network #%s missing, reconciling by name '%s'", network_id, name)
            canonical, _ = merge_networks_by_name(cursor, name)
    elif network_status == 0 and name:
        canonical, _ = merge_networks_by_name(cursor, name)
    elif network_id:
        canonical = find_network(cursor, network_id)
        if canonical is None:
            if not name:
                raise WorkflowError("Network not found")
            canonical = resolve_network_by_name(cursor, name)
    elif name:
        canonical = resolve_network_by_name(cursor, name)

    if canonical is not None and station_id is not None:
        link_station(cursor, station_id, canonical)
    return canonical


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

def _network_dict(row) -> Dict[str, Any]:
    return {
        "id": row[0],
        "name": row[1],
        "status": row[2],
        "liveStatus": row[3],
        "approvedStatus": row[4],
    }


@router.get("")
def list_networks(user: CurrentUser = Depends(get_current_user)):
    """All networks split by operational flag."""
    try:
        with _get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT id, name, status, live_status, approved_status "
                "FROM network ORDER BY id DESC"
            )
            result: Dict[str, List[Dict[str, Any]]] = {"active": [], "inactive": []}
            for row in cursor.fetchall():
                bucket = "active" if row[2] == 1 else "inactive"
                result[bucket].append(_network_dict(row))
            return result
    except Exception as e:
        logger.error("GET /api/networks failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))


@router.delete("/{network_id}")
def delete_network(network_id: int, user: CurrentUser = Depends(get_current_user)):
    """Delete an inactive network. Stations pointing at it are unlinked first."""
    try:
        with _transaction() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT id, status FROM network WHERE id = %s FOR UPDATE", (network_id,))
            row = cursor.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="Network not found")
            if row[1] == 1:
                raise HTTPException(status_code=400, detail="Only inactive networks (status = 0) can be deleted")

            cursor.execute("UPDATE charging_station SET network_id = NULL WHERE network_id = %s", (network_id,))
            unlinked = cursor.rowcount
            cursor.execute("DELETE FROM network WHERE id = %s AND status = 0", (network_id,))
    except HTTPException:
        raise
    except Exception as e:
        logger.error("DELETE /api/networks/%s failed: %s", network_id, e)
        raise HTTPException(status_code=500, detail="Internal server error")

    log_mutation(user, "delete", "network", network_id, new_values={"unlinked_stations": unlinked})
    return {"message": "Network deleted successfully"}


@router.post("/{network_id}/merge")
def merge_network(network_id: int, user: CurrentUser = Depends(get_current_user)):
    """Activate a network and fold every same-named duplicate into the oldest row."""
    try:
        with _transaction() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM network WHERE id = %s", (network_id,))
            row = cursor.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="Network not found")
            if not (row[0] or "").strip():
                raise HTTPException(status_code=400, detail="Network has no name to merge on")
            canonical, merged = merge_networks_by_name(cursor, row[0])
    except HTTPException:
        raise
    except Exception as e:
        logger.error("POST /api/networks/%s/merge failed: %s", network_id, e)
        raise HTTPException(status_code=500, detail=str(e))

    log_mutation(user, "merge", "network", canonical, new_values={"merged": merged})
    return {"message": "Network merged successfully", "networkId": canonical, "merged": merged}
