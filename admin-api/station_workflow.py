"""
Station write workflow.

Validation runs before a transaction is opened and returns per-field
messages. Everything else takes the cursor of an open transaction
(admin_api.transaction) and never commits; the route commits once after the
last write, and any exception rolls the whole action back.

Approval states: PENDING -> APPROVED | REJECTED, either -> DELETED (soft,
terminal). The operational flag (status 1/0) is independent of approval.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from fastapi import HTTPException

from networks import create_network, find_network, normalize_network_status, reconcile_network

logger = logging.getLogger("ev-admin.station-workflow")

ACTIONS = {"EDIT", "APPROVE", "REJECT", "ENABLE", "DISABLE", "DELETE"}
ACTION_ALIASES = {"SAVE": "EDIT"}

ACTION_MESSAGES = {
    "EDIT": "Station updated successfully",
    "APPROVE": "Station approved",
    "REJECT": "Station rejected",
    "ENABLE": "Station enabled successfully",
    "DISABLE": "Station disabled successfully",
    "DELETE": "Station deleted successfully",
}

DEFAULT_REJECT_REASON = "Rejected by admin"

TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d):([0-5]\d)$")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def normalize_action(action: Optional[str]) -> str:
    """Upper-cased action keyword; 400 when missing or unknown."""
    if not action or not str(action).strip():
        raise HTTPException(status_code=400, detail="action is required")
    value = str(action).strip().upper()
    value = ACTION_ALIASES.get(value, value)
    if value not in ACTIONS:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid action. Must be one of {', '.join(sorted(ACTIONS))}",
        )
    return value


def to_number(value: Any) -> Optional[float]:
    """Float for a numeric-looking value, None for blank or junk."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_station(data: Dict[str, Any], creating: bool = True) -> List[str]:
    """Per-field messages for the station part of a create or EDIT body.

    Create additionally requires a usage type and a contact number; EDIT only
    checks usage type when one is supplied.
    """
    errors: List[str] = []

    if _blank(data.get("stationName")):
        errors.append("Station name is required")
    if to_number(data.get("latitude")) is None:
        errors.append("Valid latitude is required")
    if to_number(data.get("longitude")) is None:
        errors.append("Valid longitude is required")

    usage = data.get("usageType")
    if creating or not _blank(usage):
        if _blank(usage) or str(usage).strip().upper() not in ("PUBLIC", "PRIVATE"):
            errors.append("Usage type must be PUBLIC or PRIVATE")
    if creating and _blank(data.get("contactNumber")):
        errors.append("Contact number is required")

    for key in ("open_time", "close_time"):
        value = data.get(key)
        if not _blank(value) and not TIME_RE.match(str(value).strip()):
            errors.append(f"Invalid {key} format. Use HH:MM:SS")

    return errors


def validate_connectors(connectors: Iterable[Dict[str, Any]], creating: bool = True) -> List[str]:
    """Per-connector messages, numbered from 1.

    On EDIT a missing charger type is not an error here: replace_connectors()
    skips that entry with a warning.
    """
    errors: List[str] = []
    for index, connector in enumerate(connectors, start=1):
        if creating:
            if not connector.get("chargerTypeId"):
                errors.append(f"Connector {index}: chargerTypeId is required")
            count = connector.get("count")
            if count is None or to_number(count) is None or to_number(count) < 1:
                errors.append(f"Connector {index}: count must be at least 1")
        if not _blank(connector.get("powerRating")) and to_number(connector.get("powerRating")) is None:
            errors.append(f"Connector {index}: Invalid power rating")
        if not _blank(connector.get("tariff")) and to_number(connector.get("tariff")) is None:
            errors.append(f"Connector {index}: Invalid tariff")
    return errors


def raise_if_invalid(errors: List[str], message: str = "Validation failed") -> None:
    if errors:
        raise HTTPException(status_code=400, detail={"message": message, "errors": errors})


# ---------------------------------------------------------------------------
# Children
# ---------------------------------------------------------------------------

def _charge_point(cursor, station_id: int) -> int:
    cursor.execute("SELECT id FROM charging_point WHERE station_id = %s LIMIT 1", (station_id,))
    row = cursor.fetchone()
    if row:
        return row[0]
    cursor.execute(
        "INSERT INTO charging_point (station_id, status) VALUES (%s, 1) RETURNING id",
        (station_id,),
    )
    return cursor.fetchone()[0]


def replace_connectors(cursor, station_id: int, connectors: Iterable[Dict[str, Any]]) -> Tuple[int, int]:
    """Delete every connector of the station and insert ``connectors``.

    Entries without a charger type, or pointing at a charger type that does
    not exist, are skipped with a warning. Returns (inserted, skipped).
    """
    charge_point_id = _charge_point(cursor, station_id)
    cursor.execute("DELETE FROM connector WHERE charge_point_id = %s", (charge_point_id,))

    inserted = skipped = 0
    for connector in connectors:
        charger_type_id = connector.get("chargerTypeId")
        if not charger_type_id:
            logger.warning("Skipping connector without chargerTypeId for station %s", station_id)
            skipped += 1
            continue

        cursor.execute("SELECT id FROM charger_types WHERE id = %s LIMIT 1", (charger_type_id,))
        if not cursor.fetchone():
            logger.warning(
                "Invalid chargerTypeId %s for station %s, skipping connector",
                charger_type_id, station_id,
            )
            skipped += 1
            continue

        count = to_number(connector.get("count"))
        cursor.execute(
            "INSERT INTO connector "
            "(charge_point_id, charger_type_id, no_of_connectors, power, price_per_khw, status, created_at) "
            "VALUES (%s, %s, %s, %s, %s, %s, NOW())",
            (
                charge_point_id,
                charger_type_id,
                int(count) if count is not None else 0,
                to_number(connector.get("powerRating")),
                to_number(connector.get("tariff")),
                connector_status_flag(connector.get("operationalStatus")),
            ),
        )
        inserted += 1

    return inserted, skipped


def connector_status_flag(value: Any) -> int:
    """Stored connector flag: 0 only for an explicit Inactive, in any case."""
    return 0 if str(value or "").strip().lower() == "inactive" else 1


def add_photos(cursor, station_id: int, photos: Iterable[str]) -> int:
    """Append attachment rows; attachments are never updated."""
    added = 0
    for path in photos:
        if _blank(path):
            continue
        cursor.execute(
            "INSERT INTO attachment (station_id, path, created_at) VALUES (%s, %s, NOW())",
            (station_id, path.strip()),
        )
        added += 1
    return added


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

def insert_station(cursor, data: Dict[str, Any]) -> int:
    """Insert a PENDING, inactive station with its network, connectors and photos."""
    network_id = data.get("networkId")
    if network_id:
        if find_network(cursor, network_id) is None:
            raise HTTPException(status_code=400, detail=f"Network {network_id} not found")
    elif not _blank(data.get("networkName")):
        network_id = create_network(cursor, data["networkName"].strip())
    else:
        network_id = None

    contact = data.get("contactNumber")
    cursor.execute(
        """
        INSERT INTO charging_station (
            name, landmark, latitude, longitude, mobile, type,
            open_time, close_time, network_id, address, approved_status, status,
            user_type, created_at, updated_at
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, 'PENDING', 0, 'CPO', NOW(), NOW())
        RETURNING id
        """,
        (
            data["stationName"].strip(),
            data.get("stationType") or None,
            to_number(data.get("latitude")),
            to_number(data.get("longitude")),
            str(contact).strip() if contact is not None else None,
            str(data["usageType"]).strip().upper(),
            data.get("open_time") or None,
            data.get("close_time") or None,
            network_id,
            data.get("address") or "",
        ),
    )
    station_id = cursor.fetchone()[0]

    connectors = data.get("connectors") or []
    if connectors:
        replace_connectors(cursor, station_id, connectors)
    add_photos(cursor, station_id, data.get("photos") or [])

    logger.info("Created station #%s '%s'", station_id, data["stationName"])
    return station_id


# ---------------------------------------------------------------------------
# Actions on an existing station
# ---------------------------------------------------------------------------

def lock_station(cursor, station_id: int) -> str:
    """Row-lock the station and return its approval state; 404 / 400 on deleted."""
    cursor.execute(
        "SELECT approved_status FROM charging_station WHERE id = %s FOR UPDATE",
        (station_id,),
    )
    row = cursor.fetchone()
    if not row:
        raise HTTPException(status_code=404, detail="Station not found")
    if (row[0] or "").upper() == "DELETED":
        raise HTTPException(status_code=400, detail="Station has been deleted")
    return row[0]


def _cascade_loyalty(cursor, station_id: int, decision: str) -> int:
    cursor.execute(
        "UPDATE loyalty_points SET approved_status = %s "
        "WHERE station_id = %s AND approved_status = 'PENDING'",
        (decision, station_id),
    )
    return cursor.rowcount


def approve_station(cursor, station_id: int) -> None:
    cursor.execute(
        "UPDATE charging_station SET verified = 1, approved_status = 'APPROVED', "
        "reason = NULL, updated_at = NOW() WHERE id = %s",
        (station_id,),
    )
    promoted = _cascade_loyalty(cursor, station_id, "APPROVED")
    logger.info("Station #%s approved, %d loyalty entries approved", station_id, promoted)


def reject_station(cursor, station_id: int, reason: Optional[str]) -> str:
    reason = reason.strip() if isinstance(reason, str) and reason.strip() else DEFAULT_REJECT_REASON
    cursor.execute(
        "UPDATE charging_station SET verified = 0, approved_status = 'REJECTED', "
        "reason = %s, updated_at = NOW() WHERE id = %s",
        (reason, station_id),
    )
    rejected = _cascade_loyalty(cursor, station_id, "REJECTED")
    logger.info("Station #%s rejected (%s), %d loyalty entries rejected", station_id, reason, rejected)
    return reason


def set_operational(cursor, station_id: int, active: bool) -> None:
    cursor.execute(
        "UPDATE charging_station SET status = %s, updated_at = NOW() WHERE id = %s",
        (1 if active else 0, station_id),
    )


def soft_delete_station(cursor, station_id: int) -> None:
    cursor.execute(
        "UPDATE charging_station SET approved_status = 'DELETED', status = 0, "
        "updated_at = NOW() WHERE id = %s",
        (station_id,),
    )


def edit_station(cursor, station_id: int, data: Dict[str, Any]) -> Tuple[int, int]:
    """Rewrite the descriptive fields, reconcile the network, replace connectors."""
    usage = data.get("usageType")
    contact = data.get("contactNumber")
    cursor.execute(
        """
        UPDATE charging_station
        SET name = %s, landmark = %s, latitude = %s, longitude = %s,
            mobile = COALESCE(%s, mobile), type = COALESCE(%s, type),
            user_type = COALESCE(%s, user_type),
            open_time = %s, close_time = %s, updated_at = NOW()
        WHERE id = %s
        """,
        (
            data["stationName"].strip(),
            data.get("stationType") or None,
            to_number(data.get("latitude")),
            to_number(data.get("longitude")),
            str(contact).strip() if not _blank(contact) else None,
            str(usage).strip().upper() if not _blank(usage) else None,
            data.get("addedByType") or None,
            data.get("open_time") or None,
            data.get("close_time") or None,
            station_id,
        ),
    )

    if data.get("networkId") or not _blank(data.get("networkName")):
        reconcile_network(
            cursor,
            station_id,
            normalize_network_status(data.get("networkStatus")),
            data.get("networkId"),
            data.get("networkName"),
        )

    return replace_connectors(cursor, station_id, data.get("connectors") or [])


def validate_action(action: str, data: Dict[str, Any]) -> None:
    """Pre-transaction checks for one action; raises 400 with per-field errors."""
    if action != "EDIT":
        return
    errors = validate_station(data, creating=False)
    errors += validate_connectors(data.get("connectors") or [], creating=False)
    try:
        normalize_network_status(data.get("networkStatus"))
    except ValueError as e:
        errors.append(str(e))
    raise_if_invalid(errors)


def apply_station_action(cursor, station_id: int, action: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Run one already-validated action; returns the fields to audit."""
    lock_station(cursor, station_id)

    audit: Dict[str, Any] = {}
    if action == "EDIT":
        inserted, skipped = edit_station(cursor, station_id, data)
        audit = {k: v for k, v in data.items() if k not in ("action", "reason") and v not in (None, [], "")}
        audit["connectors_inserted"] = inserted
        audit["connectors_skipped"] = skipped
    elif action == "APPROVE":
        approve_station(cursor, station_id)
    elif action == "REJECT":
        audit["reason"] = reject_station(cursor, station_id, data.get("reason"))
    elif action == "ENABLE":
        set_operational(cursor, station_id, True)
    elif action == "DISABLE":
        set_operational(cursor, station_id, False)
    elif action == "DELETE":
        soft_delete_station(cursor, station_id)

    return audit
