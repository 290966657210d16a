"""
Row aggregation for station listings.

The station detail query left-joins connectors and attachments, so it
returns one flat row per (station x connector x photo) combination. The
functions here fold those rows back into one nested entity per station,
keeping the first-seen order of stations and never emitting the same
connector or photo twice for a station.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, time
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from country_config import CURRENCY_SYMBOL, ENERGY_UNIT

logger = logging.getLogger("ev-admin.aggregation")

PLACEHOLDER = "-"

APPROVAL_LABELS = {
    "APPROVED": "Approved",
    "REJECTED": "Rejected",
    "DELETED": "Deleted",
}


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------

def format_number(value: Any) -> Optional[str]:
    """Render a numeric column without float noise; None/blank -> None."""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        try:
            value = Decimal(value)
        except Exception:
            return value
    if isinstance(value, float):
        value = Decimal(repr(value))
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return str(int(value))
        return format(value.normalize(), "f")
    return str(value)


def power_label(value: Any) -> str:
    num = format_number(value)
    return f"{num} kW" if num is not None else PLACEHOLDER


def tariff_label(value: Any) -> str:
    num = format_number(value)
    return f"{CURRENCY_SYMBOL}{num}/{ENERGY_UNIT}" if num is not None else PLACEHOLDER


def usage_label(code: Optional[str]) -> str:
    return "Public" if (code or "").upper() == "PUBLIC" else "Private"


def approval_label(code: Optional[str]) -> str:
    return APPROVAL_LABELS.get((code or "").upper(), "Pending")


def active_label(flag: Any) -> str:
    return "Active" if flag in (1, True, "1") else "Inactive"


def _clock(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (time, datetime)):
        return value.strftime("%H:%M")
    text = str(value).strip()
    return text[:5] if text else None


def hours_label(open_time: Any, close_time: Any) -> str:
    """'HH:MM - HH:MM', or '-' when either bound is missing."""
    start, end = _clock(open_time), _clock(close_time)
    if not start or not end:
        return PLACEHOLDER
    return f"{start} - {end}"


def _float(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


def _or_dash(value: Any) -> Any:
    if value is None or (isinstance(value, str) and not value.strip()):
        return PLACEHOLDER
    return value


# ---------------------------------------------------------------------------
# Entity shapes
# ---------------------------------------------------------------------------

def _review_station(row: Dict[str, Any]) -> Dict[str, Any]:
    status = (row.get("approved_status") or "").upper()
    return {
        "id": row["id"],
        "stationName": row.get("station_name"),
        "stationNumber": f"CS-{row['id']}",
        "latitude": _float(row.get("latitude")),
        "longitude": _float(row.get("longitude")),
        "networkId": row.get("network_id"),
        "networkName": _or_dash(row.get("network_name")),
        "networkStatus": row.get("network_status") or 0,
        "userName": _or_dash(row.get("added_by")),
        "addedByType": row.get("added_by_type"),
        "contactNumber": row.get("contact_number"),
        "usageType": usage_label(row.get("usage_type")),
        "landMark": _or_dash(row.get("landmark")),
        "operationalHours": hours_label(row.get("open_time"), row.get("close_time")),
        "status": approval_label(status),
        "reason": row.get("reason"),
        "operationalStatus": active_label(row.get("operational_status")),
        "submissionDate": row.get("created_at"),
        "approvalDate": row.get("updated_at") if status == "APPROVED" else None,
        "eVolts": row.get("evolts") or 0,
        "photos": [],
        "connectors": [],
    }


def _review_connector(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row.get("connector_id"),
        "chargerTypeId": row.get("charger_type_id"),
        "type": row.get("charger_type"),
        "name": row.get("charger_name"),
        "count": row.get("connector_count") or 0,
        "powerRating": power_label(row.get("power_rating")),
        "tariff": tariff_label(row.get("tariff")),
        "operationalStatus": active_label(row.get("connector_status")),
    }


def _directory_station(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "stationName": row.get("station_name"),
        "networkId": row.get("network_id"),
        "networkName": _or_dash(row.get("network_name")),
        "stationContact": _or_dash(row.get("contact_number")),
        "latitude": _float(row.get("latitude")),
        "longitude": _float(row.get("longitude")),
        "stationType": _or_dash(row.get("landmark")),
        "usageType": usage_label(row.get("usage_type")),
        "operationalHours": hours_label(row.get("open_time"), row.get("close_time")),
        "submissionTime": row.get("created_at"),
        "addedBy": _or_dash(row.get("added_by")),
        "operationalStatus": active_label(row.get("operational_status")),
        "media": [],
        "connectors": [],
    }


def _directory_connector(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": row.get("connector_id"),
        "chargerTypeId": row.get("charger_type_id"),
        "connectorType": _or_dash(row.get("charger_type")),
        "connector": _or_dash(row.get("charger_name")),
        "powerRating": power_label(row.get("power_rating")),
        "tariff": tariff_label(row.get("tariff")),
        "operationalStatus": active_label(row.get("connector_status")),
        "count": row.get("connector_count") or 0,
    }


@dataclass(frozen=True)
class Shape:
    station: Callable[[Dict[str, Any]], Dict[str, Any]]
    connector: Callable[[Dict[str, Any]], Dict[str, Any]]
    photos_key: str


SHAPES: Dict[str, Shape] = {
    "review": Shape(_review_station, _review_connector, "photos"),
    "directory": Shape(_directory_station, _directory_connector, "media"),
}

_CONNECTOR_FIELDS = ("charger_type", "charger_name", "power_rating", "tariff")


def _composite_key(row: Dict[str, Any]) -> Tuple:
    return (
        row.get("charger_type"),
        row.get("charger_name"),
        format_number(row.get("power_rating")),
        format_number(row.get("tariff")),
    )


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def aggregate_stations(rows: Iterable[Dict[str, Any]], shape: str = "review") -> List[Dict[str, Any]]:
    """Collapse flat station x connector x photo rows into station entities.

    Connectors are deduplicated by ``connector_id``. Rows from a query that
    carries no ``connector_id`` column are deduplicated by
    (type, name, power, tariff) instead, and the connector's count becomes
    the number of such rows seen under any single photo, so the photo
    fan-out of the join does not inflate it.
    """
    builder = SHAPES[shape]
    stations: Dict[Any, Dict[str, Any]] = {}
    seen_connectors: Dict[Any, set] = {}
    composite: Dict[Tuple, Dict[str, Any]] = {}

    for row in rows:
        sid = row["id"]
        station = stations.get(sid)
        if station is None:
            station = builder.station(row)
            stations[sid] = station
            seen_connectors[sid] = set()

        path = row.get("photo_path")
        photos = station[builder.photos_key]
        if path and path not in photos:
            photos.append(path)

        if "connector_id" in row:
            cid = row["connector_id"]
            if cid is not None and cid not in seen_connectors[sid]:
                seen_connectors[sid].add(cid)
                station["connectors"].append(builder.connector(row))
        elif any(row.get(f) is not None for f in _CONNECTOR_FIELDS):
            key = (sid,) + _composite_key(row)
            entry = composite.get(key)
            if entry is None:
                connector = builder.connector(row)
                connector["id"] = None
                entry = {"connector": connector, "per_photo": {}}
                composite[key] = entry
                station["connectors"].append(connector)
            per_photo = entry["per_photo"]
            per_photo[path] = per_photo.get(path, 0) + (row.get("connector_count") or 1)
            entry["connector"]["count"] = max(per_photo.values())

    return list(stations.values())


def order_by_ids(entities: List[Dict[str, Any]], ids: Sequence[Any]) -> List[Dict[str, Any]]:
    """Reorder aggregated entities to match the id page they were fetched for."""
    position = {eid: idx for idx, eid in enumerate(ids)}
    return sorted(entities, key=lambda e: position.get(e["id"], len(position)))
