"""
Query filter and sort builders.

Every listing endpoint turns its optional query parameters into one
WhereClause (predicate SQL + positional bind parameters). The same clause
is reused verbatim by the COUNT query, the id-page query and the
unpaginated export query so all three see the same row set.

User-supplied values only ever travel as bind parameters. Column
expressions for ORDER BY come from the fixed whitelists below.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger("ev-admin.filters")


class FilterError(ValueError):
    """A filter value that cannot be turned into a predicate."""


@dataclass
class WhereClause:
    sql: str = ""
    params: List[Any] = field(default_factory=list)


# Table aliases referenced by station predicates: cs, n, cu
STATION_FROM = (
    "FROM charging_station cs "
    "LEFT JOIN network n ON n.id = cs.network_id "
    "LEFT JOIN customer cu ON cu.id = cs.created_by"
)

STATION_SEARCH_COLUMNS = (
    "cs.name",
    "cs.landmark",
    "cs.mobile",
    "n.name",
    "CONCAT(cu.first_name, ' ', cu.last_name)",
    "cs.type",
    "CONCAT('CS-', cs.id)",
    "CAST(cs.latitude AS TEXT)",
    "CAST(cs.longitude AS TEXT)",
)

CUSTOMER_SEARCH_COLUMNS = (
    "CONCAT(c.first_name, ' ', c.last_name)",
    "c.email",
    "c.mobile",
)

TRIP_SEARCH_COLUMNS = (
    "CONCAT(c.first_name, ' ', c.last_name)",
    "c.email",
    "c.mobile",
    "t.source",
    "t.destination",
)

# Sort key -> SQL expression. Anything else falls back to the default.
STATION_SORT_COLUMNS: Dict[str, str] = {
    "id": "cs.id",
    "createdAt": "cs.created_at",
    "updatedAt": "cs.updated_at",
    "name": "cs.name",
    "network": "n.name",
    "status": "cs.approved_status",
}

CUSTOMER_SORT_COLUMNS: Dict[str, str] = {
    "id": "c.id",
    "createdAt": "c.created_at",
    "name": "c.first_name",
}

TRIP_SORT_COLUMNS: Dict[str, str] = {
    "id": "t.id",
    "createdAt": "t.created_at",
    "distance": "t.distance",
    "status": "t.trip_status",
}

REVIEW_STATUSES = {"PENDING", "APPROVED", "REJECTED"}
USAGE_TYPES = {"PUBLIC", "PRIVATE"}
CHARGER_TYPES = {"AC", "DC"}
TRIP_STATUSES = {
    "SAVED", "ON_GOING", "CANCELLED", "COMPLETED", "ENQUIRED",
    "SUCCESSFULL", "ON_GOING_TEST", "UNSUCCESSFULL",
}
STORY_STATUSES = {"PENDING", "APPROVED", "REJECTED"}


# ---------------------------------------------------------------------------
# Shared pieces
# ---------------------------------------------------------------------------

def is_all(value: Optional[Any]) -> bool:
    """Absent, blank and "All" all mean no restriction."""
    if value is None:
        return True
    text = str(value).strip()
    return text == "" or text.lower() == "all"


def date_bound(value: str, end: bool = False) -> str:
    """Validate a YYYY-MM-DD bound.

    A bare end date is widened to the last second of that day so the range
    is inclusive of the whole calendar day.
    """
    raw = value.strip()
    for fmt in ("%Y-%m-%d", "%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S"):
        try:
            datetime.strptime(raw, fmt)
            break
        except ValueError:
            continue
    else:
        raise FilterError(f"Invalid date '{value}'. Use YYYY-MM-DD")
    if end and len(raw) == 10:
        return f"{raw} 23:59:59"
    return raw.replace("T", " ")


def search_clause(term: str, columns: Sequence[str]) -> Tuple[str, List[str]]:
    """Case-insensitive substring OR-group, one bind parameter per branch."""
    pattern = f"%{term.strip()}%"
    parts = [f"{col} ILIKE %s" for col in columns]
    return f"({' OR '.join(parts)})", [pattern] * len(parts)


def _date_range(where: List[str], params: List[Any], column: str,
                start_date: Optional[str], end_date: Optional[str]) -> None:
    if start_date:
        where.append(f"{column} >= %s")
        params.append(date_bound(start_date))
    if end_date:
        where.append(f"{column} <= %s")
        params.append(date_bound(end_date, end=True))


def _finish(where: List[str], params: List[Any]) -> WhereClause:
    sql = f"WHERE {' AND '.join(where)}" if where else ""
    return WhereClause(sql=sql, params=params)


def resolve_sort(
    sort_by: Optional[str],
    sort_order: Optional[str],
    columns: Dict[str, str],
    default: str,
) -> str:
    """Map a caller sort key to a whitelisted ORDER BY expression."""
    column = columns.get(sort_by or "", None)
    if column is None:
        if sort_by:
            logger.debug("Unknown sort key %r, using %s", sort_by, default)
        return f"{default} DESC"
    direction = "ASC" if (sort_order or "").strip().lower() == "asc" else "DESC"
    if column == default:
        return f"{column} {direction}"
    # primary key tiebreak keeps LIMIT/OFFSET pages disjoint
    return f"{column} {direction}, {default} DESC"


# ---------------------------------------------------------------------------
# Stations
# ---------------------------------------------------------------------------

@dataclass
class StationFilters:
    status: Optional[str] = None
    usage_type: Optional[str] = None
    network_id: Optional[str] = None
    added_by: Optional[str] = None
    charger_type: Optional[str] = None
    station_type: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    search: Optional[str] = None


def build_station_where(filters: StationFilters, scope: str = "directory") -> WhereClause:
    """Build the station predicate for one of the two listing scopes.

    ``directory`` lists approved stations only and ``status`` means the
    operational flag (Active/Inactive). An approval state is also accepted
    there: Approved adds nothing, Pending and Rejected match no row.
    ``review`` lists every station that is not soft-deleted and ``status``
    means the approval state.
    """
    where: List[str] = []
    params: List[Any] = []

    if scope == "directory":
        where.append("cs.approved_status = 'APPROVED'")
        if not is_all(filters.status):
            status = filters.status.strip().lower()
            if status == "active":
                where.append("cs.status = 1")
            elif status == "inactive":
                where.append("cs.status = 0")
            elif status.upper() in REVIEW_STATUSES:
                if status.upper() != "APPROVED":
                    where.append("cs.approved_status = %s")
                    params.append(status.upper())
            else:
                raise FilterError(f"Invalid status '{filters.status}'. Use Active, Inactive or All")
    elif scope == "review":
        where.append("cs.approved_status <> 'DELETED'")
        if not is_all(filters.status):
            status = filters.status.strip().upper()
            if status not in REVIEW_STATUSES:
                raise FilterError(f"Invalid status '{filters.status}'. Use Pending, Approved, Rejected or All")
            where.append("cs.approved_status = %s")
            params.append(status)
    else:
        raise ValueError(f"Unknown station scope: {scope}")

    if not is_all(filters.usage_type):
        usage = filters.usage_type.strip().upper()
        if usage not in USAGE_TYPES:
            raise FilterError(f"Invalid usageType '{filters.usage_type}'. Use PUBLIC or PRIVATE")
        where.append("cs.type = %s")
        params.append(usage)

    if not is_all(filters.network_id):
        try:
            network_id = int(str(filters.network_id).strip())
        except ValueError:
            raise FilterError(f"Invalid networkId '{filters.network_id}'")
        where.append("cs.network_id = %s")
        params.append(network_id)

    if not is_all(filters.added_by):
        added_by = filters.added_by.strip().lower()
        if added_by == "evjoints":
            where.append("cs.user_type = 'CPO'")
        elif added_by == "users":
            where.append("cs.user_type IN ('EV Owner', 'Station Owner')")
        else:
            raise FilterError(f"Invalid addedBy '{filters.added_by}'. Use EVJoints, Users or All")

    if not is_all(filters.charger_type):
        charger_type = filters.charger_type.strip().upper()
        if charger_type not in CHARGER_TYPES:
            raise FilterError(f"Invalid chargerType '{filters.charger_type}'. Use AC, DC or All")
        where.append(
            "EXISTS ("
            "SELECT 1 FROM charging_point cp "
            "JOIN connector c ON c.charge_point_id = cp.id "
            "JOIN charger_types ct ON ct.id = c.charger_type_id "
            "WHERE cp.station_id = cs.id AND ct.type = %s)"
        )
        params.append(charger_type)

    if not is_all(filters.station_type):
        where.append("cs.landmark = %s")
        params.append(filters.station_type.strip())

    _date_range(where, params, "cs.created_at", filters.start_date, filters.end_date)

    if filters.search and filters.search.strip():
        sql, search_params = search_clause(filters.search, STATION_SEARCH_COLUMNS)
        where.append(sql)
        params.extend(search_params)

    return _finish(where, params)


# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------

def build_customer_where(
    search: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> WhereClause:
    where: List[str] = []
    params: List[Any] = []

    _date_range(where, params, "c.created_at", start_date, end_date)

    if search and search.strip():
        sql, search_params = search_clause(search, CUSTOMER_SEARCH_COLUMNS)
        where.append(sql)
        params.extend(search_params)

    return _finish(where, params)


# ---------------------------------------------------------------------------
# Trips
# ---------------------------------------------------------------------------

def build_trip_where(
    status: Optional[str] = None,
    story: Optional[str] = None,
    story_status: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    search: Optional[str] = None,
) -> WhereClause:
    where: List[str] = []
    params: List[Any] = []

    if not is_all(status):
        trip_status = status.strip().upper()
        if trip_status not in TRIP_STATUSES:
            raise FilterError(f"Invalid trip status '{status}'")
        where.append("t.trip_status = %s")
        params.append(trip_status)

    if not is_all(story):
        if story.strip().lower() == "with story":
            where.append("t.feedback IS NOT NULL")
        elif story.strip().lower() == "without story":
            where.append("t.feedback IS NULL")
        else:
            raise FilterError(f"Invalid story filter '{story}'. Use With Story, Without Story or All")

    if not is_all(story_status):
        wanted = story_status.strip().upper()
        if wanted not in STORY_STATUSES:
            raise FilterError(f"Invalid storyStatus '{story_status}'")
        if wanted == "PENDING":
            where.append("t.feedback IS NOT NULL AND t.story_status IS NULL")
        else:
            where.append("t.story_status = %s")
            params.append(wanted)

    _date_range(where, params, "t.created_at", start_date, end_date)

    if search and search.strip():
        sql, search_params = search_clause(search, TRIP_SEARCH_COLUMNS)
        where.append(sql)
        params.extend(search_params)

    return _finish(where, params)
