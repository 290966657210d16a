"""
Trip report and trip story moderation.

A trip's feedback text is its "story". Review outcomes live in dedicated
columns on trip (story_status, story_reviewed_by, story_blog_link,
story_reviewed_at), added at startup by ensure_trip_story_columns().
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from exports import export_response, local_date, local_time
from filters import FilterError, TRIP_SORT_COLUMNS, WhereClause, build_trip_where, resolve_sort
from models import CurrentUser, TripStoryRequest
from middleware import get_current_user
from mutations import log_mutation

logger = logging.getLogger("ev-admin.trips")

router = APIRouter(prefix="/api/trips", tags=["trips"])

# Navigation / check-in happened
SUCCESSFUL_STATUSES = {"COMPLETED", "ON_GOING", "ON_GOING_TEST", "SUCCESSFULL"}
COMPLETION_SUCCESS = {"COMPLETED", "SUCCESSFULL"}
COMPLETION_PENDING = {"SAVED", "ON_GOING", "ENQUIRED", "ON_GOING_TEST"}

STORY_LABELS = {"APPROVED": "Approved", "REJECTED": "Rejected"}

STORY_COLUMNS = {
    "story_status": "VARCHAR(16)",
    "story_reviewed_by": "VARCHAR(255)",
    "story_blog_link": "TEXT",
    "story_reviewed_at": "TIMESTAMP",
}

TRIP_FROM = (
    "FROM trip t "
    "JOIN customer c ON c.id = t.customer_id"
)

TRIP_SQL = """
    SELECT
        t.id, t.customer_id, t.created_at, t.updated_at, t.trip_status,
        t.distance, t.feedback,
        t.source, t.source_latitude, t.source_longitude,
        t.destination, t.destination_latitude, t.destination_longitude,
        t.no_of_charging_stations, t.connector_id, t.battery_capacity,
        t.story_status, t.story_reviewed_by, t.story_blog_link, t.story_reviewed_at,
        vm.name AS vehicle_model_name,
        vv.name AS vehicle_variant_name,
        lp.evolts,
        c.first_name, c.last_name, c.email, c.mobile
    {from_sql}
    LEFT JOIN my_vehicles mv ON mv.id = t.vehicle_id
    LEFT JOIN vehicle_model_master vm ON vm.id = mv.vehicle_model_id
    LEFT JOIN vehicle_variant_master vv ON vv.id = mv.vehicle_variant_id
    LEFT JOIN (
        SELECT customer_id, SUM(points) AS evolts
        FROM loyalty_points
        WHERE approved_status = 'APPROVED'
        GROUP BY customer_id
    ) lp ON lp.customer_id = t.customer_id
    {where}
    ORDER BY {order_by}
"""

TRIP_HEADERS = [
    "Trip ID", "Date", "Time", "First Name", "Last Name", "Email", "Mobile Number",
    "Source", "Source Latitude", "Source Longitude",
    "Destination", "Destination Latitude", "Destination Longitude",
    "Total KM", "Charging Stops", "Station Connector Count",
    "EV Model", "EV Variant", "Battery Capacity", "Navigation", "Check In",
    "Trip Status", "Trip Completion Status", "Has Trip Story", "Story Status",
    "Approved By", "Blog Link", "EVolts",
]


def _get_connection():
    from admin_api import get_connection
    return get_connection()


def _transaction():
    from admin_api import transaction
    return transaction()


def ensure_trip_story_columns():
    """Add the structured story columns to trip if missing."""
    try:
        with _get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT column_name FROM information_schema.columns "
                "WHERE table_schema = 'public' AND table_name = 'trip' "
                "AND column_name = ANY(%s)",
                (list(STORY_COLUMNS),),
            )
            present = {row[0] for row in cursor.fetchall()}
            missing = [col for col in STORY_COLUMNS if col not in present]
            if missing:
                cursor.execute(
                    "ALTER TABLE trip "
                    + ", ".join(f"ADD COLUMN {col} {STORY_COLUMNS[col]} DEFAULT NULL" for col in missing)
                )
                conn.commit()
                logger.info("Added trip story columns: %s", ", ".join(missing))
    except Exception as e:
        logger.warning("Could not ensure trip story columns: %s", e)


# ---------------------------------------------------------------------------
# Row shaping
# ---------------------------------------------------------------------------

def story_record(feedback: Optional[str], status: Optional[str], reviewed_by: Optional[str] = None,
                 blog_link: Optional[str] = None, reviewed_at: Any = None) -> Dict[str, Any]:
    """Structured story state; status is None when there is nothing to review."""
    label = STORY_LABELS.get((status or "").upper())
    if label is None:
        label = "Pending" if feedback else None
    return {
        "status": label,
        "reviewedBy": reviewed_by if label in ("Approved", "Rejected") else None,
        "blogLink": blog_link if label == "Approved" else None,
        "reviewedAt": reviewed_at if label in ("Approved", "Rejected") else None,
    }


def completion_status(trip_status: Optional[str]) -> str:
    if trip_status in COMPLETION_SUCCESS:
        return "Successful"
    if trip_status in COMPLETION_PENDING:
        return "Pending"
    return "Failed"


def split_connector_ids(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in str(value).split(",") if part.strip()]


def station_connector_count(connector_ids: List[str], connector_stations: Dict[str, Any]) -> str:
    """'N stations, M connectors'; a trip with connectors counts at least one station."""
    stations = {connector_stations[cid] for cid in connector_ids if connector_stations.get(cid)}
    station_count = len(stations)
    if station_count == 0 and connector_ids:
        station_count = 1
    return f"{station_count} stations, {len(connector_ids)} connectors"


def _location(latitude: Any, longitude: Any, address: Optional[str]) -> Optional[Dict[str, Any]]:
    if latitude is None or longitude is None:
        return None
    return {"latitude": float(latitude), "longitude": float(longitude), "address": address}


def trip_dict(r: Dict[str, Any], stops: Dict[Any, List[Dict[str, Any]]],
              connector_stations: Dict[str, Any]) -> Dict[str, Any]:
    successful = r.get("trip_status") in SUCCESSFUL_STATUSES
    connector_ids = split_connector_ids(r.get("connector_id"))
    story = story_record(
        r.get("feedback"), r.get("story_status"), r.get("story_reviewed_by"),
        r.get("story_blog_link"), r.get("story_reviewed_at"),
    )
    return {
        "id": r["id"],
        "dateTime": r.get("created_at"),
        "firstName": r.get("first_name"),
        "lastName": r.get("last_name"),
        "email": r.get("email"),
        "mobileNumber": r.get("mobile"),
        "source": r.get("source"),
        "sourceLocation": _location(r.get("source_latitude"), r.get("source_longitude"), r.get("source")),
        "destination": r.get("destination"),
        "destinationLocation": _location(
            r.get("destination_latitude"), r.get("destination_longitude"), r.get("destination"),
        ),
        "stops": stops.get(r["id"], []),
        "totalKm": r.get("distance"),
        "stationConnectorCount": station_connector_count(connector_ids, connector_stations),
        "chargingStopsCount": r.get("no_of_charging_stations") or 0,
        "evModel": r.get("vehicle_model_name") or "-",
        "evVariant": r.get("vehicle_variant_name") or "-",
        "evBatteryCapacity": r.get("battery_capacity") or "-",
        "evolts": r.get("evolts") or 0,
        "feedback": r.get("feedback") or None,
        "navigation": "Yes" if successful else "No",
        "checkIn": "Yes" if successful else "No",
        "tripStatus": r.get("trip_status"),
        "tripCompletionStatus": completion_status(r.get("trip_status")),
        "hasTripStory": "Yes" if r.get("feedback") else "No",
        "story": story,
        "storyStatus": story["status"],
    }


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def fetch_stops(cursor, trip_ids: List[int]) -> Dict[Any, List[Dict[str, Any]]]:
    if not trip_ids:
        return {}
    cursor.execute(
        "SELECT trip_id, stop, latitude, longitude FROM trip_stops "
        "WHERE trip_id = ANY(%s) ORDER BY id ASC",
        (trip_ids,),
    )
    stops: Dict[Any, List[Dict[str, Any]]] = {}
    for trip_id, stop, lat, lng in cursor.fetchall():
        stops.setdefault(trip_id, []).append({"address": stop, "lat": lat, "lng": lng})
    return stops


def fetch_connector_stations(cursor, connector_ids: Iterable[str]) -> Dict[str, Any]:
    numeric = sorted({int(cid) for cid in connector_ids if cid.isdigit()})
    if not numeric:
        return {}
    cursor.execute("SELECT id, station_id FROM connector WHERE id = ANY(%s)", (numeric,))
    return {str(cid): station_id for cid, station_id in cursor.fetchall()}


def fetch_trips(cursor, where: WhereClause, order_by: str,
                limit: Optional[int] = None, offset: int = 0) -> List[Dict[str, Any]]:
    sql = TRIP_SQL.format(from_sql=TRIP_FROM, where=where.sql, order_by=order_by)
    params = list(where.params)
    if limit is not None:
        sql += " LIMIT %s OFFSET %s"
        params.extend([limit, offset])
    cursor.execute(sql, params)
    columns = [desc[0] for desc in cursor.description]
    rows = [dict(zip(columns, row)) for row in cursor.fetchall()]

    all_connectors = {cid for r in rows for cid in split_connector_ids(r.get("connector_id"))}
    stops = fetch_stops(cursor, [r["id"] for r in rows])
    connector_stations = fetch_connector_stations(cursor, all_connectors)
    return [trip_dict(r, stops, connector_stations) for r in rows]


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.get("")
def list_trips(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=500),
    status: Optional[str] = Query(None),
    story: Optional[str] = Query(None),
    storyStatus: Optional[str] = Query(None),
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    sortBy: Optional[str] = Query(None),
    sortOrder: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
):
    try:
        where = build_trip_where(status, story, storyStatus, startDate, endDate, search)
        order_by = resolve_sort(sortBy, sortOrder, TRIP_SORT_COLUMNS, "t.id")
        with _get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT COUNT(*) {TRIP_FROM} {where.sql}", where.params)
            total = cursor.fetchone()[0]
            data = fetch_trips(cursor, where, order_by, limit, (page - 1) * limit)
    except FilterError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error("GET /api/trips failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))

    return {"data": data, "pagination": {"total": total, "page": page, "limit": limit}}


def _dash(value: Any) -> Any:
    return "-" if value in (None, "") else value


def trip_export_row(trip: Dict[str, Any]) -> List[Any]:
    source = trip["sourceLocation"] or {}
    destination = trip["destinationLocation"] or {}
    story = trip["story"]
    return [
        trip["id"],
        local_date(trip["dateTime"]),
        local_time(trip["dateTime"]),
        _dash(trip["firstName"]),
        _dash(trip["lastName"]),
        _dash(trip["email"]),
        _dash(trip["mobileNumber"]),
        _dash(trip["source"]),
        _dash(source.get("latitude")),
        _dash(source.get("longitude")),
        _dash(trip["destination"]),
        _dash(destination.get("latitude")),
        _dash(destination.get("longitude")),
        trip["totalKm"] or 0,
        trip["chargingStopsCount"],
        trip["stationConnectorCount"],
        trip["evModel"],
        trip["evVariant"],
        trip["evBatteryCapacity"],
        trip["navigation"],
        trip["checkIn"],
        trip["tripStatus"],
        trip["tripCompletionStatus"],
        trip["hasTripStory"],
        _dash(story["status"]),
        _dash(story["reviewedBy"]),
        _dash(story["blogLink"]),
        trip["evolts"],
    ]


@router.get("/download")
def download_trips(
    status: Optional[str] = Query(None),
    story: Optional[str] = Query(None),
    storyStatus: Optional[str] = Query(None),
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    sortBy: Optional[str] = Query(None),
    sortOrder: Optional[str] = Query(None),
    format: str = Query("csv", pattern="^(csv|xlsx)$"),
    user: CurrentUser = Depends(get_current_user),
):
    """Trip and check-in report, one row per trip."""
    try:
        where = build_trip_where(status, story, storyStatus, startDate, endDate, search)
        order_by = resolve_sort(sortBy, sortOrder, TRIP_SORT_COLUMNS, "t.id")
        with _get_connection() as conn:
            trips = fetch_trips(conn.cursor(), where, order_by)
    except FilterError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error("GET /api/trips/download failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))

    return export_response("trip_checkins", TRIP_HEADERS, [trip_export_row(t) for t in trips], format)


@router.put("/story/{trip_id}")
def review_trip_story(
    trip_id: int,
    body: TripStoryRequest,
    user: CurrentUser = Depends(get_current_user),
):
    """Approve or reject a trip story."""
    action = (body.action or "").strip().capitalize()
    if action not in ("Approved", "Rejected"):
        raise HTTPException(status_code=400, detail="Invalid action")
    reviewer = (body.name or "").strip()
    if not reviewer:
        raise HTTPException(status_code=400, detail="Name is required")
    blog_link = (body.blogLink or "").strip() or None

    try:
        with _transaction() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT feedback FROM trip WHERE id = %s FOR UPDATE", (trip_id,))
            row = cursor.fetchone()
            if not row:
                raise HTTPException(status_code=404, detail="Trip not found")

            if action == "Approved":
                if not row[0]:
                    raise HTTPException(status_code=400, detail="Trip has no story to approve")
                cursor.execute(
                    "UPDATE trip SET story_status = 'APPROVED', story_reviewed_by = %s, "
                    "story_blog_link = %s, story_reviewed_at = NOW(), updated_at = NOW() "
                    "WHERE id = %s",
                    (reviewer, blog_link, trip_id),
                )
            else:
                cursor.execute(
                    "UPDATE trip SET story_status = 'REJECTED', story_reviewed_by = %s, "
                    "story_blog_link = NULL, story_reviewed_at = NOW(), updated_at = NOW() "
                    "WHERE id = %s",
                    (reviewer, trip_id),
                )
    except HTTPException:
        raise
    except Exception as e:
        logger.error("PUT /api/trips/story/%s failed: %s", trip_id, e)
        raise HTTPException(status_code=500, detail=str(e))

    log_mutation(
        user, f"story_{action.lower()}", "trip", trip_id,
        new_values={"reviewedBy": reviewer, "blogLink": blog_link},
    )
    return {"message": f"Trip story {action.lower()} successfully"}
