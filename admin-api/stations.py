"""
Station review queue.

Lists every station that has not been soft-deleted, with the approval
state as the status filter, and runs the station write workflow for both
station routers.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from aggregation import approval_label
from exports import STATION_HEADERS, export_response, station_export_rows
from filters import FilterError, StationFilters
from models import CurrentUser, StationActionRequest
from middleware import get_current_user
from mutations import log_mutation
from station_queries import fetch_station, fetch_station_page, fetch_station_report
from station_workflow import ACTION_MESSAGES, apply_station_action, normalize_action, validate_action

logger = logging.getLogger("ev-admin.stations")

router = APIRouter(prefix="/api/stations", tags=["stations"])

MAX_PAGE_SIZE = 500


def _get_connection():
    from admin_api import get_connection
    return get_connection()


def _transaction():
    from admin_api import transaction
    return transaction()


def station_filters(
    status: Optional[str] = Query(None),
    usageType: Optional[str] = Query(None),
    networkId: Optional[str] = Query(None),
    addedBy: Optional[str] = Query(None),
    chargerType: Optional[str] = Query(None),
    stationType: Optional[str] = Query(None),
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
) -> StationFilters:
    return StationFilters(
        status=status,
        usage_type=usageType,
        network_id=networkId,
        added_by=addedBy,
        charger_type=chargerType,
        station_type=stationType,
        start_date=startDate,
        end_date=endDate,
        search=search,
    )


def perform_station_action(station_id: int, body: StationActionRequest, user: CurrentUser) -> Dict[str, Any]:
    """Validate, run one action in a single transaction, then audit it."""
    data = body.model_dump()
    action = normalize_action(data.get("action"))
    validate_action(action, data)

    try:
        with _transaction() as conn:
            audit = apply_station_action(conn.cursor(), station_id, action, data)
    except HTTPException:
        raise
    except Exception as e:
        logger.error("Station #%s %s failed: %s", station_id, action, e)
        raise HTTPException(status_code=500, detail=str(e))

    log_mutation(user, action.lower(), "charging_station", station_id, new_values=audit)
    logger.info("Station #%s %s by %s", station_id, action, user.user_id)
    return {"message": ACTION_MESSAGES[action]}


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.get("")
def list_stations(
    filters: StationFilters = Depends(station_filters),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    sortBy: Optional[str] = Query(None),
    sortOrder: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
):
    """Review queue: non-deleted stations, newest first by default."""
    try:
        with _get_connection() as conn:
            total, data = fetch_station_page(
                conn, filters, scope="review", shape="review",
                page=page, limit=limit, sort_by=sortBy, sort_order=sortOrder,
            )
    except FilterError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error("GET /api/stations failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))

    return {"data": data, "pagination": {"total": total, "page": page, "limit": limit}}


@router.get("/download")
def download_stations(
    filters: StationFilters = Depends(station_filters),
    format: str = Query("csv", pattern="^(csv|xlsx)$"),
    sortBy: Optional[str] = Query(None),
    sortOrder: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
):
    """Review queue report, one row per station connector."""
    try:
        with _get_connection() as conn:
            stations, approvals = fetch_station_report(conn, filters, "review", sortBy, sortOrder)
    except FilterError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error("GET /api/stations/download failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))

    labels = {sid: approval_label(code) for sid, code in approvals.items()}
    rows = station_export_rows(stations, approvals=labels)
    return export_response("stations", STATION_HEADERS + ["Approval Status"], rows, format)


@router.get("/{station_id}")
def get_station(station_id: int, user: CurrentUser = Depends(get_current_user)):
    """Direct fetch, including soft-deleted stations."""
    try:
        with _get_connection() as conn:
            station = fetch_station(conn, station_id, "review")
    except Exception as e:
        logger.error("GET /api/stations/%s failed: %s", station_id, e)
        raise HTTPException(status_code=500, detail=str(e))

    if station is None:
        raise HTTPException(status_code=404, detail="Station not found")
    return station


@router.put("/{station_id}")
def update_station(
    station_id: int,
    body: StationActionRequest,
    user: CurrentUser = Depends(get_current_user),
):
    """EDIT (or SAVE) / APPROVE / REJECT / ENABLE / DISABLE / DELETE."""
    return perform_station_action(station_id, body, user)
