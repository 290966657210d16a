"""
Approved charging-station directory.

Listing, report download, direct fetch, create, spreadsheet mass upload
and the shared station write workflow for approved stations.
"""

import io
import json
import logging
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile

from exports import STATION_HEADERS, export_response, station_export_rows
from filters import FilterError, StationFilters
from models import CurrentUser, MassUploadResult, MassUploadSummary, StationActionRequest, StationPayload
from middleware import get_current_user
from mutations import log_mutation
from station_queries import fetch_station, fetch_station_page, fetch_station_report
from station_workflow import insert_station, raise_if_invalid, validate_connectors, validate_station
from stations import MAX_PAGE_SIZE, perform_station_action, station_filters

logger = logging.getLogger("ev-admin.charging-stations")

router = APIRouter(prefix="/api/charging-stations", tags=["charging-stations"])

# Spreadsheet header -> payload key; camelCase headers are accepted too
UPLOAD_COLUMNS = {
    "stationName": "Station Name",
    "stationType": "Station Type",
    "usageType": "Usage Type",
    "latitude": "Latitude",
    "longitude": "Longitude",
    "contactNumber": "Contact Number",
    "open_time": "Open Time",
    "close_time": "Close Time",
    "networkId": "Network ID",
    "networkName": "Network Name",
    "address": "Address",
}


def _get_connection():
    from admin_api import get_connection
    return get_connection()


def _transaction():
    from admin_api import transaction
    return transaction()


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------

@router.get("")
def list_charging_stations(
    filters: StationFilters = Depends(station_filters),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE),
    sortBy: Optional[str] = Query(None),
    sortOrder: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
):
    """Approved stations; ``status`` filters the operational flag."""
    try:
        with _get_connection() as conn:
            total, data = fetch_station_page(
                conn, filters, scope="directory", shape="directory",
                page=page, limit=limit, sort_by=sortBy, sort_order=sortOrder,
            )
    except FilterError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error("GET /api/charging-stations failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))

    return {"data": data, "pagination": {"total": total, "page": page, "limit": limit}}


@router.get("/download")
def download_charging_stations(
    filters: StationFilters = Depends(station_filters),
    format: str = Query("csv", pattern="^(csv|xlsx)$"),
    sortBy: Optional[str] = Query(None),
    sortOrder: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
):
    """Directory report, one row per station connector."""
    try:
        with _get_connection() as conn:
            stations, _ = fetch_station_report(conn, filters, "directory", sortBy, sortOrder)
    except FilterError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error("GET /api/charging-stations/download failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))

    return export_response("charging_stations", STATION_HEADERS, station_export_rows(stations), format)


@router.get("/{station_id}")
def get_charging_station(station_id: int, user: CurrentUser = Depends(get_current_user)):
    try:
        with _get_connection() as conn:
            station = fetch_station(conn, station_id, "directory")
    except Exception as e:
        logger.error("GET /api/charging-stations/%s failed: %s", station_id, e)
        raise HTTPException(status_code=500, detail=str(e))

    if station is None:
        raise HTTPException(status_code=404, detail="Station not found")
    return station


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

@router.post("", status_code=201)
def create_charging_station(body: StationPayload, user: CurrentUser = Depends(get_current_user)):
    """Create a PENDING station with its connectors and photos."""
    data = body.model_dump()
    raise_if_invalid(validate_station(data))
    raise_if_invalid(validate_connectors(data["connectors"]), "Connector validation failed")

    try:
        with _transaction() as conn:
            station_id = insert_station(conn.cursor(), data)
    except HTTPException:
        raise
    except Exception as e:
        logger.error("POST /api/charging-stations failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))

    log_mutation(user, "create", "charging_station", station_id, new_values=data)
    return {"message": "Charging station created successfully", "stationId": station_id}


@router.put("/{station_id}")
def update_charging_station(
    station_id: int,
    body: StationActionRequest,
    user: CurrentUser = Depends(get_current_user),
):
    return perform_station_action(station_id, body, user)


# ---------------------------------------------------------------------------
# Mass upload
# ---------------------------------------------------------------------------

def _plain(value: Any) -> Any:
    """Spreadsheet cell -> JSON-friendly value."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, time):
        return value.strftime("%H:%M:%S")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, str):
        return value.strip()
    return value


def _pick(row: Dict[str, Any], key: str) -> Any:
    value = row.get(UPLOAD_COLUMNS[key])
    if value in (None, ""):
        value = row.get(key)
    return None if value in (None, "") else value


def _upload_row_payload(row: Dict[str, Any], row_number: int) -> Dict[str, Any]:
    data = {key: _pick(row, key) for key in UPLOAD_COLUMNS}
    for key in ("stationName", "stationType", "contactNumber", "networkName", "address"):
        if data[key] is not None:
            data[key] = str(data[key])
    if data["networkId"] is not None:
        try:
            data["networkId"] = int(data["networkId"])
        except (TypeError, ValueError):
            data["networkId"] = None

    raw = row.get("Connectors") or row.get("connectors")
    connectors: List[Dict[str, Any]] = []
    if raw:
        try:
            parsed = json.loads(raw) if isinstance(raw, str) else raw
            connectors = [c for c in parsed if isinstance(c, dict)]
        except (TypeError, ValueError):
            logger.warning("Row %d: invalid connector data, ignoring connectors", row_number)
    data["connectors"] = connectors
    data["photos"] = []
    return data


def read_upload_rows(contents: bytes) -> List[Tuple[int, Dict[str, Any]]]:
    """(spreadsheet row number, header -> value) for every non-blank data row."""
    import openpyxl

    wb = openpyxl.load_workbook(io.BytesIO(contents), read_only=True, data_only=True)
    try:
        ws = wb.active
        header_row = next(ws.iter_rows(min_row=1, max_row=1, values_only=True), None)
        if not header_row:
            return []
        headers = [str(cell or "").strip() for cell in header_row]

        rows = []
        for row_num, values in enumerate(ws.iter_rows(min_row=2, values_only=True), start=2):
            if all(v is None or (isinstance(v, str) and not v.strip()) for v in values):
                continue
            rows.append((row_num, {h: _plain(v) for h, v in zip(headers, values) if h}))
        return rows
    finally:
        wb.close()


@router.post("/mass-upload", response_model=MassUploadResult)
async def mass_upload_charging_stations(
    file: Optional[UploadFile] = File(None),
    user: CurrentUser = Depends(get_current_user),
):
    """Create stations from an .xlsx sheet, one transaction per row.

    Expected columns: Station Name, Station Type, Usage Type, Latitude,
    Longitude, Contact Number, Open Time, Close Time, Network ID, Address,
    Connectors (JSON list of {chargerTypeId, count, powerRating, tariff}).
    """
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if not file.filename.lower().endswith(".xlsx"):
        raise HTTPException(status_code=400, detail="File must be .xlsx")

    contents = await file.read()
    try:
        rows = read_upload_rows(contents)
    except Exception as e:
        logger.warning("Unreadable upload %s: %s", file.filename, e)
        raise HTTPException(status_code=400, detail="Invalid spreadsheet file")
    if not rows:
        raise HTTPException(status_code=400, detail="File is empty")

    successful: List[Dict[str, Any]] = []
    failed: List[Dict[str, Any]] = []

    for row_number, row in rows:
        data = _upload_row_payload(row, row_number)
        errors = validate_station(data) + validate_connectors(data["connectors"])
        if errors:
            failed.append({"row": row_number, "data": row, "errors": errors})
            continue

        try:
            with _transaction() as conn:
                station_id = insert_station(conn.cursor(), data)
        except HTTPException as e:
            failed.append({"row": row_number, "data": row, "errors": [str(e.detail)]})
            continue
        except Exception as e:
            logger.error("Mass upload row %d failed: %s", row_number, e)
            failed.append({"row": row_number, "data": row, "errors": [str(e)]})
            continue

        successful.append({"row": row_number, "stationId": station_id, "stationName": data["stationName"]})

    logger.info(
        "Mass upload: %d created, %d failed from %s by %s",
        len(successful), len(failed), file.filename, user.user_id,
    )
    if successful:
        log_mutation(
            user, "mass_upload", "charging_station", ",".join(str(r["stationId"]) for r in successful),
            new_values={"file": file.filename, "rows": len(rows)},
        )

    return MassUploadResult(
        summary=MassUploadSummary(total=len(rows), successful=len(successful), failed=len(failed)),
        successfulRows=successful,
        failedRows=failed,
    )
