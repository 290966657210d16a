"""
Report download helpers (CSV, XLSX).

Listing routes build a header list and a list of row lists, then hand them
to export_response(). CSV bodies start with a UTF-8 BOM so spreadsheet
tools pick the right encoding for the rupee sign.
"""

import csv
import io
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence

from fastapi.responses import Response, StreamingResponse

from country_config import LOCAL_TZ

logger = logging.getLogger("ev-admin.exports")

BOM = "\ufeff"
NO_DATA = "No data found"

STATION_HEADERS = [
    "Station ID",
    "Submission Date",
    "Submission Time",
    "Added By",
    "Station Name",
    "Network Name",
    "Station Contact",
    "Latitude",
    "Longitude",
    "Station Type",
    "Usage Type",
    "Operational Hours",
    "Operational Status",
    "Connector Type",
    "Connector Name",
    "Connector Count",
    "Power Rating",
    "Tariff",
    "Connector Status",
    "Photo Count",
]


# ---------------------------------------------------------------------------
# Cell formatting
# ---------------------------------------------------------------------------

def _local(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(LOCAL_TZ)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return None


def local_date(value: Any) -> str:
    """DD/MM/YYYY in the regional timezone, '' when missing."""
    dt = _local(value)
    return dt.strftime("%d/%m/%Y") if dt else ""


def local_time(value: Any) -> str:
    """HH:MM in the regional timezone, '' when missing."""
    dt = _local(value)
    return dt.strftime("%H:%M") if dt else ""


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


# ---------------------------------------------------------------------------
# Station rows
# ---------------------------------------------------------------------------

def station_export_rows(
    stations: Sequence[Dict[str, Any]],
    approvals: Optional[Dict[Any, str]] = None,
) -> List[List[Any]]:
    """One row per (station x connector); connector-less stations get one row.

    ``stations`` are directory-shaped aggregates. When ``approvals`` is given
    (station id -> label) an Approval Status cell is appended to every row.
    """
    rows: List[List[Any]] = []
    for station in stations:
        base = [
            station["id"],
            local_date(station.get("submissionTime")),
            local_time(station.get("submissionTime")),
            station.get("addedBy"),
            station.get("stationName"),
            station.get("networkName"),
            station.get("stationContact"),
            station.get("latitude"),
            station.get("longitude"),
            station.get("stationType"),
            station.get("usageType"),
            station.get("operationalHours"),
            station.get("operationalStatus"),
        ]
        tail = [len(station.get("media", []))]
        if approvals is not None:
            tail.append(approvals.get(station["id"], "Pending"))

        connectors = station.get("connectors") or []
        if not connectors:
            rows.append(base + ["-", "-", "0", "-", "-", "-"] + tail)
            continue
        for connector in connectors:
            rows.append(base + [
                connector.get("connectorType"),
                connector.get("connector"),
                connector.get("count"),
                connector.get("powerRating"),
                connector.get("tariff"),
                connector.get("operationalStatus"),
            ] + tail)
    return rows


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------

def render_csv(columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> str:
    """CSV text with a leading BOM and CRLF-free newlines."""
    output = io.StringIO()
    output.write(BOM)
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow([_cell(v) for v in row])
    return output.getvalue()


def _export_csv(filename: str, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> StreamingResponse:
    """Generate CSV streaming response."""
    return StreamingResponse(
        iter([render_csv(columns, rows)]),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}.csv"'},
    )


def _export_xlsx(filename: str, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> StreamingResponse:
    """Generate XLSX streaming response."""
    from openpyxl import Workbook
    from openpyxl.styles import Font

    wb = Workbook()
    ws = wb.active
    ws.title = filename[:31]  # Excel sheet name max 31 chars

    for col_idx, col_name in enumerate(columns, 1):
        cell = ws.cell(row=1, column=col_idx, value=col_name)
        cell.font = Font(bold=True)

    for row_idx, row in enumerate(rows, 2):
        for col_idx, val in enumerate(row, 1):
            ws.cell(row=row_idx, column=col_idx, value=_cell(val))

    # Auto-width
    for col_idx, col_name in enumerate(columns, 1):
        max_len = len(str(col_name))
        for row_idx in range(2, min(len(rows) + 2, 102)):  # Sample first 100 rows
            cell_val = ws.cell(row=row_idx, column=col_idx).value
            if cell_val:
                max_len = max(max_len, len(str(cell_val)))
        ws.column_dimensions[ws.cell(row=1, column=col_idx).column_letter].width = min(max_len + 2, 50)

    output = io.BytesIO()
    wb.save(output)
    output.seek(0)

    return StreamingResponse(
        output,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{filename}.xlsx"'},
    )


def export_response(filename: str, columns: Sequence[str], rows: Sequence[Sequence[Any]],
                    fmt: str = "csv") -> Response:
    """Render a report download; an empty CSV report is the body 'No data found'."""
    if fmt == "xlsx":
        return _export_xlsx(filename, columns, rows)
    if not rows:
        return Response(
            content=NO_DATA,
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{filename}.csv"'},
        )
    logger.info("Exporting %d rows to %s.csv", len(rows), filename)
    return _export_csv(filename, columns, rows)
