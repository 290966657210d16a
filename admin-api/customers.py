"""
Customer report endpoints.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from exports import export_response, local_date
from filters import CUSTOMER_SORT_COLUMNS, FilterError, WhereClause, build_customer_where, resolve_sort
from models import CurrentUser
from middleware import get_current_user

logger = logging.getLogger("ev-admin.customers")

router = APIRouter(prefix="/api/customers", tags=["customers"])

# Trip statuses that count as a navigation / check-in
ACTIVE_TRIP_STATUSES = ("COMPLETED", "ON_GOING", "ON_GOING_TEST")

CUSTOMER_SQL = """
    SELECT
        c.id,
        c.first_name,
        c.last_name,
        c.email,
        c.mobile,
        c.created_at AS customer_reg_date,
        mv.created_at AS vehicle_reg_date,
        mv.vehicle_registration_no,
        vt.name AS vehicle_type,
        mf.name AS manufacturer,
        vmm.name AS vehicle_model,
        vvm.name AS vehicle_variant,
        d.brand AS device_brand,
        d.model AS device_model,
        d.type AS device_platform,
        d.version_number AS app_version,
        EXISTS (
            SELECT 1 FROM trip t
            WHERE t.customer_id = c.id AND t.trip_status = ANY(%s)
        ) AS has_navigation,
        EXISTS (
            SELECT 1 FROM trip t
            WHERE t.customer_id = c.id AND t.trip_status <> 'ENQUIRED'
        ) AS has_trip,
        EXISTS (
            SELECT 1 FROM trip t
            WHERE t.customer_id = c.id AND t.trip_status = ANY(%s)
        ) AS has_checkin,
        COALESCE(lp.evolts, 0) AS evolts
    FROM customer c
    LEFT JOIN my_vehicles mv ON mv.id = (
        SELECT mv2.id FROM my_vehicles mv2
        WHERE mv2.customer_id = c.id
        ORDER BY mv2.created_at DESC
        LIMIT 1
    )
    LEFT JOIN vehicle_type_master vt ON vt.id = mv.vehicle_type_id
    LEFT JOIN manufacturer_master mf ON mf.id = mv.manufacturer_id
    LEFT JOIN vehicle_model_master vmm ON vmm.id = mv.vehicle_model_id
    LEFT JOIN vehicle_variant_master vvm ON vvm.id = mv.vehicle_variant_id
    LEFT JOIN devices d ON d.id = (
        SELECT d2.id FROM devices d2
        WHERE d2.customer_id = c.id
        ORDER BY d2.id DESC
        LIMIT 1
    )
    LEFT JOIN (
        SELECT customer_id, SUM(points) AS evolts
        FROM loyalty_points
        WHERE approved_status = 'APPROVED'
        GROUP BY customer_id
    ) lp ON lp.customer_id = c.id
    {where}
    ORDER BY {order_by}
"""

CUSTOMER_HEADERS = [
    "Customer ID", "First Name", "Last Name", "Email", "Phone", "Registration Date",
    "Vehicle Type", "Manufacturer", "Vehicle Model", "Vehicle Variant",
    "Registration Number", "Vehicle Registration Date",
    "Device Brand", "Device Model", "Device Platform", "App Version",
    "Navigation", "Trip", "Check In", "Subscription", "EVolts",
]


def _get_connection():
    from admin_api import get_connection
    return get_connection()


def subscription_tier(has_trip: bool, has_checkin: bool) -> str:
    if has_trip and has_checkin:
        return "Premium"
    if has_trip:
        return "Gold"
    return "Basic"


def _yes_no(flag: Any) -> str:
    return "Yes" if flag else "No"


def customer_dict(r: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": r["id"],
        "firstName": r.get("first_name"),
        "lastName": r.get("last_name"),
        "email": r.get("email"),
        "phone": r.get("mobile"),
        "customerRegDate": r.get("customer_reg_date"),
        "vehicleRegDate": r.get("vehicle_reg_date"),
        "registrationNumber": r.get("vehicle_registration_no"),
        "subscription": subscription_tier(bool(r.get("has_trip")), bool(r.get("has_checkin"))),
        "vehicleType": r.get("vehicle_type"),
        "manufacturer": r.get("manufacturer"),
        "vehicleModel": r.get("vehicle_model"),
        "vehicleVariant": r.get("vehicle_variant"),
        "deviceBrand": r.get("device_brand"),
        "deviceModel": r.get("device_model"),
        "devicePlatform": r.get("device_platform"),
        "appVersion": r.get("app_version"),
        "navigation": _yes_no(r.get("has_navigation")),
        "trip": _yes_no(r.get("has_trip")),
        "checkIn": _yes_no(r.get("has_checkin")),
        "eVolts": r.get("evolts") or 0,
    }


def fetch_customers(cursor, where: WhereClause, order_by: str,
                    limit: Optional[int] = None, offset: int = 0) -> List[Dict[str, Any]]:
    sql = CUSTOMER_SQL.format(where=where.sql, order_by=order_by)
    params: List[Any] = [list(ACTIVE_TRIP_STATUSES), list(ACTIVE_TRIP_STATUSES)] + list(where.params)
    if limit is not None:
        sql += " LIMIT %s OFFSET %s"
        params.extend([limit, offset])
    cursor.execute(sql, params)
    columns = [desc[0] for desc in cursor.description]
    return [customer_dict(dict(zip(columns, row))) for row in cursor.fetchall()]


@router.get("")
def list_customers(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=500),
    search: Optional[str] = Query(None),
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    sortBy: Optional[str] = Query(None),
    sortOrder: Optional[str] = Query(None),
    user: CurrentUser = Depends(get_current_user),
):
    """Customers with their latest vehicle and device and a derived tier."""
    try:
        where = build_customer_where(search, startDate, endDate)
        order_by = resolve_sort(sortBy, sortOrder, CUSTOMER_SORT_COLUMNS, "c.id")
        with _get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT COUNT(*) FROM customer c {where.sql}", where.params)
            total = cursor.fetchone()[0]
            data = fetch_customers(cursor, where, order_by, limit, (page - 1) * limit)
    except FilterError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error("GET /api/customers failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))

    return {"data": data, "pagination": {"total": total, "page": page, "limit": limit}}


@router.get("/download")
def download_customers(
    search: Optional[str] = Query(None),
    startDate: Optional[str] = Query(None),
    endDate: Optional[str] = Query(None),
    sortBy: Optional[str] = Query(None),
    sortOrder: Optional[str] = Query(None),
    format: str = Query("csv", pattern="^(csv|xlsx)$"),
    user: CurrentUser = Depends(get_current_user),
):
    try:
        where = build_customer_where(search, startDate, endDate)
        order_by = resolve_sort(sortBy, sortOrder, CUSTOMER_SORT_COLUMNS, "c.id")
        with _get_connection() as conn:
            customers = fetch_customers(conn.cursor(), where, order_by)
    except FilterError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error("GET /api/customers/download failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))

    rows = [
        [
            c["id"], c["firstName"] or "-", c["lastName"] or "-", c["email"] or "-",
            c["phone"] or "-", local_date(c["customerRegDate"]),
            c["vehicleType"] or "-", c["manufacturer"] or "-", c["vehicleModel"] or "-",
            c["vehicleVariant"] or "-", c["registrationNumber"] or "-", local_date(c["vehicleRegDate"]),
            c["deviceBrand"] or "-", c["deviceModel"] or "-", c["devicePlatform"] or "-",
            c["appVersion"] or "-", c["navigation"], c["trip"], c["checkIn"],
            c["subscription"], c["eVolts"],
        ]
        for c in customers
    ]
    return export_response("customers", CUSTOMER_HEADERS, rows, format)
