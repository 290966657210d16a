"""
Read side of the station listings.

Every listing runs three statements against one connection: a COUNT and an
id page, both over the same WhereClause, then one detail query that left
joins connectors, charger types, the approved loyalty ledger and
attachments for just the ids on the page. The detail rows go through
aggregation.aggregate_stations().
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from aggregation import aggregate_stations, order_by_ids
from filters import (
    STATION_FROM,
    STATION_SORT_COLUMNS,
    StationFilters,
    WhereClause,
    build_station_where,
    resolve_sort,
)

logger = logging.getLogger("ev-admin.station-queries")

DEFAULT_SORT = "cs.id"

DETAIL_SQL = """
    SELECT
        cs.id,
        cs.name             AS station_name,
        cs.latitude,
        cs.longitude,
        cs.mobile           AS contact_number,
        cs.created_at,
        cs.updated_at,
        cs.approved_status,
        cs.reason,
        cs.status           AS operational_status,
        cs.open_time,
        cs.close_time,
        cs.type             AS usage_type,
        cs.user_type        AS added_by_type,
        cs.landmark,
        n.id                AS network_id,
        n.name              AS network_name,
        n.status            AS network_status,
        NULLIF(TRIM(CONCAT(cu.first_name, ' ', cu.last_name)), '') AS added_by,
        c.id                AS connector_id,
        ct.id               AS charger_type_id,
        ct.name             AS charger_name,
        ct.type             AS charger_type,
        c.power             AS power_rating,
        c.no_of_connectors  AS connector_count,
        c.price_per_khw     AS tariff,
        c.status            AS connector_status,
        lp.evolts,
        a.path              AS photo_path
    {from_sql}
    LEFT JOIN charging_point cp ON cp.station_id = cs.id
    LEFT JOIN connector c ON c.charge_point_id = cp.id
    LEFT JOIN charger_types ct ON ct.id = c.charger_type_id
    LEFT JOIN (
        SELECT station_id, SUM(points) AS evolts
        FROM loyalty_points
        WHERE approved_status = 'APPROVED'
        GROUP BY station_id
    ) lp ON lp.station_id = cs.id
    LEFT JOIN attachment a ON a.station_id = cs.id
    WHERE cs.id = ANY(%s)
    ORDER BY {order_by}, c.id, a.id
"""


def count_stations(cursor, where: WhereClause) -> int:
    cursor.execute(f"SELECT COUNT(*) {STATION_FROM} {where.sql}", where.params)
    return cursor.fetchone()[0]


def station_id_page(cursor, where: WhereClause, order_by: str,
                    limit: Optional[int] = None, offset: int = 0) -> List[int]:
    """Ids matching the predicate in display order; no limit means every id."""
    sql = f"SELECT cs.id {STATION_FROM} {where.sql} ORDER BY {order_by}"
    params = list(where.params)
    if limit is not None:
        sql += " LIMIT %s OFFSET %s"
        params.extend([limit, offset])
    cursor.execute(sql, params)
    return [row[0] for row in cursor.fetchall()]


def station_detail_rows(cursor, ids: List[int], order_by: str = f"{DEFAULT_SORT} DESC") -> List[Dict[str, Any]]:
    if not ids:
        return []
    cursor.execute(DETAIL_SQL.format(from_sql=STATION_FROM, order_by=order_by), (list(ids),))
    columns = [desc[0] for desc in cursor.description]
    return [dict(zip(columns, row)) for row in cursor.fetchall()]


def fetch_station_page(
    conn,
    filters: StationFilters,
    scope: str,
    shape: str,
    page: int = 1,
    limit: int = 10,
    sort_by: Optional[str] = None,
    sort_order: Optional[str] = None,
) -> Tuple[int, List[Dict[str, Any]]]:
    """(total, entities) for one page of a station listing."""
    where = build_station_where(filters, scope=scope)
    order_by = resolve_sort(sort_by, sort_order, STATION_SORT_COLUMNS, DEFAULT_SORT)

    cursor = conn.cursor()
    total = count_stations(cursor, where)
    ids = station_id_page(cursor, where, order_by, limit, (page - 1) * limit)
    rows = station_detail_rows(cursor, ids, order_by)
    return total, order_by_ids(aggregate_stations(rows, shape), ids)


def fetch_station_report(
    conn,
    filters: StationFilters,
    scope: str,
    sort_by: Optional[str] = None,
    sort_order: Optional[str] = None,
) -> Tuple[List[Dict[str, Any]], Dict[Any, str]]:
    """Every matching station in directory shape, plus raw approval codes by id."""
    where = build_station_where(filters, scope=scope)
    order_by = resolve_sort(sort_by, sort_order, STATION_SORT_COLUMNS, DEFAULT_SORT)

    cursor = conn.cursor()
    ids = station_id_page(cursor, where, order_by)
    rows = station_detail_rows(cursor, ids, order_by)
    approvals = {row["id"]: row.get("approved_status") for row in rows}
    logger.info("Station report (%s): %d stations", scope, len(ids))
    return order_by_ids(aggregate_stations(rows, "directory"), ids), approvals


def fetch_station(conn, station_id: int, shape: str) -> Optional[Dict[str, Any]]:
    """Direct fetch by id, soft-deleted rows included."""
    rows = station_detail_rows(conn.cursor(), [station_id])
    stations = aggregate_stations(rows, shape)
    return stations[0] if stations else None
