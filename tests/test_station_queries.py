from decimal import Decimal

from filters import StationFilters
from station_queries import fetch_station, fetch_station_page, fetch_station_report

DETAIL_COLUMNS = (
    "id", "station_name", "approved_status", "network_name", "connector_id",
    "charger_type", "charger_name", "power_rating", "tariff", "connector_count", "photo_path",
)


class ScriptedConnection:
    """Returns canned results in order and records every statement."""

    def __init__(self, results):
        self.results = list(results)
        self.executed = []

    def cursor(self):
        return self

    def execute(self, sql, params=None):
        self.executed.append((" ".join(sql.split()), list(params or [])))
        self._rows = self.results.pop(0)
        self.description = [(c,) for c in DETAIL_COLUMNS]

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return self._rows


def _detail(sid, status="PENDING", connector=None, photo=None):
    return (sid, f"Station {sid}", status, "Statiq", connector, "DC", "CCS2",
            Decimal("60"), Decimal("18"), 1, photo)


def test_page_runs_count_ids_then_details():
    conn = ScriptedConnection([
        [(2,)],
        [(7,), (3,)],
        [_detail(3, connector=30, photo="p3.jpg"), _detail(7, connector=70), _detail(7, connector=71)],
    ])
    total, stations = fetch_station_page(
        conn, StationFilters(usage_type="PUBLIC"), scope="review", shape="review",
        page=2, limit=2, sort_by="createdAt", sort_order="asc",
    )

    assert total == 2
    assert [s["id"] for s in stations] == [7, 3]
    assert [c["id"] for c in stations[0]["connectors"]] == [70, 71]
    assert stations[1]["photos"] == ["p3.jpg"]

    count_sql, count_params = conn.executed[0]
    ids_sql, ids_params = conn.executed[1]
    detail_sql, detail_params = conn.executed[2]
    assert count_sql.startswith("SELECT COUNT(*) FROM charging_station cs")
    assert count_params == ["PUBLIC"]
    assert "ORDER BY cs.created_at ASC, cs.id DESC LIMIT %s OFFSET %s" in ids_sql
    assert ids_params == ["PUBLIC", 2, 2]
    assert "WHERE cs.id = ANY(%s)" in detail_sql
    assert detail_params == [[7, 3]]


def test_empty_page_skips_detail_query():
    conn = ScriptedConnection([[(0,)], []])
    total, stations = fetch_station_page(conn, StationFilters(), scope="directory", shape="directory")
    assert (total, stations) == (0, [])
    assert len(conn.executed) == 2


def test_report_is_unpaginated_and_directory_shaped():
    conn = ScriptedConnection([
        [(1,), (2,)],
        [_detail(1, status="APPROVED", connector=10), _detail(2, status="REJECTED")],
    ])
    stations, approvals = fetch_station_report(conn, StationFilters(), "review")
    assert "LIMIT" not in conn.executed[0][0]
    assert approvals == {1: "APPROVED", 2: "REJECTED"}
    assert "media" in stations[0]
    assert stations[1]["connectors"] == []


def test_fetch_station_missing():
    conn = ScriptedConnection([[]])
    assert fetch_station(conn, 5, "review") is None
    assert conn.executed[0][1] == [[5]]
