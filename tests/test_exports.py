import csv
import io
from datetime import datetime, timezone

from exports import (
    BOM,
    NO_DATA,
    STATION_HEADERS,
    export_response,
    local_date,
    local_time,
    render_csv,
    station_export_rows,
)


def _station(**overrides):
    station = {
        "id": 9,
        "stationName": "Highway Plaza",
        "networkName": "Statiq",
        "stationContact": "9000000009",
        "latitude": 18.5,
        "longitude": 73.8,
        "stationType": "Highway",
        "usageType": "Public",
        "operationalHours": "00:00 - 23:59",
        "submissionTime": datetime(2024, 1, 1, 20, 0, tzinfo=timezone.utc),
        "addedBy": "Ravi K",
        "operationalStatus": "Active",
        "media": ["a.jpg", "b.jpg"],
        "connectors": [
            {"connectorType": "DC", "connector": "CCS2", "count": 2,
             "powerRating": "60 kW", "tariff": "₹18/kWh", "operationalStatus": "Active"},
            {"connectorType": "AC", "connector": "Type 2", "count": 1,
             "powerRating": "7.4 kW", "tariff": "₹12/kWh", "operationalStatus": "Inactive"},
        ],
    }
    station.update(overrides)
    return station


def test_local_date_and_time_use_regional_timezone():
    utc = datetime(2024, 1, 1, 20, 0, tzinfo=timezone.utc)
    assert local_date(utc) == "02/01/2024"
    assert local_time(utc) == "01:30"
    assert local_date(datetime(2024, 1, 1, 20, 0)) == "01/01/2024"
    assert local_date(None) == ""


def test_one_row_per_connector():
    rows = station_export_rows([_station()])
    assert len(rows) == 2
    assert len(rows[0]) == len(STATION_HEADERS)
    assert rows[0][:5] == [9, "02/01/2024", "01:30", "Ravi K", "Highway Plaza"]
    assert rows[0][13:19] == ["DC", "CCS2", 2, "60 kW", "₹18/kWh", "Active"]
    assert rows[1][14] == "Type 2"
    assert rows[0][-1] == 2


def test_connectorless_station_gets_placeholder_row():
    rows = station_export_rows([_station(connectors=[], media=[])])
    assert len(rows) == 1
    assert rows[0][13:19] == ["-", "-", "0", "-", "-", "-"]
    assert rows[0][-1] == 0


def test_approval_column_appended():
    rows = station_export_rows([_station(), _station(id=10, connectors=[])], approvals={9: "Approved"})
    assert all(len(r) == len(STATION_HEADERS) + 1 for r in rows)
    assert [r[-1] for r in rows] == ["Approved", "Approved", "Pending"]


def test_render_csv_has_bom_and_quotes():
    text = render_csv(["A", "B"], [["x, y", None], [1, "₹5/kWh"]])
    assert text.startswith(BOM)
    parsed = list(csv.reader(io.StringIO(text[len(BOM):])))
    assert parsed == [["A", "B"], ["x, y", ""], ["1", "₹5/kWh"]]


def test_empty_csv_export_is_no_data_body():
    response = export_response("stations", STATION_HEADERS, [])
    assert response.body.decode("utf-8") == NO_DATA
    assert response.headers["content-disposition"] == 'attachment; filename="stations.csv"'


def test_csv_export_headers():
    response = export_response("customers", ["Customer ID"], [[1]])
    assert response.media_type.startswith("text/csv")
    assert response.headers["content-disposition"] == 'attachment; filename="customers.csv"'
