from datetime import datetime, time
from decimal import Decimal

from aggregation import (
    aggregate_stations,
    format_number,
    hours_label,
    order_by_ids,
    power_label,
    tariff_label,
)


def _row(**overrides):
    row = {
        "id": 1,
        "station_name": "Phoenix Mall",
        "latitude": Decimal("19.0760"),
        "longitude": Decimal("72.8777"),
        "contact_number": "9876543210",
        "created_at": datetime(2024, 5, 1, 10, 30),
        "updated_at": datetime(2024, 5, 2, 11, 0),
        "approved_status": "PENDING",
        "reason": None,
        "operational_status": 1,
        "open_time": time(8, 0),
        "close_time": time(22, 0),
        "usage_type": "PUBLIC",
        "added_by_type": "EV Owner",
        "landmark": "Mall",
        "network_id": 4,
        "network_name": "Tata Power",
        "network_status": 1,
        "added_by": "Asha Rao",
        "connector_id": 10,
        "charger_type_id": 2,
        "charger_name": "CCS2",
        "charger_type": "DC",
        "power_rating": Decimal("60.00"),
        "connector_count": 2,
        "tariff": Decimal("18.50"),
        "connector_status": 1,
        "evolts": 40,
        "photo_path": "uploads/a.jpg",
    }
    row.update(overrides)
    return row


def test_fan_out_rows_collapse_without_duplicates():
    rows = [
        _row(connector_id=10, photo_path="a.jpg"),
        _row(connector_id=10, photo_path="b.jpg"),
        _row(connector_id=11, charger_name="Type 2", charger_type="AC", photo_path="a.jpg"),
        _row(connector_id=11, charger_name="Type 2", charger_type="AC", photo_path="b.jpg"),
    ]
    stations = aggregate_stations(rows, "review")

    assert len(stations) == 1
    station = stations[0]
    assert station["photos"] == ["a.jpg", "b.jpg"]
    assert [c["id"] for c in station["connectors"]] == [10, 11]
    assert [c["name"] for c in station["connectors"]] == ["CCS2", "Type 2"]


def test_station_order_is_first_seen():
    rows = [_row(id=3), _row(id=1), _row(id=3, connector_id=12), _row(id=2)]
    assert [s["id"] for s in aggregate_stations(rows)] == [3, 1, 2]


def test_station_without_children():
    rows = [_row(connector_id=None, charger_type_id=None, charger_name=None, charger_type=None,
                 power_rating=None, tariff=None, connector_count=None, photo_path=None)]
    station = aggregate_stations(rows, "directory")[0]
    assert station["connectors"] == []
    assert station["media"] == []


def test_review_shape_labels():
    station = aggregate_stations([_row(id=5)], "review")[0]
    assert station["stationNumber"] == "CS-5"
    assert station["status"] == "Pending"
    assert station["approvalDate"] is None
    assert station["usageType"] == "Public"
    assert station["operationalHours"] == "08:00 - 22:00"
    assert station["latitude"] == 19.076
    assert station["eVolts"] == 40

    connector = station["connectors"][0]
    assert connector["powerRating"] == "60 kW"
    assert connector["tariff"] == "₹18.5/kWh"
    assert connector["operationalStatus"] == "Active"


def test_review_shape_approval_date_only_when_approved():
    approved = aggregate_stations([_row(approved_status="APPROVED")], "review")[0]
    assert approved["status"] == "Approved"
    assert approved["approvalDate"] == datetime(2024, 5, 2, 11, 0)


def test_directory_shape_fields():
    station = aggregate_stations(
        [_row(network_name=None, contact_number="", operational_status=0)], "directory",
    )[0]
    assert station["networkName"] == "-"
    assert station["stationContact"] == "-"
    assert station["stationType"] == "Mall"
    assert station["addedBy"] == "Asha Rao"
    assert station["operationalStatus"] == "Inactive"
    assert station["media"] == ["uploads/a.jpg"]
    assert station["connectors"][0]["connectorType"] == "DC"
    assert station["connectors"][0]["count"] == 2


def test_rows_without_connector_id_dedupe_by_attributes():
    base = dict(connector_count=None)
    rows = []
    for photo in ("a.jpg", "b.jpg"):
        rows.append({k: v for k, v in _row(photo_path=photo, **base).items() if k != "connector_id"})
        rows.append({k: v for k, v in _row(photo_path=photo, **base).items() if k != "connector_id"})
    station = aggregate_stations(rows, "review")[0]

    assert len(station["connectors"]) == 1
    assert station["connectors"][0]["id"] is None
    assert station["connectors"][0]["count"] == 2
    assert station["photos"] == ["a.jpg", "b.jpg"]


def test_zero_tariff_is_a_value_not_missing():
    assert tariff_label(0) == "₹0/kWh"
    assert tariff_label(None) == "-"
    assert tariff_label("  ") == "-"
    assert power_label(Decimal("7.40")) == "7.4 kW"
    assert power_label(None) == "-"


def test_format_number():
    assert format_number(22.0) == "22"
    assert format_number(7.5) == "7.5"
    assert format_number("12.50") == "12.5"
    assert format_number(None) is None


def test_hours_label():
    assert hours_label("06:30:00", "23:00:00") == "06:30 - 23:00"
    assert hours_label(None, time(9, 0)) == "-"


def test_order_by_ids():
    entities = [{"id": 1}, {"id": 2}, {"id": 3}]
    assert [e["id"] for e in order_by_ids(entities, [3, 1, 2])] == [3, 1, 2]
