from datetime import datetime

import pytest

from networks import (
    WorkflowError,
    merge_networks_by_name,
    normalize_network_status,
    reconcile_network,
)


@pytest.fixture
def duplicates(fake_db):
    """Three rows named 'Tata Power', oldest created last by id."""
    newest = fake_db.add_network("Tata Power", created_at=datetime(2024, 3, 1))
    oldest = fake_db.add_network("Tata Power", created_at=datetime(2023, 1, 1))
    middle = fake_db.add_network("Tata Power", status=1, created_at=datetime(2023, 6, 1))
    other = fake_db.add_network("Statiq", created_at=datetime(2022, 1, 1))
    stations = {
        nid: fake_db.add_station(name=f"on-{nid}", network_id=nid)
        for nid in (newest, oldest, middle, other)
    }
    return {"newest": newest, "oldest": oldest, "middle": middle, "other": other, "stations": stations}


@pytest.mark.parametrize("raw,expected", [
    (None, None), ("", None), (" ", None), (1, 1), ("1", 1), (True, 1),
    (0, 0), ("0", 0), (False, 0), ("inactive", 0),
])
def test_normalize_network_status(raw, expected):
    assert normalize_network_status(raw) == expected


def test_normalize_network_status_rejects_junk():
    with pytest.raises(ValueError):
        normalize_network_status("2")


def test_merge_collapses_into_oldest(fake_db, cursor, duplicates):
    canonical, merged = merge_networks_by_name(cursor, "Tata Power")

    assert canonical == duplicates["oldest"]
    assert sorted(merged) == sorted([duplicates["newest"], duplicates["middle"]])
    assert set(fake_db.tables["network"]) == {duplicates["oldest"], duplicates["other"]}
    assert fake_db.network(canonical)["status"] == 1
    assert fake_db.network(duplicates["other"])["status"] == 0

    for nid, sid in duplicates["stations"].items():
        expected = duplicates["other"] if nid == duplicates["other"] else canonical
        assert fake_db.station(sid)["network_id"] == expected


def test_merge_takes_lock_before_reading(fake_db, cursor, duplicates):
    merge_networks_by_name(cursor, "Tata Power")
    statements = [s[0] for s in fake_db.statements]
    assert statements[0].startswith("SELECT pg_advisory_xact_lock")
    assert fake_db.statements[0][1] == ("Tata Power",)


def test_merge_is_idempotent(fake_db, cursor, duplicates):
    first, _ = merge_networks_by_name(cursor, "Tata Power")
    again, merged = merge_networks_by_name(cursor, "Tata Power")
    assert again == first
    assert merged == []
    assert len([n for n in fake_db.tables["network"].values() if n["name"] == "Tata Power"]) == 1


def test_merge_unknown_name(cursor, fake_db):
    with pytest.raises(WorkflowError):
        merge_networks_by_name(cursor, "Nobody")


def test_reconcile_active_with_existing_id_links_directly(fake_db, cursor, duplicates):
    sid = duplicates["stations"][duplicates["other"]]
    canonical = reconcile_network(cursor, sid, 1, duplicates["middle"], "Tata Power")
    assert canonical == duplicates["middle"]
    assert fake_db.station(sid)["network_id"] == duplicates["middle"]
    assert len(fake_db.tables["network"]) == 4


def test_reconcile_active_with_missing_id_merges_by_name(fake_db, cursor, duplicates):
    sid = fake_db.add_station(name="loose")
    canonical = reconcile_network(cursor, sid, 1, 999, "Tata Power")
    assert canonical == duplicates["oldest"]
    assert fake_db.station(sid)["network_id"] == canonical


def test_reconcile_active_with_missing_id_and_no_name(cursor, fake_db):
    sid = fake_db.add_station(name="loose")
    with pytest.raises(WorkflowError, match="Network not found"):
        reconcile_network(cursor, sid, 1, 999, None)


def test_reconcile_inactive_with_name_merges(fake_db, cursor, duplicates):
    sid = fake_db.add_station(name="loose")
    canonical = reconcile_network(cursor, sid, 0, duplicates["newest"], "Tata Power")
    assert canonical == duplicates["oldest"]
    assert duplicates["newest"] not in fake_db.tables["network"]
    assert fake_db.network(canonical)["status"] == 1


def test_reconcile_name_only_creates_placeholder(fake_db, cursor):
    sid = fake_db.add_station(name="loose")
    canonical = reconcile_network(cursor, sid, None, None, "  ChargeZone ")
    network = fake_db.network(canonical)
    assert (network["name"], network["status"]) == ("ChargeZone", 0)
    assert fake_db.station(sid)["network_id"] == canonical

    assert reconcile_network(cursor, sid, None, None, "ChargeZone") == canonical


def test_reconcile_nothing_given(cursor, fake_db):
    assert reconcile_network(cursor, 1, None, None, "") is None
    assert fake_db.statements == []


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

def test_list_networks_split_by_status(client, fake_db, duplicates):
    body = client.get("/api/networks").json()
    assert [n["id"] for n in body["active"]] == [duplicates["middle"]]
    assert sorted(n["id"] for n in body["inactive"]) == sorted(
        [duplicates["newest"], duplicates["oldest"], duplicates["other"]]
    )


def test_delete_inactive_network_unlinks_stations(client, fake_db, duplicates, audit_rows):
    nid = duplicates["other"]
    resp = client.delete(f"/api/networks/{nid}")
    assert resp.status_code == 200
    assert resp.json() == {"message": "Network deleted successfully"}
    assert nid not in fake_db.tables["network"]
    assert fake_db.station(duplicates["stations"][nid])["network_id"] is None
    assert audit_rows()[0]["table_name"] == "network"


def test_delete_active_network_refused(client, fake_db, duplicates):
    resp = client.delete(f"/api/networks/{duplicates['middle']}")
    assert resp.status_code == 400
    assert resp.json() == {"message": "Only inactive networks (status = 0) can be deleted"}
    assert duplicates["middle"] in fake_db.tables["network"]


def test_delete_missing_network(client, fake_db):
    resp = client.delete("/api/networks/12345")
    assert resp.status_code == 404
    assert resp.json() == {"message": "Network not found"}


def test_merge_route(client, fake_db, duplicates):
    resp = client.post(f"/api/networks/{duplicates['newest']}/merge")
    assert resp.status_code == 200
    body = resp.json()
    assert body["networkId"] == duplicates["oldest"]
    assert sorted(body["merged"]) == sorted([duplicates["newest"], duplicates["middle"]])


def test_station_edit_activates_network_by_name(client, fake_db, duplicates):
    sid = duplicates["stations"][duplicates["newest"]]
    resp = client.put(f"/api/stations/{sid}", json={
        "action": "EDIT",
        "stationName": "on-newest",
        "latitude": 19.1,
        "longitude": 72.9,
        "networkId": duplicates["newest"],
        "networkName": "Tata Power",
        "networkStatus": "0",
    })
    assert resp.status_code == 200
    assert fake_db.station(sid)["network_id"] == duplicates["oldest"]
    assert fake_db.network(duplicates["oldest"])["status"] == 1
    assert [n["name"] for n in fake_db.tables["network"].values()].count("Tata Power") == 1


def test_station_edit_rejects_bad_network_status(client, fake_db, duplicates):
    sid = duplicates["stations"][duplicates["newest"]]
    resp = client.put(f"/api/stations/{sid}", json={
        "action": "EDIT", "stationName": "x", "latitude": 1, "longitude": 2, "networkStatus": "7",
    })
    assert resp.status_code == 400
    assert resp.json()["errors"] == ["Invalid networkStatus '7'. Use 0 or 1"]
