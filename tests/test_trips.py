from datetime import datetime

import pytest

import trips
from customers import customer_dict, subscription_tier
from trips import (
    TRIP_HEADERS,
    completion_status,
    ensure_trip_story_columns,
    station_connector_count,
    story_record,
    trip_dict,
    trip_export_row,
)


def _trip_row(**overrides):
    row = {
        "id": 11,
        "customer_id": 3,
        "created_at": datetime(2024, 4, 5, 6, 7),
        "trip_status": "COMPLETED",
        "distance": 412.5,
        "feedback": "Smooth drive to Goa",
        "source": "Pune",
        "source_latitude": 18.52,
        "source_longitude": 73.85,
        "destination": "Goa",
        "destination_latitude": 15.49,
        "destination_longitude": 73.82,
        "no_of_charging_stations": 2,
        "connector_id": "5, 6,9",
        "battery_capacity": "40 kWh",
        "story_status": None,
        "story_reviewed_by": None,
        "story_blog_link": None,
        "story_reviewed_at": None,
        "vehicle_model_name": "Nexon EV",
        "vehicle_variant_name": None,
        "evolts": 25,
        "first_name": "Asha",
        "last_name": "Rao",
        "email": "asha@example.com",
        "mobile": "9000000005",
    }
    row.update(overrides)
    return row


# ---------------------------------------------------------------------------
# Row shaping
# ---------------------------------------------------------------------------

def test_story_record_states():
    assert story_record(None, None)["status"] is None
    assert story_record("great trip", None) == {
        "status": "Pending", "reviewedBy": None, "blogLink": None, "reviewedAt": None,
    }
    approved = story_record("great trip", "APPROVED", "Editor", "https://blog/x", datetime(2024, 1, 1))
    assert approved["status"] == "Approved"
    assert approved["blogLink"] == "https://blog/x"
    rejected = story_record("great trip", "REJECTED", "Editor", "https://blog/x")
    assert (rejected["status"], rejected["reviewedBy"], rejected["blogLink"]) == ("Rejected", "Editor", None)


@pytest.mark.parametrize("status,expected", [
    ("COMPLETED", "Successful"), ("SUCCESSFULL", "Successful"),
    ("ON_GOING", "Pending"), ("ENQUIRED", "Pending"),
    ("CANCELLED", "Failed"), ("UNSUCCESSFULL", "Failed"), (None, "Failed"),
])
def test_completion_status(status, expected):
    assert completion_status(status) == expected


def test_station_connector_count():
    assert station_connector_count(["5", "6", "9"], {"5": 1, "6": 1, "9": 2}) == "2 stations, 3 connectors"
    assert station_connector_count(["5"], {}) == "1 stations, 1 connectors"
    assert station_connector_count([], {}) == "0 stations, 0 connectors"


def test_trip_dict_and_export_row():
    trip = trip_dict(_trip_row(), {11: [{"address": "Kolhapur", "lat": 16.7, "lng": 74.2}]}, {"5": 1, "6": 2})
    assert trip["stationConnectorCount"] == "2 stations, 3 connectors"
    assert trip["navigation"] == "Yes"
    assert trip["hasTripStory"] == "Yes"
    assert trip["storyStatus"] == "Pending"
    assert trip["evVariant"] == "-"
    assert trip["sourceLocation"] == {"latitude": 18.52, "longitude": 73.85, "address": "Pune"}
    assert trip["stops"][0]["address"] == "Kolhapur"

    row = trip_export_row(trip)
    assert len(row) == len(TRIP_HEADERS)
    assert row[:3] == [11, "05/04/2024", "06:07"]
    assert row[-5:] == ["Yes", "Pending", "-", "-", 25]


def test_trip_without_story_or_locations():
    trip = trip_dict(_trip_row(feedback=None, trip_status="CANCELLED", source_latitude=None,
                               connector_id=None), {}, {})
    assert trip["hasTripStory"] == "No"
    assert trip["storyStatus"] is None
    assert trip["navigation"] == "No"
    assert trip["sourceLocation"] is None
    assert trip_export_row(trip)[8] == "-"


def test_subscription_tiers():
    assert subscription_tier(True, True) == "Premium"
    assert subscription_tier(True, False) == "Gold"
    assert subscription_tier(False, True) == "Basic"
    assert subscription_tier(False, False) == "Basic"


def test_customer_dict():
    customer = customer_dict({
        "id": 3, "first_name": "Asha", "mobile": "9000000005",
        "has_trip": True, "has_checkin": False, "has_navigation": True, "evolts": None,
    })
    assert customer["subscription"] == "Gold"
    assert (customer["navigation"], customer["trip"], customer["checkIn"]) == ("Yes", "Yes", "No")
    assert customer["eVolts"] == 0


# ---------------------------------------------------------------------------
# Story moderation
# ---------------------------------------------------------------------------

def test_approve_story(client, fake_db, audit_rows):
    trip_id = fake_db.add_trip("Smooth drive")
    resp = client.put(f"/api/trips/story/{trip_id}", json={
        "action": "approved", "name": "Editor", "blogLink": " https://blog.example/goa ",
    })
    assert resp.status_code == 200
    assert resp.json() == {"message": "Trip story approved successfully"}

    trip = fake_db.tables["trip"][trip_id]
    assert (trip["story_status"], trip["story_reviewed_by"], trip["story_blog_link"]) == (
        "APPROVED", "Editor", "https://blog.example/goa",
    )
    assert trip["feedback"] == "Smooth drive"
    assert audit_rows()[0]["action"] == "story_approved"


def test_reject_story_keeps_feedback_and_clears_link(client, fake_db):
    trip_id = fake_db.add_trip("Smooth drive", story_status="APPROVED", story_blog_link="https://old")
    resp = client.put(f"/api/trips/story/{trip_id}", json={"action": "Rejected", "name": "Editor"})
    assert resp.status_code == 200
    trip = fake_db.tables["trip"][trip_id]
    assert (trip["story_status"], trip["story_blog_link"], trip["feedback"]) == ("REJECTED", None, "Smooth drive")


def test_story_errors(client, fake_db):
    trip_id = fake_db.add_trip(None)

    resp = client.put(f"/api/trips/story/{trip_id}", json={"action": "maybe", "name": "Editor"})
    assert (resp.status_code, resp.json()) == (400, {"message": "Invalid action"})

    resp = client.put(f"/api/trips/story/{trip_id}", json={"action": "Approved", "name": " "})
    assert (resp.status_code, resp.json()) == (400, {"message": "Name is required"})

    resp = client.put(f"/api/trips/story/{trip_id}", json={"action": "Approved", "name": "Editor"})
    assert (resp.status_code, resp.json()) == (400, {"message": "Trip has no story to approve"})

    resp = client.put("/api/trips/story/999", json={"action": "Approved", "name": "Editor"})
    assert (resp.status_code, resp.json()) == (404, {"message": "Trip not found"})
    assert fake_db.checked_out == 0


def test_trip_listing_rejects_bad_filter(client, fake_db):
    resp = client.get("/api/trips?storyStatus=Maybe")
    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid storyStatus 'Maybe'"


# ---------------------------------------------------------------------------
# Startup schema guard
# ---------------------------------------------------------------------------

def test_ensure_trip_story_columns_adds_missing(fake_db):
    fake_db.trip_columns = {"story_status"}
    ensure_trip_story_columns()
    assert fake_db.trip_columns == set(trips.STORY_COLUMNS)
    alter = fake_db.executed("ALTER TABLE trip")[0][0]
    assert "story_status" not in alter

    ensure_trip_story_columns()
    assert len(fake_db.executed("ALTER TABLE trip")) == 1


def test_ensure_trip_story_columns_logs_failure(fake_db, caplog):
    fake_db.fail_on = r"information_schema"
    ensure_trip_story_columns()
    assert "Could not ensure trip story columns" in caplog.text
