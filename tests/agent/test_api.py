import threading
import time

import pytest
from fastapi.testclient import TestClient

import fare_engine.main as appmod
from fare_engine.estimator import AIFareEstimator


@pytest.fixture(scope="module")
def client():
    return TestClient(appmod.app)

@pytest.fixture
def equator(equator_directory):
    # swap in a directory with exact distances, restore the shipped one afterwards
    original = appmod.directory
    appmod.install_directory(equator_directory)
    yield
    appmod.install_directory(original)

@pytest.fixture
def estimator(monkeypatch):
    def _install(provider, timeout_s=5.0):
        monkeypatch.setattr(appmod, "fare_estimator", AIFareEstimator(provider, timeout_s=timeout_s))
    return _install

# ===== /health =====
def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "ok"
    assert data["depots"] > 0 and data["rate_card_rows"] > 0

# ===== /calculate-fare =====
def test_calculate_fare_81_km(client, equator):
    r = client.get("/calculate-fare", params={"originDepot": "Alpha", "destinationDepot": "Bravo"})
    assert r.status_code == 200, r.text
    assert r.json() == {
        "origin": "Alpha",
        "destination": "Bravo",
        "stages": 9,
        "details": "Estimated 9 stages (~81.0 km)",
        "fares": {"ordinary": 90, "express": 135, "shivneri": 450},
    }

def test_calculate_fare_shipped_depots(client):
    r = client.get("/calculate-fare", params={"originDepot": "Mumbai Central", "destinationDepot": "Nashik"})
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["stages"] >= 2
    assert data["fares"]["ordinary"] == data["stages"] * 10
    assert data["fares"]["shivneri"] == data["stages"] * 50

@pytest.mark.parametrize("params", [{"destinationDepot": "Nashik"}, {"originDepot": "Nashik"}, {}, {"originDepot": "", "destinationDepot": "Nashik"}, {"originDepot": "Nashik", "destinationDepot": "   "}])
def test_calculate_fare_missing_parameter(client, params):
    r = client.get("/calculate-fare", params=params)
    assert r.status_code == 400
    assert r.json() == {"error": "Missing originDepot or destinationDepot"}

def test_calculate_fare_trims_depot_names(client, equator):
    r = client.get("/calculate-fare", params={"originDepot": " Alpha", "destinationDepot": "Bravo  "})
    assert r.status_code == 200, r.text
    data = r.json()
    assert (data["origin"], data["destination"], data["stages"]) == ("Alpha", "Bravo", 9)

def test_calculate_fare_unknown_depot(client):
    r = client.get("/calculate-fare", params={"originDepot": "Mumbai Central", "destinationDepot": "Atlantis"})
    assert r.status_code == 404
    assert r.json() == {"error": "Depot not found"}

def test_calculate_fare_internal_error_does_not_leak(client, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("db password is hunter2")
    monkeypatch.setattr(appmod, "run_scheduled_fare", broken)
    r = client.get("/calculate-fare", params={"originDepot": "Mumbai Central", "destinationDepot": "Nashik"})
    assert r.status_code == 500
    assert r.json() == {"error": "Internal server error"}

# ===== /depots =====
def test_depots_are_unique_by_name(client):
    r = client.get("/depots")
    assert r.status_code == 200
    depots = r.json()["depots"]
    names = [d["name"] for d in depots]
    assert len(names) == len(set(names))
    assert set(depots[0]) == {"id", "name", "lat", "lon"}
    mumbai = [d for d in depots if d["name"] == "Mumbai Central"]
    assert len(mumbai) == 1 and mumbai[0]["id"] == 1

def test_nearby_depots(client):
    r = client.get("/depots/nearby", params={"lat": 18.52, "lon": 73.86, "radiusKm": 10, "limit": 3})
    assert r.status_code == 200
    hits = r.json()["depots"]
    assert 1 <= len(hits) <= 3
    assert hits[0]["name"] == "Pune Station"
    assert all(h["distanceKm"] <= 10 for h in hits)
    assert [h["distanceKm"] for h in hits] == sorted(h["distanceKm"] for h in hits)

# ===== /charter-quote =====
def test_charter_quote_one_day(client):
    body = {
        "busType": "Non-AC", "seatingCapacity": 30, "distanceKm": 200,
        "journeyDate": "2025-03-01", "returnDate": "2025-03-01",
    }
    r = client.post("/charter-quote", json=body)
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["numDays"] == 1
    assert data["totalKm"] == 250
    assert data["totalCost"] == 10500
    assert data["rate"]["ratePerKm"] == 34

def test_charter_quote_round_trip_multi_day(client):
    body = {
        "busType": "ac", "seatingCapacity": 40, "distanceKm": 300, "roundTrip": True,
        "journeyDate": "2025-03-01", "returnDate": "2025-03-03",
    }
    r = client.post("/charter-quote", json=body)
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["requestedKm"] == 640
    assert data["numDays"] == 2
    assert data["totalKm"] == 640
    assert data["totalCost"] == 640 * 43 + 600 * 2 + 1200

def test_charter_quote_no_tier(client):
    body = {"busType": "AC", "seatingCapacity": 80, "distanceKm": 100, "journeyDate": "2025-03-01", "returnDate": "2025-03-02"}
    r = client.post("/charter-quote", json=body)
    assert r.status_code == 422
    assert r.json() == {"error": "No rate information found for the selected bus configuration."}

def test_charter_quote_missing_field(client):
    r = client.post("/charter-quote", json={"busType": "AC", "seatingCapacity": 30})
    assert r.status_code == 400
    assert "distanceKm" in r.json()["fields"]

def test_charter_quote_return_before_journey(client):
    body = {"busType": "AC", "seatingCapacity": 30, "distanceKm": 100, "journeyDate": "2025-03-05", "returnDate": "2025-03-01"}
    assert client.post("/charter-quote", json=body).status_code == 422

# ===== /ticket-quote =====
def test_ticket_quote_uses_generic_stages(client, equator):
    body = {
        "originDepot": "Alpha", "destinationDepot": "Charlie", "service": "express",
        "fullPassengers": 2, "concessionPassengers": 2, "departureTime": "09:00",
    }
    r = client.post("/ticket-quote", json=body)
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["stages"] == 19          # round(90 / 6) + 4
    assert data["nightService"] is False
    assert data["farePerFullTicket"] == 19 * 15
    assert data["totalReservationCharges"] == 20
    assert data["distanceKm"] == 90.0

def test_ticket_quote_night(client, equator):
    body = {"originDepot": "Alpha", "destinationDepot": "Charlie", "departureTime": "23:15"}
    data = client.post("/ticket-quote", json=body).json()
    assert data["nightService"] is True
    assert data["farePerFullTicket"] == 225    # ceil(190 * 1.18)

def test_ticket_quote_unknown_depot(client):
    r = client.post("/ticket-quote", json={"originDepot": "Atlantis", "destinationDepot": "Nashik"})
    assert r.status_code == 404
    assert r.json() == {"error": "Depot not found"}

def test_ticket_quote_bad_time(client):
    r = client.post("/ticket-quote", json={"originDepot": "Nashik", "destinationDepot": "Satara", "departureTime": "soon"})
    assert r.status_code == 422

# ===== /estimate-fare =====
TRIP = {"startLocation": "Pune Station", "destination": "Nagpur", "distanceKm": 710, "busType": "Standard", "timeOfTravel": "20:00"}

def test_estimate_fare_shape(client, estimator):
    estimator(lambda prompt, inp: 'Estimate: {"estimatedFare": 2420.0, "nearbyOperators": "Prasanna, Neeta"}')
    r = client.post("/estimate-fare", json=TRIP)
    assert r.status_code == 200, r.text
    data = r.json()
    assert set(data) == {"estimatedFare", "nearbyOperators"}
    assert isinstance(data["estimatedFare"], (int, float)) and data["estimatedFare"] >= 0
    assert isinstance(data["nearbyOperators"], str)

def test_estimate_fare_rules_provider(client):
    # the app was booted with ESTIMATE_PROVIDER=rules
    r = client.post("/estimate-fare", json=TRIP)
    assert r.status_code == 200, r.text
    assert r.json()["estimatedFare"] > 0

def test_estimate_fare_invalid_response(client, estimator):
    estimator(lambda prompt, inp: '{"fare": "cheap"}')
    r = client.post("/estimate-fare", json=TRIP)
    assert r.status_code == 502
    assert r.json() == {"error": "Failed to fetch fare estimate from AI model."}

def test_estimate_fare_provider_failure(client, estimator):
    def boom(prompt, inp):
        raise RuntimeError("CUDA out of memory at 0xdeadbeef")
    estimator(boom)
    r = client.post("/estimate-fare", json=TRIP)
    assert r.status_code == 502
    assert r.json() == {"error": "Failed to fetch fare estimate from AI model."}

def test_estimate_fare_timeout(client, estimator):
    def slow(prompt, inp):
        time.sleep(0.5)
        return '{"estimatedFare": 1, "nearbyOperators": "x"}'
    estimator(slow, timeout_s=0.05)
    r = client.post("/estimate-fare", json=TRIP)
    assert r.status_code == 504
    assert r.json() == {"error": "Failed to fetch fare estimate from AI model."}

def test_estimate_fare_missing_field(client):
    body = dict(TRIP)
    del body["timeOfTravel"]
    r = client.post("/estimate-fare", json=body)
    assert r.status_code == 400

def test_estimate_fare_negative_distance(client):
    r = client.post("/estimate-fare", json={**TRIP, "distanceKm": -1})
    assert r.status_code == 422

def test_slow_estimate_does_not_hold_up_other_paths(client, estimator, equator):
    started, release = threading.Event(), threading.Event()
    def stalled(prompt, inp):
        started.set()
        release.wait(timeout=10)
        return '{"estimatedFare": 1500, "nearbyOperators": "Neeta"}'
    estimator(stalled, timeout_s=15)

    result = {}
    worker = threading.Thread(target=lambda: result.update(estimate=client.post("/estimate-fare", json=TRIP)))
    worker.start()
    try:
        assert started.wait(timeout=5)
        fare = client.get("/calculate-fare", params={"originDepot": "Alpha", "destinationDepot": "Bravo"})
        charter = client.post("/charter-quote", json={
            "busType": "Non-AC", "seatingCapacity": 30, "distanceKm": 200,
            "journeyDate": "2025-03-01", "returnDate": "2025-03-01",
        })
        assert fare.status_code == 200 and charter.status_code == 200
        # the estimate is still parked inside the provider
        assert "estimate" not in result
    finally:
        release.set()
        worker.join(timeout=15)
    assert result["estimate"].status_code == 200
    assert result["estimate"].json()["estimatedFare"] == 1500
