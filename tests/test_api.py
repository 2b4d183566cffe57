from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from bidclock.browser import SessionRegistry
from bidclock.scheduler import BidScheduler
from bidclock.web.app import create_app


@pytest.fixture
def client(store, settings, launcher):
    bidder = BidScheduler(store, settings, registry=SessionRegistry(launcher))
    with TestClient(create_app(bidder)) as c:
        yield c


def _iso(seconds: float) -> str:
    return (datetime.now(timezone.utc) + timedelta(seconds=seconds)).isoformat()


def test_accounts_roundtrip_hides_passwords(client):
    r = client.put(
        "/api/accounts",
        json=[{"username": "alice", "password": "a"}, {"username": "bob", "password": "b"}],
    )
    assert r.status_code == 200

    r = client.get("/api/accounts")
    assert [a["username"] for a in r.json()] == ["alice", "bob"]
    assert all("password" not in a for a in r.json())


def test_replacing_auctions_rejects_duplicates(client):
    r = client.put(
        "/api/auctions",
        json=[{"external_ref": "stg/1"}, {"external_ref": "stg/1"}],
    )
    assert r.status_code == 409


def test_add_and_delete_auction(client):
    r = client.post("/api/auctions", json={"external_ref": "stg/1", "bid_amount": "12.5"})
    assert r.status_code == 201
    auction_id = r.json()["id"]

    assert client.post("/api/auctions", json={"external_ref": "stg/1"}).status_code == 409
    assert client.delete(f"/api/auctions/{auction_id}").status_code == 204
    assert client.delete(f"/api/auctions/{auction_id}").status_code == 404


def test_negative_amount_is_rejected(client):
    r = client.post("/api/auctions", json={"external_ref": "stg/1", "bid_amount": "-1"})
    assert r.status_code == 422


def test_schedule_with_nothing_stored(client):
    r = client.post("/api/bids/schedule")
    assert r.status_code == 200
    assert r.json() == []


def test_schedule_places_due_bids_and_arms_the_rest(client, launcher):
    client.put("/api/accounts", json=[{"username": "alice", "password": "a"}])
    client.put(
        "/api/auctions",
        json=[
            {"external_ref": "stg/1", "deadline": _iso(-5), "bid_amount": "5", "account_username": "alice"},
            {"external_ref": "stg/2", "deadline": _iso(600), "bid_amount": "5", "account_username": "alice"},
        ],
    )

    r = client.post("/api/bids/schedule")
    assert r.status_code == 200
    placed = {a["external_ref"]: a["bid_placed_at"] is not None for a in r.json()}
    assert placed == {"stg/1": True, "stg/2": False}

    pending = client.get("/api/bids/pending").json()
    assert [p["account_username"] for p in pending] == ["alice"]

    r = client.post("/api/bids/cancel")
    assert r.json() == {"message": "All scheduled bids canceled. Browsers remain open."}
    assert client.get("/api/bids/pending").json() == []

    r = client.post("/api/sessions/close")
    assert r.json() == {"message": "All browser windows closed."}
    assert launcher.sessions[0].closed
