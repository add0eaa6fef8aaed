# tests/test_cron.py
from datetime import timedelta

from agribid.extensions import db
from agribid.models import Auction, AuctionStatus
from conftest import CRON_SECRET

AUTH = {"Authorization": f"Bearer {CRON_SECRET}"}


def test_cron_requires_exact_bearer_secret(client):
    assert client.get("/api/cron/auction-status").status_code == 401
    assert client.get("/api/cron/auction-status",
                      headers={"Authorization": CRON_SECRET}).status_code == 401
    assert client.get("/api/cron/auction-status",
                      headers={"Authorization": f"Bearer {CRON_SECRET}x"}).status_code == 401


def test_cron_sweeps_auctions(client, make_auction, now):
    a = make_auction(status=AuctionStatus.SCHEDULED, start=now - timedelta(minutes=1),
                     end=now + timedelta(hours=1))
    aid = a.id

    r = client.post("/api/cron/auction-status", headers=AUTH)
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["summary"]["started"] == 1
    assert data["details"]["startedAuctionIds"] == [aid]
    assert data["timestamp"].endswith("Z")
    assert db.session.get(Auction, aid).status == AuctionStatus.LIVE


def test_legacy_alias(client):
    r = client.get("/api/auctions/update-status", headers=AUTH)
    assert r.status_code == 200
    assert r.get_json()["data"]["summary"] == {"started": 0, "ended": 0, "errors": 0}


def test_missing_secret_allowed_only_outside_production(app, client):
    app.config["CRON_SECRET"] = None
    assert client.get("/api/cron/auction-status").status_code == 200

    app.config["APP_ENV"] = "production"
    assert client.get("/api/cron/auction-status").status_code == 401
