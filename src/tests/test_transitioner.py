# tests/test_transitioner.py
from datetime import timedelta

from agribid.extensions import db
from agribid.models import Auction, AuctionStatus, Bid
from agribid.services.transitioner import sweep


def test_sweep_starts_due_auctions_only(repo, effects, make_auction, now):
    due = make_auction(status=AuctionStatus.SCHEDULED,
                       start=now - timedelta(minutes=1), end=now + timedelta(hours=2))
    future = make_auction(status=AuctionStatus.SCHEDULED,
                          start=now + timedelta(hours=1), end=now + timedelta(hours=3))
    due_id, future_id = due.id, future.id

    result = sweep(repo, now, effects)

    assert result["summary"] == {"started": 1, "ended": 0, "errors": 0}
    assert result["details"]["startedAuctionIds"] == [due_id]
    assert db.session.get(Auction, due_id).status == AuctionStatus.LIVE
    assert db.session.get(Auction, future_id).status == AuctionStatus.SCHEDULED
    assert effects.names() == ["auction_started"]


def test_sweep_ends_live_auction_and_marks_single_winner(repo, effects, make_auction, make_user, add_bid, now):
    a = make_auction(end=now + timedelta(minutes=10))
    b1, b2 = make_user(), make_user()
    add_bid(a, b1, 205000, now - timedelta(minutes=5))
    top = add_bid(a, b2, 210000, now - timedelta(minutes=4))
    aid, top_id, winner_id = a.id, top.id, b2.id

    result = sweep(repo, now + timedelta(minutes=11), effects)

    assert result["details"]["endedAuctionIds"] == [aid]
    a = db.session.get(Auction, aid)
    assert a.status == AuctionStatus.ENDED
    assert a.winner_id == winner_id
    assert a.current_bid == 210000
    winners = Bid.query.filter_by(auction_id=aid, is_winning_bid=True).all()
    assert [b.id for b in winners] == [top_id]
    assert "auction_ended" in effects.names()


def test_sweep_ends_auction_without_bids(repo, effects, make_auction, now):
    a = make_auction(end=now - timedelta(seconds=1))
    aid = a.id

    sweep(repo, now, effects)

    a = db.session.get(Auction, aid)
    assert a.status == AuctionStatus.ENDED
    assert a.winner_id is None
    assert a.current_bid == a.reserve_price


def test_tie_goes_to_earliest_bid(repo, effects, make_auction, make_user, add_bid, now):
    a = make_auction(end=now - timedelta(seconds=1))
    early, late = make_user(), make_user()
    add_bid(a, late, 210000, now - timedelta(minutes=1))
    add_bid(a, early, 210000, now - timedelta(minutes=2))
    aid, early_id = a.id, early.id

    sweep(repo, now, effects)

    assert db.session.get(Auction, aid).winner_id == early_id


def test_sweep_is_idempotent(repo, effects, make_auction, now):
    make_auction(status=AuctionStatus.SCHEDULED,
                 start=now - timedelta(minutes=1), end=now + timedelta(hours=1))
    make_auction(end=now - timedelta(minutes=1))

    first = sweep(repo, now, effects)
    second = sweep(repo, now, effects)

    assert first["summary"]["started"] == 1
    assert first["summary"]["ended"] == 1
    assert second["summary"] == {"started": 0, "ended": 0, "errors": 0}


def test_one_failure_does_not_stop_the_sweep(repo, effects, make_auction, now, monkeypatch):
    bad = make_auction(status=AuctionStatus.SCHEDULED,
                       start=now - timedelta(minutes=2), end=now + timedelta(hours=1))
    good = make_auction(status=AuctionStatus.SCHEDULED,
                        start=now - timedelta(minutes=1), end=now + timedelta(hours=1))
    bad_id, good_id = bad.id, good.id
    original = repo.start_auction

    def flaky(auction_id, when):
        if auction_id == bad_id:
            raise RuntimeError("db caída")
        return original(auction_id, when)

    monkeypatch.setattr(repo, "start_auction", flaky)
    result = sweep(repo, now, effects)

    assert result["details"]["startedAuctionIds"] == [good_id]
    assert result["summary"]["errors"] == 1
    assert str(bad_id) in result["details"]["errors"][0]
    assert db.session.get(Auction, bad_id).status == AuctionStatus.SCHEDULED
