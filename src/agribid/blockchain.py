"""Registros de auditoría con hash SHA-256 (subasta, puja ganadora, compra)."""
import hashlib
import json
import logging

from .extensions import db
from .models import Auction, Bid, BlockchainRecord, Purchase
from .utils import iso, money

log = logging.getLogger("agribid.blockchain")


def generate_hash(data):
    raw = data if isinstance(data, str) else json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def verify_hash(data, expected):
    return generate_hash(data) == expected


def auction_payload(a: Auction, total_bids: int):
    return {
        "vehicleId": a.vehicle_id,
        "startTime": iso(a.start_time),
        "endTime": iso(a.end_time),
        "currentBid": a.current_bid,
        "winnerId": a.winner_id or "",
        "totalBids": total_bids,
    }


def bid_payload(b: Bid):
    return {
        "auctionId": b.auction_id,
        "bidderId": b.bidder_id,
        "bidAmount": b.bid_amount,
        "bidTime": iso(b.bid_time),
    }


def purchase_payload(p: Purchase):
    return {
        "vehicleId": p.vehicle_id,
        "buyerId": p.buyer_id,
        "purchasePrice": p.purchase_price,
        "purchaseType": p.purchase_type,
        "emdAmount": p.emd_amount or 0,
        "transactionFee": money(p.transaction_fee),
    }


def _record(record_type, record_id, payload):
    rec = BlockchainRecord(record_type=record_type, record_id=record_id,
                           hash=generate_hash(payload), payload=payload)
    db.session.add(rec)
    return rec


def record_settlement(auction_id, bid_id, purchase_id):
    a = db.session.get(Auction, auction_id)
    b = db.session.get(Bid, bid_id)
    p = db.session.get(Purchase, purchase_id)
    if a is None or b is None or p is None:
        log.warning("blockchain:missing auction=%s bid=%s purchase=%s", auction_id, bid_id, purchase_id)
        return
    try:
        _record("AUCTION", a.id, auction_payload(a, a.bids.count()))
        _record("BID", b.id, bid_payload(b))
        _record("PURCHASE", p.id, purchase_payload(p))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    log.info("blockchain:recorded auction=%s bid=%s purchase=%s", a.id, b.id, p.id)
