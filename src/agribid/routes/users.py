from flask import Blueprint
from flask_jwt_extended import jwt_required, get_jwt_identity
from ..extensions import db
from ..models import Auction, Bid, Notification, Vehicle
from ..utils import api_ok, iso, utcnow

bp = Blueprint("users", __name__)

TYPE_LABELS = {
    "auction_won": "Ganaste una subasta",
    "auction_started": "Tu subasta está en vivo",
    "auction_ended": "Tu subasta cerró",
    "auction_failed": "Subasta cancelada",
    "outbid": "Tu oferta fue superada",
    "winner_confirmed": "Oferta ganadora confirmada",
    "bid_approved": "Oferta aprobada",
    "bid_rejected": "Oferta rechazada",
    "vehicle_sold": "Vehículo vendido",
    "approval_reminder": "Recordatorio de aprobación",
    "approval_deadline": "Plazo de aprobación por vencer",
}


@bp.get("/users/me/bids")
@jwt_required()
def my_bids():
    uid = int(get_jwt_identity())
    rows = (
        db.session.query(Bid, Auction, Vehicle)
        .join(Auction, Auction.id == Bid.auction_id)
        .join(Vehicle, Vehicle.id == Auction.vehicle_id)
        .filter(Bid.bidder_id == uid)
        .order_by(Bid.bid_time.desc())
        .all()
    )
    data = []
    for b, a, v in rows:
        data.append({
            "bidId": b.id,
            "auctionId": a.id,
            "referenceNumber": a.reference_number,
            "brand": v.brand,
            "model": v.model,
            "bidAmount": b.bid_amount,
            "currentBid": a.current_bid,
            "isWinningBid": b.is_winning_bid,
            "auctionStatus": a.status,
            "sellerApprovalStatus": a.seller_approval_status,
            "bidTime": iso(b.bid_time),
        })
    return api_ok(data)


@bp.get("/users/me/notifications")
@jwt_required()
def my_notifications():
    uid = int(get_jwt_identity())
    items = (
        Notification.query
        .filter_by(user_id=uid)
        .order_by(Notification.read_at.is_(None).desc(), Notification.created_at.desc())
        .all()
    )
    data = []
    for n in items:
        payload = n.payload or {}
        data.append({
            "id": n.id,
            "type": n.type,
            "typeLabel": TYPE_LABELS.get(n.type, n.type),
            "payload": payload,
            "createdAt": iso(n.created_at),
            "readAt": iso(n.read_at),
        })
    return api_ok(data)


@bp.post("/users/me/notifications/read-all")
@jwt_required()
def mark_notifications_read():
    uid = int(get_jwt_identity())
    updated = Notification.query.filter_by(user_id=uid, read_at=None).update(
        {Notification.read_at: utcnow()}, synchronize_session=False
    )
    db.session.commit()
    return api_ok({"updated": updated})
