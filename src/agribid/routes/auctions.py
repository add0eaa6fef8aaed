from flask import Blueprint, request, current_app
from flask_jwt_extended import jwt_required, get_jwt_identity

from ..extensions import db
from ..models import Auction, AuctionStatus, Bid
from ..repository import AuctionRepository
from ..services import approval, bidding, emd, settlement
from ..services.fees import fee_schedule_from_config
from ..side_effects import get_effects
from ..gateway import get_gateway
from ..sse import stream, sse_response
from ..utils import api_error, api_ok, iso, utcnow
from .cron import cron_authorized, admin_from_token
from .purchases import serialize_purchase

bp = Blueprint("auctions", __name__)


def _repo():
    return AuctionRepository(db.session)


def _uid():
    return int(get_jwt_identity())


def _bid_amount(raw):
    # JSON puede traer 205000.0; sólo se aceptan montos enteros
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw.strip())
    return raw


@bp.get("/sse/auctions/<int:auction_id>")
def sse_auction(auction_id):
    return sse_response(stream(f"auction:{auction_id}"))


@bp.get("/auctions")
def list_auctions():
    status = request.args.get("status", AuctionStatus.LIVE)
    q = Auction.query
    if status != "all":
        q = q.filter(Auction.status == status)
    items = q.order_by(Auction.end_time.asc()).all()
    return api_ok([serialize_auction(a) for a in items])


@bp.get("/auctions/<int:auction_id>")
def get_auction(auction_id):
    a = _repo().require_auction(auction_id)
    return api_ok(serialize_auction_detail(a))


@bp.get("/auctions/<int:auction_id>/bids")
def list_bids(auction_id):
    repo = _repo()
    repo.require_auction(auction_id)
    return api_ok([serialize_bid(b) for b in repo.bids_for(auction_id)])


@bp.post("/auctions/<int:auction_id>/bids")
@jwt_required()
def place_bid(auction_id):
    data = request.get_json(silent=True) or {}
    repo = _repo()
    bid = bidding.place_bid(repo, auction_id, _uid(), _bid_amount(data.get("bidAmount")),
                            utcnow(), get_effects())
    auction = repo.get_auction(auction_id)
    return api_ok({"bid": serialize_bid(bid), "auction": serialize_auction(auction)},
                  minimumBid=bidding.minimum_bid(auction))


@bp.get("/auctions/<int:auction_id>/emd")
@jwt_required()
def emd_status(auction_id):
    return api_ok(emd.get_emd_status(_repo(), auction_id, _uid()))


@bp.post("/auctions/<int:auction_id>/emd")
@jwt_required()
def emd_initiate(auction_id):
    result = emd.initiate_emd_payment(_repo(), auction_id, _uid(), get_gateway(), utcnow())
    return api_ok(result)


@bp.post("/auctions/<int:auction_id>/emd/payment-callback")
@jwt_required()
def emd_callback(auction_id):
    data = request.get_json(silent=True) or {}
    result = emd.confirm_emd_payment(_repo(), auction_id, _uid(), data, get_gateway(), utcnow())
    return api_ok(result)


@bp.post("/auctions/<int:auction_id>/approve")
@jwt_required()
def approve(auction_id):
    data = request.get_json(silent=True) or {}
    fees = fee_schedule_from_config(current_app.config, utcnow())
    auction, purchase = settlement.approve_bid(
        _repo(), auction_id, _uid(),
        data.get("approvalStatus"), data.get("rejectionReason"),
        get_effects(), fees=fees, gateway=get_gateway(), now=utcnow(),
    )
    return api_ok({
        "auction": serialize_auction(auction),
        "purchase": serialize_purchase(purchase) if purchase else None,
    })


@bp.post("/auctions/reminders")
def reminders():
    if not (cron_authorized() or admin_from_token()):
        return api_error("No autorizado.", 401)
    days = current_app.config.get("APPROVAL_DEADLINE_DAYS", approval.APPROVAL_DEADLINE_DAYS)
    result = approval.send_approval_reminders(_repo(), utcnow(), get_effects(), days)
    return api_ok(result)


def serialize_auction(a: Auction):
    v = a.vehicle
    return {
        "id": a.id,
        "referenceNumber": a.reference_number,
        "vehicleId": a.vehicle_id,
        "vehicle": {"brand": v.brand, "model": v.model, "year": v.year} if v else None,
        "status": a.status,
        "startTime": iso(a.start_time),
        "endTime": iso(a.end_time),
        "reservePrice": a.reserve_price,
        "currentBid": a.current_bid,
        "minimumIncrement": a.minimum_increment,
        "winnerId": a.winner_id,
        "sellerApprovalStatus": a.seller_approval_status,
        "emdRequired": a.emd_required,
        "emdAmount": a.emd_amount,
        "extensionCount": a.extension_count,
    }


def serialize_auction_detail(a: Auction):
    data = serialize_auction(a)
    days = current_app.config.get("APPROVAL_DEADLINE_DAYS", approval.APPROVAL_DEADLINE_DAYS)
    data.update({
        "rejectionReason": a.rejection_reason,
        "minimumBid": bidding.minimum_bid(a),
        "totalBids": a.bids.count(),
        "autoExtendEnabled": a.auto_extend_enabled,
        "maxExtensions": a.max_extensions,
        "sellerId": a.vehicle.seller_id if a.vehicle else None,
    })
    if a.status == AuctionStatus.ENDED and a.winner_id:
        data["approvalDeadline"] = iso(approval.approval_deadline(a.end_time, days))
        data["approvalTimeRemaining"] = approval.deadline_remaining(a.end_time, utcnow(), days)
    return data


def serialize_bid(b: Bid):
    return {
        "id": b.id,
        "auctionId": b.auction_id,
        "bidderId": b.bidder_id,
        "bidAmount": b.bid_amount,
        "bidTime": iso(b.bid_time),
        "isWinningBid": b.is_winning_bid,
    }

