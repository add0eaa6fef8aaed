from flask import Blueprint, request, current_app
from flask_jwt_extended import jwt_required, get_jwt_identity

from ..extensions import db
from ..gateway import get_gateway
from ..repository import AuctionRepository
from ..errors import ValidationError
from ..services import eligibility, emd, scheduling, settlement
from ..services.fees import fee_schedule_from_config
from ..side_effects import get_effects
from ..utils import api_ok, utcnow
from .auctions import serialize_auction
from .purchases import serialize_purchase
from .vehicles import serialize_vehicle_detail

bp = Blueprint("admin", __name__)


@bp.post("/auctions/<int:auction_id>/confirm-winner")
@jwt_required()
def confirm_winner(auction_id):
    data = request.get_json(silent=True) or {}
    purchase = settlement.confirm_winner(
        AuctionRepository(db.session), auction_id,
        data.get("winnerBidId"), data.get("winnerId"), int(get_jwt_identity()),
        get_effects(), fees=fee_schedule_from_config(current_app.config, utcnow()),
    )
    return api_ok({"purchase": serialize_purchase(purchase)})


@bp.post("/auctions/<int:auction_id>/mark-failed")
@jwt_required()
def mark_failed(auction_id):
    data = request.get_json(silent=True) or {}
    result = scheduling.mark_failed(
        AuctionRepository(db.session), auction_id, int(get_jwt_identity()),
        data.get("reason"), utcnow(), get_gateway(), get_effects(),
    )
    return api_ok(result)


@bp.post("/auctions/<int:auction_id>/emd/refund")
@jwt_required()
def refund_emd(auction_id):
    data = request.get_json(silent=True) or {}
    bidder_id = data.get("bidderId")
    if bidder_id is not None:
        try:
            bidder_id = int(bidder_id)
        except (TypeError, ValueError):
            raise ValidationError("bidderId inválido.")
    result = emd.refund_non_winners(
        AuctionRepository(db.session), auction_id, int(get_jwt_identity()), get_gateway(), utcnow(),
        bidder_id=bidder_id, refund_all=data.get("refundAll") is True,
    )
    return api_ok(result)


@bp.post("/bidders/<int:bidder_id>/eligibility")
@jwt_required()
def bidder_eligibility(bidder_id):
    data = request.get_json(silent=True) or {}
    bidder = eligibility.set_bid_eligibility(
        AuctionRepository(db.session), bidder_id, int(get_jwt_identity()),
        data.get("isEligibleForBid"), data.get("reason"),
    )
    return api_ok({
        "id": bidder.id,
        "isEligibleForBid": bidder.is_eligible_for_bid,
        "reason": bidder.eligible_for_bid_reason,
    })


@bp.post("/vehicles/<int:vehicle_id>/approve")
@jwt_required()
def approve_vehicle(vehicle_id):
    data = request.get_json(silent=True) or {}
    vehicle, auction = scheduling.approve_vehicle(
        AuctionRepository(db.session), vehicle_id, int(get_jwt_identity()), utcnow(),
        options=data, config=current_app.config,
    )
    return api_ok({
        "vehicle": serialize_vehicle_detail(vehicle),
        "auction": serialize_auction(auction) if auction else None,
    })


@bp.post("/vehicles/<int:vehicle_id>/reject")
@jwt_required()
def reject_vehicle(vehicle_id):
    vehicle = scheduling.reject_vehicle(AuctionRepository(db.session), vehicle_id, int(get_jwt_identity()))
    return api_ok(serialize_vehicle_detail(vehicle))
