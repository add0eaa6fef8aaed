from flask import Blueprint, request
from flask_jwt_extended import jwt_required, get_jwt_identity

from ..extensions import db
from ..gateway import get_gateway
from ..models import Purchase
from ..repository import AuctionRepository
from ..services import payments
from ..utils import api_error, api_ok, iso, money

bp = Blueprint("purchases", __name__)


@bp.get("/purchases/<int:purchase_id>")
@jwt_required()
def get_purchase(purchase_id):
    uid = int(get_jwt_identity())
    p = db.session.get(Purchase, purchase_id)
    if p is None:
        return api_error("Compra no encontrada.", 404)
    if p.buyer_id != uid and (p.vehicle is None or p.vehicle.seller_id != uid):
        return api_error("No tienes acceso a esta compra.", 403)
    return api_ok(serialize_purchase(p))


@bp.post("/purchases/<int:purchase_id>/balance-payment")
@jwt_required()
def balance_payment(purchase_id):
    result = payments.initiate_balance_payment(
        AuctionRepository(db.session), purchase_id, int(get_jwt_identity()), get_gateway()
    )
    return api_ok(result)


@bp.post("/purchases/<int:purchase_id>/transaction-fee")
@jwt_required()
def transaction_fee(purchase_id):
    result = payments.initiate_transaction_fee_payment(
        AuctionRepository(db.session), purchase_id, int(get_jwt_identity()), get_gateway()
    )
    return api_ok(result)


@bp.post("/purchases/<int:purchase_id>/balance-payment/callback")
@jwt_required()
def balance_payment_callback(purchase_id):
    data = request.get_json(silent=True) or {}
    result = payments.confirm_balance_payment(
        AuctionRepository(db.session), purchase_id, int(get_jwt_identity()), data, get_gateway()
    )
    return api_ok(result)


@bp.post("/purchases/<int:purchase_id>/transaction-fee/callback")
@jwt_required()
def transaction_fee_callback(purchase_id):
    data = request.get_json(silent=True) or {}
    result = payments.confirm_transaction_fee_payment(
        AuctionRepository(db.session), purchase_id, int(get_jwt_identity()), data, get_gateway()
    )
    return api_ok(result)


def serialize_purchase(p: Purchase):
    return {
        "id": p.id,
        "vehicleId": p.vehicle_id,
        "buyerId": p.buyer_id,
        "purchasePrice": p.purchase_price,
        "purchaseType": p.purchase_type,
        "status": p.status,
        "balanceAmount": p.balance_amount,
        "emdApplied": p.emd_applied,
        "emdAmount": p.emd_amount,
        "transactionFee": money(p.transaction_fee),
        "transactionFeePaid": p.transaction_fee_paid,
        "createdAt": iso(p.created_at),
    }
