import logging
from flask import Blueprint, request, current_app

from ..extensions import db
from ..repository import AuctionRepository
from ..services.webhooks import handle_webhook_event
from ..utils import api_ok, utcnow

bp = Blueprint("webhooks", __name__)
log = logging.getLogger("agribid.webhook")


@bp.post("/membership/webhook")
@bp.post("/payments/webhook")
def payment_webhook():
    # La firma se calcula sobre el cuerpo crudo, antes de parsear JSON
    raw = request.get_data(cache=True)
    result = handle_webhook_event(
        AuctionRepository(db.session),
        raw,
        request.headers.get("X-Razorpay-Signature"),
        current_app.config.get("RAZORPAY_WEBHOOK_SECRET"),
        utcnow(),
        event_id=request.headers.get("X-Razorpay-Event-Id"),
    )
    return api_ok(result)
