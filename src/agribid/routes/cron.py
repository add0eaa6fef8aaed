import logging
from hmac import compare_digest
from flask import Blueprint, request, current_app
from flask_jwt_extended import verify_jwt_in_request, get_jwt_identity
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from ..extensions import db
from ..models import User
from ..repository import AuctionRepository
from ..services.transitioner import sweep
from ..side_effects import get_effects
from ..utils import api_error, api_ok, utcnow

bp = Blueprint("cron", __name__)
log = logging.getLogger("agribid.cron")


def cron_authorized():
    """Bearer exacto contra CRON_SECRET; sin secreto sólo se permite fuera de producción."""
    secret = current_app.config.get("CRON_SECRET")
    header = request.headers.get("Authorization", "")
    if not secret:
        if current_app.config.get("APP_ENV") == "production":
            log.error("cron:CRON_SECRET no configurado en producción")
            return False
        log.warning("cron:CRON_SECRET no configurado; se permite la llamada sin autenticar")
        return True
    return compare_digest(header.encode("utf-8"), f"Bearer {secret}".encode("utf-8"))


def admin_from_token():
    """Usuario admin del JWT de la petición, o None."""
    try:
        verify_jwt_in_request()
    except (JWTExtendedException, PyJWTError):
        return None
    user = db.session.get(User, int(get_jwt_identity()))
    return user if user is not None and user.is_admin else None


@bp.route("/cron/auction-status", methods=["GET", "POST"])
@bp.route("/auctions/update-status", methods=["GET", "POST"])
def auction_status():
    if not cron_authorized():
        return api_error("No autorizado.", 401)
    result = sweep(AuctionRepository(db.session), utcnow(), get_effects())
    return api_ok(result)
