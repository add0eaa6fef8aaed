from flask import Blueprint, request, current_app
from flask_jwt_extended import create_access_token, jwt_required, get_jwt_identity
from sqlalchemy.orm import load_only
from ..extensions import db
from ..models import User
from ..repository import AuctionRepository
from ..services.eligibility import start_trial
from ..utils import api_error, api_ok, iso, utcnow
import logging, time

bp = Blueprint("auth", __name__)
log = logging.getLogger("agribid.auth")

SELF_SERVICE_ROLES = ("buyer", "seller")


def _bcrypt_cost(pw_hash: str) -> int | None:
    try:
        parts = (pw_hash or "").split("$")
        return int(parts[2]) if len(parts) > 2 else None
    except (IndexError, ValueError):
        return None


def _user_json(u: User):
    return {"id": u.id, "email": u.email, "name": u.name, "role": u.role, "phone": u.phone}


@bp.post("/register")
def register():
    data = request.get_json(silent=True) or {}
    name = data.get("name")
    email = (data.get("email") or "").strip().lower()
    password = data.get("password")
    role = data.get("role", "buyer")
    if not all([name, email, password]):
        return api_error("Faltan campos obligatorios (name, email, password).")
    if role not in SELF_SERVICE_ROLES:
        return api_error("Rol inválido.", 400)
    if User.query.filter_by(email=email).first():
        return api_error("El correo ya está registrado.", 409)

    u = User(name=name, email=email, phone=data.get("phone"), role=role)
    u.set_password(password)
    db.session.add(u)
    db.session.flush()
    start_trial(AuctionRepository(db.session), u.id, utcnow())
    db.session.commit()
    log.info("register:ok user=%s role=%s", u.id, u.role)
    return api_ok(_user_json(u))


@bp.post("/login")
def login():
    t0 = time.perf_counter()
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        return api_error("Faltan credenciales.")

    # Trae SOLO lo necesario
    u = (
        User.query.options(load_only(User.id, User.email, User.name, User.role, User.phone,
                                     User.password_hash, User.is_active))
        .filter_by(email=email)
        .first()
    )
    if not u or not u.check_password(password):
        log.info("login:failed email=%s", email)
        return api_error("Credenciales inválidas.", 401)
    if not u.is_active:
        return api_error("La cuenta está inactiva.", 403)

    # Rehash progresivo si el cost vigente es mayor que el deseado
    desired_cost = current_app.config.get("BCRYPT_LOG_ROUNDS", 10)
    current_cost = _bcrypt_cost(u.password_hash) or 12
    if current_cost > desired_cost:
        try:
            u.set_password(password)
            db.session.commit()
        except Exception:
            db.session.rollback()
            log.exception("login:rehash_failed user=%s", u.id)

    token = create_access_token(identity=str(u.id))
    log.info("login:ok email=%s total=%.3fs", email, time.perf_counter() - t0)
    return api_ok({"token": token, "user": _user_json(u)})


@bp.get("/me")
@jwt_required()
def me():
    u = db.session.get(User, int(get_jwt_identity()))
    if u is None:
        return api_error("Usuario no encontrado.", 404)
    data = _user_json(u)
    data["registrationFeePaid"] = u.registration_fee_paid
    data["isEligibleForBid"] = u.is_eligible_for_bid
    membership = AuctionRepository(db.session).latest_active_membership(u.id, utcnow())
    data["membership"] = {
        "type": membership.membership_type,
        "endDate": iso(membership.end_date),
    } if membership else None
    return api_ok(data)


@bp.post("/change-password")
@jwt_required()
def change_password():
    uid = int(get_jwt_identity())
    data = request.get_json(silent=True) or {}
    old_pwd = data.get("old_password")
    new_pwd = data.get("new_password")
    if not old_pwd or not new_pwd:
        return api_error("Faltan campos (old_password, new_password).")

    u = db.session.get(User, uid)
    if not u or not u.check_password(old_pwd):
        return api_error("La contraseña actual no es correcta.", 401)

    u.set_password(new_pwd)
    db.session.commit()
    return api_ok({"message": "Contraseña actualizada"})
