from time import sleep
from flask import Blueprint, request, current_app
from sqlalchemy.exc import SQLAlchemyError, IntegrityError, OperationalError
from flask_jwt_extended import jwt_required, get_jwt_identity
from ..extensions import db
from ..models import Vehicle, User, VehicleStatus
from ..utils import api_error, api_ok, iso

bp = Blueprint("vehicles", __name__)

SALE_TYPES = ("AUCTION", "PREAPPROVED")


@bp.get("/vehicles")
def list_vehicles():
    status = request.args.get("status", VehicleStatus.AUCTION)
    q = Vehicle.query
    if status != "all":
        q = q.filter(Vehicle.status == status)
    text_q = request.args.get("q")
    if text_q:
        like = f"%{text_q}%"
        q = q.filter(
            (Vehicle.brand.ilike(like)) |
            (Vehicle.model.ilike(like)) |
            (Vehicle.reference_number.ilike(like))
        )
    items = q.order_by(Vehicle.created_at.desc()).all()
    return api_ok([serialize_vehicle_summary(v) for v in items])


@bp.post("/vehicles")
@jwt_required()
def create_vehicle():
    uid_raw = get_jwt_identity()
    try:
        uid = int(uid_raw)
    except (TypeError, ValueError):
        return api_error("Token inválido.", 401)

    user = db.session.get(User, uid)
    if not user:
        return api_error("Usuario no encontrado.", 404)
    if user.role not in ("seller", "admin"):
        return api_error("Solo vendedores o administradores pueden publicar.", 403)

    data = request.get_json(silent=True) or {}

    brand = (data.get("brand") or "").strip()
    model = (data.get("model") or "").strip()
    sale_type = (data.get("saleType") or "AUCTION").strip().upper()

    try:
        year = int(data.get("year") or 0)
        base_price = int(data.get("basePrice") or 0)
        engine_hp = int(data["engineHp"]) if data.get("engineHp") else None
    except (TypeError, ValueError):
        return api_error("Campos numéricos inválidos (year/basePrice/engineHp).", 400)

    if not all([brand, model]) or year < 1900 or base_price <= 0:
        return api_error("Datos incompletos o inválidos.", 400)
    if sale_type not in SALE_TYPES:
        return api_error("saleType debe ser AUCTION o PREAPPROVED.", 400)

    imgs = data.get("images") or []
    if not isinstance(imgs, list):
        return api_error("images debe ser un arreglo de URLs.", 400)

    v = Vehicle(
        seller_id=uid,
        brand=brand, model=model, year=year, engine_hp=engine_hp,
        base_price=base_price, sale_type=sale_type,
        images=imgs, description=data.get("description"),
        status=VehicleStatus.PENDING,
    )

    # ---- Retry ante 1205/1213 ----
    for attempt in range(3):
        try:
            db.session.add(v)
            db.session.commit()
            return api_ok(serialize_vehicle_detail(v))
        except OperationalError as e:
            code = getattr(getattr(e, "orig", None), "args", [None])[0]
            if code in (1205, 1213):  # lock wait / deadlock
                current_app.logger.warning(f"Retry vehicles.insert por lock (intento {attempt+1})")
                db.session.rollback()
                sleep(0.35 * (attempt + 1))
                continue
            db.session.rollback()
            current_app.logger.exception("Error operacional creando vehículo")
            return api_error("No se pudo publicar el vehículo.", 400, details=str(getattr(e, "orig", e)))
        except IntegrityError as e:
            db.session.rollback()
            return api_error("Conflicto de datos.", 409, details=str(getattr(e, "orig", e)))
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.exception("Error SQL creando vehículo")
            return api_error("No se pudo publicar el vehículo.", 400, details=str(getattr(e, "orig", e)))

    return api_error("No se pudo publicar el vehículo (reintentos agotados).", 409)


@bp.get("/vehicles/<int:vehicle_id>")
def get_vehicle(vehicle_id):
    v = db.session.get(Vehicle, vehicle_id)
    if v is None:
        return api_error("Vehículo no encontrado.", 404)
    return api_ok(serialize_vehicle_detail(v))


def serialize_vehicle_summary(v: Vehicle):
    a = v.auction
    return {
        "id": v.id,
        "referenceNumber": v.reference_number,
        "brand": v.brand,
        "model": v.model,
        "year": v.year,
        "engineHp": v.engine_hp,
        "basePrice": v.base_price,
        "saleType": v.sale_type,
        "images": v.images or [],
        "status": v.status,
        "auctionId": a.id if a else None,
        "currentBid": a.current_bid if a else None,
        "endTime": iso(a.end_time) if a else None,
    }


def serialize_vehicle_detail(v: Vehicle):
    data = serialize_vehicle_summary(v)
    data.update({
        "description": v.description,
        "sellerId": v.seller_id,
        "createdAt": iso(v.created_at),
    })
    return data
