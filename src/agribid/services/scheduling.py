"""Alta de subastas desde la moderación de vehículos y cierre administrativo.

``approve_vehicle`` es la única forma de crear una ``Auction``: el admin
aprueba un vehículo PENDING de venta por subasta y se fijan precio de
reserva, incremento y ventana temporal.
"""
import logging
from datetime import timedelta

from .. import notifications
from ..errors import (
    AuthorizationError, NotFoundError, StateConflictError, ValidationError,
)
from ..models import (
    ApprovalStatus, Auction, AuctionStatus, Vehicle, VehicleStatus,
)
from ..utils import parse_datetime
from .emd import refund_at_gateway
from .settlement import cancel_purchase

log = logging.getLogger("agribid.scheduling")

# (tope exclusivo, incremento)
INCREMENT_SLABS = ((100000, 2000), (300000, 5000), (700000, 10000))
TOP_INCREMENT = 20000


def increment_for(price):
    for limit, step in INCREMENT_SLABS:
        if price < limit:
            return step
    return TOP_INCREMENT


def duration_for(price):
    if price >= 500000:
        return timedelta(days=3)
    if price >= 200000:
        return timedelta(days=2)
    return timedelta(days=1)


def next_reference(repo, column, prefix, year):
    """Siguiente ``PREFIX-YYYY-NNNN`` de la secuencia anual."""
    base = f"{prefix}-{year}-"
    last = repo.last_reference(column, base)
    seq = 1
    if last:
        try:
            seq = int(last.rsplit("-", 1)[1]) + 1
        except (IndexError, ValueError):
            seq = 1
    return f"{base}{seq:04d}"


def _require_admin(repo, actor_id):
    actor = repo.get_user(actor_id)
    if actor is None or not actor.is_admin:
        raise AuthorizationError("Acceso restringido a administradores.")
    return actor


def _positive_int(value, field):
    if value is None or value == "":
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} debe ser un número entero.")
    if number <= 0:
        raise ValidationError(f"{field} debe ser mayor a 0.")
    return number


def approve_vehicle(repo, vehicle_id, actor_id, now, options=None, config=None):
    """Aprueba un vehículo; para venta por subasta crea la ``Auction`` SCHEDULED.

    ``options`` admite ``basePrice``, ``minimumIncrement``, ``startTime``,
    ``endTime``, ``emdRequired`` y ``emdAmount``.
    """
    _require_admin(repo, actor_id)
    options = options or {}
    config = config or {}

    with repo.transaction():
        vehicle = repo.get_vehicle(vehicle_id, lock=True)
        if vehicle is None:
            raise NotFoundError("Vehículo no encontrado.")
        if vehicle.status != VehicleStatus.PENDING:
            raise StateConflictError("Sólo se pueden aprobar vehículos pendientes.",
                                     vehicleStatus=vehicle.status)

        if not vehicle.reference_number:
            vehicle.reference_number = next_reference(repo, Vehicle.reference_number, "VH", now.year)

        if vehicle.sale_type != "AUCTION":
            vehicle.status = VehicleStatus.APPROVED
            log.info("scheduling:vehicle_approved vehicle=%s sale_type=%s", vehicle.id, vehicle.sale_type)
            return vehicle, None

        reserve = _positive_int(options.get("basePrice"), "basePrice") or vehicle.base_price
        increment = _positive_int(options.get("minimumIncrement"), "minimumIncrement") or increment_for(reserve)
        start = parse_datetime(options.get("startTime")) if options.get("startTime") else now
        if options.get("endTime"):
            end = parse_datetime(options.get("endTime"))
        else:
            end = start + duration_for(reserve)
        if start is None or end is None:
            raise ValidationError("Fechas de subasta inválidas.")
        if end <= start:
            raise ValidationError("La hora de fin debe ser posterior a la de inicio.")

        emd_required = options.get("emdRequired") is True
        emd_amount = _positive_int(options.get("emdAmount"), "emdAmount") if emd_required else None
        if emd_required and not emd_amount:
            raise ValidationError("emdAmount es obligatorio cuando se exige EMD.")

        auction = repo.add(Auction(
            vehicle_id=vehicle.id,
            reference_number=next_reference(repo, Auction.reference_number, "AU", now.year),
            start_time=start,
            end_time=end,
            reserve_price=reserve,
            minimum_increment=increment,
            current_bid=reserve,
            status=AuctionStatus.SCHEDULED,
            seller_approval_status=ApprovalStatus.PENDING,
            emd_required=emd_required,
            emd_amount=emd_amount,
            auto_extend_enabled=config.get("AUTO_EXTEND_ENABLED", True),
            auto_extend_minutes=config.get("AUTO_EXTEND_MINUTES", 5),
            auto_extend_threshold=config.get("AUTO_EXTEND_THRESHOLD_MINUTES", 2),
            max_extensions=config.get("AUTO_EXTEND_MAX", 3),
            extension_count=0,
        ))
        vehicle.status = VehicleStatus.AUCTION
        repo.flush()

    log.info("scheduling:auction_created vehicle=%s auction=%s ref=%s start=%s end=%s",
             vehicle.id, auction.id, auction.reference_number, auction.start_time, auction.end_time)
    return vehicle, auction


def reject_vehicle(repo, vehicle_id, actor_id):
    _require_admin(repo, actor_id)
    with repo.transaction():
        vehicle = repo.get_vehicle(vehicle_id, lock=True)
        if vehicle is None:
            raise NotFoundError("Vehículo no encontrado.")
        if vehicle.status != VehicleStatus.PENDING:
            raise StateConflictError("Sólo se pueden rechazar vehículos pendientes.",
                                     vehicleStatus=vehicle.status)
        vehicle.status = VehicleStatus.REJECTED
    log.info("scheduling:vehicle_rejected vehicle=%s", vehicle_id)
    return vehicle


def mark_failed(repo, auction_id, actor_id, reason, now, gateway, effects):
    """Cierra la subasta sin ganador, devuelve el vehículo a APPROVED y reembolsa los EMD pagados."""
    _require_admin(repo, actor_id)
    reason = (reason or "").strip() or "Subasta marcada como fallida por el administrador."

    with repo.transaction():
        auction = repo.require_auction(auction_id, lock=True)
        if auction.seller_approval_status == ApprovalStatus.APPROVED:
            raise StateConflictError("La venta ya fue aprobada por el vendedor.")
        refunds = []
        purchase = repo.active_auction_purchase(auction.vehicle_id)
        if purchase is not None:
            refunds = cancel_purchase(repo, auction.id, purchase, now)
        repo.force_end_auction(auction.id)
        repo.mark_winning_bid(auction.id, None)
        vehicle = repo.get_vehicle(auction.vehicle_id, lock=True)
        vehicle.status = VehicleStatus.APPROVED

        bidder_ids = {b.bidder_id for b in repo.bids_for(auction.id)}
        for emd in repo.paid_emds(auction.id):
            if repo.refund_emd(emd.id, now):
                refunds.append((emd.id, emd.payment_id, emd.amount))
                bidder_ids.add(emd.bidder_id)
        bidder_ids = sorted(bidder_ids)

    log.info("scheduling:auction_failed auction=%s refunds=%d", auction_id, len(refunds))

    failed_refunds = refund_at_gateway(gateway, refunds, auction_id, reason)

    effects.fire("auction_failed", notifications.auction_failed, auction_id, bidder_ids, reason)
    effects.fire("broadcast_failed", notifications.broadcast_auction, auction_id, "closed",
                 {"auctionId": auction_id, "winnerId": None, "failed": True})
    return {
        "auctionId": auction_id,
        "refundedEmdIds": [r[0] for r in refunds],
        "failedRefundEmdIds": failed_refunds,
        "reason": reason,
    }
