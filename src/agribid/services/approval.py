"""Aprobación del vendedor: PENDING -> APPROVED | REJECTED.

El plazo (``APPROVAL_DEADLINE_DAYS`` desde ``end_time``) sólo gobierna los
recordatorios; vencerlo no cambia el estado.
"""
import logging
from datetime import timedelta

from .. import notifications
from ..errors import AuthorizationError, StateConflictError, ValidationError
from ..models import ApprovalStatus, AuctionStatus

log = logging.getLogger("agribid.approval")

APPROVAL_DEADLINE_DAYS = 7
MAX_REASON_LENGTH = 500


def approval_deadline(end_time, days=APPROVAL_DEADLINE_DAYS):
    return end_time + timedelta(days=days)


def deadline_remaining(end_time, now, days=APPROVAL_DEADLINE_DAYS):
    diff = approval_deadline(end_time, days) - now
    secs = int(diff.total_seconds())
    if secs <= 0:
        return {"days": 0, "hours": 0, "minutes": 0, "isOverdue": True}
    d, r = divmod(secs, 86400)
    h, r = divmod(r, 3600)
    m, _ = divmod(r, 60)
    return {"days": d, "hours": h, "minutes": m, "isOverdue": False}


def validate_decision(approval_status, rejection_reason):
    if approval_status not in (ApprovalStatus.APPROVED, ApprovalStatus.REJECTED):
        raise ValidationError("Estado de aprobación inválido. Debe ser APPROVED o REJECTED.")
    reason = (rejection_reason or "").strip() or None
    if approval_status == ApprovalStatus.REJECTED and reason and len(reason) > MAX_REASON_LENGTH:
        raise ValidationError(f"El motivo de rechazo debe tener como máximo {MAX_REASON_LENGTH} caracteres.")
    return reason if approval_status == ApprovalStatus.REJECTED else None


def check_can_decide(auction, actor):
    """Sólo el vendedor del vehículo o un admin, y sólo con la subasta cerrada y un ganador."""
    is_seller = auction.vehicle is not None and auction.vehicle.seller_id == actor.id
    if not (is_seller or actor.is_admin):
        raise AuthorizationError("Sólo el vendedor o un administrador pueden aprobar o rechazar la oferta.")
    if auction.status != AuctionStatus.ENDED:
        raise StateConflictError("La subasta debe haber cerrado antes de aprobar.", auctionStatus=auction.status)
    if auction.winner_id is None:
        raise StateConflictError("La subasta no tiene ganador.")
    if auction.seller_approval_status != ApprovalStatus.PENDING:
        raise StateConflictError(
            "La oferta ya fue resuelta.", sellerApprovalStatus=auction.seller_approval_status,
        )


def send_approval_reminders(repo, now, effects, days=APPROVAL_DEADLINE_DAYS):
    """Aviso urgente con menos de 24 h, recordatorio con 1-3 días; nada si venció."""
    pending = repo.pending_approvals()
    results = {"total": len(pending), "remindersSent": 0, "warningsSent": 0, "skipped": 0}
    for auction in pending:
        left = deadline_remaining(auction.end_time, now, days)
        if left["isOverdue"]:
            results["skipped"] += 1
            continue
        if left["days"] == 0:
            effects.fire("approval_warning", notifications.approval_deadline_warning, auction.id)
            results["warningsSent"] += 1
        elif left["days"] <= 3:
            effects.fire("approval_reminder", notifications.approval_reminder, auction.id, left["days"])
            results["remindersSent"] += 1
        else:
            results["skipped"] += 1
    log.info("reminders:total=%d reminders=%d warnings=%d",
             results["total"], results["remindersSent"], results["warningsSent"])
    return results
