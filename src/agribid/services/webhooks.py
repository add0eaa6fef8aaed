"""Conciliación de pagos a partir de los webhooks de Razorpay.

Una vez validada la firma siempre se responde ``received``: la pasarela
reintenta ante cualquier no-2xx y los fallos internos se registran para
conciliación manual. Cada rama muta sólo si la fila sigue en el estado
previo esperado, así que una reentrega no duplica efectos.
"""
import json
import logging
from datetime import timedelta

from ..errors import SignatureValidationError
from ..gateway import verify_webhook_signature
from ..models import Membership
from .eligibility import MEMBERSHIP_DAYS

log = logging.getLogger("agribid.webhook")


def _entity(payload, name):
    return ((payload.get("payload") or {}).get(name) or {}).get("entity") or {}


def _notes(payload):
    # Las notas se copian de la orden al pago; se prefieren las de la orden
    order_notes = _entity(payload, "order").get("notes") or {}
    payment_notes = _entity(payload, "payment").get("notes") or {}
    notes = dict(payment_notes) if isinstance(payment_notes, dict) else {}
    if isinstance(order_notes, dict):
        notes.update(order_notes)
    return notes


def _int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _membership(repo, payment, notes, now):
    payment_id = payment.get("id")
    user_id = _int(notes.get("userId"))
    kind = str(notes.get("membershipType") or "SILVER").upper()
    if not payment_id or user_id is None or kind not in MEMBERSHIP_DAYS:
        log.warning("webhook:membership_incomplete payment=%s notes=%s", payment_id, notes)
        return False
    if repo.membership_by_payment(payment_id) is not None:
        return False
    current = repo.latest_active_membership(user_id, now)
    start = current.end_date if current is not None and current.end_date > now else now
    repo.add(Membership(
        user_id=user_id,
        membership_type=kind,
        amount=int(payment.get("amount") or 0) // 100,
        payment_id=payment_id,
        start_date=start,
        end_date=start + timedelta(days=MEMBERSHIP_DAYS[kind]),
        status="active",
    ))
    return True


def _registration_fee(repo, payment, notes, now):
    user_id = _int(notes.get("userId"))
    if user_id is None:
        return False
    return repo.mark_registration_fee_paid(user_id)


def _emd(repo, payment, notes, now):
    auction_id, user_id = _int(notes.get("auctionId")), _int(notes.get("userId"))
    if auction_id is None or user_id is None:
        return False
    return repo.mark_pending_emd_paid(auction_id, user_id, payment.get("id"),
                                      payment.get("method") or "razorpay", now)


def _balance(repo, payment, notes, now):
    purchase_id = _int(notes.get("purchaseId"))
    if purchase_id is None:
        return False
    return repo.mark_balance_paid(purchase_id, payment.get("id"), payment.get("order_id"))


def _transaction_fee(repo, payment, notes, now):
    purchase_id = _int(notes.get("purchaseId"))
    if purchase_id is None:
        return False
    return repo.mark_fee_paid(purchase_id, payment.get("id"))


HANDLERS = {
    "MEMBERSHIP": _membership,
    "REGISTRATION_FEE": _registration_fee,
    "EMD": _emd,
    "BALANCE_PAYMENT": _balance,
    "TRANSACTION_FEE": _transaction_fee,
}


def _dispatch(repo, payload, now, event_id):
    event = payload.get("event")
    if event_id and not repo.record_payment_event(event_id, event or "unknown"):
        log.info("webhook:duplicate event_id=%s", event_id)
        return {"received": True, "duplicate": True}

    if event == "payment.captured":
        payment = _entity(payload, "payment")
        notes = _notes(payload)
        kind = notes.get("paymentType")
        handler = HANDLERS.get(kind)
        if handler is None:
            log.warning("webhook:unknown_payment_type type=%s payment=%s", kind, payment.get("id"))
            repo.commit()
            return {"received": True}
        applied = handler(repo, payment, notes, now)
        repo.commit()
        log.info("webhook:captured type=%s payment=%s applied=%s", kind, payment.get("id"), applied)
        return {"received": True, "paymentType": kind, "applied": applied}

    if event == "payment.failed":
        payment = _entity(payload, "payment")
        log.warning("webhook:payment_failed payment=%s reason=%s", payment.get("id"),
                    payment.get("error_description"))
    else:
        log.info("webhook:ignored event=%s", event)
    repo.commit()
    return {"received": True}


def handle_webhook_event(repo, raw_body, signature, secret, now, event_id=None):
    if not secret:
        log.error("webhook:secret_missing")
        raise SignatureValidationError("Webhook no configurado.")
    if not signature:
        raise SignatureValidationError("Falta la firma del webhook.")
    if not verify_webhook_signature(raw_body, signature, secret):
        log.warning("webhook:bad_signature")
        raise SignatureValidationError("Firma inválida.")

    try:
        payload = json.loads(raw_body)
        if not isinstance(payload, dict):
            raise ValueError("payload no es un objeto")
        return _dispatch(repo, payload, now, event_id)
    except Exception:
        repo.rollback()
        log.exception("webhook:processing_failed event_id=%s", event_id)
        return {"received": True, "error": "processing_failed"}
