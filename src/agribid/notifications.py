"""Avisos a usuarios y difusión en tiempo real.

Todas las funciones públicas están pensadas para correr como efectos
secundarios (ver ``side_effects``): cargan lo que necesitan por id y cada
canal externo (SMS, email) se aísla en su propio try/except.
"""
import logging
import requests
from flask import current_app

from .extensions import db, socketio
from .models import Auction, Bid, Notification, User
from .sse import publish

log = logging.getLogger("agribid.notify")


# ---------- Tiempo real ----------
def broadcast_auction(auction_id, event, data):
    publish(f"auction:{auction_id}", event, data)
    socketio.emit(event, data, to=f"auction:{auction_id}", namespace="/rt")


# ---------- Canales ----------
def _send_sms(phone, message):
    url = current_app.config.get("SMS_API_URL")
    if not url or not phone:
        return False
    resp = requests.post(
        url,
        json={"to": phone, "message": message},
        headers={"Authorization": f"Bearer {current_app.config.get('SMS_API_KEY') or ''}"},
        timeout=current_app.config.get("NOTIFY_TIMEOUT", 5),
    )
    resp.raise_for_status()
    return True


def _send_email(email, subject, body):
    key = current_app.config.get("SENDGRID_API_KEY")
    if not key or not email:
        return False
    resp = requests.post(
        "https://api.sendgrid.com/v3/mail/send",
        json={
            "personalizations": [{"to": [{"email": email}]}],
            "from": {"email": current_app.config.get("MAIL_FROM")},
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        },
        headers={"Authorization": f"Bearer {key}"},
        timeout=current_app.config.get("NOTIFY_TIMEOUT", 5),
    )
    resp.raise_for_status()
    return True


def notify_user(user_id, type_, payload, message=None, subject=None):
    """Guarda la notificación, la empuja por Socket.IO y la envía por SMS/email."""
    if user_id is None:
        return
    n = Notification(user_id=user_id, type=type_, payload=payload)
    db.session.add(n)
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    socketio.emit("notification", {"type": type_, "payload": payload},
                  to=f"user:{user_id}", namespace="/rt")

    if not message:
        return
    user = db.session.get(User, user_id)
    if user is None:
        return
    try:
        _send_sms(user.phone, message)
    except Exception:
        log.exception("sms:failed user=%s type=%s", user_id, type_)
    try:
        _send_email(user.email, subject or "AgriBid", message)
    except Exception:
        log.exception("email:failed user=%s type=%s", user_id, type_)


def _label(auction):
    v = auction.vehicle
    return f"{v.brand} {v.model}" if v else auction.reference_number


def _inr(amount):
    return f"₹{amount:,}"


# ---------- Eventos de subasta ----------
def auction_started(auction_id):
    a = db.session.get(Auction, auction_id)
    if a is None:
        return
    broadcast_auction(a.id, "auction-started", {"auctionId": a.id, "endTime": a.end_time.isoformat() + "Z"})
    if a.vehicle:
        notify_user(a.vehicle.seller_id, "auction_started",
                    {"auction_id": a.id, "reference": a.reference_number},
                    message=f"Tu subasta {a.reference_number} ({_label(a)}) ya está en vivo.")


def auction_ended(auction_id):
    a = db.session.get(Auction, auction_id)
    if a is None:
        return
    broadcast_auction(a.id, "closed", {
        "auctionId": a.id, "winnerId": a.winner_id,
        "amount": a.current_bid if a.winner_id else None,
    })
    if a.winner_id:
        notify_user(a.winner_id, "auction_won",
                    {"auction_id": a.id, "amount": a.current_bid},
                    message=f"Tu oferta de {_inr(a.current_bid)} es la más alta en {_label(a)}. "
                            f"Queda pendiente la aprobación del vendedor.",
                    subject="Ganaste la subasta")
    if a.vehicle:
        notify_user(a.vehicle.seller_id, "auction_ended",
                    {"auction_id": a.id, "amount": a.current_bid if a.winner_id else None},
                    message=(f"Tu subasta {a.reference_number} cerró en {_inr(a.current_bid)}. Revisa y aprueba la oferta."
                             if a.winner_id else f"Tu subasta {a.reference_number} cerró sin ofertas."))


def bid_placed(auction_id, bid_id, previous_top_bidder_id=None):
    b = db.session.get(Bid, bid_id)
    if b is None:
        return
    if previous_top_bidder_id and previous_top_bidder_id != b.bidder_id:
        notify_user(previous_top_bidder_id, "outbid",
                    {"auction_id": auction_id, "amount": b.bid_amount})


def winner_confirmed(auction_id, purchase_id):
    a = db.session.get(Auction, auction_id)
    if a is None or a.winner_id is None:
        return
    notify_user(a.winner_id, "winner_confirmed",
                {"auction_id": a.id, "purchase_id": purchase_id, "amount": a.current_bid},
                message=f"Confirmamos tu oferta ganadora de {_inr(a.current_bid)} por {_label(a)}.",
                subject="Oferta ganadora confirmada")


def bid_approved(auction_id, purchase_id):
    a = db.session.get(Auction, auction_id)
    if a is None or a.winner_id is None:
        return
    notify_user(a.winner_id, "bid_approved",
                {"auction_id": a.id, "purchase_id": purchase_id, "amount": a.current_bid},
                message=f"El vendedor aprobó tu oferta de {_inr(a.current_bid)} por {_label(a)}.",
                subject="Oferta aprobada")
    if a.vehicle:
        notify_user(a.vehicle.seller_id, "vehicle_sold",
                    {"auction_id": a.id, "purchase_id": purchase_id, "amount": a.current_bid})


def bid_rejected(auction_id, reason=None):
    a = db.session.get(Auction, auction_id)
    if a is None or a.winner_id is None:
        return
    msg = f"El vendedor rechazó tu oferta de {_inr(a.current_bid)} por {_label(a)}."
    if reason:
        msg += f" Motivo: {reason}"
    notify_user(a.winner_id, "bid_rejected",
                {"auction_id": a.id, "amount": a.current_bid, "reason": reason},
                message=msg, subject="Oferta rechazada")


def approval_reminder(auction_id, days_left):
    a = db.session.get(Auction, auction_id)
    if a is None or a.vehicle is None:
        return
    notify_user(a.vehicle.seller_id, "approval_reminder",
                {"auction_id": a.id, "days_left": days_left},
                message=f"Recordatorio: tienes {days_left} día(s) para aprobar la oferta de "
                        f"{_inr(a.current_bid)} en {_label(a)}.")


def approval_deadline_warning(auction_id):
    a = db.session.get(Auction, auction_id)
    if a is None or a.vehicle is None:
        return
    notify_user(a.vehicle.seller_id, "approval_deadline",
                {"auction_id": a.id},
                message=f"URGENTE: quedan menos de 24 horas para aprobar la oferta de "
                        f"{_inr(a.current_bid)} en {_label(a)}.")


def auction_failed(auction_id, bidder_ids, reason):
    for uid in bidder_ids:
        notify_user(uid, "auction_failed", {"auction_id": auction_id, "reason": reason})
