"""Depósito de garantía (EMD) por (subasta, postor)."""
import logging
import time
from sqlalchemy.exc import IntegrityError

from ..errors import (
    AuthorizationError, ExternalServiceError, NotFoundError, StateConflictError, ValidationError,
)
from ..models import AuctionStatus, EarnestMoneyDeposit, EmdStatus

log = logging.getLogger("agribid.emd")

TEST_PAYMENT_ID = "test_emd_payment_id"


def _requires_emd(auction):
    return bool(auction.emd_required and auction.emd_amount)


def get_emd_status(repo, auction_id, bidder_id):
    auction = repo.require_auction(auction_id)
    if not _requires_emd(auction):
        return {"emdRequired": False, "message": "Esta subasta no requiere EMD."}
    emd = repo.get_emd(auction_id, bidder_id)
    return {
        "emdRequired": True,
        "emdAmount": auction.emd_amount,
        "emdStatus": emd.status if emd else EmdStatus.NOT_PAID,
        "emd": serialize_emd(emd) if emd else None,
    }


def initiate_emd_payment(repo, auction_id, bidder_id, gateway, now):
    """Crea o reinicia el EMD en PENDING.

    En modo test se marca PAID al instante; si no, devuelve la orden de la
    pasarela para que el cliente complete el pago (el webhook lo pasa a PAID).
    """
    auction = repo.require_auction(auction_id, lock=True)
    if not _requires_emd(auction):
        raise ValidationError("Esta subasta no requiere EMD.")
    if auction.status == AuctionStatus.ENDED:
        raise StateConflictError("La subasta ya cerró.")
    bidder = repo.get_user(bidder_id)
    if bidder is None:
        raise NotFoundError("Usuario no encontrado.")

    emd = repo.get_emd(auction_id, bidder_id, lock=True)
    if emd is not None and emd.status in (EmdStatus.PAID, EmdStatus.APPLIED):
        raise ValidationError("El EMD ya fue pagado.", emdId=emd.id)

    if emd is None:
        emd = repo.add(EarnestMoneyDeposit(auction_id=auction_id, bidder_id=bidder_id,
                                           amount=auction.emd_amount, status=EmdStatus.PENDING))
    else:
        emd.status = EmdStatus.PENDING
        emd.amount = auction.emd_amount
    try:
        repo.flush()
    except IntegrityError:
        # otro request creó el mismo (auction, bidder) en paralelo
        repo.rollback()
        raise StateConflictError("Ya hay un pago de EMD en curso para esta subasta.")

    if gateway.test_mode:
        repo.mark_emd_paid(emd.id, TEST_PAYMENT_ID, "Test Mode", now)
        repo.commit()
        log.info("emd:paid_test auction=%s bidder=%s", auction_id, bidder_id)
        return {"message": "EMD pagado (modo test).", "emdId": emd.id, "testMode": True,
                "emdStatus": EmdStatus.PAID}

    emd_id, amount = emd.id, emd.amount
    repo.commit()
    receipt = f"EMD-{bidder_id}-{int(time.time()) % 1000000:06d}"
    order = gateway.create_order(amount, receipt, notes={
        "paymentType": "EMD",
        "emdId": emd_id,
        "auctionId": auction_id,
        "userId": bidder_id,
    })
    log.info("emd:order_created auction=%s bidder=%s order=%s", auction_id, bidder_id, order.get("id"))
    return {
        "message": "Orden de pago de EMD creada.",
        "orderId": order.get("id"),
        "amount": amount,
        "currency": "INR",
        "key": gateway.key_id,
        "emdId": emd_id,
        "name": bidder.name,
        "email": bidder.email,
        "contact": bidder.phone,
        "emdStatus": EmdStatus.PENDING,
    }


def serialize_emd(emd):
    return {
        "id": emd.id,
        "amount": emd.amount,
        "status": emd.status,
        "paidAt": emd.paid_at.isoformat() + "Z" if emd.paid_at else None,
        "appliedToBalance": emd.applied_to_balance,
    }


def refund_at_gateway(gateway, refunds, auction_id, reason):
    """Reembolsa en la pasarela EMD ya marcados REFUNDED; devuelve los ids que fallaron.

    ``refunds`` son tuplas ``(emd_id, payment_id, amount)``. El estado local
    no se revierte si la pasarela falla: queda para conciliación manual.
    """
    failed = []
    if gateway is None or gateway.test_mode:
        return failed
    for emd_id, payment_id, amount in refunds:
        if not payment_id:
            continue
        try:
            gateway.refund(payment_id, amount, notes={"emdId": emd_id, "auctionId": auction_id, "reason": reason})
        except ExternalServiceError as e:
            log.error("emd:refund_failed emd=%s payment=%s err=%s", emd_id, payment_id, e.message)
            failed.append(emd_id)
    return failed


def refund_non_winners(repo, auction_id, actor_id, gateway, now, bidder_id=None, refund_all=False):
    """Devuelve el EMD de quienes no ganaron: todos (``refund_all``) o un postor."""
    actor = repo.get_user(actor_id)
    if actor is None or not actor.is_admin:
        raise AuthorizationError("Acceso restringido a administradores.")
    if not refund_all and bidder_id is None:
        raise ValidationError("Indica bidderId o refundAll.")

    with repo.transaction():
        auction = repo.require_auction(auction_id, lock=True)
        if refund_all:
            candidates = [e for e in repo.paid_emds(auction_id) if e.bidder_id != auction.winner_id]
        else:
            emd = repo.get_emd(auction_id, bidder_id, lock=True)
            if emd is None:
                raise NotFoundError("No hay EMD de este postor en la subasta.")
            if emd.status != EmdStatus.PAID:
                raise ValidationError(f"El EMD está en estado {emd.status}; no se puede reembolsar.",
                                      emdStatus=emd.status)
            if auction.winner_id == bidder_id:
                raise ValidationError("El EMD del ganador se aplica al saldo; no se reembolsa.")
            candidates = [emd]
        refunds = []
        for emd in candidates:
            if repo.refund_emd(emd.id, now):
                refunds.append((emd.id, emd.payment_id, emd.amount))

    log.info("emd:refunded auction=%s count=%d by=%s", auction_id, len(refunds), actor_id)
    failed = refund_at_gateway(gateway, refunds, auction_id, "Subasta cerrada: reembolso a no ganador")
    return {
        "auctionId": auction_id,
        "refundedEmdIds": [r[0] for r in refunds],
        "failedRefundEmdIds": failed,
    }


def confirm_emd_payment(repo, auction_id, bidder_id, data, gateway, now):
    """Confirmación del checkout del cliente (además del webhook)."""
    emd_id, order_id, payment_id, signature = checkout_fields(data, "emdId")
    if not gateway.test_mode:
        verify_checkout(gateway, order_id, payment_id, signature)

    with repo.transaction():
        emd = repo.get_emd_by_id(emd_id, lock=True)
        if emd is None:
            raise NotFoundError("EMD no encontrado.")
        if emd.bidder_id != bidder_id:
            raise AuthorizationError("No puedes confirmar este pago de EMD.")
        if emd.auction_id != auction_id:
            raise ValidationError("El EMD no pertenece a esta subasta.")
        if emd.status in (EmdStatus.PAID, EmdStatus.APPLIED):
            return {"message": "EMD ya procesado.", "emd": serialize_emd(emd), "alreadyProcessed": True}
        if not repo.mark_emd_paid(emd.id, payment_id, "razorpay", now):
            raise StateConflictError(f"El EMD está en estado {emd.status}.", emdStatus=emd.status)

    log.info("emd:paid_callback emd=%s payment=%s order=%s", emd_id, payment_id, order_id)
    return {"message": "EMD pagado. Ya puedes pujar.", "emd": serialize_emd(emd), "alreadyProcessed": False}


def checkout_fields(data, id_field=None):
    """Acepta ``orderId``/``paymentId``/``signature`` o los nombres ``razorpay_*`` del checkout."""
    data = data or {}
    order_id = data.get("orderId") or data.get("razorpay_order_id")
    payment_id = data.get("paymentId") or data.get("razorpay_payment_id")
    signature = data.get("signature") or data.get("razorpay_signature")
    fields = [order_id, payment_id, signature]
    if id_field:
        try:
            fields.insert(0, int(data.get(id_field)))
        except (TypeError, ValueError):
            raise ValidationError(f"{id_field} inválido.")
    if not (order_id and payment_id and signature):
        raise ValidationError("Faltan datos del pago (orderId, paymentId, signature).")
    return fields


def verify_checkout(gateway, order_id, payment_id, signature):
    if not gateway.verify_payment_signature(order_id, payment_id, signature):
        log.warning("checkout:bad_signature order=%s payment=%s", order_id, payment_id)
        raise ValidationError("Firma de pago inválida.")
    if not gateway.payment_captured(payment_id):
        raise ValidationError("El pago no fue capturado.")
