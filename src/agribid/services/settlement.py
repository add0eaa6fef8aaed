"""Liquidación: de ganador confirmado a ``Purchase``.

Hay dos entradas que terminan en ``settle``:

* ``confirm_winner`` (admin): fija la puja ganadora, crea la compra y deja
  la aprobación del vendedor en PENDING; el vehículo sigue en AUCTION.
* ``approve_bid`` (vendedor o admin): APPROVED liquida (o reutiliza la
  compra creada por ``confirm_winner``) y marca el vehículo SOLD;
  REJECTED no crea compra; anula la que hubiera y reembolsa su EMD.

Marcar pujas, actualizar la subasta, aplicar el EMD, crear la compra y
actualizar el vehículo ocurren en una sola transacción.
"""
import logging

from .. import blockchain, notifications
from ..errors import AuthorizationError, NotFoundError, StateConflictError, ValidationError
from ..models import (
    ApprovalStatus, AuctionStatus, EmdStatus, Purchase, PurchaseStatus, VehicleStatus,
)
from ..utils import utcnow
from .approval import check_can_decide, validate_decision
from .emd import refund_at_gateway
from .fees import calculate_transaction_fee

log = logging.getLogger("agribid.settlement")

DEFAULT_FEES = {"offer_active": True}


def compose_purchase(auction, winner_bid, emd, fees):
    """Arma la compra (sin persistir) a partir de la puja ganadora y el EMD aplicable."""
    price = winner_bid.bid_amount
    fee = calculate_transaction_fee(price, **fees)
    balance = price
    emd_applied = False
    emd_amount = None
    if emd is not None:
        emd_amount = emd.amount
        balance = max(0, price - emd_amount)
        emd_applied = True
    status = PurchaseStatus.PAYMENT_PENDING if (balance > 0 or fee > 0) else PurchaseStatus.PENDING
    return Purchase(
        vehicle_id=auction.vehicle_id,
        buyer_id=winner_bid.bidder_id,
        purchase_price=price,
        purchase_type="AUCTION",
        status=status,
        balance_amount=balance if balance > 0 else None,
        emd_applied=emd_applied,
        emd_amount=emd_amount,
        transaction_fee=fee,
        transaction_fee_paid=False,
    )


def settle(repo, auction, winner_bid, approval_status, fees):
    """Debe llamarse dentro de una transacción con la subasta bloqueada."""
    if winner_bid.bid_amount < auction.reserve_price:
        raise ValidationError(
            f"La oferta ganadora (₹{winner_bid.bid_amount:,}) está por debajo del precio de reserva "
            f"(₹{auction.reserve_price:,}).",
            bidAmount=winner_bid.bid_amount, reservePrice=auction.reserve_price,
        )

    repo.mark_winning_bid(auction.id, winner_bid.id)
    auction.winner_id = winner_bid.bidder_id
    auction.current_bid = winner_bid.bid_amount
    auction.seller_approval_status = approval_status

    purchase = repo.active_auction_purchase(auction.vehicle_id)
    if purchase is not None and purchase.buyer_id != winner_bid.bidder_id:
        raise StateConflictError("Ya existe una compra para otro comprador en esta subasta.")

    if purchase is None:
        emd = repo.get_emd(auction.id, winner_bid.bidder_id, lock=True)
        applicable = None
        if emd is not None and emd.status == EmdStatus.PAID and not emd.applied_to_balance:
            # Si un pago concurrente ya lo aplicó, el UPDATE no afecta filas
            if repo.apply_emd(emd.id):
                applicable = emd
        purchase = repo.add(compose_purchase(auction, winner_bid, applicable, fees))

    if approval_status == ApprovalStatus.APPROVED:
        vehicle = repo.get_vehicle(auction.vehicle_id, lock=True)
        vehicle.status = VehicleStatus.SOLD
    repo.flush()
    return purchase


def cancel_purchase(repo, auction_id, purchase, now):
    """Anula la compra y libera el EMD que se le aplicó.

    Devuelve los reembolsos ``(emd_id, payment_id, amount)`` a pedir a la
    pasarela después del commit.
    """
    purchase.status = PurchaseStatus.CANCELLED
    if not purchase.emd_applied:
        return []
    emd = repo.get_emd(auction_id, purchase.buyer_id, lock=True)
    if emd is None or not repo.release_applied_emd(emd.id, now):
        return []
    return [(emd.id, emd.payment_id, emd.amount)]


def _fire_settlement_effects(effects, auction_id, bid_id, purchase_id, notify_fn):
    effects.fire("blockchain_settlement", blockchain.record_settlement, auction_id, bid_id, purchase_id)
    effects.fire(notify_fn.__name__, notify_fn, auction_id, purchase_id)


def _as_id(value, field):
    # JSON puede traer "12" o 12
    if isinstance(value, bool):
        raise ValidationError(f"{field} inválido.")
    try:
        return int(str(value).strip())
    except ValueError:
        raise ValidationError(f"{field} inválido.")


def confirm_winner(repo, auction_id, winner_bid_id, winner_id, actor_id, effects, fees=DEFAULT_FEES):
    actor = repo.get_user(actor_id)
    if actor is None or not actor.is_admin:
        raise AuthorizationError("Acceso restringido a administradores.")
    if winner_bid_id in (None, "") or winner_id in (None, ""):
        raise ValidationError("winnerBidId y winnerId son obligatorios.")
    winner_bid_id, winner_id = _as_id(winner_bid_id, "winnerBidId"), _as_id(winner_id, "winnerId")

    with repo.transaction():
        auction = repo.require_auction(auction_id, lock=True)
        if auction.status != AuctionStatus.ENDED:
            raise StateConflictError("La subasta debe haber cerrado para confirmar ganador.",
                                     auctionStatus=auction.status)
        if auction.seller_approval_status != ApprovalStatus.PENDING:
            raise StateConflictError("La oferta ya fue resuelta por el vendedor.",
                                     sellerApprovalStatus=auction.seller_approval_status)
        bid = repo.get_bid(winner_bid_id)
        if bid is None:
            raise NotFoundError("Puja ganadora no encontrada.")
        if bid.auction_id != auction.id:
            raise ValidationError("La puja no pertenece a esta subasta.")
        if bid.bidder_id != winner_id:
            raise ValidationError("La puja no pertenece al ganador indicado.")
        if repo.active_auction_purchase(auction.vehicle_id) is not None:
            raise StateConflictError("El ganador de esta subasta ya fue confirmado.")

        purchase = settle(repo, auction, bid, ApprovalStatus.PENDING, fees)
        purchase_id, bid_id = purchase.id, bid.id

    log.info("settlement:confirmed auction=%s winner=%s bid=%s purchase=%s",
             auction_id, winner_id, bid_id, purchase_id)
    _fire_settlement_effects(effects, auction_id, bid_id, purchase_id, notifications.winner_confirmed)
    return purchase


def approve_bid(repo, auction_id, actor_id, approval_status, rejection_reason, effects, fees=DEFAULT_FEES,
                gateway=None, now=None):
    """Devuelve ``(auction, purchase)``; ``purchase`` es None al rechazar.

    Si al rechazar ya había una compra confirmada, se anula y el EMD del
    ganador se reembolsa.
    """
    now = now or utcnow()
    refunds = []
    reason = validate_decision(approval_status, rejection_reason)
    actor = repo.get_user(actor_id)
    if actor is None:
        raise AuthorizationError("Usuario no encontrado.", status=401)

    with repo.transaction():
        auction = repo.require_auction(auction_id, lock=True)
        check_can_decide(auction, actor)

        if approval_status == ApprovalStatus.REJECTED:
            auction.seller_approval_status = ApprovalStatus.REJECTED
            auction.rejection_reason = reason
            existing = repo.active_auction_purchase(auction.vehicle_id)
            if existing is not None:
                refunds = cancel_purchase(repo, auction.id, existing, now)
                log.warning("settlement:cancelled purchase=%s refunds=%s", existing.id, refunds)
            purchase = None
        else:
            bid = repo.winning_bid(auction.id)
            if bid is None or bid.bidder_id != auction.winner_id:
                bid = next(iter(repo.bids_for(auction.id, bidder_id=auction.winner_id)), None)
            if bid is None:
                raise StateConflictError("No se encontró la puja ganadora.")
            purchase = settle(repo, auction, bid, ApprovalStatus.APPROVED, fees)
            bid_id = bid.id

    if purchase is None:
        log.info("settlement:rejected auction=%s by=%s", auction_id, actor_id)
        refund_at_gateway(gateway, refunds, auction_id, "Oferta rechazada por el vendedor")
        effects.fire("bid_rejected", notifications.bid_rejected, auction_id, reason)
    else:
        log.info("settlement:approved auction=%s purchase=%s by=%s", auction_id, purchase.id, actor_id)
        _fire_settlement_effects(effects, auction_id, bid_id, purchase.id, notifications.bid_approved)
    return auction, purchase
