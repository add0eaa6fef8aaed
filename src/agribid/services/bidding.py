"""Libro de pujas: sólo se agregan filas, nunca se editan ni retiran."""
import logging
from datetime import timedelta

from .. import notifications
from ..errors import AuthorizationError, ConcurrencyConflict, StateConflictError, ValidationError
from ..models import AuctionStatus, Bid, EmdStatus
from .eligibility import check_can_bid

log = logging.getLogger("agribid.bids")


def minimum_bid(auction):
    return auction.current_bid + auction.minimum_increment


def _auto_extension(auction, now):
    """Valores extra para el UPDATE si la puja cae dentro de la ventana anti-sniping."""
    if not auction.auto_extend_enabled:
        return {}
    minutes_left = (auction.end_time - now).total_seconds() / 60
    if 0 < minutes_left <= auction.auto_extend_threshold and auction.extension_count < auction.max_extensions:
        return {
            "end_time": auction.end_time + timedelta(minutes=auction.auto_extend_minutes),
            "extension_count": auction.extension_count + 1,
        }
    return {}


def _check_eligibility(repo, auction, bidder, now):
    check_can_bid(repo, bidder, now)
    if auction.vehicle is not None and auction.vehicle.seller_id == bidder.id:
        raise AuthorizationError("El vendedor no puede pujar por su propio vehículo.")
    if auction.emd_required and auction.emd_amount and not bidder.is_admin:
        emd = repo.get_emd(auction.id, bidder.id)
        if emd is None or emd.status != EmdStatus.PAID:
            raise AuthorizationError(
                f"Debes pagar el depósito de garantía (EMD) de ₹{auction.emd_amount:,} antes de pujar.",
                emdRequired=True, emdAmount=auction.emd_amount,
            )


def place_bid(repo, auction_id, bidder_id, bid_amount, now, effects):
    """Valida y registra una puja; devuelve la fila ``Bid`` creada.

    La lectura de ``current_bid`` y la escritura van serializadas: se
    bloquea la fila de la subasta y además el UPDATE exige que
    ``current_bid`` siga siendo el valor leído. Si otro postor llegó
    antes se lanza ``ConcurrencyConflict`` con el valor vigente.
    """
    if isinstance(bid_amount, bool) or not isinstance(bid_amount, int) or bid_amount <= 0:
        raise ValidationError("Monto de oferta inválido.")

    auction = repo.require_auction(auction_id, lock=True)
    bidder = repo.get_user(bidder_id)
    if bidder is None:
        raise AuthorizationError("Usuario no encontrado.", status=401)

    if auction.status != AuctionStatus.LIVE:
        raise StateConflictError("La subasta no está activa.", auctionStatus=auction.status)
    if now >= auction.end_time:
        raise StateConflictError("La subasta ya cerró.", auctionStatus=auction.status)

    _check_eligibility(repo, auction, bidder, now)

    expected = auction.current_bid
    min_required = minimum_bid(auction)
    if bid_amount < min_required:
        raise ValidationError(
            f"La oferta debe ser de al menos ₹{min_required:,} (oferta actual + incremento mínimo).",
            minimumBid=min_required, currentBid=expected, minimumIncrement=auction.minimum_increment,
        )

    previous_top = repo.highest_bid(auction_id)
    previous_bidder_id = previous_top.bidder_id if previous_top else None
    extension = _auto_extension(auction, now)

    if not repo.compare_and_set_current_bid(auction_id, expected, bid_amount, **extension):
        repo.rollback()
        latest = repo.get_auction(auction_id)
        if latest.status != AuctionStatus.LIVE:
            raise StateConflictError("La subasta no está activa.", auctionStatus=latest.status)
        log.info("bid:conflict auction=%s bidder=%s expected=%s latest=%s",
                 auction_id, bidder_id, expected, latest.current_bid)
        raise ConcurrencyConflict(
            "Otro postor superó tu oferta. Actualiza e intenta de nuevo.",
            currentBid=latest.current_bid, minimumBid=minimum_bid(latest),
        )

    bid = repo.add(Bid(auction_id=auction_id, bidder_id=bidder_id, bid_amount=bid_amount,
                       bid_time=now, is_winning_bid=False))
    repo.commit()
    log.info("bid:accepted auction=%s bidder=%s amount=%s", auction_id, bidder_id, bid_amount)

    event = {
        "auctionId": auction_id,
        "bidId": bid.id,
        "currentBid": bid_amount,
        "minimumBid": bid_amount + auction.minimum_increment,
        "endTime": auction.end_time.isoformat() + "Z",
        "extended": bool(extension),
        "extensionCount": auction.extension_count,
    }
    effects.fire("broadcast_bid", notifications.broadcast_auction, auction_id, "new-bid", event)
    if extension:
        effects.fire("broadcast_extended", notifications.broadcast_auction, auction_id,
                     "auction-extended", {"auctionId": auction_id, "endTime": event["endTime"],
                                          "extensionCount": auction.extension_count})
    effects.fire("notify_outbid", notifications.bid_placed, auction_id, bid.id, previous_bidder_id)
    return bid
