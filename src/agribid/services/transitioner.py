"""Barrido por reloj: SCHEDULED -> LIVE -> ENDED.

Se invoca desde fuera (cron HTTP, CLI o el scheduler opcional) con el
``now`` a usar. Cada subasta se procesa y confirma por separado; un fallo
queda en ``errors`` sin frenar a las demás. Repetir el barrido es
inocuo porque todas las escrituras llevan el estado previo como condición.
"""
import logging

from .. import notifications
from ..models import AuctionStatus

log = logging.getLogger("agribid.cron")


def start_due_auctions(repo, now, effects, results):
    ids = repo.auction_ids_to_start(now)
    log.info("cron:found %d auctions to start", len(ids))
    for auction_id in ids:
        try:
            if not repo.start_auction(auction_id, now):
                repo.rollback()
                continue
            repo.commit()
        except Exception as e:
            repo.rollback()
            msg = f"Failed to start auction {auction_id}: {e}"
            results["errors"].append(msg)
            log.exception("cron:%s", msg)
            continue
        results["started"].append(auction_id)
        log.info("cron:started auction=%s", auction_id)
        effects.fire("auction_started", notifications.auction_started, auction_id)


def end_auction(repo, auction_id):
    """Cierra una subasta LIVE y marca la puja ganadora. Devuelve la puja o None.

    Lanza ``LookupError`` si la subasta ya no estaba LIVE.
    """
    auction = repo.lock_auction(auction_id)
    if auction is None or auction.status != AuctionStatus.LIVE:
        raise LookupError(auction_id)
    top = repo.highest_bid(auction_id)
    ok = repo.end_auction(
        auction_id,
        winner_id=top.bidder_id if top else None,
        current_bid=top.bid_amount if top else None,
    )
    if not ok:
        raise LookupError(auction_id)
    if top is not None:
        repo.mark_winning_bid(auction_id, top.id)
    return top


def end_due_auctions(repo, now, effects, results):
    ids = repo.auction_ids_to_end(now)
    log.info("cron:found %d auctions to end", len(ids))
    for auction_id in ids:
        try:
            top = end_auction(repo, auction_id)
            repo.commit()
        except LookupError:
            repo.rollback()
            continue
        except Exception as e:
            repo.rollback()
            msg = f"Failed to end auction {auction_id}: {e}"
            results["errors"].append(msg)
            log.exception("cron:%s", msg)
            continue
        results["ended"].append(auction_id)
        if top:
            log.info("cron:ended auction=%s winner=%s amount=%s", auction_id, top.bidder_id, top.bid_amount)
        else:
            log.info("cron:ended auction=%s no bids", auction_id)
        effects.fire("auction_ended", notifications.auction_ended, auction_id)


def sweep(repo, now, effects):
    results = {"started": [], "ended": [], "errors": []}
    start_due_auctions(repo, now, effects, results)
    end_due_auctions(repo, now, effects, results)
    log.info(
        "cron:summary started=%d ended=%d errors=%d",
        len(results["started"]), len(results["ended"]), len(results["errors"]),
    )
    return {
        "timestamp": now.isoformat() + "Z",
        "summary": {
            "started": len(results["started"]),
            "ended": len(results["ended"]),
            "errors": len(results["errors"]),
        },
        "details": {
            "startedAuctionIds": results["started"],
            "endedAuctionIds": results["ended"],
            "errors": results["errors"],
        },
    }
