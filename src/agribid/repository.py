"""Acceso a datos del núcleo de subastas.

Los servicios reciben un ``AuctionRepository`` explícito en vez de tocar
``db.session`` directamente; en producción envuelve la sesión de
Flask-SQLAlchemy y en tests se puede sustituir o extender.

Las escrituras que compiten (currentBid, status, EMD, pagos) se hacen con
UPDATE condicionales: devuelven ``True`` sólo si la fila seguía en el
estado esperado.
"""
from contextlib import contextmanager
from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError

from .errors import NotFoundError
from .models import (
    Auction, AuctionStatus, ApprovalStatus, Bid, EarnestMoneyDeposit, EmdStatus,
    Membership, Purchase, PurchaseStatus, User, Vehicle, PaymentEvent,
)


class AuctionRepository:
    def __init__(self, session):
        self.session = session

    # ---------- Transacciones ----------
    @contextmanager
    def transaction(self):
        try:
            yield self
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def commit(self):
        self.session.commit()

    def rollback(self):
        self.session.rollback()

    def add(self, obj):
        self.session.add(obj)
        return obj

    def flush(self):
        self.session.flush()

    # ---------- Lecturas simples ----------
    def get_user(self, user_id):
        return self.session.get(User, user_id)

    def get_vehicle(self, vehicle_id, lock=False):
        q = select(Vehicle).where(Vehicle.id == vehicle_id)
        if lock:
            q = q.with_for_update().execution_options(populate_existing=True)
        return self.session.execute(q).scalar_one_or_none()

    def get_bid(self, bid_id):
        return self.session.get(Bid, bid_id)

    def get_auction(self, auction_id):
        return self.session.get(Auction, auction_id)

    def require_auction(self, auction_id, lock=False):
        auction = self.lock_auction(auction_id) if lock else self.get_auction(auction_id)
        if auction is None:
            raise NotFoundError("Subasta no encontrada.")
        return auction

    def lock_auction(self, auction_id):
        """SELECT ... FOR UPDATE sobre la fila de la subasta (no-op en SQLite)."""
        q = (
            select(Auction)
            .where(Auction.id == auction_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.execute(q).scalar_one_or_none()

    # ---------- Barrido por reloj ----------
    def auction_ids_to_start(self, now):
        q = select(Auction.id).where(
            Auction.status == AuctionStatus.SCHEDULED,
            Auction.start_time <= now,
            Auction.end_time > now,
        ).order_by(Auction.start_time.asc())
        return list(self.session.execute(q).scalars())

    def auction_ids_to_end(self, now):
        q = select(Auction.id).where(
            Auction.status == AuctionStatus.LIVE,
            Auction.end_time <= now,
        ).order_by(Auction.end_time.asc())
        return list(self.session.execute(q).scalars())

    def start_auction(self, auction_id, now):
        res = self.session.execute(
            update(Auction)
            .where(
                Auction.id == auction_id,
                Auction.status == AuctionStatus.SCHEDULED,
                Auction.start_time <= now,
                Auction.end_time > now,
            )
            .values(status=AuctionStatus.LIVE)
        )
        return res.rowcount == 1

    def end_auction(self, auction_id, winner_id, current_bid):
        values = {"status": AuctionStatus.ENDED, "winner_id": winner_id}
        if current_bid is not None:
            values["current_bid"] = current_bid
        res = self.session.execute(
            update(Auction)
            .where(Auction.id == auction_id, Auction.status == AuctionStatus.LIVE)
            .values(**values)
        )
        return res.rowcount == 1

    def force_end_auction(self, auction_id):
        """Cierra sin ganador desde SCHEDULED/LIVE/ENDED (subasta fallida)."""
        self.session.execute(
            update(Auction)
            .where(Auction.id == auction_id)
            .values(status=AuctionStatus.ENDED, winner_id=None)
        )

    # ---------- Pujas ----------
    def highest_bid(self, auction_id):
        q = (
            select(Bid)
            .where(Bid.auction_id == auction_id)
            .order_by(Bid.bid_amount.desc(), Bid.bid_time.asc(), Bid.id.asc())
            .limit(1)
        )
        return self.session.execute(q).scalar_one_or_none()

    def winning_bid(self, auction_id):
        q = select(Bid).where(Bid.auction_id == auction_id, Bid.is_winning_bid.is_(True))
        return self.session.execute(q).scalars().first()

    def bids_for(self, auction_id, bidder_id=None):
        q = select(Bid).where(Bid.auction_id == auction_id)
        if bidder_id is not None:
            q = q.where(Bid.bidder_id == bidder_id)
        q = q.order_by(Bid.bid_amount.desc(), Bid.bid_time.asc())
        return list(self.session.execute(q).scalars())

    def count_bids(self, auction_id):
        return self.session.execute(
            select(func.count(Bid.id)).where(Bid.auction_id == auction_id)
        ).scalar_one()

    def mark_winning_bid(self, auction_id, bid_id):
        # Primero se desmarcan todas, luego sólo la ganadora
        self.session.execute(
            update(Bid).where(Bid.auction_id == auction_id).values(is_winning_bid=False)
        )
        if bid_id is not None:
            self.session.execute(
                update(Bid)
                .where(Bid.auction_id == auction_id, Bid.id == bid_id)
                .values(is_winning_bid=True)
            )

    def compare_and_set_current_bid(self, auction_id, expected, new, **extra):
        res = self.session.execute(
            update(Auction)
            .where(
                Auction.id == auction_id,
                Auction.current_bid == expected,
                Auction.status == AuctionStatus.LIVE,
            )
            .values(current_bid=new, **extra)
        )
        return res.rowcount == 1

    # ---------- EMD ----------
    def get_emd(self, auction_id, bidder_id, lock=False):
        q = select(EarnestMoneyDeposit).where(
            EarnestMoneyDeposit.auction_id == auction_id,
            EarnestMoneyDeposit.bidder_id == bidder_id,
        )
        if lock:
            q = q.with_for_update().execution_options(populate_existing=True)
        return self.session.execute(q).scalar_one_or_none()

    def get_emd_by_id(self, emd_id, lock=False):
        q = select(EarnestMoneyDeposit).where(EarnestMoneyDeposit.id == emd_id)
        if lock:
            q = q.with_for_update().execution_options(populate_existing=True)
        return self.session.execute(q).scalar_one_or_none()

    def paid_emds(self, auction_id):
        q = select(EarnestMoneyDeposit).where(
            EarnestMoneyDeposit.auction_id == auction_id,
            EarnestMoneyDeposit.status == EmdStatus.PAID,
        )
        return list(self.session.execute(q).scalars())

    def mark_emd_paid(self, emd_id, payment_id, method, now):
        res = self.session.execute(
            update(EarnestMoneyDeposit)
            .where(
                EarnestMoneyDeposit.id == emd_id,
                EarnestMoneyDeposit.status == EmdStatus.PENDING,
            )
            .values(status=EmdStatus.PAID, payment_id=payment_id, payment_method=method, paid_at=now)
        )
        return res.rowcount == 1

    def mark_pending_emd_paid(self, auction_id, bidder_id, payment_id, method, now):
        res = self.session.execute(
            update(EarnestMoneyDeposit)
            .where(
                EarnestMoneyDeposit.auction_id == auction_id,
                EarnestMoneyDeposit.bidder_id == bidder_id,
                EarnestMoneyDeposit.status == EmdStatus.PENDING,
            )
            .values(status=EmdStatus.PAID, payment_id=payment_id, payment_method=method, paid_at=now)
        )
        return res.rowcount == 1

    def apply_emd(self, emd_id):
        """PAID -> APPLIED una sola vez."""
        res = self.session.execute(
            update(EarnestMoneyDeposit)
            .where(
                EarnestMoneyDeposit.id == emd_id,
                EarnestMoneyDeposit.status == EmdStatus.PAID,
                EarnestMoneyDeposit.applied_to_balance.is_(False),
            )
            .values(status=EmdStatus.APPLIED, applied_to_balance=True)
        )
        return res.rowcount == 1

    def refund_emd(self, emd_id, now):
        res = self.session.execute(
            update(EarnestMoneyDeposit)
            .where(
                EarnestMoneyDeposit.id == emd_id,
                EarnestMoneyDeposit.status == EmdStatus.PAID,
            )
            .values(status=EmdStatus.REFUNDED, refunded_at=now)
        )
        return res.rowcount == 1

    def release_applied_emd(self, emd_id, now):
        """APPLIED -> REFUNDED cuando se anula la compra a la que se aplicó."""
        res = self.session.execute(
            update(EarnestMoneyDeposit)
            .where(
                EarnestMoneyDeposit.id == emd_id,
                EarnestMoneyDeposit.status == EmdStatus.APPLIED,
            )
            .values(status=EmdStatus.REFUNDED, refunded_at=now)
        )
        return res.rowcount == 1

    # ---------- Compras ----------
    def get_purchase(self, purchase_id, lock=False):
        q = select(Purchase).where(Purchase.id == purchase_id)
        if lock:
            q = q.with_for_update().execution_options(populate_existing=True)
        return self.session.execute(q).scalar_one_or_none()

    def active_auction_purchase(self, vehicle_id):
        q = select(Purchase).where(
            Purchase.vehicle_id == vehicle_id,
            Purchase.purchase_type == "AUCTION",
            Purchase.status != PurchaseStatus.CANCELLED,
        ).order_by(Purchase.id.desc())
        return self.session.execute(q).scalars().first()

    def mark_balance_paid(self, purchase_id, payment_id, order_id):
        res = self.session.execute(
            update(Purchase)
            .where(
                Purchase.id == purchase_id,
                Purchase.status == PurchaseStatus.PAYMENT_PENDING,
            )
            .values(status=PurchaseStatus.PAID, payment_id=payment_id, order_id=order_id)
        )
        return res.rowcount == 1

    def mark_fee_paid(self, purchase_id, payment_id):
        res = self.session.execute(
            update(Purchase)
            .where(Purchase.id == purchase_id, Purchase.transaction_fee_paid.is_(False))
            .values(transaction_fee_paid=True, transaction_fee_payment_id=payment_id)
        )
        return res.rowcount == 1

    # ---------- Aprobación del vendedor ----------
    def pending_approvals(self):
        q = select(Auction).where(
            Auction.status == AuctionStatus.ENDED,
            Auction.seller_approval_status == ApprovalStatus.PENDING,
            Auction.winner_id.is_not(None),
        ).order_by(Auction.end_time.asc())
        return list(self.session.execute(q).scalars())

    # ---------- Referencias ----------
    def last_reference(self, column, prefix):
        return self.session.execute(
            select(column).where(column.like(f"{prefix}%")).order_by(column.desc()).limit(1)
        ).scalar_one_or_none()

    # ---------- Webhooks ----------
    def record_payment_event(self, event_id, event):
        """False si el evento ya estaba registrado (reentrega de la pasarela)."""
        seen = self.session.execute(
            select(PaymentEvent.id).where(PaymentEvent.event_id == event_id)
        ).scalar_one_or_none()
        if seen is not None:
            return False
        try:
            self.session.add(PaymentEvent(event_id=event_id, event=event))
            self.session.flush()
        except IntegrityError:
            # Entrega concurrente del mismo evento
            self.session.rollback()
            return False
        return True

    # ---------- Membresías / registro ----------
    def membership_by_payment(self, payment_id):
        return self.session.execute(
            select(Membership).where(Membership.payment_id == payment_id)
        ).scalar_one_or_none()

    def latest_active_membership(self, user_id, now):
        q = select(Membership).where(
            Membership.user_id == user_id,
            Membership.status == "active",
            Membership.end_date >= now,
        ).order_by(Membership.end_date.desc()).limit(1)
        return self.session.execute(q).scalar_one_or_none()

    def mark_registration_fee_paid(self, user_id):
        res = self.session.execute(
            update(User)
            .where(User.id == user_id, User.registration_fee_paid.is_(False))
            .values(registration_fee_paid=True, is_active=True)
        )
        return res.rowcount == 1
