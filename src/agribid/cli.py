import json
from datetime import timedelta

import click
from .extensions import db
from .models import Auction, AuctionStatus, User, Vehicle, VehicleStatus
from .repository import AuctionRepository
from .services.approval import send_approval_reminders
from .services.eligibility import start_trial
from .services.scheduling import increment_for, next_reference
from .services.transitioner import sweep
from .side_effects import get_effects
from .utils import utcnow


def register_cli(app):
    @app.cli.command("seed")
    def seed():
        """Carga datos de ejemplo (admin/seller/buyer, 3 tractores y una subasta en vivo)."""
        now = utcnow()
        if not User.query.filter_by(email="admin@agribid.test").first():
            admin = User(name="Admin", email="admin@agribid.test", role="admin")
            admin.set_password("admin123")
            db.session.add(admin)

        if not User.query.filter_by(email="seller@agribid.test").first():
            seller = User(name="Seller", email="seller@agribid.test", phone="+919800000001", role="seller")
            seller.set_password("seller123")
            db.session.add(seller)
            db.session.flush()
            repo = AuctionRepository(db.session)

            v1 = Vehicle(
                seller_id=seller.id, brand="Mahindra", model="575 DI XP Plus",
                year=2019, engine_hp=47, base_price=450000, sale_type="AUCTION",
                status=VehicleStatus.AUCTION,
                reference_number=next_reference(repo, Vehicle.reference_number, "VH", now.year),
                description="Mahindra 575 DI, un solo dueño",
            )
            db.session.add(v1)
            db.session.flush()
            v2 = Vehicle(
                seller_id=seller.id, brand="Sonalika", model="DI 745 III",
                year=2017, engine_hp=50, base_price=280000, sale_type="AUCTION",
                description="Sonalika DI 745 con implementos",
            )
            v3 = Vehicle(
                seller_id=seller.id, brand="Swaraj", model="744 FE",
                year=2021, engine_hp=48, base_price=620000, sale_type="PREAPPROVED",
                description="Swaraj 744 FE, venta directa",
            )
            db.session.add_all([v2, v3])
            db.session.add(Auction(
                vehicle_id=v1.id,
                reference_number=next_reference(repo, Auction.reference_number, "AU", now.year),
                start_time=now, end_time=now + timedelta(days=2),
                reserve_price=v1.base_price, current_bid=v1.base_price,
                minimum_increment=increment_for(v1.base_price),
                status=AuctionStatus.LIVE,
            ))

        if not User.query.filter_by(email="buyer@agribid.test").first():
            buyer = User(name="Buyer", email="buyer@agribid.test", phone="+919800000002", role="buyer")
            buyer.set_password("buyer123")
            db.session.add(buyer)
            db.session.flush()
            start_trial(AuctionRepository(db.session), buyer.id, now)

        db.session.commit()
        click.echo("Seed listo.")

    @app.cli.command("sweep-auctions")
    def sweep_auctions():
        """Ejecuta una vez el barrido de estados de subastas."""
        result = sweep(AuctionRepository(db.session), utcnow(), get_effects())
        click.echo(json.dumps(result, indent=2))

    @app.cli.command("send-approval-reminders")
    def approval_reminders():
        """Envía recordatorios de aprobación pendientes a los vendedores."""
        days = app.config.get("APPROVAL_DEADLINE_DAYS", 7)
        result = send_approval_reminders(AuctionRepository(db.session), utcnow(), get_effects(), days)
        click.echo(json.dumps(result, indent=2))
