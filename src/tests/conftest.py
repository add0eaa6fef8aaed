# tests/conftest.py
from datetime import timedelta

import pytest
from agribid import create_app
from agribid.config import Config
from agribid.extensions import db
from agribid.models import (
    Auction, AuctionStatus, Bid, EarnestMoneyDeposit, EmdStatus, Membership, User, Vehicle, VehicleStatus,
)
from agribid.repository import AuctionRepository
from agribid.side_effects import RecordingEffects
from agribid.utils import utcnow

WEBHOOK_SECRET = "whsec_test"
CRON_SECRET = "cron-test-secret"


class TestConfig(Config):
    TESTING = True
    APP_ENV = "test"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    JWT_SECRET_KEY = "jwt-test-secret-key-with-enough-length"
    BCRYPT_LOG_ROUNDS = 4
    TEST_MODE = True
    SIDE_EFFECTS_INLINE = True
    SCHEDULER_ENABLED = False
    CRON_SECRET = CRON_SECRET
    RAZORPAY_KEY_ID = None
    RAZORPAY_KEY_SECRET = None
    RAZORPAY_WEBHOOK_SECRET = WEBHOOK_SECRET
    TRANSACTION_FEE_OFFER_UNTIL = None
    SMS_API_URL = None
    SENDGRID_API_KEY = None
    CORS_ORIGINS = ["http://localhost:5173"]


@pytest.fixture()
def app(tmp_path):
    """App de pruebas sobre SQLite en archivo temporal, una base por test."""
    cfg = TestConfig()
    cfg.SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'test.sqlite'}"
    application = create_app(cfg)
    with application.app_context():
        db.create_all()
    yield application
    with application.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def ctx(app):
    with app.app_context():
        yield


@pytest.fixture()
def repo(ctx):
    return AuctionRepository(db.session)


@pytest.fixture()
def effects():
    return RecordingEffects()


@pytest.fixture()
def now():
    return utcnow().replace(microsecond=0)


@pytest.fixture()
def make_user(ctx):
    counter = {"n": 0}

    def _mk(role="buyer", email=None, password="secret123", membership=True):
        counter["n"] += 1
        u = User(name=f"{role.title()} {counter['n']}",
                 email=email or f"{role}{counter['n']}@test.local",
                 phone=f"+9198000{counter['n']:05d}", role=role)
        u.set_password(password)
        db.session.add(u)
        db.session.flush()
        if membership and role != "admin":
            now = utcnow()
            db.session.add(Membership(user_id=u.id, membership_type="SILVER", amount=0,
                                      payment_id=f"pay_member_{u.id}", start_date=now - timedelta(days=1),
                                      end_date=now + timedelta(days=30)))
        db.session.commit()
        return u
    return _mk


@pytest.fixture()
def make_auction(ctx, make_user, now):
    """Crea vehículo + subasta directamente con los modelos."""
    def _mk(seller=None, status=AuctionStatus.LIVE, reserve=200000, increment=5000,
            current_bid=None, start=None, end=None, emd_amount=None, **extra):
        seller = seller or make_user("seller")
        v = Vehicle(seller_id=seller.id, brand="Mahindra", model="575 DI", year=2019,
                    base_price=reserve, sale_type="AUCTION", status=VehicleStatus.AUCTION)
        db.session.add(v)
        db.session.flush()
        a = Auction(
            vehicle_id=v.id,
            reference_number=f"AU-TEST-{v.id:04d}",
            start_time=start or now - timedelta(hours=1),
            end_time=end or now + timedelta(hours=1),
            reserve_price=reserve,
            minimum_increment=increment,
            current_bid=reserve if current_bid is None else current_bid,
            status=status,
            emd_required=emd_amount is not None,
            emd_amount=emd_amount,
            **extra,
        )
        db.session.add(a)
        db.session.commit()
        return a
    return _mk


@pytest.fixture()
def add_bid(ctx):
    def _mk(auction, bidder, amount, at):
        b = Bid(auction_id=auction.id, bidder_id=bidder.id, bid_amount=amount, bid_time=at)
        db.session.add(b)
        db.session.commit()
        return b
    return _mk


@pytest.fixture()
def paid_emd(ctx, now):
    def _mk(auction, bidder, amount=None):
        emd = EarnestMoneyDeposit(auction_id=auction.id, bidder_id=bidder.id,
                                  amount=amount or auction.emd_amount, status=EmdStatus.PAID,
                                  payment_id="pay_test", paid_at=now)
        db.session.add(emd)
        db.session.commit()
        return emd
    return _mk


@pytest.fixture()
def headers_for(client):
    """Devuelve headers con Bearer token para un usuario ya creado."""
    def _mk(user, password="secret123"):
        r = client.post("/api/auth/login", json={"email": user.email, "password": password})
        assert r.status_code == 200
        token = r.get_json()["data"]["token"]
        return {"Authorization": f"Bearer {token}"}
    return _mk
