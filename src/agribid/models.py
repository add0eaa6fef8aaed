from .extensions import db, bcrypt
from .utils import utcnow


class AuctionStatus:
    SCHEDULED = "SCHEDULED"
    LIVE = "LIVE"
    ENDED = "ENDED"


class ApprovalStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class EmdStatus:
    NOT_PAID = "NOT_PAID"
    PENDING = "PENDING"
    PAID = "PAID"
    APPLIED = "APPLIED"
    REFUNDED = "REFUNDED"


class VehicleStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    AUCTION = "AUCTION"
    SOLD = "SOLD"
    REJECTED = "REJECTED"


class PurchaseStatus:
    PAYMENT_PENDING = "payment_pending"
    PENDING = "pending"
    PAID = "paid"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class TimestampMixin:
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class User(db.Model, TimestampMixin):
    __tablename__ = "users"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(180), unique=True, index=True, nullable=False)
    phone = db.Column(db.String(20), nullable=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default="buyer")  # buyer|seller|admin
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    registration_fee_paid = db.Column(db.Boolean, nullable=False, default=False)
    is_eligible_for_bid = db.Column(db.Boolean, nullable=False, default=True)
    eligible_for_bid_reason = db.Column(db.String(255), nullable=True)

    bids = db.relationship("Bid", back_populates="bidder", lazy="dynamic")

    @property
    def is_admin(self):
        return self.role == "admin"

    def set_password(self, raw):
        self.password_hash = bcrypt.generate_password_hash(raw).decode()

    def check_password(self, raw):
        return bcrypt.check_password_hash(self.password_hash, raw)


class Vehicle(db.Model, TimestampMixin):
    __tablename__ = "vehicles"
    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    reference_number = db.Column(db.String(20), unique=True, nullable=True)
    brand = db.Column(db.String(80), nullable=False)
    model = db.Column(db.String(80), nullable=False)
    year = db.Column(db.Integer, nullable=False)
    engine_hp = db.Column(db.Integer, nullable=True)
    base_price = db.Column(db.Integer, nullable=False)
    sale_type = db.Column(db.String(20), nullable=False, default="AUCTION")  # AUCTION|PREAPPROVED
    images = db.Column(db.JSON, nullable=True)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default=VehicleStatus.PENDING)

    seller = db.relationship("User", foreign_keys=[seller_id])
    auction = db.relationship("Auction", back_populates="vehicle", uselist=False)


class Auction(db.Model, TimestampMixin):
    __tablename__ = "auctions"
    id = db.Column(db.Integer, primary_key=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey("vehicles.id"), unique=True, nullable=False)
    reference_number = db.Column(db.String(20), unique=True, nullable=False)
    start_time = db.Column(db.DateTime, nullable=False, index=True)
    end_time = db.Column(db.DateTime, nullable=False, index=True)
    reserve_price = db.Column(db.Integer, nullable=False)
    minimum_increment = db.Column(db.Integer, nullable=False)
    current_bid = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=AuctionStatus.SCHEDULED, index=True)
    winner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    seller_approval_status = db.Column(db.String(20), nullable=False, default=ApprovalStatus.PENDING)
    rejection_reason = db.Column(db.String(500), nullable=True)
    emd_required = db.Column(db.Boolean, nullable=False, default=False)
    emd_amount = db.Column(db.Integer, nullable=True)

    auto_extend_enabled = db.Column(db.Boolean, nullable=False, default=True)
    auto_extend_minutes = db.Column(db.Integer, nullable=False, default=5)
    auto_extend_threshold = db.Column(db.Integer, nullable=False, default=2)  # minutos antes del cierre
    max_extensions = db.Column(db.Integer, nullable=False, default=3)
    extension_count = db.Column(db.Integer, nullable=False, default=0)

    vehicle = db.relationship("Vehicle", back_populates="auction")
    winner = db.relationship("User", foreign_keys=[winner_id])
    bids = db.relationship(
        "Bid",
        back_populates="auction",
        lazy="dynamic",
        order_by="Bid.bid_amount.desc()",
    )


class Bid(db.Model):
    __tablename__ = "bids"
    id = db.Column(db.Integer, primary_key=True)
    auction_id = db.Column(db.Integer, db.ForeignKey("auctions.id"), nullable=False, index=True)
    bidder_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    bid_amount = db.Column(db.Integer, nullable=False)
    bid_time = db.Column(db.DateTime, nullable=False, default=utcnow)
    is_winning_bid = db.Column(db.Boolean, nullable=False, default=False)

    auction = db.relationship("Auction", back_populates="bids")
    bidder = db.relationship("User", back_populates="bids", foreign_keys=[bidder_id])


class EarnestMoneyDeposit(db.Model, TimestampMixin):
    __tablename__ = "earnest_money_deposits"
    __table_args__ = (
        db.UniqueConstraint("auction_id", "bidder_id", name="uq_emd_auction_bidder"),
    )
    id = db.Column(db.Integer, primary_key=True)
    auction_id = db.Column(db.Integer, db.ForeignKey("auctions.id"), nullable=False)
    bidder_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    amount = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=EmdStatus.PENDING)
    payment_method = db.Column(db.String(40), nullable=True)
    payment_id = db.Column(db.String(80), nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)
    applied_to_balance = db.Column(db.Boolean, nullable=False, default=False)
    refunded_at = db.Column(db.DateTime, nullable=True)


class Purchase(db.Model, TimestampMixin):
    __tablename__ = "purchases"
    id = db.Column(db.Integer, primary_key=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey("vehicles.id"), nullable=False, index=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    purchase_price = db.Column(db.Integer, nullable=False)
    purchase_type = db.Column(db.String(20), nullable=False, default="AUCTION")  # AUCTION|PREAPPROVED
    status = db.Column(db.String(30), nullable=False, default=PurchaseStatus.PENDING)
    balance_amount = db.Column(db.Integer, nullable=True)
    emd_applied = db.Column(db.Boolean, nullable=False, default=False)
    emd_amount = db.Column(db.Integer, nullable=True)
    transaction_fee = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    transaction_fee_paid = db.Column(db.Boolean, nullable=False, default=False)
    transaction_fee_payment_id = db.Column(db.String(80), nullable=True)
    order_id = db.Column(db.String(80), nullable=True)
    payment_id = db.Column(db.String(80), nullable=True)

    vehicle = db.relationship("Vehicle")
    buyer = db.relationship("User", foreign_keys=[buyer_id])


class Membership(db.Model, TimestampMixin):
    __tablename__ = "memberships"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    membership_type = db.Column(db.String(20), nullable=False, default="SILVER")  # TRIAL|SILVER|GOLD|DIAMOND
    amount = db.Column(db.Integer, nullable=False, default=0)
    payment_id = db.Column(db.String(80), unique=True, nullable=True)  # NULL en la prueba gratuita
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="active")


class PaymentEvent(db.Model):
    """Eventos del webhook ya procesados (id de evento de la pasarela)."""
    __tablename__ = "payment_events"
    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(80), unique=True, nullable=False)
    event = db.Column(db.String(60), nullable=False)
    received_at = db.Column(db.DateTime, nullable=False, default=utcnow)


class BlockchainRecord(db.Model):
    __tablename__ = "blockchain_records"
    id = db.Column(db.Integer, primary_key=True)
    record_type = db.Column(db.String(20), nullable=False)  # AUCTION|BID|PURCHASE
    record_id = db.Column(db.Integer, nullable=False, index=True)
    hash = db.Column(db.String(64), nullable=False)
    payload = db.Column(db.JSON, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)


class Notification(db.Model, TimestampMixin):
    __tablename__ = "notifications"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), index=True, nullable=False)
    type = db.Column(db.String(50), nullable=False)
    payload = db.Column(db.JSON, nullable=True)
    read_at = db.Column(db.DateTime, nullable=True)
