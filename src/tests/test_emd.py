# tests/test_emd.py
from datetime import timedelta

import pytest

from agribid.errors import AuthorizationError, NotFoundError, StateConflictError, ValidationError
from agribid.extensions import db
from agribid.gateway import PaymentGateway
from agribid.models import AuctionStatus, EarnestMoneyDeposit, EmdStatus
from agribid.services import emd
from agribid.services.transitioner import sweep


class FakeGateway:
    test_mode = False
    key_id = "rzp_test_key"

    def __init__(self):
        self.orders = []

    def create_order(self, amount, receipt, notes=None, currency="INR"):
        self.orders.append({"amount": amount, "receipt": receipt, "notes": notes})
        return {"id": f"order_{len(self.orders)}"}


def test_status_when_not_required(repo, make_auction, make_user):
    a = make_auction()
    assert emd.get_emd_status(repo, a.id, make_user().id)["emdRequired"] is False


def test_status_before_and_after_test_mode_payment(repo, make_auction, make_user, now):
    a = make_auction(emd_amount=10000)
    bidder = make_user()

    status = emd.get_emd_status(repo, a.id, bidder.id)
    assert status == {"emdRequired": True, "emdAmount": 10000, "emdStatus": EmdStatus.NOT_PAID, "emd": None}

    result = emd.initiate_emd_payment(repo, a.id, bidder.id, PaymentGateway(test_mode=True), now)
    assert result["testMode"] is True

    status = emd.get_emd_status(repo, a.id, bidder.id)
    assert status["emdStatus"] == EmdStatus.PAID
    assert status["emd"]["amount"] == 10000


def test_second_initiation_after_paid_is_refused(repo, make_auction, make_user, now):
    a = make_auction(emd_amount=10000)
    bidder = make_user()
    gw = PaymentGateway(test_mode=True)
    emd.initiate_emd_payment(repo, a.id, bidder.id, gw, now)

    with pytest.raises(ValidationError):
        emd.initiate_emd_payment(repo, a.id, bidder.id, gw, now)
    assert EarnestMoneyDeposit.query.filter_by(auction_id=a.id, bidder_id=bidder.id).count() == 1


def test_pending_emd_is_reused_for_new_order(repo, make_auction, make_user, now):
    a = make_auction(emd_amount=10000)
    bidder = make_user()
    gw = FakeGateway()

    first = emd.initiate_emd_payment(repo, a.id, bidder.id, gw, now)
    second = emd.initiate_emd_payment(repo, a.id, bidder.id, gw, now)

    assert first["emdId"] == second["emdId"]
    assert second["orderId"] == "order_2"
    assert gw.orders[0]["notes"] == {
        "paymentType": "EMD", "emdId": first["emdId"], "auctionId": a.id, "userId": bidder.id,
    }
    row = EarnestMoneyDeposit.query.filter_by(auction_id=a.id, bidder_id=bidder.id).one()
    assert row.status == EmdStatus.PENDING


def test_emd_not_required_cannot_be_initiated(repo, make_auction, make_user, now):
    a = make_auction()
    with pytest.raises(ValidationError):
        emd.initiate_emd_payment(repo, a.id, make_user().id, PaymentGateway(test_mode=True), now)


def test_emd_refused_after_auction_ended(repo, make_auction, make_user, now):
    a = make_auction(status=AuctionStatus.ENDED, emd_amount=10000)
    with pytest.raises(StateConflictError):
        emd.initiate_emd_payment(repo, a.id, make_user().id, PaymentGateway(test_mode=True), now)


def test_emd_endpoints(client, make_auction, make_user, headers_for):
    a = make_auction(emd_amount=15000)
    h = headers_for(make_user())

    r = client.get(f"/api/auctions/{a.id}/emd", headers=h)
    assert r.status_code == 200
    assert r.get_json()["data"]["emdStatus"] == EmdStatus.NOT_PAID

    r = client.post(f"/api/auctions/{a.id}/emd", headers=h)
    assert r.status_code == 200
    assert r.get_json()["data"]["emdStatus"] == EmdStatus.PAID

    r = client.post(f"/api/auctions/{a.id}/emd", headers=h)
    assert r.status_code == 400


class CheckoutGateway(FakeGateway):
    """Pasarela real a efectos del checkout: firma y estado controlados por el test."""

    def __init__(self, valid=True, captured=True):
        super().__init__()
        self.valid = valid
        self.captured = captured
        self.refunds = []

    def verify_payment_signature(self, order_id, payment_id, signature):
        return self.valid

    def payment_captured(self, payment_id):
        return self.captured

    def refund(self, payment_id, amount=None, notes=None):
        self.refunds.append((payment_id, amount, notes["emdId"]))
        return {"id": "rfnd_1"}


def pending_emd(repo, auction, bidder, gw, now):
    return emd.initiate_emd_payment(repo, auction.id, bidder.id, gw, now)["emdId"]


def test_checkout_confirmation_marks_emd_paid(repo, make_auction, make_user, now):
    a = make_auction(emd_amount=10000)
    bidder = make_user()
    gw = CheckoutGateway()
    emd_id = pending_emd(repo, a, bidder, gw, now)
    data = {"emdId": str(emd_id), "orderId": "order_1", "paymentId": "pay_1", "signature": "sig"}

    result = emd.confirm_emd_payment(repo, a.id, bidder.id, data, gw, now)

    assert result["alreadyProcessed"] is False
    assert result["emd"]["status"] == EmdStatus.PAID
    row = db.session.get(EarnestMoneyDeposit, emd_id)
    assert (row.payment_id, row.payment_method, row.paid_at) == ("pay_1", "razorpay", now)

    again = emd.confirm_emd_payment(repo, a.id, bidder.id, data, gw, now)
    assert again["alreadyProcessed"] is True


def test_checkout_confirmation_rules(repo, make_auction, make_user, now):
    a, other = make_auction(emd_amount=10000), make_auction(emd_amount=10000)
    bidder = make_user()
    emd_id = pending_emd(repo, a, bidder, CheckoutGateway(), now)
    data = {"emdId": emd_id, "orderId": "order_1", "paymentId": "pay_1", "signature": "sig"}

    with pytest.raises(ValidationError) as exc:
        emd.confirm_emd_payment(repo, a.id, bidder.id, data, CheckoutGateway(valid=False), now)
    assert exc.value.message == "Firma de pago inválida."
    with pytest.raises(ValidationError):
        emd.confirm_emd_payment(repo, a.id, bidder.id, data, CheckoutGateway(captured=False), now)
    with pytest.raises(ValidationError):
        emd.confirm_emd_payment(repo, a.id, bidder.id, {**data, "emdId": "x"}, CheckoutGateway(), now)
    with pytest.raises(AuthorizationError):
        emd.confirm_emd_payment(repo, a.id, make_user().id, data, CheckoutGateway(), now)
    with pytest.raises(ValidationError):
        emd.confirm_emd_payment(repo, other.id, bidder.id, data, CheckoutGateway(), now)
    with pytest.raises(NotFoundError):
        emd.confirm_emd_payment(repo, a.id, bidder.id, {**data, "emdId": 9999}, CheckoutGateway(), now)

    assert db.session.get(EarnestMoneyDeposit, emd_id).status == EmdStatus.PENDING


@pytest.fixture()
def closed_with_emds(repo, effects, make_auction, make_user, add_bid, paid_emd, now):
    """Subasta cerrada con ganador y dos perdedores, los tres con EMD pagado."""
    winner, loser, other, admin = make_user(), make_user(), make_user(), make_user("admin")
    a = make_auction(emd_amount=10000, end=now + timedelta(minutes=30))
    for user in (loser, other, winner):
        paid_emd(a, user)
    add_bid(a, loser, 205000, now - timedelta(minutes=3))
    add_bid(a, winner, 215000, now - timedelta(minutes=1))
    sweep(repo, now + timedelta(hours=1), effects)
    return {"auction_id": a.id, "winner": winner, "loser": loser, "other": other, "admin": admin}


def test_refund_all_skips_winner(repo, closed_with_emds, now):
    case = closed_with_emds
    gw = CheckoutGateway()

    result = emd.refund_non_winners(repo, case["auction_id"], case["admin"].id, gw, now, refund_all=True)

    assert len(result["refundedEmdIds"]) == 2
    assert result["failedRefundEmdIds"] == []
    assert len(gw.refunds) == 2
    by_bidder = {e.bidder_id: e.status for e in EarnestMoneyDeposit.query.filter_by(auction_id=case["auction_id"])}
    assert by_bidder == {
        case["winner"].id: EmdStatus.PAID,
        case["loser"].id: EmdStatus.REFUNDED,
        case["other"].id: EmdStatus.REFUNDED,
    }


def test_single_refund_rules(repo, closed_with_emds, make_user, now):
    case = closed_with_emds
    gw = PaymentGateway(test_mode=True)
    aid, admin_id = case["auction_id"], case["admin"].id

    with pytest.raises(ValidationError):
        emd.refund_non_winners(repo, aid, admin_id, gw, now, bidder_id=case["winner"].id)
    with pytest.raises(ValidationError):
        emd.refund_non_winners(repo, aid, admin_id, gw, now)
    with pytest.raises(NotFoundError):
        emd.refund_non_winners(repo, aid, admin_id, gw, now, bidder_id=make_user().id)
    with pytest.raises(AuthorizationError):
        emd.refund_non_winners(repo, aid, case["loser"].id, gw, now, refund_all=True)

    result = emd.refund_non_winners(repo, aid, admin_id, gw, now, bidder_id=case["loser"].id)
    assert len(result["refundedEmdIds"]) == 1

    with pytest.raises(ValidationError) as exc:
        emd.refund_non_winners(repo, aid, admin_id, gw, now, bidder_id=case["loser"].id)
    assert exc.value.extra["emdStatus"] == EmdStatus.REFUNDED


def test_admin_refund_endpoint(client, closed_with_emds, headers_for):
    case = closed_with_emds
    url = f"/api/admin/auctions/{case['auction_id']}/emd/refund"
    admin_h = headers_for(case["admin"])

    assert client.post(url, json={"refundAll": True}, headers=headers_for(case["loser"])).status_code == 403
    assert client.post(url, json={"bidderId": "abc"}, headers=admin_h).status_code == 400

    r = client.post(url, json={"bidderId": case["winner"].id}, headers=admin_h)
    assert r.status_code == 400

    r = client.post(url, json={"bidderId": str(case["other"].id)}, headers=admin_h)
    assert r.status_code == 200
    assert len(r.get_json()["data"]["refundedEmdIds"]) == 1

    r = client.post(url, json={"refundAll": True}, headers=admin_h)
    assert len(r.get_json()["data"]["refundedEmdIds"]) == 1


def test_emd_callback_endpoint(client, make_auction, make_user, headers_for):
    a = make_auction(emd_amount=15000)
    bidder = make_user()
    h = headers_for(bidder)
    emd_id = client.post(f"/api/auctions/{a.id}/emd", headers=h).get_json()["data"]["emdId"]

    r = client.post(f"/api/auctions/{a.id}/emd/payment-callback",
                    json={"emdId": emd_id, "razorpay_order_id": "order_1",
                          "razorpay_payment_id": "pay_1", "razorpay_signature": "sig"}, headers=h)
    assert r.status_code == 200
    assert r.get_json()["data"]["alreadyProcessed"] is True

    r = client.post(f"/api/auctions/{a.id}/emd/payment-callback", json={"emdId": emd_id}, headers=h)
    assert r.status_code == 400
