# tests/test_payments.py
import hashlib
import hmac

import pytest
import requests

from agribid.errors import AuthorizationError, ExternalServiceError, StateConflictError, ValidationError
from agribid.extensions import db
from agribid.gateway import PaymentGateway, verify_webhook_signature
from agribid.models import Purchase, PurchaseStatus
from agribid.services import payments


class FakeGateway:
    test_mode = False
    key_id = "rzp_test_key"

    def __init__(self):
        self.orders = []

    def create_order(self, amount, receipt, notes=None, currency="INR"):
        self.orders.append({"amount": amount, "receipt": receipt, "notes": notes})
        return {"id": "order_abc"}


class FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body

    def json(self):
        return self._body


class FakeHttp:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def post(self, url, json=None, auth=None, timeout=None):
        self.calls.append({"url": url, "json": json, "auth": auth, "timeout": timeout})
        if self.exc:
            raise self.exc
        return self.response

    def get(self, url, json=None, auth=None, timeout=None):
        return self.post(url, json=json, auth=auth, timeout=timeout)


def sign(order_id, payment_id, secret="secret"):
    return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


def live_gateway(status="captured"):
    return PaymentGateway("key", "secret", session=FakeHttp(FakeResponse(200, {"status": status})))


@pytest.fixture()
def make_purchase(ctx, make_auction, make_user):
    def _mk(buyer=None, status=PurchaseStatus.PAYMENT_PENDING, balance=200000, fee=5250,
            purchase_type="AUCTION"):
        a = make_auction()
        buyer = buyer or make_user()
        p = Purchase(vehicle_id=a.vehicle_id, buyer_id=buyer.id, purchase_price=210000,
                     purchase_type=purchase_type, status=status, balance_amount=balance,
                     emd_applied=True, emd_amount=10000, transaction_fee=fee)
        db.session.add(p)
        db.session.commit()
        return p
    return _mk


def test_balance_payment_test_mode(repo, make_purchase):
    p = make_purchase()
    result = payments.initiate_balance_payment(repo, p.id, p.buyer_id, PaymentGateway(test_mode=True))
    assert result["testMode"] is True
    assert db.session.get(Purchase, p.id).status == PurchaseStatus.PENDING


def test_balance_payment_creates_order(repo, make_purchase):
    p = make_purchase()
    gw = FakeGateway()
    result = payments.initiate_balance_payment(repo, p.id, p.buyer_id, gw)

    assert result["orderId"] == "order_abc"
    assert result["amount"] == 200000
    assert gw.orders[0]["notes"]["paymentType"] == "BALANCE_PAYMENT"
    assert gw.orders[0]["notes"]["purchaseId"] == p.id
    assert db.session.get(Purchase, p.id).status == PurchaseStatus.PAYMENT_PENDING


def test_balance_payment_rules(repo, make_purchase, make_user):
    gw = PaymentGateway(test_mode=True)
    p = make_purchase()
    with pytest.raises(AuthorizationError):
        payments.initiate_balance_payment(repo, p.id, make_user().id, gw)

    no_balance = make_purchase(balance=None)
    with pytest.raises(ValidationError):
        payments.initiate_balance_payment(repo, no_balance.id, no_balance.buyer_id, gw)

    paid = make_purchase(status=PurchaseStatus.PAID)
    with pytest.raises(ValidationError) as exc:
        payments.initiate_balance_payment(repo, paid.id, paid.buyer_id, gw)
    assert exc.value.extra["purchaseStatus"] == PurchaseStatus.PAID


def test_transaction_fee_payment(repo, make_purchase):
    p = make_purchase()
    payments.initiate_transaction_fee_payment(repo, p.id, p.buyer_id, PaymentGateway(test_mode=True))
    assert db.session.get(Purchase, p.id).transaction_fee_paid is True

    with pytest.raises(ValidationError):
        payments.initiate_transaction_fee_payment(repo, p.id, p.buyer_id, PaymentGateway(test_mode=True))


def test_transaction_fee_refused_for_cancelled_purchase(repo, make_purchase):
    p = make_purchase(status=PurchaseStatus.CANCELLED)
    with pytest.raises(StateConflictError):
        payments.initiate_transaction_fee_payment(repo, p.id, p.buyer_id, FakeGateway())


def test_purchase_endpoints(client, make_purchase, make_user, headers_for):
    buyer = make_user()
    p = make_purchase(buyer=buyer)
    h = headers_for(buyer)

    r = client.post(f"/api/purchases/{p.id}/balance-payment", headers=h)
    assert r.status_code == 200
    r = client.post(f"/api/purchases/{p.id}/balance-payment", headers=h)
    assert r.status_code == 400

    r = client.post(f"/api/purchases/{p.id}/transaction-fee", headers=h)
    assert r.status_code == 200

    r = client.post(f"/api/purchases/{p.id}/balance-payment", headers=headers_for(make_user()))
    assert r.status_code == 403

    r = client.get(f"/api/purchases/{p.id}", headers=h)
    assert r.get_json()["data"]["transactionFeePaid"] is True


# ---------- Pasarela ----------
def test_gateway_order_amount_in_paise():
    http = FakeHttp(FakeResponse(200, {"id": "order_1"}))
    gw = PaymentGateway("key", "secret", base_url="https://rzp.test/v1", timeout=3, session=http)

    assert gw.create_order(5250.5, "FEE-1", notes={"purchaseId": 7}) == {"id": "order_1"}
    call = http.calls[0]
    assert call["url"] == "https://rzp.test/v1/orders"
    assert call["json"]["amount"] == 525050
    assert call["json"]["notes"] == {"purchaseId": "7"}
    assert call["auth"] == ("key", "secret")
    assert call["timeout"] == 3


def test_gateway_errors_are_retryable():
    gw = PaymentGateway("key", "secret", session=FakeHttp(exc=requests.Timeout()))
    with pytest.raises(ExternalServiceError) as exc:
        gw.create_order(100, "R")
    assert exc.value.status == 502
    assert exc.value.extra["retryable"] is True

    gw = PaymentGateway("key", "secret",
                        session=FakeHttp(FakeResponse(400, {"error": {"description": "bad amount"}})))
    with pytest.raises(ExternalServiceError) as exc:
        gw.create_order(100, "R")
    assert exc.value.message == "bad amount"


def test_gateway_without_credentials_works_in_test_mode():
    assert PaymentGateway().test_mode is True
    assert PaymentGateway("key", "secret").test_mode is False


def test_webhook_signature_check():
    body = b'{"event":"payment.captured"}'
    signature = hmac.new(b"s", body, hashlib.sha256).hexdigest()
    assert verify_webhook_signature(body, signature, "s") is True
    assert verify_webhook_signature(body, "8b1a1f7d9c1c1b5d", "s") is False
    assert verify_webhook_signature(body, signature, "otro") is False
    assert verify_webhook_signature(body, None, "s") is False


def test_payment_signature_check():
    gw = PaymentGateway("key", "secret")
    assert gw.verify_payment_signature("order_1", "pay_1", sign("order_1", "pay_1")) is True
    assert gw.verify_payment_signature("order_1", "pay_2", sign("order_1", "pay_1")) is False
    assert gw.verify_payment_signature("order_1", "pay_1", sign("order_1", "pay_1", "otro")) is False
    assert gw.verify_payment_signature("order_1", "pay_1", None) is False
    assert PaymentGateway().verify_payment_signature("order_1", "pay_1", sign("order_1", "pay_1")) is False


def test_payment_captured_reads_status():
    http = FakeHttp(FakeResponse(200, {"status": "captured"}))
    gw = PaymentGateway("key", "secret", base_url="https://rzp.test/v1", session=http)
    assert gw.payment_captured("pay_1") is True
    assert http.calls[0]["url"] == "https://rzp.test/v1/payments/pay_1"

    assert live_gateway(status="authorized").payment_captured("pay_1") is False
    gw = PaymentGateway("key", "secret", session=FakeHttp(exc=requests.ConnectionError()))
    assert gw.payment_captured("pay_1") is False


# ---------- Confirmación del checkout ----------
def checkout(order_id="order_1", payment_id="pay_1", **extra):
    return {"razorpay_order_id": order_id, "razorpay_payment_id": payment_id,
            "razorpay_signature": sign(order_id, payment_id), **extra}


def test_balance_callback_marks_paid_once(repo, make_purchase):
    p = make_purchase()
    gw = live_gateway()

    result = payments.confirm_balance_payment(repo, p.id, p.buyer_id, checkout(), gw)
    assert result["status"] == PurchaseStatus.PAID
    assert result["alreadyProcessed"] is False
    stored = db.session.get(Purchase, p.id)
    assert (stored.payment_id, stored.order_id) == ("pay_1", "order_1")

    again = payments.confirm_balance_payment(repo, p.id, p.buyer_id, checkout(), gw)
    assert again["alreadyProcessed"] is True


def test_balance_callback_rejects_bad_signature(repo, make_purchase):
    p = make_purchase()
    data = checkout()
    data["razorpay_signature"] = sign("order_1", "pay_1", "otro")

    with pytest.raises(ValidationError) as exc:
        payments.confirm_balance_payment(repo, p.id, p.buyer_id, data, live_gateway())
    assert exc.value.message == "Firma de pago inválida."
    assert db.session.get(Purchase, p.id).status == PurchaseStatus.PAYMENT_PENDING


def test_balance_callback_requires_captured_payment(repo, make_purchase):
    p = make_purchase()
    with pytest.raises(ValidationError):
        payments.confirm_balance_payment(repo, p.id, p.buyer_id, checkout(), live_gateway("failed"))
    with pytest.raises(ValidationError):
        payments.confirm_balance_payment(repo, p.id, p.buyer_id, {"orderId": "order_1"}, live_gateway())


def test_balance_callback_refused_for_cancelled_purchase(repo, make_purchase, make_user):
    p = make_purchase(status=PurchaseStatus.CANCELLED)
    with pytest.raises(StateConflictError) as exc:
        payments.confirm_balance_payment(repo, p.id, p.buyer_id, checkout(), live_gateway())
    assert exc.value.extra["purchaseStatus"] == PurchaseStatus.CANCELLED

    other = make_purchase()
    with pytest.raises(AuthorizationError):
        payments.confirm_balance_payment(repo, other.id, make_user().id, checkout(), live_gateway())


def test_fee_callback(repo, make_purchase):
    p = make_purchase()
    result = payments.confirm_transaction_fee_payment(repo, p.id, p.buyer_id, checkout(), live_gateway())
    assert result["alreadyProcessed"] is False
    stored = db.session.get(Purchase, p.id)
    assert stored.transaction_fee_paid is True
    assert stored.transaction_fee_payment_id == "pay_1"

    again = payments.confirm_transaction_fee_payment(repo, p.id, p.buyer_id, checkout(), live_gateway())
    assert again["alreadyProcessed"] is True

    cancelled = make_purchase(status=PurchaseStatus.CANCELLED)
    with pytest.raises(StateConflictError):
        payments.confirm_transaction_fee_payment(repo, cancelled.id, cancelled.buyer_id, checkout(),
                                                 live_gateway())


def test_callback_endpoints(app, client, make_purchase, make_user, headers_for):
    app.extensions["agribid.gateway"] = live_gateway()
    buyer = make_user()
    p = make_purchase(buyer=buyer)
    h = headers_for(buyer)

    r = client.post(f"/api/purchases/{p.id}/balance-payment/callback",
                    json={"orderId": "order_1", "paymentId": "pay_1", "signature": "x" * 64}, headers=h)
    assert r.status_code == 400

    r = client.post(f"/api/purchases/{p.id}/balance-payment/callback", json=checkout(), headers=h)
    assert r.status_code == 200
    assert r.get_json()["data"]["status"] == PurchaseStatus.PAID

    r = client.post(f"/api/purchases/{p.id}/transaction-fee/callback",
                    json=checkout("order_2", "pay_2"), headers=h)
    assert r.status_code == 200

    r = client.get(f"/api/purchases/{p.id}", headers=h)
    data = r.get_json()["data"]
    assert data["status"] == PurchaseStatus.PAID
    assert data["transactionFeePaid"] is True
