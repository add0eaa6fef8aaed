"""Cliente mínimo de Razorpay sobre su API REST (órdenes, pagos y reembolsos)."""
import hashlib
import hmac
import logging
import requests
from flask import current_app

from .errors import ExternalServiceError

log = logging.getLogger("agribid.gateway")


class PaymentGateway:
    def __init__(self, key_id=None, key_secret=None, base_url="https://api.razorpay.com/v1",
                 timeout=10, test_mode=False, session=None):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._test_mode = test_mode
        self.http = session or requests.Session()

    @classmethod
    def from_config(cls, config):
        return cls(
            key_id=config.get("RAZORPAY_KEY_ID"),
            key_secret=config.get("RAZORPAY_KEY_SECRET"),
            base_url=config.get("RAZORPAY_API_URL", "https://api.razorpay.com/v1"),
            timeout=config.get("GATEWAY_TIMEOUT", 10),
            test_mode=config.get("TEST_MODE", False),
        )

    @property
    def configured(self):
        return bool(self.key_id and self.key_secret)

    @property
    def test_mode(self):
        # Sin credenciales se trabaja como en modo test
        return self._test_mode or not self.configured

    def _request(self, method, path, payload=None):
        url = f"{self.base_url}{path}"
        send = getattr(self.http, method)
        try:
            resp = send(url, json=payload, auth=(self.key_id, self.key_secret), timeout=self.timeout)
        except requests.Timeout:
            log.warning("gateway:timeout url=%s", url)
            raise ExternalServiceError("La pasarela de pagos no respondió a tiempo. Intenta de nuevo.")
        except requests.RequestException as e:
            log.warning("gateway:error url=%s err=%s", url, e)
            raise ExternalServiceError("No se pudo contactar la pasarela de pagos.")
        if resp.status_code >= 400:
            try:
                detail = (resp.json().get("error") or {}).get("description")
            except ValueError:
                detail = None
            log.warning("gateway:http_%s url=%s detail=%s", resp.status_code, url, detail)
            raise ExternalServiceError(detail or "La pasarela de pagos rechazó la solicitud.")
        return resp.json()

    def create_order(self, amount, receipt, notes=None, currency="INR"):
        if not self.configured:
            raise ExternalServiceError("Razorpay no está configurado.", retryable=False)
        if amount <= 0:
            raise ExternalServiceError("El monto debe ser mayor a 0.", retryable=False)
        return self._request("post", "/orders", {
            "amount": int(round(float(amount) * 100)),  # en paise
            "currency": currency,
            "receipt": receipt[:40],
            "notes": {k: str(v) for k, v in (notes or {}).items()},
        })

    def refund(self, payment_id, amount=None, notes=None):
        payload = {"notes": {k: str(v) for k, v in (notes or {}).items()}}
        if amount:
            payload["amount"] = int(round(float(amount) * 100))
        return self._request("post", f"/payments/{payment_id}/refund", payload)

    def fetch_payment(self, payment_id):
        return self._request("get", f"/payments/{payment_id}")

    def payment_captured(self, payment_id):
        try:
            return self.fetch_payment(payment_id).get("status") == "captured"
        except ExternalServiceError as e:
            log.warning("gateway:payment_status_failed payment=%s err=%s", payment_id, e.message)
            return False

    def verify_payment_signature(self, order_id, payment_id, signature):
        """Firma del checkout: HMAC-SHA256 de ``order_id|payment_id`` con el key secret."""
        if not (self.key_secret and order_id and payment_id and signature):
            return False
        expected = hmac.new(self.key_secret.encode("utf-8"), f"{order_id}|{payment_id}".encode("utf-8"),
                            hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, str(signature).strip())


def verify_webhook_signature(raw_body, signature, secret):
    """HMAC-SHA256 (hex) del cuerpo crudo comparado en tiempo constante."""
    if not signature or not secret:
        return False
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip())


def get_gateway():
    gw = current_app.extensions.get("agribid.gateway")
    if gw is None:
        gw = PaymentGateway.from_config(current_app.config)
        current_app.extensions["agribid.gateway"] = gw
    return gw
