"""Pagos posteriores a la liquidación: saldo (precio - EMD) y comisión."""
import logging
import time

from ..errors import AuthorizationError, NotFoundError, StateConflictError, ValidationError
from ..models import PurchaseStatus
from ..utils import money
from .emd import checkout_fields, verify_checkout

log = logging.getLogger("agribid.payments")


def _load_for_buyer(repo, purchase_id, buyer_id):
    purchase = repo.get_purchase(purchase_id, lock=True)
    if purchase is None:
        raise NotFoundError("Compra no encontrada.")
    if purchase.buyer_id != buyer_id:
        raise AuthorizationError("No puedes pagar esta compra.")
    return purchase


def _receipt(prefix, purchase_id):
    return f"{prefix}-{purchase_id}-{int(time.time()) % 1000000:06d}"


def initiate_balance_payment(repo, purchase_id, buyer_id, gateway):
    purchase = _load_for_buyer(repo, purchase_id, buyer_id)
    if purchase.purchase_type != "AUCTION":
        raise ValidationError("El pago de saldo sólo aplica a compras por subasta.")
    if not purchase.balance_amount or purchase.balance_amount <= 0:
        raise ValidationError("No hay saldo pendiente. La compra ya está pagada.")
    if purchase.status != PurchaseStatus.PAYMENT_PENDING:
        raise ValidationError(
            f"La compra está en estado {purchase.status}; no se puede iniciar el pago del saldo.",
            purchaseStatus=purchase.status,
        )

    if gateway.test_mode:
        purchase.status = PurchaseStatus.PENDING
        repo.commit()
        log.info("balance:paid_test purchase=%s", purchase.id)
        return {"message": "Saldo pagado (modo test).", "purchase": {"id": purchase.id, "status": purchase.status},
                "testMode": True}

    amount = purchase.balance_amount
    notes = {
        "paymentType": "BALANCE_PAYMENT",
        "purchaseId": purchase.id,
        "vehicleId": purchase.vehicle_id,
        "userId": buyer_id,
        "emdAmount": purchase.emd_amount or 0,
    }
    repo.commit()
    order = gateway.create_order(amount, _receipt("BAL", purchase.id), notes=notes)
    log.info("balance:order_created purchase=%s order=%s", purchase.id, order.get("id"))
    return {
        "message": "Orden de pago de saldo creada.",
        "orderId": order.get("id"),
        "amount": amount,
        "currency": "INR",
        "key": gateway.key_id,
        "purchaseId": purchase.id,
    }


def initiate_transaction_fee_payment(repo, purchase_id, buyer_id, gateway):
    purchase = _load_for_buyer(repo, purchase_id, buyer_id)
    if purchase.status == PurchaseStatus.CANCELLED:
        raise StateConflictError("La compra fue anulada.")
    if purchase.transaction_fee_paid:
        raise ValidationError("La comisión ya fue pagada.")
    fee = money(purchase.transaction_fee)
    if not fee or fee <= 0:
        raise ValidationError("Esta compra no tiene comisión pendiente.")

    if gateway.test_mode:
        repo.mark_fee_paid(purchase.id, "test_fee_payment_id")
        repo.commit()
        log.info("fee:paid_test purchase=%s", purchase.id)
        return {"message": "Comisión pagada (modo test).", "purchaseId": purchase.id, "testMode": True}

    notes = {"paymentType": "TRANSACTION_FEE", "purchaseId": purchase.id, "userId": buyer_id}
    repo.commit()
    order = gateway.create_order(fee, _receipt("FEE", purchase.id), notes=notes)
    log.info("fee:order_created purchase=%s order=%s", purchase.id, order.get("id"))
    return {
        "message": "Orden de pago de comisión creada.",
        "orderId": order.get("id"),
        "amount": fee,
        "currency": "INR",
        "key": gateway.key_id,
        "purchaseId": purchase.id,
    }


def confirm_balance_payment(repo, purchase_id, buyer_id, data, gateway):
    """Confirmación del checkout del saldo; mismo UPDATE condicional que el webhook."""
    order_id, payment_id, signature = checkout_fields(data)
    if not gateway.test_mode:
        verify_checkout(gateway, order_id, payment_id, signature)

    with repo.transaction():
        purchase = _load_for_buyer(repo, purchase_id, buyer_id)
        if purchase.status == PurchaseStatus.PAID:
            return {"message": "Saldo ya procesado.", "purchaseId": purchase.id,
                    "status": purchase.status, "alreadyProcessed": True}
        if not repo.mark_balance_paid(purchase.id, payment_id, order_id):
            raise StateConflictError(
                f"La compra está en estado {purchase.status}; no se puede confirmar el saldo.",
                purchaseStatus=purchase.status,
            )
    log.info("balance:paid_callback purchase=%s payment=%s", purchase_id, payment_id)
    return {"message": "Pago del saldo confirmado.", "purchaseId": purchase_id,
            "status": PurchaseStatus.PAID, "alreadyProcessed": False}


def confirm_transaction_fee_payment(repo, purchase_id, buyer_id, data, gateway):
    order_id, payment_id, signature = checkout_fields(data)
    if not gateway.test_mode:
        verify_checkout(gateway, order_id, payment_id, signature)

    with repo.transaction():
        purchase = _load_for_buyer(repo, purchase_id, buyer_id)
        if purchase.status == PurchaseStatus.CANCELLED:
            raise StateConflictError("La compra fue anulada.")
        if purchase.transaction_fee_paid:
            return {"message": "Comisión ya procesada.", "purchaseId": purchase.id, "alreadyProcessed": True}
        repo.mark_fee_paid(purchase.id, payment_id)
    log.info("fee:paid_callback purchase=%s payment=%s", purchase_id, payment_id)
    return {"message": "Pago de comisión confirmado.", "purchaseId": purchase_id, "alreadyProcessed": False}
