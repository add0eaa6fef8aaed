from decimal import Decimal, ROUND_HALF_UP
from ..utils import parse_datetime

OFFER_RATE = Decimal("0.025")
STANDARD_RATE = Decimal("0.04")
_CENT = Decimal("0.01")


def calculate_transaction_fee(price, offer_active=True, offer_rate=OFFER_RATE,
                              standard_rate=STANDARD_RATE):
    """Comisión sobre el precio de compra, redondeada a 2 decimales.

    Función pura: 2.5% con oferta vigente, 4% en caso contrario.
    """
    rate = Decimal(str(offer_rate if offer_active else standard_rate))
    return (Decimal(str(price)) * rate).quantize(_CENT, rounding=ROUND_HALF_UP)


def offer_active(now, offer_until):
    """La oferta sigue vigente si no hay fecha de fin o aún no pasó."""
    return offer_until is None or now <= offer_until


def fee_schedule_from_config(config, now):
    until = parse_datetime(config.get("TRANSACTION_FEE_OFFER_UNTIL"))
    return {
        "offer_active": offer_active(now, until),
        "offer_rate": config.get("TRANSACTION_FEE_OFFER_RATE", OFFER_RATE),
        "standard_rate": config.get("TRANSACTION_FEE_STANDARD_RATE", STANDARD_RATE),
    }
