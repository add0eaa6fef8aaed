from datetime import datetime, timezone
from decimal import Decimal
from flask import jsonify


def api_error(message, status=400, **extra):
    payload = {"ok": False, "error": {"message": message, **extra}}
    return jsonify(payload), status


def api_ok(data=None, **extra):
    return jsonify({"ok": True, "data": data, **extra})


def utcnow():
    """UTC naive, igual que las columnas DateTime de los modelos."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def iso(dt):
    return dt.isoformat() + "Z" if dt else None


def money(value):
    if value is None:
        return None
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    return value


def parse_datetime(raw):
    """Acepta ISO 8601 con o sin 'Z'; devuelve UTC naive o None."""
    if not raw:
        return None
    try:
        dt = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt
