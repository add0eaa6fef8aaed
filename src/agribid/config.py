import os
from dotenv import load_dotenv
from datetime import timedelta

load_dotenv()


def _flag(name, default="false"):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    APP_ENV = os.getenv("APP_ENV", "development")
    SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL") or (
        f"mysql+pymysql://{os.getenv('DB_USER', 'root')}:{os.getenv('DB_PASSWORD', '')}"
        f"@{os.getenv('DB_HOST', '127.0.0.1')}:{os.getenv('DB_PORT', '3306')}/{os.getenv('DB_NAME', 'agribid')}?charset=utf8mb4"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Motor más robusto frente a locks/cons conectadas
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 1800,
        "isolation_level": "READ COMMITTED",  # reduce lock contention
    }

    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "jwt-change-me")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=12)

    CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")]

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Cron / barrido de estados
    CRON_SECRET = os.getenv("CRON_SECRET")
    SCHEDULER_ENABLED = _flag("SCHEDULER_ENABLED")
    SWEEP_INTERVAL_SECONDS = int(os.getenv("SWEEP_INTERVAL_SECONDS", "60"))

    # Pasarela de pagos (Razorpay)
    RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID")
    RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET")
    RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET")
    RAZORPAY_API_URL = os.getenv("RAZORPAY_API_URL", "https://api.razorpay.com/v1")
    GATEWAY_TIMEOUT = float(os.getenv("GATEWAY_TIMEOUT", "10"))
    TEST_MODE = _flag("TEST_MODE")

    # Comisión por transacción
    TRANSACTION_FEE_OFFER_RATE = os.getenv("TRANSACTION_FEE_OFFER_RATE", "0.025")
    TRANSACTION_FEE_STANDARD_RATE = os.getenv("TRANSACTION_FEE_STANDARD_RATE", "0.04")
    TRANSACTION_FEE_OFFER_UNTIL = os.getenv("TRANSACTION_FEE_OFFER_UNTIL")  # ISO; vacío = oferta vigente

    APPROVAL_DEADLINE_DAYS = int(os.getenv("APPROVAL_DEADLINE_DAYS", "7"))

    # Anti-sniping
    AUTO_EXTEND_ENABLED = _flag("AUTO_EXTEND_ENABLED", "true")
    AUTO_EXTEND_MINUTES = int(os.getenv("AUTO_EXTEND_MINUTES", "5"))
    AUTO_EXTEND_THRESHOLD_MINUTES = int(os.getenv("AUTO_EXTEND_THRESHOLD_MINUTES", "2"))
    AUTO_EXTEND_MAX = int(os.getenv("AUTO_EXTEND_MAX", "3"))

    SIDE_EFFECTS_INLINE = _flag("SIDE_EFFECTS_INLINE")

    # Canales externos (opcionales)
    SMS_API_URL = os.getenv("SMS_API_URL")
    SMS_API_KEY = os.getenv("SMS_API_KEY")
    SENDGRID_API_KEY = os.getenv("SENDGRID_API_KEY")
    MAIL_FROM = os.getenv("MAIL_FROM", "no-reply@agribid.local")
    NOTIFY_TIMEOUT = float(os.getenv("NOTIFY_TIMEOUT", "5"))
