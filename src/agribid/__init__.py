import logging
from flask import Flask, request, current_app
from .config import Config
from .errors import DomainError
from .extensions import db, migrate, bcrypt, jwt, cors, scheduler, socketio
from .routes import register_blueprints
from .side_effects import init_side_effects
from .tasks import schedule_jobs
from .cli import register_cli
from .utils import api_error, api_ok
from .sockets import register_socketio


def create_app(config_object=None):
    app = Flask(__name__)
    app.config.from_object(config_object or Config())

    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("agribid").setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Extensiones base
    db.init_app(app)
    migrate.init_app(app, db)
    bcrypt.init_app(app)
    jwt.init_app(app)

    # Mismos orígenes para CORS HTTP y WS
    origins = app.config.get("CORS_ORIGINS") or []

    # CORS HTTP para /api/* y también para /socket.io/* (preflight del WS)
    cors.init_app(
        app,
        resources={
            r"/api/*": {
                "origins": origins,
                "methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
                "allow_headers": ["Content-Type", "Authorization"],
                "supports_credentials": True,
            },
            r"/socket.io/*": {
                "origins": origins,
                "methods": ["GET", "POST", "OPTIONS"],
                "allow_headers": ["Content-Type", "Authorization"],
                "supports_credentials": True,
            },
        },
    )

    socketio.init_app(
        app,
        cors_allowed_origins=origins,
        cors_credentials=True,
    )

    # Preflight ultrarrápido para evitar timeouts en OPTIONS de API/WS
    @app.before_request
    def _fast_preflight():
        if request.method == "OPTIONS" and (
            request.path.startswith("/api/") or request.path.startswith("/socket.io/")
        ):
            resp = current_app.make_default_options_response()
            origin = request.headers.get("Origin", "")
            req_hdrs = request.headers.get(
                "Access-Control-Request-Headers", "Authorization, Content-Type"
            )
            if origin in origins:
                resp.headers["Access-Control-Allow-Origin"] = origin
                resp.headers["Vary"] = "Origin"
                resp.headers["Access-Control-Allow-Credentials"] = "true"
                resp.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
                resp.headers["Access-Control-Allow-Headers"] = req_hdrs
            return resp

    register_blueprints(app)

    @app.get("/api/health")
    def health():
        return api_ok(True)

    # Errores de dominio -> sobre JSON con el status que lleva cada error
    @app.errorhandler(DomainError)
    def domain_error(e):
        db.session.rollback()
        return api_error(e.message, e.status, **e.extra)

    @app.errorhandler(500)
    def internal_error(e):
        db.session.rollback()
        app.logger.exception("Error no controlado en %s %s", request.method, request.path)
        return api_error("Error interno del servidor.", 500)

    # Mensajes JWT claros (evita 500 opacos)
    @jwt.unauthorized_loader
    def jwt_missing(reason):
        return api_error(f"Autenticación requerida: {reason}", 401)

    @jwt.invalid_token_loader
    def jwt_invalid(reason):
        return api_error(f"Token inválido: {reason}", 422)

    @jwt.expired_token_loader
    def jwt_expired(h, d):
        return api_error("Token expirado.", 401)

    init_side_effects(app)

    # Jobs (opcional; en producción el barrido lo dispara el cron externo)
    if app.config.get("SCHEDULER_ENABLED"):
        scheduler.init_app(app)
        schedule_jobs(scheduler, app)
        scheduler.start()

    # Namespaces/handlers de Socket.IO
    register_socketio(socketio)

    register_cli(app)
    return app
