from .auth import bp as auth_bp
from .vehicles import bp as vehicles_bp
from .users import bp as users_bp
from .auctions import bp as auctions_bp
from .admin import bp as admin_bp
from .purchases import bp as purchases_bp
from .cron import bp as cron_bp
from .webhooks import bp as webhooks_bp

def register_blueprints(app):
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(vehicles_bp, url_prefix="/api")
    app.register_blueprint(users_bp, url_prefix="/api")
    app.register_blueprint(auctions_bp, url_prefix="/api")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")
    app.register_blueprint(purchases_bp, url_prefix="/api")
    app.register_blueprint(cron_bp, url_prefix="/api")
    app.register_blueprint(webhooks_bp, url_prefix="/api")
