import os
from datetime import datetime, timezone

from flask import Flask, jsonify
from sqlalchemy import text

from config import Config
from extensions import db, login_manager, init_extensions
from jobs import start_scheduler
from licensing.errors import LicensingError
from licensing.services import init_services
from logger import setup_logging


# --------------------------------------------------------------------------------------------------------
#       Application factory
# --------------------------------------------------------------------------------------------------------
def create_app(config_class=Config, clock=None):
    app = Flask(__name__)
    app.config.from_object(config_class)

    if not app.config.get("SECRET_KEY"):
        raise ValueError("SECRET_KEY must be set")

    if not app.debug and not app.testing:
        app.config.update(
            SESSION_COOKIE_SECURE=True,
            SESSION_COOKIE_HTTPONLY=True,
            REMEMBER_COOKIE_SECURE=True,
            REMEMBER_COOKIE_HTTPONLY=True,
        )

    setup_logging(app)

    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///"):
        os.makedirs(os.path.join(app.root_path, "instance"), exist_ok=True)

    init_extensions(app)
    services = init_services(app, clock=clock)

    register_blueprints(app)
    register_error_handlers(app)

    @login_manager.user_loader
    def load_user(user_id):
        from models import Salesperson
        return db.session.get(Salesperson, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"success": False, "error": "Login required"}), 401

    @app.route("/healthz")
    def healthz():
        try:
            db.session.execute(text("SELECT 1"))
            database = "ok"
        except Exception as exc:
            app.logger.error(f"Health check database error: {exc}")
            database = "unavailable"
        status = 200 if database == "ok" else 503
        return jsonify({
            "status": "ok" if status == 200 else "degraded",
            "database": database,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }), status

    start_scheduler(app, services)

    app.logger.info("License platform started")
    return app


def register_blueprints(app):
    """Register all blueprints"""
    from blueprints.auth import bp as auth_bp
    from blueprints.admin import admin_bp
    from blueprints.keys import bp as keys_bp
    from blueprints.salesperson import bp as salesperson_bp
    from blueprints.agent import bp as agent_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(keys_bp)
    app.register_blueprint(salesperson_bp)
    app.register_blueprint(agent_bp)


def register_error_handlers(app):

    @app.errorhandler(LicensingError)
    def handle_licensing_error(exc):
        if exc.http_status >= 500:
            app.logger.error(f"{type(exc).__name__}: {exc.message}")
        else:
            app.logger.warning(f"{type(exc).__name__}: {exc.message}")
        return jsonify(exc.to_dict()), exc.http_status

    @app.errorhandler(403)
    def forbidden(exc):
        return jsonify({"success": False, "error": "Forbidden"}), 403

    @app.errorhandler(404)
    def not_found(exc):
        return jsonify({"success": False, "error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(exc):
        return jsonify({"success": False, "error": "Method not allowed"}), 405


if __name__ == "__main__":
    app = create_app()
    port = int(os.environ.get("PORT", 5000))
    debug = app.config.get("DEBUG", False)

    app.run(
        debug=debug,
        host="0.0.0.0",
        port=port,
        use_reloader=debug,
    )
