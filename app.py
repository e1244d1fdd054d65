"""
Main Flask application entry point for the subscription billing service
"""
import logging
import os
from flask import Flask, jsonify
from config import Config
from models import db
from utils.mail import mail
from utils.peach_gateway import gateway
from utils.renewal_scheduler import renewal_scheduler


def create_app(config_class=Config):
    """Application factory pattern. DB init runs inside app_context; non-fatal on failure."""
    app = Flask(__name__)
    app.config.from_object(config_class)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    db.init_app(app)
    mail.init_app(app)
    gateway.init_app(app)
    renewal_scheduler.init_app(app)

    @app.errorhandler(404)
    def handle_404_error(e):
        return jsonify({"success": False, "message": "Not found"}), 404

    @app.errorhandler(405)
    def handle_405_error(e):
        return jsonify({"success": False, "message": "Method not allowed"}), 405

    @app.errorhandler(500)
    def handle_500_error(e):
        return jsonify({"success": False, "message": "Internal server error. Please try again later."}), 500

    # Create tables inside app context; do not crash if DB temporarily unavailable
    with app.app_context():
        try:
            db.create_all()
        except Exception as e:
            logging.getLogger(__name__).warning("Database init skipped (non-fatal): %s", e)

    # Register blueprints
    from routes import public_bp, users_bp, subscriptions_bp, payments_bp, notifications_bp

    app.register_blueprint(public_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(subscriptions_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(notifications_bp)

    # One scheduler per process; gunicorn runs a single worker
    if app.config.get("RENEWAL_TASK_ENABLED"):
        renewal_scheduler.start()

    return app

# WSGI entry point (Railway/Render/cPanel): gunicorn app:app
app = create_app()
application = app

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port, debug=os.environ.get("FLASK_DEBUG", "false").lower() in ("true", "1"),
            use_reloader=False)
