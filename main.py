# FILE: ecohunt-backend/main.py

import logging
from flask import Flask, jsonify
from dotenv import load_dotenv
from pydantic import ValidationError
from logging_config import setup_logging
from celery_worker import celery_app
from extensions import limiter
from models import db
import dependencies

# --- SETUP & CONFIG ---
# Load environment variables for the Flask app process.
load_dotenv()
setup_logging()


def create_app(config_overrides=None, verification_service=None, analysis_service=None, workflow_store=None):
    """
    Builds the Flask app. Services passed in replace the ones built lazily
    from configuration, which is how tests run without Gemini or Redis.
    """
    app = Flask(__name__)
    app.config.update(dependencies.default_config())
    app.config.update(config_overrides or {})

    services = {}
    if verification_service is not None:
        services["verification_service"] = verification_service
    if analysis_service is not None:
        services["analysis_service"] = analysis_service
    if workflow_store is not None:
        services["workflow_store"] = workflow_store
    app.extensions["ecohunt"] = services

    # --- Initialize Extensions ---
    db.init_app(app)
    limiter.init_app(app)  # storage comes from RATELIMIT_STORAGE_URI

    celery_app.conf.update(
        task_always_eager=app.config.get("CELERY_TASK_ALWAYS_EAGER", False),
    )

    with app.app_context():
        db.create_all()

    # --- Import and Register Blueprints ---
    from api.areas import areas_bp
    from api.claims import claims_bp
    from api.groups import groups_bp
    from api.status import status_bp

    app.register_blueprint(areas_bp, url_prefix='/areas', strict_slashes=False)
    app.register_blueprint(claims_bp, url_prefix='/claims', strict_slashes=False)
    app.register_blueprint(groups_bp, url_prefix='/groups', strict_slashes=False)
    app.register_blueprint(status_bp, url_prefix='/', strict_slashes=False)

    # --- Global Error Handlers ---
    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        return jsonify({"error_code": "VALIDATION_ERROR", "message": "Request validation failed",
                        "details": e.errors(include_url=False, include_context=False, include_input=False)}), 400

    @app.errorhandler(404)
    def resource_not_found(e):
        """Handles 404 Not Found errors for a clean API response."""
        return jsonify(error_code="NOT_FOUND", message="The requested resource was not found."), 404

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify(error_code="RATE_LIMITED", message=f"Too many requests: {e.description}"), 429

    @app.errorhandler(500)
    def internal_server_error(e):
        """Handles unexpected 500 Internal Server Errors for a clean API response."""
        logging.critical(f"An unhandled exception occurred: {e}", exc_info=True)
        return jsonify(error_code="SERVER_ERROR", message="An unexpected error occurred on the server."), 500

    logging.info("EcoHunt app created")
    return app
