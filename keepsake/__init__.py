import os
import logging

import click
from flask import Flask, jsonify, request
from werkzeug.middleware.proxy_fix import ProxyFix

from keepsake.config import config_by_name
from keepsake.errors import KeepsakeError
from keepsake.extensions import db, migrate, limiter

logger = logging.getLogger(__name__)

CORS_ALLOWED_HEADERS = ", ".join([
    "Origin",
    "X-Requested-With",
    "Content-Type",
    "Accept",
    "Authorization",
    "Stripe-Signature",
])


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Trust only the configured proxy hops for the client address ---
    if app.config.get("PROXY_FIX_X_FOR", 0) > 0:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=app.config["PROXY_FIX_X_FOR"])

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from keepsake import models  # noqa: F401

    # --- Register blueprints ---
    from keepsake.blueprints.api import api_bp
    from keepsake.blueprints.webhooks import webhooks_bp

    app.register_blueprint(api_bp)
    app.register_blueprint(webhooks_bp)

    # --- Root route ---
    @app.route("/")
    def index():
        return jsonify(message="Welcome to the ArtJoy API!"), 200

    # --- Local file serving (dev only) ---
    if app.debug:
        @app.route("/uploads/<path:filepath>")
        def serve_upload(filepath):
            """Serve uploaded files from the local storage fallback in dev mode."""
            from flask import send_from_directory
            upload_dir = app.config.get("LOCAL_UPLOAD_DIR") or os.path.join(
                app.instance_path, "uploads"
            )
            return send_from_directory(upload_dir, filepath)

    # --- Error handlers ---
    register_error_handlers(app)

    # --- CLI commands ---
    register_cli(app)

    # --- CORS for the frontend ---
    @app.after_request
    def add_cors_headers(response):
        """Allow the configured frontend origins to call /api/*."""
        origin = request.headers.get("Origin")
        if (
            origin
            and request.path.startswith("/api/")
            and origin in app.config.get("CORS_ALLOWED_ORIGINS", [])
        ):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = CORS_ALLOWED_HEADERS
            response.headers.add("Vary", "Origin")
        return response

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_error_handlers(app):
    """Render pipeline errors and HTTP errors as JSON."""

    @app.errorhandler(KeepsakeError)
    def handle_keepsake_error(e):
        if e.public:
            logger.info(f"{type(e).__name__} on {request.path}: {e.message}")
        else:
            logger.error(f"{type(e).__name__} on {request.path}: {e.message}")
        return jsonify(error=e.public_message), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return jsonify(error="Not found."), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify(error="Method not allowed."), 405

    @app.errorhandler(413)
    def too_large(e):
        return jsonify(error="Upload is too large."), 413

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify(error=f"Rate limit exceeded: {e.description}"), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify(error="Internal server error."), 500


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("list-plans")
    def list_plans():
        """Print the plan catalog with both currencies.

        Usage:
            flask list-plans
        """
        from keepsake.services.pricing import PLANS

        click.echo("=" * 60)
        for plan_id, entry in PLANS.items():
            click.echo(f"  Plan {plan_id}")
            click.echo(f"    USD ${entry.price_usd_cents / 100:.2f}  {entry.name_en}")
            click.echo(f"    BRL R${entry.price_brl_cents / 100:.2f}  {entry.name_pt}")
        click.echo("=" * 60)
