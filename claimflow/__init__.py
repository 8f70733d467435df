"""
Flask application factory.

Creates and configures the Flask app, registers all blueprints.
"""
import hmac
from flask import Flask, request, jsonify


def create_app():
    """Create and configure the Flask application."""
    from claimflow.logging_config import configure_logging

    app = Flask(__name__)

    configure_logging(app)

    # ── Bearer token auth ───────────────────────────────────────────────
    from claimflow.config import API_TOKEN

    OPEN_PATHS = {'/health'}

    @app.before_request
    def require_token():
        if not API_TOKEN:
            return  # No token set — open access (local dev)
        if request.path in OPEN_PATHS:
            return
        header = request.headers.get('Authorization', '')
        token = header[len('Bearer '):] if header.startswith('Bearer ') else ''
        if hmac.compare_digest(token, API_TOKEN):
            return
        return jsonify({'error': 'Unauthorized'}), 401

    # Register blueprints
    from claimflow.routes.runs import bp as runs_bp

    app.register_blueprint(runs_bp)

    # Import models so Base.metadata knows about them (required for SQLAlchemy).
    # Schema is managed by Alembic — no init_db() call.
    from claimflow.database import import_models
    import_models()

    return app
