"""
Flask application factory.

Creates and configures the Flask app, registers all blueprints.
"""
from flask import Flask, jsonify


def create_app():
    """Create and configure the Flask application."""
    from leadflow.logging_config import configure_logging

    app = Flask(__name__)

    configure_logging(app)

    @app.route('/health')
    def health_check():
        """Health check endpoint, with per-provider circuit state."""
        from leadflow.services.circuit_breaker import all_health
        return jsonify({'status': 'healthy', 'services': all_health()}), 200

    # Register blueprints
    from leadflow.routes.runs import bp as runs_bp
    from leadflow.routes.leads import bp as leads_bp

    app.register_blueprint(runs_bp)
    app.register_blueprint(leads_bp)

    # Import models so Base.metadata knows about them (required for SQLAlchemy).
    from leadflow.database import import_models
    import_models()

    return app
