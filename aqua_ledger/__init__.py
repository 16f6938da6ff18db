"""
Flask Application Factory
Initializes and configures the Flask application
"""

import os
from flask import Flask
from flask_migrate import Migrate
from config import config
from aqua_ledger.models import db

# Initialize extensions
migrate = Migrate()


def create_app(config_name='default'):
    """
    Application factory pattern
    Creates and configures Flask application
    """
    app = Flask(__name__)

    # Load configuration
    app.config.from_object(config[config_name])

    # Validate secret key in production
    if config_name == 'production':
        if not app.config.get('SECRET_KEY') or app.config['SECRET_KEY'] == 'dev-secret-key-change-in-production':
            raise ValueError("Production requires a secure SECRET_KEY. Set it via environment variable.")

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Initialize Sentry if configured
    if app.config.get('SENTRY_DSN'):
        try:
            import sentry_sdk
            from sentry_sdk.integrations.flask import FlaskIntegration
            sentry_sdk.init(
                dsn=app.config['SENTRY_DSN'],
                integrations=[FlaskIntegration()],
                traces_sample_rate=0.1,
                environment=config_name
            )
            app.logger.info("Sentry error tracking initialized")
        except ImportError:
            app.logger.warning("sentry-sdk not installed. Error tracking disabled.")

    # Create log folder if it doesn't exist
    os.makedirs(app.config['LOG_FOLDER'], exist_ok=True)

    return app
