import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask, current_app


def configure_logging(app):
    """Configure application logging"""

    # Set log level based on environment
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers = [console_handler]

    # File handler (disabled when LOG_DIR is empty)
    log_dir = app.config.get('LOG_DIR')
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'archivist.log'),
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=handlers)

    # Configure Flask app logger
    app.logger.setLevel(log_level)
    for handler in handlers:
        app.logger.addHandler(handler)

    app.logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_app(config_name=None, **overrides):
    """
    Flask application factory.

    Raw configuration is resolved into frozen Settings here, once. Invalid
    configuration (e.g. an unknown timezone) raises ConfigError and the
    application does not start.

    Args:
        config_name: Key into archivist.config.config
        **overrides: Config values applied on top of the config object
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from archivist.config import config
    app.config.from_object(config[config_name])
    app.config.update(overrides)

    # Configure logging
    configure_logging(app)

    # Resolve settings
    from archivist.settings import load_settings
    settings = load_settings(app.config)
    app.extensions['archivist'] = {'settings': settings}

    app.logger.info(
        f"Backing up {settings.backup_dir} to bucket {settings.backup_bucket or '(unset)'} "
        f"with the {settings.retention.strategy} cleaning strategy ({settings.timezone.key})"
    )

    # Register blueprints
    from archivist.routes import backups_routes
    app.register_blueprint(backups_routes.bp)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    # Command line
    from archivist.cli import register_commands
    register_commands(app)

    return app


def get_settings(app=None):
    """Settings of the given (or current) application."""
    app = app or current_app
    return app.extensions['archivist']['settings']
